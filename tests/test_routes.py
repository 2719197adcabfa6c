# tests/test_routes.py

WEEK = '2024-W02'


def _reconcile(client, payloads, roster):
    return client.post(f'/weeks/{WEEK}/reconcile', json={'payloads': payloads, 'roster': roster})


def test_reconcile_and_list_records(client, roster, week_payloads):
    response = _reconcile(client, week_payloads, roster)
    assert response.status_code == 200
    body = response.get_json()
    assert body['recordsCreated'] == 2
    assert len(body['warnings']) == 2

    records = client.get(f'/weeks/{WEEK}/records').get_json()['records']
    assert [r['driverId'] for r in records] == ['d1', 'd2']
    assert records[0]['netPayout'] == 837.43
    assert records[0]['commissionAmount'] == 13.23


def test_reconcile_rejects_bad_input(client, roster):
    assert client.post(f'/weeks/{WEEK}/reconcile', json=['not', 'an', 'object']).status_code == 400
    assert client.post('/weeks/2024-02/reconcile', json={'payloads': [], 'roster': roster}).status_code == 400
    duplicated = roster + [roster[0]]
    assert _reconcile(client, [], duplicated).status_code == 400


def test_referral_cycle_is_rejected(client, roster, week_payloads):
    roster[0]['referrerId'] = 'd2'
    response = _reconcile(client, week_payloads, roster)
    assert response.status_code == 422
    assert response.get_json()['path'][0] == 'd1'
    assert client.get(f'/weeks/{WEEK}/records').get_json()['records'] == []


def test_payment_locks_and_revert_unlocks(client, roster, week_payloads):
    _reconcile(client, week_payloads, roster)

    response = client.post(f'/weeks/{WEEK}/records/d1/payment',
                           json={'created_by': 'ops', 'manual_bonus': 10, 'payment_date': '2024-01-16'})
    assert response.status_code == 201
    payment = response.get_json()
    assert payment['totalAmount'] == 847.43
    assert payment['paymentDate'] == '2024-01-16'

    locked = _reconcile(client, week_payloads, roster)
    assert locked.status_code == 409
    assert locked.get_json()['paymentIds'] == [payment['id']]
    assert client.get(f'/weeks/{WEEK}').get_json()['status'] == 'LOCKED'

    again = client.post(f'/weeks/{WEEK}/records/d1/payment', json={'created_by': 'ops'})
    assert again.status_code == 409
    assert again.get_json()['paymentId'] == payment['id']

    assert client.get(f"/payments/{payment['id']}").get_json()['recordSnapshot']['netPayout'] == 837.43
    assert client.get(f"/payments/{payment['id']}/payslip").status_code == 200

    reverted = client.delete(f"/payments/{payment['id']}?by=ops")
    assert reverted.status_code == 200
    assert reverted.get_json()['week']['status'] == 'OPEN'
    assert client.get(f"/payments/{payment['id']}").status_code == 404
    assert _reconcile(client, week_payloads, roster).status_code == 200


def test_payment_validation(client, roster, week_payloads):
    _reconcile(client, week_payloads, roster)
    assert client.post(f'/weeks/{WEEK}/records/nobody/payment', json={'created_by': 'ops'}).status_code == 404

    response = client.post(f'/weeks/{WEEK}/records/d1/payment', json={'manual_bonus': 5})
    assert response.status_code == 400
    assert 'created_by' in response.get_json()['fields']

    response = client.post(f'/weeks/{WEEK}/records/d1/payment', json={'created_by': 'ops', 'manual_discount': -3})
    assert response.status_code == 400


def test_commission_config_versions(client):
    before = client.get('/admin/commission-config').get_json()
    assert before['levels'] == {'1': 2.0, '2': 1.0}
    assert before['maxLevels'] == 2

    response = client.post('/admin/commission-config', json={
        'min_weekly_revenue': 600, 'base': 'earningsAfterTax', 'max_levels': 3,
        'levels': {'1': 3, '2': 1.5, '3': 0.5}, 'created_by': 'admin',
    })
    assert response.status_code == 201
    assert response.get_json()['version'] != before['version']

    after = client.get('/admin/commission-config').get_json()
    assert after['base'] == 'earningsAfterTax'
    assert after['levels'] == {'1': 3.0, '2': 1.5, '3': 0.5}

    from fleetpay import db
    from fleetpay.models import CommissionConfigVersion
    old = db.session.get(CommissionConfigVersion, before["version"])
    assert old.min_weekly_revenue == 550
    assert old.levels == {1: 0.02, 2: 0.01}


def test_commission_config_rejects_invalid_input(client):
    bad_levels = client.post('/admin/commission-config', json={
        'min_weekly_revenue': 600, 'base': 'repasse', 'max_levels': 11, 'levels': {'1': 2}})
    assert bad_levels.status_code == 400
    bad_percent = client.post('/admin/commission-config', json={
        'min_weekly_revenue': 600, 'base': 'repasse', 'max_levels': 1, 'levels': {'1': 120}})
    assert bad_percent.status_code == 400


def test_goal_rules(client, roster, week_payloads):
    response = client.post('/admin/goal-rules', json={
        'description': 'Weekly 1000', 'criterion': 'earnings', 'threshold': 1000,
        'reward_type': 'fixed', 'reward_value': 25})
    assert response.status_code == 201

    _reconcile(client, week_payloads, roster)
    records = client.get(f'/weeks/{WEEK}/records').get_json()['records']
    assert records[0]['bonusesApplied'] == 25.0

    invalid = client.post('/admin/goal-rules', json={'description': 'No threshold', 'criterion': 'trips'})
    assert invalid.status_code == 400
