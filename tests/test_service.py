# tests/test_service.py

import pytest

WEEK = '2024-W02'


def _records():
    from fleetpay.models import DriverWeeklyRecord
    return {r.driver_id: r for r in DriverWeeklyRecord.query.filter_by(week_id=WEEK).all()}


def test_full_week_reconciliation(configured_app, roster, week_payloads):
    from fleetpay.models import ImportBatch, RawPlatformRow, WeekDataSource
    from fleetpay.reconciliation.service import reconcile_week

    result = reconcile_week(WEEK, week_payloads, roster).to_dict()

    assert result['weekId'] == WEEK
    assert result['errors'] == []
    assert result['recordsCreated'] == 2
    assert len(result['success']) == 4
    # One warning for the unknown fuel card (two rows), one for the toll outside the week
    assert len(result['warnings']) == 2
    assert sum('9999' in w for w in result['warnings']) == 1

    records = _records()
    ana, bruno = records['d1'], records['d2']

    assert ana.uber_total == 700.0 and ana.bolt_total == 300.0
    assert ana.gross_earnings == 1000.0
    assert ana.fuel_total == 50.0
    assert ana.admin_fee == 65.80
    # Bruno: 940 - 65.80 - (12.50 tolls + 200 rental) = 661.70, so Ana earns 2% = 13.23
    assert bruno.tolls_total == 12.5
    assert bruno.rental_fee == 200.0
    assert bruno.net_payout == 661.70
    assert ana.commission_amount == 13.23
    assert ana.commission_details[0]['referredDriverId'] == 'd2'
    assert ana.net_payout == 837.43
    assert ana.commission_config_version is not None

    assert RawPlatformRow.query.count() == 9
    assert RawPlatformRow.query.filter_by(resolution='unmatched').count() == 2
    assert all(b.processed for b in ImportBatch.query.all())
    assert {s.platform: s.status for s in WeekDataSource.query.all()} == {
        'uber': 'complete', 'bolt': 'complete', 'myprio': 'complete', 'viaverde': 'complete'}


def test_reprocessing_replaces_instead_of_accumulating(configured_app, roster, week_payloads):
    from fleetpay.models import NormalizedWeeklyEntry, RawPlatformRow, DriverWeeklyRecord
    from fleetpay.reconciliation.service import reconcile_week

    reconcile_week(WEEK, week_payloads, roster)
    first_id = _records()['d1'].id
    reconcile_week(WEEK, week_payloads, roster)

    uber = NormalizedWeeklyEntry.query.filter_by(week_id=WEEK, platform='uber', driver_id='d1').one()
    assert uber.total_value == 700.0
    assert DriverWeeklyRecord.query.filter_by(week_id=WEEK).count() == 2
    assert _records()['d1'].id == first_id
    assert _records()['d1'].net_payout == 837.43
    # The archive keeps both ingestions
    assert RawPlatformRow.query.count() == 18


def test_platform_errors_leave_stored_entries_unchanged(configured_app, roster, week_payloads, make_payload):
    from fleetpay.models import NormalizedWeeklyEntry, WeekDataSource
    from fleetpay.reconciliation.service import reconcile_week

    reconcile_week(WEEK, week_payloads, roster)
    result = reconcile_week(WEEK, [
        make_payload('uber', [{'UUID do motorista': 'UUID-ANA', 'Pago a si': 1}],
                     week_start='2024-01-15', week_end='2024-01-21'),
        make_payload('lyft', []),
        make_payload('viaverde', [{'Matrícula': 'CC-22-DD', 'Value': 1}]),
    ], roster).to_dict()

    assert [e['platform'] for e in result['errors']] == ['uber', 'lyft', 'viaverde']
    assert NormalizedWeeklyEntry.query.filter_by(platform='uber', driver_id='d1').one().total_value == 700.0
    assert NormalizedWeeklyEntry.query.filter_by(platform='viaverde', driver_id='d2').one().total_value == 12.5
    assert WeekDataSource.query.filter_by(week_id=WEEK, platform='uber').one().status == 'error'
    assert _records()['d1'].net_payout == 837.43


def test_mapping_failure_is_reported_per_platform(configured_app, roster, week_payloads, monkeypatch):
    from fleetpay.reconciliation import service
    from fleetpay.reconciliation.service import reconcile_week

    real_extract = service.extract_rows

    def flaky_extract(platform, rows):
        if platform == 'bolt':
            raise RuntimeError('export format changed')
        return real_extract(platform, rows)

    monkeypatch.setattr(service, 'extract_rows', flaky_extract)
    result = reconcile_week(WEEK, week_payloads, roster).to_dict()

    assert result['errors'] == [{'platform': 'bolt', 'error': 'Failed to process Bolt data: export format changed'}]
    assert _records()['d1'].bolt_total == 0.0
    assert _records()['d1'].uber_total == 700.0


def test_referral_cycle_rolls_back_the_whole_run(configured_app, roster, week_payloads):
    from fleetpay.models import RawPlatformRow, DriverWeeklyRecord, NormalizedWeeklyEntry
    from fleetpay.reconciliation.errors import ReferralCycleError
    from fleetpay.reconciliation.service import reconcile_week

    roster[0]['referrerId'] = 'd2'
    with pytest.raises(ReferralCycleError):
        reconcile_week(WEEK, week_payloads, roster)

    assert RawPlatformRow.query.count() == 0
    assert NormalizedWeeklyEntry.query.count() == 0
    assert DriverWeeklyRecord.query.count() == 0


def test_raw_rows_cannot_be_modified(configured_app, roster, week_payloads):
    from fleetpay import db
    from fleetpay.models import RawPlatformRow
    from fleetpay.reconciliation.errors import ImmutableRecordError
    from fleetpay.reconciliation.service import reconcile_week

    reconcile_week(WEEK, week_payloads, roster)
    row = RawPlatformRow.query.first()
    row.driver_id = 'someone-else'
    with pytest.raises(ImmutableRecordError):
        db.session.commit()
    db.session.rollback()

    db.session.delete(RawPlatformRow.query.first())
    with pytest.raises(ImmutableRecordError):
        db.session.commit()
    db.session.rollback()


def test_stored_data_for_drivers_off_the_roster_is_warned(configured_app, roster, week_payloads):
    from fleetpay.reconciliation.service import reconcile_week

    reconcile_week(WEEK, week_payloads, roster)
    result = reconcile_week(WEEK, [], roster[:1]).to_dict()

    assert result['recordsCreated'] == 1
    assert any('d2' in w for w in result['warnings'])
    assert set(_records()) == {'d1'}


def test_week_overview(configured_app, roster, week_payloads):
    from fleetpay.reconciliation.service import reconcile_week, week_overview

    reconcile_week(WEEK, week_payloads, roster)
    overview = week_overview(WEEK)
    assert overview['status'] == 'OPEN'
    assert overview['recordsCount'] == 2
    assert overview['weekStart'] == '2024-01-08'
    assert len(overview['dataSources']) == 4


def test_malformed_platform_field_is_a_platform_error(configured_app, roster, week_payloads, make_payload):
    from fleetpay.reconciliation.service import reconcile_week

    broken = make_payload('uber', [{'UUID do motorista': 'UUID-ANA', 'Pago a si': 1}])
    broken['platform'] = ['uber']
    result = reconcile_week(WEEK, week_payloads + [broken], roster).to_dict()

    assert len(result['errors']) == 1
    assert result['errors'][0]['platform'] == ['uber']
    assert len(result['success']) == 4
    assert _records()['d1'].net_payout == 837.43


def test_storage_failure_is_isolated_to_its_platform(configured_app, roster, week_payloads, monkeypatch):
    from fleetpay.models import ImportBatch, NormalizedWeeklyEntry, RawPlatformRow, WeekDataSource
    from fleetpay.reconciliation import aggregator
    from fleetpay.reconciliation.service import reconcile_week

    real_replace = aggregator.replace_entries

    def failing_replace(platform, week, totals, import_batch_id=None):
        if platform == 'bolt':
            raise RuntimeError('disk full')
        return real_replace(platform, week, totals, import_batch_id=import_batch_id)

    monkeypatch.setattr(aggregator, 'replace_entries', failing_replace)
    result = reconcile_week(WEEK, week_payloads, roster).to_dict()

    assert result['errors'] == [{'platform': 'bolt', 'error': 'Failed to store Bolt data: disk full'}]
    # The bolt batch and its archived row were rolled back with their savepoint
    assert ImportBatch.query.filter_by(platform='bolt').count() == 0
    assert RawPlatformRow.query.filter_by(platform='bolt').count() == 0
    assert RawPlatformRow.query.count() == 8
    assert NormalizedWeeklyEntry.query.filter_by(platform='bolt').count() == 0
    assert WeekDataSource.query.filter_by(week_id=WEEK, platform='bolt').one().status == 'error'
    assert _records()['d1'].uber_total == 700.0
    assert _records()['d1'].bolt_total == 0.0


def test_fatal_fault_after_savepoints_still_rolls_back_everything(configured_app, roster, week_payloads):
    from fleetpay.models import ImportBatch, RawPlatformRow
    from fleetpay.reconciliation.errors import ReferralCycleError
    from fleetpay.reconciliation.service import reconcile_week

    roster[1]['referrerId'] = 'd2'
    with pytest.raises(ReferralCycleError):
        reconcile_week(WEEK, week_payloads, roster)
    assert ImportBatch.query.count() == 0
    assert RawPlatformRow.query.count() == 0
