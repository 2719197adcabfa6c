# tests/test_formula.py

from datetime import date

import pytest

from fleetpay.reconciliation.financing import FinancingPlan, compute_financing
from fleetpay.reconciliation.formula import FinancialConfig, compute_base_record, zero_activity_record
from fleetpay.reconciliation.identity import DriverProfile, AdminFeeExemption, RENTER
from fleetpay.reconciliation.weeks import parse_week_id

WEEK = parse_week_id('2024-W02')
RATES = FinancialConfig(tax_rate=0.06, admin_fee_rate=0.07)


def test_weekly_formula_reference_scenario():
    """Gross 1000, fuel 80, tolls 20, no rental: the driver is paid 774.20."""
    driver = DriverProfile(driver_id='D', name='Driver D')
    entries = {
        'uber': {'total_value': 1000.0},
        'myprio': {'total_value': 80.0},
        'viaverde': {'total_value': 20.0},
    }
    record = compute_base_record(driver, WEEK, entries, RATES)

    assert record.gross_earnings == 1000.0
    assert record.tax_withheld == 60.0
    assert record.earnings_after_tax == 940.0
    assert record.admin_fee == 65.80
    assert record.expenses == 100.0
    assert record.net_payout == 774.20


def test_gross_includes_both_platforms_and_reimbursements():
    driver = DriverProfile(driver_id='D')
    entries = {
        'uber': {'total_value': 400.0, 'reimbursed_value': 10.0, 'total_trips': 30},
        'bolt': {'total_value': 190.0, 'reimbursed_value': 0.0, 'total_trips': 12},
        'cartrack': {'total_value': 0.0, 'total_trips': 99},
    }
    record = compute_base_record(driver, WEEK, entries, RATES)
    assert record.gross_earnings == 600.0
    assert record.reimbursements == 10.0
    assert record.total_trips == 42


def test_rental_fee_only_for_renters():
    entries = {'uber': {'total_value': 500.0}}
    affiliate = compute_base_record(DriverProfile(driver_id='A', rental_fee=200), WEEK, entries, RATES)
    renter = compute_base_record(DriverProfile(driver_id='R', driver_type=RENTER, rental_fee=200), WEEK, entries, RATES)
    assert affiliate.rental_fee == 0.0
    assert renter.rental_fee == 200.0
    assert renter.net_payout == pytest.approx(affiliate.net_payout - 200.0)


def test_admin_fee_exemption_applies_only_inside_its_window():
    entries = {'uber': {'total_value': 1000.0}}
    driver = DriverProfile(driver_id='N', admin_fee_exemption=AdminFeeExemption(date(2024, 1, 1), 2))

    inside = compute_base_record(driver, WEEK, entries, RATES)
    outside = compute_base_record(driver, parse_week_id('2024-W03'), entries, RATES)
    assert inside.admin_fee == 0.0 and inside.admin_fee_exempt
    assert outside.admin_fee == 65.80 and not outside.admin_fee_exempt


def test_net_payout_identity_holds_on_stored_terms():
    driver = DriverProfile(driver_id='X', driver_type=RENTER, rental_fee=123.45,
                           financing=[FinancingPlan(plan_id='p', kind='discount', amount=17.333)])
    entries = {'uber': {'total_value': 777.77}, 'bolt': {'total_value': 111.11}, 'myprio': {'total_value': 33.33}}
    record = compute_base_record(driver, WEEK, entries, RATES)
    record.add_commission(4.44, {'level': 1})
    fields = record.record_fields()
    expected = round(fields['earnings_after_tax'] - fields['admin_fee'] - fields['expenses']
                     + fields['commission_amount'] + fields['bonuses_applied'], 2)
    assert fields['net_payout'] == expected


def test_zero_activity_record_carries_nothing():
    record = zero_activity_record(DriverProfile(driver_id='Z', driver_type=RENTER, rental_fee=200), WEEK, RATES)
    assert record.net_payout == 0.0
    assert record.rental_fee == 0.0
    assert not record.has_activity


# --- Financing ---

def test_loan_installments_progress_from_the_start_date():
    plan = FinancingPlan.from_dict({'id': 'loan-1', 'type': 'loan', 'amount': 1000, 'weeks': 4,
                                    'weeklyInterest': 1, 'weeklySurcharge': 2.5, 'startDate': '2024-01-03'})
    first = compute_financing([plan], parse_week_id('2024-W01'))
    assert first['deduction'] == 255.0  # 250 + 2.50 interest + 2.50 surcharge
    assert first['plans'][0]['installmentsElapsed'] == 1
    assert first['plans'][0]['percentCompleted'] == 25.0

    last = compute_financing([plan], parse_week_id('2024-W04'))
    assert last['plans'][0]['installmentsRemaining'] == 0
    assert last['plans'][0]['percentCompleted'] == 100.0
    assert last['deduction'] == 255.0


def test_financing_stops_after_the_last_installment():
    plan = FinancingPlan.from_dict({'type': 'loan', 'amount': 300, 'weeks': 3, 'startDate': '2024-01-01'})
    after = compute_financing([plan], parse_week_id('2024-W05'))
    assert after['deduction'] == 0.0
    assert after['plans'][0]['status'] == 'completed'
    assert after['plans'][0]['percentCompleted'] == 100.0
    assert not after['hasFinancing']


def test_financing_not_charged_before_it_starts():
    plan = FinancingPlan.from_dict({'type': 'discount', 'weeklyAmount': 40, 'startDate': '2024-02-01'})
    result = compute_financing([plan], WEEK)
    assert result['deduction'] == 0.0
    assert result['plans'][0]['status'] == 'not_started'


def test_open_ended_discount_is_charged_every_week():
    plan = FinancingPlan.from_dict({'type': 'discount', 'amount': 25})
    assert compute_financing([plan], WEEK)['deduction'] == 25.0
    assert compute_financing([plan], parse_week_id('2030-W10'))['deduction'] == 25.0


def test_financing_is_part_of_expenses():
    driver = DriverProfile(driver_id='F', financing=[FinancingPlan(plan_id='p', kind='discount', weekly_amount=30)])
    record = compute_base_record(driver, WEEK, {'uber': {'total_value': 100.0}}, RATES)
    assert record.financing_deduction == 30.0
    assert record.expenses == 30.0
