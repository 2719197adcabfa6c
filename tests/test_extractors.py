# tests/test_extractors.py

from datetime import datetime

import pytest

from fleetpay.reconciliation.aggregator import aggregate_platform
from fleetpay.reconciliation.archive import resolve_rows, matched_rows, MATCHED, UNMATCHED, INVALID
from fleetpay.reconciliation.extractors import parse_number, parse_timestamp, extract_rows
from fleetpay.reconciliation.identity import IdentityResolver, load_roster
from fleetpay.reconciliation.weeks import parse_week_id


@pytest.mark.parametrize('raw, expected', [
    (12.5, 12.5),
    ('1.234,56 €', 1234.56),
    ('1,234.56', 1234.56),
    ('50,00', 50.0),
    ('-7.20', -7.2),
    ('1.000', 1000.0),
    ('12.345.678', 12345678.0),
    ('0.500', 0.5),
    ('12.5', 12.5),
    ('€ 3', 3.0),
    ('', None),
    (None, None),
    ('n/a', None),
])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


def test_parse_timestamp_day_first_and_iso():
    assert parse_timestamp('09/01/2024 10:30') == datetime(2024, 1, 9, 10, 30)
    assert parse_timestamp('2024-01-09 10:30') == datetime(2024, 1, 9, 10, 30)
    assert parse_timestamp('not a date') is None


def test_uber_rows_need_a_key_and_an_amount():
    rows = extract_rows('uber', [
        {'UUID do motorista': 'u1', 'Pago a si': '10,50', 'Viagens': 3.0},
        {'UUID do motorista': '', 'Pago a si': 5},
        {'UUID do motorista': 'u2', 'Pago a si': 'abc'},
    ])
    assert rows[0].usable and rows[0].amount == 10.5 and rows[0].trips == 3
    assert 'missing driver identifier' in rows[1].problem
    assert "invalid amount 'abc'" in rows[2].problem


def test_toll_rows_need_a_timestamp():
    rows = extract_rows('viaverde', [{'Matrícula': 'AA-11-BB', 'Value': 3}])
    assert 'missing transaction date' in rows[0].problem


def test_telemetry_has_no_financial_total():
    rows = extract_rows('cartrack', [{'Registration': 'AA-11-BB', 'Trips': 7, 'Date': '2024-01-09'}])
    assert rows[0].amount == 0.0
    assert rows[0].trips == 7


def test_unmatched_card_warns_once_with_the_card_number(roster):
    resolver = IdentityResolver(load_roster(roster))
    extracted = extract_rows('myprio', [
        {'CARTAO': '9999', 'TOTAL': 30},
        {'CARTAO': '9999', 'TOTAL': 10},
        {'CARTAO': '7824 0001', 'TOTAL': 20},
        {'TOTAL': 5},
    ])
    outcomes, warnings = resolve_rows('myprio', extracted, resolver)

    assert [resolution for _, _, resolution in outcomes] == [UNMATCHED, UNMATCHED, MATCHED, INVALID]
    unmatched_warnings = [w for w in warnings if '9999' in w]
    assert len(unmatched_warnings) == 1
    assert len(warnings) == 2


def test_aggregation_sums_per_driver_and_filters_the_week(roster):
    week = parse_week_id('2024-W02')
    resolver = IdentityResolver(load_roster(roster))
    extracted = extract_rows('viaverde', [
        {'Matrícula': 'CC-22-DD', 'Value': 12.5, 'Entry Date': '2024-01-08 00:00'},
        {'Matrícula': 'CC-22-DD', 'Value': '2,50', 'Entry Date': '14/01/2024 23:59'},
        {'Matrícula': 'CC-22-DD', 'Value': 7.5, 'Entry Date': '2024-01-15 00:00'},
        {'Matrícula': 'AA-11-BB', 'Value': 1.0, 'Entry Date': '2024-01-07 22:00'},
    ])
    outcomes, _ = resolve_rows('viaverde', extracted, resolver)
    totals, warnings = aggregate_platform('viaverde', week, matched_rows(outcomes))

    assert totals == {'d2': {'total_value': 15.0, 'total_trips': 0, 'reimbursed_value': 0.0, 'rows_count': 2}}
    assert len(warnings) == 2
    assert all('outside 2024-W02' in w for w in warnings)


def test_fuel_rows_without_a_date_are_kept(roster):
    week = parse_week_id('2024-W02')
    resolver = IdentityResolver(load_roster(roster))
    extracted = extract_rows('myprio', [{'CARTAO': '7824 0001', 'TOTAL': 20}, {'CARTAO': '7824 0001', 'TOTAL': 5}])
    outcomes, _ = resolve_rows('myprio', extracted, resolver)
    totals, warnings = aggregate_platform('myprio', week, matched_rows(outcomes))
    assert totals['d1']['total_value'] == 25.0
    assert warnings == []


def test_payload_envelope_checks():
    from fleetpay.reconciliation.validator import validate_payload
    week = parse_week_id('2024-W02')

    rows, errors = validate_payload({'platform': 'bolt', 'weekStart': '2024-01-08', 'weekEnd': '2024-01-14',
                                     'rows': [{'Email': 'a@b.c', 'Ganhos brutos (total)': 1}]}, week)
    assert errors == [] and len(rows) == 1

    _, errors = validate_payload({'platform': 'bolt', 'weekStart': '2024-01-08', 'weekEnd': '2024-01-14',
                                  'rows': [{'Email': 'a@b.c'}]}, week)
    assert errors and 'Required column' in errors[0]

    _, errors = validate_payload({'platform': 'bolt', 'weekStart': '2024-01-01', 'weekEnd': '2024-01-07',
                                  'rows': 'nope'}, week)
    assert len(errors) == 2


def test_load_rows_from_csv(tmp_path):
    from fleetpay.reconciliation.validator import load_rows_file

    path = tmp_path / 'myprio.csv'
    path.write_text('CARTAO;TOTAL;DATA\n7824 0001;50,00;09/01/2024\n', encoding='utf-8')
    rows, errors = load_rows_file(str(path))
    assert errors == []
    assert rows == [{'CARTAO': '7824 0001', 'TOTAL': '50,00', 'DATA': '09/01/2024'}]

    _, errors = load_rows_file(str(tmp_path / 'export.pdf'))
    assert 'not supported' in errors[0]
