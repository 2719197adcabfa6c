# tests/conftest.py

import pytest

WEEK = '2024-W02'            # Monday 2024-01-08 to Sunday 2024-01-14
WEEK_START = '2024-01-08'
WEEK_END = '2024-01-14'


@pytest.fixture
def app_with_db():
    """
    Creates a new app instance for a test, sets up an in-memory database,
    and yields the app within an application context.
    """
    from config import TestConfig
    from fleetpay import create_app, db
    from fleetpay.reconciliation.settings import CalculationConfig

    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        CalculationConfig.reset()
        yield app  # The tests will run here
        CalculationConfig.reset()
        db.session.remove()
        db.drop_all()


@pytest.fixture
def configured_app(app_with_db):
    """The app with a known commission configuration, no goal rules and a 1-week referral bonus."""
    from fleetpay import db
    from fleetpay.models import AppSetting
    from fleetpay.reconciliation.settings import save_commission_config, CalculationConfig

    db.session.add(AppSetting(key='REFERRAL_BONUS_MIN_WEEKS', value='1', value_type='int'))
    db.session.add(AppSetting(key='REFERRAL_BONUS_AMOUNT', value='50.0', value_type='float'))
    db.session.commit()
    save_commission_config(550, 'repasse', 2, {1: 2, 2: 1}, created_by='tests')
    CalculationConfig.reset()
    return app_with_db


@pytest.fixture
def client(configured_app):
    return configured_app.test_client()


@pytest.fixture
def roster():
    return [
        {
            'id': 'd1', 'name': 'Ana Silva', 'type': 'affiliate',
            'uberUuid': 'UUID-ANA', 'boltId': 'ana@example.com',
            'fuelCardNumber': '7824 0001', 'plate': 'AA-11-BB', 'tollTag': 'OBU1',
        },
        {
            'id': 'd2', 'name': 'Bruno Costa', 'type': 'renter', 'rentalFee': 200,
            'uberUuid': 'UUID-BRU', 'plate': 'CC-22-DD', 'referrerId': 'd1',
        },
    ]


def payload(platform, rows, week_start=WEEK_START, week_end=WEEK_END):
    return {'platform': platform, 'weekStart': week_start, 'weekEnd': week_end, 'rows': rows}


@pytest.fixture
def make_payload():
    return payload


@pytest.fixture
def week_payloads():
    """
    Ana: Uber 700 + Bolt 300, fuel 50. Bruno: Uber 1000, one toll in the week
    (12.50) and one outside it. Two fuel rows belong to an unknown card.
    """
    return [
        payload('uber', [
            {'UUID do motorista': 'uuid-ana', 'Pago a si': '600,00', 'Viagens': 40},
            {'UUID do motorista': 'UUID-ANA', 'Pago a si': 100, 'Viagens': 10},
            {'UUID do motorista': 'UUID-BRU', 'Pago a si': '1.000,00', 'Viagens': 60},
        ]),
        payload('bolt', [
            {'Email': 'ana@example.com', 'Ganhos brutos (total)': 300, 'Viagens (total)': 20},
        ]),
        payload('myprio', [
            {'CARTAO': '7824 0001', 'TOTAL': '50,00', 'DATA': '2024-01-09'},
            {'CARTAO': '9999', 'TOTAL': 30, 'DATA': '2024-01-10'},
            {'CARTAO': '9999', 'TOTAL': 10},
        ]),
        payload('viaverde', [
            {'Matrícula': 'CC-22-DD', 'Value': 12.5, 'Entry Date': '2024-01-10 08:00'},
            {'Matrícula': 'CC-22-DD', 'Value': 7.5, 'Entry Date': '2024-01-15 09:00'},
        ]),
    ]
