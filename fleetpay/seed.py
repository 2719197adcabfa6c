import json
from fleetpay import db
from fleetpay.models import AppSetting, CommissionConfigVersion, GoalRule

DEFAULT_SETTINGS = {
    # key: [value, description, value_type]
    'REFERRAL_BONUS_MIN_WEEKS': ['4', 'Paid weeks a referred driver must complete before the referrer earns the bonus', 'int'],
    'REFERRAL_BONUS_AMOUNT': ['50.0', 'One-time bonus per referred driver (EUR)', 'float'],
    'DEFAULT_CURRENCY': ['EUR', 'Currency stamped on payments', 'string'],
}

DEFAULT_COMMISSION_CONFIG = {
    'min_weekly_revenue': 550.0,
    'base': 'repasse',
    'max_levels': 3,
    # level -> fraction of the referred driver's base value
    'levels': {1: 0.02, 2: 0.01, 3: 0.005},
}

DEFAULT_GOAL_RULES = [
    # (description, criterion, threshold, reward_type, reward_value, level)
    ('Weekly earnings above 1000 EUR', 'earnings', 1000.0, 'fixed', 25.0, 1),
    ('Weekly earnings above 1500 EUR', 'earnings', 1500.0, 'percent', 2.0, 2),
    ('100 trips in a week', 'trips', 100, 'fixed', 20.0, 1),
]


def seed_data():
    """Populates the database with default settings and rules."""
    # Seed App Settings
    for key, data in DEFAULT_SETTINGS.items():
        setting = AppSetting.query.filter_by(key=key).first()
        if not setting: # Only add if it doesn't exist
            setting = AppSetting(key=key, value=data[0], description=data[1], value_type=data[2])
            db.session.add(setting)
            print(f'Seeding setting: {key}')

    # Seed the first commission configuration version
    if CommissionConfigVersion.query.count() == 0:
        print('Seeding commission configuration v1...')
        db.session.add(CommissionConfigVersion(
            min_weekly_revenue=DEFAULT_COMMISSION_CONFIG['min_weekly_revenue'],
            base=DEFAULT_COMMISSION_CONFIG['base'],
            max_levels=DEFAULT_COMMISSION_CONFIG['max_levels'],
            levels_json=json.dumps({str(k): v for k, v in DEFAULT_COMMISSION_CONFIG['levels'].items()}),
            created_by='seed',
        ))

    # Seed Goal Rules
    if GoalRule.query.count() == 0:
        print('Seeding default goal rules...')
        for description, criterion, threshold, reward_type, reward_value, level in DEFAULT_GOAL_RULES:
            db.session.add(GoalRule(
                description=description, criterion=criterion, threshold=threshold,
                reward_type=reward_type, reward_value=reward_value, level=level
            ))

    db.session.commit()
    print('Seeding complete.')
