# ==============================================================================
# run.py
# ------------------------------------------------------------------------------
# The main entry point to launch the Flask application.
# ==============================================================================

from fleetpay import create_app, db
from fleetpay.models import (AppSetting, CommissionConfigVersion, GoalRule, DriverWeeklyRecord,
                             DriverPayment, NormalizedWeeklyEntry, RawPlatformRow)

# Create the Flask application instance using the factory function
app = create_app()

@app.shell_context_processor
def make_shell_context():
    """Provides a shell context for the `flask shell` command."""
    return {
        'db': db,
        'AppSetting': AppSetting,
        'CommissionConfigVersion': CommissionConfigVersion,
        'GoalRule': GoalRule,
        'DriverWeeklyRecord': DriverWeeklyRecord,
        'DriverPayment': DriverPayment,
        'NormalizedWeeklyEntry': NormalizedWeeklyEntry,
        'RawPlatformRow': RawPlatformRow,
    }

if __name__ == '__main__':
    app.run(debug=True)
