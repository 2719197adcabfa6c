# ==============================================================================
# fleetpay/main/forms.py
# ------------------------------------------------------------------------------
# Defines the input forms using Flask-WTF. The JSON API feeds them from the
# request body, so CSRF protection is off (see Config.WTF_CSRF_ENABLED).
# ==============================================================================

from flask_wtf import FlaskForm
from wtforms import StringField, FloatField, IntegerField, SelectField, TextAreaField, DateField
from wtforms.validators import DataRequired, NumberRange, InputRequired, Optional, Length


class PaymentForm(FlaskForm):
    """Form for finalizing the payment of a weekly record."""
    created_by = StringField('Created by', validators=[DataRequired(message="The payment author is required."), Length(max=128)])
    manual_bonus = FloatField('Manual bonus', default=0.0, validators=[Optional(), NumberRange(min=0)])
    manual_discount = FloatField('Manual discount', default=0.0, validators=[Optional(), NumberRange(min=0)])
    payment_date = DateField('Payment date', validators=[Optional()])
    currency = StringField('Currency', validators=[Optional(), Length(min=3, max=3)])
    notes = TextAreaField('Notes', validators=[Optional()])
    proof_reference = StringField('Proof reference', validators=[Optional(), Length(max=512)])


class CommissionSettingsForm(FlaskForm):
    """Form for a new commission configuration version. Level percentages are sent separately."""
    min_weekly_revenue = FloatField('Minimum weekly revenue', validators=[InputRequired(message="This field is required."), NumberRange(min=0)])
    base = SelectField(
        'Commission base',
        choices=[('repasse', 'Repasse'), ('earningsAfterTax', 'Earnings after tax')],
        validators=[InputRequired(message="Please choose the commission base.")]
    )
    max_levels = IntegerField('Max levels', validators=[InputRequired(message="This field is required."), NumberRange(min=1, max=10)])
    created_by = StringField('Updated by', validators=[Optional(), Length(max=128)])


class GoalRuleForm(FlaskForm):
    """Form for adding a weekly goal rule."""
    description = StringField('Description', validators=[DataRequired(message="This field is required."), Length(max=256)])
    criterion = SelectField('Criterion', choices=[('earnings', 'Earnings'), ('trips', 'Trips')],
                            validators=[InputRequired()])
    threshold = FloatField('Threshold', validators=[InputRequired(message="This field is required."), NumberRange(min=0)])
    reward_type = SelectField('Reward type', choices=[('fixed', 'Fixed amount'), ('percent', 'Percent of gross')],
                              validators=[InputRequired()])
    reward_value = FloatField('Reward value', validators=[InputRequired(message="This field is required."), NumberRange(min=0)])
    level = IntegerField('Level', default=1, validators=[Optional(), NumberRange(min=1)])
    active_from = DateField('Active from', validators=[Optional()])
