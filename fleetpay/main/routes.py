# ==============================================================================
# fleetpay/main/routes.py
# ------------------------------------------------------------------------------
# Defines the JSON API of the main blueprint: week reconciliation and status,
# weekly records, payments and payslips, and the admin update path for the
# commission and goal rules.
# ==============================================================================

from flask import request, current_app, jsonify, Response

from fleetpay import db
from fleetpay.main import bp
from fleetpay.main.forms import PaymentForm, CommissionSettingsForm, GoalRuleForm
from fleetpay.models import DriverWeeklyRecord, DriverPayment
from fleetpay.reconciliation.errors import (PayloadError, WeekLockedError, DuplicatePaymentError,
                                            ReferralCycleError, ImmutableRecordError)
from fleetpay.reconciliation.payments import (finalize_payment, revert_payment, render_payslip_html,
                                              render_payslip_pdf)
from fleetpay.reconciliation.service import reconcile_week, week_overview
from fleetpay.reconciliation.settings import CalculationConfig, save_commission_config, add_goal_rule
from fleetpay.reconciliation.weeks import parse_week_id

# --- Helper Functions ---

def error_response(message, status, **extra):
    return jsonify({'error': message, **extra}), status


def form_errors(form):
    return {name: errors for name, errors in form.errors.items()}


@bp.errorhandler(PayloadError)
def handle_payload_error(e):
    return error_response(str(e), 400)


@bp.errorhandler(WeekLockedError)
def handle_week_locked(e):
    current_app.logger.warning(str(e))
    return error_response(str(e), 409, weekId=e.week_id, paymentIds=e.payment_ids)


@bp.errorhandler(DuplicatePaymentError)
def handle_duplicate_payment(e):
    return error_response(str(e), 409, paymentId=e.payment_id)


@bp.errorhandler(ReferralCycleError)
def handle_referral_cycle(e):
    current_app.logger.error(str(e))
    return error_response(str(e), 422, path=e.path)


@bp.errorhandler(ImmutableRecordError)
def handle_immutable(e):
    return error_response(str(e), 409)


# --- Weeks ---

@bp.route('/weeks/<week_id>/reconcile', methods=['POST'])
def reconcile(week_id):
    """Runs the reconciliation of a week from the posted payloads and roster."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return error_response('Request body must be a JSON object with "payloads" and "roster".', 400)
    payloads = body.get('payloads', [])
    roster = body.get('roster', [])
    if not isinstance(payloads, list) or not isinstance(roster, list):
        return error_response('"payloads" and "roster" must be lists.', 400)

    current_app.logger.info(f"Reconciliation requested for {week_id}: {len(payloads)} payload(s), {len(roster)} driver(s).")
    result = reconcile_week(week_id, payloads, roster)
    return jsonify(result.to_dict())


@bp.route('/weeks/<week_id>', methods=['GET'])
def week_detail(week_id):
    return jsonify(week_overview(week_id))


@bp.route('/weeks/<week_id>/records', methods=['GET'])
def week_records(week_id):
    week = parse_week_id(week_id)
    records = DriverWeeklyRecord.query.filter_by(week_id=week.week_id).order_by(DriverWeeklyRecord.driver_id).all()
    return jsonify({'weekId': week.week_id, 'records': [r.to_dict() for r in records]})


# --- Payments ---

@bp.route('/weeks/<week_id>/records/<driver_id>/payment', methods=['POST'])
def create_payment(week_id, driver_id):
    week = parse_week_id(week_id)
    record = DriverWeeklyRecord.query.filter_by(week_id=week.week_id, driver_id=driver_id).first()
    if record is None:
        return error_response(f'No weekly record for driver {driver_id} in {week.week_id}.', 404)

    form = PaymentForm()
    if not form.validate_on_submit():
        return error_response('Invalid payment data.', 400, fields=form_errors(form))

    payment = finalize_payment(
        record,
        created_by=form.created_by.data,
        manual_bonus=form.manual_bonus.data or 0.0,
        manual_discount=form.manual_discount.data or 0.0,
        payment_date=form.payment_date.data,
        notes=form.notes.data,
        proof_reference=form.proof_reference.data,
        currency=form.currency.data or CalculationConfig().DEFAULT_CURRENCY,
    )
    current_app.logger.info(f"Payment {payment.id} generated for {driver_id} {week.week_id}; week is now locked.")
    return jsonify(payment.to_dict()), 201


@bp.route('/payments/<payment_id>', methods=['GET'])
def payment_detail(payment_id):
    payment = db.get_or_404(DriverPayment, payment_id)
    return jsonify(payment.to_dict())


@bp.route('/payments/<payment_id>', methods=['DELETE'])
def delete_payment(payment_id):
    """Reverts a payment. The only way a payment ever changes."""
    payment = db.get_or_404(DriverPayment, payment_id)
    week_id = payment.week_id
    revert_payment(payment, reverted_by=request.args.get('by'))
    return jsonify({'reverted': payment_id, 'week': week_overview(week_id)})


@bp.route('/payments/<payment_id>/payslip', methods=['GET'])
def payslip(payment_id):
    payment = db.get_or_404(DriverPayment, payment_id)
    return render_payslip_html(payment)


@bp.route('/payments/<payment_id>/payslip.pdf', methods=['GET'])
def payslip_pdf(payment_id):
    payment = db.get_or_404(DriverPayment, payment_id)
    try:
        pdf = render_payslip_pdf(payment)
    except OSError as e:
        current_app.logger.error(f"PDF generation failed for payment {payment_id}: {e}")
        return error_response('PDF generation is not available on this server.', 503)
    filename = f"payslip_{payment.driver_id}_{payment.week_id}.pdf"
    return Response(pdf, mimetype='application/pdf',
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})


# --- Admin update path ---

@bp.route('/admin/commission-config', methods=['GET', 'POST'])
def commission_config():
    if request.method == 'GET':
        config = CalculationConfig().commission
        return jsonify({
            'version': config.version,
            'minWeeklyRevenueForEligibility': config.min_weekly_revenue,
            'base': config.base,
            'maxLevels': config.max_levels,
            'levels': {str(k): round(v * 100, 4) for k, v in sorted(config.levels.items())},
        })

    form = CommissionSettingsForm()
    if not form.validate_on_submit():
        return error_response('Invalid commission configuration.', 400, fields=form_errors(form))
    levels = (request.get_json(silent=True) or {}).get('levels') or {}
    if not isinstance(levels, dict):
        return error_response('"levels" must map level numbers to percentages.', 400)
    try:
        levels = {int(k): float(v) for k, v in levels.items()}
    except (TypeError, ValueError):
        return error_response('"levels" must map level numbers to percentages.', 400)
    if any(v < 0 or v > 100 for v in levels.values()):
        return error_response('Level percentages must be between 0 and 100.', 400)

    version = save_commission_config(form.min_weekly_revenue.data, form.base.data, form.max_levels.data,
                                     levels, created_by=form.created_by.data)
    current_app.logger.info(f"Commission configuration v{version.id} created.")
    return jsonify({'version': version.id}), 201


@bp.route('/admin/goal-rules', methods=['POST'])
def create_goal_rule():
    form = GoalRuleForm()
    if not form.validate_on_submit():
        return error_response('Invalid goal rule.', 400, fields=form_errors(form))
    rule = add_goal_rule(form.description.data, form.criterion.data, form.threshold.data,
                         form.reward_type.data, form.reward_value.data, form.level.data, form.active_from.data)
    return jsonify({'id': rule.id}), 201
