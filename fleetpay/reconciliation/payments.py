# ==============================================================================
# fleetpay/reconciliation/payments.py
# ------------------------------------------------------------------------------
# Payment Finalizer. Turns a weekly record into an immutable DriverPayment,
# records the bonuses it pays in the ledger, and reverses all of that when a
# payment is reverted. Also renders the driver's payslip.
# ==============================================================================

import json
import logging
from datetime import date

import pdfkit
from flask import current_app, render_template
from sqlalchemy.exc import IntegrityError

from fleetpay import db
from fleetpay.models import DriverPayment, BonusLedgerEntry

from .bonuses import GOAL, REFERRAL
from .errors import DuplicatePaymentError, PayloadError
from .formula import money
from .guard import ensure_not_paid


def to_cents(value):
    return int(round(float(value or 0) * 100))


def _drop_paid_referral_bonuses(record):
    """
    Removes pending referral bonuses that another payment already settled, e.g.
    when two open weeks were reconciled before either was paid. The record's
    bonuses and net payout shrink accordingly.
    """
    pending = record.referral_bonus_pending
    if not pending:
        return
    references = [b['referredDriverId'] for b in pending]
    paid = {reference for (reference,) in
            db.session.query(BonusLedgerEntry.reference)
            .filter(BonusLedgerEntry.kind == REFERRAL, BonusLedgerEntry.reference.in_(references))
            .all()}
    if not paid:
        return

    dropped = money(sum(b['amount'] for b in pending if b['referredDriverId'] in paid))
    record.referral_bonus_pending_json = json.dumps([b for b in pending if b['referredDriverId'] not in paid],
                                                    ensure_ascii=False)
    record.bonuses_applied = money(record.bonuses_applied - dropped)
    record.net_payout = money(record.net_payout - dropped)
    logging.warning(f"Referral bonus for {', '.join(sorted(paid))} already paid; dropped {dropped:.2f} "
                    f"from {record.driver_id} {record.week_id}.")


def finalize_payment(record, created_by, manual_bonus=0.0, manual_discount=0.0, payment_date=None,
                     notes=None, proof_reference=None, currency=None):
    """
    Creates the payment for a weekly record and locks its week.

    totalAmount = netPayout + manualBonus - manualDiscount. The record is frozen
    into the payment as JSON, and its pending bonuses move to the paid arrays
    and to the bonus ledger. Raises DuplicatePaymentError if the driver is
    already paid for the week.
    """
    if not created_by:
        raise PayloadError("A payment must record who created it.")
    manual_bonus = money(manual_bonus)
    manual_discount = money(manual_discount)
    if manual_bonus < 0 or manual_discount < 0:
        raise PayloadError("Manual bonus and discount must not be negative.")

    ensure_not_paid(record.driver_id, record.week_id)
    _drop_paid_referral_bonuses(record)

    base = money(record.net_payout)
    total = money(base + manual_bonus - manual_discount)
    meta_pending = record.bonus_meta_pending
    referral_pending = record.referral_bonus_pending

    payment = DriverPayment(
        record_id=record.id,
        driver_id=record.driver_id,
        driver_name=record.driver_name,
        week_id=record.week_id,
        week_start=record.week_start,
        week_end=record.week_end,
        currency=currency or current_app.config.get('DEFAULT_CURRENCY', 'EUR'),
        base_amount=base,
        base_amount_cents=to_cents(base),
        bonus_amount=manual_bonus,
        bonus_cents=to_cents(manual_bonus),
        discount_amount=manual_discount,
        discount_cents=to_cents(manual_discount),
        total_amount=total,
        total_amount_cents=to_cents(total),
        admin_fee=record.admin_fee,
        admin_fee_rate=record.admin_fee_rate,
        commission_amount=record.commission_amount,
        bonuses_applied=record.bonuses_applied,
        payment_date=payment_date or date.today(),
        notes=notes,
        proof_reference=proof_reference,
        created_by=created_by,
        record_snapshot_json=json.dumps(record.to_dict(), ensure_ascii=False),
    )

    try:
        db.session.add(payment)
        db.session.flush()

        for bonus in meta_pending:
            db.session.add(BonusLedgerEntry(payment_id=payment.id, driver_id=record.driver_id, week_id=record.week_id,
                                            kind=GOAL, reference=bonus['reference'], amount=bonus['amount']))
        for bonus in referral_pending:
            db.session.add(BonusLedgerEntry(payment_id=payment.id, driver_id=record.driver_id, week_id=record.week_id,
                                            kind=REFERRAL, reference=bonus['referredDriverId'], amount=bonus['amount']))

        record.bonus_meta_paid_json = json.dumps(record.bonus_meta_paid + meta_pending, ensure_ascii=False)
        record.referral_bonus_paid_json = json.dumps(record.referral_bonus_paid + referral_pending, ensure_ascii=False)
        record.bonus_meta_pending_json = json.dumps([])
        record.referral_bonus_pending_json = json.dumps([])
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = DriverPayment.query.filter_by(driver_id=record.driver_id, week_id=record.week_id).first()
        if existing is None:
            raise PayloadError(f"A referral bonus on the payment of {record.driver_id} {record.week_id} "
                               f"was paid concurrently; reconcile the week and try again.")
        raise DuplicatePaymentError(record.driver_id, record.week_id, existing.id)
    except Exception:
        db.session.rollback()
        raise

    logging.info(f"Payment {payment.id} created by {created_by} for {record.driver_id} {record.week_id}: "
                 f"{base:.2f} + {manual_bonus:.2f} - {manual_discount:.2f} = {total:.2f} {payment.currency}")
    return payment


def revert_payment(payment, reverted_by=None):
    """
    Deletes a payment and its ledger rows, and moves the bonuses it paid back to
    pending on the record. Once no payment remains, the week is open again.
    """
    record = payment.record
    payment_id, week_id = payment.id, payment.week_id
    try:
        BonusLedgerEntry.query.filter_by(payment_id=payment.id).delete()
        if record is not None:
            record.bonus_meta_pending_json = json.dumps(record.bonus_meta_paid + record.bonus_meta_pending,
                                                        ensure_ascii=False)
            record.referral_bonus_pending_json = json.dumps(record.referral_bonus_paid + record.referral_bonus_pending,
                                                            ensure_ascii=False)
            record.bonus_meta_paid_json = json.dumps([])
            record.referral_bonus_paid_json = json.dumps([])
        db.session.delete(payment)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logging.info(f"Payment {payment_id} for week {week_id} reverted by {reverted_by or 'unknown'}.")


def render_payslip_html(payment):
    return render_template('payslip.html', payment=payment, record=payment.record_snapshot)


def render_payslip_pdf(payment):
    """Renders the payslip through wkhtmltopdf and returns the PDF bytes."""
    html = render_payslip_html(payment)
    binary = current_app.config.get('WKHTMLTOPDF_PATH')
    configuration = pdfkit.configuration(wkhtmltopdf=binary) if binary else None
    options = {'encoding': 'UTF-8', 'page-size': 'A4', 'quiet': ''}
    return pdfkit.from_string(html, False, options=options, configuration=configuration)
