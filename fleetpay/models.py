# ==============================================================================
# fleetpay/models.py
# ------------------------------------------------------------------------------
# Defines the database schema using SQLAlchemy ORM models.
# ==============================================================================

import json
import uuid
from datetime import datetime

from sqlalchemy import event, text

from fleetpay import db
from fleetpay.reconciliation.errors import ImmutableRecordError


def _new_id():
    return uuid.uuid4().hex


def _loads(value, default):
    if not value:
        return default
    return json.loads(value)


class ImportBatch(db.Model):
    """
    One ingestion payload (an uploaded file or an API pull) for a platform and week.
    The processed flag is flipped in the same commit that writes the aggregates.
    """
    __tablename__ = 'import_batch'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    platform = db.Column(db.String(32), nullable=False, index=True)
    week_id = db.Column(db.String(8), nullable=False, index=True)
    week_start = db.Column(db.Date, nullable=False)
    week_end = db.Column(db.Date, nullable=False)
    source = db.Column(db.String(256))
    row_count = db.Column(db.Integer, default=0)
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    rows = db.relationship('RawPlatformRow', backref='import_batch', lazy='dynamic')

    def __repr__(self):
        return f'<ImportBatch {self.id}: {self.platform} {self.week_id}>'


class RawPlatformRow(db.Model):
    """
    A single ingested row, stored exactly as received together with the outcome
    of identity resolution. Rows are never updated or deleted (audit trail).
    """
    __tablename__ = 'raw_platform_row'
    id = db.Column(db.Integer, primary_key=True)
    import_batch_id = db.Column(db.String(32), db.ForeignKey('import_batch.id'), nullable=False, index=True)
    platform = db.Column(db.String(32), nullable=False, index=True)
    week_id = db.Column(db.String(8), nullable=False, index=True)
    row_index = db.Column(db.Integer, nullable=False)
    external_key = db.Column(db.String(256))
    fields_json = db.Column(db.Text, nullable=False)
    driver_id = db.Column(db.String(64), index=True)
    resolution = db.Column(db.String(16), nullable=False)  # matched | unmatched | invalid
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def fields(self):
        return _loads(self.fields_json, {})

    def __repr__(self):
        return f'<RawPlatformRow {self.id}: {self.platform} {self.external_key} ({self.resolution})>'


class NormalizedWeeklyEntry(db.Model):
    """Summed totals for one driver on one platform in one week."""
    __tablename__ = 'normalized_weekly_entry'
    id = db.Column(db.Integer, primary_key=True)
    driver_id = db.Column(db.String(64), nullable=False, index=True)
    platform = db.Column(db.String(32), nullable=False)
    week_id = db.Column(db.String(8), nullable=False, index=True)
    total_value = db.Column(db.Float, default=0)
    total_trips = db.Column(db.Integer, default=0)
    reimbursed_value = db.Column(db.Float, default=0)
    rows_count = db.Column(db.Integer, default=0)
    import_batch_id = db.Column(db.String(32), db.ForeignKey('import_batch.id'))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('driver_id', 'platform', 'week_id', name='_driver_platform_week_uc'),)

    def to_dict(self):
        return {
            'driverId': self.driver_id, 'platform': self.platform, 'weekId': self.week_id,
            'totalValue': self.total_value, 'totalTrips': self.total_trips,
            'reimbursedValue': self.reimbursed_value, 'rowsCount': self.rows_count,
        }

    def __repr__(self):
        return f'<NormalizedWeeklyEntry {self.driver_id} {self.platform} {self.week_id}: {self.total_value}>'


class WeekDataSource(db.Model):
    """Status of one platform's data for a week, written with each reconciliation."""
    __tablename__ = 'week_data_source'
    id = db.Column(db.Integer, primary_key=True)
    week_id = db.Column(db.String(8), nullable=False, index=True)
    platform = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False)  # complete | error
    records_count = db.Column(db.Integer, default=0)
    drivers_count = db.Column(db.Integer, default=0)
    archive_refs = db.Column(db.String(512))
    error = db.Column(db.String(512))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint('week_id', 'platform', name='_week_platform_uc'),)

    def to_dict(self):
        return {
            'platform': self.platform, 'status': self.status,
            'recordsCount': self.records_count, 'driversCount': self.drivers_count,
            'archiveRefs': self.archive_refs.split(',') if self.archive_refs else [],
            'error': self.error,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class CommissionConfigVersion(db.Model):
    """
    Versioned referral-commission configuration. Rows are append-only: the admin
    update path inserts a new version and the highest id is the current one.
    """
    __tablename__ = 'commission_config_version'
    id = db.Column(db.Integer, primary_key=True)
    min_weekly_revenue = db.Column(db.Float, nullable=False, default=0)
    base = db.Column(db.String(32), nullable=False, default='repasse')  # repasse | earningsAfterTax
    max_levels = db.Column(db.Integer, nullable=False, default=1)
    levels_json = db.Column(db.Text, nullable=False, default='{}')
    created_by = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def levels(self):
        """Level percentages keyed by int level, as fractions (0.02 == 2%)."""
        return {int(k): float(v) for k, v in _loads(self.levels_json, {}).items()}

    def __repr__(self):
        return f'<CommissionConfigVersion {self.id}: base={self.base} levels={self.max_levels}>'


class GoalRule(db.Model):
    """
    A weekly goal ("meta"). When a driver's gross earnings or trip count reaches
    the threshold, the reward becomes a pending bonus on the weekly record.
    """
    __tablename__ = 'goal_rule'
    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(256), nullable=False)
    criterion = db.Column(db.String(16), nullable=False)  # earnings | trips
    threshold = db.Column(db.Float, nullable=False)
    reward_type = db.Column(db.String(16), nullable=False, default='fixed')  # fixed | percent
    reward_value = db.Column(db.Float, nullable=False)
    level = db.Column(db.Integer, default=1)
    active_from = db.Column(db.Date)
    active = db.Column(db.Boolean, default=True)

    def __repr__(self):
        return f'<GoalRule {self.id}: {self.criterion} >= {self.threshold}>'


class AppSetting(db.Model):
    """
    Stores key-value pairs for business rules that admins may change without a
    deploy (referral bonus amount, minimum weeks, currency).
    """
    __tablename__ = 'app_setting'
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(128), unique=True, nullable=False, index=True)
    value = db.Column(db.String(256), nullable=False)
    description = db.Column(db.String(512))
    value_type = db.Column(db.String(32), default='string') # e.g., 'float', 'int', 'string', 'json'

    def __repr__(self):
        return f'<AppSetting {self.key}: {self.value}>'

    def get_value(self):
        """Casts the string value to its correct Python type."""
        if self.value_type == 'float':
            return float(self.value)
        if self.value_type == 'int':
            return int(self.value)
        if self.value_type == 'json':
            return json.loads(self.value)
        return self.value


class DriverWeeklyRecord(db.Model):
    """
    The financial record of one driver for one week. Overwritten by every
    reconciliation of an OPEN week; read-only once a DriverPayment references it.
    """
    __tablename__ = 'driver_weekly_record'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    driver_id = db.Column(db.String(64), nullable=False, index=True)
    driver_name = db.Column(db.String(128))
    driver_type = db.Column(db.String(16), nullable=False, default='affiliate')
    week_id = db.Column(db.String(8), nullable=False, index=True)
    week_start = db.Column(db.Date, nullable=False)
    week_end = db.Column(db.Date, nullable=False)

    # Platform totals
    uber_total = db.Column(db.Float, default=0)
    bolt_total = db.Column(db.Float, default=0)
    reimbursements = db.Column(db.Float, default=0)
    fuel_total = db.Column(db.Float, default=0)
    tolls_total = db.Column(db.Float, default=0)
    total_trips = db.Column(db.Integer, default=0)

    # Formula
    gross_earnings = db.Column(db.Float, default=0)
    tax_rate = db.Column(db.Float, default=0)
    tax_withheld = db.Column(db.Float, default=0)
    earnings_after_tax = db.Column(db.Float, default=0)
    admin_fee_rate = db.Column(db.Float, default=0)
    admin_fee = db.Column(db.Float, default=0)
    admin_fee_exempt = db.Column(db.Boolean, default=False)
    rental_fee = db.Column(db.Float, default=0)
    financing_deduction = db.Column(db.Float, default=0)
    financing_json = db.Column(db.Text)
    expenses = db.Column(db.Float, default=0)
    commission_amount = db.Column(db.Float, default=0)
    commission_details_json = db.Column(db.Text)
    commission_config_version = db.Column(db.Integer)
    bonus_meta_pending_json = db.Column(db.Text)
    referral_bonus_pending_json = db.Column(db.Text)
    bonus_meta_paid_json = db.Column(db.Text)
    referral_bonus_paid_json = db.Column(db.Text)
    bonuses_applied = db.Column(db.Float, default=0)
    net_payout = db.Column(db.Float, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments = db.relationship('DriverPayment', backref='record', lazy='dynamic')

    __table_args__ = (db.UniqueConstraint('driver_id', 'week_id', name='_driver_week_uc'),)

    @property
    def financing_details(self):
        return _loads(self.financing_json, {})

    @property
    def commission_details(self):
        return _loads(self.commission_details_json, [])

    @property
    def bonus_meta_pending(self):
        return _loads(self.bonus_meta_pending_json, [])

    @property
    def referral_bonus_pending(self):
        return _loads(self.referral_bonus_pending_json, [])

    @property
    def bonus_meta_paid(self):
        return _loads(self.bonus_meta_paid_json, [])

    @property
    def referral_bonus_paid(self):
        return _loads(self.referral_bonus_paid_json, [])

    def to_dict(self):
        return {
            'id': self.id,
            'driverId': self.driver_id,
            'driverName': self.driver_name,
            'driverType': self.driver_type,
            'weekId': self.week_id,
            'weekStart': self.week_start.isoformat(),
            'weekEnd': self.week_end.isoformat(),
            'uberTotal': self.uber_total,
            'boltTotal': self.bolt_total,
            'reimbursements': self.reimbursements,
            'fuelTotal': self.fuel_total,
            'tollsTotal': self.tolls_total,
            'totalTrips': self.total_trips,
            'grossEarnings': self.gross_earnings,
            'taxRate': self.tax_rate,
            'taxWithheld': self.tax_withheld,
            'earningsAfterTax': self.earnings_after_tax,
            'adminFeeRate': self.admin_fee_rate,
            'adminFee': self.admin_fee,
            'adminFeeExempt': self.admin_fee_exempt,
            'rentalFee': self.rental_fee,
            'financingDeduction': self.financing_deduction,
            'financingDetails': self.financing_details,
            'expenses': self.expenses,
            'commissionAmount': self.commission_amount,
            'commissionDetails': self.commission_details,
            'commissionConfigVersion': self.commission_config_version,
            'bonusMetaPending': self.bonus_meta_pending,
            'referralBonusPending': self.referral_bonus_pending,
            'bonusMetaPaid': self.bonus_meta_paid,
            'referralBonusPaid': self.referral_bonus_paid,
            'bonusesApplied': self.bonuses_applied,
            'netPayout': self.net_payout,
        }

    def __repr__(self):
        return f'<DriverWeeklyRecord {self.driver_id} {self.week_id}: {self.net_payout}>'


class DriverPayment(db.Model):
    """
    An immutable payment generated from a weekly record. Its existence locks the
    week against reconciliation until it is reverted (deleted).
    """
    __tablename__ = 'driver_payment'
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    record_id = db.Column(db.String(32), db.ForeignKey('driver_weekly_record.id'), nullable=False)
    driver_id = db.Column(db.String(64), nullable=False, index=True)
    driver_name = db.Column(db.String(128))
    week_id = db.Column(db.String(8), nullable=False, index=True)
    week_start = db.Column(db.Date, nullable=False)
    week_end = db.Column(db.Date, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='EUR')

    base_amount = db.Column(db.Float, nullable=False)
    base_amount_cents = db.Column(db.Integer, nullable=False)
    bonus_amount = db.Column(db.Float, default=0)
    bonus_cents = db.Column(db.Integer, default=0)
    discount_amount = db.Column(db.Float, default=0)
    discount_cents = db.Column(db.Integer, default=0)
    total_amount = db.Column(db.Float, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    admin_fee = db.Column(db.Float, default=0)
    admin_fee_rate = db.Column(db.Float, default=0)
    commission_amount = db.Column(db.Float, default=0)
    bonuses_applied = db.Column(db.Float, default=0)

    payment_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text)
    proof_reference = db.Column(db.String(512))
    created_by = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    record_snapshot_json = db.Column(db.Text, nullable=False)

    ledger_entries = db.relationship('BonusLedgerEntry', backref='payment', lazy='dynamic',
                                     cascade="all, delete-orphan")

    __table_args__ = (db.UniqueConstraint('driver_id', 'week_id', name='_payment_driver_week_uc'),)

    @property
    def record_snapshot(self):
        return _loads(self.record_snapshot_json, {})

    def to_dict(self):
        return {
            'id': self.id,
            'recordId': self.record_id,
            'driverId': self.driver_id,
            'driverName': self.driver_name,
            'weekId': self.week_id,
            'weekStart': self.week_start.isoformat(),
            'weekEnd': self.week_end.isoformat(),
            'currency': self.currency,
            'baseAmount': self.base_amount,
            'bonusAmount': self.bonus_amount,
            'discountAmount': self.discount_amount,
            'totalAmount': self.total_amount,
            'totalAmountCents': self.total_amount_cents,
            'adminFee': self.admin_fee,
            'commissionAmount': self.commission_amount,
            'bonusesApplied': self.bonuses_applied,
            'paymentDate': self.payment_date.isoformat(),
            'notes': self.notes,
            'proofReference': self.proof_reference,
            'createdBy': self.created_by,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'recordSnapshot': self.record_snapshot,
        }

    def __repr__(self):
        return f'<DriverPayment {self.id}: {self.driver_id} {self.week_id} {self.total_amount}>'


class BonusLedgerEntry(db.Model):
    """History of bonuses actually paid. Removed together with its payment on revert."""
    __tablename__ = 'bonus_ledger_entry'
    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(32), db.ForeignKey('driver_payment.id'), nullable=False, index=True)
    driver_id = db.Column(db.String(64), nullable=False, index=True)
    week_id = db.Column(db.String(8), nullable=False)
    kind = db.Column(db.String(16), nullable=False)  # goal | referral
    reference = db.Column(db.String(128), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    paid_at = db.Column(db.DateTime, default=datetime.utcnow)

    # A referred driver's referral bonus is paid once; goal references repeat every week.
    __table_args__ = (
        db.Index('ix_referral_bonus_once', 'reference', unique=True,
                 sqlite_where=text("kind = 'referral'"), postgresql_where=text("kind = 'referral'")),
    )

    def __repr__(self):
        return f'<BonusLedgerEntry {self.kind} {self.reference}: {self.amount}>'


# --- Immutability guards ---

@event.listens_for(RawPlatformRow, 'before_update')
def _reject_raw_row_update(mapper, connection, target):
    raise ImmutableRecordError(f'Raw platform row {target.id} is part of the audit trail and cannot be modified.')


@event.listens_for(RawPlatformRow, 'before_delete')
def _reject_raw_row_delete(mapper, connection, target):
    raise ImmutableRecordError(f'Raw platform row {target.id} is part of the audit trail and cannot be deleted.')


@event.listens_for(DriverPayment, 'before_update')
def _reject_payment_update(mapper, connection, target):
    raise ImmutableRecordError(f'Payment {target.id} is immutable; revert it and generate a new one instead.')
