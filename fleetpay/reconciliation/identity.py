# ==============================================================================
# fleetpay/reconciliation/identity.py
# ------------------------------------------------------------------------------
# The driver roster handed to a reconciliation run, and the resolver that maps
# each platform's external identifier to a canonical driver.
# ==============================================================================

import logging
import re
from dataclasses import dataclass, field
from datetime import date

from .errors import PayloadError
from .financing import FinancingPlan
from .schema import UBER, BOLT, MYPRIO, VIAVERDE, CARTRACK
from .weeks import weeks_between

AFFILIATE = 'affiliate'
RENTER = 'renter'
DRIVER_TYPES = (AFFILIATE, RENTER)


def normalize_key(value):
    """Case-insensitive, trimmed identifier. Excel turns numeric ids into floats; undo that."""
    if value is None:
        return ''
    if isinstance(value, float):
        if value != value:  # NaN
            return ''
        if value.is_integer():
            value = int(value)
    return str(value).strip().lower()


def normalize_card(value):
    return re.sub(r'\s+', '', normalize_key(value))


def normalize_plate(value):
    if value is None:
        return ''
    return re.sub(r'[^A-Z0-9]', '', str(value).strip().upper())


@dataclass(frozen=True)
class AdminFeeExemption:
    """Admin fee waived for `weeks` weeks counted from the week containing start_date."""
    start_date: date
    weeks: int

    def covers(self, week):
        if self.weeks <= 0:
            return False
        elapsed = weeks_between(self.start_date, week.week_start)
        return 0 <= elapsed < self.weeks


@dataclass
class DriverProfile:
    driver_id: str
    name: str = ''
    driver_type: str = AFFILIATE
    rental_fee: float = 0.0
    uber_uuid: str = None
    bolt_id: str = None
    fuel_card_number: str = None
    toll_tag: str = None
    plate: str = None
    referrer_id: str = None
    financing: list = field(default_factory=list)
    admin_fee_exemption: AdminFeeExemption = None

    @property
    def is_renter(self):
        return self.driver_type == RENTER

    @classmethod
    def from_dict(cls, data):
        """Builds a profile from the directory's JSON (camelCase or snake_case keys)."""
        def pick(*names, default=None):
            for name in names:
                if name in data and data[name] not in (None, ''):
                    return data[name]
            return default

        driver_id = pick('id', 'driverId', 'driver_id')
        if not driver_id:
            raise PayloadError(f"Roster entry without an id: {data!r}")

        driver_type = pick('type', 'driverType', 'driver_type', default=AFFILIATE)
        if driver_type not in DRIVER_TYPES:
            raise PayloadError(f"Driver {driver_id} has unknown type '{driver_type}'.")

        exemption = None
        raw_exemption = pick('adminFeeExemption', 'admin_fee_exemption')
        if raw_exemption:
            start = raw_exemption.get('startDate') or raw_exemption.get('start_date')
            weeks = int(raw_exemption.get('weeks') or raw_exemption.get('exemptionWeeks') or 0)
            if start and weeks > 0:
                exemption = AdminFeeExemption(date.fromisoformat(str(start)[:10]), weeks)

        return cls(
            driver_id=str(driver_id),
            name=pick('name', 'fullName', 'driverName', default=''),
            driver_type=driver_type,
            rental_fee=float(pick('rentalFee', 'rental_fee', default=0) or 0),
            uber_uuid=pick('uberUuid', 'uber_uuid'),
            bolt_id=pick('boltId', 'bolt_id', 'boltEmail'),
            fuel_card_number=pick('fuelCardNumber', 'fuel_card_number', 'myprioCard'),
            toll_tag=pick('tollTag', 'toll_tag', 'viaverdeTag'),
            plate=pick('plate', 'vehiclePlate', 'vehicle_plate'),
            referrer_id=pick('referrerId', 'referrer_id', 'referredBy'),
            financing=[FinancingPlan.from_dict(f) for f in (pick('financing', default=[]) or [])],
            admin_fee_exemption=exemption,
        )


def load_roster(entries):
    """Parses roster dicts (or passes profiles through) into a dict keyed by driver id."""
    roster = {}
    for entry in entries:
        profile = entry if isinstance(entry, DriverProfile) else DriverProfile.from_dict(entry)
        if profile.driver_id in roster:
            raise PayloadError(f"Driver {profile.driver_id} appears twice in the roster.")
        roster[profile.driver_id] = profile
    return roster


class IdentityResolver:
    """
    Lookup tables built once per run from the active roster. Each platform has
    its own key (and, for fuel and tolls, a plate or tag fallback).
    """

    def __init__(self, roster):
        self.roster = roster
        self.by_uber = {}
        self.by_bolt = {}
        self.by_card = {}
        self.by_plate = {}
        self.by_tag = {}

        for driver in roster.values():
            self._index(self.by_uber, normalize_key(driver.uber_uuid), driver)
            self._index(self.by_bolt, normalize_key(driver.bolt_id), driver)
            self._index(self.by_card, normalize_card(driver.fuel_card_number), driver)
            self._index(self.by_plate, normalize_plate(driver.plate), driver)
            self._index(self.by_tag, normalize_key(driver.toll_tag), driver)

        logging.info(
            f"Identity maps built: {len(roster)} drivers, {len(self.by_uber)} Uber, {len(self.by_bolt)} Bolt, "
            f"{len(self.by_card)} fuel cards, {len(self.by_plate)} plates, {len(self.by_tag)} toll tags"
        )

    @staticmethod
    def _index(table, key, driver):
        if not key:
            return
        if key in table and table[key].driver_id != driver.driver_id:
            logging.warning(f"Identifier '{key}' is shared by drivers {table[key].driver_id} and {driver.driver_id}; keeping the first.")
            return
        table[key] = driver

    def resolve(self, platform, key=None, plate=None, tag=None):
        """Returns the matching DriverProfile, or None when the row belongs to nobody on the roster."""
        if platform == UBER:
            return self.by_uber.get(normalize_key(key))
        if platform == BOLT:
            return self.by_bolt.get(normalize_key(key))
        if platform == MYPRIO:
            return self.by_card.get(normalize_card(key)) or self.by_plate.get(normalize_plate(plate))
        if platform == VIAVERDE:
            return self.by_plate.get(normalize_plate(key)) or self.by_tag.get(normalize_key(tag))
        if platform == CARTRACK:
            return self.by_plate.get(normalize_plate(key))
        return None
