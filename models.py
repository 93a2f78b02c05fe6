from datetime import date as dt_date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import UniqueConstraint

from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _decimal(value, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class RoleEnum(str, Enum):
    owner = "OWNER"
    manager = "MANAGER"


class TripStatus(str, Enum):
    DRAFT = "DRAFT"
    ONGOING = "ONGOING"
    CLOSED = "CLOSED"


class BillType(str, Enum):
    TODAY_SALES = "TODAY_SALES"
    PREVIOUS_DAY_SALES = "PREVIOUS_DAY_SALES"
    OTHER = "OTHER"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"


class ExpenseStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class WeeklySheetStatus(str, Enum):
    DRAFT = "DRAFT"
    READY_FOR_APPROVAL = "READY_FOR_APPROVAL"
    FINALIZED = "FINALIZED"
    PAID = "PAID"


class WeeklyExpenseStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"


FULL_SHARE_WEIGHT = Decimal("1.0")
HALF_SHARE_WEIGHT = Decimal("0.5")
BASELINE_KILOS_PER_ASSIGNMENT = Decimal("4.0")
DEFAULT_HELPER_RATIO = Decimal("1.0")


class CrewRole(str, Enum):
    BAITING = "BAITING"
    FISHING = "FISHING"
    CHUMMER = "CHUMMER"
    DIVING = "DIVING"
    HELPER = "HELPER"
    SPECIAL = "SPECIAL"

    @classmethod
    def coerce(cls, value) -> "CrewRole | None":
        """Return the matching role, or ``None`` for values outside the enum."""

        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None

    @classmethod
    def weight_for(cls, role, helper_ratio=None) -> Decimal:
        """Payout weight units contributed by one assignment.

        Divers take a full share; every other role takes half a share, with
        SPECIAL scaled by its helper ratio. Unknown roles fall back to half.
        """

        resolved = cls.coerce(role)
        if resolved is cls.DIVING:
            return FULL_SHARE_WEIGHT
        if resolved is cls.SPECIAL:
            ratio = DEFAULT_HELPER_RATIO if helper_ratio is None else _decimal(helper_ratio)
            return HALF_SHARE_WEIGHT * ratio
        return HALF_SHARE_WEIGHT

    @classmethod
    def baseline_kilos_for(cls, role) -> Decimal:
        resolved = cls.coerce(role)
        if resolved in (cls.BAITING, cls.FISHING):
            return BASELINE_KILOS_PER_ASSIGNMENT
        return Decimal("0")


WEEK_DAY_CODES = ("SAT", "SUN", "MON", "TUE", "WED", "THU")


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.manager)
    active = db.Column(db.Boolean, default=True)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)


class CrewMember(db.Model):
    __tablename__ = "crew_members"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    local_name = db.Column(db.String(200))
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    phone = db.Column(db.String(60))
    id_card_no = db.Column(db.String(60), unique=True)
    bank_name = db.Column(db.String(200))
    bank_account_number = db.Column(db.String(120))
    bank_account_holder = db.Column(db.String(200))
    notes = db.Column(db.Text)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<CrewMember {self.name}>"


class Vessel(db.Model):
    __tablename__ = "vessels"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    registration_no = db.Column(db.String(100), unique=True)
    capacity = db.Column(db.Integer)
    home_island = db.Column(db.String(200))
    notes = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class FishType(db.Model):
    __tablename__ = "fish_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    default_rate_per_kilo = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    rates = db.relationship(
        "FishTypeRate",
        back_populates="fish_type",
        cascade="all, delete-orphan",
        order_by="FishTypeRate.id",
    )

    def current_rate(self, on_date: dt_date | None = None) -> Decimal:
        """Return the per-kilo rate in force on ``on_date``.

        Active rates whose window covers the date compete; the one with the
        latest ``rate_effective_from`` wins and open-ended starts rank last.
        Without a match the stored default applies.
        """

        on_date = on_date or dt_date.today()
        candidates = [rate for rate in self.rates if rate.is_effective_on(on_date)]
        if candidates:
            best = max(
                candidates,
                key=lambda rate: (
                    rate.rate_effective_from is not None,
                    rate.rate_effective_from or dt_date.min,
                ),
            )
            return _decimal(best.rate_per_kilo)
        return _decimal(self.default_rate_per_kilo)


class FishTypeRate(db.Model):
    __tablename__ = "fish_type_rates"

    id = db.Column(db.Integer, primary_key=True)
    fish_type_id = db.Column(
        db.Integer,
        db.ForeignKey("fish_types.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rate_per_kilo = db.Column(db.Numeric(14, 2), nullable=False)
    rate_effective_from = db.Column(db.Date)
    rate_effective_to = db.Column(db.Date)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    fish_type = db.relationship("FishType", back_populates="rates")

    def is_effective_on(self, on_date: dt_date) -> bool:
        if not self.is_active:
            return False
        if self.rate_effective_from is not None and self.rate_effective_from > on_date:
            return False
        if self.rate_effective_to is not None and self.rate_effective_to < on_date:
            return False
        return True


class WeeklySheet(db.Model):
    __tablename__ = "weekly_sheets"

    id = db.Column(db.Integer, primary_key=True)
    vessel_id = db.Column(db.Integer, db.ForeignKey("vessels.id"), nullable=False, index=True)
    week_start = db.Column(db.Date, nullable=False, index=True)
    week_end = db.Column(db.Date, nullable=False)
    label = db.Column(db.String(120))
    description = db.Column(db.Text)
    status = db.Column(
        db.Enum(
            WeeklySheetStatus,
            values_callable=_enum_values,
            name="weeklysheetstatus",
            validate_strings=True,
        ),
        nullable=False,
        default=WeeklySheetStatus.DRAFT,
    )
    total_sales = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_expenses = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    total_weekly_payout = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    owner_share = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    crew_share = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    processed_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    vessel = db.relationship("Vessel")
    trips = db.relationship("Trip", back_populates="weekly_sheet", order_by="Trip.date")
    weekly_expenses = db.relationship(
        "WeeklyExpense",
        back_populates="weekly_sheet",
        cascade="all, delete-orphan",
        order_by="WeeklyExpense.id",
    )
    crew_credits = db.relationship(
        "CrewCredit",
        back_populates="weekly_sheet",
        cascade="all, delete-orphan",
        order_by="CrewCredit.id",
    )
    weekly_payouts = db.relationship(
        "WeeklyPayout",
        back_populates="weekly_sheet",
        cascade="all, delete-orphan",
        order_by="WeeklyPayout.id",
    )

    def is_finalized(self) -> bool:
        return self.status in {WeeklySheetStatus.FINALIZED, WeeklySheetStatus.PAID}

    def is_editable(self) -> bool:
        return self.status in {WeeklySheetStatus.DRAFT, WeeklySheetStatus.READY_FOR_APPROVAL}

    def reset_totals(self) -> None:
        zero = Decimal("0.00")
        self.total_sales = zero
        self.total_expenses = zero
        self.total_weekly_payout = zero
        self.owner_share = zero
        self.crew_share = zero


class Trip(db.Model):
    __tablename__ = "trips"

    id = db.Column(db.Integer, primary_key=True)
    vessel_id = db.Column(db.Integer, db.ForeignKey("vessels.id"), nullable=False, index=True)
    weekly_sheet_id = db.Column(db.Integer, db.ForeignKey("weekly_sheets.id"), index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    day_of_week = db.Column(db.String(10))
    is_fishing_day = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(
        db.Enum(
            TripStatus,
            values_callable=_enum_values,
            name="tripstatus",
            validate_strings=True,
        ),
        nullable=False,
        default=TripStatus.DRAFT,
        index=True,
    )
    total_sales = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    net_total = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    owner_share = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    crew_share = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    notes = db.Column(db.Text)
    closed_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    vessel = db.relationship("Vessel")
    weekly_sheet = db.relationship("WeeklySheet", back_populates="trips")
    bills = db.relationship(
        "Bill", back_populates="trip", cascade="all, delete-orphan", order_by="Bill.id"
    )
    fish_purchases = db.relationship(
        "FishPurchase", back_populates="trip", cascade="all, delete-orphan", order_by="FishPurchase.id"
    )
    expenses = db.relationship(
        "Expense", back_populates="trip", cascade="all, delete-orphan", order_by="Expense.id"
    )
    assignments = db.relationship(
        "TripAssignment",
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="TripAssignment.id",
    )

    def is_closed(self) -> bool:
        return self.status == TripStatus.CLOSED

    def is_editable(self) -> bool:
        return self.status in {TripStatus.DRAFT, TripStatus.ONGOING}


class Bill(db.Model):
    __tablename__ = "bills"

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(
        db.Integer, db.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bill_type = db.Column(
        db.Enum(BillType, values_callable=_enum_values, name="billtype", validate_strings=True),
        nullable=False,
    )
    bill_no = db.Column(db.String(100), nullable=False)
    vendor = db.Column(db.String(255))
    description = db.Column(db.Text)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    bill_date = db.Column(db.Date, nullable=False)
    payment_status = db.Column(
        db.Enum(PaymentStatus, values_callable=_enum_values, name="paymentstatus", validate_strings=True),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    payment_method = db.Column(db.String(60))
    notes = db.Column(db.Text)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    trip = db.relationship("Trip", back_populates="bills")
    line_items = db.relationship(
        "BillLineItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillLineItem.id",
    )


class BillLineItem(db.Model):
    __tablename__ = "bill_line_items"

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(
        db.Integer, db.ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fish_type_id = db.Column(db.Integer, db.ForeignKey("fish_types.id"), nullable=False)
    quantity = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    price_per_kilo = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    bill = db.relationship("Bill", back_populates="line_items")
    fish_type = db.relationship("FishType")

    def recalculate_total(self) -> None:
        self.line_total = _decimal(self.quantity) * _decimal(self.price_per_kilo)


class FishPurchase(db.Model):
    __tablename__ = "fish_purchases"

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(
        db.Integer, db.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fish_type_id = db.Column(db.Integer, db.ForeignKey("fish_types.id"), nullable=False)
    kilos = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    rate_per_kilo = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    trip = db.relationship("Trip", back_populates="fish_purchases")
    fish_type = db.relationship("FishType")


class Expense(db.Model):
    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(
        db.Integer, db.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.String(500), nullable=False)
    type = db.Column(db.String(100))
    status = db.Column(
        db.Enum(ExpenseStatus, values_callable=_enum_values, name="expensestatus", validate_strings=True),
        nullable=False,
        default=ExpenseStatus.PENDING,
    )
    approved_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    approved_at = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    trip = db.relationship("Trip", back_populates="expenses")


class TripAssignment(db.Model):
    __tablename__ = "trip_assignments"
    __table_args__ = (
        UniqueConstraint("trip_id", "crew_member_id", "role", name="uq_trip_assignment_member_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    trip_id = db.Column(
        db.Integer, db.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True
    )
    crew_member_id = db.Column(db.Integer, db.ForeignKey("crew_members.id"), nullable=False, index=True)
    role = db.Column(
        db.Enum(CrewRole, values_callable=_enum_values, name="crewrole", validate_strings=True),
        nullable=False,
    )
    helper_ratio = db.Column(db.Numeric(4, 2), nullable=False, default=DEFAULT_HELPER_RATIO)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    trip = db.relationship("Trip", back_populates="assignments")
    crew_member = db.relationship("CrewMember")

    @property
    def weight(self) -> Decimal:
        return CrewRole.weight_for(self.role, self.helper_ratio)


class WeeklyExpense(db.Model):
    __tablename__ = "weekly_expenses"

    id = db.Column(db.Integer, primary_key=True)
    weekly_sheet_id = db.Column(
        db.Integer, db.ForeignKey("weekly_sheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category = db.Column(db.String(100))
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.String(500), nullable=False)
    status = db.Column(
        db.Enum(
            WeeklyExpenseStatus,
            values_callable=_enum_values,
            name="weeklyexpensestatus",
            validate_strings=True,
        ),
        nullable=False,
        default=WeeklyExpenseStatus.PENDING,
    )
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    weekly_sheet = db.relationship("WeeklySheet", back_populates="weekly_expenses")


class CrewCredit(db.Model):
    __tablename__ = "crew_credits"

    id = db.Column(db.Integer, primary_key=True)
    weekly_sheet_id = db.Column(
        db.Integer, db.ForeignKey("weekly_sheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    crew_member_id = db.Column(db.Integer, db.ForeignKey("crew_members.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    description = db.Column(db.String(500), nullable=False)
    credit_date = db.Column(db.Date)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    weekly_sheet = db.relationship("WeeklySheet", back_populates="crew_credits")
    crew_member = db.relationship("CrewMember")


class WeeklyPayout(db.Model):
    __tablename__ = "weekly_payouts"
    __table_args__ = (
        UniqueConstraint("weekly_sheet_id", "crew_member_id", name="uq_weekly_payout_sheet_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    weekly_sheet_id = db.Column(
        db.Integer, db.ForeignKey("weekly_sheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    crew_member_id = db.Column(db.Integer, db.ForeignKey("crew_members.id"), nullable=False, index=True)
    base_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    credit_deduction = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    final_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    is_paid = db.Column(db.Boolean, nullable=False, default=False, index=True)
    paid_at = db.Column(db.DateTime)
    payment_reference = db.Column(db.String(120))
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    weekly_sheet = db.relationship("WeeklySheet", back_populates="weekly_payouts")
    crew_member = db.relationship("CrewMember")
