"""Trip and weekly-sheet lifecycle built around the payout engine."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import (
    WEEK_DAY_CODES,
    Bill,
    BillLineItem,
    BillType,
    CrewCredit,
    CrewMember,
    CrewRole,
    Expense,
    ExpenseStatus,
    FishPurchase,
    FishType,
    FishTypeRate,
    PaymentStatus,
    Trip,
    TripAssignment,
    TripStatus,
    User,
    Vessel,
    WeeklyExpense,
    WeeklyExpenseStatus,
    WeeklyPayout,
    WeeklySheet,
    WeeklySheetStatus,
)

from .trip_calculator import TripBreakdown, apply_trip_totals, calculate_trip
from .weekly_payouts import (
    WeeklyBreakdown,
    apply_weekly_totals,
    calculate_week,
    closed_trips_in_week,
    upsert_weekly_payouts,
)

DAYS_PER_SHEET = len(WEEK_DAY_CODES)
SATURDAY = 5

DEFAULT_FISH_TYPES = (
    ("Damaged Fish", Decimal("8.00")),
    ("Proper Fish", Decimal("16.00")),
    ("Quality Fish", Decimal("17.00")),
    ("Other", Decimal("10.00")),
)


class SettlementError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _user_id(user: Optional[User]) -> Optional[int]:
    return user.id if user is not None else None


@contextmanager
def _transaction(action: str):
    """Commit once at the end; undo every change if anything fails."""

    try:
        yield
        db.session.commit()
    except SettlementError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s failed; changes rolled back", action)
        raise


# --- reference data -------------------------------------------------------


def create_crew_member(data: Dict[str, Any], user: Optional[User] = None) -> CrewMember:
    id_card_no = data.get("id_card_no")
    if id_card_no and CrewMember.query.filter_by(id_card_no=id_card_no).first():
        raise SettlementError("A crew member with this ID card number already exists.", 422)

    member = CrewMember(created_by_id=_user_id(user), **data)
    with _transaction("create crew member"):
        db.session.add(member)
    return member


def update_crew_member(member: CrewMember, data: Dict[str, Any]) -> CrewMember:
    id_card_no = data.get("id_card_no")
    if id_card_no:
        clash = CrewMember.query.filter(
            CrewMember.id_card_no == id_card_no, CrewMember.id != member.id
        ).first()
        if clash:
            raise SettlementError("A crew member with this ID card number already exists.", 422)

    with _transaction("update crew member"):
        for key, value in data.items():
            setattr(member, key, value)
    return member


def create_vessel(data: Dict[str, Any], user: Optional[User] = None) -> Vessel:
    registration_no = data.get("registration_no")
    if registration_no and Vessel.query.filter_by(registration_no=registration_no).first():
        raise SettlementError("A vessel with this registration number already exists.", 422)

    vessel = Vessel(created_by_id=_user_id(user), **data)
    with _transaction("create vessel"):
        db.session.add(vessel)
    return vessel


def update_vessel(vessel: Vessel, data: Dict[str, Any]) -> Vessel:
    registration_no = data.get("registration_no")
    if registration_no:
        clash = Vessel.query.filter(
            Vessel.registration_no == registration_no, Vessel.id != vessel.id
        ).first()
        if clash:
            raise SettlementError("A vessel with this registration number already exists.", 422)

    with _transaction("update vessel"):
        for key, value in data.items():
            setattr(vessel, key, value)
    return vessel


def delete_vessel(vessel: Vessel) -> None:
    has_history = (
        Trip.query.filter_by(vessel_id=vessel.id).first() is not None
        or WeeklySheet.query.filter_by(vessel_id=vessel.id).first() is not None
    )
    if has_history:
        raise SettlementError(
            "Cannot delete vessel with trip history. Consider marking as inactive instead.", 422
        )

    with _transaction("delete vessel"):
        db.session.delete(vessel)


def next_week_start(vessel: Vessel, now: Optional[datetime] = None) -> date:
    """Suggest the first day of the vessel's next settlement week.

    After an existing sheet this is the first Saturday past its end date.
    Otherwise the coming Saturday, or today when it is Saturday morning.
    """

    latest = (
        WeeklySheet.query.filter_by(vessel_id=vessel.id)
        .order_by(WeeklySheet.week_start.desc())
        .first()
    )
    if latest is not None:
        day_after = latest.week_end + timedelta(days=1)
        return day_after + timedelta(days=(SATURDAY - day_after.weekday()) % 7)

    now = now or datetime.now()
    if now.weekday() == SATURDAY and now.hour < 12:
        return now.date()
    days_ahead = (SATURDAY - now.weekday()) % 7 or 7
    return now.date() + timedelta(days=days_ahead)


def create_fish_type(data: Dict[str, Any], user: Optional[User] = None) -> FishType:
    if FishType.query.filter_by(name=data["name"]).first():
        raise SettlementError("A fish type with this name already exists.", 422)

    fish_type = FishType(created_by_id=_user_id(user), **data)
    with _transaction("create fish type"):
        db.session.add(fish_type)
    return fish_type


def update_fish_type(
    fish_type: FishType, data: Dict[str, Any], today: Optional[date] = None
) -> FishType:
    """Apply edits; a changed default rate also opens a new dated rate."""

    name = data.get("name")
    if name:
        clash = FishType.query.filter(FishType.name == name, FishType.id != fish_type.id).first()
        if clash:
            raise SettlementError("A fish type with this name already exists.", 422)

    new_rate = data.get("default_rate_per_kilo")
    rate_changed = new_rate is not None and Decimal(new_rate) != Decimal(
        fish_type.default_rate_per_kilo or 0
    )
    with _transaction("update fish type"):
        for key, value in data.items():
            setattr(fish_type, key, value)
        if rate_changed:
            fish_type.rates.append(
                FishTypeRate(
                    rate_per_kilo=new_rate,
                    rate_effective_from=today or date.today(),
                    is_active=True,
                )
            )
    return fish_type


def delete_fish_type(fish_type: FishType) -> None:
    in_use = (
        FishPurchase.query.filter_by(fish_type_id=fish_type.id).first() is not None
        or BillLineItem.query.filter_by(fish_type_id=fish_type.id).first() is not None
    )
    if in_use:
        raise SettlementError("Cannot delete fish type with transaction history.", 422)

    with _transaction("delete fish type"):
        db.session.delete(fish_type)


def add_fish_type_rate(fish_type: FishType, data: Dict[str, Any]) -> FishTypeRate:
    starts = data.get("rate_effective_from")
    ends = data.get("rate_effective_to")
    if starts and ends and ends < starts:
        raise SettlementError("Rate end date cannot be before its start date.", 422)

    rate = FishTypeRate(fish_type=fish_type, **data)
    with _transaction("add fish type rate"):
        db.session.add(rate)
    return rate


def seed_fish_types() -> int:
    """Ensure the standard fish types exist; return how many were added."""

    added = 0
    for name, rate in DEFAULT_FISH_TYPES:
        exists = (
            FishType.query.filter(func.lower(FishType.name) == name.lower())
            .with_entities(FishType.id)
            .first()
        )
        if not exists:
            db.session.add(FishType(name=name, default_rate_per_kilo=rate, is_active=True))
            added += 1

    db.session.commit()
    return added


# --- trips ----------------------------------------------------------------


def calculate_trip_breakdown(trip: Trip) -> TripBreakdown:
    return calculate_trip(trip)


def _recalculate(trip: Trip) -> TripBreakdown:
    breakdown = calculate_trip(trip)
    apply_trip_totals(trip, breakdown)
    return breakdown


def _require_editable(trip: Trip) -> None:
    if not trip.is_editable():
        raise SettlementError("Trip is not editable.", 422)


def create_trip(data: Dict[str, Any], user: Optional[User] = None) -> Trip:
    vessel = db.session.get(Vessel, data["vessel_id"])
    if vessel is None:
        raise SettlementError("Vessel not found", 404)

    trip = Trip(
        vessel_id=vessel.id,
        date=data["date"],
        day_of_week=data.get("day_of_week"),
        is_fishing_day=data.get("is_fishing_day", True),
        notes=data.get("notes"),
        status=TripStatus.DRAFT,
        created_by_id=_user_id(user),
    )
    with _transaction("create trip"):
        db.session.add(trip)
    return trip


def update_trip(trip: Trip, data: Dict[str, Any]) -> Trip:
    with _transaction("update trip"):
        for key in ("date", "day_of_week", "is_fishing_day", "notes"):
            if key in data:
                setattr(trip, key, data[key])
        if trip.status in {TripStatus.ONGOING, TripStatus.CLOSED}:
            _recalculate(trip)
    return trip


def delete_trip(trip: Trip) -> None:
    if trip.is_closed():
        raise SettlementError("Cannot delete closed trips.", 422)
    with _transaction("delete trip"):
        db.session.delete(trip)


def assign_crew(trip: Trip, assignments: Iterable[Dict[str, Any]], user: Optional[User] = None) -> Trip:
    """Replace the trip's crew with ``assignments``."""

    _require_editable(trip)
    assignments = list(assignments)

    seen = set()
    for entry in assignments:
        role = CrewRole.coerce(entry["role"])
        key = (entry["crew_member_id"], role)
        if key in seen:
            raise SettlementError("A crew member cannot hold the same role twice on one trip.", 400)
        seen.add(key)
        if db.session.get(CrewMember, entry["crew_member_id"]) is None:
            raise SettlementError("Crew member not found", 404)

    with _transaction("assign crew"):
        for existing in list(trip.assignments):
            trip.assignments.remove(existing)
        db.session.flush()
        for entry in assignments:
            helper_ratio = entry.get("helper_ratio")
            trip.assignments.append(
                TripAssignment(
                    crew_member_id=entry["crew_member_id"],
                    role=CrewRole.coerce(entry["role"]),
                    helper_ratio=Decimal("1.0") if helper_ratio is None else helper_ratio,
                    created_by_id=_user_id(user),
                )
            )
    return trip


def _require_fish_types(fish_type_ids: Iterable[int]) -> None:
    for fish_type_id in set(fish_type_ids):
        if db.session.get(FishType, fish_type_id) is None:
            raise SettlementError("Fish type not found", 404)


def add_bills(trip: Trip, bills: Iterable[Dict[str, Any]], user: Optional[User] = None) -> Trip:
    _require_editable(trip)
    bills = list(bills)
    _require_fish_types(
        item["fish_type_id"] for data in bills for item in data.get("line_items") or []
    )
    with _transaction("add bills"):
        for data in bills:
            data = dict(data)
            line_items = data.pop("line_items", None) or []
            bill = Bill(
                bill_type=BillType(data.pop("bill_type")),
                payment_status=PaymentStatus(data.pop("payment_status", PaymentStatus.UNPAID.value)),
                created_by_id=_user_id(user),
                **data,
            )
            for item in line_items:
                line = BillLineItem(**item)
                line.recalculate_total()
                bill.line_items.append(line)
            trip.bills.append(bill)
    return trip


def add_purchases(trip: Trip, purchases: Iterable[Dict[str, Any]], user: Optional[User] = None) -> Trip:
    _require_editable(trip)
    purchases = list(purchases)
    _require_fish_types(data["fish_type_id"] for data in purchases)
    with _transaction("add fish purchases"):
        for data in purchases:
            data = dict(data)
            if data.get("amount") is None:
                data["amount"] = data["kilos"] * data["rate_per_kilo"]
            trip.fish_purchases.append(FishPurchase(created_by_id=_user_id(user), **data))
    return trip


def add_expenses(trip: Trip, expenses: Iterable[Dict[str, Any]], user: Optional[User] = None) -> Trip:
    _require_editable(trip)
    with _transaction("add expenses"):
        for data in expenses:
            trip.expenses.append(
                Expense(status=ExpenseStatus.PENDING, created_by_id=_user_id(user), **data)
            )
    return trip


def set_expense_status(expense: Expense, status: ExpenseStatus, user: Optional[User] = None) -> Expense:
    if status == ExpenseStatus.PENDING:
        raise SettlementError("Expenses can only be approved or rejected.", 400)

    with _transaction("review expense"):
        expense.status = status
        expense.approved_by_id = _user_id(user)
        expense.approved_at = datetime.utcnow()
        trip = expense.trip
        if trip.status in {TripStatus.ONGOING, TripStatus.CLOSED}:
            _recalculate(trip)
    return expense


def finalize_trip(trip: Trip) -> Trip:
    if not trip.assignments:
        raise SettlementError("Cannot finalize trip without crew assignments.", 422)
    with _transaction("finalize trip"):
        _recalculate(trip)
        trip.status = TripStatus.ONGOING
    return trip


def close_trip(trip: Trip) -> Trip:
    if trip.is_closed():
        raise SettlementError("Trip is already closed.", 422)
    with _transaction("close trip"):
        breakdown = _recalculate(trip)
        trip.status = TripStatus.CLOSED
        trip.closed_at = datetime.utcnow()
    current_app.logger.info(
        "Trip %s closed: total_sales=%s crew_share=%s",
        trip.id,
        breakdown.revenue["total_sales"],
        breakdown.distribution["crew_share"],
    )
    return trip


def reopen_trip(trip: Trip) -> Trip:
    if not trip.is_closed():
        raise SettlementError("Only closed trips can be reopened.", 422)
    with _transaction("reopen trip"):
        trip.status = TripStatus.ONGOING
        trip.closed_at = None
    return trip


# --- weekly sheets --------------------------------------------------------


def _sheets_overlapping(vessel_id: int, week_start: date, week_end: date) -> bool:
    return (
        WeeklySheet.query.filter(
            WeeklySheet.vessel_id == vessel_id,
            WeeklySheet.week_start <= week_end,
            WeeklySheet.week_end >= week_start,
        ).first()
        is not None
    )


def create_weekly_sheet(data: Dict[str, Any], user: Optional[User] = None) -> WeeklySheet:
    """Open a settlement week for a vessel and pre-create its six trip days."""

    vessel = db.session.get(Vessel, data["vessel_id"])
    if vessel is None:
        raise SettlementError("Vessel not found", 404)

    week_start = data["week_start"]
    week_end = data.get("week_end") or week_start + timedelta(days=DAYS_PER_SHEET - 1)
    if week_end < week_start:
        raise SettlementError("week_end cannot be before week_start.", 422)

    active = WeeklySheet.query.filter(
        WeeklySheet.vessel_id == vessel.id,
        WeeklySheet.status.in_([WeeklySheetStatus.DRAFT, WeeklySheetStatus.READY_FOR_APPROVAL]),
    ).first()
    if active is not None:
        raise SettlementError(
            "This vessel already has an active weekly sheet in DRAFT or READY_FOR_APPROVAL status.",
            422,
        )
    if _sheets_overlapping(vessel.id, week_start, week_end):
        raise SettlementError("Date range overlaps with an existing weekly sheet for this vessel.", 422)

    sheet = WeeklySheet(
        vessel_id=vessel.id,
        week_start=week_start,
        week_end=week_end,
        label=data.get("label"),
        description=data.get("description"),
        status=WeeklySheetStatus.DRAFT,
        created_by_id=_user_id(user),
    )
    with _transaction("create weekly sheet"):
        db.session.add(sheet)
        for offset, day_code in enumerate(WEEK_DAY_CODES):
            sheet.trips.append(
                Trip(
                    vessel_id=vessel.id,
                    date=week_start + timedelta(days=offset),
                    day_of_week=day_code,
                    is_fishing_day=True,
                    status=TripStatus.DRAFT,
                    created_by_id=_user_id(user),
                )
            )
    return sheet


def _trip_is_blank(trip: Trip) -> bool:
    return trip.status == TripStatus.DRAFT and not (
        trip.bills or trip.fish_purchases or trip.expenses or trip.assignments
    )


def update_weekly_sheet(sheet: WeeklySheet, data: Dict[str, Any]) -> WeeklySheet:
    """Edit the sheet's label and description; dates and totals stay fixed."""

    with _transaction("update weekly sheet"):
        for key in ("label", "description"):
            if key in data:
                setattr(sheet, key, data[key])
    return sheet


def delete_weekly_sheet(sheet: WeeklySheet) -> None:
    if sheet.is_finalized():
        raise SettlementError("Cannot delete finalized weekly sheets.", 422)
    with _transaction("delete weekly sheet"):
        for trip in list(sheet.trips):
            if _trip_is_blank(trip):
                db.session.delete(trip)
            else:
                trip.weekly_sheet = None
        db.session.delete(sheet)


def add_weekly_expenses(
    sheet: WeeklySheet, expenses: Iterable[Dict[str, Any]], user: Optional[User] = None
) -> WeeklySheet:
    if sheet.is_finalized():
        raise SettlementError("Cannot add expenses to finalized weekly sheet.", 422)
    with _transaction("add weekly expenses"):
        for data in expenses:
            data = dict(data)
            status = WeeklyExpenseStatus(data.pop("status", WeeklyExpenseStatus.PENDING.value))
            sheet.weekly_expenses.append(
                WeeklyExpense(status=status, created_by_id=_user_id(user), **data)
            )
    return sheet


def set_weekly_expense_status(expense: WeeklyExpense, status: WeeklyExpenseStatus) -> WeeklyExpense:
    if expense.weekly_sheet.is_finalized():
        raise SettlementError("Cannot change expenses on a finalized weekly sheet.", 422)
    with _transaction("review weekly expense"):
        expense.status = status
    return expense


def add_crew_credits(
    sheet: WeeklySheet, credits: Iterable[Dict[str, Any]], user: Optional[User] = None
) -> WeeklySheet:
    if sheet.is_finalized():
        raise SettlementError("Cannot add credits to finalized weekly sheet.", 422)
    credits = list(credits)
    for data in credits:
        if db.session.get(CrewMember, data["crew_member_id"]) is None:
            raise SettlementError("Crew member not found", 404)
    with _transaction("add crew credits"):
        for data in credits:
            sheet.crew_credits.append(CrewCredit(created_by_id=_user_id(user), **data))
    return sheet


def calculate_weekly_sheet(sheet: WeeklySheet) -> WeeklyBreakdown:
    return calculate_week(sheet)


def finalize_weekly_sheet(sheet: WeeklySheet) -> WeeklyBreakdown:
    """Freeze the week: store totals and write one payout per crew member."""

    with _transaction("finalize weekly sheet"):
        locked = (
            WeeklySheet.query.filter_by(id=sheet.id).with_for_update().populate_existing().one()
        )
        if locked.is_finalized():
            raise SettlementError("Weekly sheet is already finalized.", 422)

        trips = closed_trips_in_week(locked)
        breakdown = calculate_week(locked, trips)
        apply_weekly_totals(locked, breakdown)
        upsert_weekly_payouts(locked, breakdown)
        locked.status = WeeklySheetStatus.FINALIZED
        locked.processed_at = datetime.utcnow()

    current_app.logger.info(
        "Weekly sheet %s finalized: %d closed trips, %d payouts, crew_share=%s",
        sheet.id,
        len(trips),
        len(breakdown.payouts),
        breakdown.distribution["crew_share"],
    )
    return breakdown


def reopen_weekly_sheet(sheet: WeeklySheet) -> WeeklySheet:
    if sheet.status != WeeklySheetStatus.FINALIZED:
        raise SettlementError("Only finalized weekly sheets can be reopened.", 422)
    with _transaction("reopen weekly sheet"):
        removed = WeeklyPayout.query.filter_by(weekly_sheet_id=sheet.id).delete(
            synchronize_session="fetch"
        )
        sheet.reset_totals()
        sheet.status = WeeklySheetStatus.DRAFT
        sheet.processed_at = None
    current_app.logger.info("Weekly sheet %s reopened; %d payouts removed", sheet.id, removed)
    return sheet


def mark_payout_paid(payout: WeeklyPayout, payment_reference: Optional[str] = None) -> WeeklyPayout:
    sheet = payout.weekly_sheet
    if sheet.status != WeeklySheetStatus.FINALIZED:
        raise SettlementError("Payouts can only be paid on a finalized weekly sheet.", 422)
    if payout.is_paid:
        raise SettlementError("Payout is already paid.", 422)

    with _transaction("mark payout paid"):
        payout.is_paid = True
        payout.paid_at = datetime.utcnow()
        payout.payment_reference = payment_reference
        if all(record.is_paid for record in sheet.weekly_payouts):
            sheet.status = WeeklySheetStatus.PAID
    return payout


def list_trips(
    status: Optional[TripStatus] = None,
    vessel_id: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> List[Trip]:
    query = Trip.query
    if status is not None:
        query = query.filter(Trip.status == status)
    if vessel_id is not None:
        query = query.filter(Trip.vessel_id == vessel_id)
    if from_date is not None and to_date is not None:
        query = query.filter(Trip.date >= from_date, Trip.date <= to_date)
    return query.order_by(Trip.date.desc(), Trip.id.desc()).all()
