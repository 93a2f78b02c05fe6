"""Weekly settlement: trip roll-up, credit netting and payout records."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from extensions import db
from models import Trip, TripStatus, WeeklyExpenseStatus, WeeklyPayout

from .trip_calculator import ZERO, _decimal_or_zero, _quantize, calculate_trip

REVENUE_FIELDS = (
    "today_sales",
    "previous_day_sales",
    "bill_total",
    "purchase_total",
    "crew_kilos",
    "crew_kilos_value",
    "total_sales",
)
EXPENSE_FIELDS = ("approved", "pending", "weekly_share", "total")
DISTRIBUTION_FIELDS = ("balance", "vessel_maintenance", "net_total", "owner_share", "crew_share")


@dataclass
class MemberWeeklyPayout:
    crew_member_id: Any
    crew_member_name: str
    base_amount: Decimal
    credit_deduction: Decimal
    final_amount: Decimal
    trips_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "crew_member_id": self.crew_member_id,
            "crew_member_name": self.crew_member_name,
            "base_amount": self.base_amount,
            "credit_deduction": self.credit_deduction,
            "final_amount": self.final_amount,
            "trips_count": self.trips_count,
        }


@dataclass
class WeeklyBreakdown:
    fishing_days: int
    weekly_expense_total: Decimal
    weekly_expense_per_day: Decimal
    revenue: Dict[str, Decimal]
    expenses: Dict[str, Decimal]
    distribution: Dict[str, Decimal]
    payouts: List[MemberWeeklyPayout] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "fishing_days": self.fishing_days,
                "weekly_expense_total": self.weekly_expense_total,
                "weekly_expense_per_day": self.weekly_expense_per_day,
            },
            "revenue": dict(self.revenue),
            "expenses": dict(self.expenses),
            "distribution": dict(self.distribution),
            "payouts": [payout.as_dict() for payout in self.payouts],
        }


@dataclass
class _MemberAggregate:
    name: str
    total_amount: Decimal = ZERO
    trips_count: int = 0


def closed_trips_in_week(weekly_sheet) -> List[Trip]:
    """Closed trips dated inside the sheet's inclusive week window."""

    return (
        Trip.query.filter(
            Trip.status == TripStatus.CLOSED,
            Trip.date >= weekly_sheet.week_start,
            Trip.date <= weekly_sheet.week_end,
        )
        .order_by(Trip.date.asc(), Trip.id.asc())
        .all()
    )


def _zeroed(keys: Iterable[str]) -> Dict[str, Decimal]:
    return {key: ZERO for key in keys}


def _credit_totals(credits) -> Dict[Any, Decimal]:
    totals: Dict[Any, Decimal] = {}
    for credit in credits or []:
        totals[credit.crew_member_id] = totals.get(credit.crew_member_id, ZERO) + _decimal_or_zero(
            credit.amount
        )
    return totals


def calculate_week(
    weekly_sheet,
    trips: Optional[Iterable] = None,
    *,
    proper_fish_rate: Optional[Decimal] = None,
) -> WeeklyBreakdown:
    """Aggregate every closed trip of the week and net out crew credits.

    Per-trip values are summed after each trip has rounded them, so the
    weekly totals can drift by a cent from a single end-of-week rounding.
    When the week has no trips the whole approved weekly expense is reported
    as the per-day share even though no trip absorbs it.
    """

    trips = list(closed_trips_in_week(weekly_sheet) if trips is None else trips)

    weekly_expense_amount = sum(
        (
            _decimal_or_zero(expense.amount)
            for expense in weekly_sheet.weekly_expenses or []
            if expense.status == WeeklyExpenseStatus.APPROVED
        ),
        ZERO,
    )
    fishing_day_count = len(trips) or 1
    weekly_expense_share = weekly_expense_amount / fishing_day_count

    revenue = _zeroed(REVENUE_FIELDS)
    expenses = _zeroed(EXPENSE_FIELDS)
    distribution = _zeroed(DISTRIBUTION_FIELDS)
    members: Dict[Any, _MemberAggregate] = {}

    for trip in trips:
        breakdown = calculate_trip(trip, weekly_expense_share, proper_fish_rate=proper_fish_rate)

        for key in REVENUE_FIELDS:
            revenue[key] += breakdown.revenue[key]
        for key in EXPENSE_FIELDS:
            expenses[key] += breakdown.expenses[key]
        for key in DISTRIBUTION_FIELDS:
            distribution[key] += breakdown.distribution[key]

        for share in breakdown.member_payouts:
            aggregate = members.get(share.crew_member_id)
            if aggregate is None:
                aggregate = _MemberAggregate(name=share.crew_member_name)
                members[share.crew_member_id] = aggregate
            aggregate.total_amount += share.total_amount
            aggregate.trips_count += 1

    credits = _credit_totals(weekly_sheet.crew_credits)
    payouts = []
    # Everyone present on a closed trip is listed, zero totals included.
    for member_id, aggregate in members.items():
        credit_deduction = credits.get(member_id, ZERO)
        final_amount = max(ZERO, aggregate.total_amount - credit_deduction)
        payouts.append(
            MemberWeeklyPayout(
                crew_member_id=member_id,
                crew_member_name=aggregate.name,
                base_amount=_quantize(aggregate.total_amount),
                credit_deduction=_quantize(credit_deduction),
                final_amount=_quantize(final_amount),
                trips_count=aggregate.trips_count,
            )
        )
    payouts.sort(key=lambda payout: payout.crew_member_name)

    return WeeklyBreakdown(
        fishing_days=len(trips),
        weekly_expense_total=_quantize(weekly_expense_amount),
        weekly_expense_per_day=_quantize(weekly_expense_share),
        revenue={key: _quantize(value) for key, value in revenue.items()},
        expenses={key: _quantize(value) for key, value in expenses.items()},
        distribution={key: _quantize(value) for key, value in distribution.items()},
        payouts=payouts,
    )


def apply_weekly_totals(weekly_sheet, breakdown: WeeklyBreakdown) -> None:
    weekly_sheet.total_sales = breakdown.revenue["total_sales"]
    weekly_sheet.total_expenses = breakdown.expenses["total"]
    weekly_sheet.owner_share = breakdown.distribution["owner_share"]
    weekly_sheet.crew_share = breakdown.distribution["crew_share"]
    weekly_sheet.total_weekly_payout = breakdown.distribution["crew_share"]


def upsert_weekly_payouts(weekly_sheet, breakdown: WeeklyBreakdown) -> List[WeeklyPayout]:
    """Create or update one payout row per crew member of the sheet.

    Rows are keyed on (sheet, crew member) so running this twice leaves the
    same set of records. The caller owns the transaction.
    """

    existing = {
        payout.crew_member_id: payout
        for payout in WeeklyPayout.query.filter_by(weekly_sheet_id=weekly_sheet.id).all()
    }
    records = []
    for data in breakdown.payouts:
        payout = existing.get(data.crew_member_id)
        if payout is None:
            payout = WeeklyPayout(
                weekly_sheet_id=weekly_sheet.id,
                crew_member_id=data.crew_member_id,
                created_by_id=weekly_sheet.created_by_id,
            )
            db.session.add(payout)
            existing[data.crew_member_id] = payout
        payout.base_amount = data.base_amount
        payout.credit_deduction = data.credit_deduction
        payout.final_amount = data.final_amount
        records.append(payout)
    db.session.flush()
    return records
