"""Financial breakdown of a single fishing trip.

The calculation mirrors how the office settles a day at sea: fish sales and
purchases plus the notional value of the crew's baseline catch, less approved
expenses and the trip's slice of weekly costs. What is left goes 10% to vessel
maintenance, then one third to the owner and two thirds to the crew, split by
role weight.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context

from models import BillType, CrewRole, ExpenseStatus, FishType

CURRENCY_QUANT = Decimal("0.01")
ZERO = Decimal("0")

VESSEL_MAINTENANCE_RATE = Decimal("0.10")
OWNER_SHARE_PARTS = Decimal("1")
CREW_SHARE_PARTS = Decimal("2")
TOTAL_SHARE_PARTS = OWNER_SHARE_PARTS + CREW_SHARE_PARTS

PROPER_FISH_NAME = "Proper Fish"
PROPER_FISH_FALLBACK_RATE = Decimal("16.00")


def _quantize(value: Decimal, quant: Decimal = CURRENCY_QUANT) -> Decimal:
    return value.quantize(quant, rounding=ROUND_HALF_UP)


def _decimal_or_zero(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    text = str(value).strip()
    if not text:
        return ZERO
    return Decimal(text)


@dataclass
class CrewMemberShare:
    crew_member_id: Any
    crew_member_name: str
    total_weight: Decimal
    roles: List[Dict[str, Any]]
    total_amount: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return {
            "crew_member_id": self.crew_member_id,
            "crew_member_name": self.crew_member_name,
            "total_weight": self.total_weight,
            "roles": [dict(role) for role in self.roles],
            "total_amount": self.total_amount,
        }


@dataclass
class TripBreakdown:
    revenue: Dict[str, Decimal]
    expenses: Dict[str, Decimal]
    distribution: Dict[str, Decimal]
    total_weight_units: Decimal = ZERO
    per_unit_value: Decimal = ZERO
    member_payouts: List[CrewMemberShare] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "revenue": dict(self.revenue),
            "expenses": dict(self.expenses),
            "distribution": dict(self.distribution),
            "crew": {
                "total_weight_units": self.total_weight_units,
                "per_unit_value": self.per_unit_value,
                "member_payouts": [share.as_dict() for share in self.member_payouts],
            },
        }


@dataclass
class _MemberWeight:
    name: str
    total_weight: Decimal = ZERO
    roles: List[Dict[str, Any]] = field(default_factory=list)


def resolve_proper_fish_rate(on_date: Optional[date]) -> Decimal:
    """Rate of the configured "Proper Fish" type on ``on_date``."""

    name = PROPER_FISH_NAME
    fallback = PROPER_FISH_FALLBACK_RATE
    if has_app_context():
        name = current_app.config.get("PROPER_FISH_NAME", name)
        fallback = _decimal_or_zero(current_app.config.get("PROPER_FISH_FALLBACK_RATE", fallback))

    fish_type = FishType.query.filter_by(name=name).first()
    if fish_type is None:
        if has_app_context():
            current_app.logger.warning(
                "Fish type %r not found; valuing crew kilos at fallback rate %s", name, fallback
            )
        return fallback
    return fish_type.current_rate(on_date)


def _sum_amounts(records, predicate=None) -> Decimal:
    total = ZERO
    for record in records or []:
        if predicate is not None and not predicate(record):
            continue
        total += _decimal_or_zero(record.amount)
    return total


def _crew_payouts(assignments, crew_share: Decimal):
    members: Dict[Any, _MemberWeight] = {}
    total_weight_units = ZERO

    for assignment in assignments or []:
        weight = CrewRole.weight_for(assignment.role, assignment.helper_ratio)
        member_id = assignment.crew_member_id
        entry = members.get(member_id)
        if entry is None:
            crew_member = getattr(assignment, "crew_member", None)
            entry = _MemberWeight(name=getattr(crew_member, "name", None) or "")
            members[member_id] = entry

        role = CrewRole.coerce(assignment.role)
        entry.total_weight += weight
        entry.roles.append(
            {
                "role": role.value if role is not None else str(assignment.role),
                "weight": weight,
            }
        )
        total_weight_units += weight

    per_unit_value = crew_share / total_weight_units if total_weight_units > 0 else ZERO

    shares = [
        CrewMemberShare(
            crew_member_id=member_id,
            crew_member_name=entry.name,
            total_weight=_quantize(entry.total_weight),
            roles=entry.roles,
            total_amount=_quantize(entry.total_weight * per_unit_value),
        )
        for member_id, entry in members.items()
    ]
    return total_weight_units, per_unit_value, shares


def calculate_trip(
    trip,
    weekly_expense_share: object = ZERO,
    *,
    proper_fish_rate: Optional[Decimal] = None,
) -> TripBreakdown:
    """Compute the full financial breakdown for ``trip``.

    ``weekly_expense_share`` is the trip's portion of the week's approved
    expenses. ``proper_fish_rate`` overrides the rate lookup; when omitted the
    rate in force on the trip date is read from the fish type table.
    Subtotals are rounded for display only; the unrounded values feed every
    later step.
    """

    weekly_expense_share = _decimal_or_zero(weekly_expense_share)

    today_sales = _sum_amounts(trip.bills, lambda bill: bill.bill_type == BillType.TODAY_SALES)
    previous_sales = _sum_amounts(
        trip.bills, lambda bill: bill.bill_type == BillType.PREVIOUS_DAY_SALES
    )
    bill_total = today_sales + previous_sales
    purchase_total = _sum_amounts(trip.fish_purchases)

    assignments = list(trip.assignments or [])
    crew_kilos = sum(
        (CrewRole.baseline_kilos_for(assignment.role) for assignment in assignments), ZERO
    )
    if proper_fish_rate is None:
        proper_fish_rate = resolve_proper_fish_rate(trip.date)
    crew_kilos_value = crew_kilos * _decimal_or_zero(proper_fish_rate)

    total_sales = bill_total + purchase_total + crew_kilos_value

    approved_expenses = _sum_amounts(
        trip.expenses, lambda expense: expense.status == ExpenseStatus.APPROVED
    )
    pending_expenses = _sum_amounts(
        trip.expenses, lambda expense: expense.status == ExpenseStatus.PENDING
    )
    total_expenses = approved_expenses + weekly_expense_share

    balance = total_sales - total_expenses
    vessel_maintenance = balance * VESSEL_MAINTENANCE_RATE
    net_total = balance - vessel_maintenance
    owner_share = net_total * OWNER_SHARE_PARTS / TOTAL_SHARE_PARTS
    crew_share = net_total * CREW_SHARE_PARTS / TOTAL_SHARE_PARTS

    total_weight_units, per_unit_value, member_payouts = _crew_payouts(assignments, crew_share)

    return TripBreakdown(
        revenue={
            "today_sales": _quantize(today_sales),
            "previous_day_sales": _quantize(previous_sales),
            "bill_total": _quantize(bill_total),
            "purchase_total": _quantize(purchase_total),
            "crew_kilos": _quantize(crew_kilos),
            "crew_kilos_value": _quantize(crew_kilos_value),
            "total_sales": _quantize(total_sales),
        },
        expenses={
            "approved": _quantize(approved_expenses),
            "pending": _quantize(pending_expenses),
            "weekly_share": _quantize(weekly_expense_share),
            "total": _quantize(total_expenses),
        },
        distribution={
            "balance": _quantize(balance),
            "vessel_maintenance": _quantize(vessel_maintenance),
            "net_total": _quantize(net_total),
            "owner_share": _quantize(owner_share),
            "crew_share": _quantize(crew_share),
        },
        total_weight_units=_quantize(total_weight_units),
        per_unit_value=_quantize(per_unit_value),
        member_payouts=member_payouts,
    )


def apply_trip_totals(trip, breakdown: TripBreakdown) -> None:
    """Copy the stored money columns from ``breakdown`` onto ``trip``."""

    trip.total_sales = breakdown.revenue["total_sales"]
    trip.balance = breakdown.distribution["balance"]
    trip.net_total = breakdown.distribution["net_total"]
    trip.owner_share = breakdown.distribution["owner_share"]
    trip.crew_share = breakdown.distribution["crew_share"]
