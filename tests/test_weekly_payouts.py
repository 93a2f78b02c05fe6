from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from models import BillType, CrewRole, WeeklyExpenseStatus
from settlement.weekly_payouts import apply_weekly_totals, calculate_week

NO_RATE = Decimal("0")


def _trip(day, sales, crew=()):
    return SimpleNamespace(
        date=date(2025, 1, day),
        bills=[SimpleNamespace(amount=Decimal(str(sales)), bill_type=BillType.TODAY_SALES)],
        fish_purchases=[],
        expenses=[],
        assignments=[
            SimpleNamespace(
                crew_member_id=member_id,
                role=role,
                helper_ratio=None,
                crew_member=SimpleNamespace(name=name),
            )
            for member_id, name, role in crew
        ],
    )


def _sheet(expenses=(), credits=()):
    return SimpleNamespace(
        week_start=date(2025, 1, 4),
        week_end=date(2025, 1, 9),
        weekly_expenses=[
            SimpleNamespace(amount=Decimal(str(amount)), status=status) for amount, status in expenses
        ],
        crew_credits=[
            SimpleNamespace(crew_member_id=member_id, amount=Decimal(str(amount)))
            for member_id, amount in credits
        ],
    )


def test_credits_are_netted_from_weekly_payout():
    trips = [
        _trip(4, "500", [(1, "Ahmed", CrewRole.DIVING)]),
        _trip(5, "500", [(1, "Ahmed", CrewRole.DIVING)]),
    ]

    breakdown = calculate_week(_sheet(credits=[(1, "30")]), trips, proper_fish_rate=NO_RATE)

    assert breakdown.fishing_days == 2
    assert breakdown.distribution["crew_share"] == Decimal("600.00")
    [payout] = breakdown.payouts
    assert payout.base_amount == Decimal("600.00")
    assert payout.credit_deduction == Decimal("30.00")
    assert payout.final_amount == Decimal("570.00")
    assert payout.trips_count == 2


def test_final_amount_never_goes_below_zero():
    trips = [_trip(4, "100", [(1, "Ahmed", CrewRole.DIVING)])]

    breakdown = calculate_week(_sheet(credits=[(1, "500")]), trips, proper_fish_rate=NO_RATE)

    [payout] = breakdown.payouts
    assert payout.base_amount == Decimal("60.00")
    assert payout.credit_deduction == Decimal("500.00")
    assert payout.final_amount == Decimal("0.00")


def test_approved_weekly_expenses_are_spread_across_trips():
    trips = [_trip(4, "500"), _trip(5, "500")]
    sheet = _sheet(
        expenses=[
            ("70", WeeklyExpenseStatus.APPROVED),
            ("1000", WeeklyExpenseStatus.PENDING),
        ]
    )

    breakdown = calculate_week(sheet, trips, proper_fish_rate=NO_RATE)

    assert breakdown.weekly_expense_total == Decimal("70.00")
    assert breakdown.weekly_expense_per_day == Decimal("35.00")
    assert breakdown.expenses["weekly_share"] == Decimal("70.00")
    assert breakdown.distribution["balance"] == Decimal("930.00")


def test_week_without_trips_reports_expense_but_no_distribution():
    sheet = _sheet(expenses=[("70", WeeklyExpenseStatus.APPROVED)])

    breakdown = calculate_week(sheet, [], proper_fish_rate=NO_RATE)

    assert breakdown.fishing_days == 0
    assert breakdown.weekly_expense_per_day == Decimal("70.00")
    assert all(value == Decimal("0.00") for value in breakdown.distribution.values())
    assert breakdown.payouts == []


def test_payouts_are_sorted_by_name_regardless_of_trip_order():
    trips = [
        _trip(6, "300", [(3, "Zahir", CrewRole.FISHING)]),
        _trip(4, "300", [(2, "Moosa", CrewRole.DIVING), (1, "Ali", CrewRole.HELPER)]),
    ]

    breakdown = calculate_week(_sheet(), trips, proper_fish_rate=NO_RATE)

    assert [payout.crew_member_name for payout in breakdown.payouts] == ["Ali", "Moosa", "Zahir"]


def test_credit_for_member_without_trips_creates_no_payout():
    trips = [_trip(4, "300", [(1, "Ali", CrewRole.DIVING)])]

    breakdown = calculate_week(_sheet(credits=[(9, "25")]), trips, proper_fish_rate=NO_RATE)

    assert [payout.crew_member_id for payout in breakdown.payouts] == [1]
    assert breakdown.payouts[0].credit_deduction == Decimal("0.00")


def test_weekly_totals_sum_rounded_trip_values():
    trips = [_trip(4, "0.005"), _trip(5, "0.005")]

    breakdown = calculate_week(_sheet(), trips, proper_fish_rate=NO_RATE)

    assert breakdown.revenue["total_sales"] == Decimal("0.02")


def test_apply_weekly_totals_sets_sheet_columns():
    trips = [_trip(4, "500", [(1, "Ahmed", CrewRole.DIVING)])]
    sheet = _sheet()

    breakdown = calculate_week(sheet, trips, proper_fish_rate=NO_RATE)
    apply_weekly_totals(sheet, breakdown)

    assert sheet.total_sales == Decimal("500.00")
    assert sheet.total_expenses == Decimal("0.00")
    assert sheet.owner_share == Decimal("150.00")
    assert sheet.crew_share == Decimal("300.00")
    assert sheet.total_weekly_payout == Decimal("300.00")


def test_as_dict_contains_summary_and_payouts():
    trips = [_trip(4, "500", [(1, "Ahmed", CrewRole.DIVING)])]

    payload = calculate_week(_sheet(), trips, proper_fish_rate=NO_RATE).as_dict()

    assert payload["summary"]["fishing_days"] == 1
    assert payload["payouts"][0]["final_amount"] == Decimal("300.00")
    assert set(payload) == {"summary", "revenue", "expenses", "distribution", "payouts"}


def test_member_on_trip_without_sales_still_gets_zero_payout():
    trips = [_trip(4, "0", [(1, "Ahmed", CrewRole.DIVING)])]

    breakdown = calculate_week(_sheet(), trips, proper_fish_rate=NO_RATE)

    [payout] = breakdown.payouts
    assert payout.crew_member_id == 1
    assert payout.base_amount == Decimal("0.00")
    assert payout.final_amount == Decimal("0.00")
    assert payout.trips_count == 1
