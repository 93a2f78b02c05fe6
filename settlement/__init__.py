"""Trip settlement and weekly crew payout helpers."""

from .trip_calculator import (
    CrewMemberShare,
    TripBreakdown,
    apply_trip_totals,
    calculate_trip,
    resolve_proper_fish_rate,
)
from .weekly_payouts import (
    MemberWeeklyPayout,
    WeeklyBreakdown,
    apply_weekly_totals,
    calculate_week,
    closed_trips_in_week,
    upsert_weekly_payouts,
)
from .services import (
    SettlementError,
    add_bills,
    add_crew_credits,
    add_expenses,
    add_fish_type_rate,
    add_purchases,
    add_weekly_expenses,
    assign_crew,
    calculate_trip_breakdown,
    calculate_weekly_sheet,
    close_trip,
    create_crew_member,
    create_fish_type,
    create_trip,
    create_vessel,
    create_weekly_sheet,
    delete_fish_type,
    delete_trip,
    delete_vessel,
    delete_weekly_sheet,
    finalize_trip,
    finalize_weekly_sheet,
    list_trips,
    mark_payout_paid,
    next_week_start,
    reopen_trip,
    reopen_weekly_sheet,
    seed_fish_types,
    set_expense_status,
    set_weekly_expense_status,
    update_crew_member,
    update_fish_type,
    update_trip,
    update_vessel,
    update_weekly_sheet,
)

__all__ = [
    "CrewMemberShare",
    "TripBreakdown",
    "apply_trip_totals",
    "calculate_trip",
    "resolve_proper_fish_rate",
    "MemberWeeklyPayout",
    "WeeklyBreakdown",
    "apply_weekly_totals",
    "calculate_week",
    "closed_trips_in_week",
    "upsert_weekly_payouts",
    "SettlementError",
    "add_bills",
    "add_crew_credits",
    "add_expenses",
    "add_fish_type_rate",
    "add_purchases",
    "add_weekly_expenses",
    "assign_crew",
    "calculate_trip_breakdown",
    "calculate_weekly_sheet",
    "close_trip",
    "create_crew_member",
    "create_fish_type",
    "create_trip",
    "create_vessel",
    "create_weekly_sheet",
    "delete_fish_type",
    "delete_trip",
    "delete_vessel",
    "delete_weekly_sheet",
    "finalize_trip",
    "finalize_weekly_sheet",
    "list_trips",
    "mark_payout_paid",
    "next_week_start",
    "reopen_trip",
    "reopen_weekly_sheet",
    "seed_fish_types",
    "set_expense_status",
    "set_weekly_expense_status",
    "update_crew_member",
    "update_fish_type",
    "update_trip",
    "update_vessel",
    "update_weekly_sheet",
]
