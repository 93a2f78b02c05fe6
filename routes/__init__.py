from . import (
    auth,
    crew_members,
    fish_types,
    trips,
    vessels,
    weekly_sheets,
)

__all__ = [
    "auth",
    "crew_members",
    "fish_types",
    "trips",
    "vessels",
    "weekly_sheets",
]
