from decimal import ROUND_HALF_UP

from marshmallow import Schema, fields, validates_schema, ValidationError
from marshmallow.validate import Length, OneOf, Range

from models import (
    WEEK_DAY_CODES,
    BillType,
    CrewRole,
    ExpenseStatus,
    PaymentStatus,
    TripStatus,
    WeeklyExpenseStatus,
    WeeklySheetStatus,
)

_NON_NEGATIVE = Range(min=0)


def _money(**kwargs):
    return fields.Decimal(as_string=True, places=2, rounding=ROUND_HALF_UP, **kwargs)


# --- reference data ----------------------------------------------------------


class CrewMemberSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=200))
    local_name = fields.Str(allow_none=True)
    active = fields.Bool()
    phone = fields.Str(allow_none=True)
    id_card_no = fields.Str(allow_none=True)
    bank_name = fields.Str(allow_none=True)
    bank_account_number = fields.Str(allow_none=True)
    bank_account_holder = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime(dump_only=True)
    updated_at = fields.DateTime(dump_only=True)


class VesselSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=200))
    registration_no = fields.Str(allow_none=True)
    capacity = fields.Int(allow_none=True, validate=_NON_NEGATIVE)
    home_island = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    is_active = fields.Bool()
    created_at = fields.DateTime(dump_only=True)


class FishTypeRateSchema(Schema):
    id = fields.Int(dump_only=True)
    fish_type_id = fields.Int(dump_only=True)
    rate_per_kilo = _money(required=True, validate=_NON_NEGATIVE)
    rate_effective_from = fields.Date(allow_none=True)
    rate_effective_to = fields.Date(allow_none=True)
    is_active = fields.Bool()


class FishTypeSchema(Schema):
    id = fields.Int(dump_only=True)
    name = fields.Str(required=True, validate=Length(min=1, max=120))
    default_rate_per_kilo = _money(required=True, validate=_NON_NEGATIVE)
    is_active = fields.Bool()
    current_rate = fields.Method("get_current_rate", dump_only=True)
    rates = fields.Nested(FishTypeRateSchema, many=True, dump_only=True)

    def get_current_rate(self, obj):
        return "{:.2f}".format(obj.current_rate())


# --- trips -------------------------------------------------------------------


class TripAssignmentSchema(Schema):
    id = fields.Int(dump_only=True)
    crew_member_id = fields.Int(required=True)
    crew_member_name = fields.Method("get_crew_member_name", dump_only=True)
    role = fields.Enum(CrewRole, by_value=True, required=True)
    helper_ratio = fields.Decimal(
        as_string=True,
        places=2,
        rounding=ROUND_HALF_UP,
        allow_none=True,
        validate=Range(min=0.1, max=2.0),
    )
    weight = fields.Decimal(as_string=True, dump_only=True)

    def get_crew_member_name(self, obj):
        member = getattr(obj, "crew_member", None)
        return member.name if member is not None else None


class AssignCrewSchema(Schema):
    assignments = fields.List(
        fields.Nested(TripAssignmentSchema), required=True, validate=Length(min=1)
    )


class BillLineItemSchema(Schema):
    id = fields.Int(dump_only=True)
    fish_type_id = fields.Int(required=True)
    quantity = _money(required=True, validate=_NON_NEGATIVE)
    price_per_kilo = _money(required=True, validate=_NON_NEGATIVE)
    line_total = _money(dump_only=True)


class BillSchema(Schema):
    id = fields.Int(dump_only=True)
    trip_id = fields.Int(dump_only=True)
    bill_type = fields.Enum(BillType, by_value=True, required=True)
    bill_no = fields.Str(required=True, validate=Length(min=1, max=100))
    vendor = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    amount = _money(required=True, validate=_NON_NEGATIVE)
    bill_date = fields.Date(required=True)
    payment_status = fields.Enum(PaymentStatus, by_value=True, load_default=PaymentStatus.UNPAID)
    payment_method = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    line_items = fields.List(fields.Nested(BillLineItemSchema), load_default=list)


class AddBillsSchema(Schema):
    bills = fields.List(fields.Nested(BillSchema), required=True, validate=Length(min=1))


class FishPurchaseSchema(Schema):
    id = fields.Int(dump_only=True)
    trip_id = fields.Int(dump_only=True)
    fish_type_id = fields.Int(required=True)
    kilos = _money(required=True, validate=_NON_NEGATIVE)
    rate_per_kilo = _money(required=True, validate=_NON_NEGATIVE)
    amount = _money(allow_none=True, load_default=None, validate=_NON_NEGATIVE)


class AddPurchasesSchema(Schema):
    purchases = fields.List(
        fields.Nested(FishPurchaseSchema), required=True, validate=Length(min=1)
    )


class ExpenseSchema(Schema):
    id = fields.Int(dump_only=True)
    trip_id = fields.Int(dump_only=True)
    amount = _money(required=True, validate=_NON_NEGATIVE)
    description = fields.Str(required=True, validate=Length(min=1, max=500))
    type = fields.Str(allow_none=True)
    status = fields.Enum(ExpenseStatus, by_value=True, dump_only=True)
    approved_by_id = fields.Int(dump_only=True, allow_none=True)
    approved_at = fields.DateTime(dump_only=True, allow_none=True)


class AddExpensesSchema(Schema):
    expenses = fields.List(fields.Nested(ExpenseSchema), required=True, validate=Length(min=1))


class ExpenseStatusSchema(Schema):
    status = fields.Enum(ExpenseStatus, by_value=True, required=True)


class TripCreateSchema(Schema):
    vessel_id = fields.Int(required=True)
    date = fields.Date(required=True)
    day_of_week = fields.Str(allow_none=True, validate=OneOf(WEEK_DAY_CODES))
    is_fishing_day = fields.Bool(load_default=True)
    notes = fields.Str(allow_none=True)


class TripUpdateSchema(Schema):
    date = fields.Date()
    day_of_week = fields.Str(allow_none=True, validate=OneOf(WEEK_DAY_CODES))
    is_fishing_day = fields.Bool()
    notes = fields.Str(allow_none=True)


class TripSchema(Schema):
    id = fields.Int()
    vessel_id = fields.Int()
    weekly_sheet_id = fields.Int(allow_none=True)
    date = fields.Date()
    day_of_week = fields.Str(allow_none=True)
    is_fishing_day = fields.Bool()
    status = fields.Enum(TripStatus, by_value=True)
    total_sales = _money()
    balance = _money()
    net_total = _money()
    owner_share = _money()
    crew_share = _money()
    notes = fields.Str(allow_none=True)
    closed_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()

    bills = fields.Nested(BillSchema, many=True)
    fish_purchases = fields.Nested(FishPurchaseSchema, many=True)
    expenses = fields.Nested(ExpenseSchema, many=True)
    assignments = fields.Nested(TripAssignmentSchema, many=True)


class TripSummarySchema(Schema):
    id = fields.Int()
    vessel_id = fields.Int()
    weekly_sheet_id = fields.Int(allow_none=True)
    date = fields.Date()
    day_of_week = fields.Str(allow_none=True)
    status = fields.Enum(TripStatus, by_value=True)
    total_sales = _money()
    crew_share = _money()


# --- weekly sheets -----------------------------------------------------------


class WeeklySheetCreateSchema(Schema):
    vessel_id = fields.Int(required=True)
    week_start = fields.Date(required=True)
    week_end = fields.Date(allow_none=True, load_default=None)
    label = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)

    @validates_schema
    def validate_range(self, data, **_kwargs):
        week_start = data.get("week_start")
        week_end = data.get("week_end")
        if week_start and week_end and week_end < week_start:
            raise ValidationError("Week end cannot be before week start.", field_name="week_end")


class WeeklySheetUpdateSchema(Schema):
    label = fields.Str(allow_none=True, validate=Length(max=120))
    description = fields.Str(allow_none=True)


class WeeklyExpenseSchema(Schema):
    id = fields.Int(dump_only=True)
    weekly_sheet_id = fields.Int(dump_only=True)
    category = fields.Str(allow_none=True)
    amount = _money(required=True, validate=_NON_NEGATIVE)
    description = fields.Str(required=True, validate=Length(min=1, max=500))
    status = fields.Enum(WeeklyExpenseStatus, by_value=True, load_default=WeeklyExpenseStatus.PENDING)


class AddWeeklyExpensesSchema(Schema):
    expenses = fields.List(
        fields.Nested(WeeklyExpenseSchema), required=True, validate=Length(min=1)
    )


class WeeklyExpenseStatusSchema(Schema):
    status = fields.Enum(WeeklyExpenseStatus, by_value=True, required=True)


class CrewCreditSchema(Schema):
    id = fields.Int(dump_only=True)
    weekly_sheet_id = fields.Int(dump_only=True)
    crew_member_id = fields.Int(required=True)
    amount = _money(required=True, validate=_NON_NEGATIVE)
    description = fields.Str(required=True, validate=Length(min=1, max=500))
    credit_date = fields.Date(allow_none=True)


class AddCreditsSchema(Schema):
    credits = fields.List(fields.Nested(CrewCreditSchema), required=True, validate=Length(min=1))


class WeeklyPayoutSchema(Schema):
    id = fields.Int()
    weekly_sheet_id = fields.Int()
    crew_member_id = fields.Int()
    crew_member_name = fields.Method("get_crew_member_name")
    base_amount = _money()
    credit_deduction = _money()
    final_amount = _money()
    is_paid = fields.Bool()
    paid_at = fields.DateTime(allow_none=True)
    payment_reference = fields.Str(allow_none=True)

    def get_crew_member_name(self, obj):
        member = getattr(obj, "crew_member", None)
        return member.name if member is not None else None


class MarkPaidSchema(Schema):
    payment_reference = fields.Str(allow_none=True, load_default=None, validate=Length(max=120))


class WeeklySheetSchema(Schema):
    id = fields.Int()
    vessel_id = fields.Int()
    week_start = fields.Date()
    week_end = fields.Date()
    label = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    status = fields.Enum(WeeklySheetStatus, by_value=True)
    total_sales = _money()
    total_expenses = _money()
    total_weekly_payout = _money()
    owner_share = _money()
    crew_share = _money()
    processed_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()

    trips = fields.Nested(TripSummarySchema, many=True)
    weekly_expenses = fields.Nested(WeeklyExpenseSchema, many=True)
    crew_credits = fields.Nested(CrewCreditSchema, many=True)
    weekly_payouts = fields.Nested(WeeklyPayoutSchema, many=True)
