"""Weekly settlement sheets. Every endpoint here is restricted to owners."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from marshmallow import ValidationError

from extensions import db
from models import RoleEnum, User, WeeklyExpense, WeeklyPayout, WeeklySheet, WeeklySheetStatus
from schemas import (
    AddCreditsSchema,
    AddWeeklyExpensesSchema,
    MarkPaidSchema,
    WeeklyExpenseSchema,
    WeeklyExpenseStatusSchema,
    WeeklyPayoutSchema,
    WeeklySheetCreateSchema,
    WeeklySheetSchema,
    WeeklySheetUpdateSchema,
)
from settlement import (
    SettlementError,
    add_crew_credits,
    add_weekly_expenses,
    calculate_weekly_sheet,
    create_weekly_sheet,
    delete_weekly_sheet,
    finalize_weekly_sheet,
    mark_payout_paid,
    reopen_weekly_sheet,
    set_weekly_expense_status,
    update_weekly_sheet,
)

bp = Blueprint("weekly_sheets", __name__, url_prefix="/api/weekly-sheets")

sheet_schema = WeeklySheetSchema()
sheet_list_schema = WeeklySheetSchema(
    many=True, exclude=("trips", "weekly_expenses", "crew_credits", "weekly_payouts")
)
sheet_create_schema = WeeklySheetCreateSchema()
sheet_update_schema = WeeklySheetUpdateSchema()
add_expenses_schema = AddWeeklyExpensesSchema()
add_credits_schema = AddCreditsSchema()
expense_schema = WeeklyExpenseSchema()
expense_status_schema = WeeklyExpenseStatusSchema()
payout_schema = WeeklyPayoutSchema()
mark_paid_schema = MarkPaidSchema()


def _current_role() -> RoleEnum | None:
    try:
        return RoleEnum(get_jwt().get("role"))
    except (ValueError, TypeError):
        return None


def _current_user() -> User | None:
    try:
        user_id = int(get_jwt_identity())
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


@bp.before_request
@jwt_required()
def _owners_only():
    if _current_role() != RoleEnum.owner:
        return jsonify({"msg": "Only owners can manage weekly sheets."}), 403


def _load(schema):
    return schema.load(request.get_json(silent=True) or {})


def _get_sheet(sheet_id: int) -> WeeklySheet | None:
    return db.session.get(WeeklySheet, sheet_id)


@bp.get("")
def index():
    query = WeeklySheet.query
    vessel_id = request.args.get("vessel_id", type=int)
    if vessel_id is not None:
        query = query.filter(WeeklySheet.vessel_id == vessel_id)
    status = request.args.get("status")
    if status:
        try:
            query = query.filter(WeeklySheet.status == WeeklySheetStatus(status))
        except ValueError:
            return jsonify({"msg": "Invalid status"}), 400
    sheets = query.order_by(WeeklySheet.week_start.desc(), WeeklySheet.id.desc()).all()
    return jsonify(sheet_list_schema.dump(sheets))


@bp.post("")
def create():
    try:
        data = _load(sheet_create_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        sheet = create_weekly_sheet(data, _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(sheet_schema.dump(sheet)), 201


@bp.get("/<int:sheet_id>")
def show(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404
    return jsonify(sheet_schema.dump(sheet))


@bp.put("/<int:sheet_id>")
def update(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404

    try:
        data = _load(sheet_update_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        sheet = update_weekly_sheet(sheet, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(sheet_schema.dump(sheet))


@bp.delete("/<int:sheet_id>")
def destroy(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404
    try:
        delete_weekly_sheet(sheet)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify({"msg": "Weekly sheet deleted"})


@bp.post("/<int:sheet_id>/add-expenses")
def expenses(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404

    try:
        data = _load(add_expenses_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        sheet = add_weekly_expenses(sheet, data["expenses"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(sheet_schema.dump(sheet)), 201


@bp.post("/<int:sheet_id>/add-credits")
def credits(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404

    try:
        data = _load(add_credits_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        sheet = add_crew_credits(sheet, data["credits"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(sheet_schema.dump(sheet)), 201


@bp.post("/<int:sheet_id>/expenses/<int:expense_id>/status")
def expense_status(sheet_id: int, expense_id: int):
    expense = WeeklyExpense.query.filter_by(id=expense_id, weekly_sheet_id=sheet_id).first()
    if expense is None:
        return jsonify({"msg": "Weekly expense not found"}), 404

    try:
        data = _load(expense_status_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        expense = set_weekly_expense_status(expense, data["status"])
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(expense_schema.dump(expense))


@bp.get("/<int:sheet_id>/calculate")
def calculate(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404
    return jsonify(calculate_weekly_sheet(sheet).as_dict())


@bp.post("/<int:sheet_id>/finalize")
def finalize(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404

    try:
        breakdown = finalize_weekly_sheet(sheet)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify({"sheet": sheet_schema.dump(sheet), "calculations": breakdown.as_dict()})


@bp.post("/<int:sheet_id>/reopen")
def reopen(sheet_id: int):
    sheet = _get_sheet(sheet_id)
    if sheet is None:
        return jsonify({"msg": "Weekly sheet not found"}), 404

    try:
        sheet = reopen_weekly_sheet(sheet)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(sheet_schema.dump(sheet))


@bp.post("/<int:sheet_id>/payouts/<int:payout_id>/mark-paid")
def mark_paid(sheet_id: int, payout_id: int):
    payout = WeeklyPayout.query.filter_by(id=payout_id, weekly_sheet_id=sheet_id).first()
    if payout is None:
        return jsonify({"msg": "Payout not found"}), 404

    try:
        data = _load(mark_paid_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        payout = mark_payout_paid(payout, data["payment_reference"])
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(
        {"payout": payout_schema.dump(payout), "sheet_status": payout.weekly_sheet.status.value}
    )
