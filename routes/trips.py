"""Trip endpoints: data entry, crew assignment and the trip lifecycle."""

from __future__ import annotations

from datetime import date

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from marshmallow import ValidationError

from extensions import db
from models import Expense, RoleEnum, Trip, TripStatus, User
from schemas import (
    AddBillsSchema,
    AddExpensesSchema,
    AddPurchasesSchema,
    AssignCrewSchema,
    ExpenseSchema,
    ExpenseStatusSchema,
    TripCreateSchema,
    TripSchema,
    TripSummarySchema,
    TripUpdateSchema,
)
from settlement import (
    SettlementError,
    add_bills,
    add_expenses,
    add_purchases,
    assign_crew,
    calculate_trip_breakdown,
    close_trip,
    create_trip,
    delete_trip,
    finalize_trip,
    list_trips,
    reopen_trip,
    set_expense_status,
    update_trip,
)

bp = Blueprint("trips", __name__, url_prefix="/api/trips")

trip_schema = TripSchema()
trip_list_schema = TripSummarySchema(many=True)
trip_create_schema = TripCreateSchema()
trip_update_schema = TripUpdateSchema()
assign_crew_schema = AssignCrewSchema()
add_bills_schema = AddBillsSchema()
add_purchases_schema = AddPurchasesSchema()
add_expenses_schema = AddExpensesSchema()
expense_schema = ExpenseSchema()
expense_status_schema = ExpenseStatusSchema()


def require_role(*roles: RoleEnum) -> bool:
    """Return ``True`` if the current JWT belongs to one of the roles."""

    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


def _current_user() -> User | None:
    identity = get_jwt_identity()
    try:
        user_id = int(identity)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def _trip_payload(trip: Trip) -> dict:
    return {
        "trip": trip_schema.dump(trip),
        "calculations": calculate_trip_breakdown(trip).as_dict(),
    }


def _load(schema, **kwargs):
    return schema.load(request.get_json(silent=True) or {}, **kwargs)


@bp.get("")
@jwt_required()
def index():
    try:
        status = TripStatus(request.args["status"]) if request.args.get("status") else None
        from_date = _parse_date(request.args.get("from_date"))
        to_date = _parse_date(request.args.get("to_date"))
    except ValueError:
        return jsonify({"msg": "Invalid filter value"}), 400
    vessel_id = request.args.get("vessel_id", type=int)

    trips = list_trips(status=status, vessel_id=vessel_id, from_date=from_date, to_date=to_date)
    return jsonify(trip_list_schema.dump(trips))


@bp.post("")
@jwt_required()
def create():
    try:
        data = _load(trip_create_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = create_trip(data, _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip)), 201


@bp.get("/<int:trip_id>")
@jwt_required()
def show(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404
    return jsonify(_trip_payload(trip))


@bp.put("/<int:trip_id>")
@jwt_required()
def update(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404
    if trip.is_closed() and not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can edit closed trips."}), 403

    try:
        data = _load(trip_update_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = update_trip(trip, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip))


@bp.delete("/<int:trip_id>")
@jwt_required()
def destroy(trip_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can delete trips."}), 403

    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        delete_trip(trip)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify({"msg": "Trip deleted"})


@bp.post("/<int:trip_id>/assign-crew")
@jwt_required()
def assign(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        data = _load(assign_crew_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = assign_crew(trip, data["assignments"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip))


@bp.post("/<int:trip_id>/add-bills")
@jwt_required()
def bills(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        data = _load(add_bills_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = add_bills(trip, data["bills"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip)), 201


@bp.post("/<int:trip_id>/add-purchases")
@jwt_required()
def purchases(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        data = _load(add_purchases_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = add_purchases(trip, data["purchases"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip)), 201


@bp.post("/<int:trip_id>/add-expenses")
@jwt_required()
def expenses(trip_id: int):
    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        data = _load(add_expenses_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        trip = add_expenses(trip, data["expenses"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip)), 201


@bp.post("/<int:trip_id>/expenses/<int:expense_id>/status")
@jwt_required()
def expense_status(trip_id: int, expense_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can approve or reject expenses."}), 403

    expense = Expense.query.filter_by(id=expense_id, trip_id=trip_id).first()
    if expense is None:
        return jsonify({"msg": "Expense not found"}), 404

    try:
        data = _load(expense_status_schema)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        expense = set_expense_status(expense, data["status"], _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(expense_schema.dump(expense))


def _transition(trip_id: int, action, message: str):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": message}), 403

    trip = db.session.get(Trip, trip_id)
    if trip is None:
        return jsonify({"msg": "Trip not found"}), 404

    try:
        trip = action(trip)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(_trip_payload(trip))


@bp.post("/<int:trip_id>/finalize")
@jwt_required()
def finalize(trip_id: int):
    return _transition(trip_id, finalize_trip, "Only owners can finalize trips.")


@bp.post("/<int:trip_id>/close")
@jwt_required()
def close(trip_id: int):
    return _transition(trip_id, close_trip, "Only owners can close trips.")


@bp.post("/<int:trip_id>/reopen")
@jwt_required()
def reopen(trip_id: int):
    return _transition(trip_id, reopen_trip, "Only owners can reopen trips.")
