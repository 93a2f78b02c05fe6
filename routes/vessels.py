from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from marshmallow import ValidationError

from extensions import db
from models import RoleEnum, User, Vessel
from schemas import VesselSchema
from settlement import (
    SettlementError,
    create_vessel,
    delete_vessel,
    next_week_start,
    update_vessel,
)

bp = Blueprint("vessels", __name__, url_prefix="/api/vessels")

vessel_schema = VesselSchema()
vessels_schema = VesselSchema(many=True)


def require_role(*roles: RoleEnum) -> bool:
    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


@bp.get("")
@jwt_required()
def list_vessels():
    vessels = Vessel.query.order_by(Vessel.name.asc()).all()
    return jsonify(vessels_schema.dump(vessels))


@bp.post("")
@jwt_required()
def create():
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can register vessels."}), 403

    payload = request.get_json(silent=True) or {}
    try:
        data = vessel_schema.load(payload)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    user = db.session.get(User, int(get_jwt_identity()))
    try:
        vessel = create_vessel(data, user)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(vessel_schema.dump(vessel)), 201


@bp.get("/<int:vessel_id>")
@jwt_required()
def detail(vessel_id: int):
    vessel = db.session.get(Vessel, vessel_id)
    if vessel is None:
        return jsonify({"msg": "Vessel not found"}), 404
    return jsonify(vessel_schema.dump(vessel))


@bp.put("/<int:vessel_id>")
@jwt_required()
def update(vessel_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can edit vessels."}), 403

    vessel = db.session.get(Vessel, vessel_id)
    if vessel is None:
        return jsonify({"msg": "Vessel not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        data = vessel_schema.load(payload, partial=True)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        vessel = update_vessel(vessel, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(vessel_schema.dump(vessel))


@bp.delete("/<int:vessel_id>")
@jwt_required()
def destroy(vessel_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can delete vessels."}), 403

    vessel = db.session.get(Vessel, vessel_id)
    if vessel is None:
        return jsonify({"msg": "Vessel not found"}), 404

    try:
        delete_vessel(vessel)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify({"msg": "Vessel deleted"})


@bp.get("/<int:vessel_id>/next-week-start")
@jwt_required()
def suggested_week_start(vessel_id: int):
    vessel = db.session.get(Vessel, vessel_id)
    if vessel is None:
        return jsonify({"msg": "Vessel not found"}), 404
    return jsonify({"suggested_date": next_week_start(vessel).isoformat()})
