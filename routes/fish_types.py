"""Fish types and their dated per-kilo rates."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required
from marshmallow import ValidationError

from extensions import db
from models import FishType, RoleEnum, User
from schemas import FishTypeRateSchema, FishTypeSchema
from settlement import (
    SettlementError,
    add_fish_type_rate,
    create_fish_type,
    delete_fish_type,
    update_fish_type,
)

bp = Blueprint("fish_types", __name__, url_prefix="/api/fish-types")

fish_type_schema = FishTypeSchema()
fish_types_schema = FishTypeSchema(many=True)
rate_schema = FishTypeRateSchema()


def require_role(*roles: RoleEnum) -> bool:
    claims = get_jwt()
    try:
        current_role = RoleEnum(claims.get("role"))
    except (ValueError, TypeError):
        return False
    return current_role in roles


@bp.get("")
@jwt_required()
def list_fish_types():
    query = FishType.query
    if (request.args.get("active") or "").strip().lower() in {"1", "true", "yes"}:
        query = query.filter(FishType.is_active.is_(True))
    return jsonify(fish_types_schema.dump(query.order_by(FishType.name.asc()).all()))


@bp.post("")
@jwt_required()
def create():
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can manage fish types."}), 403

    payload = request.get_json(silent=True) or {}
    try:
        data = fish_type_schema.load(payload)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    user = db.session.get(User, int(get_jwt_identity()))
    try:
        fish_type = create_fish_type(data, user)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(fish_type_schema.dump(fish_type)), 201


@bp.post("/<int:fish_type_id>/rates")
@jwt_required()
def add_rate(fish_type_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can manage fish types."}), 403

    fish_type = db.session.get(FishType, fish_type_id)
    if fish_type is None:
        return jsonify({"msg": "Fish type not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        data = rate_schema.load(payload)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        add_fish_type_rate(fish_type, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(fish_type_schema.dump(fish_type)), 201


@bp.get("/<int:fish_type_id>")
@jwt_required()
def detail(fish_type_id: int):
    fish_type = db.session.get(FishType, fish_type_id)
    if fish_type is None:
        return jsonify({"msg": "Fish type not found"}), 404
    return jsonify(fish_type_schema.dump(fish_type))


@bp.put("/<int:fish_type_id>")
@jwt_required()
def update(fish_type_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can manage fish types."}), 403

    fish_type = db.session.get(FishType, fish_type_id)
    if fish_type is None:
        return jsonify({"msg": "Fish type not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        data = fish_type_schema.load(payload, partial=True)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        fish_type = update_fish_type(fish_type, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(fish_type_schema.dump(fish_type))


@bp.delete("/<int:fish_type_id>")
@jwt_required()
def destroy(fish_type_id: int):
    if not require_role(RoleEnum.owner):
        return jsonify({"msg": "Only owners can manage fish types."}), 403

    fish_type = db.session.get(FishType, fish_type_id)
    if fish_type is None:
        return jsonify({"msg": "Fish type not found"}), 404

    try:
        delete_fish_type(fish_type)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify({"msg": "Fish type deleted"})
