"""Crew member register."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required
from marshmallow import ValidationError

from extensions import db
from models import CrewMember, User
from schemas import CrewMemberSchema
from settlement import SettlementError, create_crew_member, update_crew_member

bp = Blueprint("crew_members", __name__, url_prefix="/api/crew-members")

crew_member_schema = CrewMemberSchema()
crew_members_schema = CrewMemberSchema(many=True)


def _current_user() -> User | None:
    identity = get_jwt_identity()
    try:
        user_id = int(identity)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


@bp.get("")
@jwt_required()
def list_crew_members():
    query = CrewMember.query
    active = (request.args.get("active") or "").strip().lower()
    if active in {"1", "true", "yes"}:
        query = query.filter(CrewMember.active.is_(True))
    elif active in {"0", "false", "no"}:
        query = query.filter(CrewMember.active.is_(False))

    search = (request.args.get("search") or "").strip()
    if search:
        query = query.filter(CrewMember.name.ilike(f"%{search}%"))

    members = query.order_by(CrewMember.name.asc()).all()
    return jsonify(crew_members_schema.dump(members))


@bp.post("")
@jwt_required()
def create():
    payload = request.get_json(silent=True) or {}
    try:
        data = crew_member_schema.load(payload)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        member = create_crew_member(data, _current_user())
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(crew_member_schema.dump(member)), 201


@bp.get("/<int:member_id>")
@jwt_required()
def detail(member_id: int):
    member = db.session.get(CrewMember, member_id)
    if member is None:
        return jsonify({"msg": "Crew member not found"}), 404
    return jsonify(crew_member_schema.dump(member))


@bp.put("/<int:member_id>")
@jwt_required()
def update(member_id: int):
    member = db.session.get(CrewMember, member_id)
    if member is None:
        return jsonify({"msg": "Crew member not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        data = crew_member_schema.load(payload, partial=True)
    except ValidationError as error:
        return jsonify({"errors": error.normalized_messages()}), 422

    try:
        member = update_crew_member(member, data)
    except SettlementError as exc:
        return jsonify({"msg": exc.message}), exc.status_code
    return jsonify(crew_member_schema.dump(member))
