import json
import os
from typing import Optional, Tuple

import click
from flask import Flask, jsonify
from sqlalchemy import create_engine, func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from config import Config, current_database_url
from extensions import db, migrate, jwt
from models import RoleEnum, User, WeeklySheet
from routes import (
    auth,
    crew_members,
    fish_types,
    trips,
    vessels,
    weekly_sheets,
)


def _ensure_database_exists(database_url: str | None) -> None:
    if not database_url:
        return

    url = make_url(database_url)
    backend = (url.get_backend_name() or "").lower()

    if backend.startswith("sqlite"):
        database_path = url.database
        if database_path and database_path not in {":memory:", ""}:
            directory = os.path.dirname(os.path.abspath(database_path))
            if directory:
                os.makedirs(directory, exist_ok=True)
        return

    database_name = url.database
    if not database_name:
        return

    engine = create_engine(url)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return
    except OperationalError:
        pass
    finally:
        engine.dispose()

    if not backend.startswith("postgresql"):
        return

    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as connection:
            exists = connection.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": database_name},
            ).scalar()
            if not exists:
                connection.execute(text(f'CREATE DATABASE "{database_name}"'))
    finally:
        admin_engine.dispose()


def _ensure_schema(app: Flask) -> None:
    """Create any missing tables; existing tables are left untouched."""

    with app.app_context():
        try:
            db.create_all()
        except OperationalError:
            app.logger.exception("Could not create database tables")
            raise


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    database_url = current_database_url()
    _ensure_database_exists(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    db.init_app(app)
    migrate.init_app(app, db)
    _ensure_schema(app)
    jwt.init_app(app)

    @jwt.additional_claims_loader
    def add_claims(identity):
        try:
            u = db.session.get(User, int(identity))
        except (TypeError, ValueError):
            u = None
        return {"role": u.role.value if u else None}

    app.register_blueprint(auth.bp)
    app.register_blueprint(crew_members.bp)
    app.register_blueprint(vessels.bp)
    app.register_blueprint(fish_types.bp)
    app.register_blueprint(trips.bp)
    app.register_blueprint(weekly_sheets.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True, "currency": app.config["CURRENCY"]})

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_owner_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    ensure_if_missing: bool = True,
    force_reset: bool = False,
) -> Tuple[str, str]:
    """Ensure an owner account exists and optionally reset its password.

    Returns a tuple of (status, normalized_email) where status is one of
    ``{"created", "reset", "updated", "skipped"}``.
    """

    target_app = flask_app or globals().get("app")
    if target_app is None:
        return "skipped", _normalize_email(email)

    normalized_email = _normalize_email(email or os.getenv("OWNER_EMAIL", "owner@settlement.local"))
    password = password or os.getenv("OWNER_PASSWORD", "Owner@123")
    provided_name = name if name is not None else os.getenv("OWNER_NAME")
    target_name = (provided_name or "").strip() or None

    with target_app.app_context():
        try:
            owner = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables might not be ready yet
            return "skipped", normalized_email

        if owner:
            status = "skipped"
            if owner.role != RoleEnum.owner:
                owner.role = RoleEnum.owner
                status = "updated"
            if target_name and owner.name != target_name:
                owner.name = target_name
                status = "updated"
            if force_reset:
                owner.set_password(password)
                status = "reset"

            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not ensure_if_missing:
            return "skipped", normalized_email

        if not force_reset:
            # Avoid creating a second owner when one already exists
            existing_owner = User.query.filter_by(role=RoleEnum.owner).first()
            if existing_owner:
                return "skipped", normalized_email

        owner = User(
            name=target_name or "Owner",
            email=normalized_email,
            role=RoleEnum.owner,
            active=True,
        )
        owner.set_password(password)
        db.session.add(owner)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_owner_user(flask_app=None):
    status, normalized_email = _ensure_owner_user(
        flask_app=flask_app,
        force_reset=os.getenv("RUN_SEED_OWNER") == "1",
    )
    if status == "created":
        print(f"✅ Owner created: {normalized_email}")
    elif status == "reset":
        print(f"✅ Owner password reset: {normalized_email}")
    elif status == "updated":
        print(f"✅ Owner role updated: {normalized_email}")


# Call the hook at startup (idempotent)
_bootstrap_owner_user(flask_app=app)


@app.cli.command("seed-owner")
@click.option("--email", default="owner@settlement.local", help="Owner email")
@click.option("--password", default="Owner@123", help="Owner password")
@click.option("--name", default="Owner", help="Owner display name")
def seed_owner(email, password, name):
    """Create or reset the owner user."""
    with app.app_context():
        status, normalized_email = _ensure_owner_user(
            flask_app=app,
            email=email,
            password=password,
            name=name,
            ensure_if_missing=True,
            force_reset=True,
        )

        if status == "created":
            click.echo(f"✅ Owner created: {normalized_email}")
        elif status == "reset":
            click.echo(f"✅ Owner password reset: {normalized_email}")
        elif status == "updated":
            click.echo(f"✅ Owner role updated: {normalized_email}")
        else:
            click.echo(f"ℹ️ Owner already up-to-date: {normalized_email}")


@app.cli.command("seed-fish-types")
def seed_fish_types_command() -> None:
    """Seed the standard fish types and their default rates."""

    from settlement import seed_fish_types

    with app.app_context():
        added = seed_fish_types()
        click.echo(f"✅ Fish types seeded ({added} added).")


@app.cli.command("recalculate-week")
@click.argument("sheet_id", type=int)
def recalculate_week(sheet_id):
    """Print the weekly payout breakdown for a sheet without saving it."""

    from settlement import calculate_weekly_sheet

    with app.app_context():
        sheet = db.session.get(WeeklySheet, sheet_id)
        if sheet is None:
            raise click.BadParameter(f"Weekly sheet {sheet_id} not found.", param_hint="SHEET_ID")
        breakdown = calculate_weekly_sheet(sheet)
        click.echo(json.dumps(breakdown.as_dict(), default=str, indent=2))


if __name__ == "__main__":
    app.run(debug=True, port=int(os.getenv("PORT", 5000)))
