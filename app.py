import os
from decimal import Decimal
from typing import Optional, Tuple

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from flask import Flask, jsonify
from sqlalchemy import create_engine, func, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, ProgrammingError

from blending import BlendingError, init_blending_store
from config import Config, current_database_url
from extensions import db, migrate, jwt
from models import Blend, BlendFibre, Buyer, Fibre, FibreCategory, RoleEnum, User
from routes import auth, blends, buyers, fibres, orders
from routes.common import handle_blending_error


if os.name != "nt":  # pragma: no cover - platform dependent import
    import fcntl  # type: ignore[import-not-found]
else:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore[assignment]


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
    if not database_name or not backend.startswith("postgresql"):
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

    admin_engine = create_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT")
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


def _run_database_migrations(app: Flask) -> None:
    """Upgrade the schema to the latest Alembic revision.

    Skipped for in-memory SQLite (tests build their tables directly) and when
    the migrations folder is missing.
    """

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        return
    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        return

    migrations_dir = os.path.join(app.root_path, "migrations")
    alembic_ini = os.path.join(migrations_dir, "alembic.ini")
    if not os.path.exists(alembic_ini):
        return

    config = AlembicConfig(alembic_ini)
    config.set_main_option("script_location", migrations_dir)
    config.set_main_option("sqlalchemy.url", database_uri)

    head_revision = ScriptDirectory.from_config(config).get_current_head()
    if not head_revision:
        return

    def _current_revision() -> str | None:
        try:
            with db.engine.connect() as connection:
                return connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        except (OperationalError, ProgrammingError):
            return None

    with app.app_context():
        if _current_revision() == head_revision:
            return

        os.makedirs(app.instance_path, exist_ok=True)
        # Several workers may boot at once; only one of them upgrades.
        with open(os.path.join(app.instance_path, "alembic.lock"), "w") as lock_file:
            if fcntl is not None:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
            try:
                if _current_revision() == head_revision:
                    return
                app.logger.info("Upgrading database schema to %s", head_revision)
                command.upgrade(config, "head")
            finally:
                if fcntl is not None:
                    fcntl.flock(lock_file, fcntl.LOCK_UN)


def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)
    database_url = current_database_url()
    _ensure_database_exists(database_url)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    db.init_app(app)
    migrate.init_app(app, db)
    _run_database_migrations(app)
    jwt.init_app(app)
    init_blending_store(app)

    @jwt.additional_claims_loader
    def add_claims(identity):
        try:
            user = db.session.get(User, int(identity))
        except (TypeError, ValueError):
            user = None
        return {"role": user.role.value if user else None}

    app.register_error_handler(BlendingError, handle_blending_error)

    app.register_blueprint(auth.bp)
    app.register_blueprint(fibres.bp)
    app.register_blueprint(blends.bp)
    app.register_blueprint(orders.bp)
    app.register_blueprint(buyers.bp)

    @app.get("/api/health")
    def health(): return jsonify({"ok": True})

    return app


app = create_app()


def _normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _ensure_admin_user(
    flask_app=None,
    *,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: Optional[str] = None,
    force_reset: bool = False,
) -> Tuple[str, str]:
    """Make sure an admin account exists.

    Returns ``(status, email)`` where status is one of ``created``, ``reset``,
    ``updated`` or ``skipped``.
    """

    target_app = flask_app or globals().get("app")
    normalized_email = _normalize_email(email or os.getenv("ADMIN_EMAIL", "admin@spinmill.local"))
    if target_app is None:
        return "skipped", normalized_email

    password = password or os.getenv("ADMIN_PASSWORD", "Admin@123")
    target_name = ((name if name is not None else os.getenv("ADMIN_NAME")) or "").strip() or None

    with target_app.app_context():
        try:
            admin = User.query.filter(func.lower(User.email) == normalized_email).first()
        except (OperationalError, ProgrammingError):
            # Tables are not there yet, e.g. before the first migration.
            return "skipped", normalized_email

        if admin:
            status = "skipped"
            if admin.role != RoleEnum.admin:
                admin.role = RoleEnum.admin
                status = "updated"
            if target_name and admin.name != target_name:
                admin.name = target_name
                status = "updated"
            if force_reset:
                admin.set_password(password)
                status = "reset"
            if status != "skipped":
                db.session.commit()
            return status, normalized_email

        if not force_reset and User.query.filter_by(role=RoleEnum.admin).first():
            return "skipped", normalized_email

        admin = User(name=target_name or "Admin", email=normalized_email, role=RoleEnum.admin, active=True)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        return "created", normalized_email


def _bootstrap_admin_user(flask_app=None):
    status, normalized_email = _ensure_admin_user(
        flask_app=flask_app,
        force_reset=os.getenv("RUN_SEED_ADMIN") == "1",
    )
    if status != "skipped":
        (flask_app or app).logger.info("Admin %s: %s", status, normalized_email)


_bootstrap_admin_user(flask_app=app)


DEMO_FIBRES = (
    ("CTN-01", "Combed Cotton", "Cotton", "1500"),
    ("PES-01", "Polyester Staple", "Synthetic", "900"),
    ("VIS-01", "Viscose", "Regenerated", "150"),
)


def _seed_demo_data() -> int:
    """Insert a small fibre/blend/buyer set; returns the number of new rows."""

    created = 0
    categories = {}
    for _, _, category_name, _ in DEMO_FIBRES:
        category = FibreCategory.query.filter_by(name=category_name).first()
        if category is None:
            category = FibreCategory(name=category_name)
            db.session.add(category)
            created += 1
        categories[category_name] = category

    fibres_by_code = {}
    for code, fibre_name, category_name, stock in DEMO_FIBRES:
        fibre = Fibre.query.filter_by(fibre_code=code).first()
        if fibre is None:
            fibre = Fibre(
                fibre_code=code,
                fibre_name=fibre_name,
                category=categories[category_name],
                stock_kg=Decimal(stock),
            )
            db.session.add(fibre)
            created += 1
        fibres_by_code[code] = fibre

    if Blend.query.filter_by(blend_code="PC-6040").first() is None:
        blend = Blend(blend_code="PC-6040", name="Poly Cotton 60/40")
        blend.fibres.append(BlendFibre(fibre=fibres_by_code["CTN-01"], percentage=Decimal("60"), position=0))
        blend.fibres.append(BlendFibre(fibre=fibres_by_code["PES-01"], percentage=Decimal("40"), position=1))
        db.session.add(blend)
        created += 1

    if Buyer.query.filter_by(name="Demo Knits").first() is None:
        db.session.add(Buyer(name="Demo Knits", contact_person="Purchasing"))
        created += 1

    db.session.commit()
    return created


@app.cli.command("seed-admin")
@click.option("--email", default="admin@spinmill.local", help="Admin email")
@click.option("--password", default="Admin@123", help="Admin password")
@click.option("--name", default="Admin", help="Admin display name")
def seed_admin(email, password, name):
    """Create or reset the admin user."""
    status, normalized_email = _ensure_admin_user(
        flask_app=app,
        email=email,
        password=password,
        name=name,
        force_reset=True,
    )
    click.echo(f"Admin {status}: {normalized_email}")


@app.cli.command("seed-demo")
def seed_demo() -> None:
    """Seed demo fibres, a 60/40 blend and a buyer."""

    with app.app_context():
        created = _seed_demo_data()
    click.echo(f"Demo data seeded ({created} new rows).")


if __name__ == "__main__":
    app.run(debug=True, port=int(os.getenv("PORT", 5000)))
