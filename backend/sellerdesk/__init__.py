import os
import subprocess
import secrets
from datetime import datetime
from pathlib import Path

import click
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from sellerdesk.extensions import db, migrate, cors
from sellerdesk.models import AdminAccount, Order
from sellerdesk.segments.segment_order_workflow import order_workflow_bp, admin_workflow_bp
from sellerdesk.segments.segment_orders_api import orders_bp, admin_orders_bp
from sellerdesk.segments.segment_settings import settings_bp
from sellerdesk.services.order_workflow import THREE_HOURS_MS, WorkflowStatus
from sellerdesk.utils import clock
from sellerdesk.utils.identity import current_identity
from sellerdesk.utils.observability import init_sentry, install_request_observers
from sellerdesk.utils.rate_limit import (
    check_limit,
    rate_limit_enabled,
    build_rate_limit_subject,
)
from sellerdesk.utils.workflow_settings import CELL_KEY, build_settings_cell


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _env_bool(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("SELLERDESK_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'sellerdesk.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    # One settings cell per app; dropped with the app.
    app.extensions[CELL_KEY] = build_settings_cell()

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "Internal server error",
            "message": "Internal server error",
            "status": 500,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 500

    app.register_blueprint(order_workflow_bp)
    app.register_blueprint(admin_workflow_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(settings_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "sellerdesk-backend",
            "env": env,
            "db": db_state,
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    @app.before_request
    def _reset_db_session():
        db.session.rollback()

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_is_admin = False
        if not request.path.startswith("/api/"):
            return
        if not request.headers.get("Authorization"):
            return
        ident = current_identity()
        if ident and (os.getenv("SENTRY_DSN") or "").strip():
            import sentry_sdk

            sentry_sdk.set_user({"id": ident.user_id})
            sentry_sdk.set_tag("auth_admin", "1" if ident.is_admin else "0")

    def _rate_limited_response(retry_after_seconds: int):
        retry_after = int(max(1, retry_after_seconds or 1))
        payload = {
            "ok": False,
            "error": "RATE_LIMITED",
            "retry_after_seconds": retry_after,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        resp = jsonify(payload)
        resp.status_code = 429
        resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.before_request
    def _global_rate_limit_guard():
        if bool(app.config.get("TESTING")) and not _env_bool("RATE_LIMIT_IN_TESTS"):
            return None
        if not rate_limit_enabled(True):
            return None
        method = (request.method or "GET").strip().upper()
        if method == "OPTIONS":
            return None
        path = (request.path or "").strip()
        if not path.startswith("/api/"):
            return None

        subject = build_rate_limit_subject(
            user_id=getattr(g, "auth_user_id", None),
            request_obj=request,
        )
        if method == "GET":
            limit, tier = 120, "browse"
        else:
            limit, tier = 60, "write"
        ok, retry_after = check_limit(
            f"tier:{tier}:{method}:{path}:{subject}",
            limit=limit,
            window_seconds=60,
        )
        if not ok:
            return _rate_limited_response(retry_after)
        return None

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("grant-admin")
    @click.argument("user_id")
    @click.option("--note", "note", required=False, help="Why this account is an admin")
    def grant_admin(user_id: str, note: str | None):
        user_id = (user_id or "").strip()
        if not user_id:
            raise click.ClickException("user_id is required.")
        row = db.session.get(AdminAccount, user_id)
        if row is None:
            row = AdminAccount(user_id=user_id)
            db.session.add(row)
        row.enabled = True
        if note:
            row.note = note.strip()[:240]
        row.updated_at = datetime.utcnow()
        db.session.commit()
        click.echo(f"admin_granted {user_id}")

    @app.cli.command("revoke-admin")
    @click.argument("user_id")
    def revoke_admin(user_id: str):
        row = db.session.get(AdminAccount, (user_id or "").strip())
        if row is None:
            raise click.ClickException("Admin account not found.")
        row.enabled = False
        row.updated_at = datetime.utcnow()
        db.session.commit()
        click.echo(f"admin_revoked {row.user_id}")

    @app.cli.command("seed-order")
    @click.option("--merchant", "merchant_id", required=True, help="Owning vendor id")
    @click.option("--order-id", "shopify_order_id", required=False, help="Marketplace order id")
    @click.option("--created-at", "created_at", type=int, required=False, help="Epoch ms, defaults to now")
    def seed_order(merchant_id: str, shopify_order_id: str | None, created_at: int | None):
        env_now = (os.getenv("SELLERDESK_ENV") or "dev").strip().lower()
        if env_now in ("prod", "production"):
            raise click.ClickException("seed-order is disabled in production.")
        merchant_id = merchant_id.strip()
        shopify_order_id = (shopify_order_id or "").strip() or str(secrets.randbelow(10**12))
        created = int(created_at) if created_at is not None else clock.now_ms()
        order_id = Order.compose_id(shopify_order_id, merchant_id)
        if db.session.get(Order, order_id) is not None:
            raise click.ClickException(f"Order {order_id} already exists.")
        items = [
            {"title": "Handloom Cotton Saree", "sku": "SAREE-001", "quantity": 1, "price": 1499.0, "total": 1499.0},
            {"title": "Brass Diya Set", "sku": "DIYA-004", "quantity": 2, "price": 249.5, "total": 499.0},
        ]
        order = Order(
            id=order_id,
            shopify_order_id=shopify_order_id,
            order_number=f"#{shopify_order_id[-6:]}",
            merchant_id=merchant_id,
            created_at=created,
            updated_at=created,
            currency="INR",
            financial_status="paid",
            status="open",
            line_items=items,
            subtotal=sum(i["total"] for i in items),
            workflow_status=WorkflowStatus.PENDING,
            vendor_accept_by=created + THREE_HOURS_MS,
            invoice={"status": "none"},
            workflow_timeline=[],
        )
        db.session.add(order)
        db.session.commit()
        click.echo(f"order_seeded {order_id}")

    return app
