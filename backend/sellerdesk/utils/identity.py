from __future__ import annotations

from dataclasses import dataclass

from flask import g, has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from sellerdesk.extensions import db
from sellerdesk.models import AdminAccount
from sellerdesk.utils.jwt_utils import decode_token, get_bearer_token


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_admin: bool = False


_ADMIN_CLAIM_KEYS = ("admin", "isAdmin", "is_admin")


def _claim_truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "admin")
    return False


def normalize_admin_claim(claims: dict | None) -> bool:
    """Collapse the admin claim shapes issued over time into one boolean.

    Tokens have carried `admin`, `isAdmin`/`is_admin` and `role: "admin"`, as
    booleans or strings. Nothing outside this function should read them.
    """
    if not isinstance(claims, dict):
        return False
    for key in _ADMIN_CLAIM_KEYS:
        if key in claims and _claim_truthy(claims.get(key)):
            return True
    role = claims.get("role")
    if isinstance(role, str) and role.strip().lower() == "admin":
        return True
    return False


def admin_account_enabled(user_id: str) -> bool:
    if not user_id:
        return False
    try:
        row = db.session.get(AdminAccount, str(user_id))
    except SQLAlchemyError:
        db.session.rollback()
        return False
    return bool(row and row.enabled)


def verify_bearer(auth_header: str | None) -> Identity | None:
    token = get_bearer_token(auth_header or "")
    if not token:
        return None
    claims = decode_token(token)
    if not claims:
        return None
    sub = str(claims.get("sub") or "").strip()
    if not sub:
        return None
    is_admin = normalize_admin_claim(claims) or admin_account_enabled(sub)
    return Identity(user_id=sub, is_admin=is_admin)


def current_identity() -> Identity | None:
    """Identity for the active request, verified at most once per request."""
    if not has_request_context():
        return None
    if getattr(g, "_identity_checked", False):
        return getattr(g, "identity", None)
    ident = verify_bearer(request.headers.get("Authorization", ""))
    g.identity = ident
    g._identity_checked = True
    g.auth_user_id = ident.user_id if ident else None
    g.auth_is_admin = bool(ident.is_admin) if ident else False
    return ident
