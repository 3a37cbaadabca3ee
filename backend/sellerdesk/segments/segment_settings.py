from __future__ import annotations

from flask import Blueprint, jsonify, request

from sellerdesk.extensions import db
from sellerdesk.utils.events import log_event
from sellerdesk.utils.identity import current_identity
from sellerdesk.utils.workflow_settings import InvalidSettings, current_settings, update_settings

settings_bp = Blueprint("settings_bp", __name__, url_prefix="/api/admin/settings")


def _require_admin():
    ident = current_identity()
    if not ident:
        return None, (jsonify({"ok": False, "error": "Unauthorized"}), 401)
    if not ident.is_admin:
        return None, (jsonify({"ok": False, "error": "Admin access required"}), 403)
    return ident, None


@settings_bp.get("")
def get_marketplace_settings():
    _, err = _require_admin()
    if err:
        return err
    return jsonify({"ok": True, "settings": current_settings()}), 200


@settings_bp.put("")
def put_marketplace_settings():
    ident, err = _require_admin()
    if err:
        return err
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "JSON object body required", "field": "body"}), 400
    try:
        settings = update_settings(payload, updated_by=ident.user_id)
    except InvalidSettings as e:
        return jsonify({"ok": False, "error": e.message, "field": e.field}), 400
    log_event(
        "marketplace_settings_updated",
        actor_id=ident.user_id,
        subject_type="marketplace_settings",
        metadata={"changed": sorted(payload.keys()), "deadline_policy": settings.get("deadline_policy")},
    )
    db.session.commit()
    return jsonify({"ok": True, "settings": settings}), 200
