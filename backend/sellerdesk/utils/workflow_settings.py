from __future__ import annotations

import os
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from sellerdesk.extensions import db
from sellerdesk.models import MarketplaceSettings
from sellerdesk.services.order_workflow import THIRTY_MIN_MS
from sellerdesk.utils.business_hours import add_business_hours
from sellerdesk.utils.setting_cell import SettingCell

CELL_KEY = "sellerdesk.settings_cell"

DEADLINE_POLICIES = ("flat", "business_hours")


class InvalidSettings(ValueError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


def _env_int(name: str, default: int, *, minimum: int = 0, maximum: int = 86400) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def settings_cache_ttl_seconds() -> int:
    return _env_int("SETTINGS_CACHE_TTL_SECONDS", 300)


def get_settings_row() -> MarketplaceSettings:
    row = MarketplaceSettings.query.order_by(MarketplaceSettings.id.asc()).first()
    if row is None:
        row = MarketplaceSettings()
        db.session.add(row)
        db.session.commit()
    return row


def load_settings() -> dict:
    return get_settings_row().to_dict()


def build_settings_cell() -> SettingCell[dict]:
    return SettingCell(load_settings, ttl_seconds=settings_cache_ttl_seconds() or None)


def settings_cell() -> SettingCell[dict]:
    cell = current_app.extensions.get(CELL_KEY)
    if cell is None:
        cell = build_settings_cell()
        current_app.extensions[CELL_KEY] = cell
    return cell


def current_settings() -> dict:
    return settings_cell().get()


def _coerce_hour(field: str, value) -> int:
    try:
        hour = int(value)
    except (TypeError, ValueError):
        raise InvalidSettings(field, f"{field} must be an integer hour")
    if hour < 0 or hour > 24:
        raise InvalidSettings(field, f"{field} must be between 0 and 24")
    return hour


def _coerce_days(value) -> list[int]:
    if isinstance(value, str):
        value = [p for p in value.split(",") if p.strip()]
    if not isinstance(value, (list, tuple)) or not value:
        raise InvalidSettings("business_days", "business_days must be a non-empty list of weekdays (0=Monday)")
    days: list[int] = []
    for item in value:
        try:
            day = int(item)
        except (TypeError, ValueError):
            raise InvalidSettings("business_days", "business_days must contain integers 0..6")
        if day < 0 or day > 6:
            raise InvalidSettings("business_days", "business_days must contain integers 0..6")
        if day not in days:
            days.append(day)
    return sorted(days)


def update_settings(payload: dict, *, updated_by: str | None = None) -> dict:
    """Validate and persist a partial settings update, then refresh the cell."""
    row = get_settings_row()
    merged = row.to_dict()

    if "deadline_policy" in payload:
        policy = str(payload.get("deadline_policy") or "").strip().lower()
        if policy not in DEADLINE_POLICIES:
            raise InvalidSettings("deadline_policy", "deadline_policy must be one of: flat, business_hours")
        merged["deadline_policy"] = policy
    if "business_open_hour" in payload:
        merged["business_open_hour"] = _coerce_hour("business_open_hour", payload.get("business_open_hour"))
    if "business_close_hour" in payload:
        merged["business_close_hour"] = _coerce_hour("business_close_hour", payload.get("business_close_hour"))
    if merged["business_open_hour"] >= merged["business_close_hour"]:
        raise InvalidSettings("business_open_hour", "business_open_hour must be before business_close_hour")
    if "business_days" in payload:
        merged["business_days"] = _coerce_days(payload.get("business_days"))
    if "business_timezone" in payload:
        tz_name = str(payload.get("business_timezone") or "").strip()
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise InvalidSettings("business_timezone", "business_timezone must be an IANA timezone name")
        merged["business_timezone"] = tz_name
    if "publication_id" in payload:
        pub = payload.get("publication_id")
        merged["publication_id"] = (str(pub).strip()[:160] or None) if pub is not None else None

    row.deadline_policy = merged["deadline_policy"]
    row.business_open_hour = merged["business_open_hour"]
    row.business_close_hour = merged["business_close_hour"]
    row.business_days = ",".join(str(d) for d in merged["business_days"])
    row.business_timezone = merged["business_timezone"]
    row.publication_id = merged["publication_id"]
    row.updated_by = (str(updated_by)[:128] if updated_by else None)
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()

    current_app.logger.info(
        "marketplace_settings_updated by=%s policy=%s",
        updated_by,
        row.deadline_policy,
    )
    return settings_cell().refresh()


def plan_deadline_fn(settings: dict) -> Callable[[int], int]:
    """Deadline policy for admin pickup planning, measured from acceptance."""
    if (settings or {}).get("deadline_policy") == "business_hours":

        def _business(accepted_at: int) -> int:
            return add_business_hours(
                accepted_at,
                THIRTY_MIN_MS,
                open_hour=int(settings.get("business_open_hour", 10)),
                close_hour=int(settings.get("business_close_hour", 19)),
                days=settings.get("business_days") or [0, 1, 2, 3, 4, 5],
                tz_name=str(settings.get("business_timezone") or "Asia/Kolkata"),
            )

        return _business

    def _flat(accepted_at: int) -> int:
        return int(accepted_at) + THIRTY_MIN_MS

    return _flat
