"""
warden.services.settings_service — Settings CRUD with Audit
============================================================

Typed read/write access to the ``settings`` table.  Only the keys the
engine reads (:data:`~warden.engine.policy.SETTING_KEYS`) can be written,
and each change is recorded in ``admin_log`` with before/after snapshots.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from warden.database.models import AdminActionType, Setting
from warden.database.seed import DEFAULT_SETTINGS
from warden.engine.policy import SETTING_KEYS
from warden.services.admin_service import log_admin_action

logger = logging.getLogger(__name__)

_PERCENT_FIELDS = frozenset({
    "participation_percent",
    "approval_threshold_percent",
    "rejection_threshold_percent",
    "negative_threshold_percent",
    "amnesty_reduction_percent",
})


class SettingValidationError(ValueError):
    """A settings write named an unknown key or an out-of-range value."""


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_all_settings(engine: Engine) -> list[dict]:
    """Every setting row, ordered by category then key."""
    with Session(engine) as session:
        rows = session.scalars(select(Setting).order_by(Setting.category, Setting.key)).all()
        return [
            {
                "key": r.key,
                "value": json.loads(r.value_json),
                "category": r.category,
                "description": r.description,
            }
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def validate_setting(key: str, value: Any) -> Any:
    """Return *value* coerced for *key*, or raise :class:`SettingValidationError`."""
    field_name = SETTING_KEYS.get(key)
    if field_name is None:
        raise SettingValidationError(f"Unknown setting: {key}")

    if field_name == "require_negative_reason":
        if not isinstance(value, bool):
            raise SettingValidationError(f"{key} must be true or false")
        return value

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SettingValidationError(f"{key} must be a number")
    if value < 0:
        raise SettingValidationError(f"{key} must not be negative")
    if field_name in _PERCENT_FIELDS:
        if value > 100:
            raise SettingValidationError(f"{key} must be between 0 and 100")
        return float(value)
    if value != int(value):
        raise SettingValidationError(f"{key} must be a whole number")
    return int(value)


def bulk_upsert(engine: Engine, settings: list[dict], *, actor_id: int | None = None) -> int:
    """Validate and upsert many settings at once.

    Each dict needs ``key`` and ``value``.  The whole batch is rejected if
    any entry fails validation.  When *actor_id* is given every change is
    written to ``admin_log``.  Returns the number of rows changed.
    """
    cleaned = [(item["key"], validate_setting(item["key"], item["value"])) for item in settings]

    changed = 0
    with Session(engine) as session:
        for key, value in cleaned:
            value_json = json.dumps(value)
            existing = session.get(Setting, key)
            before = None
            if existing is not None:
                if existing.value_json == value_json:
                    continue
                before = {"key": key, "value": json.loads(existing.value_json)}
                existing.value_json = value_json
            else:
                _default, category, desc = DEFAULT_SETTINGS.get(key, (None, "general", None))
                session.add(Setting(key=key, value_json=value_json, category=category, description=desc))

            if actor_id is not None:
                log_admin_action(
                    session,
                    actor_id=actor_id,
                    action_type=AdminActionType.UPDATE if before else AdminActionType.CREATE,
                    target_table="settings",
                    target_id=key,
                    before=before,
                    after={"key": key, "value": value},
                )
            changed += 1
        session.commit()

    if changed:
        logger.info("Updated %d settings (actor=%s)", changed, actor_id)
    return changed
