"""
warden.api.routes.admin — Admin endpoints (JWT-protected)
==========================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from warden.api.deps import (
    get_application_service,
    get_current_admin,
    get_decision_engine,
    get_engine,
    get_reputation_ledger,
    get_whitelist,
)
from warden.engine.outcomes import OverrideStatus
from warden.services import admin_service, reconciliation_service, settings_service
from warden.services.reputation_ledger import create_reason, list_reasons
from warden.services.whitelist_service import reconcile_whitelist

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)

_OVERRIDE_ERRORS: dict[OverrideStatus, tuple[int, str]] = {
    OverrideStatus.NOT_FOUND: (404, "Application not found"),
    OverrideStatus.INVALID_STATUS: (422, "Only final statuses can be forced"),
    OverrideStatus.ALREADY_FINAL: (409, "Application is already final"),
}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class SettingUpdate(BaseModel):
    key: str
    value: Any


class StatusOverride(BaseModel):
    status: str
    reason: str | None = None


class ReasonCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    is_positive: bool
    description: str | None = None


class VoteRight(BaseModel):
    can_vote: bool
    reason: str | None = None


def _actor(admin: dict) -> int:
    return int(admin["sub"])


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    items = [{"key": s.key, "value": s.value} for s in body]
    try:
        count = settings_service.bulk_upsert(engine, items, actor_id=_actor(admin))
    except settings_service.SettingValidationError as exc:
        raise HTTPException(422, str(exc))
    return {"updated": count}


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------
@router.get("/applications")
def list_applications(
    admin: dict = Depends(get_current_admin),
    applications=Depends(get_application_service),
):
    return {"applications": applications.list_open_applications()}


@router.get("/applications/{application_id}")
def get_application(
    application_id: int,
    admin: dict = Depends(get_current_admin),
    applications=Depends(get_application_service),
):
    data = applications.get_application(application_id)
    if data is None:
        raise HTTPException(404, "Application not found")
    data["questions"] = applications.list_questions(application_id)
    return data


@router.post("/applications/{application_id}/status")
def override_status(
    application_id: int,
    body: StatusOverride,
    admin: dict = Depends(get_current_admin),
    decisions=Depends(get_decision_engine),
):
    result = decisions.admin_override(application_id, body.status, _actor(admin), body.reason)
    if result.status in _OVERRIDE_ERRORS:
        code, detail = _OVERRIDE_ERRORS[result.status]
        raise HTTPException(code, detail)
    return {
        "result": result.status.value,
        "application_id": application_id,
        "previous": result.previous.value if result.previous else None,
        "status": result.current.value if result.current else None,
    }


@router.delete("/applications/{application_id}")
def delete_application(
    application_id: int,
    reason: str | None = Query(None),
    admin: dict = Depends(get_current_admin),
    applications=Depends(get_application_service),
):
    if not applications.delete_application(application_id, actor_id=_actor(admin), reason=reason):
        raise HTTPException(404, "Application not found")
    return {"deleted": application_id}


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------
@router.post("/jobs/sweep")
def run_sweep(
    admin: dict = Depends(get_current_admin),
    decisions=Depends(get_decision_engine),
):
    return decisions.sweep_expired()


@router.post("/jobs/amnesty")
def run_amnesty(
    admin: dict = Depends(get_current_admin),
    reputation=Depends(get_reputation_ledger),
):
    count = reputation.run_amnesty()
    logger.info("Amnesty triggered via API by %s: %d users", admin["sub"], count)
    return {"users": count}


@router.post("/jobs/reconcile")
def run_reconcile(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    whitelist=Depends(get_whitelist),
):
    return {
        "tallies": reconciliation_service.reconcile_tallies(engine),
        "whitelist": reconcile_whitelist(engine, whitelist),
    }


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------
@router.get("/reputation/reasons")
def get_reasons(
    positive: bool | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"reasons": list_reasons(engine, positive)}


@router.post("/reputation/reasons", status_code=201)
def add_reason(
    body: ReasonCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    created = create_reason(
        engine,
        name=body.name.strip(),
        is_positive=body.is_positive,
        description=body.description,
        actor_id=_actor(admin),
    )
    if created is None:
        raise HTTPException(409, "A reason with that name already exists")
    return created


@router.get("/users/{user_id}/reputation")
def get_reputation(
    user_id: int,
    admin: dict = Depends(get_current_admin),
    reputation=Depends(get_reputation_ledger),
):
    stats = reputation.reputation_stats(user_id)
    if stats is None:
        raise HTTPException(404, "User not found")
    return stats


@router.post("/users/{user_id}/vote-right")
def set_vote_right(
    user_id: int,
    body: VoteRight,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not admin_service.set_vote_right(
        engine, user_id, body.can_vote, actor_id=_actor(admin), reason=body.reason,
    ):
        raise HTTPException(404, "User not found")
    return {"user_id": user_id, "can_vote": body.can_vote}


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------
@router.get("/audit")
def get_audit_log(
    target_table: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    """Paginated admin audit log, newest first."""
    entries = admin_service.list_audit_log(
        engine, target_table=target_table, limit=page_size, offset=(page - 1) * page_size,
    )
    return {"page": page, "page_size": page_size, "entries": entries}
