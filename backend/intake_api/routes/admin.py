# Admin-only maintenance: account approvals, audit trail, master file rebuilds

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from intake_api.api.deps import get_db, require_admin
from intake_api.core.errors import ApiError, build_meta
from intake_api.db.models import ActorType, EventType, User, UserStatus
from intake_api.services import auth as auth_service
from intake_api.services.analytics import analytics
from intake_api.services.audit_events import append_event, latest_events, serialize_event
from intake_api.services.master_files import MasterFileError, master_files

router = APIRouter(prefix="/admin", tags=["admin"])


class RejectRequest(BaseModel):
    reason: Optional[str] = None


@router.get("/pending-users")
def pending_users(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    users = auth_service.list_users(db, UserStatus.PENDING)
    return {"success": True, "users": [auth_service.serialize_user(u) for u in users]}


@router.get("/all-users")
def all_users(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    users = auth_service.list_users(db)
    return {"success": True, "users": [auth_service.serialize_user(u) for u in users]}


@router.post("/approve-user/{user_id}")
def approve_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = auth_service.approve_user(db, user_id, admin)
    return {"success": True, "message": f"User {user.email} approved", "user": auth_service.serialize_user(user)}


@router.post("/reject-user/{user_id}")
def reject_user(
        user_id: str,
        req: Optional[RejectRequest] = Body(default=None),
        db: Session = Depends(get_db),
        admin: User = Depends(require_admin),
):
    reason = req.reason if req else None
    user = auth_service.reject_user(db, user_id, admin, reason)
    return {"success": True, "message": f"User {user.email} rejected", "user": auth_service.serialize_user(user)}


@router.get("/audit-events")
def audit_events(
        limit: int = Query(50, ge=1, le=500),
        event_type: Optional[EventType] = None,
        db: Session = Depends(get_db),
        admin: User = Depends(require_admin),
):
    events = latest_events(db, limit=limit, event_type=event_type)
    return {"events": [serialize_event(e) for e in events], "meta": build_meta()}


@router.post("/rebuild-masters")
def rebuild_masters(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Replace both master files with what metadata/ holds."""
    try:
        result = master_files.rebuild()
    except MasterFileError as exc:
        raise ApiError(500, "MASTER_REBUILD_FAILED", str(exc)) from exc

    analytics.invalidate()
    append_event(
        db, EventType.MASTERS_REBUILT,
        payload={"feedbackCount": result["feedbackCount"], "intakeCount": result["intakeCount"]},
        actor_type=ActorType.USER, actor_id=admin.email,
    )
    db.commit()
    return result
