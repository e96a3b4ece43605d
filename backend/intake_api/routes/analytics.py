from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from intake_api.api.deps import current_user, get_db, require_admin
from intake_api.core.errors import ApiError
from intake_api.db.models import ActorType, EventType, User
from intake_api.services.analytics import analytics
from intake_api.services.audit_events import append_event
from intake_api.services.master_files import MasterFileError, master_files

# every read needs an approved session
router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(current_user)])


@router.get("/summary")
def summary():
    return analytics.summary()


@router.get("/trends")
def trends(period: str = "30"):
    return analytics.trends(period)


@router.get("/health-issues")
def health_issues():
    return analytics.health_issues()


@router.get("/therapists")
def therapists():
    return analytics.therapists()


@router.get("/pressure")
def pressure():
    return analytics.pressure()


@router.get("/feeling-scores")
def feeling_scores():
    return analytics.feeling_scores()


@router.get("/health-notes")
def health_notes():
    return analytics.health_notes()


@router.get("/data-quality")
def data_quality():
    return analytics.data_quality()


@router.get("/sessions")
def sessions(period: str = "30"):
    return analytics.sessions(period)


@router.post("/update-data")
def update_data(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    """Merge metadata/ into the master files, keeping what is already there."""
    try:
        result = master_files.sync()
    except MasterFileError as exc:
        raise ApiError(500, "MASTER_SYNC_FAILED", str(exc)) from exc

    analytics.invalidate()
    append_event(
        db, EventType.MASTERS_SYNCED,
        payload={"added": result["added"], "feedbackCount": result["feedbackCount"],
                 "intakeCount": result["intakeCount"]},
        actor_type=ActorType.USER, actor_id=admin.email,
    )
    db.commit()
    return result
