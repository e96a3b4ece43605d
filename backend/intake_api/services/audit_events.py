from sqlalchemy.orm import Session  # this function writes inside a DB transaction
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json

from intake_api.db.models import AuditEvent, ActorType, EventType

# All audit writes go through this module
# Forces append-only discipline


def utc_now():
    return datetime.now(timezone.utc)


def append_event(
        db: Session,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
        actor_type: ActorType = ActorType.SYSTEM,
        actor_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        reason: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
) -> AuditEvent:
    # Write one immutable row; the caller owns the commit

    if payload is None:
        payload = {}

    if not isinstance(payload, dict):
        raise ValueError("payload must be a dict")

    # JSON requires string keys
    if any(not isinstance(k, str) for k in payload.keys()):
        raise ValueError("payload keys must be strings")

    try:
        json.dumps(payload)
    except TypeError as e:
        raise ValueError(f"payload is not JSON-serializable: {e}")

    if occurred_at is None:
        occurred_at = utc_now()

    event = AuditEvent(
        event_type=event_type,
        occurred_at=occurred_at,
        actor_type=actor_type,
        actor_id=actor_id,
        subject_id=subject_id,
        reason=reason,
        payload=payload,
    )

    db.add(event)
    db.flush()  # assigns event.id without committing
    return event


def build_submission_payload(metadata: Dict[str, Any], storage: Optional[str]) -> dict:
    # Versioned payload describing a received submission; no health details, just identifiers
    return {
        "schema_version": "submission.received.v1",
        "formType": metadata.get("formType"),
        "category": metadata.get("category"),
        "filename": metadata.get("filename"),
        "storage": storage,
    }


def latest_events(db: Session, limit: int = 50, event_type: Optional[EventType] = None) -> List[AuditEvent]:
    query = db.query(AuditEvent)
    if event_type is not None:
        query = query.filter(AuditEvent.event_type == event_type)
    return query.order_by(AuditEvent.occurred_at.desc()).limit(limit).all()


def serialize_event(e: AuditEvent) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type.value if hasattr(e.event_type, "value") else str(e.event_type),
        "occurred_at": e.occurred_at.isoformat() if e.occurred_at else None,
        "actor_type": e.actor_type.value if hasattr(e.actor_type, "value") else str(e.actor_type),
        "actor_id": e.actor_id,
        "subject_id": e.subject_id,
        "reason": e.reason,
        "payload": e.payload,
    }
