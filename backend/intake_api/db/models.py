import enum
import uuid

from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Enum,
    JSON,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from intake_api.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):  # what a dashboard user may do
    ADMIN = "admin"
    MANAGER = "manager"


class UserStatus(str, enum.Enum):  # approval workflow snapshot
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventType(str, enum.Enum):  # what happened
    USER_REGISTERED = "user.registered"
    USER_APPROVED = "user.approved"
    USER_REJECTED = "user.rejected"
    USER_LOGIN = "user.login"
    USER_LOGOUT = "user.logout"
    SUBMISSION_RECEIVED = "submission.received"
    MASTERS_SYNCED = "masters.synced"
    MASTERS_REBUILT = "masters.rebuilt"


class ActorType(str, enum.Enum):  # who caused it
    USER = "user"
    SYSTEM = "system"
    API = "api"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(254), nullable=False, unique=True, index=True)  # always lower-cased
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    date_of_birth = Column(String(20), nullable=True)
    password_hash = Column(String(128), nullable=False)

    role = Column(Enum(UserRole), nullable=False, default=UserRole.MANAGER)
    status = Column(Enum(UserStatus), nullable=False, default=UserStatus.PENDING)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by = Column(String(254), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")


class AuthSession(Base):  # opaque bearer tokens handed out by /api/auth/login
    __tablename__ = "auth_sessions"

    token = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False)

    user = relationship("User", back_populates="sessions")


class AuditEvent(Base):  # append-only history; rows are never updated
    __tablename__ = "audit_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_type = Column(Enum(EventType), nullable=False, index=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    actor_type = Column(Enum(ActorType), nullable=False, default=ActorType.SYSTEM)
    actor_id = Column(String(254), nullable=True)  # user email, request id, etc.
    subject_id = Column(String(254), nullable=True, index=True)  # user id or submission filename

    # JSON payload should always include what changed and where it came from
    payload = Column(JSON, nullable=False, default=dict)
    reason = Column(Text, nullable=True)
