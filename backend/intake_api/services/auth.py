"""Dashboard accounts: bcrypt passwords, opaque session tokens and the admin approval workflow."""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import bcrypt
from sqlalchemy.orm import Session

from intake_api.core.config import settings
from intake_api.core.errors import ApiError
from intake_api.db.models import ActorType, AuthSession, EventType, User, UserRole, UserStatus
from intake_api.services.audit_events import append_event, utc_now

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt ignores or rejects anything longer
_HAS_LETTER = re.compile(r"[A-Za-z]")
_HAS_DIGIT = re.compile(r"\d")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:  # malformed stored hash
        return False


def password_problem(password: str) -> Optional[str]:
    if len(password) < MIN_PASSWORD_LENGTH or not _HAS_LETTER.search(password) or not _HAS_DIGIT.search(password):
        return "Password must be at least 8 characters and include a letter and a number"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return "Password is too long (maximum 72 bytes)"
    return None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return _as_utc(value).isoformat() if value else None


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "dateOfBirth": user.date_of_birth,
        "role": user.role.value,
        "status": user.status.value,
        "createdAt": _iso(user.created_at),
        "approvedAt": _iso(user.approved_at),
        "approvedBy": user.approved_by,
        "rejectedAt": _iso(user.rejected_at),
        "rejectionReason": user.rejection_reason,
    }


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip().lower()).first()


def register_user(
        db: Session,
        email: str,
        first_name: str,
        last_name: str,
        date_of_birth: str,
        password: str,
        confirm_password: str,
) -> User:
    if not all(v and str(v).strip() for v in (email, first_name, last_name, date_of_birth, password)):
        raise ApiError(400, "MISSING_FIELDS", "Email, first name, last name, date of birth and password are required")
    if password != confirm_password:
        raise ApiError(400, "PASSWORD_MISMATCH", "Passwords do not match")
    problem = password_problem(password)
    if problem:
        raise ApiError(400, "WEAK_PASSWORD", problem)
    if find_user_by_email(db, email):
        raise ApiError(400, "EMAIL_TAKEN", "Email already registered")

    user = User(
        email=email.strip().lower(),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        date_of_birth=date_of_birth.strip(),
        password_hash=hash_password(password),
        role=UserRole.MANAGER,
        status=UserStatus.PENDING,
    )
    db.add(user)
    db.flush()

    append_event(
        db,
        EventType.USER_REGISTERED,
        payload={"email": user.email, "role": user.role.value},
        actor_type=ActorType.USER,
        actor_id=user.email,
        subject_id=user.id,
    )
    db.commit()
    logger.info("User registered", extra={"userId": user.id})
    return user


def login(db: Session, email: Optional[str], password: Optional[str]) -> AuthSession:
    if not email or not password:
        raise ApiError(400, "MISSING_CREDENTIALS", "Email and password required")

    user = find_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise ApiError(401, "INVALID_CREDENTIALS", "Invalid email or password")

    if user.status == UserStatus.PENDING:
        raise ApiError(403, "ACCOUNT_PENDING", "Account pending approval. Please wait for an administrator.")
    if user.status == UserStatus.REJECTED:
        raise ApiError(403, "ACCOUNT_REJECTED", "Account registration was rejected.")

    now = utc_now()
    session = AuthSession(
        token=secrets.token_urlsafe(32),
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(hours=settings.SESSION_TTL_HOURS),
    )
    db.add(session)
    append_event(db, EventType.USER_LOGIN, actor_type=ActorType.USER, actor_id=user.email, subject_id=user.id)
    db.commit()
    return session


def resolve_session(db: Session, token: Optional[str]) -> Optional[User]:
    """The approved user behind a live token, or None."""
    if not token:
        return None
    session = db.get(AuthSession, token)
    if session is None:
        return None
    if _as_utc(session.expires_at) <= utc_now():
        db.delete(session)
        db.commit()
        return None
    if session.user.status != UserStatus.APPROVED:
        return None
    return session.user


def logout(db: Session, token: str) -> bool:
    session = db.get(AuthSession, token)
    if session is None:
        return False
    append_event(
        db, EventType.USER_LOGOUT, actor_type=ActorType.USER, actor_id=session.user.email, subject_id=session.user_id
    )
    db.delete(session)
    db.commit()
    return True


def _get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise ApiError(404, "UNKNOWN_USER", "User not found")
    return user


def approve_user(db: Session, user_id: str, admin: User) -> User:
    user = _get_user(db, user_id)
    user.status = UserStatus.APPROVED
    user.approved_at = utc_now()
    user.approved_by = admin.email
    user.rejected_at = None
    user.rejection_reason = None

    append_event(
        db, EventType.USER_APPROVED, payload={"email": user.email},
        actor_type=ActorType.USER, actor_id=admin.email, subject_id=user.id,
    )
    db.commit()
    return user


def reject_user(db: Session, user_id: str, admin: User, reason: Optional[str] = None) -> User:
    user = _get_user(db, user_id)
    if user.id == admin.id:
        raise ApiError(400, "SELF_REJECTION", "Administrators cannot reject their own account")

    user.status = UserStatus.REJECTED
    user.rejected_at = utc_now()
    user.rejection_reason = reason
    # a rejected account loses any live sessions
    for session in list(user.sessions):
        db.delete(session)

    append_event(
        db, EventType.USER_REJECTED, payload={"email": user.email},
        actor_type=ActorType.USER, actor_id=admin.email, subject_id=user.id, reason=reason,
    )
    db.commit()
    return user


def list_users(db: Session, status: Optional[UserStatus] = None) -> List[User]:
    query = db.query(User)
    if status is not None:
        query = query.filter(User.status == status)
    return query.order_by(User.created_at.asc()).all()


def ensure_admin(db: Session, email: str, password: str) -> Optional[User]:
    """Create the bootstrap admin from ADMIN_EMAIL/ADMIN_PASSWORD when missing."""
    if not email or not password:
        return None

    existing = find_user_by_email(db, email)
    if existing is not None:
        return existing

    admin = User(
        email=email.strip().lower(),
        first_name="Admin",
        last_name="User",
        password_hash=hash_password(password),
        role=UserRole.ADMIN,
        status=UserStatus.APPROVED,
        approved_at=utc_now(),
        approved_by="system",
    )
    db.add(admin)
    db.flush()
    append_event(db, EventType.USER_APPROVED, payload={"email": admin.email, "bootstrap": True}, subject_id=admin.id)
    db.commit()
    logger.info("Bootstrap admin created", extra={"email": admin.email})
    return admin
