"""
Test configuration and fixtures.

Provides:
- an isolated DATA_DIR (metadata/, pdfs/, SQLite file) set before the app is imported
- a TestClient bound to the real app
- admin / manager sessions for authenticated routes
- a reset between tests: wizard runs, data files, users and audit rows
"""
import os
import shutil
import tempfile
from pathlib import Path

import pytest

DATA_DIR = tempfile.mkdtemp(prefix="intake-api-tests-")

os.environ["ENV"] = "test"
os.environ["DATA_DIR"] = DATA_DIR
os.environ["DATABASE_URL"] = f"sqlite:///{Path(DATA_DIR, 'test.db').as_posix()}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["E2E_MODE"] = "false"
os.environ["ALLOW_LOCAL_PDF_FALLBACK"] = "true"
os.environ["GOOGLE_SERVICE_ACCOUNT_KEY_PATH"] = ""
os.environ["GOOGLE_SERVICE_ACCOUNT_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["ADMIN_EMAIL"] = "admin@clinic.test"
os.environ["ADMIN_PASSWORD"] = "AdminPass123"

from fastapi.testclient import TestClient  # noqa: E402

from intake_api.core.config import settings  # noqa: E402
from intake_api.db.models import AuditEvent, AuthSession, User, UserStatus  # noqa: E402
from intake_api.db.session import SessionLocal  # noqa: E402
from intake_api.main import app  # noqa: E402
from intake_api.routes.wizard_runs import STORE  # noqa: E402
from intake_api.services import auth as auth_service  # noqa: E402
from intake_api.services.analytics import analytics  # noqa: E402

ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]
MANAGER_PASSWORD = "Manager123"


def _empty_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


@pytest.fixture(autouse=True)
def reset_state():
    STORE.clear()
    _empty_dir(settings.metadata_dir)
    _empty_dir(settings.pdf_dir)
    analytics.invalidate()

    db = SessionLocal()
    try:
        db.query(AuthSession).delete()
        db.query(AuditEvent).delete()
        db.query(User).delete()
        db.commit()
        auth_service.ensure_admin(db, ADMIN_EMAIL, ADMIN_PASSWORD)
    finally:
        db.close()
    yield
    analytics.invalidate()


@pytest.fixture(scope="session", autouse=True)
def _cleanup_data_dir():
    yield
    shutil.rmtree(DATA_DIR, ignore_errors=True)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def login_headers(client, email, password):
    res = client.post("/api/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['sessionId']}"}


@pytest.fixture
def admin_headers(client):
    return login_headers(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def manager_headers(client, db):
    user = auth_service.register_user(
        db,
        email="manager@clinic.test",
        first_name="Mia",
        last_name="Manager",
        date_of_birth="01/02/1990",
        password=MANAGER_PASSWORD,
        confirm_password=MANAGER_PASSWORD,
    )
    admin = auth_service.find_user_by_email(db, ADMIN_EMAIL)
    auth_service.approve_user(db, user.id, admin)
    assert user.status == UserStatus.APPROVED
    return login_headers(client, "manager@clinic.test", MANAGER_PASSWORD)


@pytest.fixture
def intake_payload():
    return {
        "formType": "seated",
        "firstName": "Test",
        "lastName": "User",
        "mobile": "0412345678",
        "email": "test.user@example.com",
        "consentAll": True,
    }


INTAKE_STEPS = [
    {
        "firstName": "Test",
        "lastName": "User",
        "email": "test.user@example.com",
        "mobile": "0412 345 678",
        "dateOfBirth": "15/06/1990",
    },
    {
        "visitGoals": ["Relaxation"],
        "referralSource": "Google search",
        "occupation": "Teacher",
        "exerciseFrequency": "Never / Rarely",
        "previousMassage": "No",
    },
    {
        "takingMedications": "No",
        "hasAllergies": "No",
        "hasRecentInjuries": "No",
        "medicalConditions": ["None"],
        "pregnantBreastfeeding": "No",
    },
    {},
    {
        "consentAll": True,
        "medicalCareDisclaimer": True,
        "signature": "text:Test User",
    },
]


@pytest.fixture
def intake_steps():
    return [dict(step) for step in INTAKE_STEPS]


@pytest.fixture
def intake_answers():
    merged = {}
    for step in INTAKE_STEPS:
        merged.update(step)
    return merged
