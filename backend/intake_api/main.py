# ------------------------------
# Clinic intake & feedback API
# Run with: uvicorn intake_api.main:app --reload  (from backend/)
# ------------------------------
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from intake_api.api import wizard
from intake_api.core.config import settings, validate_environment
from intake_api.core.errors import register_error_handlers
from intake_api.core.logging import configure_logging
from intake_api.core.rate_limit import limiter
from intake_api.core.request_id import RequestIdMiddleware
from intake_api.db.session import SessionLocal, init_db
from intake_api.routes.admin import router as admin_router
from intake_api.routes.analytics import router as analytics_router
from intake_api.routes.auth import router as auth_router
from intake_api.routes.forms import router as forms_router
from intake_api.routes.health import router as health_router
from intake_api.routes.wizard_runs import router as wizard_runs_router
from intake_api.services.auth import ensure_admin

configure_logging(settings)
logger = logging.getLogger(__name__)


def check_environment() -> None:
    errors, warnings = validate_environment(settings)
    for warning in warnings:
        logger.warning("Configuration warning", extra={"detail": warning})
    if errors:
        for error in errors:
            logger.error("Configuration error", extra={"detail": error})
        raise RuntimeError("Invalid configuration: " + "; ".join(errors))


def prepare_storage() -> None:
    for directory in (settings.metadata_dir, settings.pdf_dir):
        directory.mkdir(parents=True, exist_ok=True)

    init_db()
    db = SessionLocal()
    try:
        ensure_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    finally:
        db.close()


check_environment()
prepare_storage()

app = FastAPI(
    title="Flexion and Flow Intake API",
    version=settings.VERSION,
)

app.state.limiter = limiter
register_error_handlers(app)

# Browser forms and the dashboard are served from elsewhere in development
if settings.allowed_origins_list:
    origins = settings.allowed_origins_list
elif settings.is_production:
    origins = []
else:
    origins = ["*"]

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)  # outermost: every response carries X-Request-ID

app.include_router(health_router)
app.include_router(wizard.router, prefix="/api")
app.include_router(wizard_runs_router, prefix="/api")
app.include_router(forms_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(analytics_router, prefix="/api")

logger.info("Server ready", extra={"env": settings.ENV, "version": settings.VERSION})
