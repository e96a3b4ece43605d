import logging
import platform
import time
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from intake_api.core.config import settings
from intake_api.core.rate_limit import limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["utility"])

STARTED_AT = time.monotonic()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def health_payload() -> dict:
    checks = {
        "drive": settings.google_drive_configured,
        "directories": {
            "metadata": settings.metadata_dir.is_dir(),
            "pdfs": settings.pdf_dir.is_dir(),
        },
        "environment": {
            "env": settings.ENV,
            "port": settings.PORT,
            "googleDriveConfigured": settings.google_drive_configured,
            "openAIConfigured": settings.openai_configured,
            "allowLocalFallback": settings.ALLOW_LOCAL_PDF_FALLBACK,
        },
    }

    all_dirs = all(checks["directories"].values())
    has_storage = checks["drive"] or settings.ALLOW_LOCAL_PDF_FALLBACK

    return {
        "status": "healthy" if all_dirs and has_storage else "degraded",
        "timestamp": _now_iso(),
        "version": settings.VERSION,
        "pythonVersion": platform.python_version(),
        "uptimeSeconds": round(time.monotonic() - STARTED_AT),
        "environment": settings.ENV,
        "checks": checks,
    }


def _health_response() -> JSONResponse:
    try:
        return JSONResponse(health_payload())
    except OSError as exc:
        logger.error("Error generating health payload", extra={"error": str(exc)})
        return JSONResponse(
            status_code=503,
            content={
                "status": "error",
                "timestamp": _now_iso(),
                "uptimeSeconds": round(time.monotonic() - STARTED_AT),
                "error": "Health check failed",
            },
        )


@router.get("/health")
@limiter.exempt
def health():
    return _health_response()


@router.get("/api/health")
@limiter.exempt
def api_health():
    return _health_response()


@router.get("/__version")
@limiter.exempt
def version():
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "pythonVersion": platform.python_version(),
        "environment": settings.ENV,
    }
