"""
The submission pipeline shared by POST /api/submit-form and POST /api/wizard/submit.

validate -> sanitize -> consent -> PDF -> storage -> metadata/master/audit -> cache bust
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake_api.core.config import settings
from intake_api.core.errors import ApiError, format_validation_errors, validation_message
from intake_api.core.logging import log_form_submission
from intake_api.db.models import ActorType, EventType
from intake_api.services.analytics import analytics
from intake_api.services.audit_events import append_event, build_submission_payload
from intake_api.services.drive_uploader import UploadError, uploader
from intake_api.services.master_files import master_files
from intake_api.services.metadata_store import metadata_store
from intake_api.services.pdf_generator import build_filename, generate_pdf
from intake_api.services.validation import sanitize_object, sanitize_string, schema_for

logger = logging.getLogger(__name__)

E2E_FILE_ID = "e2e-test-mock-id"


def is_e2e_request(request: Request) -> bool:
    return settings.E2E_MODE or request.headers.get("x-e2e-mode", "").lower() == "true"


def validate_form(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the schema by formType and return the sanitized, computed form data."""
    if not isinstance(raw, dict):
        raise ApiError(400, "VALIDATION_FAILED", "Validation failed: request body must be an object")

    schema = schema_for(raw.get("formType"))
    try:
        form = schema.model_validate(raw)
    except ValidationError as exc:
        errors = format_validation_errors(exc.errors(include_url=False))
        raise ApiError(400, "VALIDATION_FAILED", validation_message(errors), errors=errors) from exc

    data = sanitize_object(form.model_dump(exclude_none=True))

    if data.get("firstName") and data.get("lastName"):
        data["fullName"] = f"{data['firstName']} {data['lastName']}"
        data["name"] = data["fullName"]
    if "pregnancy_weeks" in data:
        data["pregnancy_weeks"] = sanitize_string(data["pregnancy_weeks"], 10)

    if data.get("formType") != "feedback" and not form.has_consent():
        raise ApiError(400, "CONSENT_REQUIRED", "Consent is required to proceed")

    return data


def _record_side_files(db: Session, data: Dict[str, Any], filename: str, storage: Optional[str],
                       request_id: Optional[str]) -> None:
    """Metadata, master file and audit row. Each failure is a warning, never a failed submission."""
    try:
        metadata = metadata_store.save_metadata(data, filename)
    except OSError as exc:
        logger.warning("Failed to save metadata (non-fatal)", extra={"error": str(exc), "requestId": request_id})
        return

    result = master_files.append(metadata, data.get("formType"))
    if not result.get("success"):
        logger.warning("Master file not updated (non-fatal)",
                       extra={"error": result.get("error"), "requestId": request_id})

    try:
        append_event(
            db,
            EventType.SUBMISSION_RECEIVED,
            payload=build_submission_payload(metadata, storage),
            actor_type=ActorType.API,
            actor_id=request_id,
            subject_id=filename,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to record submission audit event (non-fatal)",
                       extra={"error": str(exc), "requestId": request_id})


def process_submission(
        raw: Dict[str, Any],
        db: Session,
        request_id: Optional[str] = None,
        e2e: bool = False,
) -> Dict[str, Any]:
    data = validate_form(raw)

    if e2e:
        logger.info("E2E Mode: Mocking form submission",
                    extra={"formType": data.get("formType"), "requestId": request_id})
        return {"success": True, "message": "Form submitted successfully (E2E mode)", "fileId": E2E_FILE_ID}

    logger.info("Generating PDF", extra={"formType": data.get("formType"), "requestId": request_id})
    pdf = generate_pdf(data)
    filename = build_filename(data)

    try:
        upload = uploader.upload_pdf(pdf, filename)
    except UploadError as exc:
        logger.error("Error storing PDF", extra={"error": str(exc), "requestId": request_id})
        raise ApiError(500, "STORAGE_FAILED",
                       "An error occurred while processing your form. Please try again.") from exc

    log_form_submission(logger, data, upload, request_id)
    _record_side_files(db, data, filename, upload.get("storage"), request_id)
    analytics.invalidate()

    return {
        "success": True,
        "message": "Form submitted successfully",
        "fileId": upload.get("fileId"),
        "filename": filename,
    }
