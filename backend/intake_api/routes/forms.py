# Public form endpoints: submission, SOAP drafting and client error reports

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from intake_api.api.deps import get_db
from intake_api.core.errors import ApiError
from intake_api.core.rate_limit import ERROR_LOG_LIMIT, SOAP_LIMIT, SUBMIT_FORM_LIMIT, limiter
from intake_api.services.soap import soap_generator
from intake_api.services.submissions import is_e2e_request, process_submission
from intake_api.services.validation import SoapRequest, sanitize_string

logger = logging.getLogger(__name__)

router = APIRouter(tags=["forms"])


@router.post("/submit-form")
@limiter.limit(SUBMIT_FORM_LIMIT)
def submit_form(request: Request, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    return process_submission(
        payload,
        db,
        request_id=getattr(request.state, "request_id", None),
        e2e=is_e2e_request(request),
    )


@router.post("/generate-soap")
@limiter.limit(SOAP_LIMIT)
async def generate_soap(request: Request, payload: SoapRequest):
    note = await soap_generator.generate(payload)
    return {"success": True, "soapNote": note}


@router.post("/log-error")
@limiter.limit(ERROR_LOG_LIMIT)
def log_client_error(request: Request, payload: Dict[str, Any] = Body(...)):
    """Reports from the browser's error boundaries."""
    request_id = getattr(request.state, "request_id", None)
    if not payload.get("error") or not payload.get("containerId"):
        raise ApiError(400, "MISSING_ERROR_INFO", "Missing required error information")

    try:
        error_count = int(payload.get("errorCount") or 1)
    except (TypeError, ValueError):
        error_count = 1

    report = {
        "type": "client_error_boundary",
        "containerId": sanitize_string(payload.get("containerId"), 100),
        "error": sanitize_string(payload.get("error"), 500),
        "stack": sanitize_string(payload.get("stack"), 2000),
        "context": sanitize_string(payload.get("context"), 200),
        "clientTimestamp": payload.get("timestamp") or datetime.now(timezone.utc).isoformat(),
        "userAgent": sanitize_string(payload.get("userAgent"), 500),
        "url": sanitize_string(payload.get("url"), 500),
        "errorCount": error_count,
        "requestId": request_id,
    }

    logger.error(
        "Error Boundary Report",
        extra={"category": "error_boundary", "severity": "critical" if error_count > 3 else "high", **report},
    )
    return {"success": True, "message": "Error logged successfully", "errorId": request_id}
