"""Rate limiting for the public API (slowapi, in-memory storage)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from intake_api.core.config import settings

API_LIMIT = "300/15minutes"
SUBMIT_FORM_LIMIT = "40/15minutes"
SOAP_LIMIT = "20/15minutes"
ERROR_LOG_LIMIT = "50/5minutes"

# Single-process server, so memory storage is enough
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    default_limits=[API_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
)
