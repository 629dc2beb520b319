"""Rate limiting configuration for the scheduling API."""

import logging
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from scheduling_core.core.config import settings

logger = logging.getLogger(__name__)

# Shared storage (e.g. redis://) for multi-worker deployments; memory otherwise
STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)

# Public token endpoints are unauthenticated; keep them tight
PUBLIC_ACTION_LIMIT = "10/minute"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://" if IS_TESTING else STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)
if not IS_TESTING and STORAGE_URI == "memory://":
    logger.info("Rate limiting uses in-memory storage (per-process limits)")
