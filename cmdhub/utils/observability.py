"""Observability configuration with Pydantic Logfire."""

import logging

from fastapi import FastAPI

from cmdhub.config import settings

logger = logging.getLogger(__name__)


def setup_logfire(app: FastAPI | None = None) -> bool:
    """Configure Logfire tracing for Discord calls and the admin API.

    Only activates if LOGFIRE_TOKEN environment variable is set.

    Args:
        app: FastAPI application to instrument, if any.

    Returns:
        True if Logfire was configured.
    """
    if not settings.logfire_token:
        return False

    try:
        import logfire

        logfire.configure(token=settings.logfire_token, service_name="cmdhub")
        logfire.instrument_httpx(capture_all=True)
        if app is not None:
            logfire.instrument_fastapi(app)
    except Exception as e:
        # Log but don't fail - observability is optional
        logger.warning("Failed to configure Logfire: %s", str(e))
        return False
    return True
