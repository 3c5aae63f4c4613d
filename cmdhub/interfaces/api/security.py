# cmdhub/interfaces/api/security.py
"""API security: authentication, operator attribution and request throttling."""

import secrets
from typing import Annotated

from fastapi import Depends, Header
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from cmdhub.config import settings
from cmdhub.core.errors import Forbidden, Unauthorized

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

limiter = Limiter(key_func=get_remote_address)


def verify_api_key(api_key: Annotated[str | None, Depends(api_key_header)]) -> str:
    """Verify API key from X-API-Key header.

    Args:
        api_key: API key from header.

    Returns:
        Validated API key.

    Raises:
        Unauthorized: If the key is missing.
        Forbidden: If the key is invalid.
    """
    if not settings.api_auth_key:
        # Auth disabled if no key configured
        return "auth_disabled"

    if not api_key:
        raise Unauthorized("Missing API key. Include X-API-Key header.")

    if not secrets.compare_digest(api_key, settings.api_auth_key):
        raise Forbidden("Invalid API key.")

    return api_key


def get_operator_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Dashboard user recorded as created_by/updated_by."""
    return x_user_id or "api"


def get_rate_limit_string() -> str:
    """Get rate limit string for slowapi.

    Returns:
        Rate limit string in format "N/minute".
    """
    return f"{settings.api_rate_limit}/minute"
