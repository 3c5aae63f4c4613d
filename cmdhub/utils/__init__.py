"""Utility functions for the command registry."""

from cmdhub.utils.logging import (
    configure_structured_logging,
    get_operator,
    get_request_id,
    set_request_context,
)
from cmdhub.utils.observability import setup_logfire

__all__ = [
    "setup_logfire",
    "set_request_context",
    "get_request_id",
    "get_operator",
    "configure_structured_logging",
]
