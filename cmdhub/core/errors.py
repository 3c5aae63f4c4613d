# cmdhub/core/errors.py
"""Error taxonomy shared by the store, the reconciler and the API.

Each error carries the HTTP status the API layer maps it to.
"""


class CmdhubError(Exception):
    """Base class for all command registry errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(CmdhubError):
    """No live record matches the request."""

    status_code = 404


class Conflict(CmdhubError):
    """A live command with the same (name, scope) already exists."""

    status_code = 409


class ValidationFailure(CmdhubError):
    """Malformed name, description length or category."""

    status_code = 400


class RateLimited(CmdhubError):
    """Mutation budget exhausted for an (action, identifier) pair.

    Attributes:
        reset_in: Seconds until the current window closes.
        remaining: Attempts left in the window (always 0 when raised).
    """

    status_code = 429

    def __init__(self, message: str, reset_in: int, remaining: int = 0) -> None:
        super().__init__(message)
        self.reset_in = reset_in
        self.remaining = remaining


class TransportFailure(CmdhubError):
    """The remote registry was unreachable or rejected the call.

    Attributes:
        upstream_status: HTTP status returned by Discord, if any.
    """

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class RegistryNotConfigured(CmdhubError):
    """Bot token or application ID missing."""

    status_code = 503


class Unauthorized(CmdhubError):
    """X-API-Key header missing while API auth is enabled."""

    status_code = 401


class Forbidden(CmdhubError):
    """X-API-Key header does not match the configured key."""

    status_code = 403
