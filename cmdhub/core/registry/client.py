# cmdhub/core/registry/client.py
"""Discord REST transport for application commands.

Thin wrapper over the application command endpoints of the Discord API
(list, create, bulk overwrite, delete) for global and guild scopes.
Transient failures (timeouts, connection errors, 429 and 5xx responses)
are retried with exponential backoff via tenacity; anything left over is
raised as TransportFailure.
"""

import logging
from typing import Any

import httpx
import tenacity

from cmdhub.core.errors import RegistryNotConfigured, TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://discord.com/api/v10"


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return False


class DiscordRegistryClient:
    """Async client for Discord application command registration.

    Attributes:
        application_id: Discord application that owns the commands.

    Example:
        >>> client = DiscordRegistryClient(token="...", application_id="123")
        >>> commands = await client.list_commands(guild_id=None)
        >>> await client.close()
    """

    def __init__(
        self,
        token: str,
        application_id: str,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        max_attempts: int = 3,
        backoff_multiplier: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            token: Bot token used for the Authorization header.
            application_id: Discord application ID.
            api_base: Base URL including the API version.
            timeout: Per-request timeout in seconds.
            max_attempts: Attempts per request, including the first one.
            backoff_multiplier: Exponential backoff multiplier in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.application_id = application_id
        self._token = token
        self._max_attempts = max(1, max_attempts)
        self._backoff_multiplier = backoff_multiplier
        self._client = httpx.AsyncClient(
            base_url=api_base,
            timeout=timeout,
            headers={"Authorization": f"Bot {token}"},
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._token and self.application_id)

    def _commands_path(self, guild_id: str | None) -> str:
        if guild_id:
            return f"/applications/{self.application_id}/guilds/{guild_id}/commands"
        return f"/applications/{self.application_id}/commands"

    async def _request(
        self, method: str, path: str, json: Any | None = None
    ) -> httpx.Response:
        """Send one request with retries.

        Raises:
            RegistryNotConfigured: If token or application ID is missing.
            TransportFailure: If Discord is unreachable or rejects the call.
        """
        if not self.configured:
            raise RegistryNotConfigured(
                "Discord application ID or bot token not configured"
            )

        try:
            async for attempt in tenacity.AsyncRetrying(
                stop=tenacity.stop_after_attempt(self._max_attempts),
                wait=tenacity.wait_exponential(
                    multiplier=self._backoff_multiplier, min=0, max=30
                ),
                retry=tenacity.retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.request(method, path, json=json)
                    response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Discord API %s %s failed: HTTP %d", method, path, status)
            raise TransportFailure(
                f"Discord API rejected {method} {path}: HTTP {status}",
                upstream_status=status,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Discord API %s %s unreachable: %s", method, path, e)
            raise TransportFailure(f"Discord API unreachable: {e}") from e

        return response

    async def list_commands(self, guild_id: str | None = None) -> list[dict[str, Any]]:
        """Fetch every command registered in a scope."""
        response = await self._request("GET", self._commands_path(guild_id))
        commands = response.json()
        logger.info(
            "Fetched %d commands from Discord (scope=%s)",
            len(commands),
            guild_id or "global",
        )
        return commands

    async def create_command(
        self, payload: dict[str, Any], guild_id: str | None = None
    ) -> dict[str, Any]:
        """Create or upsert a single command in a scope."""
        response = await self._request("POST", self._commands_path(guild_id), json=payload)
        return response.json()

    async def replace_commands(
        self, payloads: list[dict[str, Any]], guild_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Atomically overwrite every command in a scope.

        Returns:
            The command objects Discord registered, with their IDs.
        """
        response = await self._request("PUT", self._commands_path(guild_id), json=payloads)
        return response.json()

    async def delete_command(self, command_id: str, guild_id: str | None = None) -> bool:
        """Delete one command by its Discord ID.

        Returns:
            True if deleted, False if Discord no longer knew the command.
        """
        try:
            await self._request("DELETE", f"{self._commands_path(guild_id)}/{command_id}")
        except TransportFailure as e:
            if e.upstream_status == 404:
                logger.info("Command %s already absent from Discord", command_id)
                return False
            raise
        return True

    async def close(self) -> None:
        await self._client.aclose()

    # Lifecycle hook
    shutdown = close
