"""
Agent alias resolution.

The agent route needs the currently-active alias of the upstream agent.
Failing to resolve it is a configuration error: it is surfaced immediately
with an actionable message and never retried.
"""
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from gateway.core.config import get_settings
from gateway.core.errors import ConfigurationError
from gateway.core.logging import get_logger

logger = get_logger(__name__)

SETUP_HINT = "Set AGENT_ALIAS_ID or AGENT_ALIAS_URL and make sure the agent has been set up."


class AliasResolver(ABC):
    @abstractmethod
    async def resolve(self) -> str:
        """Return the active alias id or raise ConfigurationError."""


class StaticAliasResolver(AliasResolver):
    """Alias taken from configuration."""

    def __init__(self, alias_id: Optional[str]):
        self.alias_id = alias_id

    async def resolve(self) -> str:
        if not self.alias_id:
            raise ConfigurationError(f"Service configuration error: no agent alias configured. {SETUP_HINT}")
        return self.alias_id


class HttpAliasResolver(AliasResolver):
    """
    Alias read from an HTTP endpoint.

    The endpoint returns JSON with ``alias_id`` (or ``agentAliasId``).
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def resolve(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.get(self.url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(
                "agent_alias_resolution_failed",
                url=self.url,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise ConfigurationError(
                f"Service configuration error: unable to resolve agent alias ({exc}). {SETUP_HINT}"
            ) from exc

        alias_id = (payload.get("alias_id") or payload.get("agentAliasId")) if isinstance(payload, dict) else None
        if not alias_id:
            raise ConfigurationError(f"Service configuration error: alias endpoint returned no alias. {SETUP_HINT}")
        return str(alias_id)


_alias_resolver: Optional[AliasResolver] = None


def get_alias_resolver() -> AliasResolver:
    """Global resolver: AGENT_ALIAS_URL wins over a static AGENT_ALIAS_ID."""
    global _alias_resolver
    if _alias_resolver is None:
        settings = get_settings()
        if settings.agent_alias_url:
            _alias_resolver = HttpAliasResolver(settings.agent_alias_url)
        else:
            _alias_resolver = StaticAliasResolver(settings.agent_alias_id)
    return _alias_resolver
