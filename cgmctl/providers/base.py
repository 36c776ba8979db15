"""
Base provider interface for CGM data sources.

All providers must implement this interface to be used with cgmctl.
Providers normalize their wire format to ``Reading`` and report
failures as ConfigError, AuthError, NetworkError or DataError.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

import httpx

from ..core.exceptions import AuthError, ConfigError, DataError, NetworkError
from ..core.logging import TRACE
from ..core.models import HistoryBatch, Reading
from ..core.secrets import SecretStore

REQUEST_TIMEOUT = 15.0
MAX_CONNECTIONS = 10
MAX_KEEPALIVE_CONNECTIONS = 5
PREVIEW_CHARS = 200


class ConfigSource(Protocol):
    """What providers need from the configuration collaborator."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class ProviderBase(ABC):
    """
    Base class for CGM providers.

    Providers give the poller one contract over different wire protocols
    and authentication models (Nightscout token, LibreLink Up login).
    """

    name: str = "base"

    def __init__(
        self,
        config: ConfigSource,
        secrets: Optional[SecretStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.secrets = secrets
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._destroyed = False
        self.logger = logging.getLogger(f"cgmctl.providers.{self.name}")

    @abstractmethod
    def is_configured(self) -> bool:
        """Check required settings are present (no I/O)."""
        pass

    @abstractmethod
    def required_config(self) -> list[str]:
        """Config keys this provider needs."""
        pass

    @abstractmethod
    async def fetch_current(self) -> Reading:
        """Fetch the latest reading."""
        pass

    @abstractmethod
    async def fetch_history(self) -> HistoryBatch:
        """Fetch recent history, oldest first."""
        pass

    @abstractmethod
    def get_cgm_interval(self) -> float:
        """Estimated sampling cadence in minutes."""
        pass

    def missing_config(self) -> list[str]:
        """Required keys whose value is empty."""
        return [key for key in self.required_config() if not self.config.get(key)]

    def ensure_configured(self) -> None:
        """Raise ConfigError when required settings are absent."""
        if not self.is_configured():
            raise ConfigError(self.name, self.missing_config())

    @property
    def client(self) -> httpx.AsyncClient:
        if self._destroyed:
            raise NetworkError(self.name, "provider has been destroyed")
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT,
                limits=httpx.Limits(
                    max_connections=MAX_CONNECTIONS,
                    max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                ),
                transport=self._transport,
            )
        return self._client

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
        log_url: Optional[str] = None,
    ) -> Any:
        """Issue a request and decode its JSON body.

        Raises:
            NetworkError: On transport failure, timeout or non-auth HTTP error
            AuthError: On HTTP 401/403
            DataError: On an empty or non-JSON body
        """
        self.logger.debug(f"{method} {log_url or url}")
        try:
            response = await self.client.request(method, url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            raise NetworkError(self.name, f"request timed out: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(self.name, f"request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(
                self.name,
                details=f"rejected by server: {response.text[:PREVIEW_CHARS]}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise NetworkError(
                self.name,
                f"unexpected response for {log_url or url}",
                status_code=response.status_code,
            )

        text = response.text
        if not text or not text.strip():
            raise DataError(self.name, f"empty response (HTTP {response.status_code})")
        self.logger.log(TRACE, f"Response preview: {text[:PREVIEW_CHARS]}")
        try:
            return json.loads(text)
        except ValueError as e:
            raise DataError(
                self.name, f"invalid JSON: {e}", response_preview=text[:PREVIEW_CHARS]
            ) from e

    async def destroy(self) -> None:
        """Close the HTTP session. Idempotent."""
        self._destroyed = True
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def get_info(self) -> dict:
        """Get provider information."""
        return {
            "name": self.name,
            "configured": self.is_configured(),
            "required_config": self.required_config(),
            "cgm_interval": self.get_cgm_interval(),
        }
