"""Tests for the LibreLink Up provider."""

import hashlib
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from cgmctl.core.config import Config
from cgmctl.core.exceptions import AuthError, ConfigError, DataError
from cgmctl.core.models import TrendDirection
from cgmctl.core.secrets import (
    EXTENSION_ID,
    SERVICE_NAME,
    KeyringSecretStore,
    MemorySecretStore,
)
from cgmctl.providers.librelink import (
    LibreLinkProvider,
    convert_trend_arrow,
    parse_librelink_timestamp,
)

from fixtures.librelink_responses import PATIENT_ID, TOKEN, USER_ID

pytestmark = pytest.mark.unit

EMAIL = "follower@example.com"
NOW = datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)


class FakeLibreView:
    """Routes LibreLink Up endpoints to canned responses and records calls."""

    def __init__(self, login, connections, graph):
        self.responses = {"login": login, "connections": connections, "graph": graph}
        self.status = {"login": 200, "connections": 200, "graph": 200}
        self.requests: list[httpx.Request] = []

    def calls(self, endpoint: str) -> int:
        return sum(1 for r in self.requests if self._endpoint(r) == endpoint)

    @staticmethod
    def _endpoint(request: httpx.Request) -> str:
        path = request.url.path
        if path == "/llu/auth/login":
            return "login"
        if path.endswith("/graph"):
            return "graph"
        return "connections"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = self._endpoint(request)
        body = json.dumps(self.responses[endpoint]).encode()
        return httpx.Response(self.status[endpoint], content=body)


@pytest.fixture
def server(login_response, connections_response, graph_response):
    return FakeLibreView(login_response, connections_response, graph_response)


def make_provider(server, clock=lambda: NOW, secrets=None, **settings):
    librelink = {"email": EMAIL, "password": "hunter2", "region": "EU"}
    librelink.update(settings)
    config = Config.from_dict({"provider": "librelink", "librelink": librelink})
    return LibreLinkProvider(
        config, secrets=secrets, transport=httpx.MockTransport(server), clock=clock
    )


class TestHelpers:
    """Test conversion helpers."""

    def test_factory_timestamp_is_utc(self):
        ts = parse_librelink_timestamp({"FactoryTimestamp": "3/1/2026 12:00:00 PM"})
        assert ts == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def test_missing_timestamp_raises(self):
        with pytest.raises(ValueError):
            parse_librelink_timestamp({"Value": 100})

    @pytest.mark.parametrize("code,direction", [
        (1, TrendDirection.RISING),
        (2, TrendDirection.STABLE),
        (3, TrendDirection.FALLING),
        (5, TrendDirection.UNKNOWN),
        (None, TrendDirection.UNKNOWN),
    ])
    def test_trend_arrow(self, code, direction):
        assert convert_trend_arrow(code) is direction


class TestConfiguration:
    """Test configuration and password resolution."""

    def test_configured_with_password(self, server):
        assert make_provider(server).is_configured()

    def test_password_from_secret_store(self, server):
        secrets = MemorySecretStore()
        secrets.store(SERVICE_NAME, EXTENSION_ID, EMAIL, "from-keyring")
        provider = make_provider(server, secrets=secrets, password="")

        assert provider.is_configured()

    @pytest.mark.asyncio
    async def test_login_uses_keychain_password(self, server, memory_keyring):
        memory_keyring.passwords[("cgmctl.librelink", EMAIL)] = "from-keychain"
        provider = make_provider(server, secrets=KeyringSecretStore(), password="")

        await provider.fetch_current()

        login = json.loads(server.requests[0].content)
        assert login["password"] == "from-keychain"
        await provider.destroy()

    def test_missing_password(self, server):
        provider = make_provider(server, password="")
        assert not provider.is_configured()
        assert provider.missing_config() == ["librelink.password"]

    @pytest.mark.parametrize("region,url", [
        ("US", "https://api.libreview.io"),
        ("de", "https://api-de.libreview.io"),
        ("XX", "https://api-eu.libreview.io"),
    ])
    def test_regional_url(self, server, region, url):
        assert make_provider(server, region=region).api_url == url

    @pytest.mark.asyncio
    async def test_unconfigured_fetch_raises_config_error(self, server):
        provider = make_provider(server, email="")

        with pytest.raises(ConfigError):
            await provider.fetch_current()
        assert server.requests == []


class TestAuthentication:
    """Test the two-phase login."""

    @pytest.mark.asyncio
    async def test_first_fetch_logs_in_and_discovers_patient(self, server):
        provider = make_provider(server)

        reading = await provider.fetch_current()

        assert reading.value == 142
        assert reading.direction is TrendDirection.RISING
        assert [FakeLibreView._endpoint(r) for r in server.requests] == [
            "login", "connections", "graph",
        ]
        assert provider.patient_id == PATIENT_ID
        assert provider.config.get("librelink.patientId") == PATIENT_ID
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_login_body_and_headers(self, server):
        provider = make_provider(server)
        await provider.fetch_current()

        login = server.requests[0]
        assert json.loads(login.content) == {"email": EMAIL, "password": "hunter2"}
        assert login.headers["product"] == "llu.ios"

        graph = server.requests[-1]
        assert graph.headers["authorization"] == f"Bearer {TOKEN}"
        assert graph.headers["account-id"] == hashlib.sha256(USER_ID.encode()).hexdigest()
        assert graph.url.path == f"/llu/connections/{PATIENT_ID}/graph"
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_token_is_reused(self, server):
        provider = make_provider(server)

        await provider.fetch_current()
        await provider.fetch_history()

        assert server.calls("login") == 1
        assert server.calls("connections") == 1
        assert server.calls("graph") == 2
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_expired_token_relogs_without_rediscovery(self, server):
        now = [NOW]
        provider = make_provider(server, clock=lambda: now[0])
        await provider.fetch_current()

        now[0] = datetime(2031, 1, 1, tzinfo=timezone.utc)
        await provider.fetch_current()

        assert server.calls("login") == 2
        assert server.calls("connections") == 1
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_configured_patient_skips_discovery(self, server):
        provider = make_provider(server, patientId="preset-patient")

        await provider.fetch_current()

        assert server.calls("connections") == 0
        assert server.requests[-1].url.path == "/llu/connections/preset-patient/graph"
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_clear_patient_forces_rediscovery(self, server):
        provider = make_provider(server)
        await provider.fetch_current()

        provider.clear_patient()
        await provider.fetch_current()

        assert server.calls("connections") == 2
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_login_failure(self, server, login_failed_response):
        server.responses["login"] = login_failed_response
        provider = make_provider(server)

        with pytest.raises(AuthError, match="notAuthenticated"):
            await provider.fetch_current()
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_region_redirect(self, server, login_redirect_response):
        server.responses["login"] = login_redirect_response
        provider = make_provider(server)

        with pytest.raises(AuthError, match="region"):
            await provider.fetch_current()
        assert provider.auth_token is None
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_no_connections(self, server, empty_connections_response):
        server.responses["connections"] = empty_connections_response
        provider = make_provider(server)

        with pytest.raises(DataError, match="no connections"):
            await provider.fetch_current()
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_rejected_graph_request_invalidates_token(self, server):
        provider = make_provider(server)
        await provider.fetch_current()

        server.status["graph"] = 401
        with pytest.raises(AuthError):
            await provider.fetch_current()
        assert provider.auth_token is None

        server.status["graph"] = 200
        await provider.fetch_current()
        assert server.calls("login") == 2
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_rejected_connections_request_invalidates_token(self, server):
        provider = make_provider(server)
        server.status["connections"] = 401

        with pytest.raises(AuthError):
            await provider.fetch_current()
        assert provider.auth_token is None
        assert provider.patient_id is None

        server.status["connections"] = 200
        await provider.fetch_current()
        assert server.calls("login") == 2
        assert server.calls("connections") == 2
        await provider.destroy()


class TestData:
    """Test measurement conversion."""

    @pytest.mark.asyncio
    async def test_history_skips_bad_entries_and_sorts(self, server):
        provider = make_provider(server)

        history = await provider.fetch_history()

        assert [r.value for r in history] == [110, 120, 131]
        assert history[-1].direction is TrendDirection.FALLING
        assert history[0].timestamp == datetime(2026, 3, 1, 11, 30, tzinfo=timezone.utc)
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_missing_current_measurement(self, server, graph_response):
        graph_response["data"]["connection"] = {}
        provider = make_provider(server)

        with pytest.raises(DataError, match="no current glucose"):
            await provider.fetch_current()
        await provider.destroy()

    @pytest.mark.asyncio
    async def test_error_status_in_graph(self, server):
        server.responses["graph"] = {"status": 4, "error": "maintenance"}
        provider = make_provider(server)

        with pytest.raises(DataError, match="maintenance"):
            await provider.fetch_history()
        await provider.destroy()

    def test_cgm_interval(self, server):
        assert make_provider(server).get_cgm_interval() == 1

    @pytest.mark.asyncio
    async def test_destroy_forgets_session(self, server):
        provider = make_provider(server)
        await provider.fetch_current()

        await provider.destroy()

        assert provider.auth_token is None
        assert provider.patient_id is None
        assert provider.destroyed
