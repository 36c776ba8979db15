"""
LibreLink Up provider.

Authentication is two-phase: a login exchanges email/password for a
bearer token with an expiry, then connection discovery resolves the
patient whose sensor data is shared with the account. The token is
reused until it expires; the patient id, once known, is kept (and
written back to config) until ``clear_patient`` is called.

Current reading and history come from the same graph endpoint:
``data.connection.glucoseMeasurement`` and ``data.graphData``.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..core.exceptions import AuthError, DataError
from ..core.logging import mask_email
from ..core.models import HistoryBatch, Reading, TrendDirection, parse_timestamp
from ..core.secrets import EXTENSION_ID, SERVICE_NAME
from .base import ProviderBase

DEFAULT_REGION = "EU"

REGIONAL_URLS = {
    "EU": "https://api-eu.libreview.io",
    "US": "https://api.libreview.io",
    "DE": "https://api-de.libreview.io",
    "FR": "https://api-fr.libreview.io",
    "JP": "https://api-jp.libreview.io",
    "AP": "https://api-ap.libreview.io",
    "AU": "https://api-au.libreview.io",
    "RU": "https://api.libreview.ru",
}

REQUIRED_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (iPhone; CPU OS 17_4.1 like Mac OS X) AppleWebKit/536.26 "
        "(KHTML, like Gecko) Version/17.4.1 Mobile/10A5355d Safari/8536.25"
    ),
    "accept-encoding": "gzip",
    "cache-control": "no-cache",
    "connection": "Keep-Alive",
    "content-type": "application/json",
    "product": "llu.ios",
    "version": "4.12.0",
}

TREND_ARROWS = {
    1: TrendDirection.RISING,
    2: TrendDirection.STABLE,
    3: TrendDirection.FALLING,
}

TIMESTAMP_FORMAT = "%m/%d/%Y %I:%M:%S %p"

LIBRELINK_CGM_INTERVAL = 1  # minutes


def parse_librelink_timestamp(measurement: dict[str, Any]) -> datetime:
    """Timestamp of a measurement as aware UTC.

    ``FactoryTimestamp`` is UTC; ``Timestamp`` is the sensor's local
    time and is read in the local timezone.

    Raises:
        ValueError: If neither field parses
    """
    factory = measurement.get("FactoryTimestamp")
    if factory:
        try:
            parsed = datetime.strptime(factory, TIMESTAMP_FORMAT)
            return parsed.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            pass

    local = measurement.get("Timestamp")
    if not local:
        raise ValueError("measurement has no timestamp")
    try:
        return datetime.strptime(local, TIMESTAMP_FORMAT).astimezone(timezone.utc)
    except (TypeError, ValueError):
        return parse_timestamp(local)


def convert_trend_arrow(code: Any) -> TrendDirection:
    return TREND_ARROWS.get(code, TrendDirection.UNKNOWN)


class LibreLinkProvider(ProviderBase):
    """LibreLink Up follower API provider."""

    name = "librelink"

    def __init__(
        self,
        *args,
        clock: Optional[Callable[[], datetime]] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.auth_token: Optional[str] = None
        self.token_expiry: Optional[datetime] = None
        self.account_id: Optional[str] = None
        self.patient_id: Optional[str] = None

    def _settings(self) -> dict[str, Any]:
        return self.config.get("librelink") or {}

    def _password(self) -> Optional[str]:
        settings = self._settings()
        if settings.get("password"):
            return settings["password"]
        email = settings.get("email")
        if email and self.secrets is not None:
            return self.secrets.lookup(SERVICE_NAME, EXTENSION_ID, email)
        return None

    def is_configured(self) -> bool:
        return bool(self._settings().get("email") and self._password())

    def required_config(self) -> list[str]:
        return ["librelink.email", "librelink.password"]

    def missing_config(self) -> list[str]:
        missing = []
        if not self._settings().get("email"):
            missing.append("librelink.email")
        if not self._password():
            missing.append("librelink.password")
        return missing

    @property
    def region(self) -> str:
        return str(self._settings().get("region") or DEFAULT_REGION).upper()

    @property
    def api_url(self) -> str:
        return REGIONAL_URLS.get(self.region, REGIONAL_URLS[DEFAULT_REGION])

    def _auth_headers(self) -> dict[str, str]:
        headers = dict(REQUIRED_HEADERS)
        headers["authorization"] = f"Bearer {self.auth_token}"
        if self.account_id:
            headers["account-id"] = self.account_id
        return headers

    def is_token_valid(self) -> bool:
        return bool(
            self.auth_token
            and self.token_expiry
            and self._clock() < self.token_expiry
        )

    def invalidate_token(self) -> None:
        self.auth_token = None
        self.token_expiry = None

    def clear_patient(self) -> None:
        """Forget the patient id so the next fetch re-discovers it."""
        self.patient_id = None
        self.config.set("librelink.patientId", "")

    async def _login(self) -> None:
        settings = self._settings()
        self.logger.info(
            f"LibreLink login: region={self.region} email={mask_email(settings.get('email'))}"
        )
        payload = await self._request_json(
            "POST",
            f"{self.api_url}/llu/auth/login",
            headers=dict(REQUIRED_HEADERS),
            body={"email": settings.get("email"), "password": self._password()},
        )

        if not isinstance(payload, dict):
            raise DataError(self.name, "login response is not an object",
                            response_preview=str(payload)[:200])
        if payload.get("status") != 0:
            error = payload.get("error")
            if isinstance(error, dict):
                error = error.get("message") or error.get("description")
            raise AuthError(self.name, f"login failed: {error or 'unknown error'}")

        data = payload.get("data") or {}
        ticket = data.get("authTicket") if isinstance(data, dict) else None
        if not ticket or not ticket.get("token"):
            if isinstance(data, dict) and data.get("redirect"):
                raise AuthError(
                    self.name,
                    f"account belongs to region {data.get('region')!r}, not {self.region!r}",
                )
            raise AuthError(self.name, "invalid login response: no auth ticket")

        self.auth_token = ticket["token"]
        try:
            self.token_expiry = datetime.fromtimestamp(float(ticket["expires"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as e:
            raise AuthError(self.name, f"invalid token expiry: {e}") from e

        user_id = (data.get("user") or {}).get("id")
        if user_id is not None:
            self.account_id = hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()
        self.logger.info(f"LibreLink login successful, token expires {self.token_expiry.isoformat()}")

    async def _discover_patient(self) -> str:
        configured = self._settings().get("patientId")
        if configured:
            self.patient_id = str(configured)
            return self.patient_id

        try:
            payload = await self._request_json(
                "GET", f"{self.api_url}/llu/connections", headers=self._auth_headers()
            )
        except AuthError:
            self.invalidate_token()
            raise
        if not isinstance(payload, dict) or payload.get("status") != 0:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise DataError(self.name, f"failed to get connections: {error or 'unknown error'}")

        connections = payload.get("data")
        if not isinstance(connections, list) or not connections:
            raise DataError(
                self.name, "no connections found; ensure someone is sharing their data"
            )

        patient_id = connections[0].get("patientId") if isinstance(connections[0], dict) else None
        if not patient_id:
            raise DataError(self.name, "connection has no patientId")

        self.patient_id = str(patient_id)
        self.config.set("librelink.patientId", self.patient_id)
        self.logger.info(f"Found LibreLink patient ID: {self.patient_id}")
        return self.patient_id

    async def ensure_authenticated(self) -> None:
        """Log in and discover the patient only when needed."""
        self.ensure_configured()
        if self.is_token_valid() and self.patient_id:
            return
        if not self.is_token_valid():
            await self._login()
        if not self.patient_id:
            await self._discover_patient()

    async def _fetch_graph(self) -> dict[str, Any]:
        await self.ensure_authenticated()
        url = f"{self.api_url}/llu/connections/{self.patient_id}/graph"
        try:
            payload = await self._request_json("GET", url, headers=self._auth_headers())
        except AuthError:
            self.invalidate_token()
            raise

        if not isinstance(payload, dict) or payload.get("status") != 0:
            error = payload.get("error") if isinstance(payload, dict) else None
            raise DataError(self.name, f"failed to get glucose data: {error or 'unknown error'}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise DataError(self.name, "no glucose data in response")
        return data

    def convert_measurement(self, measurement: Any) -> Reading:
        """Normalize one LibreLink measurement.

        Raises:
            DataError: If value or timestamp is missing or invalid
        """
        if not isinstance(measurement, dict):
            raise DataError(self.name, f"measurement is not an object: {measurement!r}")

        value = measurement.get("ValueInMgPerDl") or measurement.get("Value")
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise DataError(self.name, f"invalid glucose value: {value!r}")
        try:
            timestamp = parse_librelink_timestamp(measurement)
        except ValueError as e:
            raise DataError(self.name, f"invalid timestamp: {e}") from e

        return Reading(
            value=float(value),
            timestamp=timestamp,
            direction=convert_trend_arrow(measurement.get("TrendArrow")),
        )

    async def fetch_current(self) -> Reading:
        data = await self._fetch_graph()
        measurement = (data.get("connection") or {}).get("glucoseMeasurement")
        if not measurement:
            raise DataError(self.name, "no current glucose measurement found")
        reading = self.convert_measurement(measurement)
        self.logger.info(f"Fetched current reading: {reading.value:g} mg/dL")
        return reading

    async def fetch_history(self) -> HistoryBatch:
        data = await self._fetch_graph()
        graph = data.get("graphData")
        if not isinstance(graph, list):
            raise DataError(self.name, "no glucose history found")

        readings: HistoryBatch = []
        for measurement in graph:
            try:
                readings.append(self.convert_measurement(measurement))
            except DataError as e:
                self.logger.debug(f"Skipping graph entry: {e}")
        self.logger.info(f"Fetched {len(readings)} history entries")
        return sorted(readings, key=lambda r: r.timestamp)

    def get_cgm_interval(self) -> float:
        return LIBRELINK_CGM_INTERVAL

    async def destroy(self) -> None:
        await super().destroy()
        self.invalidate_token()
        self.account_id = None
        self.patient_id = None
