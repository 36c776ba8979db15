"""
Configuration file loading for cgmctl.

Loads config.yaml from an explicit path, $CGMCTL_CONFIG, or
$XDG_CONFIG_HOME/cgmctl/config.yaml. Values missing from the file fall
back to DEFAULTS.

Thresholds are always held in mg/dL in memory. When the file says
``units: mmol/L`` its thresholds are written in mmol/L, so they are
converted with ``to_mgdl`` on load and ``to_mmol`` on save.
"""

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from .models import Thresholds, Units, to_mgdl, to_mmol
from .timers import TimerHandle, Timers

logger = logging.getLogger("cgmctl.core.config")

CONFIG_FILENAME = "config.yaml"

DEFAULTS: dict[str, Any] = {
    "provider": "nightscout",
    "nightscoutUrl": "",
    "apiToken": "",
    "librelink": {
        "email": "",
        "password": "",
        "region": "EU",
        "patientId": "",
    },
    "graphHours": 6,
    "debug": False,
    "units": "mg/dL",
    "thresholds": {
        "low": 70,
        "high": 180,
    },
    "notifications": {
        "enabled": True,
        "low": True,
        "high": True,
    },
    "staleMinutes": 10,
    "historyFetchInterval": 5,
}


@dataclass(frozen=True)
class ConfigSnapshot:
    """Values the poller compares across a reload."""
    provider: str
    nightscout_url: str
    api_token: str
    librelink_email: str
    librelink_password: str
    librelink_region: str
    units: Units

    def connection_changed(self, other: "ConfigSnapshot") -> bool:
        """True when URL or credentials differ (provider aside)."""
        return (
            self.nightscout_url != other.nightscout_url
            or self.api_token != other.api_token
            or self.librelink_email != other.librelink_email
            or self.librelink_password != other.librelink_password
            or self.librelink_region != other.librelink_region
        )


def _merge(defaults: dict, overrides: dict) -> dict:
    """Merge one level of nested sections over the defaults."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


class Config:
    """Loaded configuration with dotted-key access."""

    def __init__(self, data: Optional[dict] = None, source_path: Optional[Path] = None):
        self.source_path = source_path
        self._data = _merge(DEFAULTS, data or {})

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> "Config":
        """Create Config from parsed YAML, converting mmol/L thresholds."""
        config = cls(data, source_path=source_path)
        if config.units is Units.MMOL:
            thresholds = config._data["thresholds"]
            for key in ("low", "high"):
                try:
                    thresholds[key] = to_mgdl(float(thresholds[key]))
                except (TypeError, ValueError):
                    thresholds[key] = DEFAULTS["thresholds"][key]
        return config

    def to_dict(self) -> dict:
        """Serializable form, with thresholds in the configured units."""
        data = copy.deepcopy(self._data)
        if self.units is Units.MMOL:
            data["thresholds"] = {
                key: to_mmol(float(value)) for key, value in data["thresholds"].items()
            }
        return data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value by dotted key (e.g. "librelink.email")."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return copy.deepcopy(node) if isinstance(node, dict) else node

    def set(self, key: str, value: Any) -> None:
        """Set a value by dotted key and persist when file-backed."""
        parts = key.split(".")
        node = self._data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value
        if self.source_path is not None:
            self.save()

    def save(self, path: Optional[Path] = None) -> None:
        """Write the config as YAML; failures are logged."""
        target = path or self.source_path
        if target is None:
            return
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False))
        except OSError as e:
            logger.error(f"Failed to save config to {target}: {e}")

    def reload(self) -> None:
        """Re-read the backing file, keeping current values on failure."""
        if self.source_path is None:
            return
        data = _read_yaml(self.source_path)
        if data is None:
            return
        fresh = Config.from_dict(data, source_path=self.source_path)
        self._data = fresh._data

    @property
    def provider(self) -> str:
        return str(self.get("provider") or "nightscout")

    @property
    def units(self) -> Units:
        return Units.parse(self.get("units"))

    @property
    def thresholds(self) -> Thresholds:
        raw = self.get("thresholds") or {}
        return Thresholds(low=float(raw.get("low", 70)), high=float(raw.get("high", 180)))

    @property
    def graph_hours(self) -> float:
        return float(self.get("graphHours") or 6)

    @property
    def stale_minutes(self) -> float:
        return float(self.get("staleMinutes") or 10)

    @property
    def history_fetch_interval(self) -> float:
        """History fetch interval in minutes."""
        return float(self.get("historyFetchInterval") or 5)

    def snapshot(self) -> ConfigSnapshot:
        librelink = self.get("librelink") or {}
        return ConfigSnapshot(
            provider=self.provider,
            nightscout_url=str(self.get("nightscoutUrl") or ""),
            api_token=str(self.get("apiToken") or ""),
            librelink_email=str(librelink.get("email") or ""),
            librelink_password=str(librelink.get("password") or ""),
            librelink_region=str(librelink.get("region") or "EU"),
            units=self.units,
        )


def default_config_path() -> Path:
    """Location of config.yaml when no explicit path is given."""
    env_path = os.environ.get("CGMCTL_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "cgmctl" / CONFIG_FILENAME


def _read_yaml(path: Path) -> Optional[dict]:
    try:
        data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, OSError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return None
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {path}: top level is not a mapping")
        return None
    return data


def load_config(path: Optional[Path] = None) -> Config:
    """Load config.yaml.

    Search order:
    1. Explicit path if provided
    2. $CGMCTL_CONFIG
    3. $XDG_CONFIG_HOME/cgmctl/config.yaml (~/.config by default)

    Returns:
        Loaded Config, or a default Config bound to the path if the file
        is absent or unreadable
    """
    config_path = path or default_config_path()
    if not config_path.exists():
        return Config(source_path=config_path)
    data = _read_yaml(config_path)
    if data is None:
        return Config(source_path=config_path)
    return Config.from_dict(data, source_path=config_path)


class ConfigWatcher:
    """Poll a config file's mtime and report changes.

    The callback is expected to debounce; the watcher fires once per
    observed change.
    """

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        timers: Timers,
        interval: float = 2.0,
    ):
        self.path = path
        self._on_change = on_change
        self._timers = timers
        self._interval = interval
        self._last_mtime = self._mtime()
        self._handle: Optional[TimerHandle] = None

    def _mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def start(self) -> None:
        if self._handle is None:
            self._handle = self._timers.call_every(self._interval, self.check)

    def check(self) -> bool:
        """Compare mtime with the last seen value; fire on change."""
        mtime = self._mtime()
        if mtime == self._last_mtime:
            return False
        self._last_mtime = mtime
        if mtime is None:
            return False
        logger.info(f"Config file changed: {self.path}")
        self._on_change()
        return True

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
