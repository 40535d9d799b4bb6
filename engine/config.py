"""
Engine configuration and user defaults on disk.

Defaults are read from ``~/.speedtest-adaptive/config.json``; command-line
flags override them.  The resulting :class:`EngineConfig` is validated once,
before any phase begins, and is read-only for the rest of the run.

Supported keys::

    host = ""                       # server hostname
    port = 8080
    duration_seconds = 10.0
    parallel_connections = 4
    upload_parallel_connections = 3
    ping_sample_count = 10
    overhead_mode = "fixed"         # or "auto"
    overhead_factor = 1.06
    dynamic_duration_enabled = true
    grace_period_enabled = true
    dynamic_grace_period_enabled = true
    download_grace_seconds = 2.0
    upload_grace_seconds = 3.0
    bufferbloat_enabled = false
    packet_loss_enabled = false
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict

from .constants import (
    BONUS_MAGNITUDE_MS,
    CHUNK_BYTES,
    DEFAULT_CONNECTIONS,
    DEFAULT_DURATION,
    DEFAULT_OVERHEAD_FACTOR,
    DEFAULT_PING_COUNT,
    DEFAULT_UPLOAD_CONNECTIONS,
    DOWNLOAD_GRACE_SECONDS,
    GRACE_EXTENSION_CAP_MS,
    GRACE_EXTENSION_MS,
    MAX_CONNECTIONS,
    MAX_DURATION,
    MAX_GRACE_SECONDS,
    MAX_PING_COUNT,
    MIN_CHUNK_BYTES,
    MIN_CONNECTIONS,
    MIN_DURATION,
    MIN_GRACE_SECONDS,
    MIN_PING_COUNT,
    OPTIONAL_PROBE_SECONDS,
    PAYLOAD_BYTES,
    PING_INTERVAL,
    RUN_TIMEOUT_GRACE,
    UPLOAD_GRACE_SECONDS,
)
from .errors import ConfigurationError
from .overhead import OverheadConfig, OverheadMode, estimate_overhead_factor

LOGGER = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".speedtest-adaptive")
_CONFIG_FILE = "config.json"


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngineConfig:
    duration_seconds: float = DEFAULT_DURATION
    parallel_connections: int = DEFAULT_CONNECTIONS
    upload_parallel_connections: int = DEFAULT_UPLOAD_CONNECTIONS
    ping_sample_count: int = DEFAULT_PING_COUNT
    overhead: OverheadConfig = field(default_factory=OverheadConfig)
    dynamic_duration_enabled: bool = True
    grace_period_enabled: bool = True
    dynamic_grace_period_enabled: bool = True
    download_grace_seconds: float = DOWNLOAD_GRACE_SECONDS
    upload_grace_seconds: float = UPLOAD_GRACE_SECONDS
    bufferbloat_enabled: bool = False
    packet_loss_enabled: bool = False
    payload_bytes: int = PAYLOAD_BYTES
    chunk_bytes: int = CHUNK_BYTES
    run_timeout_grace_seconds: float = RUN_TIMEOUT_GRACE

    @property
    def planned_run_seconds(self) -> float:
        """Longest time a healthy run can legitimately take.

        Ping probes, then download and upload each with their longest grace
        window, the configured duration and the largest bonus, then the
        optional phases.
        """
        transfer = self.duration_seconds
        if self.dynamic_duration_enabled:
            transfer += BONUS_MAGNITUDE_MS / 1000
        total = self.ping_sample_count * PING_INTERVAL + 2 * transfer
        total += (self.max_grace_window_ms(upload=False) + self.max_grace_window_ms(upload=True)) / 1000
        optional = int(self.bufferbloat_enabled) + int(self.packet_loss_enabled)
        total += optional * self.ping_sample_count * OPTIONAL_PROBE_SECONDS
        return total

    @property
    def run_timeout_seconds(self) -> float:
        """Authoritative upper bound for a whole run."""
        return self.planned_run_seconds + self.run_timeout_grace_seconds

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any value is out of range."""
        if not MIN_DURATION <= self.duration_seconds <= MAX_DURATION:
            raise ConfigurationError(
                f"Duration must be between {MIN_DURATION} and {MAX_DURATION} s"
            )
        for name in ("parallel_connections", "upload_parallel_connections"):
            value = getattr(self, name)
            if not MIN_CONNECTIONS <= value <= MAX_CONNECTIONS:
                raise ConfigurationError(
                    f"{name} must be between {MIN_CONNECTIONS} and {MAX_CONNECTIONS}"
                )
        if not MIN_PING_COUNT <= self.ping_sample_count <= MAX_PING_COUNT:
            raise ConfigurationError(
                f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}"
            )
        for name in ("download_grace_seconds", "upload_grace_seconds"):
            value = getattr(self, name)
            if not MIN_GRACE_SECONDS <= value <= MAX_GRACE_SECONDS:
                raise ConfigurationError(
                    f"{name} must be between {MIN_GRACE_SECONDS} and {MAX_GRACE_SECONDS} s"
                )
        if self.chunk_bytes < MIN_CHUNK_BYTES:
            raise ConfigurationError(f"Chunk size must be at least {MIN_CHUNK_BYTES} bytes")
        if self.payload_bytes < self.chunk_bytes:
            raise ConfigurationError("Payload size must be at least one chunk")
        if self.run_timeout_grace_seconds < 0:
            raise ConfigurationError("Run timeout grace must not be negative")
        self.overhead.validate()

    def grace_window_ms(self, upload: bool) -> float:
        if not self.grace_period_enabled:
            return 0.0
        seconds = self.upload_grace_seconds if upload else self.download_grace_seconds
        return seconds * 1000

    def max_grace_window_ms(self, upload: bool) -> float:
        """Configured window plus the one slow-link extension, if any."""
        window = self.grace_window_ms(upload)
        if window <= 0 or not self.dynamic_grace_period_enabled:
            return window
        return max(window, min(GRACE_EXTENSION_CAP_MS, window + GRACE_EXTENSION_MS))

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("overhead")
        data["overhead_mode"] = self.overhead.mode.value
        data["overhead_factor"] = self.overhead.factor
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EngineConfig:
        """Build a config from a flat dict; unknown keys are ignored."""
        known = {f.name for f in fields(cls)} - {"overhead"}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}

        try:
            mode = OverheadMode(data.get("overhead_mode") or OverheadMode.FIXED.value)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown overhead mode: {data.get('overhead_mode')!r}") from exc

        factor = data.get("overhead_factor")
        if factor is None:
            factor = estimate_overhead_factor() if mode is OverheadMode.AUTO else DEFAULT_OVERHEAD_FACTOR

        try:
            return cls(overhead=OverheadConfig(mode=mode, factor=float(factor)), **kwargs)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc


# ---------------------------------------------------------------------------
# Defaults on disk
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "host": "",
    "port": 8080,
    **EngineConfig().to_dict(),
}


def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError) as exc:
        LOGGER.warning("Ignoring unreadable config file %s: %s", path, exc)

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    """Get a single config value."""
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
