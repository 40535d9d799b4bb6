"""
Server endpoint addressing.

The engine never chooses a server; the caller names one and the transport
derives the per-phase URLs from it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

DEFAULT_PORT = 8080


@dataclass(frozen=True)
class Endpoint:
    """An Ookla-style speedtest server (``/download``, ``/upload``, ``/ws``)."""

    hostname: str
    port: int = DEFAULT_PORT
    secure: bool = True

    # -- Constructors -------------------------------------------------------

    @classmethod
    def parse(cls, value: str, secure: bool = True) -> Endpoint:
        """Parse ``host`` or ``host:port``."""
        value = value.strip()
        if not value:
            raise ValueError("Server host must not be empty")

        host, sep, port = value.rpartition(":")
        if sep and port.isdigit() and "]" not in port:
            return cls(hostname=host.strip("[]"), port=int(port), secure=secure)
        return cls(hostname=value.strip("[]"), secure=secure)

    # -- Derived URLs -------------------------------------------------------

    @property
    def _netloc(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        return f"{host}:{self.port}"

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint for latency probes."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self._netloc}/ws?"

    @property
    def download_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self._netloc}/download"

    @property
    def upload_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self._netloc}/upload"

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "port": self.port,
            "secure": self.secure,
        }
