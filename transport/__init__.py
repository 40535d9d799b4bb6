"""Network transport for the measurement engine (HTTP bulk streams, WebSocket probes)."""

from .endpoint import Endpoint
from .latency import LatencyProber, ProbeResult, ProbeSummary
from .ookla import OoklaTransport, QueueHandle
from .streams import UploadSource, create_session, download_worker, upload_worker

__all__ = [
    "Endpoint",
    "LatencyProber",
    "OoklaTransport",
    "ProbeResult",
    "ProbeSummary",
    "QueueHandle",
    "UploadSource",
    "create_session",
    "download_worker",
    "upload_worker",
]
