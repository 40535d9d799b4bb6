"""
Output formatting -- JSON export, plain text, and CSV.
"""
from __future__ import annotations

import json
import os
import statistics
from typing import Any, Dict, List, Optional

from engine.results import MeasurementResult


def create_result_json(
    result: MeasurementResult,
    server_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the exported JSON document for one completed measurement."""
    data = result.to_dict()
    pings: List[float] = list(result.ping_samples)

    if pings:
        rtt = {
            "min": min(pings),
            "max": max(pings),
            "mean": statistics.mean(pings),
            "median": statistics.median(pings),
        }
    else:
        rtt = {"min": 0, "max": 0, "mean": 0, "median": 0}

    data["latency"] = {
        "connectionProtocol": "wss",
        "rtt": rtt,
        "count": len(pings),
    }
    if server_info:
        data["server"] = server_info
    return data


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain-text / CSV helpers
# ---------------------------------------------------------------------------

def format_text_result(result: MeasurementResult, server: str = "") -> str:
    sep = "=" * 50
    mid = "-" * 50
    lines = [sep, "Speedtest Results", sep]
    if server:
        lines.append(f"Server: {server}")
        lines.append(mid)
    lines.append(f"Ping: {result.ping_ms:.1f} ms (jitter: {result.jitter_ms:.2f} ms)")
    lines.append(f"Download: {result.download_mbps:.2f} Mbps")
    lines.append(f"Upload: {result.upload_mbps:.2f} Mbps")
    if result.bufferbloat:
        lines.append(
            f"Bufferbloat: {result.bufferbloat.rating} "
            f"(+{result.bufferbloat.latency_increase_ms:.1f} ms)"
        )
    if result.packet_loss:
        lines.append(f"Packet Loss: {result.packet_loss.percentage:.1f}%")
    lines.append(f"Overhead factor: {result.overhead.factor:.3f}")
    for anomaly in result.anomalies:
        lines.append(f"Warning ({anomaly.phase.value}): {anomaly.message}")
    lines.append(sep)
    return "\n".join(lines)


_CSV_COLUMNS = (
    "timestamp",
    "id",
    "server",
    "ping_ms",
    "jitter_ms",
    "download_mbps",
    "upload_mbps",
    "overhead_factor",
    "bufferbloat",
    "packet_loss_pct",
)


def _csv_escape(value: Any) -> str:
    """Quote a CSV field when it contains a delimiter, quote or newline."""
    text = str(value)
    if any(c in text for c in (",", '"', "\n", "\r")):
        return '"' + text.replace('"', '""') + '"'
    return text


def format_csv_header() -> str:
    return ",".join(_CSV_COLUMNS)


def format_csv_row(result: MeasurementResult, server: str = "") -> str:
    fields = [
        result.timestamp.isoformat(),
        result.id,
        server,
        f"{result.ping_ms:.1f}",
        f"{result.jitter_ms:.2f}",
        f"{result.download_mbps:.2f}",
        f"{result.upload_mbps:.2f}",
        f"{result.overhead.factor:.3f}",
        result.bufferbloat.rating if result.bufferbloat else "",
        f"{result.packet_loss.percentage:.1f}" if result.packet_loss else "",
    ]
    return ",".join(_csv_escape(f) for f in fields)


def append_csv(path: str, result: MeasurementResult, server: str = "") -> None:
    """Append a single CSV row, writing the header if the file is new."""
    write_header = not os.path.isfile(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8") as fh:
        if write_header:
            fh.write(format_csv_header() + "\n")
        fh.write(format_csv_row(result, server) + "\n")
