"""Unit tests for ui.output -- JSON creation, text and CSV formatting."""

import json
import os
import tempfile
import unittest

from engine.phases import MeasurementPhase
from engine.results import BufferbloatInfo, OverheadInfo, PacketLossInfo, PhaseOutcome, ResultAggregator
from engine.stats import PingStats
from ui.output import (
    append_csv,
    create_result_json,
    format_csv_header,
    format_csv_row,
    format_text_result,
    save_json,
)


def make_result(pings=(9.0, 10.0, 11.0), bufferbloat=None, packet_loss=None, anomaly=None):
    agg = ResultAggregator(OverheadInfo(detected=False, factor=1.06, percentage=6.0))
    ping = PingStats(samples=list(pings))
    ping.calculate()
    agg.add_ping(ping)
    for phase, speed in ((MeasurementPhase.DOWNLOAD, 100.0), (MeasurementPhase.UPLOAD, 50.0)):
        agg.add_transfer(PhaseOutcome(phase, speed, speed / 1.06, 125_000_000, 10_000, 2.0, 10.0))
    if bufferbloat:
        agg.add_bufferbloat(bufferbloat)
    if packet_loss:
        agg.add_packet_loss(packet_loss)
    if anomaly:
        agg.add_anomaly(MeasurementPhase.UPLOAD, anomaly)
    return agg.build(test_duration_seconds=25.0)


class TestCreateResultJson(unittest.TestCase):
    def test_basic_structure(self):
        r = create_result_json(make_result(), {"hostname": "h"})
        for key in ("id", "timestamp", "download_mbps", "upload_mbps", "latency", "overhead", "server"):
            self.assertIn(key, r)

    def test_ping_stats(self):
        latency = create_result_json(make_result())["latency"]
        self.assertEqual(latency["count"], 3)
        self.assertAlmostEqual(latency["rtt"]["min"], 9.0)
        self.assertAlmostEqual(latency["rtt"]["max"], 11.0)

    def test_empty_pings(self):
        latency = create_result_json(make_result(pings=()))["latency"]
        self.assertEqual(latency["count"], 0)
        self.assertEqual(latency["rtt"]["min"], 0)

    def test_no_server(self):
        self.assertNotIn("server", create_result_json(make_result()))

    def test_serialisable(self):
        json.dumps(create_result_json(make_result(anomaly="odd")))


class TestSaveJson(unittest.TestCase):
    def test_roundtrip(self):
        data = {"key": "value", "number": 42}
        with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
            path = f.name
        try:
            save_json(data, path)
            with open(path) as fh:
                loaded = json.load(fh)
            self.assertEqual(loaded, data)
        finally:
            os.unlink(path)

    def test_atomic_no_partial(self):
        # If the directory doesn't exist, it should raise, not leave a temp file
        with self.assertRaises(IOError):
            save_json({"a": 1}, "/nonexistent/dir/file.json")


class TestFormatTextResult(unittest.TestCase):
    def test_contains_values(self):
        text = format_text_result(make_result(), "speed.example.net:8080")
        self.assertIn("10.0 ms", text)
        self.assertIn("100.00 Mbps", text)
        self.assertIn("50.00 Mbps", text)
        self.assertIn("speed.example.net", text)
        self.assertNotIn("Bufferbloat", text)

    def test_optional_sections(self):
        text = format_text_result(make_result(
            bufferbloat=BufferbloatInfo(40.0, 30.0, "C"),
            packet_loss=PacketLossInfo(10, 9),
            anomaly="transfer ended early",
        ))
        self.assertIn("Bufferbloat: C", text)
        self.assertIn("Packet Loss: 10.0%", text)
        self.assertIn("transfer ended early", text)


class TestCsvHelpers(unittest.TestCase):
    def test_header(self):
        h = format_csv_header()
        self.assertIn("timestamp", h)
        self.assertIn("download_mbps", h)

    def test_row_matches_header(self):
        row = format_csv_row(make_result(), "srv")
        self.assertEqual(len(row.split(",")), len(format_csv_header().split(",")))
        self.assertIn("100.00", row)

    def test_append_creates_header_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "log.csv")
            for _ in range(3):
                append_csv(path, make_result(), "srv")
            with open(path) as fh:
                lines = fh.readlines()
            self.assertEqual(len(lines), 4)  # 1 header + 3 data rows
            self.assertEqual(sum(1 for l in lines if l.startswith("timestamp")), 1)


if __name__ == "__main__":
    unittest.main()
