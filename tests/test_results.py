"""Tests for engine.results -- aggregation into the frozen result."""

import dataclasses
import json
import unittest

from engine.phases import MeasurementPhase
from engine.results import (
    BufferbloatInfo,
    OverheadInfo,
    PacketLossInfo,
    PhaseOutcome,
    ResultAggregator,
)
from engine.stats import PingStats


def _outcome(phase, speed, grace=2.0):
    return PhaseOutcome(
        phase=phase,
        speed_mbps=speed,
        raw_speed_mbps=speed / 1.06,
        bytes_measured=1_000_000,
        measured_ms=10_000,
        grace_period_seconds=grace,
        effective_duration_seconds=10.2,
    )


class TestPacketLossInfo(unittest.TestCase):
    def test_percentage(self):
        self.assertAlmostEqual(PacketLossInfo(sent=10, received=9).percentage, 10.0)

    def test_nothing_sent(self):
        self.assertEqual(PacketLossInfo(sent=0, received=0).percentage, 0.0)

    def test_never_negative(self):
        self.assertEqual(PacketLossInfo(sent=5, received=7).percentage, 0.0)


class TestResultAggregator(unittest.TestCase):
    def setUp(self):
        self.agg = ResultAggregator(
            OverheadInfo(detected=False, factor=1.06, percentage=6.0),
            config={"duration_seconds": 10.0},
        )
        ping = PingStats(samples=[20, 21, 19, 22, 100, 18, 20, 21, 19, 20])
        ping.calculate()
        self.agg.add_ping(ping)
        self.agg.add_transfer(_outcome(MeasurementPhase.DOWNLOAD, 53.0))
        self.agg.add_transfer(_outcome(MeasurementPhase.UPLOAD, 10.6, grace=3.0))

    def test_build(self):
        r = self.agg.build(test_duration_seconds=27.5)
        self.assertAlmostEqual(r.download_mbps, 53.0)
        self.assertAlmostEqual(r.upload_mbps, 10.6)
        self.assertAlmostEqual(r.ping_ms, 20.25)
        self.assertEqual(r.grace_period_seconds, {"download": 2.0, "upload": 3.0})
        self.assertEqual(r.effective_durations["upload"], 10.2)
        self.assertEqual(len(r.ping_samples), 10)
        self.assertIsNone(r.bufferbloat)
        self.assertEqual(len(r.id), 32)
        self.assertIsNotNone(r.timestamp.tzinfo)

    def test_result_is_frozen(self):
        r = self.agg.build()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            r.download_mbps = 1.0

    def test_mappings_are_read_only(self):
        r = self.agg.build()
        for mapping in (r.grace_period_seconds, r.effective_durations, r.bytes_transferred,
                        r.measured_seconds, r.config):
            with self.assertRaises(TypeError):
                mapping["download"] = 0

    def test_result_detached_from_aggregator(self):
        r = self.agg.build()
        self.agg.config["duration_seconds"] = 99.0
        self.assertEqual(r.config["duration_seconds"], 10.0)

    def test_to_dict_returns_plain_copies(self):
        d = self.agg.build().to_dict()
        d["grace_period_seconds"]["download"] = 0.0
        d["config"]["duration_seconds"] = 1.0
        self.assertIsInstance(d["effective_durations"], dict)
        json.dumps(d)

    def test_measured_seconds(self):
        r = self.agg.build()
        self.assertEqual(dict(r.measured_seconds), {"download": 10.0, "upload": 10.0})
        self.assertEqual(r.to_dict()["measured_seconds"]["upload"], 10.0)

    def test_ids_unique(self):
        self.assertNotEqual(self.agg.build().id, self.agg.build().id)

    def test_anomalies_kept_in_order(self):
        self.agg.add_anomaly(MeasurementPhase.PING, "first")
        self.agg.add_anomaly(MeasurementPhase.UPLOAD, "second")
        r = self.agg.build()
        self.assertEqual([a.message for a in r.anomalies], ["first", "second"])

    def test_optional_parts(self):
        self.agg.add_bufferbloat(BufferbloatInfo(45.0, 24.75, "B"))
        self.agg.add_packet_loss(PacketLossInfo(sent=20, received=19))
        d = self.agg.build().to_dict()
        self.assertEqual(d["bufferbloat"]["rating"], "B")
        self.assertAlmostEqual(d["packet_loss"]["percentage"], 5.0)

    def test_to_dict_is_json_serialisable(self):
        self.agg.add_anomaly(MeasurementPhase.DOWNLOAD, "x")
        d = self.agg.build(12.0).to_dict()
        text = json.dumps(d)
        self.assertIn('"download_mbps": 53.0', text)
        self.assertEqual(d["anomalies"][0]["phase"], "download")
        self.assertEqual(d["overhead"]["factor"], 1.06)
        self.assertNotIn("bufferbloat", d)

    def test_missing_transfer_is_zero(self):
        agg = ResultAggregator(OverheadInfo(False, 1.0, 0.0))
        r = agg.build()
        self.assertEqual(r.download_mbps, 0.0)
        self.assertEqual(r.ping_ms, 0.0)


if __name__ == "__main__":
    unittest.main()
