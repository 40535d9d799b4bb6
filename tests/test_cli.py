"""Tests for the CLI: flag merging, config building, and the main() exit paths."""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest import mock

from engine.config import DEFAULTS
from engine.constants import (
    DEFAULT_CONNECTIONS,
    DEFAULT_DURATION,
    DEFAULT_PING_COUNT,
    MAX_CONNECTIONS,
    MAX_DURATION,
    MAX_PING_COUNT,
    MIN_CONNECTIONS,
    MIN_DURATION,
    MIN_PING_COUNT,
)
from engine.errors import ConfigurationError, MeasurementAborted, TransportError
from engine.overhead import OverheadMode, estimate_overhead_factor
from engine.results import OverheadInfo, ResultAggregator


def _args(*argv):
    from speedtest import _parser
    return _parser().parse_args(list(argv))


def _result():
    return ResultAggregator(OverheadInfo(False, 1.06, 6.0)).build()


class TestBuildConfig(unittest.TestCase):
    def _build(self, *argv, saved=None):
        from speedtest import _build_config
        return _build_config(_args(*argv), dict(saved or DEFAULTS))

    def test_defaults_valid(self):
        cfg = self._build()
        self.assertEqual(cfg.duration_seconds, DEFAULT_DURATION)
        self.assertEqual(cfg.parallel_connections, DEFAULT_CONNECTIONS)
        self.assertEqual(cfg.ping_sample_count, DEFAULT_PING_COUNT)

    def test_flags_override_saved(self):
        saved = dict(DEFAULTS, duration_seconds=20.0, parallel_connections=8)
        cfg = self._build("--duration", "5", saved=saved)
        self.assertEqual(cfg.duration_seconds, 5.0)
        self.assertEqual(cfg.parallel_connections, 8)

    def test_switches(self):
        cfg = self._build(
            "--no-dynamic-duration", "--no-grace-period", "--no-dynamic-grace",
            "--bufferbloat", "--packet-loss",
        )
        self.assertFalse(cfg.dynamic_duration_enabled)
        self.assertFalse(cfg.grace_period_enabled)
        self.assertFalse(cfg.dynamic_grace_period_enabled)
        self.assertTrue(cfg.bufferbloat_enabled)
        self.assertTrue(cfg.packet_loss_enabled)

    def test_grace_period_applies_to_both(self):
        cfg = self._build("--grace-period", "4")
        self.assertEqual(cfg.download_grace_seconds, 4.0)
        self.assertEqual(cfg.upload_grace_seconds, 4.0)

    def test_overhead_factor(self):
        cfg = self._build("--overhead-factor", "1.1")
        self.assertAlmostEqual(cfg.overhead.factor, 1.1)
        self.assertEqual(cfg.overhead.mode, OverheadMode.FIXED)

    def test_auto_overhead(self):
        cfg = self._build("--auto-overhead")
        self.assertEqual(cfg.overhead.mode, OverheadMode.AUTO)
        self.assertAlmostEqual(cfg.overhead.factor, estimate_overhead_factor())

    def test_ping_count_range(self):
        self._build("--ping-count", str(MIN_PING_COUNT))
        self._build("--ping-count", str(MAX_PING_COUNT))
        with self.assertRaises(ConfigurationError):
            self._build("--ping-count", str(MAX_PING_COUNT + 1))

    def test_duration_range(self):
        with self.assertRaises(ConfigurationError):
            self._build("--duration", str(MIN_DURATION - 0.1))
        with self.assertRaises(ConfigurationError):
            self._build("--duration", str(MAX_DURATION + 1))

    def test_connections_range(self):
        self._build("--connections", str(MIN_CONNECTIONS))
        self._build("--upload-connections", str(MAX_CONNECTIONS))
        with self.assertRaises(ConfigurationError):
            self._build("--connections", str(MAX_CONNECTIONS + 1))

    def test_bad_overhead(self):
        with self.assertRaises(ConfigurationError):
            self._build("--overhead-factor", "1.5")


class TestBuildEndpoint(unittest.TestCase):
    def _build(self, *argv, saved=None):
        from speedtest import _build_endpoint
        return _build_endpoint(_args(*argv), dict(saved or DEFAULTS))

    def test_host_required(self):
        with self.assertRaises(ConfigurationError):
            self._build()

    def test_saved_host(self):
        ep = self._build(saved=dict(DEFAULTS, host="saved.example.net", port=5060))
        self.assertEqual(ep.hostname, "saved.example.net")
        self.assertEqual(ep.port, 5060)

    def test_port_in_host_wins_over_saved(self):
        ep = self._build("--host", "h:9000", saved=dict(DEFAULTS, port=5060))
        self.assertEqual(ep.port, 9000)

    def test_port_flag_wins(self):
        ep = self._build("--host", "h:9000", "--port", "443")
        self.assertEqual(ep.port, 443)

    def test_insecure(self):
        self.assertFalse(self._build("--host", "h", "--insecure").secure)

    def test_bad_port(self):
        with self.assertRaises(ConfigurationError):
            self._build("--host", "h", "--port", "70000")


class TestMain(unittest.TestCase):
    def setUp(self):
        patches = [
            mock.patch("speedtest.configure_logging"),
            mock.patch("speedtest.load_config", return_value=dict(DEFAULTS)),
            mock.patch("speedtest.console"),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)

    def _run(self, *argv, outcome=None):
        from speedtest import main

        async def fake_run(endpoint, config, **kwargs):
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome or _result()

        out = io.StringIO()
        with mock.patch("speedtest.run_speedtest", new=fake_run), redirect_stdout(out):
            main(list(argv))
        return out.getvalue()

    def test_invalid_config_exits(self):
        with self.assertRaises(SystemExit) as cm:
            self._run("--host", "h", "--duration", "0")
        self.assertEqual(cm.exception.code, 1)

    def test_missing_host_exits(self):
        with self.assertRaises(SystemExit) as cm:
            self._run()
        self.assertEqual(cm.exception.code, 1)

    def test_json_output(self):
        text = self._run("--host", "h", "--json")
        data = json.loads(text)
        self.assertIn("download_mbps", data)
        self.assertEqual(data["server"]["hostname"], "h")

    def test_transport_error_exits(self):
        with self.assertRaises(SystemExit) as cm:
            self._run("--host", "h", outcome=TransportError("refused"))
        self.assertEqual(cm.exception.code, 1)

    def test_abort_exits(self):
        with self.assertRaises(SystemExit) as cm:
            self._run("--host", "h", outcome=MeasurementAborted("stop"))
        self.assertEqual(cm.exception.code, 1)

    def test_output_and_csv(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            out = os.path.join(tmpdir, "r.json")
            csv = os.path.join(tmpdir, "r.csv")
            self._run("--host", "h", "--simple", "-o", out, "--csv", csv)
            with open(out) as fh:
                self.assertIn("overhead", json.load(fh))
            with open(csv) as fh:
                self.assertEqual(len(fh.readlines()), 2)

    def test_save_config(self):
        with mock.patch("speedtest.save_config", return_value="/tmp/x") as save:
            self._run("--host", "h:9000", "--duration", "15", "--save-config")
        saved = save.call_args[0][0]
        self.assertEqual(saved["host"], "h:9000")
        self.assertEqual(saved["port"], 9000)
        self.assertEqual(saved["duration_seconds"], 15.0)


if __name__ == "__main__":
    unittest.main()
