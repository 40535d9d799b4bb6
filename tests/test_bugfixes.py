"""Tests for bugs found during code review."""

import io
import unittest
from unittest import mock

from engine.phases import MeasurementPhase
from engine.results import MeasurementResult, OverheadInfo, ResultAggregator
from engine.stats import PingStats
from ui.output import _csv_escape, create_result_json, format_csv_row


def _result_with_pings(pings):
    agg = ResultAggregator(OverheadInfo(False, 1.06, 6.0))
    stats = PingStats(samples=list(pings))
    stats.calculate()
    agg.add_ping(stats)
    return agg.build()


class TestMedianCalculation(unittest.TestCase):
    """The exported median must average the middle pair for even-length lists."""

    def test_even_length_pings_median(self):
        r = create_result_json(_result_with_pings([10.0, 20.0]))
        self.assertAlmostEqual(r["latency"]["rtt"]["median"], 15.0)

    def test_odd_length_pings_median(self):
        r = create_result_json(_result_with_pings([5.0, 10.0, 15.0]))
        self.assertAlmostEqual(r["latency"]["rtt"]["median"], 10.0)

    def test_four_pings_median(self):
        r = create_result_json(_result_with_pings([1.0, 2.0, 3.0, 4.0]))
        self.assertAlmostEqual(r["latency"]["rtt"]["median"], 2.5)


class TestCsvEscape(unittest.TestCase):
    """CSV fields with commas must be quoted to avoid corruption."""

    def test_plain_value(self):
        self.assertEqual(_csv_escape("Berlin"), "Berlin")

    def test_value_with_comma(self):
        self.assertEqual(_csv_escape("Berlin, Germany"), '"Berlin, Germany"')

    def test_value_with_quotes(self):
        self.assertEqual(_csv_escape('Say "hello"'), '"Say ""hello"""')

    def test_value_with_newline(self):
        self.assertEqual(_csv_escape("line1\nline2"), '"line1\nline2"')

    def test_csv_row_with_comma_in_server(self):
        row = format_csv_row(_result_with_pings([10.0]), "Server, Inc.")
        self.assertIn('"Server, Inc."', row)


class TestPrintPingDetailsEmpty(unittest.TestCase):
    """print_ping_details must not crash on an empty sample list."""

    def test_empty_pings_no_crash(self):
        from ui import dashboard

        with mock.patch.object(dashboard, "console") as console:
            dashboard.print_ping_details((), 0.0)
        console.print.assert_not_called()

    def test_single_ping(self):
        from ui import dashboard

        with mock.patch.object(dashboard, "console"):
            dashboard.print_ping_details((42.0,), 0.0)


class TestFinalResultsRendering(unittest.TestCase):
    """print_final_results must cope with a run that only has anomalies."""

    def test_anomalies_rendered(self):
        from ui import dashboard

        agg = ResultAggregator(OverheadInfo(True, 1.062, 6.2, "auto"))
        agg.add_anomaly(MeasurementPhase.DOWNLOAD, "no bytes transferred")
        result: MeasurementResult = agg.build()

        with mock.patch.object(dashboard, "console") as console:
            dashboard.print_final_results(result, "h:8080")
        printed = " ".join(str(c.args[0]) for c in console.print.call_args_list if c.args)
        self.assertIn("no bytes transferred", printed)


class TestMeasurementWindowsTable(unittest.TestCase):
    """The windows table must show time actually measured next to the budget."""

    def test_measured_and_budget_columns(self):
        from rich.console import Console

        from engine.results import PhaseOutcome
        from ui import dashboard

        agg = ResultAggregator(OverheadInfo(False, 1.06, 6.0))
        agg.add_transfer(PhaseOutcome(MeasurementPhase.DOWNLOAD, 53.0, 50.0, 1_000_000, 3_000, 2.0, 10.4))
        table = dashboard._measurement_table(agg.build())

        out = Console(file=io.StringIO(), record=True, width=120)
        out.print(table)
        text = out.export_text()
        self.assertIn("Measured for", text)
        self.assertIn("Budget", text)
        self.assertIn("3.0 s", text)
        self.assertIn("10.4 s", text)


if __name__ == "__main__":
    unittest.main()
