#!/usr/bin/env python3
"""
Speedtest Adaptive -- network speed measurement with ramp-up exclusion,
speed-adaptive duration and protocol overhead compensation.

Usage::

    python speedtest.py --host speedtest.example.net          # rich dashboard
    python speedtest.py --host example.net:8080 --simple     # plain text
    python speedtest.py --host example.net --json            # JSON to stdout
    python speedtest.py --host example.net -o result.json    # save to file
    python speedtest.py --host example.net --csv log.csv     # append CSV row
    python speedtest.py --host example.net --bufferbloat --packet-loss
    python speedtest.py --host example.net --save-config     # remember flags
"""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import signal
import sys
from typing import Any, Dict, Optional

from engine.config import EngineConfig, load_config, save_config
from engine.errors import ConfigurationError, MeasurementAborted, SpeedtestError
from engine.logging_setup import configure_logging
from engine.machine import MeasurementEngine
from engine.overhead import OverheadMode
from engine.results import MeasurementResult
from transport.endpoint import Endpoint
from transport.ookla import OoklaTransport
from ui.dashboard import (
    ProgressDisplay,
    console,
    print_final_results,
    print_header,
    print_ping_details,
)
from ui.output import append_csv, create_result_json, format_text_result, save_json

LOGGER = logging.getLogger("speedtest")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# argparse dest -> config key
_FLAG_KEYS = {
    "duration": "duration_seconds",
    "connections": "parallel_connections",
    "upload_connections": "upload_parallel_connections",
    "ping_count": "ping_sample_count",
    "overhead_factor": "overhead_factor",
    "port": "port",
}


def _merge_settings(args: argparse.Namespace, saved: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay command-line flags on the saved defaults."""
    settings = dict(saved)
    if args.host:
        settings["host"] = args.host

    for dest, key in _FLAG_KEYS.items():
        value = getattr(args, dest, None)
        if value is not None:
            settings[key] = value

    if args.auto_overhead:
        settings["overhead_mode"] = OverheadMode.AUTO.value
        if args.overhead_factor is None:
            settings["overhead_factor"] = None
    elif args.overhead_factor is not None:
        settings["overhead_mode"] = OverheadMode.FIXED.value

    if args.grace_period is not None:
        settings["download_grace_seconds"] = args.grace_period
        settings["upload_grace_seconds"] = args.grace_period
    if args.no_dynamic_duration:
        settings["dynamic_duration_enabled"] = False
    if args.no_grace_period:
        settings["grace_period_enabled"] = False
    if args.no_dynamic_grace:
        settings["dynamic_grace_period_enabled"] = False
    if args.bufferbloat:
        settings["bufferbloat_enabled"] = True
    if args.packet_loss:
        settings["packet_loss_enabled"] = True
    return settings


def _build_config(args: argparse.Namespace, saved: Dict[str, Any]) -> EngineConfig:
    """Return a validated engine config; raises ``ConfigurationError``."""
    config = EngineConfig.from_dict(_merge_settings(args, saved))
    config.validate()
    return config


def _build_endpoint(args: argparse.Namespace, saved: Dict[str, Any]) -> Endpoint:
    host = args.host or saved.get("host") or ""
    try:
        endpoint = Endpoint.parse(host, secure=not args.insecure)
    except ValueError as exc:
        raise ConfigurationError("A server is required: pass --host HOST[:PORT]") from exc

    # An explicit --port wins over a port in --host; a saved port only fills in.
    if args.port is not None:
        endpoint = dataclasses.replace(endpoint, port=args.port)
    elif ":" not in host and saved.get("port"):
        endpoint = dataclasses.replace(endpoint, port=int(saved["port"]))
    if not 0 < endpoint.port < 65536:
        raise ConfigurationError(f"Invalid port: {endpoint.port}")
    return endpoint


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

def _install_abort_handler(engine: MeasurementEngine) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.abort, "Test cancelled by user")
    except (NotImplementedError, RuntimeError):
        # Windows event loops: KeyboardInterrupt is handled in main().
        return False
    return True


async def run_speedtest(
    endpoint: Endpoint,
    config: EngineConfig,
    *,
    json_output: bool = False,
    simple: bool = False,
) -> MeasurementResult:
    """Run one measurement against *endpoint* and render it."""
    show_ui = not json_output and not simple
    target = f"{endpoint.hostname}:{endpoint.port}"

    if show_ui:
        print_header(target)

    progress: Optional[ProgressDisplay] = ProgressDisplay() if show_ui else None

    async with OoklaTransport(endpoint) as transport:
        engine = MeasurementEngine(transport, config, on_progress=progress)
        handler = _install_abort_handler(engine)

        if progress:
            progress.start()
        try:
            result = await engine.run_measurement()
        finally:
            if progress:
                progress.stop()
            if handler:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    if show_ui:
        print_ping_details(result.ping_samples, result.jitter_ms)
        print_final_results(result, target)
    elif simple:
        print(format_text_result(result, target))

    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Speedtest Adaptive -- network speed measurement with grace periods and dynamic duration",
    )
    # Server
    parser.add_argument("--host", type=str, metavar="HOST[:PORT]", help="Speedtest server to measure against")
    parser.add_argument("--port", type=int, metavar="N", help="Server port (default: 8080)")
    parser.add_argument("--insecure", action="store_true", help="Use plain HTTP / WS instead of TLS")

    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--csv", type=str, metavar="FILE", help="Append results as CSV row")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")

    # Measurement parameters (defaults come from the saved config)
    parser.add_argument("--duration", type=float, metavar="SECS", help="Measured duration per transfer phase (default: 10)")
    parser.add_argument("--connections", type=int, metavar="N", help="Parallel download connections (default: 4)")
    parser.add_argument("--upload-connections", type=int, metavar="N", help="Parallel upload connections (default: 3)")
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of ping samples (default: 10)")
    parser.add_argument("--overhead-factor", type=float, metavar="X", help="Protocol overhead factor, 1.00-1.20 (default: 1.06)")
    parser.add_argument("--auto-overhead", action="store_true", help="Estimate the overhead factor from TCP/IP framing")
    parser.add_argument("--no-dynamic-duration", action="store_true", help="Do not extend the measurement on fast links")
    parser.add_argument("--no-grace-period", action="store_true", help="Measure from the first byte")
    parser.add_argument("--no-dynamic-grace", action="store_true", help="Do not extend the grace period on slow links")
    parser.add_argument("--grace-period", type=float, metavar="SECS", help="Grace period for both transfer phases")
    parser.add_argument("--bufferbloat", action="store_true", help="Measure latency under load after the upload phase")
    parser.add_argument("--packet-loss", action="store_true", help="Measure packet loss with short-timeout probes")

    # Misc
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--save-config", action="store_true", help="Save these settings as the new defaults")
    return parser


def main(argv: Optional[list] = None) -> None:
    args = _parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING", console=console)

    saved = load_config()
    try:
        config = _build_config(args, saved)
        endpoint = _build_endpoint(args, saved)
    except ConfigurationError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    LOGGER.debug("Measuring against %s:%d with %s", endpoint.hostname, endpoint.port, config.to_dict())

    if args.save_config:
        settings = _merge_settings(args, saved)
        settings.update(config.to_dict())
        settings["host"] = args.host or saved.get("host", "")
        settings["port"] = endpoint.port
        path = save_config(settings)
        if not args.json:
            console.print(f"[green]Defaults saved to:[/green] {path}")

    try:
        result = asyncio.run(
            run_speedtest(endpoint, config, json_output=args.json, simple=args.simple)
        )
    except (KeyboardInterrupt, MeasurementAborted):
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except SpeedtestError as exc:
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)

    result_json = create_result_json(result, endpoint.to_dict())

    if args.json:
        print(json.dumps(result_json, indent=2))

    try:
        if args.output:
            save_json(result_json, args.output)
            if not args.json:
                console.print(f"\n[green]Results saved to:[/green] {args.output}")
        if args.csv:
            append_csv(args.csv, result, f"{endpoint.hostname}:{endpoint.port}")
            if not args.json:
                console.print(f"[green]CSV row appended to:[/green] {args.csv}")
    except (IOError, OSError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
