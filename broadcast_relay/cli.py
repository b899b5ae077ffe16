"""
CLI entrypoint for the broadcast relay.

Builds a RelayConfig from defaults, ``.relayenv`` / ``RELAY_*`` environment
variables and command-line options, runs a RelayEngine until SIGINT/SIGTERM
(or ``--stop-seconds``), then stops it and reports the final counters.
"""

import argparse
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Sequence

from broadcast_relay import __version__
from broadcast_relay.config import RelayConfig, load_config, targets_from
from broadcast_relay.env_loader import load_env_files
from broadcast_relay.exceptions import ConfigError, RelayError
from broadcast_relay.interfaces import format_interfaces, list_ipv4_interfaces
from broadcast_relay.logging_utils import configure_logging, get_logger
from broadcast_relay.relay import RelayEngine
from broadcast_relay.stats import StatsSnapshot

logger = get_logger("broadcast_relay")

_EXAMPLES = """\
Examples:
  broadcast-relay --port 9999 --targets 192.168.1.100:9999
  broadcast-relay --port 9999 --targets 192.168.1.100:9999,10.0.0.50:8888 --verbose
  broadcast-relay --listen 0.0.0.0 --port 12345 --targets 192.168.2.255:12345

Environment:
  RELAY_LISTEN, RELAY_PORT, RELAY_TARGETS, RELAY_BUFFER, RELAY_VERBOSE,
  RELAY_POLL_INTERVAL, RELAY_STATS_INTERVAL, RELAY_FORWARD_TIMEOUT,
  RELAY_FORWARD_WORKERS
  (also read from .relayenv / .relayenv.local in the working directory;
  command-line options win over both)
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="broadcast-relay",
        description="Broadcast Relay - Forward local broadcast packets to specified IP:Port",
        epilog=_EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--port", type=int,
                        help="UDP port to listen for broadcast packets (default: 9999)")
    parser.add_argument("--listen",
                        help="Address to listen on (use 0.0.0.0 for all interfaces)")
    parser.add_argument("--targets", action="append", metavar="IP:PORT[,IP:PORT...]",
                        help="Comma-separated list of target addresses, e.g. "
                             "192.168.1.100:9999,10.0.0.50:8888 (may be repeated)")
    parser.add_argument("--buffer", type=int,
                        help="UDP buffer size in bytes (default: 65535)")
    parser.add_argument("--verbose", action="store_true", default=None,
                        help="Enable verbose logging (per-packet traces and periodic stats)")
    parser.add_argument("--version", action="store_true",
                        help="Show version information")

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument("--stats-interval", type=float,
                        help="Seconds between verbose stats lines (default: 10)")
    tuning.add_argument("--forward-timeout", type=float,
                        help="Per-forward socket deadline in seconds (default: 2)")
    tuning.add_argument("--forward-workers", type=int,
                        help="Bound concurrent forwards to N pool threads (default: 0 = unbounded)")

    output = parser.add_argument_group("output")
    output.add_argument("--json-logs", action="store_true",
                        help="Emit log lines as JSON objects")
    output.add_argument("--log-file",
                        help="Also write logs to this file")
    output.add_argument("--json-out",
                        help="Optional path to write counters JSON on shutdown")
    output.add_argument("--stop-seconds", type=float,
                        help="Auto-stop after N seconds (for testing)")
    output.add_argument("--list-interfaces", action="store_true",
                        help="List local IPv4 interfaces and broadcast addresses, then exit")
    return parser


def write_json_report(json_path: Optional[str], payload: dict) -> None:
    """Persist counters payload to JSON if a path is provided."""

    if not json_path:
        return

    try:
        path = Path(json_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(f"Wrote JSON report to {path}")
    except OSError as exc:
        logger.warning(f"Warning: Failed to write JSON output to {json_path}: {exc}")


def _install_signal_handlers(shutdown: threading.Event) -> dict:
    """Route SIGINT/SIGTERM to ``shutdown``; returns previous handlers for restoring."""
    previous = {}
    if threading.current_thread() is not threading.main_thread():
        return previous

    def handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown.set()

    for name in ("SIGINT", "SIGTERM"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, handler)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        # None means the previous handler was not installed from Python.
        if handler is not None:
            signal.signal(signum, handler)


def _wait_for_shutdown(shutdown: threading.Event, stop_seconds: Optional[float]) -> None:
    deadline = None if stop_seconds is None else time.monotonic() + max(stop_seconds, 0.0)
    # Short waits keep the main thread responsive to signals on every platform.
    while not shutdown.is_set():
        timeout = 0.5
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            timeout = min(timeout, remaining)
        shutdown.wait(timeout)


def run(cfg: RelayConfig, *, stop_seconds: Optional[float] = None,
        json_out: Optional[str] = None) -> int:
    """Construct and run a relay until shutdown; returns the process exit code."""
    try:
        engine = RelayEngine(cfg)
    except RelayError as exc:
        logger.error(f"Failed to create relay: {exc}")
        return 1

    shutdown = threading.Event()
    previous = _install_signal_handlers(shutdown)
    started = time.time()
    try:
        engine.start()
        _wait_for_shutdown(shutdown, stop_seconds)
    finally:
        final: StatsSnapshot = engine.stop()
        _restore_signal_handlers(previous)

    write_json_report(json_out, {
        "version": __version__,
        "config": cfg.to_dict(),
        "uptime_s": round(time.time() - started, 3),
        "stats": final.to_dict(),
    })
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"Broadcast Relay v{__version__}")
        return 0

    if args.list_interfaces:
        print(format_interfaces(list_ipv4_interfaces()))
        return 0

    load_env_files()
    configure_logging(json_logs=args.json_logs, log_file=args.log_file)

    targets = targets_from(args.targets or [])
    try:
        cfg = load_config(
            listen_addr=args.listen,
            listen_port=args.port,
            targets=targets or None,
            buffer_size=args.buffer,
            verbose=args.verbose,
            stats_interval=args.stats_interval,
            forward_timeout=args.forward_timeout,
            forward_workers=args.forward_workers,
        )
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    return run(cfg, stop_seconds=args.stop_seconds, json_out=args.json_out)


if __name__ == "__main__":
    raise SystemExit(main())
