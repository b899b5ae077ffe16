"""Tests for the broadcast-relay command line entrypoint."""

import contextlib
import io
import json
import os
import signal
import socket
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

from broadcast_relay import __version__
from broadcast_relay.cli import build_parser, main
from broadcast_relay.interfaces import InterfaceAddress


def free_udp_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def _clean_environ() -> dict:
    return {k: v for k, v in os.environ.items() if not k.startswith("RELAY_")}


class CliTestCase(unittest.TestCase):

    def setUp(self):
        patches = [
            mock.patch.dict(os.environ, _clean_environ(), clear=True),
            mock.patch("broadcast_relay.cli.load_env_files", return_value={}),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)


class TestCliBasics(CliTestCase):

    def test_version(self):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(["--version"])
        self.assertEqual(code, 0)
        self.assertEqual(out.getvalue().strip(), f"Broadcast Relay v{__version__}")

    def test_help_lists_examples(self):
        help_text = build_parser().format_help()
        self.assertIn("--targets", help_text)
        self.assertIn("Examples:", help_text)
        for name in ("RELAY_POLL_INTERVAL", "RELAY_STATS_INTERVAL", "RELAY_FORWARD_WORKERS"):
            self.assertIn(name, help_text)

    def test_list_interfaces(self):
        fake = [InterfaceAddress("eth0", "192.168.1.10", "255.255.255.0", "192.168.1.255")]
        out = io.StringIO()
        with mock.patch("broadcast_relay.cli.list_ipv4_interfaces", return_value=fake):
            with contextlib.redirect_stdout(out):
                code = main(["--list-interfaces"])
        self.assertEqual(code, 0)
        self.assertIn("192.168.1.255", out.getvalue())


class TestCliErrors(CliTestCase):

    def test_missing_targets(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = main(["--port", "9999"])
        self.assertEqual(code, 1)
        self.assertIn("Error:", err.getvalue())
        self.assertIn("usage:", err.getvalue())

    def test_invalid_port(self):
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = main(["--port", "0", "--targets", "10.0.0.5:9999"])
        self.assertEqual(code, 1)

    def test_unresolvable_target(self):
        with self.assertLogs("broadcast_relay", level="ERROR") as logs:
            code = main(["--listen", "127.0.0.1", "--port", str(free_udp_port()),
                         "--targets", "10.0.0.5"])
        self.assertEqual(code, 1)
        self.assertTrue(any("Failed to create relay" in m for m in logs.output))

    def test_bind_failure(self):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        occupied.bind(("127.0.0.1", 0))
        self.addCleanup(occupied.close)
        port = occupied.getsockname()[1]

        with self.assertLogs("broadcast_relay", level="ERROR") as logs:
            code = main(["--listen", "127.0.0.1", "--port", str(port),
                         "--targets", "10.0.0.5:9999"])
        self.assertEqual(code, 1)
        self.assertTrue(any("Failed to create relay" in m for m in logs.output))


class TestCliRun(CliTestCase):

    def test_runs_until_stop_seconds_and_writes_report(self):
        with tempfile.TemporaryDirectory() as tmp:
            report = Path(tmp) / "out" / "counters.json"
            with self.assertLogs("broadcast_relay", level="INFO") as logs:
                code = main([
                    "--listen", "127.0.0.1",
                    "--port", str(free_udp_port()),
                    "--targets", "127.0.0.1:9",
                    "--targets", "127.0.0.1:10",
                    "--stop-seconds", "0.2",
                    "--json-out", str(report),
                ])
            self.assertEqual(code, 0)
            payload = json.loads(report.read_text(encoding="utf-8"))

        self.assertEqual(payload["version"], __version__)
        self.assertEqual(payload["config"]["targets"], ["127.0.0.1:9", "127.0.0.1:10"])
        self.assertEqual(payload["stats"]["packets_received"], 0)
        self.assertTrue(any("Relay stopped" in m for m in logs.output))

    @unittest.skipUnless(hasattr(signal, "SIGTERM") and os.name == "posix",
                         "requires POSIX signal delivery")
    def test_sigterm_stops_relay_and_restores_handler(self):
        before = signal.getsignal(signal.SIGTERM)
        timer = threading.Timer(0.3, os.kill, args=(os.getpid(), signal.SIGTERM))
        self.addCleanup(timer.cancel)
        timer.start()
        with self.assertLogs("broadcast_relay", level="INFO") as logs:
            code = main([
                "--listen", "127.0.0.1",
                "--port", str(free_udp_port()),
                "--targets", "127.0.0.1:9",
                "--stop-seconds", "10",
            ])
        self.assertEqual(code, 0)
        self.assertTrue(any("Received signal" in m for m in logs.output))
        self.assertTrue(any("Relay stopped" in m for m in logs.output))
        self.assertIs(signal.getsignal(signal.SIGTERM), before)

    def test_targets_from_environment(self):
        os.environ["RELAY_TARGETS"] = "127.0.0.1:9"
        os.environ["RELAY_LISTEN"] = "127.0.0.1"
        os.environ["RELAY_PORT"] = str(free_udp_port())
        with self.assertLogs("broadcast_relay", level="INFO") as logs:
            code = main(["--stop-seconds", "0.1"])
        self.assertEqual(code, 0)
        self.assertTrue(any("Forwarding to: 127.0.0.1:9" in m for m in logs.output))


if __name__ == "__main__":
    unittest.main()
