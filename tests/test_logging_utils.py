"""Tests for relay logging setup."""

import json
import logging
import tempfile
import unittest
from pathlib import Path

from broadcast_relay.logging_utils import (
    JsonFormatter,
    configure_file_logger,
    configure_logging,
    get_logger,
)


class TestJsonFormatter(unittest.TestCase):

    def _record(self, msg, **extra):
        record = logging.LogRecord(
            name="broadcast_relay", level=logging.INFO, pathname=__file__, lineno=1,
            msg=msg, args=(), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_core_fields(self):
        payload = json.loads(JsonFormatter().format(self._record("Relay stopped")))
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["name"], "broadcast_relay")
        self.assertEqual(payload["msg"], "Relay stopped")
        self.assertTrue(payload["ts"].endswith("Z"))
        self.assertNotIn("lineno", payload)

    def test_extra_fields(self):
        record = self._record("Final stats", stats={"errors": 0}, peer=object())
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["stats"], {"errors": 0})
        # Non-serialisable extras fall back to str()
        self.assertIsInstance(payload["peer"], str)


class TestLoggerSetup(unittest.TestCase):

    def setUp(self):
        self.logger = logging.getLogger("broadcast_relay.test_setup")
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

    def tearDown(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def test_get_logger_installs_one_handler(self):
        first = get_logger("broadcast_relay.test_setup")
        second = get_logger("broadcast_relay.test_setup")
        self.assertIs(first, second)
        self.assertEqual(len(first.handlers), 1)
        self.assertFalse(first.propagate)

    def test_configure_logging_switches_to_json(self):
        logger = get_logger("broadcast_relay.test_setup")
        configure_logging(json_logs=True, logger=logger)
        self.assertIsInstance(logger.handlers[0].formatter, JsonFormatter)
        configure_logging(json_logs=False, logger=logger)
        self.assertNotIsInstance(logger.handlers[0].formatter, JsonFormatter)

    def test_file_logger(self):
        logger = get_logger("broadcast_relay.test_setup")
        with tempfile.TemporaryDirectory() as tmp:
            path = configure_file_logger(Path(tmp) / "logs" / "relay.log", logger=logger)
            # Re-attaching replaces the previous file handler
            path = configure_file_logger(path, logger=logger)
            logger.info("hello file")
            file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
            self.assertEqual(len(file_handlers), 1)
            file_handlers[0].flush()
            line = path.read_text(encoding="utf-8").strip().splitlines()[-1]
            self.assertEqual(json.loads(line)["msg"], "hello file")
            for handler in file_handlers:
                logger.removeHandler(handler)
                handler.close()


if __name__ == "__main__":
    unittest.main()
