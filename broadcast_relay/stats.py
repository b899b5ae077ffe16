"""Thread-safe relay counters."""

import threading
from dataclasses import dataclass, asdict
from typing import Dict


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the relay counters."""
    packets_received: int = 0
    packets_forwarded: int = 0
    bytes_received: int = 0
    bytes_forwarded: int = 0
    errors: int = 0

    def format(self) -> str:
        return (
            f"Received: {self.packets_received} packets ({self.bytes_received} bytes), "
            f"Forwarded: {self.packets_forwarded} packets ({self.bytes_forwarded} bytes), "
            f"Errors: {self.errors}"
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

    def __str__(self) -> str:
        return self.format()


class RelayStats:
    """
    Counters shared by the receive loop and every forward task.

    All mutations and reads happen under one lock so a snapshot never
    observes a half-applied update (e.g. a packet counted without its bytes).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._packets_received = 0
        self._packets_forwarded = 0
        self._bytes_received = 0
        self._bytes_forwarded = 0
        self._errors = 0

    def add_received(self, nbytes: int) -> None:
        with self._lock:
            self._packets_received += 1
            self._bytes_received += nbytes

    def add_forwarded(self, nbytes: int) -> None:
        with self._lock:
            self._packets_forwarded += 1
            self._bytes_forwarded += nbytes

    def add_error(self) -> None:
        with self._lock:
            self._errors += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                packets_received=self._packets_received,
                packets_forwarded=self._packets_forwarded,
                bytes_received=self._bytes_received,
                bytes_forwarded=self._bytes_forwarded,
                errors=self._errors,
            )

    def format(self) -> str:
        return self.snapshot().format()

    def __str__(self) -> str:
        return self.format()
