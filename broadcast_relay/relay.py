"""
UDP broadcast relay engine.

One listening socket receives datagrams (typically local broadcasts) and each
datagram is fanned out, verbatim, to every configured target except the one
it came from.

Threads:
- receive loop: sole reader of the listening socket; wakes every
  ``poll_interval`` to observe the stop event.
- stats reporter (verbose only): logs a counters snapshot every
  ``stats_interval``.
- forwards: one short-lived task per packet per target. By default each is a
  detached daemon thread; with ``forward_workers > 0`` they run on a bounded
  thread pool instead. ``stop()`` never waits for in-flight forwards.

Usage:
    engine = RelayEngine(RelayConfig(targets=("192.168.2.255:9999",)))
    engine.start()
    ...
    engine.stop()
"""

from __future__ import annotations

import enum
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Tuple

from broadcast_relay import __version__
from broadcast_relay.config import RelayConfig, validate_config
from broadcast_relay.exceptions import BindError
from broadcast_relay.logging_utils import get_logger
from broadcast_relay.stats import RelayStats, StatsSnapshot
from broadcast_relay.targets import SockAddr, TargetEndpoint, resolve_targets

logger = get_logger("broadcast_relay")

# Extra time allowed past one poll interval when joining the loops.
_JOIN_GRACE_S = 1.0


class RelayState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    STOP_REQUESTED = "stop_requested"
    STOPPED = "stopped"


def _format_addr(addr: SockAddr) -> str:
    host, port = addr[0], addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _bind_listen_socket(listen_addr: str, listen_port: int) -> socket.socket:
    try:
        infos = socket.getaddrinfo(
            listen_addr, listen_port, type=socket.SOCK_DGRAM, flags=socket.AI_PASSIVE
        )
    except (socket.gaierror, UnicodeError) as exc:
        raise BindError(f"failed to resolve listen address {listen_addr}:{listen_port}: {exc}") from exc
    if not infos:
        raise BindError(f"failed to resolve listen address {listen_addr}:{listen_port}")

    family, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.bind(sockaddr)
    except OSError as exc:
        sock.close()
        raise BindError(f"failed to create UDP socket on {listen_addr}:{listen_port}: {exc}") from exc
    return sock


class RelayEngine:
    """
    Receive-and-fan-out relay.

    Construction resolves all targets and binds the listening socket, so a
    constructed engine is ready to run; every startup failure surfaces here
    as ConfigError, ResolutionError or BindError.

    Lifecycle: CREATED -> RUNNING -> STOP_REQUESTED -> STOPPED.
    """

    def __init__(self, config: RelayConfig):
        validate_config(config, allow_ephemeral_port=True)

        self._config = config
        self._targets: Tuple[TargetEndpoint, ...] = resolve_targets(config.targets)
        if config.verbose:
            for target in self._targets:
                if target.raw and target.raw != str(target):
                    logger.info(f"Resolved target {target.raw} to {target}")
        self._stats = RelayStats()
        self._stop_event = threading.Event()
        self._state = RelayState.CREATED
        self._state_lock = threading.Lock()

        self._receive_thread: Optional[threading.Thread] = None
        self._reporter_thread: Optional[threading.Thread] = None
        self._pool: Optional[ThreadPoolExecutor] = None

        self._socket = _bind_listen_socket(config.listen_addr, config.listen_port)
        self._listen_address: SockAddr = self._socket.getsockname()
        self._set_receive_buffer(config.buffer_size)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def targets(self) -> Tuple[TargetEndpoint, ...]:
        return self._targets

    @property
    def stats(self) -> RelayStats:
        return self._stats

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def listen_address(self) -> SockAddr:
        """Bound (host, port); reflects the real port when configured with 0."""
        return self._listen_address

    @property
    def is_running(self) -> bool:
        return self._state is RelayState.RUNNING

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the receive loop (and reporter when verbose); returns immediately."""
        with self._state_lock:
            if self._state is not RelayState.CREATED:
                raise RuntimeError(f"cannot start relay in state {self._state.value}")
            self._state = RelayState.RUNNING

        cfg = self._config
        logger.info(f"Starting Broadcast Relay v{__version__}")
        logger.info(
            f"Listening on {_format_addr(self._listen_address)}",
            extra={"listen": _format_addr(self._listen_address)},
        )
        logger.info(
            f"Forwarding to: {', '.join(str(t) for t in self._targets)}",
            extra={"targets": [str(t) for t in self._targets]},
        )

        if cfg.forward_workers > 0:
            self._pool = ThreadPoolExecutor(
                max_workers=cfg.forward_workers,
                thread_name_prefix="relay-forward",
            )

        self._receive_thread = threading.Thread(
            target=self._receive_loop,
            name=f"relay-receive-{self._listen_address[1]}",
            daemon=True,
        )
        self._receive_thread.start()

        if cfg.verbose:
            self._reporter_thread = threading.Thread(
                target=self._stats_reporter,
                name="relay-stats",
                daemon=True,
            )
            self._reporter_thread.start()

    def stop(self) -> StatsSnapshot:
        """
        Stop the relay and return the final counters.

        Signals both loops, closes the socket to unblock a pending read, and
        waits for the loops to exit. Forwards already dispatched are left to
        finish on their own.
        """
        with self._state_lock:
            if self._state in (RelayState.STOP_REQUESTED, RelayState.STOPPED):
                return self._stats.snapshot()
            was_running = self._state is RelayState.RUNNING
            self._state = RelayState.STOP_REQUESTED

        if was_running:
            logger.info("Stopping relay...")
        self._stop_event.set()
        self._close_socket()

        join_timeout = max(self._config.poll_interval, 0.0) + _JOIN_GRACE_S
        for thread in (self._receive_thread, self._reporter_thread):
            if thread is not None and thread.is_alive():
                thread.join(timeout=join_timeout)
                if thread.is_alive():
                    logger.warning(f"Relay thread {thread.name} did not exit within {join_timeout:.1f}s")

        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None

        final = self._stats.snapshot()
        with self._state_lock:
            self._state = RelayState.STOPPED
        if was_running:
            logger.info(f"Final stats: {final.format()}", extra={"stats": final.to_dict()})
            logger.info("Relay stopped")
        return final

    # ------------------------------------------------------------------
    # Socket helpers
    # ------------------------------------------------------------------

    def _set_receive_buffer(self, size: int) -> None:
        try:
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, size)
        except OSError as exc:
            logger.warning(f"Warning: failed to set read buffer size: {exc}")

    def _close_socket(self) -> None:
        try:
            self._socket.close()
        except OSError as exc:
            logger.debug(f"Error closing listen socket: {exc}")

    def _open_forward_socket(self, target: TargetEndpoint) -> socket.socket:
        sock = socket.socket(target.family, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.settimeout(self._config.forward_timeout)
            sock.connect(target.sockaddr)
        except OSError:
            sock.close()
            raise
        return sock

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _receive_loop(self) -> None:
        """Background thread that receives datagrams and dispatches forwards."""
        cfg = self._config
        buffer = bytearray(cfg.buffer_size)
        view = memoryview(buffer)

        try:
            self._socket.settimeout(cfg.poll_interval)
        except OSError:
            # Socket already closed by a racing stop().
            return

        while not self._stop_event.is_set():
            try:
                nbytes, src = self._socket.recvfrom_into(buffer)
            except socket.timeout:
                # Normal timeout for shutdown check
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    return
                self._stats.add_error()
                if cfg.verbose:
                    logger.warning(f"Error reading UDP packet: {exc}")
                continue

            self._stats.add_received(nbytes)
            if cfg.verbose:
                logger.info(f"Received {nbytes} bytes from {_format_addr(src)}")

            data = bytes(view[:nbytes])
            for target in self._targets:
                if target.matches(src):
                    if cfg.verbose:
                        logger.info(f"Skipping forward to source: {target}")
                    continue
                self._dispatch(data, target)

    def _dispatch(self, data: bytes, target: TargetEndpoint) -> None:
        pool = self._pool
        if pool is not None:
            try:
                pool.submit(self.forward_packet, data, target)
                return
            except RuntimeError:
                # Pool shut down by stop(); fall through to a detached thread.
                pass
        threading.Thread(
            target=self.forward_packet,
            args=(data, target),
            name="relay-forward",
            daemon=True,
        ).start()

    def forward_packet(self, data: bytes, target: TargetEndpoint) -> None:
        """Send one payload to one target; failures are counted, never raised."""
        try:
            sock = self._open_forward_socket(target)
        except OSError as exc:
            self._stats.add_error()
            if self._config.verbose:
                logger.warning(f"Error connecting to target {target}: {exc}")
            return

        try:
            sent = sock.send(data)
        except OSError as exc:
            self._stats.add_error()
            if self._config.verbose:
                logger.warning(f"Error forwarding to {target}: {exc}")
            return
        finally:
            sock.close()

        self._stats.add_forwarded(sent)
        if self._config.verbose:
            logger.info(f"Forwarded {sent} bytes to {target}")

    def _stats_reporter(self) -> None:
        """Background thread that logs a counters snapshot every stats_interval."""
        interval = self._config.stats_interval
        while not self._stop_event.wait(interval):
            snap = self._stats.snapshot()
            logger.info(f"Stats: {snap.format()}", extra={"stats": snap.to_dict()})
