"""
Relay configuration.

Defaults live in ``DEFAULTS``; values may be overridden by ``RELAY_*``
environment variables (optionally seeded from ``.relayenv``) and finally by
explicit CLI values. ``validate_config`` is the single gate every
configuration passes before a relay is built from it.
"""

import os
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, Optional, Tuple

from broadcast_relay.exceptions import ConfigError


DEFAULTS: Dict[str, Any] = {
    "listen_addr": "0.0.0.0",
    "listen_port": 9999,
    "targets": (),
    "buffer_size": 65535,
    "verbose": False,
    # Receive timeout; bounds how long stop() waits for the receive loop.
    "poll_interval": 1.0,
    # Period of the verbose stats reporter.
    "stats_interval": 10.0,
    # Deadline applied to each outbound forward socket.
    "forward_timeout": 2.0,
    # 0 = one detached thread per forward; >0 = bounded worker pool.
    "forward_workers": 0,
}

# Environment variable -> (config key, type)
_ENV_OVERRIDES: Dict[str, Tuple[str, type]] = {
    "RELAY_LISTEN": ("listen_addr", str),
    "RELAY_PORT": ("listen_port", int),
    "RELAY_TARGETS": ("targets", tuple),
    "RELAY_BUFFER": ("buffer_size", int),
    "RELAY_VERBOSE": ("verbose", bool),
    "RELAY_POLL_INTERVAL": ("poll_interval", float),
    "RELAY_STATS_INTERVAL": ("stats_interval", float),
    "RELAY_FORWARD_TIMEOUT": ("forward_timeout", float),
    "RELAY_FORWARD_WORKERS": ("forward_workers", int),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class RelayConfig:
    """Immutable relay configuration consumed by ``RelayEngine``."""
    targets: Tuple[str, ...] = field(default_factory=tuple)
    listen_addr: str = DEFAULTS["listen_addr"]
    listen_port: int = DEFAULTS["listen_port"]
    buffer_size: int = DEFAULTS["buffer_size"]
    verbose: bool = DEFAULTS["verbose"]
    poll_interval: float = DEFAULTS["poll_interval"]
    stats_interval: float = DEFAULTS["stats_interval"]
    forward_timeout: float = DEFAULTS["forward_timeout"]
    forward_workers: int = DEFAULTS["forward_workers"]

    def __post_init__(self) -> None:
        # Accept any iterable of target strings but store a tuple.
        if not isinstance(self.targets, tuple):
            object.__setattr__(self, "targets", tuple(self.targets))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["targets"] = list(self.targets)
        return data


def parse_targets(text: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated target list, trimming blanks and dropping empty entries."""
    if not text:
        return ()
    return tuple(part.strip() for part in text.split(",") if part.strip())


def _parse_bool(raw: str) -> bool:
    lowered = str(raw).strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"invalid boolean literal: {raw}")


def apply_env_overrides(values: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Apply ``RELAY_*`` environment variable overrides to a config dict."""
    env = os.environ if environ is None else environ
    result = dict(values)

    for env_var, (key, expected_type) in _ENV_OVERRIDES.items():
        if env_var not in env:
            continue
        raw = env[env_var]
        try:
            if expected_type is bool:
                result[key] = _parse_bool(raw)
            elif expected_type is tuple:
                result[key] = parse_targets(raw)
            else:
                result[key] = expected_type(raw.strip())
        except ValueError:
            raise ConfigError(f"Invalid {expected_type.__name__} value for {env_var}: {raw}")

    return result


def validate_config(cfg: RelayConfig, *, allow_ephemeral_port: bool = False) -> None:
    """
    Ensure every field holds a usable value.
    Raise ConfigError("<reason>") on any violation.
    No return value on success.

    ``allow_ephemeral_port`` admits listen port 0 (kernel-assigned), which
    ``RelayEngine`` accepts but the command line does not.
    """
    if not isinstance(cfg.listen_addr, str) or not cfg.listen_addr.strip():
        raise ConfigError(f"listen address must be a non-empty string, got {cfg.listen_addr!r}")

    if isinstance(cfg.listen_port, bool) or not isinstance(cfg.listen_port, int):
        raise ConfigError(f"listen port must be int, got {type(cfg.listen_port).__name__}")
    lowest_port = 0 if allow_ephemeral_port else 1
    if not (lowest_port <= cfg.listen_port <= 65535):
        raise ConfigError(f"listen port must be valid port ({lowest_port}-65535), got {cfg.listen_port}")

    if not cfg.targets:
        raise ConfigError("at least one valid target address is required")
    for target in cfg.targets:
        if not isinstance(target, str) or not target.strip():
            raise ConfigError(f"target addresses must be non-empty strings, got {target!r}")

    if isinstance(cfg.buffer_size, bool) or not isinstance(cfg.buffer_size, int):
        raise ConfigError(f"buffer size must be int, got {type(cfg.buffer_size).__name__}")
    if cfg.buffer_size < 1:
        raise ConfigError(f"buffer size must be positive, got {cfg.buffer_size}")

    for key in ("poll_interval", "stats_interval", "forward_timeout"):
        value = getattr(cfg, key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{key} must be float seconds, got {type(value).__name__}")
        if value <= 0:
            raise ConfigError(f"{key} must be > 0, got {value}")

    if isinstance(cfg.forward_workers, bool) or not isinstance(cfg.forward_workers, int):
        raise ConfigError(f"forward_workers must be int, got {type(cfg.forward_workers).__name__}")
    if cfg.forward_workers < 0:
        raise ConfigError(f"forward_workers must be >= 0, got {cfg.forward_workers}")


def load_config(environ: Optional[Dict[str, str]] = None, **overrides: Any) -> RelayConfig:
    """
    Build a validated RelayConfig.

    Precedence: explicit ``overrides`` (CLI) > environment > DEFAULTS.
    Overrides whose value is None are treated as "not given".
    """
    values = apply_env_overrides(DEFAULTS, environ)
    for key, value in overrides.items():
        if key not in DEFAULTS:
            raise ConfigError(f"Unsupported config key: {key}")
        if value is None:
            continue
        if key == "targets" and isinstance(value, str):
            value = parse_targets(value)
        values[key] = value

    cfg = RelayConfig(**values)
    validate_config(cfg)
    return cfg


def targets_from(values: Iterable[str]) -> Tuple[str, ...]:
    """Flatten repeated/comma-separated target arguments into one ordered tuple."""
    out = []
    for value in values:
        out.extend(parse_targets(value))
    return tuple(out)
