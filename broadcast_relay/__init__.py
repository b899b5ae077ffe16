"""
Broadcast Relay

Relays UDP datagrams received on a local (broadcast-capable) port to a fixed
set of unicast or broadcast targets, so broadcast-based discovery protocols
can cross network segment boundaries.

Layout:
    broadcast_relay/
    ├── __init__.py       # Version
    ├── __main__.py       # python -m broadcast_relay
    ├── cli.py            # Argument parsing, signals, exit codes
    ├── config.py         # RelayConfig, env overrides, validation
    ├── env_loader.py     # .relayenv loader
    ├── exceptions.py     # RelayError hierarchy
    ├── interfaces.py     # Local IPv4 interfaces / broadcast addresses
    ├── logging_utils.py  # Text/JSON logging setup
    ├── relay.py          # RelayEngine (receive loop, forwards, reporter)
    ├── stats.py          # Thread-safe counters
    └── targets.py        # Target endpoint resolution
"""

__version__ = "1.0.0"
