"""Project-specific exception types for clearer error semantics."""

class RelayError(Exception):
    """Base class for every error raised by the relay."""
    pass

class ConfigError(RelayError, ValueError):
    """Configuration validation errors (subclass of ValueError for argparse-style callers)."""
    pass

class ResolutionError(RelayError):
    """A target address string is malformed or cannot be resolved."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"failed to resolve target address {target}: {reason}")
        self.target = target
        self.reason = reason

class BindError(RelayError):
    """Listening socket could not be created or bound."""
    pass
