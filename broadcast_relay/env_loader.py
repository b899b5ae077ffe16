"""
Environment file loader for .relayenv files.

Reads KEY=VALUE pairs and populates os.environ WITHOUT overwriting values
that are already set (explicit env wins). Supports # comments, blank lines,
an optional leading ``export`` and optional quoting.
"""

import os
from pathlib import Path
from typing import Optional

ENV_FILENAMES = (".relayenv", ".relayenv.local")


def _parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env-style file into a dict."""
    result: dict[str, str] = {}
    if not path.is_file():
        return result
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            key, sep, value = line.partition("=")
            if not sep:
                continue
            key = key.strip()
            value = value.strip()
            if not key:
                continue
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            result[key] = value
    return result


def load_env_files(root: Optional[Path] = None) -> dict[str, str]:
    """
    Load .relayenv and .relayenv.local from ``root`` into os.environ.

    - Existing env vars take precedence (never overwritten).
    - .relayenv.local overrides .relayenv (for per-host settings).
    - Returns dict of all loaded key-value pairs (for debugging).

    Parameters
    ----------
    root : Path, optional
        Directory holding the env files. Defaults to the current working directory.
    """
    if root is None:
        root = Path.cwd()

    loaded: dict[str, str] = {}
    for name in ENV_FILENAMES:
        loaded.update(_parse_env_file(root / name))

    for key, value in loaded.items():
        if key not in os.environ:
            os.environ[key] = value

    return loaded
