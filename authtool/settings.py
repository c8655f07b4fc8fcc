"""Runtime settings from the environment and optional .env files."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .storage import DEFAULT_STORE_DIR

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8765/callback"

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".config" / "authtool" / ".env",
]


@dataclass
class Settings:
    """Resolved settings for one authtool run."""

    store_dir: Path = DEFAULT_STORE_DIR
    redirect_uri: str = DEFAULT_REDIRECT_URI
    http_timeout: float | None = None
    env_path: Path | None = None


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def _parse_timeout(value: str | None) -> float | None:
    """Parse AUTHTOOL_HTTP_TIMEOUT. Empty or non-positive means no timeout."""
    if not value or not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError:
        raise ValueError(f"AUTHTOOL_HTTP_TIMEOUT must be a number of seconds, got: {value!r}") from None
    return timeout if timeout > 0 else None


def load_settings(env_path: Path | None = None, store_dir: Path | None = None) -> Settings:
    """Load settings, reading a .env file first if one is found.

    Variables already present in the environment win over the .env file.

    Args:
        env_path: Explicit path to .env file (optional)
        store_dir: Explicit storage directory, overriding AUTHTOOL_STORE_DIR

    Raises:
        ValueError: If AUTHTOOL_HTTP_TIMEOUT is not a number
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    env_store_dir = os.environ.get("AUTHTOOL_STORE_DIR")
    resolved_store_dir = store_dir or (Path(env_store_dir).expanduser() if env_store_dir else DEFAULT_STORE_DIR)

    return Settings(
        store_dir=resolved_store_dir,
        redirect_uri=os.environ.get("AUTHTOOL_REDIRECT_URI") or DEFAULT_REDIRECT_URI,
        http_timeout=_parse_timeout(os.environ.get("AUTHTOOL_HTTP_TIMEOUT")),
        env_path=env_file,
    )
