"""runpipe environment configuration.

Environment variables:
    RUNPIPE_BUFFER_SIZE: In-memory relay threshold in bytes
        - default 131072 (128 KiB)
        - output beyond this is spilled to temporary overflow files

    RUNPIPE_CHUNK_SIZE: Read size used when draining process pipes
        - default 32768

    RUNPIPE_LINE_QUEUE_SIZE: Capacity of the line channel used by lines()
        - default 64

    RUNPIPE_TERM_TIMEOUT: Seconds to wait after SIGTERM before SIGKILL
        when a command is cancelled
        - default 2.0, clamped to 0.1-60

    RUNPIPE_LOG_DEBUG: Debug logging for the runpipe CLI
        - true/1/yes = on (logs go to a temporary file)
        - false/0/no = off (default, logs go to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "get_config", "load_config", "reload_config"]

DEFAULT_BUFFER_SIZE = 128 * 1024
DEFAULT_CHUNK_SIZE = 32 * 1024
DEFAULT_LINE_QUEUE_SIZE = 64
DEFAULT_TERM_TIMEOUT = 2.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, minimum: int) -> int:
    """Parse a positive integer environment variable."""
    if not value or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return max(minimum, parsed)


def _parse_term_timeout(value: str | None) -> float:
    """Parse the termination grace period."""
    if not value:
        return DEFAULT_TERM_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_TERM_TIMEOUT
    return max(0.1, min(timeout, 60.0))


@dataclass(frozen=True)
class Config:
    """Output aggregation settings.

    Attributes:
        buffer_size: Bytes held in memory by a relay pipe before overflow
            storage on disk absorbs the rest
        chunk_size: Read size used when draining process pipes
        line_queue_size: Capacity of the bounded line channel
        term_timeout: Grace period between SIGTERM and SIGKILL on cancel
        log_debug: Debug logging mode (CLI only)
        log_file: Log file path (set automatically when log_debug is on)
    """

    buffer_size: int = DEFAULT_BUFFER_SIZE
    chunk_size: int = DEFAULT_CHUNK_SIZE
    line_queue_size: int = DEFAULT_LINE_QUEUE_SIZE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def with_buffer_size(self, buffer_size: int) -> "Config":
        """Return a copy with a different relay threshold."""
        return replace(self, buffer_size=max(1, buffer_size))


def _generate_log_file_path() -> str:
    """Build a timestamped log file path in the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "runpipe"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str((log_dir / f"runpipe_debug_{timestamp}.log").resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("RUNPIPE_LOG_DEBUG"), default=False)

    return Config(
        buffer_size=_parse_int(
            os.environ.get("RUNPIPE_BUFFER_SIZE"), DEFAULT_BUFFER_SIZE, minimum=1
        ),
        chunk_size=_parse_int(
            os.environ.get("RUNPIPE_CHUNK_SIZE"), DEFAULT_CHUNK_SIZE, minimum=1
        ),
        line_queue_size=_parse_int(
            os.environ.get("RUNPIPE_LINE_QUEUE_SIZE"), DEFAULT_LINE_QUEUE_SIZE, minimum=1
        ),
        term_timeout=_parse_term_timeout(os.environ.get("RUNPIPE_TERM_TIMEOUT")),
        log_debug=log_debug,
        log_file=_generate_log_file_path() if log_debug else None,
    )


# Lazily loaded default configuration
_config: Config | None = None


def get_config() -> Config:
    """Return the default configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the default configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
