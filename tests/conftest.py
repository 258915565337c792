"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from runpipe.config import Config  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_PROC = FIXTURES_DIR / "fake_proc.py"

if str(FIXTURES_DIR) not in sys.path:
    sys.path.insert(0, str(FIXTURES_DIR))


def fake_argv(*args: str) -> list[str]:
    """argv running the fake process with the given steps."""
    return [sys.executable, str(FAKE_PROC), *args]


@pytest.fixture
def fake() -> Callable[..., list[str]]:
    """Build argv for the fake process."""
    return fake_argv


@pytest.fixture
def config() -> Config:
    """Default configuration, independent of the environment."""
    return Config()


@pytest.fixture
def small_config() -> Config:
    """Configuration with a tiny relay threshold so overflow is exercised."""
    return Config(buffer_size=1024, chunk_size=512, line_queue_size=4)
