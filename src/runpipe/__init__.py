"""runpipe - aggregate, transform and stream the output of child processes.

Environment variables:
    RUNPIPE_BUFFER_SIZE: In-memory relay threshold (default 128 KiB)
    RUNPIPE_LOG_DEBUG: Debug logging for the CLI (default false)

Usage:
    from runpipe import cmd

    lines = cmd("git log --oneline -n 5").run().lines()
"""

__version__ = "0.1.0"

from .command import Command, bash, cmd
from .config import Config, get_config, load_config
from .errors import (
    AlreadyConsumedError,
    BuildError,
    ExitCoder,
    ExitError,
    JQError,
    RunError,
    SignalExitError,
    StartError,
    exit_code,
)
from .hooks import ExecutedCommand, Hooks, LoggingHooks, MultiHooks, log_commands
from .jsonquery import map_jq
from .output import CommandOutput, ErrorOutput, Output, attach
from .process import AttachMode, ProcessSpec
from .transforms import LineMap, Sink

__all__ = [
    "AlreadyConsumedError",
    "AttachMode",
    "BuildError",
    "Command",
    "CommandOutput",
    "Config",
    "ErrorOutput",
    "ExecutedCommand",
    "ExitCoder",
    "ExitError",
    "Hooks",
    "JQError",
    "LineMap",
    "LoggingHooks",
    "MultiHooks",
    "Output",
    "ProcessSpec",
    "RunError",
    "SignalExitError",
    "Sink",
    "StartError",
    "__version__",
    "attach",
    "bash",
    "cmd",
    "exit_code",
    "get_config",
    "load_config",
    "log_commands",
    "map_jq",
]
