"""Utility modules for command execution, logging and auditing."""
from .audit_log import ChangeRecord, ChangeTracker, get_recent_changes, setup_audit_logging
from .commands import CommandError, CommandResult, CommandRunner
from .logging_config import (
    setup_logging,
    timed,
    timed_section,
    perf_logger,
)

__all__ = [
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "setup_audit_logging",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "setup_logging",
    "timed",
    "timed_section",
    "perf_logger",
]
