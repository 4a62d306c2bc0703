"""Audit logging for service-manager changes.

Every mutation the enumerator performs (instance registration, removal,
dependency declaration, dependent-server restart) is recorded as one JSON
line so that the change history can be reconstructed from logs alone:
- Timestamped entries for every register/unregister/restart attempt
- Success or failure with the error text
- Structured JSON log format
- Separate audit log file
"""
import json
import logging
import os
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Create dedicated audit logger
audit_logger = logging.getLogger("nut_enumerator.audit")
# Records only go to the audit file, never to the console
audit_logger.propagate = False

DEFAULT_AUDIT_DIR = "~/.nut-enumerator"
AUDIT_FILE_NAME = "audit.log"
# Changes kept in memory per tracker; the audit file holds the full history
MAX_TRACKED_RECORDS = 500


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.nut-enumerator/

    Returns:
        Path of the audit log file
    """
    if log_dir is None:
        log_dir = os.path.expanduser(DEFAULT_AUDIT_DIR)

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / AUDIT_FILE_NAME

    audit_logger.setLevel(logging.INFO)

    # Remove existing handlers
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )

    # Use JSON format for machine-readability
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    return audit_file


@dataclass
class ChangeRecord:
    """Record of a service-manager change."""
    timestamp: str
    framework: str
    operation: str  # register, unregister, declare_dependency, restart_server
    subject: str    # device name, instance identifier or server unit
    success: bool
    parameters: dict = field(default_factory=dict)
    output: str = ""
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, line: str) -> "ChangeRecord":
        return cls(**json.loads(line))

    def describe(self) -> str:
        """One-line rendering used by the change listing."""
        status = "OK" if self.success else f"FAILED: {self.error}"
        return f"{self.timestamp} {self.framework} {self.operation} {self.subject} {status}"


class ChangeTracker:
    """Track and log changes made through one service-management backend."""

    def __init__(self, framework: str, max_records: int = MAX_TRACKED_RECORDS):
        self.framework = framework
        self.records: deque[ChangeRecord] = deque(maxlen=max_records)

    def failures(self) -> list[ChangeRecord]:
        return [record for record in self.records if not record.success]

    def log_change(
        self,
        operation: str,
        subject: str,
        success: bool,
        parameters: Optional[dict] = None,
        output: str = "",
        error: Optional[str] = None,
    ) -> ChangeRecord:
        """Log a service-manager change.

        Args:
            operation: The operation performed (e.g., "register")
            subject: Device name or instance the operation acted on
            success: Whether the operation succeeded
            parameters: Parameters of the operation
            output: Command output or result message
            error: Error message if failed

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            framework=self.framework,
            operation=operation,
            subject=subject,
            success=success,
            parameters=parameters or {},
            output=output[:1000] if output else "",  # Truncate long output
            error=error,
        )

        self.records.append(record)
        audit_logger.info(record.to_json())

        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    framework: Optional[str] = None,
    subject: Optional[str] = None,
    operation: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.nut-enumerator/audit.log
        framework: Filter by service framework
        subject: Filter by device or instance
        operation: Filter by operation type
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.join(os.path.expanduser(DEFAULT_AUDIT_DIR), AUDIT_FILE_NAME)

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if framework and record.framework != framework:
                continue
            if subject and record.subject != subject:
                continue
            if operation and record.operation != operation:
                continue

            records.append(record)

    # Return most recent first, limited
    return list(reversed(records[-limit:]))
