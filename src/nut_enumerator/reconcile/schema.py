"""Schema definitions for the reconciliation engine."""
from dataclasses import dataclass, field
from enum import Enum

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_CONFIG = 2
EXIT_UNMATCHED = 13
EXIT_RESTART_NEEDED = 42


class MatchState(str, Enum):
    """Outcome of one reconciliation pass."""
    MATCHED = "matched"                      # Nothing to do
    CHANGED_MATCHED = "changed_matched"      # Changes applied, now in sync
    CHANGED_UNMATCHED = "changed_unmatched"  # Changes attempted, still out of sync


@dataclass(frozen=True)
class IdentityCollision:
    """Distinct devices that normalize to the same instance identifier."""
    identifier: str
    device_names: tuple[str, ...]

    def __str__(self) -> str:
        return f"devices {', '.join(self.device_names)} all map to instance '{self.identifier}'"


@dataclass
class DiffResult:
    """Result of diffing configured devices against registered instances."""
    to_add: list[str] = field(default_factory=list)      # device names
    to_remove: list[str] = field(default_factory=list)   # instance identifiers
    collisions: list[IdentityCollision] = field(default_factory=list)
    matched: bool = False

    @property
    def no_change(self) -> bool:
        return not self.to_add and not self.to_remove

    @property
    def total_changes(self) -> int:
        return len(self.to_add) + len(self.to_remove)


@dataclass
class ReconcileFailure:
    """One failed backend operation, kept so the pass can continue."""
    action: str   # register, unregister, restart
    subject: str  # device name or instance identifier
    error: str

    def __str__(self) -> str:
        return f"{self.action} {self.subject}: {self.error}"


@dataclass
class ReconciliationResult:
    """Result of one reconciliation pass."""
    final_state: MatchState = MatchState.MATCHED
    added: set[str] = field(default_factory=set)
    removed: set[str] = field(default_factory=set)
    failures: list[ReconcileFailure] = field(default_factory=list)
    collisions: list[IdentityCollision] = field(default_factory=list)
    restarted: bool = False

    @property
    def changed(self) -> bool:
        return self.final_state != MatchState.MATCHED

    def exit_code(self, report_restart_42: bool = True) -> int:
        """Process exit status for this result.

        Args:
            report_restart_42: Report a successful change as 42 so that the
                caller restarts the data server; otherwise report it as 0
        """
        if self.final_state == MatchState.MATCHED:
            return EXIT_OK
        if self.final_state == MatchState.CHANGED_MATCHED:
            return EXIT_RESTART_NEEDED if report_restart_42 else EXIT_OK
        return EXIT_UNMATCHED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "final_state": self.final_state.value,
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "failures": [
                {"action": f.action, "subject": f.subject, "error": f.error}
                for f in self.failures
            ],
            "collisions": [
                {"identifier": c.identifier, "devices": list(c.device_names)}
                for c in self.collisions
            ],
            "restarted": self.restarted,
        }
