"""Reconciliation of driver instances against the device configuration.

Usage:
    from nut_enumerator.reconcile import ReconcileEngine

    engine = ReconcileEngine(catalog, backend, auto_start=True)
    result = engine.reconcile()
    print(summarize_result(result))
"""

from .diff import IdentityMatcher, summarize_result
from .engine import ReconcileEngine
from .mapping import InstanceMapper, MappingNotFound
from .schema import (
    EXIT_CONFIG,
    EXIT_INVALID,
    EXIT_OK,
    EXIT_RESTART_NEEDED,
    EXIT_UNMATCHED,
    DiffResult,
    IdentityCollision,
    MatchState,
    ReconcileFailure,
    ReconciliationResult,
)

__all__ = [
    # Main engine
    "ReconcileEngine",
    # Components
    "IdentityMatcher",
    "summarize_result",
    "InstanceMapper",
    "MappingNotFound",
    # Schema classes
    "DiffResult",
    "IdentityCollision",
    "MatchState",
    "ReconcileFailure",
    "ReconciliationResult",
    # Exit codes
    "EXIT_OK",
    "EXIT_INVALID",
    "EXIT_CONFIG",
    "EXIT_UNMATCHED",
    "EXIT_RESTART_NEEDED",
]
