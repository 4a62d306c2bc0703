"""Identity matching between configured devices and registered instances.

A device matches an instance when the instance is the verbatim device name,
or the device's normalized identifier. The same rule drives both what to add
and what to remove.
"""
from collections import defaultdict
from typing import Iterable

from ..config.catalog import natural_sort_key
from ..config.naming import IdentifierRules, identity_matches, to_instance_identifier
from .schema import DiffResult, IdentityCollision, MatchState, ReconciliationResult


class IdentityMatcher:
    """Match device names against instance identifiers for one backend."""

    def __init__(self, rules: IdentifierRules):
        self.rules = rules

    def matches(self, device_name: str, instance: str) -> bool:
        return identity_matches(device_name, instance, self.rules)

    def find_collisions(self, device_names: Iterable[str]) -> list[IdentityCollision]:
        """Groups of distinct devices sharing one instance identifier."""
        by_identifier: dict[str, list[str]] = defaultdict(list)
        for name in device_names:
            by_identifier[to_instance_identifier(name, self.rules)].append(name)

        return [
            IdentityCollision(identifier, tuple(sorted(names, key=natural_sort_key)))
            for identifier, names in sorted(by_identifier.items())
            if len(names) > 1
        ]

    def missing_devices(self, desired: list[str], actual: list[str]) -> list[str]:
        """Devices with no matching instance, in the order given."""
        return [d for d in desired if not any(self.matches(d, a) for a in actual)]

    def orphan_instances(self, desired: list[str], actual: list[str]) -> list[str]:
        """Instances with no matching device, in the order given."""
        return [a for a in actual if not any(self.matches(d, a) for d in desired)]

    def states_match(self, desired: list[str], actual: list[str]) -> bool:
        """Whether both collections describe the same set of devices.

        Requires equal cardinality and a match for every element in both
        directions, so two devices sharing one instance never count as
        matched.
        """
        if len(desired) != len(actual):
            return False
        return not self.missing_devices(desired, actual) and not self.orphan_instances(desired, actual)

    def calculate(self, desired: list[str], actual: list[str]) -> DiffResult:
        """Diff configured device names against registered instances."""
        collisions = self.find_collisions(desired)
        colliding = {name for collision in collisions for name in collision.device_names}

        return DiffResult(
            to_add=[d for d in self.missing_devices(desired, actual) if d not in colliding],
            to_remove=self.orphan_instances(desired, actual),
            collisions=collisions,
            matched=self.states_match(desired, actual),
        )


def summarize_result(result: ReconciliationResult) -> str:
    """
    Create a human-readable summary of a reconciliation pass.

    Useful for daemon logs and command-line output.
    """
    if result.final_state == MatchState.MATCHED:
        return "No changes needed - registered instances match configured devices"

    lines = []
    if result.final_state == MatchState.CHANGED_MATCHED:
        lines.append("Instances changed and now match configured devices:")
    else:
        lines.append("Instances changed but still do not match configured devices:")

    for name in sorted(result.added, key=natural_sort_key):
        lines.append(f"  [+] Registered {name}")
    for identifier in sorted(result.removed, key=natural_sort_key):
        lines.append(f"  [-] Unregistered {identifier}")
    for failure in result.failures:
        lines.append(f"  [!] Failed to {failure}")
    for collision in result.collisions:
        lines.append(f"  [!] Collision: {collision}")
    if result.restarted:
        lines.append("  [~] Restarted the data server")

    return "\n".join(lines)
