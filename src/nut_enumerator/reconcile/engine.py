"""Reconciliation engine - converges driver instances to the device list.

One pass:
1. Read configured devices and registered instances
2. Return immediately when both already describe the same devices
3. Register an instance for every device without one
4. Unregister every instance without a device
5. Restart the data server when anything changed (auto-start only)
6. Report whether the final state matches
"""
import logging

from ..backends.base import BackendError, RegisterError, RestartError, ServiceBackend, UnregisterError
from ..config.catalog import DeviceCatalog
from ..utils.commands import CommandError
from ..utils.logging_config import timed_section
from .diff import IdentityMatcher, summarize_result
from .schema import MatchState, ReconcileFailure, ReconciliationResult

logger = logging.getLogger(__name__)


class ReconcileEngine:
    """
    Keeps the service manager's driver instances in sync with the device
    configuration.

    Usage:
        engine = ReconcileEngine(DeviceCatalog(UpsConfReader(path)), backend)
        result = engine.reconcile()
        sys.exit(result.exit_code())
    """

    def __init__(self, catalog: DeviceCatalog, backend: ServiceBackend, auto_start: bool = True):
        """
        Args:
            catalog: Source of the configured devices
            backend: Service manager holding the driver instances
            auto_start: Restart the data server after changes
        """
        self.catalog = catalog
        self.backend = backend
        self.auto_start = auto_start
        self.matcher = IdentityMatcher(backend)

    def _list_actual(self) -> list[str]:
        try:
            return self.backend.list_instances()
        except CommandError as e:
            raise BackendError(f"Cannot list {self.backend.framework} instances: {e}") from e

    def reconcile(self) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Per-device failures are recorded in the result and the pass goes on
        with the remaining devices.

        Returns:
            ReconciliationResult describing what changed

        Raises:
            ConfigError: If the device configuration cannot be used
            BackendError: If the registered instances cannot be listed
        """
        with timed_section("reconcile", subject=str(self.catalog.path)):
            devices = self.catalog.load()
            desired = [device.name for device in devices]
            by_name = {device.name: device for device in devices}
            actual = self._list_actual()

            logger.debug(f"Configured devices: {desired}")
            logger.debug(f"Registered instances: {actual}")

            diff = self.matcher.calculate(desired, actual)
            if diff.matched:
                logger.info(
                    f"{len(desired)} configured devices match registered {self.backend.framework} instances"
                )
                return ReconciliationResult(final_state=MatchState.MATCHED)

            result = ReconciliationResult(
                final_state=MatchState.CHANGED_UNMATCHED,
                collisions=list(diff.collisions),
            )
            for collision in diff.collisions:
                logger.error(f"Instance name collision, leaving these devices untouched: {collision}")

            logger.info(
                f"Reconciling: {len(diff.to_add)} devices to register, "
                f"{len(diff.to_remove)} instances to remove"
            )

            # Additions, in sorted device order
            for name in diff.to_add:
                try:
                    self.backend.register_instance(by_name[name])
                except RegisterError as e:
                    result.failures.append(ReconcileFailure("register", name, str(e.cause)))
                    continue
                result.added.add(name)

            actual = self._list_actual()

            # Removals, re-derived against the refreshed instance list
            for instance in self.matcher.orphan_instances(desired, actual):
                try:
                    self.backend.unregister_instance(instance)
                except UnregisterError as e:
                    result.failures.append(ReconcileFailure("unregister", instance, str(e.cause)))
                    continue
                result.removed.add(instance)

            actual = self._list_actual()

            if self.auto_start and (result.added or result.removed):
                self._restart(result)

            mutation_failed = any(f.action in ("register", "unregister") for f in result.failures)
            if self.matcher.states_match(desired, actual) and not mutation_failed:
                result.final_state = MatchState.CHANGED_MATCHED
            else:
                result.final_state = MatchState.CHANGED_UNMATCHED
                logger.warning(
                    f"Pass did not converge ({len(result.failures)} failures), registered instances: {actual}"
                )

        logger.info(summarize_result(result))
        return result

    def reconfigure(self) -> ReconciliationResult:
        """
        Unregister every driver instance, then register them anew.

        Useful after changing dependency settings, since a normal pass only
        reconciles which devices exist.
        """
        drained = ReconciliationResult(final_state=MatchState.CHANGED_MATCHED)

        # Read the configuration first so a broken file never drains the host
        self.catalog.load()

        for instance in self._list_actual():
            try:
                self.backend.unregister_instance(instance)
            except UnregisterError as e:
                drained.failures.append(ReconcileFailure("unregister", instance, str(e.cause)))
                continue
            drained.removed.add(instance)

        result = self.reconcile()

        result.removed |= drained.removed
        result.failures = drained.failures + result.failures
        if result.final_state == MatchState.MATCHED and drained.removed:
            # Nothing to re-add, but instances did go away
            result.final_state = MatchState.CHANGED_MATCHED
            if self.auto_start:
                self._restart(result)
        if drained.failures:
            result.final_state = MatchState.CHANGED_UNMATCHED

        return result

    def _restart(self, result: ReconciliationResult) -> None:
        try:
            self.backend.restart_dependent_server()
        except RestartError as e:
            result.failures.append(ReconcileFailure("restart", self.backend.framework, str(e.cause)))
            return
        result.restarted = True
