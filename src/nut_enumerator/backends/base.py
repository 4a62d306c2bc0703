"""Base service-management backend abstraction.

A backend owns one service manager's view of the driver instances: how they
are named, enumerated, created, wired to their dependencies and removed.
The reconciliation engine only ever talks to this interface.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from ..config.catalog import DeviceSection, natural_sort_key
from ..config.media import MediaClass
from ..config.naming import to_instance_identifier
from ..utils.audit_log import ChangeTracker
from ..utils.commands import CommandError, CommandRunner
from ..utils.logging_config import timed

logger = logging.getLogger(__name__)


class DependencyKind(str, Enum):
    """Strength of a dependency between an instance and its target."""
    REQUIRES = "requires"
    WANTS = "wants"
    OPTIONAL = "optional"


@dataclass(frozen=True)
class DependencyTarget:
    """One dependency declaration for a driver instance."""
    kind: DependencyKind
    target: str

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "DependencyTarget":
        """Parse a single-entry mapping such as ``{"wants": "network-online.target"}``."""
        if len(data) != 1:
            raise ValueError(f"Dependency entry must have exactly one kind: {dict(data)}")
        kind, target = next(iter(data.items()))
        return cls(DependencyKind(str(kind).lower()), str(target))


@dataclass(frozen=True)
class ServiceInstance:
    """One driver instance known to the service manager."""
    raw_identifier: str
    unit_full_name: str


class BackendError(Exception):
    """Base class for service-manager failures."""
    pass


class UnknownBackend(BackendError):
    """No usable service-management framework was requested or detected."""

    def __init__(self, framework: Optional[str] = None):
        self.framework = framework
        if framework:
            super().__init__(f"Unknown service framework: {framework}")
        else:
            super().__init__("No supported service framework detected")


class RegisterError(BackendError):
    """A driver instance could not be created for a device."""

    def __init__(self, device: str, cause: Exception):
        self.device = device
        self.cause = cause
        super().__init__(f"Failed to register instance for device '{device}': {cause}")


class UnregisterError(BackendError):
    """A driver instance could not be removed."""

    def __init__(self, identifier: str, cause: Exception):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Failed to unregister instance '{identifier}': {cause}")


class RestartError(BackendError):
    """The data server could not be told about the new device population."""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Failed to restart the data server: {cause}")


# Failures of the service manager itself or of generated files
BACKEND_FAILURES = (CommandError, OSError)


class ServiceBackend(ABC):
    """Abstract base class for service-management backends."""

    #: Framework name used for selection and settings lookup
    framework: str = ""

    #: Default dependency wiring per media class
    DEFAULT_DEPENDENCIES: dict[MediaClass, tuple[DependencyTarget, ...]] = {}

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        auto_start: bool = True,
        dependencies: Optional[Mapping[str, list[Mapping[str, str]]]] = None,
    ):
        """
        Args:
            runner: Executes service-manager commands
            auto_start: Start new instances right after registration
            dependencies: Per-media-class overrides of DEFAULT_DEPENDENCIES
        """
        self.runner = runner or CommandRunner()
        self.auto_start = auto_start
        self.tracker = ChangeTracker(self.framework)
        self.dependencies: dict[MediaClass, tuple[DependencyTarget, ...]] = dict(
            self.DEFAULT_DEPENDENCIES
        )
        for media, targets in (dependencies or {}).items():
            self.dependencies[MediaClass(media)] = tuple(
                DependencyTarget.from_dict(t) for t in targets
            )

    # Naming rules
    @abstractmethod
    def is_legal_identifier(self, name: str) -> bool:
        """Whether the service manager accepts name as an instance identifier."""
        pass

    @abstractmethod
    def valid_full_unit_name(self, name: str) -> str:
        """Fully qualified unit name for a bare identifier (idempotent)."""
        pass

    @abstractmethod
    def valid_instance_suffix_name(self, full_name: str) -> str:
        """Instance portion of a fully qualified unit name (idempotent)."""
        pass

    # Enumeration
    @abstractmethod
    def list_instances_raw(self) -> list[str]:
        """Fully qualified names of the registered driver instances."""
        pass

    def list_instances(self) -> list[str]:
        """Instance identifiers of the registered driver instances, sorted."""
        suffixes = {self.valid_instance_suffix_name(name) for name in self.list_instances_raw()}
        return sorted(suffixes, key=natural_sort_key)

    def service_instances(self) -> list[ServiceInstance]:
        return [
            ServiceInstance(raw_identifier=suffix, unit_full_name=self.valid_full_unit_name(suffix))
            for suffix in self.list_instances()
        ]

    def instance_identifier(self, device_name: str) -> str:
        return to_instance_identifier(device_name, self)

    def dependencies_for(self, media: MediaClass) -> tuple[DependencyTarget, ...]:
        return self.dependencies.get(media, ())

    # Backend primitives
    @abstractmethod
    def _create_instance(self, identifier: str, device: DeviceSection) -> None:
        """Create (and enable) the instance; raise CommandError if rejected."""
        pass

    @abstractmethod
    def _declare_dependencies(self, identifier: str, targets: tuple[DependencyTarget, ...]) -> None:
        """Attach dependency declarations to an instance."""
        pass

    @abstractmethod
    def _start_instance(self, identifier: str) -> None:
        """Clear any failure state and start the instance."""
        pass

    @abstractmethod
    def _stop_instance(self, identifier: str) -> None:
        pass

    @abstractmethod
    def _delete_instance(self, identifier: str) -> None:
        """Remove the instance and any generated dependency artifacts."""
        pass

    @abstractmethod
    def _restart_server(self) -> None:
        """Restart or refresh the data server consuming the drivers."""
        pass

    # Mutations
    @timed("register")
    def register_instance(self, device: DeviceSection) -> str:
        """Register a driver instance for a device.

        The verbatim device name is tried first. Only names the backend
        grammar rejects fall back to the hashed identifier; a legal name is
        never hashed, so it keeps matching its instance on later passes.

        Returns:
            The instance identifier that was registered

        Raises:
            RegisterError: If no instance could be created or wired. An instance
                created before the failure is deleted again.
        """
        candidates = [device.name]
        normalized = self.instance_identifier(device.name)
        if normalized != device.name:
            candidates.append(normalized)

        identifier = None
        last_error: Optional[Exception] = None
        for candidate in candidates:
            try:
                self._create_instance(candidate, device)
            except BACKEND_FAILURES as e:
                logger.warning(f"Service manager rejected instance '{candidate}' for device '{device.name}': {e}")
                last_error = e
                continue
            identifier = candidate
            break

        if identifier is None:
            error = RegisterError(device.name, last_error or BackendError("no candidate identifier"))
            self.tracker.log_change("register", device.name, False, error=str(error))
            logger.error(str(error))
            raise error

        logger.info(
            f"Registered {self.framework} instance '{identifier}' for device '{device.name}'"
            f" ({self.valid_full_unit_name(identifier)})"
        )
        self.tracker.log_change(
            "register", device.name, True,
            parameters={"identifier": identifier, "driver": device.driver, "port": device.port},
        )

        media = device.media
        targets = self.dependencies_for(media)
        if targets:
            try:
                self._declare_dependencies(identifier, targets)
            except BACKEND_FAILURES as e:
                error = RegisterError(device.name, e)
                self.tracker.log_change(
                    "declare_dependency", identifier, False,
                    parameters={"media": media.value}, error=str(e),
                )
                logger.error(f"Dependency declaration for '{identifier}' failed: {e}")
                self._discard_partial(identifier)
                raise error from e
            for target in targets:
                logger.info(
                    f"Declared {target.kind.value} dependency of '{identifier}' on"
                    f" '{target.target}' (media: {media.value})"
                )
            self.tracker.log_change(
                "declare_dependency", identifier, True,
                parameters={
                    "media": media.value,
                    "targets": [f"{t.kind.value}:{t.target}" for t in targets],
                },
            )

        if self.auto_start:
            try:
                self._start_instance(identifier)
            except BACKEND_FAILURES as e:
                self.tracker.log_change("start", identifier, False, error=str(e))
                logger.error(f"Starting instance '{identifier}' failed: {e}")
                self._discard_partial(identifier)
                raise RegisterError(device.name, e) from e
            logger.info(f"Started instance '{identifier}'")
            self.tracker.log_change("start", identifier, True)

        return identifier

    def _discard_partial(self, identifier: str) -> None:
        """Delete an instance whose registration failed after creation; failures are only logged."""
        try:
            self._delete_instance(identifier)
        except BACKEND_FAILURES as e:
            self.tracker.log_change(
                "discard", identifier, False, parameters={"reason": "failed registration"}, error=str(e),
            )
            logger.error(f"Could not remove half-registered instance '{identifier}': {e}")
            return
        logger.warning(f"Removed half-registered instance '{identifier}'")
        self.tracker.log_change("discard", identifier, True, parameters={"reason": "failed registration"})

    @timed("unregister")
    def unregister_instance(self, identifier: str) -> None:
        """Stop and delete a driver instance.

        A failed stop is logged and the delete is still attempted.

        Raises:
            UnregisterError: If the instance could not be deleted
        """
        identifier = self.valid_instance_suffix_name(identifier)

        try:
            self._stop_instance(identifier)
        except BACKEND_FAILURES as e:
            logger.warning(f"Stopping instance '{identifier}' failed, removing anyway: {e}")

        try:
            self._delete_instance(identifier)
        except BACKEND_FAILURES as e:
            error = UnregisterError(identifier, e)
            self.tracker.log_change("unregister", identifier, False, error=str(e))
            logger.error(str(error))
            raise error from e

        logger.info(f"Unregistered {self.framework} instance '{identifier}'")
        self.tracker.log_change("unregister", identifier, True)

    @timed("restart_server")
    def restart_dependent_server(self) -> None:
        """Tell the data server that the device population changed.

        Raises:
            RestartError: If the restart command failed
        """
        try:
            self._restart_server()
        except BACKEND_FAILURES as e:
            error = RestartError(e)
            self.tracker.log_change("restart_server", self.framework, False, error=str(e))
            logger.error(str(error))
            raise error from e

        logger.info("Restarted the data server after device changes")
        self.tracker.log_change("restart_server", self.framework, True)
