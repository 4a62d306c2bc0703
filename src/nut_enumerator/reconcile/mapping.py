"""Read-only queries between configured devices and service units.

Hashed instance names cannot be decoded, so a unit is mapped back to its
device by re-deriving the identifier of every configured device.
"""
from typing import Optional

from ..backends.base import ServiceBackend
from ..config.catalog import DeviceCatalog
from ..config.naming import is_hashed_identifier
from .diff import IdentityMatcher


class MappingNotFound(LookupError):
    """No device or unit corresponds to the query."""
    pass


class InstanceMapper:
    """Answers device <-> unit questions for one backend."""

    def __init__(self, catalog: DeviceCatalog, backend: ServiceBackend):
        self.catalog = catalog
        self.backend = backend
        self.matcher = IdentityMatcher(backend)

    def _instance_for(self, device_name: str, instances: list[str]) -> Optional[str]:
        # Verbatim first, so a legal name never resolves to a hashed twin
        if device_name in instances:
            return device_name
        for instance in instances:
            if self.matcher.matches(device_name, instance):
                return instance
        return None

    def service_for_device(self, device_name: str) -> str:
        """Full unit name of the instance registered for a device.

        Raises:
            SectionNotFound: If the device is not configured
            MappingNotFound: If no instance is registered for it
        """
        self.catalog.get(device_name)
        instance = self._instance_for(device_name, self.backend.list_instances())
        if instance is None:
            raise MappingNotFound(f"No service instance registered for device '{device_name}'")
        return self.backend.valid_full_unit_name(instance)

    def device_for_service(self, service: str) -> str:
        """Device name wrapped by a unit or bare instance name.

        Raises:
            MappingNotFound: If no configured device maps to the instance
        """
        instance = self.backend.valid_instance_suffix_name(service)
        for name in self.catalog.device_names():
            if name == instance:
                return name
        for name in self.catalog.device_names():
            if self.matcher.matches(name, instance):
                return name

        if is_hashed_identifier(instance):
            raise MappingNotFound(
                f"Instance '{instance}' is hashed and matches no configured device"
            )
        raise MappingNotFound(f"No configured device for service '{service}'")

    def mapping(self) -> list[tuple[str, str]]:
        """(device name, full unit name) for every device with an instance."""
        instances = self.backend.list_instances()
        pairs = []
        for name in self.catalog.device_names():
            instance = self._instance_for(name, instances)
            if instance is not None:
                pairs.append((name, self.backend.valid_full_unit_name(instance)))
        return pairs
