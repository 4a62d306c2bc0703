"""Device catalog built from the device configuration file."""
import logging
import re
from dataclasses import dataclass

from .media import MediaClass, classify
from .store import ConfigError, UpsConfReader

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"(\d+)")


class DuplicateSection(ConfigError):
    """The same section header appears more than once."""

    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(f"Duplicate device sections in configuration: {', '.join(names)}")


def natural_sort_key(name: str) -> tuple:
    """Sort key comparing digit runs numerically, so ups2 sorts before ups10.

    re.split with a capturing group alternates text and digit runs, so
    positions of the same parity always hold the same type.
    """
    parts = _DIGITS_RE.split(name)
    key = [int(part) if index % 2 else part for index, part in enumerate(parts)]
    return (key, name)


@dataclass(frozen=True)
class DeviceSection:
    """One device as described in the configuration file."""
    name: str
    driver: str = ""
    port: str = ""

    @property
    def media(self) -> MediaClass:
        return classify(self)


class DeviceCatalog:
    """Sorted view of the devices in one configuration file.

    Each load() re-reads the file, so a catalog can be reused across the
    passes of a long-running daemon.
    """

    def __init__(self, reader: UpsConfReader):
        self.reader = reader

    @property
    def path(self):
        return self.reader.path

    def load(self) -> list[DeviceSection]:
        """Parse the configuration into sorted DeviceSections.

        Raises:
            ConfigMissing, ConfigEmpty: If the file cannot be used
            DuplicateSection: If a section header is repeated
        """
        self.reader.reload()
        sections = self.reader.sections()

        seen: set[str] = set()
        duplicates: list[str] = []
        for section in sections:
            if section.name in seen and section.name not in duplicates:
                duplicates.append(section.name)
            seen.add(section.name)
        if duplicates:
            raise DuplicateSection(sorted(duplicates, key=natural_sort_key))

        devices = [
            DeviceSection(
                name=section.name,
                driver=section.get("driver", "") or "",
                port=section.get("port", "") or "",
            )
            for section in sections
        ]
        devices.sort(key=lambda d: natural_sort_key(d.name))

        logger.debug(f"Catalog {self.path}: {[d.name for d in devices]}")
        return devices

    def device_names(self) -> list[str]:
        return [device.name for device in self.load()]

    def get(self, name: str) -> DeviceSection:
        """Get one device by section name.

        Raises:
            SectionNotFound: If the device is not configured
        """
        section = self.reader.get_section(name)
        return DeviceSection(
            name=section.name,
            driver=section.get("driver", "") or "",
            port=section.get("port", "") or "",
        )
