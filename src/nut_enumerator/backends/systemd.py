"""systemd backend.

Driver instances are instances of the ``nut-driver@.service`` template.
Dependencies are declared in a generated drop-in next to the unit:

    /etc/systemd/system/nut-driver@ups1.service.d/nut-driver-enumerator-generated.conf
"""
import logging
import re
import shutil
from pathlib import Path
from typing import Mapping, Optional

from ..config.catalog import DeviceSection
from ..config.media import MediaClass
from ..utils.commands import CommandError, CommandRunner
from .base import DependencyKind, DependencyTarget, ServiceBackend

logger = logging.getLogger(__name__)

SYSTEMCTL = "systemctl"
UNIT_PREFIX = "nut-driver@"
UNIT_SUFFIX = ".service"
SERVER_UNIT = "nut-server.service"
DROPIN_NAME = "nut-driver-enumerator-generated.conf"

# Characters systemd accepts in a unit instance without escaping
INSTANCE_RE = re.compile(r"^[A-Za-z0-9:_.\-]+$")
MAX_INSTANCE_LENGTH = 200


class SystemdBackend(ServiceBackend):
    """Driver instances managed as systemd template instances."""

    framework = "systemd"

    DEFAULT_DEPENDENCIES = {
        MediaClass.USB: (
            DependencyTarget(DependencyKind.WANTS, "systemd-udev-settle.service"),
        ),
        MediaClass.NETWORK: (
            DependencyTarget(DependencyKind.WANTS, "network-online.target"),
        ),
        # Loopback is up before any service starts
        MediaClass.NETWORK_LOCALHOST: (),
        MediaClass.NONE: (),
    }

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        auto_start: bool = True,
        dependencies: Optional[Mapping[str, list[Mapping[str, str]]]] = None,
        unit_dir: Path = Path("/etc/systemd/system"),
    ):
        super().__init__(runner, auto_start, dependencies)
        self.unit_dir = Path(unit_dir)

    def _systemctl(self, *args: str, check: bool = True):
        return self.runner.run(SYSTEMCTL, *args, check=check)

    # Naming rules
    def is_legal_identifier(self, name: str) -> bool:
        return (
            0 < len(name) <= MAX_INSTANCE_LENGTH
            and INSTANCE_RE.match(name) is not None
        )

    def valid_full_unit_name(self, name: str) -> str:
        if not name.startswith(UNIT_PREFIX):
            name = UNIT_PREFIX + name
        if not name.endswith(UNIT_SUFFIX):
            name += UNIT_SUFFIX
        return name

    def valid_instance_suffix_name(self, full_name: str) -> str:
        name = full_name
        if name.startswith(UNIT_PREFIX):
            name = name[len(UNIT_PREFIX):]
        if name.endswith(UNIT_SUFFIX):
            name = name[:-len(UNIT_SUFFIX)]
        return name

    def dropin_dir(self, identifier: str) -> Path:
        return self.unit_dir / f"{self.valid_full_unit_name(identifier)}.d"

    def dropin_path(self, identifier: str) -> Path:
        return self.dropin_dir(identifier) / DROPIN_NAME

    # Enumeration
    def list_instances_raw(self) -> list[str]:
        result = self._systemctl("show", "-p", "Id", f"{UNIT_PREFIX}*{UNIT_SUFFIX}")
        units = []
        for line in result.lines():
            if not line.startswith("Id="):
                continue
            unit = line[len("Id="):]
            # The bare template is not an instance
            if unit.startswith(UNIT_PREFIX) and unit != UNIT_PREFIX + UNIT_SUFFIX:
                units.append(unit)
        return sorted(set(units))

    # Primitives
    def _create_instance(self, identifier: str, device: DeviceSection) -> None:
        unit = self.valid_full_unit_name(identifier)
        if not self.is_legal_identifier(identifier):
            # systemctl would silently escape the name into a different unit
            raise CommandError([SYSTEMCTL, "enable", unit], None, "invalid unit instance name")
        self._systemctl("enable", unit)

    def render_dropin(self, identifier: str, targets: tuple[DependencyTarget, ...]) -> str:
        """Drop-in content declaring the dependencies of one instance."""
        lines = [
            "# Generated by nut-driver-enumerator, do not edit",
            f"# Instance: {identifier}",
            "[Unit]",
        ]
        for target in targets:
            if target.kind == DependencyKind.REQUIRES:
                lines.append(f"Requires={target.target}")
            elif target.kind == DependencyKind.WANTS:
                lines.append(f"Wants={target.target}")
            lines.append(f"After={target.target}")
        return "\n".join(lines) + "\n"

    def _declare_dependencies(self, identifier: str, targets: tuple[DependencyTarget, ...]) -> None:
        path = self.dropin_path(identifier)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_dropin(identifier, targets), encoding="utf-8")
        logger.debug(f"Wrote dependency drop-in {path}")
        self._systemctl("daemon-reload")

    def _start_instance(self, identifier: str) -> None:
        unit = self.valid_full_unit_name(identifier)
        # Only fails when the unit was never in a failed state
        self._systemctl("reset-failed", unit, check=False)
        self._systemctl("start", "--no-block", unit)

    def _stop_instance(self, identifier: str) -> None:
        self._systemctl("stop", self.valid_full_unit_name(identifier))

    def _delete_instance(self, identifier: str) -> None:
        self._systemctl("disable", self.valid_full_unit_name(identifier))

        dropin_dir = self.dropin_dir(identifier)
        if dropin_dir.exists():
            dropin = dropin_dir / DROPIN_NAME
            if dropin.exists():
                dropin.unlink()
            # Leave admin-provided drop-ins alone
            if not any(dropin_dir.iterdir()):
                shutil.rmtree(dropin_dir)
            self._systemctl("daemon-reload")

    def _restart_server(self) -> None:
        self._systemctl("reload-or-restart", SERVER_UNIT)
