"""Solaris/illumos SMF backend.

Driver instances are instances of the ``svc:/system/power/nut-driver``
service. Each instance records the device it wraps in the ``nut/device``
property, since hashed instance names cannot be decoded. Dependencies are
``dependency`` property groups on the instance.
"""
import logging
import re

from ..config.catalog import DeviceSection
from ..config.media import MediaClass
from ..utils.commands import CommandError
from .base import DependencyKind, DependencyTarget, ServiceBackend

logger = logging.getLogger(__name__)

SVCS = "/usr/bin/svcs"
SVCCFG = "/usr/sbin/svccfg"
SVCADM = "/usr/sbin/svcadm"

SERVICE_NAME = "nut-driver"
SERVICE_FMRI = "svc:/system/power/nut-driver"
SERVER_FMRI = "svc:/system/power/nut-server:default"
DEPENDENCY_PG_PREFIX = "nut-driver-enumerator-generated"

# svcs exits non-zero with this message when no instance exists yet
NO_INSTANCES_MESSAGE = "doesn't match any instances"

# Instance names start with a letter or underscore
INSTANCE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")

# kind -> (grouping, restart_on)
DEPENDENCY_GROUPING = {
    DependencyKind.REQUIRES: ("require_all", "error"),
    DependencyKind.WANTS: ("optional_all", "restart"),
    DependencyKind.OPTIONAL: ("optional_all", "none"),
}


def quote_astring(value: str) -> str:
    """Double-quote a value for svccfg, escaping backslashes and quotes."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SMFBackend(ServiceBackend):
    """Driver instances managed by the Service Management Facility."""

    framework = "smf"

    DEFAULT_DEPENDENCIES = {
        MediaClass.USB: (
            DependencyTarget(DependencyKind.REQUIRES, "svc:/system/hotplug:default"),
        ),
        MediaClass.NETWORK: (
            DependencyTarget(DependencyKind.REQUIRES, "svc:/milestone/network:default"),
        ),
        MediaClass.NETWORK_LOCALHOST: (
            DependencyTarget(DependencyKind.REQUIRES, "svc:/network/loopback:default"),
        ),
        MediaClass.NONE: (),
    }

    def _svccfg(self, *args: str, check: bool = True):
        return self.runner.run(SVCCFG, *args, check=check)

    def _svcadm(self, *args: str, check: bool = True):
        return self.runner.run(SVCADM, *args, check=check)

    # Naming rules
    def is_legal_identifier(self, name: str) -> bool:
        return INSTANCE_RE.match(name) is not None

    def valid_full_unit_name(self, name: str) -> str:
        if name.startswith(SERVICE_FMRI + ":"):
            return name
        if name.startswith(SERVICE_NAME + ":"):
            name = name[len(SERVICE_NAME) + 1:]
        return f"{SERVICE_FMRI}:{name}"

    def valid_instance_suffix_name(self, full_name: str) -> str:
        for prefix in (SERVICE_FMRI + ":", SERVICE_NAME + ":"):
            if full_name.startswith(prefix):
                return full_name[len(prefix):]
        return full_name

    # Enumeration
    def list_instances_raw(self) -> list[str]:
        result = self.runner.run(SVCS, "-H", "-o", "fmri", f"{SERVICE_FMRI}:*", check=False)
        if not result.success:
            if NO_INSTANCES_MESSAGE in result.stderr.lower():
                logger.debug(f"svcs listed no instances: {result.stderr.strip()}")
                return []
            raise CommandError(result.args, result.returncode, result.stderr)
        return sorted({line for line in result.lines() if line.startswith(SERVICE_FMRI + ":")})

    # Primitives
    def _create_instance(self, identifier: str, device: DeviceSection) -> None:
        fmri = self.valid_full_unit_name(identifier)
        self._svccfg("-s", SERVICE_NAME, "add", identifier)
        self._svccfg("-s", fmri, "addpg", "nut", "framework")
        self._svccfg("-s", fmri, "setprop", "nut/device", "=", "astring:", quote_astring(device.name))
        self._svcadm("refresh", fmri)

    def _declare_dependencies(self, identifier: str, targets: tuple[DependencyTarget, ...]) -> None:
        fmri = self.valid_full_unit_name(identifier)
        for index, target in enumerate(targets):
            pg = f"{DEPENDENCY_PG_PREFIX}-{index}"
            grouping, restart_on = DEPENDENCY_GROUPING[target.kind]
            self._svccfg("-s", fmri, "addpg", pg, "dependency")
            self._svccfg("-s", fmri, "setprop", f"{pg}/grouping", "=", "astring:", grouping)
            self._svccfg("-s", fmri, "setprop", f"{pg}/restart_on", "=", "astring:", restart_on)
            self._svccfg("-s", fmri, "setprop", f"{pg}/type", "=", "astring:", "service")
            self._svccfg("-s", fmri, "setprop", f"{pg}/entities", "=", "fmri:", target.target)
        self._svcadm("refresh", fmri)

    def _start_instance(self, identifier: str) -> None:
        fmri = self.valid_full_unit_name(identifier)
        # Fails unless the instance is in maintenance
        self._svcadm("clear", fmri, check=False)
        self._svcadm("enable", fmri)

    def _stop_instance(self, identifier: str) -> None:
        self._svcadm("disable", "-s", self.valid_full_unit_name(identifier))

    def _delete_instance(self, identifier: str) -> None:
        # Dependency property groups go away with the instance
        self._svccfg("-s", SERVICE_NAME, "delete", "-f", identifier)

    def _restart_server(self) -> None:
        self._svcadm("restart", SERVER_FMRI)
