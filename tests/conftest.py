"""Shared fixtures: a recording command runner and an in-memory backend."""
import re

import pytest

from nut_enumerator.backends.base import ServiceBackend
from nut_enumerator.config.catalog import DeviceCatalog, DeviceSection
from nut_enumerator.config.store import UpsConfReader
from nut_enumerator.utils.commands import CommandError, CommandResult

UPS_CONF = """\
# Global directives
maxretry = 3

[ups1]
    driver = usbhid-ups
    port = auto
    desc = "Rack UPS"

[ups2]
    driver = snmp-ups
    port = 192.168.1.20
[repeater]
    driver = dummy-ups
    port = 'ups1@localhost:3493'
    nolock
"""


class FakeRunner:
    """Records commands instead of running them."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.outputs: dict[tuple[str, ...], str] = {}
        self.failures: list[tuple[tuple[str, ...], int, str]] = []

    def set_output(self, *args: str, stdout: str) -> None:
        self.outputs[tuple(args)] = stdout

    def fail_on(self, *prefix: str, returncode: int = 1, stderr: str = "failed") -> None:
        self.failures.append((tuple(prefix), returncode, stderr))

    def run(self, *args: str, check: bool = True) -> CommandResult:
        self.calls.append(list(args))
        for prefix, returncode, stderr in self.failures:
            if tuple(args[:len(prefix)]) == prefix:
                if check:
                    raise CommandError(list(args), returncode, stderr)
                return CommandResult(list(args), returncode, "", stderr)
        return CommandResult(list(args), 0, self.outputs.get(tuple(args), ""), "")

    def commands(self, program: str) -> list[list[str]]:
        return [call for call in self.calls if call[0] == program]


class InMemoryBackend(ServiceBackend):
    """Backend keeping its instances in a set, with injectable failures."""

    framework = "memory"
    PREFIX = "nut-driver:"
    LEGAL = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")

    def __init__(self, instances=(), auto_start=True, dependencies=None):
        super().__init__(FakeRunner(), auto_start, dependencies)
        self.instances: set[str] = set(instances)
        self.fail_create: set[str] = set()
        self.fail_stop: set[str] = set()
        self.fail_delete: set[str] = set()
        self.fail_restart = False
        self.log: list[tuple[str, str]] = []
        self.dependency_log: list[tuple[str, tuple]] = []

    def is_legal_identifier(self, name):
        return self.LEGAL.match(name) is not None

    def valid_full_unit_name(self, name):
        return name if name.startswith(self.PREFIX) else self.PREFIX + name

    def valid_instance_suffix_name(self, full_name):
        return full_name[len(self.PREFIX):] if full_name.startswith(self.PREFIX) else full_name

    def list_instances_raw(self):
        return sorted(self.PREFIX + name for name in self.instances)

    def _create_instance(self, identifier, device):
        self.log.append(("create", identifier))
        if not self.is_legal_identifier(identifier) or identifier in self.fail_create:
            raise CommandError(["create", identifier], 1, "invalid instance")
        self.instances.add(identifier)

    def _declare_dependencies(self, identifier, targets):
        self.dependency_log.append((identifier, targets))

    def _start_instance(self, identifier):
        self.log.append(("start", identifier))

    def _stop_instance(self, identifier):
        self.log.append(("stop", identifier))
        if identifier in self.fail_stop:
            raise CommandError(["stop", identifier], 1, "stop failed")

    def _delete_instance(self, identifier):
        self.log.append(("delete", identifier))
        if identifier in self.fail_delete:
            raise CommandError(["delete", identifier], 1, "delete failed")
        self.instances.discard(identifier)

    def _restart_server(self):
        self.log.append(("restart", "server"))
        if self.fail_restart:
            raise CommandError(["restart"], 1, "restart failed")

    def mutations(self) -> list[tuple[str, str]]:
        return [entry for entry in self.log if entry[0] in ("create", "delete")]


def write_conf(path, sections):
    """Write a ups.conf holding the given {name: driver} sections."""
    blocks = [f"[{name}]\n    driver = {driver}\n    port = auto\n" for name, driver in sections.items()]
    path.write_text("\n".join(blocks) or "# no devices\n")
    return path


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def ups_conf(tmp_path):
    path = tmp_path / "ups.conf"
    path.write_text(UPS_CONF)
    return path


@pytest.fixture
def catalog(ups_conf):
    return DeviceCatalog(UpsConfReader(ups_conf))


@pytest.fixture
def device():
    return DeviceSection(name="ups1", driver="usbhid-ups", port="auto")
