"""Tests for the systemd and SMF backends."""
import pytest

from nut_enumerator.backends import (
    BACKEND_TYPES,
    RegisterError,
    RestartError,
    SMFBackend,
    SystemdBackend,
    UnknownBackend,
    UnregisterError,
    create_backend,
    detect_framework,
)
from nut_enumerator.backends.smf import SERVER_FMRI, SERVICE_FMRI, SVCADM, SVCCFG, SVCS
from nut_enumerator.backends.systemd import DROPIN_NAME
from nut_enumerator.config.catalog import DeviceSection
from nut_enumerator.config.naming import md5_identifier
from nut_enumerator.config.settings import EnumeratorSettings, SettingsError
from nut_enumerator.utils.commands import CommandError

SYSTEMD_LIST = ("systemctl", "show", "-p", "Id", "nut-driver@*.service")
SMF_LIST = (SVCS, "-H", "-o", "fmri", f"{SERVICE_FMRI}:*")


@pytest.fixture
def systemd(runner, tmp_path):
    return SystemdBackend(runner, unit_dir=tmp_path / "units")


@pytest.fixture
def smf(runner):
    return SMFBackend(runner)


class TestSystemdNaming:
    """Tests for systemd unit naming."""

    @pytest.mark.parametrize("name", ["ups1", "1ups", "rack:ups.a", "my_ups-2"])
    def test_legal(self, systemd, name):
        assert systemd.is_legal_identifier(name)

    @pytest.mark.parametrize("name", ["", "a b", "ups/1", "onduleur-é", "x" * 201])
    def test_illegal(self, systemd, name):
        assert not systemd.is_legal_identifier(name)

    def test_full_name(self, systemd):
        assert systemd.valid_full_unit_name("ups1") == "nut-driver@ups1.service"
        assert systemd.valid_full_unit_name("nut-driver@ups1.service") == "nut-driver@ups1.service"

    def test_suffix(self, systemd):
        assert systemd.valid_instance_suffix_name("nut-driver@ups1.service") == "ups1"
        assert systemd.valid_instance_suffix_name("ups1") == "ups1"


class TestSystemdBackend:
    """Tests for SystemdBackend commands."""

    def test_list_instances(self, systemd, runner):
        runner.set_output(*SYSTEMD_LIST, stdout=(
            "Id=nut-driver@ups10.service\n"
            "\n"
            "Id=nut-driver@.service\n"
            "Id=nut-driver@ups2.service\n"
        ))
        assert systemd.list_instances_raw() == ["nut-driver@ups10.service", "nut-driver@ups2.service"]
        assert systemd.list_instances() == ["ups2", "ups10"]

    def test_list_empty(self, systemd):
        assert systemd.list_instances() == []

    def test_service_instances(self, systemd, runner):
        runner.set_output(*SYSTEMD_LIST, stdout="Id=nut-driver@ups1.service\n")
        instance = systemd.service_instances()[0]
        assert instance.raw_identifier == "ups1"
        assert instance.unit_full_name == "nut-driver@ups1.service"

    def test_register_usb_device(self, systemd, runner, device):
        identifier = systemd.register_instance(device)

        assert identifier == "ups1"
        assert runner.commands("systemctl") == [
            ["systemctl", "enable", "nut-driver@ups1.service"],
            ["systemctl", "daemon-reload"],
            ["systemctl", "reset-failed", "nut-driver@ups1.service"],
            ["systemctl", "start", "--no-block", "nut-driver@ups1.service"],
        ]
        dropin = systemd.dropin_path("ups1").read_text()
        assert "Wants=systemd-udev-settle.service" in dropin
        assert "After=systemd-udev-settle.service" in dropin

    def test_dropin_location(self, systemd, tmp_path):
        assert systemd.dropin_path("ups1") == (
            tmp_path / "units" / "nut-driver@ups1.service.d" / DROPIN_NAME
        )

    def test_register_without_dependencies(self, systemd, runner):
        systemd.register_instance(DeviceSection("serial", "apcsmart", "/dev/ttyS0"))
        assert ["systemctl", "daemon-reload"] not in runner.calls
        assert not systemd.dropin_dir("serial").exists()

    def test_register_no_autostart(self, runner, tmp_path, device):
        backend = SystemdBackend(runner, auto_start=False, unit_dir=tmp_path)
        backend.register_instance(device)
        assert not any(call[1] == "start" for call in runner.calls)

    def test_illegal_name_falls_back_to_hash(self, systemd, runner):
        identifier = systemd.register_instance(DeviceSection("rack ups", "usbhid-ups", "auto"))

        assert identifier == md5_identifier("rack ups")
        enables = [call for call in runner.calls if call[1] == "enable"]
        # The verbatim name never reaches systemctl
        assert enables == [["systemctl", "enable", f"nut-driver@{identifier}.service"]]

    def test_enable_failure(self, systemd, runner, device):
        runner.fail_on("systemctl", "enable", stderr="Unit file does not exist")
        with pytest.raises(RegisterError) as exc_info:
            systemd.register_instance(device)
        assert exc_info.value.device == "ups1"
        assert "Unit file does not exist" in str(exc_info.value)

    def test_start_failure_removes_instance(self, systemd, runner, device):
        runner.fail_on("systemctl", "start")
        with pytest.raises(RegisterError):
            systemd.register_instance(device)

        assert ["systemctl", "disable", "nut-driver@ups1.service"] in runner.calls
        assert not systemd.dropin_dir("ups1").exists()
        assert [r.operation for r in systemd.tracker.failures()] == ["start"]

    def test_dependency_override(self, runner, tmp_path, device):
        backend = SystemdBackend(
            runner, unit_dir=tmp_path,
            dependencies={"usb": [{"requires": "usb-ready.target"}, {"optional": "late.target"}]},
        )
        backend.register_instance(device)
        dropin = backend.dropin_path("ups1").read_text()
        assert "Requires=usb-ready.target" in dropin
        assert "After=usb-ready.target" in dropin
        assert "Wants=late.target" not in dropin
        assert "After=late.target" in dropin

    def test_unregister(self, systemd, runner, device):
        systemd.register_instance(device)
        runner.calls.clear()

        systemd.unregister_instance("nut-driver@ups1.service")

        assert runner.calls == [
            ["systemctl", "stop", "nut-driver@ups1.service"],
            ["systemctl", "disable", "nut-driver@ups1.service"],
            ["systemctl", "daemon-reload"],
        ]
        assert not systemd.dropin_dir("ups1").exists()

    def test_unregister_keeps_admin_dropins(self, systemd, device):
        systemd.register_instance(device)
        admin = systemd.dropin_dir("ups1") / "override.conf"
        admin.write_text("[Service]\nNice=5\n")

        systemd.unregister_instance("ups1")

        assert admin.exists()
        assert not systemd.dropin_path("ups1").exists()

    def test_unregister_stop_failure_ignored(self, systemd, runner):
        runner.fail_on("systemctl", "stop")
        systemd.unregister_instance("ups1")
        assert ["systemctl", "disable", "nut-driver@ups1.service"] in runner.calls

    def test_unregister_disable_failure(self, systemd, runner):
        runner.fail_on("systemctl", "disable")
        with pytest.raises(UnregisterError) as exc_info:
            systemd.unregister_instance("ups1")
        assert exc_info.value.identifier == "ups1"

    def test_restart_server(self, systemd, runner):
        systemd.restart_dependent_server()
        assert runner.calls == [["systemctl", "reload-or-restart", "nut-server.service"]]

    def test_restart_failure(self, systemd, runner):
        runner.fail_on("systemctl", "reload-or-restart")
        with pytest.raises(RestartError):
            systemd.restart_dependent_server()

    def test_changes_tracked(self, systemd, device):
        systemd.register_instance(device)
        operations = [(r.operation, r.success) for r in systemd.tracker.records]
        assert operations == [("register", True), ("declare_dependency", True), ("start", True)]
        assert systemd.tracker.records[0].framework == "systemd"


class TestSMFNaming:
    """Tests for SMF instance naming."""

    @pytest.mark.parametrize("name", ["ups1", "_ups", "ups.a-b"])
    def test_legal(self, smf, name):
        assert smf.is_legal_identifier(name)

    @pytest.mark.parametrize("name", ["", "1ups", "ups:1", "a b", "-ups"])
    def test_illegal(self, smf, name):
        assert not smf.is_legal_identifier(name)

    def test_full_name(self, smf):
        assert smf.valid_full_unit_name("ups1") == f"{SERVICE_FMRI}:ups1"
        assert smf.valid_full_unit_name("nut-driver:ups1") == f"{SERVICE_FMRI}:ups1"
        assert smf.valid_full_unit_name(f"{SERVICE_FMRI}:ups1") == f"{SERVICE_FMRI}:ups1"

    def test_suffix(self, smf):
        assert smf.valid_instance_suffix_name(f"{SERVICE_FMRI}:ups1") == "ups1"
        assert smf.valid_instance_suffix_name("nut-driver:ups1") == "ups1"
        assert smf.valid_instance_suffix_name("ups1") == "ups1"


class TestSMFBackend:
    """Tests for SMFBackend commands."""

    def test_list_instances(self, smf, runner):
        runner.set_output(*SMF_LIST, stdout=f"{SERVICE_FMRI}:ups2\n{SERVICE_FMRI}:ups1\n")
        assert smf.list_instances() == ["ups1", "ups2"]

    def test_list_no_match(self, smf, runner):
        runner.fail_on(SVCS, stderr="Pattern doesn't match any instances")
        assert smf.list_instances() == []

    def test_list_failure_raises(self, smf, runner):
        runner.fail_on(SVCS, returncode=1, stderr="svcs: Could not bind to repository server: repository server unavailable")
        with pytest.raises(CommandError):
            smf.list_instances()

    def test_register_network_device(self, smf, runner):
        device = DeviceSection("ups2", "snmp-ups", "10.0.0.2")
        fmri = f"{SERVICE_FMRI}:ups2"

        smf.register_instance(device)

        assert runner.calls[:4] == [
            [SVCCFG, "-s", "nut-driver", "add", "ups2"],
            [SVCCFG, "-s", fmri, "addpg", "nut", "framework"],
            [SVCCFG, "-s", fmri, "setprop", "nut/device", "=", "astring:", '"ups2"'],
            [SVCADM, "refresh", fmri],
        ]
        pg = "nut-driver-enumerator-generated-0"
        assert [SVCCFG, "-s", fmri, "addpg", pg, "dependency"] in runner.calls
        assert [SVCCFG, "-s", fmri, "setprop", f"{pg}/grouping", "=", "astring:", "require_all"] in runner.calls
        assert [SVCCFG, "-s", fmri, "setprop", f"{pg}/entities", "=", "fmri:",
                "svc:/milestone/network:default"] in runner.calls
        assert runner.calls[-2:] == [[SVCADM, "clear", fmri], [SVCADM, "enable", fmri]]

    def test_wants_is_optional_grouping(self, runner):
        backend = SMFBackend(runner, dependencies={"usb": [{"wants": "svc:/system/hotplug:default"}]})
        backend.register_instance(DeviceSection("ups1", "usbhid-ups", "auto"))
        fmri = f"{SERVICE_FMRI}:ups1"
        pg = "nut-driver-enumerator-generated-0"
        assert [SVCCFG, "-s", fmri, "setprop", f"{pg}/grouping", "=", "astring:", "optional_all"] in runner.calls
        assert [SVCCFG, "-s", fmri, "setprop", f"{pg}/restart_on", "=", "astring:", "restart"] in runner.calls

    def test_localhost_repeater_requires_loopback(self, smf, runner):
        smf.register_instance(DeviceSection("repeater", "dummy-ups", "ups1@localhost"))
        fmri = f"{SERVICE_FMRI}:repeater"
        pg = "nut-driver-enumerator-generated-0"
        assert [SVCCFG, "-s", fmri, "setprop", f"{pg}/entities", "=", "fmri:",
                "svc:/network/loopback:default"] in runner.calls

    def test_illegal_name_hashed(self, smf, runner):
        runner.fail_on(SVCCFG, "-s", "nut-driver", "add", "123bad:name", stderr="Invalid name")
        identifier = smf.register_instance(DeviceSection("123bad:name", "apcsmart", "/dev/ttyS0"))

        assert identifier == md5_identifier("123bad:name")
        # The device name is kept as a property of the hashed instance
        assert [SVCCFG, "-s", f"{SERVICE_FMRI}:{identifier}", "setprop", "nut/device", "=",
                "astring:", '"123bad:name"'] in runner.calls

    def test_device_property_escaped(self, smf, runner):
        name = 'ups "rack\\2"'
        runner.fail_on(SVCCFG, "-s", "nut-driver", "add", name, stderr="Invalid name")
        identifier = smf.register_instance(DeviceSection(name, "apcsmart", "/dev/ttyS0"))

        assert [SVCCFG, "-s", f"{SERVICE_FMRI}:{identifier}", "setprop", "nut/device", "=",
                "astring:", '"ups \\"rack\\\\2\\""'] in runner.calls

    def test_dependency_failure(self, smf, runner):
        runner.fail_on(SVCCFG, "-s", f"{SERVICE_FMRI}:ups1", "addpg", "nut-driver-enumerator-generated-0")
        with pytest.raises(RegisterError):
            smf.register_instance(DeviceSection("ups1", "usbhid-ups", "auto"))
        assert [r.operation for r in smf.tracker.failures()] == ["declare_dependency"]
        # The half-built instance is deleted again
        assert runner.calls[-1] == [SVCCFG, "-s", "nut-driver", "delete", "-f", "ups1"]
        assert smf.tracker.records[-1].operation == "discard"

    def test_unregister(self, smf, runner):
        smf.unregister_instance(f"{SERVICE_FMRI}:ups1")
        assert runner.calls == [
            [SVCADM, "disable", "-s", f"{SERVICE_FMRI}:ups1"],
            [SVCCFG, "-s", "nut-driver", "delete", "-f", "ups1"],
        ]

    def test_restart_server(self, smf, runner):
        smf.restart_dependent_server()
        assert runner.calls == [[SVCADM, "restart", SERVER_FMRI]]


class TestDetectFramework:
    """Tests for service framework detection."""

    def test_smf(self, tmp_path):
        which = lambda name: f"/usr/bin/{name}"
        assert detect_framework(which, tmp_path / "absent") == "smf"

    def test_systemd(self, tmp_path):
        which = lambda name: "/bin/systemctl" if name == "systemctl" else None
        assert detect_framework(which, tmp_path) == "systemd"

    def test_systemctl_without_running_systemd(self, tmp_path):
        which = lambda name: "/bin/systemctl" if name == "systemctl" else None
        with pytest.raises(UnknownBackend):
            detect_framework(which, tmp_path / "absent")

    def test_nothing(self, tmp_path):
        with pytest.raises(UnknownBackend):
            detect_framework(lambda name: None, tmp_path)


class TestCreateBackend:
    """Tests for the backend factory."""

    def test_registry(self):
        assert BACKEND_TYPES == {"smf": SMFBackend, "systemd": SystemdBackend}

    def test_from_settings(self, runner, tmp_path):
        settings = EnumeratorSettings(service_framework="systemd", systemd_unit_dir=tmp_path)
        backend = create_backend(settings, runner=runner)
        assert isinstance(backend, SystemdBackend)
        assert backend.unit_dir == tmp_path
        assert backend.runner is runner

    def test_argument_wins(self, runner):
        settings = EnumeratorSettings(service_framework="systemd")
        assert isinstance(create_backend(settings, runner, framework="SMF"), SMFBackend)

    def test_unknown(self):
        with pytest.raises(UnknownBackend) as exc_info:
            create_backend(EnumeratorSettings(service_framework="launchd"))
        assert exc_info.value.framework == "launchd"

    def test_auto_start_passed(self, runner):
        settings = EnumeratorSettings(service_framework="smf", auto_start=False)
        assert create_backend(settings, runner).auto_start is False

    def test_dependency_overrides(self, runner):
        settings = EnumeratorSettings(
            service_framework="smf",
            dependencies={"smf": {"usb": [{"optional": "svc:/x:default"}]}},
        )
        backend = create_backend(settings, runner)
        assert backend.dependencies_for(DeviceSection("u", "usbhid-ups").media)[0].target == "svc:/x:default"

    def test_bad_dependency_kind(self, runner):
        settings = EnumeratorSettings(
            service_framework="systemd",
            dependencies={"systemd": {"usb": [{"needs": "x.target"}]}},
        )
        with pytest.raises(SettingsError):
            create_backend(settings, runner)

    def test_bad_media_class(self, runner):
        settings = EnumeratorSettings(
            service_framework="systemd",
            dependencies={"systemd": {"firewire": [{"wants": "x.target"}]}},
        )
        with pytest.raises(SettingsError):
            create_backend(settings, runner)
