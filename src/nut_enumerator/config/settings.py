"""Enumerator settings.

Settings are resolved in increasing order of precedence: built-in defaults,
an optional YAML settings file, then environment variables. The command
line applies its own overrides on top.

Environment variables:
- NUT_CONFPATH: Directory holding ups.conf (default: /etc/nut)
- UPSCONF: Full path of the device configuration file
- SERVICE_FRAMEWORK: Force a backend ("systemd" or "smf")
- AUTO_START: Start new instances and restart the data server (default: yes)
- REPORT_RESTART_42: Exit 42 after changes instead of 0 (default: yes)
- NUT_ENUMERATOR_SETTINGS: Path of the YAML settings file
- NUT_ENUMERATOR_DAEMON_INTERVAL: Seconds between daemon passes (default: 60)

Settings file example:

```yaml
service_framework: systemd
auto_start: true
report_restart_42: false
dependencies:
  systemd:
    network:
      - requires: network-online.target
```
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFPATH = "/etc/nut"
UPSCONF_NAME = "ups.conf"
SETTINGS_NAME = "nut-driver-enumerator.yaml"
DEFAULT_DAEMON_INTERVAL = 60
DEFAULT_SYSTEMD_UNIT_DIR = "/etc/systemd/system"

TRUE_WORDS = {"1", "yes", "true", "on"}
FALSE_WORDS = {"0", "no", "false", "off"}


class SettingsError(Exception):
    """The settings file or an environment override is malformed."""
    pass


def parse_bool(value: Any, name: str) -> bool:
    """Interpret yes/no style values from YAML or the environment."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_WORDS:
        return True
    if text in FALSE_WORDS:
        return False
    raise SettingsError(f"Invalid boolean for {name}: {value!r}")


def parse_interval(value: Any, name: str) -> int:
    try:
        interval = int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"Invalid interval for {name}: {value!r}")
    if interval < 1:
        raise SettingsError(f"{name} must be at least 1 second, got {interval}")
    return interval


@dataclass
class EnumeratorSettings:
    """Resolved enumerator settings."""
    confpath: Path = field(default_factory=lambda: Path(DEFAULT_CONFPATH))
    upsconf: Optional[Path] = None
    service_framework: Optional[str] = None
    auto_start: bool = True
    report_restart_42: bool = True
    daemon_interval: int = DEFAULT_DAEMON_INTERVAL
    systemd_unit_dir: Path = field(default_factory=lambda: Path(DEFAULT_SYSTEMD_UNIT_DIR))
    # framework -> media class -> list of {kind: target}
    dependencies: dict[str, dict[str, list[dict[str, str]]]] = field(default_factory=dict)

    @property
    def upsconf_path(self) -> Path:
        """Device configuration file to reconcile against."""
        return self.upsconf or self.confpath / UPSCONF_NAME

    def dependency_overrides(self, framework: str) -> dict[str, list[dict[str, str]]]:
        return dict(self.dependencies.get(framework, {}))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["EnumeratorSettings"] = None) -> "EnumeratorSettings":
        """Apply a settings mapping (as loaded from YAML) on top of base."""
        settings = base or cls()

        if data.get("confpath"):
            settings.confpath = Path(data["confpath"])
        if data.get("upsconf"):
            settings.upsconf = Path(data["upsconf"])
        if data.get("service_framework"):
            settings.service_framework = str(data["service_framework"]).lower()
        if "auto_start" in data:
            settings.auto_start = parse_bool(data["auto_start"], "auto_start")
        if "report_restart_42" in data:
            settings.report_restart_42 = parse_bool(data["report_restart_42"], "report_restart_42")
        if "daemon_interval" in data:
            settings.daemon_interval = parse_interval(data["daemon_interval"], "daemon_interval")
        if data.get("systemd_unit_dir"):
            settings.systemd_unit_dir = Path(data["systemd_unit_dir"])

        dependencies = data.get("dependencies") or {}
        if not isinstance(dependencies, dict):
            raise SettingsError("'dependencies' must map frameworks to media classes")
        for framework, per_media in dependencies.items():
            if not isinstance(per_media, dict):
                raise SettingsError(f"Dependencies for '{framework}' must map media classes to lists")
            for media, targets in per_media.items():
                if not isinstance(targets, list) or not all(isinstance(t, dict) for t in targets):
                    raise SettingsError(
                        f"Dependencies for '{framework}/{media}' must be a list of kind: target entries"
                    )
            settings.dependencies[str(framework)] = {
                str(media): [dict(t) for t in (targets or [])]
                for media, targets in per_media.items()
            }

        return settings

    @classmethod
    def from_file(cls, path: Path, base: Optional["EnumeratorSettings"] = None) -> "EnumeratorSettings":
        """Load settings from a YAML file; a missing file leaves base unchanged."""
        settings = base or cls()
        if not path.exists():
            logger.debug(f"Settings file not found: {path}")
            return settings

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot load settings from {path}: {e}")

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {path} must contain a mapping")

        logger.debug(f"Loaded settings from {path}")
        return cls.from_dict(data, settings)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["EnumeratorSettings"] = None,
    ) -> "EnumeratorSettings":
        """Apply environment overrides on top of base."""
        env = os.environ if environ is None else environ
        settings = base or cls()

        if env.get("NUT_CONFPATH"):
            settings.confpath = Path(env["NUT_CONFPATH"])
        if env.get("UPSCONF"):
            settings.upsconf = Path(env["UPSCONF"])
        if env.get("SERVICE_FRAMEWORK"):
            settings.service_framework = env["SERVICE_FRAMEWORK"].strip().lower()
        if env.get("AUTO_START"):
            settings.auto_start = parse_bool(env["AUTO_START"], "AUTO_START")
        if env.get("REPORT_RESTART_42"):
            settings.report_restart_42 = parse_bool(env["REPORT_RESTART_42"], "REPORT_RESTART_42")
        if env.get("NUT_ENUMERATOR_DAEMON_INTERVAL"):
            settings.daemon_interval = parse_interval(
                env["NUT_ENUMERATOR_DAEMON_INTERVAL"], "NUT_ENUMERATOR_DAEMON_INTERVAL"
            )

        return settings

    @classmethod
    def load(
        cls,
        settings_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "EnumeratorSettings":
        """Resolve settings from defaults, settings file and environment.

        The settings file is, in order: settings_path, NUT_ENUMERATOR_SETTINGS,
        or nut-driver-enumerator.yaml next to ups.conf.
        """
        env = os.environ if environ is None else environ

        # The confpath decides where the default settings file lives
        settings = cls()
        if env.get("NUT_CONFPATH"):
            settings.confpath = Path(env["NUT_CONFPATH"])

        if settings_path is None:
            env_path = env.get("NUT_ENUMERATOR_SETTINGS")
            settings_path = Path(env_path) if env_path else settings.confpath / SETTINGS_NAME

        settings = cls.from_file(settings_path, settings)
        return cls.from_env(env, settings)
