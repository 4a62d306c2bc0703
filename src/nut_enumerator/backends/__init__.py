"""Service-management backends for driver instances."""
import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from ..config.settings import EnumeratorSettings, SettingsError
from ..utils.commands import CommandRunner
from .base import (
    BackendError,
    DependencyKind,
    DependencyTarget,
    RegisterError,
    RestartError,
    ServiceBackend,
    ServiceInstance,
    UnknownBackend,
    UnregisterError,
)
from .smf import SMFBackend
from .systemd import SystemdBackend

__all__ = [
    "BackendError",
    "DependencyKind",
    "DependencyTarget",
    "RegisterError",
    "RestartError",
    "ServiceBackend",
    "ServiceInstance",
    "UnknownBackend",
    "UnregisterError",
    "SMFBackend",
    "SystemdBackend",
    "BACKEND_TYPES",
    "create_backend",
    "detect_framework",
]

logger = logging.getLogger(__name__)

# Backend registry
BACKEND_TYPES: dict[str, type[ServiceBackend]] = {
    "smf": SMFBackend,
    "systemd": SystemdBackend,
}

SYSTEMD_RUNTIME_DIR = Path("/run/systemd/system")


def detect_framework(
    which: Callable[[str], Optional[str]] = shutil.which,
    systemd_runtime_dir: Path = SYSTEMD_RUNTIME_DIR,
) -> str:
    """Check the host for a supported service manager.

    Raises:
        UnknownBackend: If neither SMF nor a running systemd is found
    """
    if which("svcs") and which("svccfg") and which("svcadm"):
        return "smf"
    if which("systemctl") and systemd_runtime_dir.is_dir():
        return "systemd"
    raise UnknownBackend()


def create_backend(
    settings: EnumeratorSettings,
    runner: Optional[CommandRunner] = None,
    framework: Optional[str] = None,
) -> ServiceBackend:
    """Factory function to create the configured backend.

    The framework is taken from the argument, then settings, then probing.

    Raises:
        UnknownBackend: If the framework is unknown or cannot be detected
    """
    name = (framework or settings.service_framework or detect_framework()).lower()
    if name not in BACKEND_TYPES:
        raise UnknownBackend(name)

    kwargs = {
        "runner": runner,
        "auto_start": settings.auto_start,
        "dependencies": settings.dependency_overrides(name),
    }
    if name == "systemd":
        kwargs["unit_dir"] = settings.systemd_unit_dir

    try:
        backend = BACKEND_TYPES[name](**kwargs)
    except ValueError as e:
        raise SettingsError(f"Invalid dependency settings for {name}: {e}") from e

    logger.debug(f"Using {name} backend")
    return backend
