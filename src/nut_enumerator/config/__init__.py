"""Device configuration, naming and settings."""
from .catalog import DeviceCatalog, DeviceSection, DuplicateSection, natural_sort_key
from .media import MediaClass, classify
from .naming import MD5_PREFIX, identity_matches, md5_identifier, to_instance_identifier
from .settings import EnumeratorSettings, SettingsError
from .store import (
    ConfigEmpty,
    ConfigError,
    ConfigMissing,
    KeyNotFound,
    SectionNotFound,
    UpsConfReader,
)

__all__ = [
    "DeviceCatalog",
    "DeviceSection",
    "DuplicateSection",
    "natural_sort_key",
    "MediaClass",
    "classify",
    "MD5_PREFIX",
    "identity_matches",
    "md5_identifier",
    "to_instance_identifier",
    "EnumeratorSettings",
    "SettingsError",
    "ConfigEmpty",
    "ConfigError",
    "ConfigMissing",
    "KeyNotFound",
    "SectionNotFound",
    "UpsConfReader",
]
