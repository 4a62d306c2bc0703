"""Instance-name normalization across service-management backends.

Device names are used verbatim as instance identifiers whenever the backend
accepts them. Anything else is replaced by ``MD5_`` plus the hex digest of
the name, which starts with a letter and only holds hex digits afterwards,
so it is legal under every backend's grammar.

The mapping is one-way: the original device name is recovered by
re-deriving identifiers from the known devices, never by decoding.
"""
import hashlib
from typing import Protocol

MD5_PREFIX = "MD5_"


class IdentifierRules(Protocol):
    """Backend naming rules consumed by the normalizer."""

    def is_legal_identifier(self, name: str) -> bool: ...

    def valid_full_unit_name(self, name: str) -> str: ...

    def valid_instance_suffix_name(self, full_name: str) -> str: ...


def md5_identifier(device_name: str) -> str:
    """Hash-derived fallback identifier for a device name."""
    digest = hashlib.md5(device_name.encode("utf-8")).hexdigest()
    return f"{MD5_PREFIX}{digest}"


def is_hashed_identifier(identifier: str) -> bool:
    """Whether an identifier has the shape of the hash fallback."""
    digest = identifier[len(MD5_PREFIX):]
    return (
        identifier.startswith(MD5_PREFIX)
        and len(digest) == 32
        and all(c in "0123456789abcdef" for c in digest)
    )


def to_instance_identifier(device_name: str, rules: IdentifierRules) -> str:
    """Backend-legal instance identifier for a device name."""
    if rules.is_legal_identifier(device_name):
        return device_name
    return md5_identifier(device_name)


def to_full_unit_name(identifier: str, rules: IdentifierRules) -> str:
    return rules.valid_full_unit_name(identifier)


def to_instance_suffix(full_unit_name: str, rules: IdentifierRules) -> str:
    return rules.valid_instance_suffix_name(full_unit_name)


def identity_matches(device_name: str, instance: str, rules: IdentifierRules) -> bool:
    """Whether a registered instance belongs to a configured device.

    A device matches its instance verbatim, or through its normalized
    identifier when the name had to be hashed.
    """
    return instance == device_name or instance == to_instance_identifier(device_name, rules)
