"""Reader for ups.conf-style device configuration files.

The file is a list of named sections, each holding ``key = value`` lines:

    maxretry = 3

    [ups1]
        driver = usbhid-ups
        port = auto
        desc = "Rack UPS"

    [repeater]
        driver = dummy-ups
        port = ups1@localhost

Lines before the first section header are global directives and never
describe a device. A header always terminates the previous section, with or
without a blank line in between.
"""
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r"^\[(?P<name>[^\]]*)\]\s*(?:#.*)?$")
COMMENT_PREFIXES = ("#", ";")


class ConfigError(Exception):
    """Base class for device configuration problems."""
    pass


class ConfigMissing(ConfigError):
    """The configuration file does not exist or cannot be read."""

    def __init__(self, path: Path, reason: str = "not found"):
        self.path = path
        super().__init__(f"Device configuration {path} is missing or unreadable: {reason}")


class ConfigEmpty(ConfigError):
    """The configuration file exists but holds no usable bytes."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Device configuration {path} is empty")


class SectionNotFound(ConfigError):
    """A requested device section does not exist."""

    def __init__(self, section: str):
        self.section = section
        super().__init__(f"Unknown device section: {section}")


class KeyNotFound(ConfigError):
    """A requested key does not exist in a device section."""

    def __init__(self, section: str, key: str):
        self.section = section
        self.key = key
        super().__init__(f"Device section '{section}' has no key '{key}'")


@dataclass
class RawSection:
    """One bracketed section as written in the file."""
    name: str
    line_number: int
    entries: list[tuple[str, str]] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """First value recorded for key, or default."""
        for entry_key, value in self.entries:
            if entry_key == key:
                return value
        return default

    def keys(self) -> list[str]:
        return [key for key, _ in self.entries]

    def to_text(self) -> str:
        """Section block as written, header included."""
        return "\n".join([f"[{self.name}]"] + self.lines)


def parse_value(raw: str) -> str:
    """Normalize the right-hand side of a ``key = value`` line."""
    raw = raw.strip()
    if raw[:1] in ("'", '"'):
        quote = raw[0]
        end = raw.find(quote, 1)
        if end != -1:
            return raw[1:end]
        return raw[1:]
    # Unquoted values may carry a trailing comment
    comment = re.search(r"\s[#;]", raw)
    if comment:
        raw = raw[:comment.start()]
    return raw.strip()


def parse_line(line: str) -> Optional[tuple[str, str]]:
    """Split a directive line into (key, value); None for blanks/comments."""
    stripped = line.strip()
    if not stripped or stripped.startswith(COMMENT_PREFIXES):
        return None
    if "=" not in stripped:
        # Bare flag such as "nolock"
        return stripped.split()[0], ""
    key, _, value = stripped.partition("=")
    return key.strip(), parse_value(value)


def parse_sections(text: str) -> tuple[list[tuple[str, str]], list[RawSection]]:
    """Lex configuration text into global directives and raw sections.

    Duplicated section headers are kept as separate RawSection entries so
    that callers can detect and reject them.
    """
    global_entries: list[tuple[str, str]] = []
    sections: list[RawSection] = []
    current: Optional[RawSection] = None

    for number, line in enumerate(text.splitlines(), start=1):
        header = SECTION_RE.match(line.strip())
        if header:
            current = RawSection(name=header.group("name").strip(), line_number=number)
            sections.append(current)
            continue

        entry = parse_line(line)
        if current is None:
            if entry:
                global_entries.append(entry)
            continue

        if line.strip():
            current.lines.append(line.rstrip())
        if entry:
            current.entries.append(entry)

    return global_entries, sections


class UpsConfReader:
    """Loads and lexes one device configuration file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._globals: list[tuple[str, str]] = []
        self._sections: Optional[list[RawSection]] = None

    def _load(self) -> list[RawSection]:
        if self._sections is not None:
            return self._sections

        if not self.path.is_file():
            raise ConfigMissing(self.path)

        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ConfigMissing(self.path, str(e)) from e

        if not text.strip():
            raise ConfigEmpty(self.path)

        self._globals, self._sections = parse_sections(text)
        logger.debug(f"Read {len(self._sections)} sections from {self.path}")
        return self._sections

    def reload(self) -> None:
        """Forget the cached parse so the next call re-reads the file."""
        self._sections = None
        self._globals = []

    def sections(self) -> list[RawSection]:
        """All sections in file order, duplicates included."""
        return list(self._load())

    def section_names(self) -> list[str]:
        return [section.name for section in self._load()]

    def global_directives(self) -> list[tuple[str, str]]:
        self._load()
        return list(self._globals)

    def get_section(self, name: str) -> RawSection:
        """Get the first section with this name.

        Raises:
            SectionNotFound: If no such section exists
        """
        for section in self._load():
            if section.name == name:
                return section
        raise SectionNotFound(name)

    def get_value(self, section: str, key: str) -> str:
        """Get a single value from a section.

        Raises:
            SectionNotFound: If the section does not exist
            KeyNotFound: If the section lacks the key
        """
        value = self.get_section(section).get(key)
        if value is None:
            raise KeyNotFound(section, key)
        return value

    def section_text(self, name: str) -> str:
        """Raw text block of one section."""
        return self.get_section(name).to_text()
