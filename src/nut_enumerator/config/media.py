"""Media classification of device sections.

The media class decides which dependency a driver instance gets: USB devices
wait for hot-plug handling, networked devices wait for the network, repeaters
of a local data server only need loopback, and serial devices need nothing.
"""
from enum import Enum
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .catalog import DeviceSection


class MediaClass(str, Enum):
    """Coarse connectivity category of a device."""
    USB = "usb"
    NETWORK = "network"
    NETWORK_LOCALHOST = "network-localhost"
    NONE = "none"


# Substrings of driver names that talk to the UPS over the network
NETWORK_DRIVER_MARKERS = (
    "netxml",
    "snmp",
    "ipmi",
    "powerman",
    "-mib",
    "avahi",
    "apcupsd",
)

USB_DRIVER_MARKERS = ("usb",)

# Drivers that relay another data server, addressed as "ups@host[:port]"
PROXY_DRIVER_PREFIXES = ("dummy", "clone")

LOCALHOST_NAMES = frozenset({"", "localhost", "127.0.0.1", "::1"})


def port_host(port: str) -> str | None:
    """Host part of a "upsname@host[:port]" address, None without '@'."""
    if "@" not in port:
        return None
    host = port.rsplit("@", 1)[1].strip()

    if host.startswith("["):
        # [ipv6]:port
        return host[1:].split("]", 1)[0].lower()
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.lower()


def _driver(device: "DeviceSection") -> str:
    return (device.driver or "").lower()


def is_network_driver(device: "DeviceSection") -> bool:
    return any(marker in _driver(device) for marker in NETWORK_DRIVER_MARKERS)


def is_usb_driver(device: "DeviceSection") -> bool:
    return any(marker in _driver(device) for marker in USB_DRIVER_MARKERS)


def is_proxy_driver(device: "DeviceSection") -> bool:
    return _driver(device).startswith(PROXY_DRIVER_PREFIXES)


def targets_localhost(device: "DeviceSection") -> bool:
    return port_host(device.port or "") in LOCALHOST_NAMES


def targets_remote_host(device: "DeviceSection") -> bool:
    host = port_host(device.port or "")
    return host is not None and host not in LOCALHOST_NAMES


# Evaluated in order, first match wins
MEDIA_RULES: list[tuple[Callable[["DeviceSection"], bool], MediaClass]] = [
    (is_network_driver, MediaClass.NETWORK),
    (is_usb_driver, MediaClass.USB),
    (lambda d: is_proxy_driver(d) and targets_localhost(d), MediaClass.NETWORK_LOCALHOST),
    (lambda d: is_proxy_driver(d) and targets_remote_host(d), MediaClass.NETWORK),
    (is_proxy_driver, MediaClass.NONE),
]


def classify(device: "DeviceSection") -> MediaClass:
    """Media class of a device; total, never raises."""
    for predicate, media in MEDIA_RULES:
        if predicate(device):
            return media
    return MediaClass.NONE
