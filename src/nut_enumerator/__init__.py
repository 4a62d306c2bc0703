"""Keep NUT driver service instances in sync with the device configuration."""

__version__ = "0.1.0"
