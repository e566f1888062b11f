"""Terminal Bluetooth manager core."""

__version__ = "0.1.0"
