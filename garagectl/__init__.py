"""Bluetooth Low Energy garage door control."""

__version__ = "0.1.0"
