"""Framework-free domain layer for Portlio: plans, entitlements, portals and state."""

__version__ = "0.1.0"
