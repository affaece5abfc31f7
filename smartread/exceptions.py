"""
Domain errors shared across the session core and the HTTP layer.
"""

from __future__ import annotations


class SmartReadError(Exception):
    pass


class ConfigurationError(SmartReadError):
    """Missing or invalid configuration (credentials, model names)."""


class AudioDecodeError(SmartReadError):
    """A synthesized audio payload could not be decoded into a playable buffer."""


class InvalidTransitionError(SmartReadError):
    def __init__(self, current: str, operation: str) -> None:
        self.current = current
        self.operation = operation
        super().__init__(f"Cannot {operation} while in phase {current}")
