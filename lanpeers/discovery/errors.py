"""Exception hierarchy for the discovery engine.

Only `StartupError` and `ShutdownError` reach callers of the public
lifecycle methods. `DecodeError` and `TransientSendError` describe
per-packet failures that the engine absorbs and logs.
"""

from typing import Any, Dict, Optional


class DiscoveryError(Exception):
    """Base exception for all discovery errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class StartupError(DiscoveryError):
    """The multicast socket could not be bound or the group joined."""


BindError = StartupError


class DecodeError(DiscoveryError):
    """A packet was malformed or did not carry a valid peer record."""


class TransientSendError(DiscoveryError):
    """A single query or announcement could not be sent."""


class ShutdownError(DiscoveryError):
    """The multicast socket could not be released cleanly on close."""
