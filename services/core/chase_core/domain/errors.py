"""Exceptions raised by the chase engine.

Delivery errors are terminal for the message they concern: the dispatcher
records ``str(error)`` as the failure reason, so messages are written for
a practice operator to read.
"""

from typing import Optional


class ChaseError(Exception):
    """Base exception for chase engine operations."""
    pass


class ConfigError(ChaseError):
    """Raised when campaign or practice configuration is invalid."""
    pass


class ClientNotFoundError(ChaseError):
    """Raised when a client does not exist."""
    pass


class MessageNotFoundError(ChaseError):
    """Raised when a chase message does not exist."""
    pass


class EnrollmentNotFoundError(ChaseError):
    """Raised when an enrollment does not exist."""
    pass


# =============================================================================
# DELIVERY
# =============================================================================


class DeliveryError(ChaseError):
    """Base exception for terminal per-message delivery failures."""
    pass


class MissingAddressError(DeliveryError):
    """Raised when the client has no address on the resolved channel."""
    pass


class MissingSenderConfigError(DeliveryError):
    """Raised when the practice has no sender identity for the channel."""
    pass


class ChannelNotImplementedError(DeliveryError):
    """Raised for channels that are modelled but cannot be sent yet."""
    pass


class ProviderError(DeliveryError):
    """Raised when a channel provider rejects or fails a send.

    The message carries the provider's error text verbatim.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "ChaseError",
    "ConfigError",
    "ClientNotFoundError",
    "MessageNotFoundError",
    "EnrollmentNotFoundError",
    "DeliveryError",
    "MissingAddressError",
    "MissingSenderConfigError",
    "ChannelNotImplementedError",
    "ProviderError",
]
