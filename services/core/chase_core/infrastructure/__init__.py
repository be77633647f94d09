"""Infrastructure components for the chase engine.

This package contains infrastructure-level components like:
- Unsubscribe token signing
- Webhook signature validation
"""

from chase_core.infrastructure.signing import (
    InvalidSecretError,
    UnsubscribeClaim,
    UnsubscribeTokenSigner,
    unsubscribe_url,
    validate_twilio_signature,
)

__all__ = [
    "InvalidSecretError",
    "UnsubscribeClaim",
    "UnsubscribeTokenSigner",
    "unsubscribe_url",
    "validate_twilio_signature",
]
