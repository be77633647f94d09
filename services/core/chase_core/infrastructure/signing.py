"""Request and link signing.

Two HMAC schemes live here:

- Unsubscribe tokens: self-contained, URL-safe tokens binding
  (client id, channel, issue time) with an HMAC-SHA256 tag. They authorize
  an opt-out from an unauthenticated email footer link and expire after
  365 days.
- Chat provider webhook signatures: HMAC-SHA1 over the callback URL and
  sorted form parameters, base64 encoded, as sent in X-Twilio-Signature.

Usage:
    signer = UnsubscribeTokenSigner(settings.unsubscribe_secret)
    token = signer.generate(client_id=42, channel="email")
    claim = signer.verify(token)  # None if tampered or expired
"""

import base64
import binascii
import hmac as std_hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional
from urllib.parse import urlencode

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.hmac import HMAC


TOKEN_TTL = timedelta(days=365)

# Tolerated clock skew for tokens that claim to be issued in the future
MAX_FUTURE_SKEW = timedelta(minutes=5)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class InvalidSecretError(Exception):
    """Raised when a signer is created without a secret."""

    pass


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("base36 values must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


@dataclass(frozen=True)
class UnsubscribeClaim:
    """Verified contents of an unsubscribe token."""

    client_id: int
    channel: str
    issued_at: datetime


class UnsubscribeTokenSigner:
    """Signs and verifies unsubscribe tokens.

    Token layout before encoding: ``{client_id}:{channel}:{ts36}:{hmac_hex}``
    where ts36 is the issue time in epoch seconds, base 36.
    """

    def __init__(self, secret: str, valid_channels: tuple[str, ...] = ("email", "sms", "chat")):
        if not secret:
            raise InvalidSecretError("Unsubscribe secret cannot be empty")
        self._key = secret.encode()
        self._valid_channels = valid_channels

    def _tag(self, payload: str) -> HMAC:
        mac = HMAC(self._key, hashes.SHA256())
        mac.update(payload.encode())
        return mac

    def generate(self, client_id: int, channel: str = "email", now: Optional[datetime] = None) -> str:
        """Generate a signed token for a client and channel."""
        issued = now or datetime.now(timezone.utc)
        if issued.tzinfo is None:
            issued = issued.replace(tzinfo=timezone.utc)

        payload = f"{client_id}:{channel}:{to_base36(int(issued.timestamp()))}"
        signature = self._tag(payload).finalize().hex()
        return _b64url_encode(f"{payload}:{signature}".encode())

    def verify(self, token: str, now: Optional[datetime] = None) -> Optional[UnsubscribeClaim]:
        """Verify a token.

        Returns:
            The claim, or None if the token is malformed, tampered with,
            expired, or issued in the future.
        """
        try:
            decoded = _b64url_decode(token).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None

        parts = decoded.split(":")
        if len(parts) != 4:
            return None

        client_part, channel, ts36, signature_hex = parts
        payload = f"{client_part}:{channel}:{ts36}"

        try:
            self._tag(payload).verify(bytes.fromhex(signature_hex))
        except (InvalidSignature, ValueError):
            return None

        try:
            client_id = int(client_part)
            issued_at = datetime.fromtimestamp(int(ts36, 36), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

        if channel not in self._valid_channels:
            return None

        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)

        if current - issued_at > TOKEN_TTL:
            return None
        if issued_at - current > MAX_FUTURE_SKEW:
            return None

        return UnsubscribeClaim(client_id=client_id, channel=channel, issued_at=issued_at)


def unsubscribe_url(base_url: str, token: str) -> str:
    """Build the public unsubscribe link for an email footer."""
    return f"{base_url.rstrip('/')}/unsubscribe?{urlencode({'token': token})}"


# =============================================================================
# WEBHOOK SIGNATURES
# =============================================================================


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Compute the signature the chat provider sends for a form POST."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    mac = HMAC(auth_token.encode(), hashes.SHA1())
    mac.update(data.encode("utf-8"))
    return base64.b64encode(mac.finalize()).decode("ascii")


def validate_twilio_signature(
    auth_token: str,
    signature: Optional[str],
    url: str,
    params: Mapping[str, str],
) -> bool:
    """Check an X-Twilio-Signature header against the request."""
    if not auth_token or not signature:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return std_hmac.compare_digest(expected, signature)


__all__ = [
    "TOKEN_TTL",
    "InvalidSecretError",
    "UnsubscribeClaim",
    "UnsubscribeTokenSigner",
    "to_base36",
    "unsubscribe_url",
    "compute_twilio_signature",
    "validate_twilio_signature",
]
