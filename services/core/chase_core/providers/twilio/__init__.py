"""Twilio chat provider integration."""

from chase_core.providers.twilio.adapter import (
    TwilioChatSender,
    price_to_minor_units,
    whatsapp_address,
)

__all__ = [
    "TwilioChatSender",
    "price_to_minor_units",
    "whatsapp_address",
]
