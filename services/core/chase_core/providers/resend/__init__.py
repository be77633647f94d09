"""Resend email provider integration."""

from chase_core.providers.resend.adapter import ResendEmailSender

__all__ = ["ResendEmailSender"]
