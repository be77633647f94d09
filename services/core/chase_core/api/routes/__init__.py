"""API routes."""

from chase_core.api.routes import ops, portal, webhooks

__all__ = ["ops", "portal", "webhooks"]
