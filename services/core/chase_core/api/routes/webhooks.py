"""Inbound webhook and unsubscribe routes.

Provides endpoints for:
- GET /unsubscribe - Signed email unsubscribe link
- POST /webhooks/twilio/inbound - Inbound chat message from a client
- POST /webhooks/twilio/status - Chat delivery status callback
"""

import re
from typing import Optional
from xml.sax.saxutils import escape

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from chase_core.api.deps import AppSettings, DBSession
from chase_core.api.schemas.chase import StatusCallbackResponse, UnsubscribeResponse
from chase_core.config import Settings
from chase_core.domain.models import AuditActor, Client
from chase_core.domain.services.audit import AuditService
from chase_core.domain.services.consent import ConsentService, is_opt_out_keyword
from chase_core.domain.services.delivery_status import DeliveryStatusService
from chase_core.domain.services.escalation import Channel
from chase_core.domain.services.session_window import SessionWindowService, normalize_chat_address
from chase_core.infrastructure.signing import UnsubscribeTokenSigner, validate_twilio_signature
from chase_core.observability.logging import LogContext, get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

# Replies indicating the client has sent what was asked for
COMPLETION_PATTERN = re.compile(
    r"^(done|uploaded|sent|finished|completed|yes|sorted|all sent|all done)\s*[.!]?\s*$",
    re.IGNORECASE,
)

UNKNOWN_SENDER_REPLY = (
    "Thanks for your message. We couldn't match your number to an account. "
    "Please contact your accountant directly."
)


def twiml(message: Optional[str] = None) -> Response:
    """Build a TwiML reply, optionally with one outbound message."""
    body = f"<Message>{escape(message)}</Message>" if message else ""
    return Response(
        content=f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>',
        media_type="text/xml",
    )


async def validated_form(request: Request, settings: Settings) -> dict[str, str]:
    """Read a provider form POST and verify its signature.

    Raises:
        HTTPException: 503 if no auth token is configured, 400 if the
            signature header is missing, 403 if it does not match.
    """
    if not settings.twilio_auth_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat provider is not configured",
        )

    signature = request.headers.get("X-Twilio-Signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing signature",
        )

    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    # Signed against the public URL, not the one behind the proxy
    url = f"{settings.base_url.rstrip('/')}{request.url.path}"
    if not validate_twilio_signature(settings.twilio_auth_token, signature, url, params):
        logger.warning("Chat webhook signature validation failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid signature",
        )
    return params


# =============================================================================
# UNSUBSCRIBE
# =============================================================================


@router.get(
    "/unsubscribe",
    response_model=UnsubscribeResponse,
    summary="Unsubscribe via signed link",
)
async def unsubscribe(
    request: Request,
    db: DBSession,
    settings: AppSettings,
    token: str = Query(..., min_length=1),
):
    """Revoke consent for the channel named in a signed unsubscribe token."""
    claim = UnsubscribeTokenSigner(settings.unsubscribe_secret).verify(token)
    if claim is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired unsubscribe link",
        )

    client = db.get(Client, claim.client_id)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Client not found",
        )

    result = ConsentService(db).process_opt_out(
        client_id=client.id,
        practice_id=client.practice_id,
        channel=claim.channel,
        method="email_unsubscribe",
        ip_address=request.client.host if request.client else None,
    )

    return UnsubscribeResponse(
        unsubscribed=True,
        channel=claim.channel,
        all_channels_revoked=result.all_channels_revoked,
    )


# =============================================================================
# CHAT PROVIDER
# =============================================================================


@router.post("/webhooks/twilio/inbound", summary="Inbound chat message")
async def chat_inbound(request: Request, db: DBSession, settings: AppSettings):
    """Handle a client's chat reply.

    Opens the 24 hour session window, honours STOP keywords and answers
    with a short acknowledgement. The sender is looked up within the
    practice that owns the receiving number, when one does.
    """
    params = await validated_form(request, settings)

    sender = normalize_chat_address(params.get("From", ""))
    if not sender:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No sender",
        )

    windows = SessionWindowService(db)
    practice = windows.find_practice_by_chat_number(params.get("To", ""))
    client = windows.find_client_by_chat_address(
        sender, practice_id=practice.id if practice is not None else None
    )
    if client is None:
        logger.warning("Inbound chat from unknown number")
        return twiml(UNKNOWN_SENDER_REPLY)

    windows.record_inbound(client.id)

    body = params.get("Body", "").strip()
    num_media = int(params.get("NumMedia") or 0)
    ctx = LogContext(practice_id=client.practice_id, client_id=client.id)

    if is_opt_out_keyword(body):
        ConsentService(db).process_opt_out(
            client_id=client.id,
            practice_id=client.practice_id,
            channel=Channel.CHAT,
            method="chat_stop",
        )
        logger.info("Client opted out by chat keyword", context=ctx)
        return twiml("You have been unsubscribed and will not receive further WhatsApp reminders.")

    if COMPLETION_PATTERN.match(body):
        kind = "completion"
        reply = f"Thanks {client.first_name}! We'll check and let you know if we need anything else."
    elif body:
        kind = "message"
        reply = f"Thanks for your message, {client.first_name}. Your accountant will get back to you shortly."
    elif num_media > 0:
        kind = "media"
        reply = f"Thanks {client.first_name}! We've received your document and will process it shortly."
    else:
        kind = "empty"
        reply = None

    AuditService(db).log_event(
        actor=AuditActor.CLIENT,
        action_type="chat.inbound",
        practice_id=client.practice_id,
        client_id=client.id,
        entity_type="client",
        entity_id=client.id,
        metadata={
            "type": kind,
            "message_sid": params.get("MessageSid"),
            "num_media": num_media,
        },
    )
    logger.info("Inbound chat message", context=ctx, kind=kind, num_media=num_media)

    return twiml(reply)


@router.post(
    "/webhooks/twilio/status",
    response_model=StatusCallbackResponse,
    summary="Chat delivery status callback",
)
async def chat_status(request: Request, db: DBSession, settings: AppSettings):
    """Apply a delivery status update to the matching chase message."""
    params = await validated_form(request, settings)

    message_sid = params.get("MessageSid")
    message_status = params.get("MessageStatus")
    if not message_sid or not message_status:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="MessageSid and MessageStatus are required",
        )

    error_message = params.get("ErrorMessage")
    if not error_message and params.get("ErrorCode"):
        error_message = f"Provider error code {params['ErrorCode']}"

    result = DeliveryStatusService(db).apply(
        external_message_id=message_sid,
        provider_status=message_status,
        error_message=error_message,
    )
    return StatusCallbackResponse(applied=result.applied, status=result.status)
