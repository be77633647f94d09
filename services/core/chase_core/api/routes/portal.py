"""Client portal routes reached through chase deep links.

Provides endpoints for:
- POST /p/{token}/documents - Record a document received for the link's enrollment
"""

from fastapi import APIRouter, HTTPException, status

from chase_core.api.deps import AppSettings, DBSession
from chase_core.api.schemas.chase import DocumentProgressResponse, DocumentReceivedRequest
from chase_core.domain.services.documents import DocumentProgressService
from chase_core.domain.services.magic_links import MagicLinkService

router = APIRouter(prefix="/p", tags=["portal"])


@router.post(
    "/{token}/documents",
    response_model=DocumentProgressResponse,
    summary="Record a received document",
)
async def record_document(
    token: str,
    request: DocumentReceivedRequest,
    db: DBSession,
    settings: AppSettings,
):
    """Count one use of the link and record the document against its enrollment."""
    links = MagicLinkService(
        db,
        ttl_days=settings.magic_link_ttl_days,
        max_usages=settings.magic_link_max_usages,
    )
    link = links.record_usage(token)
    if link is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired link",
        )
    if link.enrollment_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Link is not tied to an enrollment",
        )

    progress = DocumentProgressService(db).record_received(link.enrollment_id, request.document_id)
    return DocumentProgressResponse(
        enrollment_id=progress.enrollment_id,
        received=progress.received,
        required=progress.required,
        completion_percent=progress.completion_percent,
        completed=progress.completed,
    )
