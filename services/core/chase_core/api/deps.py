"""API dependencies for dependency injection."""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from chase_core.config import Settings, get_settings
from chase_core.domain.services.chase_engine import ChaseEngine
from chase_core.domain.services.dispatcher import MessageDispatcher
from chase_core.infra.db import get_sync_session_factory


def get_db() -> Session:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_app_settings(request: Request) -> Settings:
    """Settings stored on the app at startup, falling back to the environment."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]


def require_ops_token(
    settings: AppSettings,
    x_ops_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """Require the shared operator token on /ops routes.

    Raises:
        HTTPException: 503 if no token is configured, 401 if it does not match.
    """
    if not settings.ops_api_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ops API is disabled",
        )
    if not x_ops_token or not hmac.compare_digest(x_ops_token, settings.ops_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid ops token",
        )


def get_chase_engine(db: DBSession, settings: AppSettings) -> ChaseEngine:
    """Get the chase tick orchestrator."""
    return ChaseEngine.from_settings(db, settings)


def get_dispatcher(db: DBSession, settings: AppSettings) -> MessageDispatcher:
    """Get the message dispatcher."""
    return MessageDispatcher.from_settings(db, settings)


OpsToken = Depends(require_ops_token)
ChaseEngineDep = Annotated[ChaseEngine, Depends(get_chase_engine)]
DispatcherDep = Annotated[MessageDispatcher, Depends(get_dispatcher)]
