"""FastAPI dependencies: identity, services and per-app state."""
from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from kennel.config import Settings
from kennel.database import get_db
from kennel.errors import AuthenticationRequired, MfaRequired
from kennel.models.domain import User
from kennel.services.metrics import KennelMetrics
from kennel.services.mfa import requires_fresh_mfa
from kennel.services.override_tokens import OverrideTokenCodec
from kennel.services.overrides import OverrideService
from kennel.services.session import AuthSession


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> KennelMetrics:
    return request.app.state.metrics


def get_codec(request: Request) -> OverrideTokenCodec:
    return request.app.state.codec


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock


def get_auth_session(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> AuthSession:
    """
    Resolve the caller from the identity provider's forwarded user id.

    The provider (not this service) authenticates; we only map its user id
    to an active account and its role.
    """
    if not x_user_id:
        raise AuthenticationRequired()
    user = db.get(User, x_user_id)
    if user is None or not user.is_active:
        raise AuthenticationRequired()
    return AuthSession(user_id=user.id, role=user.role)


def require_recent_mfa(
    session: AuthSession = Depends(get_auth_session),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthSession:
    """OWNER/ADMIN mutations need MFA within the recent (hours) window."""
    if settings.MFA_ENFORCE_PRIVILEGED and session.is_privileged:
        user = db.get(User, session.user_id)
        if requires_fresh_mfa(
            user.mfa_verified_at,
            "privileged_mutation",
            now=clock(),
            fresh_minutes=settings.MFA_FRESH_MINUTES,
            recent_hours=settings.MFA_RECENT_HOURS,
        ):
            raise MfaRequired("This action requires MFA verification within the last "
                              f"{settings.MFA_RECENT_HOURS} hours")
    return session


def get_override_service(
    db: Session = Depends(get_db),
    codec: OverrideTokenCodec = Depends(get_codec),
    settings: Settings = Depends(get_app_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
    metrics: KennelMetrics = Depends(get_metrics),
) -> OverrideService:
    return OverrideService(db, codec, settings, clock=clock, metrics=metrics)
