"""API routes: override flow, identity and per-entity CRUD."""
from datetime import datetime
from typing import Callable, List, Optional, Type

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from kennel.api.deps import (
    get_app_settings,
    get_auth_session,
    get_clock,
    get_metrics,
    get_override_service,
    require_recent_mfa,
)
from kennel.api.schemas import (
    ApprovalTokenView,
    BookingCreate,
    BookingUpdate,
    CareLogCreate,
    CareLogUpdate,
    ConsumeOverrideRequest,
    ConsumeOverrideResponse,
    ErrorResponse,
    IssueOverrideRequest,
    IssueOverrideResponse,
    KennelCreate,
    KennelUpdate,
    MeResponse,
    NotificationCreate,
    NotificationUpdate,
    PetCreate,
    PetUpdate,
    RevokeOverrideRequest,
    UserCreate,
    UserUpdate,
)
from kennel.config import Settings
from kennel.database import get_db
from kennel.errors import KennelError
from kennel.models.enums import ApprovalState, EntityType
from kennel.services.crud import CrudFactory, CrudResult
from kennel.services.metrics import KennelMetrics
from kennel.services.overrides import OverrideService
from kennel.services.policies import get_policy
from kennel.services.roles import resolve_role_home
from kennel.services.session import AuthSession

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}

STATUS_BY_CODE = {
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "token_invalid": status.HTTP_400_BAD_REQUEST,
}


def unwrap(result: CrudResult):
    """Turn a failed CrudResult into the matching HTTP error."""
    if result.success:
        return result.data
    raise KennelError(
        result.error or "Request failed",
        code=result.code or "error",
        status_code=STATUS_BY_CODE.get(result.code, status.HTTP_400_BAD_REQUEST),
        details=result.details,
    )


# Identity
@router.get("/me", response_model=MeResponse, responses=ERROR_RESPONSES)
def who_am_i(session: AuthSession = Depends(get_auth_session)):
    """Current session and the landing route for its role."""
    return MeResponse(user_id=session.user_id, role=session.role, home=resolve_role_home(session.role))


# Override endpoints
@router.post("/overrides/issue", response_model=IssueOverrideResponse, responses=ERROR_RESPONSES,
             response_model_by_alias=True)
def issue_override(
    body: IssueOverrideRequest,
    session: AuthSession = Depends(get_auth_session),
    service: OverrideService = Depends(get_override_service),
):
    """
    Issue a single-use override token.

    Requires OWNER/ADMIN with MFA verified in the last few minutes. The token
    is returned once and must be handed to the recipient out of band.
    """
    issued = service.issue(
        session,
        issued_to_user_id=body.issued_to_user_id,
        scope=body.scope,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
        reason=body.reason,
        expires_in_minutes=body.expires_in_minutes,
    )
    return IssueOverrideResponse(
        token=issued.token,
        expires_at=issued.expires_at,
        scope=issued.scope,
        entity_type=issued.entity_type,
        entity_id=issued.entity_id,
    )


@router.post("/overrides/consume", response_model=ConsumeOverrideResponse, responses=ERROR_RESPONSES,
             response_model_by_alias=True)
def consume_override(
    body: ConsumeOverrideRequest,
    session: AuthSession = Depends(get_auth_session),
    service: OverrideService = Depends(get_override_service),
):
    """Exchange a token issued to the caller for a short-lived override session."""
    consumed = service.consume(session, body.token, reason=body.reason)
    return ConsumeOverrideResponse(
        override_session_id=consumed.override_session_id,
        expires_at=consumed.expires_at,
        scope=consumed.scope,
        entity_type=consumed.entity_type,
        entity_id=consumed.entity_id,
    )


@router.get("/overrides", response_model=List[ApprovalTokenView], responses=ERROR_RESPONSES,
            response_model_by_alias=True)
def list_overrides(
    state: Optional[ApprovalState] = None,
    session: AuthSession = Depends(get_auth_session),
    service: OverrideService = Depends(get_override_service),
):
    return service.list_tokens(session, state=state)


@router.post("/overrides/{approval_id}/revoke", response_model=ApprovalTokenView, responses=ERROR_RESPONSES,
             response_model_by_alias=True)
def revoke_override(
    approval_id: str,
    body: RevokeOverrideRequest,
    session: AuthSession = Depends(get_auth_session),
    service: OverrideService = Depends(get_override_service),
):
    service.revoke(session, approval_id, body.reason)
    return next(item for item in service.list_tokens(session) if item["id"] == approval_id)


# Entity endpoints
def build_entity_router(
    entity_type: EntityType,
    path: str,
    create_schema: Type[BaseModel],
    update_schema: Type[BaseModel],
    redact_fields: tuple = (),
) -> APIRouter:
    """
    Expose the CRUD factory for one entity type.

    Every route is a thin adapter: it builds a factory for the request and
    maps the CrudResult onto HTTP. Authorization lives in the policy.
    """
    entity_router = APIRouter(prefix=path, tags=[entity_type.value])

    def get_factory(
        db: Session = Depends(get_db),
        settings: Settings = Depends(get_app_settings),
        overrides: OverrideService = Depends(get_override_service),
        metrics: KennelMetrics = Depends(get_metrics),
        clock: Callable[[], datetime] = Depends(get_clock),
    ) -> CrudFactory:
        return CrudFactory(
            db,
            entity_type,
            get_policy(entity_type),
            settings,
            create_schema=create_schema,
            update_schema=update_schema,
            redact_fields=redact_fields,
            overrides=overrides,
            metrics=metrics,
            clock=clock,
        )

    @entity_router.get("", responses=ERROR_RESPONSES)
    def list_entities(
        request: Request,
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        session: AuthSession = Depends(get_auth_session),
        factory: CrudFactory = Depends(get_factory),
    ):
        """Paginated, row-scoped listing. Extra query params are equality filters."""
        filters = {
            key: value for key, value in request.query_params.items()
            if key not in ("page", "limit")
        }
        return unwrap(factory.list(session, filters=filters, page=page, limit=limit))

    @entity_router.get("/{entity_id}", responses=ERROR_RESPONSES)
    def read_entity(
        entity_id: str,
        session: AuthSession = Depends(get_auth_session),
        factory: CrudFactory = Depends(get_factory),
    ):
        return unwrap(factory.read(session, entity_id))

    @entity_router.post("", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
    def create_entity(
        body: create_schema,
        session: AuthSession = Depends(require_recent_mfa),
        factory: CrudFactory = Depends(get_factory),
    ):
        return unwrap(factory.create(session, body))

    @entity_router.patch("/{entity_id}", responses=ERROR_RESPONSES)
    def update_entity(
        entity_id: str,
        body: update_schema,
        session: AuthSession = Depends(require_recent_mfa),
        factory: CrudFactory = Depends(get_factory),
        override_token: Optional[str] = Header(None, alias="X-Override-Token"),
    ):
        return unwrap(factory.update(session, entity_id, body, override_token=override_token))

    @entity_router.delete("/{entity_id}", responses=ERROR_RESPONSES)
    def delete_entity(
        entity_id: str,
        session: AuthSession = Depends(require_recent_mfa),
        factory: CrudFactory = Depends(get_factory),
        override_token: Optional[str] = Header(None, alias="X-Override-Token"),
    ):
        return unwrap(factory.delete(session, entity_id, override_token=override_token))

    return entity_router


ENTITY_ROUTES = (
    (EntityType.USER, "/users", UserCreate, UserUpdate, ()),
    (EntityType.PET, "/pets", PetCreate, PetUpdate, ()),
    (EntityType.KENNEL, "/kennels", KennelCreate, KennelUpdate, ()),
    (EntityType.BOOKING, "/bookings", BookingCreate, BookingUpdate, ("notes",)),
    (EntityType.CARE_LOG, "/care-logs", CareLogCreate, CareLogUpdate, ("note",)),
    (EntityType.NOTIFICATION, "/notifications", NotificationCreate, NotificationUpdate, ("message", "payload")),
)

for _entity_type, _path, _create, _update, _redact in ENTITY_ROUTES:
    router.include_router(build_entity_router(_entity_type, _path, _create, _update, _redact))
