from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from workforce.audit import record_audit
from workforce.db import get_db
from workforce.errors import InvalidCredentials, TooManyAttempts
from workforce.models import Identity
from workforce.schemas import AuthResponse, IdentityRead, LoginRequest, MeResponse, RegisterRequest
from workforce.security import (
    RequestContext,
    authenticate,
    client_ip,
    create_access_token,
    ensure_login_attempt_allowed,
    get_request_context,
    normalize_email,
    register_login_failure,
    register_login_success,
)
from workforce.services.employees import register_identity

router = APIRouter(prefix="/auth", tags=["auth"])


def _request_meta(request: Request) -> dict[str, str | None]:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    identity = register_identity(
        db,
        email=payload.email,
        password=payload.password,
        request_meta=_request_meta(request),
    )
    request.state.actor_id = str(identity.id)
    access_token, expires_in = create_access_token(identity.id)
    return AuthResponse(
        access_token=access_token,
        expires_in=expires_in,
        identity=IdentityRead.model_validate(identity),
    )


@router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    meta = _request_meta(request)
    email = normalize_email(payload.email)
    ip = meta["ip"]
    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except TooManyAttempts:
            record_audit(
                db,
                actor_id=None,
                action="login_blocked",
                resource_type="identity",
                request_meta={**meta, "email": email},
            )
            raise

    try:
        identity = authenticate(db, payload.email, payload.password)
    except InvalidCredentials:
        if ip:
            register_login_failure(ip)
        record_audit(
            db,
            actor_id=None,
            action="login_failed",
            resource_type="identity",
            request_meta={**meta, "email": email},
        )
        raise

    if ip:
        register_login_success(ip)
    request.state.actor_id = str(identity.id)
    access_token, expires_in = create_access_token(identity.id)
    record_audit(
        db,
        actor_id=identity.id,
        action="login",
        resource_type="identity",
        resource_id=identity.id,
        request_meta=meta,
    )
    return AuthResponse(
        access_token=access_token,
        expires_in=expires_in,
        identity=IdentityRead.model_validate(identity),
    )


@router.get("/me", response_model=MeResponse)
def me(
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> MeResponse:
    identity = db.get(Identity, context.identity_id)
    return MeResponse(identity=IdentityRead.model_validate(identity), employee_id=context.employee_id)
