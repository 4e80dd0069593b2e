from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy import select
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.errors import DependencyError, Forbidden, InvalidCredentials, TooManyAttempts, Unauthenticated
from workforce.models import Employee, Identity, Role
from workforce.settings import get_settings, is_local_environment

logger = logging.getLogger("workforce.security")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_DEVELOPMENT_JWT_SECRET = "workforce-development-secret"
# Verified against when the login is unknown so both failure paths cost one hash.
_DUMMY_PASSWORD_HASH = pwd_context.hash("workforce-dummy-password")

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)

ALL_ROLES: frozenset[Role] = frozenset(Role)
MANAGEMENT_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.HR, Role.SENIOR_MANAGER})
HR_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.HR})
ADMIN_ONLY: frozenset[Role] = frozenset({Role.ADMIN})


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Identity and role resolved once for the current request and passed into domain calls."""

    identity_id: int
    role: Role
    employee_id: int | None = None
    request_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def meta(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "ip": self.ip,
            "user_agent": self.user_agent,
            **self.extra,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_login_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        if len(_FAILED_ATTEMPTS.get(key, ())) >= _MAX_ATTEMPTS:
            raise TooManyAttempts()


def register_login_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_login_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def _signing_secret() -> str:
    secret = (get_settings().jwt_secret or "").strip()
    if secret:
        return secret
    if is_local_environment():
        return _DEVELOPMENT_JWT_SECRET
    logger.error("jwt_secret_missing")
    raise DependencyError()


def create_access_token(identity_id: int) -> tuple[str, int]:
    """Session binding: the token carries the identity id only, never the role."""
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": str(identity_id),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "typ": "access",
    }
    token = jwt.encode(claims, _signing_secret(), algorithm="HS256")
    return token, settings.access_token_minutes * 60


def decode_session_token(token: str) -> int:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            _signing_secret(),
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise Unauthenticated(message="Session token is invalid.") from exc

    if payload.get("typ") != "access":
        raise Unauthenticated(message="Session token type is invalid.")
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise Unauthenticated(message="Session subject is invalid.") from exc


def normalize_email(email: str) -> str:
    return email.strip().lower()


def authenticate(db: Session, email: str, password: str) -> Identity:
    identity = db.scalar(select(Identity).where(Identity.email == normalize_email(email)))
    if identity is None:
        verify_password(password, _DUMMY_PASSWORD_HASH)
        raise InvalidCredentials()
    if not verify_password(password, identity.password_hash):
        raise InvalidCredentials()

    identity.last_login_at = _utcnow()
    db.commit()
    return identity


def authorize(context: RequestContext | None, allowed_roles: Iterable[Role]) -> RequestContext:
    if context is None:
        raise Unauthenticated()
    if context.role not in set(allowed_roles):
        raise Forbidden()
    return context


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def resolve_context(db: Session, identity_id: int, request: Request | None = None) -> RequestContext:
    identity = db.get(Identity, identity_id)
    if identity is None:
        raise Unauthenticated(message="Session identity no longer exists.")
    employee_id = db.scalar(select(Employee.id).where(Employee.identity_id == identity.id))

    if request is None:
        return RequestContext(identity_id=identity.id, role=identity.role, employee_id=employee_id)

    request.state.actor_id = str(identity.id)
    return RequestContext(
        identity_id=identity.id,
        role=identity.role,
        employee_id=employee_id,
        request_id=getattr(request.state, "request_id", None),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


def get_request_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> RequestContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated(message="Missing bearer token.")
    identity_id = decode_session_token(credentials.credentials)
    return resolve_context(db, identity_id, request)


def require_roles(*roles: Role) -> Callable[..., RequestContext]:
    allowed = frozenset(roles) if roles else ALL_ROLES

    def _dependency(context: RequestContext = Depends(get_request_context)) -> RequestContext:
        return authorize(context, allowed)

    return _dependency
