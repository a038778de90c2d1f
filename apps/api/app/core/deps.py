"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

from fastapi import Depends, Request
from fastapi.requests import HTTPConnection
from sqlalchemy.orm import Session

from app.core.exceptions import AuthenticationError, AuthorizationError
from app.core.permissions import ensure_role
from app.core.security import decode_session_token
from app.core.websocket import ConversationEventHub
from app.db.enums import Role
from app.db.models import User
from app.db.session import SessionLocal
from app.schemas.auth import Principal, TokenPayload


# Cookie and header names
COOKIE_NAME = "crm_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory for operations that open their own sessions (broadcast)."""
    return SessionLocal


def principal_from_token(token: str | None) -> Principal:
    """
    Build the request principal from a session JWT.

    Raises:
        AuthenticationError: missing, invalid or expired token, or unknown role
    """
    if not token:
        raise AuthenticationError()
    try:
        payload = TokenPayload.model_validate(decode_session_token(token))
    except Exception:
        raise AuthenticationError("Invalid session")

    if not Role.has_value(payload.role):
        raise AuthenticationError(f"Unknown role '{payload.role}'")

    return Principal(id=payload.sub, role=Role(payload.role), locale=payload.locale)


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def ensure_active_user(db: Session, principal: Principal) -> None:
    """Reject tokens of users that were deleted or deactivated after login."""
    is_active = db.query(User.is_active).filter(User.id == principal.id).scalar()
    if not is_active:
        raise AuthenticationError("Account is inactive")


def get_current_principal(request: Request, db: Session = Depends(get_db)) -> Principal:
    """
    Get the authenticated principal from the session cookie, falling back to
    an ``Authorization: Bearer`` header for non-browser clients.

    This is the PRIMARY auth dependency for every endpoint.
    """
    principal = principal_from_token(request.cookies.get(COOKIE_NAME) or _bearer_token(request))
    ensure_active_user(db, principal)
    return principal


def require_roles(allowed_roles: list):
    """
    Dependency factory for role-based authorization.

    Usage:
        @router.post("/admin", dependencies=[Depends(require_roles([Role.SYSTEM_ADMIN]))])
    """
    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        ensure_role(principal.role, allowed_roles)
        return principal
    return dependency


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PUT, PATCH, DELETE).
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise AuthorizationError(
            f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )


def get_event_hub(connection: HTTPConnection) -> ConversationEventHub:
    """Event hub constructed by the app lifespan."""
    return connection.app.state.event_hub
