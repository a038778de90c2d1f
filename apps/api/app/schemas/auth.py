"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from app.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: UUID  # user_id
    role: str
    locale: str = "ja"


class Principal(BaseModel):
    """
    Authenticated actor for a request.

    Supplied by get_current_principal and trusted as given by services.
    """
    id: UUID
    role: Role  # Validated enum
    locale: str = "ja"
