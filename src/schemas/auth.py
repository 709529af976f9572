"""Authenticated user schema."""

from uuid import UUID

from pydantic import BaseModel, Field


class UserContext(BaseModel):
    """The user a verified bearer token belongs to.

    ``role`` is the platform role from ``app_metadata``; ``"admin"`` unlocks
    operator endpoints such as reverse shipment retries.
    """

    user_id: UUID = Field(description="User id from the JWT sub claim")
    email: str | None = Field(default=None)
    role: str | None = Field(default=None, description="Platform role, e.g. 'admin'")
