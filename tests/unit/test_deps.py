"""Unit tests for FastAPI dependency injection functions."""

from collections.abc import Callable
from uuid import UUID

import pytest
from fastapi import HTTPException

from src.api.deps import get_current_user, require_admin
from src.schemas.auth import UserContext
from tests.fakes import CUSTOMER_ID


class TestGetCurrentUser:
    """Tests for get_current_user dependency."""

    @pytest.mark.asyncio
    async def test_extracts_user_context_correctly(self, make_token: Callable[..., str]) -> None:
        """Test get_current_user extracts UserContext from a valid token."""
        user = await get_current_user(f"Bearer {make_token(CUSTOMER_ID)}")

        assert user.user_id == UUID(CUSTOMER_ID)
        assert user.email == "user@example.com"

    @pytest.mark.asyncio
    async def test_missing_header(self) -> None:
        """Test get_current_user raises 401 without a header."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authorization header required"

    @pytest.mark.asyncio
    async def test_wrong_scheme(self, make_token: Callable[..., str]) -> None:
        """Test get_current_user rejects non-Bearer schemes."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(f"Basic {make_token(CUSTOMER_ID)}")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_expired_token(self, make_token: Callable[..., str]) -> None:
        """Test get_current_user reports expired tokens."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(f"Bearer {make_token(CUSTOMER_ID, expires_in=-60)}")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"


class TestRequireAdmin:
    """Tests for require_admin dependency."""

    @pytest.mark.asyncio
    async def test_admin_passes(self) -> None:
        """Test that a user with the admin role is returned."""
        user = UserContext(user_id=UUID(CUSTOMER_ID), role="admin")

        assert await require_admin(user) is user

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [None, "authenticated", "shopkeeper"])
    async def test_other_roles_forbidden(self, role: str | None) -> None:
        """Test that non-admin users get 403."""
        user = UserContext(user_id=UUID(CUSTOMER_ID), role=role)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin(user)

        assert exc_info.value.status_code == 403
