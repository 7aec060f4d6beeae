"""Core GraphQL schema for authentication."""
from typing import Annotated

import strawberry
from django.contrib.auth import authenticate
from strawberry.types import Info

from apps.core.auth import REFRESH, create_access_token, create_refresh_token, get_user_from_token
from apps.core.context import Context


@strawberry.type
class AuthPayload:
    """Authentication response with tokens."""

    access_token: str
    refresh_token: str
    user_id: int
    username: str


@strawberry.type
class AuthError:
    """Authentication error."""

    message: str


AuthResult = Annotated[AuthPayload | AuthError, strawberry.union("AuthResult")]


@strawberry.type
class CurrentUser:
    """Current authenticated user info."""

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    is_staff: bool
    permissions: list[str] | None = None


def _auth_payload(user) -> AuthPayload:
    return AuthPayload(
        access_token=create_access_token(user),
        refresh_token=create_refresh_token(user),
        user_id=user.id,
        username=user.get_username(),
    )


@strawberry.type
class CoreQuery:
    """Core queries including auth status."""

    @strawberry.field
    def me(self, info: Info[Context, None]) -> CurrentUser | None:
        """Get current authenticated user."""
        user = info.context.user
        if user is None:
            return None

        return CurrentUser(
            id=user.id,
            username=user.get_username(),
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            is_staff=user.is_staff,
            permissions=sorted(user.get_all_permissions()),
        )


@strawberry.type
class AuthMutation:
    """Authentication mutations."""

    @strawberry.mutation
    def login(self, username: str, password: str) -> AuthResult:
        """Authenticate user and return tokens."""
        user = authenticate(username=username, password=password)

        if user is None or not user.is_active:
            return AuthError(message="Invalid username or password")

        return _auth_payload(user)

    @strawberry.mutation
    def refresh_token(self, refresh_token: str) -> AuthResult:
        """Get new access token using refresh token."""
        user = get_user_from_token(refresh_token, REFRESH)
        if user is None:
            return AuthError(message="Invalid or expired refresh token")

        return _auth_payload(user)
