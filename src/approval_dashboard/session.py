"""Session store: bearer token, current user and route guarding."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .api_client import DashboardApiClient
from .exceptions import (
    ApiError,
    InputValidationError,
    InvalidCredentialsError,
)
from .models import UserProfile
from .notifications import Notifier
from .storage import CookieStore

logger = logging.getLogger(__name__)

SIGN_IN_ROUTE = "/"
DASHBOARD_ROUTE = "/dashboard"
FORGOT_PASSWORD_ROUTE = "/forgot-password"

INVALID_CREDENTIALS_MESSAGE = "Invalid username or password. Please try again."
SERVER_ERROR_MESSAGE = "Unable to sign in right now. Check your connection and try again."
INVALID_RESET_LINK_MESSAGE = "Invalid reset link. Please request a new password reset."
TOKEN_COOKIE_DAYS = 7

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PASSWORD_MIN_LENGTH = 8


def validate_email(email: str) -> str:
    value = (email or "").strip()
    if not _EMAIL_PATTERN.match(value):
        raise InputValidationError("Please enter a valid email address")
    return value


def validate_new_password(password: str, confirm: Optional[str] = None) -> str:
    """Apply the password policy used by the reset and change forms."""
    if len(password or "") < _PASSWORD_MIN_LENGTH:
        raise InputValidationError("Password must be at least 8 characters")
    if not (
        re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
        and re.search(r"\d", password)
    ):
        raise InputValidationError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    if confirm is not None and confirm != password:
        raise InputValidationError("Passwords don't match")
    return password


@dataclass
class SessionState:
    token: Optional[str] = None
    user: Optional[UserProfile] = None
    is_authenticated: bool = False
    is_loading: bool = True


@dataclass
class LoginResult:
    ok: bool
    error: Optional[str] = None
    redirect_to: Optional[str] = None


class RouteAction(str, Enum):
    RENDER = "render"
    WAIT = "wait"
    REDIRECT = "redirect"


@dataclass
class RouteDecision:
    action: RouteAction
    target: Optional[str] = None
    from_location: Optional[str] = None


class SessionStore:
    """Holds who is signed in; the token itself lives in the cookie store."""

    def __init__(
        self,
        client: DashboardApiClient,
        cookies: CookieStore,
        *,
        cookie_name: str = "auth_token",
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.cookies = cookies
        self.cookie_name = cookie_name
        self.notifier = notifier or Notifier()
        self.state = SessionState()
        self._return_to: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self.state.token

    @property
    def user(self) -> Optional[UserProfile]:
        return self.state.user

    @property
    def is_authenticated(self) -> bool:
        return self.state.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    def _signed_out(self) -> None:
        self.cookies.remove(self.cookie_name)
        self.state.token = None
        self.state.user = None
        self.state.is_authenticated = False
        self.state.is_loading = False

    async def restore(self) -> bool:
        """Validate a stored token on start-up; a bad token silently signs out."""
        self.state.is_loading = True
        try:
            token = self.cookies.get(self.cookie_name)
            if not token:
                self._signed_out()
                return False
            self.state.token = token
            try:
                user = await self.client.current_user()
            except ApiError as exc:
                logger.info("Discarding stored token: %s", exc)
                self._signed_out()
                return False
            self.state.user = user
            self.state.is_authenticated = True
            return True
        finally:
            self.state.is_loading = False

    async def login(self, identifier: str, password: str) -> LoginResult:
        """
        Sign in with a username or email.

        The session only becomes authenticated after both the token exchange
        and the profile fetch succeed; otherwise nothing is kept.
        """
        if not (identifier or "").strip() or not password:
            self._signed_out()
            return LoginResult(ok=False, error=INVALID_CREDENTIALS_MESSAGE)

        try:
            token = await self.client.request_token(identifier.strip(), password)
        except InvalidCredentialsError:
            self._signed_out()
            self.notifier.error(INVALID_CREDENTIALS_MESSAGE)
            return LoginResult(ok=False, error=INVALID_CREDENTIALS_MESSAGE)
        except ApiError as exc:
            logger.warning("Sign-in failed: %s", exc)
            self._signed_out()
            self.notifier.error(SERVER_ERROR_MESSAGE)
            return LoginResult(ok=False, error=SERVER_ERROR_MESSAGE)

        self.cookies.set(self.cookie_name, token, expires_days=TOKEN_COOKIE_DAYS)
        self.state.token = token
        try:
            user = await self.client.current_user()
        except ApiError as exc:
            logger.warning("Profile fetch after sign-in failed: %s", exc)
            self._signed_out()
            self.notifier.error(SERVER_ERROR_MESSAGE)
            return LoginResult(ok=False, error=SERVER_ERROR_MESSAGE)

        self.state.user = user
        self.state.is_authenticated = True
        self.state.is_loading = False
        redirect_to = self._return_to or DASHBOARD_ROUTE
        self._return_to = None
        self.notifier.success("Signed in successfully!")
        return LoginResult(ok=True, redirect_to=redirect_to)

    def logout(self) -> str:
        """Drop the token and user; always lands on the sign-in route."""
        self._signed_out()
        self._return_to = None
        return SIGN_IN_ROUTE

    async def refresh_profile(self) -> Optional[UserProfile]:
        try:
            user = await self.client.current_user()
        except ApiError as exc:
            logger.warning("Profile refresh failed: %s", exc)
            if getattr(exc, "status_code", None) in (401, 403):
                self.logout()
            return self.state.user
        self.state.user = user
        return user

    def guard(self, location: str) -> RouteDecision:
        """Decide what a protected view does for the current session."""
        if self.state.is_loading:
            return RouteDecision(RouteAction.WAIT)
        if not self.state.is_authenticated:
            self._return_to = location
            return RouteDecision(
                RouteAction.REDIRECT, target=SIGN_IN_ROUTE, from_location=location
            )
        return RouteDecision(RouteAction.RENDER)

    # --- Password flows ---------------------------------------------------

    async def forgot_password(self, email: str) -> bool:
        address = validate_email(email)
        try:
            await self.client.forgot_password(address)
        except ApiError as exc:
            logger.warning("Password reset request failed: %s", exc)
            self.notifier.error("Failed to send reset email. Please try again.")
            return False
        self.notifier.success("Password reset email sent. Please check your inbox.")
        return True

    async def reset_password(
        self, token: Optional[str], new_password: str, confirm_password: str
    ) -> bool:
        if not token:
            raise InputValidationError(INVALID_RESET_LINK_MESSAGE)
        validate_new_password(new_password, confirm_password)
        try:
            await self.client.reset_password(token, new_password)
        except ApiError as exc:
            logger.warning("Password reset failed: %s", exc)
            self.notifier.error("Failed to reset password")
            return False
        self.notifier.success("Your password has been updated. You can now sign in.")
        return True

    async def change_password(self, old_password: str, new_password: str) -> bool:
        validate_new_password(new_password)
        try:
            await self.client.change_password(old_password, new_password)
        except ApiError as exc:
            logger.warning("Password change failed: %s", exc)
            self.notifier.error("Failed to change password")
            return False
        self.notifier.success("Password changed.")
        return True
