"""Errors raised by the API client, session and workflow controllers."""

from __future__ import annotations

from typing import Any


class DashboardError(Exception):
    """Base class for every error the dashboard raises on purpose."""


class ApiError(DashboardError):
    """
    A call to the work-order API failed.

    Carries enough of the response to log it and to pick the right
    user-facing message without re-reading the response.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str | None = None,
        detail: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.detail = detail


class NetworkError(ApiError):
    """The request never produced a response (timeout, refused connection)."""


class NotFoundError(ApiError):
    """The API answered 404."""


class AuthenticationError(ApiError):
    """The bearer token is missing, expired or was refused."""


class InvalidCredentialsError(AuthenticationError):
    """The username/password pair was rejected at sign-in."""


class InputValidationError(DashboardError):
    """A form value failed client-side validation before any request was sent."""


class WorkflowError(DashboardError):
    """An approval action was requested in a state that does not allow it."""
