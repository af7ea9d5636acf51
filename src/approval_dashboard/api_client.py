"""Async client for the work-order REST API and its auth endpoints."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import httpx
from pydantic import ValidationError

from .exceptions import (
    ApiError,
    AuthenticationError,
    InvalidCredentialsError,
    NetworkError,
    NotFoundError,
)
from .models import (
    ApprovalDetails,
    ApprovalResult,
    ApprovalStatus,
    FeedbackRecord,
    FilterableColumn,
    FilterValue,
    UserProfile,
    WorkOrderPage,
)
from .schema import WORK_ORDERS_PAGE, validate_payload

logger = logging.getLogger(__name__)

QueryParams = Sequence[Tuple[str, str]] | Mapping[str, str]
TokenProvider = Callable[[], Optional[str]]
T = TypeVar("T")


def _parse(endpoint: str, parse: Callable[[Any], T], payload: Any) -> T:
    """Build a model from a decoded body; a shape mismatch is an API failure."""
    try:
        return parse(payload)
    except (ValidationError, TypeError, ValueError) as exc:
        logger.warning("Unexpected payload from %s: %s", endpoint, exc)
        raise ApiError(
            f"{endpoint} returned an unexpected payload", endpoint=endpoint, detail=str(exc)
        ) from exc


def _parse_list(endpoint: str, parse: Callable[[Any], T], payload: Any) -> List[T]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ApiError(
            f"{endpoint} returned an unexpected payload", endpoint=endpoint, detail=payload
        )
    return [_parse(endpoint, parse, item) for item in payload]


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


class DashboardApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` that knows the API's endpoints.

    The bearer token is read from ``token_provider`` on every request so a
    sign-in or sign-out elsewhere takes effect immediately.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider or (lambda: None)
        self._http = httpx.AsyncClient(
            base_url=self.base_url + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "DashboardApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # --- Plumbing ---------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if not token:
            raise AuthenticationError("No authentication token found")
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if auth:
            headers.update(self._auth_headers())
        endpoint = f"{method} /{path.lstrip('/')}"
        try:
            response = await self._http.request(
                method, path.lstrip("/"), headers=headers, **kwargs
            )
        except httpx.RequestError as exc:
            logger.warning("Request failed (%s): %s", endpoint, exc)
            raise NetworkError(f"Could not reach the server: {exc}", endpoint=endpoint) from exc

        logger.debug("%s -> %s", endpoint, response.status_code)
        if response.is_success:
            return response

        detail = _error_detail(response)
        code = response.status_code
        message = f"{endpoint} returned HTTP {code}"
        if code == 404:
            raise NotFoundError(message, status_code=code, endpoint=endpoint, detail=detail)
        if code in (401, 403):
            raise AuthenticationError(message, status_code=code, endpoint=endpoint, detail=detail)
        raise ApiError(message, status_code=code, endpoint=endpoint, detail=detail)

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"{method} /{path.lstrip('/')} returned a non-JSON body",
                status_code=response.status_code,
                endpoint=path,
            ) from exc

    # --- Auth -------------------------------------------------------------

    async def request_token(self, username: str, password: str) -> str:
        """Exchange credentials for a bearer token (form-encoded, OAuth2 password flow)."""
        try:
            body = await self._json(
                "POST",
                "/auth/token",
                auth=False,
                data={"username": username, "password": password},
            )
        except AuthenticationError as exc:
            raise InvalidCredentialsError(
                "Invalid credentials",
                status_code=exc.status_code,
                endpoint=exc.endpoint,
                detail=exc.detail,
            ) from exc
        except ApiError as exc:
            if exc.status_code == 400:
                raise InvalidCredentialsError(
                    "Invalid credentials",
                    status_code=exc.status_code,
                    endpoint=exc.endpoint,
                    detail=exc.detail,
                ) from exc
            raise
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise ApiError("Token response did not include an access_token", endpoint="/auth/token")
        return str(token)

    async def current_user(self) -> UserProfile:
        payload = await self._json("GET", "/auth/users/me")
        return _parse("GET /auth/users/me", UserProfile.model_validate, payload)

    async def forgot_password(self, email: str) -> Dict[str, Any]:
        return await self._json("POST", "/auth/forgot-password", auth=False, json={"email": email})

    async def reset_password(self, token: str, new_password: str) -> Dict[str, Any]:
        return await self._json(
            "POST",
            "/auth/reset-password",
            auth=False,
            json={"token": token, "newPassword": new_password},
        )

    async def change_password(self, old_password: str, new_password: str) -> Dict[str, Any]:
        return await self._json(
            "POST",
            "/auth/change-password",
            json={"oldPassword": old_password, "newPassword": new_password},
        )

    # --- Work orders ------------------------------------------------------

    async def list_work_orders(self, params: QueryParams) -> WorkOrderPage:
        payload = await self._json("GET", "/work_orders", params=params)
        try:
            validate_payload(WORK_ORDERS_PAGE, payload)
        except ValueError as exc:
            raise ApiError(str(exc), endpoint="GET /work_orders") from exc
        return _parse("GET /work_orders", WorkOrderPage.from_api, payload)

    async def filterable_columns(self) -> List[FilterableColumn]:
        payload = await self._json("GET", "/work_orders/columns/filterable")
        return _parse_list(
            "GET /work_orders/columns/filterable", FilterableColumn.model_validate, payload
        )

    async def filter_values(self, field: str) -> List[FilterValue]:
        payload = await self._json("GET", f"/work_orders/filter_values/{field}")
        return _parse_list(
            f"GET /work_orders/filter_values/{field}", FilterValue.model_validate, payload
        )

    # --- Approval ---------------------------------------------------------

    async def submit_approval(self, work_order_id: str, decision: ApprovalStatus) -> ApprovalResult:
        payload = await self._json(
            "POST",
            "/approval/",
            json={"workorder_id": work_order_id, "approval_status": decision.value},
        )
        return _parse("POST /approval/", ApprovalResult.model_validate, payload)

    async def approval_details(self, work_order_id: str) -> ApprovalDetails:
        payload = await self._json("GET", f"/approval/{work_order_id}")
        return _parse(f"GET /approval/{work_order_id}", ApprovalDetails.model_validate, payload)

    # --- Summaries and feedback -------------------------------------------

    async def summaries(self, work_order_id: str) -> Any:
        """Raw summary payload; shape checks belong to the caller."""
        return await self._json("GET", f"/summaries/{work_order_id}")

    async def feedback(self, work_order_id: str) -> Optional[FeedbackRecord]:
        try:
            payload = await self._json("GET", f"/feedback/{work_order_id}")
        except NotFoundError:
            return None
        if not payload:
            return None
        return _parse(f"GET /feedback/{work_order_id}", FeedbackRecord.model_validate, payload)

    async def submit_feedback(self, payload: Dict[str, Any]) -> Any:
        return await self._json("POST", "/feedback", json=payload)

    # --- Files ------------------------------------------------------------

    async def download_url(self, file_name: str) -> str:
        body = await self._json("POST", "/blob/download", json={"file_name": file_name})
        url = body.get("download_url") if isinstance(body, dict) else None
        if not url:
            raise ApiError("Download response did not include a download_url", endpoint="/blob/download")
        return str(url)

    async def fetch_file(self, url: str) -> bytes:
        """Fetch a signed URL; the signature authorises it, so no bearer header."""
        try:
            response = await self._http.get(url)
        except httpx.RequestError as exc:
            raise NetworkError(f"Download failed: {exc}", endpoint=url) from exc
        if not response.is_success:
            raise ApiError(
                f"Download returned HTTP {response.status_code}",
                status_code=response.status_code,
                endpoint=url,
            )
        return response.content
