"""Wires the session, table controller and popup workflow around one API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .api_client import DashboardApiClient
from .approval import AcknowledgementStore, ApprovalWorkflow
from .config import Settings, get_settings
from .exceptions import ApiError
from .models import WorkOrder
from .notifications import Notifier
from .query import FilterSortController, QueryState, WorkOrderQueryService
from .session import DASHBOARD_ROUTE, RouteAction, SessionStore
from .storage import CookieStore, LocalStorage
from .summaries import SummaryPanel
from .table import WorkOrderTableView

logger = logging.getLogger(__name__)


class Dashboard:
    """
    One signed-in dashboard session.

    Everything shares a single ``Notifier`` and a single acknowledgement
    store, so a popup reopened within the session sees the same checkbox
    table the previous one left behind.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        local_storage: Optional[LocalStorage] = None,
        cookies: Optional[CookieStore] = None,
    ):
        self.settings = settings or get_settings()
        state_dir = self.settings.resolved_state_dir()
        self.notifier = Notifier()
        self.local_storage = local_storage or LocalStorage(state_dir / "local_storage.json")
        self.cookies = cookies or CookieStore(state_dir / "cookies.json")
        cookie_name = self.settings.auth_cookie_name
        self.client = DashboardApiClient(
            self.settings.api_base_url,
            token_provider=lambda: self.cookies.get(cookie_name),
            timeout=self.settings.request_timeout,
            transport=transport,
        )
        self.session = SessionStore(
            self.client, self.cookies, cookie_name=cookie_name, notifier=self.notifier
        )
        self.query_service = WorkOrderQueryService(self.client)
        self.controller = FilterSortController(
            self.query_service,
            self.local_storage,
            page_size=self.settings.page_size,
            debounce_seconds=self.settings.search_debounce_seconds,
            notifier=self.notifier,
        )
        self.acknowledgements = AcknowledgementStore()
        self.panel = SummaryPanel(
            self.client,
            notifier=self.notifier,
            user_id=self._user_id,
            download_dir=self.settings.resolved_download_dir(),
        )
        self.workflow = ApprovalWorkflow(
            self.client,
            self.acknowledgements,
            self.panel,
            notifier=self.notifier,
            on_status_change=self.controller.set_optimistic_status,
        )
        self.table = WorkOrderTableView(self.controller, on_select=self._open_selected)

    def _open_selected(self, record: WorkOrder) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(self.workflow.open(record))

    def _user_id(self) -> Optional[str]:
        user = self.session.user
        if user is None:
            return None
        return user.id or user.username or user.email

    async def start(self, location: str = DASHBOARD_ROUTE) -> bool:
        """Restore the session and, when signed in, load the first page."""
        await self.session.restore()
        decision = self.session.guard(location)
        if decision.action is not RouteAction.RENDER:
            return False
        self.controller.restore()
        self.controller.refresh()
        await self.controller.settle()
        return True

    async def find_work_order(self, work_order_id: str) -> Optional[WorkOrder]:
        """Look on the current page first, then ask the server by id."""
        record = self.controller.find(work_order_id)
        if record is not None:
            return record
        lookup = QueryState(
            page_size=self.settings.page_size,
            search_text=work_order_id,
            debounced_search_text=work_order_id,
        )
        try:
            page = await self.query_service.fetch(lookup)
        except ApiError as exc:
            logger.warning("Lookup of %s failed: %s", work_order_id, exc)
            self.notifier.error(f"Failed to load work order {work_order_id}")
            return None
        for candidate in page.records:
            if candidate.work_order_id == work_order_id:
                return candidate
        return None

    async def open_work_order(self, work_order_id: str) -> Optional[ApprovalWorkflow]:
        record = await self.find_work_order(work_order_id)
        if record is None:
            self.notifier.error(f"Work order {work_order_id} was not found")
            return None
        await self.workflow.open(record)
        return self.workflow

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "Dashboard":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
