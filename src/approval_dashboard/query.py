"""Work-order query state, request building, and the filter/sort controller.

The controller owns a single ``QueryState``. Every mutation goes through one of
its setters, which persist the new state to local storage and schedule exactly
one fetch. Free-text search is debounced; only the debounced value reaches the
server. Each fetch is tagged with a sequence number and the previous in-flight
fetch is cancelled, so a slow stale response never overwrites a fresher one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .api_client import DashboardApiClient
from .exceptions import ApiError
from .models import FilterableColumn, FilterValue, WorkOrder, WorkOrderPage
from .notifications import Notifier
from .storage import LocalStorage

logger = logging.getLogger(__name__)

PAGE_KEY = "currentPage"
FILTERS_KEY = "activeFilters"
SEARCH_KEY = "searchText"
SORT_KEY = "sortConfig"

LOAD_FAILED_MESSAGE = "Failed to load work orders"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class QueryState:
    page: int = 1
    page_size: int = 50
    search_text: str = ""
    debounced_search_text: str = ""
    active_filters: Dict[str, str] = field(default_factory=dict)
    sort_field: Optional[str] = None
    sort_direction: SortDirection = SortDirection.ASC
    has_user_sorted: bool = False

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def snapshot(self) -> "QueryState":
        return replace(self, active_filters=dict(self.active_filters))


def build_query_params(state: QueryState) -> List[Tuple[str, str]]:
    """Translate query state into the listing endpoint's query string."""
    params: List[Tuple[str, str]] = [
        ("skip", str(state.offset)),
        ("limit", str(state.page_size)),
    ]
    search = state.debounced_search_text.strip()
    if search:
        params.append(("search", search))
    for column, value in sorted(state.active_filters.items()):
        if value is None or str(value).strip() == "":
            continue
        params.append((f"filter_{column}", str(value)))
    # Sorting is only ever sent once the user asked for it.
    if state.has_user_sorted and state.sort_field:
        params.append(("sort_by", state.sort_field))
        params.append(("sort_direction", state.sort_direction.value))
    return params


def page_count(total_count: int, page_size: int) -> int:
    if page_size <= 0 or total_count <= 0:
        return 0
    return math.ceil(total_count / page_size)


def clamp_page(page: int, total_count: int, page_size: int) -> int:
    """Pages past the end fall back to the first page."""
    if page > max(page_count(total_count, page_size), 1):
        return 1
    return max(page, 1)


class WorkOrderQueryService:
    """Runs listing and filter-metadata requests for a given query state."""

    def __init__(self, client: DashboardApiClient):
        self.client = client

    async def fetch(self, state: QueryState) -> WorkOrderPage:
        return await self.client.list_work_orders(build_query_params(state))

    async def filterable_columns(self) -> List[FilterableColumn]:
        return await self.client.filterable_columns()

    async def filter_values(self, column: str) -> List[FilterValue]:
        return await self.client.filter_values(column)


class Debouncer:
    """Run ``callback`` once input has been quiet for ``delay`` seconds."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire())

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        self._task = None
        self.callback()

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise


class FilterSortController:
    """Owns the table's query state and the rows last loaded for it."""

    def __init__(
        self,
        service: WorkOrderQueryService,
        storage: LocalStorage,
        *,
        page_size: int = 50,
        debounce_seconds: float = 0.4,
        notifier: Optional[Notifier] = None,
    ):
        self.service = service
        self.storage = storage
        self.notifier = notifier or Notifier()
        self.state = QueryState(page_size=page_size)
        self.records: List[WorkOrder] = []
        self.total_count = 0
        self.is_loading = False
        self.columns: List[FilterableColumn] = []
        self.filter_options: Dict[str, List[FilterValue]] = {}
        self._overlay: Dict[str, str] = {}
        self._sequence = 0
        self._fetch_task: Optional[asyncio.Task] = None
        self._debouncer = Debouncer(debounce_seconds, self._apply_debounced_search)

    # --- Persistence ------------------------------------------------------

    def restore(self) -> None:
        """Load filters, search and page from storage; sort always starts unset."""
        raw_filters = self.storage.get_item(FILTERS_KEY)
        if raw_filters:
            try:
                filters = json.loads(raw_filters)
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable %s in local storage", FILTERS_KEY)
                filters = {}
            if isinstance(filters, dict):
                self.state.active_filters = {
                    str(k): str(v) for k, v in filters.items() if v not in (None, "")
                }
        search = self.storage.get_item(SEARCH_KEY)
        if search:
            self.state.search_text = search
            self.state.debounced_search_text = search
        raw_page = self.storage.get_item(PAGE_KEY)
        if raw_page:
            try:
                self.state.page = max(int(raw_page), 1)
            except ValueError:
                self.state.page = 1

    def _persist(self) -> None:
        self.storage.set_item(PAGE_KEY, str(self.state.page))
        self.storage.set_item(FILTERS_KEY, json.dumps(self.state.active_filters))
        self.storage.set_item(SEARCH_KEY, self.state.search_text)
        if self.state.sort_field:
            self.storage.set_item(
                SORT_KEY,
                json.dumps(
                    {
                        "field": self.state.sort_field,
                        "direction": self.state.sort_direction.value,
                    }
                ),
            )

    # --- Setters ----------------------------------------------------------

    def set_search_text(self, text: str) -> None:
        """Update the visible search box now; the query follows after the quiet period."""
        self.state.search_text = text
        self._persist()
        self._debouncer.trigger()

    def _apply_debounced_search(self) -> None:
        if self.state.debounced_search_text == self.state.search_text:
            return
        self.state.debounced_search_text = self.state.search_text
        self.state.page = 1
        self._persist()
        self.refresh()

    def set_filter(self, column: str, value: Optional[str]) -> None:
        if value is None or str(value).strip() == "":
            self.state.active_filters.pop(column, None)
        else:
            self.state.active_filters[column] = str(value)
        self.state.page = 1
        self._persist()
        self.refresh()

    def clear_filter(self, column: str) -> None:
        self.set_filter(column, None)

    def toggle_sort(self, column: str) -> None:
        if self.state.sort_field == column:
            self.state.sort_direction = (
                SortDirection.DESC
                if self.state.sort_direction == SortDirection.ASC
                else SortDirection.ASC
            )
        else:
            self.state.sort_field = column
            self.state.sort_direction = SortDirection.ASC
        self.state.has_user_sorted = True
        self.state.page = 1
        self._persist()
        self.refresh()

    def set_page(self, page: int) -> None:
        self.state.page = max(int(page), 1)
        self._persist()
        self.refresh()

    def clear_all(self) -> None:
        self._debouncer.cancel()
        self.state.search_text = ""
        self.state.debounced_search_text = ""
        self.state.active_filters = {}
        self.state.sort_field = None
        self.state.sort_direction = SortDirection.ASC
        self.state.has_user_sorted = False
        self.state.page = 1
        for key in (FILTERS_KEY, SEARCH_KEY, SORT_KEY):
            self.storage.remove_item(key)
        self.storage.set_item(PAGE_KEY, "1")
        self.refresh()

    # --- Fetching ---------------------------------------------------------

    @property
    def page_count(self) -> int:
        return page_count(self.total_count, self.state.page_size)

    @property
    def rows(self) -> List[WorkOrder]:
        """Server rows with any optimistic status changes laid over them."""
        if not self._overlay:
            return list(self.records)
        merged = []
        for record in self.records:
            status = self._overlay.get(record.work_order_id)
            if status is not None:
                record = record.model_copy(update={"approval_status": status})
            merged.append(record)
        return merged

    def set_optimistic_status(self, work_order_id: str, status: str) -> None:
        self._overlay[work_order_id] = status

    def find(self, work_order_id: str) -> Optional[WorkOrder]:
        for record in self.rows:
            if record.work_order_id == work_order_id:
                return record
        return None

    def refresh(self) -> asyncio.Task:
        """Start a fetch for the current state, superseding any fetch in flight."""
        self._sequence += 1
        previous = self._fetch_task
        if (
            previous is not None
            and not previous.done()
            and previous is not asyncio.current_task()
        ):
            previous.cancel()
        self.is_loading = True
        self._fetch_task = asyncio.get_running_loop().create_task(
            self._load(self._sequence, self.state.snapshot())
        )
        return self._fetch_task

    async def _load(self, sequence: int, state: QueryState) -> None:
        try:
            page = await self.service.fetch(state)
        except asyncio.CancelledError:
            logger.debug("Fetch #%s cancelled by a newer query", sequence)
            raise
        except ApiError as exc:
            if sequence != self._sequence:
                return
            logger.warning("Work order listing failed: %s", exc)
            self.notifier.error(LOAD_FAILED_MESSAGE)
            self.is_loading = False
            return

        if sequence != self._sequence:
            logger.debug("Discarding stale listing response #%s", sequence)
            return

        self.records = page.records
        self.total_count = page.total_count
        self._overlay.clear()
        clamped = clamp_page(self.state.page, self.total_count, self.state.page_size)
        if clamped != self.state.page:
            logger.info(
                "Page %s is past the last page (%s); returning to page 1",
                self.state.page,
                self.page_count,
            )
            self.state.page = clamped
            self._persist()
            self.refresh()
            return
        self.is_loading = False

    async def settle(self) -> None:
        """Wait until no debounce or fetch is outstanding."""
        while True:
            if self._debouncer.pending:
                await self._debouncer.wait()
                continue
            task = self._fetch_task
            if task is not None and not task.done():
                try:
                    await task
                except asyncio.CancelledError:
                    if not task.cancelled():
                        raise
                continue
            return

    async def load_filter_options(self) -> None:
        """Fetch filterable columns and their values; keep old choices on failure."""
        try:
            columns = await self.service.filterable_columns()
        except ApiError as exc:
            logger.warning("Filterable columns unavailable: %s", exc)
            self.notifier.error("Failed to load filter options")
            return
        self.columns = columns
        results = await asyncio.gather(
            *(self.service.filter_values(c.field) for c in columns),
            return_exceptions=True,
        )
        for column, result in zip(columns, results):
            if isinstance(result, ApiError):
                logger.warning("Filter values for %s unavailable: %s", column.field, result)
                continue
            if isinstance(result, BaseException):
                raise result
            self.filter_options[column.field] = result
