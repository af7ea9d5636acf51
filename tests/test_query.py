import asyncio
import json

import httpx

from approval_dashboard.api_client import DashboardApiClient
from approval_dashboard.exceptions import ApiError
from approval_dashboard.models import WorkOrder, WorkOrderPage
from approval_dashboard.notifications import Notifier, ToastLevel
from approval_dashboard.query import (
    FILTERS_KEY,
    LOAD_FAILED_MESSAGE,
    PAGE_KEY,
    SEARCH_KEY,
    SORT_KEY,
    FilterSortController,
    QueryState,
    SortDirection,
    WorkOrderQueryService,
    build_query_params,
    clamp_page,
    page_count,
)
from approval_dashboard.storage import LocalStorage


class FakeService:
    def __init__(self, total=237, delays=None):
        self.total = total
        self.delays = list(delays or [])
        self.fail = False
        self.calls = []
        self.cancelled = 0

    async def fetch(self, state):
        self.calls.append(state)
        delay = self.delays.pop(0) if self.delays else 0
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.fail:
            raise ApiError("down", status_code=500)
        first = state.offset + 1
        last = min(state.offset + state.page_size, self.total)
        records = [
            WorkOrder(work_order_id=f"WO-{i:04d}", approval_status="PENDING")
            for i in range(first, last + 1)
        ]
        return WorkOrderPage(records=records, total_count=self.total)


def make_controller(service=None, storage=None):
    notifier = Notifier()
    controller = FilterSortController(
        service or FakeService(),
        storage if storage is not None else LocalStorage(),
        page_size=50,
        debounce_seconds=0.01,
        notifier=notifier,
    )
    return controller, notifier


def test_params_without_user_sort():
    state = QueryState(
        page=3,
        page_size=50,
        debounced_search_text="  pump ",
        active_filters={"type": "Repair", "group": "", "cost": "Opex"},
        sort_field="WorkOrderId",
    )
    assert build_query_params(state) == [
        ("skip", "100"),
        ("limit", "50"),
        ("search", "pump"),
        ("filter_cost", "Opex"),
        ("filter_type", "Repair"),
    ]


def test_params_include_sort_once_chosen():
    state = QueryState(sort_field="ServiceLevel", sort_direction=SortDirection.DESC, has_user_sorted=True)
    params = build_query_params(state)
    assert ("sort_by", "ServiceLevel") in params
    assert ("sort_direction", "desc") in params


def test_page_math():
    assert page_count(237, 50) == 5
    assert page_count(0, 50) == 0
    assert clamp_page(5, 237, 50) == 5
    assert clamp_page(6, 237, 50) == 1
    assert clamp_page(1, 0, 50) == 1


def test_search_is_debounced_into_one_request():
    storage = LocalStorage()
    storage.set_item(PAGE_KEY, "3")
    service = FakeService()
    controller, _ = make_controller(service, storage)
    controller.restore()

    async def go():
        for text in ("p", "pu", "pum", "pump"):
            controller.set_search_text(text)
        assert controller.state.search_text == "pump"
        assert controller.state.debounced_search_text == ""
        assert service.calls == []
        await controller.settle()

    asyncio.run(go())

    assert len(service.calls) == 1
    assert service.calls[0].debounced_search_text == "pump"
    assert service.calls[0].page == 1
    assert storage.get_item(SEARCH_KEY) == "pump"
    assert storage.get_item(PAGE_KEY) == "1"


def test_newer_query_supersedes_slow_one():
    service = FakeService(delays=[0.05, 0])
    controller, _ = make_controller(service)

    async def go():
        controller.set_page(2)
        await asyncio.sleep(0.01)
        controller.set_page(3)
        await controller.settle()

    asyncio.run(go())

    assert [c.page for c in service.calls] == [2, 3]
    assert service.cancelled == 1
    assert controller.records[0].work_order_id == "WO-0101"
    assert not controller.is_loading


def test_page_past_the_end_returns_to_first_page():
    storage = LocalStorage()
    storage.set_item(PAGE_KEY, "6")
    service = FakeService(total=237)
    controller, _ = make_controller(service, storage)
    controller.restore()

    async def go():
        controller.refresh()
        await controller.settle()

    asyncio.run(go())

    assert [c.page for c in service.calls] == [6, 1]
    assert controller.state.page == 1
    assert controller.page_count == 5
    assert storage.get_item(PAGE_KEY) == "1"
    assert controller.records[0].work_order_id == "WO-0001"


def test_restore_round_trip_leaves_sort_unset():
    storage = LocalStorage()
    first, _ = make_controller(storage=storage)

    async def go():
        first.set_filter("type", "Repair")
        first.set_search_text("pump")
        first.toggle_sort("ServiceLevel")
        await first.settle()

    asyncio.run(go())
    assert json.loads(storage.get_item(SORT_KEY)) == {"field": "ServiceLevel", "direction": "asc"}

    second, _ = make_controller(storage=storage)
    second.restore()

    assert second.state.active_filters == {"type": "Repair"}
    assert second.state.search_text == "pump"
    assert second.state.debounced_search_text == "pump"
    assert second.state.page == 1
    assert second.state.sort_field is None
    assert not second.state.has_user_sorted


def test_toggle_sort_cycles_and_resets_page():
    controller, _ = make_controller()

    async def go():
        controller.set_page(4)
        controller.toggle_sort("WorkOrderId")
        assert controller.state.page == 1
        assert controller.state.sort_direction is SortDirection.ASC
        controller.toggle_sort("WorkOrderId")
        assert controller.state.sort_direction is SortDirection.DESC
        controller.toggle_sort("Description")
        assert controller.state.sort_field == "Description"
        assert controller.state.sort_direction is SortDirection.ASC
        await controller.settle()

    asyncio.run(go())
    assert controller.state.has_user_sorted


def test_clear_all_removes_saved_state():
    storage = LocalStorage()
    controller, _ = make_controller(storage=storage)

    async def go():
        controller.set_filter("type", "Repair")
        controller.toggle_sort("WorkOrderId")
        controller.set_page(2)
        await controller.settle()
        controller.clear_all()
        await controller.settle()

    asyncio.run(go())

    assert storage.get_item(FILTERS_KEY) is None
    assert storage.get_item(SEARCH_KEY) is None
    assert storage.get_item(SORT_KEY) is None
    assert storage.get_item(PAGE_KEY) == "1"
    assert controller.state.active_filters == {}
    assert not controller.state.has_user_sorted


def test_failed_fetch_keeps_previous_rows():
    service = FakeService()
    controller, notifier = make_controller(service)

    async def go():
        controller.refresh()
        await controller.settle()
        service.fail = True
        controller.set_page(2)
        await controller.settle()

    asyncio.run(go())

    assert controller.records[0].work_order_id == "WO-0001"
    assert not controller.is_loading
    assert notifier.messages(ToastLevel.ERROR) == [LOAD_FAILED_MESSAGE]


def test_optimistic_status_until_next_fetch():
    controller, _ = make_controller()

    async def go():
        controller.refresh()
        await controller.settle()
        controller.set_optimistic_status("WO-0002", "APPROVED")
        assert controller.find("WO-0002").approval_status == "APPROVED"
        assert controller.records[1].approval_status == "PENDING"
        controller.refresh()
        await controller.settle()

    asyncio.run(go())
    assert controller.find("WO-0002").approval_status == "PENDING"


def test_filter_change_sends_page_back_to_one():
    storage = LocalStorage()
    service = FakeService()
    controller, _ = make_controller(service, storage)

    async def go():
        controller.set_page(4)
        await controller.settle()
        controller.set_filter("WorkOrderTypeId", "Repair")
        await controller.settle()

    asyncio.run(go())

    assert controller.state.page == 1
    assert storage.get_item(PAGE_KEY) == "1"
    assert service.calls[-1].page == 1
    assert service.calls[-1].active_filters == {"WorkOrderTypeId": "Repair"}


def test_malformed_listing_row_is_a_load_failure():
    def handler(request):
        return httpx.Response(200, json={"data": [{"WorkOrderId": "WO-1", "ServiceLevel": "high"}], "count": 1})

    client = DashboardApiClient(
        "http://api.test/api", token_provider=lambda: "tok", transport=httpx.MockTransport(handler)
    )
    controller, notifier = make_controller(WorkOrderQueryService(client))

    async def go():
        controller.refresh()
        await controller.settle()
        await client.aclose()

    asyncio.run(go())

    assert not controller.is_loading
    assert controller.records == []
    assert notifier.messages(ToastLevel.ERROR) == [LOAD_FAILED_MESSAGE]
