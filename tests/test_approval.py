import asyncio

import httpx
import pytest

from approval_dashboard.api_client import DashboardApiClient
from approval_dashboard.approval import (
    AcknowledgementFlag,
    AcknowledgementStore,
    ApprovalAction,
    ApprovalWorkflow,
    WorkflowState,
)
from approval_dashboard.exceptions import ApiError, WorkflowError
from approval_dashboard.models import WorkOrder
from approval_dashboard.notifications import Notifier, ToastLevel
from approval_dashboard.summaries import SummaryPanel


def make_workflow(api):
    notifier = Notifier()
    changes = []
    acks = AcknowledgementStore()
    panel = SummaryPanel(api, notifier=notifier, user_id=lambda: "1")
    workflow = ApprovalWorkflow(
        api,
        acks,
        panel,
        notifier=notifier,
        on_status_change=lambda wo_id, status: changes.append((wo_id, status)),
    )
    return workflow, acks, notifier, changes


def pending(work_order_id="WO-0007"):
    return WorkOrder(work_order_id=work_order_id, approval_status="PENDING")


def tick_all(workflow):
    for flag in AcknowledgementFlag:
        workflow.toggle(flag, True)


def test_submit_needs_all_three_acknowledgements(fake_api):
    workflow, _, _, _ = make_workflow(fake_api)
    asyncio.run(workflow.open(pending()))

    assert workflow.state is WorkflowState.READY
    assert not workflow.can_submit(ApprovalAction.APPROVE)
    workflow.toggle(AcknowledgementFlag.TECHNICAL)
    workflow.toggle(AcknowledgementFlag.SERVICE)
    assert not workflow.can_submit(ApprovalAction.APPROVE)
    workflow.toggle(AcknowledgementFlag.CUSTOMER)
    assert workflow.can_submit(ApprovalAction.APPROVE)
    assert workflow.can_submit(ApprovalAction.REJECT)

    workflow.toggle(AcknowledgementFlag.SERVICE)
    assert not workflow.can_submit(ApprovalAction.APPROVE)
    with pytest.raises(WorkflowError, match="acknowledged"):
        workflow.request(ApprovalAction.APPROVE)


def test_approve_pending_work_order(fake_api):
    workflow, acks, notifier, changes = make_workflow(fake_api)
    asyncio.run(workflow.open(pending()))
    tick_all(workflow)

    prompt = workflow.request(ApprovalAction.APPROVE)
    assert prompt == "Are you sure you want to approve work order WO-0007?"
    assert workflow.state is WorkflowState.CONFIRMING

    assert asyncio.run(workflow.confirm()) is True

    assert fake_api.approvals == [("WO-0007", "APPROVED")]
    assert changes == [("WO-0007", "APPROVED")]
    assert workflow.work_order.approval_status == "APPROVED"
    assert "WO-0007" not in acks
    assert not workflow.is_action_visible(ApprovalAction.APPROVE)
    assert workflow.is_action_visible(ApprovalAction.REJECT)
    assert notifier.messages(ToastLevel.SUCCESS) == ["Work order WO-0007 approved successfully"]
    assert workflow.approval_details.status == "APPROVED"
    assert workflow.state is WorkflowState.READY


def test_reject_shows_warning(fake_api):
    workflow, _, notifier, changes = make_workflow(fake_api)
    asyncio.run(workflow.open(pending("WO-0012")))
    tick_all(workflow)
    workflow.request(ApprovalAction.REJECT)

    assert asyncio.run(workflow.confirm())

    assert changes == [("WO-0012", "REJECTED")]
    assert notifier.messages(ToastLevel.WARNING) == ["Work order WO-0012 rejected"]


def test_failed_submit_changes_nothing(fake_api):
    fake_api.approval_error = ApiError("boom", status_code=500)
    workflow, acks, notifier, changes = make_workflow(fake_api)
    asyncio.run(workflow.open(pending()))
    tick_all(workflow)
    workflow.request(ApprovalAction.APPROVE)

    assert asyncio.run(workflow.confirm()) is False

    assert changes == []
    assert workflow.work_order.approval_status == "PENDING"
    assert acks.get("WO-0007").all_checked
    assert workflow.state is WorkflowState.READY
    assert notifier.messages(ToastLevel.ERROR) == ["Failed to approve work order WO-0007"]


def test_already_approved_hides_approve(fake_api):
    fake_api.approvals.append(("WO-0003", "APPROVED"))
    workflow, _, _, _ = make_workflow(fake_api)

    asyncio.run(workflow.open(WorkOrder(work_order_id="WO-0003", approval_status="Approved")))

    assert not workflow.is_action_visible(ApprovalAction.APPROVE)
    assert workflow.is_action_visible(ApprovalAction.REJECT)
    assert fake_api.details_requests == ["WO-0003"]
    tick_all(workflow)
    with pytest.raises(WorkflowError, match="already approved"):
        workflow.request(ApprovalAction.APPROVE)


def test_checkboxes_lock_during_confirmation(fake_api):
    workflow, _, _, _ = make_workflow(fake_api)
    asyncio.run(workflow.open(pending()))
    tick_all(workflow)
    workflow.request(ApprovalAction.REJECT)

    with pytest.raises(WorkflowError):
        workflow.toggle(AcknowledgementFlag.TECHNICAL, False)

    workflow.cancel_confirmation()
    assert workflow.state is WorkflowState.READY
    workflow.toggle(AcknowledgementFlag.TECHNICAL, False)
    assert not workflow.current_acknowledgements.technical


def test_reopening_starts_with_clear_checkboxes(fake_api):
    workflow, acks, _, _ = make_workflow(fake_api)
    asyncio.run(workflow.open(pending()))
    tick_all(workflow)

    workflow.close()
    assert "WO-0007" not in acks
    assert workflow.state is WorkflowState.CLOSED
    assert workflow.panel.summaries is None

    asyncio.run(workflow.open(pending()))
    assert not workflow.current_acknowledgements.technical
    with pytest.raises(WorkflowError):
        asyncio.run(workflow.confirm())


def test_malformed_feedback_still_reaches_ready():
    def handler(request):
        if request.url.path.startswith("/api/feedback/"):
            return httpx.Response(200, json={"user_id": 1, "safety": {"feedback": "thumbs_up"}})
        return httpx.Response(404, json={"detail": "Summary not found"})

    client = DashboardApiClient(
        "http://api.test/api", token_provider=lambda: "tok", transport=httpx.MockTransport(handler)
    )
    workflow, _, notifier, _ = make_workflow(client)

    async def go():
        await workflow.open(pending())
        await client.aclose()

    asyncio.run(go())

    assert workflow.state is WorkflowState.READY
    assert workflow.panel.feedback is None
    assert workflow.panel.summaries.is_placeholder
    assert notifier.messages(ToastLevel.ERROR) == ["Failed to load previous feedback"]
