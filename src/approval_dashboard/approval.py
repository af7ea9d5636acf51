"""Acknowledgement gating and the approve/reject workflow for one open work order."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional

from .api_client import DashboardApiClient
from .exceptions import ApiError, WorkflowError
from .models import ApprovalDetails, ApprovalStatus, WorkOrder, status_matches
from .notifications import Notifier
from .summaries import SummaryPanel

logger = logging.getLogger(__name__)


class AcknowledgementFlag(str, Enum):
    TECHNICAL = "technical"
    SERVICE = "service"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Acknowledgements:
    technical: bool = False
    service: bool = False
    customer: bool = False

    @property
    def all_checked(self) -> bool:
        return self.technical and self.service and self.customer

    def with_flag(self, flag: AcknowledgementFlag, value: bool) -> "Acknowledgements":
        return replace(self, **{flag.value: value})


class AcknowledgementStore:
    """
    Checkbox state per work order id.

    One instance is shared by every popup the dashboard opens. Entries are
    only ever removed through ``clear``; the workflow calls it on open, after
    a successful decision, and on close.
    """

    def __init__(self):
        self._entries: Dict[str, Acknowledgements] = {}

    def get(self, work_order_id: str) -> Acknowledgements:
        return self._entries.get(work_order_id, Acknowledgements())

    def set(self, work_order_id: str, flag: AcknowledgementFlag, value: bool) -> Acknowledgements:
        updated = self.get(work_order_id).with_flag(flag, value)
        self._entries[work_order_id] = updated
        return updated

    def clear(self, work_order_id: str) -> None:
        self._entries.pop(work_order_id, None)

    def __contains__(self, work_order_id: object) -> bool:
        return work_order_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def decision(self) -> ApprovalStatus:
        if self is ApprovalAction.APPROVE:
            return ApprovalStatus.APPROVED
        return ApprovalStatus.REJECTED

    @property
    def verb(self) -> str:
        return "approved" if self is ApprovalAction.APPROVE else "rejected"


class WorkflowState(str, Enum):
    CLOSED = "closed"
    LOADING = "loading"
    READY = "ready"
    CONFIRMING = "confirming"
    SUBMITTING = "submitting"


StatusCallback = Callable[[str, str], None]


class ApprovalWorkflow:
    """State machine behind the work-order popup."""

    def __init__(
        self,
        client: DashboardApiClient,
        acknowledgements: AcknowledgementStore,
        panel: SummaryPanel,
        *,
        notifier: Optional[Notifier] = None,
        on_status_change: Optional[StatusCallback] = None,
    ):
        self.client = client
        self.acknowledgements = acknowledgements
        self.panel = panel
        self.notifier = notifier or Notifier()
        self._on_status_change = on_status_change
        self.state = WorkflowState.CLOSED
        self.work_order: Optional[WorkOrder] = None
        self.approval_details: Optional[ApprovalDetails] = None
        self.pending_action: Optional[ApprovalAction] = None
        self.busy_action: Optional[ApprovalAction] = None

    # --- Lifecycle --------------------------------------------------------

    def _require_open(self) -> WorkOrder:
        if self.work_order is None or self.state == WorkflowState.CLOSED:
            raise WorkflowError("No work order is open")
        return self.work_order

    async def open(self, work_order: WorkOrder) -> None:
        self.work_order = work_order
        self.approval_details = None
        self.pending_action = None
        self.busy_action = None
        self.acknowledgements.clear(work_order.work_order_id)
        self.state = WorkflowState.LOADING
        tasks = [self.panel.load(work_order.work_order_id)]
        if self._has_decision(work_order):
            tasks.append(self._load_approval_details(work_order.work_order_id))
        try:
            await asyncio.gather(*tasks)
        finally:
            self.state = WorkflowState.READY

    def close(self) -> None:
        if self.work_order is not None:
            self.acknowledgements.clear(self.work_order.work_order_id)
        self.work_order = None
        self.approval_details = None
        self.pending_action = None
        self.busy_action = None
        self.panel.reset()
        self.state = WorkflowState.CLOSED

    @staticmethod
    def _has_decision(work_order: WorkOrder) -> bool:
        return status_matches(work_order.approval_status, ApprovalStatus.APPROVED) or status_matches(
            work_order.approval_status, ApprovalStatus.REJECTED
        )

    async def _load_approval_details(self, work_order_id: str) -> None:
        try:
            details = await self.client.approval_details(work_order_id)
        except ApiError as exc:
            logger.warning("Approval details for %s unavailable: %s", work_order_id, exc)
            return
        if self.work_order is not None and self.work_order.work_order_id == work_order_id:
            self.approval_details = details

    # --- Checkboxes -------------------------------------------------------

    @property
    def current_acknowledgements(self) -> Acknowledgements:
        if self.work_order is None:
            return Acknowledgements()
        return self.acknowledgements.get(self.work_order.work_order_id)

    def toggle(self, flag: AcknowledgementFlag, value: Optional[bool] = None) -> Acknowledgements:
        work_order = self._require_open()
        if self.state != WorkflowState.READY:
            raise WorkflowError(f"Acknowledgements are locked while {self.state.value}")
        current = self.acknowledgements.get(work_order.work_order_id)
        new_value = (not getattr(current, flag.value)) if value is None else bool(value)
        return self.acknowledgements.set(work_order.work_order_id, flag, new_value)

    # --- Decisions --------------------------------------------------------

    def is_action_visible(self, action: ApprovalAction) -> bool:
        if self.work_order is None:
            return False
        return not status_matches(self.work_order.approval_status, action.decision)

    def can_submit(self, action: ApprovalAction) -> bool:
        return (
            self.state == WorkflowState.READY
            and self.is_action_visible(action)
            and self.current_acknowledgements.all_checked
        )

    def is_busy(self, action: ApprovalAction) -> bool:
        return self.state == WorkflowState.SUBMITTING and self.busy_action == action

    def request(self, action: ApprovalAction) -> str:
        """Open the confirmation step and return its prompt."""
        work_order = self._require_open()
        if not self.can_submit(action):
            raise WorkflowError(
                f"Cannot {action.value} {work_order.work_order_id}: "
                "all three summaries must be acknowledged first"
                if self.is_action_visible(action)
                else f"Work order {work_order.work_order_id} is already {action.verb}"
            )
        self.pending_action = action
        self.state = WorkflowState.CONFIRMING
        return f"Are you sure you want to {action.value} work order {work_order.work_order_id}?"

    def cancel_confirmation(self) -> None:
        if self.state == WorkflowState.CONFIRMING:
            self.pending_action = None
            self.state = WorkflowState.READY

    async def confirm(self) -> bool:
        """Send the pending decision; on failure nothing local changes."""
        work_order = self._require_open()
        if self.state != WorkflowState.CONFIRMING or self.pending_action is None:
            raise WorkflowError("Nothing to confirm")
        action = self.pending_action
        work_order_id = work_order.work_order_id
        self.state = WorkflowState.SUBMITTING
        self.busy_action = action
        try:
            await self.client.submit_approval(work_order_id, action.decision)
        except ApiError as exc:
            logger.error("Could not %s %s: %s", action.value, work_order_id, exc)
            self.notifier.error(f"Failed to {action.value} work order {work_order_id}")
            self.state = WorkflowState.READY
            return False
        finally:
            self.busy_action = None
            self.pending_action = None

        status = action.decision.value
        self.acknowledgements.clear(work_order_id)
        self.work_order = work_order.model_copy(update={"approval_status": status})
        if self._on_status_change is not None:
            self._on_status_change(work_order_id, status)
        if action is ApprovalAction.APPROVE:
            self.notifier.success(f"Work order {work_order_id} approved successfully")
        else:
            self.notifier.warning(f"Work order {work_order_id} rejected")
        self.state = WorkflowState.READY
        await self._load_approval_details(work_order_id)
        return True
