"""Rich renderables for the work-order table and the popup."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from rich.console import Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .approval import AcknowledgementFlag, ApprovalAction, ApprovalWorkflow
from .models import SUMMARY_TITLES, ApprovalStatus, SummaryCategory, WorkOrder, normalize_status
from .query import FilterSortController, SortDirection

SKELETON_ROWS = 10
EMPTY_MESSAGE = "No work orders found matching the current filters."

# (model attribute, API field used for sorting/filtering, header)
COLUMNS: List[Tuple[str, str, str]] = [
    ("work_order_id", "WorkOrderId", "Work Order ID"),
    ("description", "Description", "Description"),
    ("worker_group_id", "WorkerGroupId", "Worker Group"),
    ("lifecycle_state_id", "WorkOrderLifecycleStateId", "Lifecycle State"),
    ("type_id", "WorkOrderTypeId", "Type"),
    ("scheduled_start", "ScheduledStart", "Scheduled Start"),
    ("service_level", "ServiceLevel", "Service Level"),
    ("approval_status", "approval_status", "Approval Status"),
]

STATUS_STYLES = {
    ApprovalStatus.PENDING: "yellow",
    ApprovalStatus.APPROVED: "green",
    ApprovalStatus.REJECTED: "red",
    ApprovalStatus.CANCELLED: "dim",
    ApprovalStatus.FINISHED: "blue",
}

ACK_LABELS = {
    AcknowledgementFlag.TECHNICAL: "I have reviewed the technical (safety & procedure) summary",
    AcknowledgementFlag.SERVICE: "I have reviewed the operating experience summary",
    AcknowledgementFlag.CUSTOMER: "I have reviewed the human performance tools summary",
}


def status_badge(raw: Optional[str]) -> Text:
    status = normalize_status(raw)
    return Text(raw or "-", style=STATUS_STYLES[status] if status else "")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class WorkOrderTableView:
    """Renders the controller's current page; row selection goes to ``on_select``."""

    def __init__(
        self,
        controller: FilterSortController,
        *,
        on_select: Optional[Callable[[WorkOrder], Any]] = None,
    ):
        self.controller = controller
        self.on_select = on_select

    def _header(self, api_field: str, label: str) -> str:
        state = self.controller.state
        if state.has_user_sorted and state.sort_field == api_field:
            arrow = "▲" if state.sort_direction == SortDirection.ASC else "▼"
            return f"{label} {arrow}"
        return label

    def render(self) -> Table:
        state = self.controller.state
        table = Table(title="Work Orders", expand=True, show_lines=False)
        for _, api_field, label in COLUMNS:
            table.add_column(self._header(api_field, label), overflow="fold")

        if self.controller.is_loading and not self.controller.records:
            for _ in range(min(state.page_size, SKELETON_ROWS)):
                table.add_row(*[Text("░░░░░░", style="dim") for _ in COLUMNS])
        elif not self.controller.rows:
            table.add_row(Text(EMPTY_MESSAGE, style="italic"), *[""] * (len(COLUMNS) - 1))
        else:
            for record in self.controller.rows:
                cells: List[Any] = []
                for attr, _, _ in COLUMNS:
                    value = getattr(record, attr)
                    cells.append(status_badge(value) if attr == "approval_status" else _cell(value))
                table.add_row(*cells)

        table.caption = self.footer()
        return table

    def footer(self) -> str:
        pages = self.controller.page_count
        state = self.controller.state
        parts = [
            f"Page {state.page} of {max(pages, 1)}",
            f"{self.controller.total_count} work orders",
        ]
        if state.debounced_search_text:
            parts.append(f"search: {state.debounced_search_text!r}")
        for column, value in sorted(state.active_filters.items()):
            parts.append(f"{column}={value}")
        return " | ".join(parts)

    def select(self, work_order_id: str) -> Optional[WorkOrder]:
        record = self.controller.find(work_order_id)
        if record is not None and self.on_select is not None:
            self.on_select(record)
        return record


def render_popup(workflow: ApprovalWorkflow) -> Group:
    """Detail popup: header, summaries with sources and feedback, checkboxes, actions."""
    work_order = workflow.work_order
    if work_order is None:
        return Group(Text("No work order selected.", style="italic"))

    header = Text.assemble(
        (f"Work Order {work_order.work_order_id}  ", "bold"),
        status_badge(work_order.approval_status),
    )
    parts: List[Any] = [header]
    if work_order.description:
        parts.append(Text(work_order.description))

    panel = workflow.panel
    for category in SummaryCategory:
        body: List[Any] = [Markdown(panel.text_for(category))]
        if panel.summaries is not None:
            for doc in panel.summaries.sources_for(category):
                body.append(Text(f"⤓ {doc.display_name}  ({doc.file_name})", style="cyan"))
        entry = panel.feedback_for(category)
        if entry is not None:
            thumb = "👍" if entry.feedback == "positive" else "👎" if entry.feedback else ""
            note = f"Your feedback: {thumb} {entry.comment or ''}".rstrip()
            body.append(Text(note, style="dim"))
        parts.append(Panel(Group(*body), title=SUMMARY_TITLES[category]))

    acks = workflow.current_acknowledgements
    for flag in AcknowledgementFlag:
        mark = "[x]" if getattr(acks, flag.value) else "[ ]"
        parts.append(Text(f"{mark} {ACK_LABELS[flag]}"))

    actions: List[str] = []
    for action in (ApprovalAction.REJECT, ApprovalAction.APPROVE):
        if not workflow.is_action_visible(action):
            continue
        label = action.value.capitalize()
        if workflow.is_busy(action):
            label += " (working...)"
        elif not workflow.can_submit(action):
            label += " (disabled)"
        actions.append(label)
    if actions:
        parts.append(Text("Actions: " + "  ".join(actions), style="bold"))

    details = workflow.approval_details
    if details is not None:
        who = details.action_by.email if details.action_by else None
        when = _cell(details.action_date) if details.action_date else None
        parts.append(
            Text(
                f"Decision: {details.status}"
                + (f" by {who}" if who else "")
                + (f" on {when}" if when else ""),
                style="dim",
            )
        )
    return Group(*parts)
