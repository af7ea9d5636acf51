"""Data models for the work-order API payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    FINISHED = "FINISHED"


# Substrings looked for in the server's status string; the server is not
# consistent about casing or spelling ("Cancelled" vs "CANCELED").
_STATUS_TOKENS: Dict[ApprovalStatus, str] = {
    ApprovalStatus.PENDING: "PENDING",
    ApprovalStatus.APPROVED: "APPROVED",
    ApprovalStatus.REJECTED: "REJECTED",
    ApprovalStatus.CANCELLED: "CANCEL",
    ApprovalStatus.FINISHED: "FINISH",
}


def status_matches(raw: Optional[str], status: ApprovalStatus) -> bool:
    """Case-insensitive substring match of a server status string."""
    if not raw:
        return False
    return _STATUS_TOKENS[status] in raw.upper()


def normalize_status(raw: Optional[str]) -> Optional[ApprovalStatus]:
    """Map a server status string onto the known statuses, or None if unknown."""
    # Terminal statuses first so "CANCELLED_PENDING_REVIEW" style strings resolve
    # to the decision rather than the queue state.
    for status in (
        ApprovalStatus.REJECTED,
        ApprovalStatus.APPROVED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.FINISHED,
        ApprovalStatus.PENDING,
    ):
        if status_matches(raw, status):
            return status
    return None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class WorkOrder(BaseModel):
    """A maintenance work order as returned by GET /work_orders."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    work_order_id: str = Field(..., alias="WorkOrderId")
    description: Optional[str] = Field(None, alias="Description")
    worker_group_id: Optional[str] = Field(None, alias="WorkerGroupId")
    lifecycle_state_id: Optional[str] = Field(None, alias="WorkOrderLifecycleStateId")
    type_id: Optional[str] = Field(None, alias="WorkOrderTypeId")
    expected_start: Optional[datetime] = Field(None, alias="ExpectedStart")
    expected_end: Optional[datetime] = Field(None, alias="ExpectedEnd")
    scheduled_start: Optional[datetime] = Field(None, alias="ScheduledStart")
    scheduled_end: Optional[datetime] = Field(None, alias="ScheduledEnd")
    actual_start: Optional[datetime] = Field(None, alias="ActualStart")
    actual_end: Optional[datetime] = Field(None, alias="ActualEnd")
    cost_type: Optional[str] = Field(None, alias="CostType")
    service_level: Optional[float] = Field(None, alias="ServiceLevel")
    criticality: Optional[float] = Field(
        None, alias="WorkOrderMaintenanceAssetCriticalityValue"
    )
    data_area_id: Optional[str] = Field(None, alias="dataAreaId")
    active: Optional[bool] = Field(None, alias="Active")
    approval_status: Optional[str] = Field(
        "PENDING", description="Server string; compare with status_matches()."
    )
    is_summary_generated: bool = False

    @field_validator(
        "expected_start",
        "expected_end",
        "scheduled_start",
        "scheduled_end",
        "actual_start",
        "actual_end",
        mode="before",
    )
    @classmethod
    def _empty_timestamp(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("is_summary_generated", mode="before")
    @classmethod
    def _null_flag(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def status(self) -> Optional[ApprovalStatus]:
        return normalize_status(self.approval_status)


class WorkOrderPage(BaseModel):
    """One page of the listing plus the total number of matching rows."""

    records: List[WorkOrder]
    total_count: int
    skip: int = 0
    limit: int = 0

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "WorkOrderPage":
        meta = payload.get("meta") or {}
        return cls(
            records=[WorkOrder.model_validate(item) for item in payload.get("data", [])],
            total_count=int(payload.get("count", 0)),
            skip=int(meta.get("skip", 0)),
            limit=int(meta.get("limit", 0)),
        )


class FilterableColumn(BaseModel):
    field: str
    label: str
    type: str = "string"


class FilterValue(BaseModel):
    value: str
    label: str
    count: int = 0

    @field_validator("value", "label", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return "" if value is None else str(value)


class SummaryCategory(str, Enum):
    SAFETY = "safety"
    OPERATING = "operating"
    HPT = "hpt"
    SIMILAR_WO = "similar_wo"


SUMMARY_TITLES: Dict[SummaryCategory, str] = {
    SummaryCategory.SAFETY: "Safety Rules & Standard Operating Procedures",
    SummaryCategory.OPERATING: "Operating Experience",
    SummaryCategory.HPT: "Human Performance Tools",
    SummaryCategory.SIMILAR_WO: "Similar Work Orders",
}

# Payload field holding the generated text, and the one holding its sources.
SUMMARY_FIELDS: Dict[SummaryCategory, tuple[str, str]] = {
    SummaryCategory.SAFETY: ("safety_rules_summary", "safety_rules_sources"),
    SummaryCategory.OPERATING: (
        "operating_experience_summary",
        "operating_experience_sources",
    ),
    SummaryCategory.HPT: ("hpt_rules_summary", "hpt_rules_sources"),
    SummaryCategory.SIMILAR_WO: ("similar_wo_summary", "similar_wo_sources"),
}


class SourceDocument(BaseModel):
    """A document a summary was generated from; downloadable by file name."""

    file_name: str
    title: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.title or self.file_name.rsplit("/", 1)[-1]


class SummaryData(BaseModel):
    """The four AI summaries for one work order."""

    safety_rules_summary: str
    operating_experience_summary: str
    hpt_rules_summary: str
    similar_wo_summary: str
    sources: Dict[SummaryCategory, List[SourceDocument]] = Field(default_factory=dict)
    is_placeholder: bool = False

    @classmethod
    def placeholder(cls, text: str) -> "SummaryData":
        return cls(
            safety_rules_summary=text,
            operating_experience_summary=text,
            hpt_rules_summary=text,
            similar_wo_summary=text,
            is_placeholder=True,
        )

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SummaryData":
        texts: Dict[str, str] = {}
        sources: Dict[SummaryCategory, List[SourceDocument]] = {}
        for category, (text_field, sources_field) in SUMMARY_FIELDS.items():
            texts[text_field] = str(payload[text_field])
            docs = []
            for item in payload.get(sources_field) or []:
                if isinstance(item, str):
                    docs.append(SourceDocument(file_name=item))
                else:
                    docs.append(SourceDocument.model_validate(item))
            if docs:
                sources[category] = docs
        return cls(**texts, sources=sources)

    def text_for(self, category: SummaryCategory) -> str:
        return getattr(self, SUMMARY_FIELDS[category][0])

    def sources_for(self, category: SummaryCategory) -> List[SourceDocument]:
        return list(self.sources.get(category, []))


Sentiment = Literal["positive", "negative"]


class FeedbackEntry(BaseModel):
    feedback: Optional[Sentiment] = None
    comment: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.feedback is None and not self.comment


class FeedbackRecord(BaseModel):
    """Feedback a user left on the summaries of one work order."""

    work_order_id: str
    user_id: Optional[str] = None
    safety: Optional[FeedbackEntry] = None
    operating: Optional[FeedbackEntry] = None
    hpt: Optional[FeedbackEntry] = None
    similar_wo: Optional[FeedbackEntry] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_user(cls, value: Any) -> Any:
        return None if value is None else str(value)

    def entry_for(self, category: SummaryCategory) -> Optional[FeedbackEntry]:
        return getattr(self, category.value)

    def with_entry(self, category: SummaryCategory, entry: FeedbackEntry) -> "FeedbackRecord":
        return self.model_copy(update={category.value: entry})


class ActionBy(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    username: Optional[str] = None
    full_name: Optional[str] = None


class ApprovalDetails(BaseModel):
    """Who decided a work order and when."""

    model_config = ConfigDict(extra="allow")

    status: str
    action_by: Optional[ActionBy] = None
    action_date: Optional[datetime] = None


class ApprovalResult(BaseModel):
    message: str = ""
    work_order_id: str
    status: str


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or self.email or "unknown user"
