"""AI summary display, per-category feedback, and source-document downloads."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .api_client import DashboardApiClient
from .exceptions import ApiError, NotFoundError
from .models import (
    FeedbackEntry,
    FeedbackRecord,
    Sentiment,
    SourceDocument,
    SummaryCategory,
    SummaryData,
)
from .notifications import Notifier
from .schema import SUMMARY, is_valid

logger = logging.getLogger(__name__)

SUMMARY_PLACEHOLDER = "Summary not ready yet. It will appear here once generation has finished."
MANUAL_SAVE_MESSAGE = (
    "The download did not start automatically. The file was opened in a new tab; "
    "please save it manually."
)


@dataclass
class FeedbackDraft:
    """What the comment dialog shows when a thumb is clicked."""

    category: SummaryCategory
    sentiment: Sentiment
    comment: str
    submit_label: str


@dataclass
class DownloadResult:
    ok: bool
    path: Optional[Path] = None
    fallback_url: Optional[str] = None
    message: Optional[str] = None


def parse_summary_payload(payload: object) -> SummaryData:
    """Turn a raw summary payload into SummaryData, or the all-placeholder set."""
    if not isinstance(payload, dict) or "error" in payload or not is_valid(SUMMARY, payload):
        return SummaryData.placeholder(SUMMARY_PLACEHOLDER)
    return SummaryData.from_api(payload)


def _safe_file_name(file_name: str) -> str:
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name or "download"


class SummaryPanel:
    """Summaries and feedback for whichever work order the popup shows."""

    def __init__(
        self,
        client: DashboardApiClient,
        *,
        notifier: Optional[Notifier] = None,
        user_id: Callable[[], Optional[str]] = lambda: None,
        download_dir: Optional[Path] = None,
        open_in_browser: Callable[[str], object] = webbrowser.open_new_tab,
    ):
        self.client = client
        self.notifier = notifier or Notifier()
        self._user_id = user_id
        self.download_dir = download_dir or Path.cwd()
        self._open_in_browser = open_in_browser
        self.work_order_id: Optional[str] = None
        self.summaries: Optional[SummaryData] = None
        self.feedback: Optional[FeedbackRecord] = None

    async def load(self, work_order_id: str) -> None:
        if work_order_id != self.work_order_id:
            self.summaries = None
            self.feedback = None
        self.work_order_id = work_order_id
        await asyncio.gather(
            self._load_summaries(work_order_id), self._load_feedback(work_order_id)
        )

    def reset(self) -> None:
        self.work_order_id = None
        self.summaries = None
        self.feedback = None

    async def _load_summaries(self, work_order_id: str) -> None:
        try:
            payload = await self.client.summaries(work_order_id)
        except NotFoundError:
            if work_order_id == self.work_order_id:
                self.summaries = SummaryData.placeholder(SUMMARY_PLACEHOLDER)
            return
        except ApiError as exc:
            logger.warning("Summaries for %s unavailable: %s", work_order_id, exc)
            if work_order_id != self.work_order_id:
                return
            self.notifier.error("Failed to load summaries")
            if self.summaries is None:
                self.summaries = SummaryData.placeholder(SUMMARY_PLACEHOLDER)
            return
        if work_order_id == self.work_order_id:
            self.summaries = parse_summary_payload(payload)

    async def _load_feedback(self, work_order_id: str) -> None:
        try:
            record = await self.client.feedback(work_order_id)
        except ApiError as exc:
            logger.warning("Feedback for %s unavailable: %s", work_order_id, exc)
            self.notifier.error("Failed to load previous feedback")
            return
        if work_order_id == self.work_order_id:
            self.feedback = record

    # --- Feedback ---------------------------------------------------------

    def text_for(self, category: SummaryCategory) -> str:
        if self.summaries is None:
            return SUMMARY_PLACEHOLDER
        return self.summaries.text_for(category)

    def feedback_for(self, category: SummaryCategory) -> Optional[FeedbackEntry]:
        if self.feedback is None:
            return None
        entry = self.feedback.entry_for(category)
        if entry is None or entry.is_empty:
            return None
        return entry

    def submit_label(self, category: SummaryCategory) -> str:
        return "Update" if self.feedback_for(category) else "Submit"

    def open_feedback_dialog(
        self, category: SummaryCategory, sentiment: Sentiment
    ) -> FeedbackDraft:
        existing = self.feedback_for(category)
        return FeedbackDraft(
            category=category,
            sentiment=sentiment,
            comment=(existing.comment or "") if existing else "",
            submit_label=self.submit_label(category),
        )

    async def submit_feedback(
        self,
        category: SummaryCategory,
        sentiment: Sentiment,
        comment: Optional[str] = None,
    ) -> bool:
        """Upsert feedback for one category; the other three stay as they were."""
        if self.work_order_id is None:
            raise RuntimeError("No work order is open")
        work_order_id = self.work_order_id
        entry = FeedbackEntry(feedback=sentiment, comment=(comment or "").strip() or None)
        payload = {
            "work_order_id": work_order_id,
            "user_id": self._user_id(),
            "category": category.value,
            "feedback": entry.feedback,
            "comment": entry.comment,
        }
        try:
            response = await self.client.submit_feedback(payload)
        except ApiError as exc:
            logger.error("Feedback submit for %s failed: %s", work_order_id, exc)
            self.notifier.error("Failed to submit feedback")
            return False

        base = self.feedback or FeedbackRecord(
            work_order_id=work_order_id, user_id=self._user_id()
        )
        merged = base.with_entry(category, entry)
        if isinstance(response, dict) and response.get("work_order_id") == work_order_id:
            try:
                server_record = FeedbackRecord.model_validate(response)
            except ValueError:
                server_record = None
            # Trust the server copy only when it agrees on the submitted category.
            if server_record is not None and server_record.entry_for(category) == entry:
                merged = server_record
        if work_order_id == self.work_order_id:
            self.feedback = merged
        self.notifier.success("Thank you for your feedback!")
        return True

    # --- Downloads --------------------------------------------------------

    async def download(self, source: SourceDocument) -> DownloadResult:
        try:
            url = await self.client.download_url(source.file_name)
        except ApiError as exc:
            logger.warning("No download link for %s: %s", source.file_name, exc)
            self.notifier.error(f"Could not download {source.display_name}")
            return DownloadResult(ok=False, message=str(exc))

        target = self.download_dir / _safe_file_name(source.file_name)
        try:
            content = await self.client.fetch_file(url)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except (ApiError, OSError) as exc:
            logger.warning("Saving %s failed, opening it instead: %s", source.file_name, exc)
            self._open_in_browser(url)
            self.notifier.info(MANUAL_SAVE_MESSAGE)
            return DownloadResult(ok=False, fallback_url=url, message=MANUAL_SAVE_MESSAGE)

        self.notifier.success(f"Downloaded {source.display_name}")
        return DownloadResult(ok=True, path=target)
