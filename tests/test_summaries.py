import asyncio

from approval_dashboard.exceptions import ApiError, NetworkError, NotFoundError
from approval_dashboard.models import FeedbackEntry, FeedbackRecord, SourceDocument, SummaryCategory
from approval_dashboard.notifications import Notifier, ToastLevel
from approval_dashboard.summaries import (
    MANUAL_SAVE_MESSAGE,
    SUMMARY_PLACEHOLDER,
    SummaryPanel,
    parse_summary_payload,
)

from conftest import summary_payload


def make_panel(api, tmp_path=None, opened=None):
    notifier = Notifier()
    panel = SummaryPanel(
        api,
        notifier=notifier,
        user_id=lambda: "1",
        download_dir=tmp_path,
        open_in_browser=(opened.append if opened is not None else lambda url: None),
    )
    return panel, notifier


def test_missing_summary_shows_one_placeholder_everywhere(fake_api):
    fake_api.summary_result = NotFoundError("none", status_code=404)
    panel, notifier = make_panel(fake_api)

    asyncio.run(panel.load("WO-0004"))

    texts = {panel.text_for(category) for category in SummaryCategory}
    assert texts == {SUMMARY_PLACEHOLDER}
    assert panel.summaries.is_placeholder
    assert notifier.toasts == []


def test_payload_with_error_key_is_placeholder():
    data = parse_summary_payload(summary_payload(error="generation running"))
    assert data.is_placeholder
    assert parse_summary_payload(["not", "a", "dict"]).is_placeholder
    assert not parse_summary_payload(summary_payload()).is_placeholder


def test_server_error_falls_back_with_toast(fake_api):
    fake_api.summary_result = ApiError("boom", status_code=500)
    panel, notifier = make_panel(fake_api)

    asyncio.run(panel.load("WO-0001"))

    assert panel.text_for(SummaryCategory.SAFETY) == SUMMARY_PLACEHOLDER
    assert notifier.messages(ToastLevel.ERROR) == ["Failed to load summaries"]


def test_summaries_and_sources_load(fake_api):
    panel, _ = make_panel(fake_api)
    asyncio.run(panel.load("WO-0007"))

    assert panel.text_for(SummaryCategory.OPERATING) == "Stage spare seals first."
    sources = panel.summaries.sources_for(SummaryCategory.SAFETY)
    assert [s.display_name for s in sources] == ["Repair SOP"]


def test_feedback_upsert_keeps_other_categories(fake_api):
    fake_api.feedback_record = FeedbackRecord(
        work_order_id="WO-0007",
        user_id="1",
        safety=FeedbackEntry(feedback="positive", comment="clear"),
    )
    panel, notifier = make_panel(fake_api)
    asyncio.run(panel.load("WO-0007"))

    assert panel.submit_label(SummaryCategory.SAFETY) == "Update"
    assert panel.submit_label(SummaryCategory.HPT) == "Submit"
    draft = panel.open_feedback_dialog(SummaryCategory.SAFETY, "negative")
    assert draft.comment == "clear"

    assert asyncio.run(panel.submit_feedback(SummaryCategory.HPT, "negative", " too long "))

    assert fake_api.feedback_posts == [
        {
            "work_order_id": "WO-0007",
            "user_id": "1",
            "category": "hpt",
            "feedback": "negative",
            "comment": "too long",
        }
    ]
    assert panel.feedback_for(SummaryCategory.SAFETY).comment == "clear"
    assert panel.feedback_for(SummaryCategory.HPT).feedback == "negative"
    assert panel.feedback_for(SummaryCategory.OPERATING) is None
    assert notifier.messages(ToastLevel.SUCCESS) == ["Thank you for your feedback!"]


def test_feedback_failure_changes_nothing(fake_api):
    fake_api.feedback_error = ApiError("boom", status_code=500)
    panel, notifier = make_panel(fake_api)
    asyncio.run(panel.load("WO-0007"))

    assert not asyncio.run(panel.submit_feedback(SummaryCategory.SAFETY, "positive"))

    assert panel.feedback_for(SummaryCategory.SAFETY) is None
    assert notifier.messages(ToastLevel.ERROR) == ["Failed to submit feedback"]


def test_download_saves_by_base_name(fake_api, tmp_path):
    panel, _ = make_panel(fake_api, tmp_path)

    result = asyncio.run(
        panel.download(SourceDocument(file_name="procedures/repair-sop.pdf", title="Repair SOP"))
    )

    assert result.ok
    assert result.path == tmp_path / "repair-sop.pdf"
    assert result.path.read_bytes() == b"document bytes"


def test_download_failure_opens_signed_url(fake_api, tmp_path):
    fake_api.fetch_error = NetworkError("blocked")
    opened = []
    panel, notifier = make_panel(fake_api, tmp_path, opened)

    result = asyncio.run(panel.download(SourceDocument(file_name="oe/report.pdf")))

    assert not result.ok
    assert opened == ["https://files.test/oe/report.pdf?sig=abc"]
    assert result.fallback_url == opened[0]
    assert notifier.messages(ToastLevel.INFO) == [MANUAL_SAVE_MESSAGE]


def test_late_missing_summary_does_not_replace_newer_work_order(fake_api):
    class SlowMissingApi(type(fake_api)):
        async def summaries(self, work_order_id):
            if work_order_id == "WO-0001":
                await asyncio.sleep(0.05)
                raise NotFoundError("none", status_code=404)
            return summary_payload()

    panel, notifier = make_panel(SlowMissingApi())

    async def go():
        first = asyncio.ensure_future(panel.load("WO-0001"))
        await asyncio.sleep(0)
        await panel.load("WO-0002")
        await first

    asyncio.run(go())

    assert panel.work_order_id == "WO-0002"
    assert not panel.summaries.is_placeholder
    assert panel.text_for(SummaryCategory.SAFETY) == "Apply **lockout/tagout**."
    assert notifier.toasts == []


def test_late_summary_failure_is_ignored_for_newer_work_order(fake_api):
    class SlowFailingApi(type(fake_api)):
        async def summaries(self, work_order_id):
            if work_order_id == "WO-0001":
                await asyncio.sleep(0.05)
                raise ApiError("boom", status_code=500)
            return summary_payload()

    panel, notifier = make_panel(SlowFailingApi())

    async def go():
        first = asyncio.ensure_future(panel.load("WO-0001"))
        await asyncio.sleep(0)
        await panel.load("WO-0002")
        await first

    asyncio.run(go())

    assert panel.text_for(SummaryCategory.SAFETY) == "Apply **lockout/tagout**."
    assert notifier.toasts == []
