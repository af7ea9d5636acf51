import pytest

from approval_dashboard.exceptions import NotFoundError
from approval_dashboard.models import ApprovalDetails, ApprovalResult


def summary_payload(**overrides):
    base = {
        "safety_rules_summary": "Apply **lockout/tagout**.",
        "operating_experience_summary": "Stage spare seals first.",
        "hpt_rules_summary": "Pre-job briefing.",
        "similar_wo_summary": "No findings on similar jobs.",
        "safety_rules_sources": [{"file_name": "procedures/repair-sop.pdf", "title": "Repair SOP"}],
        "operating_experience_sources": ["oe/wo-0007-report.pdf"],
    }
    base.update(overrides)
    return base


class FakeApi:
    """In-memory stand-in for DashboardApiClient used by the controller tests."""

    def __init__(self):
        self.summary_result = summary_payload()
        self.feedback_record = None
        self.feedback_response = None
        self.feedback_error = None
        self.feedback_posts = []
        self.fetch_error = None
        self.approval_error = None
        self.approvals = []
        self.details_requests = []

    async def summaries(self, work_order_id):
        if isinstance(self.summary_result, Exception):
            raise self.summary_result
        return self.summary_result

    async def feedback(self, work_order_id):
        return self.feedback_record

    async def submit_feedback(self, payload):
        self.feedback_posts.append(payload)
        if self.feedback_error:
            raise self.feedback_error
        return self.feedback_response

    async def download_url(self, file_name):
        return f"https://files.test/{file_name}?sig=abc"

    async def fetch_file(self, url):
        if self.fetch_error:
            raise self.fetch_error
        return b"document bytes"

    async def submit_approval(self, work_order_id, decision):
        if self.approval_error:
            raise self.approval_error
        self.approvals.append((work_order_id, decision.value))
        return ApprovalResult(message="ok", work_order_id=work_order_id, status=decision.value)

    async def approval_details(self, work_order_id):
        self.details_requests.append(work_order_id)
        if not self.approvals:
            raise NotFoundError("none", status_code=404)
        return ApprovalDetails(
            status=self.approvals[-1][1],
            action_by={"email": "admin@example.com"},
            action_date="2025-02-01T09:30:00+00:00",
        )


@pytest.fixture
def fake_api():
    return FakeApi()
