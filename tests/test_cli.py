import httpx
import pytest
import typer
from rich.console import Console
from typer.testing import CliRunner

from approval_dashboard import cli
from approval_dashboard.dashboard import Dashboard
from approval_dashboard.sandbox import DEMO_EMAIL, DEMO_PASSWORD, create_app
from approval_dashboard.storage import CookieStore, LocalStorage

runner = CliRunner()


@pytest.fixture
def sandbox(monkeypatch, tmp_path):
    app = create_app()
    cookies = CookieStore()
    storage = LocalStorage()

    def factory(settings):
        return Dashboard(
            settings,
            transport=httpx.ASGITransport(app=app),
            local_storage=storage,
            cookies=cookies,
        )

    monkeypatch.setenv("DASHBOARD_API_URL", "http://sandbox.test/api")
    monkeypatch.setenv("DASHBOARD_DOWNLOAD_DIR", str(tmp_path))
    monkeypatch.setenv("DASHBOARD_SEARCH_DEBOUNCE_MS", "10")
    monkeypatch.setattr(cli, "make_dashboard", factory)
    monkeypatch.setattr(cli, "console", Console(width=200))
    return storage


def sign_in():
    return runner.invoke(cli.app, ["login", "--user", DEMO_EMAIL, "--password", DEMO_PASSWORD])


def test_parse_filters():
    assert cli.parse_filters(["WorkOrderTypeId=Repair", " CostType = "]) == {
        "WorkOrderTypeId": "Repair",
        "CostType": "",
    }
    with pytest.raises(typer.BadParameter):
        cli.parse_filters(["no-equals"])


def test_chat_answers_questions():
    result = runner.invoke(cli.app, ["chat", "performance", "--ask", "Any safety tips?"])
    assert result.exit_code == 0
    assert "STAR method" in result.output


def test_chat_interactive_until_blank_line():
    result = runner.invoke(cli.app, ["chat", "procedures", "--type", "Repair"], input="which tools?\n\n")
    assert result.exit_code == 0
    assert "Repair work orders require calibrated" in result.output


def test_commands_require_sign_in(sandbox):
    result = runner.invoke(cli.app, ["list"])
    assert result.exit_code == 1
    assert "Not signed in" in result.output


def test_login_list_and_approve(sandbox):
    login = sign_in()
    assert login.exit_code == 0, login.output
    assert "Signed in as Demo Administrator" in login.output

    listing = runner.invoke(cli.app, ["list", "--filter", "approval_status=approved"])
    assert listing.exit_code == 0, listing.output
    assert "WO-0003" in listing.output
    assert "WO-0007" not in listing.output
    assert sandbox.get_item("activeFilters") == '{"approval_status": "approved"}'

    cleared = runner.invoke(cli.app, ["clear-filters"])
    assert cleared.exit_code == 0
    assert sandbox.get_item("activeFilters") is None

    approved = runner.invoke(cli.app, ["approve", "WO-0007", "--ack-all", "--yes"])
    assert approved.exit_code == 0, approved.output
    assert "Work order WO-0007 approved successfully" in approved.output

    again = runner.invoke(cli.app, ["approve", "WO-0007", "--ack-all", "--yes"])
    assert again.exit_code == 1
    assert "already approved" in again.output


def test_reject_with_prompts(sandbox):
    sign_in()
    result = runner.invoke(cli.app, ["reject", "WO-0012"], input="y\ny\ny\ny\n")
    assert result.exit_code == 0, result.output
    assert "Work order WO-0012 rejected" in result.output


def test_declined_acknowledgement_blocks_decision(sandbox):
    sign_in()
    result = runner.invoke(cli.app, ["approve", "WO-0012"], input="y\nn\ny\n")
    assert result.exit_code == 1
    assert "acknowledged" in result.output


def test_feedback_and_whoami(sandbox):
    sign_in()
    result = runner.invoke(cli.app, ["feedback", "WO-0007", "hpt", "positive", "-c", "helpful"])
    assert result.exit_code == 0, result.output
    assert "Thank you for your feedback!" in result.output

    who = runner.invoke(cli.app, ["whoami"])
    assert DEMO_EMAIL in who.output

    runner.invoke(cli.app, ["logout"])
    assert runner.invoke(cli.app, ["whoami"]).exit_code == 1
