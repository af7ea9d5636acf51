"""Command-line entry points for the work-order approval dashboard."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler

from .approval import AcknowledgementFlag, ApprovalAction
from .chat import ChatTopic, ChatTranscript, TOPIC_LABELS
from .config import Settings, get_settings
from .dashboard import Dashboard
from .exceptions import DashboardError
from .models import SummaryCategory
from .notifications import Notifier, ToastLevel
from .table import ACK_LABELS, render_popup

app = typer.Typer(help="Review, approve and reject maintenance work orders.")
console = Console()

T = TypeVar("T")

TOAST_STYLES = {
    ToastLevel.SUCCESS: "green",
    ToastLevel.INFO: "cyan",
    ToastLevel.WARNING: "yellow",
    ToastLevel.ERROR: "red",
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def make_dashboard(settings: Settings) -> Dashboard:
    """Build the dashboard for one command; tests replace this to inject a transport."""
    return Dashboard(settings)


def parse_filters(values: List[str]) -> dict:
    """Turn ``field=value`` pairs into a filter mapping; a blank value clears the field."""
    filters = {}
    for item in values:
        field, sep, value = item.partition("=")
        if not sep or not field.strip():
            raise typer.BadParameter(f"Expected FIELD=VALUE, got {item!r}")
        filters[field.strip()] = value.strip()
    return filters


def print_toasts(notifier: Notifier) -> None:
    for toast in notifier.drain():
        style = TOAST_STYLES[toast.level]
        rprint(f"[{style}]{toast.message}[/{style}]")


def _run(body: Callable[[Dashboard], Awaitable[T]]) -> T:
    """Run one command against a fresh dashboard and report its toasts."""

    async def runner() -> T:
        dashboard = make_dashboard(get_settings())
        async with dashboard:
            try:
                return await body(dashboard)
            finally:
                print_toasts(dashboard.notifier)

    try:
        return asyncio.run(runner())
    except DashboardError as exc:
        rprint(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)


async def _signed_in(dashboard: Dashboard) -> None:
    if not await dashboard.start():
        raise DashboardError("Not signed in. Run `approval-dashboard login` first.")


async def _open(dashboard: Dashboard, work_order_id: str):
    await _signed_in(dashboard)
    workflow = await dashboard.open_work_order(work_order_id)
    if workflow is None:
        raise typer.Exit(code=1)
    return workflow


@app.callback()
def main_callback(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Override DASHBOARD_LOG_LEVEL for this run."
    ),
) -> None:
    configure_logging(log_level or get_settings().log_level)


# --- Session ----------------------------------------------------------------


@app.command()
def login(
    identifier: str = typer.Option(..., "--user", "-u", prompt="Username or email"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
) -> None:
    """Sign in and keep the token for later commands."""

    async def body(dashboard: Dashboard) -> None:
        result = await dashboard.session.login(identifier, password)
        if not result.ok:
            raise typer.Exit(code=1)
        rprint(f"[green]Signed in as {dashboard.session.user.display_name}[/green]")

    _run(body)


@app.command()
def logout() -> None:
    """Forget the stored token."""

    async def body(dashboard: Dashboard) -> None:
        dashboard.session.logout()
        rprint("[cyan]Signed out.[/cyan]")

    _run(body)


@app.command()
def whoami() -> None:
    async def body(dashboard: Dashboard) -> None:
        if not await dashboard.session.restore():
            raise DashboardError("Not signed in.")
        user = dashboard.session.user
        rprint(f"{user.display_name} <{user.email or '-'}>")

    _run(body)


@app.command("forgot-password")
def forgot_password(email: str = typer.Argument(..., help="Account email address.")) -> None:
    """Ask the server to email a reset link."""

    async def body(dashboard: Dashboard) -> None:
        if not await dashboard.session.forgot_password(email):
            raise typer.Exit(code=1)

    _run(body)


@app.command("reset-password")
def reset_password(
    token: str = typer.Argument(..., help="Token from the reset link."),
    password: str = typer.Option(
        ..., "--password", prompt="New password", hide_input=True
    ),
    confirm: str = typer.Option(
        ..., "--confirm", prompt="Confirm new password", hide_input=True
    ),
) -> None:
    async def body(dashboard: Dashboard) -> None:
        if not await dashboard.session.reset_password(token, password, confirm):
            raise typer.Exit(code=1)

    _run(body)


@app.command("change-password")
def change_password(
    old_password: str = typer.Option(..., "--old", prompt="Current password", hide_input=True),
    new_password: str = typer.Option(
        ..., "--new", prompt="New password", hide_input=True, confirmation_prompt=True
    ),
) -> None:
    async def body(dashboard: Dashboard) -> None:
        await _signed_in(dashboard)
        if not await dashboard.session.change_password(old_password, new_password):
            raise typer.Exit(code=1)

    _run(body)


# --- Table ------------------------------------------------------------------


@app.command("list")
def list_command(
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Free-text search."),
    filters: List[str] = typer.Option(
        [], "--filter", "-f", help="FIELD=VALUE, repeatable. An empty VALUE clears the filter."
    ),
    sort: Optional[str] = typer.Option(None, "--sort", help="API field to sort by."),
    descending: bool = typer.Option(False, "--desc", help="Sort descending."),
    page: Optional[int] = typer.Option(None, "--page", min=1),
) -> None:
    """Show one page of work orders; search, filters and page are remembered."""
    wanted_filters = parse_filters(filters)

    async def body(dashboard: Dashboard) -> None:
        await _signed_in(dashboard)
        controller = dashboard.controller
        if search is not None:
            controller.set_search_text(search)
        for column, value in wanted_filters.items():
            controller.set_filter(column, value or None)
        if sort:
            controller.toggle_sort(sort)
            if descending:
                controller.toggle_sort(sort)
        await controller.settle()
        if page is not None and page != controller.state.page:
            controller.set_page(page)
            await controller.settle()
        console.print(dashboard.table.render())

    _run(body)


@app.command("clear-filters")
def clear_filters() -> None:
    """Drop saved search, filters and sort and go back to page 1."""

    async def body(dashboard: Dashboard) -> None:
        await _signed_in(dashboard)
        dashboard.controller.clear_all()
        await dashboard.controller.settle()
        console.print(dashboard.table.render())

    _run(body)


@app.command("filters")
def filters_command() -> None:
    """List filterable columns and the values each one offers."""

    async def body(dashboard: Dashboard) -> None:
        await _signed_in(dashboard)
        controller = dashboard.controller
        await controller.load_filter_options()
        for column in controller.columns:
            values = controller.filter_options.get(column.field, [])
            choices = ", ".join(f"{v.label} ({v.count})" for v in values)
            rprint(f"[bold]{column.field}[/bold] {column.label}: {choices or '-'}")

    _run(body)


# --- Popup ------------------------------------------------------------------


@app.command()
def show(work_order_id: str = typer.Argument(...)) -> None:
    """Show summaries, sources, feedback and decision details for one work order."""

    async def body(dashboard: Dashboard) -> None:
        workflow = await _open(dashboard, work_order_id)
        console.print(render_popup(workflow))

    _run(body)


def _decide(work_order_id: str, action: ApprovalAction, ack_all: bool, yes: bool) -> None:
    async def body(dashboard: Dashboard) -> None:
        workflow = await _open(dashboard, work_order_id)
        if not workflow.is_action_visible(action):
            raise DashboardError(f"Work order {work_order_id} is already {action.verb}")
        console.print(render_popup(workflow))
        for flag in AcknowledgementFlag:
            if ack_all or typer.confirm(ACK_LABELS[flag], default=False):
                workflow.toggle(flag, True)
        prompt = workflow.request(action)
        if not yes and not typer.confirm(prompt, default=False):
            workflow.cancel_confirmation()
            rprint("[yellow]Cancelled.[/yellow]")
            return
        if not await workflow.confirm():
            raise typer.Exit(code=1)

    _run(body)


@app.command()
def approve(
    work_order_id: str = typer.Argument(...),
    ack_all: bool = typer.Option(False, "--ack-all", help="Tick all three acknowledgements."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    _decide(work_order_id, ApprovalAction.APPROVE, ack_all, yes)


@app.command()
def reject(
    work_order_id: str = typer.Argument(...),
    ack_all: bool = typer.Option(False, "--ack-all", help="Tick all three acknowledgements."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    _decide(work_order_id, ApprovalAction.REJECT, ack_all, yes)


@app.command()
def feedback(
    work_order_id: str = typer.Argument(...),
    category: SummaryCategory = typer.Argument(..., case_sensitive=False),
    sentiment: str = typer.Argument(..., help="positive or negative"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c"),
) -> None:
    """Rate one summary; earlier feedback for other categories is kept."""
    sentiment = sentiment.lower()
    if sentiment not in ("positive", "negative"):
        raise typer.BadParameter("sentiment must be 'positive' or 'negative'")

    async def body(dashboard: Dashboard) -> None:
        await _open(dashboard, work_order_id)
        panel = dashboard.panel
        draft = panel.open_feedback_dialog(category, sentiment)
        text = comment if comment is not None else draft.comment
        if not await panel.submit_feedback(category, sentiment, text):
            raise typer.Exit(code=1)

    _run(body)


@app.command()
def download(
    work_order_id: str = typer.Argument(...),
    category: Optional[SummaryCategory] = typer.Option(None, "--category", case_sensitive=False),
) -> None:
    """Download the source documents behind a work order's summaries."""

    async def body(dashboard: Dashboard) -> None:
        await _open(dashboard, work_order_id)
        summaries = dashboard.panel.summaries
        categories = [category] if category else list(SummaryCategory)
        sources = [
            doc
            for cat in categories
            for doc in (summaries.sources_for(cat) if summaries else [])
        ]
        if not sources:
            rprint("[yellow]No source documents for this work order.[/yellow]")
            return
        for doc in sources:
            result = await dashboard.panel.download(doc)
            if result.ok:
                rprint(f"[cyan]Saved {result.path}[/cyan]")
            elif result.fallback_url:
                rprint(f"[yellow]{result.fallback_url}[/yellow]")

    _run(body)


# --- Assistant --------------------------------------------------------------


@app.command()
def chat(
    topic: ChatTopic = typer.Argument(ChatTopic.PROCEDURES, case_sensitive=False),
    work_order_type: str = typer.Option("this type of", "--type"),
    service_level: str = typer.Option("the current", "--service-level"),
    questions: List[str] = typer.Option(
        [], "--ask", "-a", help="Ask and exit; repeatable. Without it, chat interactively."
    ),
) -> None:
    """Canned assistant for procedures, operating experience and human performance tools."""
    transcript = ChatTranscript(topic, work_order_type, service_level)
    rprint(f"[bold]{TOPIC_LABELS[topic]}[/bold]")
    rprint(f"[cyan]{transcript.messages[0].content}[/cyan]")
    if questions:
        for question in questions:
            reply = transcript.ask(question)
            if reply is not None:
                rprint(f"> {question}")
                rprint(f"[cyan]{reply.content}[/cyan]")
        return
    while True:
        question = typer.prompt("You", default="", show_default=False)
        if not question.strip() or question.strip().lower() in ("exit", "quit"):
            break
        reply = transcript.ask(question)
        rprint(f"[cyan]{reply.content}[/cyan]")


@app.command()
def sandbox(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Serve the in-memory stand-in API (demo login: admin@example.com / password123)."""
    from .sandbox import serve

    rprint(f"[green]Sandbox API on http://{host}:{port}/api[/green]")
    serve(host=host, port=port, reload=reload)


def main():
    app()


if __name__ == "__main__":
    main()
