"""coder-task CLI: all commands."""

import logging
import os
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from coder_task.action import CoderTaskAction, resolve_user
from coder_task.clients.base import DEFAULT_WAIT_TIMEOUT, IssueCommenter
from coder_task.clients.coder import RealCoderClient
from coder_task.clients.github import GitHubCommenter
from coder_task.errors import CoderTaskError, NotFoundError
from coder_task.models import ActionOutputs
from coder_task.settings import (
    CoderTaskSettings,
    ConnectionSettings,
    get_settings,
    set_default_profile,
)

app = typer.Typer(help="coder-task: start or resume Coder tasks from GitHub issues", no_args_is_help=True)

logger = logging.getLogger(__name__)

ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-P", help="Profile name from ~/.config/coder-task/config.toml"),
]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging, including poll ticks")]
CoderUrlOpt = Annotated[str | None, typer.Option("--coder-url", help="Coder deployment URL")]
CoderTokenOpt = Annotated[
    str | None,
    typer.Option("--coder-token", help="Coder session token (prefer CODER_TASK_CODER_TOKEN)"),
]
GithubUserIdOpt = Annotated[int | None, typer.Option("--github-user-id", help="GitHub user ID linked to a Coder user")]
CoderUsernameOpt = Annotated[
    str | None,
    typer.Option("--coder-username", help="Coder username, instead of a GitHub user ID"),
]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at info
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def _fail(message: str) -> NoReturn:
    if _in_github_actions():
        typer.echo(f"::error::{message}")
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(1)


def _coder_client(settings: ConnectionSettings) -> RealCoderClient:
    return RealCoderClient(
        str(settings.coder_url),
        settings.coder_token.get_secret_value(),
        poll_interval=settings.poll_interval_seconds,
    )


def _build_commenter(settings: CoderTaskSettings) -> IssueCommenter | None:
    if not settings.comment_on_issue:
        return None
    try:
        return GitHubCommenter(settings)
    except RuntimeError as exc:
        logger.error("Issue comments disabled: %s", exc)
        return None


def _write_github_outputs(outputs: ActionOutputs) -> None:
    """Append outputs to $GITHUB_OUTPUT when running as a workflow step."""
    output_file = os.environ.get("GITHUB_OUTPUT")
    if not output_file:
        return
    with Path(output_file).open("a", encoding="utf-8") as fh:
        fh.write(f"coder-username={outputs.coder_username}\n")
        fh.write(f"task-name={outputs.task_name}\n")
        fh.write(f"task-url={outputs.task_url}\n")
        fh.write(f"task-created={str(outputs.task_created).lower()}\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("run")
def run_cmd(
    prompt: Annotated[str | None, typer.Option("--prompt", "-p", help="Prompt delivered to the task")] = None,
    issue_url: Annotated[str | None, typer.Option("--issue-url", help="https://github.com/owner/repo/issues/N")] = None,
    template: Annotated[str | None, typer.Option("--template", "-t", help="Coder template name")] = None,
    preset: Annotated[str | None, typer.Option("--preset", help="Template preset name, else the default")] = None,
    organization: Annotated[str | None, typer.Option("--organization", help="Coder organization")] = None,
    prefix: Annotated[str | None, typer.Option("--prefix", help="Task name prefix")] = None,
    coder_url: CoderUrlOpt = None,
    coder_token: CoderTokenOpt = None,
    github_user_id: GithubUserIdOpt = None,
    coder_username: CoderUsernameOpt = None,
    no_comment: Annotated[bool, typer.Option("--no-comment", help="Do not comment on the issue")] = False,
    profile: ProfileOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Start a task for an issue, or send the prompt to the issue's existing task."""
    _configure_logging(verbose)
    try:
        settings = get_settings(
            CoderTaskSettings,
            profile=profile,
            coder_task_prompt=prompt,
            github_issue_url=issue_url,
            coder_template_name=template,
            coder_template_preset=preset,
            coder_organization=organization,
            coder_task_name_prefix=prefix,
            coder_url=coder_url,
            coder_token=coder_token,
            github_user_id=github_user_id,
            coder_username=coder_username,
            comment_on_issue=False if no_comment else None,
        )
        with _coder_client(settings) as coder:
            outputs = CoderTaskAction(coder, settings, _build_commenter(settings)).run()
    except CoderTaskError as exc:
        _fail(str(exc))

    _write_github_outputs(outputs)

    table = Table(title="Coder Task")
    table.add_column("Output", style="bold")
    table.add_column("Value")
    table.add_row("coder-username", outputs.coder_username)
    table.add_row("task-name", outputs.task_name)
    table.add_row("task-url", outputs.task_url)
    table.add_row("task-created", str(outputs.task_created).lower())
    rprint(table)


@app.command("wait")
def wait_cmd(
    task_name: Annotated[str, typer.Argument(help="Task name, e.g. gh-42")],
    timeout: Annotated[
        float, typer.Option("--timeout", min=1, help="Seconds to wait for active/idle")
    ] = DEFAULT_WAIT_TIMEOUT,
    coder_url: CoderUrlOpt = None,
    coder_token: CoderTokenOpt = None,
    github_user_id: GithubUserIdOpt = None,
    coder_username: CoderUsernameOpt = None,
    profile: ProfileOpt = None,
    verbose: VerboseOpt = False,
) -> None:
    """Block until a task is active and idle."""
    _configure_logging(verbose)
    try:
        settings = get_settings(
            ConnectionSettings,
            profile=profile,
            coder_url=coder_url,
            coder_token=coder_token,
            github_user_id=github_user_id,
            coder_username=coder_username,
        )
        with _coder_client(settings) as coder:
            user = resolve_user(coder, settings)
            task = coder.find_task_by_name(user.username, task_name)
            if task is None:
                raise NotFoundError(f"No task named {task_name} owned by {user.username}")
            task = coder.wait_for_task_active(user.username, task.id, timeout=timeout)
    except CoderTaskError as exc:
        _fail(str(exc))

    rprint(f"[green]✓[/green] [bold]{task.name}[/bold] is {task.status}/{task.state} (id: {task.id})")


@app.command("set-default")
def set_default(
    profile: Annotated[str, typer.Argument(help="Profile name to set as default")],
) -> None:
    """Make an existing profile the one used when --profile is not given."""
    try:
        config_path = set_default_profile(profile)
    except CoderTaskError as exc:
        _fail(str(exc))
    rprint(f'[green]✓[/green] Default profile set to "{profile}" in {config_path}')


@app.command("config-show")
def config_show(profile: ProfileOpt = None) -> None:
    """Show resolved connection settings (masks credentials)."""
    try:
        settings = get_settings(ConnectionSettings, profile=profile)
    except CoderTaskError as exc:
        _fail(str(exc))

    def mask(val: str | None) -> str:
        if val is None:
            return "[dim](not set)[/dim]"
        if len(val) <= 5:
            return "***"
        return f"...{val[-5:]}"

    not_set = "[dim](not set)[/dim]"

    table = Table(title="coder-task configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("profile", settings.profile or not_set)
    table.add_row("coder_url", str(settings.coder_url))
    table.add_row("coder_token", mask(settings.coder_token.get_secret_value()))
    table.add_row("coder_organization", settings.coder_organization)
    table.add_row("github_user_id", str(settings.github_user_id) if settings.github_user_id else not_set)
    table.add_row("coder_username", settings.coder_username or not_set)
    table.add_row("wait_timeout_seconds", f"{settings.wait_timeout_seconds:g}")
    table.add_row("poll_interval_seconds", f"{settings.poll_interval_seconds:g}")

    rprint(table)
