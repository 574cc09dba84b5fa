"""Resolve the user, template and preset, then start or resume the issue's task."""

import logging
from collections.abc import Sequence
from uuid import UUID

import httpx
from pydantic import TypeAdapter

from coder_task.clients.base import CoderClient, IssueCommenter
from coder_task.clients.coder import deployment_base_url
from coder_task.clients.github import format_comment, parse_github_issue_url
from coder_task.errors import CoderTaskError, InputValidationError, NotFoundError
from coder_task.models import (
    ActionOutputs,
    CreateTaskRequest,
    IssueRef,
    Preset,
    TaskName,
    TaskRunResult,
    Template,
    User,
)
from coder_task.settings import CoderTaskSettings, ConnectionSettings

logger = logging.getLogger(__name__)

_TASK_NAME = TypeAdapter(TaskName)


def make_task_name(prefix: str, issue_number: int) -> str:
    """Task names are the idempotency key: one issue, one task per owner."""
    if not prefix:
        raise InputValidationError("Task name prefix cannot be empty")
    return _TASK_NAME.validate_python(f"{prefix}-{issue_number}")


def generate_task_url(coder_url: str, coder_username: str, task_id: UUID) -> str:
    return f"{deployment_base_url(coder_url)}/tasks/{coder_username}/{task_id}"


def select_preset(presets: Sequence[Preset], requested_name: str | None = None) -> UUID | None:
    """Pick a preset id for the template version.

    Without a requested name the first default preset wins, and no default
    at all means None: the template then falls back to its own parameter
    defaults. A requested name must match exactly; the first match in list
    order wins and no match is a NotFoundError.
    """
    if not requested_name:
        return next((p.id for p in presets if p.default), None)
    preset_id = next((p.id for p in presets if p.name == requested_name), None)
    if preset_id is None:
        raise NotFoundError(f"Preset {requested_name} not found")
    return preset_id


def resolve_user(coder: CoderClient, settings: ConnectionSettings) -> User:
    if settings.coder_username:
        logger.info("Resolving Coder user by username: %s", settings.coder_username)
        return coder.get_user_by_username(settings.coder_username)
    logger.info("GitHub user ID: %s", settings.github_user_id)
    return coder.get_user_by_github_id(settings.github_user_id)


class CoderTaskAction:
    def __init__(
        self,
        coder: CoderClient,
        settings: CoderTaskSettings,
        commenter: IssueCommenter | None = None,
    ) -> None:
        self._coder = coder
        self._settings = settings
        self._commenter = commenter

    def resolve_user(self) -> User:
        return resolve_user(self._coder, self._settings)

    def resolve_template(self) -> tuple[Template, UUID | None]:
        template = self._coder.get_template_by_organization_and_name(
            self._settings.coder_organization,
            self._settings.coder_template_name,
        )
        logger.info(
            "Coder Template: %s (id:%s, active_version_id:%s)",
            template.name,
            template.id,
            template.active_version_id,
        )
        presets = self._coder.get_template_version_presets(template.active_version_id)
        if not self._settings.coder_template_preset:
            logger.info("Coder Template: Using default preset")
        preset_id = select_preset(presets, self._settings.coder_template_preset)
        logger.info("Coder Template: Preset ID: %s", preset_id)
        return template, preset_id

    def ensure_task_running(
        self,
        owner: str,
        task_name: str,
        template: Template,
        preset_id: UUID | None,
        prompt: str,
    ) -> TaskRunResult:
        """Send the prompt to the owner's task named task_name, creating it if missing.

        An existing task that is not active yet is waited on first. The
        prompt goes to it by id, never by name. A new task receives the
        prompt as part of its create request, so nothing is waited on.
        Failures leave the remote task as it is; nothing is rolled back.
        """
        existing = self._coder.find_task_by_name(owner, task_name)
        if existing:
            logger.info(
                "Coder Task: already exists: %s (id: %s status: %s)", existing.name, existing.id, existing.status
            )
            if existing.status != "active":
                logger.info("Coder Task: waiting for task %s to become active...", existing.name)
                self._coder.wait_for_task_active(owner, existing.id, timeout=self._settings.wait_timeout_seconds)

            logger.info("Coder Task: Sending prompt to existing task...")
            self._coder.send_task_input(owner, existing.id, prompt)
            logger.info("Coder Task: Prompt sent successfully")
            return TaskRunResult(task=existing, created=False)

        logger.info("Creating Coder task...")
        request = CreateTaskRequest(
            name=task_name,
            template_version_id=template.active_version_id,
            template_version_preset_id=preset_id,
            input=prompt,
        )
        created = self._coder.create_task(owner, request)
        logger.info("Coder Task: created successfully (status: %s)", created.status)
        return TaskRunResult(task=created, created=True)

    def comment_on_issue(self, task_url: str, issue: IssueRef) -> None:
        """Post or refresh the issue comment. A failure here does not fail the run."""
        if self._commenter is None:
            logger.info("Skipping comment on issue (no GitHub commenter configured)")
            return
        logger.info("Commenting on issue %s", issue)
        try:
            self._commenter.upsert_comment(issue, format_comment(task_url))
        except (httpx.HTTPError, RuntimeError, CoderTaskError) as exc:
            logger.error("Failed to comment on issue: %s", exc)
            return
        logger.info("Comment posted successfully")

    def run(self) -> ActionOutputs:
        # Everything that can be checked locally is checked before the first request.
        issue = parse_github_issue_url(str(self._settings.github_issue_url))
        task_name = make_task_name(self._settings.coder_task_name_prefix, issue.number)

        user = self.resolve_user()
        logger.info("GitHub owner: %s", issue.owner)
        logger.info("GitHub repo: %s", issue.repo)
        logger.info("GitHub issue number: %s", issue.number)
        logger.info("Coder username: %s", user.username)
        logger.info("Coder organization: %s", self._settings.coder_organization)
        logger.info("Coder Task name: %s", task_name)

        template, preset_id = self.resolve_template()
        result = self.ensure_task_running(
            user.username,
            task_name,
            template,
            preset_id,
            self._settings.coder_task_prompt,
        )

        task_url = generate_task_url(str(self._settings.coder_url), user.username, result.task.id)
        logger.info("Coder Task: URL: %s", task_url)

        if result.created:
            if self._settings.comment_on_issue:
                self.comment_on_issue(task_url, issue)
            else:
                logger.info("Skipping comment on issue (comment_on_issue is false)")

        return ActionOutputs(
            coder_username=user.username,
            task_name=result.task.name,
            task_url=task_url,
            task_created=result.created,
        )
