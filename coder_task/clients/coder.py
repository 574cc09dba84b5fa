"""Coder REST API client: stable /api/v2 plus the experimental tasks API."""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote
from uuid import UUID

import httpx
from pydantic import TypeAdapter, ValidationError

from coder_task.clients.base import DEFAULT_WAIT_TIMEOUT, POLL_INTERVAL, CoderClient
from coder_task.errors import (
    ConflictError,
    InputValidationError,
    NotFoundError,
    RemoteTaskError,
    TaskTimeoutError,
    TransportError,
)
from coder_task.models import CreateTaskRequest, Preset, Task, TaskList, Template, User, UserList

logger = logging.getLogger(__name__)

SESSION_TOKEN_HEADER = "Coder-Session-Token"

_STATUS_ERRORS = {404: NotFoundError, 409: ConflictError}

_PRESET_LIST = TypeAdapter(list[Preset])


def deployment_base_url(url: str) -> str:
    """Strip query, fragment and a trailing slash from a deployment URL."""
    return re.split(r"[?#]", url, maxsplit=1)[0].removesuffix("/")


def _segment(value: object) -> str:
    return quote(str(value), safe="")


@dataclass
class _PollState:
    """Loop-local state of one wait_for_task_active call."""

    started: float
    polls: int = 0
    last_status: str | None = None
    last_state: str | None = None


class RealCoderClient(CoderClient):
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        poll_interval: float = POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=deployment_base_url(base_url),
            headers={
                SESSION_TOKEN_HEADER: token,
                "Accept": "application/json",
            },
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RealCoderClient":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        body: dict | None = None,
        response_model: Any = None,
    ) -> Any:
        """Execute one request and validate its body against response_model.

        Non-2xx responses raise NotFoundError, ConflictError or TransportError.
        A 204 or empty body is None; with a response_model it still has to
        validate, so an empty body where a record is expected is an error.
        """
        try:
            response = self._client.request(method, endpoint, params=params, json=body)
        except httpx.HTTPError as exc:
            raise TransportError(f"Coder API request failed: {method} {endpoint}: {exc}") from exc

        if not response.is_success:
            try:
                raw = response.text
            except (httpx.HTTPError, httpx.StreamError, UnicodeDecodeError):
                raw = ""
            error_cls = _STATUS_ERRORS.get(response.status_code, TransportError)
            raise error_cls(f"Coder API error: {response.reason_phrase}", response.status_code, raw)

        if response_model is None:
            return None

        data = None
        if response.status_code != 204 and response.content:
            try:
                data = response.json()
            except ValueError as exc:
                raise TransportError(
                    f"Coder API returned invalid JSON for {endpoint}", response.status_code, response.text
                ) from exc

        adapter = response_model if isinstance(response_model, TypeAdapter) else TypeAdapter(response_model)
        try:
            return adapter.validate_python(data)
        except ValidationError as exc:
            raise TransportError(
                f"Unexpected response from {endpoint}: {exc.error_count()} validation error(s)",
                response.status_code,
                data,
            ) from exc

    def get_user_by_github_id(self, github_user_id: int | None) -> User:
        """Return the only Coder user linked to the GitHub user ID.

        Zero matches raise NotFoundError, several raise ConflictError: a
        duplicate link is a data problem on the deployment, never resolved
        by picking one.
        """
        if github_user_id is None:
            raise InputValidationError("GitHub user ID cannot be empty")
        if github_user_id < 1:
            raise InputValidationError(f"GitHub user ID must be positive, got {github_user_id}")
        user_list: UserList = self._request(
            "GET",
            "/api/v2/users",
            params={"q": f"github_com_user_id:{github_user_id}"},
            response_model=UserList,
        )
        if not user_list.users:
            raise NotFoundError(f"No Coder user found with GitHub user ID {github_user_id}")
        if len(user_list.users) > 1:
            raise ConflictError(f"Multiple Coder users found with GitHub user ID {github_user_id}")
        return user_list.users[0]

    def get_user_by_username(self, username: str) -> User:
        if not username:
            raise InputValidationError("Coder username cannot be empty")
        return self._request("GET", f"/api/v2/users/{_segment(username)}", response_model=User)

    def get_template_by_organization_and_name(self, organization: str, template_name: str) -> Template:
        return self._request(
            "GET",
            f"/api/v2/organizations/{_segment(organization)}/templates/{_segment(template_name)}",
            response_model=Template,
        )

    def get_template_version_presets(self, template_version_id: UUID) -> list[Preset]:
        return self._request(
            "GET",
            f"/api/v2/templateversions/{_segment(template_version_id)}/presets",
            response_model=_PRESET_LIST,
        )

    def find_task_by_name(self, owner: str, task_name: str) -> Task | None:
        # TODO: use a by-owner-and-name task endpoint once the experimental API has one.
        try:
            task_list: TaskList = self._request(
                "GET",
                "/api/experimental/tasks",
                params={"q": f"owner:{owner}"},
                response_model=TaskList,
            )
        except NotFoundError:
            return None
        return next((task for task in task_list.tasks if task.name == task_name), None)

    def get_task_by_id(self, owner: str, task_id: UUID) -> Task:
        return self._request(
            "GET",
            f"/api/experimental/tasks/{_segment(owner)}/{_segment(task_id)}",
            response_model=Task,
        )

    def create_task(self, owner: str, request: CreateTaskRequest) -> Task:
        return self._request(
            "POST",
            f"/api/experimental/tasks/{_segment(owner)}",
            body=request.model_dump(mode="json", exclude_none=True),
            response_model=Task,
        )

    def send_task_input(self, owner: str, task_id: UUID, text: str) -> None:
        self._request(
            "POST",
            f"/api/experimental/tasks/{_segment(owner)}/{_segment(task_id)}/send",
            body={"input": text},
        )

    def wait_for_task_active(self, owner: str, task_id: UUID, timeout: float = DEFAULT_WAIT_TIMEOUT) -> Task:
        """Poll the task every poll interval until it is active and idle.

        An error status fails on the tick it is observed. Running out of
        budget raises TaskTimeoutError; transport errors propagate.
        """
        state = _PollState(started=self._clock())
        while self._clock() - state.started < timeout:
            task = self.get_task_by_id(owner, task_id)
            state.polls += 1
            state.last_status = task.status
            state.last_state = task.state

            if task.status == "error":
                raise RemoteTaskError(
                    "Task entered error state while waiting for active state",
                    response=task.model_dump(mode="json"),
                )
            logger.debug(
                "wait_for_task_active: task_id: %s status: %s current_state: %s",
                task_id,
                state.last_status,
                state.last_state,
            )
            if task.is_ready:
                return task

            self._sleep(self._poll_interval)

        raise TaskTimeoutError(
            f"Timeout waiting for task to reach active state (waited {timeout:g}s, "
            f"{state.polls} polls, last status: {state.last_status}, current_state: {state.last_state})",
            timeout=timeout,
        )
