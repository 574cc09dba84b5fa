"""Abstract capabilities consumed by CoderTaskAction.

Tests substitute deterministic fakes for both without touching the network.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from coder_task.models import CreateTaskRequest, IssueRef, Preset, Task, Template, User

DEFAULT_WAIT_TIMEOUT = 120.0  # seconds
POLL_INTERVAL = 2.0  # seconds
EXISTING_TASK_WAIT_TIMEOUT = 1200.0  # seconds; may compete with a cold provisioning cycle


class CoderClient(ABC):
    @abstractmethod
    def get_user_by_github_id(self, github_user_id: int | None) -> User: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> User: ...

    @abstractmethod
    def get_template_by_organization_and_name(self, organization: str, template_name: str) -> Template: ...

    @abstractmethod
    def get_template_version_presets(self, template_version_id: UUID) -> list[Preset]: ...

    @abstractmethod
    def find_task_by_name(self, owner: str, task_name: str) -> Task | None:
        """Return the owner's task with exactly this name, or None when there is none."""

    @abstractmethod
    def get_task_by_id(self, owner: str, task_id: UUID) -> Task: ...

    @abstractmethod
    def create_task(self, owner: str, request: CreateTaskRequest) -> Task: ...

    @abstractmethod
    def send_task_input(self, owner: str, task_id: UUID, text: str) -> None: ...

    @abstractmethod
    def wait_for_task_active(self, owner: str, task_id: UUID, timeout: float = DEFAULT_WAIT_TIMEOUT) -> Task:
        """Block until the task is active and idle; raise on error state or timeout."""


class IssueCommenter(ABC):
    @abstractmethod
    def upsert_comment(self, issue: IssueRef, body: str) -> None: ...
