"""Shared pydantic models, the contract between the Coder API, the action and main.py."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

TaskName = Annotated[str, StringConstraints(min_length=1)]

TaskStatus = Literal["pending", "initializing", "active", "paused", "unknown", "error"]
TaskStateName = Literal["idle", "working", "complete", "failed"]


class User(BaseModel):
    """codersdk.User"""

    model_config = ConfigDict(frozen=True)

    id: UUID
    username: str
    email: str
    organization_ids: list[UUID] = []
    github_com_user_id: int | None = None


class UserList(BaseModel):
    """codersdk.GetUsersResponse"""

    model_config = ConfigDict(frozen=True)

    users: list[User]


class Template(BaseModel):
    """codersdk.Template"""

    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    description: str | None = None
    organization_id: UUID
    active_version_id: UUID


class Preset(BaseModel):
    """codersdk.Preset. The API serializes this one with Go field names."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID = Field(alias="ID")
    name: str = Field(alias="Name")
    default: bool = Field(alias="Default")


class TaskStateEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: TaskStateName


class Task(BaseModel):
    """Experimental codersdk.Task"""

    model_config = ConfigDict(frozen=True)

    id: UUID
    name: TaskName
    owner_id: UUID
    template_id: UUID
    created_at: datetime
    updated_at: datetime
    status: TaskStatus
    current_state: TaskStateEntry | None  # key is always present, value may be null

    @property
    def state(self) -> TaskStateName | None:
        return self.current_state.state if self.current_state else None

    @property
    def is_ready(self) -> bool:
        """Only an active, idle task accepts new input."""
        return self.status == "active" and self.state == "idle"


class TaskList(BaseModel):
    """GET /api/experimental/tasks, not exported by codersdk at the time of writing."""

    model_config = ConfigDict(frozen=True)

    tasks: list[Task]


class CreateTaskRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: TaskName
    template_version_id: UUID
    template_version_preset_id: UUID | None = None  # omitted from the wire body when None
    input: Annotated[str, StringConstraints(min_length=1)]


class IssueRef(BaseModel):
    """owner/repo#number parsed from a GitHub issue URL."""

    model_config = ConfigDict(frozen=True)

    owner: str
    repo: str
    number: int

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


class IssueComment(BaseModel):
    """The fields of a GitHub issue comment the upsert needs."""

    model_config = ConfigDict(frozen=True)

    id: int
    body: str | None = None


class TaskRunResult(BaseModel):
    """Returned by ensure_task_running."""

    model_config = ConfigDict(frozen=True)

    task: Task
    created: bool


class ActionOutputs(BaseModel):
    model_config = ConfigDict(frozen=True)

    coder_username: str
    task_name: str
    task_url: str
    task_created: bool
