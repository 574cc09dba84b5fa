"""Shared test fixtures."""

import os
from collections.abc import Callable
from pathlib import Path

import pytest

import coder_task.settings as settings_module
from coder_task.models import Task, Template, User

USER_ID = "5f1c2a4e-8d1b-4c1e-9a8e-1b2c3d4e5f60"
ORG_ID = "0b9a8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d"
TEMPLATE_ID = "3c4d5e6f-7a8b-4c9d-8e0f-1a2b3c4d5e6f"
VERSION_ID = "9e8d7c6b-5a4f-4e3d-9c2b-1a0f9e8d7c6b"
TASK_ID = "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Point the config file at an empty tmp dir and drop ambient env vars."""
    monkeypatch.setattr(settings_module, "CONFIG_PATH", tmp_path / "config.toml")
    for name in list(os.environ):
        if name.startswith("CODER_TASK_") or name in ("GITHUB_ACTIONS", "GITHUB_OUTPUT"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)  # no stray .env
    settings_module._load_toml.cache_clear()
    yield tmp_path / "config.toml"
    settings_module._load_toml.cache_clear()


@pytest.fixture
def user_node() -> dict:
    return {
        "id": USER_ID,
        "username": "alice",
        "email": "alice@example.com",
        "organization_ids": [ORG_ID],
        "github_com_user_id": 1234,
    }


@pytest.fixture
def template_node() -> dict:
    return {
        "id": TEMPLATE_ID,
        "name": "agent",
        "description": "Agent workspace",
        "organization_id": ORG_ID,
        "active_version_id": VERSION_ID,
    }


@pytest.fixture
def make_task_node() -> Callable[..., dict]:
    def _make(status: str = "active", state: str | None = "idle", name: str = "gh-42", task_id: str = TASK_ID) -> dict:
        return {
            "id": task_id,
            "name": name,
            "owner_id": USER_ID,
            "template_id": TEMPLATE_ID,
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-01T00:05:00Z",
            "status": status,
            "current_state": {"state": state} if state else None,
        }

    return _make


@pytest.fixture
def user(user_node: dict) -> User:
    return User.model_validate(user_node)


@pytest.fixture
def template(template_node: dict) -> Template:
    return Template.model_validate(template_node)


@pytest.fixture
def make_task(make_task_node: Callable[..., dict]) -> Callable[..., Task]:
    def _make(**kwargs) -> Task:
        return Task.model_validate(make_task_node(**kwargs))

    return _make
