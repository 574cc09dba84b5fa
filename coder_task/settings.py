"""Settings resolution: CLI flags, environment, .env and named profiles.

Precedence (highest to lowest):
1. CLI flags (passed as keyword overrides)
2. CODER_TASK_* environment variables
3. CODER_TASK_* entries in .env in cwd
4. The active profile table in ~/.config/coder-task/config.toml
5. Field defaults

The active profile is --profile, else CODER_TASK_PROFILE, else the
default_profile key of the config file.

github_user_id and coder_username are one setting: the highest source that
names either of them decides it, and lower sources cannot add the other.
"""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Self, TypeVar

import tomlkit
from pydantic import Field, HttpUrl, SecretStr, ValidationError, model_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from coder_task.clients.base import EXISTING_TASK_WAIT_TIMEOUT, POLL_INTERVAL
from coder_task.errors import InputValidationError

CONFIG_PATH = Path.home() / ".config" / "coder-task" / "config.toml"

DEFAULT_GITHUB_API_URL = "https://api.github.com"


@lru_cache(maxsize=1)
def _load_toml() -> dict[str, Any]:
    """Load ~/.config/coder-task/config.toml as plain python values, empty if missing."""
    if not CONFIG_PATH.exists():
        return {}
    with CONFIG_PATH.open() as fh:
        return tomlkit.load(fh).unwrap()


def _list_profiles(config: Mapping) -> list[str]:
    # scalar keys such as default_profile are not profiles
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def _active_profile(explicit: str | None) -> str | None:
    return explicit or os.environ.get("CODER_TASK_PROFILE") or _load_toml().get("default_profile")


def _profile_values(profile: str | None) -> dict[str, Any]:
    if not profile:
        return {}
    config = _load_toml()
    block = config.get(profile)
    if not isinstance(block, Mapping):
        profiles = _list_profiles(config)
        raise InputValidationError(f"Profile '{profile}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}")
    return dict(block)


def set_default_profile(profile: str) -> Path:
    """Make an existing profile the default, preserving the rest of the file's formatting."""
    _profile_values(profile)
    with CONFIG_PATH.open() as fh:
        doc = tomlkit.load(fh)
    doc["default_profile"] = profile
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    _load_toml.cache_clear()
    return CONFIG_PATH


class ProfileSettingsSource(PydanticBaseSettingsSource):
    """Reads field values from one [profile] table of the config file."""

    def __init__(self, settings_cls: type[BaseSettings], profile: str | None) -> None:
        super().__init__(settings_cls)
        self._profile = profile
        self._values = _profile_values(profile)

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        values = {name: self._values[name] for name in self.settings_cls.model_fields if name in self._values}
        if self._profile:
            values["profile"] = self._profile
        return values


IDENTITY_FIELDS = ("github_user_id", "coder_username")


class _WithoutIdentity(PydanticBaseSettingsSource):
    """A lower-precedence source whose identity is shadowed by a higher one."""

    def __init__(self, source: PydanticBaseSettingsSource) -> None:
        super().__init__(source.settings_cls)
        self._source = source

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        if field_name in IDENTITY_FIELDS:
            return None, field_name, False
        return self._source.get_field_value(field, field_name)

    def __call__(self) -> dict[str, Any]:
        return {k: v for k, v in self._source().items() if k not in IDENTITY_FIELDS}


def _shadow_identities(sources: list[PydanticBaseSettingsSource]) -> tuple[PydanticBaseSettingsSource, ...]:
    # The first source that names either identity owns it; the rest may not add the other one.
    shadowed: list[PydanticBaseSettingsSource] = []
    owner_found = False
    for source in sources:
        if owner_found:
            shadowed.append(_WithoutIdentity(source))
            continue
        shadowed.append(source)
        values = source()
        owner_found = any(values.get(name) is not None for name in IDENTITY_FIELDS)
    return tuple(shadowed)


class ConnectionSettings(BaseSettings):
    """Everything needed to talk to a Coder deployment on behalf of one user."""

    model_config = SettingsConfigDict(
        env_prefix="CODER_TASK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    profile: str | None = None

    # Coder
    coder_url: HttpUrl
    coder_token: SecretStr
    coder_organization: str = Field(default="default", min_length=1)

    # Identity: exactly one of these
    github_user_id: int | None = Field(default=None, ge=1)
    coder_username: str | None = Field(default=None, min_length=1)

    # Ready-wait tuning for the existing-task path
    wait_timeout_seconds: float = Field(default=EXISTING_TASK_WAIT_TIMEOUT, gt=0)
    poll_interval_seconds: float = Field(default=POLL_INTERVAL, gt=0)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        explicit = init_settings.init_kwargs.get("profile") if isinstance(init_settings, InitSettingsSource) else None
        return _shadow_identities(
            [
                init_settings,
                env_settings,
                dotenv_settings,
                ProfileSettingsSource(settings_cls, _active_profile(explicit)),
                file_secret_settings,
            ]
        )

    @model_validator(mode="after")
    def _exactly_one_identity(self) -> Self:
        if self.github_user_id is None and self.coder_username is None:
            raise ValueError("one of github_user_id or coder_username must be set")
        if self.github_user_id is not None and self.coder_username is not None:
            raise ValueError("github_user_id and coder_username are mutually exclusive")
        return self


class CoderTaskSettings(ConnectionSettings):
    """Inputs of a full run: which template, which issue, which prompt."""

    coder_template_name: str = Field(min_length=1)
    coder_template_preset: str | None = Field(default=None, min_length=1)  # None selects the default preset
    coder_task_prompt: str = Field(min_length=1)
    coder_task_name_prefix: str = Field(default="gh", min_length=1)

    # GitHub
    github_issue_url: HttpUrl
    github_token: SecretStr | None = None
    github_auth: Literal["token", "gh-cli"] = "token"
    github_api_url: str = DEFAULT_GITHUB_API_URL
    comment_on_issue: bool = True

    @model_validator(mode="after")
    def _github_credentials_for_comment(self) -> Self:
        if self.comment_on_issue and self.github_auth == "token" and not self.github_token:
            raise ValueError(
                'github_token is required to comment on the issue; set it, use github_auth = "gh-cli" '
                "or disable comment_on_issue"
            )
        return self


S = TypeVar("S", bound=ConnectionSettings)


def _describe(exc: ValidationError) -> str:
    # Never echo input values: some of them are secrets.
    problems = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"])
        problems.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "Invalid configuration: " + "; ".join(problems)


def get_settings(
    settings_cls: type[S] = CoderTaskSettings,  # type: ignore[assignment]
    profile: str | None = None,
    **overrides: Any,
) -> S:
    """Resolve settings of the given class; None overrides are treated as unset."""
    values = {k: v for k, v in overrides.items() if v is not None}
    if profile:
        values["profile"] = profile
    try:
        return settings_cls(**values)
    except ValidationError as exc:
        raise InputValidationError(_describe(exc)) from exc
