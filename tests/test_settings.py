"""Tests for coder_task.settings: precedence, profiles and validation."""

from pathlib import Path

import pytest
import tomlkit

from coder_task.errors import InputValidationError
from coder_task.settings import (
    CoderTaskSettings,
    ConnectionSettings,
    _list_profiles,
    _load_toml,
    get_settings,
    set_default_profile,
)

REQUIRED = {
    "coder_url": "https://coder.example.com",
    "coder_token": "coder-token",
    "coder_template_name": "agent",
    "coder_task_prompt": "Fix the bug",
    "github_issue_url": "https://github.com/acme/widgets/issues/42",
    "github_token": "ghp_test",
}


def _write_config(config_path: Path, config: dict) -> Path:
    config_path.write_text(tomlkit.dumps(config))
    return config_path


class TestListProfiles:
    def test_returns_section_keys(self) -> None:
        config = {
            "default_profile": "work",
            "work": {"coder_url": "https://work.test"},
            "personal": {"coder_url": "https://home.test"},
        }
        assert _list_profiles(config) == ["work", "personal"]

    def test_empty_config(self) -> None:
        assert _list_profiles({}) == []


class TestDefaults:
    def test_defaults(self) -> None:
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "default"
        assert s.coder_task_name_prefix == "gh"
        assert s.coder_template_preset is None
        assert s.comment_on_issue is True
        assert s.wait_timeout_seconds == 1200.0
        assert s.poll_interval_seconds == 2.0
        assert s.github_api_url == "https://api.github.com"

    def test_none_overrides_are_unset(self) -> None:
        s = get_settings(CoderTaskSettings, github_user_id=1234, coder_organization=None, **REQUIRED)
        assert s.coder_organization == "default"

    def test_token_is_secret(self) -> None:
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert "coder-token" not in repr(s)
        assert s.coder_token.get_secret_value() == "coder-token"


class TestValidation:
    def test_requires_an_identity(self) -> None:
        with pytest.raises(InputValidationError, match="one of github_user_id or coder_username"):
            get_settings(CoderTaskSettings, **REQUIRED)

    def test_rejects_both_identities(self) -> None:
        with pytest.raises(InputValidationError, match="mutually exclusive"):
            get_settings(CoderTaskSettings, github_user_id=1234, coder_username="alice", **REQUIRED)

    def test_rejects_zero_github_user_id(self) -> None:
        with pytest.raises(InputValidationError, match="github_user_id"):
            get_settings(CoderTaskSettings, github_user_id=0, **REQUIRED)

    @pytest.mark.parametrize("field", ["coder_task_prompt", "coder_template_name"])
    def test_rejects_empty_required_text(self, field: str) -> None:
        with pytest.raises(InputValidationError, match=field):
            get_settings(CoderTaskSettings, github_user_id=1234, **{**REQUIRED, field: ""})

    def test_rejects_invalid_coder_url(self) -> None:
        with pytest.raises(InputValidationError, match="coder_url"):
            get_settings(CoderTaskSettings, github_user_id=1234, **{**REQUIRED, "coder_url": "not a url"})

    def test_missing_required_field(self) -> None:
        values = {k: v for k, v in REQUIRED.items() if k != "coder_token"}
        with pytest.raises(InputValidationError, match="coder_token"):
            get_settings(CoderTaskSettings, github_user_id=1234, **values)

    def test_error_does_not_echo_secrets(self) -> None:
        with pytest.raises(InputValidationError) as exc_info:
            get_settings(CoderTaskSettings, **{**REQUIRED, "coder_token": "super-secret-value"})
        assert "super-secret-value" not in str(exc_info.value)

    def test_comment_requires_github_token(self) -> None:
        values = {k: v for k, v in REQUIRED.items() if k != "github_token"}
        with pytest.raises(InputValidationError, match="github_token is required"):
            get_settings(CoderTaskSettings, github_user_id=1234, **values)

    def test_no_github_token_needed_without_comment(self) -> None:
        values = {k: v for k, v in REQUIRED.items() if k != "github_token"}
        s = get_settings(CoderTaskSettings, github_user_id=1234, comment_on_issue=False, **values)
        assert s.github_token is None

    def test_ghcli_auth_skips_token_validation(self) -> None:
        values = {k: v for k, v in REQUIRED.items() if k != "github_token"}
        s = get_settings(CoderTaskSettings, github_user_id=1234, github_auth="gh-cli", **values)
        assert s.github_auth == "gh-cli"

    def test_connection_settings_need_no_task_inputs(self) -> None:
        s = get_settings(
            ConnectionSettings, coder_url="https://coder.example.com", coder_token="t", coder_username="alice"
        )
        assert s.coder_username == "alice"


class TestPrecedence:
    def test_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODER_TASK_CODER_URL", "https://env.test")
        monkeypatch.setenv("CODER_TASK_CODER_TOKEN", "env-token")
        monkeypatch.setenv("CODER_TASK_GITHUB_USER_ID", "77")
        monkeypatch.setenv("CODER_TASK_COMMENT_ON_ISSUE", "false")
        s = get_settings(ConnectionSettings)
        assert str(s.coder_url) == "https://env.test/"
        assert s.github_user_id == 77

    def test_empty_env_var_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODER_TASK_CODER_USERNAME", "")
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.coder_username is None

    def test_cli_override_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODER_TASK_CODER_ORGANIZATION", "from-env")
        s = get_settings(CoderTaskSettings, github_user_id=1234, coder_organization="from-cli", **REQUIRED)
        assert s.coder_organization == "from-cli"

    def test_dotenv_file(self, isolated_config: Path) -> None:
        (isolated_config.parent / ".env").write_text("CODER_TASK_CODER_ORGANIZATION=from-dotenv\n")
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "from-dotenv"

    def test_profile_argument(self, isolated_config: Path) -> None:
        _write_config(
            isolated_config,
            {
                "default_profile": "personal",
                "work": {"coder_organization": "work-org", "coder_task_name_prefix": "wk"},
                "personal": {"coder_organization": "home-org"},
            },
        )
        s = get_settings(CoderTaskSettings, profile="work", github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "work-org"
        assert s.coder_task_name_prefix == "wk"
        assert s.profile == "work"

    def test_default_profile_from_file(self, isolated_config: Path) -> None:
        _write_config(
            isolated_config,
            {"default_profile": "personal", "personal": {"coder_organization": "home-org"}},
        )
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "home-org"
        assert s.profile == "personal"

    def test_profile_env_var(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_config(
            isolated_config,
            {
                "default_profile": "personal",
                "work": {"coder_organization": "work-org"},
                "personal": {"coder_organization": "home-org"},
            },
        )
        monkeypatch.setenv("CODER_TASK_PROFILE", "work")
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "work-org"

    def test_env_beats_profile(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write_config(isolated_config, {"work": {"coder_organization": "work-org"}})
        monkeypatch.setenv("CODER_TASK_CODER_ORGANIZATION", "from-env")
        s = get_settings(CoderTaskSettings, profile="work", github_user_id=1234, **REQUIRED)
        assert s.coder_organization == "from-env"

    def test_profile_supplies_connection(self, isolated_config: Path) -> None:
        _write_config(
            isolated_config,
            {"work": {"coder_url": "https://work.test", "coder_token": "t", "github_user_id": 5}},
        )
        s = get_settings(ConnectionSettings, profile="work")
        assert s.github_user_id == 5
        assert s.coder_token.get_secret_value() == "t"

    def test_cli_identity_replaces_profile_identity(self, isolated_config: Path) -> None:
        _write_config(isolated_config, {"work": {"coder_username": "alice"}})
        s = get_settings(CoderTaskSettings, profile="work", github_user_id=77, **REQUIRED)
        assert s.github_user_id == 77
        assert s.coder_username is None

    def test_env_identity_replaces_profile_identity(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        _write_config(isolated_config, {"work": {"github_user_id": 5}})
        monkeypatch.setenv("CODER_TASK_CODER_USERNAME", "bob")
        s = get_settings(CoderTaskSettings, profile="work", **REQUIRED)
        assert s.coder_username == "bob"
        assert s.github_user_id is None

    def test_cli_identity_replaces_env_identity(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODER_TASK_GITHUB_USER_ID", "5")
        s = get_settings(CoderTaskSettings, coder_username="carol", **REQUIRED)
        assert s.coder_username == "carol"
        assert s.github_user_id is None

    def test_profile_keeps_other_fields_when_identity_replaced(self, isolated_config: Path) -> None:
        _write_config(isolated_config, {"work": {"coder_username": "alice", "coder_organization": "work-org"}})
        s = get_settings(CoderTaskSettings, profile="work", github_user_id=77, **REQUIRED)
        assert s.coder_organization == "work-org"

    def test_both_identities_in_one_profile_rejected(self, isolated_config: Path) -> None:
        _write_config(isolated_config, {"work": {"coder_username": "alice", "github_user_id": 5}})
        with pytest.raises(InputValidationError, match="mutually exclusive"):
            get_settings(CoderTaskSettings, profile="work", **REQUIRED)

    def test_unknown_profile(self, isolated_config: Path) -> None:
        _write_config(isolated_config, {"work": {"coder_organization": "work-org"}})
        with pytest.raises(InputValidationError, match="Profile 'nonexistent' not found"):
            get_settings(CoderTaskSettings, profile="nonexistent", github_user_id=1234, **REQUIRED)

    def test_no_config_file(self) -> None:
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.profile is None


class TestSetDefaultProfile:
    def test_switches_default_profile(self, isolated_config: Path) -> None:
        _write_config(
            isolated_config,
            {
                "default_profile": "work",
                "work": {"coder_organization": "work-org"},
                "home": {"coder_organization": "h"},
            },
        )
        _load_toml()  # warm the cache so the switch has to invalidate it
        assert set_default_profile("home") == isolated_config
        s = get_settings(CoderTaskSettings, github_user_id=1234, **REQUIRED)
        assert s.profile == "home"
        assert s.coder_organization == "h"

    def test_unknown_profile_leaves_file_alone(self, isolated_config: Path) -> None:
        _write_config(isolated_config, {"work": {"coder_organization": "work-org"}})
        before = isolated_config.read_text()
        with pytest.raises(InputValidationError, match="Available: \\['work'\\]"):
            set_default_profile("home")
        assert isolated_config.read_text() == before
