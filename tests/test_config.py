from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from agent_runner.config import Settings
from agent_runner.orchestrator.providers import SUPPORTED_PROVIDERS

pytestmark = [
    allure.epic("Agent Runs"),
    allure.feature("Configuration"),
]

_ENV_NAMES = (
    "AGENT_RUNNER_REPO_ROOT",
    "AGENT_RUNNER_STATE_DIR",
    "AGENT_RUNNER_TEST_COMMAND",
    "AGENT_RUNNER_LOCK_KEY",
    "AGENT_RUNNER_LOCK_TTL_MINUTES",
    "AGENT_RUNNER_PROVIDER_ORDER",
    "AGENT_RUNNER_EXTRA_PATH",
    "AGENT_RUNNER_WORKTREE_ROOT",
    "AGENT_RUNNER_BASE_BRANCHES",
    *(
        f"AGENT_RUNNER_{name.upper()}_{suffix}"
        for name in SUPPORTED_PROVIDERS
        for suffix in ("EXECUTABLE", "COMMAND", "REVIEW_COMMAND")
    ),
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path: Path) -> None:
    settings = Settings.from_env(repo_root=tmp_path)

    settings.validate()
    assert settings.lock.key == "executor"
    assert settings.lock.ttl_minutes == 120
    assert settings.providers.order == ("codex", "claude", "gemini")
    assert settings.lock_path == tmp_path / "tools" / "agent-lock.json"
    assert settings.state_path == tmp_path / "tools" / "agent-state.json"
    assert settings.workspace.base_branches == ("main", "master")
    assert settings.test_command == "npm test"


def test_env_overrides(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RUNNER_REPO_ROOT", str(tmp_path))
    monkeypatch.setenv("AGENT_RUNNER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("AGENT_RUNNER_LOCK_TTL_MINUTES", "30")
    monkeypatch.setenv("AGENT_RUNNER_PROVIDER_ORDER", "Gemini, codex")
    monkeypatch.setenv("AGENT_RUNNER_CLAUDE_EXECUTABLE", "/opt/claude/bin/claude")
    monkeypatch.setenv("AGENT_RUNNER_GEMINI_COMMAND", "gemini --yolo -p {prompt}")
    monkeypatch.setenv("AGENT_RUNNER_BASE_BRANCHES", "Develop,main")
    monkeypatch.setenv("AGENT_RUNNER_WORKTREE_ROOT", str(tmp_path / "wt"))

    settings = Settings.from_env()

    settings.validate()
    assert settings.repo_root == tmp_path
    assert settings.lock_path == tmp_path / "state" / "agent-lock.json"
    assert settings.lock.ttl_minutes == 30
    assert settings.providers.order == ("gemini", "codex")
    assert settings.providers.executables == {"claude": "/opt/claude/bin/claude"}
    assert settings.providers.command_templates == {"gemini": "gemini --yolo -p {prompt}"}
    assert settings.workspace.base_branches == ("Develop", "main")
    assert settings.workspace.worktree_root == tmp_path / "wt"


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"AGENT_RUNNER_LOCK_KEY": "  "}, "AGENT_RUNNER_LOCK_KEY"),
        ({"AGENT_RUNNER_LOCK_TTL_MINUTES": "0"}, "must be > 0"),
        ({"AGENT_RUNNER_PROVIDER_ORDER": "codex,copilot"}, "copilot"),
        ({"AGENT_RUNNER_CODEX_COMMAND": "codex exec"}, "must include"),
        ({"AGENT_RUNNER_CLAUDE_REVIEW_COMMAND": "claude"}, "must include"),
    ],
)
def test_validate_rejects_inconsistent_settings(
    tmp_path: Path,
    monkeypatch,
    env: dict[str, str],
    message: str,
) -> None:
    for name, value in env.items():
        monkeypatch.setenv(name, value)

    settings = Settings.from_env(repo_root=tmp_path)

    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_invalid_integer_is_reported(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("AGENT_RUNNER_LOCK_TTL_MINUTES", "soon")

    with pytest.raises(ValueError, match="AGENT_RUNNER_LOCK_TTL_MINUTES"):
        Settings.from_env(repo_root=tmp_path)


def test_search_path_prepends_extra_dirs_once(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(
        "AGENT_RUNNER_EXTRA_PATH",
        os.pathsep.join(["/opt/agents/bin", "/usr/bin"]),
    )
    settings = Settings.from_env(repo_root=tmp_path)

    search_path = settings.search_path(os.pathsep.join(["/usr/bin", "/bin"]))

    assert search_path.split(os.pathsep) == ["/opt/agents/bin", "/usr/bin", "/bin"]
