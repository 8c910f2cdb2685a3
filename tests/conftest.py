"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

from agent_runner.orchestrator.backend import AgentRunRequest, AgentRunResult

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{shlex.quote(sys.executable)} -m agent_runner.orchestrator.backend.echo_agent {{prompt}}"
)


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


@pytest.fixture()
def echo_agent(monkeypatch) -> str:
    """Make the package importable for the echo agent subprocess."""

    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        os.pathsep.join([str(SRC_DIR), existing]) if existing else str(SRC_DIR),
    )
    monkeypatch.delenv("AGENT_RUNNER_ECHO_STDERR", raising=False)
    monkeypatch.delenv("AGENT_RUNNER_ECHO_EXIT_CODE", raising=False)
    monkeypatch.delenv("AGENT_RUNNER_ECHO_PROMPT_FILE", raising=False)
    return ECHO_AGENT_COMMAND_TEMPLATE


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Repository with one commit on ``main`` and no remotes."""

    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("hello\n", "utf-8")
    git(repo, "add", "README.md")
    git(repo, "commit", "-q", "-m", "init")
    return repo


class RecordingBackend:
    """Backend double returning a canned result and remembering requests."""

    def __init__(self, exit_code: int = 0, stderr: str = "", on_run=None) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        self.on_run = on_run
        self.requests: list[AgentRunRequest] = []

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        self.requests.append(request)
        if self.on_run is not None:
            self.on_run(request)
        return AgentRunResult(exit_code=self.exit_code, stderr=self.stderr)
