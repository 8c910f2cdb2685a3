from __future__ import annotations

import io
import shlex
import sys
from pathlib import Path

import allure
import pytest

from agent_runner.orchestrator.backend import AgentRunRequest, BackendRunError, CliAgentBackend
from conftest import ECHO_AGENT_COMMAND_TEMPLATE

pytestmark = [
    allure.epic("Agent Runs"),
    allure.feature("Subprocess Runner"),
]


def _echo_argv(prompt: str) -> list[str]:
    return shlex.split(ECHO_AGENT_COMMAND_TEMPLATE.format(prompt=shlex.quote(prompt)))


def test_stderr_is_forwarded_and_captured(echo_agent, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_RUNNER_ECHO_STDERR", "HTTP 429 Too Many Requests")
    monkeypatch.setenv("AGENT_RUNNER_ECHO_EXIT_CODE", "1")
    sink = io.BytesIO()

    result = CliAgentBackend(stderr_sink=sink).run(
        AgentRunRequest(argv=_echo_argv("Task: demo"), cwd=tmp_path),
    )

    assert result.exit_code == 1
    assert "HTTP 429 Too Many Requests" in result.stderr
    assert b"HTTP 429 Too Many Requests" in sink.getvalue()


def test_prompt_reaches_agent_verbatim_in_cwd(echo_agent, monkeypatch, tmp_path: Path) -> None:
    prompt_file = tmp_path / "prompt.txt"
    monkeypatch.setenv("AGENT_RUNNER_ECHO_PROMPT_FILE", str(prompt_file))
    prompt = "Task: it's \"tricky\"\n- rule one; $(whoami)\n"

    result = CliAgentBackend(stderr_sink=io.BytesIO()).run(
        AgentRunRequest(argv=_echo_argv(prompt), cwd=tmp_path),
    )

    assert result.exit_code == 0
    assert result.stderr == ""
    assert prompt_file.read_text("utf-8") == prompt


def test_request_env_is_merged_into_child_environment(tmp_path: Path) -> None:
    script = "import os, sys; sys.stderr.write(os.environ['AGENT_RUNNER_TEST_MARKER'])"

    result = CliAgentBackend(stderr_sink=io.BytesIO()).run(
        AgentRunRequest(
            argv=[sys.executable, "-c", script],
            cwd=tmp_path,
            env={"AGENT_RUNNER_TEST_MARKER": "marker-value"},
        ),
    )

    assert result.stderr == "marker-value"


def test_missing_executable_raises_with_exit_code_127(tmp_path: Path) -> None:
    with pytest.raises(BackendRunError, match="Agent command not found") as raised:
        CliAgentBackend().run(
            AgentRunRequest(argv=["agent-runner-test-missing-executable", "x"], cwd=tmp_path),
        )
    assert raised.value.exit_code == 127


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_killed_agent_reports_shell_style_exit_code(tmp_path: Path) -> None:
    script = "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"

    result = CliAgentBackend(stderr_sink=io.BytesIO()).run(
        AgentRunRequest(argv=[sys.executable, "-c", script], cwd=tmp_path),
    )

    assert result.exit_code == 143


def test_missing_working_directory_is_not_reported_as_missing_command(tmp_path: Path) -> None:
    with pytest.raises(BackendRunError, match="working directory not found") as raised:
        CliAgentBackend().run(
            AgentRunRequest(argv=[sys.executable, "-c", "pass"], cwd=tmp_path / "gone"),
        )
    assert raised.value.exit_code == 1
