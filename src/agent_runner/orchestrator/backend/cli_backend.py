"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import os
import subprocess
import sys
from typing import BinaryIO

from agent_runner.orchestrator.backend.base import AgentRunRequest, AgentRunResult

_STDERR_CHUNK_BYTES = 4096


class BackendRunError(RuntimeError):
    """Agent process could not be started."""

    def __init__(self, message: str, *, exit_code: int) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class CliAgentBackend:
    """Run the agent with the terminal's stdin/stdout and a tee'd stderr.

    stderr is forwarded chunk by chunk so interactive agents stream as if run
    directly, and is kept in memory for rate-limit classification. There is
    no timeout: a hung agent blocks until it is killed from outside.
    """

    def __init__(self, stderr_sink: BinaryIO | None = None) -> None:
        self.stderr_sink = stderr_sink

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        env = os.environ.copy()
        env.update(request.env)
        if not request.cwd.is_dir():
            raise BackendRunError(
                f"Agent working directory not found: {request.cwd}",
                exit_code=1,
            )
        try:
            process = subprocess.Popen(  # noqa: S603
                request.argv,
                cwd=request.cwd,
                env=env,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"Agent command not found: {request.argv[0]}",
                exit_code=127,
            ) from error
        except OSError as error:
            raise BackendRunError(f"Agent failed to start: {error}", exit_code=126) from error

        stderr = process.stderr
        if stderr is None:
            process.kill()
            process.wait()
            raise BackendRunError("Agent stderr pipe was not opened", exit_code=126)

        captured = bytearray()
        sink = self._sink()
        with stderr:
            for chunk in iter(lambda: stderr.read1(_STDERR_CHUNK_BYTES), b""):
                captured.extend(chunk)
                _forward(sink, chunk)
        returncode = process.wait()

        return AgentRunResult(
            exit_code=_normalize_returncode(returncode),
            stderr=captured.decode("utf-8", errors="replace"),
        )

    def _sink(self) -> BinaryIO | None:
        if self.stderr_sink is not None:
            return self.stderr_sink
        return getattr(sys.stderr, "buffer", None)


def _forward(sink: BinaryIO | None, chunk: bytes) -> None:
    if sink is None:
        sys.stderr.write(chunk.decode("utf-8", errors="replace"))
        sys.stderr.flush()
        return
    sink.write(chunk)
    sink.flush()


def _normalize_returncode(returncode: int) -> int:
    """Map "killed by signal N" (negative) to the shell convention 128 + N."""

    if returncode < 0:
        return 128 + abs(returncode)
    return returncode
