"""Failure taxonomy for agent runs that stop before the agent exits."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for errors that abort a run before or around execution."""


class ConfigurationError(OrchestratorError):
    """Invalid invocation: missing task, unknown provider or mode, bad template."""


class LockContentionError(OrchestratorError):
    """Another live holder owns the executor lock."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ProviderUnavailableError(OrchestratorError):
    """No candidate provider is installed and out of cooldown."""

    def __init__(self, message: str, *, reasons: list[str]) -> None:
        super().__init__(message)
        self.reasons = reasons


class WorkspaceError(OrchestratorError):
    """Git refused to provision the worktree or compute a diff."""
