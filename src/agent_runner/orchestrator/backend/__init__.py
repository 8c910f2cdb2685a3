"""Agent process backends."""

from agent_runner.orchestrator.backend.base import AgentBackend, AgentRunRequest, AgentRunResult
from agent_runner.orchestrator.backend.cli_backend import BackendRunError, CliAgentBackend

__all__ = [
    "AgentBackend",
    "AgentRunRequest",
    "AgentRunResult",
    "BackendRunError",
    "CliAgentBackend",
]
