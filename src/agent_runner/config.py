"""Runtime configuration for the agent runner."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from agent_runner.orchestrator.prompts import DEFAULT_TEST_COMMAND
from agent_runner.orchestrator.providers import SUPPORTED_PROVIDERS
from agent_runner.orchestrator.workspace import DEFAULT_BASE_BRANCHES

LOCK_FILE_NAME = "agent-lock.json"
STATE_FILE_NAME = "agent-state.json"


@dataclass(slots=True)
class LockSettings:
    """Executor lock settings."""

    key: str = "executor"
    ttl_minutes: int = 120


@dataclass(slots=True)
class ProviderSettings:
    """Provider order, executables and command template overrides."""

    order: tuple[str, ...] = SUPPORTED_PROVIDERS
    executables: dict[str, str] = field(default_factory=dict)
    command_templates: dict[str, str] = field(default_factory=dict)
    review_command_templates: dict[str, str] = field(default_factory=dict)
    extra_path: tuple[str, ...] = ()


@dataclass(slots=True)
class WorkspaceSettings:
    """Worktree provisioning settings."""

    worktree_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    base_branches: tuple[str, ...] = DEFAULT_BASE_BRANCHES


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    repo_root: Path = field(default_factory=Path.cwd)
    state_dir: Path | None = None
    test_command: str = DEFAULT_TEST_COMMAND
    lock: LockSettings = field(default_factory=LockSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir if self.state_dir is not None else self.repo_root / "tools"

    @property
    def lock_path(self) -> Path:
        return self.resolved_state_dir / LOCK_FILE_NAME

    @property
    def state_path(self) -> Path:
        return self.resolved_state_dir / STATE_FILE_NAME

    def search_path(self, base_path: str | None = None) -> str:
        """``PATH`` with configured extra directories prepended once."""

        current = base_path if base_path is not None else os.getenv("PATH", "")
        existing = [part for part in current.split(os.pathsep) if part]
        extra = [part for part in self.providers.extra_path if part not in existing]
        return os.pathsep.join([*extra, *existing])

    @classmethod
    def from_env(cls, repo_root: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        root = repo_root or Path(os.getenv("AGENT_RUNNER_REPO_ROOT") or Path.cwd())
        state_dir_raw = os.getenv("AGENT_RUNNER_STATE_DIR", "").strip()
        worktree_root_raw = os.getenv("AGENT_RUNNER_WORKTREE_ROOT", "").strip()
        return cls(
            repo_root=root,
            state_dir=Path(state_dir_raw) if state_dir_raw else None,
            test_command=os.getenv("AGENT_RUNNER_TEST_COMMAND", DEFAULT_TEST_COMMAND),
            lock=LockSettings(
                key=os.getenv("AGENT_RUNNER_LOCK_KEY", "executor"),
                ttl_minutes=_env_int("AGENT_RUNNER_LOCK_TTL_MINUTES", 120),
            ),
            providers=ProviderSettings(
                order=tuple(
                    name.lower() for name in _env_csv("AGENT_RUNNER_PROVIDER_ORDER")
                )
                or SUPPORTED_PROVIDERS,
                executables=_collect_provider_values("EXECUTABLE"),
                command_templates=_collect_provider_values("COMMAND"),
                review_command_templates=_collect_provider_values("REVIEW_COMMAND"),
                extra_path=tuple(
                    part
                    for part in os.getenv("AGENT_RUNNER_EXTRA_PATH", "").split(os.pathsep)
                    if part.strip()
                ),
            ),
            workspace=WorkspaceSettings(
                worktree_root=(
                    Path(worktree_root_raw)
                    if worktree_root_raw
                    else Path(tempfile.gettempdir())
                ),
                base_branches=_env_csv("AGENT_RUNNER_BASE_BRANCHES") or DEFAULT_BASE_BRANCHES,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for inconsistent settings."""

        if not self.lock.key.strip():
            raise ValueError("AGENT_RUNNER_LOCK_KEY must not be empty.")
        if self.lock.ttl_minutes <= 0:
            raise ValueError("AGENT_RUNNER_LOCK_TTL_MINUTES must be > 0.")
        if not self.providers.order:
            raise ValueError("AGENT_RUNNER_PROVIDER_ORDER must list at least one provider.")
        for name in self.providers.order:
            if name not in SUPPORTED_PROVIDERS:
                raise ValueError(
                    f"Unsupported provider in AGENT_RUNNER_PROVIDER_ORDER: {name!r}. "
                    f"Use {', '.join(SUPPORTED_PROVIDERS)}.",
                )
        for name, template in (
            *self.providers.command_templates.items(),
            *self.providers.review_command_templates.items(),
        ):
            if "{prompt}" not in template:
                raise ValueError(f"Command template for provider={name!r} must include {{prompt}}.")


def _collect_provider_values(suffix: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for name in SUPPORTED_PROVIDERS:
        value = os.getenv(f"AGENT_RUNNER_{name.upper()}_{suffix}", "").strip()
        if value:
            values[name] = value
    return values


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error
