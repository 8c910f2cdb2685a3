"""Controllers for agent runner CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from agent_runner.config import Settings
from agent_runner.orchestrator.backend import AgentBackend, CliAgentBackend
from agent_runner.orchestrator.locking import LockManager
from agent_runner.orchestrator.models import RunOutcome, utc_now
from agent_runner.orchestrator.providers import ProviderSpec, default_provider_specs
from agent_runner.orchestrator.services import (
    AgentRunOrchestrator,
    RunPlan,
    RunRequest,
)
from agent_runner.orchestrator.state import LockStore, OrchestratorStateStore
from agent_runner.orchestrator.workspace import GitWorkspace


@dataclass(slots=True)
class AgentRunCommand:
    """CLI input for one agent run."""

    task: str | None
    provider: str | None
    mode: str
    branch: str | None
    workdir: Path | None
    base: str | None
    no_worktree: bool
    notes: str | None
    review_diff: str | None
    force: bool
    lock_ttl_minutes: int | None
    dry_run: bool
    repo_root: Path | None = None


@dataclass(slots=True)
class AgentStatusCommand:
    """CLI input for lock/provider/run-history inspection."""

    recent_runs: int
    repo_root: Path | None = None


@dataclass(slots=True)
class AgentRunReport:
    """Run outcome to render in CLI."""

    outcome: RunOutcome
    exit_code: int
    message: str


class AgentRunnerCliController:
    """Coordinates agent runs and state inspection for the CLI."""

    def __init__(self, backend_factory: Callable[[], AgentBackend] = CliAgentBackend) -> None:
        self.backend_factory = backend_factory

    def run(self, command: AgentRunCommand, *, emit: Callable[[str], None]) -> AgentRunReport:
        settings = Settings.from_env(repo_root=command.repo_root)
        settings.validate()

        def _print_plan(plan: RunPlan) -> None:
            emit(json.dumps(plan.to_payload(), indent=2))

        orchestrator = build_orchestrator(
            settings,
            backend=self.backend_factory(),
            on_plan=_print_plan,
        )
        result = orchestrator.run(
            RunRequest(
                task=command.task or "",
                mode=command.mode,
                provider=command.provider,
                branch=command.branch,
                workdir=command.workdir,
                base=command.base,
                no_worktree=command.no_worktree,
                notes=command.notes or "",
                review_diff=command.review_diff,
                force=command.force,
                lock_ttl_minutes=command.lock_ttl_minutes,
                dry_run=command.dry_run,
            ),
        )
        return AgentRunReport(
            outcome=result.outcome,
            exit_code=result.exit_code,
            message=result.message,
        )

    def status(self, command: AgentStatusCommand) -> list[str]:
        """Show lock table, provider cooldowns and recent runs."""

        settings = Settings.from_env(repo_root=command.repo_root)
        now = utc_now()
        table = LockStore(settings.lock_path).load()
        state = OrchestratorStateStore(settings.state_path).load()
        catalog = _catalog(settings)
        search_path = settings.search_path()

        lines = [f"Lock file: {settings.lock_path}"]
        if not table.locks:
            lines.append("  (no locks)")
        for key, entry in sorted(table.locks.items()):
            state_label = "expired" if entry.is_expired(now) else "live"
            lines.append(
                f"  {key}: holder={entry.holder} acquired={entry.acquired_at} "
                f"expires={entry.expires_at} ({state_label})",
            )

        lines.append(f"State file: {settings.state_path}")
        lines.append("Providers:")
        for name in settings.providers.order:
            spec = catalog[name]
            installed = spec.resolve_executable(search_path) is not None
            status = state.providers.get(name)
            if status is None or status.cooldown_until is None:
                cooldown = "none"
            else:
                active = "active" if status.cooling_down(now) else "expired"
                cooldown = f"until {status.cooldown_until} ({active})"
            line = f"  {name}: installed={'yes' if installed else 'no'} cooldown={cooldown}"
            if status is not None and status.cooldown_minutes is not None:
                line += f" last_backoff={status.cooldown_minutes}m"
            lines.append(line)

        runs = state.runs[: command.recent_runs]
        lines.append(f"Recent runs ({len(runs)} of {len(state.runs)}):")
        for run in runs:
            lines.append(
                f"  {run.at} id={run.id} provider={run.provider} mode={run.mode} "
                f"branch={run.branch or '-'} task={run.task!r}",
            )
        return lines


def build_orchestrator(
    settings: Settings,
    *,
    backend: AgentBackend,
    on_plan: Callable[[RunPlan], None] | None = None,
) -> AgentRunOrchestrator:
    """Wire stores, provider catalog, workspace and backend from settings."""

    return AgentRunOrchestrator(
        lock_manager=LockManager(LockStore(settings.lock_path)),
        state_store=OrchestratorStateStore(settings.state_path),
        catalog=_catalog(settings),
        provider_order=settings.providers.order,
        workspace=GitWorkspace(
            settings.repo_root,
            base_branches=settings.workspace.base_branches,
        ),
        backend=backend,
        worktree_root=settings.workspace.worktree_root,
        lock_key=settings.lock.key,
        lock_ttl_minutes=settings.lock.ttl_minutes,
        test_command=settings.test_command,
        search_path=settings.search_path(),
        on_plan=on_plan,
    )


def _catalog(settings: Settings) -> dict[str, ProviderSpec]:
    return default_provider_specs(
        executables=settings.providers.executables,
        command_templates=settings.providers.command_templates,
        review_command_templates=settings.providers.review_command_templates,
    )
