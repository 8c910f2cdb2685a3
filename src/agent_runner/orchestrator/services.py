"""Agent run orchestration: lock, select, provision, prompt, run, classify."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from agent_runner.orchestrator.backend import (
    AgentBackend,
    AgentRunRequest,
    BackendRunError,
)
from agent_runner.orchestrator.errors import ConfigurationError, LockContentionError
from agent_runner.orchestrator.failure_classifier import (
    classify_run_failure,
    next_backoff_minutes,
)
from agent_runner.orchestrator.locking import LockManager, new_holder_id
from agent_runner.orchestrator.models import (
    ProviderStatus,
    RunMode,
    RunOutcome,
    RunRecord,
    to_iso,
    utc_now,
)
from agent_runner.orchestrator.prompts import DEFAULT_TEST_COMMAND, build_prompt
from agent_runner.orchestrator.providers import (
    ProviderSpec,
    candidate_providers,
    select_provider,
)
from agent_runner.orchestrator.state import OrchestratorStateStore
from agent_runner.orchestrator.workspace import (
    AUTO_BASE_REF,
    GitWorkspace,
    default_branch_name,
    default_workdir,
)

logger = logging.getLogger(__name__)

RATE_LIMITED_EXIT_CODE = 2


@dataclass(slots=True)
class RunRequest:
    """One orchestrator invocation as requested by the operator."""

    task: str
    mode: str = RunMode.IMPLEMENT.value
    provider: str | None = None
    branch: str | None = None
    workdir: Path | None = None
    base: str | None = None
    no_worktree: bool = False
    notes: str = ""
    review_diff: str | None = None
    force: bool = False
    lock_ttl_minutes: int | None = None
    dry_run: bool = False


@dataclass(slots=True)
class RunPlan:
    """Resolved plan for one run, printed before the agent starts."""

    run_id: str
    provider: str
    mode: RunMode
    task: str
    cwd: Path
    branch: str | None
    base_ref: str | None
    prompt: str
    argv: list[str]
    command: str
    dry_run: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "ok": True,
            "runId": self.run_id,
            "provider": self.provider,
            "mode": self.mode.value,
            "cwd": str(self.cwd),
            "branch": self.branch,
            "baseRef": self.base_ref,
            "command": self.command,
            "dryRun": self.dry_run,
        }


@dataclass(slots=True)
class RunResult:
    """Terminal state of one invocation."""

    outcome: RunOutcome
    plan: RunPlan
    exit_code: int
    message: str
    cooldown_until: str | None = None
    cooldown_minutes: int | None = None


class AgentRunOrchestrator:
    """Compose lock, provider selection, worktree, prompt and backend per run."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        lock_manager: LockManager,
        state_store: OrchestratorStateStore,
        catalog: dict[str, ProviderSpec],
        provider_order: Sequence[str],
        workspace: GitWorkspace,
        backend: AgentBackend,
        worktree_root: Path,
        lock_key: str = "executor",
        lock_ttl_minutes: int = 120,
        test_command: str = DEFAULT_TEST_COMMAND,
        search_path: str | None = None,
        clock: Callable[[], datetime] = utc_now,
        on_plan: Callable[[RunPlan], None] | None = None,
    ) -> None:
        self.lock_manager = lock_manager
        self.state_store = state_store
        self.catalog = catalog
        self.provider_order = tuple(provider_order)
        self.workspace = workspace
        self.backend = backend
        self.worktree_root = worktree_root
        self.lock_key = lock_key
        self.lock_ttl_minutes = lock_ttl_minutes
        self.test_command = test_command
        self.search_path = search_path
        self.clock = clock
        self.on_plan = on_plan

    def run(self, request: RunRequest) -> RunResult:
        """Execute one run; raises ``OrchestratorError`` subclasses on early failure."""

        task = (request.task or "").strip()
        if not task:
            raise ConfigurationError("Missing task. Pass --task with a short description.")
        mode = _parse_mode(request.mode)
        candidates = candidate_providers(
            self.catalog,
            order=self.provider_order,
            forced=request.provider,
        )

        if request.dry_run:
            plan = self._prepare(request, task=task, mode=mode, candidates=candidates)
            self._emit_plan(plan)
            return RunResult(
                outcome=RunOutcome.PLANNED,
                plan=plan,
                exit_code=0,
                message="Dry run: nothing executed.",
            )

        holder_id = new_holder_id()
        lock_held = False
        if mode is RunMode.IMPLEMENT:
            acquisition = self.lock_manager.try_acquire(
                self.lock_key,
                holder_id,
                ttl_minutes=(
                    self.lock_ttl_minutes
                    if request.lock_ttl_minutes is None
                    else request.lock_ttl_minutes
                ),
                force=request.force,
            )
            if not acquisition.ok:
                reason = acquisition.reason or "locked"
                raise LockContentionError(
                    f"Another executor is running ({reason}). Use --force to override.",
                    reason=reason,
                )
            lock_held = True

        try:
            plan = self._prepare(request, task=task, mode=mode, candidates=candidates)
            self._record_run(plan)
            self._emit_plan(plan)
            return self._execute(plan)
        finally:
            if lock_held:
                self.lock_manager.release(self.lock_key, holder_id)

    def _prepare(
        self,
        request: RunRequest,
        *,
        task: str,
        mode: RunMode,
        candidates: list[ProviderSpec],
    ) -> RunPlan:
        state = self.state_store.load()
        selection = select_provider(
            candidates,
            state=state,
            now=self.clock(),
            search_path=self.search_path,
        )

        run_id = secrets.token_hex(4)
        branch: str | None = None
        base_ref: str | None = None
        cwd = self.workspace.repo_root
        if not request.no_worktree:
            base_ref = self.workspace.resolve_base_ref(request.base)
            branch = request.branch or default_branch_name(task, run_id)
            # relative workdirs resolve against the repository root
            cwd = (
                self.workspace.repo_root
                / (request.workdir or default_workdir(self.worktree_root, branch))
            ).absolute()
            if not request.dry_run:
                self.workspace.ensure_worktree(branch=branch, directory=cwd, base_ref=base_ref)

        review_diff = self._review_diff(request, mode=mode, cwd=cwd)
        prompt = build_prompt(
            task=task,
            mode=mode,
            notes=request.notes,
            review_diff=review_diff,
            test_command=self.test_command,
        )
        invocation = selection.provider.build_invocation(prompt, mode)
        if not request.dry_run:
            selection.provider.prepare_workdir(cwd)

        return RunPlan(
            run_id=run_id,
            provider=selection.provider.name,
            mode=mode,
            task=task,
            cwd=cwd,
            branch=branch,
            base_ref=base_ref,
            prompt=prompt,
            argv=invocation.argv,
            command=invocation.command_line,
            dry_run=request.dry_run,
        )

    def _review_diff(self, request: RunRequest, *, mode: RunMode, cwd: Path) -> str:
        if not request.review_diff:
            return ""
        if mode is not RunMode.REVIEW:
            logger.warning("Ignoring --review-diff in %s mode", mode.value)
            return ""
        if request.dry_run:
            return ""
        base_ref = (
            self.workspace.resolve_base_ref(None)
            if request.review_diff.strip() == AUTO_BASE_REF
            else request.review_diff.strip()
        )
        return self.workspace.diff(base_ref, cwd=cwd)

    def _record_run(self, plan: RunPlan) -> None:
        with self.state_store.transaction():
            state = self.state_store.load()
            state.record_run(
                RunRecord(
                    id=plan.run_id,
                    at=to_iso(self.clock()),
                    provider=plan.provider,
                    mode=plan.mode.value,
                    task=plan.task,
                    branch=plan.branch,
                    workdir=str(plan.cwd),
                ),
            )
            self.state_store.save(state)

    def _emit_plan(self, plan: RunPlan) -> None:
        if self.on_plan is not None:
            self.on_plan(plan)

    def _execute(self, plan: RunPlan) -> RunResult:
        env = {"PATH": self.search_path} if self.search_path else {}
        logger.info("Starting run %s: provider=%s cwd=%s", plan.run_id, plan.provider, plan.cwd)
        try:
            result = self.backend.run(AgentRunRequest(argv=plan.argv, cwd=plan.cwd, env=env))
            exit_code, stderr = result.exit_code, result.stderr
        except BackendRunError as error:
            logger.error("Run %s could not start: %s", plan.run_id, error)
            exit_code, stderr = error.exit_code, str(error)
        logger.info("Run %s finished with exit code %s", plan.run_id, exit_code)

        if exit_code == 0:
            self._reset_backoff(plan.provider)
            return RunResult(
                outcome=RunOutcome.SUCCEEDED,
                plan=plan,
                exit_code=0,
                message=f"Provider {plan.provider} finished run {plan.run_id}.",
            )

        classification = classify_run_failure(exit_code=exit_code, stderr=stderr)
        if classification.rate_limited:
            minutes, until = self._schedule_cooldown(plan.provider)
            logger.warning(
                "Provider %s rate limited (matched %r); cooldown %s min until %s",
                plan.provider,
                classification.matched_pattern,
                minutes,
                until,
            )
            return RunResult(
                outcome=RunOutcome.RATE_LIMITED,
                plan=plan,
                exit_code=RATE_LIMITED_EXIT_CODE,
                message=(
                    f"Provider {plan.provider} hit rate limit. "
                    f"Cooldown for ~{minutes} minutes (until {until})."
                ),
                cooldown_until=until,
                cooldown_minutes=minutes,
            )

        return RunResult(
            outcome=RunOutcome.FAILED,
            plan=plan,
            exit_code=exit_code,
            message=f"Provider {plan.provider} exited with code {exit_code}",
        )

    def _schedule_cooldown(self, provider: str) -> tuple[int, str]:
        with self.state_store.transaction():
            state = self.state_store.load()
            status = state.provider(provider)
            minutes = next_backoff_minutes(status.cooldown_minutes)
            until = to_iso(self.clock() + timedelta(minutes=minutes))
            status.cooldown_until = until
            status.cooldown_minutes = minutes
            self.state_store.save(state)
        return minutes, until

    def _reset_backoff(self, provider: str) -> None:
        with self.state_store.transaction():
            state = self.state_store.load()
            status = state.providers.get(provider)
            if status is None or status == ProviderStatus():
                return
            status.cooldown_until = None
            status.cooldown_minutes = None
            self.state_store.save(state)


def _parse_mode(value: str | None) -> RunMode:
    normalized = (value or RunMode.IMPLEMENT.value).strip().lower()
    try:
        return RunMode(normalized)
    except ValueError as error:
        raise ConfigurationError(
            f"Unsupported mode: {value!r}. Use implement or review.",
        ) from error
