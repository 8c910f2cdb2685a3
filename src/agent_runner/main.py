"""CLI entrypoint for agent-runner."""

import logging
from pathlib import Path

import rich_click as click

from agent_runner import __version__
from agent_runner.orchestrator.controllers import (
    AgentRunCommand,
    AgentRunnerCliController,
    AgentStatusCommand,
)
from agent_runner.orchestrator.errors import OrchestratorError
from agent_runner.orchestrator.models import RunOutcome

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentRunnerCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-runner")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
    help="Log verbosity (logs go to stderr).",
)
def agent_runner(log_level: str) -> None:
    """Run terminal coding agents (codex, claude, gemini) with fallback and cooldowns."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_runner.command("run")
@click.option("--task", "-t", default=None, help="Task description (required).")
@click.option(
    "--provider",
    default=None,
    help="Force one provider: codex, claude or gemini. Default tries them in order.",
)
@click.option(
    "--mode",
    default="implement",
    show_default=True,
    help="implement (exclusive, takes the executor lock) or review.",
)
@click.option("--branch", default=None, help="Branch name. Default: feat/<task-slug>-<run-id>.")
@click.option(
    "--workdir",
    type=click.Path(path_type=Path),
    default=None,
    help="Worktree directory. Default: <tmp>/pm-<branch>.",
)
@click.option("--base", default=None, help="Base ref for new branches: auto or explicit ref.")
@click.option(
    "--no-worktree",
    is_flag=True,
    default=False,
    help="Run in the current repository instead of a provisioned worktree.",
)
@click.option("--notes", default=None, help="Extra notes appended to the prompt.")
@click.option(
    "--review-diff",
    default=None,
    help="Embed `git diff <ref>..HEAD` in review prompts: auto or explicit ref.",
)
@click.option("--force", is_flag=True, default=False, help="Override a live executor lock.")
@click.option(
    "--lock-ttl-min",
    "lock_ttl_minutes",
    type=int,
    default=None,
    help="Executor lock TTL in minutes. Default: AGENT_RUNNER_LOCK_TTL_MINUTES or 120.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Print the computed plan without provisioning or running anything.",
)
def run(  # noqa: PLR0913
    task: str | None,
    provider: str | None,
    mode: str,
    branch: str | None,
    workdir: Path | None,
    base: str | None,
    no_worktree: bool,
    notes: str | None,
    review_diff: str | None,
    force: bool,
    lock_ttl_minutes: int | None,
    dry_run: bool,
) -> None:
    """Run one agent session.

    Exit codes: `0` success, `2` rate limited (cooldown scheduled), otherwise
    the provider's own exit code.
    """

    try:
        report = CONTROLLER.run(
            AgentRunCommand(
                task=task,
                provider=provider,
                mode=mode,
                branch=branch,
                workdir=workdir,
                base=base,
                no_worktree=no_worktree,
                notes=notes,
                review_diff=review_diff,
                force=force,
                lock_ttl_minutes=lock_ttl_minutes,
                dry_run=dry_run,
            ),
            emit=click.echo,
        )
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error

    if report.outcome in (RunOutcome.SUCCEEDED, RunOutcome.PLANNED):
        return
    click.echo(report.message, err=True)
    raise SystemExit(report.exit_code or 1)


@agent_runner.command("status")
@click.option(
    "--recent-runs",
    type=click.IntRange(min=0, max=50),
    default=10,
    show_default=True,
    help="How many latest runs to display.",
)
def status(recent_runs: int) -> None:
    """Show executor lock, provider cooldowns and recent runs."""

    _emit_lines(CONTROLLER.status(AgentStatusCommand(recent_runs=recent_runs)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_runner()
