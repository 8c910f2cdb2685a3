"""Git worktree provisioning for isolated agent runs."""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from agent_runner.orchestrator.errors import WorkspaceError

logger = logging.getLogger(__name__)

AUTO_BASE_REF = "auto"
DEFAULT_BASE_BRANCHES = ("main", "master")
_SLUG_MAX_CHARS = 40


@dataclass(slots=True)
class GitResult:
    """Completed git command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def message(self) -> str:
        return self.stderr.strip() or self.stdout.strip()


class GitWorkspace:
    """Git operations against one repository checkout."""

    def __init__(
        self,
        repo_root: Path,
        *,
        base_branches: Sequence[str] = DEFAULT_BASE_BRANCHES,
        git_executable: str = "git",
    ) -> None:
        self.repo_root = repo_root
        self.base_branches = tuple(base_branches)
        self.git_executable = git_executable

    def git(self, *args: str, cwd: Path | None = None) -> GitResult:
        try:
            completed = subprocess.run(  # noqa: S603
                [self.git_executable, *args],
                cwd=cwd or self.repo_root,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as error:
            raise WorkspaceError(f"git executable not found: {self.git_executable}") from error
        result = GitResult(
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if not result.ok:
            logger.debug("git %s exited %s: %s", " ".join(args), result.returncode, result.message)
        return result

    def ref_exists(self, ref: str) -> bool:
        return self.git("rev-parse", "--verify", "--quiet", ref).ok

    def branch_exists(self, branch: str) -> bool:
        return self.git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}").ok

    def resolve_base_ref(self, preference: str | None) -> str:
        """Explicit refs pass through; ``auto`` probes main, then master, then HEAD."""

        if preference and preference.strip() and preference.strip() != AUTO_BASE_REF:
            return preference.strip()
        for candidate in self.base_branches:
            if self.ref_exists(candidate):
                return candidate
        return "HEAD"

    def registered_worktrees(self) -> list[Path]:
        result = self.git("worktree", "list", "--porcelain")
        if not result.ok:
            return []
        return [
            Path(line.removeprefix("worktree ").strip())
            for line in result.stdout.splitlines()
            if line.startswith("worktree ")
        ]

    def has_worktree(self, directory: Path) -> bool:
        target = directory.resolve()
        return any(path.resolve() == target for path in self.registered_worktrees())

    def ensure_worktree(self, *, branch: str, directory: Path, base_ref: str) -> bool:
        """Attach a worktree for ``branch`` at ``directory``; False if already there."""

        if self.has_worktree(directory):
            logger.info("Reusing worktree %s", directory)
            return False

        fetched = self.git("fetch", "--all", "--prune")
        if not fetched.ok:
            logger.warning("git fetch failed, continuing with local refs: %s", fetched.message)

        if self.branch_exists(branch):
            result = self.git("worktree", "add", str(directory), branch)
        else:
            result = self.git("worktree", "add", "-b", branch, str(directory), base_ref)
        if not result.ok:
            raise WorkspaceError(f"Failed to create worktree:\n{result.message}")
        logger.info("Created worktree %s on branch %s (base %s)", directory, branch, base_ref)
        return True

    def diff(self, base_ref: str, *, cwd: Path) -> str:
        result = self.git("diff", f"{base_ref}..HEAD", cwd=cwd)
        if not result.ok:
            raise WorkspaceError(f"Failed to compute diff vs {base_ref}:\n{result.message}")
        return result.stdout


def branch_slug(task: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", task.strip().lower()).strip("-")[:_SLUG_MAX_CHARS]
    return slug or "task"


def default_branch_name(task: str, run_id: str) -> str:
    return f"feat/{branch_slug(task)}-{run_id}"


def default_workdir(root: Path, branch: str) -> Path:
    return root / f"pm-{re.sub(r'[^A-Za-z0-9_-]', '-', branch)}"
