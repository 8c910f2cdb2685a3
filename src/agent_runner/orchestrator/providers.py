"""Provider catalog, command rendering and cooldown-aware selection."""

from __future__ import annotations

import json
import logging
import shlex
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from agent_runner.orchestrator.errors import ConfigurationError, ProviderUnavailableError
from agent_runner.orchestrator.models import OrchestratorState, RunMode

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("codex", "claude", "gemini")

DEFAULT_COMMAND_TEMPLATES = {
    # Worktrees write into the main repository's .git/worktrees/*, which the
    # workspace-write sandbox blocks.
    "codex": "codex --ask-for-approval never --sandbox danger-full-access exec {prompt}",
    "claude": "claude {prompt}",
    "gemini": "gemini -p {prompt}",
}
DEFAULT_REVIEW_COMMAND_TEMPLATES = {
    "codex": "codex --ask-for-approval never --sandbox read-only exec {prompt}",
    "claude": "claude {prompt}",
    "gemini": "gemini -p {prompt}",
}

_CLAUDE_LOCAL_PERMISSIONS = {
    "permissions": {
        "allow": ["bash:*", "read:**/*", "edit:**/*", "write:**/*"],
    },
}


@dataclass(slots=True, frozen=True)
class AgentInvocation:
    """Rendered command for one run."""

    argv: list[str]
    command_line: str


@dataclass(slots=True, frozen=True)
class ProviderSpec:
    """One external agent CLI and its invocation templates."""

    name: str
    executable: str
    command_template: str
    review_command_template: str | None = None
    writes_local_permissions: bool = False

    def resolve_executable(self, search_path: str | None) -> str | None:
        return shutil.which(self.executable, path=search_path)

    def build_invocation(self, prompt: str, mode: RunMode) -> AgentInvocation:
        """Render the mode template with the shell-quoted prompt."""

        template = self.command_template
        if mode is RunMode.REVIEW and self.review_command_template:
            template = self.review_command_template
        return render_command(template=template, prompt=prompt, provider=self.name)

    def prepare_workdir(self, cwd: Path) -> None:
        """Write provider-local settings the agent needs to run unattended."""

        if not self.writes_local_permissions:
            return
        settings_path = cwd / ".claude" / "settings.local.json"
        settings_path.parent.mkdir(parents=True, exist_ok=True)
        settings_path.write_text(
            json.dumps(_CLAUDE_LOCAL_PERMISSIONS, indent=2) + "\n",
            "utf-8",
        )
        logger.debug("Wrote %s", settings_path)


@dataclass(slots=True)
class ProviderSelection:
    """Provider chosen for a run."""

    provider: ProviderSpec
    executable_path: str


def default_provider_specs(
    *,
    executables: dict[str, str] | None = None,
    command_templates: dict[str, str] | None = None,
    review_command_templates: dict[str, str] | None = None,
) -> dict[str, ProviderSpec]:
    """Build the fixed provider catalog, applying per-provider overrides."""

    executables = executables or {}
    command_templates = command_templates or {}
    review_command_templates = review_command_templates or {}
    specs: dict[str, ProviderSpec] = {}
    for name in SUPPORTED_PROVIDERS:
        template = command_templates.get(name) or DEFAULT_COMMAND_TEMPLATES[name]
        review_template = (
            review_command_templates.get(name)
            or command_templates.get(name)
            or DEFAULT_REVIEW_COMMAND_TEMPLATES[name]
        )
        specs[name] = ProviderSpec(
            name=name,
            executable=executables.get(name) or name,
            command_template=template,
            review_command_template=review_template,
            writes_local_permissions=name == "claude",
        )
    return specs


def candidate_providers(
    catalog: dict[str, ProviderSpec],
    *,
    order: Sequence[str],
    forced: str | None,
) -> list[ProviderSpec]:
    """Ordered candidates: just the forced provider, or the configured order."""

    if forced is not None:
        name = forced.strip().lower()
        if name not in catalog:
            raise ConfigurationError(
                f"Unknown provider: {forced!r}. Use one of {', '.join(sorted(catalog))}.",
            )
        return [catalog[name]]
    candidates: list[ProviderSpec] = []
    for name in order:
        if name not in catalog:
            raise ConfigurationError(f"Unknown provider in provider order: {name!r}")
        candidates.append(catalog[name])
    return candidates


def select_provider(
    candidates: Sequence[ProviderSpec],
    *,
    state: OrchestratorState,
    now: datetime,
    search_path: str | None,
) -> ProviderSelection:
    """Pick the first installed provider that is not cooling down."""

    reasons: list[str] = []
    for spec in candidates:
        resolved = spec.resolve_executable(search_path)
        if resolved is None:
            logger.info("Skipping provider %s: %s not found", spec.name, spec.executable)
            reasons.append(f"{spec.name}: not installed ({spec.executable} not found in PATH)")
            continue
        status = state.providers.get(spec.name)
        if status is not None and status.cooling_down(now):
            logger.info("Skipping provider %s: cooldown until %s", spec.name, status.cooldown_until)
            reasons.append(f"{spec.name}: cooldown until {status.cooldown_until}")
            continue
        logger.info("Selected provider %s (%s)", spec.name, resolved)
        return ProviderSelection(provider=spec, executable_path=resolved)

    raise ProviderUnavailableError(
        "No provider available right now.\n" + "\n".join(reasons),
        reasons=reasons,
    )


def render_command(*, template: str, prompt: str, provider: str) -> AgentInvocation:
    stripped = template.strip()
    if "{prompt}" not in stripped:
        raise ConfigurationError(
            f"Command template for provider={provider!r} must include {{prompt}}.",
        )
    try:
        rendered = stripped.format(prompt=shlex.quote(prompt))
    except (KeyError, IndexError, ValueError) as error:
        raise ConfigurationError(
            f"Unsupported command template for provider={provider!r}: {error}",
        ) from error
    argv = shlex.split(rendered)
    if not argv:
        raise ConfigurationError(f"Command template for provider={provider!r} is empty.")
    return AgentInvocation(argv=argv, command_line=rendered)
