"""Task brief templating for agent runs."""

from __future__ import annotations

from agent_runner.orchestrator.models import RunMode

DEFAULT_TEST_COMMAND = "npm test"


def build_prompt(
    *,
    task: str,
    mode: RunMode,
    notes: str = "",
    review_diff: str = "",
    test_command: str = DEFAULT_TEST_COMMAND,
) -> str:
    """Render the natural-language brief passed to the agent as its only argument."""

    parts = [
        f"Task: {task}",
        "",
        "Rules:",
        "- Work in this repository only (current directory).",
        "- Make small, reviewable commits (1 logical change per commit).",
        f"- After implementing, run: {test_command} (and fix failures).",
        "- Do NOT touch secrets outside the repo unless explicitly instructed.",
        "- If something is ambiguous, choose a safe default and document it.",
        "",
    ]

    if mode is RunMode.REVIEW:
        parts.append("Mode: REVIEW")
        parts.append("- Do not implement. Only review and propose changes + tests.")
        if review_diff:
            parts.extend(
                [
                    "",
                    "Diff to review (git diff):",
                    "```diff",
                    review_diff.rstrip(),
                    "```",
                ],
            )
    else:
        parts.append("Mode: IMPLEMENT")
        parts.append("- Implement end-to-end and verify with tests.")

    if notes:
        parts.extend(["", "Extra notes/context:", notes])

    parts.extend(
        [
            "",
            "When completely finished, print a short summary + what you ran to verify.",
            "",
        ],
    )
    return "\n".join(parts)
