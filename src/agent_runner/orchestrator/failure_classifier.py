"""Deterministic rate-limit classification and cooldown escalation."""

from __future__ import annotations

from dataclasses import dataclass

BACKOFF_LADDER_MINUTES: tuple[int, ...] = (15, 30, 60, 120)

_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "try again later",
    "temporarily unavailable",
    "429",
)


@dataclass(slots=True)
class RunFailureClassification:
    """Normalized classification of a non-zero agent exit."""

    exit_code: int
    rate_limited: bool
    matched_pattern: str | None


def classify_run_failure(*, exit_code: int, stderr: str) -> RunFailureClassification:
    """Classify a failed run from its captured stderr."""

    pattern = _first_match(stderr.lower(), _RATE_LIMIT_PATTERNS)
    return RunFailureClassification(
        exit_code=exit_code,
        rate_limited=pattern is not None,
        matched_pattern=pattern,
    )


def is_rate_limited(text: str) -> bool:
    return _first_match(text.lower(), _RATE_LIMIT_PATTERNS) is not None


def next_backoff_minutes(previous_minutes: int | None) -> int:
    """Next rung strictly above the previous cooldown, capped at the last rung."""

    if not previous_minutes:
        return BACKOFF_LADDER_MINUTES[0]
    for rung in BACKOFF_LADDER_MINUTES:
        if rung > previous_minutes:
            return rung
    return BACKOFF_LADDER_MINUTES[-1]


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
