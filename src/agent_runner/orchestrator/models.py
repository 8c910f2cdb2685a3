"""Domain models for the lock table, provider state and run history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

STATE_DOCUMENT_VERSION = 1
MAX_RUN_HISTORY = 50


class RunMode(str, Enum):
    """What the agent is asked to do."""

    IMPLEMENT = "implement"
    REVIEW = "review"


class RunOutcome(str, Enum):
    """Terminal states of one orchestrator invocation."""

    PLANNED = "planned"
    SUCCEEDED = "succeeded"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def parse_iso(value: object) -> datetime | None:
    """Parse ISO datetime; ``None`` for missing or malformed values."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed




def _text(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _mapping(raw: object, key: str) -> dict[str, Any]:
    value = raw.get(key) if isinstance(raw, dict) else None
    return value if isinstance(value, dict) else {}


@dataclass(slots=True)
class LockEntry:
    """One advisory lock record."""

    holder: str
    acquired_at: str | None
    expires_at: str | None

    def is_expired(self, now: datetime) -> bool:
        """Missing or unparsable expiry counts as expired."""

        expires = parse_iso(self.expires_at)
        return expires is None or expires <= now

    def to_payload(self) -> dict[str, Any]:
        return {
            "holder": self.holder,
            "acquiredAt": self.acquired_at,
            "expiresAt": self.expires_at,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> LockEntry:
        return cls(
            holder=str(raw.get("holder") or ""),
            acquired_at=_text(raw.get("acquiredAt")),
            expires_at=_text(raw.get("expiresAt")),
        )


@dataclass(slots=True)
class LockTable:
    """Persisted lock document."""

    version: int = STATE_DOCUMENT_VERSION
    locks: dict[str, LockEntry] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "locks": {key: entry.to_payload() for key, entry in self.locks.items()},
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> LockTable:
        return cls(
            locks={
                str(key): LockEntry.from_payload(value)
                for key, value in _mapping(raw, "locks").items()
                if isinstance(value, dict)
            },
        )


@dataclass(slots=True)
class ProviderStatus:
    """Health state of one provider.

    ``cooldown_minutes`` is the length of the last scheduled cooldown; the
    backoff ladder escalates from it on the next rate-limited failure.
    """

    cooldown_until: str | None = None
    cooldown_minutes: int | None = None

    def cooling_down(self, now: datetime) -> bool:
        until = parse_iso(self.cooldown_until)
        return until is not None and until > now

    def to_payload(self) -> dict[str, Any]:
        return {
            "cooldownUntil": self.cooldown_until,
            "cooldownMinutes": self.cooldown_minutes,
        }

    @classmethod
    def from_payload(cls, raw: object) -> ProviderStatus:
        if not isinstance(raw, dict):
            return cls()
        minutes = raw.get("cooldownMinutes")
        return cls(
            cooldown_until=_text(raw.get("cooldownUntil")),
            cooldown_minutes=minutes if type(minutes) is int else None,
        )


@dataclass(slots=True)
class RunRecord:
    """Audit trail entry appended when a run starts."""

    id: str
    at: str
    provider: str
    mode: str
    task: str
    branch: str | None
    workdir: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "at": self.at,
            "provider": self.provider,
            "mode": self.mode,
            "task": self.task,
            "branch": self.branch,
            "workdir": self.workdir,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> RunRecord:
        return cls(
            id=str(raw["id"]),
            at=str(raw.get("at", "")),
            provider=str(raw["provider"]),
            mode=str(raw.get("mode", "")),
            task=str(raw.get("task", "")),
            branch=_text(raw.get("branch")),
            workdir=str(raw.get("workdir", "")),
        )


@dataclass(slots=True)
class OrchestratorState:
    """Persisted provider health and bounded run history (most recent first)."""

    version: int = STATE_DOCUMENT_VERSION
    providers: dict[str, ProviderStatus] = field(default_factory=dict)
    runs: list[RunRecord] = field(default_factory=list)

    def provider(self, name: str) -> ProviderStatus:
        """Return the mutable status for ``name``, creating it on first use."""

        return self.providers.setdefault(name, ProviderStatus())

    def record_run(self, record: RunRecord) -> None:
        self.runs.insert(0, record)
        del self.runs[MAX_RUN_HISTORY:]

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "providers": {name: status.to_payload() for name, status in self.providers.items()},
            "runs": [run.to_payload() for run in self.runs],
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> OrchestratorState:
        """Unknown or malformed entries are dropped rather than failing the load."""

        raw_runs = raw.get("runs")
        runs = [
            RunRecord.from_payload(value)
            for value in (raw_runs if isinstance(raw_runs, list) else [])
            if isinstance(value, dict) and "id" in value and "provider" in value
        ]
        return cls(
            providers={
                str(name): ProviderStatus.from_payload(value)
                for name, value in _mapping(raw, "providers").items()
            },
            runs=runs[:MAX_RUN_HISTORY],
        )
