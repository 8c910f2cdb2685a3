"""JSON-file repositories for the lock table and orchestrator state.

Both documents are created on first write and self-heal: a missing, unreadable
or corrupt file reads back as the empty document.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from agent_runner.orchestrator.models import LockTable, OrchestratorState

logger = logging.getLogger(__name__)


def read_json(path: Path, fallback: dict[str, Any]) -> dict[str, Any]:
    """Load a JSON object, returning ``fallback`` when absent or unparsable."""

    try:
        payload = json.loads(path.read_text("utf-8"))
    except FileNotFoundError:
        return fallback
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
        logger.warning("Ignoring unreadable state file %s: %s", path, error)
        return fallback
    if not isinstance(payload, dict):
        logger.warning("Ignoring state file %s: expected a JSON object", path)
        return fallback
    return payload


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload pretty-printed with a trailing newline."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", "utf-8")


@contextmanager
def exclusive_file_lock(path: Path) -> Iterator[None]:
    """Hold an OS-level exclusive lock on ``path`` (POSIX only).

    Serializes read-modify-write cycles of cooperating processes on one host.
    Elsewhere the context is a no-op.
    """

    if sys.platform == "win32":
        yield
        return

    import fcntl

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class _JsonDocumentStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Guard a load/modify/save sequence against other processes."""

        with exclusive_file_lock(self.path.with_name(f"{self.path.name}.lock")):
            yield


class LockStore(_JsonDocumentStore):
    """Repository for the advisory lock table."""

    def load(self) -> LockTable:
        return LockTable.from_payload(read_json(self.path, LockTable().to_payload()))

    def save(self, table: LockTable) -> None:
        write_json(self.path, table.to_payload())


class OrchestratorStateStore(_JsonDocumentStore):
    """Repository for provider cooldowns and run history."""

    def load(self) -> OrchestratorState:
        return OrchestratorState.from_payload(
            read_json(self.path, OrchestratorState().to_payload()),
        )

    def save(self, state: OrchestratorState) -> None:
        write_json(self.path, state.to_payload())
