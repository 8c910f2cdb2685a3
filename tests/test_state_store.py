from __future__ import annotations

import json
from pathlib import Path

import allure

from agent_runner.orchestrator.models import (
    MAX_RUN_HISTORY,
    LockEntry,
    OrchestratorState,
    ProviderStatus,
    RunRecord,
)
from agent_runner.orchestrator.state import (
    LockStore,
    OrchestratorStateStore,
    read_json,
    write_json,
)
from conftest import FIXED_NOW

pytestmark = [
    allure.epic("Agent Runs"),
    allure.feature("Persistent State"),
]


def _record(index: int) -> RunRecord:
    return RunRecord(
        id=f"run{index:04d}",
        at=f"2026-10-17T12:{index % 60:02d}:00+00:00",
        provider="codex",
        mode="implement",
        task=f"Task {index}",
        branch=f"feat/task-{index}",
        workdir=f"/tmp/pm-feat-task-{index}",
    )


def test_read_json_returns_fallback_for_missing_file(tmp_path: Path) -> None:
    fallback = {"version": 1, "locks": {}}
    assert read_json(tmp_path / "absent.json", fallback) is fallback


def test_read_json_treats_corrupt_and_non_object_documents_as_empty(tmp_path: Path) -> None:
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text('{"version": 1, "locks": {', "utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2, 3]", "utf-8")

    assert read_json(corrupt, {"empty": True}) == {"empty": True}
    assert read_json(listing, {"empty": True}) == {"empty": True}


def test_write_json_creates_parents_and_ends_with_newline(tmp_path: Path) -> None:
    path = tmp_path / "tools" / "nested" / "agent-state.json"
    write_json(path, {"version": 1, "runs": []})

    raw = path.read_text("utf-8")
    assert raw.endswith("}\n")
    assert '\n  "version": 1' in raw
    assert json.loads(raw) == {"version": 1, "runs": []}


def test_state_store_self_heals_after_manual_corruption(tmp_path: Path) -> None:
    store = OrchestratorStateStore(tmp_path / "agent-state.json")
    store.path.write_text("not json at all", "utf-8")

    state = store.load()
    assert state.runs == []
    assert state.providers == {}

    state.record_run(_record(1))
    store.save(state)
    assert store.load().runs[0].id == "run0001"


def test_run_history_evicts_oldest_beyond_fifty() -> None:
    state = OrchestratorState()
    for index in range(MAX_RUN_HISTORY + 1):
        state.record_run(_record(index))

    assert len(state.runs) == MAX_RUN_HISTORY
    assert state.runs[0].id == f"run{MAX_RUN_HISTORY:04d}"
    assert state.runs[-1].id == "run0001"
    assert all(run.id != "run0000" for run in state.runs)


def test_state_store_reads_hand_written_camel_case_document(tmp_path: Path) -> None:
    path = tmp_path / "agent-state.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "providers": {
                    "codex": {"cooldownUntil": "2026-10-17T12:30:00.000Z"},
                    "claude": {"cooldownUntil": None},
                    "gemini": "garbage",
                },
                "runs": [
                    {
                        "id": "abcd1234",
                        "at": "2026-10-17T11:00:00.000Z",
                        "provider": "codex",
                        "mode": "implement",
                        "task": "Auth backend",
                        "branch": None,
                        "workdir": "/repo",
                    },
                    {"broken": True},
                ],
            },
        ),
        "utf-8",
    )

    state = OrchestratorStateStore(path).load()

    assert state.providers["codex"].cooling_down(FIXED_NOW)
    assert not state.providers["claude"].cooling_down(FIXED_NOW)
    assert state.providers["gemini"] == ProviderStatus()
    assert [run.id for run in state.runs] == ["abcd1234"]
    assert state.runs[0].branch is None


def test_lock_store_keeps_entries_with_unparsable_expiry_as_expired(tmp_path: Path) -> None:
    path = tmp_path / "agent-lock.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "locks": {
                    "executor": {"holder": "123:abcdef", "expiresAt": "whenever"},
                    "other": {"holder": "456:abcdef"},
                },
            },
        ),
        "utf-8",
    )

    table = LockStore(path).load()

    assert table.locks["executor"].is_expired(FIXED_NOW)
    assert table.locks["other"].is_expired(FIXED_NOW)
    assert not LockEntry(
        holder="x",
        acquired_at=None,
        expires_at="2026-10-17T13:00:00+00:00",
    ).is_expired(FIXED_NOW)
