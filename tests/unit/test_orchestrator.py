from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ranksync.domain.errors import DecodeFatal, LeaseHeld, SyncError, WriteFatal
from ranksync.orchestrator import RunState, SyncOrchestrator, run_sync

T1 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(days=1)

GAMES = "board_games"
SEARCH = "games_search"


def _orchestrator(store, settings, now=T1) -> SyncOrchestrator:
    return SyncOrchestrator(store, settings, owner="test-owner", clock=lambda: now)


def test_new_records_are_written_in_name_order(store, test_settings, write_csv, make_row) -> None:
    path = write_csv([make_row(10, "Zed"), make_row(11, "Ant")])
    orchestrator = _orchestrator(store, test_settings)

    result = orchestrator.run(path)

    assert result["total_scanned"] == 2
    assert result["new_count"] == 2
    assert result["changed_count"] == 0
    assert result["unchanged_count"] == 0
    assert result["no_changes"] is False
    assert result["written"] == 2
    assert result["reindexed"] == {GAMES: "swap", SEARCH: "swap"}
    assert store.names(GAMES) == ["Ant", "Zed"]
    assert store.names(SEARCH) == ["Ant", "Zed"]
    assert orchestrator.history == [
        RunState.IDLE,
        RunState.DECODING,
        RunState.DIFFING,
        RunState.WRITING,
        RunState.REINDEXING,
        RunState.DONE,
    ]


def test_changed_rank_updates_timestamp_but_not_creation(store, test_settings, write_csv, make_row) -> None:
    rows = [make_row(1, "Azul", rank=5), make_row(2, "Brass", rank=1)]
    _orchestrator(store, test_settings, now=T1).run(write_csv(rows))

    rows[0] = make_row(1, "Azul", rank=3)
    result = _orchestrator(store, test_settings, now=T2).run(write_csv(rows))

    assert result["new_count"] == 0
    assert result["changed_count"] == 1
    assert result["unchanged_count"] == 1
    docs = {doc["id"]: doc for doc in store.documents(GAMES)}
    assert docs[1]["rank"] == 3
    assert docs[1]["date_created"] == T1
    assert docs[1]["date_updated"] == T2
    assert docs[2]["date_updated"] == T1
    search = {doc["id"]: doc for doc in store.documents(SEARCH)}
    assert search[1]["date_updated"] == T2


def test_second_run_with_same_file_changes_nothing(store, test_settings, write_csv, make_row) -> None:
    path = write_csv([make_row(1, "Azul"), make_row(2, "Brass", abstracts_rank=""), make_row(3, "Catan", rank="")])
    _orchestrator(store, test_settings, now=T1).run(path)
    before = store.documents(GAMES)
    store.calls.clear()

    orchestrator = _orchestrator(store, test_settings, now=T2)
    result = orchestrator.run(path)

    assert result["no_changes"] is True
    assert result["unchanged_count"] == 3
    assert result["written"] == 0
    assert store.documents(GAMES) == before
    assert not any(method in {"bulk_upsert", "insert_many", "swap_collection"} for method, _ in store.calls)
    assert orchestrator.history == [RunState.IDLE, RunState.DECODING, RunState.DIFFING, RunState.DONE]


def test_emptied_field_is_removed_and_run_stays_idempotent(store, test_settings, write_csv, make_row) -> None:
    _orchestrator(store, test_settings).run(write_csv([make_row(1, "Azul", abstracts_rank=12)]))

    path = write_csv([make_row(1, "Azul", abstracts_rank="")])
    first = _orchestrator(store, test_settings, now=T2).run(path)
    second = _orchestrator(store, test_settings, now=T2).run(path)

    assert first["changed_count"] == 1
    assert "abstracts_rank" not in store.documents(GAMES)[0]
    assert second["no_changes"] is True


def test_search_projection_matches_records(store, test_settings, write_csv, make_row) -> None:
    rows = [make_row(i, name) for i, name in enumerate(["Root", "Éclipse", "azul", "Brass", "Hanabi"], start=1)]
    _orchestrator(store, test_settings).run(write_csv(rows))

    games = store.documents(GAMES)
    search = store.documents(SEARCH)
    assert [(d["id"], d["name"]) for d in games] == [(d["id"], d["name"]) for d in search]
    assert [d["name"] for d in games] == ["azul", "Brass", "Éclipse", "Hanabi", "Root"]
    assert all(set(d) == {"id", "name", "date_created", "date_updated"} for d in search)


def test_malformed_and_duplicate_rows_are_counted(store, test_settings, write_csv, make_row) -> None:
    path = write_csv([make_row(1, "Azul"), make_row("", "Nameless"), make_row(1, "Azul", rank=2)])

    result = _orchestrator(store, test_settings).run(path)

    assert result["total_scanned"] == 3
    assert result["rows_skipped"] == 1
    assert result["duplicates"] == 1
    assert result["new_count"] == 1
    assert store.documents(GAMES)[0]["rank"] == 2


def test_lease_held_by_another_run_blocks(store, test_settings, write_csv, make_row) -> None:
    store.leases[f"sync:{GAMES}"] = "someone-else"
    orchestrator = _orchestrator(store, test_settings)

    with pytest.raises(LeaseHeld):
        orchestrator.run(write_csv([make_row(1, "Azul")]))

    assert orchestrator.state is RunState.FAILED
    assert store.leases[f"sync:{GAMES}"] == "someone-else"
    assert store.documents(GAMES) == []


def test_lease_is_released_after_run(store, test_settings, write_csv, make_row) -> None:
    _orchestrator(store, test_settings).run(write_csv([make_row(1, "Azul")]))

    assert store.leases == {}


def test_lease_can_be_disabled(store, test_settings, write_csv, make_row) -> None:
    settings = test_settings.model_copy(update={"lease_enabled": False})

    _orchestrator(store, settings).run(write_csv([make_row(1, "Azul")]))

    assert ("try_acquire_lease", f"sync:{GAMES}") not in store.calls


def test_missing_file_fails_before_any_write(store, test_settings, tmp_path) -> None:
    orchestrator = _orchestrator(store, test_settings)

    with pytest.raises(DecodeFatal) as excinfo:
        orchestrator.run(tmp_path / "missing.csv")

    assert excinfo.value.stats is not None
    assert excinfo.value.stats.written == 0
    assert orchestrator.state is RunState.FAILED
    assert orchestrator.history[-2:] == [RunState.DECODING, RunState.FAILED]
    assert not any(method == "bulk_upsert" for method, _ in store.calls)
    assert store.leases == {}


def test_write_failure_reports_partial_progress(store, test_settings, write_csv, make_row) -> None:
    rows = [make_row(i, f"Game {i}") for i in range(1, 6)]
    store.fail_on("bulk_upsert", collection=GAMES, times=2, after=1)
    orchestrator = _orchestrator(store, test_settings)

    with pytest.raises(WriteFatal) as excinfo:
        orchestrator.run(write_csv(rows))

    stats = excinfo.value.stats
    assert stats.new_count == 5
    assert stats.written == 2
    assert orchestrator.state is RunState.FAILED
    assert len(store.documents(GAMES)) == 2
    assert store.leases == {}


def test_unexpected_errors_are_wrapped(store, test_settings, write_csv, make_row) -> None:
    def broken_find_all(name):
        raise RuntimeError("boom")

    store.find_all = broken_find_all

    with pytest.raises(SyncError) as excinfo:
        _orchestrator(store, test_settings).run(write_csv([make_row(1, "Azul")]))

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.stats.total_scanned == 1


def test_run_sync_uses_given_store(store, test_settings, write_csv, make_row) -> None:
    result = run_sync(write_csv([make_row(1, "Azul")]), store=store, settings=test_settings)

    assert result["new_count"] == 1
    assert result["state"] == RunState.DONE.value
    assert set(result["phases"]) == {"decoding", "diffing", "writing", "reindexing"}
