from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ranksync.domain.errors import StoreWriteError, WriteFatal
from ranksync.domain.models import Record
from ranksync.engine.batch_writer import BatchWriter, build_record_op, build_search_op, chunked

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
EARLIER = datetime(2023, 1, 1, tzinfo=timezone.utc)


def _records(count: int) -> list[Record]:
    return [Record(id=i, name=f"Game {i:02d}", rank=i, average=7.0) for i in range(1, count + 1)]


def _writer(store, **overrides) -> BatchWriter:
    options = dict(
        records_collection="games",
        search_collection="search",
        batch_size=2,
        retry_wait_seconds=0,
        clock=lambda: NOW,
    )
    options.update(overrides)
    return BatchWriter(store, **options)


def test_chunked_splits_and_rejects_non_positive_size() -> None:
    assert [list(c) for c in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_writer_rejects_non_positive_batch_size(store) -> None:
    with pytest.raises(ValueError):
        _writer(store, batch_size=0)


def test_write_upserts_records_and_search_projection(store) -> None:
    outcome = _writer(store).write(_records(5))

    assert outcome.written == 5
    assert outcome.batches == 3
    assert outcome.inserted == 5
    games = store.documents("games")
    search = store.documents("search")
    assert [doc["id"] for doc in games] == [1, 2, 3, 4, 5]
    assert all(doc["date_created"] == NOW and doc["date_updated"] == NOW for doc in games)
    assert search[0] == {"id": 1, "name": "Game 01", "date_created": NOW, "date_updated": NOW}


def test_update_keeps_date_created_and_unsets_absent_fields(store) -> None:
    store.seed(
        "games",
        [{"id": 1, "name": "Game 01", "rank": 9, "abstracts_rank": 4, "date_created": EARLIER, "date_updated": EARLIER}],
    )

    outcome = _writer(store).write([Record(id=1, name="Game 01", rank=3)])

    (doc,) = store.documents("games")
    assert outcome.updated == 1
    assert doc["rank"] == 3
    assert "abstracts_rank" not in doc
    assert doc["date_created"] == EARLIER
    assert doc["date_updated"] == NOW


def test_build_record_op_lists_absent_comparable_fields() -> None:
    op = build_record_op(Record(id=7, name="Sparse"), NOW)

    assert op.key == 7
    assert op.set_fields["is_expansion"] is False
    assert "rank" in op.unset and "average" in op.unset
    assert "name" not in op.unset
    assert op.set_on_insert == {"date_created": NOW}


def test_build_search_op_projects_id_and_name_only() -> None:
    op = build_search_op(Record(id=7, name="Sparse", rank=3, average=6.5), NOW)

    assert op.key == 7
    assert op.set_fields == {"id": 7, "name": "Sparse", "date_updated": NOW}
    assert op.set_on_insert == {"date_created": NOW}
    assert op.unset == ()


def test_failed_batch_is_retried_after_ping(store) -> None:
    store.fail_on("bulk_upsert", collection="games", times=1, after=1)

    outcome = _writer(store).write(_records(4))

    assert outcome.written == 4
    assert store.ping_count == 1
    assert len(store.documents("games")) == 4
    assert len(store.documents("search")) == 4


def test_search_failure_retries_whole_batch_idempotently(store) -> None:
    store.fail_on("bulk_upsert", collection="search", times=1)

    outcome = _writer(store).write(_records(2))

    assert outcome.written == 2
    assert len(store.documents("games")) == 2
    assert len(store.documents("search")) == 2


def test_second_failure_is_fatal_and_reports_committed_progress(store) -> None:
    store.fail_on("bulk_upsert", collection="games", times=2, after=1)

    with pytest.raises(WriteFatal) as excinfo:
        _writer(store).write(_records(5))

    assert excinfo.value.written == 2
    assert excinfo.value.batch_index == 2
    assert [doc["id"] for doc in store.documents("games")] == [1, 2]


def test_unreachable_store_skips_retry(store) -> None:
    store.fail_on("bulk_upsert", times=1)
    store.ping_ok = False

    with pytest.raises(WriteFatal) as excinfo:
        _writer(store).write(_records(2))

    assert excinfo.value.written == 0
    assert store.ping_count == 1
    assert store.documents("games") == []


def test_rejected_write_is_retried_like_connectivity_errors(store) -> None:
    store.fail_on("bulk_upsert", collection="games", times=1, error=StoreWriteError)

    outcome = _writer(store).write(_records(1))

    assert outcome.written == 1


def test_concurrent_workers_write_every_batch(store) -> None:
    outcome = _writer(store, workers=3).write(_records(7))

    assert outcome.written == 7
    assert outcome.batches == 4
    assert sorted(doc["id"] for doc in store.documents("games")) == list(range(1, 8))
    assert len(store.documents("search")) == 7


def test_concurrent_failure_raises_write_fatal(store) -> None:
    store.fail_on("bulk_upsert", collection="games", times=10)

    with pytest.raises(WriteFatal) as excinfo:
        _writer(store, workers=2).write(_records(4))

    assert excinfo.value.written == 0
