"""Behaviour every error store must share."""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from fault_ledger.rollup import build_match, resolve
from fault_ledger.schemas.error_record import ErrorRecord, as_pairs
from fault_ledger.stores import ErrorStore, RollupMatch

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(error_hash: int | None = 99, *, at: datetime = T0, **fields) -> ErrorRecord:
    return ErrorRecord(
        application_name=fields.pop("application_name", "TestApp"),
        message=fields.pop("message", "boom"),
        detail="Traceback (most recent call last):\nValueError: boom",
        error_hash=error_hash,
        creation_date=at,
        last_log_date=at,
        **fields,
    )


def test_insert_and_get_round_trip(store: ErrorStore) -> None:
    record = _record(
        url_path="/orders",
        query_string=as_pairs([("a", "1"), ("a", "2")]),
        custom_data={"user": "alice"},
    )

    key = store.insert(record)
    stored = store.get(key)

    assert stored is not None
    assert stored.id == key
    assert stored.guid == record.guid
    assert stored.message == "boom"
    assert stored.url_path == "/orders"
    assert [pair.value for pair in stored.query_string] == ["1", "2"]
    assert stored.custom_data == {"user": "alice"}
    assert stored.creation_date == T0
    assert store.get_by_guid(record.guid).id == key


def test_get_unknown_key_returns_none(store: ErrorStore) -> None:
    assert store.get(123456) is None
    assert store.get("not-a-key") is None


def test_insert_defaults_application_name(store: ErrorStore) -> None:
    key = store.insert(_record(application_name=None))

    assert store.get(key).application_name == "TestApp"


def test_increment_duplicate_updates_matching_record(store: ErrorStore) -> None:
    record = _record()
    key = store.insert(record)
    now = T0 + timedelta(minutes=3)
    match = RollupMatch(error_hash=99, application_name="TestApp", since=now - timedelta(minutes=10))

    folded = store.increment_duplicate(match, now)

    assert folded.key == key
    assert folded.guid == record.guid

    stored = store.get(key)
    assert stored.duplicate_count == 2
    assert stored.last_log_date == now


def test_increment_duplicate_without_match(store: ErrorStore) -> None:
    store.insert(_record())
    now = T0 + timedelta(minutes=3)

    stale = RollupMatch(error_hash=99, application_name="TestApp", since=T0 + timedelta(minutes=1))
    other_hash = RollupMatch(error_hash=7, application_name="TestApp", since=T0)
    other_app = RollupMatch(error_hash=99, application_name="Other", since=T0)

    assert store.increment_duplicate(stale, now) is None
    assert store.increment_duplicate(other_hash, now) is None
    assert store.increment_duplicate(other_app, now) is None


def test_increment_duplicate_skips_deleted_records(store: ErrorStore) -> None:
    key = store.insert(_record())
    store.soft_delete(key)

    match = RollupMatch(error_hash=99, application_name="TestApp", since=T0)

    assert store.increment_duplicate(match, T0) is None


def test_resolve_folds_through_the_store(store: ErrorStore) -> None:
    first = resolve(_record(), store, now=T0)
    later = T0 + timedelta(minutes=1)
    second = resolve(_record(at=later, message="second"), store, now=later)

    assert second.matched_id == first.record_id
    stored = store.get(first.record_id)
    assert stored.duplicate_count == 2
    assert stored.last_log_date == later
    assert stored.creation_date == T0
    assert stored.message == "boom"
    assert store.count() == 1


def test_folded_occurrence_carries_the_stored_guid(store: ErrorStore) -> None:
    original = _record()
    resolve(original, store, now=T0)
    later = T0 + timedelta(minutes=1)
    repeat = _record(at=later)
    fresh_guid = repeat.guid

    resolve(repeat, store, now=later)

    assert repeat.is_duplicate is True
    assert repeat.guid == original.guid
    assert repeat.guid != fresh_guid
    assert store.get_by_guid(repeat.guid).id == repeat.id


def test_long_application_names_still_fold_and_filter(store: ErrorStore) -> None:
    application = "A" * 60
    first = resolve(_record(application_name=application), store, now=T0)
    later = T0 + timedelta(minutes=1)
    second = resolve(_record(application_name=application, at=later), store, now=later)

    assert second.matched_id == first.record_id
    assert store.get(first.record_id).duplicate_count == 2
    assert [record.id for record in store.list_records(application)] == [first.record_id]
    assert store.count(application) == 1
    assert store.delete_all(application) == 1
    assert store.count(application) == 0


def test_list_records_newest_first_and_filtered(store: ErrorStore) -> None:
    store.insert(_record(1, message="older"))
    store.insert(_record(2, message="newer", at=T0 + timedelta(minutes=1)))
    store.insert(_record(3, message="foreign", application_name="Other"))

    assert [record.message for record in store.list_records()] == ["newer", "older"]
    assert [record.message for record in store.list_records("Other")] == ["foreign"]


def test_count_with_since(store: ErrorStore) -> None:
    store.insert(_record(1))
    store.insert(_record(2, at=T0 + timedelta(hours=1)))

    assert store.count() == 2
    assert store.count(since=T0 + timedelta(minutes=30)) == 1


def test_protected_records_survive_soft_delete(store: ErrorStore) -> None:
    key = store.insert(_record())

    assert store.protect(key) is True
    assert store.get(key).is_protected is True
    assert store.soft_delete(key) is False
    assert store.get(key) is not None

    assert store.unprotect(key) is True
    assert store.soft_delete(key) is True
    assert store.count() == 0


def test_forced_soft_delete_ignores_protection(store: ErrorStore) -> None:
    key = store.insert(_record())
    store.protect(key)

    assert store.soft_delete(key, force=True) is True
    assert store.count() == 0


def test_soft_delete_keeps_record_recoverable_where_supported(store: ErrorStore) -> None:
    key = store.insert(_record())
    store.soft_delete(key)

    if store.supports_soft_delete:
        deleted = store.get(key)
        assert deleted.deletion_date is not None
        assert [record.id for record in store.list_records(include_deleted=True)] == [key]
        assert store.restore(key) is True
        assert store.get(key).deletion_date is None
        assert store.count() == 1
    else:
        assert store.get(key) is None
        assert store.restore(key) is False


def test_hard_delete_removes_protected_records(store: ErrorStore) -> None:
    key = store.insert(_record())
    store.protect(key)

    assert store.hard_delete(key) is True
    assert store.get(key) is None
    assert store.hard_delete(key) is False


def test_mutations_on_unknown_keys_return_false(store: ErrorStore) -> None:
    assert store.protect(424242) is False
    assert store.unprotect(424242) is False
    assert store.soft_delete(424242) is False
    assert store.hard_delete(424242) is False


def test_delete_all_skips_protected_and_other_applications(store: ErrorStore) -> None:
    keep = store.insert(_record(1))
    store.insert(_record(2))
    store.insert(_record(3, application_name="Other"))
    store.protect(keep)

    assert store.delete_all() == 1
    assert [record.id for record in store.list_records()] == [keep]
    assert store.count("Other") == 1


def test_purge_expired_removes_old_unprotected_records(store: ErrorStore) -> None:
    old = store.insert(_record(1, at=T0 - timedelta(days=40)))
    protected = store.insert(_record(2, at=T0 - timedelta(days=40)))
    recent = store.insert(_record(3))
    store.protect(protected)

    assert store.purge_expired(T0 - timedelta(days=30)) == 1
    assert store.get(old) is None
    assert store.get(protected) is not None
    assert store.get(recent) is not None


def test_build_match_respects_store_capabilities(store: ErrorStore) -> None:
    assert build_match(_record(), store, T0) is not None


@pytest.mark.asyncio
async def test_async_operations(store: ErrorStore) -> None:
    key = await store.insert_async(_record())
    match = RollupMatch(error_hash=99, application_name="TestApp", since=T0)

    matched, listed = await asyncio.gather(
        store.increment_duplicate_async(match, T0 + timedelta(seconds=5)),
        store.list_records_async(),
    )

    assert matched.key == key
    assert len(listed) == 1
    assert (await store.get_async(key)).duplicate_count == 2


def test_concurrent_duplicates_fold_into_one_record(store: ErrorStore) -> None:
    first = resolve(_record(), store, now=T0)
    workers = 8

    def _log_again(offset: int) -> object:
        at = T0 + timedelta(seconds=offset + 1)
        return resolve(_record(at=at), store, now=at).record_id

    with ThreadPoolExecutor(max_workers=4) as pool:
        keys = list(pool.map(_log_again, range(workers)))

    assert keys == [first.record_id] * workers
    assert store.count() == 1
    assert store.get(first.record_id).duplicate_count == workers + 1
