"""
Local task store tests: CRUD, indexes, filtering, snapshots, migration.

Usage:
    python -m pytest tests/test_store.py -v
"""
import asyncio
import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from conftest import run
from tasklist.errors import (
    DuplicateKey,
    InvalidRecord,
    InvalidSnapshot,
    StoreBlocked,
    StoreUnavailable,
    UnknownIndex,
)
from tasklist.schemas.task import TaskRecord
from tasklist import store as store_module
from tasklist.store import LocalStore


def _task(task_id, text="Task", **fields):
    return TaskRecord(id=task_id, text=text, **fields)


def _index_names(store):
    return {index["name"] for index in inspect(store._engine).get_indexes("todos")}


# ─────────────────────────────────────────────
#  Connection and schema
# ─────────────────────────────────────────────

def test_open_is_idempotent_and_creates_indexes(make_store):
    async def scenario():
        store = make_store()
        assert await store.open() is store
        engine = store._engine
        await store.open()
        assert store._engine is engine
        names = _index_names(store)
        store.close()
        return names

    names = run(scenario())
    for field in ("completed", "priority", "category", "created_at", "deadline", "text"):
        assert f"ix_todos_{field}" in names
    assert "ix_todos_selected" not in names


def test_operations_fail_when_closed(make_store):
    async def scenario():
        store = make_store()
        with pytest.raises(StoreUnavailable):
            await store.get_all()
        await store.open()
        store.close()
        assert not store.is_open
        with pytest.raises(StoreUnavailable):
            await store.add(_task("a"))

    run(scenario())


def test_schema_upgrade_adds_index_set(tmp_path, legacy_path):
    url = f"sqlite:///{tmp_path / 'upgrade.db'}"

    async def scenario():
        v1 = LocalStore(name="Upgrade", version=1, url=url, legacy_path=legacy_path)
        await v1.open()
        await v1.add(_task("kept"))
        v1.close()

        v2 = LocalStore(name="Upgrade", version=2, url=url, legacy_path=legacy_path)
        await v2.open()
        names = _index_names(v2)
        kept = await v2.get("kept")
        selected = await v2.query_by_index("selected", False)
        v2.close()

        older = LocalStore(name="Upgrade", version=1, url=url, legacy_path=legacy_path)
        with pytest.raises(StoreUnavailable):
            await older.open()
        assert not older.is_open
        return names, kept, selected

    names, kept, selected = run(scenario())
    assert "ix_todos_selected" in names
    assert kept is not None and kept.text == "Task"
    assert [task.id for task in selected] == ["kept"]


def test_blocked_upgrade_is_reported_distinctly(make_store, monkeypatch):
    def locked(self, engine):
        raise OperationalError("CREATE INDEX", {}, Exception("database is locked"))

    monkeypatch.setattr(LocalStore, "_initialize", locked)

    async def scenario():
        store = make_store()
        with pytest.raises(StoreBlocked) as excinfo:
            await store.open()
        assert not store.is_open
        return excinfo.value

    error = run(scenario())
    assert isinstance(error, StoreUnavailable)
    assert "close other sessions" in error.message


def test_concurrent_open_builds_one_engine(make_store, monkeypatch):
    engines = []
    real_make_engine = store_module.make_engine

    def counting_make_engine(url):
        engines.append(url)
        return real_make_engine(url)

    monkeypatch.setattr(store_module, "make_engine", counting_make_engine)

    async def scenario():
        store = make_store()
        first, second = await asyncio.gather(store.open(), store.open())
        opened = store.is_open
        store.close()
        return store, first, second, opened

    store, first, second, opened = run(scenario())
    assert len(engines) == 1
    assert first is store and second is store
    assert opened


def test_size_reports_sqlite_bytes(make_store):
    async def scenario():
        store = await make_store().open()
        await store.add(_task("sized"))
        size = await store.size()
        health = await store.health_check()
        store.close()
        return size, health

    size, health = run(scenario())
    assert size > 0
    assert health["size_bytes"] == size


# ─────────────────────────────────────────────
#  Record CRUD
# ─────────────────────────────────────────────

def test_add_requires_id_and_rejects_duplicates(make_store):
    async def scenario():
        store = await make_store().open()
        with pytest.raises(InvalidRecord):
            await store.add({"text": "no id"})
        with pytest.raises(InvalidRecord):
            await store.add({"id": "", "text": "empty id"})
        await store.add(_task("one"))
        with pytest.raises(DuplicateKey):
            await store.add(_task("one", text="again"))
        records = await store.get_all()
        store.close()
        return records

    records = run(scenario())
    assert [(r.id, r.text) for r in records] == [("one", "Task")]


def test_put_upserts(make_store):
    async def scenario():
        store = await make_store().open()
        with pytest.raises(InvalidRecord):
            await store.put({"text": "no id"})
        await store.put(_task("p", text="first"))
        await store.put(_task("p", text="second", priority="high"))
        record = await store.get("p")
        count = len(await store.get_all())
        store.close()
        return record, count

    record, count = run(scenario())
    assert count == 1
    assert record.text == "second"
    assert record.priority == "high"


def test_delete_twice_is_idempotent(make_store):
    async def scenario():
        store = await make_store().open()
        await store.add(_task("gone"))
        await store.delete("gone")
        await store.delete("gone")
        record = await store.get("gone")
        store.close()
        return record

    assert run(scenario()) is None


def test_records_round_trip_all_fields(make_store):
    deadline = datetime(2099, 5, 1, 12, 30)
    original = _task(
        "full",
        text="Pay rent",
        completed=True,
        priority="high",
        category="personal",
        deadline=deadline,
        completed_at=datetime(2024, 1, 2, 3, 4, 5),
        selected=True,
        position=7,
    )

    async def scenario():
        store = await make_store().open()
        await store.add(original)
        record = await store.get("full")
        store.close()
        return record

    assert run(scenario()) == original


def test_naive_utc_timestamps_are_written(make_store):
    created = datetime(2024, 6, 1, 8, 15, 30, 123456)

    async def scenario():
        store = await make_store().open()
        await store.add(_task("ts", created_at=created, deadline="2099-01-01T00:00:00.000Z"))
        await store.put(_task("ts", created_at=created, completed=True,
                              completed_at=datetime(2024, 6, 2), updated_at=datetime(2024, 6, 2)))
        record = await store.get("ts")
        store.close()
        return record

    record = run(scenario())
    assert record.created_at == created
    assert record.completed_at == datetime(2024, 6, 2)
    for value in (record.created_at, record.completed_at, record.updated_at):
        assert value.tzinfo is None


# ─────────────────────────────────────────────
#  Queries
# ─────────────────────────────────────────────

def _seed():
    base = datetime(2024, 1, 1)
    return [
        _task("1", "Buy milk", priority="low", category="shopping", created_at=base),
        _task("2", "write REPORT", priority="high", category="work", completed=True,
              created_at=base + timedelta(days=1), deadline=datetime(2099, 1, 1)),
        _task("3", "Call mom", priority="medium", category="personal",
              created_at=base + timedelta(days=2), deadline=datetime(2098, 1, 1)),
        _task("4", "buy stamps", priority="high", category="shopping",
              created_at=base + timedelta(days=3)),
    ]


def test_query_by_index(make_store):
    async def scenario():
        store = await make_store().open()
        for record in _seed():
            await store.add(record)
        high = await store.query_by_index("priority", "high")
        done = await store.query_by_index("completed", True)
        by_date = await store.query_by_index("createdAt", datetime(2024, 1, 1))
        with pytest.raises(UnknownIndex):
            await store.query_by_index("position", 0)
        store.close()
        return high, done, by_date

    high, done, by_date = run(scenario())
    assert {r.id for r in high} == {"2", "4"}
    assert [r.id for r in done] == ["2"]
    assert [r.id for r in by_date] == ["1"]


@pytest.mark.parametrize("criteria", [
    {},
    {"category": "shopping"},
    {"priority": "high", "completed": "pending"},
    {"completed": True},
    {"completed": "all", "category": "all", "priority": "all"},
    {"searchTerm": "BUY"},
    {"search_term": "report", "category": "work"},
    {"category": "health"},
])
def test_filter_and_sort_returns_exactly_matching_records(make_store, criteria):
    def satisfies(record):
        if criteria.get("category") not in (None, "all") and record.category != criteria["category"]:
            return False
        if criteria.get("priority") not in (None, "all") and record.priority != criteria["priority"]:
            return False
        status = criteria.get("completed")
        if status is True or status == "completed":
            if not record.completed:
                return False
        if status is False or status == "pending":
            if record.completed:
                return False
        term = criteria.get("searchTerm") or criteria.get("search_term")
        if term and term.lower() not in record.text.lower():
            return False
        return True

    async def scenario():
        store = await make_store().open()
        for record in _seed():
            await store.add(record)
        result = await store.filter_and_sort(criteria)
        everything = await store.get_all()
        store.close()
        return result, everything

    result, everything = run(scenario())
    assert all(satisfies(record) for record in result)
    assert {r.id for r in result} == {r.id for r in everything if satisfies(r)}


def test_filter_and_sort_ordering(make_store):
    async def scenario():
        store = await make_store().open()
        for record in _seed():
            await store.add(record)
        newest = await store.filter_and_sort(None)
        by_text = await store.filter_and_sort({"sortBy": "text", "sortOrder": "asc"})
        by_deadline = await store.filter_and_sort({"sort_by": "deadline", "sort_order": "desc"})
        store.close()
        return newest, by_text, by_deadline

    newest, by_text, by_deadline = run(scenario())
    assert [r.id for r in newest] == ["4", "3", "2", "1"]
    assert [r.text for r in by_text] == ["Buy milk", "buy stamps", "Call mom", "write REPORT"]
    # missing deadlines sort as the epoch
    assert [r.id for r in by_deadline][:2] == ["2", "3"]
    assert {r.id for r in by_deadline[2:]} == {"1", "4"}


def test_filter_and_sort_does_not_mutate_store(make_store):
    async def scenario():
        store = await make_store().open()
        for record in _seed():
            await store.add(record)
        result = await store.filter_and_sort({"sortBy": "text"})
        result[0].text = "changed"
        result.clear()
        fresh = await store.get_all()
        store.close()
        return fresh

    fresh = run(scenario())
    assert len(fresh) == 4
    assert "changed" not in {r.text for r in fresh}


def test_stats_and_overdue(make_store):
    async def scenario():
        store = await make_store().open()
        await store.add(_task("late", deadline=datetime(2000, 1, 1)))
        await store.add(_task("late-done", deadline=datetime(2000, 1, 1), completed=True))
        await store.add(_task("future", deadline=datetime(2099, 1, 1)))
        overdue = await store.get_overdue()
        stats = await store.get_stats()
        health = await store.health_check()
        store.close()
        return overdue, stats, health

    overdue, stats, health = run(scenario())
    assert [r.id for r in overdue] == ["late"]
    assert (stats.total, stats.completed, stats.pending, stats.overdue) == (3, 1, 2, 1)
    assert stats.by_priority == {"medium": 3}
    assert health["healthy"] is True and health["todo_count"] == 3


# ─────────────────────────────────────────────
#  Snapshots and migration
# ─────────────────────────────────────────────

def test_export_clear_import_round_trip(make_store):
    async def scenario():
        store = await make_store().open()
        for record in _seed():
            await store.add(record)
        before = await store.get_all()
        snapshot = await store.export_snapshot()
        exported = json.loads(snapshot.model_dump_json(by_alias=True))
        await store.clear()
        emptied = await store.get_all()
        imported = await store.import_snapshot(exported)
        after = await store.get_all()
        store.close()
        return before, snapshot, emptied, imported, after

    before, snapshot, emptied, imported, after = run(scenario())
    assert snapshot.db_name == "TestStore"
    assert snapshot.version == 1
    assert emptied == []
    assert imported == 4
    key = lambda record: record.id  # noqa: E731
    assert sorted(after, key=key) == sorted(before, key=key)


def test_import_validates_payload_and_skips_bad_entries(make_store):
    async def scenario():
        store = await make_store().open()
        await store.add(_task("old"))
        with pytest.raises(InvalidSnapshot):
            await store.import_snapshot({"items": []})
        with pytest.raises(InvalidSnapshot):
            await store.import_snapshot({"todos": "nope"})
        still_there = await store.get("old")
        count = await store.import_snapshot({"todos": [
            {"id": "a", "text": "Valid", "createdAt": "2024-03-01T10:00:00.000Z"},
            {"text": "missing id"},
            {"id": "b", "text": ""},
            {"id": "c", "text": "Bad priority", "priority": "urgent"},
            "not a record",
            {"id": "a", "text": "duplicate"},
        ]})
        records = await store.get_all()
        store.close()
        return still_there, count, records

    still_there, count, records = run(scenario())
    assert still_there is not None
    assert count == 1
    assert [(r.id, r.text) for r in records] == [("a", "Valid")]
    assert records[0].created_at == datetime(2024, 3, 1, 10, 0)


def test_migrate_legacy_snapshot(make_store, legacy_path):
    legacy_path.write_text(json.dumps([
        {"id": "l1", "text": "Legacy one", "completed": True,
         "createdAt": "2023-05-01T08:00:00.000Z", "completedAt": "2023-05-02T08:00:00.000Z"},
        {"id": "l2", "text": "Legacy two", "priority": "high", "category": "work",
         "deadline": "2030-01-01T09:00", "selected": False},
        {"text": "no id"},
    ]))

    async def scenario():
        store = await make_store().open()
        migrated = await store.migrate_legacy_snapshot()
        records = await store.get_all()
        store.close()
        return migrated, records

    migrated, records = run(scenario())
    assert migrated == 2
    assert not legacy_path.exists()
    by_id = {r.id: r for r in records}
    assert by_id["l1"].completed_at == datetime(2023, 5, 2, 8, 0)
    assert by_id["l2"].deadline == datetime(2030, 1, 1, 9, 0)


@pytest.mark.parametrize("content", [
    "{not json",
    json.dumps({"todos": []}),
    json.dumps([{"text": "no id"}]),
])
def test_migrate_legacy_snapshot_fails_closed(make_store, legacy_path, content):
    legacy_path.write_text(content)

    async def scenario():
        store = await make_store().open()
        migrated = await store.migrate_legacy_snapshot()
        store.close()
        return migrated

    assert run(scenario()) == 0
    assert legacy_path.exists()


def test_migrate_without_legacy_data(make_store):
    async def scenario():
        store = await make_store().open()
        migrated = await store.migrate_legacy_snapshot()
        store.close()
        return migrated

    assert run(scenario()) == 0
