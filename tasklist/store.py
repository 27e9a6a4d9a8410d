"""
Local task store.

Durable, queryable storage for task records in a SQLite (or any SQLAlchemy)
database. Every public operation is a coroutine; the blocking SQLAlchemy work
runs in a worker thread and the store serialises its own transactions, so
callers on the event loop never block and never observe a half-written record.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from .config import LEGACY_SNAPSHOT_PATH, STORE_NAME, STORE_VERSION
from .database import make_engine
from .errors import (
    DuplicateKey,
    InvalidRecord,
    InvalidSnapshot,
    PersistenceFailure,
    StoreBlocked,
    StoreError,
    StoreUnavailable,
    UnknownIndex,
)
from .models import StoreMeta, Task
from .query import FiltersLike, compute_stats, filter_and_sort, is_overdue
from .schemas.task import Snapshot, TaskRecord, TaskStats, normalize_field
from .utils.datetime_helper import utcnow

logger = logging.getLogger(__name__)

# Secondary index set introduced by each schema version
SCHEMA_INDEXES: Dict[int, Tuple[str, ...]] = {
    1: ("completed", "priority", "category", "created_at", "deadline", "text"),
    2: ("selected",),
}

RecordLike = Union[TaskRecord, Mapping[str, Any]]


def _to_row(record: TaskRecord) -> Task:
    return Task(**record.model_dump())


def _to_record(row: Task) -> TaskRecord:
    return TaskRecord.model_validate(row)


def _coerce(task: Any) -> TaskRecord:
    """Turn a record or a mapping into a TaskRecord, or raise InvalidRecord."""
    if isinstance(task, TaskRecord):
        record = task
    elif isinstance(task, Mapping):
        if not task.get("id"):
            raise InvalidRecord("Invalid task record: missing id")
        try:
            record = TaskRecord.model_validate(dict(task))
        except PydanticValidationError as exc:
            raise InvalidRecord(
                f"Invalid task record {task.get('id')}: {exc.error_count()} invalid field(s)"
            ) from exc
    else:
        raise InvalidRecord("Invalid task record: expected a mapping")

    if not record.id:
        raise InvalidRecord("Invalid task record: missing id")
    return record


class LocalStore:
    """Record container for tasks with secondary indexes and snapshots."""

    def __init__(
        self,
        name: str = STORE_NAME,
        version: int = STORE_VERSION,
        url: Optional[str] = None,
        legacy_path: Optional[Path] = None,
    ):
        if version not in SCHEMA_INDEXES:
            raise ValueError(f"Unknown schema version {version}")
        self.name = name
        self.version = version
        self.url = url or f"sqlite:///./{name}.db"
        self.legacy_path = Path(legacy_path) if legacy_path else LEGACY_SNAPSHOT_PATH
        self._engine = None
        self._lock = asyncio.Lock()
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def indexed_fields(self) -> Tuple[str, ...]:
        fields: Tuple[str, ...] = ()
        for version in sorted(SCHEMA_INDEXES):
            if version <= self.version:
                fields += SCHEMA_INDEXES[version]
        return fields

    # -------------------- connection --------------------

    async def open(self) -> "LocalStore":
        """Connect and bring the schema up to the requested version."""
        if self._engine is not None:
            return self

        async with self._open_lock:
            if self._engine is not None:
                return self

            engine = make_engine(self.url)
            try:
                await asyncio.to_thread(self._initialize, engine)
            except StoreUnavailable:
                engine.dispose()
                raise
            except OperationalError as exc:
                engine.dispose()
                if "locked" in str(exc).lower():
                    raise StoreBlocked(
                        "Task storage is being upgraded by another session. "
                        "Please close other sessions using this application."
                    ) from exc
                raise StoreUnavailable(f"Could not open task storage: {exc}") from exc
            except SQLAlchemyError as exc:
                engine.dispose()
                raise StoreUnavailable(f"Could not open task storage: {exc}") from exc

            self._engine = engine
        logger.info("Opened task store %s (schema v%d)", self.name, self.version)
        return self

    def _initialize(self, engine) -> None:
        SQLModel.metadata.create_all(engine, tables=[Task.__table__, StoreMeta.__table__])
        with Session(engine) as session:
            meta = session.get(StoreMeta, self.name)
            current = meta.version if meta else 0
            if current > self.version:
                raise StoreUnavailable(
                    f"Task storage is at schema v{current}, newer than v{self.version}"
                )
            if current == self.version:
                return

            connection = session.connection()
            for version in range(current + 1, self.version + 1):
                for field in SCHEMA_INDEXES[version]:
                    connection.execute(
                        text(f"CREATE INDEX IF NOT EXISTS ix_todos_{field} ON todos ({field})")
                    )
            session.merge(StoreMeta(name=self.name, version=self.version))
            session.commit()
            logger.info("Upgraded task store %s from v%d to v%d", self.name, current, self.version)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("Closed task store %s", self.name)

    async def _run(self, operation, *args):
        """Run one transaction in a worker thread, one at a time."""
        engine = self._engine
        if engine is None:
            raise StoreUnavailable("Task storage is not open")

        async with self._lock:
            try:
                return await asyncio.to_thread(operation, engine, *args)
            except StoreError:
                raise
            except SQLAlchemyError as exc:
                logger.error("Task store operation %s failed: %s", operation.__name__, exc)
                raise PersistenceFailure(f"Task storage operation failed: {exc}") from exc

    # -------------------- record CRUD --------------------

    async def add(self, task: RecordLike) -> TaskRecord:
        record = _coerce(task)
        await self._run(self._add, _to_row(record))
        return record

    @staticmethod
    def _add(engine, row: Task) -> None:
        with Session(engine) as session:
            if session.get(Task, row.id) is not None:
                raise DuplicateKey(f"A task with id {row.id} already exists")
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                raise DuplicateKey(f"A task with id {row.id} already exists") from exc

    async def put(self, task: RecordLike) -> TaskRecord:
        record = _coerce(task)
        await self._run(self._put, _to_row(record))
        return record

    @staticmethod
    def _put(engine, row: Task) -> None:
        with Session(engine) as session:
            session.merge(row)
            session.commit()

    async def delete(self, task_id: str) -> None:
        if not task_id:
            raise InvalidRecord("Invalid task id")
        await self._run(self._delete, task_id)

    @staticmethod
    def _delete(engine, task_id: str) -> None:
        with Session(engine) as session:
            row = session.get(Task, task_id)
            if row is not None:
                session.delete(row)
                session.commit()

    async def get(self, task_id: str) -> Optional[TaskRecord]:
        if not task_id:
            raise InvalidRecord("Invalid task id")
        return await self._run(self._get, task_id)

    @staticmethod
    def _get(engine, task_id: str) -> Optional[TaskRecord]:
        with Session(engine) as session:
            row = session.get(Task, task_id)
            return _to_record(row) if row is not None else None

    async def get_all(self) -> List[TaskRecord]:
        return await self._run(self._get_all)

    @staticmethod
    def _get_all(engine) -> List[TaskRecord]:
        with Session(engine) as session:
            return [_to_record(row) for row in session.exec(select(Task)).all()]

    async def clear(self) -> None:
        await self._run(self._clear)

    @staticmethod
    def _clear(engine) -> None:
        with Session(engine) as session:
            session.connection().execute(Task.__table__.delete())
            session.commit()

    # -------------------- queries --------------------

    async def query_by_index(self, field: str, value: Any) -> List[TaskRecord]:
        """Equality lookup through a secondary index."""
        column = normalize_field(field)
        if column not in self.indexed_fields:
            raise UnknownIndex(f"No index on '{field}'")
        return await self._run(self._query_by_index, column, value)

    @staticmethod
    def _query_by_index(engine, column: str, value: Any) -> List[TaskRecord]:
        with Session(engine) as session:
            statement = select(Task).where(getattr(Task, column) == value)
            return [_to_record(row) for row in session.exec(statement).all()]

    async def filter_and_sort(self, filters: FiltersLike = None) -> List[TaskRecord]:
        records = await self.get_all()
        return filter_and_sort(records, filters)

    async def get_overdue(self) -> List[TaskRecord]:
        now = utcnow()
        return [record for record in await self.get_all() if is_overdue(record, now)]

    async def get_stats(self) -> TaskStats:
        return compute_stats(await self.get_all())

    # -------------------- snapshots --------------------

    async def export_snapshot(self) -> Snapshot:
        records = await self.get_all()
        return Snapshot(
            todos=[record.to_public() for record in records],
            export_date=utcnow(),
            version=self.version,
            db_name=self.name,
        )

    async def import_snapshot(self, payload: Union[Snapshot, Mapping[str, Any]]) -> int:
        """Replace the store contents with the snapshot's records.

        Malformed entries are skipped; returns how many records were imported.
        """
        if isinstance(payload, Snapshot):
            entries = payload.todos
        elif isinstance(payload, Mapping) and isinstance(payload.get("todos"), list):
            entries = payload["todos"]
        else:
            raise InvalidSnapshot("Invalid data format: todos must be a list")

        rows: List[Task] = []
        seen = set()
        for entry in entries:
            try:
                record = _coerce(entry)
            except InvalidRecord as exc:
                logger.warning("Skipping invalid task in snapshot: %s", exc)
                continue
            if record.id in seen:
                logger.warning("Skipping duplicate task %s in snapshot", record.id)
                continue
            seen.add(record.id)
            rows.append(_to_row(record))

        await self._run(self._replace_all, rows)
        logger.info("Imported %d task(s) into %s", len(rows), self.name)
        return len(rows)

    @staticmethod
    def _replace_all(engine, rows: List[Task]) -> None:
        with Session(engine) as session:
            session.connection().execute(Task.__table__.delete())
            session.add_all(rows)
            session.commit()

    async def migrate_legacy_snapshot(self, path: Optional[Path] = None) -> int:
        """Best-effort one-time import of the old flat JSON task list.

        Never raises: malformed or unreadable data migrates zero records.
        The legacy file is removed only if something was migrated.
        """
        path = Path(path) if path else self.legacy_path
        if not path.exists():
            return 0

        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Invalid legacy task snapshot %s: %s", path, exc)
            return 0

        if not isinstance(entries, list):
            logger.warning("Legacy task snapshot %s is not a list", path)
            return 0

        migrated = 0
        for entry in entries:
            if not isinstance(entry, Mapping) or not entry.get("id"):
                continue
            try:
                await self.add(entry)
                migrated += 1
            except StoreError as exc:
                logger.warning("Failed to migrate task %s: %s", entry.get("id"), exc)

        if migrated > 0:
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("Could not remove legacy snapshot %s: %s", path, exc)
            logger.info("Migrated %d task(s) from %s", migrated, path)
        return migrated

    async def health_check(self) -> Dict[str, Any]:
        if self._engine is None:
            return {"healthy": False, "error": "Task storage is not open"}
        try:
            records = await self.get_all()
            size_bytes = await self.size()
        except StoreError as exc:
            return {"healthy": False, "error": exc.message}
        return {
            "healthy": True,
            "todo_count": len(records),
            "size_bytes": size_bytes,
            "version": self.version,
            "name": self.name,
        }

    async def size(self) -> Optional[int]:
        """Bytes used by the database, or None when the backend cannot say."""
        return await self._run(self._size)

    @staticmethod
    def _size(engine) -> Optional[int]:
        if engine.dialect.name != "sqlite":
            return None
        with engine.connect() as connection:
            page_count = connection.execute(text("PRAGMA page_count")).scalar()
            page_size = connection.execute(text("PRAGMA page_size")).scalar()
        return page_count * page_size
