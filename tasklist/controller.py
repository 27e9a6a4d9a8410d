"""
Task controller.

Owns the in-memory task list shown to the user. Every mutation is applied
optimistically, re-rendered, then persisted to the local store; when the
store rejects it the captured values are put back, the view is re-rendered
and the user gets one notification.

Mutation lifecycle: PENDING -> CONFIRMED | ROLLED_BACK. Reordering is the
exception: it persists best-effort and ends PARTIAL on failure without
restoring the previous order.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, NamedTuple, Optional, Set
from uuid import uuid4

from .config import REMOVE_TRANSITION_SECONDS
from .errors import StoreBlocked, StoreError, StoreUnavailable, ValidationError
from .notifications import Notifier
from .query import FiltersLike, coerce_filters, compute_stats, filter_and_sort
from .schemas.task import Snapshot, TaskFilters, TaskRecord, TaskStats
from .store import LocalStore
from .utils.datetime_helper import utcnow
from .validation import clean_category, clean_deadline, clean_priority, clean_text

logger = logging.getLogger(__name__)

SAVE_FAILED = "Failed to save todo. Please try again."
UPDATE_FAILED = "Failed to update todo. Please try again."
DELETE_FAILED = "Failed to delete todo. Please try again."
RESTORE_FAILED = "Failed to restore todo. Please try again."
ORDER_FAILED = "Failed to save new order. Changes may be lost."
STORE_OFFLINE = "Task storage is unavailable. Changes will not be saved."


class MutationState(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    PARTIAL = "partial"  # reorder only


@dataclass
class Mutation:
    kind: str
    task_id: Optional[str] = None
    state: MutationState = MutationState.PENDING
    error: Optional[str] = None


class QueryResult(NamedTuple):
    tasks: List[TaskRecord]
    degraded: bool


class TaskController:
    def __init__(
        self,
        store: Optional[LocalStore],
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[["TaskController"], None]] = None,
        remove_delay: float = REMOVE_TRANSITION_SECONDS,
    ):
        self.store = store
        self.notifier = notifier or Notifier()
        self.on_change = on_change
        self.remove_delay = remove_delay

        self.tasks: List[TaskRecord] = []
        self.filtered: List[TaskRecord] = []
        self.criteria = TaskFilters()
        self.stats = TaskStats()
        self.leaving: Set[str] = set()
        self.editing_id: Optional[str] = None
        self.degraded = store is None

    # -------------------- lifecycle --------------------

    async def start(self) -> None:
        """Open the store, migrate legacy data and load tasks.

        If the store cannot be opened the controller keeps running in
        memory-only mode.
        """
        if self.store is not None:
            try:
                await self.store.open()
            except StoreUnavailable as exc:
                logger.error("Task store unavailable, running memory-only: %s", exc)
                self.degraded = True
                self.notifier.notify(exc.message if isinstance(exc, StoreBlocked) else STORE_OFFLINE)
            else:
                self.degraded = False
                migrated = await self.store.migrate_legacy_snapshot()
                if migrated:
                    logger.info("Migrated %d legacy task(s)", migrated)
                await self.load()
        self._render()

    async def load(self) -> None:
        try:
            records = await self.store.get_all()
        except StoreError as exc:
            logger.error("Failed to load tasks: %s", exc)
            self.tasks = []
            self.notifier.notify("Failed to load todos from storage.")
            return
        records.sort(key=lambda task: task.created_at, reverse=True)
        records.sort(key=lambda task: task.position)
        self.tasks = records

    # -------------------- views --------------------

    @property
    def view(self) -> List[TaskRecord]:
        """What the list shows: the filtered view, or manual order when unfiltered."""
        return self.filtered if self.criteria.is_active else list(self.tasks)

    def _find(self, task_id: str) -> Optional[TaskRecord]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def _render(self) -> None:
        self.filtered = filter_and_sort(self.tasks, self.criteria)
        self.stats = compute_stats(self.tasks)
        if self.on_change is not None:
            self.on_change(self)

    async def apply_filters(self, criteria: FiltersLike = None) -> QueryResult:
        """Query the store for the filtered view.

        Falls back to filtering the in-memory list when the store cannot
        answer; the result says whether that happened.
        """
        if criteria is not None:
            try:
                self.criteria = coerce_filters(criteria)
            except ValidationError as exc:
                self.notifier.notify(exc.message)
                return QueryResult(self.filtered, self.degraded)

        degraded = self.degraded
        if degraded:
            self.filtered = filter_and_sort(self.tasks, self.criteria)
        else:
            try:
                self.filtered = await self.store.filter_and_sort(self.criteria)
            except StoreError as exc:
                logger.error("Store filtering failed, falling back to in-memory: %s", exc)
                self.filtered = filter_and_sort(self.tasks, self.criteria)
                degraded = True

        self.stats = compute_stats(self.tasks)
        if self.on_change is not None:
            self.on_change(self)
        return QueryResult(self.filtered, degraded)

    def compute_stats(self) -> TaskStats:
        """Counts over the full in-memory list, not the filtered view."""
        self.stats = compute_stats(self.tasks)
        return self.stats

    def history(self) -> List[TaskRecord]:
        """Completed tasks, most recently completed first."""
        done = [task for task in self.tasks if task.completed]
        done.sort(key=lambda task: task.completed_at or task.created_at, reverse=True)
        return done

    # -------------------- optimistic protocol --------------------

    async def _settle(
        self,
        mutation: Mutation,
        persist: Callable[[], Awaitable[Any]],
        rollback: Callable[[], None],
        failure_message: str,
        confirm: Optional[Callable[[], None]] = None,
    ) -> Mutation:
        if not self.degraded:
            try:
                await persist()
            except StoreError as exc:
                logger.error("%s of task %s failed: %s", mutation.kind, mutation.task_id, exc)
                rollback()
                mutation.state = MutationState.ROLLED_BACK
                mutation.error = failure_message
                self._render()
                self.notifier.notify(failure_message)
                return mutation

        mutation.state = MutationState.CONFIRMED
        if confirm is not None:
            confirm()
            self._render()
        return mutation

    # -------------------- mutations --------------------

    async def create(
        self,
        raw_text: str,
        priority: Optional[str] = "medium",
        category: Optional[str] = "general",
        deadline: Any = None,
    ) -> Optional[Mutation]:
        try:
            task = TaskRecord(
                id=uuid4().hex,
                text=clean_text(raw_text),
                priority=clean_priority(priority),
                category=clean_category(category),
                deadline=clean_deadline(deadline),
                created_at=utcnow(),
                position=min((t.position for t in self.tasks), default=1) - 1,
            )
        except ValidationError as exc:
            self.notifier.notify(exc.message)
            return None

        mutation = Mutation("create", task.id)
        self.tasks.insert(0, task)
        self._render()

        def rollback() -> None:
            self.tasks = [t for t in self.tasks if t.id != task.id]

        return await self._settle(mutation, lambda: self.store.add(task), rollback, SAVE_FAILED)

    async def toggle_complete(self, task_id: str) -> Optional[Mutation]:
        task = self._find(task_id)
        if task is None:
            return None

        original_completed, original_completed_at = task.completed, task.completed_at
        mutation = Mutation("toggle", task_id)
        task.completed = not task.completed
        task.completed_at = utcnow() if task.completed else None
        self._render()

        def rollback() -> None:
            task.completed = original_completed
            task.completed_at = original_completed_at

        return await self._settle(mutation, lambda: self.store.put(task), rollback, UPDATE_FAILED)

    def begin_edit(self, task_id: str) -> None:
        if self._find(task_id) is not None:
            self.editing_id = task_id
            self._render()

    def cancel_edit(self) -> None:
        self.editing_id = None
        self._render()

    async def edit_text(self, task_id: str, new_text: str) -> Optional[Mutation]:
        task = self._find(task_id)
        self.editing_id = None
        if task is None or not new_text or not new_text.strip():
            self._render()
            return None
        try:
            text = clean_text(new_text)
        except ValidationError as exc:
            self._render()
            self.notifier.notify(exc.message)
            return None

        original_text = task.text
        mutation = Mutation("edit", task_id)
        task.text = text
        self._render()

        def rollback() -> None:
            task.text = original_text

        return await self._settle(mutation, lambda: self.store.put(task), rollback, UPDATE_FAILED)

    async def remove(self, task_id: str, transition: bool = True) -> Optional[Mutation]:
        """Delete a task after its leave transition.

        The task stays in the list until the store confirms the delete;
        on failure the transition is reversed.
        """
        task = self._find(task_id)
        if task is None:
            return None

        mutation = Mutation("remove", task_id)
        self.leaving.add(task_id)
        self._render()
        if transition and self.remove_delay > 0:
            await asyncio.sleep(self.remove_delay)

        def rollback() -> None:
            self.leaving.discard(task_id)

        def confirm() -> None:
            self.leaving.discard(task_id)
            self.tasks = [t for t in self.tasks if t.id != task_id]

        return await self._settle(
            mutation, lambda: self.store.delete(task_id), rollback, DELETE_FAILED, confirm=confirm
        )

    async def permanently_delete(self, task_id: str) -> Optional[Mutation]:
        """Remove a task from the history view."""
        return await self.remove(task_id, transition=False)

    async def delete_selected(self) -> List[Mutation]:
        selected = [task.id for task in self.tasks if task.selected]
        if not selected:
            return []
        results = await asyncio.gather(*(self.remove(task_id) for task_id in selected))
        return [result for result in results if result is not None]

    async def restore(self, task_id: str) -> Optional[Mutation]:
        task = self._find(task_id)
        if task is None or not task.completed:
            return None

        original_completed, original_completed_at = task.completed, task.completed_at
        mutation = Mutation("restore", task_id)
        task.completed = False
        task.completed_at = None
        self._render()

        def rollback() -> None:
            task.completed = original_completed
            task.completed_at = original_completed_at

        return await self._settle(mutation, lambda: self.store.put(task), rollback, RESTORE_FAILED)

    async def reorder(self, new_sequence: Iterable[str]) -> Optional[Mutation]:
        """Apply a new manual order and persist each moved task's position.

        Best-effort: a failure part-way through is reported but the
        in-memory order is kept.
        """
        ids = list(new_sequence)
        by_id = {task.id: task for task in self.tasks}
        if len(ids) != len(set(ids)) or set(ids) != set(by_id):
            self.notifier.notify("Cannot reorder: the new order must list every task exactly once.")
            return None

        mutation = Mutation("reorder")
        self.tasks = [by_id[task_id] for task_id in ids]
        moved = []
        for position, task in enumerate(self.tasks):
            if task.position != position:
                task.position = position
                moved.append(task)
        self._render()

        if not self.degraded:
            for task in moved:
                try:
                    await self.store.put(task)
                except StoreError as exc:
                    logger.warning("Reorder stopped at task %s: %s", task.id, exc)
                    mutation.task_id = task.id
                    mutation.state = MutationState.PARTIAL
                    mutation.error = ORDER_FAILED
                    self.notifier.notify(ORDER_FAILED)
                    return mutation

        mutation.state = MutationState.CONFIRMED
        return mutation

    async def move(self, task_id: str, target_id: str) -> Optional[Mutation]:
        """Move one task into another task's slot (drag and drop)."""
        ids = [task.id for task in self.tasks]
        if task_id not in ids or target_id not in ids or task_id == target_id:
            return None
        target_index = ids.index(target_id)
        ids.remove(task_id)
        ids.insert(target_index, task_id)
        return await self.reorder(ids)

    # -------------------- selection --------------------

    def select_all(self) -> None:
        """Clear every selection if any task is selected, else select all."""
        any_selected = any(task.selected for task in self.tasks)
        for task in self.tasks:
            task.selected = not any_selected
        self._render()

    def toggle_selection(self, task_id: str) -> Optional[bool]:
        task = self._find(task_id)
        if task is None:
            return None
        task.selected = not task.selected
        self._render()
        return task.selected

    # -------------------- snapshots --------------------

    async def export_snapshot(self) -> Snapshot:
        if self.degraded:
            return Snapshot(todos=[task.to_public() for task in self.tasks])
        return await self.store.export_snapshot()

    async def import_snapshot(self, payload: Any) -> int:
        if self.degraded:
            self.notifier.notify(STORE_OFFLINE)
            return 0
        try:
            count = await self.store.import_snapshot(payload)
        except StoreError as exc:
            self.notifier.notify(f"Failed to import data: {exc.message}")
            return 0
        await self.load()
        self._render()
        return count
