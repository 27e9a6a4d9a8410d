"""Filter, sort and aggregate helpers shared by the store and the controller."""
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .schemas.task import ALL, DATE_FIELDS, TaskFilters, TaskRecord, TaskStats
from .utils.datetime_helper import EPOCH, utcnow

FiltersLike = Union[TaskFilters, Mapping[str, Any], None]


def coerce_filters(filters: FiltersLike) -> TaskFilters:
    if filters is None:
        return TaskFilters()
    if isinstance(filters, TaskFilters):
        return filters
    try:
        return TaskFilters.model_validate(dict(filters))
    except PydanticValidationError as exc:
        message = exc.errors()[0].get("msg", "Invalid filter criteria")
        raise ValidationError(message) from exc


def _completed_flag(value: Union[bool, str, None]) -> Optional[bool]:
    if value is None or value == ALL:
        return None
    if isinstance(value, bool):
        return value
    return value == "completed"


def matches(task: TaskRecord, filters: TaskFilters) -> bool:
    """True when the task satisfies every supplied predicate."""
    if filters.category not in (None, ALL) and task.category != filters.category:
        return False
    if filters.priority not in (None, ALL) and task.priority != filters.priority:
        return False
    completed = _completed_flag(filters.completed)
    if completed is not None and task.completed != completed:
        return False
    if filters.search_term:
        if filters.search_term.lower() not in (task.text or "").lower():
            return False
    return True


def sort_key(field: str) -> Callable[[TaskRecord], Any]:
    def key(task: TaskRecord) -> Any:
        value = getattr(task, field, None)
        if field in DATE_FIELDS:
            return value or EPOCH
        if isinstance(value, str):
            return value.lower()
        return value
    return key


def filter_and_sort(tasks: Iterable[TaskRecord], filters: FiltersLike = None) -> List[TaskRecord]:
    """Return a new list of matching tasks ordered per the criteria."""
    criteria = coerce_filters(filters)
    result = [task for task in tasks if matches(task, criteria)]
    result.sort(key=sort_key(criteria.sort_by), reverse=criteria.sort_order == "desc")
    return result


def is_overdue(task: TaskRecord, now: Optional[datetime] = None) -> bool:
    if task.completed or task.deadline is None:
        return False
    return task.deadline < (now or utcnow())


def compute_stats(tasks: Iterable[TaskRecord], now: Optional[datetime] = None) -> TaskStats:
    now = now or utcnow()
    stats = TaskStats()
    for task in tasks:
        stats.total += 1
        if task.completed:
            stats.completed += 1
        elif is_overdue(task, now):
            stats.overdue += 1
        stats.by_category[task.category] = stats.by_category.get(task.category, 0) + 1
        stats.by_priority[task.priority] = stats.by_priority.get(task.priority, 0) + 1
    stats.pending = stats.total - stats.completed
    return stats
