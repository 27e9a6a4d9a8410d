from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..models.task import Category, Priority
from ..utils.datetime_helper import parse_timestamp, utcnow

MAX_TEXT_LENGTH = 500

# Filter values meaning "do not filter on this field"
ALL = "all"

# Public (camelCase) names accepted for record fields
FIELD_ALIASES = {
    "createdAt": "created_at",
    "completedAt": "completed_at",
    "updatedAt": "updated_at",
}
DATE_FIELDS = ("created_at", "deadline", "completed_at", "updated_at")
SORTABLE_FIELDS = (
    "text", "completed", "priority", "category", "selected", "position",
) + DATE_FIELDS


def normalize_field(name: str) -> str:
    return FIELD_ALIASES.get(name, name)


def _clean_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Todo text is required")
    if len(value) > MAX_TEXT_LENGTH:
        raise ValueError(f"Todo text cannot exceed {MAX_TEXT_LENGTH} characters")
    return value


class TaskRecord(BaseModel):
    """A task as held in memory and exchanged with the local store.

    Accepts snake_case names or the camelCase aliases used in snapshots.
    """
    id: str
    text: str = Field(min_length=1, max_length=MAX_TEXT_LENGTH)
    completed: bool = False
    priority: Priority = Priority.MEDIUM
    category: Category = Category.GENERAL
    deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    selected: bool = False
    position: int = 0

    class Config:
        from_attributes = True
        populate_by_name = True
        use_enum_values = True
        validate_assignment = True

    @field_validator("deadline", "created_at", "completed_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamps(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)) or value is None:
            return parse_timestamp(value)
        return value

    def to_public(self) -> Dict[str, Any]:
        """JSON-ready dict using the camelCase field names."""
        return self.model_dump(mode="json", by_alias=True)


class TaskFilters(BaseModel):
    """Criteria for the filtered/sorted view.

    Any equality filter set to None or "all" is skipped. `completed`
    accepts a boolean or one of "completed"/"pending"/"all".
    """
    category: Optional[str] = None
    priority: Optional[str] = None
    completed: Union[bool, str, None] = None
    search_term: Optional[str] = Field(default=None, alias="searchTerm")
    sort_by: str = Field(default="created_at", alias="sortBy")
    sort_order: str = Field(default="desc", alias="sortOrder")

    class Config:
        populate_by_name = True

    @field_validator("sort_by")
    @classmethod
    def _check_sort_by(cls, value: str) -> str:
        field = normalize_field(value)
        if field not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by '{value}'")
        return field

    @field_validator("sort_order")
    @classmethod
    def _check_sort_order(cls, value: str) -> str:
        order = value.lower()
        if order not in ("asc", "desc"):
            raise ValueError("Sort order must be 'asc' or 'desc'")
        return order

    @field_validator("completed")
    @classmethod
    def _check_completed(cls, value: Union[bool, str, None]) -> Union[bool, str, None]:
        if isinstance(value, str) and value not in (ALL, "completed", "pending"):
            raise ValueError("Status must be 'all', 'completed' or 'pending'")
        return value

    @property
    def is_active(self) -> bool:
        return bool(
            self.search_term
            or self.category not in (None, ALL)
            or self.priority not in (None, ALL)
            or self.completed not in (None, ALL)
        )


class TaskStats(BaseModel):
    total: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Full dump of a local store."""
    todos: List[Dict[str, Any]]
    export_date: datetime = Field(default_factory=utcnow, alias="exportDate")
    version: int = 1
    db_name: str = Field(default="", alias="dbName")

    class Config:
        populate_by_name = True


# REST payloads

class TaskCreate(BaseModel):
    """Schema for creating tasks through the REST service."""
    text: str
    priority: Priority = Priority.MEDIUM
    category: Category = Category.GENERAL
    deadline: Optional[datetime] = None

    @field_validator("text")
    @classmethod
    def _check_text(cls, value: str) -> str:
        return _clean_text(value)

    @field_validator("deadline", mode="before")
    @classmethod
    def _parse_deadline(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)) or value is None:
            return parse_timestamp(value)
        return value


class TaskUpdate(BaseModel):
    """Schema for updating tasks through the REST service."""
    text: Optional[str] = None
    priority: Optional[Priority] = None
    category: Optional[Category] = None
    deadline: Optional[datetime] = None
    completed: Optional[bool] = None

    @field_validator("text")
    @classmethod
    def _check_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _clean_text(value)

    @field_validator("deadline", mode="before")
    @classmethod
    def _parse_deadline(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)) or value is None:
            return parse_timestamp(value)
        return value
