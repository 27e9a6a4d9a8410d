from sqlmodel import SQLModel, Field
from pydantic import NaiveDatetime
from sqlalchemy import DateTime
from typing import Optional
import enum

from ..utils.datetime_helper import utcnow


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Category(str, enum.Enum):
    GENERAL = "general"
    WORK = "work"
    PERSONAL = "personal"
    SHOPPING = "shopping"
    HEALTH = "health"


class Task(SQLModel, table=True):
    """Task row in the record container.

    Secondary indexes are not declared here; the local store creates them
    per schema version when it opens.
    """
    __tablename__ = "todos"

    id: str = Field(primary_key=True)
    text: str = Field(sa_column_kwargs={"nullable": False})
    completed: bool = Field(default=False)
    priority: str = Field(default=Priority.MEDIUM.value)
    category: str = Field(default=Category.GENERAL.value)
    # Timestamps are stored as naive UTC
    deadline: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    created_at: NaiveDatetime = Field(default_factory=utcnow, sa_type=DateTime)
    completed_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    updated_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    selected: bool = Field(default=False)
    position: int = Field(default=0)


class StoreMeta(SQLModel, table=True):
    """Schema version recorded per record container name."""
    __tablename__ = "store_meta"

    name: str = Field(primary_key=True)
    version: int = Field(default=0)
