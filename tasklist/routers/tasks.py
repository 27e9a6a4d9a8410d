from typing import Optional
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import Task as TaskModel
from ..query import compute_stats
from ..schemas.task import TaskCreate, TaskRecord, TaskUpdate
from ..utils.datetime_helper import utcnow

router = APIRouter()


def _ensure_uuid(task_id: str) -> None:
    try:
        UUID(task_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid todo ID format",
        )


def _get_task_or_404(db: Session, task_id: str) -> TaskModel:
    _ensure_uuid(task_id)
    task = db.query(TaskModel).filter(TaskModel.id == task_id).first()
    if not task:
        raise HTTPException(status_code=404, detail="Todo not found")
    return task


def _serialize(task: TaskModel) -> dict:
    return TaskRecord.model_validate(task).to_public()


@router.get("/todos")
def get_todos(
    category: Optional[str] = None,
    priority: Optional[str] = None,
    completed: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List todos with optional filtering, newest first."""
    query = db.query(TaskModel)

    if category and category != "all":
        query = query.filter(TaskModel.category == category)
    if priority and priority != "all":
        query = query.filter(TaskModel.priority == priority)
    if completed is not None:
        query = query.filter(TaskModel.completed == completed)
    if search:
        query = query.filter(TaskModel.text.ilike(f"%{search}%"))

    tasks = query.order_by(TaskModel.created_at.desc()).all()
    return {
        "success": True,
        "data": [_serialize(task) for task in tasks],
        "total": len(tasks),
        "filters_applied": {
            "category": category or "all",
            "priority": priority or "all",
            "completed": "all" if completed is None else completed,
            "search": search or "",
        },
    }


@router.get("/todos/stats")
def get_stats(db: Session = Depends(get_db)):
    """Aggregate counts over every todo."""
    records = [TaskRecord.model_validate(task) for task in db.query(TaskModel).all()]
    return {"success": True, "data": compute_stats(records).model_dump()}


@router.get("/todos/{task_id}")
def get_todo(task_id: str, db: Session = Depends(get_db)):
    task = _get_task_or_404(db, task_id)
    return {"success": True, "data": _serialize(task)}


@router.post("/todos", status_code=status.HTTP_201_CREATED)
def create_todo(payload: TaskCreate, db: Session = Depends(get_db)):
    """Create a pending todo with a server-generated id."""
    now = utcnow()
    task = TaskModel(
        id=str(uuid4()),
        text=payload.text,
        completed=False,
        priority=payload.priority.value,
        category=payload.category.value,
        deadline=payload.deadline,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return {"success": True, "message": "Todo created successfully", "data": _serialize(task)}


@router.put("/todos/{task_id}")
def update_todo(task_id: str, payload: TaskUpdate, db: Session = Depends(get_db)):
    task = _get_task_or_404(db, task_id)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if field == "completed" and value is not None and value != task.completed:
            task.completed_at = utcnow() if value else None
        if value is None and field != "deadline":
            continue
        setattr(task, field, getattr(value, "value", value))

    task.updated_at = utcnow()
    db.commit()
    db.refresh(task)
    return {"success": True, "message": "Todo updated successfully", "data": _serialize(task)}


@router.patch("/todos/{task_id}/toggle")
def toggle_todo(task_id: str, db: Session = Depends(get_db)):
    task = _get_task_or_404(db, task_id)

    task.completed = not task.completed
    task.completed_at = utcnow() if task.completed else None
    task.updated_at = utcnow()
    db.commit()
    db.refresh(task)
    state = "completed" if task.completed else "pending"
    return {"success": True, "message": f"Todo marked as {state}", "data": _serialize(task)}


@router.delete("/todos/{task_id}")
def delete_todo(task_id: str, db: Session = Depends(get_db)):
    task = _get_task_or_404(db, task_id)
    data = _serialize(task)

    db.delete(task)
    db.commit()
    return {"success": True, "message": "Todo deleted successfully", "data": data}
