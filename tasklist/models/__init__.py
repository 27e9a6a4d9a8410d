from .task import Category, Priority, StoreMeta, Task

# Export all models for easy importing
__all__ = ["Category", "Priority", "StoreMeta", "Task"]
