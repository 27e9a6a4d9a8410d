"""Error taxonomy shared by the local store and the task controller."""


class TaskListError(Exception):
    """Base class for every error raised by tasklist."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TaskListError):
    """Bad user input, rejected before any state change."""


class StoreError(TaskListError):
    """Anything the local store rejects."""


class StoreUnavailable(StoreError):
    """The store is not open or cannot be opened."""


class StoreBlocked(StoreUnavailable):
    """Opening was interrupted by a concurrent version upgrade.

    Callers should ask the user to close other sessions using the store.
    """


class InvalidRecord(StoreError):
    """Record is missing its id or cannot be coerced to a task."""


class DuplicateKey(StoreError):
    """A record with the same id already exists."""


class InvalidSnapshot(StoreError):
    """Import payload does not carry a record list."""


class UnknownIndex(StoreError):
    """Lookup on a field that has no secondary index."""


class PersistenceFailure(StoreError):
    """Any other rejection from the store during a write or read."""
