import asyncio
import sys
from pathlib import Path

import pytest

# Add the project directory to Python path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tasklist.controller import TaskController  # noqa: E402
from tasklist.errors import PersistenceFailure  # noqa: E402
from tasklist.notifications import Notifier  # noqa: E402
from tasklist.store import LocalStore  # noqa: E402


def run(coro):
    """Run one test scenario on a fresh event loop."""
    return asyncio.run(coro)


async def reject(*args, **kwargs):
    raise PersistenceFailure("Task storage operation failed: disk I/O error")


@pytest.fixture
def legacy_path(tmp_path):
    return tmp_path / "todos.json"


@pytest.fixture
def make_store(legacy_path):
    def factory(**kwargs):
        kwargs.setdefault("name", "TestStore")
        kwargs.setdefault("url", "sqlite://")
        kwargs.setdefault("legacy_path", legacy_path)
        return LocalStore(**kwargs)
    return factory


@pytest.fixture
def make_controller(make_store):
    """Controller wired to an in-memory store, with captured notifications."""
    def factory(store=None, **kwargs):
        notifier = Notifier()
        messages = []
        notifier.subscribe(lambda notification: messages.append(notification.message))
        controller = TaskController(store or make_store(), notifier, remove_delay=0, **kwargs)
        controller.messages = messages
        return controller
    return factory
