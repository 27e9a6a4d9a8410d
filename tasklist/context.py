"""Application context and UI intent dispatch.

The context is built once at startup and handed to whoever needs it. The
presentation layer talks to the controller only through `dispatch`, using
the `Action` identifiers below.
"""
import enum
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .config import STORE_NAME, STORE_URL, STORE_VERSION
from .controller import TaskController
from .notifications import Notifier
from .store import LocalStore

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    CREATE = "create"
    TOGGLE_COMPLETE = "toggle_complete"
    BEGIN_EDIT = "begin_edit"
    CANCEL_EDIT = "cancel_edit"
    EDIT_TEXT = "edit_text"
    DELETE = "delete"
    PERMANENTLY_DELETE = "permanently_delete"
    DELETE_SELECTED = "delete_selected"
    RESTORE = "restore"
    REORDER = "reorder"
    MOVE = "move"
    APPLY_FILTERS = "apply_filters"
    SELECT_ALL = "select_all"
    TOGGLE_SELECTION = "toggle_selection"
    STATS = "stats"
    HISTORY = "history"
    EXPORT = "export"
    IMPORT = "import"


class CommandDispatcher:
    """Maps UI intents to controller methods."""

    def __init__(self, controller: TaskController):
        self.controller = controller
        self._handlers: Dict[Action, Callable[..., Any]] = {
            Action.CREATE: controller.create,
            Action.TOGGLE_COMPLETE: controller.toggle_complete,
            Action.BEGIN_EDIT: controller.begin_edit,
            Action.CANCEL_EDIT: controller.cancel_edit,
            Action.EDIT_TEXT: controller.edit_text,
            Action.DELETE: controller.remove,
            Action.PERMANENTLY_DELETE: controller.permanently_delete,
            Action.DELETE_SELECTED: controller.delete_selected,
            Action.RESTORE: controller.restore,
            Action.REORDER: controller.reorder,
            Action.MOVE: controller.move,
            Action.APPLY_FILTERS: controller.apply_filters,
            Action.SELECT_ALL: controller.select_all,
            Action.TOGGLE_SELECTION: controller.toggle_selection,
            Action.STATS: controller.compute_stats,
            Action.HISTORY: controller.history,
            Action.EXPORT: controller.export_snapshot,
            Action.IMPORT: controller.import_snapshot,
        }

    async def dispatch(self, action: Any, *args, **kwargs) -> Any:
        try:
            handler = self._handlers[Action(action)]
        except ValueError:
            self.controller.notifier.notify(f"Unknown action '{action}'")
            return None

        logger.debug("Dispatching %s", Action(action).value)
        result = handler(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass
class AppContext:
    store: Optional[LocalStore]
    notifier: Notifier
    controller: TaskController
    dispatcher: CommandDispatcher
    user: Optional[Dict[str, Any]] = field(default=None)

    async def start(self) -> "AppContext":
        await self.controller.start()
        return self

    def close(self) -> None:
        if self.store is not None:
            self.store.close()


def build_context(
    store: Optional[LocalStore] = None,
    notifier: Optional[Notifier] = None,
    user: Optional[Dict[str, Any]] = None,
    on_change: Optional[Callable[[TaskController], None]] = None,
    remove_delay: Optional[float] = None,
    memory_only: bool = False,
) -> AppContext:
    """Wire store, notifier and controller together.

    `memory_only` skips durable storage entirely.
    """
    if store is None and not memory_only:
        store = LocalStore(name=STORE_NAME, version=STORE_VERSION, url=STORE_URL)
    notifier = notifier or Notifier()
    kwargs = {} if remove_delay is None else {"remove_delay": remove_delay}
    controller = TaskController(store, notifier, on_change=on_change, **kwargs)
    return AppContext(
        store=store,
        notifier=notifier,
        controller=controller,
        dispatcher=CommandDispatcher(controller),
        user=user,
    )
