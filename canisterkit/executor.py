"""A single-threaded executor for coroutines driven by message callbacks."""

from __future__ import annotations

import inspect
import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable, Coroutine, Generator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

R = TypeVar("R")

_log = logging.getLogger(__name__)

_UPGRADED_MID_CALL = (
    "empty message callback: canister may have just been upgraded mid-call. "
    "This is a very bad idea and can result in memory corruption; "
    "it is advised to stop canisters before upgrading them."
)


class Trap(Exception):
    """A task failed; the message that ran it is aborted."""


class AsyncContext(Enum):
    NONE = "none"
    UPDATE = "update"
    QUERY = "query"
    FROM_TASK = "from_task"
    CANCEL = "cancel"


@dataclass
class _Task:
    coro: Coroutine[Any, Any, Any]
    query: bool


class _State(threading.local):
    def __init__(self) -> None:
        self.tasks: dict[int, _Task | None] = {}
        self.wakeup: deque[int] = deque()
        self.context = AsyncContext.NONE
        self.ids = itertools.count()


_state = _State()


@dataclass(frozen=True)
class TaskWaker:
    """Reschedules a suspended task; during trap recovery it cancels the task instead."""

    task_id: int
    query: bool

    def wake(self) -> None:
        context = _state.context
        if context is AsyncContext.NONE:
            raise RuntimeError("wakers cannot be called outside an executor context")
        if context is AsyncContext.CANCEL:
            task = _state.tasks.pop(self.task_id, None)
            if task is not None:
                task.coro.close()
            return
        _state.wakeup.append(self.task_id)
        if context is AsyncContext.FROM_TASK:
            _state.context = AsyncContext.QUERY if self.query else AsyncContext.UPDATE


class WakeSignal:
    """A point a task suspends at until the signal's waker is called.

    The awaiting task receives whatever ``value`` holds when it resumes.
    """

    def __init__(self) -> None:
        self.waker: TaskWaker | None = None
        self.value: Any = None

    def wait(self) -> _Suspension:
        return _Suspension(self)


class _Suspension:
    def __init__(self, signal: WakeSignal) -> None:
        self._signal = signal

    def __await__(self) -> Generator[WakeSignal, None, Any]:
        yield self._signal
        return self._signal.value


@contextmanager
def _entered(context: AsyncContext) -> Iterator[None]:
    if _state.context is not AsyncContext.NONE:
        raise RuntimeError("in_*_context called within an existing async context")
    _state.context = context
    try:
        yield
    finally:
        _state.context = AsyncContext.NONE


def spawn(coro: Coroutine[Any, Any, Any]) -> None:
    """Schedule a coroutine to run in the background of the current message."""
    if not inspect.iscoroutine(coro):
        raise TypeError(f"spawn expects a coroutine, got {type(coro).__name__}")
    context = _state.context
    if context is not AsyncContext.QUERY and context is not AsyncContext.UPDATE:
        coro.close()
        if context is AsyncContext.NONE:
            raise RuntimeError("`spawn` can only be called from an executor context")
        if context is AsyncContext.CANCEL:
            raise RuntimeError("`spawn` cannot be called during panic recovery")
        raise RuntimeError("`spawn` cannot be called before a task has been woken")
    task_id = next(_state.ids)
    _state.tasks[task_id] = _Task(coro, context is AsyncContext.QUERY)
    _state.wakeup.append(task_id)


def in_executor_context(func: Callable[[], R]) -> R:
    """Run an update function, then every task it made ready."""
    with _entered(AsyncContext.UPDATE):
        result = func()
        _poll_all()
        return result


def in_query_executor_context(func: Callable[[], R]) -> R:
    """Run a composite query function, then every query task it made ready."""
    with _entered(AsyncContext.QUERY):
        result = func()
        _poll_all()
        return result


def in_callback_executor_context(func: Callable[[], Any]) -> None:
    """Run a call callback; if it woke a task, run the ready tasks."""
    with _entered(AsyncContext.FROM_TASK):
        func()
        if _state.context is AsyncContext.FROM_TASK:
            _log.warning(_UPGRADED_MID_CALL)
            return
        _poll_all()


def in_callback_cancellation_context(func: Callable[[], Any]) -> None:
    """Run a call callback in which every woken task is cancelled."""
    with _entered(AsyncContext.CANCEL):
        func()


def is_recovering_from_trap() -> bool:
    """Whether tasks are currently being cancelled after a trap."""
    return _state.context is AsyncContext.CANCEL


def _poll_all() -> None:
    context = _state.context
    if context is AsyncContext.QUERY:
        in_query = True
    elif context is AsyncContext.UPDATE:
        in_query = False
    elif context is AsyncContext.NONE:
        raise RuntimeError("tasks can only be polled in an executor context")
    else:
        raise RuntimeError(f"tasks cannot be polled in the {context.value} context")
    ineligible: list[int] = []
    while _state.wakeup:
        task_id = _state.wakeup.popleft()
        task = _state.tasks.get(task_id)
        if task is None:
            continue
        if in_query and not task.query:
            ineligible.append(task_id)
            continue
        _state.tasks[task_id] = None
        try:
            yielded = task.coro.send(None)
        except StopIteration:
            _state.tasks.pop(task_id, None)
            continue
        except Trap:
            _state.tasks.pop(task_id, None)
            raise
        except Exception as exc:
            _state.tasks.pop(task_id, None)
            raise Trap(f"Panicked at '{exc}'") from exc
        if not isinstance(yielded, WakeSignal):
            _state.tasks.pop(task_id, None)
            task.coro.close()
            raise Trap(f"Panicked at 'task awaited an unsupported object: {yielded!r}'")
        yielded.waker = TaskWaker(task_id, task.query)
        if task_id in _state.tasks:
            _state.tasks[task_id] = task
        else:
            task.coro.close()
    _state.wakeup.extend(ineligible)