"""
scheduler.py - Lazily drained task queue

Deferred transitions (such as completing an accepted nearby request) are
scheduled as data and executed the next time the owning registry is accessed.
There is no timer thread: a task runs at the first access at or after its
trigger time.

Core concepts:
1. Task: Immutable description of what should happen to which entity, and when
2. TaskScheduler: Priority queue keyed by trigger time with per-key cancellation
3. Handlers: Plain functions (key) -> None registered per action
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set
import heapq
import itertools


@dataclass(frozen=True, slots=True)
class Task:
    """
    Deferred action bound to an entity's identity.

    Sorting: by trigger_time, then insertion order.

    Attributes:
        trigger_time: Earliest time the task may run
        key: Identifier of the entity the task acts on
        action: Handler name ("complete", ...)
        seq: Insertion counter, breaks ties deterministically
    """
    trigger_time: datetime
    key: str
    action: str
    seq: int = 0

    def __lt__(self, other: 'Task') -> bool:
        if self.trigger_time != other.trigger_time:
            return self.trigger_time < other.trigger_time
        return self.seq < other.seq

    @property
    def task_id(self) -> str:
        return f"{self.action}:{self.key}:{self.trigger_time.isoformat()}"


TaskHandler = Callable[[str], None]


class TaskScheduler:
    """
    Minimal task scheduler using a heap.

    Not thread-safe on its own; the owning registry calls it while holding
    its lock.
    """

    def __init__(self):
        self._heap: List[Task] = []
        self._handlers: Dict[str, TaskHandler] = {}
        self._cancelled: Set[int] = set()
        self._counter = itertools.count()

    def register(self, action: str, handler: TaskHandler) -> None:
        """Register a handler function for an action type."""
        self._handlers[action] = handler

    def schedule(self, trigger_time: datetime, key: str, action: str) -> str:
        """
        Add a task to the queue.

        Returns the task_id.

        Raises:
            KeyError: If no handler is registered for the action.
        """
        if action not in self._handlers:
            raise KeyError(f"No handler registered for action {action!r}")
        task = Task(trigger_time, key, action, next(self._counter))
        heapq.heappush(self._heap, task)
        return task.task_id

    def cancel(self, key: str) -> int:
        """
        Cancel every pending task for an entity.

        Returns the number of tasks cancelled.
        """
        matching = {t.seq for t in self._heap if t.key == key and t.seq not in self._cancelled}
        self._cancelled |= matching
        return len(matching)

    def get_due(self, as_of: datetime) -> List[Task]:
        """
        Remove and return tasks with trigger_time <= as_of, in execution order.

        Cancelled tasks are dropped.
        """
        due = []
        while self._heap and self._heap[0].trigger_time <= as_of:
            task = heapq.heappop(self._heap)
            if task.seq in self._cancelled:
                self._cancelled.discard(task.seq)
                continue
            due.append(task)
        return due

    def run_due(self, as_of: datetime) -> int:
        """
        Execute every due task via its handler.

        Handler exceptions propagate unchanged.

        Returns the number of tasks executed.
        """
        executed = 0
        for task in self.get_due(as_of):
            self._handlers[task.action](task.key)
            executed += 1
        return executed

    def pending_count(self) -> int:
        """Number of scheduled, non-cancelled tasks."""
        return sum(1 for t in self._heap if t.seq not in self._cancelled)

    def peek_next(self) -> Optional[Task]:
        """Next task to run, without removing it."""
        for task in sorted(self._heap):
            if task.seq not in self._cancelled:
                return task
        return None
