"""Ordered, unbounded lifecycle event channel."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from borg_coordinator.coordinator.models import Instance, Task, TaskResult

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    INSTANCE_CREATED = "instance_created"
    INSTANCE_TERMINATED = "instance_terminated"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    INSTANCE_ERROR = "instance_error"


@dataclass(slots=True)
class InstanceCreated:
    instance: Instance
    kind: EventKind = EventKind.INSTANCE_CREATED


@dataclass(slots=True)
class InstanceTerminated:
    instance: Instance
    kind: EventKind = EventKind.INSTANCE_TERMINATED


@dataclass(slots=True)
class TaskAssigned:
    task: Task
    kind: EventKind = EventKind.TASK_ASSIGNED


@dataclass(slots=True)
class TaskCompleted:
    """Final task, released instance and execution result."""

    task: Task
    instance: Instance
    result: TaskResult
    kind: EventKind = EventKind.TASK_COMPLETED


@dataclass(slots=True)
class InstanceError:
    instance: Instance
    error: str
    kind: EventKind = EventKind.INSTANCE_ERROR


CoordinatorEvent = (
    InstanceCreated | InstanceTerminated | TaskAssigned | TaskCompleted | InstanceError
)

Subscriber = Callable[[CoordinatorEvent], None]


class EventChannel:
    """Thread-safe FIFO of coordinator events.

    ``publish`` never blocks, so an unread channel cannot stall the scheduler
    or executor threads.  Subscribers are invoked synchronously on the
    publishing thread; a failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[CoordinatorEvent] = queue.SimpleQueue()
        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()

    def publish(self, event: CoordinatorEvent) -> None:
        self._queue.put(event)
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001
                logger.warning("Event subscriber failed for %s", event.kind.value, exc_info=True)

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._subscribers_lock:
            self._subscribers.append(subscriber)

    def receive(self, timeout: float | None = None) -> CoordinatorEvent | None:
        """Return the next event, waiting up to ``timeout`` seconds (None = no wait)."""

        try:
            if timeout is None:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[CoordinatorEvent]:
        """Return every pending event in publish order."""

        events: list[CoordinatorEvent] = []
        while True:
            event = self.receive()
            if event is None:
                return events
            events.append(event)

    def pending(self) -> int:
        return self._queue.qsize()
