"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import replace
from pathlib import Path

import pytest

from borg_coordinator.coordinator.backend import AgentRunRequest, AgentRunResult
from borg_coordinator.coordinator.errors import PersistenceError
from borg_coordinator.coordinator.events import EventChannel
from borg_coordinator.coordinator.models import (
    PRIORITY_DEQUEUE_ORDER,
    Instance,
    InstanceRole,
    Task,
    TaskPriority,
    TaskType,
)
from borg_coordinator.coordinator.queue import DurableTaskQueue
from borg_coordinator.coordinator.roles import capabilities_for, config_for_role
from borg_coordinator.storage.common import utc_now

SRC_DIR = Path(__file__).resolve().parents[1] / "src"

ECHO_AGENT_COMMAND = (
    f"{shlex.quote(sys.executable)} -m borg_coordinator.coordinator.backend.echo_agent"
)


class InMemoryTaskQueue:
    """Durable queue stand-in with switchable failures."""

    def __init__(self) -> None:
        self.segments: dict[TaskPriority, deque[Task]] = {
            priority: deque() for priority in PRIORITY_DEQUEUE_ORDER
        }
        self.instance_snapshots: dict[str, Instance] = {}
        self.task_snapshots: dict[str, Task] = {}
        self.fail_pop = False
        self.fail_push = False
        self.fail_snapshots = False
        self.pop_calls = 0

    def ping(self) -> None:
        return None

    def push(self, task: Task) -> None:
        if self.fail_push:
            raise PersistenceError("push failed")
        self.segments[task.priority].append(replace(task))

    def pop_highest_priority(self) -> Task | None:
        self.pop_calls += 1
        if self.fail_pop:
            raise PersistenceError("store unreachable")
        for priority in PRIORITY_DEQUEUE_ORDER:
            if self.segments[priority]:
                return self.segments[priority].popleft()
        return None

    def queue_depth_by_priority(self) -> dict[TaskPriority, int]:
        return {priority: len(self.segments[priority]) for priority in PRIORITY_DEQUEUE_ORDER}

    def clear(self, priority: TaskPriority | None = None) -> None:
        for item in PRIORITY_DEQUEUE_ORDER if priority is None else (priority,):
            self.segments[item].clear()

    def put_instance_snapshot(self, instance: Instance) -> None:
        if self.fail_snapshots:
            raise PersistenceError("snapshot write failed")
        self.instance_snapshots[instance.id] = instance

    def put_task_snapshot(self, task: Task) -> None:
        if self.fail_snapshots:
            raise PersistenceError("snapshot write failed")
        self.task_snapshots[task.id] = task

    def list_instance_snapshots(self) -> list[Instance]:
        return list(self.instance_snapshots.values())

    def list_task_snapshots(self) -> list[Task]:
        return list(self.task_snapshots.values())

    def queued_ids(self) -> list[str]:
        return [task.id for priority in PRIORITY_DEQUEUE_ORDER for task in self.segments[priority]]


class GatedBackend:
    """Agent backend that blocks until released, recording every request."""

    def __init__(self, *, stdout: str = "done", stderr: str = "", success: bool = True) -> None:
        self.requests: list[AgentRunRequest] = []
        self.release = threading.Event()
        self.stdout = stdout
        self.stderr = stderr
        self.success = success

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        self.requests.append(request)
        self.release.wait(timeout=10)
        return AgentRunResult(
            success=self.success,
            exit_code=0 if self.success else 1,
            stdout=self.stdout,
            stderr=self.stderr,
        )


@pytest.fixture()
def store_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'coordinator.db'}"


@pytest.fixture()
def durable_queue(store_url: str) -> Iterator[DurableTaskQueue]:
    queue = DurableTaskQueue(store_url, namespace="test")
    queue.init_schema()
    yield queue
    queue.close()


@pytest.fixture()
def memory_queue() -> InMemoryTaskQueue:
    return InMemoryTaskQueue()


@pytest.fixture()
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture()
def gated_backend() -> Iterator[GatedBackend]:
    backend = GatedBackend()
    yield backend
    backend.release.set()


@pytest.fixture()
def echo_agent_command(monkeypatch: pytest.MonkeyPatch) -> str:
    """Command line for the demo agent; the child process can import the package."""

    inherited = os.environ.get("PYTHONPATH")
    paths = [str(SRC_DIR)] if not inherited else [str(SRC_DIR), inherited]
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(paths))
    return ECHO_AGENT_COMMAND


@pytest.fixture()
def make_task() -> Callable[..., Task]:
    counter = iter(range(1, 10_000))

    def _make(
        task_type: TaskType = TaskType.FEATURE_IMPLEMENTATION,
        priority: TaskPriority = TaskPriority.MEDIUM,
        description: str | None = None,
        **overrides: object,
    ) -> Task:
        number = next(counter)
        now = utc_now()
        task = Task(
            id=f"task-{number:04d}",
            task_type=task_type,
            description=description or f"Task number {number}",
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        return replace(task, **overrides)

    return _make


@pytest.fixture()
def make_instance() -> Callable[..., Instance]:
    counter = iter(range(1, 10_000))

    def _make(role: InstanceRole = InstanceRole.DEVELOPER, **overrides: object) -> Instance:
        number = next(counter)
        now = utc_now()
        instance = Instance(
            id=f"instance-{number:04d}",
            role=role,
            config=config_for_role(role),
            capabilities=capabilities_for(role),
            created_at=now,
            last_activity=now,
        )
        return replace(instance, **overrides)

    return _make
