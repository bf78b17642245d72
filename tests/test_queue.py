from __future__ import annotations

import threading
from pathlib import Path

import allure
import pytest
from sqlalchemy import text
from sqlmodel import Session

from borg_coordinator.coordinator.errors import PersistenceError
from borg_coordinator.coordinator.models import InstanceStatus, TaskPriority, TaskStatus
from borg_coordinator.coordinator.queue import DurableTaskQueue, open_task_queue
from borg_coordinator.storage.common import utc_now
from borg_coordinator.storage.sqlmodel_models import KeyValueEntry, SetMember

pytestmark = [
    allure.epic("Coordination"),
    allure.feature("Durable Task Queue"),
]


def test_schema_is_migrated_to_head(durable_queue: DurableTaskQueue) -> None:
    with durable_queue.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name IN ('kv_entries', 'set_members', 'list_entries') ORDER BY name",
            ),
        ).scalars()
        table_names = list(tables)

    assert version == "20261019_0001"
    assert table_names == ["kv_entries", "list_entries", "set_members"]


def test_dequeue_order_is_priority_then_fifo(durable_queue: DurableTaskQueue, make_task) -> None:
    low = make_task(priority=TaskPriority.LOW)
    critical_first = make_task(priority=TaskPriority.CRITICAL)
    medium = make_task(priority=TaskPriority.MEDIUM)
    high = make_task(priority=TaskPriority.HIGH)
    critical_second = make_task(priority=TaskPriority.CRITICAL)
    for task in (low, critical_first, medium, high, critical_second):
        durable_queue.push(task)

    popped = [durable_queue.pop_highest_priority() for _ in range(5)]

    assert [task.id for task in popped] == [
        critical_first.id,
        critical_second.id,
        high.id,
        medium.id,
        low.id,
    ]
    assert durable_queue.pop_highest_priority() is None


def test_popped_task_equals_pushed_snapshot(durable_queue: DurableTaskQueue, make_task) -> None:
    task = make_task(dependencies=["task-x"], assigned_to="instance-7")
    durable_queue.push(task)

    assert durable_queue.pop_highest_priority() == task


def test_queue_depth_and_clear(durable_queue: DurableTaskQueue, make_task) -> None:
    for priority in (TaskPriority.HIGH, TaskPriority.HIGH, TaskPriority.LOW):
        durable_queue.push(make_task(priority=priority))

    assert durable_queue.queue_depth_by_priority() == {
        TaskPriority.CRITICAL: 0,
        TaskPriority.HIGH: 2,
        TaskPriority.MEDIUM: 0,
        TaskPriority.LOW: 1,
    }

    durable_queue.clear(TaskPriority.HIGH)
    assert durable_queue.queue_depth_by_priority()[TaskPriority.HIGH] == 0
    assert durable_queue.queue_depth_by_priority()[TaskPriority.LOW] == 1

    durable_queue.clear()
    assert sum(durable_queue.queue_depth_by_priority().values()) == 0


def test_namespaces_are_isolated(store_url: str, durable_queue: DurableTaskQueue, make_task) -> None:
    durable_queue.push(make_task())

    other = DurableTaskQueue(store_url, namespace="other")
    try:
        assert other.pop_highest_priority() is None
        assert other.queue_key(TaskPriority.LOW) == "other:tasks:low"
    finally:
        other.close()


def test_concurrent_poppers_never_share_an_entry(
    durable_queue: DurableTaskQueue,
    make_task,
) -> None:
    pushed = [make_task() for _ in range(20)]
    for task in pushed:
        durable_queue.push(task)
    popped: list[str] = []
    lock = threading.Lock()

    def _drain() -> None:
        while True:
            task = durable_queue.pop_highest_priority()
            if task is None:
                return
            with lock:
                popped.append(task.id)

    threads = [threading.Thread(target=_drain) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(popped) == sorted(task.id for task in pushed)


def test_snapshots_upsert_and_list(
    durable_queue: DurableTaskQueue,
    make_task,
    make_instance,
) -> None:
    task = make_task()
    durable_queue.put_task_snapshot(task)
    finished = make_task(status=TaskStatus.COMPLETED)
    durable_queue.put_task_snapshot(finished)
    task.status = TaskStatus.FAILED
    durable_queue.put_task_snapshot(task)

    instance = make_instance(status=InstanceStatus.ERROR)
    durable_queue.put_instance_snapshot(instance)

    tasks = durable_queue.list_task_snapshots()
    assert [item.id for item in tasks] == sorted([task.id, finished.id])
    assert {item.id: item.status for item in tasks}[task.id] == TaskStatus.FAILED
    assert durable_queue.list_instance_snapshots() == [instance]


def test_undecodable_snapshot_is_skipped(
    durable_queue: DurableTaskQueue,
    make_task,
    caplog: pytest.LogCaptureFixture,
) -> None:
    good = make_task()
    durable_queue.put_task_snapshot(good)
    with Session(durable_queue.engine) as session:
        session.add(
            KeyValueEntry(
                key=durable_queue.task_key("broken"),
                value="{not json",
                updated_at=utc_now(),
            ),
        )
        session.add(SetMember(key=durable_queue.tasks_set_key, member="broken"))
        session.commit()

    with caplog.at_level("WARNING"):
        tasks = durable_queue.list_task_snapshots()

    assert tasks == [good]
    assert "Skipping undecodable task snapshot" in caplog.text


def test_unreachable_store_raises_persistence_error(tmp_path: Path, make_task) -> None:
    queue = DurableTaskQueue(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'store.db'}")
    try:
        with pytest.raises(PersistenceError, match="ping"):
            queue.ping()
        with pytest.raises(PersistenceError, match="push"):
            queue.push(make_task())
    finally:
        queue.close()


def test_malformed_store_url_raises_persistence_error() -> None:
    with pytest.raises(PersistenceError, match="Invalid store URL"):
        DurableTaskQueue("not a url")


def test_open_task_queue_migrates_and_closes(store_url: str, make_task) -> None:
    with open_task_queue(store_url) as queue:
        queue.push(make_task(priority=TaskPriority.CRITICAL))
        assert queue.queue_depth_by_priority()[TaskPriority.CRITICAL] == 1

    with open_task_queue(store_url) as queue:
        assert queue.pop_highest_priority() is not None
