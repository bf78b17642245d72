from __future__ import annotations

import logging
import threading

import allure
import pytest

from borg_coordinator.coordinator.executor import TaskExecutor
from borg_coordinator.coordinator.models import InstanceRole, TaskStatus
from borg_coordinator.coordinator.registry import Registry
from borg_coordinator.coordinator.scheduler import Scheduler
from borg_coordinator.coordinator.worker import DrainSummary, HeartbeatWorker, QueueDrainWorker

pytestmark = [
    allure.epic("Coordination"),
    allure.feature("Background Loops"),
]


class RecordingStopEvent(threading.Event):
    """Stop event that records waits and sets itself after ``limit`` of them."""

    def __init__(self, limit: int) -> None:
        super().__init__()
        self.limit = limit
        self.waits: list[float | None] = []

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(timeout)
        if len(self.waits) >= self.limit:
            self.set()
        return self.is_set()


@pytest.fixture()
def registry() -> Registry:
    return Registry()


@pytest.fixture()
def worker(registry, memory_queue, events, gated_backend) -> QueueDrainWorker:
    executor = TaskExecutor(registry=registry, events=events, backend=gated_backend)
    scheduler = Scheduler(
        registry=registry,
        queue=memory_queue,
        executor=executor,
        events=events,
    )
    return QueueDrainWorker(
        queue=memory_queue,
        scheduler=scheduler,
        poll_interval_seconds=0.5,
        error_backoff_seconds=2.0,
    )


def test_run_once_on_empty_queue_is_idle(worker: QueueDrainWorker) -> None:
    assert worker.run_once() == DrainSummary(idle_polls=1)


def test_run_once_assigns_queued_task(
    worker: QueueDrainWorker,
    registry: Registry,
    memory_queue,
    make_instance,
    make_task,
) -> None:
    instance = registry.upsert_instance(make_instance(InstanceRole.DEVELOPER))
    task = make_task()
    memory_queue.push(task)

    summary = worker.run_once()

    assert summary == DrainSummary(processed=1, assigned=1)
    assert registry.get_task(task.id).assigned_to == instance.id


def test_run_once_requeues_when_everyone_is_busy(
    worker: QueueDrainWorker,
    memory_queue,
    make_task,
) -> None:
    task = make_task()
    memory_queue.push(task)

    assert worker.run_once() == DrainSummary(processed=1, requeued=1)
    assert memory_queue.queued_ids() == [task.id]


def test_run_once_skips_stale_entries(
    worker: QueueDrainWorker,
    registry: Registry,
    memory_queue,
    make_task,
) -> None:
    task = registry.upsert_task(make_task(status=TaskStatus.COMPLETED))
    memory_queue.push(task)

    assert worker.run_once() == DrainSummary(processed=1, skipped=1)
    assert memory_queue.queued_ids() == []


def test_run_once_counts_store_errors(
    worker: QueueDrainWorker,
    memory_queue,
    caplog: pytest.LogCaptureFixture,
) -> None:
    memory_queue.fail_pop = True

    with caplog.at_level(logging.ERROR):
        summary = worker.run_once()

    assert summary == DrainSummary(errors=1)
    assert "Failed to read task queue" in caplog.text


def test_run_once_counts_requeue_failure(
    worker: QueueDrainWorker,
    memory_queue,
    make_task,
) -> None:
    memory_queue.push(make_task())
    memory_queue.fail_push = True

    assert worker.run_once() == DrainSummary(processed=1, errors=1)


def test_run_loop_backs_off_after_store_errors(
    worker: QueueDrainWorker,
    memory_queue,
) -> None:
    memory_queue.fail_pop = True
    stop_event = RecordingStopEvent(limit=2)

    summary = worker.run_loop(stop_event)

    assert stop_event.waits == [2.0, 2.0]
    assert summary.errors == 2


def test_run_loop_polls_when_idle_and_drains_back_to_back(
    worker: QueueDrainWorker,
    registry: Registry,
    memory_queue,
    make_instance,
    make_task,
) -> None:
    registry.upsert_instance(make_instance())
    registry.upsert_instance(make_instance())
    memory_queue.push(make_task())
    memory_queue.push(make_task())
    stop_event = RecordingStopEvent(limit=1)

    summary = worker.run_loop(stop_event)

    assert summary.assigned == 2
    assert summary.idle_polls == 1
    assert stop_event.waits == [0.5]
    assert memory_queue.pop_calls == 3


def test_run_loop_exits_immediately_when_stopped(worker: QueueDrainWorker, memory_queue) -> None:
    stop_event = threading.Event()
    stop_event.set()

    assert worker.run_loop(stop_event) == DrainSummary()
    assert memory_queue.pop_calls == 0


def test_heartbeat_logs_registry_counters(
    registry: Registry,
    make_instance,
    caplog: pytest.LogCaptureFixture,
) -> None:
    registry.upsert_instance(make_instance())
    heartbeat = HeartbeatWorker(registry=registry, interval_seconds=0.01)
    stop_event = RecordingStopEvent(limit=3)

    with caplog.at_level(logging.DEBUG, logger="borg_coordinator.coordinator.worker"):
        heartbeat.run_loop(stop_event)

    beats = [record for record in caplog.records if record.getMessage().startswith("Heartbeat")]
    assert len(beats) == 2
    assert "1 instances (0 working)" in beats[0].getMessage()
