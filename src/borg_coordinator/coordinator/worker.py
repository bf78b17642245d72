"""Background loops: durable queue drain and heartbeat."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from borg_coordinator.coordinator.errors import PersistenceError
from borg_coordinator.coordinator.queue import TaskQueueStore
from borg_coordinator.coordinator.registry import Registry
from borg_coordinator.coordinator.scheduler import RouteOutcome, Scheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DrainSummary:
    """Aggregate drain counters."""

    processed: int = 0
    assigned: int = 0
    requeued: int = 0
    skipped: int = 0
    failed: int = 0
    idle_polls: int = 0
    errors: int = 0

    def add(self, other: DrainSummary) -> None:
        self.processed += other.processed
        self.assigned += other.assigned
        self.requeued += other.requeued
        self.skipped += other.skipped
        self.failed += other.failed
        self.idle_polls += other.idle_polls
        self.errors += other.errors


class QueueDrainWorker:
    """Pops queued tasks and hands them to the scheduler."""

    def __init__(
        self,
        *,
        queue: TaskQueueStore,
        scheduler: Scheduler,
        poll_interval_seconds: float = 5.0,
        error_backoff_seconds: float = 10.0,
    ) -> None:
        self.queue = queue
        self.scheduler = scheduler
        self.poll_interval_seconds = poll_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds

    def run_once(self) -> DrainSummary:
        """Route at most one queued task."""

        summary = DrainSummary()
        try:
            task = self.queue.pop_highest_priority()
        except PersistenceError as error:
            logger.error("Failed to read task queue: %s", error)
            summary.errors = 1
            return summary

        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        try:
            outcome = self.scheduler.route_queued(task)
        except PersistenceError as error:
            logger.error("Failed to route queued task %s: %s", task.id, error)
            summary.errors = 1
            return summary

        if outcome == RouteOutcome.ASSIGNED:
            summary.assigned = 1
        elif outcome == RouteOutcome.REQUEUED:
            summary.requeued = 1
        elif outcome == RouteOutcome.SKIPPED:
            summary.skipped = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(self, stop_event: threading.Event) -> DrainSummary:
        """Drain until ``stop_event`` is set.

        Successive dequeues run back to back while tasks keep getting assigned;
        an empty queue or a re-queued task waits one poll interval, a store
        failure waits the error backoff.
        """

        aggregate = DrainSummary()
        logger.info("Queue drain loop started")
        while not stop_event.is_set():
            summary = self.run_once()
            aggregate.add(summary)
            if summary.errors:
                delay = self.error_backoff_seconds
            elif summary.assigned or summary.skipped or summary.failed:
                delay = 0.0
            else:
                delay = self.poll_interval_seconds
            if delay > 0:
                stop_event.wait(delay)
        logger.info("Queue drain loop stopped")
        return aggregate


class HeartbeatWorker:
    """Periodic liveness log line with registry counters."""

    def __init__(self, *, registry: Registry, interval_seconds: float = 30.0) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds

    def beat(self) -> None:
        stats = self.registry.stats()
        logger.debug(
            "Heartbeat: %s instances (%s working), tasks %s",
            stats.instances,
            stats.working,
            stats.tasks_by_status,
        )

    def run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            self.beat()
