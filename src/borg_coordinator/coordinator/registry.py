"""In-memory instance/task registry mirrored to the durable store."""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, replace

from borg_coordinator.coordinator.errors import (
    InstanceBusyError,
    InstanceNotFoundError,
    PersistenceError,
    TaskNotFoundError,
    TaskStateError,
)
from borg_coordinator.coordinator.models import (
    Instance,
    InstanceConfig,
    InstanceStatus,
    Task,
    TaskStatus,
)
from borg_coordinator.coordinator.queue import TaskQueueStore
from borg_coordinator.storage.common import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegistryStats:
    """Point-in-time counters for heartbeat logging and CLI output."""

    instances: int
    working: int
    tasks_by_status: dict[str, int]


class Registry:
    """Authoritative live view of instances and tasks.

    Stored records are never mutated in place: every change swaps in a new
    object under the lock, and callers always receive deep copies.  The lock
    covers in-memory reads and writes only; mirror writes to the durable
    store happen after it is released and their failures are logged, not
    raised.

    Each change takes a version number under the lock.  Mirror writes are
    serialized and a snapshot older than the last one written for the same
    record is dropped, so the store never regresses to a superseded state.
    """

    def __init__(self, *, store: TaskQueueStore | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._instances: dict[str, Instance] = {}
        self._tasks: dict[str, Task] = {}
        self._versions = itertools.count(1)
        self._mirror_lock = threading.Lock()
        self._mirrored: dict[tuple[str, str], int] = {}

    # -- instances -------------------------------------------------------------

    def upsert_instance(self, instance: Instance) -> Instance:
        instance.config.validate()
        stored = copy.deepcopy(instance)
        with self._lock:
            self._instances[stored.id] = stored
            version = next(self._versions)
        self._mirror_instance(stored, version)
        return copy.deepcopy(stored)

    def get_instance(self, instance_id: str) -> Instance:
        with self._lock:
            instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return copy.deepcopy(instance)

    def list_instances(self) -> list[Instance]:
        """Instances in registration order."""

        with self._lock:
            instances = list(self._instances.values())
        return copy.deepcopy(instances)

    def remove_instance(self, instance_id: str) -> Instance:
        """Drop an instance; the stored snapshot is kept and marked offline."""

        with self._lock:
            instance = self._instances.pop(instance_id, None)
            version = next(self._versions)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        self._mirror_instance(replace(instance, status=InstanceStatus.OFFLINE), version)
        return copy.deepcopy(instance)

    def update_instance_config(self, instance_id: str, config: InstanceConfig) -> Instance:
        """Replace an instance's config; invalid configs are rejected before any change."""

        config.validate()
        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise InstanceNotFoundError(instance_id)
            updated = replace(current, config=copy.deepcopy(config), last_activity=utc_now())
            self._instances[instance_id] = updated
            version = next(self._versions)
        self._mirror_instance(updated, version)
        return copy.deepcopy(updated)

    def set_instance_status(self, instance_id: str, status: InstanceStatus) -> Instance:
        """Move a non-working instance between idle, error and offline."""

        if status == InstanceStatus.WORKING:
            raise ValueError("Working status is only set by task assignment.")
        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise InstanceNotFoundError(instance_id)
            if current.status == InstanceStatus.WORKING:
                raise InstanceBusyError(instance_id)
            updated = replace(current, status=status, last_activity=utc_now())
            self._instances[instance_id] = updated
            version = next(self._versions)
        self._mirror_instance(updated, version)
        return copy.deepcopy(updated)

    # -- tasks -----------------------------------------------------------------

    def upsert_task(self, task: Task) -> Task:
        stored = copy.deepcopy(task)
        with self._lock:
            self._tasks[stored.id] = stored
            version = next(self._versions)
        self._mirror_task(stored, version)
        return copy.deepcopy(stored)

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return copy.deepcopy(task)

    def find_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return None if task is None else copy.deepcopy(task)

    def list_tasks(self) -> list[Task]:
        """Tasks in creation order."""

        with self._lock:
            tasks = list(self._tasks.values())
        return copy.deepcopy(tasks)

    # -- assignment ------------------------------------------------------------

    def claim_instance(self, task: Task, instance_id: str) -> tuple[Task, Instance]:
        """Atomically move task to in_progress and instance to working.

        Raises InstanceNotFoundError, InstanceBusyError or TaskStateError
        without touching either record.
        """

        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise InstanceNotFoundError(instance_id)
            live_task = self._tasks.get(task.id)
            if live_task is not None and live_task.status != TaskStatus.PENDING:
                raise TaskStateError(task.id, live_task.status.value)
            if not current.is_admissible():
                raise InstanceBusyError(instance_id)

            now = utc_now()
            claimed_task = replace(
                copy.deepcopy(task),
                assigned_to=instance_id,
                status=TaskStatus.IN_PROGRESS,
                updated_at=now,
            )
            claimed_instance = replace(
                current,
                status=InstanceStatus.WORKING,
                current_task=copy.deepcopy(claimed_task),
                last_activity=now,
            )
            self._tasks[claimed_task.id] = claimed_task
            self._instances[instance_id] = claimed_instance
            version = next(self._versions)

        self._mirror_instance(claimed_instance, version)
        self._mirror_task(claimed_task, version)
        return copy.deepcopy(claimed_task), copy.deepcopy(claimed_instance)

    def release_instance(self, task: Task, instance: Instance) -> tuple[Task, Instance]:
        """Store a finished task and revert its instance to idle in one step.

        ``instance`` is the snapshot the task ran on.  An instance terminated
        while the task ran stays removed; the released snapshot is still
        returned for event reporting.
        """

        with self._lock:
            finished = copy.deepcopy(task)
            self._tasks[finished.id] = finished
            live = self._instances.get(instance.id)
            released = replace(
                copy.deepcopy(instance) if live is None else live,
                status=InstanceStatus.IDLE,
                current_task=None,
                last_activity=utc_now(),
            )
            if live is not None:
                self._instances[instance.id] = released
            version = next(self._versions)

        self._mirror_task(finished, version)
        if live is not None:
            self._mirror_instance(released, version)
        return copy.deepcopy(finished), copy.deepcopy(released)

    def stats(self) -> RegistryStats:
        with self._lock:
            instances = list(self._instances.values())
            statuses = Counter(task.status.value for task in self._tasks.values())
        return RegistryStats(
            instances=len(instances),
            working=sum(1 for item in instances if item.status == InstanceStatus.WORKING),
            tasks_by_status=dict(statuses),
        )

    # -- mirror ----------------------------------------------------------------

    def _mirror_instance(self, instance: Instance, version: int) -> None:
        if self._store is None:
            return
        store = self._store
        self._mirror(
            ("instance", instance.id),
            version,
            lambda: store.put_instance_snapshot(instance),
        )

    def _mirror_task(self, task: Task, version: int) -> None:
        if self._store is None:
            return
        store = self._store
        self._mirror(("task", task.id), version, lambda: store.put_task_snapshot(task))

    def _mirror(self, key: tuple[str, str], version: int, write: Callable[[], None]) -> None:
        kind, record_id = key
        with self._mirror_lock:
            if self._mirrored.get(key, 0) > version:
                logger.debug("Skipping superseded %s snapshot %s (v%s)", kind, record_id, version)
                return
            try:
                write()
            except PersistenceError as error:
                logger.warning("Failed to store %s %s: %s", kind, record_id, error)
                return
            self._mirrored[key] = version
