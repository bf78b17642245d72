"""Instance selection and task assignment."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from enum import Enum

from borg_coordinator.coordinator.errors import (
    ConfigurationError,
    InstanceBusyError,
    InstanceNotFoundError,
    TaskStateError,
)
from borg_coordinator.coordinator.events import EventChannel, TaskAssigned
from borg_coordinator.coordinator.executor import TaskExecutor
from borg_coordinator.coordinator.models import (
    Instance,
    Task,
    TaskParams,
    TaskResult,
    TaskStatus,
)
from borg_coordinator.coordinator.queue import TaskQueueStore
from borg_coordinator.coordinator.registry import Registry
from borg_coordinator.coordinator.roles import preferred_roles
from borg_coordinator.storage.common import utc_now

logger = logging.getLogger(__name__)


class RouteOutcome(str, Enum):
    """What the drain path did with one dequeued task."""

    ASSIGNED = "assigned"
    REQUEUED = "requeued"
    SKIPPED = "skipped"
    FAILED = "failed"


class Scheduler:
    """Places tasks on admissible instances, preferring role affinity."""

    def __init__(
        self,
        *,
        registry: Registry,
        queue: TaskQueueStore,
        executor: TaskExecutor,
        events: EventChannel,
    ) -> None:
        self.registry = registry
        self.queue = queue
        self.executor = executor
        self.events = events

    def select_instance_for(self, task: Task) -> Instance | None:
        """Pick the first admissible preferred-role instance, else any admissible one."""

        admissible = [item for item in self.registry.list_instances() if item.is_admissible()]
        if not admissible:
            return None
        preferred = set(preferred_roles(task.task_type))
        for instance in admissible:
            if instance.role in preferred:
                return instance
        return admissible[0]

    def assign(self, task: Task, instance_id: str) -> Task:
        """Claim the instance for the task and start execution.

        Raises InstanceNotFoundError or InstanceBusyError with the task untouched.
        """

        claimed_task, claimed_instance = self.registry.claim_instance(task, instance_id)
        logger.info(
            "Assigned task %s to instance %s (%s)",
            claimed_task.id,
            claimed_instance.id,
            claimed_instance.config.name,
        )
        self.events.publish(TaskAssigned(task=claimed_task))
        self.executor.run(claimed_task, claimed_instance)
        return claimed_task

    def create_and_route(self, params: TaskParams) -> Task:
        """Create a pending task and place it on an instance or the durable queue."""

        task = self.registry.upsert_task(new_task(params))
        logger.info(
            "Created task %s (%s, %s priority)",
            task.id,
            task.task_type.value,
            task.priority.value,
        )

        target = params.target_instance_id
        if target is not None:
            try:
                return self.assign(task, target)
            except InstanceBusyError:
                self.queue.push(task)
                logger.warning("Instance %s is busy, queued task %s for it", target, task.id)
                return task

        self.queue.push(task)
        instance = self.select_instance_for(task)
        if instance is None:
            logger.info("No idle instance for task %s, left on queue", task.id)
            return self.registry.get_task(task.id)
        try:
            return self.assign(task, instance.id)
        except (InstanceBusyError, InstanceNotFoundError, TaskStateError) as error:
            logger.info("Immediate assignment of task %s skipped: %s", task.id, error)
            return self.registry.get_task(task.id)

    def route_queued(self, task: Task) -> RouteOutcome:
        """Route one task popped from the durable queue."""

        live = self.registry.find_task(task.id)
        if live is None:
            live = self.registry.upsert_task(task)
        elif live.status != TaskStatus.PENDING:
            logger.debug("Skipping stale queue entry for task %s (%s)", live.id, live.status.value)
            return RouteOutcome.SKIPPED

        target = live.assigned_to
        if target is not None:
            try:
                self.assign(live, target)
            except InstanceNotFoundError:
                return self._fail_unknown_target(live, target)
            except InstanceBusyError:
                return self._requeue(live)
            except TaskStateError:
                return RouteOutcome.SKIPPED
            return RouteOutcome.ASSIGNED

        instance = self.select_instance_for(live)
        if instance is None:
            return self._requeue(live)
        try:
            self.assign(live, instance.id)
        except (InstanceBusyError, InstanceNotFoundError):
            return self._requeue(live)
        except TaskStateError:
            return RouteOutcome.SKIPPED
        return RouteOutcome.ASSIGNED

    def _requeue(self, task: Task) -> RouteOutcome:
        self.queue.push(task)
        logger.debug("No admissible instance for task %s, re-queued", task.id)
        return RouteOutcome.REQUEUED

    def _fail_unknown_target(self, task: Task, target: str) -> RouteOutcome:
        failed = replace(
            task,
            status=TaskStatus.FAILED,
            result=TaskResult(success=False, error=f"Target instance not found: {target}"),
            updated_at=utc_now(),
        )
        self.registry.upsert_task(failed)
        logger.warning("Task %s failed: target instance %s no longer exists", task.id, target)
        return RouteOutcome.FAILED


def new_task(params: TaskParams) -> Task:
    """Validate creation input and build a pending task.

    A target instance id is carried as ``assigned_to`` so the drain path
    routes the task to that instance.
    """

    if not params.description.strip():
        raise ConfigurationError("Task description must not be blank.")
    target = params.target_instance_id
    if target is not None and not target.strip():
        raise ConfigurationError("Target instance id must not be blank.")
    now = utc_now()
    return Task(
        id=str(uuid.uuid4()),
        task_type=params.task_type,
        description=params.description,
        priority=params.priority,
        dependencies=list(params.dependencies or []),
        assigned_to=target,
        created_at=now,
        updated_at=now,
    )
