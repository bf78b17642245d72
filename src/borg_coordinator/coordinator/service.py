"""Coordinator facade: wiring, team bootstrap and instance management."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from types import TracebackType

from borg_coordinator.config import Settings
from borg_coordinator.coordinator.backend import AgentBackend, CliAgentBackend
from borg_coordinator.coordinator.events import (
    EventChannel,
    InstanceCreated,
    InstanceError,
    InstanceTerminated,
)
from borg_coordinator.coordinator.executor import TaskExecutor
from borg_coordinator.coordinator.models import (
    Instance,
    InstanceConfig,
    InstanceRole,
    InstanceStatus,
    Task,
    TaskParams,
    TaskPriority,
)
from borg_coordinator.coordinator.queue import DurableTaskQueue, TaskQueueStore
from borg_coordinator.coordinator.registry import Registry
from borg_coordinator.coordinator.roles import (
    DEFAULT_TEAM,
    capabilities_for,
    config_for_member,
    config_for_role,
)
from borg_coordinator.coordinator.scheduler import Scheduler
from borg_coordinator.coordinator.worker import HeartbeatWorker, QueueDrainWorker
from borg_coordinator.storage.common import utc_now

logger = logging.getLogger(__name__)


class Coordinator:
    """Owns the registry, scheduler, executor and background loops.

    A queue store passed in by the caller is used as is; otherwise a
    :class:`DurableTaskQueue` is opened from ``settings.store_url``, migrated
    on :meth:`initialize` and closed on :meth:`close`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        queue: TaskQueueStore | None = None,
        backend: AgentBackend | None = None,
        events: EventChannel | None = None,
    ) -> None:
        self.settings = settings
        self._owned_queue: DurableTaskQueue | None = None
        if queue is None:
            self._owned_queue = DurableTaskQueue(settings.store_url, namespace=settings.namespace)
            queue = self._owned_queue
        self.queue = queue
        self.events = events or EventChannel()
        self.registry = Registry(store=self.queue)
        self.executor = TaskExecutor(
            registry=self.registry,
            events=self.events,
            backend=backend or CliAgentBackend(),
            default_agent_path=settings.agent_path,
        )
        self.scheduler = Scheduler(
            registry=self.registry,
            queue=self.queue,
            executor=self.executor,
            events=self.events,
        )
        self.drain_worker = QueueDrainWorker(
            queue=self.queue,
            scheduler=self.scheduler,
            poll_interval_seconds=settings.loops.poll_interval_seconds,
            error_backoff_seconds=settings.loops.error_backoff_seconds,
        )
        self.heartbeat = HeartbeatWorker(
            registry=self.registry,
            interval_seconds=settings.loops.heartbeat_interval_seconds,
        )
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def __enter__(self) -> Coordinator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    # -- lifecycle -------------------------------------------------------------

    def initialize(self, *, bootstrap_team: bool = True) -> list[Instance]:
        """Verify the store and optionally create the default team."""

        if self._owned_queue is not None:
            self._owned_queue.init_schema()
        self.queue.ping()
        logger.info("Coordinator initialized")
        if not bootstrap_team:
            return []
        return self.create_default_team()

    def create_default_team(self) -> list[Instance]:
        team: list[Instance] = []
        for member in DEFAULT_TEAM:
            config = config_for_member(member)
            config.agent_path = self.settings.agent_path
            team.append(self.create_instance(member.role, config=config))
        logger.info("Default team created with %s instances", len(team))
        return team

    def start(self) -> None:
        """Start drain and heartbeat loops on daemon threads."""

        if self._threads:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self.drain_worker.run_loop,
                args=(self._stop_event,),
                name="borg-queue-drain",
                daemon=True,
            ),
            threading.Thread(
                target=self.heartbeat.run_loop,
                args=(self._stop_event,),
                name="borg-heartbeat",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Background loops started")

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loops to stop and wait for them; running agents are not interrupted."""

        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        logger.info("Background loops stopped")

    def close(self) -> None:
        self.stop()
        if self._owned_queue is not None:
            self._owned_queue.close()

    # -- instances -------------------------------------------------------------

    def create_instance(
        self,
        role: InstanceRole,
        capabilities: list[str] | None = None,
        config: InstanceConfig | None = None,
    ) -> Instance:
        if config is None:
            config = config_for_role(role)
            config.agent_path = self.settings.agent_path
        now = utc_now()
        instance = self.registry.upsert_instance(
            Instance(
                id=str(uuid.uuid4()),
                role=role,
                config=copy.deepcopy(config),
                capabilities=(
                    list(capabilities) if capabilities is not None else capabilities_for(role)
                ),
                created_at=now,
                last_activity=now,
            ),
        )
        self.events.publish(InstanceCreated(instance=instance))
        logger.info("Created %s instance %s (%s)", role.value, instance.id, instance.config.name)
        return instance

    def terminate_instance(self, instance_id: str) -> Instance:
        """Remove an instance; a task it is running still completes."""

        instance = self.registry.remove_instance(instance_id)
        self.events.publish(InstanceTerminated(instance=instance))
        logger.info("Terminated instance %s", instance_id)
        return instance

    def get_instance(self, instance_id: str) -> Instance:
        return self.registry.get_instance(instance_id)

    def list_instances(self) -> list[Instance]:
        return self.registry.list_instances()

    def get_instance_config(self, instance_id: str) -> InstanceConfig:
        return self.registry.get_instance(instance_id).config

    def update_instance_config(self, instance_id: str, config: InstanceConfig) -> Instance:
        instance = self.registry.update_instance_config(instance_id, config)
        logger.info("Updated config for instance %s", instance_id)
        return instance

    def mark_instance_error(self, instance_id: str, message: str) -> Instance:
        """Take an idle instance out of rotation and report why."""

        instance = self.registry.set_instance_status(instance_id, InstanceStatus.ERROR)
        self.events.publish(InstanceError(instance=instance, error=message))
        logger.warning("Instance %s marked as error: %s", instance_id, message)
        return instance

    def recover_instance(self, instance_id: str) -> Instance:
        instance = self.registry.set_instance_status(instance_id, InstanceStatus.IDLE)
        logger.info("Instance %s back in rotation", instance_id)
        return instance

    # -- tasks -----------------------------------------------------------------

    def submit_task(self, params: TaskParams) -> Task:
        return self.scheduler.create_and_route(params)

    def get_task(self, task_id: str) -> Task:
        return self.registry.get_task(task_id)

    def list_tasks(self) -> list[Task]:
        return self.registry.list_tasks()

    def queue_stats(self) -> dict[TaskPriority, int]:
        return self.queue.queue_depth_by_priority()

    def clear_queue(self, priority: TaskPriority | None = None) -> None:
        self.queue.clear(priority)
