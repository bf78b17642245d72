"""Coordinator error taxonomy."""

from __future__ import annotations


class CoordinatorError(RuntimeError):
    """Base error for coordinator operations."""


class NotFoundError(CoordinatorError):
    """Requested record is absent from the registry."""


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance not found: {instance_id}")
        self.instance_id = instance_id


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InstanceBusyError(CoordinatorError):
    """Instance cannot take a task right now; the task was left untouched."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance is not accepting tasks: {instance_id}")
        self.instance_id = instance_id


class TaskStateError(CoordinatorError):
    """Task is not in the state an operation requires."""

    def __init__(self, task_id: str, status: str) -> None:
        super().__init__(f"Task {task_id} is {status}, expected pending")
        self.task_id = task_id
        self.status = status


class PersistenceError(CoordinatorError):
    """Durable store connectivity or serialization failure."""


class ConfigurationError(ValueError):
    """Malformed input rejected at the boundary before any state change."""
