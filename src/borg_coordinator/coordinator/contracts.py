"""JSON wire contracts for task and instance snapshots."""

from __future__ import annotations

import json
from typing import Any

from borg_coordinator.coordinator.models import (
    Instance,
    InstanceConfig,
    InstanceRole,
    InstanceStatus,
    Task,
    TaskPriority,
    TaskResult,
    TaskStatus,
    TaskType,
    TestResult,
)
from borg_coordinator.storage.common import from_iso


def task_to_payload(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "task_type": task.task_type.value,
        "description": task.description,
        "assigned_to": task.assigned_to,
        "status": task.status.value,
        "priority": task.priority.value,
        "dependencies": list(task.dependencies),
        "result": None if task.result is None else result_to_payload(task.result),
        "created_at": task.created_at.isoformat(),
        "updated_at": task.updated_at.isoformat(),
    }


def task_from_payload(payload: dict[str, Any]) -> Task:
    raw_result = payload.get("result")
    return Task(
        id=str(payload["id"]),
        task_type=TaskType(payload["task_type"]),
        description=str(payload["description"]),
        assigned_to=payload.get("assigned_to"),
        status=TaskStatus(payload["status"]),
        priority=TaskPriority(payload["priority"]),
        dependencies=[str(item) for item in payload.get("dependencies", [])],
        result=None if raw_result is None else result_from_payload(_expect_object(raw_result)),
        created_at=from_iso(payload["created_at"]),
        updated_at=from_iso(payload["updated_at"]),
    )


def result_to_payload(result: TaskResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "output": result.output,
        "error": result.error,
        "files_modified": list(result.files_modified),
        "tests_run": [
            {"name": test.name, "passed": test.passed, "error": test.error}
            for test in result.tests_run
        ],
    }


def result_from_payload(payload: dict[str, Any]) -> TaskResult:
    return TaskResult(
        success=bool(payload["success"]),
        output=payload.get("output"),
        error=payload.get("error"),
        files_modified=[str(path) for path in payload.get("files_modified", [])],
        tests_run=[
            TestResult(
                name=str(item["name"]),
                passed=bool(item["passed"]),
                error=item.get("error"),
            )
            for item in payload.get("tests_run", [])
        ],
    )


def config_to_payload(config: InstanceConfig) -> dict[str, Any]:
    return {
        "name": config.name,
        "agent_path": config.agent_path,
        "workspace_dir": config.workspace_dir,
        "max_concurrent_tasks": config.max_concurrent_tasks,
        "timeout_seconds": config.timeout_seconds,
        "auto_accept_tasks": config.auto_accept_tasks,
        "preferred_languages": list(config.preferred_languages),
        "custom_prompts": dict(config.custom_prompts),
        "environment_vars": dict(config.environment_vars),
    }


def config_from_payload(payload: dict[str, Any]) -> InstanceConfig:
    return InstanceConfig(
        name=str(payload["name"]),
        agent_path=str(payload["agent_path"]),
        workspace_dir=str(payload["workspace_dir"]),
        max_concurrent_tasks=int(payload["max_concurrent_tasks"]),
        timeout_seconds=int(payload["timeout_seconds"]),
        auto_accept_tasks=bool(payload["auto_accept_tasks"]),
        preferred_languages=[str(item) for item in payload.get("preferred_languages", [])],
        custom_prompts={
            str(key): str(value) for key, value in payload.get("custom_prompts", {}).items()
        },
        environment_vars={
            str(key): str(value) for key, value in payload.get("environment_vars", {}).items()
        },
    )


def instance_to_payload(instance: Instance) -> dict[str, Any]:
    return {
        "id": instance.id,
        "role": instance.role.value,
        "status": instance.status.value,
        "current_task": (
            None if instance.current_task is None else task_to_payload(instance.current_task)
        ),
        "capabilities": list(instance.capabilities),
        "config": config_to_payload(instance.config),
        "created_at": instance.created_at.isoformat(),
        "last_activity": instance.last_activity.isoformat(),
    }


def instance_from_payload(payload: dict[str, Any]) -> Instance:
    raw_task = payload.get("current_task")
    return Instance(
        id=str(payload["id"]),
        role=InstanceRole(payload["role"]),
        status=InstanceStatus(payload["status"]),
        current_task=None if raw_task is None else task_from_payload(_expect_object(raw_task)),
        capabilities=[str(item) for item in payload.get("capabilities", [])],
        config=config_from_payload(_expect_object(payload["config"])),
        created_at=from_iso(payload["created_at"]),
        last_activity=from_iso(payload["last_activity"]),
    )


def encode_task(task: Task) -> str:
    """Serialize a task snapshot using deterministic formatting."""

    return json.dumps(task_to_payload(task), ensure_ascii=False, sort_keys=True)


def decode_task(data: str) -> Task:
    return task_from_payload(_load_object(data))


def encode_instance(instance: Instance) -> str:
    """Serialize an instance snapshot using deterministic formatting."""

    return json.dumps(instance_to_payload(instance), ensure_ascii=False, sort_keys=True)


def decode_instance(data: str) -> Instance:
    return instance_from_payload(_load_object(data))


def _load_object(data: str) -> dict[str, Any]:
    return _expect_object(json.loads(data))


def _expect_object(value: object) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"Expected JSON object, got {type(value).__name__}")
    return value
