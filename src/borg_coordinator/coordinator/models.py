"""Domain models for instances, tasks and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from borg_coordinator.coordinator.errors import ConfigurationError


class InstanceRole(str, Enum):
    """Fixed instance roles driving capabilities and routing affinity."""

    PROJECT_MANAGER = "project_manager"
    SUPERVISOR = "supervisor"
    DEVELOPER = "developer"
    TESTER = "tester"
    REVIEWER = "reviewer"
    RESEARCHER = "researcher"


class InstanceStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    ERROR = "error"
    OFFLINE = "offline"


class TaskType(str, Enum):
    PROJECT_PLANNING = "project_planning"
    CODE_REVIEW = "code_review"
    FEATURE_IMPLEMENTATION = "feature_implementation"
    BUG_FIX = "bug_fix"
    TEST_CREATION = "test_creation"
    RESEARCH = "research"
    DOCUMENTATION = "documentation"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority, totally ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, TaskPriority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}

# Queue segments in dequeue order.
PRIORITY_DEQUEUE_ORDER = (
    TaskPriority.CRITICAL,
    TaskPriority.HIGH,
    TaskPriority.MEDIUM,
    TaskPriority.LOW,
)

TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
)


@dataclass(slots=True)
class TestResult:
    """One test outcome reported by an agent."""

    __test__ = False

    name: str
    passed: bool
    error: str | None = None


@dataclass(slots=True)
class TaskResult:
    """Raw execution outcome stored on a finished task."""

    success: bool
    output: str | None = None
    error: str | None = None
    files_modified: list[str] = field(default_factory=list)
    tests_run: list[TestResult] = field(default_factory=list)


@dataclass(slots=True)
class InstanceConfig:
    """Per-instance execution settings."""

    name: str = "Agent Instance"
    agent_path: str = "claude"
    workspace_dir: str = "."
    max_concurrent_tasks: int = 1
    timeout_seconds: int = 300
    auto_accept_tasks: bool = True
    preferred_languages: list[str] = field(default_factory=lambda: ["rust", "typescript"])
    custom_prompts: dict[str, str] = field(default_factory=dict)
    environment_vars: dict[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Raise ConfigurationError for unusable limits."""

        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be > 0.")
        if self.max_concurrent_tasks < 0:
            raise ConfigurationError("max_concurrent_tasks must be >= 0.")


@dataclass(slots=True)
class Task:
    """Unit of requested work with a type, priority and lifecycle status."""

    id: str
    task_type: TaskType
    description: str
    priority: TaskPriority
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    dependencies: list[str] = field(default_factory=list)
    result: TaskResult | None = None


@dataclass(slots=True)
class Instance:
    """Worker entity executing at most one task at a time."""

    id: str
    role: InstanceRole
    config: InstanceConfig
    created_at: datetime
    last_activity: datetime
    status: InstanceStatus = InstanceStatus.IDLE
    current_task: Task | None = None
    capabilities: list[str] = field(default_factory=list)

    @property
    def in_flight(self) -> int:
        return 0 if self.current_task is None else 1

    def is_admissible(self) -> bool:
        """Idle and below its declared concurrency limit."""

        return (
            self.status == InstanceStatus.IDLE
            and self.in_flight < self.config.max_concurrent_tasks
        )


@dataclass(slots=True)
class TaskParams:
    """Caller-supplied input for creating and routing a task."""

    task_type: TaskType
    description: str
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: list[str] | None = None
    target_instance_id: str | None = None
