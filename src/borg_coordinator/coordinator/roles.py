"""Static role tables: capabilities, default configuration and routing affinity."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType

from borg_coordinator.coordinator.models import (
    Instance,
    InstanceConfig,
    InstanceRole,
    Task,
    TaskType,
)

ROLE_PROMPT_KEY = "role_prompt"
WORKSPACE_ENV_VAR = "CLAUDE_WORKSPACE"

_PROMPT_SUFFIX = "Auto-accept and implement all changes and suggestions."


@dataclass(frozen=True, slots=True)
class RoleProfile:
    """Capability tags and default configuration template for one role."""

    capabilities: tuple[str, ...]
    config: InstanceConfig = field(compare=False)


def _config(  # noqa: PLR0913
    *,
    name: str,
    languages: list[str],
    max_concurrent_tasks: int,
    role_prompt: str,
    timeout_seconds: int = 300,
) -> InstanceConfig:
    return InstanceConfig(
        name=name,
        preferred_languages=languages,
        max_concurrent_tasks=max_concurrent_tasks,
        timeout_seconds=timeout_seconds,
        auto_accept_tasks=True,
        custom_prompts={ROLE_PROMPT_KEY: role_prompt},
        environment_vars={WORKSPACE_ENV_VAR: "."},
    )


ROLE_PROFILES: MappingProxyType[InstanceRole, RoleProfile] = MappingProxyType(
    {
        InstanceRole.PROJECT_MANAGER: RoleProfile(
            capabilities=(
                "task-planning",
                "project-management",
                "requirement-analysis",
                "task-breakdown",
                "team-coordination",
                "strategic-planning",
            ),
            config=_config(
                name="Project Manager",
                languages=["markdown", "yaml", "json"],
                max_concurrent_tasks=5,
                timeout_seconds=600,
                role_prompt=(
                    "You are a project manager working on the current project directory. "
                    "Take high-level requirements and break them down into specific, "
                    "actionable tasks for team members. Assign tasks to the most appropriate "
                    "team members based on their roles and expertise. Focus on project "
                    "planning, task coordination, and ensuring deliverables are met. "
                    f"{_PROMPT_SUFFIX}"
                ),
            ),
        ),
        InstanceRole.SUPERVISOR: RoleProfile(
            capabilities=("architecture", "project-management", "code-review", "typescript"),
            config=_config(
                name="Team Supervisor",
                languages=["rust", "typescript", "python"],
                max_concurrent_tasks=3,
                role_prompt=(
                    "You are a team supervisor working on the current project directory. "
                    "Focus on architecture, code review, and coordination. "
                    f"{_PROMPT_SUFFIX}"
                ),
            ),
        ),
        InstanceRole.DEVELOPER: RoleProfile(
            capabilities=("typescript", "rust", "node.js", "programming"),
            config=_config(
                name="Developer",
                languages=["rust", "typescript"],
                max_concurrent_tasks=2,
                role_prompt=(
                    "You are a developer working on the current project directory. "
                    "Focus on implementing features and fixing bugs. "
                    f"{_PROMPT_SUFFIX}"
                ),
            ),
        ),
        InstanceRole.TESTER: RoleProfile(
            capabilities=("testing", "jest", "integration-testing", "quality-assurance"),
            config=_config(
                name="QA Tester",
                languages=["javascript", "typescript"],
                max_concurrent_tasks=2,
                role_prompt=(
                    "You are a QA tester working on the current project directory. "
                    "Focus on writing tests and ensuring quality. "
                    f"{_PROMPT_SUFFIX}"
                ),
            ),
        ),
        InstanceRole.REVIEWER: RoleProfile(
            capabilities=("code-review", "quality-assurance", "security", "best-practices"),
            config=_config(
                name="Code Reviewer",
                languages=["rust", "typescript", "python"],
                max_concurrent_tasks=1,
                role_prompt=(
                    "You are a code reviewer working on the current project directory. "
                    "Focus on security, best practices, and code quality. "
                    "Auto-accept and implement suggested changes."
                ),
            ),
        ),
        InstanceRole.RESEARCHER: RoleProfile(
            capabilities=("analysis", "documentation", "research", "optimization"),
            config=_config(
                name="Researcher",
                languages=["markdown", "python"],
                max_concurrent_tasks=1,
                timeout_seconds=600,
                role_prompt=(
                    "You are a researcher working on the current project directory. "
                    "Focus on analysis, documentation, and investigation. "
                    f"{_PROMPT_SUFFIX}"
                ),
            ),
        ),
    },
)

PREFERRED_ROLES: MappingProxyType[TaskType, tuple[InstanceRole, ...]] = MappingProxyType(
    {
        TaskType.PROJECT_PLANNING: (InstanceRole.PROJECT_MANAGER, InstanceRole.SUPERVISOR),
        TaskType.CODE_REVIEW: (InstanceRole.REVIEWER, InstanceRole.SUPERVISOR),
        TaskType.TEST_CREATION: (InstanceRole.TESTER, InstanceRole.DEVELOPER),
        TaskType.RESEARCH: (InstanceRole.RESEARCHER, InstanceRole.SUPERVISOR),
        TaskType.FEATURE_IMPLEMENTATION: (InstanceRole.DEVELOPER, InstanceRole.SUPERVISOR),
        TaskType.BUG_FIX: (InstanceRole.DEVELOPER, InstanceRole.SUPERVISOR),
        TaskType.DOCUMENTATION: (InstanceRole.RESEARCHER, InstanceRole.DEVELOPER),
    },
)

_ROLE_CONTEXTS: MappingProxyType[InstanceRole, str] = MappingProxyType(
    {
        InstanceRole.PROJECT_MANAGER: (
            "You are a Project Manager responsible for planning, coordinating, and breaking "
            "down high-level requirements into specific tasks. Analyze the user request and "
            "create a detailed project plan."
        ),
        InstanceRole.SUPERVISOR: (
            "You are a Team Supervisor responsible for architecture decisions, code review "
            "coordination, and ensuring best practices across the development team."
        ),
        InstanceRole.DEVELOPER: (
            "You are a {name} specializing in {languages}. Focus on implementing features, "
            "fixing bugs, and writing clean, maintainable code."
        ),
        InstanceRole.TESTER: (
            "You are a QA Tester responsible for creating comprehensive tests, finding bugs, "
            "and ensuring code quality and reliability."
        ),
        InstanceRole.REVIEWER: (
            "You are a Code Reviewer focused on security, performance, best practices, and "
            "maintaining code quality standards."
        ),
        InstanceRole.RESEARCHER: (
            "You are a Researcher responsible for investigating technologies, analyzing "
            "requirements, and providing technical recommendations."
        ),
    },
)


@dataclass(frozen=True, slots=True)
class TeamMember:
    """Default team slot; overrides apply on top of the role template."""

    role: InstanceRole
    name: str | None = None
    languages: tuple[str, ...] | None = None
    role_prompt: str | None = None


DEFAULT_TEAM: tuple[TeamMember, ...] = (
    TeamMember(InstanceRole.PROJECT_MANAGER),
    TeamMember(InstanceRole.SUPERVISOR),
    TeamMember(
        InstanceRole.DEVELOPER,
        name="Frontend Developer",
        languages=("typescript", "javascript", "react"),
        role_prompt=(
            "You are a frontend developer working on the current project directory. "
            "Focus on UI/UX, React components, and TypeScript. "
            f"{_PROMPT_SUFFIX}"
        ),
    ),
    TeamMember(
        InstanceRole.DEVELOPER,
        name="Backend Developer",
        languages=("rust", "python", "sql"),
        role_prompt=(
            "You are a backend developer working on the current project directory. "
            "Focus on APIs, databases, and Rust/Python services. "
            f"{_PROMPT_SUFFIX}"
        ),
    ),
    TeamMember(
        InstanceRole.DEVELOPER,
        name="Full-Stack Developer",
        languages=("typescript", "rust", "node.js"),
        role_prompt=(
            "You are a full-stack developer working on the current project directory. "
            "Handle both frontend and backend tasks with equal expertise. "
            f"{_PROMPT_SUFFIX}"
        ),
    ),
    TeamMember(InstanceRole.TESTER),
    TeamMember(InstanceRole.REVIEWER),
    TeamMember(InstanceRole.RESEARCHER),
)


def capabilities_for(role: InstanceRole) -> list[str]:
    """Return the fixed capability tags of a role."""

    return list(ROLE_PROFILES[role].capabilities)


def config_for_role(role: InstanceRole) -> InstanceConfig:
    """Return a fresh copy of the role's default configuration."""

    return copy.deepcopy(ROLE_PROFILES[role].config)


def config_for_member(member: TeamMember) -> InstanceConfig:
    config = config_for_role(member.role)
    if member.name is not None:
        config.name = member.name
    if member.languages is not None:
        config.preferred_languages = list(member.languages)
    if member.role_prompt is not None:
        config.custom_prompts[ROLE_PROMPT_KEY] = member.role_prompt
    return config


def preferred_roles(task_type: TaskType) -> list[InstanceRole]:
    """Roles best suited for a task type, most preferred first."""

    return list(PREFERRED_ROLES[task_type])


def role_context(instance: Instance) -> str:
    return _ROLE_CONTEXTS[instance.role].format(
        name=instance.config.name,
        languages=", ".join(instance.config.preferred_languages),
    )


def build_prompt(instance: Instance, task: Task) -> str:
    """Prompt fed to the agent: role context followed by the task description."""

    return (
        f"{role_context(instance)}\n\n"
        f"Task: {task.description}\n\n"
        "Please complete this task and provide a detailed summary of what you accomplished."
    )
