"""Built-in project templates and the task plans they expand into."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from devteam.exceptions import TemplateNotFoundError
from devteam.models import DEFAULT_TASK_HOURS, AgentType, Task, TaskPriority, TaskType, new_id, utcnow


@dataclass(frozen=True)
class ProjectPhase:
    name: str
    duration: str
    tasks: Tuple[str, ...]
    dependencies: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "duration": self.duration,
            "tasks": list(self.tasks),
            "dependencies": list(self.dependencies),
        }


@dataclass(frozen=True)
class ProjectTemplate:
    id: str
    name: str
    description: str
    category: str
    technologies: Tuple[str, ...]
    agents: Mapping[AgentType, Tuple[str, ...]]
    phases: Tuple[ProjectPhase, ...]
    estimated_duration: int  # days
    complexity: str = "MEDIUM"

    def phase(self, name: str) -> Optional[ProjectPhase]:
        return next((p for p in self.phases if p.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "technologies": list(self.technologies),
            "agents": {t.value: list(areas) for t, areas in self.agents.items()},
            "phases": [p.to_dict() for p in self.phases],
            "estimated_duration": self.estimated_duration,
            "complexity": self.complexity,
        }


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    template_id: str
    task_ids: Tuple[str, ...]
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "template_id": self.template_id,
            "task_ids": list(self.task_ids),
            "created_at": self.created_at.isoformat(),
        }


BUILTIN_TEMPLATES: Tuple[ProjectTemplate, ...] = (
    ProjectTemplate(
        id="react-app",
        name="React Application",
        description="Full-stack React application with TypeScript",
        category="Web Application",
        technologies=("React", "TypeScript", "Node.js", "Express"),
        agents={
            AgentType.FRONTEND_CORE: ("component-development", "routing", "state-management"),
            AgentType.FRONTEND_UIUX: ("styling", "responsive-design", "accessibility"),
            AgentType.BACKEND_INTEGRATION: ("api-development", "database-design"),
            AgentType.QUALITY_ASSURANCE: ("testing", "quality-validation"),
            AgentType.DEVOPS: ("build-setup", "deployment"),
            AgentType.ARCHITECTURE_LEAD: ("coordination", "decisions"),
            AgentType.FRONTEND_VISUALIZATION: ("dashboard", "charts"),
            AgentType.MCP_INTEGRATION: ("external-apis",),
        },
        phases=(
            ProjectPhase("Setup", "1-2 days", ("project-initialization", "dependency-setup")),
            ProjectPhase(
                "Development", "1-2 weeks",
                ("component-development", "api-integration"),
                dependencies=("Setup",),
            ),
        ),
        estimated_duration=14,
        complexity="MEDIUM",
    ),
    ProjectTemplate(
        id="mcp-server",
        name="MCP Server",
        description="Model Context Protocol server with custom tools",
        category="Backend Service",
        technologies=("Node.js", "TypeScript", "gRPC"),
        agents={
            AgentType.MCP_INTEGRATION: ("server-scaffold", "tool-creation", "documentation"),
            AgentType.BACKEND_INTEGRATION: ("server-setup", "api-endpoints"),
            AgentType.QUALITY_ASSURANCE: ("testing", "validation"),
            AgentType.DEVOPS: ("deployment", "monitoring"),
            AgentType.ARCHITECTURE_LEAD: ("coordination", "architecture"),
        },
        phases=(
            ProjectPhase("Server Setup", "1 day", ("server-scaffold", "basic-configuration")),
            ProjectPhase(
                "Tool Development", "3-5 days",
                ("custom-tools", "resource-management"),
                dependencies=("Server Setup",),
            ),
        ),
        estimated_duration=7,
        complexity="LOW",
    ),
)


def find_template(templates: Sequence[ProjectTemplate], template_id: str) -> ProjectTemplate:
    for template in templates:
        if template.id == template_id:
            return template
    raise TemplateNotFoundError(
        f"Unknown project template {template_id!r}",
        details={"template_id": template_id, "available": [t.id for t in templates]},
    )


def build_project_tasks(template: ProjectTemplate, project_name: str, project_id: Optional[str] = None) -> List[Task]:
    """Expand *template* into FOUNDATION tasks, one per phase entry.

    Each task depends on every task of the phases its own phase lists
    under ``dependencies``.
    """
    project_id = project_id or new_id()
    by_phase: Dict[str, List[str]] = {}
    tasks: List[Task] = []
    for phase in template.phases:
        upstream = [tid for dep in phase.dependencies for tid in by_phase.get(dep, [])]
        by_phase[phase.name] = []
        for task_name in phase.tasks:
            task = Task(
                id=new_id(),
                title=f"{project_name}: {task_name}",
                description=f"{task_name} for {project_name} project",
                type=TaskType.FOUNDATION,
                priority=TaskPriority.MEDIUM,
                dependencies=list(upstream),
                estimated_hours=DEFAULT_TASK_HOURS,
                tags=[project_name, phase.name.lower()],
                metadata={
                    "project_id": project_id,
                    "template_id": template.id,
                    "phase": phase.name,
                },
            )
            by_phase[phase.name].append(task.id)
            tasks.append(task)
    return tasks
