"""Data models for the GSD phase lifecycle.

This module contains the typed records the stores serialize to and from
markdown: roadmap phases, plans and their tasks, execution summaries,
verification results, the session state and version-control checkpoints.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import InvalidRequestError

MAX_DEBUG_STRIKES = 3
PAUSED_PREFIX = "Paused: "


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def slugify(value: str, default: str = "task") -> str:
    """Normalize a free-text name into a file-name key."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or default


class PhaseStatus(str, Enum):
    """Closed status set used internally; the roadmap stores decorated labels."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"

    @property
    def label(self) -> str:
        return {
            PhaseStatus.NOT_STARTED: "⬜ Not Started",
            PhaseStatus.IN_PROGRESS: "🔄 In Progress",
            PhaseStatus.COMPLETE: "✅ Complete",
        }[self]

    @property
    def icon(self) -> str:
        return self.label.split(" ", 1)[0]


class BreakerState(str, Enum):
    """Debug circuit breaker; leaves EXHAUSTED only through a session resume."""

    ARMED = "armed"
    EXHAUSTED = "exhausted"


class CheckpointCategory(str, Enum):
    INIT = "init"
    PLAN = "plan"
    TASK = "task"
    PHASE_COMPLETE = "phase-complete"
    ROLLBACK = "rollback"

    @property
    def phase_scoped(self) -> bool:
        return self is not CheckpointCategory.INIT


# Task types accepted in plan specs.
TASK_TYPES = ("auto", "checkpoint:human-verify", "checkpoint:decision")


@dataclass(slots=True)
class Phase:
    """A numbered roadmap entry."""

    number: int
    name: str
    status: PhaseStatus = PhaseStatus.NOT_STARTED
    objective: Optional[str] = None
    status_text: str = ""

    @property
    def is_complete(self) -> bool:
        return self.status is PhaseStatus.COMPLETE

    def display(self) -> str:
        return f"{self.number} ({self.name})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "name": self.name,
            "status": self.status.value,
            "objective": self.objective,
        }


@dataclass(slots=True)
class TaskSpec:
    """One task inside a plan."""

    name: str
    files: List[str]
    action: str
    verify: str
    done: str
    type: str = "auto"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "files": list(self.files),
            "action": self.action,
            "verify": self.verify,
            "done": self.done,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskSpec":
        return cls(
            name=str(data.get("name", "")).strip(),
            files=list(data.get("files") or []),
            action=str(data.get("action", "")),
            verify=str(data.get("verify", "")),
            done=str(data.get("done", "")),
            type=data.get("type") or "auto",
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.name:
            issues.append("Task name is required")
        if not self.action:
            issues.append(f"Task '{self.name}': action is required")
        if self.type not in TASK_TYPES:
            issues.append(f"Task '{self.name}': invalid type '{self.type}' (expected one of {', '.join(TASK_TYPES)})")
        return issues


@dataclass(slots=True)
class PlanSpec:
    """Declared plan for a phase: tasks grouped into a wave."""

    name: str
    objective: str
    tasks: List[TaskSpec]
    success_criteria: List[str] = field(default_factory=list)
    wave: int = 1
    context_files: List[str] = field(default_factory=lambda: [".gsd/SPEC.md", ".gsd/ARCHITECTURE.md"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "objective": self.objective,
            "wave": self.wave,
            "context_files": list(self.context_files),
            "tasks": [task.to_dict() for task in self.tasks],
            "success_criteria": list(self.success_criteria),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanSpec":
        plan = cls(
            name=str(data.get("name", "")).strip(),
            objective=str(data.get("objective", "")).strip(),
            tasks=[TaskSpec.from_dict(task) for task in data.get("tasks") or []],
            success_criteria=list(data.get("success_criteria") or []),
            wave=int(data.get("wave") or 1),
        )
        if data.get("context_files"):
            plan.context_files = list(data["context_files"])
        return plan

    def validate(self) -> List[str]:
        issues = []
        if not self.name:
            issues.append("Plan name is required")
        if not self.objective:
            issues.append(f"Plan '{self.name}': objective is required")
        if self.wave < 1:
            issues.append(f"Plan '{self.name}': wave must be >= 1, got {self.wave}")
        if not self.tasks:
            issues.append(f"Plan '{self.name}': at least one task is required")
        for task in self.tasks:
            issues.extend(task.validate())
        return issues


def parse_plan_specs(raw_plans: List[Dict[str, Any]]) -> List[PlanSpec]:
    """Build and validate plan specs from a transport request."""
    if not raw_plans:
        raise InvalidRequestError("At least one plan is required.", next_step="gsd_plan")
    plans = [PlanSpec.from_dict(raw) for raw in raw_plans]
    issues = [issue for plan in plans for issue in plan.validate()]
    if issues:
        raise InvalidRequestError("Invalid plan specification: " + "; ".join(issues), next_step="gsd_plan")
    return plans


@dataclass(slots=True)
class TaskSummary:
    """Execution record for a completed task; its file is the completion signal."""

    phase: int
    task_name: str
    result: str
    files_changed: List[str] = field(default_factory=list)
    completed_at: str = field(default_factory=utc_timestamp)

    @property
    def key(self) -> str:
        return slugify(self.task_name)

    @property
    def file_name(self) -> str:
        return f"{self.key}-SUMMARY.md"


@dataclass(slots=True)
class TestSpec:
    """A verification command declared by the driver."""

    __test__ = False  # not a pytest class

    description: str
    command: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestSpec":
        description = str(data.get("description", "")).strip()
        command = str(data.get("command", "")).strip()
        if not description or not command:
            raise InvalidRequestError("Each verification test needs a description and a command.", next_step="gsd_verify")
        return cls(description=description, command=command)


@dataclass(slots=True)
class TestOutcome:
    """Captured result of running one verification command."""

    __test__ = False

    description: str
    command: str
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def evidence(self) -> str:
        if self.timed_out:
            return f"`{self.command}` timed out after {self.duration:.1f}s"
        return f"`{self.command}` exited with status {self.exit_code}"

    def to_check(self) -> "VerificationCheck":
        return VerificationCheck(self.description, self.passed, self.evidence)


@dataclass(slots=True)
class VerificationCheck:
    description: str
    passed: bool
    evidence: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "passed": self.passed, "evidence": self.evidence}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationCheck":
        description = str(data.get("description", "")).strip()
        if not description:
            raise InvalidRequestError("Each must-have needs a description.", next_step="gsd_verify")
        return cls(description=description, passed=bool(data.get("passed")), evidence=str(data.get("evidence", "")))


@dataclass(slots=True)
class VerificationReport:
    """All checks recorded for a phase, with the derived verdict."""

    phase: int
    checks: List[VerificationCheck]
    created_at: str = field(default_factory=utc_timestamp)

    @property
    def passed_count(self) -> int:
        return sum(1 for check in self.checks if check.passed)

    @property
    def total(self) -> int:
        return len(self.checks)

    @property
    def verdict(self) -> str:
        return "PASS" if all(check.passed for check in self.checks) else "FAIL"

    def failures(self) -> List[VerificationCheck]:
        return [check for check in self.checks if not check.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "verdict": self.verdict,
            "passed": self.passed_count,
            "total": self.total,
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass(slots=True)
class SessionState:
    """Singleton session record persisted in STATE.md."""

    phase: Optional[int] = None
    task: Optional[str] = None
    status: str = "Not initialized"
    blockers: List[str] = field(default_factory=list)
    debug_strikes: int = 0
    last_updated: str = field(default_factory=utc_timestamp)

    @property
    def breaker(self) -> BreakerState:
        if self.debug_strikes >= MAX_DEBUG_STRIKES:
            return BreakerState.EXHAUSTED
        return BreakerState.ARMED

    @property
    def is_paused(self) -> bool:
        return self.status.startswith(PAUSED_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "task": self.task,
            "status": self.status,
            "blockers": list(self.blockers),
            "debug_strikes": self.debug_strikes,
            "breaker": self.breaker.value,
            "last_updated": self.last_updated,
        }

    def logical_fields(self) -> Dict[str, Any]:
        """Everything except the timestamp; equality of two reads."""
        data = self.to_dict()
        data.pop("last_updated")
        return data


@dataclass(slots=True)
class Checkpoint:
    """A version-control commit tagged with a lifecycle category."""

    id: str
    message: str
    category: Optional[CheckpointCategory] = None
    phase: Optional[int] = None
    label: str = ""
    sequence: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def short_id(self) -> str:
        return self.id[:7]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "short_id": self.short_id,
            "message": self.message,
            "category": self.category.value if self.category else None,
            "phase": self.phase,
            "label": self.label,
            "sequence": self.sequence,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        category = data.get("category")
        return cls(
            id=data["id"],
            message=data.get("message", ""),
            category=CheckpointCategory(category) if category else None,
            phase=data.get("phase"),
            label=data.get("label", ""),
            sequence=data.get("sequence"),
            created_at=data.get("created_at"),
        )


@dataclass(slots=True)
class WorkflowTool:
    """Catalogue entry for the help listing."""

    name: str
    group: str
    description: str


WORKFLOW_TOOLS = [
    WorkflowTool("gsd_init", "Core workflow", "Initialize project (SPEC + ROADMAP + git checkpoint)"),
    WorkflowTool("gsd_plan", "Core workflow", "Create execution plans for a phase"),
    WorkflowTool("gsd_execute", "Core workflow", "Record task completion + atomic commit"),
    WorkflowTool("gsd_verify", "Core workflow", "Run verification commands and record the verdict"),
    WorkflowTool("gsd_debug", "Core workflow", "Systematic debugging (3-strike rule)"),
    WorkflowTool("gsd_rollback", "Core workflow", "Reset a phase to the checkpoint before it began"),
    WorkflowTool("gsd_map", "Core workflow", "Record the codebase architecture in ARCHITECTURE.md"),
    WorkflowTool("gsd_progress", "Navigation & state", "Show current position in the roadmap"),
    WorkflowTool("gsd_pause", "Navigation & state", "Save session state for handoff"),
    WorkflowTool("gsd_resume", "Navigation & state", "Restore from the last session and re-arm debugging"),
    WorkflowTool("gsd_checkpoints", "Navigation & state", "List lifecycle checkpoints"),
    WorkflowTool("gsd_add_phase", "Phase management", "Add a phase to the roadmap"),
    WorkflowTool("gsd_remove_phase", "Phase management", "Remove a phase (completed phases are protected)"),
    WorkflowTool("gsd_refine_phase", "Phase management", "Split a phase into smaller sub-phases"),
    WorkflowTool("gsd_discuss_phase", "Phase management", "Clarify scope and record decisions"),
    WorkflowTool("gsd_milestone", "Phase management", "Append a milestone with new phases"),
    WorkflowTool("gsd_add_todo", "Utilities", "Quick capture an idea"),
    WorkflowTool("gsd_check_todos", "Utilities", "List pending items"),
    WorkflowTool("gsd_help", "Utilities", "This help message"),
]
