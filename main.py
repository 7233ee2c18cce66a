"""MCP server exposing the GSD phase lifecycle as workflow tools."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from gsd.config import Settings, resolve_root
from gsd.gsd_logging import setup_logging
from gsd.workflow import WorkflowManager

mcp = FastMCP("gsd")


def _manager(working_directory: Optional[str]) -> WorkflowManager:
    settings = Settings.from_env()
    return WorkflowManager(resolve_root(working_directory, settings), settings)


# ----------------------------------------------------------------------
# Core workflow
# ----------------------------------------------------------------------


@mcp.tool()
def gsd_init(
    project_name: str,
    vision: str,
    goals: List[str],
    users: str,
    success_criteria: List[str],
    phases: List[Dict[str, str]],
    non_goals: Optional[List[str]] = None,
    constraints: Optional[List[str]] = None,
    milestone: Optional[str] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1: Initialize a GSD project.
    Writes a FINALIZED .gsd/SPEC.md, ROADMAP.md (phases given as {name, objective}),
    STATE.md, DECISIONS.md, JOURNAL.md and TODO.md, initializes git if needed and
    records the init checkpoint that rollback of the first phase returns to."""

    return _manager(working_directory).init(
        project_name, vision, goals, users, success_criteria, phases,
        non_goals=non_goals, constraints=constraints, milestone=milestone,
    )


@mcp.tool()
def gsd_plan(
    plans: List[Dict[str, Any]],
    phase: Optional[int] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 2: Create execution plans for a phase.
    Each plan is {name, objective, wave?, context_files?, tasks: [{name, files, action,
    verify, done, type?}], success_criteria}. Omit phase to plan the first Not Started
    phase. Completed phases cannot be re-planned without gsd_rollback."""

    return _manager(working_directory).plan(plans, phase=phase)


@mcp.tool()
def gsd_execute(
    phase: int,
    task_name: str,
    result: str,
    files_changed: Optional[List[str]] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 3: Record a completed task with an atomic commit.
    Once the phase has as many summaries as plans it is marked Complete and a
    phase-complete checkpoint is committed.
    Prerequisites: the phase has plans (gsd_plan)."""

    return _manager(working_directory).execute(phase, task_name, result, files_changed)


@mcp.tool()
def gsd_verify(
    phase: int,
    tests: Optional[List[Dict[str, str]]] = None,
    must_haves: Optional[List[Dict[str, Any]]] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 4: Verify a phase.
    Runs each test {description, command} in the project root (zero exit passes,
    timeout fails) and records optional manual must-haves {description, passed,
    evidence}. Writes VERIFICATION.md and TEST-RESULTS.md; the verdict is PASS only
    if every check passed. Never commits."""

    return _manager(working_directory).verify(phase, tests, must_haves)


@mcp.tool()
def gsd_debug(
    phase: int,
    description: str,
    hypothesis: Optional[str] = None,
    result: Optional[str] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Log a debugging attempt (3-strike rule).
    Each call appends to JOURNAL.md and adds a strike. At 3 strikes debugging is
    blocked until gsd_pause and gsd_resume start a fresh session."""

    return _manager(working_directory).debug(phase, description, hypothesis, result)


@mcp.tool()
def gsd_rollback(
    phase: int,
    confirm: bool = False,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Reset a phase to the checkpoint taken just before it began.
    Without confirm=true this only previews what would be deleted. With it, git is
    hard reset, leftover phase files are removed and the phase (plus any later
    phase) returns to Not Started."""

    return _manager(working_directory).rollback(phase, confirm=confirm)


@mcp.tool()
def gsd_map(
    overview: str,
    components: List[Dict[str, Any]],
    tech_stack: Optional[List[str]] = None,
    project_name: Optional[str] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Record the codebase architecture in .gsd/ARCHITECTURE.md.
    Components are {name, description, files?}. May be used before gsd_init."""

    return _manager(working_directory).map(project_name or "", overview, components, tech_stack)


# ----------------------------------------------------------------------
# Navigation & state
# ----------------------------------------------------------------------


@mcp.tool()
def gsd_progress(working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Show the current position in the roadmap and the recommended next action."""

    return _manager(working_directory).progress()


@mcp.tool()
def gsd_pause(summary: str, working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Save the session state for handoff to a fresh context."""

    return _manager(working_directory).pause(summary)


@mcp.tool()
def gsd_resume(working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Restore the last session. Resuming re-arms the debug breaker."""

    return _manager(working_directory).resume()


@mcp.tool()
def gsd_checkpoints(
    phase: Optional[int] = None,
    category: Optional[str] = None,
    limit: int = 20,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """List lifecycle checkpoints, newest first.
    category is one of init, plan, task, phase-complete, rollback."""

    return _manager(working_directory).checkpoints(phase=phase, category=category, limit=limit)


# ----------------------------------------------------------------------
# Phase management
# ----------------------------------------------------------------------


@mcp.tool()
def gsd_add_phase(name: str, objective: Optional[str] = None,
                  working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Append a Not Started phase to the roadmap, numbered after the last one."""

    return _manager(working_directory).add_phase(name, objective)


@mcp.tool()
def gsd_remove_phase(phase: int, working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Remove a phase from the roadmap. Completed phases are protected."""

    return _manager(working_directory).remove_phase(phase)


@mcp.tool()
def gsd_refine_phase(
    phase: int,
    sub_phases: List[Dict[str, str]],
    reason: Optional[str] = None,
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Split an unplanned phase into two or more sub-phases {name, objective}.
    Later phases are renumbered; the decision is recorded in DECISIONS.md."""

    return _manager(working_directory).refine_phase(phase, sub_phases, reason)


@mcp.tool()
def gsd_discuss_phase(
    phase: int,
    decisions: List[Dict[str, str]],
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Record scope decisions {decision, reason?} for a phase in DECISIONS.md."""

    return _manager(working_directory).discuss_phase(phase, decisions)


@mcp.tool()
def gsd_milestone(
    name: str,
    phases: List[Dict[str, str]],
    working_directory: Optional[str] = None,
) -> Dict[str, Any]:
    """Append a milestone section; its phases continue the roadmap numbering."""

    return _manager(working_directory).milestone(name, phases)


# ----------------------------------------------------------------------
# Utilities
# ----------------------------------------------------------------------


@mcp.tool()
def gsd_add_todo(item: str, priority: str = "medium",
                 working_directory: Optional[str] = None) -> Dict[str, Any]:
    """Quick-capture an idea in TODO.md (priority: high, medium or low)."""

    return _manager(working_directory).add_todo(item, priority)


@mcp.tool()
def gsd_check_todos(working_directory: Optional[str] = None) -> Dict[str, Any]:
    """List pending and completed TODO.md items."""

    return _manager(working_directory).check_todos()


@mcp.tool()
def gsd_help() -> Dict[str, Any]:
    """List every GSD tool, grouped by purpose."""

    return WorkflowManager.help()


# ----------------------------------------------------------------------
# Resources
# ----------------------------------------------------------------------


def _resource_text(kind: str) -> str:
    try:
        manager = _manager(None)
    except ValueError as e:
        return f"No project root detected: {e}"
    workspace = manager.workspace
    if not workspace.is_initialized():
        return "No GSD project found. Run gsd_init first."
    path = workspace.roadmap_path if kind == "roadmap" else workspace.state_path
    return workspace.read(path) or f"{path.name} is missing."


@mcp.resource("gsd://roadmap")
def resource_roadmap() -> str:
    """Resource view of .gsd/ROADMAP.md for the detected project."""

    return _resource_text("roadmap")


@mcp.resource("gsd://state")
def resource_state() -> str:
    """Resource view of .gsd/STATE.md for the detected project."""

    return _resource_text("state")


if __name__ == "__main__":
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)
    mcp.run(transport="stdio")
