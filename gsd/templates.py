"""Markdown renderers for .gsd artifacts and tool result banners."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from .models import Checkpoint, Phase, PhaseStatus, PlanSpec, TaskSummary, TestOutcome, VerificationReport, utc_timestamp

RULE = "━" * 40
THIN_RULE = "─" * 39

SPEC_FINALIZED_MARKER = "FINALIZED"


def _bullets(items: Iterable[str], empty: str = "None") -> str:
    lines = [f"- {item}" for item in items]
    return "\n".join(lines) if lines else f"- {empty}"


def banner(title: str, body: str, next_step: Optional[str] = None) -> str:
    """Frame a tool result the way every GSD command reports back."""
    parts = [RULE, f" GSD ► {title}", RULE, "", body.strip("\n")]
    if next_step:
        parts += ["", THIN_RULE, f"▶ NEXT: {next_step}", THIN_RULE]
    return "\n".join(parts)


def render_spec(
    project_name: str,
    vision: str,
    goals: Sequence[str],
    users: str,
    success_criteria: Sequence[str],
    non_goals: Sequence[str] = (),
    constraints: Sequence[str] = (),
) -> str:
    return f"""# SPEC.md — {project_name}

> **Status**: {SPEC_FINALIZED_MARKER}
> **Created**: {utc_timestamp()}

## Vision
{vision.strip()}

## Goals
{_bullets(goals)}

## Non-Goals
{_bullets(non_goals, "Not defined yet")}

## Users
{users.strip()}

## Constraints
{_bullets(constraints, "None specified")}

## Success Criteria
{_bullets(success_criteria)}
"""


def render_phase_block(number: int, name: str, objective: Optional[str],
                       status: PhaseStatus = PhaseStatus.NOT_STARTED) -> str:
    lines = [f"### Phase {number}: {name.strip()}", f"**Status**: {status.label}"]
    if objective:
        lines.append(f"**Objective**: {objective.strip()}")
    return "\n".join(lines) + "\n"


def render_roadmap(milestone: str, must_haves: Sequence[str], phases: Sequence[Dict[str, str]]) -> str:
    blocks = "\n".join(
        render_phase_block(index, phase["name"], phase.get("objective"))
        for index, phase in enumerate(phases, start=1)
    )
    return f"""# ROADMAP.md

> **Current Milestone**: {milestone}

## Must-Haves
{_bullets(must_haves)}

## Phases

{blocks}"""


def render_decisions() -> str:
    return "# DECISIONS.md — Architecture Decision Records\n"


def render_adr(phase: Optional[int], decision: str, reason: Optional[str] = None, ordinal: int = 1) -> str:
    stamp = utc_timestamp()
    lines = [
        f"### ADR-{stamp[:10].replace('-', '')}-{ordinal}",
        f"**Date**: {stamp[:10]}",
    ]
    if phase is not None:
        lines.append(f"**Phase**: {phase}")
    lines.append(f"**Decision**: {decision}")
    if reason:
        lines.append(f"**Reason**: {reason}")
    return "\n".join(lines) + "\n"


def render_journal() -> str:
    return "# JOURNAL.md — Session Log\n"


def render_todo() -> str:
    return "# TODO.md\n\n## Pending\n\n## Completed\n"


def render_plan(phase: int, index: int, plan: PlanSpec) -> str:
    tasks = []
    for task in plan.tasks:
        files = ", ".join(task.files) if task.files else "(none declared)"
        tasks.append(
            f"""<task type="{task.type}">
  <name>{task.name}</name>
  <files>{files}</files>
  <action>{task.action.strip()}</action>
  <verify>{task.verify.strip()}</verify>
  <done>{task.done.strip()}</done>
</task>"""
        )
    tasks_block = "\n\n".join(tasks)
    return f"""---
phase: {phase}
plan: {index}
wave: {plan.wave}
---

# Plan {phase}.{index}: {plan.name}

## Objective
{plan.objective}

## Context
{_bullets(plan.context_files)}

## Tasks

{tasks_block}

## Success Criteria
{_bullets(plan.success_criteria)}
"""


def render_summary(summary: TaskSummary) -> str:
    return f"""# Task Summary: {summary.task_name}

> **Phase**: {summary.phase}
> **Completed**: {summary.completed_at}

## Result
{summary.result.strip()}

## Files Changed
{_bullets(summary.files_changed, "Not specified")}
"""


def render_verification(report: VerificationReport) -> str:
    rows = "\n".join(
        f"| {'✅' if check.passed else '❌'} | {check.description} | {check.evidence or '-'} |"
        for check in report.checks
    )
    return f"""# Phase {report.phase} Verification

> **Verified**: {report.created_at}
> **Verdict**: {report.verdict}
> **Passed**: {report.passed_count}/{report.total}

| Result | Must-Have | Evidence |
|--------|-----------|----------|
{rows}
"""


def _fence(text: str) -> str:
    return "```\n" + (text.rstrip("\n") or "(empty)") + "\n```"


def render_test_results(phase: int, outcomes: List[TestOutcome], output_cap: int) -> str:
    sections = [f"# Phase {phase} Test Results\n\n> **Run**: {utc_timestamp()}\n"]
    for number, outcome in enumerate(outcomes, start=1):
        verdict = "PASS" if outcome.passed else "FAIL"
        sections.append(
            f"""## {number}. {outcome.description} — {verdict}

- **Command**: `{outcome.command}`
- **Exit Code**: {outcome.exit_code if outcome.exit_code is not None else "n/a"}
- **Timed Out**: {"yes" if outcome.timed_out else "no"}
- **Duration**: {outcome.duration:.2f}s

### stdout
{_fence(truncate(outcome.stdout, output_cap))}

### stderr
{_fence(truncate(outcome.stderr, output_cap))}
"""
        )
    return "\n".join(sections)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n… [truncated {len(text) - limit} characters]"


def render_architecture(project_name: str, overview: str, components: Sequence[Dict[str, object]],
                        tech_stack: Sequence[str]) -> str:
    parts = [f"# ARCHITECTURE.md — {project_name}", "", f"> **Mapped**: {utc_timestamp()}", "",
             "## Overview", overview.strip(), "", "## Tech Stack", _bullets(tech_stack), "", "## Components"]
    for component in components:
        parts += ["", f"### {component.get('name', 'Component')}", str(component.get("description", "")).strip()]
        files = component.get("files") or []
        if files:
            parts += ["", "Files:", _bullets(files)]
    return "\n".join(parts) + "\n"


def phase_line(phase: Phase, current: Optional[int] = None) -> str:
    marker = " ← CURRENT" if phase.number == current else ""
    return f"  {phase.status.icon} Phase {phase.number}: {phase.name}{marker}"


def render_debug_entry(phase: int, strike: int, cap: int, description: str,
                       hypothesis: Optional[str] = None, result: Optional[str] = None) -> str:
    lines = [
        f"### Debug Attempt (Strike {strike}/{cap})",
        f"**Date**: {utc_timestamp()}",
        f"**Phase**: {phase}",
        f"**Issue**: {description.strip()}",
    ]
    if hypothesis:
        lines.append(f"**Hypothesis**: {hypothesis.strip()}")
    lines.append(f"**Result**: {result.strip() if result else 'Pending'}")
    return "\n".join(lines) + "\n"


def render_rollback_entry(phase: Phase, target: Checkpoint, files_removed: int,
                          later_reset: Sequence[int] = ()) -> str:
    lines = [
        f"### Phase {phase.number} Rolled Back ({utc_timestamp()[:10]})",
        f"- Phase \"{phase.name}\" was rolled back to its pre-planning state",
        f"- Git reset to: {target.short_id} ({target.message})",
        f"- {files_removed} leftover file(s) cleaned up",
    ]
    if later_reset:
        lines.append(f"- Later phases reset to Not Started: {', '.join(str(n) for n in later_reset)}")
    return "\n".join(lines) + "\n"


def render_pause_entry(summary: str, state_phase: Optional[int]) -> str:
    return f"""### Session Paused ({utc_timestamp()})
**Phase**: {state_phase if state_phase is not None else "None"}
**Summary**: {summary.strip()}
"""
