"""Workflow management for GSD.

This module turns lifecycle operations into the result dictionaries the
MCP tools return: a ``success`` flag, a human-readable ``message`` banner,
the suggested next tool, and operation-specific fields. Failures from the
error taxonomy become ``success: False`` results carrying the error code.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import (
    AlreadyInitializedError,
    DebugExhaustedError,
    GsdError,
    InvalidRequestError,
    ProtectedCompleteError,
)
from .gsd_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)
from .lifecycle import PhaseLifecycle, RollbackPreview
from .models import (
    MAX_DEBUG_STRIKES,
    WORKFLOW_TOOLS,
    BreakerState,
    CheckpointCategory,
    PhaseStatus,
    SessionState,
    TestSpec,
    VerificationCheck,
    parse_plan_specs,
    utc_timestamp,
)
from .templates import (
    banner,
    phase_line,
    render_adr,
    render_architecture,
    render_decisions,
    render_journal,
    render_pause_entry,
    render_roadmap,
    render_spec,
    render_todo,
)
from .workspace import TODO_PRIORITY_ICONS, Workspace

logger = logging.getLogger("gsd.workflow")

ADR_HEADING_RE = re.compile(r"^### ADR-(\d{8})-(\d+)", re.MULTILINE)


class WorkflowManager:
    """Manages the complete GSD workflow for a single project."""

    def __init__(self, root: Path | str, settings: Optional[Settings] = None):
        """Initialize workflow manager with the project root."""
        self.workspace = Workspace(root, settings)
        self.lifecycle = PhaseLifecycle(self.workspace)

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------

    def _failure(self, error: GsdError, operation: str, **context: Any) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, "root": str(self.workspace.root), **context})
        result = {
            "success": False,
            "error": error.code,
            "message": f"❌ {error.message}",
            "next_suggested_step": error.next_step,
        }
        if error.next_step:
            result["workflow_tip"] = f"Next: use {error.next_step}"
        return result

    def _next_ordinal(self, date: str) -> int:
        decisions = self.workspace.read(self.workspace.decisions_path) or ""
        same_day = [int(m.group(2)) for m in ADR_HEADING_RE.finditer(decisions) if m.group(1) == date]
        return max(same_day, default=0) + 1

    def _record_adr(self, phase: Optional[int], decision: str, reason: Optional[str] = None) -> str:
        date = utc_timestamp()[:10].replace("-", "")
        entry = render_adr(phase, decision, reason, ordinal=self._next_ordinal(date))
        self.workspace.append_decision(entry)
        return entry.splitlines()[0][4:]

    # ------------------------------------------------------------------
    # Project setup
    # ------------------------------------------------------------------

    @log_performance("init_project")
    def init(
        self,
        project_name: str,
        vision: str,
        goals: List[str],
        users: str,
        success_criteria: List[str],
        phases: List[Dict[str, str]],
        non_goals: Optional[List[str]] = None,
        constraints: Optional[List[str]] = None,
        milestone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create SPEC.md, ROADMAP.md and the supporting files, then commit."""
        try:
            if self.workspace.is_initialized():
                raise AlreadyInitializedError()
            if not project_name or not project_name.strip():
                raise InvalidRequestError("Project name is required.", next_step="gsd_init")
            if not vision or not vision.strip():
                raise InvalidRequestError("A project vision is required.", next_step="gsd_init")
            if not phases or any(not str(p.get("name", "")).strip() for p in phases):
                raise InvalidRequestError("At least one named phase is required.", next_step="gsd_init")

            with log_operation("init_project", project=project_name, phases=len(phases)):
                created_repo = self.workspace.checkpoints.init()

                ws = self.workspace
                ws.write(ws.spec_path, render_spec(project_name.strip(), vision, goals or [], users or "",
                                                   success_criteria or [], non_goals or (), constraints or ()))
                ws.write(ws.roadmap_path, render_roadmap(milestone or "v1.0", success_criteria or [], phases))
                ws.session.write(SessionState(task="Project initialized", status="Ready for planning"))
                ws.write(ws.decisions_path, render_decisions())
                ws.write(ws.journal_path, render_journal())
                ws.write(ws.todo_path, render_todo())
                for number in range(1, len(phases) + 1):
                    ws.ensure_phase_dir(number)

                checkpoint = ws.checkpoints.commit(CheckpointCategory.INIT)

            files_created = [ws.relative(path) for path in (
                ws.spec_path, ws.roadmap_path, ws.state_path, ws.decisions_path, ws.journal_path, ws.todo_path
            )]
            observability_hooks.log_workflow_event(
                "project_initialized", project=project_name, phases=len(phases), checkpoint_id=checkpoint.id
            )

            body = [
                f"Project: {project_name.strip()}",
                f"Phases: {len(phases)}",
                f"Checkpoint: {checkpoint.short_id} ({checkpoint.message})",
                "",
                "Files created:",
                *[f"  • {path}" for path in files_created],
            ]
            if created_repo:
                body.insert(3, "Git repository: created")
            return {
                "success": True,
                "files_created": files_created,
                "checkpoint": checkpoint.to_dict(),
                "phases": [phase.to_dict() for phase in ws.roadmap.list_phases()],
                "next_suggested_step": "gsd_plan",
                "workflow_tip": "Next: create execution plans for Phase 1 with gsd_plan",
                "message": banner("PROJECT INITIALIZED ✓", "\n".join(body),
                                  "Use gsd_plan with phase 1 to create execution plans"),
            }
        except GsdError as e:
            return self._failure(e, "init", project=project_name)

    @log_performance("map_codebase")
    def map(self, project_name: str, overview: str, components: List[Dict[str, Any]],
            tech_stack: Optional[List[str]] = None) -> Dict[str, Any]:
        """Write ARCHITECTURE.md. Allowed before the project is initialized."""
        try:
            if not overview or not overview.strip():
                raise InvalidRequestError("An architecture overview is required.", next_step="gsd_map")
            path = self.workspace.write(
                self.workspace.architecture_path,
                render_architecture(project_name or self.workspace.project_name(), overview,
                                    components or [], tech_stack or []),
            )
            observability_hooks.log_workflow_event("codebase_mapped", components=len(components or []))
            next_step = "gsd_plan" if self.workspace.is_initialized() else "gsd_init"
            return {
                "success": True,
                "architecture_path": str(path),
                "components": len(components or []),
                "next_suggested_step": next_step,
                "message": banner("CODEBASE MAPPED ✓",
                                  f"Architecture written to {self.workspace.relative(path)}\n"
                                  f"Components: {len(components or [])}",
                                  f"Use {next_step} to continue"),
            }
        except GsdError as e:
            return self._failure(e, "map")

    # ------------------------------------------------------------------
    # Core lifecycle
    # ------------------------------------------------------------------

    def plan(self, plans: List[Dict[str, Any]], phase: Optional[int] = None) -> Dict[str, Any]:
        try:
            specs = parse_plan_specs(plans)
            result = self.lifecycle.plan(specs, phase=phase)

            waves: Dict[int, List[str]] = {}
            for index, spec in enumerate(result.plans, start=1):
                waves.setdefault(spec.wave, []).append(f"{result.phase.number}.{index}: {spec.name}")
            wave_lines = [f"Wave {wave}: {', '.join(names)}" for wave, names in sorted(waves.items())]

            body = [f"Phase {result.phase.number}: {result.phase.name}", f"Plans created: {len(result.plan_files)}",
                    "", *wave_lines]
            if result.removed_files:
                body += ["", f"Removed {len(result.removed_files)} stale plan file(s) from an earlier round"]
            return {
                "success": True,
                "phase": result.phase.number,
                "plans_created": [self.workspace.relative(path) for path in result.plan_files],
                "plans_removed": [self.workspace.relative(path) for path in result.removed_files],
                "checkpoint": result.checkpoint.to_dict(),
                "next_suggested_step": "gsd_execute",
                "workflow_tip": f"Next: execute the tasks of Phase {result.phase.number} and record each with gsd_execute",
                "message": banner(f"PHASE {result.phase.number} PLANNED ✓", "\n".join(body),
                                  f"Use gsd_execute with phase {result.phase.number}"),
            }
        except GsdError as e:
            return self._failure(e, "plan", phase=phase)

    def execute(self, phase: int, task_name: str, result: str,
                files_changed: Optional[List[str]] = None) -> Dict[str, Any]:
        try:
            outcome = self.lifecycle.execute(phase, task_name, result, files_changed)
            body = [
                f"Phase {phase}: {outcome.phase.name}",
                f"Task: {outcome.summary.task_name}",
                f"Commit: {outcome.task_checkpoint.short_id} ({outcome.task_checkpoint.message})",
                f"Progress: {outcome.summary_count}/{outcome.plan_count} summaries",
            ]
            if outcome.replaced_task is not None:
                body.append(f"⚠️ Replaced the summary recorded for '{outcome.replaced_task}' (same task key)")
            if outcome.completed:
                body += ["", f"✅ Phase {phase} fully executed",
                         f"Commit: {outcome.completion_checkpoint.short_id} ({outcome.completion_checkpoint.message})"]
                next_step, next_text = "gsd_verify", f"Use gsd_verify with phase {phase}"
            else:
                next_step, next_text = "gsd_execute", f"Continue executing Phase {phase} tasks"
            return {
                "success": True,
                "phase": phase,
                "task": outcome.summary.task_name,
                "summary_file": self.workspace.relative(outcome.summary_file),
                "commit": outcome.task_checkpoint.id,
                "phase_complete": outcome.completed,
                "completion_commit": outcome.completion_checkpoint.id if outcome.completion_checkpoint else None,
                "plans": outcome.plan_count,
                "summaries": outcome.summary_count,
                "replaced_summary": outcome.replaced_task,
                "next_suggested_step": next_step,
                "message": banner("TASK COMPLETE ✓", "\n".join(body), next_text),
            }
        except GsdError as e:
            return self._failure(e, "execute", phase=phase, task=task_name)

    def verify(self, phase: int, tests: Optional[List[Dict[str, Any]]] = None,
               must_haves: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        try:
            test_specs = [TestSpec.from_dict(test) for test in tests or []]
            checks = [VerificationCheck.from_dict(check) for check in must_haves or []]
            result = self.lifecycle.verify(phase, test_specs, checks)
            report = result.report

            lines = [f"  {'✅' if check.passed else '❌'} {check.description}" for check in report.checks]
            body = [f"Phase {phase}", f"Verdict: {report.verdict} ({report.passed_count}/{report.total})", "", *lines]
            if report.verdict == "PASS":
                next_step, next_text = "gsd_plan", "Plan the next phase with gsd_plan"
            else:
                next_step, next_text = "gsd_debug", f"Fix the failing checks; use gsd_debug to log attempts on Phase {phase}"
            return {
                "success": True,
                "phase": phase,
                "verdict": report.verdict,
                "passed": report.passed_count,
                "total": report.total,
                "checks": [check.to_dict() for check in report.checks],
                "verification_file": self.workspace.relative(result.verification_file),
                "results_file": self.workspace.relative(result.results_file),
                "next_suggested_step": next_step,
                "message": banner(f"PHASE {phase} VERIFICATION: {report.verdict}", "\n".join(body), next_text),
            }
        except GsdError as e:
            return self._failure(e, "verify", phase=phase)

    def debug(self, phase: int, description: str, hypothesis: Optional[str] = None,
              result: Optional[str] = None) -> Dict[str, Any]:
        try:
            outcome = self.lifecycle.debug(phase, description, hypothesis, result)
        except GsdError as e:
            failure = self._failure(e, "debug", phase=phase)
            if isinstance(e, DebugExhaustedError):
                failure.update(strikes=e.strikes, exhausted=True)
            return failure

        if outcome.exhausted:
            body = (
                f"Issue: {outcome.description}\n\n"
                f"{MAX_DEBUG_STRIKES} debugging attempts exhausted.\n"
                "State has been saved to STATE.md.\n\n"
                "🔴 ACTION REQUIRED:\n"
                "1. Use gsd_pause to save the current session\n"
                "2. Start a fresh context\n"
                "3. Use gsd_resume to re-arm debugging"
            )
            message = banner(f"DEBUG EXHAUSTED ⛔ ({outcome.strikes}/{MAX_DEBUG_STRIKES} strikes)", body,
                             "Use gsd_pause, then gsd_resume in a fresh session")
            next_step = "gsd_pause"
        else:
            remaining = MAX_DEBUG_STRIKES - outcome.strikes
            body = (
                f"Issue: {outcome.description}\n"
                f"Strike {outcome.strikes}/{MAX_DEBUG_STRIKES} logged to JOURNAL.md\n"
                f"{remaining} attempt(s) remaining before a fresh session is required"
            )
            message = banner(f"DEBUG ATTEMPT {outcome.strikes}/{MAX_DEBUG_STRIKES}", body,
                             f"Apply a fix, then re-run gsd_verify with phase {phase}")
            next_step = "gsd_verify"
        return {
            "success": True,
            "phase": phase,
            "strikes": outcome.strikes,
            "exhausted": outcome.exhausted,
            "next_suggested_step": next_step,
            "message": message,
        }

    def rollback(self, phase: int, confirm: bool = False) -> Dict[str, Any]:
        try:
            outcome = self.lifecycle.rollback(phase, confirm=confirm)
        except GsdError as e:
            return self._failure(e, "rollback", phase=phase, confirm=confirm)

        if isinstance(outcome, RollbackPreview):
            return self._rollback_preview(outcome)

        body = [
            f"Phase {phase}: \"{outcome.phase.name}\"",
            f"Git reset to: {outcome.target.short_id} ({outcome.target.message})",
            f"Leftover files removed: {outcome.files_removed}",
            f"Status: {PhaseStatus.NOT_STARTED.label}",
        ]
        if outcome.later_reset:
            body.append(f"Later phases reset: {', '.join(str(n) for n in outcome.later_reset)}")
        return {
            "success": True,
            "dry_run": False,
            "phase": phase,
            "target": outcome.target.to_dict(),
            "files_removed": outcome.files_removed,
            "later_phases_reset": outcome.later_reset,
            "checkpoint": outcome.checkpoint.to_dict(),
            "next_suggested_step": "gsd_plan",
            "message": banner(f"PHASE {phase} ROLLED BACK ✓", "\n".join(body),
                              f"Re-plan Phase {phase} with gsd_plan"),
        }

    def _rollback_preview(self, preview: RollbackPreview) -> Dict[str, Any]:
        number = preview.phase.number
        lines = [
            f"Phase {number}: \"{preview.phase.name}\"",
            f"Status: {preview.phase.status_text or preview.phase.status.label}",
            "",
            "This will:",
            f"  🗑️ Delete {preview.plan_count} plan file(s)",
            f"  🗑️ Delete {preview.summary_count} summary file(s)",
            f"  🔄 Reset phase status to \"Not Started\"",
        ]
        if preview.target:
            lines.append(f"  📝 Reset git to {preview.target.short_id} ({preview.target.message})")
        else:
            lines.append(f"  ⛔ No safe checkpoint: {preview.reason}")
        if preview.later_phases:
            lines.append("  ⚠️ Also discards work on later phases: "
                         + ", ".join(phase.display() for phase in preview.later_phases))
        lines += ["", "⚠️ WARNING: This action uses git reset and cannot be undone!"]
        next_text = (f"To confirm, call gsd_rollback again with {{\"phase\": {number}, \"confirm\": true}}"
                     if preview.target else "Resolve the checkpoint history before rolling back")
        return {
            "success": True,
            "dry_run": True,
            "phase": number,
            **{key: value for key, value in preview.to_dict().items() if key != "phase"},
            "next_suggested_step": "gsd_rollback",
            "message": banner("ROLLBACK PREVIEW ⚠️", "\n".join(lines), next_text),
        }

    # ------------------------------------------------------------------
    # Navigation and state
    # ------------------------------------------------------------------

    def _next_action(self, state: SessionState, phases: List[Any]) -> str:
        completed = sum(1 for phase in phases if phase.is_complete)
        if state.breaker is BreakerState.EXHAUSTED:
            return "Use gsd_pause, then gsd_resume in a fresh session"
        if state.is_paused:
            return "Use gsd_resume to continue the paused session"
        if phases and completed == len(phases):
            return "🎉 All phases complete!"
        if "Ready for execution" in state.status:
            return f"Use gsd_execute with phase {state.phase}"
        if "fully executed" in state.status:
            return f"Use gsd_verify with phase {state.phase}"
        if "verification: FAIL" in state.status:
            return f"Fix gaps and re-execute phase {state.phase}"
        if state.phase is None or all(phase.status is PhaseStatus.NOT_STARTED for phase in phases):
            first = phases[0].number if phases else 1
            return f"Use gsd_plan with phase {first} to begin"
        upcoming = self.workspace.roadmap.next_unplanned_phase()
        if "verification: PASS" in state.status and upcoming is not None:
            return f"Use gsd_plan with phase {upcoming}"
        return f"Continue: {state.task}" if state.task else "Check STATE.md for details"

    def progress(self) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
        except GsdError as e:
            return self._failure(e, "progress")

        state = self.workspace.session.read()
        phases = self.workspace.roadmap.list_phases()
        completed = sum(1 for phase in phases if phase.is_complete)
        percentage = round(completed / len(phases) * 100) if phases else 0
        next_action = self._next_action(state, phases)

        blockers = "\n  ".join(state.blockers) if state.blockers else "None"
        body = "\n".join([
            f"Project: {self.workspace.project_name()}",
            "",
            "PHASES",
            *[phase_line(phase, state.phase) for phase in phases],
            "",
            f"Progress: {completed}/{len(phases)} ({percentage}%)",
            "",
            "CURRENT TASK",
            f"  {state.task or 'None'}",
            "",
            "STATUS",
            f"  {state.status}",
            "",
            "BLOCKERS",
            f"  {blockers}",
            "",
            f"Debug strikes: {state.debug_strikes}/{MAX_DEBUG_STRIKES} ({state.breaker.value})",
        ])
        return {
            "success": True,
            "project": self.workspace.project_name(),
            "phases": [
                {**phase.to_dict(), "state": self.lifecycle.phase_state(phase.number).value} for phase in phases
            ],
            "completed": completed,
            "total": len(phases),
            "percentage": percentage,
            "state": state.to_dict(),
            "next_action": next_action,
            "message": banner("PROGRESS", body, next_action),
        }

    def pause(self, summary: str) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            if not summary or not summary.strip():
                raise InvalidRequestError("A session summary is required.", next_step="gsd_pause")
            state, snapshot = self.workspace.session.pause(summary)
            self.workspace.append_journal(render_pause_entry(summary, state.phase))
        except GsdError as e:
            return self._failure(e, "pause")

        observability_hooks.log_workflow_event("session_paused", phase=state.phase)
        return {
            "success": True,
            "state": state.to_dict(),
            "snapshot": snapshot,
            "next_suggested_step": "gsd_resume",
            "message": banner("SESSION PAUSED ⏸️",
                              f"Summary: {' '.join(summary.split())}\nState saved to .gsd/STATE.md",
                              "Use gsd_resume in your next session"),
        }

    def resume(self) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
        except GsdError as e:
            return self._failure(e, "resume")

        state, rearmed = self.workspace.session.resume()
        phases = self.workspace.roadmap.list_phases()
        next_action = self._next_action(state, phases)
        spec = self.workspace.read(self.workspace.spec_path) or ""
        roadmap = self.workspace.roadmap.read_text()

        lines = [
            f"Phase: {state.phase if state.phase is not None else 'None'}",
            f"Task: {state.task or 'None'}",
            f"Status: {state.status}",
            "",
            "Context loaded:",
            f"  • SPEC.md ({len(spec)} chars)",
            f"  • ROADMAP.md ({len(roadmap)} chars)",
            "  • STATE.md",
        ]
        if rearmed:
            lines += ["", f"🔁 Debug breaker re-armed (0/{MAX_DEBUG_STRIKES} strikes)"]
        if state.blockers:
            lines += ["", "⚠️ Blockers:", *[f"  - {b}" for b in state.blockers]]

        observability_hooks.log_workflow_event("session_resumed", phase=state.phase, rearmed=rearmed)
        return {
            "success": True,
            "state": state.to_dict(),
            "rearmed": rearmed,
            "next_action": next_action,
            "message": banner("SESSION RESUMED ▶️", "\n".join(lines), next_action),
        }

    def checkpoints(self, phase: Optional[int] = None, category: Optional[str] = None,
                    limit: int = 20) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            try:
                wanted = CheckpointCategory(category) if category else None
            except ValueError:
                raise InvalidRequestError(
                    f"Unknown checkpoint category '{category}'. Expected one of: "
                    + ", ".join(c.value for c in CheckpointCategory),
                    next_step="gsd_checkpoints",
                )
            entries = [c for c in self.workspace.checkpoints.log(wanted, phase, limit=None) if c.category]
            entries = entries[:limit] if limit else entries
        except GsdError as e:
            return self._failure(e, "checkpoints", phase=phase, category=category)

        lines = [f"  {c.short_id}  {c.message}" for c in entries] or ["  No checkpoints found"]
        return {
            "success": True,
            "checkpoints": [c.to_dict() for c in entries],
            "count": len(entries),
            "message": banner("CHECKPOINTS", "\n".join(lines)),
        }

    # ------------------------------------------------------------------
    # Phase management
    # ------------------------------------------------------------------

    def add_phase(self, name: str, objective: Optional[str] = None) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            phase = self.workspace.roadmap.append_phase(name, objective)
            self.workspace.ensure_phase_dir(phase.number)
        except GsdError as e:
            return self._failure(e, "add_phase", name=name)

        observability_hooks.log_workflow_event("phase_added", phase=phase.number, name=phase.name)
        return {
            "success": True,
            "phase": phase.to_dict(),
            "next_suggested_step": "gsd_plan",
            "message": banner(f"PHASE {phase.number} ADDED ✓",
                              f"Phase {phase.number}: {phase.name}\nStatus: {PhaseStatus.NOT_STARTED.label}",
                              f"Use gsd_plan with phase {phase.number} when ready"),
        }

    def remove_phase(self, phase: int) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            removed = self.workspace.roadmap.remove_phase(phase)
        except GsdError as e:
            return self._failure(e, "remove_phase", phase=phase)
        # A later add_phase may reuse the number; it must start without artifacts.
        files_removed = self.workspace.clear_phase_dir(phase, keep_dir=False)

        observability_hooks.log_workflow_event("phase_removed", phase=phase, name=removed.name,
                                               files_removed=files_removed)
        return {
            "success": True,
            "phase": removed.to_dict(),
            "files_removed": files_removed,
            "remaining": [p.to_dict() for p in self.workspace.roadmap.list_phases()],
            "next_suggested_step": "gsd_progress",
            "message": banner(f"PHASE {phase} REMOVED ✓", f"Removed Phase {phase}: {removed.name}",
                              "Use gsd_progress to review the roadmap"),
        }

    def milestone(self, name: str, phases: List[Dict[str, str]]) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            if not name or not name.strip():
                raise InvalidRequestError("Milestone name is required.", next_step="gsd_milestone")
            created = self.workspace.roadmap.append_milestone(name.strip(), phases)
            for phase in created:
                self.workspace.ensure_phase_dir(phase.number)
        except GsdError as e:
            return self._failure(e, "milestone", name=name)

        observability_hooks.log_workflow_event("milestone_added", name=name, phases=[p.number for p in created])
        body = [f"Milestone: {name.strip()}", "", *[f"  ⬜ Phase {p.number}: {p.name}" for p in created]]
        return {
            "success": True,
            "milestone": name.strip(),
            "phases": [p.to_dict() for p in created],
            "next_suggested_step": "gsd_plan",
            "message": banner("MILESTONE ADDED ✓", "\n".join(body),
                              f"Use gsd_plan with phase {created[0].number} when ready"),
        }

    def refine_phase(self, phase: int, sub_phases: List[Dict[str, str]],
                     reason: Optional[str] = None) -> Dict[str, Any]:
        """Split one unplanned phase into consecutive smaller phases."""
        ws = self.workspace
        try:
            ws.require_initialized()
            if not sub_phases or len(sub_phases) < 2:
                raise InvalidRequestError("Refining needs at least two sub-phases.", next_step="gsd_refine_phase")
            if any(not str(sub.get("name", "")).strip() for sub in sub_phases):
                raise InvalidRequestError("Every sub-phase needs a name.", next_step="gsd_refine_phase")

            target = ws.roadmap.get_phase(phase)
            if target.is_complete:
                raise ProtectedCompleteError(phase, target.name, "refine")
            if ws.plan_files(phase):
                raise InvalidRequestError(
                    f"Phase {phase} already has plans. Roll it back before refining.", next_step="gsd_rollback"
                )
            blocking = [
                later.number for later in ws.roadmap.later_phases(phase)
                if later.is_complete or ws.plan_files(later.number)
            ]
            if blocking:
                raise InvalidRequestError(
                    "Cannot renumber phases that already have plans or are complete: "
                    + ", ".join(str(n) for n in blocking),
                    next_step="gsd_progress",
                )

            with log_operation("refine_phase", phase=phase, sub_phases=len(sub_phases)):
                created, renumbered = ws.roadmap.split_phase(phase, sub_phases)
                for new_phase in created:
                    ws.ensure_phase_dir(new_phase.number)
                for _, new_number in renumbered:
                    ws.ensure_phase_dir(new_number)

                names = ", ".join(f"{p.number}: {p.name}" for p in created)
                adr = self._record_adr(phase, f"Refined Phase {phase} ({target.name}) into {names}", reason)
        except GsdError as e:
            return self._failure(e, "refine_phase", phase=phase)

        observability_hooks.log_workflow_event("phase_refined", phase=phase, created=len(created),
                                               renumbered=renumbered)
        body = [f"Phase {phase}: {target.name} split into:", *[f"  ⬜ Phase {p.number}: {p.name}" for p in created]]
        if renumbered:
            body += ["", "Renumbered: " + ", ".join(f"{old} → {new}" for old, new in renumbered)]
        body += ["", f"Decision recorded: {adr}"]
        return {
            "success": True,
            "phases": [p.to_dict() for p in created],
            "renumbered": [{"from": old, "to": new} for old, new in renumbered],
            "decision": adr,
            "next_suggested_step": "gsd_plan",
            "message": banner(f"PHASE {phase} REFINED ✓", "\n".join(body),
                              f"Use gsd_plan with phase {created[0].number}"),
        }

    def discuss_phase(self, phase: int, decisions: List[Dict[str, str]]) -> Dict[str, Any]:
        """Record scope decisions for a phase as ADR entries in DECISIONS.md."""
        try:
            self.workspace.require_initialized()
            target = self.workspace.roadmap.get_phase(phase)
            if not decisions:
                raise InvalidRequestError("At least one decision is required.", next_step="gsd_discuss_phase")
            if any(not str(d.get("decision", "")).strip() for d in decisions):
                raise InvalidRequestError("Every entry needs a decision.", next_step="gsd_discuss_phase")
            recorded = [
                self._record_adr(phase, " ".join(str(d["decision"]).split()), d.get("reason"))
                for d in decisions
            ]
        except GsdError as e:
            return self._failure(e, "discuss_phase", phase=phase)

        observability_hooks.log_workflow_event("phase_discussed", phase=phase, decisions=len(recorded))
        return {
            "success": True,
            "phase": phase,
            "decisions": recorded,
            "next_suggested_step": "gsd_plan",
            "message": banner(f"PHASE {phase} DISCUSSED ✓",
                              f"Phase {phase}: {target.name}\nDecisions recorded: {len(recorded)}\n"
                              + "\n".join(f"  • {adr}" for adr in recorded),
                              f"Use gsd_plan with phase {phase}"),
        }

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def add_todo(self, item: str, priority: str = "medium") -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
            if not item or not item.strip():
                raise InvalidRequestError("Todo item cannot be empty.", next_step="gsd_add_todo")
            if priority not in TODO_PRIORITY_ICONS:
                raise InvalidRequestError(
                    f"Priority must be one of: {', '.join(TODO_PRIORITY_ICONS)}", next_step="gsd_add_todo"
                )
            line = self.workspace.add_todo(item, priority)
        except GsdError as e:
            return self._failure(e, "add_todo")

        return {
            "success": True,
            "item": line,
            "message": banner("TODO ADDED ✓", line[6:]),
        }

    def check_todos(self) -> Dict[str, Any]:
        try:
            self.workspace.require_initialized()
        except GsdError as e:
            return self._failure(e, "check_todos")

        pending, completed = self.workspace.read_todos()
        body = "\n".join(pending) if pending else "No pending items"
        return {
            "success": True,
            "pending": pending,
            "completed": completed,
            "message": banner(f"TODOS ({len(pending)} pending)", body),
        }

    @staticmethod
    def help() -> Dict[str, Any]:
        groups: Dict[str, List[str]] = {}
        for tool in WORKFLOW_TOOLS:
            groups.setdefault(tool.group, []).append(f"  {tool.name:<18}→ {tool.description}")
        body = "\n\n".join(f"{group.upper()}\n" + "\n".join(lines) for group, lines in groups.items())
        return {
            "success": True,
            "tools": [{"name": t.name, "group": t.group, "description": t.description} for t in WORKFLOW_TOOLS],
            "message": banner("HELP", body, "Start with gsd_init, or gsd_progress on an existing project"),
        }
