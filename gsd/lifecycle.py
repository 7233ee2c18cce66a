"""Phase lifecycle orchestration.

:class:`PhaseLifecycle` drives a phase through
``NotStarted -> Planned -> PartiallyExecuted -> Executed -> Verified`` and
back to ``NotStarted`` through rollback. Only Complete and NotStarted are
stored in the roadmap; the intermediate states are inferred from the plan,
summary and verification artifacts on disk.

Each operation validates against the roadmap and session stores, writes its
artifacts, records a checkpoint commit where the operation changes the
project, and finally updates the session state.
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import (
    DebugExhaustedError,
    ExternalCommandFailedError,
    InvalidRequestError,
    NoPlansForPhaseError,
    NoSafeCheckpointError,
    PhaseNotFoundError,
    ProtectedCompleteError,
    SpecNotFinalizedError,
)
from .gsd_logging import log_operation, log_performance, log_phase_event
from .models import (
    MAX_DEBUG_STRIKES,
    Checkpoint,
    CheckpointCategory,
    Phase,
    PhaseStatus,
    PlanSpec,
    TaskSummary,
    TestOutcome,
    TestSpec,
    VerificationCheck,
    VerificationReport,
)
from .session import DEBUG_EXHAUSTED_BLOCKER_PREFIX
from .templates import (
    render_debug_entry,
    render_plan,
    render_rollback_entry,
    render_summary,
    render_test_results,
    render_verification,
)
from .workspace import Workspace

logger = logging.getLogger("gsd.lifecycle")

VERDICT_RE = re.compile(r"^> \*\*Verdict\*\*:[ \t]*(PASS|FAIL)", re.MULTILINE)
SUMMARY_TASK_RE = re.compile(r"^# Task Summary:[ \t]*(.+?)[ \t]*$", re.MULTILINE)

EXHAUSTED_STATUS = f"🔴 CONTEXT DUMP REQUIRED: {MAX_DEBUG_STRIKES} strikes reached"


class PhaseState(str, Enum):
    """Inferred position of a phase in its lifecycle."""

    NOT_STARTED = "not_started"
    PLANNED = "planned"
    PARTIALLY_EXECUTED = "partially_executed"
    EXECUTED = "executed"
    VERIFIED_PASS = "verified_pass"
    VERIFIED_FAIL = "verified_fail"


@dataclass(slots=True)
class PlanResult:
    phase: Phase
    plan_files: List[Path]
    removed_files: List[Path]
    checkpoint: Checkpoint
    plans: List[PlanSpec]


@dataclass(slots=True)
class ExecuteResult:
    phase: Phase
    summary: TaskSummary
    summary_file: Path
    task_checkpoint: Checkpoint
    plan_count: int
    summary_count: int
    completed: bool = False
    completion_checkpoint: Optional[Checkpoint] = None
    replaced_task: Optional[str] = None


@dataclass(slots=True)
class VerifyResult:
    report: VerificationReport
    outcomes: List[TestOutcome]
    verification_file: Path
    results_file: Path

    @property
    def verdict(self) -> str:
        return self.report.verdict


@dataclass(slots=True)
class DebugResult:
    phase: int
    strikes: int
    exhausted: bool
    description: str


@dataclass(slots=True)
class RollbackPreview:
    phase: Phase
    plan_count: int
    summary_count: int
    file_count: int
    target: Optional[Checkpoint] = None
    reason: Optional[str] = None
    later_phases: List[Phase] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.to_dict(),
            "plan_files": self.plan_count,
            "summary_files": self.summary_count,
            "files": self.file_count,
            "target": self.target.to_dict() if self.target else None,
            "reason": self.reason,
            "later_phases": [phase.number for phase in self.later_phases],
        }


@dataclass(slots=True)
class RollbackResult:
    phase: Phase
    target: Checkpoint
    files_removed: int
    later_reset: List[int]
    checkpoint: Checkpoint


class PhaseLifecycle:
    """Plan, execute, verify, debug and roll back roadmap phases."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.roadmap = workspace.roadmap
        self.session = workspace.session
        self.checkpoints = workspace.checkpoints
        self.settings = workspace.settings

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def phase_state(self, number: int) -> PhaseState:
        phase = self.roadmap.get_phase(number)
        plans = len(self.workspace.plan_files(number))
        summaries = len(self.workspace.summary_files(number))

        if plans == 0:
            return PhaseState.EXECUTED if phase.is_complete else PhaseState.NOT_STARTED
        if summaries == 0:
            return PhaseState.PLANNED
        if summaries < plans and not phase.is_complete:
            return PhaseState.PARTIALLY_EXECUTED

        verification = self.workspace.read(self.workspace.verification_path(number))
        match = VERDICT_RE.search(verification or "")
        if match:
            return PhaseState.VERIFIED_PASS if match.group(1) == "PASS" else PhaseState.VERIFIED_FAIL
        return PhaseState.EXECUTED

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    @log_performance("plan_phase")
    def plan(self, plans: Sequence[PlanSpec], phase: Optional[int] = None) -> PlanResult:
        self.workspace.require_initialized()
        if not self.workspace.is_spec_finalized():
            raise SpecNotFinalizedError()
        if not plans:
            raise InvalidRequestError("At least one plan is required.", next_step="gsd_plan")

        if phase is None:
            phase = self.roadmap.next_unplanned_phase()
            if phase is None:
                raise PhaseNotFoundError(None, self.roadmap.available())
            logger.info("No phase given; planning next unplanned Phase %s", phase)

        target = self.roadmap.get_phase(phase)
        if target.is_complete:
            raise ProtectedCompleteError(phase, target.name, "re-plan")

        with log_operation("write_plans", phase=phase, plans=len(plans)):
            directory = self.workspace.ensure_phase_dir(phase)
            written = []
            for index, plan in enumerate(plans, start=1):
                path = directory / f"{index}-PLAN.md"
                self.workspace.write(path, render_plan(phase, index, plan))
                written.append(path)

            stale = [path for path in self.workspace.plan_files(phase) if path not in written]
            for path in stale:
                path.unlink()
                logger.info("Removed stale plan %s", self.workspace.relative(path))

        self.session.update(phase=phase, task="Planning complete", status="Ready for execution")
        checkpoint = self.checkpoints.commit(CheckpointCategory.PLAN, phase)

        log_phase_event("planned", phase, plans=len(written), checkpoint_id=checkpoint.id)
        return PlanResult(target, written, stale, checkpoint, list(plans))

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    @log_performance("execute_task")
    def execute(self, phase: int, task_name: str, result: str,
                files_changed: Optional[Sequence[str]] = None) -> ExecuteResult:
        self.workspace.require_initialized()
        if not task_name or not task_name.strip():
            raise InvalidRequestError("Task name is required.", next_step="gsd_execute")
        target = self.roadmap.get_phase(phase)

        plan_count = len(self.workspace.plan_files(phase))
        if plan_count == 0:
            raise NoPlansForPhaseError(phase)

        summary = TaskSummary(phase, " ".join(task_name.split()), result or "", list(files_changed or []))
        summary_path = self.workspace.ensure_phase_dir(phase) / summary.file_name
        replaced_task = _summary_task_name(self.workspace.read(summary_path))
        if replaced_task is not None:
            logger.warning("Phase %s: summary for %r replaces the one recorded for %r",
                           phase, summary.task_name, replaced_task)
        summary_file = self.workspace.write(summary_path, render_summary(summary))

        task_checkpoint = self.checkpoints.commit(CheckpointCategory.TASK, phase, summary.task_name)
        self.session.update(phase=phase, task=summary.task_name, status=f"Task completed: {summary.task_name}")
        log_phase_event("task_executed", phase, task=summary.task_name, checkpoint_id=task_checkpoint.id)

        summary_count = len(self.workspace.summary_files(phase))
        outcome = ExecuteResult(target, summary, summary_file, task_checkpoint, plan_count, summary_count)
        outcome.replaced_task = replaced_task

        if summary_count >= plan_count and not target.is_complete:
            outcome.phase = self.roadmap.mark_complete(phase)
            outcome.completion_checkpoint = self.checkpoints.commit(
                CheckpointCategory.PHASE_COMPLETE, phase, target.name
            )
            outcome.completed = True
            self.session.update(phase=phase, task="All tasks complete", status=f"Phase {phase} fully executed")
            log_phase_event("completed", phase, plans=plan_count, summaries=summary_count)

        return outcome

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def run_test(self, test: TestSpec) -> TestOutcome:
        """Run one verification command through the shell in the project root."""
        timeout = self.settings.verify_timeout
        started = time.perf_counter()
        try:
            process = subprocess.run(
                test.command,
                shell=True,
                cwd=self.workspace.root,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Verification command timed out after %ss: %s", timeout, test.command)
            return TestOutcome(
                test.description,
                test.command,
                exit_code=None,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
                duration=time.perf_counter() - started,
            )
        except OSError as e:
            logger.warning("Verification command could not start: %s (%s)", test.command, e)
            return TestOutcome(test.description, test.command, exit_code=None, stderr=str(e),
                               duration=time.perf_counter() - started)

        return TestOutcome(
            test.description,
            test.command,
            exit_code=process.returncode,
            stdout=process.stdout,
            stderr=process.stderr,
            duration=time.perf_counter() - started,
        )

    @log_performance("verify_phase")
    def verify(self, phase: int, tests: Sequence[TestSpec],
               must_haves: Sequence[VerificationCheck] = ()) -> VerifyResult:
        self.workspace.require_initialized()
        self.roadmap.get_phase(phase)
        if not tests and not must_haves:
            raise InvalidRequestError(
                "Verification needs at least one test command or must-have check.", next_step="gsd_verify"
            )

        with log_operation("run_verification", phase=phase, tests=len(tests)):
            outcomes = [self.run_test(test) for test in tests]

        report = VerificationReport(phase, [outcome.to_check() for outcome in outcomes] + list(must_haves))

        self.workspace.ensure_phase_dir(phase)
        verification_file = self.workspace.write(
            self.workspace.verification_path(phase), render_verification(report)
        )
        results_file = self.workspace.write(
            self.workspace.test_results_path(phase),
            render_test_results(phase, outcomes, self.settings.output_cap),
        )

        self.session.update(phase=phase, task="Verification complete",
                            status=f"Phase {phase} verification: {report.verdict}")
        log_phase_event("verified", phase, verdict=report.verdict, passed=report.passed_count, total=report.total)
        return VerifyResult(report, outcomes, verification_file, results_file)

    # ------------------------------------------------------------------
    # Debug
    # ------------------------------------------------------------------

    @log_performance("debug_attempt")
    def debug(self, phase: int, description: str, hypothesis: Optional[str] = None,
              result: Optional[str] = None) -> DebugResult:
        self.workspace.require_initialized()
        if not description or not description.strip():
            raise InvalidRequestError("Describe the issue being debugged.", next_step="gsd_debug")
        self.roadmap.get_phase(phase)

        state = self.session.read()
        if state.debug_strikes >= MAX_DEBUG_STRIKES:
            raise DebugExhaustedError(state.debug_strikes)

        strike = state.debug_strikes + 1
        self.workspace.append_journal(
            render_debug_entry(phase, strike, MAX_DEBUG_STRIKES, description, hypothesis, result)
        )
        strikes = self.session.increment_debug_strike()
        exhausted = strikes >= MAX_DEBUG_STRIKES
        issue = " ".join(description.split())

        if exhausted:
            blockers = list(self.session.read().blockers)
            blockers.append(f"{DEBUG_EXHAUSTED_BLOCKER_PREFIX} {MAX_DEBUG_STRIKES} attempts: {issue}")
            self.session.update(phase=phase, task=f"Debug exhausted: {issue}", status=EXHAUSTED_STATUS,
                                blockers=blockers)
            logger.warning("Debug breaker exhausted on Phase %s after %d strikes", phase, strikes)
        else:
            self.session.update(phase=phase, task=f"Debugging: {issue}",
                                status=f"Debugging (strike {strikes}/{MAX_DEBUG_STRIKES})")

        log_phase_event("debug_attempt", phase, strikes=strikes, exhausted=exhausted)
        return DebugResult(phase, strikes, exhausted, issue)

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def _resolve_target(self, phase: int) -> Checkpoint:
        previous = self.roadmap.previous_phase(phase)
        return self.checkpoints.find_phase_start(phase, previous.number if previous else None)

    def preview_rollback(self, phase: int) -> RollbackPreview:
        """Describe what a confirmed rollback would discard. Mutates nothing."""
        self.workspace.require_initialized()
        target_phase = self.roadmap.get_phase(phase)
        preview = RollbackPreview(
            phase=target_phase,
            plan_count=len(self.workspace.plan_files(phase)),
            summary_count=len(self.workspace.summary_files(phase)),
            file_count=len(self.workspace.phase_files(phase)),
            later_phases=[
                later for later in self.roadmap.later_phases(phase)
                if later.status is not PhaseStatus.NOT_STARTED or self.workspace.plan_files(later.number)
            ],
        )
        try:
            preview.target = self._resolve_target(phase)
        except (NoSafeCheckpointError, ExternalCommandFailedError) as e:
            preview.reason = getattr(e, "reason", e.message)
        return preview

    @log_performance("rollback_phase")
    def rollback(self, phase: int, confirm: bool = False):
        """Reset ``phase`` to the checkpoint taken just before it began.

        Without ``confirm`` this returns a :class:`RollbackPreview`. With it,
        the repository is hard reset to the resolved checkpoint. The roadmap,
        session state, journal, todo list, decision log and the verification
        reports of earlier phases are carried across the reset, then the phase
        and every later phase are set back to Not Started.
        """
        if not confirm:
            return self.preview_rollback(phase)

        self.workspace.require_initialized()
        target_phase = self.roadmap.get_phase(phase)
        target = self._resolve_target(phase)

        # Running logs and the verification records of earlier phases survive the reset.
        carried = {path: self.workspace.read(path) for path in self._carried_paths(phase)}

        with log_operation("rollback_reset", phase=phase, target=target.id):
            self.checkpoints.reset_hard(target.id)

        files_removed = self.workspace.clear_phase_dir(phase)

        for path, content in carried.items():
            if content is not None:
                self.workspace.write(path, content)

        later_reset = []
        self.roadmap.mark_not_started(phase)
        for later in self.roadmap.later_phases(phase):
            if later.status is not PhaseStatus.NOT_STARTED:
                self.roadmap.mark_not_started(later.number)
                later_reset.append(later.number)

        self.session.update(phase=phase, task=f"Phase {phase} rolled back",
                            status=f"Phase {phase} reset to Not Started")
        self.workspace.append_journal(render_rollback_entry(target_phase, target, files_removed, later_reset))
        checkpoint = self.checkpoints.commit(CheckpointCategory.ROLLBACK, phase, target_phase.name)

        log_phase_event("rolled_back", phase, target=target.id, files_removed=files_removed,
                        later_reset=later_reset)
        return RollbackResult(target_phase, target, files_removed, later_reset, checkpoint)

    def _carried_paths(self, phase: int) -> List[Path]:
        ws = self.workspace
        paths = [ws.roadmap_path, ws.state_path, ws.journal_path, ws.todo_path, ws.decisions_path]
        for earlier in self.roadmap.list_phases():
            if earlier.number == phase:
                break
            paths += [ws.verification_path(earlier.number), ws.test_results_path(earlier.number)]
        return paths


def _decode(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def _summary_task_name(text: Optional[str]) -> Optional[str]:
    """Task name recorded in an existing summary, or None when there is none."""
    if text is None:
        return None
    match = SUMMARY_TASK_RE.search(text)
    return match.group(1) if match else ""
