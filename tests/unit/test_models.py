"""Unit tests for GSD data models.

This module tests the typed records used by the stores and the
lifecycle, including validation of transport requests.
"""

import pytest

from gsd.errors import InvalidRequestError
from gsd.models import (
    MAX_DEBUG_STRIKES,
    BreakerState,
    Checkpoint,
    CheckpointCategory,
    Phase,
    PhaseStatus,
    PlanSpec,
    SessionState,
    TaskSpec,
    TaskSummary,
    TestOutcome,
    TestSpec,
    VerificationCheck,
    VerificationReport,
    WORKFLOW_TOOLS,
    parse_plan_specs,
    slugify,
    utc_timestamp,
)


class TestHelpers:
    """Test cases for module-level helpers."""

    def test_slugify(self):
        assert slugify("Wire storage adapter") == "wire-storage-adapter"
        assert slugify("  API: v2 / Auth!! ") == "api-v2-auth"

    def test_slugify_falls_back_to_default(self):
        assert slugify("!!!") == "task"
        assert slugify("", default="item") == "item"

    def test_utc_timestamp_format(self):
        stamp = utc_timestamp()
        assert stamp.endswith("Z")
        assert "T" in stamp


class TestPhaseStatus:
    """Test cases for the closed status enum."""

    def test_labels_and_icons(self):
        assert PhaseStatus.NOT_STARTED.label == "⬜ Not Started"
        assert PhaseStatus.IN_PROGRESS.label == "🔄 In Progress"
        assert PhaseStatus.COMPLETE.label == "✅ Complete"
        assert PhaseStatus.COMPLETE.icon == "✅"

    def test_phase_display_and_dict(self):
        phase = Phase(2, "Storage layer", PhaseStatus.COMPLETE, "Persist notes")
        assert phase.is_complete
        assert phase.display() == "2 (Storage layer)"
        assert phase.to_dict() == {
            "number": 2,
            "name": "Storage layer",
            "status": "complete",
            "objective": "Persist notes",
        }


class TestPlanSpecs:
    """Test cases for plan request parsing and validation."""

    def _raw_plan(self, **overrides):
        raw = {
            "name": "Storage",
            "objective": "Persist notes",
            "tasks": [{"name": "Write adapter", "files": ["store.py"], "action": "Implement", "verify": "pytest", "done": "Green"}],
            "success_criteria": ["Notes saved"],
        }
        raw.update(overrides)
        return raw

    def test_from_dict_defaults(self):
        plan = PlanSpec.from_dict(self._raw_plan())
        assert plan.wave == 1
        assert plan.context_files == [".gsd/SPEC.md", ".gsd/ARCHITECTURE.md"]
        assert plan.tasks[0].type == "auto"
        assert plan.validate() == []

    def test_custom_context_files(self):
        plan = PlanSpec.from_dict(self._raw_plan(context_files=["docs/api.md"]))
        assert plan.context_files == ["docs/api.md"]

    def test_validation_issues(self):
        plan = PlanSpec.from_dict(self._raw_plan(objective="", tasks=[]))
        issues = plan.validate()
        assert any("objective is required" in issue for issue in issues)
        assert any("at least one task" in issue for issue in issues)

    def test_invalid_task_type(self):
        task = TaskSpec.from_dict({"name": "Check", "action": "Look", "type": "manual"})
        assert any("invalid type" in issue for issue in task.validate())

    def test_parse_plan_specs_rejects_empty(self):
        with pytest.raises(InvalidRequestError):
            parse_plan_specs([])

    def test_parse_plan_specs_rejects_invalid(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            parse_plan_specs([self._raw_plan(name="")])
        assert exc_info.value.code == "InvalidRequest"
        assert "Plan name is required" in exc_info.value.message

    def test_parse_plan_specs(self):
        plans = parse_plan_specs([self._raw_plan(), self._raw_plan(name="Search", wave=2)])
        assert [plan.name for plan in plans] == ["Storage", "Search"]
        assert plans[1].wave == 2


class TestTaskSummary:
    """Test cases for execution summaries."""

    def test_file_name_uses_slug(self):
        summary = TaskSummary(1, "Wire Storage Adapter", "Done")
        assert summary.key == "wire-storage-adapter"
        assert summary.file_name == "wire-storage-adapter-SUMMARY.md"


class TestVerification:
    """Test cases for verification records."""

    def test_test_spec_requires_command(self):
        with pytest.raises(InvalidRequestError):
            TestSpec.from_dict({"description": "build"})

    def test_outcome_passed(self):
        assert TestOutcome("build", "exit 0", exit_code=0).passed
        assert not TestOutcome("lint", "exit 1", exit_code=1).passed
        assert not TestOutcome("slow", "sleep 9", exit_code=None, timed_out=True).passed

    def test_outcome_evidence(self):
        outcome = TestOutcome("lint", "exit 1", exit_code=1)
        assert outcome.evidence == "`exit 1` exited with status 1"
        check = outcome.to_check()
        assert check.description == "lint"
        assert check.passed is False

    def test_timed_out_evidence(self):
        outcome = TestOutcome("slow", "sleep 9", exit_code=None, timed_out=True, duration=1.0)
        assert "timed out" in outcome.evidence

    def test_report_verdict(self):
        report = VerificationReport(3, [VerificationCheck("build", True), VerificationCheck("lint", False)])
        assert report.verdict == "FAIL"
        assert report.passed_count == 1
        assert report.total == 2
        assert [check.description for check in report.failures()] == ["lint"]

        passing = VerificationReport(3, [VerificationCheck("build", True)])
        assert passing.verdict == "PASS"

    def test_must_have_from_dict(self):
        check = VerificationCheck.from_dict({"description": "Docs updated", "passed": True, "evidence": "README"})
        assert check.passed is True
        assert check.to_dict()["evidence"] == "README"

        with pytest.raises(InvalidRequestError):
            VerificationCheck.from_dict({"passed": True})


class TestSessionState:
    """Test cases for the session record."""

    def test_defaults(self):
        state = SessionState()
        assert state.phase is None
        assert state.status == "Not initialized"
        assert state.breaker is BreakerState.ARMED

    def test_breaker_exhausted_at_cap(self):
        state = SessionState(debug_strikes=MAX_DEBUG_STRIKES)
        assert state.breaker is BreakerState.EXHAUSTED
        assert state.to_dict()["breaker"] == "exhausted"

    def test_paused(self):
        assert SessionState(status="Paused: lunch").is_paused
        assert not SessionState(status="Ready for execution").is_paused

    def test_logical_fields_ignore_timestamp(self):
        first = SessionState(phase=1, last_updated="2024-01-01T00:00:00Z")
        second = SessionState(phase=1, last_updated="2025-01-01T00:00:00Z")
        assert first.logical_fields() == second.logical_fields()


class TestCheckpoint:
    """Test cases for checkpoint records."""

    def test_round_trip_dict(self):
        checkpoint = Checkpoint("a" * 40, "plan(phase-2): create execution plans", CheckpointCategory.PLAN, 2,
                                "create execution plans", sequence=4, created_at="2024-01-01T00:00:00Z")
        data = checkpoint.to_dict()
        assert data["short_id"] == "aaaaaaa"
        assert data["category"] == "plan"
        assert Checkpoint.from_dict(data) == checkpoint

    def test_category_scope(self):
        assert not CheckpointCategory.INIT.phase_scoped
        assert CheckpointCategory.PHASE_COMPLETE.phase_scoped
        assert CheckpointCategory.PHASE_COMPLETE.value == "phase-complete"


class TestWorkflowTools:
    """Test cases for the tool catalogue."""

    def test_catalogue_is_unique(self):
        names = [tool.name for tool in WORKFLOW_TOOLS]
        assert len(names) == len(set(names))
        for expected in ("gsd_init", "gsd_plan", "gsd_execute", "gsd_verify", "gsd_debug", "gsd_rollback"):
            assert expected in names
