"""Unit tests for STATE.md persistence and the debug breaker."""

import itertools

import pytest

from gsd.models import BreakerState, SessionState
from gsd.session import SessionStateStore, parse_state, render_state

FIXED_CLOCK = "2024-05-01T12:00:00Z"


@pytest.fixture
def store(tmp_path):
    return SessionStateStore(tmp_path / ".gsd" / "STATE.md", clock=lambda: FIXED_CLOCK)


class TestRendering:
    """Test cases for the STATE.md grammar."""

    def test_render_sections(self):
        text = render_state(SessionState(phase=2, task="Write adapter", status="Ready for execution",
                                         blockers=["Waiting on API key"], debug_strikes=1,
                                         last_updated=FIXED_CLOCK))
        assert text.startswith("# STATE.md — Project Memory\n")
        assert f"> **Last Updated**: {FIXED_CLOCK}" in text
        assert "- **Phase**: 2" in text
        assert "- **Task**: Write adapter" in text
        assert "- **Status**: Ready for execution" in text
        assert "- **Debug Strikes**: 1" in text
        assert "## Blockers\n- Waiting on API key\n" in text
        assert text.rstrip().endswith("## Last Session Summary\nReady for execution")

    def test_empty_blockers_use_sentinel(self):
        text = render_state(SessionState())
        assert "## Blockers\n- None\n" in text
        assert "- **Phase**: None" in text

    @pytest.mark.parametrize("blockers_section", ["- None\n", "None\n", "\n"])
    def test_sentinel_is_not_a_blocker(self, blockers_section):
        text = render_state(SessionState()).replace("## Blockers\n- None\n", "## Blockers\n" + blockers_section)
        assert parse_state(text).blockers == []

    def test_parse_ignores_prose(self):
        text = render_state(SessionState(phase=3, status="Phase 3 verification: PASS", last_updated=FIXED_CLOCK))
        text += "\n## Notes\nHand-written commentary.\n- not a blocker\n"
        state = parse_state(text)
        assert state.phase == 3
        assert state.blockers == []
        assert state.status == "Phase 3 verification: PASS"

    def test_parse_clamps_strikes(self):
        text = render_state(SessionState(debug_strikes=3)).replace("**Debug Strikes**: 3", "**Debug Strikes**: 12")
        assert parse_state(text).debug_strikes == 3


class TestStore:
    """Test cases for read-merge-write access."""

    def test_missing_file_reads_default(self, store):
        state = store.read()
        assert not store.exists()
        assert state.status == "Not initialized"
        assert state.last_updated == FIXED_CLOCK

    def test_round_trip(self, store):
        store.update(phase=2, task="Write adapter", status="Task completed: Write adapter",
                     blockers=["Waiting on API key", "Flaky CI"], debug_strikes=2)
        state = store.read()
        assert state.phase == 2
        assert state.task == "Write adapter"
        assert state.status == "Task completed: Write adapter"
        assert state.blockers == ["Waiting on API key", "Flaky CI"]
        assert state.debug_strikes == 2
        assert state.last_updated == FIXED_CLOCK

    def test_update_merges(self, store):
        store.update(phase=1, task="Planning complete", status="Ready for execution")
        store.update(status="Phase 1 fully executed")
        state = store.read()
        assert state.phase == 1
        assert state.task == "Planning complete"
        assert state.status == "Phase 1 fully executed"

    def test_empty_update_is_idempotent(self, store):
        store.update(phase=1, task="Build", status="Working", blockers=["Waiting"])
        before = store.read()
        store.update()
        assert store.read().logical_fields() == before.logical_fields()

    def test_update_stamps_timestamp(self, tmp_path):
        ticks = itertools.count(1)
        store = SessionStateStore(tmp_path / "STATE.md", clock=lambda: f"tick-{next(ticks)}")
        store.update(status="one")
        first = store.read().last_updated
        store.update(status="two")
        second = store.read().last_updated
        assert first != second
        assert second.startswith("tick-")

    def test_multiline_values_are_flattened(self, store):
        store.update(task="line one\nline two", blockers=["first\nsecond", "  "])
        state = store.read()
        assert state.task == "line one line two"
        assert state.blockers == ["first second"]

    def test_unknown_field_rejected(self, store):
        with pytest.raises(TypeError):
            store.update(colour="blue")
        assert not store.exists()


class TestDebugBreaker:
    """Test cases for strike counting."""

    def test_increment_saturates(self, store):
        counts = [store.increment_debug_strike() for _ in range(5)]
        assert counts == [1, 2, 3, 3, 3]
        assert store.is_debug_exhausted()
        assert store.breaker_state() is BreakerState.EXHAUSTED

    def test_update_clamps_strikes(self, store):
        store.update(debug_strikes=9)
        assert store.read().debug_strikes == 3
        store.update(debug_strikes=-2)
        assert store.read().debug_strikes == 0

    def test_reset_clears_exhaustion_blockers(self, store):
        store.update(debug_strikes=3, blockers=["Debug exhausted after 3 attempts: crash", "Waiting on API key"])
        store.reset_debug_strikes()
        state = store.read()
        assert state.debug_strikes == 0
        assert state.blockers == ["Waiting on API key"]
        assert state.breaker is BreakerState.ARMED


class TestPauseResume:
    """Test cases for the session handoff."""

    def test_pause_sets_status_and_snapshot(self, store):
        store.update(phase=2, task="Write adapter", status="Ready for execution")
        state, snapshot = store.pause("Stopped after adapter")
        assert state.status == "Paused: Stopped after adapter"
        assert state.is_paused
        assert "Stopped after adapter" in snapshot
        assert "- **Phase**: 2" in snapshot
        assert store.read().status == "Paused: Stopped after adapter"

    def test_resume_strips_pause_prefix(self, store):
        store.pause("Lunch")
        state, rearmed = store.resume()
        assert state.status == "Lunch"
        assert not state.is_paused
        assert rearmed is False

    def test_resume_rearms_exhausted_breaker(self, store):
        store.update(debug_strikes=3, status="Paused: out of ideas",
                     blockers=["Debug exhausted after 3 attempts: crash"])
        state, rearmed = store.resume()
        assert rearmed is True
        assert state.debug_strikes == 0
        assert state.blockers == []
        assert state.breaker is BreakerState.ARMED

    def test_resume_clears_partial_strikes(self, store):
        store.update(debug_strikes=1)
        state, rearmed = store.resume()
        assert rearmed is False
        assert state.debug_strikes == 0

    def test_resume_without_pause_keeps_status(self, store):
        store.update(status="Ready for execution")
        state, _ = store.resume()
        assert state.status == "Ready for execution"
