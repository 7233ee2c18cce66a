"""Unit tests for git-backed checkpoints."""

import json

import pytest

from gsd.checkpoints import (
    INIT_MESSAGE,
    CheckpointAdapter,
    CheckpointLedger,
    format_message,
    parse_message,
)
from gsd.config import Settings
from gsd.errors import ExternalCommandFailedError, NoSafeCheckpointError
from gsd.models import Checkpoint, CheckpointCategory


class TestMessages:
    """Test cases for the commit subject grammar."""

    def test_format_init(self):
        assert format_message(CheckpointCategory.INIT) == INIT_MESSAGE == "Initialize GSD project"

    def test_format_phase_scoped(self):
        assert format_message(CheckpointCategory.PLAN, 2) == "plan(phase-2): create execution plans"
        assert format_message(CheckpointCategory.TASK, 2, "Wire  storage\nadapter") == "task(phase-2): Wire storage adapter"
        assert format_message(CheckpointCategory.PHASE_COMPLETE, 11, "Search") == "phase-complete(phase-11): Search"

    def test_format_requires_phase(self):
        with pytest.raises(ValueError):
            format_message(CheckpointCategory.TASK, None, "orphan")

    def test_parse_round_trip(self):
        for category, phase, label in [
            (CheckpointCategory.PLAN, 3, "create execution plans"),
            (CheckpointCategory.TASK, 1, "Write adapter"),
            (CheckpointCategory.PHASE_COMPLETE, 11, "Search"),
            (CheckpointCategory.ROLLBACK, 4, "Export"),
        ]:
            assert parse_message(format_message(category, phase, label)) == (category, phase, label)
        assert parse_message(INIT_MESSAGE) == (CheckpointCategory.INIT, None, "")

    def test_phase_numbers_do_not_collide(self):
        assert parse_message("task(phase-11): Index")[1] == 11
        assert parse_message("task(phase-1): Index")[1] == 1

    def test_parse_legacy_subjects(self):
        assert parse_message("chore: initialize GSD project") == (CheckpointCategory.INIT, None, "")
        assert parse_message("docs(phase-2): create execution plans")[:2] == (CheckpointCategory.PLAN, 2)
        assert parse_message("docs(phase-2): complete Storage layer") == (
            CheckpointCategory.PHASE_COMPLETE, 2, "Storage layer")
        assert parse_message("feat(phase-3): Build index") == (CheckpointCategory.TASK, 3, "Build index")

    def test_parse_unrelated_subject(self):
        assert parse_message("Fix typo in README") == (None, None, "")


class TestLedger:
    """Test cases for the append-only ledger."""

    def test_append_assigns_sequence(self, tmp_path):
        ledger = CheckpointLedger(tmp_path / "ledger.jsonl")
        first = ledger.append(Checkpoint("a" * 40, INIT_MESSAGE, CheckpointCategory.INIT))
        second = ledger.append(Checkpoint("b" * 40, "plan(phase-1): create execution plans",
                                          CheckpointCategory.PLAN, 1))
        assert (first.sequence, second.sequence) == (1, 2)
        assert [entry.id[0] for entry in ledger.entries()] == ["a", "b"]

    def test_skips_unreadable_lines(self, tmp_path):
        path = tmp_path / "ledger.jsonl"
        good = Checkpoint("c" * 40, INIT_MESSAGE, CheckpointCategory.INIT, sequence=1).to_dict()
        path.write_text("not json\n" + json.dumps(good) + "\n\n" + json.dumps({"category": "plan"}) + "\n")
        entries = CheckpointLedger(path).entries()
        assert len(entries) == 1
        assert entries[0].category is CheckpointCategory.INIT

    def test_missing_ledger_is_empty(self, tmp_path):
        assert CheckpointLedger(tmp_path / "absent.jsonl").entries() == []


@pytest.fixture
def adapter(tmp_path, isolated_git):
    root = tmp_path / "repo"
    root.mkdir()
    return CheckpointAdapter(root, Settings())


def _touch(adapter, name, content="x"):
    path = adapter.root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class TestRepository:
    """Test cases for repository plumbing."""

    def test_init_is_idempotent(self, adapter):
        assert adapter.init() is True
        assert adapter.is_repo()
        assert adapter.init() is False
        assert adapter.head() is None

    def test_commit_without_identity_uses_fallback(self, adapter):
        adapter.init()
        _touch(adapter, "README.md")
        checkpoint = adapter.commit(CheckpointCategory.INIT)
        assert len(checkpoint.id) == 40
        assert checkpoint.sequence == 1
        author = adapter._git(["log", "-1", "--format=%an <%ae>"]).stdout.strip()
        assert author == "GSD <gsd@localhost>"

    def test_commit_stages_everything(self, adapter):
        adapter.init()
        _touch(adapter, "src/app.py")
        _touch(adapter, ".gsd/STATE.md")
        adapter.commit(CheckpointCategory.INIT)
        assert adapter.status() == ""
        tracked = adapter._git(["ls-files"]).stdout.split()
        assert sorted(tracked) == [".gsd/STATE.md", "src/app.py"]

    def test_commit_with_nothing_to_stage(self, adapter):
        adapter.init()
        adapter.commit(CheckpointCategory.INIT)
        checkpoint = adapter.commit(CheckpointCategory.PLAN, 1)
        assert checkpoint.message == "plan(phase-1): create execution plans"

    def test_ledger_lives_in_git_dir(self, adapter):
        adapter.init()
        adapter.commit(CheckpointCategory.INIT)
        path = adapter.ledger.path
        assert path.name == "gsd-checkpoints.jsonl"
        assert path.parent.name == ".git"
        assert path.exists()
        assert "gsd-checkpoints" not in adapter._git(["ls-files"]).stdout

    def test_git_failure_raises(self, adapter):
        adapter.init()
        with pytest.raises(ExternalCommandFailedError) as exc_info:
            adapter.reset_hard("0" * 40)
        assert exc_info.value.code == "ExternalCommandFailed"
        assert exc_info.value.returncode != 0


class TestLog:
    """Test cases for history queries."""

    @pytest.fixture
    def history(self, adapter):
        adapter.init()
        _touch(adapter, "README.md")
        adapter.commit(CheckpointCategory.INIT)
        adapter.commit(CheckpointCategory.PLAN, 1)
        adapter.commit(CheckpointCategory.TASK, 1, "Write adapter")
        adapter.commit(CheckpointCategory.TASK, 11, "Index")
        adapter._git(["-c", "user.name=Dev", "-c", "user.email=dev@example.com",
                      "commit", "-q", "--allow-empty", "-m", "Unrelated change"])
        return adapter

    def test_newest_first(self, history):
        messages = [checkpoint.message for checkpoint in history.log()]
        assert messages[0] == "Unrelated change"
        assert messages[-1] == INIT_MESSAGE
        assert history.log()[0].category is None

    def test_filter_by_category_and_phase(self, history):
        tasks = history.log(category=CheckpointCategory.TASK)
        assert [c.phase for c in tasks] == [11, 1]
        phase_one = history.log(phase=1)
        assert [c.category for c in phase_one] == [CheckpointCategory.TASK, CheckpointCategory.PLAN]

    def test_limit(self, history):
        assert len(history.log(limit=2)) == 2

    def test_empty_repository(self, adapter):
        adapter.init()
        assert adapter.log() == []


class TestReset:
    """Test cases for hard reset."""

    def test_reset_discards_later_changes(self, adapter):
        adapter.init()
        _touch(adapter, "notes.txt", "first")
        base = adapter.commit(CheckpointCategory.INIT)
        _touch(adapter, "notes.txt", "second")
        _touch(adapter, "extra.txt")
        adapter.commit(CheckpointCategory.PLAN, 1)

        adapter.reset_hard(base.id)
        assert adapter.head() == base.id
        assert (adapter.root / "notes.txt").read_text() == "first"
        assert not (adapter.root / "extra.txt").exists()


class TestFindPhaseStart:
    """Test cases for rollback target resolution."""

    def _run(self, adapter, *events):
        adapter.init()
        checkpoints = []
        for category, phase in events:
            label = f"Phase {phase}" if phase else ""
            checkpoints.append(adapter.commit(category, phase, label))
        return checkpoints

    def test_first_phase_targets_init(self, adapter):
        init, *_ = self._run(adapter, (CheckpointCategory.INIT, None), (CheckpointCategory.PLAN, 1),
                             (CheckpointCategory.TASK, 1))
        assert adapter.find_phase_start(1, None).id == init.id

    def test_later_phase_targets_predecessor_completion(self, adapter):
        events = self._run(
            adapter,
            (CheckpointCategory.INIT, None),
            (CheckpointCategory.PLAN, 1),
            (CheckpointCategory.TASK, 1),
            (CheckpointCategory.PHASE_COMPLETE, 1),
            (CheckpointCategory.PLAN, 2),
            (CheckpointCategory.TASK, 2),
        )
        assert adapter.find_phase_start(2, 1).id == events[3].id

    def test_uses_latest_predecessor_completion(self, adapter):
        events = self._run(
            adapter,
            (CheckpointCategory.INIT, None),
            (CheckpointCategory.PHASE_COMPLETE, 1),
            (CheckpointCategory.TASK, 1),
            (CheckpointCategory.PHASE_COMPLETE, 1),
        )
        assert adapter.find_phase_start(2, 1).id == events[3].id

    def test_out_of_order_phase_fails_closed(self, adapter):
        self._run(
            adapter,
            (CheckpointCategory.INIT, None),
            (CheckpointCategory.PLAN, 2),
            (CheckpointCategory.PLAN, 1),
            (CheckpointCategory.PHASE_COMPLETE, 1),
        )
        with pytest.raises(NoSafeCheckpointError) as exc_info:
            adapter.find_phase_start(2, 1)
        assert "older than" in exc_info.value.reason

    def test_missing_predecessor_completion(self, adapter):
        self._run(adapter, (CheckpointCategory.INIT, None), (CheckpointCategory.PLAN, 1))
        with pytest.raises(NoSafeCheckpointError) as exc_info:
            adapter.find_phase_start(2, 1)
        assert "Phase 1 has no phase-complete checkpoint" in exc_info.value.message

    def test_no_history(self, adapter):
        adapter.init()
        with pytest.raises(NoSafeCheckpointError):
            adapter.find_phase_start(1, None)

    def test_ignores_unreachable_ledger_entries(self, adapter):
        init, _, _ = self._run(
            adapter,
            (CheckpointCategory.INIT, None),
            (CheckpointCategory.PLAN, 1),
            (CheckpointCategory.PHASE_COMPLETE, 1),
        )
        adapter.reset_hard(init.id)
        assert len(adapter.ledger.entries()) == 3
        with pytest.raises(NoSafeCheckpointError):
            adapter.find_phase_start(2, 1)

    def test_falls_back_to_log_scan(self, adapter):
        events = self._run(
            adapter,
            (CheckpointCategory.INIT, None),
            (CheckpointCategory.PLAN, 1),
            (CheckpointCategory.PHASE_COMPLETE, 1),
        )
        adapter.ledger.path.unlink()
        history, source = adapter.history()
        assert source == "log"
        assert [c.id for c in history] == [c.id for c in events]
        assert adapter.find_phase_start(2, 1).id == events[2].id
