"""Git-backed checkpoints for the phase lifecycle.

Every lifecycle event that changes artifacts becomes one commit whose subject
encodes the event::

    Initialize GSD project
    plan(phase-2): create execution plans
    task(phase-2): Wire storage adapter
    phase-complete(phase-2): Storage layer
    rollback(phase-2): Storage layer

Each commit is also appended to an append-only ledger kept inside the git
directory (``.git/gsd-checkpoints.jsonl``), which a hard reset never touches.
Rollback resolves its target from the ledger entries still reachable from
HEAD and falls back to scanning ``git log`` when the ledger has none.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .config import Settings
from .errors import ExternalCommandFailedError, NoSafeCheckpointError
from .gsd_logging import log_checkpoint_event
from .models import Checkpoint, CheckpointCategory, utc_timestamp

logger = logging.getLogger("gsd.checkpoints")

INIT_MESSAGE = "Initialize GSD project"
LEDGER_NAME = "gsd-checkpoints.jsonl"

_SCOPED_RE = re.compile(r"^(plan|task|phase-complete|rollback)\(phase-(\d+)\):[ \t]*(.*)$")

# Subjects written by earlier releases of the tool.
_LEGACY_RES: Sequence[Tuple["re.Pattern[str]", CheckpointCategory]] = (
    (re.compile(r"^docs\(phase-(\d+)\):[ \t]*create execution plans()$"), CheckpointCategory.PLAN),
    (re.compile(r"^docs\(phase-(\d+)\):[ \t]*complete[ \t]+(.*)$"), CheckpointCategory.PHASE_COMPLETE),
    (re.compile(r"^feat\(phase-(\d+)\):[ \t]*(.*)$"), CheckpointCategory.TASK),
)
_LEGACY_INIT = "chore: initialize GSD project"

# Checkpoints showing that a phase's lifecycle has begun.
_LIFECYCLE_CATEGORIES = (CheckpointCategory.PLAN, CheckpointCategory.TASK, CheckpointCategory.PHASE_COMPLETE)


def format_message(category: CheckpointCategory, phase: Optional[int] = None, label: str = "") -> str:
    if category is CheckpointCategory.INIT:
        return INIT_MESSAGE
    if phase is None:
        raise ValueError(f"Checkpoint category '{category.value}' requires a phase number")
    label = " ".join(label.split())
    if category is CheckpointCategory.PLAN and not label:
        label = "create execution plans"
    return f"{category.value}(phase-{phase}): {label}".rstrip()


def parse_message(subject: str) -> Tuple[Optional[CheckpointCategory], Optional[int], str]:
    """Recover ``(category, phase, label)`` from a commit subject."""
    subject = subject.strip()
    if subject in (INIT_MESSAGE, _LEGACY_INIT):
        return CheckpointCategory.INIT, None, ""
    match = _SCOPED_RE.match(subject)
    if match:
        return CheckpointCategory(match.group(1)), int(match.group(2)), match.group(3)
    for pattern, category in _LEGACY_RES:
        match = pattern.match(subject)
        if match:
            return category, int(match.group(1)), match.group(2)
    return None, None, ""


class CheckpointLedger:
    """Append-only JSON-lines record of checkpoints."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def entries(self) -> List[Checkpoint]:
        if not self.path.exists():
            return []
        entries = []
        for number, line in enumerate(self.path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(Checkpoint.from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping unreadable ledger line %d in %s: %s", number, self.path, e)
        return entries

    def append(self, checkpoint: Checkpoint) -> Checkpoint:
        existing = self.entries()
        checkpoint.sequence = (max((e.sequence or 0) for e in existing) if existing else 0) + 1
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(checkpoint.to_dict()) + "\n")
        return checkpoint


class CheckpointAdapter:
    """Drive the git CLI for checkpoint creation, lookup and reset."""

    def __init__(self, root: Path, settings: Optional[Settings] = None):
        self.root = Path(root)
        self.settings = settings or Settings.from_env()
        self._identity: Optional[List[str]] = None

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _git(self, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
        command = ["git", *args]
        try:
            result = subprocess.run(command, cwd=self.root, capture_output=True, text=True)
        except FileNotFoundError:
            raise ExternalCommandFailedError(" ".join(command), 127, "git executable not found")
        if check and result.returncode != 0:
            raise ExternalCommandFailedError(" ".join(command), result.returncode, result.stderr or result.stdout)
        return result

    def _identity_args(self) -> List[str]:
        """Fallback author for repositories without a configured identity."""
        if self._identity is None:
            configured = self._git(["config", "user.email"], check=False)
            if configured.returncode == 0 and configured.stdout.strip():
                self._identity = []
            else:
                self._identity = [
                    "-c", f"user.name={self.settings.git_author_name}",
                    "-c", f"user.email={self.settings.git_author_email}",
                ]
        return self._identity

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    def is_repo(self) -> bool:
        return (self.root / ".git").exists()

    def init(self) -> bool:
        """Create the repository if needed. Returns True when one was created."""
        if self.is_repo():
            return False
        self._git(["init", "-q"])
        logger.info("Initialized git repository in %s", self.root)
        return True

    @property
    def ledger(self) -> CheckpointLedger:
        result = self._git(["rev-parse", "--absolute-git-dir"], check=False)
        git_dir = Path(result.stdout.strip()) if result.returncode == 0 and result.stdout.strip() else self.root / ".git"
        return CheckpointLedger(git_dir / LEDGER_NAME)

    def head(self) -> Optional[str]:
        result = self._git(["rev-parse", "--verify", "-q", "HEAD"], check=False)
        return result.stdout.strip() or None if result.returncode == 0 else None

    def status(self) -> str:
        return self._git(["status", "--short"]).stdout.strip()

    def is_ancestor(self, checkpoint_id: str, descendant: str = "HEAD") -> bool:
        result = self._git(["merge-base", "--is-ancestor", checkpoint_id, descendant], check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def commit(self, category: CheckpointCategory, phase: Optional[int] = None, label: str = "") -> Checkpoint:
        """Stage every pending change and record one checkpoint commit."""
        message = format_message(category, phase, label)
        self._git(["add", "-A"])
        self._git([*self._identity_args(), "commit", "-q", "--allow-empty", "--no-verify", "-m", message])
        commit_id = self._git(["rev-parse", "HEAD"]).stdout.strip()

        checkpoint = Checkpoint(
            id=commit_id,
            message=message,
            category=category,
            phase=phase,
            label=parse_message(message)[2],
            created_at=utc_timestamp(),
        )
        self.ledger.append(checkpoint)
        log_checkpoint_event(category.value, phase, commit_id, message=message, sequence=checkpoint.sequence)
        return checkpoint

    def log(self, category: Optional[CheckpointCategory] = None, phase: Optional[int] = None,
            limit: Optional[int] = None) -> List[Checkpoint]:
        """Commits reachable from HEAD, newest first, optionally filtered.

        With a filter only recognised checkpoints are returned; without one,
        ordinary commits are included with ``category`` set to None.
        """
        if self.head() is None:
            return []
        args = ["log", "--format=%H%x1f%s%x1f%cI%x1e"]
        if limit and category is None and phase is None:
            args.append(f"-n{limit}")
        output = self._git(args).stdout

        checkpoints = []
        for record in output.split("\x1e"):
            record = record.strip("\n")
            if not record:
                continue
            commit_id, subject, created_at = (record.split("\x1f") + ["", ""])[:3]
            parsed_category, parsed_phase, label = parse_message(subject)
            checkpoint = Checkpoint(commit_id, subject, parsed_category, parsed_phase, label, created_at=created_at or None)
            if category is not None and parsed_category is not category:
                continue
            if phase is not None and parsed_phase != phase:
                continue
            checkpoints.append(checkpoint)
        if limit:
            checkpoints = checkpoints[:limit]
        return checkpoints

    def reset_hard(self, checkpoint_id: str) -> None:
        """Discard every tracked change made after ``checkpoint_id``."""
        before = self.head()
        self._git(["reset", "--hard", "-q", checkpoint_id])
        logger.warning("Hard reset from %s to %s", (before or "?")[:7], checkpoint_id[:7])
        log_checkpoint_event("reset", None, checkpoint_id, previous_head=before)

    def history(self) -> Tuple[List[Checkpoint], str]:
        """Lifecycle checkpoints reachable from HEAD, oldest first, and their source."""
        reachable = [entry for entry in self.ledger.entries() if self.is_ancestor(entry.id)]
        if reachable:
            reachable.sort(key=lambda entry: entry.sequence or 0)
            return reachable, "ledger"
        scanned = [checkpoint for checkpoint in self.log() if checkpoint.category is not None]
        scanned.reverse()
        return scanned, "log"

    def find_phase_start(self, phase: int, previous_phase: Optional[int]) -> Checkpoint:
        """Locate the checkpoint immediately before ``phase`` began.

        The first phase starts at the latest ``init`` checkpoint; any other
        phase starts at the latest ``phase-complete`` checkpoint of the phase
        before it. Raises :class:`NoSafeCheckpointError` if that checkpoint is
        missing or if ``phase`` has checkpoints older than it.
        """
        history, source = self.history()

        if previous_phase is None:
            wanted, phase_key = CheckpointCategory.INIT, None
            missing = "no init checkpoint was found"
        else:
            wanted, phase_key = CheckpointCategory.PHASE_COMPLETE, previous_phase
            missing = f"Phase {previous_phase} has no phase-complete checkpoint"

        target_index = None
        for index, checkpoint in enumerate(history):
            if checkpoint.category is wanted and checkpoint.phase == phase_key:
                target_index = index
        if target_index is None:
            raise NoSafeCheckpointError(phase, missing)

        began_early = [
            checkpoint for checkpoint in history[:target_index]
            if checkpoint.phase == phase and checkpoint.category in _LIFECYCLE_CATEGORIES
        ]
        if began_early:
            first = began_early[0]
            raise NoSafeCheckpointError(
                phase,
                f"Phase {phase} has a {first.category.value} checkpoint ({first.short_id}) older than "
                f"{'the init checkpoint' if previous_phase is None else f'the completion of Phase {previous_phase}'}",
            )

        target = history[target_index]
        logger.info("Resolved start of Phase %s to %s via %s", phase, target.short_id, source)
        return target
