"""Workspace management for GSD projects.

This module owns the ``.gsd/`` artifact layout: the specification, roadmap,
session state, decision log, journal and todo list, plus one
``phases/<N>/`` directory per phase holding plans, summaries and
verification results.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from .checkpoints import CheckpointAdapter
from .config import STORAGE_DIR_NAME, Settings
from .errors import NotInitializedError
from .roadmap import RoadmapStore
from .session import SessionStateStore
from .templates import SPEC_FINALIZED_MARKER, render_todo

logger = logging.getLogger("gsd.workspace")

PLAN_FILE_RE = re.compile(r".*-PLAN\.md$")
SUMMARY_FILE_RE = re.compile(r".*-SUMMARY\.md$")
VERIFICATION_FILE = "VERIFICATION.md"
TEST_RESULTS_FILE = "TEST-RESULTS.md"

TODO_PRIORITY_ICONS = {"high": "🔴", "medium": "🟡", "low": "🟢"}


class Workspace:
    """Manage GSD artifacts within a project directory."""

    def __init__(self, root: Path | str, settings: Optional[Settings] = None):
        self.root = Path(root).resolve()
        self.settings = settings or Settings.from_env()
        self.base_dir = self.root / STORAGE_DIR_NAME
        self.phases_dir = self.base_dir / "phases"

        self.roadmap = RoadmapStore(self.roadmap_path)
        self.session = SessionStateStore(self.state_path)
        self.checkpoints = CheckpointAdapter(self.root, self.settings)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def spec_path(self) -> Path:
        return self.base_dir / "SPEC.md"

    @property
    def roadmap_path(self) -> Path:
        return self.base_dir / "ROADMAP.md"

    @property
    def state_path(self) -> Path:
        return self.base_dir / "STATE.md"

    @property
    def decisions_path(self) -> Path:
        return self.base_dir / "DECISIONS.md"

    @property
    def journal_path(self) -> Path:
        return self.base_dir / "JOURNAL.md"

    @property
    def todo_path(self) -> Path:
        return self.base_dir / "TODO.md"

    @property
    def architecture_path(self) -> Path:
        return self.base_dir / "ARCHITECTURE.md"

    def phase_dir(self, phase: int) -> Path:
        return self.phases_dir / str(phase)

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return str(path)

    # ------------------------------------------------------------------
    # Project checks
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.spec_path.exists()

    def require_initialized(self) -> None:
        if not self.is_initialized():
            raise NotInitializedError(self.root)

    def is_spec_finalized(self) -> bool:
        spec = self.read(self.spec_path)
        return spec is not None and SPEC_FINALIZED_MARKER in spec

    def project_name(self) -> str:
        spec = self.read(self.spec_path) or ""
        match = re.search(r"^# SPEC\.md\s*[—-]\s*(.+)$", spec, re.MULTILINE)
        return match.group(1).strip() if match else "Unknown Project"

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def read(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, path: Path, content: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug("Wrote %s", self.relative(path))
        return path

    def append(self, path: Path, content: str) -> Path:
        existing = self.read(path) or ""
        return self.write(path, existing.rstrip("\n") + "\n\n" + content.strip("\n") + "\n")

    def ensure_phase_dir(self, phase: int) -> Path:
        path = self.phase_dir(phase)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _phase_files(self, phase: int, pattern: "re.Pattern[str]") -> List[Path]:
        directory = self.phase_dir(phase)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file() and pattern.match(p.name))

    def plan_files(self, phase: int) -> List[Path]:
        return sorted(self._phase_files(phase, PLAN_FILE_RE), key=_plan_index)

    def summary_files(self, phase: int) -> List[Path]:
        return self._phase_files(phase, SUMMARY_FILE_RE)

    def phase_files(self, phase: int) -> List[Path]:
        """Every file under the phase directory, recursively."""
        directory = self.phase_dir(phase)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.rglob("*") if p.is_file())

    def clear_phase_dir(self, phase: int, keep_dir: bool = True) -> int:
        """Delete every file under the phase directory and return how many went.

        Best effort: paths that cannot be removed are logged and left behind.
        """
        removed = 0
        for path in self.phase_files(phase):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not remove %s: %s", self.relative(path), e)

        directory = self.phase_dir(phase)
        if directory.is_dir():
            subdirs = sorted((p for p in directory.rglob("*") if p.is_dir()), reverse=True)
            for sub in subdirs + ([] if keep_dir else [directory]):
                try:
                    sub.rmdir()
                except OSError as e:
                    logger.warning("Could not remove directory %s: %s", self.relative(sub), e)
        return removed

    def verification_path(self, phase: int) -> Path:
        return self.phase_dir(phase) / VERIFICATION_FILE

    def test_results_path(self, phase: int) -> Path:
        return self.phase_dir(phase) / TEST_RESULTS_FILE

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def append_journal(self, entry: str) -> Path:
        return self.append(self.journal_path, entry)

    def append_decision(self, entry: str) -> Path:
        return self.append(self.decisions_path, entry)

    # ------------------------------------------------------------------
    # Todo list
    # ------------------------------------------------------------------

    def add_todo(self, item: str, priority: str = "low") -> str:
        icon = TODO_PRIORITY_ICONS.get(priority, TODO_PRIORITY_ICONS["low"])
        line = f"- [ ] {icon} {' '.join(item.split())}"
        todo = self.read(self.todo_path) or render_todo()
        if re.search(r"^## Pending[ \t]*$", todo, re.MULTILINE):
            todo = re.sub(r"^(## Pending[ \t]*\n)", lambda m: m.group(1) + line + "\n", todo, count=1, flags=re.MULTILINE)
        else:
            todo = todo.rstrip("\n") + f"\n\n## Pending\n{line}\n"
        self.write(self.todo_path, todo)
        return line

    def read_todos(self) -> Tuple[List[str], List[str]]:
        """Return ``(pending, completed)`` checklist lines."""
        todo = self.read(self.todo_path) or ""
        pending = re.findall(r"^- \[ \] .*$", todo, re.MULTILINE)
        completed = re.findall(r"^- \[[xX]\] .*$", todo, re.MULTILINE)
        return pending, completed


def _plan_index(path: Path) -> Tuple[int, str]:
    head = path.name.split("-", 1)[0]
    return (int(head), path.name) if head.isdigit() else (10 ** 6, path.name)
