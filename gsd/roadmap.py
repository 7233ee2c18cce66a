"""ROADMAP.md persistence.

The roadmap is a hand-editable markdown document holding repeated phase
blocks::

    ### Phase 2: Storage layer
    **Status**: ⬜ Not Started
    **Objective**: Persist notes on disk

A block runs from its heading to the next phase heading, a level-1/level-2
heading, a ``---`` rule or the end of the text, whichever comes first, and
may contain arbitrary prose. All mutations splice the text and rewrite the
whole file; nothing else in the document is touched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import InvalidRequestError, PhaseNotFoundError, ProtectedCompleteError
from .models import Phase, PhaseStatus
from .templates import render_phase_block

logger = logging.getLogger("gsd.roadmap")

PHASE_HEADING_RE = re.compile(r"^###[ \t]+Phase[ \t]+(\d+)[ \t]*:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
SECTION_BREAK_RE = re.compile(r"^(?:#{1,2}[ \t]|---[ \t]*$)", re.MULTILINE)
STATUS_LINE_RE = re.compile(r"^\*\*Status\*\*:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
OBJECTIVE_LINE_RE = re.compile(r"^\*\*Objective\*\*:[ \t]*(.*?)[ \t]*$", re.MULTILINE)

# Substring markers checked in order; the first status with a hit wins.
# A line such as "🔄 In Progress ✅ Complete" therefore reads as COMPLETE.
STATUS_PRECEDENCE: Tuple[Tuple[PhaseStatus, Tuple[str, ...]], ...] = (
    (PhaseStatus.COMPLETE, ("✅", "Complete")),
    (PhaseStatus.IN_PROGRESS, ("🔄", "In Progress")),
)


def classify_status(text: str) -> PhaseStatus:
    for status, markers in STATUS_PRECEDENCE:
        if any(marker in text for marker in markers):
            return status
    return PhaseStatus.NOT_STARTED


@dataclass(slots=True)
class PhaseBlock:
    """A parsed phase plus the character spans it occupies in the document."""

    phase: Phase
    start: int
    end: int
    heading_span: Tuple[int, int]
    status_span: Optional[Tuple[int, int]] = None


def scan_blocks(text: str) -> List[PhaseBlock]:
    """Locate every phase block, in document order."""
    headings = list(PHASE_HEADING_RE.finditer(text))
    blocks: List[PhaseBlock] = []
    for index, heading in enumerate(headings):
        limit = headings[index + 1].start() if index + 1 < len(headings) else len(text)
        section_break = SECTION_BREAK_RE.search(text, heading.end(), limit)
        end = section_break.start() if section_break else limit

        status_match = STATUS_LINE_RE.search(text, heading.end(), end)
        objective_match = OBJECTIVE_LINE_RE.search(text, heading.end(), end)
        status_text = status_match.group(1) if status_match else ""

        phase = Phase(
            number=int(heading.group(1)),
            name=heading.group(2),
            status=classify_status(status_text),
            objective=objective_match.group(1) if objective_match else None,
            status_text=status_text,
        )
        blocks.append(
            PhaseBlock(
                phase=phase,
                start=heading.start(),
                end=end,
                heading_span=heading.span(),
                status_span=status_match.span(1) if status_match else None,
            )
        )
    return blocks


def parse_phases(text: str) -> List[Phase]:
    return [block.phase for block in scan_blocks(text)]


def _tidy_join(head: str, tail: str) -> str:
    """Join two fragments around a removed block without leaving a gap of blank lines."""
    head = head.rstrip("\n")
    tail = tail.lstrip("\n")
    if not head:
        return tail
    if not tail:
        return head + "\n"
    return head + "\n\n" + tail


class RoadmapStore:
    """Read and mutate the ordered list of phases in ROADMAP.md."""

    def __init__(self, path: Path):
        self.path = Path(path)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_text(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(text, encoding="utf-8")

    def list_phases(self) -> List[Phase]:
        return parse_phases(self.read_text())

    def available(self) -> List[str]:
        return [phase.display() for phase in self.list_phases()]

    def _block(self, text: str, number: int) -> PhaseBlock:
        blocks = scan_blocks(text)
        for block in blocks:
            if block.phase.number == number:
                return block
        raise PhaseNotFoundError(number, [block.phase.display() for block in blocks])

    def get_phase(self, number: int) -> Phase:
        return self._block(self.read_text(), number).phase

    def find_phase(self, number: int) -> Optional[Phase]:
        for phase in self.list_phases():
            if phase.number == number:
                return phase
        return None

    def next_phase_number(self) -> int:
        phases = self.list_phases()
        return max((phase.number for phase in phases), default=0) + 1

    def next_unplanned_phase(self) -> Optional[int]:
        for phase in self.list_phases():
            if phase.status is PhaseStatus.NOT_STARTED:
                return phase.number
        return None

    def previous_phase(self, number: int) -> Optional[Phase]:
        """The phase listed immediately before ``number``, or None for the first one."""
        phases = self.list_phases()
        for index, phase in enumerate(phases):
            if phase.number == number:
                return phases[index - 1] if index > 0 else None
        raise PhaseNotFoundError(number, [phase.display() for phase in phases])

    def later_phases(self, number: int) -> List[Phase]:
        phases = self.list_phases()
        for index, phase in enumerate(phases):
            if phase.number == number:
                return phases[index + 1:]
        return []

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append_phase(self, name: str, objective: Optional[str] = None) -> Phase:
        if not name or not name.strip():
            raise InvalidRequestError("Phase name is required.", next_step="gsd_add_phase")
        text = self.read_text()
        number = self.next_phase_number()
        block = render_phase_block(number, name, objective)
        self._write(text.rstrip("\n") + "\n\n" + block if text.strip() else block)
        logger.info("Appended Phase %s: %s", number, name)
        return Phase(number=number, name=name.strip(), objective=objective,
                     status_text=PhaseStatus.NOT_STARTED.label)

    def append_milestone(self, name: str, phases: Sequence[Dict[str, str]]) -> List[Phase]:
        """Append a milestone section; its phases continue the global numbering."""
        if not phases:
            raise InvalidRequestError("A milestone needs at least one phase.", next_step="gsd_milestone")
        text = self.read_text()
        first = self.next_phase_number()
        created = []
        blocks = []
        for offset, spec in enumerate(phases):
            phase_name = str(spec.get("name", "")).strip()
            if not phase_name:
                raise InvalidRequestError("Every milestone phase needs a name.", next_step="gsd_milestone")
            objective = spec.get("objective")
            blocks.append(render_phase_block(first + offset, phase_name, objective))
            created.append(Phase(number=first + offset, name=phase_name, objective=objective))
        section = f"---\n\n## Milestone: {name}\n\n" + "\n".join(blocks)
        self._write(text.rstrip("\n") + "\n\n" + section)
        logger.info("Appended milestone %s with %d phase(s)", name, len(created))
        return created

    def remove_phase(self, number: int) -> Phase:
        text = self.read_text()
        block = self._block(text, number)
        if block.phase.is_complete:
            raise ProtectedCompleteError(number, block.phase.name, "remove")
        self._write(_tidy_join(text[:block.start], text[block.end:]))
        logger.info("Removed Phase %s", number)
        return block.phase

    def set_status(self, number: int, status: PhaseStatus) -> Phase:
        text = self.read_text()
        block = self._block(text, number)
        if block.status_span:
            start, end = block.status_span
            updated = text[:start] + status.label + text[end:]
        else:
            insert_at = block.heading_span[1]
            updated = text[:insert_at] + f"\n**Status**: {status.label}" + text[insert_at:]
        self._write(updated)
        logger.info("Phase %s status set to %s", number, status.value)
        block.phase.status = status
        block.phase.status_text = status.label
        return block.phase

    def mark_complete(self, number: int) -> Phase:
        return self.set_status(number, PhaseStatus.COMPLETE)

    def mark_not_started(self, number: int) -> Phase:
        return self.set_status(number, PhaseStatus.NOT_STARTED)

    def split_phase(self, number: int, sub_phases: Sequence[Dict[str, str]]) -> Tuple[List[Phase], List[Tuple[int, int]]]:
        """Replace a phase with ``len(sub_phases)`` consecutive phases.

        Later phases keep their prose and status; only their heading numbers
        shift. Returns the new phases and the ``(old, new)`` renumbering.
        """
        text = self.read_text()
        block = self._block(text, number)
        if block.phase.is_complete:
            raise ProtectedCompleteError(number, block.phase.name, "refine")

        offset = len(sub_phases) - 1
        renumbered: List[Tuple[int, int]] = []
        tail = text[block.end:]
        if offset:
            def shift(match: "re.Match[str]") -> str:
                old = int(match.group(1))
                if old <= number:
                    return match.group(0)
                renumbered.append((old, old + offset))
                return f"### Phase {old + offset}: {match.group(2)}"

            tail = PHASE_HEADING_RE.sub(shift, tail)

        created = []
        blocks = []
        for index, spec in enumerate(sub_phases):
            phase_name = str(spec.get("name", "")).strip()
            objective = spec.get("objective")
            blocks.append(render_phase_block(number + index, phase_name, objective))
            created.append(Phase(number=number + index, name=phase_name, objective=objective))

        replacement = "\n".join(blocks)
        self._write(_tidy_join(text[:block.start] + replacement, tail))
        logger.info("Split Phase %s into %d sub-phases", number, len(created))
        return created, renumbered
