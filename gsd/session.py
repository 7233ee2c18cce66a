"""STATE.md persistence and the debug circuit breaker.

STATE.md is a render, not a patch: every update regenerates the whole
document from a :class:`~gsd.models.SessionState`, and :func:`parse_state`
reads every field back. Prose added by hand is not preserved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from .models import MAX_DEBUG_STRIKES, PAUSED_PREFIX, BreakerState, SessionState, utc_timestamp

logger = logging.getLogger("gsd.session")

DEBUG_EXHAUSTED_BLOCKER_PREFIX = "Debug exhausted after"

_NONE = "None"
_FIELD_RE = r"^- \*\*{label}\*\*:[ \t]*(.*?)[ \t]*$"
PHASE_RE = re.compile(_FIELD_RE.format(label="Phase"), re.MULTILINE)
TASK_RE = re.compile(_FIELD_RE.format(label="Task"), re.MULTILINE)
STATUS_RE = re.compile(_FIELD_RE.format(label="Status"), re.MULTILINE)
STRIKES_RE = re.compile(_FIELD_RE.format(label="Debug Strikes"), re.MULTILINE)
UPDATED_RE = re.compile(r"^> \*\*Last Updated\*\*:[ \t]*(.*?)[ \t]*$", re.MULTILINE)
BLOCKERS_RE = re.compile(r"^## Blockers[ \t]*\n(.*?)(?=^## |\Z)", re.MULTILINE | re.DOTALL)

_UPDATABLE = {f.name for f in fields(SessionState)} - {"last_updated"}


def _one_line(value: str) -> str:
    return " ".join(value.split())


def _clamp_strikes(value: int) -> int:
    return max(0, min(MAX_DEBUG_STRIKES, value))


def render_state(state: SessionState) -> str:
    blockers = "\n".join(f"- {_one_line(b)}" for b in state.blockers) or f"- {_NONE}"
    phase = state.phase if state.phase is not None else _NONE
    task = _one_line(state.task) if state.task else _NONE
    status = _one_line(state.status)
    return f"""# STATE.md — Project Memory

> **Last Updated**: {state.last_updated}

## Current Position
- **Phase**: {phase}
- **Task**: {task}
- **Status**: {status}
- **Debug Strikes**: {state.debug_strikes}

## Blockers
{blockers}

## Last Session Summary
{status}
"""


def _parse_blockers(text: str) -> list:
    match = BLOCKERS_RE.search(text)
    if not match:
        return []
    blockers = []
    for line in match.group(1).splitlines():
        line = line.strip()
        if not line.startswith("- "):
            continue
        item = line[2:].strip()
        if item and item != _NONE:
            blockers.append(item)
    return blockers


def parse_state(text: str) -> SessionState:
    phase_match = PHASE_RE.search(text)
    task_match = TASK_RE.search(text)
    status_match = STATUS_RE.search(text)
    strikes_match = STRIKES_RE.search(text)
    updated_match = UPDATED_RE.search(text)

    phase = None
    if phase_match and phase_match.group(1).isdigit():
        phase = int(phase_match.group(1))

    task = task_match.group(1) if task_match else None
    if task in ("", _NONE):
        task = None

    strikes = 0
    if strikes_match and strikes_match.group(1).isdigit():
        strikes = _clamp_strikes(int(strikes_match.group(1)))

    return SessionState(
        phase=phase,
        task=task,
        status=status_match.group(1) if status_match else "Unknown",
        blockers=_parse_blockers(text),
        debug_strikes=strikes,
        last_updated=updated_match.group(1) if updated_match else utc_timestamp(),
    )


class SessionStateStore:
    """Read-merge-write access to STATE.md."""

    def __init__(self, path: Path, clock: Callable[[], str] = utc_timestamp):
        self.path = Path(path)
        self._clock = clock

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> SessionState:
        if not self.path.exists():
            return SessionState(last_updated=self._clock())
        return parse_state(self.path.read_text(encoding="utf-8"))

    def write(self, state: SessionState) -> SessionState:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(render_state(state), encoding="utf-8")
        return state

    def update(self, **changes: Any) -> SessionState:
        """Merge ``changes`` into the stored state and rewrite STATE.md.

        Only the named fields change; ``last_updated`` is always stamped.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise TypeError(f"Unknown session field(s): {', '.join(sorted(unknown))}")
        if "debug_strikes" in changes:
            changes["debug_strikes"] = _clamp_strikes(int(changes["debug_strikes"]))
        if "blockers" in changes:
            changes["blockers"] = [_one_line(b) for b in (changes["blockers"] or []) if b and b.strip()]
        if "task" in changes:
            changes["task"] = _one_line(changes["task"]) or None if changes["task"] else None
        if "status" in changes:
            changes["status"] = _one_line(changes["status"] or "")
        merged = replace(self.read(), **changes, last_updated=self._clock())
        logger.debug("Session state updated: %s", ", ".join(sorted(changes)) or "(timestamp only)")
        return self.write(merged)

    # ------------------------------------------------------------------
    # Debug circuit breaker
    # ------------------------------------------------------------------

    def increment_debug_strike(self) -> int:
        """Add one strike, saturating at the cap. Returns the new count."""
        state = self.read()
        strikes = _clamp_strikes(state.debug_strikes + 1)
        self.update(debug_strikes=strikes)
        return strikes

    def reset_debug_strikes(self) -> None:
        state = self.read()
        blockers = [b for b in state.blockers if not b.startswith(DEBUG_EXHAUSTED_BLOCKER_PREFIX)]
        self.update(debug_strikes=0, blockers=blockers)
        logger.info("Debug strikes reset")

    def breaker_state(self) -> BreakerState:
        return self.read().breaker

    def is_debug_exhausted(self) -> bool:
        return self.breaker_state() is BreakerState.EXHAUSTED

    # ------------------------------------------------------------------
    # Session handoff
    # ------------------------------------------------------------------

    def pause(self, summary: str) -> Tuple[SessionState, str]:
        """Mark the session paused; returns the new state and a handoff snapshot."""
        state = self.read()
        snapshot = f"""# Session Snapshot

> **Saved**: {self._clock()}

## Position
- **Phase**: {state.phase if state.phase is not None else _NONE}
- **Task**: {state.task or _NONE}
- **Status**: {state.status}
- **Debug Strikes**: {state.debug_strikes}/{MAX_DEBUG_STRIKES}

## Summary
{summary.strip()}

## Blockers
{chr(10).join(f"- {b}" for b in state.blockers) or f"- {_NONE}"}

## Next Steps
Continue from the current position.
"""
        paused = self.update(status=PAUSED_PREFIX + _one_line(summary))
        return paused, snapshot

    def resume(self) -> Tuple[SessionState, bool]:
        """Leave the paused state and re-arm the debug breaker.

        Resuming is the only transition out of ``BreakerState.EXHAUSTED``.
        Returns the restored state and whether the breaker was re-armed.
        """
        state = self.read()
        status = state.status
        if status.startswith(PAUSED_PREFIX):
            status = status[len(PAUSED_PREFIX):] or "Ready"
        rearmed = state.breaker is BreakerState.EXHAUSTED
        changes: dict = {"status": status}
        if state.debug_strikes:
            changes["debug_strikes"] = 0
            changes["blockers"] = [
                b for b in state.blockers if not b.startswith(DEBUG_EXHAUSTED_BLOCKER_PREFIX)
            ]
        restored = self.update(**changes)
        return restored, rearmed
