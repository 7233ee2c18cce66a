"""Error taxonomy for the phase lifecycle engine.

Every error carries a stable ``code`` (reported to the driver) and, where
there is an obvious recovery, a ``next_step`` naming the tool to call.
"""

from __future__ import annotations

from typing import Iterable, Optional


class GsdError(Exception):
    """Base class for failures reported back to the driver."""

    code = "GsdError"
    default_next_step: Optional[str] = None

    def __init__(self, message: str, *, next_step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.next_step = next_step or self.default_next_step


class NotInitializedError(GsdError):
    code = "NotInitialized"
    default_next_step = "gsd_init"

    def __init__(self, root: object = None):
        where = f" in {root}" if root else ""
        super().__init__(f"No GSD project found{where}. Run gsd_init first.")


class AlreadyInitializedError(GsdError):
    code = "AlreadyInitialized"
    default_next_step = "gsd_progress"

    def __init__(self):
        super().__init__("Project already initialized. Use gsd_progress to check current status.")


class SpecNotFinalizedError(GsdError):
    code = "SpecNotFinalized"
    default_next_step = "gsd_init"

    def __init__(self):
        super().__init__("SPEC.md must be FINALIZED before planning. Complete gsd_init first.")


class PhaseNotFoundError(GsdError):
    code = "PhaseNotFound"
    default_next_step = "gsd_add_phase"

    def __init__(self, phase: Optional[int], available: Iterable[str] = ()):
        self.phase = phase
        listing = ", ".join(available) or "none"
        if phase is None:
            message = f"No unplanned phase left in ROADMAP.md. Available phases: {listing}"
        else:
            message = f"Phase {phase} not found in ROADMAP.md. Available phases: {listing}"
        super().__init__(message)


class NoPlansForPhaseError(GsdError):
    code = "NoPlansForPhase"
    default_next_step = "gsd_plan"

    def __init__(self, phase: int):
        self.phase = phase
        super().__init__(f"No plans found for Phase {phase}. Run gsd_plan first.")


class ProtectedCompleteError(GsdError):
    code = "ProtectedComplete"
    default_next_step = "gsd_rollback"

    def __init__(self, phase: int, name: str, action: str):
        self.phase = phase
        super().__init__(
            f"Cannot {action} completed Phase {phase} (\"{name}\"). Roll the phase back first."
        )


class DebugExhaustedError(GsdError):
    code = "DebugExhausted"
    default_next_step = "gsd_pause"

    def __init__(self, strikes: int):
        self.strikes = strikes
        super().__init__(
            f"Debug attempts exhausted ({strikes}/{strikes} strikes). "
            "Pause the session and resume in a fresh context before debugging again."
        )


class NoSafeCheckpointError(GsdError):
    code = "NoSafeCheckpoint"

    def __init__(self, phase: int, reason: str):
        self.phase = phase
        self.reason = reason
        super().__init__(f"No safe checkpoint could be determined for Phase {phase}: {reason}")


class ExternalCommandFailedError(GsdError):
    code = "ExternalCommandFailed"

    def __init__(self, command: str, returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        detail = f": {output.strip()}" if output and output.strip() else ""
        super().__init__(f"Command `{command}` exited with status {returncode}{detail}")


class InvalidRequestError(GsdError):
    code = "InvalidRequest"
