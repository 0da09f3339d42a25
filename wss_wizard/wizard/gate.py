"""
Completion gate for the setup wizard.

"Complete setup" is offered only on the last step, after every step has
been visited, all completion flags are set and the draft has no pin
conflicts. The verdict is recomputed on every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from wss_wizard.wizard.pins import PinClaim, detect_pin_conflicts
from wss_wizard.wizard.steps import StepSequencer
from wss_wizard.wizard.tracking import CompletionFlagTracker, VisitedStepTracker

NOT_LAST_STEP_HINT = "Complete setup is available on the last step."

REQ_VISIT_ALL = "visit all steps"
REQ_ADMIN_PASSWORD = "set admin password"
REQ_AP_PASSWORD = "change AP password from default"
REQ_PRIMARY_SENSOR = "enable a primary sensor"


@dataclass(frozen=True)
class GateVerdict:
    """One evaluation of the completion gate."""

    can_complete: bool
    hint: str
    missing: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


class CompletionGate:
    """Decides whether setup may be completed and explains why not."""

    def __init__(
        self,
        sequencer: StepSequencer,
        visited: VisitedStepTracker,
        flags: CompletionFlagTracker,
        claims: Callable[[], list[PinClaim]],
    ):
        self._sequencer = sequencer
        self._visited = visited
        self._flags = flags
        self._claims = claims

    def conflicts(self) -> list[str]:
        return detect_pin_conflicts(self._claims())

    def missing_requirements(self) -> list[str]:
        flags = self._flags.read()
        missing = []
        if not self._visited.all_visited():
            missing.append(REQ_VISIT_ALL)
        if not flags.admin_password_set:
            missing.append(REQ_ADMIN_PASSWORD)
        if not flags.ap_password_changed:
            missing.append(REQ_AP_PASSWORD)
        if not flags.primary_sensor_enabled:
            missing.append(REQ_PRIMARY_SENSOR)
        return missing

    def can_complete(self) -> bool:
        return self.evaluate().can_complete

    def hint(self) -> str:
        return self.evaluate().hint

    def evaluate(self) -> GateVerdict:
        missing = self.missing_requirements()
        conflicts = self.conflicts()
        is_last = self._sequencer.is_last()

        return GateVerdict(
            can_complete=is_last and not missing and not conflicts,
            hint=self._build_hint(is_last, missing, conflicts),
            missing=missing,
            conflicts=conflicts,
        )

    @staticmethod
    def _build_hint(is_last: bool, missing: list[str], conflicts: list[str]) -> str:
        if not is_last:
            return NOT_LAST_STEP_HINT

        parts = []
        if missing:
            parts.append(f"To complete: {', '.join(missing)}.")
        if conflicts:
            parts.append(f"Pin conflicts: {'; '.join(conflicts)}.")
        return " ".join(parts)
