"""
Wizard step table and sequencing.

The step order is fixed; ids are stable across firmware versions. Older
ids reported by the device are mapped onto the current sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from wss_wizard.wizard.tracking import StepTouchedFlag, VisitedStepTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    """A single wizard step."""

    id: str
    label: str
    order: int


WIZARD_STEPS: tuple[Step, ...] = (
    Step("welcome", "Welcome + Admin Password", 0),
    Step("network", "Network", 1),
    Step("sensors", "Inputs (NFC + Sensors)", 2),
    Step("time", "Time & RTC", 3),
    Step("storage", "Storage", 4),
    Step("outputs", "Outputs", 5),
    Step("review", "Review & Complete", 6),
)

STEP_IDS: tuple[str, ...] = tuple(step.id for step in WIZARD_STEPS)

# Legacy and alternate ids still reported by older firmware
STEP_ALIASES: dict[str, str] = {
    "security": "welcome",
    "nfc": "sensors",
    "controls": "sensors",
    "power": "outputs",
}


def _check_step_table() -> None:
    if len(set(STEP_IDS)) != len(STEP_IDS):
        raise ValueError(f"Duplicate wizard step ids: {STEP_IDS}")
    for alias, target in STEP_ALIASES.items():
        if target not in STEP_IDS:
            raise ValueError(f"Step alias '{alias}' points at unknown step '{target}'")


_check_step_table()


def normalize_step(step_id: str | None) -> str:
    """Map any step id onto a canonical one. Unknown ids become the first step."""
    if step_id in STEP_IDS:
        return step_id  # type: ignore[return-value]
    if step_id in STEP_ALIASES:
        return STEP_ALIASES[step_id]  # type: ignore[index]
    return STEP_IDS[0]


def is_known_step(step_id: str | None) -> bool:
    """True for canonical ids and aliases."""
    return step_id in STEP_IDS or step_id in STEP_ALIASES


def step_label(step_id: str) -> str:
    """Human label for a step id (normalized first)."""
    normalized = normalize_step(step_id)
    for step in WIZARD_STEPS:
        if step.id == normalized:
            return step.label
    return normalized


class StepSequencer:
    """
    Tracks the current wizard step.

    Every step change marks the step visited and notifies listeners, which
    re-render the step fields and re-evaluate the completion gate.
    """

    def __init__(
        self,
        visited: VisitedStepTracker,
        touched: StepTouchedFlag | None = None,
    ):
        self._visited = visited
        self._touched = touched
        self._current = STEP_IDS[0]
        self._initialized = False
        self._listeners: list[Callable[[str], None]] = []

    @property
    def steps(self) -> tuple[Step, ...]:
        return WIZARD_STEPS

    @property
    def initialized(self) -> bool:
        """True once a step has been set explicitly."""
        return self._initialized

    @staticmethod
    def normalize(step_id: str | None) -> str:
        return normalize_step(step_id)

    def current(self) -> str:
        return self._current

    def index_of(self, step_id: str) -> int:
        return STEP_IDS.index(normalize_step(step_id))

    def is_last(self) -> bool:
        return self._current == STEP_IDS[-1]

    def label_for(self, step_id: str | None = None) -> str:
        return step_label(step_id if step_id is not None else self._current)

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Add callback invoked with the new step id on every change."""
        self._listeners.append(callback)

    def set_current(self, step_id: str | None, touched: bool = False) -> str:
        """
        Move to a step.

        Args:
            step_id: Any step id; normalized before use
            touched: True when the operator chose the step (persisted so a
                restarted client reopens where the operator was)

        Returns:
            The normalized step id now current
        """
        normalized = normalize_step(step_id)
        if step_id != normalized:
            logger.debug(f"Step '{step_id}' normalized to '{normalized}'")

        self._current = normalized
        self._initialized = True
        if touched and self._touched is not None:
            self._touched.mark()
        self._visited.mark_visited(normalized)

        logger.info(f"Wizard step: {normalized}")
        for callback in self._listeners:
            callback(normalized)

        return normalized

    def next(self) -> bool:
        """
        Advance to the following step.

        Returns:
            False (and no change) when already on the last step
        """
        idx = STEP_IDS.index(self._current)
        if idx >= len(STEP_IDS) - 1:
            return False

        self.set_current(STEP_IDS[idx + 1], touched=True)
        return True
