"""
Persisted wizard progress.

Visited steps and the three completion flags are kept in a
PersistentStore so progress survives client restarts. All of it is
cleared together when the wizard is restarted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum

from wss_wizard.wizard.steps import STEP_ALIASES, STEP_IDS
from wss_wizard.wizard.store import PersistentStore, get_bool, set_bool

logger = logging.getLogger(__name__)

VISITED_STEPS_KEY = "wizard_visited_steps_v1"
STEP_TOUCHED_KEY = "wizard_step_touched_v1"

MIN_PASSWORD_LENGTH = 8
FACTORY_AP_PASSWORD_PREFIX = "ChangeMe-"


class CompletionFlag(str, Enum):
    """Conditions that must have been satisfied at least once."""

    ADMIN_PASSWORD_SET = "wizard_admin_pw_set_v1"
    AP_PASSWORD_CHANGED = "wizard_ap_pw_set_v1"
    PRIMARY_SENSOR_ENABLED = "wizard_primary_sensor_enabled_v1"


@dataclass(frozen=True)
class CompletionFlags:
    """Snapshot of the persisted completion flags."""

    admin_password_set: bool = False
    ap_password_changed: bool = False
    primary_sensor_enabled: bool = False

    @property
    def all_set(self) -> bool:
        return self.admin_password_set and self.ap_password_changed and self.primary_sensor_enabled


def is_valid_admin_password(password: str | None) -> bool:
    return bool(password) and len(password) >= MIN_PASSWORD_LENGTH  # type: ignore[arg-type]


def is_non_default_ap_password(password: str | None) -> bool:
    """
    True if the AP password counts as changed from the factory default.

    The auto-generated default always starts with the factory prefix, so a
    long password with that prefix is still treated as the default.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return False
    return not password.startswith(FACTORY_AP_PASSWORD_PREFIX)


def has_primary_sensor(motion_enabled: bool, door_enabled: bool) -> bool:
    return bool(motion_enabled or door_enabled)


class VisitedStepTracker:
    """Set of steps the operator has displayed at least once."""

    def __init__(self, store: PersistentStore):
        self._store = store
        self._visited: set[str] = self._load()

    @property
    def visited(self) -> frozenset[str]:
        return frozenset(self._visited)

    def mark_visited(self, step_id: str) -> None:
        """Record a step. Aliases count for their target; unknown ids are ignored."""
        if step_id in STEP_ALIASES:
            step_id = STEP_ALIASES[step_id]
        if step_id not in STEP_IDS or step_id in self._visited:
            return

        self._visited.add(step_id)
        ordered = [s for s in STEP_IDS if s in self._visited]
        self._store.set(VISITED_STEPS_KEY, json.dumps(ordered))

    def all_visited(self) -> bool:
        return all(step in self._visited for step in STEP_IDS)

    def missing(self) -> list[str]:
        """Steps not yet visited, in wizard order."""
        return [step for step in STEP_IDS if step not in self._visited]

    def clear(self) -> None:
        self._visited.clear()
        self._store.delete(VISITED_STEPS_KEY)

    def _load(self) -> set[str]:
        raw = self._store.get(VISITED_STEPS_KEY)
        if raw is None:
            return set()

        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt visited-steps record")
            return set()

        if not isinstance(parsed, list):
            logger.warning("Discarding malformed visited-steps record")
            return set()

        return {step for step in parsed if isinstance(step, str)}


class StepTouchedFlag:
    """Whether the operator has picked a step by hand in this lifecycle."""

    def __init__(self, store: PersistentStore):
        self._store = store

    def mark(self) -> None:
        set_bool(self._store, STEP_TOUCHED_KEY, True)

    def is_set(self) -> bool:
        return get_bool(self._store, STEP_TOUCHED_KEY)

    def clear(self) -> None:
        set_bool(self._store, STEP_TOUCHED_KEY, False)


class CompletionFlagTracker:
    """
    Sticky "has ever been satisfied" flags.

    The default update path only ever sets a flag; an operator revisiting
    a step whose password field is never redisplayed does not re-block
    completion. Passing only_set_true=False clears an unsatisfied flag.
    """

    def __init__(self, store: PersistentStore):
        self._store = store

    def update(self, flag: CompletionFlag, satisfied: bool, only_set_true: bool = True) -> bool:
        """
        Record the current evaluation of a condition.

        Returns:
            The persisted value after the update
        """
        before = get_bool(self._store, flag.value)
        if satisfied:
            set_bool(self._store, flag.value, True)
        elif not only_set_true:
            set_bool(self._store, flag.value, False)

        after = get_bool(self._store, flag.value)
        if after != before:
            logger.info(f"Completion flag {flag.name.lower()} -> {after}")
        return after

    def update_admin_password(self, password: str | None, only_set_true: bool = True) -> bool:
        return self.update(
            CompletionFlag.ADMIN_PASSWORD_SET,
            is_valid_admin_password(password),
            only_set_true,
        )

    def update_ap_password(self, password: str | None, only_set_true: bool = True) -> bool:
        return self.update(
            CompletionFlag.AP_PASSWORD_CHANGED,
            is_non_default_ap_password(password),
            only_set_true,
        )

    def update_primary_sensor(
        self, motion_enabled: bool, door_enabled: bool, only_set_true: bool = True
    ) -> bool:
        return self.update(
            CompletionFlag.PRIMARY_SENSOR_ENABLED,
            has_primary_sensor(motion_enabled, door_enabled),
            only_set_true,
        )

    def read(self) -> CompletionFlags:
        return CompletionFlags(
            admin_password_set=get_bool(self._store, CompletionFlag.ADMIN_PASSWORD_SET.value),
            ap_password_changed=get_bool(self._store, CompletionFlag.AP_PASSWORD_CHANGED.value),
            primary_sensor_enabled=get_bool(self._store, CompletionFlag.PRIMARY_SENSOR_ENABLED.value),
        )

    def clear(self) -> None:
        for flag in CompletionFlag:
            set_bool(self._store, flag.value, False)
