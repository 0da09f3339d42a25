"""Tests for the step table and StepSequencer."""

from __future__ import annotations

import pytest

from wss_wizard.wizard.steps import (
    STEP_ALIASES,
    STEP_IDS,
    WIZARD_STEPS,
    StepSequencer,
    is_known_step,
    normalize_step,
    step_label,
)
from wss_wizard.wizard.store import MemoryStore
from wss_wizard.wizard.tracking import STEP_TOUCHED_KEY, StepTouchedFlag, VisitedStepTracker


class TestStepTable:
    """Tests for the canonical step sequence."""

    def test_order(self):
        assert STEP_IDS == ("welcome", "network", "sensors", "time", "storage", "outputs", "review")
        assert [s.order for s in WIZARD_STEPS] == list(range(len(STEP_IDS)))

    def test_aliases_point_at_canonical_steps(self):
        for target in STEP_ALIASES.values():
            assert target in STEP_IDS

    def test_labels(self):
        assert step_label("sensors") == "Inputs (NFC + Sensors)"
        assert step_label("nfc") == "Inputs (NFC + Sensors)"


class TestNormalize:
    """Tests for step id normalization."""

    @pytest.mark.parametrize("step_id", ["bogus", "", None, "complete", "REVIEW"])
    def test_unknown_ids_become_first_step(self, step_id):
        assert normalize_step(step_id) == STEP_IDS[0]

    @pytest.mark.parametrize("alias", sorted(STEP_ALIASES))
    def test_alias_matches_target(self, alias):
        assert normalize_step(alias) == normalize_step(STEP_ALIASES[alias])

    def test_canonical_ids_unchanged(self):
        for step in STEP_IDS:
            assert normalize_step(step) == step

    def test_is_known_step(self):
        assert is_known_step("power")
        assert is_known_step("review")
        assert not is_known_step("complete")


class TestStepSequencer:
    """Tests for StepSequencer."""

    def test_starts_on_first_step(self, sequencer: StepSequencer):
        assert sequencer.current() == "welcome"
        assert sequencer.initialized is False

    def test_set_current_normalizes_and_marks_visited(self, sequencer: StepSequencer, visited):
        assert sequencer.set_current("power") == "outputs"
        assert sequencer.current() == "outputs"
        assert "outputs" in visited.visited
        assert sequencer.initialized is True

    def test_set_current_unknown_goes_to_first(self, sequencer: StepSequencer):
        sequencer.set_current("review")
        assert sequencer.set_current("nope") == "welcome"

    def test_next_advances_in_order(self, sequencer: StepSequencer):
        sequencer.set_current("welcome")
        assert sequencer.next() is True
        assert sequencer.current() == "network"

    def test_next_on_last_step_is_noop(self, sequencer: StepSequencer, visited):
        sequencer.set_current("review")
        before = visited.visited

        assert sequencer.next() is False
        assert sequencer.next() is False
        assert sequencer.current() == "review"
        assert visited.visited == before

    def test_touched_flag_persisted_only_for_operator_choices(self):
        store = MemoryStore()
        touched = StepTouchedFlag(store)
        seq = StepSequencer(VisitedStepTracker(store), touched)

        seq.set_current("network")
        assert touched.is_set() is False

        seq.set_current("time", touched=True)
        assert store.get(STEP_TOUCHED_KEY) == "1"

    def test_listeners_called_with_normalized_id(self, sequencer: StepSequencer):
        seen = []
        sequencer.add_listener(seen.append)

        sequencer.set_current("security")
        sequencer.next()

        assert seen == ["welcome", "network"]

    def test_is_last_and_index(self, sequencer: StepSequencer):
        assert sequencer.index_of("controls") == 2
        sequencer.set_current("review")
        assert sequencer.is_last() is True
        assert sequencer.label_for() == "Review & Complete"
