# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Tests for the immutable spacecraft state."""
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.state import SpacecraftState


@pytest.fixture
def epoch():
    return datetime(2026, 3, 20, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def state(epoch):
    return SpacecraftState(
        reference_epoch=epoch,
        elapsed_s=30.0,
        position=[7_000_000.0, 0.0, 0.0],
        velocity=[0.0, 7_500.0, 0.0],
        mass=500.0,
    )


# ── Construction ──────────────────────────────────────────────────

class TestConstruction:

    def test_date(self, state, epoch):
        assert state.date == epoch + timedelta(seconds=30)

    def test_frozen(self, state):
        with pytest.raises(AttributeError):
            state.mass = 10.0

    def test_arrays_are_read_only(self, state):
        with pytest.raises(ValueError):
            state.position[0] = 1.0

    def test_non_positive_mass_rejected(self, epoch):
        with pytest.raises(ValueError, match="mass"):
            SpacecraftState(epoch, 0.0, [7e6, 0, 0], [0, 7.5e3, 0], mass=0.0)

    def test_input_lists_are_copied(self, epoch):
        values = [1.0, 2.0]
        s = SpacecraftState(epoch, 0.0, [7e6, 0, 0], [0, 7.5e3, 0],
                            additional_states={"extra": values})
        values[0] = 99.0
        assert s.get_additional_state("extra")[0] == 1.0


# ── Time helpers ──────────────────────────────────────────────────

class TestTime:

    def test_time_from(self, state, epoch):
        assert state.time_from(epoch) == pytest.approx(30.0)
        assert state.time_from(epoch + timedelta(seconds=100)) == pytest.approx(-70.0)

    def test_seconds_to(self, state, epoch):
        assert state.seconds_to(epoch + timedelta(seconds=5)) == pytest.approx(5.0)

    def test_rebased_keeps_date(self, state, epoch):
        other = epoch - timedelta(hours=1)
        rebased = state.rebased(other)
        assert rebased.elapsed_s == pytest.approx(3630.0)
        assert rebased.date == state.date


# ── Additional states ─────────────────────────────────────────────

class TestAdditionalStates:

    def test_add_returns_new_state(self, state):
        updated = state.add_additional_state("counter", [1.0])
        assert updated.has_additional_state("counter")
        assert not state.has_additional_state("counter")

    def test_untouched_arrays_shared(self, state):
        first = state.add_additional_state("a", [1.0, 2.0])
        second = first.add_additional_state("b", [3.0])
        assert second.get_additional_state("a") is first.get_additional_state("a")

    def test_unknown_state_raises(self, state):
        with pytest.raises(PropagationError) as info:
            state.get_additional_state("missing")
        assert info.value.specifier is ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE

    def test_unknown_derivative_raises(self, state):
        with pytest.raises(PropagationError):
            state.get_additional_derivative("missing")

    def test_derivatives(self, state):
        updated = state.add_additional_derivative("counter", [0.5])
        np.testing.assert_array_equal(updated.get_additional_derivative("counter"), [0.5])

    def test_with_orbit_keeps_additional_states(self, state):
        s = state.add_additional_state("a", [1.0])
        moved = s.with_orbit(60.0, [1.0, 2.0, 3.0], [4.0, 5.0, 6.0])
        assert moved.elapsed_s == 60.0
        assert moved.mass == state.mass
        assert moved.has_additional_state("a")
