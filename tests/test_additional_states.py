# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Tests for additional state providers, their ordering and the flat layout."""
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from varprop.domain.additional_states import (
    AdditionalDerivativesProvider,
    AdditionalStateProvider,
    AdditionalStatesManager,
    AugmentedLayout,
    CombinedDerivatives,
)
from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.state import SpacecraftState


@pytest.fixture
def epoch():
    return datetime(2026, 3, 20, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def state(epoch):
    return SpacecraftState(epoch, 0.0, [7e6, 0.0, 0.0], [0.0, 7.5e3, 0.0])


class _Rate:
    """Integrated block with a constant rate."""

    def __init__(self, name, rate, dimension=1):
        self.name = name
        self.dimension = dimension
        self._rate = rate
        self.initialized = False

    def init(self, initial_state, target):
        self.initialized = True

    def yields(self, state):
        return False

    def combined_derivatives(self, state):
        return CombinedDerivatives(np.full(self.dimension, self._rate))


class _Follower:
    """Integrated block whose rate is the derivative of another block."""

    def __init__(self, name, leader):
        self.name = name
        self.dimension = 1
        self._leader = leader

    def init(self, initial_state, target):
        pass

    def yields(self, state):
        return self._leader not in state.additional_derivatives

    def combined_derivatives(self, state):
        return CombinedDerivatives(2.0 * state.get_additional_derivative(self._leader))


class _Sum:
    """Computed block: sum of other computed or integrated blocks."""

    def __init__(self, name, *sources):
        self.name = name
        self._sources = sources

    def init(self, initial_state, target):
        pass

    def yields(self, state):
        return not all(state.has_additional_state(s) for s in self._sources)

    def additional_state(self, state):
        return sum(state.get_additional_state(s) for s in self._sources)


# ── Layout ────────────────────────────────────────────────────────

class TestAugmentedLayout:

    def test_blocks_follow_primary(self):
        layout = AugmentedLayout()
        assert layout.add("a", 2) == slice(7, 9)
        assert layout.add("b", 3) == slice(9, 12)
        assert layout.dimension == 12
        assert layout.names == ["a", "b"]

    def test_assemble_and_split(self):
        layout = AugmentedLayout()
        layout.add("a", 2)
        y = layout.assemble(np.arange(7.0), {"a": [10.0, 11.0]})
        np.testing.assert_array_equal(layout.primary(y), np.arange(7.0))
        np.testing.assert_array_equal(layout.blocks(y)["a"], [10.0, 11.0])

    def test_assemble_wrong_size(self):
        layout = AugmentedLayout()
        layout.add("a", 2)
        with pytest.raises(PropagationError) as info:
            layout.assemble(np.zeros(7), {"a": [1.0]})
        assert info.value.specifier is ErrorSpecifier.DIMENSION_MISMATCH

    def test_duplicate_and_unknown(self):
        layout = AugmentedLayout()
        layout.add("a", 1)
        with pytest.raises(PropagationError):
            layout.add("a", 1)
        with pytest.raises(PropagationError):
            layout.slice_of("missing")


# ── Manager ───────────────────────────────────────────────────────

class TestAdditionalStatesManager:

    def test_protocols(self):
        assert isinstance(_Rate("a", 1.0), AdditionalDerivativesProvider)
        assert isinstance(_Sum("s", "a"), AdditionalStateProvider)

    def test_names_unique_across_kinds(self):
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(_Rate("a", 1.0))
        with pytest.raises(PropagationError) as info:
            manager.add_state_provider(_Sum("a", "b"))
        assert info.value.specifier is ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE
        assert manager.is_registered("a")
        assert not manager.is_registered("b")

    def test_init_reaches_providers(self, state, epoch):
        provider = _Rate("a", 1.0)
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(provider)
        manager.init(state, epoch + timedelta(hours=1))
        assert provider.initialized

    def test_check_initial_state(self, state):
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(_Rate("a", 1.0, dimension=2))
        with pytest.raises(PropagationError) as info:
            manager.check_initial_state(state)
        assert info.value.specifier is ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE
        with pytest.raises(PropagationError) as info:
            manager.check_initial_state(state.add_additional_state("a", [1.0]))
        assert info.value.specifier is ErrorSpecifier.DIMENSION_MISMATCH
        manager.check_initial_state(state.add_additional_state("a", [1.0, 2.0]))

    def test_derivatives_in_dependency_order(self, state):
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(_Follower("follower", "leader"))
        manager.add_derivatives_provider(_Rate("leader", 3.0))
        s = state.add_additional_state("leader", [0.0]).add_additional_state("follower", [0.0])
        updated, results = manager.combined_derivatives(s)
        assert results["follower"].additional[0] == 6.0
        assert updated.get_additional_derivative("leader")[0] == 3.0

    def test_unresolvable_dependency(self, state):
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(_Follower("follower", "nobody"))
        with pytest.raises(PropagationError) as info:
            manager.combined_derivatives(state.add_additional_state("follower", [0.0]))
        assert info.value.specifier is ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE
        assert "follower" in str(info.value)

    def test_state_providers_chain(self, state):
        manager = AdditionalStatesManager()
        manager.add_state_provider(_Sum("total", "partial", "base"))
        manager.add_state_provider(_Sum("partial", "base"))
        updated = manager.update_additional_states(state.add_additional_state("base", [1.0, 2.0]))
        np.testing.assert_array_equal(updated.get_additional_state("partial"), [1.0, 2.0])
        np.testing.assert_array_equal(updated.get_additional_state("total"), [2.0, 4.0])

    def test_layout_only_integrated(self):
        manager = AdditionalStatesManager()
        manager.add_derivatives_provider(_Rate("a", 1.0, dimension=3))
        manager.add_state_provider(_Sum("s", "a"))
        layout = manager.layout()
        assert layout.names == ["a"]
        assert layout.dimension == 10
