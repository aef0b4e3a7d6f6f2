# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Additional states carried along with the orbit.

Two kinds of providers extend a propagation:

- AdditionalDerivativesProvider: a named block integrated together with
  the primary state. It returns the block's time derivative and may add
  increments to the primary state derivative.
- AdditionalStateProvider: a named block computed (not integrated) from
  the current state, refreshed on every output state.

Providers may depend on each other: a provider yields while the values it
needs are not available yet and is retried after the others. Names are
unique across both kinds within a propagator.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from varprop.domain.errors import ErrorSpecifier, PropagationError
from varprop.domain.state import SpacecraftState


@dataclass(frozen=True)
class CombinedDerivatives:
    """Derivatives of one additional block.

    additional: time derivative of the provider's block
    main_state_increments: optional 7-vector added to the derivative of the
        primary state (orbit parameters + mass)
    """
    additional: np.ndarray
    main_state_increments: np.ndarray | None = None


@runtime_checkable
class AdditionalDerivativesProvider(Protocol):
    """Integrated additional state."""

    @property
    def name(self) -> str: ...

    @property
    def dimension(self) -> int: ...

    def init(self, initial_state: SpacecraftState, target: datetime) -> None: ...

    def yields(self, state: SpacecraftState) -> bool: ...

    def combined_derivatives(self, state: SpacecraftState) -> CombinedDerivatives: ...


@runtime_checkable
class AdditionalStateProvider(Protocol):
    """Additional state computed from the rest of the state."""

    @property
    def name(self) -> str: ...

    def init(self, initial_state: SpacecraftState, target: datetime) -> None: ...

    def yields(self, state: SpacecraftState) -> bool: ...

    def additional_state(self, state: SpacecraftState) -> np.ndarray: ...


def _dependency_order(providers: Sequence, state: SpacecraftState, compute) -> SpacecraftState:
    """Run compute(provider, state) -> state until every provider has run.

    A provider that yields is retried once another one has progressed.
    """
    pending = list(providers)
    while pending:
        remaining = []
        for provider in pending:
            if provider.yields(state):
                remaining.append(provider)
            else:
                state = compute(provider, state)
        if len(remaining) == len(pending):
            names = ", ".join(p.name for p in remaining)
            raise PropagationError(ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE, names)
        pending = remaining
    return state


class AugmentedLayout:
    """Position of the primary state and each integrated block in the flat vector."""

    def __init__(self, primary_dimension: int = 7) -> None:
        self._primary_dimension = primary_dimension
        self._slices: dict[str, slice] = {}
        self._dimension = primary_dimension

    @property
    def primary_dimension(self) -> int:
        return self._primary_dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def names(self) -> list[str]:
        return list(self._slices)

    def add(self, name: str, dimension: int) -> slice:
        if name in self._slices:
            raise PropagationError(ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE, name)
        block = slice(self._dimension, self._dimension + dimension)
        self._slices[name] = block
        self._dimension += dimension
        return block

    def slice_of(self, name: str) -> slice:
        try:
            return self._slices[name]
        except KeyError:
            raise PropagationError(ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE, name) from None

    def primary(self, y: np.ndarray) -> np.ndarray:
        return y[:self._primary_dimension]

    def blocks(self, y: np.ndarray) -> dict[str, np.ndarray]:
        return {name: y[block] for name, block in self._slices.items()}

    def assemble(self, primary: Sequence[float], blocks: dict[str, Sequence[float]]) -> np.ndarray:
        y = np.empty(self._dimension)
        y[:self._primary_dimension] = primary
        for name, block in self._slices.items():
            values = np.asarray(blocks[name], dtype=float)
            if values.shape != (block.stop - block.start,):
                raise PropagationError(
                    ErrorSpecifier.DIMENSION_MISMATCH, name, block.stop - block.start, values.size,
                )
            y[block] = values
        return y


class AdditionalStatesManager:
    """Registry of additional derivatives and state providers."""

    def __init__(self) -> None:
        self._derivatives_providers: list[AdditionalDerivativesProvider] = []
        self._state_providers: list[AdditionalStateProvider] = []

    @property
    def derivatives_providers(self) -> tuple[AdditionalDerivativesProvider, ...]:
        return tuple(self._derivatives_providers)

    @property
    def state_providers(self) -> tuple[AdditionalStateProvider, ...]:
        return tuple(self._state_providers)

    def is_registered(self, name: str) -> bool:
        return any(p.name == name for p in self._derivatives_providers) or any(
            p.name == name for p in self._state_providers
        )

    def _check_name(self, name: str) -> None:
        if self.is_registered(name):
            raise PropagationError(ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE, name)

    def add_derivatives_provider(self, provider: AdditionalDerivativesProvider) -> None:
        self._check_name(provider.name)
        self._derivatives_providers.append(provider)

    def add_state_provider(self, provider: AdditionalStateProvider) -> None:
        self._check_name(provider.name)
        self._state_providers.append(provider)

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        for provider in self._derivatives_providers:
            provider.init(initial_state, target)
        for provider in self._state_providers:
            provider.init(initial_state, target)

    def layout(self, primary_dimension: int = 7) -> AugmentedLayout:
        layout = AugmentedLayout(primary_dimension)
        for provider in self._derivatives_providers:
            layout.add(provider.name, provider.dimension)
        return layout

    def check_initial_state(self, state: SpacecraftState) -> None:
        """Every integrated block needs an initial value of the right size."""
        for provider in self._derivatives_providers:
            values = state.get_additional_state(provider.name)
            if values.shape != (provider.dimension,):
                raise PropagationError(
                    ErrorSpecifier.DIMENSION_MISMATCH, provider.name, provider.dimension, values.size,
                )

    def combined_derivatives(
        self, state: SpacecraftState,
    ) -> tuple[SpacecraftState, dict[str, CombinedDerivatives]]:
        """Evaluate all derivatives providers in dependency order.

        Each computed derivative is published in the state handed to the
        providers that run after it.
        """
        results: dict[str, CombinedDerivatives] = {}

        def compute(provider, current):
            derivatives = provider.combined_derivatives(current)
            results[provider.name] = derivatives
            return current.add_additional_derivative(provider.name, derivatives.additional)

        state = _dependency_order(self._derivatives_providers, state, compute)
        return state, results

    def update_additional_states(self, state: SpacecraftState) -> SpacecraftState:
        """Add the value of every state provider to state."""
        return _dependency_order(
            self._state_providers, state,
            lambda provider, current: current.add_additional_state(
                provider.name, provider.additional_state(current),
            ),
        )
