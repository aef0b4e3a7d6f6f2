# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Variational equations: state transition matrix and parameter Jacobians.

All blocks are integrated in Cartesian coordinates plus mass (7
components) whatever the orbit type of the primary state; the harvester
maps them to the run's orbit type on output.

- StateTransitionMatrixGenerator integrates dΦ/dt = A·Φ with
  A = ∂(ṙ, v̇, ṁ)/∂(r, v, m) summed over the force models, from closed-form
  partials where a model provides them and forward-mode AD otherwise.
- IntegrableJacobianColumnGenerator integrates dS/dt = A·S + ∂f/∂p for
  one selected driver span.
- TriggerDateJacobianColumnGenerator integrates dS/dt = A·S for a
  maneuver start or stop date; its only source is the jump applied by
  switch_correction when the trigger fires.
- MedianDateJacobianColumnGenerator and DurationJacobianColumnGenerator
  derive the median-date and duration columns from the start and stop
  columns without integrating anything.

switch_correction keeps Φ and every column consistent across a switch
of the dynamics located by a switching function g(t, y, p) = 0.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Sequence

import numpy as np

from varprop.domain import dual as d
from varprop.domain.additional_states import CombinedDerivatives
from varprop.domain.dual import Dual
from varprop.domain.errors import require
from varprop.domain.events import SwitchPartials
from varprop.domain.force_models import ForceModel, check_parameters
from varprop.domain.parameters import ParameterTimeline
from varprop.domain.state import SpacecraftState

logger = logging.getLogger(__name__)

STATE_DIMENSION = 7


@dataclass(frozen=True)
class DynamicsPartials:
    """A = ∂f/∂y (7×7) and ∂f/∂p per active driver span (7-vectors)."""
    state_matrix: np.ndarray
    parameter_columns: Mapping[str, np.ndarray]


# --- STM ---

class StateTransitionMatrixGenerator:
    """Integrated 7×7 Cartesian state transition matrix, stored row-major."""

    def __init__(self, name: str, force_models: Sequence[ForceModel]) -> None:
        require(name, "stm_name")
        self._name = name
        self._force_models = list(force_models)
        self._reference_epoch: datetime | None = None
        self._timeline: ParameterTimeline | None = None
        self._cache_key: tuple | None = None
        self._cache: DynamicsPartials | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return STATE_DIMENSION * STATE_DIMENSION

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        self._reference_epoch = initial_state.reference_epoch
        self._timeline = ParameterTimeline(
            [model.parameter_drivers() for model in self._force_models],
            initial_state.reference_epoch,
        )
        self.invalidate()

    def invalidate(self) -> None:
        """Forget the memoized partials (the dynamics switched)."""
        self._cache_key = None
        self._cache = None

    def yields(self, state: SpacecraftState) -> bool:
        return False

    def combined_derivatives(self, state: SpacecraftState) -> CombinedDerivatives:
        phi = state.get_additional_state(self._name).reshape(STATE_DIMENSION, STATE_DIMENSION)
        return CombinedDerivatives((self.partials(state).state_matrix @ phi).ravel())

    def partials(self, state: SpacecraftState) -> DynamicsPartials:
        key = (state.elapsed_s, state.position.tobytes(), state.velocity.tobytes(), state.mass)
        if key != self._cache_key:
            self._cache = self._compute_partials(state)
            self._cache_key = key
        return self._cache

    def _compute_partials(self, state: SpacecraftState) -> DynamicsPartials:
        t = state.elapsed_s
        epoch = self._reference_epoch + timedelta(seconds=t)
        values = self._timeline.values_at(t)
        matrix = np.zeros((STATE_DIMENSION, STATE_DIMENSION))
        matrix[0:3, 3:6] = np.eye(3)
        columns: dict[str, np.ndarray] = {}

        for group, model in enumerate(self._force_models):
            check_parameters(model, values[group])
            selected = [
                (k, self._timeline.span_name_at(group, k, t))
                for k in self._timeline.selected_indices(group)
            ]
            if hasattr(model, "acceleration_partials"):
                d_state, d_param = model.acceleration_partials(
                    epoch, state.position, state.velocity, state.mass, values[group],
                )
                matrix[3:6, :] += d_state
                for k, name in selected:
                    columns.setdefault(name, np.zeros(STATE_DIMENSION))[3:6] += d_param[:, k]
            else:
                self._add_automatic_partials(
                    model, epoch, state, values[group], selected, matrix, columns,
                )
        return DynamicsPartials(matrix, columns)

    @staticmethod
    def _add_automatic_partials(
        model: ForceModel,
        epoch: datetime,
        state: SpacecraftState,
        values: Sequence[float],
        selected: list[tuple[int, str]],
        matrix: np.ndarray,
        columns: dict[str, np.ndarray],
    ) -> None:
        # Position-only models are seeded along position directions only.
        n_state = 3 if model.depends_on_position_only() else STATE_DIMENSION
        size = n_state + len(selected)
        position = [Dual.variable(state.position[k], k, size) for k in range(3)]
        if n_state == 3:
            velocity, mass = list(state.velocity), state.mass
        else:
            velocity = [Dual.variable(state.velocity[k], 3 + k, size) for k in range(3)]
            mass = Dual.variable(state.mass, 6, size)
        parameters = list(values)
        for j, (k, _) in enumerate(selected):
            parameters[k] = Dual.variable(values[k], n_state + j, size)

        acceleration = d.jacobian_of(
            list(model.acceleration(epoch, position, velocity, mass, parameters)), size,
        )
        mass_rate = d.gradient_of(
            model.mass_rate(epoch, position, velocity, mass, parameters), size,
        )
        matrix[3:6, :n_state] += acceleration[:, :n_state]
        matrix[6, :n_state] += mass_rate[:n_state]
        for j, (_, name) in enumerate(selected):
            column = columns.setdefault(name, np.zeros(STATE_DIMENSION))
            column[3:6] += acceleration[:, n_state + j]
            column[6] += mass_rate[n_state + j]


# --- Parameter Jacobian columns ---

class IntegrableJacobianColumnGenerator:
    """dS/dt = A·S + ∂f/∂p for one driver span."""

    def __init__(self, stm_generator: StateTransitionMatrixGenerator, column_name: str) -> None:
        self._stm = stm_generator
        self._name = column_name

    @property
    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return STATE_DIMENSION

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        pass

    def yields(self, state: SpacecraftState) -> bool:
        return False

    def combined_derivatives(self, state: SpacecraftState) -> CombinedDerivatives:
        partials = self._stm.partials(state)
        derivative = partials.state_matrix @ state.get_additional_state(self._name)
        forcing = partials.parameter_columns.get(self._name)
        if forcing is not None:
            derivative = derivative + forcing
        return CombinedDerivatives(derivative)


class TriggerDateJacobianColumnGenerator:
    """dS/dt = A·S for a maneuver trigger date (start or stop).

    The column starts at zero; the trigger event injects (f⁻ − f⁺) per
    second of date shift through switch_correction.
    """

    def __init__(self, stm_generator: StateTransitionMatrixGenerator, column_name: str) -> None:
        self._stm = stm_generator
        self._name = column_name

    @property
    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return STATE_DIMENSION

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        pass

    def yields(self, state: SpacecraftState) -> bool:
        return False

    def combined_derivatives(self, state: SpacecraftState) -> CombinedDerivatives:
        matrix = self._stm.partials(state).state_matrix
        return CombinedDerivatives(matrix @ state.get_additional_state(self._name))


class _CombinedDateColumn:
    """Column computed from the start and stop date columns."""

    def __init__(self, column_name: str, start_name: str, stop_name: str) -> None:
        self._name = column_name
        self._start = start_name
        self._stop = stop_name

    @property
    def name(self) -> str:
        return self._name

    def init(self, initial_state: SpacecraftState, target: datetime) -> None:
        pass

    def yields(self, state: SpacecraftState) -> bool:
        return not (state.has_additional_state(self._start)
                    and state.has_additional_state(self._stop))


class MedianDateJacobianColumnGenerator(_CombinedDateColumn):
    """Shifting the median date shifts both start and stop."""

    def additional_state(self, state: SpacecraftState) -> np.ndarray:
        return state.get_additional_state(self._start) + state.get_additional_state(self._stop)


class DurationJacobianColumnGenerator(_CombinedDateColumn):
    """Stretching the duration moves start back and stop forward by half."""

    def additional_state(self, state: SpacecraftState) -> np.ndarray:
        return 0.5 * (state.get_additional_state(self._stop) - state.get_additional_state(self._start))


# --- Switch correction ---

def switch_correction(
    stm: np.ndarray,
    columns: Mapping[str, np.ndarray],
    f_minus: np.ndarray,
    f_plus: np.ndarray,
    partials: SwitchPartials,
) -> tuple[np.ndarray, dict[str, np.ndarray]]:
    """Update Φ and the parameter columns across a switch of the dynamics.

    With the switch time t_s defined by g(t_s, y(t_s), p) = 0, a
    variation c of the pre-switch state (a column of Φ, or a parameter
    column with its own ∂g/∂p) moves the switch by δt and the state at
    the switch by δy:

        M · [δy; δt] = [c; −g_p],   M = [[I, −f⁻], [∇gᵀ, g_t]]

    and the post-switch variation is c⁺ = δy − f⁺·δt.

    Args:
        stm: 7×7 Cartesian STM before the switch.
        columns: Cartesian parameter columns before the switch, by name.
        f_minus: Cartesian state derivative with the pre-switch dynamics.
        f_plus: Cartesian state derivative with the post-switch dynamics.
        partials: ∂g/∂y, ∂g/∂t and ∂g/∂p at the switch.

    Returns:
        (stm, columns) after the switch.
    """
    n = STATE_DIMENSION
    names = list(columns)
    system = np.zeros((n + 1, n + 1))
    system[:n, :n] = np.eye(n)
    system[:n, n] = -f_minus
    system[n, :n] = partials.dg_dy
    system[n, n] = partials.dg_dt

    rhs = np.zeros((n + 1, n + len(names)))
    rhs[:n, :n] = stm
    for k, name in enumerate(names):
        rhs[:n, n + k] = columns[name]
        rhs[n, n + k] = -partials.dg_dp.get(name, 0.0)

    solution = np.linalg.solve(system, rhs)
    corrected = solution[:n] - np.outer(f_plus, solution[n])
    logger.debug("switch correction, dt sensitivities %s", solution[n, n:])
    return corrected[:, :n], {name: corrected[:, n + k] for k, name in enumerate(names)}
