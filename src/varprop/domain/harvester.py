# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Harvester turning integrated variational blocks into matrices.

The STM and the Jacobian columns are integrated in Cartesian coordinates
plus mass. The harvester maps them into the propagator's orbit type with
the Cartesian-to-orbit Jacobian at the state's date and truncates them to
the requested state dimension: 6 (orbit only) or 7 (orbit and mass).
"""
from typing import Callable

import numpy as np

from varprop.domain.errors import ErrorSpecifier, PropagationError, require
from varprop.domain.orbital_mechanics import OrbitType, PositionAngleType
from varprop.domain.state import SpacecraftState
from varprop.domain.state_mapper import cartesian_to_orbit_jacobian
from varprop.domain.variational import STATE_DIMENSION


def _padded_stm(matrix: np.ndarray | None) -> tuple[np.ndarray, int]:
    """Initial STM as 7×7 and the state dimension it was given in."""
    if matrix is None:
        return np.eye(STATE_DIMENSION), 6
    matrix = np.asarray(matrix, dtype=float)
    if matrix.shape == (7, 7):
        return matrix.copy(), 7
    if matrix.shape == (6, 6):
        padded = np.eye(STATE_DIMENSION)
        padded[:6, :6] = matrix
        return padded, 6
    raise PropagationError(ErrorSpecifier.DIMENSION_MISMATCH, "initial STM", "6×6 or 7×7", matrix.shape)


class MatricesHarvester:
    """Read-only extractor of the STM and parameter Jacobian from states.

    Bound to one propagator: column names follow the drivers currently
    selected in its force models.
    """

    def __init__(
        self,
        stm_name: str,
        initial_stm: np.ndarray | None,
        initial_jacobian: np.ndarray | None,
        orbit_type: OrbitType,
        angle_type: PositionAngleType,
        columns_names: Callable[[], list[str]],
    ) -> None:
        require(stm_name, "stm_name")
        self._stm_name = stm_name
        self._initial_stm, self._state_dimension = _padded_stm(initial_stm)
        if initial_jacobian is not None:
            initial_jacobian = np.asarray(initial_jacobian, dtype=float)
            if initial_jacobian.ndim != 2 or initial_jacobian.shape[0] != self._state_dimension:
                raise PropagationError(
                    ErrorSpecifier.DIMENSION_MISMATCH, "initial Jacobian",
                    f"{self._state_dimension} rows", initial_jacobian.shape,
                )
        self._initial_jacobian = initial_jacobian
        self._orbit_type = orbit_type
        self._angle_type = angle_type
        self._columns_names = columns_names

    @property
    def stm_name(self) -> str:
        return self._stm_name

    @property
    def state_dimension(self) -> int:
        return self._state_dimension

    @property
    def orbit_type(self) -> OrbitType:
        return self._orbit_type

    @property
    def position_angle_type(self) -> PositionAngleType:
        return self._angle_type

    def get_jacobians_columns_names(self) -> list[str]:
        return self._columns_names()

    # --- initial values ---

    def initial_state_transition_matrix(self) -> np.ndarray:
        """Initial STM in the orbit type, padded to 7×7."""
        return self._initial_stm.copy()

    def get_initial_jacobian_column(self, column_name: str) -> np.ndarray:
        """Initial column for column_name, zeros when none was given."""
        column = np.zeros(self._state_dimension)
        if self._initial_jacobian is None:
            return column
        names = self.get_jacobians_columns_names()
        if column_name in names:
            index = names.index(column_name)
            if index < self._initial_jacobian.shape[1]:
                column[:] = self._initial_jacobian[:, index]
        return column

    def initial_column_padded(self, column_name: str) -> np.ndarray:
        column = np.zeros(STATE_DIMENSION)
        column[:self._state_dimension] = self.get_initial_jacobian_column(column_name)
        return column

    # --- extraction ---

    def _orbit_jacobian(self, state: SpacecraftState) -> np.ndarray:
        jacobian = np.eye(STATE_DIMENSION)
        jacobian[:6, :6] = cartesian_to_orbit_jacobian(
            state.position, state.velocity, self._orbit_type, self._angle_type, state.mu,
        )
        return jacobian

    def get_state_transition_matrix(self, state: SpacecraftState) -> np.ndarray | None:
        """STM ∂y(t)/∂y(t0) in the orbit type, None if the state has no STM."""
        if not state.has_additional_state(self._stm_name):
            return None
        phi = state.get_additional_state(self._stm_name).reshape(STATE_DIMENSION, STATE_DIMENSION)
        n = self._state_dimension
        return (self._orbit_jacobian(state) @ phi)[:n, :n]

    def get_parameters_jacobian(self, state: SpacecraftState) -> np.ndarray | None:
        """∂y(t)/∂p for the selected parameters, None without STM or columns."""
        names = self.get_jacobians_columns_names()
        if not names or not state.has_additional_state(self._stm_name):
            return None
        columns = np.column_stack([state.get_additional_state(name) for name in names])
        return (self._orbit_jacobian(state) @ columns)[:self._state_dimension]

    def get_parameter_column(self, state: SpacecraftState, column_name: str) -> np.ndarray:
        """One column of the parameters Jacobian by name."""
        column = self._orbit_jacobian(state) @ state.get_additional_state(column_name)
        return column[:self._state_dimension]

