# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Numerical propagator with variational equations.

NumericalPropagator integrates the primary state (orbit parameters of a
chosen orbit type plus mass) under a list of force models, together with
every additional block registered on it: the state transition matrix and
the parameter Jacobian columns set up by setup_matrices_computation, and
user additional derivatives. Events of the force models (maneuver
triggers) and of the user are located by the integrator; switches of the
dynamics update the variational blocks through switch_correction.

Every propagate call is a self-contained run: driver values, the state
mapper, the augmented layout and the per-run force models (maneuver
trigger status) are fixed when it starts. Configuration objects are only
read, so independent propagators can share force models and run
concurrently.
"""
import logging
from datetime import datetime
from typing import Callable, Sequence

import numpy as np

from varprop.domain.adaptive_integration import (
    AdaptiveStepConfig,
    DormandPrinceIntegrator,
    EventAction,
    StepInterpolator,
)
from varprop.domain.additional_states import (
    AdditionalDerivativesProvider,
    AdditionalStateProvider,
    AdditionalStatesManager,
)
from varprop.domain.ephemeris import EphemerisGenerator
from varprop.domain.equations import MainStateEquations
from varprop.domain.errors import ErrorSpecifier, PropagationError, require
from varprop.domain.events import EventDetector
from varprop.domain.force_models import ForceModel
from varprop.domain.harvester import MatricesHarvester
from varprop.domain.maneuvers import ConstantThrustManeuver, DateBasedManeuverTriggers
from varprop.domain.orbital_mechanics import OrbitType, PositionAngleType
from varprop.domain.parameters import ParameterDriver, ParameterTimeline
from varprop.domain.state import SpacecraftState
from varprop.domain.state_mapper import StateMapper
from varprop.domain.variational import (
    DurationJacobianColumnGenerator,
    IntegrableJacobianColumnGenerator,
    MedianDateJacobianColumnGenerator,
    StateTransitionMatrixGenerator,
    TriggerDateJacobianColumnGenerator,
    switch_correction,
)

logger = logging.getLogger(__name__)

StateStepHandler = Callable[["StateStepInterpolator", bool], None]
FixedStepHandler = Callable[[SpacecraftState, bool], None]


# --- Jacobian column plan ---

class _ColumnPlan:
    """Which Jacobian columns a run needs and how each one is produced."""

    def __init__(self, force_models: Sequence[ForceModel]) -> None:
        self.names: list[str] = []
        self.integrable: list[str] = []
        self.trigger_dates: list[str] = []
        self.combined: list[tuple[type, str, str, str]] = []

        for model in force_models:
            roles = {}
            if isinstance(model, ConstantThrustManeuver) and isinstance(
                model.triggers, DateBasedManeuverTriggers,
            ):
                triggers = model.triggers
                start, stop = triggers.start_driver.name, triggers.stop_driver.name
                roles = {
                    id(triggers.start_driver): ("date", None),
                    id(triggers.stop_driver): ("date", None),
                    id(triggers.median_driver): ("combined", (MedianDateJacobianColumnGenerator, start, stop)),
                    id(triggers.duration_driver): ("combined", (DurationJacobianColumnGenerator, start, stop)),
                }
            for driver in model.parameter_drivers():
                if not driver.is_selected():
                    continue
                role, combination = roles.get(id(driver), ("integrable", None))
                for span in driver.span_names():
                    if span in self.names:
                        continue
                    self.names.append(span)
                    if role == "integrable":
                        self.integrable.append(span)
                    elif role == "date":
                        self._add_trigger_date(span)
                    else:
                        generator_class, start, stop = combination
                        self._add_trigger_date(start)
                        self._add_trigger_date(stop)
                        self.combined.append((generator_class, span, start, stop))

    def _add_trigger_date(self, name: str) -> None:
        if name not in self.trigger_dates:
            self.trigger_dates.append(name)

    @property
    def integrated(self) -> list[str]:
        return self.integrable + self.trigger_dates


# --- Run ---

class _PropagationRun:
    """Everything fixed for one propagate call."""

    def __init__(
        self,
        propagator: "NumericalPropagator",
        initial_state: SpacecraftState,
        target: datetime,
    ) -> None:
        configured = propagator.get_all_force_models()
        force_models = [model.init(initial_state, target) for model in configured]
        self.mapper = StateMapper.for_state(
            initial_state, propagator.orbit_type, propagator.position_angle_type,
        )
        self.equations = MainStateEquations(
            force_models,
            self.mapper,
            ParameterTimeline([m.parameter_drivers() for m in force_models], initial_state.reference_epoch),
        )
        self.manager = AdditionalStatesManager()
        self.stm: StateTransitionMatrixGenerator | None = None
        self.columns = _ColumnPlan(configured)
        harvester = propagator.harvester

        if harvester is not None:
            self.stm = StateTransitionMatrixGenerator(harvester.stm_name, force_models)
            self.manager.add_derivatives_provider(self.stm)
            for name in self.columns.integrable:
                self.manager.add_derivatives_provider(IntegrableJacobianColumnGenerator(self.stm, name))
            for name in self.columns.trigger_dates:
                self.manager.add_derivatives_provider(TriggerDateJacobianColumnGenerator(self.stm, name))
            for generator_class, name, start, stop in self.columns.combined:
                self.manager.add_state_provider(generator_class(name, start, stop))
        for provider in propagator.additional_derivatives_providers:
            self.manager.add_derivatives_provider(provider)
        for provider in propagator.additional_state_providers:
            self.manager.add_state_provider(provider)

        if harvester is not None:
            initial_state = self._install_matrices(initial_state, harvester)
        self.manager.init(initial_state, target)
        self.manager.check_initial_state(initial_state)
        self.layout = self.manager.layout()
        self.unmanaged = {
            name: values for name, values in initial_state.additional_states.items()
            if not self.manager.is_registered(name)
        }
        self.initial_state = self.manager.update_additional_states(initial_state)

        detectors = [d for model in force_models for d in model.event_detectors()]
        detectors.extend(propagator.get_event_detectors())
        for detector in detectors:
            detector.init(self.initial_state, target)
        self.events = [_DetectorEvent(self, detector) for detector in detectors]

    def _install_matrices(self, state: SpacecraftState, harvester: MatricesHarvester) -> SpacecraftState:
        """Cartesian initial values of the STM and columns the state does not carry yet."""
        missing = [name for name in [harvester.stm_name] + self.columns.integrated
                   if not state.has_additional_state(name)]
        if not missing:
            return state
        jacobian = self.mapper.orbit_to_cartesian_jacobian(self.mapper.to_array(state))
        for name in missing:
            if name == harvester.stm_name:
                values = (jacobian @ harvester.initial_state_transition_matrix()).ravel()
            else:
                values = jacobian @ harvester.initial_column_padded(name)
            state = state.add_additional_state(name, values)
        return state

    # --- conversions ---

    def to_array(self, state: SpacecraftState) -> np.ndarray:
        return self.layout.assemble(
            self.mapper.to_array(state),
            {name: state.get_additional_state(name) for name in self.layout.names},
        )

    def raw_state(self, t: float, y: np.ndarray) -> SpacecraftState:
        blocks = dict(self.unmanaged)
        blocks.update(self.layout.blocks(y))
        return self.mapper.from_array(self.layout.primary(y), t, blocks)

    def state_at(self, t: float, y: np.ndarray) -> SpacecraftState:
        return self.manager.update_additional_states(self.raw_state(t, y))

    # --- dynamics ---

    def derivatives(self, t: float, y: np.ndarray) -> np.ndarray:
        primary_dot = self.equations.derivatives(t, self.layout.primary(y))
        if not self.layout.names:
            return primary_dot
        _, results = self.manager.combined_derivatives(self.raw_state(t, y))
        y_dot = np.empty(self.layout.dimension)
        y_dot[:self.layout.primary_dimension] = primary_dot
        for name in self.layout.names:
            combined = results[name]
            y_dot[self.layout.slice_of(name)] = combined.additional
            if combined.main_state_increments is not None:
                y_dot[:self.layout.primary_dimension] += combined.main_state_increments
        return y_dot

    def cartesian_derivatives(self, state: SpacecraftState) -> np.ndarray:
        return self.equations.cartesian_derivatives(
            state.elapsed_s, state.position, state.velocity, state.mass,
        )

    def corrected(self, y: np.ndarray, f_minus: np.ndarray, f_plus: np.ndarray, partials) -> np.ndarray:
        y = y.copy()
        stm_slice = self.layout.slice_of(self.stm.name)
        columns = {name: y[self.layout.slice_of(name)] for name in self.columns.integrated}
        stm, columns = switch_correction(
            y[stm_slice].reshape(7, 7), columns, f_minus, f_plus, partials,
        )
        y[stm_slice] = stm.ravel()
        for name, column in columns.items():
            y[self.layout.slice_of(name)] = column
        return y


class _DetectorEvent:
    """Adapts a state-level EventDetector to the integrator's (t, y) events."""

    def __init__(self, run: _PropagationRun, detector: EventDetector) -> None:
        self._run = run
        self._detector = detector
        self.max_check = detector.max_check
        self.threshold = detector.threshold
        self.max_iterations = detector.max_iterations

    def g(self, t: float, y: np.ndarray) -> float:
        return self._detector.g(self._run.state_at(t, y))

    def event_times(self) -> list[float]:
        if hasattr(self._detector, "event_times"):
            return self._detector.event_times(self._run.mapper.reference_epoch)
        return []

    def handle(self, t: float, y: np.ndarray, increasing: bool) -> tuple[EventAction, np.ndarray]:
        run = self._run
        state = run.state_at(t, y)
        switching = run.stm is not None and hasattr(self._detector, "switch_partials")
        f_minus = run.cartesian_derivatives(state) if switching else None

        action = self._detector.event_occurred(state, increasing)
        logger.debug("%s at %s: %s", type(self._detector).__name__, state.date, action.name)
        if action in (EventAction.RESET_STATE, EventAction.RESET_DERIVATIVES) and run.stm is not None:
            run.stm.invalidate()
        if action == EventAction.RESET_STATE:
            y = run.to_array(self._detector.reset_state(state))
        elif action == EventAction.RESET_DERIVATIVES and switching:
            y = run.corrected(
                y, f_minus, run.cartesian_derivatives(state), self._detector.switch_partials(state),
            )
        return action, y


# --- Step handlers ---

class StateStepInterpolator:
    """Step handler view of one accepted step, in SpacecraftState terms."""

    def __init__(self, run: _PropagationRun, interpolator: StepInterpolator) -> None:
        self._run = run
        self._interpolator = interpolator

    @property
    def forward(self) -> bool:
        return self._interpolator.forward

    @property
    def previous_elapsed(self) -> float:
        return self._interpolator.t_previous

    @property
    def current_elapsed(self) -> float:
        return self._interpolator.t_current

    @property
    def previous_state(self) -> SpacecraftState:
        return self._run.state_at(self._interpolator.t_previous, self._interpolator.y_previous)

    @property
    def current_state(self) -> SpacecraftState:
        return self._run.state_at(self._interpolator.t_current, self._interpolator.y_current)

    def state_at_elapsed(self, elapsed_s: float) -> SpacecraftState:
        return self._run.state_at(elapsed_s, self._interpolator.interpolate(elapsed_s))

    def interpolated_state(self, date: datetime) -> SpacecraftState:
        return self.state_at_elapsed((date - self._run.mapper.reference_epoch).total_seconds())


class _FixedStepSampler:
    """Calls handler every step_s seconds from the run start, and at the end."""

    def __init__(self, step_s: float, handler: FixedStepHandler, t0: float, forward: bool) -> None:
        self._step = step_s if forward else -step_s
        self._handler = handler
        self._t0 = t0
        self._forward = forward
        self._index = 0
        self._last_emitted: float | None = None

    def _next_time(self) -> float:
        return self._t0 + self._index * self._step

    def __call__(self, interpolator: StateStepInterpolator, is_last: bool) -> None:
        t_end = interpolator.current_elapsed
        while True:
            t = self._next_time()
            if (t > t_end) if self._forward else (t < t_end):
                break
            self._index += 1
            self._last_emitted = t
            self._handler(interpolator.state_at_elapsed(t), is_last and t == t_end)
        if is_last and self._last_emitted != t_end:
            self._last_emitted = t_end
            self._handler(interpolator.current_state, True)


# --- Propagator ---

class NumericalPropagator:
    """Numerical orbit propagator with STM and parameter Jacobians.

    Args:
        initial_state: State the first propagation starts from.
        force_models: Ordered force models, only read during propagation.
        config: Integrator configuration (tolerances, step bounds).
        orbit_type: Element set of the integrated primary state.
        angle_type: Position angle type of the element set.
    """

    def __init__(
        self,
        initial_state: SpacecraftState,
        force_models: Sequence[ForceModel] = (),
        config: AdaptiveStepConfig | None = None,
        orbit_type: OrbitType = OrbitType.CARTESIAN,
        angle_type: PositionAngleType = PositionAngleType.TRUE,
    ) -> None:
        require(initial_state, "initial_state")
        self._state = initial_state
        self._force_models: list[ForceModel] = list(force_models)
        self._integrator = DormandPrinceIntegrator(config)
        self._orbit_type = orbit_type
        self._angle_type = angle_type
        self._additional = AdditionalStatesManager()
        self._detectors: list[EventDetector] = []
        self._step_handlers: list[StateStepHandler] = []
        self._fixed_step: tuple[float, FixedStepHandler] | None = None
        self._harvester: MatricesHarvester | None = None
        self._ephemeris_generator: EphemerisGenerator | None = None

    # --- configuration ---

    @property
    def initial_state(self) -> SpacecraftState:
        return self._state

    def reset_initial_state(self, state: SpacecraftState) -> None:
        require(state, "state")
        self._state = state

    @property
    def orbit_type(self) -> OrbitType:
        return self._orbit_type

    @property
    def position_angle_type(self) -> PositionAngleType:
        return self._angle_type

    @property
    def harvester(self) -> MatricesHarvester | None:
        return self._harvester

    def add_force_model(self, model: ForceModel) -> None:
        require(model, "model")
        self._force_models.append(model)

    def get_all_force_models(self) -> list[ForceModel]:
        return list(self._force_models)

    def get_parameters_drivers(self) -> list[ParameterDriver]:
        drivers: list[ParameterDriver] = []
        for model in self._force_models:
            for driver in model.parameter_drivers():
                if all(driver is not known for known in drivers):
                    drivers.append(driver)
        return drivers

    def get_parameter_driver(self, name: str) -> ParameterDriver:
        drivers = self.get_parameters_drivers()
        for driver in drivers:
            if driver.name == name:
                return driver
        raise PropagationError(
            ErrorSpecifier.UNSUPPORTED_PARAMETER_NAME, name, ", ".join(d.name for d in drivers),
        )

    def add_event_detector(self, detector: EventDetector) -> None:
        require(detector, "detector")
        self._detectors.append(detector)

    def get_event_detectors(self) -> list[EventDetector]:
        return list(self._detectors)

    def clear_event_detectors(self) -> None:
        self._detectors.clear()

    def _check_name(self, name: str) -> None:
        if self._additional.is_registered(name) or (
            self._harvester is not None and self._harvester.stm_name == name
        ):
            raise PropagationError(ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE, name)

    def add_additional_derivatives_provider(self, provider: AdditionalDerivativesProvider) -> None:
        require(provider, "provider")
        self._check_name(provider.name)
        self._additional.add_derivatives_provider(provider)

    def add_additional_state_provider(self, provider: AdditionalStateProvider) -> None:
        require(provider, "provider")
        self._check_name(provider.name)
        self._additional.add_state_provider(provider)

    @property
    def additional_derivatives_providers(self) -> tuple[AdditionalDerivativesProvider, ...]:
        return self._additional.derivatives_providers

    @property
    def additional_state_providers(self) -> tuple[AdditionalStateProvider, ...]:
        return self._additional.state_providers

    def add_step_handler(self, handler: StateStepHandler) -> None:
        self._step_handlers.append(handler)

    def set_fixed_step_handler(self, step_s: float, handler: FixedStepHandler) -> None:
        if step_s <= 0.0:
            raise ValueError(f"step_s must be positive, got {step_s}")
        self._fixed_step = (step_s, handler)

    def clear_step_handlers(self) -> None:
        self._step_handlers.clear()
        self._fixed_step = None

    def get_ephemeris_generator(self) -> EphemerisGenerator:
        """Generator recording the trajectory of the next propagations."""
        if self._ephemeris_generator is None:
            self._ephemeris_generator = EphemerisGenerator()
        return self._ephemeris_generator

    def setup_matrices_computation(
        self,
        stm_name: str,
        initial_stm: np.ndarray | None = None,
        initial_jacobian: np.ndarray | None = None,
    ) -> MatricesHarvester:
        """Integrate the STM and the selected parameters' Jacobian columns.

        Args:
            stm_name: Additional state name of the STM block.
            initial_stm: Initial 6×6 or 7×7 STM in the orbit type (identity
                when None, with state dimension 6).
            initial_jacobian: Initial parameters Jacobian, one column per
                selected parameter (zeros when None).

        Returns:
            Harvester extracting the matrices from propagated states.
        """
        require(stm_name, "stm_name")
        if self._additional.is_registered(stm_name):
            raise PropagationError(ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE, stm_name)
        self._harvester = MatricesHarvester(
            stm_name, initial_stm, initial_jacobian, self._orbit_type, self._angle_type,
            lambda: _ColumnPlan(self._force_models).names,
        )
        return self._harvester

    # --- propagation ---

    def propagate(self, start_or_target: datetime, target: datetime | None = None) -> SpacecraftState:
        """Propagate to target, or from start to target.

        With two dates the propagator first moves to start (events active,
        step handlers and ephemeris generation inactive), then to target.
        The final state becomes the initial state of the next call.
        """
        require(start_or_target, "target")
        if target is not None:
            if start_or_target != self._state.date:
                self._state = self._propagate_segment(start_or_target, handlers_active=False)
            return self.propagate(target)
        self._state = self._propagate_segment(start_or_target, handlers_active=True)
        return self._state

    def _propagate_segment(self, target: datetime, handlers_active: bool) -> SpacecraftState:
        run = _PropagationRun(self, self._state, target)
        t0 = run.initial_state.elapsed_s
        t_end = run.initial_state.seconds_to(target)
        generator = self._ephemeris_generator if handlers_active else None
        if generator is not None:
            generator.start()

        logger.debug(
            "propagating from %s to %s, augmented dimension %d, blocks %s",
            run.initial_state.date, target, run.layout.dimension, run.layout.names,
        )

        handlers = []
        if handlers_active:
            state_handlers = list(self._step_handlers)
            if self._fixed_step is not None:
                state_handlers.append(_FixedStepSampler(*self._fixed_step, t0, t_end >= t0))
            if state_handlers:
                def notify(interpolator: StepInterpolator, is_last: bool) -> None:
                    view = StateStepInterpolator(run, interpolator)
                    for handler in state_handlers:
                        handler(view, is_last)
                handlers.append(notify)
            if generator is not None:
                handlers.append(generator.handle_step)

        if t_end == t0:
            final = run.initial_state
        else:
            result = self._integrator.integrate(
                run.derivatives, t0, run.to_array(run.initial_state), t_end, run.events, handlers,
            )
            final = run.state_at(result.t, result.y)
            logger.debug(
                "propagation ended at %s after %d steps (%d rejected)%s",
                final.date, result.total_steps, result.rejected_steps,
                ", stopped by event" if result.stopped else "",
            )
        if generator is not None:
            generator.finish(run.mapper.reference_epoch, run.state_at, run.initial_state)
        return final
