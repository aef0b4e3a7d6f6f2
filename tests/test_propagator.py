# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Tests for the numerical propagator: runs, providers, handlers, ephemerides."""
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from varprop import (
    AdaptiveStepConfig,
    CombinedDerivatives,
    ConstantThrustManeuver,
    DateBasedManeuverTriggers,
    DateDetector,
    ErrorSpecifier,
    J2Perturbation,
    NewtonianAttraction,
    NumericalPropagator,
    OrbitalConstants,
    OrbitType,
    PropagationError,
    SpacecraftState,
    kepler_to_cartesian,
    tolerances,
)
from varprop.domain.events import FunctionalDetector, continue_on_event


@pytest.fixture
def epoch():
    return datetime(2026, 3, 20, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def leo_state(epoch):
    pos, vel = kepler_to_cartesian(
        6_878_137.0, 0.001, math.radians(51.6), math.radians(20.0),
        math.radians(10.0), math.radians(0.0),
    )
    return SpacecraftState(epoch, 0.0, pos, vel, mass=1000.0)


def _config(state, orbit_type=OrbitType.CARTESIAN, dp=1e-3):
    absolute, relative = tolerances(dp, state, orbit_type)
    return AdaptiveStepConfig(rtol=tuple(relative), atol=tuple(absolute),
                              h_init=10.0, h_min=1e-3, h_max=120.0)


def _propagator(state, orbit_type=OrbitType.CARTESIAN):
    return NumericalPropagator(
        state, [NewtonianAttraction(), J2Perturbation()], _config(state, orbit_type), orbit_type,
    )


class _LinearState:
    """Integrated block growing at a constant rate."""

    def __init__(self, name, rates):
        self.name = name
        self._rates = np.asarray(rates, dtype=float)
        self.dimension = self._rates.size

    def init(self, initial_state, target):
        pass

    def yields(self, state):
        return False

    def combined_derivatives(self, state):
        return CombinedDerivatives(self._rates)


class _Radius:
    """Computed block holding |r|."""

    name = "radius"

    def init(self, initial_state, target):
        pass

    def yields(self, state):
        return False

    def additional_state(self, state):
        return np.array([np.linalg.norm(state.position)])


# ── Basic runs ────────────────────────────────────────────────────

class TestPropagate:

    def test_no_op_returns_initial_state(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        final = propagator.propagate(epoch)
        np.testing.assert_allclose(final.position, leo_state.position, atol=1e-10)
        np.testing.assert_allclose(final.velocity, leo_state.velocity, atol=1e-10)
        assert final.date == epoch

    def test_no_op_in_element_set(self, leo_state, epoch):
        propagator = _propagator(leo_state, OrbitType.EQUINOCTIAL)
        final = propagator.propagate(epoch)
        np.testing.assert_allclose(final.position, leo_state.position, atol=1e-10)

    def test_orbit_types_agree(self, leo_state, epoch):
        target = epoch + timedelta(minutes=30)
        reference = _propagator(leo_state).propagate(target)
        for orbit_type in (OrbitType.KEPLERIAN, OrbitType.CIRCULAR, OrbitType.EQUINOCTIAL):
            final = _propagator(leo_state, orbit_type).propagate(target)
            np.testing.assert_allclose(final.position, reference.position, atol=0.5)

    def test_energy_conserved_two_body(self, leo_state, epoch):
        propagator = NumericalPropagator(leo_state, [NewtonianAttraction()], _config(leo_state))
        final = propagator.propagate(epoch + timedelta(hours=2))

        def energy(s):
            return 0.5 * float(s.velocity @ s.velocity) - s.mu / float(np.linalg.norm(s.position))

        assert energy(final) == pytest.approx(energy(leo_state), rel=1e-8)

    def test_final_state_becomes_initial(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        final = propagator.propagate(epoch + timedelta(minutes=10))
        assert propagator.initial_state is final

    def test_backward_then_forward(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        propagator.propagate(epoch - timedelta(minutes=20))
        back = propagator.propagate(epoch)
        np.testing.assert_allclose(back.position, leo_state.position, atol=0.5)

    def test_propagate_from_start_date(self, leo_state, epoch):
        seen = []
        start = epoch + timedelta(minutes=5)
        target = epoch + timedelta(minutes=15)
        propagator = _propagator(leo_state)
        propagator.add_step_handler(lambda interp, last: seen.append(interp.previous_elapsed))
        final = propagator.propagate(start, target)
        assert final.date == target
        assert min(seen) == pytest.approx(300.0)

        reference = _propagator(leo_state).propagate(target)
        np.testing.assert_allclose(final.position, reference.position, atol=0.5)

    def test_reset_initial_state(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        moved = leo_state.rebased(epoch - timedelta(hours=1))
        propagator.reset_initial_state(moved)
        assert propagator.initial_state is moved
        with pytest.raises(PropagationError):
            propagator.reset_initial_state(None)


# ── Events ────────────────────────────────────────────────────────

class TestPropagatorEvents:

    def test_date_detector_stops(self, leo_state, epoch):
        stop = epoch + timedelta(seconds=1234.5)
        propagator = _propagator(leo_state)
        propagator.add_event_detector(DateDetector(stop))
        final = propagator.propagate(epoch + timedelta(hours=1))
        assert final.date == stop
        assert propagator.get_event_detectors()[0].dates == (stop,)
        propagator.clear_event_detectors()
        assert propagator.get_event_detectors() == []

    def test_functional_detector_crossing(self, leo_state, epoch):
        """Descending then ascending node, starting 10° past the ascending node."""
        crossings = []

        def handler(state, detector, increasing):
            crossings.append((state.elapsed_s, increasing))
            return continue_on_event(state, detector, increasing)

        propagator = _propagator(leo_state)
        propagator.add_event_detector(FunctionalDetector(lambda s: s.position[2], handler=handler, max_check=60.0))
        propagator.propagate(epoch + timedelta(hours=2))
        assert [inc for _, inc in crossings][:2] == [False, True]
        period = 2.0 * math.pi * math.sqrt(6_878_137.0 ** 3 / leo_state.mu)
        assert crossings[1][0] == pytest.approx(350.0 / 360.0 * period, rel=0.01)


# ── Additional states ─────────────────────────────────────────────

class TestAdditionalStates:

    def test_linear_derivatives(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        propagator.add_additional_derivatives_provider(_LinearState("linear", [2.0, -0.5]))
        start = leo_state.add_additional_state("linear", [1.0, 10.0])
        propagator.reset_initial_state(start)
        final = propagator.propagate(epoch + timedelta(seconds=600))
        np.testing.assert_allclose(final.get_additional_state("linear"), [1201.0, -290.0], atol=1e-8)

    def test_missing_initial_value(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        propagator.add_additional_derivatives_provider(_LinearState("linear", [1.0]))
        with pytest.raises(PropagationError) as info:
            propagator.propagate(epoch + timedelta(seconds=60))
        assert info.value.specifier is ErrorSpecifier.UNKNOWN_ADDITIONAL_STATE

    def test_state_provider_refreshed(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        propagator.add_additional_state_provider(_Radius())
        final = propagator.propagate(epoch + timedelta(seconds=600))
        assert final.get_additional_state("radius")[0] == pytest.approx(np.linalg.norm(final.position))

    def test_unmanaged_state_carried(self, leo_state, epoch):
        propagator = _propagator(leo_state.add_additional_state("tag", [42.0]))
        final = propagator.propagate(epoch + timedelta(seconds=60))
        assert final.get_additional_state("tag")[0] == 42.0

    def test_duplicate_names(self, leo_state):
        propagator = _propagator(leo_state)
        propagator.add_additional_derivatives_provider(_LinearState("block", [1.0]))
        with pytest.raises(PropagationError) as info:
            propagator.add_additional_state_provider(_LinearState("block", [1.0]))
        assert info.value.specifier is ErrorSpecifier.ADDITIONAL_STATE_NAME_ALREADY_IN_USE
        with pytest.raises(PropagationError):
            propagator.setup_matrices_computation("block")
        propagator.setup_matrices_computation("stm")
        with pytest.raises(PropagationError):
            propagator.add_additional_derivatives_provider(_LinearState("stm", [1.0]))
        assert [p.name for p in propagator.additional_derivatives_providers] == ["block"]


# ── Drivers ───────────────────────────────────────────────────────

class TestParameterDrivers:

    def test_lookup(self, leo_state):
        propagator = _propagator(leo_state)
        driver = propagator.get_parameter_driver("central attraction coefficient")
        assert driver.value() == pytest.approx(leo_state.mu)
        assert len(propagator.get_parameters_drivers()) == 1

    def test_unsupported_name(self, leo_state):
        propagator = _propagator(leo_state)
        with pytest.raises(PropagationError) as info:
            propagator.get_parameter_driver("drag coefficient")
        assert info.value.specifier is ErrorSpecifier.UNSUPPORTED_PARAMETER_NAME
        assert "central attraction coefficient" in str(info.value)

    def test_shared_driver_listed_once(self, leo_state):
        gravity = NewtonianAttraction()
        propagator = NumericalPropagator(leo_state, [gravity, gravity])
        assert len(propagator.get_parameters_drivers()) == 1

    def test_null_arguments(self, leo_state):
        with pytest.raises(PropagationError):
            NumericalPropagator(None)
        propagator = _propagator(leo_state)
        with pytest.raises(PropagationError) as info:
            propagator.setup_matrices_computation(None)
        assert info.value.specifier is ErrorSpecifier.NULL_ARGUMENT


# ── Step handlers ─────────────────────────────────────────────────

class TestStepHandlers:

    def test_fixed_step_handler(self, leo_state, epoch):
        samples = []
        propagator = _propagator(leo_state)
        propagator.set_fixed_step_handler(60.0, lambda state, last: samples.append((state.elapsed_s, last)))
        propagator.propagate(epoch + timedelta(seconds=330))
        times = [t for t, _ in samples]
        assert times == pytest.approx([0.0, 60.0, 120.0, 180.0, 240.0, 300.0, 330.0])
        assert [last for _, last in samples] == [False] * 6 + [True]

    def test_fixed_step_must_be_positive(self, leo_state):
        with pytest.raises(ValueError):
            _propagator(leo_state).set_fixed_step_handler(0.0, lambda s, last: None)

    def test_interpolated_states_match_steps(self, leo_state, epoch):
        checks = []

        def handler(interp, last):
            mid = interp.state_at_elapsed(0.5 * (interp.previous_elapsed + interp.current_elapsed))
            checks.append((interp.previous_state.elapsed_s, mid.elapsed_s, interp.current_state.elapsed_s))
            assert interp.forward

        propagator = _propagator(leo_state)
        propagator.add_step_handler(handler)
        propagator.propagate(epoch + timedelta(seconds=600))
        assert checks
        for previous, mid, current in checks:
            assert previous < mid < current

    def test_clear_step_handlers(self, leo_state, epoch):
        calls = []
        propagator = _propagator(leo_state)
        propagator.add_step_handler(lambda interp, last: calls.append(last))
        propagator.set_fixed_step_handler(10.0, lambda s, last: calls.append(last))
        propagator.clear_step_handlers()
        propagator.propagate(epoch + timedelta(seconds=60))
        assert calls == []


# ── Ephemeris generation ──────────────────────────────────────────

class TestEphemerisGeneration:

    def test_bounded_and_frozen(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        generator = propagator.get_ephemeris_generator()
        final = propagator.propagate(epoch + timedelta(minutes=30))
        ephemeris = generator.get_generated_ephemeris()

        assert ephemeris.min_date == epoch
        assert ephemeris.max_date == epoch + timedelta(minutes=30)
        boundary = ephemeris.propagate(ephemeris.max_date)
        assert boundary.time_from(ephemeris.max_date) == 0.0
        np.testing.assert_allclose(boundary.position, final.position, atol=1e-6)
        start = ephemeris.propagate(ephemeris.min_date)
        np.testing.assert_allclose(start.position, leo_state.position, atol=1e-6)

        with pytest.raises(PropagationError) as info:
            ephemeris.propagate(epoch - timedelta(seconds=1))
        assert info.value.specifier is ErrorSpecifier.OUT_OF_RANGE_EPHEMERIDES_DATE_BEFORE
        with pytest.raises(PropagationError) as info:
            ephemeris.propagate(epoch + timedelta(minutes=31))
        assert info.value.specifier is ErrorSpecifier.OUT_OF_RANGE_EPHEMERIDES_DATE_AFTER

        mid = ephemeris.propagate(epoch + timedelta(minutes=12))
        propagator.propagate(epoch + timedelta(hours=1))
        assert ephemeris.max_date == epoch + timedelta(minutes=30)
        np.testing.assert_array_equal(ephemeris.propagate(epoch + timedelta(minutes=12)).position, mid.position)

    def test_matches_direct_propagation(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        generator = propagator.get_ephemeris_generator()
        propagator.propagate(epoch + timedelta(minutes=40))
        ephemeris = generator.get_generated_ephemeris()
        for minutes in (7, 19, 33):
            date = epoch + timedelta(minutes=minutes)
            direct = _propagator(leo_state).propagate(date)
            np.testing.assert_allclose(ephemeris.propagate(date).position, direct.position, atol=1.0)

    def test_stopped_run_still_queryable(self, leo_state, epoch):
        stop = epoch + timedelta(minutes=10)
        propagator = _propagator(leo_state)
        propagator.add_event_detector(DateDetector(stop))
        generator = propagator.get_ephemeris_generator()
        propagator.propagate(epoch + timedelta(hours=1))
        ephemeris = generator.get_generated_ephemeris()
        assert ephemeris.max_date == stop
        ephemeris.propagate(stop)

    def test_ephemeris_not_resettable(self, leo_state, epoch):
        propagator = _propagator(leo_state)
        generator = propagator.get_ephemeris_generator()
        propagator.propagate(epoch + timedelta(minutes=1))
        ephemeris = generator.get_generated_ephemeris()
        with pytest.raises(PropagationError) as info:
            ephemeris.reset_initial_state(leo_state)
        assert info.value.specifier is ErrorSpecifier.NON_RESETABLE_STATE


# ── Runs ending on a switch ───────────────────────────────────────

class TestSwitchAtRunEnd:

    def test_outputs_carry_corrected_state(self, leo_state, epoch):
        """Ending on the burn cutoff: returned state, ephemeris and samplers agree."""
        cutoff = epoch + timedelta(seconds=420.0)
        burn = ConstantThrustManeuver(
            DateBasedManeuverTriggers("burn", epoch + timedelta(seconds=300.0), 120.0), 20.0, 320.0,
        )
        propagator = NumericalPropagator(leo_state, [NewtonianAttraction(), burn], _config(leo_state))
        propagator.get_parameter_driver("burn_STOP").set_selected(True)
        propagator.setup_matrices_computation("stm")
        samples = []
        propagator.set_fixed_step_handler(60.0, lambda state, last: samples.append((state, last)))
        generator = propagator.get_ephemeris_generator()
        final = propagator.propagate(cutoff)

        column = final.get_additional_state("burn_STOP")
        assert np.abs(column[3:6]).max() > 0.0
        boundary = generator.get_generated_ephemeris().propagate(cutoff)
        np.testing.assert_allclose(boundary.get_additional_state("burn_STOP"), column, rtol=0.0, atol=1e-15)
        last_state, last = samples[-1]
        assert last
        assert last_state.elapsed_s == pytest.approx(420.0)
        np.testing.assert_allclose(last_state.get_additional_state("burn_STOP"), column, rtol=0.0, atol=1e-15)

    def test_step_handler_current_state_after_switch(self, leo_state, epoch):
        ignition = epoch + timedelta(seconds=300.0)
        burn = ConstantThrustManeuver(DateBasedManeuverTriggers("burn", ignition, 120.0), 20.0, 320.0)
        propagator = NumericalPropagator(leo_state, [NewtonianAttraction(), burn], _config(leo_state))
        propagator.get_parameter_driver("burn_START").set_selected(True)
        propagator.setup_matrices_computation("stm")
        ends = {}
        propagator.add_step_handler(
            lambda interp, last: ends.setdefault(interp.current_elapsed, interp.current_state),
        )
        final = propagator.propagate(ignition)
        np.testing.assert_allclose(
            ends[300.0].get_additional_state("burn_START"), final.get_additional_state("burn_START"),
            rtol=0.0, atol=1e-15,
        )


# ── Re-entrant runs ───────────────────────────────────────────────

class TestReentrantSegments:

    def test_serial_and_parallel_segments_identical(self, leo_state, epoch):
        """Threads sharing one force model list, burn included, match serial recomputation."""
        burn = ConstantThrustManeuver(
            DateBasedManeuverTriggers("burn", epoch + timedelta(seconds=450.0), 600.0), 20.0, 320.0,
        )
        models = [NewtonianAttraction(), J2Perturbation(), burn]
        samples = []
        propagator = NumericalPropagator(leo_state, models, _config(leo_state))
        propagator.set_fixed_step_handler(300.0, lambda state, last: samples.append(state))
        propagator.propagate(epoch + timedelta(minutes=30))
        segments = list(zip(samples[:-1], samples[1:]))

        def recompute(start, end):
            return NumericalPropagator(start, models, _config(leo_state)).propagate(end.date)

        serial = [recompute(start, end) for start, end in segments]
        with ThreadPoolExecutor(max_workers=8) as executor:
            parallel = list(executor.map(lambda pair: recompute(*pair), segments * 4))

        assert len(segments) >= 5
        for (start, end), s, p in zip(segments * 4, serial * 4, parallel):
            np.testing.assert_allclose(p.position, s.position, atol=1e-9)
            assert p.mass == pytest.approx(s.mass, abs=1e-12)
            np.testing.assert_allclose(s.position, end.position, atol=1.0)
            assert s.mass == pytest.approx(end.mass, abs=1e-9)
        assert samples[-1].mass < leo_state.mass

    def test_shared_burn_in_concurrent_runs(self, leo_state, epoch):
        burn = ConstantThrustManeuver(
            DateBasedManeuverTriggers("burn", epoch + timedelta(seconds=60.0), 900.0), 20.0, 320.0,
        )
        models = [NewtonianAttraction(), burn]
        target = epoch + timedelta(seconds=1200.0)

        def run(_):
            return NumericalPropagator(leo_state, models, _config(leo_state)).propagate(target)

        with ThreadPoolExecutor(max_workers=8) as executor:
            finals = list(executor.map(run, range(40)))

        expected_mass = leo_state.mass - 20.0 / (OrbitalConstants.G0 * 320.0) * 900.0
        for final in finals:
            assert final.mass == pytest.approx(expected_mass, abs=1e-9)
            np.testing.assert_allclose(final.position, finals[0].position, atol=1e-9)
