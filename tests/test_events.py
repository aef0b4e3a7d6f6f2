# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""Tests for event detectors."""
from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from varprop.domain.events import (
    AbstractDetector,
    DateDetector,
    EventAction,
    EventDetector,
    FunctionalDetector,
    continue_on_event,
    state_gradient,
    stop_on_event,
)
from varprop.domain.state import SpacecraftState


@pytest.fixture
def epoch():
    return datetime(2026, 3, 20, 12, 0, 0, tzinfo=timezone.utc)


def _state(epoch, elapsed_s=0.0):
    return SpacecraftState(epoch, elapsed_s, [7_000_000.0, 1_000.0, 2_000.0], [0.0, 7_500.0, 10.0])


class TestAbstractDetector:

    def test_validation(self):
        with pytest.raises(ValueError, match="max_check"):
            AbstractDetector(max_check=0.0)
        with pytest.raises(ValueError, match="threshold"):
            AbstractDetector(threshold=-1.0)

    def test_default_handler_stops(self, epoch):
        detector = FunctionalDetector(lambda s: 1.0)
        assert detector.event_occurred(_state(epoch), True) is EventAction.STOP

    def test_reset_state_is_identity(self, epoch):
        s = _state(epoch)
        assert FunctionalDetector(lambda s: 1.0).reset_state(s) is s

    def test_handlers(self, epoch):
        assert stop_on_event(_state(epoch), None, True) is EventAction.STOP
        assert continue_on_event(_state(epoch), None, False) is EventAction.CONTINUE

    def test_protocol(self):
        assert isinstance(FunctionalDetector(lambda s: 0.0), EventDetector)


class TestDateDetector:

    def test_dates_sorted(self, epoch):
        later, earlier = epoch + timedelta(seconds=200), epoch + timedelta(seconds=100)
        detector = DateDetector(later, earlier)
        assert detector.dates == (earlier, later)
        detector.add_event_date(epoch + timedelta(seconds=50))
        assert detector.event_times(epoch) == [50.0, 100.0, 200.0]

    def test_g_vanishes_and_alternates(self, epoch):
        detector = DateDetector(epoch + timedelta(seconds=100), epoch + timedelta(seconds=200))
        assert detector.g(_state(epoch, 50.0)) < 0.0
        assert detector.g(_state(epoch, 100.0)) == 0.0
        assert detector.g(_state(epoch, 150.0)) > 0.0
        assert detector.g(_state(epoch, 200.0)) == 0.0
        assert detector.g(_state(epoch, 250.0)) < 0.0

    def test_no_dates(self, epoch):
        assert DateDetector().g(_state(epoch)) == -1.0

    def test_custom_handler(self, epoch):
        detector = DateDetector(epoch, handler=continue_on_event)
        assert detector.event_occurred(_state(epoch), True) is EventAction.CONTINUE


class TestStateGradient:

    def test_linear_function(self, epoch):
        def fn(s):
            return 2.0 * s.position[0] - 3.0 * s.velocity[1] + 0.5 * s.mass

        gradient = state_gradient(fn, _state(epoch))
        np.testing.assert_allclose(gradient, [2.0, 0.0, 0.0, 0.0, -3.0, 0.0, 0.5], atol=1e-6)

    def test_quadratic_function(self, epoch):
        s = _state(epoch)
        gradient = state_gradient(lambda st: float(st.position[1] ** 2 + st.position[2] ** 2), s)
        np.testing.assert_allclose(gradient[:3], [0.0, 2.0 * s.position[1], 2.0 * s.position[2]], rtol=1e-6, atol=1e-9)
