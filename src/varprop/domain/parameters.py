# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Parameter drivers.

A ParameterDriver is a named scalar model input (drag coefficient,
thrust, μ, trigger date shift, …). Selecting a driver makes the
propagator integrate one Jacobian column per value span of the driver.
A driver may be split into time spans holding independent values; each
span gets its own column name `Span<name><index>`, a single-span driver
keeps its plain name.
"""
import bisect
import math
from datetime import datetime, timedelta
from typing import Callable, Sequence

ParameterObserver = Callable[["ParameterDriver", float, float], None]


class ParameterDriver:
    """Named scalar model parameter with selection flag and value spans."""

    def __init__(
        self,
        name: str,
        reference_value: float,
        scale: float = 1.0,
        min_value: float = -math.inf,
        max_value: float = math.inf,
    ) -> None:
        if scale == 0.0:
            raise ValueError(f"scale of parameter {name} must be non-zero")
        self._name = name
        self._reference_value = reference_value
        self._scale = scale
        self._min_value = min_value
        self._max_value = max_value
        self._selected = False
        self._transitions: list[datetime] = []
        self._values: list[float] = [reference_value]
        self._observers: list[ParameterObserver] = []

    def __repr__(self) -> str:
        return f"ParameterDriver({self._name!r}, values={self._values!r}, selected={self._selected})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def reference_value(self) -> float:
        return self._reference_value

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def min_value(self) -> float:
        return self._min_value

    @property
    def max_value(self) -> float:
        return self._max_value

    def is_selected(self) -> bool:
        return self._selected

    def set_selected(self, selected: bool) -> None:
        self._selected = selected

    def add_observer(self, observer: ParameterObserver) -> None:
        self._observers.append(observer)

    # --- spans ---

    def add_span_at_date(self, date: datetime) -> None:
        """Split the span containing date; both halves keep its current value."""
        if date in self._transitions:
            return
        index = bisect.bisect_right(self._transitions, date)
        self._transitions.insert(index, date)
        self._values.insert(index + 1, self._values[index])

    def add_spans(self, start: datetime, end: datetime, step_s: float) -> None:
        """Split [start, end] into spans of step_s seconds."""
        if step_s <= 0.0:
            raise ValueError(f"span step must be positive, got {step_s}")
        date = start + timedelta(seconds=step_s)
        while date < end:
            self.add_span_at_date(date)
            date += timedelta(seconds=step_s)

    @property
    def nb_spans(self) -> int:
        return len(self._values)

    @property
    def transition_dates(self) -> tuple[datetime, ...]:
        return tuple(self._transitions)

    def span_names(self) -> list[str]:
        if len(self._values) == 1:
            return [self._name]
        return [f"Span{self._name}{i}" for i in range(len(self._values))]

    def span_index(self, date: datetime | None) -> int:
        if date is None:
            return 0
        return bisect.bisect_right(self._transitions, date)

    def span_index_at(self, elapsed_s: float, transitions_s: list[float]) -> int:
        """Span index for a time expressed in a run's elapsed seconds."""
        return bisect.bisect_right(transitions_s, elapsed_s)

    def transitions_from(self, reference_epoch: datetime) -> list[float]:
        """Span transitions as elapsed seconds from reference_epoch."""
        return [(t - reference_epoch).total_seconds() for t in self._transitions]

    def name_at(self, date: datetime | None) -> str:
        return self.span_names()[self.span_index(date)]

    # --- values ---

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(self._values)

    def value(self, date: datetime | None = None) -> float:
        return self._values[self.span_index(date)]

    def set_value(self, value: float, date: datetime | None = None) -> None:
        """Set the value (clipped to [min, max]) of one span, or of all spans if date is None."""
        clipped = max(self._min_value, min(self._max_value, value))
        indices = range(len(self._values)) if date is None else [self.span_index(date)]
        for index in indices:
            previous = self._values[index]
            self._values[index] = clipped
            for observer in self._observers:
                observer(self, previous, clipped)

    def set_normalized_value(self, normalized: float, date: datetime | None = None) -> None:
        self.set_value(self._reference_value + self._scale * normalized, date)

    def normalized_value(self, date: datetime | None = None) -> float:
        return (self.value(date) - self._reference_value) / self._scale


class DateDriver(ParameterDriver):
    """Driver for a date, valued as a shift in seconds from its base date.

    start: True if the date opens an interval (e.g. a maneuver ignition),
        False if it closes one.
    """

    def __init__(self, name: str, base_date: datetime, start: bool, scale: float = 1.0) -> None:
        super().__init__(name, 0.0, scale)
        self._base_date = base_date
        self._start = start

    @property
    def base_date(self) -> datetime:
        return self._base_date

    @property
    def is_start(self) -> bool:
        return self._start

    @property
    def date(self) -> datetime:
        return self._base_date + timedelta(seconds=self.value())

    def offset_from(self, reference_epoch: datetime) -> float:
        """Driven date in elapsed seconds from reference_epoch, without rounding."""
        return (self._base_date - reference_epoch).total_seconds() + self.value()


class ParameterTimeline:
    """Driver values of one propagation run, frozen when the run starts.

    Drivers are grouped per force model. Span transitions are expressed
    in the run's elapsed seconds so values are looked up without datetime
    arithmetic.
    """

    def __init__(self, groups: Sequence[Sequence[ParameterDriver]], reference_epoch: datetime) -> None:
        self._groups = [list(group) for group in groups]
        self._transitions = [
            [driver.transitions_from(reference_epoch) for driver in group] for group in self._groups
        ]
        self._values = [[driver.values for driver in group] for group in self._groups]
        self._span_names = [[driver.span_names() for driver in group] for group in self._groups]
        self._selected = [
            [k for k, driver in enumerate(group) if driver.is_selected()] for group in self._groups
        ]

    @property
    def groups(self) -> list[list[ParameterDriver]]:
        return self._groups

    def values_at(self, elapsed_s: float) -> list[list[float]]:
        return [
            [values[bisect.bisect_right(transitions, elapsed_s)]
             for values, transitions in zip(group_values, group_transitions)]
            for group_values, group_transitions in zip(self._values, self._transitions)
        ]

    def span_name_at(self, group: int, index: int, elapsed_s: float) -> str:
        span = bisect.bisect_right(self._transitions[group][index], elapsed_s)
        return self._span_names[group][index][span]

    def selected_indices(self, group: int) -> list[int]:
        return self._selected[group]
