# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Structured propagation errors.

Every failure the engine reports to callers is a PropagationError
carrying a specifier (what went wrong) and the offending parts (names,
dates, dimensions). PropagationError derives from ValueError so callers
already catching argument errors keep working.
"""
from enum import Enum


class ErrorSpecifier(Enum):
    """Kinds of propagation failures, with their message templates."""
    NULL_ARGUMENT = "null argument: {0}"
    ADDITIONAL_STATE_NAME_ALREADY_IN_USE = "name {0} is already used for an additional state"
    UNKNOWN_ADDITIONAL_STATE = "unknown additional state {0}"
    SINGULAR_JACOBIAN_FOR_ORBIT_TYPE = "orbit type {0} has a singular Jacobian for this orbit"
    OUT_OF_RANGE_EPHEMERIDES_DATE_BEFORE = (
        "out of range date for ephemerides: {0}, {1:.3f} s before [{2}, {3}]"
    )
    OUT_OF_RANGE_EPHEMERIDES_DATE_AFTER = (
        "out of range date for ephemerides: {0}, {1:.3f} s after [{2}, {3}]"
    )
    NON_RESETABLE_STATE = "initial state of a {0} cannot be reset"
    UNSUPPORTED_PARAMETER_NAME = "unsupported parameter name {0}, supported names: {1}"
    MISSING_PARAMETER = "missing parameter for {0}: expected {1} values, got {2}"
    DIMENSION_MISMATCH = "dimension mismatch for {0}: expected {1}, got {2}"


class PropagationError(ValueError):
    """Error raised by the propagation engine.

    Attributes:
        specifier: ErrorSpecifier naming the failure kind.
        parts: Offending argument names / values, in template order.
    """

    def __init__(self, specifier: ErrorSpecifier, *parts: object) -> None:
        self.specifier = specifier
        self.parts = parts
        super().__init__(specifier.value.format(*parts))


def require(value: object, name: str) -> None:
    """Raise NULL_ARGUMENT if value is None."""
    if value is None:
        raise PropagationError(ErrorSpecifier.NULL_ARGUMENT, name)
