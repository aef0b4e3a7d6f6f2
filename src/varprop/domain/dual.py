# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
Forward-mode automatic differentiation.

A Dual carries a value and its gradient with respect to a fixed number
of independent directions. Force models and orbit conversions are
written with scalar arithmetic and the elementary functions below, so
the same code evaluates plain floats (fast path, dispatched to math) or
Duals (value plus exact first derivatives).

No external dependencies — only stdlib math + numpy.
"""
import math
from typing import Union

import numpy as np


class Dual:
    """Value with a gradient over n sensitivity directions."""

    __slots__ = ("value", "gradient")

    # Make numpy scalars defer to the reflected Dual operators.
    __array_ufunc__ = None

    def __init__(self, value: float, gradient: np.ndarray) -> None:
        self.value = float(value)
        self.gradient = gradient

    @classmethod
    def variable(cls, value: float, index: int, size: int) -> "Dual":
        """Independent variable: unit gradient along direction index."""
        gradient = np.zeros(size)
        gradient[index] = 1.0
        return cls(value, gradient)

    @classmethod
    def constant(cls, value: float, size: int) -> "Dual":
        return cls(value, np.zeros(size))

    def __repr__(self) -> str:
        return f"Dual({self.value!r}, {self.gradient!r})"

    def __float__(self) -> float:
        return self.value

    # --- arithmetic ---

    def __neg__(self) -> "Dual":
        return Dual(-self.value, -self.gradient)

    def __pos__(self) -> "Dual":
        return self

    def __abs__(self) -> "Dual":
        return -self if self.value < 0.0 else self

    def __add__(self, other: "Number") -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.value + other.value, self.gradient + other.gradient)
        return Dual(self.value + other, self.gradient)

    __radd__ = __add__

    def __sub__(self, other: "Number") -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.value - other.value, self.gradient - other.gradient)
        return Dual(self.value - other, self.gradient)

    def __rsub__(self, other: "Number") -> "Dual":
        return Dual(other - self.value, -self.gradient)

    def __mul__(self, other: "Number") -> "Dual":
        if isinstance(other, Dual):
            return Dual(
                self.value * other.value,
                self.gradient * other.value + other.gradient * self.value,
            )
        return Dual(self.value * other, self.gradient * other)

    __rmul__ = __mul__

    def __truediv__(self, other: "Number") -> "Dual":
        if isinstance(other, Dual):
            inv = 1.0 / other.value
            q = self.value * inv
            return Dual(q, (self.gradient - other.gradient * q) * inv)
        inv = 1.0 / other
        return Dual(self.value * inv, self.gradient * inv)

    def __rtruediv__(self, other: "Number") -> "Dual":
        inv = 1.0 / self.value
        q = other * inv
        return Dual(q, self.gradient * (-q * inv))

    def __pow__(self, exponent: float) -> "Dual":
        if isinstance(exponent, Dual):
            return exp(exponent * log(self))
        if exponent == 0:
            return Dual(1.0, np.zeros_like(self.gradient))
        p = self.value ** (exponent - 1)
        return Dual(p * self.value, self.gradient * (exponent * p))

    # --- comparisons act on the value ---

    def __lt__(self, other: "Number") -> bool:
        return self.value < value_of(other)

    def __le__(self, other: "Number") -> bool:
        return self.value <= value_of(other)

    def __gt__(self, other: "Number") -> bool:
        return self.value > value_of(other)

    def __ge__(self, other: "Number") -> bool:
        return self.value >= value_of(other)


Number = Union[float, Dual]


def value_of(x: Number) -> float:
    """Plain float value of a float or Dual."""
    return x.value if isinstance(x, Dual) else float(x)


def gradient_of(x: Number, size: int) -> np.ndarray:
    """Gradient of x, zeros for plain floats."""
    return x.gradient if isinstance(x, Dual) else np.zeros(size)


def jacobian_of(values: "list[Number]", size: int) -> np.ndarray:
    """Stack the gradients of several outputs into a (len(values), size) matrix."""
    return np.array([gradient_of(v, size) for v in values]).reshape(len(values), size)


# --- elementary functions ---

def sqrt(x: Number) -> Number:
    if isinstance(x, Dual):
        s = math.sqrt(x.value)
        return Dual(s, x.gradient * (0.5 / s))
    return math.sqrt(x)


def exp(x: Number) -> Number:
    if isinstance(x, Dual):
        e = math.exp(x.value)
        return Dual(e, x.gradient * e)
    return math.exp(x)


def log(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.log(x.value), x.gradient / x.value)
    return math.log(x)


def sin(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.sin(x.value), x.gradient * math.cos(x.value))
    return math.sin(x)


def cos(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.cos(x.value), x.gradient * -math.sin(x.value))
    return math.cos(x)


def atan(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.atan(x.value), x.gradient / (1.0 + x.value * x.value))
    return math.atan(x)


def asin(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.asin(x.value), x.gradient / math.sqrt(1.0 - x.value * x.value))
    return math.asin(x)


def acos(x: Number) -> Number:
    if isinstance(x, Dual):
        return Dual(math.acos(x.value), x.gradient / -math.sqrt(1.0 - x.value * x.value))
    return math.acos(x)


def atan2(y: Number, x: Number) -> Number:
    """Two-argument arctangent; the gradient is nan at the origin."""
    if not isinstance(y, Dual) and not isinstance(x, Dual):
        return math.atan2(y, x)
    yv, xv = value_of(y), value_of(x)
    size = (y if isinstance(y, Dual) else x).gradient.shape[0]
    r2 = xv * xv + yv * yv
    if r2 == 0.0:
        return Dual(math.atan2(yv, xv), np.full(size, math.nan))
    gradient = (gradient_of(y, size) * xv - gradient_of(x, size) * yv) / r2
    return Dual(math.atan2(yv, xv), gradient)
