# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Single-pass weighted statistics.

Three accumulators consume a stream of ``(value, weight)`` pairs:

- :class:`MomentAccumulator`: weighted mean, variance, skewness and
  excess kurtosis from running power sums
- :class:`QuantileAccumulator`: weighted quantiles
- :class:`DiscreteAccumulator`: probability mass table and mode

Weights are proportional to probability mass and need not be
normalized.  With total weight :math:`W` and raw weighted moments
:math:`m_k = \sum_i w_i x_i^k / W`:

.. math::

    \mu = m_1, \qquad
    \sigma^2 = m_2 - \mu^2, \qquad
    \gamma_1 = \frac{m_3 - 3\mu m_2 + 2\mu^3}{\sigma^3}, \qquad
    \gamma_2 = \frac{m_4 - 4\mu m_3 + 6\mu^2 m_2 - 3\mu^4}{\sigma^4} - 3

The power sums are taken about the first pushed value rather than the
origin.  Central moments are shift invariant, so the formulas are
unchanged, but a constant sample yields a variance of exactly zero.

The functional wrappers (:func:`weighted_moments`,
:func:`weighted_quantile`, :func:`weighted_table`, ...) build an
accumulator, push a whole sample and read the result.
"""

import enum
import math
from collections.abc import Iterator, Sequence

import jax.numpy as jnp
from jaxtyping import Array, ArrayLike, Float

from pimhjax.errors import ConfigurationError, DomainError
from pimhjax.weights import normalize_weights


class Statistic(enum.IntEnum):
    """Moment statistics, ordered so each requires all lower ones."""

    MEAN = 1
    VARIANCE = 2
    SKEWNESS = 3
    KURTOSIS = 4


STATISTIC_NAMES = {
    Statistic.MEAN: 'mean',
    Statistic.VARIANCE: 'var',
    Statistic.SKEWNESS: 'skew',
    Statistic.KURTOSIS: 'kurt',
}


class MomentAccumulator:
    """Weighted moments up to a requested order.

    Args:
        order: Highest statistic to track, an integer in ``1..4`` or a
            :class:`Statistic`.

    Example:
        >>> acc = MomentAccumulator(Statistic.SKEWNESS)
        >>> acc.extend([1.0, 2.0, 3.0], [1.0, 1.0, 1.0])
        >>> acc.mean(), acc.variance()
        (2.0, 0.666...)
    """

    def __init__(self, order: int | Statistic = Statistic.VARIANCE):
        try:
            self._order = Statistic(int(order))
        except (TypeError, ValueError):
            raise ConfigurationError(
                f'order must be an integer in 1..4, got {order!r}'
            ) from None
        self._shift: float | None = None
        self._total = 0.0
        self._count = 0
        self._sums = [0.0] * self._order

    @property
    def order(self) -> Statistic:
        return self._order

    @property
    def total_weight(self) -> float:
        return self._total

    @property
    def count(self) -> int:
        return self._count

    def push(self, value: float, weight: float = 1.0) -> None:
        """Add one weighted observation."""
        value, weight = _check_pair(value, weight)
        if self._shift is None:
            self._shift = value
        dx = value - self._shift
        term = weight
        for k in range(self._order):
            term *= dx
            self._sums[k] += term
        self._total += weight
        self._count += 1

    def extend(
        self,
        values: ArrayLike,
        weights: ArrayLike | None = None,
    ) -> None:
        """Push parallel arrays of values and weights."""
        for value, weight in _pairs(values, weights):
            self.push(value, weight)

    def mean(self) -> float:
        self._require(Statistic.MEAN)
        m1 = self._moments()[0]
        return self._shift + m1

    def variance(self) -> float:
        self._require(Statistic.VARIANCE)
        m1, m2 = self._moments()[:2]
        # Rounding can push a near-constant sample slightly below zero.
        return max(m2 - m1**2, 0.0)

    def skewness(self) -> float:
        self._require(Statistic.SKEWNESS)
        var = self._positive_variance('skewness')
        m1, m2, m3 = self._moments()[:3]
        return (m3 - 3 * m1 * m2 + 2 * m1**3) / var**1.5

    def kurtosis(self) -> float:
        """Excess kurtosis (zero for a Gaussian)."""
        self._require(Statistic.KURTOSIS)
        var = self._positive_variance('kurtosis')
        m1, m2, m3, m4 = self._moments()
        central4 = m4 - 4 * m1 * m3 + 6 * m1**2 * m2 - 3 * m1**4
        return central4 / var**2 - 3

    def statistics(self) -> dict[str, float]:
        """All tracked statistics keyed ``mean``, ``var``, ``skew``, ``kurt``."""
        readers = {
            Statistic.MEAN: self.mean,
            Statistic.VARIANCE: self.variance,
            Statistic.SKEWNESS: self.skewness,
            Statistic.KURTOSIS: self.kurtosis,
        }
        return {
            STATISTIC_NAMES[stat]: readers[stat]()
            for stat in Statistic
            if stat <= self._order
        }

    def _require(self, stat: Statistic) -> None:
        if stat > self._order:
            raise ConfigurationError(
                f'{STATISTIC_NAMES[stat]} was not requested '
                f'(accumulator order is {int(self._order)})'
            )

    def _moments(self) -> list[float]:
        total = _check_total(self._total)
        return [s / total for s in self._sums]

    def _positive_variance(self, statistic: str) -> float:
        var = self.variance()
        if var <= 0.0:
            raise DomainError(
                f'{statistic} is undefined: variance is {var} '
                f'(all {self._count} values are equal)'
            )
        return var


class QuantileAccumulator:
    r"""Weighted quantiles at fixed probability levels.

    Each order statistic :math:`x_{(k)}` is placed at its mid-mass
    plotting position :math:`p_k = (S_k - w_k / 2) / W`, where
    :math:`S_k` is the cumulative weight up to and including
    :math:`x_{(k)}`.  A level :math:`p` is linearly interpolated between
    the bracketing positions and clamped to the extreme values outside
    :math:`[p_1, p_n]`.  The result is non-decreasing in :math:`p`, and
    with equal weights it is the Hazen sample quantile
    (``numpy.quantile(..., method='hazen')``).

    Args:
        probs: Probability levels, each in the open interval (0, 1).
    """

    def __init__(self, probs: Sequence[float] | ArrayLike):
        self._probs = check_probs(probs)
        self._values: list[float] = []
        self._weights: list[float] = []

    @property
    def probs(self) -> tuple[float, ...]:
        return self._probs

    def push(self, value: float, weight: float = 1.0) -> None:
        value, weight = _check_pair(value, weight)
        if weight < 0.0:
            raise DomainError(
                f'quantile weights must be non-negative, got {weight}'
            )
        self._values.append(value)
        self._weights.append(weight)

    def extend(
        self,
        values: ArrayLike,
        weights: ArrayLike | None = None,
    ) -> None:
        for value, weight in _pairs(values, weights):
            self.push(value, weight)

    def quantiles(self) -> Float[Array, ' num_probs']:
        """Quantiles at every configured level, in order.

        Values with zero weight carry no mass and get no plotting
        position, so every quantile lies within the positive-mass support.
        """
        weights = jnp.asarray(self._weights, dtype=float)
        keep = weights > 0.0
        mass = normalize_weights(weights[keep])
        values = jnp.asarray(self._values, dtype=float)[keep]
        sort_idx = jnp.argsort(values)
        v_sorted = values[sort_idx]
        w_sorted = mass[sort_idx]
        positions = jnp.cumsum(w_sorted) - 0.5 * w_sorted
        return jnp.interp(jnp.asarray(self._probs), positions, v_sorted)

    def quantile(self, i: int) -> float:
        """Quantile at the *i*-th configured level."""
        return float(self.quantiles()[i])


class DiscreteAccumulator:
    """Probability mass per distinct value.

    Weights are grouped by exact value equality.  The mode is the value
    with the largest mass; ties go to the smallest value.
    """

    def __init__(self):
        self._mass: dict[float, float] = {}
        self._total = 0.0

    def push(self, value: float, weight: float = 1.0) -> None:
        value, weight = _check_pair(value, weight)
        self._mass[value] = self._mass.get(value, 0.0) + weight
        self._total += weight

    def extend(
        self,
        values: ArrayLike,
        weights: ArrayLike | None = None,
    ) -> None:
        for value, weight in _pairs(values, weights):
            self.push(value, weight)

    def table(self) -> dict[float, float]:
        """Mapping from each distinct value (ascending) to its mass."""
        total = _check_total(self._total)
        return {v: self._mass[v] / total for v in sorted(self._mass)}

    def mode(self) -> float:
        table = self.table()
        # sorted keys, so max keeps the first (smallest) of tied values
        return max(table, key=table.__getitem__)


# --- Functional wrappers ----------------------------------------------------


def weighted_moments(
    values: ArrayLike,
    weights: ArrayLike | None = None,
    order: int | Statistic = Statistic.VARIANCE,
) -> dict[str, float]:
    """Weighted statistics up to *order*, keyed ``mean/var/skew/kurt``."""
    acc = MomentAccumulator(order)
    acc.extend(values, weights)
    return acc.statistics()


def weighted_mean(values: ArrayLike, weights: ArrayLike | None = None) -> float:
    return weighted_moments(values, weights, Statistic.MEAN)['mean']


def weighted_variance(
    values: ArrayLike, weights: ArrayLike | None = None
) -> float:
    return weighted_moments(values, weights, Statistic.VARIANCE)['var']


def weighted_skewness(
    values: ArrayLike, weights: ArrayLike | None = None
) -> float:
    return weighted_moments(values, weights, Statistic.SKEWNESS)['skew']


def weighted_kurtosis(
    values: ArrayLike, weights: ArrayLike | None = None
) -> float:
    return weighted_moments(values, weights, Statistic.KURTOSIS)['kurt']


def weighted_quantile(
    values: ArrayLike,
    weights: ArrayLike | None,
    probs: Sequence[float] | ArrayLike,
) -> Float[Array, ' num_probs']:
    """Weighted quantiles; see :class:`QuantileAccumulator` for the rule."""
    acc = QuantileAccumulator(probs)
    acc.extend(values, weights)
    return acc.quantiles()


def weighted_median(
    values: ArrayLike, weights: ArrayLike | None = None
) -> float:
    return float(weighted_quantile(values, weights, (0.5,))[0])


def weighted_table(
    values: ArrayLike, weights: ArrayLike | None = None
) -> dict[float, float]:
    acc = DiscreteAccumulator()
    acc.extend(values, weights)
    return acc.table()


def weighted_mode(values: ArrayLike, weights: ArrayLike | None = None) -> float:
    acc = DiscreteAccumulator()
    acc.extend(values, weights)
    return acc.mode()


def check_probs(probs: Sequence[float] | ArrayLike) -> tuple[float, ...]:
    """Validate probability levels for quantile estimation.

    Raises:
        ConfigurationError: If any level is outside the open interval
            (0, 1) or no level is given.
    """
    levels = tuple(float(p) for p in jnp.ravel(jnp.asarray(probs)).tolist())
    if len(levels) == 0:
        raise ConfigurationError('at least one probability level is required')
    for p in levels:
        if not 0.0 < p < 1.0:
            raise ConfigurationError(
                f'probability levels must lie in (0, 1), got {p}'
            )
    return levels


# --- Internal helpers -------------------------------------------------------


def _check_pair(value: float, weight: float) -> tuple[float, float]:
    value, weight = float(value), float(weight)
    if not math.isfinite(weight):
        raise DomainError(f'weight must be finite, got {weight}')
    return value, weight


def _check_total(total: float) -> float:
    if not total > 0.0:
        raise DomainError(f'total weight must be positive, got {total}')
    return total


def _pairs(
    values: ArrayLike,
    weights: ArrayLike | None,
) -> Iterator[tuple[float, float]]:
    values = jnp.ravel(jnp.asarray(values))
    if weights is None:
        weights = jnp.ones(values.shape)
    weights = jnp.ravel(jnp.asarray(weights))
    if values.shape != weights.shape:
        raise ConfigurationError(
            f'values and weights must have same length, got '
            f'{values.shape[0]} and {weights.shape[0]}'
        )
    return zip(values.tolist(), weights.tolist())
