# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Posterior summaries of sample arrays.

Every function accepts any result node (a leaf array, an
:class:`~pimhjax.bundles.FSBBundle` or a
:class:`~pimhjax.bundles.NamedList`) and returns the same structure with
each leaf replaced by its summary:

- :func:`summary`: moments, quantiles and mode per component
- :func:`table`: probability mass table per component
- :func:`density`: weighted Gaussian kernel density per component
- :func:`histogram`: weighted histogram per component
- :func:`diagnosis`: minimum ESS check for particle arrays

Each component's sample is recovered with the column-major striding of
:mod:`pimhjax.indexing` and pushed into the accumulators of
:mod:`pimhjax.accumulators`.  Particle arrays use their weights; MCMC
draws carry unit weights.
"""

import functools
import logging
import math
from collections.abc import Iterator, Sequence
from typing import Any, NamedTuple, Union

import jax.numpy as jnp
from jax.scipy.stats import gaussian_kde
from jaxtyping import Array, Float

from pimhjax.accumulators import (
    DiscreteAccumulator,
    MomentAccumulator,
    QuantileAccumulator,
    Statistic,
    check_probs,
)
from pimhjax.arrays import MCMCArray, SMCArray
from pimhjax.bundles import Node, map_arrays
from pimhjax.errors import ConfigurationError, DomainError
from pimhjax.indexing import (
    deparse_varname,
    extract_component,
    flatten_components,
    unflatten_components,
)

logger = logging.getLogger(__name__)

LeafArray = Union[SMCArray, MCMCArray]


class Summary(NamedTuple):
    """Per-component statistics of one array.

    Every array field has the array's component shape.  Fields that
    were not requested are ``None``.

    Attributes:
        mean: Weighted mean.
        var: Weighted (population) variance.
        skew: Weighted skewness.
        kurt: Weighted excess kurtosis.
        probs: Probability levels of *quant*.
        quant: Quantiles keyed by ``str(p)``.
        mode: Most probable value.
        drop_dims: Sizes of the marginalized sampling axes.
    """

    mean: Array | None = None
    var: Array | None = None
    skew: Array | None = None
    kurt: Array | None = None
    probs: tuple[float, ...] = ()
    quant: dict[str, Array] | None = None
    mode: Array | None = None
    drop_dims: dict[str, int] | None = None


class Density(NamedTuple):
    """Kernel density estimate of one component on a regular grid."""

    x: Float[Array, ' num_points']
    y: Float[Array, ' num_points']
    bw: float
    label: str


class Histogram(NamedTuple):
    """Weighted histogram of one component, normalized to a density."""

    density: Float[Array, ' bins']
    edges: Float[Array, ' bins_plus_one']
    label: str


class Diagnosis(NamedTuple):
    """Minimum effective sample size against a threshold."""

    ess_min: float
    valid: bool


def summary(
    node: Node,
    probs: Sequence[float] = (),
    order: int | None = None,
    mode: bool | None = None,
) -> Any:
    """Summarize each component of every array in *node*.

    Args:
        node: Result node.
        probs: Quantile levels in (0, 1), e.g. ``(0.025, 0.975)``.
        order: Highest moment to compute, ``0..4``.  Defaults to ``0``
            when *mode* is on and ``1`` otherwise.
        mode: Compute the mode.  Defaults to ``True`` when every
            component is discrete (particle arrays) or every draw is
            integer-valued (MCMC arrays).

    Returns:
        A :class:`Summary` per leaf, arranged like *node*.

    Raises:
        ConfigurationError: If *order* or *probs* is invalid.
        DomainError: If a component has no positive weight, or zero
            variance while skewness or kurtosis is requested.
    """
    probs = check_probs(probs) if len(probs) > 0 else ()
    return map_arrays(
        functools.partial(_summary, probs=probs, order=order, mode=mode),
        node,
    )


def table(node: Node) -> Any:
    """Probability mass tables, ``{label: {value: mass}}`` per leaf."""
    return map_arrays(_table, node)


def density(
    node: Node,
    bw: str | float = 'silverman',
    num_points: int = 512,
) -> Any:
    """Weighted Gaussian kernel density estimates.

    Args:
        node: Result node.
        bw: Bandwidth rule accepted by
            :class:`jax.scipy.stats.gaussian_kde`: ``'scott'``,
            ``'silverman'`` or a scalar factor.
        num_points: Grid size.  The grid extends three bandwidths past
            the smallest and largest value.

    Returns:
        ``{label: Density}`` per leaf, arranged like *node*.

    Raises:
        DomainError: If a component's sample has zero variance.
    """
    if num_points < 2:
        raise ConfigurationError(f'num_points must be >= 2, got {num_points}')
    return map_arrays(
        functools.partial(_density, bw=bw, num_points=num_points), node
    )


def histogram(node: Node, bins: int | Sequence[float] = 10) -> Any:
    """Weighted histograms, ``{label: Histogram}`` per leaf."""
    return map_arrays(functools.partial(_histogram, bins=bins), node)


def diagnosis(node: Node, ess_thres: float = 30.0) -> Any:
    """Check that the minimum ESS of each particle array exceeds a threshold.

    Args:
        node: Particle result node (MCMC arrays inside containers are
            skipped).
        ess_thres: ESS threshold.

    Returns:
        A :class:`Diagnosis` per particle array, arranged like *node*.
    """
    if not (math.isfinite(ess_thres) and ess_thres >= 0):
        raise ConfigurationError(
            f'ess_thres must be finite and non-negative, got {ess_thres}'
        )
    return map_arrays(
        functools.partial(_diagnosis, ess_thres=ess_thres),
        node,
        leaf_type=SMCArray,
    )


# --- Leaf implementations ---------------------------------------------------


def _summary(
    array: LeafArray,
    probs: tuple[float, ...],
    order: int | None,
    mode: bool | None,
) -> Summary:
    if mode is None:
        mode = _is_discrete(array)
    if order is None:
        order = 0 if mode else 1
    if not 0 <= order <= 4:
        raise ConfigurationError(f'order must be in 0..4, got {order}')

    names = [s for s in Statistic if s <= order]
    moments: dict[Statistic, list[float]] = {s: [] for s in names}
    quant: list[Array] = []
    modes: list[float] = []
    for d, values, weights in _components(array):
        try:
            if names:
                acc = MomentAccumulator(order)
                acc.extend(values, weights)
                for stat, value in zip(names, acc.statistics().values()):
                    moments[stat].append(value)
            if probs:
                q_acc = QuantileAccumulator(probs)
                q_acc.extend(values, weights)
                quant.append(q_acc.quantiles())
            if mode:
                d_acc = DiscreteAccumulator()
                d_acc.extend(values, weights)
                modes.append(d_acc.mode())
        except DomainError as exc:
            raise DomainError(f'{array.label(d)}: {exc}') from exc

    shape = array.component_shape
    fields = {
        name: _reshape(moments[stat], shape)
        for stat, name in zip(names, ('mean', 'var', 'skew', 'kurt'))
    }
    if probs:
        stacked = jnp.stack(quant)
        fields['probs'] = probs
        fields['quant'] = {
            str(p): _reshape(stacked[:, i], shape) for i, p in enumerate(probs)
        }
    if mode:
        fields['mode'] = _reshape(modes, shape)
    return Summary(drop_dims=array.drop_dims, **fields)


def _table(array: LeafArray) -> dict[str, dict[float, float]]:
    out = {}
    for d, values, weights in _components(array):
        acc = DiscreteAccumulator()
        acc.extend(values, weights)
        try:
            out[array.label(d)] = acc.table()
        except DomainError as exc:
            raise DomainError(f'{array.label(d)}: {exc}') from exc
    return out


def _density(
    array: LeafArray,
    bw: str | float,
    num_points: int,
) -> dict[str, Density]:
    out = {}
    for d, values, weights in _components(array):
        label = array.label(d)
        acc = MomentAccumulator(Statistic.VARIANCE)
        acc.extend(values, weights)
        try:
            variance = acc.variance()
        except DomainError as exc:
            raise DomainError(f'{label}: {exc}') from exc
        if variance <= 0.0:
            raise DomainError(
                f'{label}: density is undefined for a sample with zero variance'
            )
        kde = gaussian_kde(values, bw_method=bw, weights=weights)
        bandwidth = float(jnp.sqrt(kde.covariance[0, 0]))
        grid = jnp.linspace(
            float(jnp.min(values)) - 3 * bandwidth,
            float(jnp.max(values)) + 3 * bandwidth,
            num_points,
        )
        out[label] = Density(
            x=grid, y=kde.evaluate(grid), bw=bandwidth, label=label
        )
    return out


def _histogram(
    array: LeafArray,
    bins: int | Sequence[float],
) -> dict[str, Histogram]:
    out = {}
    for d, values, weights in _components(array):
        counts, edges = jnp.histogram(
            values, bins=bins, weights=weights, density=True
        )
        out[array.label(d)] = Histogram(
            density=counts, edges=edges, label=array.label(d)
        )
    return out


def _diagnosis(array: SMCArray, ess_thres: float) -> Diagnosis:
    ess_min = float(jnp.min(array.ess))
    result = Diagnosis(ess_min=ess_min, valid=ess_min > ess_thres)
    varname = deparse_varname(array.name, array.lower, array.upper)
    if result.valid:
        logger.info('Diagnosis of %s (%s): GOOD', varname, array.type)
    else:
        logger.warning(
            'Diagnosis of %s (%s): POOR, minimum ESS %.1f is below %.1f; '
            'increase the number of particles',
            varname,
            array.type,
            ess_min,
            ess_thres,
        )
    return result


# --- Internal helpers -------------------------------------------------------


def _components(
    array: LeafArray,
) -> Iterator[tuple[int, Array, Array | None]]:
    """Yield ``(d, values, weights)`` for every 1-based component *d*."""
    n = array.num_components
    if isinstance(array, SMCArray):
        flat_values = flatten_components(array.values)
        flat_weights = flatten_components(array.weights)
        for d in range(1, n + 1):
            yield (
                d,
                extract_component(flat_values, d, n),
                extract_component(flat_weights, d, n),
            )
    else:
        flat_values = array.flat()
        for d in range(1, n + 1):
            yield d, extract_component(flat_values, d, n), None


def _is_discrete(array: LeafArray) -> bool:
    if isinstance(array, SMCArray):
        return bool(jnp.all(array.discrete))
    values = array.values
    return bool(jnp.all(values == jnp.round(values)))


def _reshape(per_component: Sequence[float] | Array, shape) -> Array:
    return unflatten_components(jnp.asarray(per_component), shape)
