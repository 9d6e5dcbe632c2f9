# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Sample arrays for monitored variables.

An :class:`SMCArray` holds one monitored variable's weighted particle
population; an :class:`MCMCArray` holds its MCMC draws.  Both keep the
component axes first and the sampling axes last, and both carry the
variable ``name`` with the ``lower``/``upper`` subscript bounds of the
monitored range.  Use :func:`smc_array` and :func:`mcmc_array` to build
them; they validate the invariants that downstream consumers rely on.

Both containers are :class:`~typing.NamedTuple` subclasses so they are
registered as JAX PyTrees by default.
"""

import math
from collections.abc import Sequence
from typing import NamedTuple

import jax.numpy as jnp
from jaxtyping import Array, ArrayLike, Bool, Float

from pimhjax.errors import ConfigurationError
from pimhjax.indexing import (
    check_bounds,
    component_label,
    component_subscript,
    extract_component,
    flatten_components,
    num_components,
)
from pimhjax.types import MONITOR_TYPES, Bounds

PARTICLE_AXIS = 'particle'
ITERATION_AXIS = 'iteration'
CHAIN_AXIS = 'chain'


class SMCArray(NamedTuple):
    r"""Weighted particle population of one monitored variable.

    Attributes:
        values: Particle values, shape ``component_dims + (num_particles,)``.
        weights: Normalized particle weights, same shape as *values*.
        ess: Effective sample size per component, shape ``component_dims``.
        discrete: Whether each component is discrete-valued.
        iterations: 1-based SMC iteration at which each component was
            last updated.
        conditionals: Names of the observed nodes each component is
            conditioned on: one tuple per component (column-major), or a
            single tuple shared by all components.
        name: Variable name.
        lower: Lower subscript bounds, one per component dimension.
        upper: Upper subscript bounds, one per component dimension.
        type: One of ``filtering``, ``smoothing``, ``backward_smoothing``.
    """

    values: Float[Array, '...']
    weights: Float[Array, '...']
    ess: Float[Array, '...']
    discrete: Bool[Array, '...']
    iterations: Float[Array, '...']
    conditionals: tuple[tuple[str, ...], ...]
    name: str
    lower: Bounds
    upper: Bounds
    type: str

    @property
    def component_shape(self) -> tuple[int, ...]:
        return tuple(self.values.shape[:-1])

    @property
    def num_components(self) -> int:
        return num_components(self.component_shape)

    @property
    def num_samples(self) -> int:
        return int(self.values.shape[-1])

    @property
    def drop_dims(self) -> dict[str, int]:
        return {PARTICLE_AXIS: self.num_samples}

    def component(
        self, d: int
    ) -> tuple[Float[Array, ' num_particles'], Float[Array, ' num_particles']]:
        """Values and weights of the 1-based component *d*."""
        n = self.num_components
        return (
            extract_component(flatten_components(self.values), d, n),
            extract_component(flatten_components(self.weights), d, n),
        )

    def subscript(self, d: int) -> Bounds:
        return component_subscript(d, self.lower, self.upper)

    def label(self, d: int) -> str:
        return component_label(self.name, self.lower, self.upper, d)


class MCMCArray(NamedTuple):
    r"""MCMC draws of one monitored variable.

    Attributes:
        values: Draws with the component axes first and the
            ``iteration`` (and optional ``chain``) axes after them.
        name: Variable name.
        lower: Lower subscript bounds, one per component dimension.
        upper: Upper subscript bounds, one per component dimension.
        iteration: Position of the iteration axis in *values*.
        chain: Position of the chain axis, or ``None``.
    """

    values: Float[Array, '...']
    name: str
    lower: Bounds
    upper: Bounds
    iteration: int
    chain: int | None = None

    @property
    def sample_axes(self) -> tuple[int, ...]:
        if self.chain is None:
            return (self.iteration,)
        return tuple(sorted((self.iteration, self.chain)))

    @property
    def axis_names(self) -> tuple[str, ...]:
        names = [''] * self.values.ndim
        names[self.iteration] = ITERATION_AXIS
        if self.chain is not None:
            names[self.chain] = CHAIN_AXIS
        return tuple(names)

    @property
    def component_shape(self) -> tuple[int, ...]:
        return tuple(
            n
            for axis, n in enumerate(self.values.shape)
            if axis not in self.sample_axes
        )

    @property
    def num_components(self) -> int:
        return num_components(self.component_shape)

    @property
    def num_samples(self) -> int:
        return math.prod(self.values.shape[a] for a in self.sample_axes)

    @property
    def drop_dims(self) -> dict[str, int]:
        names = self.axis_names
        return {names[a]: self.values.shape[a] for a in self.sample_axes}

    def flat(self) -> Float[Array, ' size']:
        """Column-major buffer with every component before the samples."""
        n_comp = len(self.component_shape)
        ordered = jnp.moveaxis(
            self.values,
            self.sample_axes,
            tuple(range(n_comp, self.values.ndim)),
        )
        return flatten_components(ordered)

    def component(self, d: int) -> Float[Array, ' num_samples']:
        """All draws of the 1-based component *d*."""
        return extract_component(self.flat(), d, self.num_components)

    def subscript(self, d: int) -> Bounds:
        return component_subscript(d, self.lower, self.upper)

    def label(self, d: int) -> str:
        return component_label(self.name, self.lower, self.upper, d)


def smc_array(
    values: ArrayLike,
    weights: ArrayLike,
    ess: ArrayLike | None = None,
    discrete: ArrayLike | None = None,
    iterations: ArrayLike | None = None,
    conditionals: Sequence[Sequence[str]] = ((),),
    name: str = 'smcarray',
    lower: Sequence[int] | None = None,
    upper: Sequence[int] | None = None,
    type: str = 'filtering',
) -> SMCArray:
    """Build and validate an :class:`SMCArray`.

    The last axis of *values* is the particle axis.  Missing bounds
    default to ``1..component_dims``; missing *ess* defaults to the
    number of particles, *discrete* to ``False`` and *iterations* to 1.

    Raises:
        ConfigurationError: If *weights* and *values* differ in shape, the
            per-component fields do not match the component shape, the
            bounds are inconsistent, the number of conditionals is neither
            one nor the number of components, or *type* is unknown.
    """
    values = jnp.asarray(values)
    weights = jnp.asarray(weights)
    if values.ndim < 1:
        raise ConfigurationError(
            f'{name}: values need a particle axis, got a scalar'
        )
    if weights.shape != values.shape:
        raise ConfigurationError(
            f'{name}: weights shape {weights.shape} does not match '
            f'values shape {values.shape}'
        )
    comp_shape = tuple(values.shape[:-1])
    n_particles = values.shape[-1]

    ess = _per_component(ess, comp_shape, float(n_particles), 'ess', name)
    discrete = _per_component(discrete, comp_shape, False, 'discrete', name)
    iterations = _per_component(iterations, comp_shape, 1.0, 'iterations', name)

    conditionals = tuple(tuple(str(c) for c in cond) for cond in conditionals)
    if len(conditionals) not in (1, num_components(comp_shape)):
        raise ConfigurationError(
            f'{name}: conditionals must either have one entry per component '
            f'({num_components(comp_shape)}) or a single entry, '
            f'got {len(conditionals)}'
        )
    if type not in MONITOR_TYPES.values():
        raise ConfigurationError(
            f'{name}: unknown monitor type {type!r}, expected one of '
            f'{sorted(MONITOR_TYPES.values())}'
        )
    lower, upper = _bounds(lower, upper, comp_shape)
    return SMCArray(
        values=values,
        weights=weights,
        ess=ess,
        discrete=discrete.astype(bool),
        iterations=iterations,
        conditionals=conditionals,
        name=name,
        lower=lower,
        upper=upper,
        type=type,
    )


def mcmc_array(
    values: ArrayLike,
    name: str = 'mcmcarray',
    lower: Sequence[int] | None = None,
    upper: Sequence[int] | None = None,
    iteration: int = -1,
    chain: int | None = None,
) -> MCMCArray:
    """Build and validate an :class:`MCMCArray`.

    Args:
        values: Draws; the axes not tagged *iteration* or *chain* are
            the component axes.
        name: Variable name.
        lower: Lower bounds, default all ones.
        upper: Upper bounds, default the component shape.
        iteration: Axis holding the iterations (negative counts from
            the end).
        chain: Axis holding the chains, if any.

    Raises:
        ConfigurationError: If an axis tag is out of range or both tags
            name the same axis, or the bounds are inconsistent.
    """
    values = jnp.asarray(values)
    ndim = values.ndim
    iteration = _axis(iteration, ndim, 'iteration', name)
    if chain is not None:
        chain = _axis(chain, ndim, 'chain', name)
        if chain == iteration:
            raise ConfigurationError(
                f'{name}: chain and iteration axes must differ'
            )
    sample_axes = {iteration} if chain is None else {iteration, chain}
    comp_shape = tuple(
        n for axis, n in enumerate(values.shape) if axis not in sample_axes
    )
    lower, upper = _bounds(lower, upper, comp_shape)
    return MCMCArray(
        values=values,
        name=name,
        lower=lower,
        upper=upper,
        iteration=iteration,
        chain=chain,
    )


class MCMCArrayBuilder:
    """Collects draws of one variable, fixing its shape on the first draw.

    Args:
        name: Variable name.
        lower: Subscript lower bounds, or ``None`` for the whole variable.
        upper: Subscript upper bounds, or ``None`` for the whole variable.
    """

    def __init__(
        self,
        name: str,
        lower: Bounds | None = None,
        upper: Bounds | None = None,
    ):
        self._name = name
        self._lower = lower
        self._upper = upper
        self._shape: tuple[int, ...] | None = None
        self._draws: list[Array] = []

    @property
    def shape(self) -> tuple[int, ...] | None:
        return self._shape

    def __len__(self) -> int:
        return len(self._draws)

    def append(self, draw: ArrayLike) -> None:
        draw = jnp.asarray(draw)
        if self._shape is None:
            if self._lower is not None:
                check_bounds(self._lower, self._upper, draw.shape)
            self._shape = tuple(draw.shape)
        elif draw.shape != self._shape:
            raise ConfigurationError(
                f'{self._name}: draw shape {draw.shape} differs from the '
                f'first draw shape {self._shape}'
            )
        self._draws.append(draw)

    def build(self) -> MCMCArray:
        """Stack the draws along a trailing iteration axis."""
        if not self._draws:
            raise ConfigurationError(f'{self._name}: no draws recorded')
        return mcmc_array(
            jnp.stack(self._draws, axis=-1),
            name=self._name,
            lower=self._lower,
            upper=self._upper,
        )


# --- Internal helpers -------------------------------------------------------


def _bounds(
    lower: Sequence[int] | None,
    upper: Sequence[int] | None,
    comp_shape: tuple[int, ...],
) -> tuple[Bounds, Bounds]:
    lower = (1,) * len(comp_shape) if lower is None else tuple(int(i) for i in lower)
    if upper is None:
        upper = tuple(lo + n - 1 for lo, n in zip(lower, comp_shape))
    else:
        upper = tuple(int(i) for i in upper)
    check_bounds(lower, upper, comp_shape)
    return lower, upper


def _per_component(
    field: ArrayLike | None,
    comp_shape: tuple[int, ...],
    default: float | bool,
    field_name: str,
    name: str,
) -> Array:
    if field is None:
        return jnp.full(comp_shape, default)
    field = jnp.asarray(field)
    if field.shape != comp_shape:
        raise ConfigurationError(
            f'{name}: {field_name} shape {field.shape} does not match '
            f'component shape {comp_shape}'
        )
    return field


def _axis(axis: int, ndim: int, tag: str, name: str) -> int:
    if not -ndim <= axis < ndim:
        raise ConfigurationError(
            f'{name}: {tag} axis {axis} out of range for {ndim} dimensions'
        )
    return axis % ndim
