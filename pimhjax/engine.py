# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""SMC engine interface and a bootstrap-filter reference adapter.

The PIMH controller only talks to an engine through :class:`SMCEngine`.
:class:`BootstrapEngine` implements that interface for a state-space
model given by callbacks:

1. **Resample** (conditionally on ESS) with a Blackjax scheme.
2. **Propagate** particles through the transition prior.
3. **Weight** particles by the observation likelihood.

The time loop runs in :func:`jax.lax.scan`.  Ancestor indices are kept
so the genealogy of every final particle can be traced back, which
yields the smoothing monitors and the smoothed trajectory draws used as
PIMH proposals.

:func:`smc_samples` runs one forward pass with filtering and smoothing
monitors and returns the particle arrays grouped in FSB bundles.
"""

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from typing import NamedTuple, Protocol

import jax
import jax.numpy as jnp
import jax.random as jr
from blackjax.smc import resampling
from blackjax.smc.ess import ess as compute_ess
from jax import lax, vmap
from jaxtyping import Array, Float, Int

from pimhjax.arrays import SMCArray, smc_array
from pimhjax.bundles import FSBBundle, NamedList
from pimhjax.config import Config, resolve_config
from pimhjax.errors import ConfigurationError, EngineError
from pimhjax.indexing import (
    component_subscript,
    deparse_varname,
    extent,
    num_components,
    resolve_varname,
    subset,
)
from pimhjax.types import MONITOR_TYPES, PRNGKeyT, Scalar
from pimhjax.weights import log_normalize, normalize

logger = logging.getLogger(__name__)

RESAMPLING_SCHEMES = {
    'multinomial': resampling.multinomial,
    'residual': resampling.residual,
    'stratified': resampling.stratified,
    'systematic': resampling.systematic,
}


class SMCEngine(Protocol):
    """Operations the PIMH controller needs from an SMC engine."""

    @property
    def variables(self) -> Mapping[str, tuple[int, ...]]:
        """Shapes of the monitorable variables, keyed by name."""
        ...

    def run_forward(self, n_particles: int, **options) -> None:
        """Run a fresh, independent SMC pass."""
        ...

    def log_normalizing_constant(self) -> float:
        """Log marginal likelihood estimate of the last forward pass."""
        ...

    def sample_smoothed_trajectory(self, seed: int) -> Mapping[str, Array]:
        """Draw one genealogy path, keyed by smoothing-monitored name."""
        ...

    def set_monitors(self, variable_names: Sequence[str], type: str) -> None:
        ...

    def clear_monitors(self, type: str, release_only: bool = False) -> None:
        """Forget monitored values (and names, unless *release_only*)."""
        ...

    def get_seed(self) -> int:
        ...

    def get_monitors(self, type: str) -> dict[str, SMCArray]:
        ...


class FilterRun(NamedTuple):
    r"""History of one bootstrap filter pass.

    Attributes:
        marginal_loglik: Scalar estimate of :math:`\log p(y_{1:T})`.
        particles: Particle values, shape ``(ntime, num_particles, state_dim)``.
        log_weights: Normalized log weights, shape ``(ntime, num_particles)``.
        ancestors: Parent of each particle at the previous step,
            shape ``(ntime, num_particles)``; identity at ``t = 0``.
        ess: Effective sample size at each step, shape ``(ntime,)``.
        log_evidence_increments: Per-step contributions to
            *marginal_loglik*, shape ``(ntime,)``.
    """

    marginal_loglik: Scalar
    particles: Float[Array, 'ntime num_particles state_dim']
    log_weights: Float[Array, 'ntime num_particles']
    ancestors: Int[Array, 'ntime num_particles']
    ess: Float[Array, ' ntime']
    log_evidence_increments: Float[Array, ' ntime']


def bootstrap_filter(
    key: PRNGKeyT,
    initial_sampler: Callable,
    transition_sampler: Callable,
    log_observation_fn: Callable,
    emissions: Float[Array, 'ntime emission_dim'],
    num_particles: int,
    resampling_fn: Callable = resampling.stratified,
    resampling_threshold: float = 0.5,
) -> FilterRun:
    r"""Run a bootstrap (SIR) particle filter and keep its genealogy.

    Args:
        key: JAX PRNG key.
        initial_sampler: ``(key, num_particles) -> particles`` drawing
            from :math:`p(z_1)`.
        transition_sampler: ``(key, state) -> state`` drawing from
            :math:`p(z_t \mid z_{t-1})`; ``vmap``-ped over particles.
        log_observation_fn: ``(emission, state) -> log_prob``;
            ``vmap``-ped over particles.
        emissions: Observed emissions, shape ``(T, D)``.
        num_particles: Number of particles :math:`N`.
        resampling_fn: Blackjax-style ``(key, weights, num_samples)``
            resampling function.
        resampling_threshold: Resample when ``ESS < threshold * N``.

    Returns:
        :class:`FilterRun` with the full particle history.
    """
    key, init_key = jr.split(key)
    log_n = jnp.log(num_particles)

    particles_0 = initial_sampler(init_key, num_particles)
    log_obs_0 = vmap(lambda z: log_observation_fn(emissions[0], z))(
        particles_0
    )
    log_w_0, log_sum_0 = log_normalize(log_obs_0)
    identity_ancestors = jnp.arange(num_particles, dtype=jnp.int32)

    def _step(
        carry: tuple[Array, Array, Array],
        args: tuple[PRNGKeyT, Float[Array, ' emission_dim']],
    ) -> tuple[tuple[Array, Array, Array], tuple[Array, ...]]:
        (particles, log_w, log_ml), (step_key, y_t) = carry, args
        k1, k2 = jr.split(step_key)

        do_resample = compute_ess(log_w) < resampling_threshold * num_particles
        ancestors = lax.cond(
            do_resample,
            lambda: resampling_fn(k1, normalize(log_w), num_particles).astype(
                jnp.int32
            ),
            lambda: identity_ancestors,
        )
        keys = jr.split(k2, num_particles)
        propagated = vmap(transition_sampler)(keys, particles[ancestors])
        log_obs = vmap(lambda z: log_observation_fn(y_t, z))(propagated)

        # Resampling resets the weights to 1/N; otherwise the normalized
        # previous weights carry over and already sum to one.
        log_w_new, log_sum = log_normalize(
            jnp.where(do_resample, log_obs, log_w + log_obs)
        )
        log_ev_inc = jnp.where(do_resample, log_sum - log_n, log_sum)
        return (propagated, log_w_new, log_ml + log_ev_inc), (
            propagated,
            log_w_new,
            ancestors,
            compute_ess(log_w_new),
            log_ev_inc,
        )

    step_keys = jr.split(key, emissions.shape[0] - 1)
    (_, _, log_ml), history = lax.scan(
        _step,
        (particles_0, log_w_0, log_sum_0 - log_n),
        (step_keys, emissions[1:]),
    )
    particles_rest, log_w_rest, anc_rest, ess_rest, inc_rest = history

    def _prepend(first: Array, rest: Array) -> Array:
        return jnp.concatenate([jnp.expand_dims(first, 0), rest], axis=0)

    return FilterRun(
        marginal_loglik=log_ml,
        particles=_prepend(particles_0, particles_rest),
        log_weights=_prepend(log_w_0, log_w_rest),
        ancestors=_prepend(identity_ancestors, anc_rest),
        ess=_prepend(jnp.asarray(compute_ess(log_w_0)), ess_rest),
        log_evidence_increments=_prepend(log_sum_0 - log_n, inc_rest),
    )


def trace_genealogy(
    particles: Float[Array, 'ntime num_particles state_dim'],
    ancestors: Int[Array, 'ntime num_particles'],
    final_index: Int[Array, '...'],
) -> Float[Array, 'ntime ... state_dim']:
    """Follow ancestor links back from the final particles *final_index*.

    Args:
        particles: Particle history.
        ancestors: Ancestor indices; ``ancestors[t, i]`` is the parent at
            ``t - 1`` of particle ``i`` at ``t``.
        final_index: Index (or array of indices) of final particles.

    Returns:
        Paths stacked along a leading time axis.
    """
    final_index = jnp.asarray(final_index, dtype=ancestors.dtype)

    def _back(index: Array, inputs: tuple[Array, Array]) -> tuple[Array, Array]:
        ancestors_t, particles_t = inputs
        return ancestors_t[index], particles_t[index]

    first_index, rest_rev = lax.scan(
        _back, final_index, (ancestors[1:][::-1], particles[1:][::-1])
    )
    first = particles[0][first_index]
    return jnp.concatenate([first[None], rest_rev[::-1]], axis=0)


class BootstrapEngine:
    """Reference :class:`SMCEngine` for a callback state-space model.

    The latent state is exposed as one variable (``state_name``) of
    shape ``(T,)`` for a scalar state or ``(T, state_dim)`` otherwise.
    Filtering and smoothing monitors are supported.

    Args:
        key: JAX PRNG key; split for every forward pass and seed.
        initial_sampler: ``(key, num_particles) -> particles`` of shape
            ``(num_particles,)`` or ``(num_particles, state_dim)``.
        transition_sampler: ``(key, state) -> state``.
        log_observation_fn: ``(emission, state) -> log_prob``.
        emissions: Observed emissions, shape ``(T, D)``.
        state_name: Name of the latent variable.
        observation_name: Name used for the observed nodes in the
            ``conditionals`` of the monitors.
        discrete: Whether the latent state is discrete-valued.
        config: Run-time settings.
    """

    def __init__(
        self,
        key: PRNGKeyT,
        initial_sampler: Callable,
        transition_sampler: Callable,
        log_observation_fn: Callable,
        emissions: Float[Array, 'ntime emission_dim'],
        state_name: str = 'x',
        observation_name: str = 'y',
        discrete: bool = False,
        config: Config | None = None,
    ):
        self._key = key
        self._initial_sampler = initial_sampler
        self._transition_sampler = transition_sampler
        self._log_observation_fn = log_observation_fn
        self._emissions = jnp.asarray(emissions)
        self._state_name = state_name
        self._observation_name = observation_name
        self._discrete = discrete
        self._config = resolve_config(config)

        ntime = self._emissions.shape[0]
        if ntime < 1:
            raise ConfigurationError('emissions must have at least one step')
        shape = jax.eval_shape(lambda k: initial_sampler(k, 1), key).shape
        # samplers may return (N,) or (N, D) particles
        self._state_axis = len(shape) > 1
        self._state_dim = shape[-1] if self._state_axis else 1
        dims = (ntime,) if self._state_dim == 1 else (ntime, self._state_dim)
        self._variables = {state_name: dims}

        self._monitors: dict[str, list[str]] = {
            'filtering': [],
            'smoothing': [],
        }
        self._run: FilterRun | None = None
        self._log_norm_const: float | None = None

    @property
    def variables(self) -> dict[str, tuple[int, ...]]:
        return dict(self._variables)

    def monitored(self, type: str) -> tuple[str, ...]:
        return tuple(self._monitors[self._check_type(type)])

    def set_monitors(self, variable_names: Sequence[str], type: str) -> None:
        type = self._check_type(type)
        for varname in variable_names:
            resolve_varname(varname, self._variables)
            if varname not in self._monitors[type]:
                self._monitors[type].append(varname)

    def clear_monitors(self, type: str, release_only: bool = False) -> None:
        type = self._check_type(type)
        self._run = None
        if not release_only:
            self._monitors[type] = []

    def run_forward(
        self,
        n_particles: int,
        resampling: str = 'stratified',
        resampling_threshold: float = 0.5,
    ) -> None:
        """Run one bootstrap filter pass.

        Args:
            n_particles: Number of particles.
            resampling: One of ``multinomial``, ``residual``,
                ``stratified``, ``systematic``.
            resampling_threshold: ESS fraction in ``[0, 1]`` below which
                particles are resampled.

        Raises:
            ConfigurationError: If an option is invalid.
            EngineError: If the filter fails or yields a NaN evidence.
        """
        if isinstance(n_particles, bool) or not isinstance(n_particles, int):
            raise ConfigurationError(
                f'n_particles must be an integer, got {n_particles!r}'
            )
        if n_particles < 1:
            raise ConfigurationError(
                f'n_particles must be >= 1, got {n_particles}'
            )
        if resampling not in RESAMPLING_SCHEMES:
            raise ConfigurationError(
                f'unknown resampling scheme {resampling!r}, expected one of '
                f'{sorted(RESAMPLING_SCHEMES)}'
            )
        if not 0.0 <= resampling_threshold <= 1.0:
            raise ConfigurationError(
                f'resampling_threshold must be in [0, 1], '
                f'got {resampling_threshold}'
            )

        self._key, run_key = jr.split(self._key)
        self._run = None
        self._log_norm_const = None
        try:
            run = bootstrap_filter(
                key=run_key,
                initial_sampler=self._initial_sampler,
                transition_sampler=self._transition_sampler,
                log_observation_fn=self._log_observation_fn,
                emissions=self._emissions,
                num_particles=n_particles,
                resampling_fn=RESAMPLING_SCHEMES[resampling],
                resampling_threshold=resampling_threshold,
            )
        except Exception as exc:
            raise EngineError(f'bootstrap filter failed: {exc}') from exc

        log_norm_const = float(run.marginal_loglik)
        if math.isnan(log_norm_const):
            raise EngineError('bootstrap filter returned a NaN evidence')
        self._run = run
        self._log_norm_const = log_norm_const
        if self._config.verbosity > 1:
            logger.debug(
                'Bootstrap filter with %d particles: log evidence %.4f',
                n_particles,
                log_norm_const,
            )

    def log_normalizing_constant(self) -> float:
        if self._log_norm_const is None:
            raise EngineError('no forward run available')
        return self._log_norm_const

    def get_seed(self) -> int:
        self._key, seed_key = jr.split(self._key)
        return int(jr.randint(seed_key, (), 0, jnp.iinfo(jnp.int32).max))

    def sample_smoothed_trajectory(self, seed: int) -> dict[str, Array]:
        """Draw a final particle by weight and trace its genealogy."""
        run = self._require_run()
        names = self._monitors['smoothing']
        if not names:
            raise EngineError('no smoothing monitors are set')
        index = jr.categorical(jr.PRNGKey(seed), run.log_weights[-1])
        path = trace_genealogy(run.particles, run.ancestors, index)
        value = self._as_variable(path)
        out = {}
        for varname in names:
            _, lower, upper = resolve_varname(varname, self._variables)
            out[varname] = subset(value, lower, upper)
        return out

    def get_monitors(self, type: str) -> dict[str, SMCArray]:
        """Particle arrays of every variable monitored with *type*."""
        type = self._check_type(type)
        run = self._require_run()
        ntime = run.particles.shape[0]
        weights = jnp.exp(run.log_weights)
        if type == 'filtering':
            values = self._as_variable(run.particles)
            weights_t = weights
            ess = run.ess
            iterations = jnp.arange(1, ntime + 1, dtype=float)
        else:
            all_index = jnp.arange(run.particles.shape[1], dtype=jnp.int32)
            paths = trace_genealogy(run.particles, run.ancestors, all_index)
            values = self._as_variable(paths)
            weights_t = jnp.broadcast_to(weights[-1], weights.shape)
            ess = jnp.full((ntime,), run.ess[-1])
            iterations = jnp.full((ntime,), float(ntime))

        weights_t = self._broadcast(weights_t, values)
        ess = self._broadcast(ess, values[..., 0])
        iterations = self._broadcast(iterations, values[..., 0])

        out = {}
        for varname in self._monitors[type]:
            name, lower, upper = resolve_varname(varname, self._variables)
            value_sub = subset(values, lower, upper)
            out[varname] = smc_array(
                values=value_sub,
                weights=subset(weights_t, lower, upper),
                ess=subset(ess, lower, upper),
                discrete=jnp.full(value_sub.shape[:-1], self._discrete),
                iterations=subset(iterations, lower, upper),
                conditionals=self._conditionals(type, lower, upper),
                name=name,
                lower=lower,
                upper=upper,
                type=type,
            )
        return out

    # --- Internal helpers ---------------------------------------------------

    def _check_type(self, type: str) -> str:
        type = MONITOR_TYPES.get(type, type)
        if type == 'backward_smoothing':
            raise ConfigurationError(
                'backward smoothing is not supported by the bootstrap engine'
            )
        if type not in self._monitors:
            raise ConfigurationError(f'unknown monitor type {type!r}')
        return type

    def _require_run(self) -> FilterRun:
        if self._run is None:
            raise EngineError('no particle history available; run forward first')
        return self._run

    def _as_variable(self, history: Array) -> Array:
        """``(T, ...[, D])`` history to variable layout ``(T[, D], ...)``."""
        if not self._state_axis:
            return history
        if self._state_dim == 1:
            return history[..., 0]
        return jnp.moveaxis(history, -1, 1)

    def _broadcast(self, per_time: Array, like: Array) -> Array:
        """Broadcast a time-indexed array over the trailing axes of *like*."""
        pad = (1,) * (like.ndim - per_time.ndim)
        shape = per_time.shape[:1] + pad + per_time.shape[1:]
        return jnp.broadcast_to(jnp.reshape(per_time, shape), like.shape)

    def _conditionals(
        self, type: str, lower: tuple[int, ...], upper: tuple[int, ...]
    ) -> tuple[tuple[str, ...], ...]:
        ntime = self._emissions.shape[0]
        observed = tuple(
            deparse_varname(self._observation_name, (t,), (t,))
            for t in range(1, ntime + 1)
        )
        if type == 'smoothing':
            return (observed,)
        return tuple(
            observed[: component_subscript(d, lower, upper)[0]]
            for d in range(1, num_components(extent(lower, upper)) + 1)
        )


def smc_samples(
    engine: SMCEngine,
    variable_names: Sequence[str],
    n_particles: int,
    types: str = 'fs',
    **options,
) -> NamedList:
    """Run one SMC pass and collect the monitored particle arrays.

    Args:
        engine: SMC engine.
        variable_names: Variables to monitor, e.g. ``['x', 'x[2:5]']``.
        n_particles: Number of particles.
        types: Monitor tags among ``f``, ``s``, ``b``.
        **options: Passed to :meth:`SMCEngine.run_forward`.

    Returns:
        :class:`~pimhjax.bundles.NamedList` of
        :class:`~pimhjax.bundles.FSBBundle` per variable, with the log
        evidence in ``log_marg_like``.
    """
    variable_names = list(variable_names)
    if not variable_names:
        raise ConfigurationError('variable_names must not be empty')
    tags = list(dict.fromkeys(types))
    if not tags or any(tag not in MONITOR_TYPES for tag in tags):
        raise ConfigurationError(
            f'types must be a non-empty combination of '
            f'{"".join(MONITOR_TYPES)}, got {types!r}'
        )

    for tag in tags:
        engine.set_monitors(variable_names, MONITOR_TYPES[tag])
    try:
        engine.run_forward(n_particles, **options)
        monitors = {tag: engine.get_monitors(MONITOR_TYPES[tag]) for tag in tags}
        log_marg_like = engine.log_normalizing_constant()
    finally:
        for tag in tags:
            engine.clear_monitors(MONITOR_TYPES[tag], release_only=True)

    members = {
        varname: FSBBundle({tag: monitors[tag][varname] for tag in tags})
        for varname in variable_names
    }
    return NamedList(members, log_marg_like=log_marg_like)
