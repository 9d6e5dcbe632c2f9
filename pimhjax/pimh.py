# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Particle Independent Metropolis-Hastings (PIMH).

PIMH is a pseudo-marginal MCMC sampler whose proposal is a complete SMC
run.  At every iteration the engine runs a fresh particle system, which
yields an unbiased estimate :math:`\hat{p}(y)` of the marginal
likelihood.  The proposal is accepted with probability

.. math::

    \alpha = \min\left(1, \frac{\hat{p}^*(y)}{\hat{p}(y)}\right)

and on acceptance one trajectory is drawn from the final particle
genealogy.  On rejection the chain repeats its previous state, and the
repeated state is recorded like any other: dropping it would change the
stationary distribution.

References:
    Andrieu, C., Doucet, A. & Holenstein, R. (2010). Particle Markov
    chain Monte Carlo methods. *JRSS B*, 72(3), 269-342.
"""

import logging
import math
from collections.abc import Mapping, Sequence
from typing import NamedTuple

import jax.numpy as jnp
import jax.random as jr
from jaxtyping import Array

from pimhjax.arrays import MCMCArray, MCMCArrayBuilder, mcmc_array
from pimhjax.bundles import NamedList
from pimhjax.config import Config, resolve_config
from pimhjax.engine import SMCEngine
from pimhjax.errors import ConfigurationError, EngineError
from pimhjax.indexing import parse_varname, resolve_varname
from pimhjax.types import PRNGKeyT

logger = logging.getLogger(__name__)

OUTPUT_FLAGS = {'l': 'log_marg_like', 'a': 'accept_rate'}


class PIMHState(NamedTuple):
    """Current state of a PIMH chain.

    Attributes:
        sample: Monitored variable name to its accepted trajectory.
        log_marg_like: Log marginal likelihood estimate of the accepted
            proposal; ``-inf`` before the first acceptance.
    """

    sample: Mapping[str, Array]
    log_marg_like: float


class PIMH:
    """PIMH chain bound to one engine and a set of monitored variables.

    Args:
        model: SMC engine running the model.
        variable_names: Variables to sample, e.g. ``['x', 'x[2:10]']``.
        key: JAX PRNG key for the accept/reject draws.  Defaults to
            ``jr.PRNGKey(config.seed)``.
        config: Run-time settings.

    Raises:
        ConfigurationError: If *variable_names* is empty or a name is not
            a monitorable variable of *model*.

    Example:
        >>> chain = pimh_init(engine, ['x'])
        >>> burnin = chain.update(100, n_particles=200, output='a')
        >>> out = chain.samples(1000, n_particles=200, thin=2)
        >>> out['x'].values.shape
        (50, 500)
    """

    def __init__(
        self,
        model: SMCEngine,
        variable_names: Sequence[str],
        key: PRNGKeyT | None = None,
        config: Config | None = None,
    ):
        if isinstance(variable_names, str):
            variable_names = [variable_names]
        variable_names = list(variable_names)
        if not variable_names:
            raise ConfigurationError('variable_names must not be empty')
        variables = model.variables
        for varname in variable_names:
            resolve_varname(varname, variables)

        self._config = resolve_config(config)
        self._model = model
        self._variable_names = tuple(dict.fromkeys(variable_names))
        self._key = jr.PRNGKey(self._config.seed) if key is None else key
        self._state = PIMHState(sample={}, log_marg_like=-math.inf)

    @property
    def model(self) -> SMCEngine:
        return self._model

    @property
    def variable_names(self) -> tuple[str, ...]:
        return self._variable_names

    @property
    def state(self) -> PIMHState:
        return self._state

    def update(
        self,
        n_iter: int,
        n_particles: int,
        thin: int = 1,
        output: str = 'l',
        **engine_options,
    ) -> NamedList:
        """Advance the chain without keeping the variable draws (burn-in).

        Returns:
            :class:`~pimhjax.bundles.NamedList` holding only the traces
            selected by *output*.
        """
        return self._run_chain(
            n_iter, n_particles, thin, output, False, engine_options
        )

    def samples(
        self,
        n_iter: int,
        n_particles: int,
        thin: int = 1,
        output: str = 'l',
        **engine_options,
    ) -> NamedList:
        """Advance the chain and return thinned draws.

        Args:
            n_iter: Number of chain iterations.
            n_particles: Particles per SMC run.
            thin: Record every *thin*-th iteration.
            output: Traces to return: ``l`` for the log marginal
                likelihood, ``a`` for the acceptance rate.
            **engine_options: Passed to the engine's ``run_forward``.

        Returns:
            :class:`~pimhjax.bundles.NamedList` with one
            :class:`~pimhjax.arrays.MCMCArray` per monitored variable
            (iterations on the last axis) and the requested traces, each
            of shape ``(1, n_iter // thin)``.

        Raises:
            ConfigurationError: If an argument is invalid.
            EngineError: If the engine fails.  ``iteration`` holds the
                failing iteration and the chain state stays at the last
                completed one.
        """
        return self._run_chain(
            n_iter, n_particles, thin, output, True, engine_options
        )

    def _run_chain(
        self,
        n_iter: int,
        n_particles: int,
        thin: int,
        output: str,
        return_samples: bool,
        engine_options: dict,
    ) -> NamedList:
        _check_count(n_iter, 'n_iter')
        _check_count(n_particles, 'n_particles')
        _check_count(thin, 'thin')
        if thin > n_iter:
            raise ConfigurationError(
                f'thin must not exceed n_iter ({n_iter}), got {thin}'
            )
        if not isinstance(output, str) or set(output) - set(OUTPUT_FLAGS):
            raise ConfigurationError(
                f'output must combine the flags {"".join(OUTPUT_FLAGS)}, '
                f'got {output!r}'
            )

        verbosity = self._config.verbosity
        if verbosity > 0:
            logger.info(
                'Running PIMH: %d iterations with %d particles (thin %d)',
                n_iter,
                n_particles,
                thin,
            )

        builders = {}
        if return_samples:
            for varname in self._variable_names:
                name, lower, upper = parse_varname(varname)
                builders[varname] = MCMCArrayBuilder(name, lower, upper)
        log_marg_like_trace: list[float] = []
        accept_rate_trace: list[float] = []
        n_accept = 0

        model = self._model
        model.set_monitors(self._variable_names, 'smoothing')
        try:
            for i in range(1, n_iter + 1):
                try:
                    accepted, ratio = self._step(n_particles, engine_options)
                except EngineError as exc:
                    exc.iteration = i
                    raise
                n_accept += accepted
                if verbosity > 1:
                    logger.debug(
                        'Iteration %d: %s, ratio %.4f, log marginal '
                        'likelihood %.4f',
                        i,
                        'accept' if accepted else 'reject',
                        ratio,
                        self._state.log_marg_like,
                    )
                if i % thin == 0:
                    for varname, builder in builders.items():
                        builder.append(self._state.sample[varname])
                    log_marg_like_trace.append(self._state.log_marg_like)
                    accept_rate_trace.append(ratio)
        finally:
            model.clear_monitors('smoothing', release_only=True)

        if verbosity > 0:
            logger.info(
                'PIMH done: accepted %d of %d proposals', n_accept, n_iter
            )

        members = {name: b.build() for name, b in builders.items()}
        return NamedList(
            members,
            log_marg_like=(
                _trace(log_marg_like_trace, OUTPUT_FLAGS['l'])
                if 'l' in output
                else None
            ),
            accept_rate=(
                _trace(accept_rate_trace, OUTPUT_FLAGS['a'])
                if 'a' in output
                else None
            ),
        )

    def _step(self, n_particles: int, engine_options: dict) -> tuple[bool, float]:
        """Run one iteration and commit the resulting state."""
        model = self._model
        model.run_forward(n_particles, **engine_options)
        proposal = float(model.log_normalizing_constant())
        if math.isnan(proposal):
            raise EngineError('log normalizing constant is NaN')

        current = self._state.log_marg_like
        if proposal >= current:
            ratio = 1.0
        else:
            ratio = math.exp(proposal - current)

        self._key, u_key = jr.split(self._key)
        u = float(jr.uniform(u_key))
        if u >= ratio:
            return False, ratio

        trajectory = model.sample_smoothed_trajectory(model.get_seed())
        sample = {}
        for varname in self._variable_names:
            if varname not in trajectory:
                raise EngineError(
                    f'smoothed trajectory is missing variable {varname!r}'
                )
            sample[varname] = jnp.asarray(trajectory[varname])
        self._state = PIMHState(sample=sample, log_marg_like=proposal)
        return True, ratio


def pimh_init(
    model: SMCEngine,
    variable_names: Sequence[str],
    key: PRNGKeyT | None = None,
    config: Config | None = None,
) -> PIMH:
    """Create a :class:`PIMH` chain in its initial state."""
    return PIMH(model, variable_names, key=key, config=config)


def _check_count(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigurationError(
            f'{name} must be a positive integer, got {value!r}'
        )


def _trace(values: list[float], name: str) -> MCMCArray:
    return mcmc_array(jnp.asarray(values)[None, :], name=name)
