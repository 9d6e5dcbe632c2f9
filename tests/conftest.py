# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Shared test fixtures for pimhjax."""

import jax
import jax.numpy as jnp
import jax.random as jr
import jax.scipy.stats as jstats
import pytest

import pimhjax
from pimhjax.engine import BootstrapEngine


@pytest.fixture
def package():
    """Return the top-level package module for introspection."""
    return pimhjax


@pytest.fixture
def key():
    """Fixed JAX PRNG key for reproducibility."""
    return jr.PRNGKey(42)


@pytest.fixture
def lgssm_params():
    """Simple 1-D linear Gaussian SSM parameters.

    Model:
        z_0  ~ N(0, 1)
        z_t  = 0.9 * z_{t-1} + eps,  eps ~ N(0, 0.5^2)
        y_t  = z_t + eta,             eta ~ N(0, 1.0^2)

    Returns a dict with keys matching Dynamax ``make_lgssm_params``.
    """
    return dict(
        initial_mean=jnp.array([0.0]),
        initial_cov=jnp.array([[1.0]]),
        dynamics_weights=jnp.array([[0.9]]),
        dynamics_cov=jnp.array([[0.25]]),  # 0.5^2
        emissions_weights=jnp.array([[1.0]]),
        emissions_cov=jnp.array([[1.0]]),
    )


@pytest.fixture
def lgssm_data(key, lgssm_params):
    """Simulate T=50 observations from the 1-D LGSSM.

    Returns (states, emissions) each of shape (50, 1).
    """
    from dynamax.linear_gaussian_ssm.inference import (
        lgssm_joint_sample,
        make_lgssm_params,
    )

    params = make_lgssm_params(**lgssm_params)
    states, emissions = lgssm_joint_sample(params, key, num_timesteps=50)
    return states, emissions


@pytest.fixture
def lgssm_fns(lgssm_params):
    """(initial_sampler, transition_sampler, log_observation_fn) closures."""
    m0 = lgssm_params['initial_mean']
    P0 = lgssm_params['initial_cov']
    F = lgssm_params['dynamics_weights']
    Q = lgssm_params['dynamics_cov']
    H = lgssm_params['emissions_weights']
    R = lgssm_params['emissions_cov']

    def _mvn_sample(key, mean, cov, shape=()):
        chol = jnp.linalg.cholesky(cov)
        z = jr.normal(key, (*shape, mean.shape[-1]))
        return mean + z @ chol.T

    def initial_sampler(key, n):
        return _mvn_sample(key, m0, P0, shape=(n,))

    def transition_sampler(key, state):
        mean = (F @ state[:, None]).squeeze(-1)
        return _mvn_sample(key, mean, Q)

    def log_observation_fn(emission, state):
        mean = (H @ state[:, None]).squeeze(-1)
        return jstats.multivariate_normal.logpdf(emission, mean, R)

    return initial_sampler, transition_sampler, log_observation_fn


@pytest.fixture
def lgssm_engine(lgssm_fns, lgssm_data):
    """BootstrapEngine over the simulated LGSSM; latent variable ``x``."""
    init_fn, trans_fn, obs_fn = lgssm_fns
    _, emissions = lgssm_data
    return BootstrapEngine(
        key=jr.PRNGKey(7),
        initial_sampler=init_fn,
        transition_sampler=trans_fn,
        log_observation_fn=obs_fn,
        emissions=emissions,
    )


# Configure JAX to use 64-bit floats for higher precision in tests.
jax.config.update('jax_enable_x64', True)
