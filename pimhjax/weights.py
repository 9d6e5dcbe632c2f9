# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Weight normalization in log space and in linear space."""

import jax.numpy as jnp
from jax.scipy.special import logsumexp
from jaxtyping import Array, Float

from pimhjax.errors import DomainError
from pimhjax.types import Scalar


def log_normalize(
    log_weights: Float[Array, ' num_particles'],
) -> tuple[Float[Array, ' num_particles'], Scalar]:
    """Normalize log weights and return the log normalizing constant.

    Args:
        log_weights: Unnormalized log importance weights.

    Returns:
        A tuple ``(log_normalized, log_normalizer)`` where
        *log_normalized* has ``logsumexp == 0`` and
        *log_normalizer* is ``logsumexp(log_weights)``.
    """
    log_normalizer = logsumexp(log_weights)
    return log_weights - log_normalizer, log_normalizer


def normalize(
    log_weights: Float[Array, ' num_particles'],
) -> Float[Array, ' num_particles']:
    """Exponentiate and normalize log weights so they sum to one."""
    log_norm, _ = log_normalize(log_weights)
    return jnp.exp(log_norm)


def normalize_weights(
    weights: Float[Array, ' n'],
) -> Float[Array, ' n']:
    """Scale non-negative linear weights so they sum to one.

    Raises:
        DomainError: If the weights are not all finite or their total
            is not positive.
    """
    weights = jnp.asarray(weights)
    if not bool(jnp.all(jnp.isfinite(weights))):
        raise DomainError('weights must be finite')
    total = float(jnp.sum(weights))
    if total <= 0.0:
        raise DomainError(f'total weight must be positive, got {total}')
    return weights / total
