# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for SMCArray, MCMCArray and their constructors."""

import math

import jax
import jax.numpy as jnp
import pytest

from pimhjax.arrays import (
    MCMCArray,
    MCMCArrayBuilder,
    SMCArray,
    mcmc_array,
    smc_array,
)
from pimhjax.errors import ConfigurationError


def _particles(shape=(3, 5)):
    values = jnp.arange(float(math.prod(shape))).reshape(shape)
    weights = jnp.full(shape, 1.0 / shape[-1])
    return values, weights


class TestSMCArray:
    """Validation and component access for particle arrays."""

    def test_defaults(self):
        values, weights = _particles()
        arr = smc_array(values, weights, name='x')
        assert isinstance(arr, SMCArray)
        assert arr.lower == (1,)
        assert arr.upper == (3,)
        assert arr.component_shape == (3,)
        assert arr.num_components == 3
        assert arr.num_samples == 5
        assert jnp.all(arr.ess == 5.0)
        assert not bool(jnp.any(arr.discrete))
        assert arr.type == 'filtering'
        assert arr.drop_dims == {'particle': 5}

    def test_component_and_label(self):
        values, weights = _particles()
        arr = smc_array(values, weights, name='x', lower=(2,), upper=(4,))
        comp_values, comp_weights = arr.component(2)
        assert jnp.array_equal(comp_values, values[1])
        assert jnp.allclose(comp_weights, 0.2)
        assert arr.subscript(2) == (3,)
        assert arr.label(2) == 'x[3]'

    def test_two_component_dims(self):
        values = jnp.arange(24.0).reshape(2, 3, 4)
        arr = smc_array(values, jnp.ones_like(values) / 4, name='b')
        assert arr.num_components == 6
        # component 4 -> offset (1, 1)
        assert jnp.array_equal(arr.component(4)[0], values[1, 1])
        assert arr.label(4) == 'b[2,2]'

    def test_conditionals_per_component_or_shared(self):
        values, weights = _particles()
        per = smc_array(
            values, weights, conditionals=[['y[1]'], ['y[1]', 'y[2]'], []]
        )
        assert len(per.conditionals) == 3
        shared = smc_array(values, weights, conditionals=[['y[1]', 'y[2]']])
        assert shared.conditionals == (('y[1]', 'y[2]'),)

    def test_bad_conditionals_count_raises(self):
        values, weights = _particles()
        with pytest.raises(ConfigurationError, match='conditionals'):
            smc_array(values, weights, conditionals=[[], []])

    def test_weights_shape_mismatch_raises(self):
        values, _ = _particles()
        with pytest.raises(ConfigurationError, match='weights shape'):
            smc_array(values, jnp.ones((3, 4)))

    def test_per_component_shape_mismatch_raises(self):
        values, weights = _particles()
        with pytest.raises(ConfigurationError, match='ess shape'):
            smc_array(values, weights, ess=jnp.ones(4))

    def test_bounds_must_match_extent(self):
        values, weights = _particles()
        with pytest.raises(ConfigurationError, match='do not match'):
            smc_array(values, weights, lower=(1,), upper=(4,))

    def test_bounds_length_mismatch_raises(self):
        values, weights = _particles()
        with pytest.raises(ConfigurationError, match='length mismatch'):
            smc_array(values, weights, lower=(1, 1), upper=(3,))

    def test_unknown_type_raises(self):
        values, weights = _particles()
        with pytest.raises(ConfigurationError, match='monitor type'):
            smc_array(values, weights, type='forward')

    def test_scalar_values_raise(self):
        with pytest.raises(ConfigurationError, match='particle axis'):
            smc_array(1.0, 1.0)

    def test_is_pytree(self):
        """NamedTuple arrays pass through jax.tree_util unchanged."""
        values, weights = _particles()
        arr = smc_array(values, weights, name='x')
        leaves = jax.tree_util.tree_leaves(arr)
        assert any(leaf is arr.values for leaf in leaves)


class TestMCMCArray:
    """Axis tags and component access for MCMC draws."""

    def test_trailing_iteration_axis(self):
        values = jnp.arange(12.0).reshape(3, 4)
        arr = mcmc_array(values, name='x')
        assert isinstance(arr, MCMCArray)
        assert arr.iteration == 1
        assert arr.chain is None
        assert arr.component_shape == (3,)
        assert arr.num_samples == 4
        assert arr.drop_dims == {'iteration': 4}
        assert jnp.array_equal(arr.component(2), values[1])

    def test_chain_axis(self):
        # components (2,), iterations 5, chains 3
        values = jnp.arange(30.0).reshape(2, 5, 3)
        arr = mcmc_array(values, name='b', iteration=1, chain=2)
        assert arr.axis_names == ('', 'iteration', 'chain')
        assert arr.num_samples == 15
        assert arr.drop_dims == {'iteration': 5, 'chain': 3}
        assert jnp.array_equal(arr.component(2), jnp.ravel(values[1].T))

    def test_leading_sample_axis(self):
        """Sample axes may precede the component axes."""
        values = jnp.arange(12.0).reshape(4, 3)
        arr = mcmc_array(values, name='x', iteration=0)
        assert arr.component_shape == (3,)
        assert jnp.array_equal(arr.component(3), values[:, 2])

    def test_same_axis_for_chain_and_iteration_raises(self):
        with pytest.raises(ConfigurationError, match='must differ'):
            mcmc_array(jnp.zeros((2, 3)), iteration=1, chain=-1)

    def test_axis_out_of_range_raises(self):
        with pytest.raises(ConfigurationError, match='out of range'):
            mcmc_array(jnp.zeros((2, 3)), iteration=2)


class TestMCMCArrayBuilder:
    """Lazy construction from per-iteration draws."""

    def test_shape_fixed_on_first_draw(self):
        builder = MCMCArrayBuilder('x', (2,), (4,))
        assert builder.shape is None
        builder.append(jnp.array([1.0, 2.0, 3.0]))
        builder.append(jnp.array([4.0, 5.0, 6.0]))
        assert builder.shape == (3,)
        assert len(builder) == 2
        arr = builder.build()
        assert arr.values.shape == (3, 2)
        assert arr.lower == (2,)
        assert arr.upper == (4,)
        assert arr.label(1) == 'x[2]'

    def test_default_bounds_from_first_draw(self):
        builder = MCMCArrayBuilder('b')
        builder.append(jnp.zeros((2, 3)))
        arr = builder.build()
        assert arr.lower == (1, 1)
        assert arr.upper == (2, 3)

    def test_shape_change_raises(self):
        builder = MCMCArrayBuilder('x')
        builder.append(jnp.zeros(3))
        with pytest.raises(ConfigurationError, match='differs'):
            builder.append(jnp.zeros(4))

    def test_bounds_mismatch_on_first_draw_raises(self):
        builder = MCMCArrayBuilder('x', (1,), (5,))
        with pytest.raises(ConfigurationError, match='do not match'):
            builder.append(jnp.zeros(3))

    def test_empty_build_raises(self):
        with pytest.raises(ConfigurationError, match='no draws'):
            MCMCArrayBuilder('x').build()
