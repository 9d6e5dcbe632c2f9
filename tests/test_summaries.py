# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for summary, table, density, histogram and diagnosis."""

import logging

import jax.numpy as jnp
import jax.random as jr
import pytest

from pimhjax.arrays import mcmc_array, smc_array
from pimhjax.bundles import FSBBundle, NamedList
from pimhjax.errors import ConfigurationError, DomainError
from pimhjax.summaries import (
    Diagnosis,
    Summary,
    density,
    diagnosis,
    histogram,
    summary,
    table,
)


@pytest.fixture
def particles():
    """Two components of x, four equally weighted particles."""
    values = jnp.array([[1.0, 2.0, 3.0, 4.0], [1.0, 1.0, 2.0, 2.0]])
    return smc_array(values, jnp.full((2, 4), 0.25), name='x')


@pytest.fixture
def discrete_particles():
    values = jnp.array([[1.0, 2.0, 3.0, 4.0], [1.0, 1.0, 2.0, 2.0]])
    return smc_array(
        values,
        jnp.full((2, 4), 0.25),
        discrete=jnp.array([True, True]),
        name='c',
        lower=(3,),
        upper=(4,),
    )


class TestSummary:
    """Per-component moments, quantiles and modes."""

    def test_moments_and_median(self, particles):
        out = summary(particles, probs=(0.5,), order=2)
        assert isinstance(out, Summary)
        assert jnp.allclose(out.mean, jnp.array([2.5, 1.5]))
        assert jnp.allclose(out.var, jnp.array([1.25, 0.25]))
        assert out.probs == (0.5,)
        assert jnp.allclose(out.quant['0.5'], jnp.array([2.5, 1.5]))
        assert out.skew is None
        assert out.mode is None
        assert out.drop_dims == {'particle': 4}

    def test_default_is_mean_only_for_continuous(self, particles):
        out = summary(particles)
        assert out.mean is not None
        assert out.var is None
        assert out.quant is None

    def test_discrete_defaults_to_mode(self, discrete_particles):
        out = summary(discrete_particles)
        assert out.mean is None
        # second component ties 1 and 2; the smaller value wins
        assert jnp.array_equal(out.mode, jnp.array([1.0, 1.0]))

    def test_uses_weights(self):
        arr = smc_array(
            jnp.array([[1.0, 2.0, 3.0]]),
            jnp.array([[0.25, 0.25, 0.5]]),
            name='x',
        )
        out = summary(arr, order=2)
        assert jnp.allclose(out.mean, 2.25)
        assert jnp.allclose(out.var, 0.6875)

    def test_zero_weight_particle_outside_quantiles(self):
        arr = smc_array(
            jnp.array([[0.0, 1.0, 100.0]]),
            jnp.array([[0.5, 0.5, 0.0]]),
            name='x',
        )
        out = summary(arr, probs=(0.05, 0.95))
        assert jnp.allclose(out.quant['0.05'], 0.0)
        assert jnp.allclose(out.quant['0.95'], 1.0)

    def test_component_shape_is_preserved(self):
        values = jr.normal(jr.PRNGKey(0), (2, 3, 10))
        arr = smc_array(values, jnp.full(values.shape, 0.1), name='b')
        out = summary(arr, order=1)
        assert out.mean.shape == (2, 3)
        assert jnp.allclose(out.mean, jnp.mean(values, axis=-1))

    def test_mcmc_uses_unit_weights(self):
        draws = mcmc_array(jnp.array([[1.0, 2.0, 3.0, 4.0, 5.0]]), name='mu')
        out = summary(draws, probs=(0.25, 0.75), order=2, mode=False)
        assert jnp.allclose(out.mean, 3.0)
        assert jnp.allclose(out.var, 2.0)
        assert out.drop_dims == {'iteration': 5}

    def test_zero_variance_shape_statistic_names_component(self):
        arr = smc_array(
            jnp.array([[1.0, 2.0], [3.0, 3.0]]), jnp.full((2, 2), 0.5), name='x'
        )
        with pytest.raises(DomainError, match=r'x\[2\]'):
            summary(arr, order=3)

    def test_invalid_order_raises(self, particles):
        with pytest.raises(ConfigurationError, match='order'):
            summary(particles, order=5)

    def test_invalid_probs_raise(self, particles):
        with pytest.raises(ConfigurationError, match='probability'):
            summary(particles, probs=(0.5, 1.0))

    def test_named_list(self, particles):
        smoothing = particles._replace(type='smoothing')
        out = NamedList(
            {
                'x': FSBBundle({'f': particles, 's': smoothing}),
                'mu': mcmc_array(jnp.arange(6.0).reshape(1, 6), name='mu'),
            }
        )
        result = summary(out, order=1, mode=False)
        assert set(result) == {'x', 'mu'}
        assert set(result['x']) == {'f', 's'}
        assert jnp.allclose(result['mu'].mean, 2.5)


class TestTable:
    """Probability mass tables keyed by component label."""

    def test_labels_and_masses(self, discrete_particles):
        out = table(discrete_particles)
        assert list(out) == ['c[3]', 'c[4]']
        assert out['c[4]'] == {1.0: 0.5, 2.0: 0.5}
        assert out['c[3]'][4.0] == pytest.approx(0.25)


class TestDensity:
    """Weighted Gaussian kernel densities."""

    def test_integrates_to_about_one(self):
        values = jr.normal(jr.PRNGKey(1), (1, 400))
        arr = smc_array(values, jnp.full(values.shape, 1 / 400), name='x')
        out = density(arr, num_points=1024)['x[1]']
        dx = out.x[1] - out.x[0]
        assert float(jnp.sum(out.y) * dx) == pytest.approx(1.0, abs=0.02)
        assert out.bw > 0.0
        assert out.label == 'x[1]'
        assert out.x.shape == (1024,)

    def test_zero_variance_raises(self):
        arr = smc_array(jnp.ones((1, 5)), jnp.full((1, 5), 0.2), name='x')
        with pytest.raises(DomainError, match='zero variance'):
            density(arr)

    def test_too_few_points_raises(self, particles):
        with pytest.raises(ConfigurationError, match='num_points'):
            density(particles, num_points=1)


class TestHistogram:
    """Weighted histograms normalized to densities."""

    def test_normalized(self, particles):
        out = histogram(particles, bins=3)
        hist = out['x[1]']
        widths = jnp.diff(hist.edges)
        assert hist.edges.shape == (4,)
        assert float(jnp.sum(hist.density * widths)) == pytest.approx(1.0)


class TestDiagnosis:
    """Minimum ESS checks."""

    def test_good(self, particles, caplog):
        with caplog.at_level(logging.INFO, logger='pimhjax.summaries'):
            out = diagnosis(particles, ess_thres=2.0)
        assert out == Diagnosis(ess_min=4.0, valid=True)
        assert 'GOOD' in caplog.text

    def test_poor_logs_warning(self, particles, caplog):
        with caplog.at_level(logging.INFO, logger='pimhjax.summaries'):
            out = diagnosis(particles)
        assert not out.valid
        assert 'POOR' in caplog.text
        assert any(r.levelno == logging.WARNING for r in caplog.records)

    def test_skips_mcmc_members(self, particles):
        out = NamedList(
            {
                'x': FSBBundle({'f': particles}),
                'mu': mcmc_array(jnp.zeros((1, 3)), name='mu'),
            }
        )
        assert set(diagnosis(out, ess_thres=1.0)) == {'x'}

    def test_negative_threshold_raises(self, particles):
        with pytest.raises(ConfigurationError, match='ess_thres'):
            diagnosis(particles, ess_thres=-1.0)
