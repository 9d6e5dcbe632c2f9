# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for the package-level API."""

from importlib.metadata import PackageNotFoundError
from unittest.mock import patch

from pimhjax import __version__


def test_version_is_accessible():
    """Test that __version__ is a non-empty string."""
    assert isinstance(__version__, str)
    assert __version__ != ''


def test_public_api_exports_all_expected_names(package):
    """Test that __all__ contains exactly the expected public API."""
    expected = [
        'PIMH',
        'BootstrapEngine',
        'Config',
        'ConfigurationError',
        'DiscreteAccumulator',
        'DomainError',
        'EngineError',
        'FSBBundle',
        'MCMCArray',
        'MCMCArrayBuilder',
        'MomentAccumulator',
        'NamedList',
        'PIMHState',
        'PimhjaxError',
        'QuantileAccumulator',
        'SMCArray',
        'SMCEngine',
        'Statistic',
        '__version__',
        'density',
        'diagnosis',
        'histogram',
        'map_arrays',
        'mcmc_array',
        'pimh_init',
        'smc_array',
        'smc_samples',
        'summary',
        'table',
        'weighted_kurtosis',
        'weighted_mean',
        'weighted_median',
        'weighted_mode',
        'weighted_moments',
        'weighted_quantile',
        'weighted_skewness',
        'weighted_table',
        'weighted_variance',
    ]
    assert sorted(package.__all__) == sorted(expected)


def test_all_names_resolve(package):
    """Every name in __all__ is an attribute of the package."""
    for name in package.__all__:
        assert hasattr(package, name), name


def test_version_fallback_when_package_not_found():
    """Test that __version__ falls back to '0.0.0' when not installed."""
    import importlib

    import pimhjax

    with patch(
        'importlib.metadata.version',
        side_effect=PackageNotFoundError,
    ):
        importlib.reload(pimhjax)
        assert pimhjax.__version__ == '0.0.0'

    # Restore the real version
    importlib.reload(pimhjax)
