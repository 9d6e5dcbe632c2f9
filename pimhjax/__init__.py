# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Particle independent Metropolis-Hastings and weighted summaries in JAX."""

from importlib.metadata import PackageNotFoundError as _PackageNotFoundError
from importlib.metadata import version as _version

from pimhjax.accumulators import (
    DiscreteAccumulator,
    MomentAccumulator,
    QuantileAccumulator,
    Statistic,
    weighted_kurtosis,
    weighted_mean,
    weighted_median,
    weighted_mode,
    weighted_moments,
    weighted_quantile,
    weighted_skewness,
    weighted_table,
    weighted_variance,
)
from pimhjax.arrays import (
    MCMCArray,
    MCMCArrayBuilder,
    SMCArray,
    mcmc_array,
    smc_array,
)
from pimhjax.bundles import FSBBundle, NamedList, map_arrays
from pimhjax.config import Config
from pimhjax.engine import BootstrapEngine, SMCEngine, smc_samples
from pimhjax.errors import (
    ConfigurationError,
    DomainError,
    EngineError,
    PimhjaxError,
)
from pimhjax.pimh import PIMH, PIMHState, pimh_init
from pimhjax.summaries import density, diagnosis, histogram, summary, table

try:
    __version__ = _version('pimhjax')
except _PackageNotFoundError:
    __version__ = '0.0.0'

__all__ = [
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
