# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for Config and the error hierarchy."""

import pytest

from pimhjax.config import Config, resolve_config
from pimhjax.errors import (
    ConfigurationError,
    DomainError,
    EngineError,
    PimhjaxError,
)


class TestConfig:
    def test_default(self):
        assert resolve_config(None) == Config(verbosity=1, seed=0)

    def test_passthrough(self):
        config = Config(verbosity=0, seed=9)
        assert resolve_config(config) is config

    def test_wrong_type_raises(self):
        with pytest.raises(ConfigurationError, match='Config'):
            resolve_config({'verbosity': 1})

    def test_negative_verbosity_raises(self):
        with pytest.raises(ConfigurationError, match='verbosity'):
            resolve_config(Config(verbosity=-1))


class TestErrors:
    @pytest.mark.parametrize(
        'cls, builtin',
        [
            (ConfigurationError, ValueError),
            (DomainError, ArithmeticError),
            (EngineError, RuntimeError),
        ],
    )
    def test_hierarchy(self, cls, builtin):
        assert issubclass(cls, PimhjaxError)
        assert issubclass(cls, builtin)

    def test_engine_error_iteration(self):
        exc = EngineError('engine failed')
        assert exc.iteration is None
        assert str(exc) == 'engine failed'
        exc.iteration = 4
        assert str(exc) == 'engine failed (PIMH iteration 4)'
