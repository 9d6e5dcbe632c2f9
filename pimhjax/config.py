# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Explicit configuration passed to the controller and engine adapters."""

from typing import NamedTuple

from pimhjax.errors import ConfigurationError


class Config(NamedTuple):
    """Run-time settings.

    Attributes:
        verbosity: ``0`` is silent, ``1`` logs one message per call,
            ``2`` also logs every chain iteration at debug level.
        seed: Seed for the default PRNG key when none is supplied.
    """

    verbosity: int = 1
    seed: int = 0


def resolve_config(config: Config | None) -> Config:
    """Return *config* or the default, after validating it."""
    if config is None:
        return Config()
    if not isinstance(config, Config):
        raise ConfigurationError(
            f'config must be a pimhjax.Config, got {type(config).__name__}'
        )
    if config.verbosity < 0:
        raise ConfigurationError(
            f'verbosity must be non-negative, got {config.verbosity}'
        )
    return config
