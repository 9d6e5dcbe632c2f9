# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Exception hierarchy for pimhjax.

Errors are raised where they are detected and propagate unchanged; the
chain loop never retries.
"""


class PimhjaxError(Exception):
    """Base class for all pimhjax errors."""


class ConfigurationError(PimhjaxError, ValueError):
    """Invalid arguments: variable names, bounds, probabilities, options."""


class DomainError(PimhjaxError, ArithmeticError):
    """A statistic is undefined for the accumulated sample."""


class EngineError(PimhjaxError, RuntimeError):
    """The external SMC engine failed.

    Attributes:
        iteration: 1-based chain iteration during which the failure
            occurred, or ``None`` outside a chain run.
    """

    def __init__(self, message: str, iteration: int | None = None):
        super().__init__(message)
        self.iteration = iteration

    def __str__(self) -> str:
        message = super().__str__()
        if self.iteration is None:
            return message
        return f'{message} (PIMH iteration {self.iteration})'
