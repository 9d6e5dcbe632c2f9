# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Type aliases for pimhjax."""

from typing import Union

from jaxtyping import Array, Float, PRNGKeyArray

PRNGKeyT = PRNGKeyArray
"""JAX PRNG key (handles both old and new JAX key formats)."""

Scalar = Union[float, Float[Array, ""]]
"""Python float or scalar JAX array with float dtype."""

Bounds = tuple[int, ...]
"""1-based inclusive index bounds, one entry per component dimension."""

MONITOR_TYPES = {
    'f': 'filtering',
    's': 'smoothing',
    'b': 'backward_smoothing',
}
"""Monitor tag to monitor type."""
