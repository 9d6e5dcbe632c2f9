# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Variable subscripts and component striding.

Monitored variables are addressed with 1-based inclusive subscripts such
as ``x[2:10]`` or ``x[1, 5:10, 3]``.  Sample arrays store one variable's
draws with the component axes first and the sampling axes (particles,
iterations, chains) last.  The flat buffer of such an array is taken in
column-major order, so the component index varies fastest:

.. math::

    \mathrm{buffer}[(d - 1) + k C] = \text{component } d
        \text{ of sample } k, \qquad 1 \le d \le C

Every consumer that needs the full sample of one component goes through
:func:`extract_component`.
"""

import math
import re

import jax.numpy as jnp
from jaxtyping import Array, Float, Int

from pimhjax.errors import ConfigurationError
from pimhjax.types import Bounds

_VARNAME_RE = re.compile(r'^\s*([A-Za-z][A-Za-z0-9_.]*)\s*(?:\[(.*)\])?\s*$')


def parse_varname(
    varname: str,
) -> tuple[str, Bounds | None, Bounds | None]:
    """Split a variable name into its base name and subscript bounds.

    Args:
        varname: Name such as ``'x'``, ``'x[3]'`` or ``'x[1, 2:5]'``.

    Returns:
        A tuple ``(name, lower, upper)``.  *lower* and *upper* are
        ``None`` when *varname* has no subscript (the whole variable).

    Raises:
        ConfigurationError: If *varname* is not a valid name or its
            subscript is malformed.
    """
    if not isinstance(varname, str):
        raise ConfigurationError(
            f'variable name must be a string, got {varname!r}'
        )
    match = _VARNAME_RE.match(varname)
    if match is None:
        raise ConfigurationError(f'invalid variable name {varname!r}')
    name, subscript = match.groups()
    if subscript is None:
        return name, None, None

    lower, upper = [], []
    for part in subscript.split(','):
        bounds = part.split(':')
        if len(bounds) > 2:
            raise ConfigurationError(
                f'invalid subscript {part.strip()!r} in {varname!r}'
            )
        try:
            lo, hi = int(bounds[0]), int(bounds[-1])
        except ValueError:
            raise ConfigurationError(
                f'invalid subscript {part.strip()!r} in {varname!r}'
            ) from None
        if lo < 1 or hi < lo:
            raise ConfigurationError(
                f'invalid range {lo}:{hi} in {varname!r}'
            )
        lower.append(lo)
        upper.append(hi)
    return name, tuple(lower), tuple(upper)


def deparse_varname(name: str, lower: Bounds, upper: Bounds) -> str:
    """Render *name* with its subscript, e.g. ``x[5]`` or ``x[1:10,2]``."""
    check_bounds(lower, upper)
    if len(lower) == 0:
        return name
    parts = [
        str(lo) if lo == hi else f'{lo}:{hi}'
        for lo, hi in zip(lower, upper)
    ]
    return f'{name}[{",".join(parts)}]'


def check_bounds(
    lower: Bounds,
    upper: Bounds,
    shape: tuple[int, ...] | None = None,
) -> None:
    """Validate a pair of bound vectors, optionally against a shape.

    Raises:
        ConfigurationError: If the lengths differ, a lower bound exceeds
            its upper bound, or the extents do not match *shape*.
    """
    if len(lower) != len(upper):
        raise ConfigurationError(
            f'length mismatch between lower {tuple(lower)} '
            f'and upper {tuple(upper)} bounds'
        )
    for lo, hi in zip(lower, upper):
        if lo > hi:
            raise ConfigurationError(
                f'lower bound {lo} exceeds upper bound {hi}'
            )
    if shape is not None and extent(lower, upper) != tuple(shape):
        raise ConfigurationError(
            f'bounds {tuple(lower)}..{tuple(upper)} do not match '
            f'component shape {tuple(shape)}'
        )


def extent(lower: Bounds, upper: Bounds) -> tuple[int, ...]:
    """Number of positions along each dimension, ``upper - lower + 1``."""
    return tuple(int(hi) - int(lo) + 1 for lo, hi in zip(lower, upper))


def num_components(shape: tuple[int, ...]) -> int:
    """Number of component positions for a component shape."""
    return math.prod(shape)


def unravel_index(offset: int, dims: tuple[int, ...]) -> tuple[int, ...]:
    """Column-major unravel of a 0-based *offset* into 0-based subscripts."""
    size = math.prod(dims)
    if not 0 <= offset < max(size, 1):
        raise ConfigurationError(
            f'offset {offset} out of range for dimensions {tuple(dims)}'
        )
    subscript = []
    for n in dims:
        subscript.append(offset % n)
        offset //= n
    return tuple(subscript)


def component_subscript(d: int, lower: Bounds, upper: Bounds) -> Bounds:
    """Map the 1-based component index *d* to the variable's subscript.

    The subscript is ``lower + unravel(d - 1, upper - lower + 1)``, which
    recovers the label of the component (``x[5]`` for ``d = 4`` when
    ``lower = (2,)``).
    """
    check_bounds(lower, upper)
    dims = extent(lower, upper)
    _check_component(d, math.prod(dims))
    offset = unravel_index(d - 1, dims)
    return tuple(int(lo) + s for lo, s in zip(lower, offset))


def component_label(name: str, lower: Bounds, upper: Bounds, d: int) -> str:
    """Subscripted label of component *d*, e.g. ``x[5]``."""
    sub = component_subscript(d, lower, upper)
    return deparse_varname(name, sub, sub)


def resolve_varname(
    varname: str,
    variables: dict[str, tuple[int, ...]],
) -> tuple[str, Bounds, Bounds]:
    """Resolve *varname* against a model's variable shapes.

    Args:
        varname: Name with optional subscript, e.g. ``'x[2:10]'``.
        variables: Mapping from variable name to its shape.

    Returns:
        ``(name, lower, upper)`` with full bounds filled in when
        *varname* has no subscript.

    Raises:
        ConfigurationError: If the variable is unknown or the subscript
            falls outside the variable's shape.
    """
    name, lower, upper = parse_varname(varname)
    if name not in variables:
        raise ConfigurationError(
            f'unknown variable {name!r}; monitorable variables are '
            f'{sorted(variables)}'
        )
    dims = tuple(variables[name])
    if lower is None:
        return name, (1,) * len(dims), dims
    if len(lower) != len(dims):
        raise ConfigurationError(
            f'{varname!r} has {len(lower)} subscripts but {name!r} '
            f'has {len(dims)} dimensions'
        )
    for hi, n in zip(upper, dims):
        if hi > n:
            raise ConfigurationError(
                f'{varname!r} is out of range for {name!r} with shape {dims}'
            )
    return name, lower, upper


def subset(value: Array, lower: Bounds, upper: Bounds) -> Array:
    """Select the 1-based inclusive range ``lower..upper`` of *value*."""
    return value[tuple(slice(lo - 1, hi) for lo, hi in zip(lower, upper))]


# --- Flat buffers ------------------------------------------------------------


def flatten_components(values: Array) -> Array:
    """Flatten an array with sampling axes last in column-major order."""
    return jnp.ravel(jnp.transpose(values))


def unflatten_components(flat: Array, shape: tuple[int, ...]) -> Array:
    """Inverse of :func:`flatten_components`."""
    return jnp.transpose(jnp.reshape(flat, tuple(reversed(shape))))


def component_positions(
    d: int,
    n_components: int,
    n_samples: int,
) -> Int[Array, ' n_samples']:
    """0-based buffer positions ``d-1, d-1+C, ..., d-1+(n-1)C``."""
    _check_component(d, n_components)
    return jnp.arange(d - 1, n_components * n_samples, n_components)


def extract_component(
    flat: Float[Array, ' size'],
    d: int,
    n_components: int,
) -> Float[Array, ' n_samples']:
    """Return the full sample of component *d* from a flat buffer."""
    _check_component(d, n_components)
    return flat[d - 1 :: n_components]


def insert_component(
    flat: Float[Array, ' size'],
    d: int,
    n_components: int,
    sample: Float[Array, ' n_samples'],
) -> Float[Array, ' size']:
    """Write the sample of component *d* back into a flat buffer."""
    _check_component(d, n_components)
    return flat.at[d - 1 :: n_components].set(sample)


def _check_component(d: int, n_components: int) -> None:
    if not 1 <= d <= n_components:
        raise ConfigurationError(
            f'component index {d} out of range [1, {n_components}]'
        )