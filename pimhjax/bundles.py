# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Containers that group sample arrays, and one traversal over them.

A result node is one of three shapes:

- a leaf, :class:`~pimhjax.arrays.SMCArray` or
  :class:`~pimhjax.arrays.MCMCArray`
- an :class:`FSBBundle`, the filtering (``f``), smoothing (``s``) and
  backward-smoothing (``b``) arrays of the same variable
- a :class:`NamedList`, variable name to bundle or MCMC array, with the
  optional ``log_marg_like`` and ``accept_rate`` traces

:func:`map_arrays` applies a function to every leaf of any node, so the
summary functions are written once for leaves.
"""

from collections.abc import Callable, Iterator, Mapping
from typing import Any, Union

from pimhjax.arrays import MCMCArray, SMCArray
from pimhjax.errors import ConfigurationError
from pimhjax.types import MONITOR_TYPES, Bounds


class FSBBundle(Mapping[str, SMCArray]):
    """Monitor tag to :class:`~pimhjax.arrays.SMCArray` for one variable.

    Args:
        members: Mapping with keys among ``f``, ``s``, ``b``.

    Raises:
        ConfigurationError: If *members* is empty, a tag is unknown, a
            member's ``type`` does not match its tag, or the members do
            not share ``name``, ``lower`` and ``upper``.
    """

    def __init__(self, members: Mapping[str, SMCArray]):
        if not members:
            raise ConfigurationError('an FSB bundle needs at least one member')
        first = None
        for tag, array in members.items():
            if tag not in MONITOR_TYPES:
                raise ConfigurationError(
                    f'unknown monitor tag {tag!r}, expected one of '
                    f'{sorted(MONITOR_TYPES)}'
                )
            if not isinstance(array, SMCArray):
                raise ConfigurationError(
                    f'bundle member {tag!r} must be an SMCArray, '
                    f'got {type(array).__name__}'
                )
            if array.type != MONITOR_TYPES[tag]:
                raise ConfigurationError(
                    f'bundle member {tag!r} has type {array.type!r}, '
                    f'expected {MONITOR_TYPES[tag]!r}'
                )
            if first is None:
                first = array
            elif (array.name, array.lower, array.upper) != (
                first.name,
                first.lower,
                first.upper,
            ):
                raise ConfigurationError(
                    f'bundle member {tag!r} describes '
                    f'{array.name}{list(array.lower)}..{list(array.upper)}, '
                    f'other members describe '
                    f'{first.name}{list(first.lower)}..{list(first.upper)}'
                )
        self._members = dict(members)

    def __getitem__(self, tag: str) -> SMCArray:
        return self._members[tag]

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __repr__(self) -> str:
        return f'FSBBundle({self.name!r}, tags={list(self._members)})'

    @property
    def name(self) -> str:
        return next(iter(self._members.values())).name

    @property
    def lower(self) -> Bounds:
        return next(iter(self._members.values())).lower

    @property
    def upper(self) -> Bounds:
        return next(iter(self._members.values())).upper


class NamedList(Mapping[str, Union[FSBBundle, MCMCArray]]):
    """Variable name to bundle or MCMC array, plus auxiliary traces.

    Args:
        members: Mapping from variable name (as requested, e.g.
            ``'c[2:10]'``) to an :class:`FSBBundle` or
            :class:`~pimhjax.arrays.MCMCArray`.
        log_marg_like: Log marginal likelihood: a trace
            :class:`~pimhjax.arrays.MCMCArray` for MCMC output or a
            float for a single SMC run.
        accept_rate: Acceptance-rate trace.
    """

    def __init__(
        self,
        members: Mapping[str, Union[FSBBundle, MCMCArray]] | None = None,
        log_marg_like: MCMCArray | float | None = None,
        accept_rate: MCMCArray | None = None,
    ):
        members = dict(members or {})
        for name, member in members.items():
            if not isinstance(member, (FSBBundle, MCMCArray)):
                raise ConfigurationError(
                    f'member {name!r} must be an FSBBundle or MCMCArray, '
                    f'got {type(member).__name__}'
                )
        self._members = members
        self.log_marg_like = log_marg_like
        self.accept_rate = accept_rate

    def __getitem__(self, name: str) -> Union[FSBBundle, MCMCArray]:
        return self._members[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __repr__(self) -> str:
        return f'NamedList({list(self._members)})'

    def traces(self) -> dict[str, MCMCArray]:
        """Auxiliary trace arrays that are present."""
        out = {}
        if isinstance(self.log_marg_like, MCMCArray):
            out['log_marg_like'] = self.log_marg_like
        if self.accept_rate is not None:
            out['accept_rate'] = self.accept_rate
        return out


Node = Union[SMCArray, MCMCArray, FSBBundle, NamedList]
"""Any result node accepted by :func:`map_arrays`."""


def map_arrays(
    fn: Callable[[Any], Any],
    node: Node,
    leaf_type: type | tuple[type, ...] = (SMCArray, MCMCArray),
    include_traces: bool = False,
) -> Any:
    """Apply *fn* to every leaf array of *node*.

    Args:
        fn: Function of one leaf array.
        node: Leaf, :class:`FSBBundle` or :class:`NamedList`.
        leaf_type: Leaves of other types are skipped.
        include_traces: Also map over a :class:`NamedList`'s traces.

    Returns:
        ``fn(node)`` for a leaf; for a container, a dict with the same
        keys holding the mapped members (skipped members omitted).

    Raises:
        TypeError: If *node* is not a result node, or is a leaf of a type
            outside *leaf_type*.
    """
    if isinstance(node, (SMCArray, MCMCArray)):
        if not isinstance(node, leaf_type):
            raise TypeError(
                f'{type(node).__name__} is not supported here'
            )
        return fn(node)
    if isinstance(node, (FSBBundle, NamedList)):
        out = {}
        members = dict(node)
        if include_traces and isinstance(node, NamedList):
            members.update(node.traces())
        for key, member in members.items():
            if _has_leaf(member, leaf_type):
                out[key] = map_arrays(fn, member, leaf_type)
        return out
    raise TypeError(
        f'expected an SMCArray, MCMCArray, FSBBundle or NamedList, '
        f'got {type(node).__name__}'
    )


def _has_leaf(node: Node, leaf_type: type | tuple[type, ...]) -> bool:
    if isinstance(node, (SMCArray, MCMCArray)):
        return isinstance(node, leaf_type)
    return any(_has_leaf(member, leaf_type) for member in node.values())
