"""Exception types raised by the road finder."""

from __future__ import annotations


class TreeSearchError(Exception):
    """Base class for all errors raised by :mod:`treesearch`."""


class ConfigError(TreeSearchError, ValueError):
    """Invalid detector/plane configuration or unknown drift converter."""


class RoadStateError(TreeSearchError, RuntimeError):
    """A :class:`~treesearch.road.Road` operation was called out of order."""


class NoFitError(RoadStateError):
    """Best-fit data was requested from a Road that has no fit results."""


class ParallelProjectionError(TreeSearchError, ArithmeticError):
    """Two Roads cannot be intersected because their projections are parallel."""


class StaleHitError(TreeSearchError, ReferenceError):
    """A Point refers to a Hit that has already been released with its event."""


__all__ = [
    "TreeSearchError",
    "ConfigError",
    "RoadStateError",
    "NoFitError",
    "ParallelProjectionError",
    "StaleHitError",
]
