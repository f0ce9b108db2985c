"""Distance and weight functions for KNN fingerprinting.

Distance functions D(a, b) compare two dense feature vectors and must be
symmetric, non-negative and zero only for identical vectors. The k-d tree
additionally relies on them being monotone in each coordinate difference
(true for every Minkowski metric shipped here) to prune its search.

Weight functions w(d) turn a match distance into a combination weight for
weighted k-NN:
    x̂ = Σ w(d_i) x_i / Σ w(d_i)

Both shipped weight functions are undefined at d = 0; callers substitute a
small epsilon before calling them.

Author: Navigation Engineer
Date: 2026
"""

from typing import Callable, Union

import numpy as np


DistanceFn = Callable[[np.ndarray, np.ndarray], float]
WeightFn = Callable[[float], float]


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """
    Euclidean norm of the element-wise difference.

    Examples:
        >>> euclidean_distance(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        5.0
    """
    return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


def manhattan_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Sum of absolute element-wise differences."""
    return float(np.sum(np.abs(np.asarray(a, dtype=float) - np.asarray(b, dtype=float))))


def chebyshev_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Largest absolute element-wise difference (0 for empty vectors)."""
    diff = np.abs(np.asarray(a, dtype=float) - np.asarray(b, dtype=float))
    if diff.size == 0:
        return 0.0
    return float(np.max(diff))


def inverse_distance_weight(distance: float) -> float:
    """w = 1 / d"""
    return 1.0 / distance


def inverse_square_weight(distance: float) -> float:
    """w = 1 / d²"""
    return 1.0 / distance**2


class DistanceFunction:
    """Built-in distance functions."""

    EUCLIDEAN = staticmethod(euclidean_distance)
    MANHATTAN = staticmethod(manhattan_distance)
    CHEBYSHEV = staticmethod(chebyshev_distance)


class WeightFunction:
    """Built-in weight functions."""

    DEFAULT = staticmethod(inverse_distance_weight)
    SQUARE = staticmethod(inverse_square_weight)


_DISTANCE_FUNCTIONS = {
    "euclidean": euclidean_distance,
    "manhattan": manhattan_distance,
    "chebyshev": chebyshev_distance,
}

_WEIGHT_FUNCTIONS = {
    "default": inverse_distance_weight,
    "inverse_distance": inverse_distance_weight,
    "square": inverse_square_weight,
    "inverse_square": inverse_square_weight,
}


def get_distance_function(metric: Union[str, DistanceFn]) -> DistanceFn:
    """
    Resolve a distance function from its name or pass a callable through.

    Args:
        metric: 'euclidean', 'manhattan', 'chebyshev' or a callable D(a, b).

    Raises:
        ValueError: If the name is unknown.
        TypeError: If metric is neither a string nor callable.
    """
    if callable(metric):
        return metric
    if not isinstance(metric, str):
        raise TypeError(f"metric must be a name or a callable, got {type(metric)}")
    try:
        return _DISTANCE_FUNCTIONS[metric.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported metric: '{metric}'. "
            f"Use one of {sorted(_DISTANCE_FUNCTIONS)}."
        ) from None


def get_weight_function(weighting: Union[str, WeightFn]) -> WeightFn:
    """
    Resolve a weight function from its name or pass a callable through.

    Args:
        weighting: 'default' / 'inverse_distance', 'square' / 'inverse_square'
                   or a callable w(d).
    """
    if callable(weighting):
        return weighting
    if not isinstance(weighting, str):
        raise TypeError(f"weighting must be a name or a callable, got {type(weighting)}")
    try:
        return _WEIGHT_FUNCTIONS[weighting.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported weighting method: '{weighting}'. "
            f"Use one of {sorted(_WEIGHT_FUNCTIONS)}."
        ) from None
