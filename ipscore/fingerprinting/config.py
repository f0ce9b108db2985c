"""Configuration for the fingerprint service and the KNN estimator.

Both option sets are plain dataclasses validated in __post_init__, so a bad
configuration fails when it is created rather than in the middle of a rebuild
or a query.

Author: Navigation Engineer
Date: 2026
"""

import warnings
from dataclasses import dataclass
from typing import Union

from .aggregation import GroupByFunction, mean_aggregate, position_group_key
from .functions import (
    DistanceFn,
    DistanceFunction,
    WeightFn,
    WeightFunction,
    get_distance_function,
    get_weight_function,
)
from .types import AggregationFunction, is_usable_value

# Substituted for zero match distances before a weight function is applied
DEFAULT_EPSILON = 1e-5

INTERPOLATION_METHODS = ("linear", "cubic", "nearest")


@dataclass
class FingerprintingOptions:
    """
    Options of a fingerprint service (one calibration set).

    Attributes:
        classifier: Calibration set tag; fingerprints of other classifiers are
                    never mixed into this cache.
        default_value: Value of missing features, both for gap filling in the
                       cache and for missing readings in queries
                       (e.g. -100 dBm for RSS).
        group_by: Group-key function merging captures at the same place.
        agg_fn: Aggregation function (samples, key) -> scalar.
        auto_update: Rebuild the cache after every inserted fingerprint.
                     Expensive for large calibration sets.
        interpolate: Densify the cache on a regular grid after each rebuild.
        interpolation_step: Grid spacing for interpolation (meters).
        interpolation_method: 'linear', 'cubic' or 'nearest'.
    """

    classifier: str = ""
    default_value: float = 0.0
    group_by: GroupByFunction = position_group_key
    agg_fn: AggregationFunction = mean_aggregate
    auto_update: bool = False
    interpolate: bool = False
    interpolation_step: float = 1.0
    interpolation_method: str = "linear"

    def __post_init__(self) -> None:
        if not isinstance(self.classifier, str):
            raise TypeError(f"classifier must be a string, got {type(self.classifier)}")
        if not is_usable_value(self.default_value):
            raise ValueError(f"default_value must be a finite number, got {self.default_value!r}")
        self.default_value = float(self.default_value)
        if not callable(self.group_by):
            raise TypeError("group_by must be callable")
        if not callable(self.agg_fn):
            raise TypeError("agg_fn must be callable")
        if self.interpolation_step <= 0:
            raise ValueError(
                f"interpolation_step must be positive, got {self.interpolation_step}"
            )
        if self.interpolation_method not in INTERPOLATION_METHODS:
            raise ValueError(
                f"Unsupported interpolation method: '{self.interpolation_method}'. "
                f"Use one of {list(INTERPOLATION_METHODS)}."
            )


@dataclass
class KNNOptions:
    """
    Options of the KNN position estimator.

    Attributes:
        k: Number of neighbours to combine (>= 1).
        weighted: Combine neighbours with distance-derived weights instead of
                  equal shares.
        naive: Brute-force matching instead of the k-d tree.
        distance_fn: Distance function or its name ('euclidean', ...).
        weight_fn: Weight function or its name ('default', 'square').
        epsilon: Substitute for zero match distances.
        locked: When True, positioned measurements are estimated rather than
                recorded as calibration captures.
        require_overlap: Leave queries unresolved when none of their readings
                         matches a known feature key.
    """

    k: int = 1
    weighted: bool = False
    naive: bool = False
    distance_fn: Union[str, DistanceFn] = DistanceFunction.EUCLIDEAN
    weight_fn: Union[str, WeightFn] = WeightFunction.DEFAULT
    epsilon: float = DEFAULT_EPSILON
    locked: bool = True
    require_overlap: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.k, bool) or not isinstance(self.k, int):
            raise TypeError(f"k must be an integer, got {type(self.k)}")
        if self.k < 1:
            raise ValueError(f"k must be >= 1, got k={self.k}")
        self.distance_fn = get_distance_function(self.distance_fn)
        self.weight_fn = get_weight_function(self.weight_fn)
        if not self.epsilon > 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if self.epsilon >= 1.0:
            warnings.warn(
                f"epsilon={self.epsilon} is unusually large; exact matches will "
                f"no longer dominate weighted combinations.",
                UserWarning,
            )
        if self.weighted and self.k == 1:
            warnings.warn(
                "weighted=True has no effect with k=1.",
                UserWarning,
            )
