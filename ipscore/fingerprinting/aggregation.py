"""Fingerprint aggregation and cache building.

Raw calibration captures accumulate one fingerprint per capture event. Before
matching, they are rebuilt into a consistent cache generation:

    1. unusable samples (NaN, non-numeric) are dropped; empty captures skipped
    2. captures with equal group keys are merged by concatenating samples
    3. the union of all feature keys becomes the known-reference set
    4. gaps are filled with one synthetic `default_value` sample per missing key
    5. every entry is vectorized in lexicographic key order

The module also ships the group-key and aggregation functions used by the
rebuild.

Author: Navigation Engineer
Date: 2026
"""

import json
import logging
from collections import OrderedDict
from typing import Callable, Dict, Hashable, Iterable, Optional

import numpy as np

from .types import AggregationFunction, CacheGeneration, Fingerprint, Position, is_usable_value

logger = logging.getLogger(__name__)

GroupByFunction = Callable[[Position], Hashable]


# ---------------------------------------------------------------------------
# Group keys
# ---------------------------------------------------------------------------


def position_group_key(position: Position) -> str:
    """
    Default group key: serialized 3D coordinate.

    Positions merge only when their coordinates are exactly equal.

    Examples:
        >>> position_group_key(Position([1.0, 2.0]))
        '[1.0, 2.0, 0.0]'
    """
    return json.dumps(position.to_vector3().tolist())


def grid_group_key(resolution: float) -> GroupByFunction:
    """
    Build a group key that snaps coordinates onto a regular grid.

    Each coordinate is rounded to the nearest multiple of `resolution`, so
    captures separated by floating-point jitter (or by less than half a cell)
    merge into one entry.

    Args:
        resolution: Grid cell size in meters (must be > 0).

    Examples:
        >>> key = grid_group_key(0.5)
        >>> key(Position([1.01, 1.99])) == key(Position([0.99, 2.0]))
        True
    """
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")

    def group_by(position: Position) -> str:
        cells = np.round(position.to_vector3() / resolution).astype(int)
        return json.dumps(cells.tolist())

    return group_by


def orientation_group_key(decimals: int = 2) -> GroupByFunction:
    """
    Build a group key over coordinate and orientation.

    Captures at the same place but facing different directions stay separate.
    The orientation quaternion is rounded to `decimals` places.
    """

    def group_by(position: Position) -> str:
        orientation = None
        if position.orientation is not None:
            orientation = np.round(position.orientation, decimals).tolist()
        return json.dumps([position.to_vector3().tolist(), orientation])

    return group_by


# ---------------------------------------------------------------------------
# Aggregation functions: (samples, key) -> scalar
# ---------------------------------------------------------------------------


def mean_aggregate(values: np.ndarray, key: Optional[str] = None) -> float:
    """Arithmetic mean of the samples (default aggregation)."""
    return float(np.mean(values))


def median_aggregate(values: np.ndarray, key: Optional[str] = None) -> float:
    """Median of the samples, robust to outliers."""
    return float(np.median(values))


def trimmed_mean_aggregate(trim_percent: float = 0.1) -> AggregationFunction:
    """
    Build a trimmed-mean aggregation.

    The top and bottom `trim_percent` of the sorted samples are removed before
    averaging. With too few samples to trim, the plain mean is used.
    """
    if not 0.0 <= trim_percent < 0.5:
        raise ValueError(f"trim_percent must be in [0.0, 0.5), got {trim_percent}")

    def aggregate(values: np.ndarray, key: Optional[str] = None) -> float:
        values = np.sort(np.asarray(values, dtype=float))
        n_trim = int(len(values) * trim_percent)
        if n_trim == 0 or len(values) <= 2 * n_trim:
            return float(np.mean(values))
        return float(np.mean(values[n_trim:-n_trim]))

    return aggregate


def gaussian_filtered_mean(n_sigma: float = 2.0) -> AggregationFunction:
    """
    Build a mean that discards samples outside `n_sigma` standard deviations.

    Useful for magnetic-field samples, where a few disturbed readings would
    otherwise bias the mean. Falls back to the plain mean when the spread is
    zero or the filter would reject every sample.
    """
    if n_sigma <= 0:
        raise ValueError(f"n_sigma must be positive, got {n_sigma}")

    def aggregate(values: np.ndarray, key: Optional[str] = None) -> float:
        values = np.asarray(values, dtype=float)
        mu = np.mean(values)
        sigma = np.std(values)
        if sigma == 0:
            return float(mu)
        kept = values[np.abs(values - mu) <= n_sigma * sigma]
        if kept.size == 0:
            return float(mu)
        return float(np.mean(kept))

    return aggregate


def keyed_aggregate(
    mapping: Dict[str, AggregationFunction],
    default: AggregationFunction = mean_aggregate,
) -> AggregationFunction:
    """
    Build an aggregation that dispatches on the feature key.

    Args:
        mapping: Feature key -> aggregation function.
        default: Aggregation used for keys not in `mapping`.
    """

    def aggregate(values: np.ndarray, key: Optional[str] = None) -> float:
        return mapping.get(key, default)(values, key)

    return aggregate


# Geomagnetic calibration sets: filter the field axes, average the rest
magnetic_aggregate = keyed_aggregate(
    {
        "MAG_X": gaussian_filtered_mean(),
        "MAG_Y": gaussian_filtered_mean(),
        "MAG_Z": gaussian_filtered_mean(),
    }
)


# ---------------------------------------------------------------------------
# Cache rebuild
# ---------------------------------------------------------------------------


def _usable_copy(fingerprint: Fingerprint) -> Optional[Fingerprint]:
    """Copy a raw fingerprint keeping only usable samples (None if nothing remains)."""
    if fingerprint.position is None:
        return None
    features = {}
    for key, values in fingerprint.features.items():
        samples = [float(v) for v in values if is_usable_value(v)]
        if samples:
            features[key] = samples
    if not features:
        return None
    entry = fingerprint.copy()
    entry.features = features
    entry.vector = None
    entry.processed = False
    return entry


def rebuild_cache(
    raw_fingerprints: Iterable[Fingerprint],
    group_by: GroupByFunction = position_group_key,
    agg_fn: AggregationFunction = mean_aggregate,
    default_value: float = 0.0,
    classifier: str = "",
    generation: int = 0,
) -> CacheGeneration:
    """
    Rebuild a cache generation from all raw calibration fingerprints.

    Raw fingerprints are never modified; merged entries are fresh copies.

    Args:
        raw_fingerprints: All raw captures of one classifier.
        group_by: Group-key function; equal keys merge into one entry.
        agg_fn: Aggregation function (samples, key) -> scalar.
        default_value: Synthetic sample injected for missing keys.
        classifier: Classifier recorded on the generation.
        generation: Generation number of the result.

    Returns:
        New CacheGeneration. Empty input yields an empty generation.

    Examples:
        >>> fp = Fingerprint(Position([0.0, 0.0]), features={"X": [1.0, 2.0, 3.0]})
        >>> rebuild_cache([fp]).fingerprints[0].vector
        array([2.])
    """
    groups: "OrderedDict[Hashable, Fingerprint]" = OrderedDict()
    references = set()
    n_raw = 0
    n_skipped = 0

    for raw in raw_fingerprints:
        n_raw += 1
        entry = _usable_copy(raw)
        if entry is None:
            n_skipped += 1
            continue

        group = group_by(entry.position)
        existing = groups.get(group)
        if existing is None:
            groups[group] = entry
        else:
            for key, samples in entry.features.items():
                existing.add_features(key, samples)
        references.update(entry.features)

    # Gap fill, then vectorize in canonical key order
    for entry in groups.values():
        for key in references:
            if not entry.has_feature(key):
                entry.add_feature(key, default_value)
        entry.compute_vector(agg_fn)

    logger.debug(
        "Rebuilt cache generation %d (classifier=%r): %d raw, %d skipped, "
        "%d entries, %d references",
        generation, classifier, n_raw, n_skipped, len(groups), len(references),
    )

    return CacheGeneration(
        fingerprints=tuple(groups.values()),
        cached_references=frozenset(references),
        generation=generation,
        classifier=classifier,
    )
