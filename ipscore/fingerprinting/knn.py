"""k-nearest-neighbor (k-NN) fingerprint positioning.

A live measurement is positioned in four steps:

    1. Resolve dimensionality: reference keys missing from the query get the
       default value, keys unknown to the cache are ignored.
    2. Vectorize in lexicographic key order (same order as the cache).
    3. Match: k nearest cache entries via the k-d tree or by brute force.
    4. Combine: x̂ = Σ w_i x_i / Σ w_i, with w_i = 1 (unweighted) or
       w_i = w(d_i) (weighted).

Non-coordinate fields of the estimate (orientation, floor) are copied from
the nearest match. An empty cache or an empty reference set yields no
estimate (None), which is a normal outcome rather than an error.

Author: Navigation Engineer
Date: 2026
"""

import logging
import threading
from typing import List, Optional, Tuple

import numpy as np

from .config import DEFAULT_EPSILON, KNNOptions
from .functions import DistanceFn, WeightFn, euclidean_distance, inverse_distance_weight
from .kdtree import KDTree, build_index
from .service import FingerprintService
from .types import (
    CacheGeneration,
    Measurement,
    Position,
    is_usable_value,
    stack_positions,
    vectorize_readings,
)

logger = logging.getLogger(__name__)

Match = Tuple[Position, float]


def resolve_query_vector(
    readings: dict,
    generation: CacheGeneration,
    default_value: float = 0.0,
    require_overlap: bool = False,
) -> Optional[np.ndarray]:
    """
    Resolve a sparse query against the cache's known feature keys.

    Args:
        readings: Query readings, feature key -> value.
        generation: Cache generation providing the known references.
        default_value: Value for reference keys missing from the query.
        require_overlap: Return None when no usable reading matches a
                         reference key.

    Returns:
        Dense query vector of length |cached_references|, or None when there
        is nothing to match.
    """
    if generation.dim == 0:
        return None
    if require_overlap and not any(
        key in generation.cached_references and is_usable_value(value)
        for key, value in readings.items()
    ):
        return None
    return vectorize_readings(readings, generation.cached_references, default_value)


def naive_nearest(
    query_vector: np.ndarray,
    generation: CacheGeneration,
    k: int,
    distance_fn: DistanceFn = euclidean_distance,
    epsilon: float = DEFAULT_EPSILON,
) -> List[Match]:
    """
    Brute-force k-nearest search over every cache entry.

    Candidates are ranked on the raw distance; zero distances among the
    returned k are then replaced by `epsilon`. The sort is stable, so exact
    ties keep cache order.

    Returns:
        Up to k (position, distance) pairs, ascending by distance.
    """
    results = []
    for fingerprint in generation.fingerprints:
        d = float(distance_fn(query_vector, fingerprint.vector))
        results.append((fingerprint.position, d))
    results.sort(key=lambda match: match[1])
    return [(position, d if d != 0 else epsilon) for position, d in results[:k]]


def indexed_nearest(
    query_vector: np.ndarray,
    index: KDTree,
    k: int,
    epsilon: float = DEFAULT_EPSILON,
) -> List[Match]:
    """k-nearest search through the k-d tree, with epsilon substitution."""
    return [
        (position, d if d != 0 else epsilon)
        for position, d in index.nearest(query_vector, k)
    ]


def combine_positions(
    matches: List[Match],
    weighted: bool = False,
    weight_fn: WeightFn = inverse_distance_weight,
) -> Position:
    """
    Combine matched positions into one estimate.

    Coordinates are combined in 3D (2D positions padded with z = 0) and
    written back into a copy of the nearest match, which keeps its
    dimensionality, orientation and floor.

    Args:
        matches: (position, distance) pairs, nearest first. Distances must be
                 non-zero when weighted.
        weighted: Use x̂ = Σ w(d_i) x_i / Σ w(d_i) instead of the mean.
        weight_fn: Weight function w(d).

    Raises:
        ValueError: If matches is empty.
    """
    if not matches:
        raise ValueError("Cannot combine an empty set of matches")

    points = stack_positions([position for position, _ in matches])
    if weighted:
        weights = np.array([weight_fn(d) for _, d in matches], dtype=float)
    else:
        weights = np.ones(len(matches))
    point = np.sum(weights[:, np.newaxis] * points, axis=0) / np.sum(weights)

    return matches[0][0].with_coordinates(point)


def knn_estimate(
    measurement: Measurement,
    generation: CacheGeneration,
    index: Optional[KDTree] = None,
    k: int = 1,
    weighted: bool = False,
    distance_fn: DistanceFn = euclidean_distance,
    weight_fn: WeightFn = inverse_distance_weight,
    default_value: float = 0.0,
    epsilon: float = DEFAULT_EPSILON,
    require_overlap: bool = False,
) -> Optional[Position]:
    """
    Estimate the position of a live measurement.

    Args:
        measurement: Query measurement (its readings are used).
        generation: Published cache generation.
        index: k-d tree built over `generation`; None for naive matching.
        k: Number of neighbours (k larger than the cache uses every entry).
        weighted: Distance-weighted combination.
        distance_fn: Distance function D(a, b).
        weight_fn: Weight function w(d).
        default_value: Value for missing readings.
        epsilon: Substitute for zero distances.
        require_overlap: See resolve_query_vector().

    Returns:
        Estimated position, or None when unresolved.

    Raises:
        ValueError: If k < 1 or if the query vector does not match the cache
                    dimensionality.

    Examples:
        >>> a = Fingerprint(Position([0.0, 0.0]), features={"x": [1.0], "y": [1.0]})
        >>> b = Fingerprint(Position([10.0, 0.0]), features={"x": [1.0], "y": [9.0]})
        >>> gen = rebuild_cache([a, b])
        >>> knn_estimate(Measurement({"x": 1.0, "y": 1.0}), gen, k=1).coordinates
        array([0., 0.])
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got k={k}")
    if generation.is_empty:
        return None

    query_vector = resolve_query_vector(
        measurement.readings, generation, default_value, require_overlap
    )
    if query_vector is None or query_vector.shape[0] == 0:
        return None

    expected = generation.fingerprints[0].vector.shape[0]
    if query_vector.shape[0] != expected:
        raise ValueError(
            f"Dimension mismatch: query vector has {query_vector.shape[0]} "
            f"features, but cache vectors have {expected} features"
        )
    if index is not None and index.n_points > 0 and index.dim != expected:
        raise ValueError(
            f"Dimension mismatch: index was built over {index.dim} features, "
            f"but cache vectors have {expected} features"
        )

    if index is None:
        matches = naive_nearest(query_vector, generation, k, distance_fn, epsilon)
    else:
        matches = indexed_nearest(query_vector, index, k, epsilon)

    return combine_positions(matches, weighted=weighted, weight_fn=weight_fn)


class KNNFingerprinting:
    """
    KNN fingerprinting capability: rebuild the cache, estimate positions.

    The estimator reads its calibration data from a FingerprintService and
    keeps a k-d tree in step with the service's published generation. The
    (generation, index) pair is swapped as one reference, so concurrent
    estimates always see a consistent pair.

    Args:
        service: Fingerprint service owning the calibration set.
        options: KNN options (KNNOptions() by default).

    Examples:
        >>> service = FingerprintService(MemoryFingerprintStore())
        >>> knn = KNNFingerprinting(service, KNNOptions(k=3, weighted=True))
        >>> _ = service.record(Measurement({"AP1": -50.0}, position=Position([0.0, 0.0])))
        >>> _ = knn.rebuild()
        >>> knn.estimate(Measurement({"AP1": -52.0})).position.coordinates
        array([0., 0.])
    """

    def __init__(self, service: FingerprintService, options: Optional[KNNOptions] = None):
        self.service = service
        self.options = options if options is not None else KNNOptions()
        self._lock = threading.Lock()
        self._state: Optional[Tuple[CacheGeneration, Optional[KDTree]]] = None
        # Subscribe before the first read so no rebuild is missed in between
        service.add_update_listener(self._on_update)
        self._on_update(service.generation)

    @property
    def generation(self) -> CacheGeneration:
        return self._state[0]

    @property
    def index(self) -> Optional[KDTree]:
        return self._state[1]

    def _build_index(self, generation: CacheGeneration) -> Optional[KDTree]:
        if self.options.naive:
            return None
        return build_index(
            generation.vectors,
            payloads=generation.positions,
            distance_fn=self.options.distance_fn,
        )

    def _on_update(self, generation: CacheGeneration) -> None:
        index = self._build_index(generation)
        with self._lock:
            # Late notifications for an older generation are ignored
            if self._state is None or generation.generation >= self._state[0].generation:
                self._state = (generation, index)
        logger.debug(
            "Index rebuilt for generation %d (%d points)",
            generation.generation, generation.n_fingerprints,
        )

    def rebuild(self) -> CacheGeneration:
        """Rebuild the calibration cache (and, through the update event, the index)."""
        return self.service.update()

    def estimate(self, measurement: Measurement) -> Measurement:
        """
        Position a live measurement.

        Returns:
            The same measurement with `position` set, or unchanged when the
            query could not be resolved.
        """
        generation, index = self._state
        position = knn_estimate(
            measurement,
            generation,
            index=index,
            k=self.options.k,
            weighted=self.options.weighted,
            distance_fn=self.options.distance_fn,
            weight_fn=self.options.weight_fn,
            default_value=self.service.options.default_value,
            epsilon=self.options.epsilon,
            require_overlap=self.options.require_overlap,
        )
        if position is not None:
            measurement.position = position
        return measurement

    def process(self, measurement: Measurement) -> Measurement:
        """
        Route a measurement: record it, estimate it, or pass it through.

        Positioned measurements are recorded as calibration captures when the
        estimator is unlocked; measurements with readings are estimated.
        """
        if measurement.position is not None and not self.options.locked:
            self.service.record(measurement)
        elif measurement.readings:
            self.estimate(measurement)
        return measurement
