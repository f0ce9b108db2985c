"""Type definitions and data structures for fingerprint-based localization.

This module defines the record types shared by the cache builder, the k-d tree
index and the KNN estimator:

    - Position: absolute coordinate with optional orientation and floor
    - Fingerprint: one calibration capture (position + named feature samples)
    - Measurement: a live set of named readings to be positioned
    - CacheGeneration: immutable snapshot of processed fingerprints

It also holds the canonical rule that turns a sparse, key-named set of values
into a dense, ordered vector: keys are sorted lexicographically and one scalar
is emitted per key.

Author: Navigation Engineer
Date: 2026
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np


# Aggregation function signature: (samples, key) -> scalar
AggregationFunction = Callable[[np.ndarray, str], float]


def is_usable_value(value) -> bool:
    """
    Check whether a raw reading can enter aggregation or vectorization.

    Booleans, None, non-numeric values, NaN and infinities are rejected.

    Examples:
        >>> is_usable_value(-62.0)
        True
        >>> is_usable_value(float("nan"))
        False
    """
    if value is None or isinstance(value, (bool, np.bool_)):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


@dataclass
class Position:
    """
    Absolute position of a fingerprint or a position estimate.

    Attributes:
        coordinates: Coordinate vector, shape (2,) or (3,), in meters.
        orientation: Optional orientation quaternion [x, y, z, w].
        floor_id: Optional floor identifier.

    Examples:
        >>> p = Position([1.0, 2.0])
        >>> p.to_vector3()
        array([1., 2., 0.])
    """

    coordinates: np.ndarray
    orientation: Optional[np.ndarray] = None
    floor_id: Optional[int] = None

    def __post_init__(self) -> None:
        self.coordinates = np.asarray(self.coordinates, dtype=float)
        if self.coordinates.ndim != 1 or self.coordinates.shape[0] not in (2, 3):
            raise ValueError(
                f"coordinates must be a 2D or 3D vector, got shape {self.coordinates.shape}"
            )
        if not np.all(np.isfinite(self.coordinates)):
            raise ValueError("coordinates contain non-finite values (not allowed)")
        if self.orientation is not None:
            self.orientation = np.asarray(self.orientation, dtype=float)
            if self.orientation.shape != (4,):
                raise ValueError(
                    f"orientation must be a quaternion of shape (4,), "
                    f"got shape {self.orientation.shape}"
                )

    @property
    def dim(self) -> int:
        """Dimensionality of the coordinate vector (2 or 3)."""
        return self.coordinates.shape[0]

    def to_vector3(self) -> np.ndarray:
        """Coordinates as a 3D vector, padding 2D positions with z = 0."""
        if self.dim == 3:
            return self.coordinates.copy()
        return np.append(self.coordinates, 0.0)

    def with_coordinates(self, vector: np.ndarray) -> "Position":
        """
        Copy this position, replacing its coordinates.

        Only the first `dim` components of `vector` are used, so a 3D vector
        can be written into a 2D position.
        """
        vector = np.asarray(vector, dtype=float)
        return Position(
            coordinates=vector[: self.dim].copy(),
            orientation=None if self.orientation is None else self.orientation.copy(),
            floor_id=self.floor_id,
        )

    def copy(self) -> "Position":
        return self.with_coordinates(self.coordinates)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Position):
            return NotImplemented
        if self.orientation is None or other.orientation is None:
            same_orientation = self.orientation is None and other.orientation is None
        else:
            same_orientation = np.array_equal(self.orientation, other.orientation)
        return (
            np.array_equal(self.coordinates, other.coordinates)
            and same_orientation
            and self.floor_id == other.floor_id
        )


@dataclass(eq=False)
class Fingerprint:
    """
    One calibration data point: a position and its named feature samples.

    Attributes:
        position: Position where the samples were captured.
        classifier: Tag partitioning fingerprints into independent calibration
                    sets (e.g. "wlan", "geo").
        features: Mapping from feature key (access point id, sensor axis, ...)
                  to the list of raw samples collected for that key.
        vector: Dense feature vector, one scalar per key in lexicographic key
                order. None until compute_vector() has run.
        processed: True once `vector` reflects the current features.
        uid: Unique identifier.
        source_uid: Identifier of the object or device that captured the data.
        created_timestamp: Capture time in seconds.
        synthetic: True for entries produced by interpolation.

    Examples:
        >>> fp = Fingerprint(Position([0.0, 0.0]), classifier="wlan")
        >>> fp.add_feature("AP2", -60.0)
        >>> fp.add_features("AP1", [-50.0, -52.0])
        >>> fp.compute_vector(lambda values, key: float(np.mean(values)))
        array([-51., -60.])
    """

    position: Optional[Position] = None
    classifier: str = ""
    features: Dict[str, List[float]] = field(default_factory=dict)
    vector: Optional[np.ndarray] = None
    processed: bool = False
    uid: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_uid: Optional[str] = None
    created_timestamp: float = field(default_factory=time.time)
    synthetic: bool = False

    def add_feature(self, key: str, value: float) -> None:
        """Append one raw sample for `key`, creating the key if new."""
        self.features.setdefault(key, []).append(float(value))
        self.processed = False

    def add_features(self, key: str, values: Iterable[float]) -> None:
        """Append several raw samples for `key`."""
        samples = self.features.setdefault(key, [])
        samples.extend(float(v) for v in values)
        self.processed = False

    def has_feature(self, key: str) -> bool:
        return key in self.features

    @property
    def feature_keys(self) -> List[str]:
        """Feature keys in canonical (lexicographic) order."""
        return sorted(self.features)

    def compute_vector(self, agg_fn: AggregationFunction) -> np.ndarray:
        """
        Compute the dense feature vector from the raw samples.

        Keys are sorted lexicographically and `agg_fn(samples, key)` is applied
        to each key's samples, so len(vector) always equals the number of keys.

        Args:
            agg_fn: Aggregation function mapping (samples, key) to a scalar.

        Returns:
            The new vector, shape (n_keys,).
        """
        self.vector = np.array(
            [float(agg_fn(np.asarray(self.features[key], dtype=float), key))
             for key in self.feature_keys],
            dtype=float,
        )
        self.processed = True
        return self.vector

    def copy(self) -> "Fingerprint":
        """Deep copy of the fingerprint (sample lists and vector included)."""
        return Fingerprint(
            position=None if self.position is None else self.position.copy(),
            classifier=self.classifier,
            features={key: list(values) for key, values in self.features.items()},
            vector=None if self.vector is None else np.array(self.vector, dtype=float),
            processed=self.processed,
            uid=self.uid,
            source_uid=self.source_uid,
            created_timestamp=self.created_timestamp,
            synthetic=self.synthetic,
        )

    def __repr__(self) -> str:
        coords = None if self.position is None else self.position.coordinates.tolist()
        return (
            f"Fingerprint(classifier={self.classifier!r}, position={coords}, "
            f"n_features={len(self.features)}, processed={self.processed})"
        )


@dataclass(eq=False)
class Measurement:
    """
    Live measurement: a set of named readings and an optional position.

    A measurement without position is a query for the estimator; one with a
    position is a calibration capture.

    Attributes:
        readings: Mapping feature key -> reading value.
        position: Known or estimated position (None for unresolved queries).
        uid: Unique identifier, used as fingerprint source.
    """

    readings: Dict[str, float] = field(default_factory=dict)
    position: Optional[Position] = None
    uid: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        # Accept any iterable of (key, value) pairs
        if not isinstance(self.readings, dict):
            self.readings = dict(self.readings)

    def add_reading(self, key: str, value: float) -> None:
        """Set the reading for `key`, replacing any previous value."""
        self.readings[key] = value


def vectorize_readings(
    readings: Dict[str, float], references: Iterable[str], default_value: float = 0.0
) -> np.ndarray:
    """
    Turn sparse named readings into a dense vector over `references`.

    Keys outside `references` are ignored; reference keys that are missing or
    unusable get `default_value`. The vector follows lexicographic key order,
    the same order Fingerprint.compute_vector() uses.

    Examples:
        >>> vectorize_readings({"b": 2.0, "zz": 9.0}, {"a", "b"}, default_value=-100.0)
        array([-100.,    2.])
    """
    vector = []
    for key in sorted(references):
        value = readings.get(key)
        vector.append(float(value) if is_usable_value(value) else float(default_value))
    return np.array(vector, dtype=float)


@dataclass(frozen=True)
class CacheGeneration:
    """
    Immutable snapshot produced by one aggregation pass.

    All fingerprints share the same feature-key universe (`cached_references`)
    and therefore the same vector dimensionality. Readers may share one
    generation across threads; a rebuild always produces a new instance.

    Attributes:
        fingerprints: Processed fingerprints in first-seen group order.
        cached_references: Set of all known feature keys.
        generation: Monotonic generation number (0 = never built).
        classifier: Classifier of the calibration set.
    """

    fingerprints: Tuple[Fingerprint, ...] = ()
    cached_references: FrozenSet[str] = frozenset()
    generation: int = 0
    classifier: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "fingerprints", tuple(self.fingerprints))
        object.__setattr__(self, "cached_references", frozenset(self.cached_references))
        for fingerprint in self.fingerprints:
            if fingerprint.vector is not None:
                fingerprint.vector.setflags(write=False)

    @property
    def references(self) -> List[str]:
        """Known feature keys in vector order."""
        return sorted(self.cached_references)

    @property
    def n_fingerprints(self) -> int:
        return len(self.fingerprints)

    @property
    def dim(self) -> int:
        """Vector dimensionality (number of known feature keys)."""
        return len(self.cached_references)

    @property
    def is_empty(self) -> bool:
        return len(self.fingerprints) == 0

    @property
    def vectors(self) -> np.ndarray:
        """Fingerprint vectors stacked into an (M, D) matrix."""
        if not self.fingerprints:
            return np.zeros((0, self.dim))
        return np.vstack([fp.vector for fp in self.fingerprints])

    @property
    def positions(self) -> List[Position]:
        return [fp.position for fp in self.fingerprints]

    def __len__(self) -> int:
        return len(self.fingerprints)

    def __repr__(self) -> str:
        return (
            f"CacheGeneration(generation={self.generation}, "
            f"classifier={self.classifier!r}, "
            f"n_fingerprints={self.n_fingerprints}, dim={self.dim})"
        )


def stack_positions(positions: Sequence[Position]) -> np.ndarray:
    """Stack positions into an (n, 3) array of 3D-padded coordinates."""
    if not positions:
        return np.zeros((0, 3))
    return np.vstack([p.to_vector3() for p in positions])
