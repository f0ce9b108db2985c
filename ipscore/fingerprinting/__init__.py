"""Fingerprint-based localization: calibration cache and KNN estimation.

Main components:
    - Fingerprint, Position, Measurement, CacheGeneration: core types
    - rebuild_cache: aggregation of raw captures into a cache generation
    - KDTree: spatial index over fingerprint vectors
    - DistanceFunction, WeightFunction: pluggable scalar strategies
    - knn_estimate, KNNFingerprinting: k-NN position estimation
    - FingerprintService, MemoryFingerprintStore: storage and publishing
    - save/load/validate functions: explicit schema and I/O

Example usage:
    >>> from ipscore.fingerprinting import (
    ...     FingerprintService,
    ...     FingerprintingOptions,
    ...     KNNFingerprinting,
    ...     KNNOptions,
    ...     Measurement,
    ...     MemoryFingerprintStore,
    ...     Position,
    ... )
    >>> service = FingerprintService(
    ...     MemoryFingerprintStore(),
    ...     FingerprintingOptions(classifier="wlan", default_value=-100.0),
    ... )
    >>> knn = KNNFingerprinting(service, KNNOptions(k=3, weighted=True))
    >>>
    >>> # Offline: record calibration captures
    >>> _ = service.record(Measurement({"AP1": -50, "AP2": -70}, position=Position([0, 0])))
    >>> _ = service.record(Measurement({"AP1": -70, "AP2": -50}, position=Position([10, 0])))
    >>> _ = knn.rebuild()
    >>>
    >>> # Online: estimate a position
    >>> query = knn.estimate(Measurement({"AP1": -55, "AP2": -65}))
"""

from .aggregation import (
    gaussian_filtered_mean,
    grid_group_key,
    keyed_aggregate,
    magnetic_aggregate,
    mean_aggregate,
    median_aggregate,
    orientation_group_key,
    position_group_key,
    rebuild_cache,
    trimmed_mean_aggregate,
)
from .config import DEFAULT_EPSILON, FingerprintingOptions, KNNOptions
from .dataset import (
    decode_fingerprint,
    decode_generation,
    encode_fingerprint,
    encode_generation,
    load_fingerprints,
    load_generation,
    print_generation_summary,
    save_fingerprints,
    save_generation,
    validate_generation,
)
from .functions import (
    DistanceFunction,
    WeightFunction,
    get_distance_function,
    get_weight_function,
)
from .interpolation import interpolate_generation
from .kdtree import KDTree, build_index
from .knn import (
    KNNFingerprinting,
    combine_positions,
    indexed_nearest,
    knn_estimate,
    naive_nearest,
    resolve_query_vector,
)
from .service import FingerprintService, fingerprint_from_measurement
from .store import FingerprintStore, MemoryFingerprintStore
from .types import (
    CacheGeneration,
    Fingerprint,
    Measurement,
    Position,
    is_usable_value,
    vectorize_readings,
)

__all__ = [
    # Core types
    "Position",
    "Fingerprint",
    "Measurement",
    "CacheGeneration",
    "is_usable_value",
    "vectorize_readings",
    # Aggregation
    "rebuild_cache",
    "position_group_key",
    "grid_group_key",
    "orientation_group_key",
    "mean_aggregate",
    "median_aggregate",
    "trimmed_mean_aggregate",
    "gaussian_filtered_mean",
    "keyed_aggregate",
    "magnetic_aggregate",
    # Spatial index
    "KDTree",
    "build_index",
    # Distance and weight functions
    "DistanceFunction",
    "WeightFunction",
    "get_distance_function",
    "get_weight_function",
    # KNN estimation
    "resolve_query_vector",
    "naive_nearest",
    "indexed_nearest",
    "combine_positions",
    "knn_estimate",
    "KNNFingerprinting",
    # Configuration
    "DEFAULT_EPSILON",
    "FingerprintingOptions",
    "KNNOptions",
    # Storage and publishing
    "FingerprintStore",
    "MemoryFingerprintStore",
    "FingerprintService",
    "fingerprint_from_measurement",
    # Interpolation
    "interpolate_generation",
    # Schema and I/O
    "encode_fingerprint",
    "decode_fingerprint",
    "encode_generation",
    "decode_generation",
    "save_fingerprints",
    "load_fingerprints",
    "save_generation",
    "load_generation",
    "validate_generation",
    "print_generation_summary",
]

__version__ = "0.1.0"
