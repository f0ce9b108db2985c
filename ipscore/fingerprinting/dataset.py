"""Explicit schema, I/O and validation for fingerprints and cache generations.

Fingerprints are encoded as plain dictionaries:

    {
        "uid": str,
        "classifier": str,
        "position": {"coordinates": [x, y(, z)],
                     "orientation": [qx, qy, qz, qw] | null,
                     "floor_id": int | null},
        "feature_keys": [key, ...],          # lexicographic order
        "features": {key: [sample, ...]},
        "vector": [v, ...] | null,           # same order as feature_keys
        "processed": bool,
        "source_uid": str | null,
        "created_timestamp": float,
        "synthetic": bool
    }

Collections are stored as JSON files with a `format_version` field.

Author: Navigation Engineer
Date: 2026
"""

import json
from pathlib import Path
from typing import Iterable, List, Union

import numpy as np

from .types import CacheGeneration, Fingerprint, Position

FORMAT_VERSION = 1


def encode_position(position: Position) -> dict:
    return {
        "coordinates": position.coordinates.tolist(),
        "orientation": None if position.orientation is None else position.orientation.tolist(),
        "floor_id": position.floor_id,
    }


def decode_position(data: dict) -> Position:
    return Position(
        coordinates=np.asarray(data["coordinates"], dtype=float),
        orientation=data.get("orientation"),
        floor_id=data.get("floor_id"),
    )


def encode_fingerprint(fingerprint: Fingerprint) -> dict:
    """Encode a fingerprint into a JSON-compatible dictionary."""
    keys = fingerprint.feature_keys
    return {
        "uid": fingerprint.uid,
        "classifier": fingerprint.classifier,
        "position": None if fingerprint.position is None else encode_position(fingerprint.position),
        "feature_keys": keys,
        "features": {key: list(fingerprint.features[key]) for key in keys},
        "vector": None if fingerprint.vector is None else fingerprint.vector.tolist(),
        "processed": fingerprint.processed,
        "source_uid": fingerprint.source_uid,
        "created_timestamp": fingerprint.created_timestamp,
        "synthetic": fingerprint.synthetic,
    }


def decode_fingerprint(data: dict) -> Fingerprint:
    """
    Decode a fingerprint produced by encode_fingerprint().

    Raises:
        ValueError: If `feature_keys` and `features` disagree, or if the
                    vector length does not match the number of keys.
    """
    keys = list(data.get("feature_keys", sorted(data["features"])))
    if set(keys) != set(data["features"]):
        raise ValueError(
            f"feature_keys {sorted(keys)} do not match features {sorted(data['features'])}"
        )
    vector = data.get("vector")
    if vector is not None:
        vector = np.asarray(vector, dtype=float)
        if vector.shape != (len(keys),):
            raise ValueError(
                f"vector has shape {vector.shape}, expected ({len(keys)},)"
            )

    fingerprint = Fingerprint(
        position=None if data.get("position") is None else decode_position(data["position"]),
        classifier=data.get("classifier", ""),
        features={key: [float(v) for v in data["features"][key]] for key in keys},
        vector=vector,
        processed=bool(data.get("processed", False)) and vector is not None,
        source_uid=data.get("source_uid"),
        synthetic=bool(data.get("synthetic", False)),
    )
    if "uid" in data:
        fingerprint.uid = data["uid"]
    if "created_timestamp" in data:
        fingerprint.created_timestamp = float(data["created_timestamp"])
    return fingerprint


def encode_generation(generation: CacheGeneration) -> dict:
    return {
        "format_version": FORMAT_VERSION,
        "generation": generation.generation,
        "classifier": generation.classifier,
        "references": generation.references,
        "fingerprints": [encode_fingerprint(fp) for fp in generation.fingerprints],
    }


def decode_generation(data: dict) -> CacheGeneration:
    _check_format_version(data)
    return CacheGeneration(
        fingerprints=tuple(decode_fingerprint(fp) for fp in data["fingerprints"]),
        cached_references=frozenset(data["references"]),
        generation=int(data.get("generation", 0)),
        classifier=data.get("classifier", ""),
    )


def _check_format_version(data: dict) -> None:
    version = data.get("format_version")
    if version != FORMAT_VERSION:
        raise ValueError(
            f"Unsupported format_version: {version!r}. Expected {FORMAT_VERSION}."
        )


def save_fingerprints(fingerprints: Iterable[Fingerprint], path: Union[str, Path]) -> None:
    """
    Save raw fingerprints to a JSON file.

    The parent directory is created if it does not exist.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "format_version": FORMAT_VERSION,
        "fingerprints": [encode_fingerprint(fp) for fp in fingerprints],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)


def load_fingerprints(path: Union[str, Path]) -> List[Fingerprint]:
    """
    Load raw fingerprints saved by save_fingerprints().

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the format version is not supported.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    _check_format_version(payload)
    return [decode_fingerprint(fp) for fp in payload["fingerprints"]]


def save_generation(generation: CacheGeneration, path: Union[str, Path]) -> None:
    """Save a cache generation to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(encode_generation(generation), f, indent=2)


def load_generation(path: Union[str, Path]) -> CacheGeneration:
    """Load a cache generation saved by save_generation()."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Required file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return decode_generation(json.load(f))


def validate_generation(generation: CacheGeneration) -> dict:
    """
    Perform consistency and data-quality checks on a cache generation.

    Checks:
    - every fingerprint is processed and has a vector of length |references|
    - every fingerprint carries exactly the reference key set
    - no NaN or infinite vector values
    - a single classifier
    - features with zero variance across the cache (warning)
    - duplicate positions (warning)

    Returns:
        Dictionary {'valid': bool, 'errors': [...], 'warnings': [...],
        'stats': {...}}.
    """
    errors = []
    warnings = []
    stats = {
        "generation": generation.generation,
        "classifier": generation.classifier,
        "n_fingerprints": generation.n_fingerprints,
        "n_references": generation.dim,
        "n_synthetic": sum(1 for fp in generation.fingerprints if fp.synthetic),
    }

    if generation.is_empty:
        warnings.append("Generation is empty; every query will be unresolved")
        return {"valid": True, "errors": errors, "warnings": warnings, "stats": stats}

    for i, fp in enumerate(generation.fingerprints):
        if not fp.processed or fp.vector is None:
            errors.append(f"Fingerprint {i} is not processed")
            continue
        if fp.vector.shape[0] != generation.dim:
            errors.append(
                f"Fingerprint {i} has vector length {fp.vector.shape[0]}, "
                f"expected {generation.dim}"
            )
        if set(fp.features) != generation.cached_references:
            errors.append(f"Fingerprint {i} does not cover the reference key set")
        if not np.all(np.isfinite(fp.vector)):
            errors.append(f"Fingerprint {i} has non-finite vector values")
        if fp.position is None:
            errors.append(f"Fingerprint {i} has no position")

    classifiers = {fp.classifier for fp in generation.fingerprints}
    if len(classifiers) > 1:
        errors.append(f"Generation mixes classifiers: {sorted(classifiers)}")

    if not errors:
        vectors = generation.vectors
        feature_std = np.std(vectors, axis=0)
        constant = [generation.references[j] for j in np.where(feature_std < 1e-9)[0]]
        if constant and generation.n_fingerprints > 1:
            warnings.append(f"Features {constant} have zero variance across the cache")
        stats["vector_min"] = float(np.min(vectors))
        stats["vector_max"] = float(np.max(vectors))

        positions = [fp.position.to_vector3() for fp in generation.fingerprints]
        n_duplicates = len(positions) - len(np.unique(np.vstack(positions), axis=0))
        if n_duplicates > 0:
            warnings.append(
                f"Found {n_duplicates} duplicate position(s); "
                f"check the group-key function"
            )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "stats": stats,
    }


def print_generation_summary(generation: CacheGeneration) -> None:
    """Print a human-readable summary of a cache generation."""
    print("Fingerprint Cache Summary")
    print("=" * 50)
    print(f"Generation:       {generation.generation}")
    print(f"Classifier:       {generation.classifier!r}")
    print(f"Fingerprints:     {generation.n_fingerprints}")
    print(f"References:       {generation.dim}")
    print()

    if generation.is_empty:
        print("(empty)")
        return

    n_synthetic = sum(1 for fp in generation.fingerprints if fp.synthetic)
    print(f"Surveyed entries: {generation.n_fingerprints - n_synthetic}")
    print(f"Synthetic entries: {n_synthetic}")
    print()

    vectors = generation.vectors
    print("Feature Statistics:")
    for key, mean, std in zip(generation.references, vectors.mean(axis=0), vectors.std(axis=0)):
        print(f"  {key}: mean={mean:.2f}, std={std:.2f}")
    print()

    points = np.vstack([fp.position.to_vector3() for fp in generation.fingerprints])
    print("Position Bounds:")
    for dim, label in enumerate("xyz"):
        print(f"  {label}: [{points[:, dim].min():.2f}, {points[:, dim].max():.2f}]")
