"""Radio-map interpolation.

Surveying a dense calibration grid is expensive. This module densifies a cache
generation by interpolating every vector component over a regular grid of
positions, using scipy.interpolate.griddata on the horizontal coordinates.

Levels (distinct z coordinates, e.g. floors) are interpolated independently.
A level needs at least 4 positions that are not collinear; degenerate levels
are left untouched with a warning. Grid points outside the convex hull of the
surveyed positions, or already occupied by a surveyed entry, are skipped.

Author: Navigation Engineer
Date: 2026
"""

import logging
import warnings
from collections import OrderedDict
from typing import List

import numpy as np
from scipy.interpolate import griddata
from scipy.spatial import QhullError

from .aggregation import GroupByFunction, position_group_key
from .types import CacheGeneration, Fingerprint, stack_positions

logger = logging.getLogger(__name__)


def _grid_axis(lower: float, upper: float, step: float) -> np.ndarray:
    return np.arange(lower, upper + step / 2, step)


def interpolate_level(
    fingerprints: List[Fingerprint],
    references: List[str],
    step: float,
    method: str = "linear",
    group_by: GroupByFunction = position_group_key,
) -> List[Fingerprint]:
    """
    Interpolate synthetic fingerprints for one level.

    Args:
        fingerprints: Processed fingerprints sharing one z coordinate.
        references: Feature keys in vector order.
        step: Grid spacing (meters).
        method: griddata method ('linear', 'cubic' or 'nearest').
        group_by: Group-key function used to detect occupied grid points.

    Returns:
        New synthetic fingerprints (may be empty).

    Raises:
        QhullError: If the positions are degenerate (e.g. collinear).
    """
    template = fingerprints[0]
    points3 = stack_positions([fp.position for fp in fingerprints])
    points = points3[:, :2]
    values = np.vstack([fp.vector for fp in fingerprints])

    xs = _grid_axis(points[:, 0].min(), points[:, 0].max(), step)
    ys = _grid_axis(points[:, 1].min(), points[:, 1].max(), step)
    grid_x, grid_y = np.meshgrid(xs, ys, indexing="ij")
    grid = np.column_stack([grid_x.ravel(), grid_y.ravel()])

    # One griddata call per vector component
    interpolated = np.column_stack(
        [griddata(points, values[:, j], grid, method=method) for j in range(values.shape[1])]
    )

    occupied = {group_by(fp.position) for fp in fingerprints}
    z = points3[0, 2]
    synthetic = []
    for xy, vector in zip(grid, interpolated):
        if np.any(np.isnan(vector)):
            continue
        coordinates = xy if template.position.dim == 2 else np.append(xy, z)
        position = template.position.with_coordinates(coordinates)
        if group_by(position) in occupied:
            continue
        synthetic.append(
            Fingerprint(
                position=position,
                classifier=template.classifier,
                features={key: [float(v)] for key, v in zip(references, vector)},
                vector=np.array(vector, dtype=float),
                processed=True,
                synthetic=True,
            )
        )
    return synthetic


def interpolate_generation(
    generation: CacheGeneration,
    step: float = 1.0,
    method: str = "linear",
    group_by: GroupByFunction = position_group_key,
) -> CacheGeneration:
    """
    Densify a cache generation on a regular grid.

    Args:
        generation: Source generation (not modified).
        step: Grid spacing (meters).
        method: griddata method ('linear', 'cubic' or 'nearest').
        group_by: Group-key function used to detect occupied grid points.

    Returns:
        New generation with the surveyed entries followed by the synthetic
        ones, same references and generation number.
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    if generation.is_empty or generation.dim == 0:
        return generation

    levels: "OrderedDict[float, List[Fingerprint]]" = OrderedDict()
    for fingerprint in generation.fingerprints:
        z = float(fingerprint.position.to_vector3()[2])
        levels.setdefault(z, []).append(fingerprint)

    references = generation.references
    synthetic: List[Fingerprint] = []
    for z, fingerprints in levels.items():
        if len(fingerprints) < 4:
            warnings.warn(
                f"Level z={z} has only {len(fingerprints)} fingerprint(s); "
                f"at least 4 are needed for interpolation",
                UserWarning,
            )
            continue
        try:
            synthetic.extend(
                interpolate_level(fingerprints, references, step, method, group_by)
            )
        except QhullError:
            warnings.warn(
                f"Level z={z} has degenerate (e.g. collinear) positions; "
                f"skipping interpolation",
                UserWarning,
            )

    logger.debug(
        "Interpolated %d synthetic fingerprints over %d level(s)",
        len(synthetic), len(levels),
    )
    return CacheGeneration(
        fingerprints=generation.fingerprints + tuple(synthetic),
        cached_references=generation.cached_references,
        generation=generation.generation,
        classifier=generation.classifier,
    )
