"""k-d tree spatial index over dense fingerprint vectors.

The tree partitions the D-dimensional feature space by cycling the split axis
with depth (axis = depth mod D) and splitting at the median, which keeps it
balanced. Queries perform a branch-and-bound descent that skips subtrees whose
splitting hyperplane is farther away than the current k-th best match.

Unlike scipy.spatial.KDTree, the index accepts any distance function D(a, b)
that is monotone in each coordinate difference, and breaks exact distance
ties by insertion order so repeated queries are reproducible.

    - Construction: O(N log N) expected
    - Query: O(log N) expected, O(N) worst case

Author: Navigation Engineer
Date: 2026
"""

import heapq
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .functions import DistanceFn, euclidean_distance


class _Node:
    __slots__ = ("index", "axis", "left", "right")

    def __init__(self, index: int, axis: int, left: Optional["_Node"], right: Optional["_Node"]):
        self.index = index
        self.axis = axis
        self.left = left
        self.right = right


class KDTree:
    """
    k-d tree answering k-nearest-neighbor queries.

    The index does not validate that the query has the same dimensionality as
    the points; callers guarantee it.

    Args:
        points: Point coordinates, shape (N, D).
        payloads: Optional payload per point (defaults to the point index).
        distance_fn: Distance function D(a, b); Euclidean by default.

    Examples:
        >>> tree = KDTree(np.array([[1.0, 1.0], [1.0, 9.0]]), payloads=["A", "B"])
        >>> tree.nearest(np.array([1.0, 2.0]), k=1)
        [('A', 1.0)]
    """

    def __init__(
        self,
        points: np.ndarray,
        payloads: Optional[Sequence[Any]] = None,
        distance_fn: DistanceFn = euclidean_distance,
    ):
        points = np.asarray(points, dtype=float)
        if points.ndim == 1 and points.size == 0:
            points = points.reshape(0, 0)
        if points.ndim != 2:
            raise ValueError(f"points must be 2D array (N, D), got shape {points.shape}")
        if payloads is None:
            payloads = list(range(points.shape[0]))
        elif len(payloads) != points.shape[0]:
            raise ValueError(
                f"Inconsistent number of payloads: points={points.shape[0]}, "
                f"payloads={len(payloads)}"
            )

        self.points = points
        self.payloads = list(payloads)
        self.distance_fn = distance_fn
        self.root = self._build(list(range(points.shape[0])), depth=0)

    @property
    def n_points(self) -> int:
        return self.points.shape[0]

    @property
    def dim(self) -> int:
        return self.points.shape[1]

    def __len__(self) -> int:
        return self.n_points

    def _build(self, indices: List[int], depth: int) -> Optional[_Node]:
        if not indices:
            return None
        if self.dim == 0:
            # No axis to split on: degenerate chain in insertion order
            return _Node(indices[0], 0, None, self._build(indices[1:], depth + 1))

        axis = depth % self.dim
        # Sorting on (value, index) keeps construction deterministic
        indices = sorted(indices, key=lambda i: (self.points[i, axis], i))
        median = len(indices) // 2
        return _Node(
            index=indices[median],
            axis=axis,
            left=self._build(indices[:median], depth + 1),
            right=self._build(indices[median + 1:], depth + 1),
        )

    def query(self, query: np.ndarray, k: int = 1) -> Tuple[np.ndarray, np.ndarray]:
        """
        Find the k nearest points.

        Args:
            query: Query vector, shape (D,).
            k: Number of neighbors (k >= N returns all points).

        Returns:
            Tuple (distances, indices), both shape (min(k, N),), ascending by
            distance; exact ties ordered by insertion index.

        Raises:
            ValueError: If k < 1.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got k={k}")
        query = np.asarray(query, dtype=float)
        k = min(k, self.n_points)

        # Max-heap on (distance, index) holding the current best k
        heap: List[Tuple[float, int]] = []
        if k > 0:
            self._search(self.root, query, k, heap)

        best = sorted((-neg_d, -neg_i) for neg_d, neg_i in heap)
        distances = np.array([d for d, _ in best], dtype=float)
        indices = np.array([i for _, i in best], dtype=int)
        return distances, indices

    def nearest(self, query: np.ndarray, k: int = 1) -> List[Tuple[Any, float]]:
        """
        Find the k nearest points as (payload, distance) pairs.

        Returns:
            List of (payload, distance), ascending by distance.
        """
        distances, indices = self.query(query, k)
        return [(self.payloads[i], float(d)) for d, i in zip(distances, indices)]

    def _search(self, node: Optional[_Node], query: np.ndarray, k: int, heap: list) -> None:
        if node is None:
            return

        point = self.points[node.index]
        d = float(self.distance_fn(query, point))
        candidate = (-d, -node.index)
        if len(heap) < k:
            heapq.heappush(heap, candidate)
        elif (d, node.index) < (-heap[0][0], -heap[0][1]):
            heapq.heapreplace(heap, candidate)

        if node.left is None and node.right is None:
            return
        if self.dim == 0:
            self._search(node.right, query, k, heap)
            return

        axis = node.axis
        if query[axis] < point[axis]:
            near, far = node.left, node.right
        else:
            near, far = node.right, node.left

        self._search(near, query, k, heap)

        # Distance from the query to the splitting hyperplane
        projected = query.copy()
        projected[axis] = point[axis]
        plane_distance = float(self.distance_fn(query, projected))

        # Ties across the plane are still visited so tie order stays by index
        if len(heap) < k or plane_distance <= -heap[0][0]:
            self._search(far, query, k, heap)


def build_index(
    points: np.ndarray,
    payloads: Optional[Sequence[Any]] = None,
    distance_fn: DistanceFn = euclidean_distance,
) -> KDTree:
    """Build a k-d tree over `points` (see KDTree)."""
    return KDTree(points, payloads=payloads, distance_fn=distance_fn)
