"""Unit tests for ipscore.fingerprinting.knn module.

Tests query resolution, naive and indexed matching, position combination
and the KNNFingerprinting estimator.
"""

import numpy as np
import pytest

from ipscore.fingerprinting import (
    CacheGeneration,
    Fingerprint,
    FingerprintService,
    FingerprintingOptions,
    KNNFingerprinting,
    KNNOptions,
    Measurement,
    MemoryFingerprintStore,
    Position,
    WeightFunction,
    build_index,
    combine_positions,
    knn_estimate,
    naive_nearest,
    rebuild_cache,
    resolve_query_vector,
)


@pytest.fixture
def two_point_cache():
    """Cache {A@(0,0) vector=[1,1], B@(10,0) vector=[1,9]}."""
    a = Fingerprint(Position([0.0, 0.0]), features={"x": [1.0], "y": [1.0]})
    b = Fingerprint(Position([10.0, 0.0]), features={"x": [1.0], "y": [9.0]})
    return rebuild_cache([a, b])


@pytest.fixture
def random_cache():
    rng = np.random.default_rng(11)
    raw = []
    for x in range(6):
        for y in range(6):
            features = {f"AP{i}": [float(v)] for i, v in enumerate(rng.normal(-70.0, 10.0, size=4))}
            raw.append(Fingerprint(Position([float(x), float(y)]), features=features))
    return rebuild_cache(raw)


def random_queries(n, seed=5):
    rng = np.random.default_rng(seed)
    return [
        Measurement({f"AP{i}": float(v) for i, v in enumerate(rng.normal(-70.0, 10.0, size=4))})
        for _ in range(n)
    ]


class TestResolveQueryVector:
    """Test suite for resolve_query_vector()."""

    def test_missing_and_unknown_keys(self, two_point_cache):
        vector = resolve_query_vector({"y": 3.0, "zz": 5.0}, two_point_cache, default_value=-100.0)

        np.testing.assert_array_equal(vector, [-100.0, 3.0])

    def test_empty_references(self):
        assert resolve_query_vector({"x": 1.0}, CacheGeneration()) is None

    def test_require_overlap(self, two_point_cache):
        assert resolve_query_vector({"zz": 1.0}, two_point_cache, require_overlap=True) is None
        assert resolve_query_vector({"x": np.nan}, two_point_cache, require_overlap=True) is None
        np.testing.assert_array_equal(
            resolve_query_vector({"zz": 1.0}, two_point_cache), [0.0, 0.0]
        )


class TestKNNEstimate:
    """Test suite for knn_estimate()."""

    def test_nearest_neighbor_naive(self, two_point_cache):
        """k=1, naive, unweighted: the estimate is A's position."""
        position = knn_estimate(Measurement({"x": 1.0, "y": 1.0}), two_point_cache, k=1)

        np.testing.assert_array_equal(position.coordinates, [0.0, 0.0])

    def test_weighted_exact_match_dominates(self, two_point_cache):
        """k=2, weighted 1/d: d(A)=0 -> epsilon, d(B)=8, so A dominates."""
        position = knn_estimate(
            Measurement({"x": 1.0, "y": 1.0}),
            two_point_cache,
            k=2,
            weighted=True,
            weight_fn=WeightFunction.DEFAULT,
        )

        assert position.coordinates[0] == pytest.approx(10 * 0.125 / (1e5 + 0.125))
        assert position.coordinates[1] == pytest.approx(0.0)

    def test_unweighted_mean(self, two_point_cache):
        position = knn_estimate(Measurement({"x": 1.0, "y": 1.0}), two_point_cache, k=2)

        np.testing.assert_allclose(position.coordinates, [5.0, 0.0])

    def test_k_larger_than_cache(self, two_point_cache):
        position = knn_estimate(Measurement({"x": 1.0, "y": 1.0}), two_point_cache, k=50)

        np.testing.assert_allclose(position.coordinates, [5.0, 0.0])

    def test_empty_cache_unresolved(self):
        assert knn_estimate(Measurement({"x": 1.0}), CacheGeneration(), k=3) is None

    def test_invalid_k_error(self, two_point_cache):
        with pytest.raises(ValueError, match="k must be >= 1"):
            knn_estimate(Measurement({"x": 1.0}), two_point_cache, k=0)

    def test_dimension_mismatch_error(self):
        fp = Fingerprint(Position([0.0, 0.0]), features={"a": [1.0], "b": [2.0]})
        fp.compute_vector(lambda values, key: float(np.mean(values)))
        # Three known keys, but vectors of length 2
        generation = CacheGeneration(fingerprints=[fp], cached_references={"a", "b", "c"})

        with pytest.raises(ValueError, match="Dimension mismatch"):
            knn_estimate(Measurement({"a": 1.0}), generation)

    def test_index_dimension_mismatch_error(self, two_point_cache):
        index = build_index(np.zeros((2, 3)), payloads=two_point_cache.positions)

        with pytest.raises(ValueError, match="Dimension mismatch"):
            knn_estimate(Measurement({"x": 1.0}), two_point_cache, index=index)

    def test_naive_and_indexed_equivalent(self, random_cache):
        index = build_index(random_cache.vectors, payloads=random_cache.positions)

        for measurement in random_queries(30):
            for k, weighted in [(1, False), (3, False), (4, True)]:
                naive = knn_estimate(measurement, random_cache, k=k, weighted=weighted)
                indexed = knn_estimate(measurement, random_cache, index=index, k=k, weighted=weighted)

                np.testing.assert_allclose(indexed.coordinates, naive.coordinates)

    def test_uniform_weights_equal_unweighted(self, random_cache):
        for measurement in random_queries(10):
            unweighted = knn_estimate(measurement, random_cache, k=4)
            uniform = knn_estimate(measurement, random_cache, k=4, weighted=True, weight_fn=lambda d: 1.0)

            np.testing.assert_allclose(uniform.coordinates, unweighted.coordinates)

    def test_square_weights_closer_than_default(self, two_point_cache):
        query = Measurement({"x": 1.0, "y": 3.0})
        default = knn_estimate(query, two_point_cache, k=2, weighted=True)
        square = knn_estimate(query, two_point_cache, k=2, weighted=True, weight_fn=WeightFunction.SQUARE)

        # d(A)=2, d(B)=6: 1/d gives x=2.5, 1/d^2 gives x=1.0
        assert default.coordinates[0] == pytest.approx(2.5)
        assert square.coordinates[0] == pytest.approx(1.0)

    def test_estimate_within_bounding_box(self, random_cache):
        for measurement in random_queries(20):
            position = knn_estimate(measurement, random_cache, k=5, weighted=True)

            assert np.all(position.coordinates >= 0.0)
            assert np.all(position.coordinates <= 5.0)

    def test_orientation_and_floor_from_nearest(self):
        a = Fingerprint(
            Position([0.0, 0.0, 3.0], orientation=[0.0, 0.0, 0.0, 1.0], floor_id=1),
            features={"x": [1.0]},
        )
        b = Fingerprint(Position([4.0, 0.0, 3.0], floor_id=2), features={"x": [5.0]})
        generation = rebuild_cache([a, b])

        position = knn_estimate(Measurement({"x": 2.0}), generation, k=2)

        np.testing.assert_allclose(position.coordinates, [2.0, 0.0, 3.0])
        np.testing.assert_array_equal(position.orientation, [0.0, 0.0, 0.0, 1.0])
        assert position.floor_id == 1

    def test_2d_positions_stay_2d(self, two_point_cache):
        position = knn_estimate(Measurement({"x": 1.0, "y": 5.0}), two_point_cache, k=2)

        assert position.dim == 2

    def test_cache_not_mutated(self, two_point_cache):
        before = two_point_cache.vectors.copy()

        knn_estimate(Measurement({"x": 1.0, "y": 1.0}), two_point_cache, k=2, weighted=True)

        np.testing.assert_array_equal(two_point_cache.vectors, before)
        np.testing.assert_array_equal(two_point_cache.fingerprints[0].position.coordinates, [0.0, 0.0])


class TestMatchingHelpers:
    """Test suite for naive_nearest() and combine_positions()."""

    def test_zero_distance_replaced_by_epsilon(self, two_point_cache):
        matches = naive_nearest(np.array([1.0, 1.0]), two_point_cache, k=2, epsilon=1e-3)

        assert matches[0][1] == 1e-3
        assert matches[1][1] == pytest.approx(8.0)

    def test_ties_keep_cache_order(self):
        raw = [
            Fingerprint(Position([0.0, 0.0]), features={"x": [2.0]}),
            Fingerprint(Position([5.0, 0.0]), features={"x": [0.0]}),
        ]
        generation = rebuild_cache(raw)

        matches = naive_nearest(np.array([1.0]), generation, k=1)

        np.testing.assert_array_equal(matches[0][0].coordinates, [0.0, 0.0])

    def test_exact_match_ranks_before_distance_below_epsilon(self):
        raw = [
            Fingerprint(Position([0.0, 0.0]), features={"x": [1.0]}),
            Fingerprint(Position([10.0, 0.0]), features={"x": [1.3]}),
        ]
        generation = rebuild_cache(raw)
        index = build_index(generation.vectors, payloads=generation.positions)
        query = Measurement({"x": 1.0})

        matches = naive_nearest(np.array([1.0]), generation, k=2, epsilon=0.5)
        naive = knn_estimate(query, generation, k=1, epsilon=0.5)
        indexed = knn_estimate(query, generation, index=index, k=1, epsilon=0.5)

        np.testing.assert_array_equal(matches[0][0].coordinates, [0.0, 0.0])
        assert matches[0][1] == 0.5
        assert matches[1][1] == pytest.approx(0.3)
        np.testing.assert_array_equal(naive.coordinates, [0.0, 0.0])
        np.testing.assert_array_equal(indexed.coordinates, naive.coordinates)

    def test_combine_empty_error(self):
        with pytest.raises(ValueError, match="empty set of matches"):
            combine_positions([])


class TestKNNFingerprinting:
    """Test suite for the KNNFingerprinting estimator."""

    @pytest.fixture
    def service(self):
        store = MemoryFingerprintStore([
            Fingerprint(Position([0.0, 0.0]), features={"x": [1.0], "y": [1.0]}),
            Fingerprint(Position([10.0, 0.0]), features={"x": [1.0], "y": [9.0]}),
        ])
        return FingerprintService(store)

    def test_estimate_before_rebuild_unresolved(self, service):
        knn = KNNFingerprinting(service)

        result = knn.estimate(Measurement({"x": 1.0, "y": 1.0}))

        assert result.position is None

    def test_rebuild_then_estimate(self, service):
        knn = KNNFingerprinting(service, KNNOptions(k=1))

        generation = knn.rebuild()
        result = knn.estimate(Measurement({"x": 1.0, "y": 1.0}))

        assert generation.generation == 1
        assert knn.generation is generation
        assert knn.index.n_points == 2
        np.testing.assert_array_equal(result.position.coordinates, [0.0, 0.0])

    def test_naive_mode_has_no_index(self, service):
        knn = KNNFingerprinting(service, KNNOptions(k=2, naive=True))

        knn.rebuild()
        result = knn.estimate(Measurement({"x": 1.0, "y": 1.0}))

        assert knn.index is None
        np.testing.assert_allclose(result.position.coordinates, [5.0, 0.0])

    def test_index_follows_service_updates(self, service):
        knn = KNNFingerprinting(service)
        knn.rebuild()

        service.insert(Fingerprint(Position([20.0, 0.0]), features={"x": [9.0], "y": [9.0]}))
        service.update()
        result = knn.estimate(Measurement({"x": 9.0, "y": 9.0}))

        assert knn.generation.generation == 2
        assert knn.index.n_points == 3
        np.testing.assert_array_equal(result.position.coordinates, [20.0, 0.0])

    def test_stale_generation_ignored(self, service):
        knn = KNNFingerprinting(service)
        knn.rebuild()
        knn.rebuild()

        knn._on_update(CacheGeneration(generation=1))

        assert knn.generation.generation == 2

    def test_rebuild_during_subscription_is_indexed(self, service):
        class RebuildingService(FingerprintService):
            def add_update_listener(self, listener):
                # A rebuild by another caller completes just before the
                # listener is in place
                self.update()
                super().add_update_listener(listener)

        racing = RebuildingService(service.store)

        knn = KNNFingerprinting(racing)

        assert racing.generation.generation == 1
        assert knn.generation is racing.generation
        assert knn.index.n_points == 2

    def test_failing_listener_does_not_block_index(self, service):
        def broken_listener(generation):
            raise RuntimeError("listener failed")

        service.add_update_listener(broken_listener)
        knn = KNNFingerprinting(service)

        generation = service.update()

        assert service.generation is generation
        assert knn.generation is generation
        assert knn.index.n_points == 2

    def test_process_locked_estimates(self, service):
        knn = KNNFingerprinting(service)
        knn.rebuild()

        measurement = Measurement({"x": 1.0, "y": 1.0})
        knn.process(measurement)

        np.testing.assert_array_equal(measurement.position.coordinates, [0.0, 0.0])
        assert len(service.store) == 2

    def test_process_unlocked_records(self, service):
        knn = KNNFingerprinting(service, KNNOptions(locked=False))

        knn.process(Measurement({"x": 4.0}, position=Position([3.0, 3.0])))

        assert len(service.store) == 3

    def test_process_without_readings_passes_through(self, service):
        knn = KNNFingerprinting(service)
        knn.rebuild()
        measurement = Measurement()

        assert knn.process(measurement) is measurement
        assert measurement.position is None

    def test_uses_service_default_value(self):
        store = MemoryFingerprintStore([
            Fingerprint(Position([0.0, 0.0]), features={"AP1": [-50.0]}),
            Fingerprint(Position([10.0, 0.0]), features={"AP2": [-50.0]}),
        ])
        service = FingerprintService(store, FingerprintingOptions(default_value=-100.0))
        knn = KNNFingerprinting(service)
        knn.rebuild()

        result = knn.estimate(Measurement({"AP2": -55.0}))

        np.testing.assert_array_equal(result.position.coordinates, [10.0, 0.0])
