"""Unit tests for ipscore.fingerprinting.types module.

Tests Position, Fingerprint, Measurement and CacheGeneration, and the
canonical vectorization rule.
"""

import numpy as np
import pytest

from ipscore.fingerprinting.types import (
    CacheGeneration,
    Fingerprint,
    Measurement,
    Position,
    is_usable_value,
    vectorize_readings,
)


def mean_fn(values, key):
    return float(np.mean(values))


class TestPosition:
    """Test suite for Position dataclass."""

    def test_2d_position_padded_to_3d(self):
        p = Position([1.0, 2.0])

        assert p.dim == 2
        np.testing.assert_array_equal(p.to_vector3(), [1.0, 2.0, 0.0])

    def test_3d_position(self):
        p = Position([1.0, 2.0, 3.0], floor_id=1)

        assert p.dim == 3
        np.testing.assert_array_equal(p.to_vector3(), [1.0, 2.0, 3.0])

    def test_invalid_dimension_error(self):
        with pytest.raises(ValueError, match="2D or 3D vector"):
            Position([1.0, 2.0, 3.0, 4.0])

    def test_nan_coordinates_error(self):
        with pytest.raises(ValueError, match="non-finite"):
            Position([np.nan, 0.0])

    def test_invalid_orientation_error(self):
        with pytest.raises(ValueError, match="quaternion"):
            Position([0.0, 0.0], orientation=[0.0, 0.0, 1.0])

    def test_with_coordinates_keeps_other_fields(self):
        p = Position([0.0, 0.0], orientation=[0.0, 0.0, 0.0, 1.0], floor_id=2)

        q = p.with_coordinates([5.0, 6.0, 7.0])

        np.testing.assert_array_equal(q.coordinates, [5.0, 6.0])
        np.testing.assert_array_equal(q.orientation, [0.0, 0.0, 0.0, 1.0])
        assert q.floor_id == 2
        # Source untouched
        np.testing.assert_array_equal(p.coordinates, [0.0, 0.0])

    def test_equality(self):
        assert Position([1.0, 2.0]) == Position([1.0, 2.0])
        assert Position([1.0, 2.0]) != Position([1.0, 2.0], floor_id=0)
        assert Position([1.0, 2.0]) != Position([1.0, 2.0, 0.0])


class TestIsUsableValue:
    """Test suite for is_usable_value()."""

    @pytest.mark.parametrize("value", [0, -62.5, 3, np.float32(1.5)])
    def test_usable(self, value):
        assert is_usable_value(value)

    @pytest.mark.parametrize("value", [None, np.nan, np.inf, "abc", True, [1.0]])
    def test_unusable(self, value):
        assert not is_usable_value(value)


class TestFingerprint:
    """Test suite for Fingerprint dataclass."""

    def test_add_feature_appends_samples(self):
        fp = Fingerprint(Position([0.0, 0.0]))

        fp.add_feature("AP1", -50)
        fp.add_feature("AP1", -52)
        fp.add_features("AP2", [-60, -61])

        assert fp.features == {"AP1": [-50.0, -52.0], "AP2": [-60.0, -61.0]}
        assert fp.has_feature("AP1")
        assert not fp.has_feature("AP3")

    def test_compute_vector_lexicographic_order(self):
        fp = Fingerprint(Position([0.0, 0.0]), features={"b": [4.0], "a": [1.0, 3.0], "c": [9.0]})

        vector = fp.compute_vector(mean_fn)

        np.testing.assert_array_equal(vector, [2.0, 4.0, 9.0])
        assert fp.processed
        assert fp.feature_keys == ["a", "b", "c"]

    def test_compute_vector_passes_key(self):
        fp = Fingerprint(Position([0.0, 0.0]), features={"x": [1.0], "y": [1.0]})

        vector = fp.compute_vector(lambda values, key: 10.0 if key == "y" else 0.0)

        np.testing.assert_array_equal(vector, [0.0, 10.0])

    def test_vector_length_matches_key_count(self):
        fp = Fingerprint(Position([0.0, 0.0]), features={"a": [1.0]})
        fp.compute_vector(mean_fn)
        fp.add_feature("b", 2.0)

        # Stale until recomputed
        assert not fp.processed
        assert len(fp.compute_vector(mean_fn)) == 2

    def test_copy_is_deep(self):
        fp = Fingerprint(Position([0.0, 0.0]), classifier="wlan", features={"a": [1.0]})

        clone = fp.copy()
        clone.add_feature("a", 2.0)

        assert fp.features == {"a": [1.0]}
        assert clone.uid == fp.uid
        assert clone.classifier == "wlan"

    def test_unique_uids(self):
        assert Fingerprint().uid != Fingerprint().uid


class TestMeasurement:
    """Test suite for Measurement dataclass."""

    def test_readings_from_pairs(self):
        m = Measurement([("AP1", -50.0), ("AP2", -60.0)])

        assert m.readings == {"AP1": -50.0, "AP2": -60.0}
        assert m.position is None

    def test_add_reading_replaces(self):
        m = Measurement({"AP1": -50.0})

        m.add_reading("AP1", -55.0)

        assert m.readings == {"AP1": -55.0}


class TestVectorizeReadings:
    """Test suite for vectorize_readings()."""

    def test_missing_and_unknown_keys(self):
        vector = vectorize_readings({"b": 2.0, "zz": 9.0}, {"a", "b"}, default_value=-100.0)

        np.testing.assert_array_equal(vector, [-100.0, 2.0])

    def test_nan_reading_replaced_by_default(self):
        vector = vectorize_readings({"a": np.nan, "b": 1.0}, ["b", "a"], default_value=0.0)

        np.testing.assert_array_equal(vector, [0.0, 1.0])

    def test_empty_references(self):
        assert vectorize_readings({"a": 1.0}, []).shape == (0,)


class TestCacheGeneration:
    """Test suite for CacheGeneration."""

    def test_empty_generation(self):
        gen = CacheGeneration()

        assert gen.is_empty
        assert gen.dim == 0
        assert len(gen) == 0
        assert gen.vectors.shape == (0, 0)

    def test_properties(self):
        a = Fingerprint(Position([0.0, 0.0]), features={"x": [1.0], "y": [2.0]})
        b = Fingerprint(Position([1.0, 0.0]), features={"x": [3.0], "y": [4.0]})
        a.compute_vector(mean_fn)
        b.compute_vector(mean_fn)

        gen = CacheGeneration(fingerprints=[a, b], cached_references={"y", "x"}, generation=3)

        assert gen.n_fingerprints == 2
        assert gen.dim == 2
        assert gen.references == ["x", "y"]
        assert isinstance(gen.fingerprints, tuple)
        np.testing.assert_array_equal(gen.vectors, [[1.0, 2.0], [3.0, 4.0]])

    def test_published_vectors_read_only(self):
        a = Fingerprint(Position([0.0, 0.0]), features={"x": [1.0]})
        a.compute_vector(mean_fn)

        gen = CacheGeneration(fingerprints=[a], cached_references={"x"})

        with pytest.raises(ValueError):
            gen.fingerprints[0].vector[0] = 5.0

    def test_frozen(self):
        gen = CacheGeneration()

        with pytest.raises(AttributeError):
            gen.generation = 5
