"""Tests for distance providers and the calibration dataset."""

import numpy as np
import pandas as pd
import pytest

from gwdr.data import Dataset
from gwdr.distances import EuclideanDistance, PrecomputedDistance, as_distance_provider
from gwdr.exceptions import InvalidSpec


class TestEuclideanDistance:
    """Tests for Euclidean coordinate groups."""

    def test_pairwise_matches_manual(self, random_state):
        """Pairwise distances match the explicit formula."""
        coords = random_state.uniform(0, 1, (15, 2))
        expected = np.sqrt(((coords[:, None, :] - coords[None, :, :]) ** 2).sum(axis=2))
        np.testing.assert_allclose(EuclideanDistance(coords).pairwise(), expected, atol=1e-12)

    def test_pairwise_properties(self, random_state):
        """Distance matrices are symmetric with a zero diagonal."""
        d = EuclideanDistance(random_state.uniform(0, 1, (10, 3))).pairwise()
        np.testing.assert_array_equal(np.diag(d), 0.0)
        np.testing.assert_allclose(d, d.T)

    def test_pairwise_cached_and_read_only(self, random_state):
        """The matrix is computed once and cannot be modified."""
        provider = EuclideanDistance(random_state.uniform(0, 1, (10, 2)))
        d = provider.pairwise()
        assert provider.pairwise() is d
        assert not d.flags.writeable
        with pytest.raises(ValueError):
            d[0, 1] = 5.0

    def test_one_dimensional_coordinates(self):
        """1-D coordinates form a single column."""
        provider = EuclideanDistance(np.array([0.0, 1.0, 3.0]))
        assert provider.n_columns == 1
        assert provider.max_distance == 3.0
        np.testing.assert_allclose(provider.pairwise()[0], [0.0, 1.0, 3.0])

    def test_between(self):
        """Distances to new targets have one row per target."""
        provider = EuclideanDistance(np.array([[0.0, 0.0], [3.0, 4.0]]))
        d = provider.between(np.array([[0.0, 0.0], [3.0, 0.0]]))
        np.testing.assert_allclose(d, [[0.0, 5.0], [3.0, 4.0]])

    def test_between_wrong_columns(self):
        provider = EuclideanDistance(np.zeros((4, 2)))
        with pytest.raises(InvalidSpec, match="coordinate columns"):
            provider.between(np.zeros((2, 3)))

    def test_rejects_non_finite(self):
        with pytest.raises(InvalidSpec, match="NaN"):
            EuclideanDistance(np.array([0.0, np.nan, 1.0]))

    def test_coordinates_copied(self):
        """Later changes to the input array do not leak into the provider."""
        coords = np.array([0.0, 1.0, 2.0])
        provider = EuclideanDistance(coords)
        coords[0] = 10.0
        assert provider.coordinates[0, 0] == 0.0

    def test_as_distance_provider(self):
        provider = PrecomputedDistance(np.zeros((2, 2)))
        assert as_distance_provider(provider) is provider
        assert isinstance(as_distance_provider(np.zeros(3)), EuclideanDistance)


class TestPrecomputedDistance:
    """Tests for caller-supplied distance matrices."""

    @pytest.fixture
    def flow_matrix(self):
        return np.array([
            [0.0, 2.0, 5.0],
            [2.0, 0.0, 1.0],
            [5.0, 1.0, 0.0],
        ])

    def test_valid_matrix(self, flow_matrix):
        provider = PrecomputedDistance(flow_matrix)
        np.testing.assert_array_equal(provider.pairwise(), flow_matrix)
        assert provider.n_samples == 3
        assert provider.max_distance == 5.0
        assert provider.coordinates is None

    def test_small_asymmetry_removed(self, flow_matrix):
        """Tolerance-level asymmetry is averaged away exactly."""
        flow_matrix[0, 1] += 1e-10
        d = PrecomputedDistance(flow_matrix).pairwise()
        assert d[0, 1] == d[1, 0]

    def test_not_square(self):
        with pytest.raises(InvalidSpec, match="square"):
            PrecomputedDistance(np.zeros((2, 3)))

    def test_negative(self, flow_matrix):
        flow_matrix[0, 1] = flow_matrix[1, 0] = -1.0
        with pytest.raises(InvalidSpec, match="negative"):
            PrecomputedDistance(flow_matrix)

    def test_nonzero_diagonal(self, flow_matrix):
        flow_matrix[1, 1] = 0.5
        with pytest.raises(InvalidSpec, match="zero diagonal"):
            PrecomputedDistance(flow_matrix)

    def test_asymmetric(self, flow_matrix):
        flow_matrix[0, 2] = 4.0
        with pytest.raises(InvalidSpec, match="symmetric"):
            PrecomputedDistance(flow_matrix)

    def test_non_finite(self, flow_matrix):
        flow_matrix[0, 2] = flow_matrix[2, 0] = np.inf
        with pytest.raises(InvalidSpec):
            PrecomputedDistance(flow_matrix)

    def test_between_not_supported(self, flow_matrix):
        """Precomputed distances cannot reach new locations."""
        with pytest.raises(InvalidSpec, match="new locations"):
            PrecomputedDistance(flow_matrix).between(np.zeros((1, 3)))


class TestDataset:
    """Tests for Dataset validation and construction."""

    def test_design_has_intercept(self, random_state):
        X = random_state.randn(10, 2)
        data = Dataset(random_state.randn(10), X, [random_state.uniform(0, 1, (10, 2))])
        assert data.design.shape == (10, 3)
        np.testing.assert_array_equal(data.design[:, 0], 1.0)
        np.testing.assert_array_equal(data.design[:, 1:], X)
        assert data.n_predictors == 2
        assert data.coefficient_names == ["Intercept", "x1", "x2"]

    def test_intercept_only(self, random_state):
        data = Dataset(random_state.randn(10), None, [random_state.uniform(0, 1, 10)])
        assert data.design.shape == (10, 1)
        assert data.coefficient_names == ["Intercept"]

    def test_single_coordinate_array(self, random_state):
        """A bare coordinate array is a single group."""
        data = Dataset(random_state.randn(10), None, random_state.uniform(0, 1, (10, 2)))
        assert data.n_dimensions == 1

    def test_arrays_read_only(self, small_data):
        for array in (small_data.y, small_data.X, small_data.design):
            assert not array.flags.writeable

    def test_distance_matrices(self, space_time_data):
        matrices = space_time_data.distance_matrices()
        assert len(matrices) == 2
        assert all(m.shape == (60, 60) for m in matrices)

    def test_mismatched_predictors(self, random_state):
        with pytest.raises(InvalidSpec, match="X has shape"):
            Dataset(random_state.randn(10), random_state.randn(9, 2), [np.zeros(10)])

    def test_mismatched_coordinates(self, random_state):
        with pytest.raises(InvalidSpec, match="Coordinate group 1"):
            Dataset(random_state.randn(10), None, [np.zeros(10), np.zeros(8)])

    def test_too_few_samples(self):
        with pytest.raises(InvalidSpec, match="At least 2"):
            Dataset(np.array([1.0]), None, [np.zeros(1)])

    def test_no_coordinate_groups(self, random_state):
        with pytest.raises(InvalidSpec, match="coordinate group"):
            Dataset(random_state.randn(10), None, [])

    def test_non_finite_response(self, random_state):
        y = random_state.randn(10)
        y[3] = np.nan
        with pytest.raises(InvalidSpec, match="NaN"):
            Dataset(y, None, [np.arange(10.0)])

    def test_predictor_names(self, random_state):
        data = Dataset(
            random_state.randn(10),
            random_state.randn(10, 2),
            [np.arange(10.0)],
            predictor_names=["income", "age"],
        )
        assert data.coefficient_names == ["Intercept", "income", "age"]

    @pytest.mark.parametrize("names", [["a"], ["a", "a"], ["Intercept", "b"]])
    def test_invalid_predictor_names(self, random_state, names):
        with pytest.raises(InvalidSpec):
            Dataset(
                random_state.randn(10),
                random_state.randn(10, 2),
                [np.arange(10.0)],
                predictor_names=names,
            )

    def test_from_frame(self, random_state):
        """Coordinate groups are taken from named columns."""
        n = 12
        frame = pd.DataFrame({
            "price": random_state.randn(n),
            "rooms": random_state.randn(n),
            "u": random_state.uniform(0, 1, n),
            "v": random_state.uniform(0, 1, n),
            "t": np.arange(n, dtype=float),
        })
        data = Dataset.from_frame(frame, "price", ["rooms"], [["u", "v"], "t"])
        assert data.n_dimensions == 2
        assert data.dimensions[0].n_columns == 2
        assert data.dimensions[1].n_columns == 1
        assert data.coefficient_names == ["Intercept", "rooms"]
        np.testing.assert_array_equal(data.y, frame["price"].to_numpy())

    def test_from_frame_missing_column(self):
        frame = pd.DataFrame({"y": [1.0, 2.0], "u": [0.0, 1.0]})
        with pytest.raises(InvalidSpec, match="not found"):
            Dataset.from_frame(frame, "y", ["x"], ["u"])
