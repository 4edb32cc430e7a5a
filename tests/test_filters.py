"""
Unit tests for pvol_grid.filters module.
"""
import numpy as np
import pytest

from pvol_grid.filters import (
    FilterPipeline,
    GateClutterFilter,
    GaussianFilter,
    Median3RaysFilter,
    Median5BinsFilter,
    SpeckleRemovalFilter,
    ThresholdFilter,
    label_components,
)


class TestMedianFilters:
    """Test azimuthal and range median filters."""

    def test_median3rays_wraps(self):
        """Test that the first and last rays are azimuthal neighbours."""
        grid = np.zeros((5, 3), dtype=np.float32)
        grid[0, :] = 10.0
        grid[4, :] = 10.0
        Median3RaysFilter().apply(grid)
        # Ray 0's neighbours are rays 4 and 1
        np.testing.assert_array_equal(grid[0], [10.0, 10.0, 10.0])
        np.testing.assert_array_equal(grid[4], [10.0, 10.0, 10.0])
        np.testing.assert_array_equal(grid[2], [0.0, 0.0, 0.0])

    def test_median3rays_uses_original_values(self):
        """Test that medians are taken over the unfiltered input."""
        grid = np.array([[0.0], [10.0], [10.0], [0.0], [0.0], [0.0]], dtype=np.float32)
        Median3RaysFilter().apply(grid)
        np.testing.assert_array_equal(grid.ravel(), [0.0, 10.0, 10.0, 0.0, 0.0, 0.0])

    def test_median3rays_removes_single_spike(self):
        """Test that an isolated spike is replaced by its neighbours."""
        grid = np.ones((8, 4), dtype=np.float32)
        grid[3, 2] = 100.0
        Median3RaysFilter().apply(grid)
        assert grid[3, 2] == 1.0

    def test_median3rays_nan_propagates(self):
        """Test that a missing sample makes every window containing it missing."""
        grid = np.ones((5, 2), dtype=np.float32)
        grid[2, 0] = np.nan
        Median3RaysFilter().apply(grid)
        assert np.isnan(grid[1:4, 0]).all()
        assert grid[0, 0] == 1.0 and grid[4, 0] == 1.0
        assert not np.isnan(grid[:, 1]).any()

    def test_median5bins_interior_only(self):
        """Test that only bins with a full window are filtered."""
        grid = np.array([[9.0, 1.0, 100.0, 1.0, 1.0, 9.0, 9.0]], dtype=np.float32)
        Median5BinsFilter().apply(grid)
        assert grid[0, 0] == 9.0
        assert grid[0, 1] == 1.0
        assert grid[0, 2] == 1.0
        assert grid[0, 5] == 9.0
        assert grid[0, 6] == 9.0

    def test_median5bins_short_rays_untouched(self):
        """Test that rays shorter than the window are left alone."""
        grid = np.array([[1.0, 50.0, 3.0, 4.0]], dtype=np.float32)
        Median5BinsFilter().apply(grid)
        np.testing.assert_array_equal(grid, [[1.0, 50.0, 3.0, 4.0]])

    def test_median5bins_nan_propagates(self):
        """Test that interior bins whose window holds a missing sample become missing."""
        grid = np.array([[1.0, 1.0, 1.0, np.nan, 1.0, 1.0, 1.0, 1.0, 1.0]], dtype=np.float32)
        Median5BinsFilter().apply(grid)
        assert np.isnan(grid[0, 2:6]).all()
        np.testing.assert_array_equal(grid[0, [0, 1, 6, 7, 8]], 1.0)


class TestThresholdFilter:
    """Test ThresholdFilter."""

    def test_outside_range_becomes_nan(self):
        """Test that samples outside the range are masked."""
        grid = np.array([[-20.0, 0.0, 35.0, 80.0]], dtype=np.float32)
        ThresholdFilter(-10.0, 70.0).apply(grid)
        assert np.isnan(grid[0, 0])
        assert grid[0, 1] == 0.0
        assert grid[0, 2] == 35.0
        assert np.isnan(grid[0, 3])

    def test_bounds_inclusive(self):
        """Test that samples equal to a bound are kept."""
        grid = np.array([[-10.0, 70.0]], dtype=np.float32)
        ThresholdFilter(-10.0, 70.0).apply(grid)
        assert not np.isnan(grid).any()

    def test_inf_treated_as_missing(self):
        """Test that infinities are masked even with open bounds."""
        grid = np.array([[np.inf, -np.inf, 5.0]], dtype=np.float32)
        ThresholdFilter().apply(grid)
        assert np.isnan(grid[0, 0]) and np.isnan(grid[0, 1])
        assert grid[0, 2] == 5.0


class TestGateClutterFilter:
    """Test azimuthal coherence filter."""

    def test_coherent_field_untouched(self):
        """Test that a uniform field is kept."""
        grid = np.full((20, 5), 30.0, dtype=np.float32)
        GateClutterFilter(window=5, std_thresh=3.0).apply(grid)
        assert not np.isnan(grid).any()

    def test_incoherent_gates_flagged(self):
        """Test that gates near an azimuthal outlier are masked."""
        grid = np.full((20, 5), 30.0, dtype=np.float32)
        grid[10, 2] = 80.0
        GateClutterFilter(window=5, std_thresh=3.0).apply(grid)
        # Every ray whose window contains the outlier is flagged in that bin
        assert np.isnan(grid[8:13, 2]).all()
        assert not np.isnan(grid[:8, 2]).any()
        assert not np.isnan(grid[:, [0, 1, 3, 4]]).any()

    def test_window_wraps(self):
        """Test that the azimuth window wraps around ray zero."""
        grid = np.full((20, 1), 30.0, dtype=np.float32)
        grid[0, 0] = 80.0
        GateClutterFilter(window=5, std_thresh=3.0).apply(grid)
        assert np.isnan(grid[19, 0]) and np.isnan(grid[18, 0])

    def test_sparse_window_skipped(self):
        """Test that windows with too few samples are not judged."""
        grid = np.full((10, 1), np.nan, dtype=np.float32)
        grid[5, 0] = 50.0
        GateClutterFilter(window=3, std_thresh=0.1).apply(grid)
        assert grid[5, 0] == 50.0


class TestSpeckleRemoval:
    """Test connected-component speckle removal."""

    def test_small_region_removed(self):
        """Test that a region below the minimum area is masked."""
        grid = np.full((20, 20), np.nan, dtype=np.float32)
        grid[5:7, 5:7] = 10.0  # 4 cells
        SpeckleRemovalFilter(min_area=5).apply(grid)
        assert np.isnan(grid).all()

    def test_region_at_min_area_kept(self):
        """Test that a region of exactly the minimum area is kept."""
        grid = np.full((20, 20), np.nan, dtype=np.float32)
        grid[5, 5:10] = 10.0  # 5 cells
        SpeckleRemovalFilter(min_area=5).apply(grid)
        np.testing.assert_array_equal(grid[5, 5:10], 10.0)

    def test_diagonal_cells_not_connected(self):
        """Test that connectivity is 4-neighbour only."""
        grid = np.full((10, 10), np.nan, dtype=np.float32)
        for i in range(6):
            grid[i, i] = 1.0
        SpeckleRemovalFilter(min_area=2).apply(grid)
        assert np.isnan(grid).all()

    def test_mixed_regions(self):
        """Test that large regions survive while small ones are masked."""
        grid = np.full((30, 30), np.nan, dtype=np.float32)
        grid[0:10, 0:10] = 1.0
        grid[20, 20] = 2.0
        grid[25:27, 3] = 3.0
        SpeckleRemovalFilter(min_area=3).apply(grid)
        assert not np.isnan(grid[0:10, 0:10]).any()
        assert np.isnan(grid[20, 20])
        assert np.isnan(grid[25:27, 3]).all()

    def test_large_contiguous_region(self):
        """Test labelling a full-size scan that is one region."""
        grid = np.ones((720, 1000), dtype=np.float32)
        SpeckleRemovalFilter(min_area=32).apply(grid)
        assert not np.isnan(grid).any()

    def test_labels_snake(self):
        """Test that a winding region gets one label."""
        valid = np.zeros((5, 5), dtype=bool)
        valid[0, :] = True
        valid[:, 4] = True
        valid[4, :] = True
        valid[2, 0:3] = True
        valid[3, 0] = True
        roots = label_components(valid)
        assert len(np.unique(roots[valid])) == 1

    def test_labels_separate(self):
        """Test that disjoint regions get distinct labels."""
        valid = np.array([
            [1, 1, 0, 1],
            [0, 0, 0, 1],
            [1, 0, 1, 1],
        ], dtype=bool)
        roots = label_components(valid)
        assert roots[0, 0] == roots[0, 1]
        assert roots[0, 3] == roots[2, 2]
        assert roots[0, 0] != roots[0, 3]
        assert roots[2, 0] not in (roots[0, 0], roots[0, 3])


class TestGaussianFilter:
    """Test separable Gaussian smoothing."""

    def test_kernel_normalized(self):
        """Test that the kernel is symmetric and sums to one."""
        f = GaussianFilter(sigma=1.2, radius=3)
        assert f.kernel.shape == (7,)
        assert f.kernel.sum() == pytest.approx(1.0)
        np.testing.assert_allclose(f.kernel, f.kernel[::-1])

    def test_constant_preserved(self):
        """Test that a constant field is unchanged."""
        grid = np.full((12, 9), 7.0, dtype=np.float32)
        GaussianFilter().apply(grid)
        np.testing.assert_allclose(grid, 7.0, rtol=1e-6)

    def test_azimuth_wraps(self):
        """Test that smoothing wraps across ray zero."""
        grid = np.zeros((12, 9), dtype=np.float32)
        grid[0, 4] = 1.0
        GaussianFilter(sigma=1.0, radius=2).apply(grid)
        assert grid[11, 4] > 0
        assert grid[11, 4] == pytest.approx(grid[1, 4], rel=1e-5)

    def test_range_edges_clamped(self):
        """Test that bins past either end of a ray repeat the edge bin."""
        f = GaussianFilter(sigma=1.0, radius=1)
        k = f.kernel
        grid = np.tile(np.array([10.0, 0, 0, 0, 0, 0, 20.0], dtype=np.float32), (6, 1))
        f.apply(grid)
        np.testing.assert_allclose(grid[:, 0], (k[0] + k[1]) * 10.0, rtol=1e-5)
        np.testing.assert_allclose(grid[:, -1], (k[1] + k[2]) * 20.0, rtol=1e-5)

    def test_nan_propagates(self):
        """Test that a missing sample spreads over the kernel footprint."""
        grid = np.ones((12, 9), dtype=np.float32)
        grid[6, 4] = np.nan
        GaussianFilter(sigma=1.0, radius=1).apply(grid)
        assert np.isnan(grid[5:8, 3:6]).all()
        assert not np.isnan(grid[0, 0])


class TestMalformedInput:
    """Filters leave malformed grids alone."""

    @pytest.mark.parametrize("grid", [
        np.ones(10, dtype=np.float32),
        np.ones((0, 5), dtype=np.float32),
        np.ones((4, 4), dtype=np.int32),
        [[1.0, 2.0], [3.0, 4.0]],
    ])
    def test_no_exception(self, grid):
        """Test that every filter returns malformed input untouched."""
        for f in (Median3RaysFilter(), Median5BinsFilter(), ThresholdFilter(0, 1),
                  GateClutterFilter(), SpeckleRemovalFilter(), GaussianFilter()):
            assert f.apply(grid) is grid

    def test_read_only_untouched(self):
        """Test that a read-only grid is not modified."""
        grid = np.full((4, 4), 100.0, dtype=np.float32)
        grid.flags.writeable = False
        ThresholdFilter(0, 1).apply(grid)
        assert grid[0, 0] == 100.0


class TestFilterPipeline:
    """Test pipeline composition."""

    def test_from_names(self):
        """Test building a pipeline from case-insensitive names."""
        pipeline = FilterPipeline.from_names(["threshold", "Speckle", "gaussian"])
        assert len(pipeline) == 3
        assert isinstance(pipeline.filters[1], SpeckleRemovalFilter)
        assert pipeline.filters[1].min_area == 32

    def test_unknown_name(self):
        """Test that an unknown filter name is rejected."""
        with pytest.raises(ValueError, match="Unknown filter"):
            FilterPipeline.from_names(["bogus"])

    def test_call_returns_copy(self):
        """Test that calling a pipeline leaves the raw data untouched."""
        raw = np.full((6, 6), 100.0, dtype=np.float32)
        raw.flags.writeable = False
        out = FilterPipeline([ThresholdFilter(0, 50)])(raw)
        assert np.isnan(out).all()
        assert raw[0, 0] == 100.0

    def test_order_matters(self):
        """Test that filters run in the order given."""
        grid = np.full((10, 10), np.nan, dtype=np.float32)
        grid[0:3, 0:3] = 40.0
        grid[5, 5] = 40.0
        a = FilterPipeline([SpeckleRemovalFilter(min_area=2), ThresholdFilter(0, 30)])(grid)
        assert np.isnan(a).all()
        b = FilterPipeline([ThresholdFilter(0, 50), SpeckleRemovalFilter(min_area=2)])(grid)
        assert not np.isnan(b[0:3, 0:3]).any()
        assert np.isnan(b[5, 5])

    def test_repr(self):
        """Test that reprs list parameters but not private state."""
        assert "ThresholdFilter(min_value=0.0, max_value=1.0)" in repr(FilterPipeline([ThresholdFilter(0, 1)]))
        assert "_kernel" not in repr(GaussianFilter())
