"""
Unit tests for pvol_grid.scan module.
"""
import numpy as np
import pytest

from pvol_grid.errors import InvariantViolation
from pvol_grid.scan import (
    NODATA,
    BoundingBox,
    Channel,
    GridSpec,
    Raster,
)


class TestChannel:
    """Test Channel parsing."""

    @pytest.mark.parametrize("name,expected", [
        ("DBZH", Channel.REFLECTIVITY),
        ("dbzh", Channel.REFLECTIVITY),
        ("REFLECTIVITY", Channel.REFLECTIVITY),
        (" vradh ", Channel.RADIAL_VELOCITY),
        ("TH", Channel.TOTAL_POWER),
        ("spectral_width", Channel.SPECTRAL_WIDTH),
    ])
    def test_parse(self, name, expected):
        """Test parsing channel names and quantities."""
        assert Channel.parse(name) is expected

    def test_parse_unknown(self):
        """Test that an unknown channel name is rejected."""
        with pytest.raises(ValueError, match="Unknown channel"):
            Channel.parse("RHOHV")


class TestPolarScan:
    """Test PolarScan invariants and derived ranges."""

    def test_ground_range_length_and_monotonic(self, make_scan):
        """Test that ground range has one value per bin and never decreases."""
        scan = make_scan(n_bins=120, elevation=3.0)
        ground = scan.ground_range()
        assert ground.shape == (120,)
        assert np.all(np.diff(ground) >= 0)

    def test_slant_range_bin_centers(self, make_scan):
        """Test that slant ranges are bin centres."""
        scan = make_scan(n_bins=3, range_scale=250.0, range_start=1000.0)
        np.testing.assert_allclose(scan.slant_range(), [1125.0, 1375.0, 1625.0])

    def test_ground_range_elevation_scaling(self, make_scan):
        """Test ground range at a steep elevation."""
        scan = make_scan(n_bins=4, elevation=60.0)
        np.testing.assert_allclose(scan.ground_range(), scan.slant_range() * 0.5)

    def test_max_ground_range(self, make_scan):
        """Test the ground range of the last bin."""
        scan = make_scan(n_bins=4, range_scale=1000.0, elevation=0.0)
        assert scan.max_ground_range == pytest.approx(3500.0)

    def test_max_ground_range_empty(self, make_scan):
        """Test the ground range of an empty scan."""
        scan = make_scan(n_rays=0, n_bins=0)
        assert scan.max_ground_range == 0.0
        assert not scan.has_data

    def test_azimuth_length_mismatch(self, make_scan):
        """Test that azimuths must match the ray count."""
        with pytest.raises(InvariantViolation, match="azimuths"):
            make_scan(n_rays=10, azimuths=np.arange(9))

    def test_channel_shape_mismatch(self, make_scan):
        """Test that channel grids must match the scan shape."""
        with pytest.raises(InvariantViolation, match="REFLECTIVITY"):
            make_scan(n_rays=10, n_bins=5,
                      channels={Channel.REFLECTIVITY: np.zeros((10, 6), dtype=np.float32)})

    def test_raw_grids_are_read_only(self, make_scan):
        """Test that raw grids cannot be modified."""
        scan = make_scan(n_rays=4, n_bins=4)
        with pytest.raises(ValueError):
            scan.raw[Channel.REFLECTIVITY][0, 0] = 1.0

    def test_channel_returns_writable_copy(self, make_scan):
        """Test that channel returns an independent float32 copy."""
        scan = make_scan(n_rays=4, n_bins=4, value=5.0)
        grid = scan.channel(Channel.REFLECTIVITY)
        grid[0, 0] = -1.0
        assert scan.raw[Channel.REFLECTIVITY][0, 0] == 5.0
        assert grid.dtype == np.float32

    def test_close_releases_data(self, make_scan):
        """Test that closing drops data and the cached projection."""
        scan = make_scan(n_rays=4, n_bins=4)
        scan.geodetic(n_workers=1)
        scan.close()
        assert scan.raw == {}
        assert scan._geodetic is None
        with pytest.raises(ValueError, match="closed"):
            scan.channel(Channel.REFLECTIVITY)

    def test_context_manager_closes(self, make_scan):
        """Test that leaving the context closes the scan."""
        with make_scan(n_rays=4, n_bins=4) as scan:
            assert scan.channels
        assert scan.raw == {}

    def test_metadata(self, make_scan):
        """Test the metadata summary of a scan."""
        scan = make_scan(n_rays=8, n_bins=6, elevation=1.5)
        meta = scan.metadata()
        assert meta.n_rays == 8
        assert meta.n_bins == 6
        assert meta.elevation_angle == 1.5
        assert meta.has_data

    def test_repr(self, make_scan):
        """Test that repr shows the scan shape."""
        text = repr(make_scan(n_rays=8, n_bins=6))
        assert "rays=8" in text
        assert "bins=6" in text


class TestGridSpec:
    """Test GridSpec geometry."""

    def test_resolution(self):
        """Test pixel resolution and array shape."""
        grid = GridSpec(-91.0, -89.0, 39.0, 40.0, width=200, height=50)
        assert grid.lon_res == pytest.approx(0.01)
        assert grid.lat_res == pytest.approx(0.02)
        assert grid.shape == (50, 200)

    def test_invalid_dimensions(self):
        """Test that a zero-sized grid is rejected."""
        with pytest.raises(ValueError):
            GridSpec(0.0, 1.0, 0.0, 1.0, width=0, height=10)

    def test_default_for_is_centered(self):
        """Test that the default grid is centred on the site."""
        grid = GridSpec.default_for(40.0, -90.0)
        assert (grid.lat_min + grid.lat_max) / 2 == pytest.approx(40.0)
        assert (grid.lon_min + grid.lon_max) / 2 == pytest.approx(-90.0)
        assert grid.width == grid.height == 1500

    def test_from_bounds(self):
        """Test building a grid from a bounding box."""
        bbox = BoundingBox(39.0, 41.0, -91.0, -89.0)
        grid = GridSpec.from_bounds(bbox, 10, 20)
        assert (grid.lat_min, grid.lat_max, grid.lon_min, grid.lon_max) == (39.0, 41.0, -91.0, -89.0)

    def test_from_empty_bounds(self):
        """Test that an empty bounding box is rejected."""
        with pytest.raises(ValueError):
            GridSpec.from_bounds(BoundingBox.empty(), 10, 10)

    def test_pixel_centers_ordering(self):
        """Test pixel centre coordinates and their ordering."""
        grid = GridSpec(-91.0, -89.0, 39.0, 41.0, width=4, height=4)
        lat, lon = grid.pixel_centers()
        assert lat.shape == lon.shape == (4, 4)
        assert lat[0, 0] == pytest.approx(40.75)
        assert lon[0, 0] == pytest.approx(-90.75)
        assert np.all(np.diff(lat, axis=0) < 0)
        assert np.all(np.diff(lon, axis=1) > 0)


class TestBoundingBox:
    """Test BoundingBox merging and containment."""

    def test_merge(self):
        """Test merging two boxes."""
        a = BoundingBox(0.0, 1.0, 10.0, 11.0)
        b = BoundingBox(-1.0, 0.5, 10.5, 12.0)
        assert a.merge(b) == BoundingBox(-1.0, 1.0, 10.0, 12.0)

    def test_merge_with_empty(self):
        """Test that the empty box is neutral for merging."""
        a = BoundingBox(0.0, 1.0, 10.0, 11.0)
        assert BoundingBox.empty().merge(a) == a
        assert a.merge(BoundingBox.empty()) == a

    def test_contains_inclusive(self):
        """Test that containment includes the edges."""
        box = BoundingBox(0.0, 1.0, 10.0, 11.0)
        result = box.contains([0.0, 0.5, 1.5], [10.0, 11.0, 10.5])
        np.testing.assert_array_equal(result, [True, True, False])


class TestRaster:
    """Test Raster pixel classes."""

    def test_classification_masks(self):
        """Test the coverage, no-data and valid masks."""
        grid = GridSpec(0.0, 3.0, 0.0, 1.0, width=3, height=1)
        value = np.array([[NODATA, np.nan, 5.0]], dtype=np.float32)
        raster = Raster(value, np.zeros_like(value), np.zeros_like(value), grid)
        np.testing.assert_array_equal(raster.outside_coverage, [[True, False, False]])
        np.testing.assert_array_equal(raster.no_data, [[False, True, False]])
        np.testing.assert_array_equal(raster.valid, [[False, False, True]])
