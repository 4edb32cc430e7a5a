"""
Noise filters over polar (ray, bin) grids.

Each filter transforms a 2D float grid in place. Axis 0 is azimuth and is
circular (ray indices wrap), axis 1 is range and does not wrap. Missing
samples are NaN; infinities are treated as missing before filtering.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from scipy.ndimage import convolve1d

logger = logging.getLogger(__name__)


class RadarFilter(ABC):
    """
    Base class for in-place polar grid filters.

    Subclasses implement ``_apply`` on a validated float grid. Malformed
    input (not 2D, empty, non-float) is left untouched rather than raising.
    """

    def apply(self, grid: np.ndarray) -> np.ndarray:
        """Filter ``grid`` in place and return it."""
        if not _is_filterable(grid):
            logger.debug(f"{self!r}: skipping grid of shape {np.shape(grid)}")
            return grid
        grid[~np.isfinite(grid)] = np.nan
        self._apply(grid)
        return grid

    def __call__(self, grid: np.ndarray) -> np.ndarray:
        """Filtered float32 copy of ``grid``."""
        return self.apply(np.array(grid, dtype='float32', copy=True))

    @abstractmethod
    def _apply(self, grid: np.ndarray) -> None:
        ...

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in vars(self).items() if not k.startswith('_'))
        return f"{type(self).__name__}({params})"


def _is_filterable(grid) -> bool:
    return (
        isinstance(grid, np.ndarray)
        and grid.ndim == 2
        and grid.size > 0
        and np.issubdtype(grid.dtype, np.floating)
        and grid.flags.writeable
    )


class Median3RaysFilter(RadarFilter):
    """Median of each sample and its two azimuthal neighbours (wrapping)."""

    def _apply(self, grid):
        stack = np.stack([np.roll(grid, 1, axis=0), grid, np.roll(grid, -1, axis=0)])
        grid[:] = np.median(stack, axis=0)


class Median5BinsFilter(RadarFilter):
    """
    Median over a 5-bin range window.

    Only bins 2..n_bins-3 have a full window; the two bins at each end of
    the ray are left as they are.
    """

    def _apply(self, grid):
        n_bins = grid.shape[1]
        if n_bins < 5:
            return
        windows = sliding_window_view(grid, 5, axis=1)
        grid[:, 2:n_bins - 2] = np.median(windows, axis=-1)


class ThresholdFilter(RadarFilter):
    """Samples outside [min_value, max_value] become NaN."""

    def __init__(self, min_value: float = -np.inf, max_value: float = np.inf):
        self.min_value = float(min_value)
        self.max_value = float(max_value)

    def _apply(self, grid):
        with np.errstate(invalid='ignore'):
            outside = (grid < self.min_value) | (grid > self.max_value)
        grid[outside] = np.nan


class GateClutterFilter(RadarFilter):
    """
    Flag azimuthally incoherent gates.

    For every gate the mean and standard deviation of a ``window``-ray
    neighbourhood (wrapping, NaN ignored) are computed; gates whose
    neighbourhood deviation exceeds ``std_thresh`` become NaN. Gates with
    fewer than two valid neighbours are left alone.
    """

    def __init__(self, window: int = 7, std_thresh: float = 3.0):
        self.window = int(window)
        self.std_thresh = float(std_thresh)

    def _apply(self, grid):
        half = max(self.window // 2, 0)
        size = 2 * half + 1
        padded = np.pad(grid, ((half, half), (0, 0)), mode='wrap')
        windows = sliding_window_view(padded, size, axis=0)  # (n_rays, n_bins, size)

        valid = ~np.isnan(windows)
        count = valid.sum(axis=-1)
        denom = np.maximum(count, 1)
        values = np.where(valid, windows, 0.0)
        mean = values.sum(axis=-1) / denom
        dev = np.where(valid, windows - mean[..., np.newaxis], 0.0)
        std = np.sqrt((dev * dev).sum(axis=-1) / denom)

        grid[(count >= 2) & (std > self.std_thresh)] = np.nan


def _compress(parent: np.ndarray) -> np.ndarray:
    """Point every node straight at its root (path compression by pointer jumping)."""
    while True:
        grand = parent[parent]
        if np.array_equal(grand, parent):
            return parent
        parent = grand


def label_components(valid: np.ndarray) -> np.ndarray:
    """
    4-connected component labels of a boolean grid.

    Union-find over flat indices: every edge between two valid neighbours
    hangs the larger root under the smaller one, and the forest is path
    compressed after each round, until no edge joins different roots.
    Iterative throughout, so large contiguous regions are safe.

    Returns
    -------
    np.ndarray
        Root index per cell (same shape as ``valid``); cells sharing a root
        are connected. Invalid cells are their own root.
    """
    n = valid.size
    index = np.arange(n).reshape(valid.shape)
    parent = np.arange(n)

    along_bins = valid[:, :-1] & valid[:, 1:]
    along_rays = valid[:-1, :] & valid[1:, :]
    a = np.concatenate([index[:, :-1][along_bins], index[:-1, :][along_rays]])
    b = np.concatenate([index[:, 1:][along_bins], index[1:, :][along_rays]])

    while a.size:
        ra, rb = parent[a], parent[b]
        differ = ra != rb
        if not differ.any():
            break
        lo = np.minimum(ra[differ], rb[differ])
        hi = np.maximum(ra[differ], rb[differ])
        np.minimum.at(parent, hi, lo)
        parent = _compress(parent)

    return parent.reshape(valid.shape)


class SpeckleRemovalFilter(RadarFilter):
    """Remove 4-connected regions of valid samples smaller than ``min_area``."""

    def __init__(self, min_area: int = 5):
        self.min_area = int(min_area)

    def _apply(self, grid):
        valid = ~np.isnan(grid)
        if not valid.any():
            return
        roots = label_components(valid)
        sizes = np.bincount(roots[valid], minlength=grid.size)
        speckle = valid & (sizes[roots] < self.min_area)
        n_removed = int(speckle.sum())
        if n_removed:
            logger.debug(f"Speckle removal: {n_removed:,} gates in regions < {self.min_area}")
        grid[speckle] = np.nan


class GaussianFilter(RadarFilter):
    """
    Separable Gaussian smoothing.

    Azimuthal pass wraps around the ray axis, range pass repeats the edge
    bins. NaN propagates to every output touched by the kernel.
    """

    def __init__(self, sigma: float = 1.2, radius: int = 3):
        self.sigma = float(sigma)
        self.radius = int(radius)
        offsets = np.arange(-self.radius, self.radius + 1, dtype='float64')
        kernel = np.exp(-(offsets * offsets) / (2.0 * self.sigma * self.sigma))
        self._kernel = kernel / kernel.sum()

    @property
    def kernel(self) -> np.ndarray:
        return self._kernel

    def _apply(self, grid):
        tmp = convolve1d(grid.astype('float64'), self._kernel, axis=0, mode='wrap')
        grid[:] = convolve1d(tmp, self._kernel, axis=1, mode='nearest')


FILTER_FACTORIES = {
    "median3rays": Median3RaysFilter,
    "median5bins": Median5BinsFilter,
    "threshold": ThresholdFilter,
    "clutter": GateClutterFilter,
    "speckle": lambda: SpeckleRemovalFilter(min_area=32),
    "gaussian": GaussianFilter,
}


class FilterPipeline:
    """
    Ordered composition of filters.

    Examples
    --------
    >>> pipeline = FilterPipeline([ThresholdFilter(-10, 70), SpeckleRemovalFilter(32)])
    >>> grid = scan.channel(Channel.REFLECTIVITY)
    >>> pipeline.apply(grid)
    """

    def __init__(self, filters: Optional[Iterable[RadarFilter]] = None):
        self.filters: List[RadarFilter] = list(filters or [])

    @classmethod
    def from_names(cls, names: Sequence[str]) -> "FilterPipeline":
        """Build a pipeline of default-parameter filters from configuration names."""
        filters = []
        for name in names:
            key = name.strip().lower()
            if key not in FILTER_FACTORIES:
                raise ValueError(f"Unknown filter {name!r}; expected one of {sorted(FILTER_FACTORIES)}")
            filters.append(FILTER_FACTORIES[key]())
        return cls(filters)

    def apply(self, grid: np.ndarray) -> np.ndarray:
        for f in self.filters:
            f.apply(grid)
        return grid

    def __call__(self, grid: np.ndarray) -> np.ndarray:
        return self.apply(np.array(grid, dtype='float32', copy=True))

    def __len__(self) -> int:
        return len(self.filters)

    def __repr__(self) -> str:
        return f"FilterPipeline({self.filters!r})"
