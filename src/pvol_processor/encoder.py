"""
PNG encoding of rasters with fixed per-channel colour scales.
"""
import io
import logging
from typing import Optional, Tuple, Union

import matplotlib
import matplotlib.image
import numpy as np
from matplotlib.colors import Colormap, Normalize

from pvol_grid.scan import NODATA, Channel, Raster

from .constants import CHANNEL_THRESHOLDS

logger = logging.getLogger(__name__)

TRANSPARENT = (0.0, 0.0, 0.0, 0.0)
OUTSIDE_COVERAGE = (0.0, 0.0, 0.0, 1.0)


def colormap_for(channel: Channel, override_cmap: Optional[str] = None) -> Tuple[Colormap, float, float]:
    """
    Colormap and display range of a channel.

    Parameters
    ----------
    channel : Channel
        Radar moment
    override_cmap : str, optional
        Name of a registered matplotlib colormap to use instead

    Returns
    -------
    Tuple[Colormap, float, float]
        (colormap, vmin, vmax)
    """
    display = CHANNEL_THRESHOLDS[channel]
    cmap = matplotlib.colormaps[override_cmap or display["cmap"]]
    return cmap, display["vmin"], display["vmax"]


def to_rgba(values: np.ndarray, cmap: Colormap, vmin: float, vmax: float) -> np.ndarray:
    """
    Map raster values to RGBA.

    Values are clipped to [vmin, vmax]. NaN (no data inside coverage) is
    transparent and ``NODATA`` (outside coverage) is opaque black.
    """
    values = np.asarray(values, dtype='float64')
    missing = np.isnan(values)
    outside = values == NODATA
    norm = Normalize(vmin=vmin, vmax=vmax, clip=True)
    rgba = cmap(norm(np.where(missing | outside, vmin, values)))
    rgba[missing] = TRANSPARENT
    rgba[outside] = OUTSIDE_COVERAGE
    return rgba


def encode_png(
    raster: Union[Raster, np.ndarray],
    channel: Channel,
    vmin: Optional[float] = None,
    vmax: Optional[float] = None,
    cmap: Optional[str] = None,
) -> bytes:
    """
    Encode a raster as PNG bytes.

    Parameters
    ----------
    raster : Raster or np.ndarray
        Rasterized channel; row 0 is drawn at the top (north)
    channel : Channel
        Selects the default colormap and display range
    vmin, vmax : float, optional
        Override the channel's display range
    cmap : str, optional
        Override the channel's colormap

    Returns
    -------
    bytes
        RGBA PNG image with the raster's width and height
    """
    values = raster.value if isinstance(raster, Raster) else raster
    colormap, default_vmin, default_vmax = colormap_for(channel, cmap)
    vmin = default_vmin if vmin is None else vmin
    vmax = default_vmax if vmax is None else vmax
    if vmin >= vmax:
        raise ValueError(f"Invalid display range [{vmin}, {vmax}]")

    rgba = to_rgba(values, colormap, vmin, vmax)
    buf = io.BytesIO()
    matplotlib.image.imsave(buf, rgba, format="png")
    data = buf.getvalue()
    logger.debug(f"Encoded {channel.name} {rgba.shape[1]}x{rgba.shape[0]} PNG: {len(data):,} bytes")
    return data
