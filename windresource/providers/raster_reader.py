"""GeoTIFF raster access for topography and land cover.

Reads band 1 into a RasterGrid indexed [x, y] (x east, y north), with the
origin at the centre of the south-west cell. No-data cells become NaN.
Rasters are expected in the project's UTM coordinates and with square,
north-up pixels.
"""

import logging
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError

from windresource.core.errors import DataIOError, ValidationError
from windresource.model.grid import RasterGrid

logger = logging.getLogger(__name__)


class RasterReader:
    """Reads single-band GeoTIFFs into RasterGrids.

    Example:
        grid = RasterReader.read(path=Path("topo.tif"))
        elevation = grid.sample(x=500100.0, y=4980200.0)
    """

    @staticmethod
    def read(path: Path) -> RasterGrid:
        """Read band 1 of a GeoTIFF.

        Raises:
            DataIOError: File missing or unreadable.
            ValidationError: Rotated or non-square pixels.
        """
        path = Path(path)
        if not path.exists():
            raise DataIOError(f"Raster file not found: {path}")

        try:
            with rasterio.open(path) as src:
                band = src.read(1).astype(np.float64)
                nodata = src.nodata
                transform = src.transform
                crs = src.crs.to_string() if src.crs else "unknown CRS"
        except RasterioIOError as e:
            raise DataIOError(f"Cannot read raster {path}: {e}") from e

        if transform.b != 0 or transform.d != 0:
            raise ValidationError(f"{path.name}: rotated rasters are not supported")
        resolution = transform.a
        if not np.isclose(abs(transform.e), resolution):
            raise ValidationError(f"{path.name}: pixels must be square (got {transform.a} x {abs(transform.e)})")

        if nodata is not None:
            band[band == nodata] = np.nan

        height = band.shape[0]
        origin_x = transform.c + resolution / 2
        origin_y = transform.f - resolution * (height - 0.5)
        values = np.flipud(band).T.copy()

        logger.info(f"Read {path.name}: {values.shape[0]} x {values.shape[1]} cells at {resolution} m ({crs})")
        return RasterGrid(origin_x=origin_x, origin_y=origin_y, resolution=resolution, values=values)
