"""RasterGrid - regular grid of values in projected (UTM) coordinates.

Used for topography (elevation in m) and land cover (integer class codes).
Values are indexed [x_index, y_index] with x increasing east and y
increasing north; (origin_x, origin_y) is the centre of cell [0, 0].
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class RasterGrid:
    """Regular grid with bilinear and nearest sampling.

    Attributes:
        origin_x: Easting of the centre of cell [0, 0] (m)
        origin_y: Northing of the centre of cell [0, 0] (m)
        resolution: Cell size (m)
        values: Array (num_x, num_y); NaN marks no-data
    """

    origin_x: float
    origin_y: float
    resolution: float
    values: np.ndarray

    @property
    def num_x(self) -> int:
        return self.values.shape[0]

    @property
    def num_y(self) -> int:
        return self.values.shape[1]

    @property
    def max_x(self) -> float:
        return self.origin_x + (self.num_x - 1) * self.resolution

    @property
    def max_y(self) -> float:
        return self.origin_y + (self.num_y - 1) * self.resolution

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) of the cell centres."""
        return self.origin_x, self.origin_y, self.max_x, self.max_y

    def covers(self, x: float, y: float, margin: float = 0.0) -> bool:
        """True if (x, y) lies inside the grid, at least margin metres from its edge."""
        return (
            self.origin_x + margin <= x <= self.max_x - margin and self.origin_y + margin <= y <= self.max_y - margin
        )

    def sample(self, x: np.ndarray | float, y: np.ndarray | float) -> np.ndarray:
        """Bilinear interpolation; points outside the grid return NaN."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        fx = (x - self.origin_x) / self.resolution
        fy = (y - self.origin_y) / self.resolution
        inside = (fx >= 0) & (fx <= self.num_x - 1) & (fy >= 0) & (fy <= self.num_y - 1)

        ix = np.clip(np.floor(fx).astype(int), 0, max(self.num_x - 2, 0))
        iy = np.clip(np.floor(fy).astype(int), 0, max(self.num_y - 2, 0))
        tx = np.clip(fx - ix, 0.0, 1.0)
        ty = np.clip(fy - iy, 0.0, 1.0)
        ix1 = np.minimum(ix + 1, self.num_x - 1)
        iy1 = np.minimum(iy + 1, self.num_y - 1)

        v = self.values
        result = (
            v[ix, iy] * (1 - tx) * (1 - ty)
            + v[ix1, iy] * tx * (1 - ty)
            + v[ix, iy1] * (1 - tx) * ty
            + v[ix1, iy1] * tx * ty
        )
        return np.where(inside, result, np.nan)

    def sample_nearest(self, x: np.ndarray | float, y: np.ndarray | float) -> np.ndarray:
        """Nearest-cell lookup (for categorical grids); outside returns NaN."""
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        ix = np.round((x - self.origin_x) / self.resolution).astype(int)
        iy = np.round((y - self.origin_y) / self.resolution).astype(int)
        inside = (ix >= 0) & (ix < self.num_x) & (iy >= 0) & (iy < self.num_y)
        values = self.values[np.clip(ix, 0, self.num_x - 1), np.clip(iy, 0, self.num_y - 1)].astype(np.float64)
        return np.where(inside, values, np.nan)

    def cell_centres(self) -> tuple[np.ndarray, np.ndarray]:
        """Eastings (num_x,) and northings (num_y,) of the cell centres."""
        xs = self.origin_x + np.arange(self.num_x) * self.resolution
        ys = self.origin_y + np.arange(self.num_y) * self.resolution
        return xs, ys

    @classmethod
    def from_rows(
        cls,
        origin_x: float,
        origin_y: float,
        resolution: float,
        rows: list[np.ndarray],
    ) -> "RasterGrid":
        """Assemble a grid from per-x-index rows (as stored in the project database)."""
        return cls(origin_x=origin_x, origin_y=origin_y, resolution=resolution, values=np.vstack(rows))
