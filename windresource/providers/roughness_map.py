"""WAsP .MAP roughness contour files.

File layout: 4 header lines, then contour blocks. Each block starts with a
line of numbers followed by n_points "x y" pairs (any number per line):

    z0_left z0_right n_points                 roughness change line
    z0_left z0_right elevation n_points       combined line
    elevation n_points                        height contour (ignored)

Left/right are seen walking along the line in point order. A grid cell
gets the roughness of the side of its nearest roughness line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import shapely
from shapely import LineString, STRtree

from windresource.constants import TerrainConfig
from windresource.core.errors import DataIOError, ValidationError
from windresource.model.grid import RasterGrid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoughnessContour:
    left_roughness: float
    right_roughness: float
    line: LineString


class RoughnessMapReader:
    """Parses .MAP files and rasterizes their roughness lines."""

    @staticmethod
    def parse(path: Path) -> list[RoughnessContour]:
        """Read every roughness line of a .MAP file.

        Raises:
            DataIOError: File missing or unreadable.
            ValidationError: Malformed block or no roughness lines.
        """
        path = Path(path)
        try:
            lines = path.read_text().splitlines()
        except OSError as e:
            raise DataIOError(f"Cannot read roughness map {path}: {e}") from e

        contours = []
        body = [line.split() for line in lines[TerrainConfig.MAP_HEADER_LINES :]]
        row = 0
        try:
            while row < len(body):
                header = [float(t) for t in body[row]]
                row += 1
                if not header:
                    continue
                num_points = int(header[-1])
                coords: list[str] = []
                while len(coords) < 2 * num_points:
                    coords.extend(body[row])
                    row += 1
                points = np.array(coords[: 2 * num_points], dtype=np.float64).reshape(num_points, 2)
                if len(header) >= 3 and num_points >= 2:
                    contours.append(
                        RoughnessContour(left_roughness=header[0], right_roughness=header[1], line=LineString(points))
                    )
        except (ValueError, IndexError) as e:
            raise ValidationError(f"{path.name}: malformed contour block near line {row + TerrainConfig.MAP_HEADER_LINES}: {e}") from e

        if not contours:
            raise ValidationError(f"{path.name} contains no roughness lines")
        logger.info(f"Parsed {len(contours)} roughness lines from {path.name}")
        return contours

    @staticmethod
    def rasterize(
        contours: list[RoughnessContour],
        resolution: float = TerrainConfig.ROUGHNESS_GRID_RESO_M,
        bounds: tuple[float, float, float, float] | None = None,
    ) -> tuple[RasterGrid, dict[int, tuple[float, float]]]:
        """Assign every grid cell the roughness of its nearest line side.

        Args:
            contours: Parsed roughness lines
            resolution: Cell size (m)
            bounds: (min_x, min_y, max_x, max_y), defaults to the lines' extent

        Returns:
            Tuple (grid of land cover codes, key code -> (roughness, displacement height)).
        """
        lines = [c.line for c in contours]
        if bounds is None:
            bounds = tuple(shapely.total_bounds(lines))
        min_x, min_y, max_x, max_y = bounds
        num_x = int(np.floor((max_x - min_x) / resolution)) + 1
        num_y = int(np.floor((max_y - min_y) / resolution)) + 1
        xs = min_x + np.arange(num_x) * resolution
        ys = min_y + np.arange(num_y) * resolution
        gx, gy = np.meshgrid(xs, ys, indexing="ij")
        points = shapely.points(gx.ravel(), gy.ravel())

        tree = STRtree(lines)
        point_idx, line_idx = tree.query_nearest(points, all_matches=False)
        nearest = np.empty(len(points), dtype=int)
        nearest[point_idx] = line_idx

        side = RoughnessMapReader._left_of(lines=np.array(lines, dtype=object)[nearest], points=points)
        left = np.array([c.left_roughness for c in contours])[nearest]
        right = np.array([c.right_roughness for c in contours])[nearest]
        roughness = np.where(side, left, right)

        unique = np.unique(roughness)
        key = {code + 1: (float(r), TerrainConfig.DEFAULT_DISPLACEMENT_M) for code, r in enumerate(unique)}
        codes = (np.searchsorted(unique, roughness) + 1).astype(np.float64)

        grid = RasterGrid(origin_x=min_x, origin_y=min_y, resolution=resolution, values=codes.reshape(num_x, num_y))
        logger.info(f"Rasterized roughness lines to {num_x} x {num_y} cells, {len(key)} roughness classes")
        return grid, key

    @staticmethod
    def _left_of(lines: np.ndarray, points: np.ndarray) -> np.ndarray:
        """True where a point lies left of its line (walking in point order)."""
        along = shapely.line_locate_point(lines, points)
        length = shapely.length(lines)
        step = np.minimum(1.0, length / 100.0)
        before = shapely.line_interpolate_point(lines, np.maximum(along - step, 0.0))
        after = shapely.line_interpolate_point(lines, np.minimum(along + step, length))
        bx, by = shapely.get_x(before), shapely.get_y(before)
        ax, ay = shapely.get_x(after), shapely.get_y(after)
        px, py = shapely.get_x(points), shapely.get_y(points)
        cross = (ax - bx) * (py - by) - (ay - by) * (px - bx)
        return cross > 0
