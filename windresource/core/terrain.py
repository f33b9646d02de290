"""Terrain descriptors used by the flow model.

Exposure (per sector, per radius of investigation):

    UW[s] = z(P) - sum(z_i / d_i) / sum(1 / d_i)

where the z_i are terrain elevations sampled on rings and rays inside the
upwind wedge of sector s (the wedge the wind comes from) and d_i their
distance to P. Positive exposure means P stands above its upwind terrain.
DW[s] is the same quantity over the opposite wedge.

Surface roughness (SR) and displacement height (DH) are averages of the
land cover key values over the land cover cells within a fixed radius.
"""

from __future__ import annotations

import numpy as np

from windresource.constants import TerrainConfig
from windresource.core import wind_stats
from windresource.model.grid import RasterGrid
from windresource.model.met_site import Exposure


class TerrainCalculator:
    """Static methods for exposures and SR/DH."""

    @staticmethod
    def wedge_offsets(radius_m: float, num_sectors: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Sample offsets of every sector wedge.

        Returns:
            Tuple (dx, dy, distance), each shaped (num_sectors, num_samples).
        """
        distances = np.linspace(TerrainConfig.EXPOSURE_MIN_DISTANCE_M, radius_m, TerrainConfig.EXPOSURE_RADIAL_STEPS)
        width = wind_stats.sector_width_deg(num_sectors)
        # Rays spread over the wedge, centred on the sector direction
        ray_offsets = (np.arange(TerrainConfig.EXPOSURE_ANGULAR_STEPS) + 0.5) / TerrainConfig.EXPOSURE_ANGULAR_STEPS - 0.5
        centres = np.arange(num_sectors) * width
        bearings = np.radians(centres[:, None] + ray_offsets[None, :] * width)  # (sectors, rays)

        dist = np.broadcast_to(distances[None, None, :], (num_sectors, len(ray_offsets), len(distances)))
        dx = dist * np.sin(bearings)[:, :, None]
        dy = dist * np.cos(bearings)[:, :, None]
        return dx.reshape(num_sectors, -1), dy.reshape(num_sectors, -1), dist.reshape(num_sectors, -1)

    @staticmethod
    def exposure(topography: RasterGrid, x: float, y: float, radius_m: int, num_sectors: int) -> Exposure:
        """Upwind and downwind exposure of a point for one radius.

        Samples outside the topography are ignored; a wedge with no samples
        inside gets exposure 0.
        """
        elevation = float(topography.sample(x, y))
        dx, dy, dist = TerrainCalculator.wedge_offsets(radius_m=radius_m, num_sectors=num_sectors)
        z = topography.sample(x + dx, y + dy)
        weights = np.where(np.isnan(z), 0.0, 1.0 / dist)
        weight_sums = weights.sum(axis=1)
        mean_z = np.divide(
            (np.nan_to_num(z) * weights).sum(axis=1),
            weight_sums,
            out=np.full(num_sectors, np.nan),
            where=weight_sums > 0,
        )
        upwind = np.nan_to_num(elevation - mean_z, nan=0.0)
        downwind = np.roll(upwind, -(num_sectors // 2))
        return Exposure(radius_m=radius_m, upwind=upwind, downwind=downwind)

    @staticmethod
    def roughness(
        land_cover: RasterGrid,
        land_cover_key: dict[int, tuple[float, float]],
        x: float,
        y: float,
        radius_m: float = TerrainConfig.ROUGHNESS_RADIUS_M,
    ) -> tuple[float, float]:
        """Mean (SR, DH) of the land cover cells within radius_m of (x, y).

        Codes missing from the key get the default roughness. With no cells
        in range the defaults are returned.
        """
        step = land_cover.resolution
        offsets = np.arange(-radius_m, radius_m + step, step)
        gx, gy = np.meshgrid(offsets, offsets, indexing="ij")
        in_circle = np.hypot(gx, gy) <= radius_m
        codes = land_cover.sample_nearest(x + gx[in_circle], y + gy[in_circle])
        codes = codes[~np.isnan(codes)].astype(int)
        if len(codes) == 0:
            return TerrainConfig.DEFAULT_ROUGHNESS_M, TerrainConfig.DEFAULT_DISPLACEMENT_M

        sr, dh = TerrainCalculator.lookup_key(codes=codes, land_cover_key=land_cover_key)
        return float(sr.mean()), float(dh.mean())

    @staticmethod
    def lookup_key(codes: np.ndarray, land_cover_key: dict[int, tuple[float, float]]) -> tuple[np.ndarray, np.ndarray]:
        """(SR, DH) per land cover code; codes missing from the key get the defaults."""
        sr = np.full(codes.shape, TerrainConfig.DEFAULT_ROUGHNESS_M)
        dh = np.full(codes.shape, TerrainConfig.DEFAULT_DISPLACEMENT_M)
        for code, (rough, disp) in land_cover_key.items():
            hit = codes == code
            sr[hit] = rough
            dh[hit] = disp
        return sr, dh
