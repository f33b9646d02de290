"""WRG export: write a wind speed map as a WAsP Wind Resource Grid (.wrg).

Header line, then one line per node (x outer, y inner). Every field is
left-aligned and space-padded to its WRGConfig width; whole numbers print
without a decimal point.

    numX numY minX minY resolution
    GridPoint x y elev height A k powerDensity numSectors [freq A k] * numSectors

Sector frequencies are rounded to 1/1000, sector A to 1/10 m/s and sector k
to 1/100, written as integers. The Weibull shape of each sector comes from
the inverse-distance weighted met distributions; the scale is set so the
Weibull mean matches the mapped sector wind speed.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.special import gamma

from windresource.constants import WRGConfig
from windresource.core import wind_stats
from windresource.core.errors import DataIOError, ValidationError
from windresource.core.site_calibration import MIN_IDW_DISTANCE_M
from windresource.model.met_site import WindDistribution
from windresource.model.requests import StageKind, WRGExportParams
from windresource.model.results import StageOutput
from windresource.model.snapshot import DomainSnapshot
from windresource.model.wind_map import MapType, WindMap
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def wrg_field(value: float | int | str, width: int) -> str:
    """Left-aligned, space-padded field. 12.0 prints as "12"."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).ljust(width)


def node_distribution(snapshot: DomainSnapshot, x: float, y: float) -> WindDistribution | None:
    """Inverse-distance-squared weighted met distribution at (x, y)."""
    mets = snapshot.mets_with_wind()
    if not mets:
        return None
    distances = np.array([max(np.hypot(m.easting - x, m.northing - y), MIN_IDW_DISTANCE_M) for m in mets])
    return WindDistribution.weighted_average(dists=[m.effective_wind for m in mets], weights=1.0 / distances**2)


def weibull_scale(mean_ws: float, k: float) -> float:
    return float(mean_ws / gamma(1 + 1 / k)) if k > 0 else 0.0


def format_header(wind_map: WindMap) -> str:
    return (
        wrg_field(wind_map.num_x, WRGConfig.HEADER_NUM_X)
        + wrg_field(wind_map.num_y, WRGConfig.HEADER_NUM_Y)
        + wrg_field(float(wind_map.min_x), WRGConfig.HEADER_MIN_X)
        + wrg_field(float(wind_map.min_y), WRGConfig.HEADER_MIN_Y)
        + wrg_field(float(wind_map.resolution), 0)
    )


def format_node(
    x: float,
    y: float,
    elevation: float,
    height: float,
    mean_ws: float,
    sector_ws: np.ndarray,
    dist: WindDistribution | None,
    air_density: float,
) -> str:
    """One GridPoint line."""
    num_sectors = len(sector_ws)
    if dist is not None:
        _, k = wind_stats.weibull_params(dist.overall_dist, dist.bin_width)
        rose = dist.wind_rose
        sector_k = np.array([wind_stats.weibull_params(row, dist.bin_width)[1] for row in dist.sector_dists])
    else:
        k = 0.0
        rose = np.zeros(num_sectors)
        sector_k = np.zeros(num_sectors)
    a = weibull_scale(mean_ws=mean_ws, k=k)
    power_density = 0.5 * air_density * mean_ws**3

    line = (
        WRGConfig.ROW_LABEL
        + wrg_field(float(x), WRGConfig.EASTING)
        + wrg_field(float(y), WRGConfig.NORTHING)
        + wrg_field(round(float(elevation), 2), WRGConfig.ELEVATION)
        + wrg_field(float(height), WRGConfig.HEIGHT)
        + wrg_field(round(a, 2), WRGConfig.WEIBULL_A)
        + wrg_field(round(k, 3), WRGConfig.WEIBULL_K)
        + wrg_field(round(power_density, 4), WRGConfig.POWER_DENSITY)
        + wrg_field(num_sectors, WRGConfig.NUM_SECTORS)
    )
    for s in range(num_sectors):
        sector_a = weibull_scale(mean_ws=float(sector_ws[s]), k=float(sector_k[s]))
        line += (
            wrg_field(int(round(rose[s] * WRGConfig.FREQUENCY_SCALE)), WRGConfig.SECTOR_FREQUENCY)
            + wrg_field(int(round(sector_a * WRGConfig.A_SCALE)), WRGConfig.SECTOR_A)
            + wrg_field(int(round(sector_k[s] * WRGConfig.K_SCALE)), WRGConfig.SECTOR_K)
        )
    return line.rstrip()


class WRGExportRunner(StageRunner):
    kind = StageKind.WRG_EXPORT

    def execute(self, params: WRGExportParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        wind_map = snapshot.maps.get(params.map_name)
        if wind_map is None:
            raise ValidationError(f"Unknown map {params.map_name}")
        if wind_map.map_type is not MapType.WS:
            raise ValidationError(
                f"WRG export needs a wind speed map, {wind_map.name} is {wind_map.map_type.display_name}"
            )
        if not wind_map.is_complete:
            raise ValidationError(f"Map {wind_map.name} is not complete; generate it first")

        air_density = params.air_density if params.air_density is not None else WRGConfig.DEFAULT_AIR_DENSITY_KG_M3
        output_path = params.output_path
        ctx.add_rollback(f"Delete partial {output_path}", lambda: output_path.unlink(missing_ok=True))

        num_rows = 0
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w") as f:
                f.write(format_header(wind_map) + "\n")
                for ix in range(wind_map.num_x):
                    ctx.checkpoint()
                    for iy in range(wind_map.num_y):
                        x, y = wind_map.node_xy(x_index=ix, y_index=iy)
                        line = format_node(
                            x=x,
                            y=y,
                            elevation=wind_map.elevations[ix, iy],
                            height=snapshot.modeled_height,
                            mean_ws=float(wind_map.parameter_to_map[ix, iy]),
                            sector_ws=wind_map.sector_param_to_map[ix, iy],
                            dist=node_distribution(snapshot=snapshot, x=x, y=y),
                            air_density=air_density,
                        )
                        f.write(line + "\n")
                        num_rows += 1
                    ctx.report(percent=100.0 * (ix + 1) / wind_map.num_x, message="Exporting WRG file...")
        except OSError as e:
            raise DataIOError(f"Cannot write WRG file {output_path}: {e}") from e

        logger.info(f"WRG export: {num_rows} grid points written to {output_path}")
        return StageOutput(mutations=(f"wrote {output_path}",), payload=output_path)
