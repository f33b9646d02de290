"""Map generation: exposure, wind speed or energy at every node of a map grid.

Nodes already holding a non-zero value are skipped, so a cancelled map
resumes where it stopped. Each node is written in one step; the map is
marked complete only once every node is done.
"""

from __future__ import annotations

import logging

import numpy as np

from windresource.constants import MapConfig, TurbineConfig
from windresource.core.errors import ValidationError
from windresource.core.progress import ProgressClock, ProgressThrottle
from windresource.core.site_calibration import SiteCalibrator
from windresource.core.wake import WakeCalculator
from windresource.model.requests import MapGenerationParams, StageKind
from windresource.model.results import StageOutput
from windresource.model.snapshot import DomainSnapshot
from windresource.model.wind_map import MapType, WindMap
from windresource.stages.base import StageContext, StageRunner
from windresource.stages.turbine_calcs import exposure_at, require_site_model

logger = logging.getLogger(__name__)


def _done_value(value: float) -> float:
    return value if value != 0 else MapConfig.DONE_EPSILON


class MapGenerationRunner(StageRunner):
    kind = StageKind.MAP_GENERATION

    def execute(self, params: MapGenerationParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        wind_map = snapshot.maps.get(params.map_name)
        if wind_map is None:
            raise ValidationError(f"Unknown map {params.map_name}")
        if snapshot.topography is None:
            raise ValidationError("Import topography before generating maps")
        self._validate(snapshot=snapshot, wind_map=wind_map, params=params)

        todo = [
            (ix, iy)
            for ix in range(wind_map.num_x)
            for iy in range(wind_map.num_y)
            if not wind_map.is_node_done(x_index=ix, y_index=iy)
        ]
        skipped = wind_map.num_nodes - len(todo)
        if skipped:
            logger.info(f"Map {wind_map.name}: resuming, {skipped} of {wind_map.num_nodes} nodes already done")

        clock = ProgressClock(total_units=len(todo))
        throttle = ProgressThrottle(every_n=MapConfig.NODE_PROGRESS_INTERVAL)
        ctx.report(percent=0, message=f"Generating map {wind_map.name}...")
        for count, (ix, iy) in enumerate(todo, start=1):
            ctx.checkpoint()
            x, y = wind_map.node_xy(x_index=ix, y_index=iy)
            value, sector_values, elevation = self._evaluate_node(snapshot=snapshot, wind_map=wind_map, params=params, x=x, y=y)
            wind_map.elevations[ix, iy] = elevation
            wind_map.sector_param_to_map[ix, iy] = sector_values
            wind_map.parameter_to_map[ix, iy] = _done_value(value)
            if ctx.store is not None:
                ctx.store.add_node(x=x, y=y, elevation=elevation)
            if throttle.due(count):
                ctx.report(
                    percent=100.0 * count / len(todo),
                    message=f"Generating map {wind_map.name}. {clock.describe(units_done=count, unit='node')}",
                )

        wind_map.is_complete = True
        return StageOutput(mutations=(f"map {wind_map.name}: {len(todo)} nodes computed, {skipped} resumed",))

    @staticmethod
    def _validate(snapshot: DomainSnapshot, wind_map: WindMap, params: MapGenerationParams) -> None:
        if wind_map.map_type in (MapType.UW_EXPOSURE, MapType.DW_EXPOSURE):
            if wind_map.radius_m is None:
                raise ValidationError(f"Exposure map {wind_map.name} has no radius of investigation")
            return
        require_site_model(snapshot=snapshot, time_of_day=params.time_of_day, season=params.season)
        if wind_map.map_type is MapType.AEP and snapshot.get_power_curve(wind_map.power_curve) is None:
            raise ValidationError(f"Energy map {wind_map.name} needs a known power curve")
        if wind_map.is_waked and wind_map.wake_model_id not in snapshot.wake_models:
            raise ValidationError(f"Unknown wake model {wind_map.wake_model_id}")

    @staticmethod
    def _evaluate_node(
        snapshot: DomainSnapshot, wind_map: WindMap, params: MapGenerationParams, x: float, y: float
    ) -> tuple[float, np.ndarray, float]:
        """(mapped value, per-sector values, ground elevation) at one node."""
        elevation = float(snapshot.topography.sample(x, y))
        if np.isnan(elevation):
            elevation = MapConfig.MISSING_ELEVATION_M

        if wind_map.map_type in (MapType.UW_EXPOSURE, MapType.DW_EXPOSURE):
            exposure = exposure_at(snapshot=snapshot, x=x, y=y, radius_m=wind_map.radius_m)
            sectors = exposure.upwind if wind_map.map_type is MapType.UW_EXPOSURE else exposure.downwind
            met = snapshot.closest_met(easting=x, northing=y)
            weights = met.effective_wind.wind_rose if met is not None else np.full(len(sectors), 1.0 / len(sectors))
            return float(weights @ sectors), sectors, elevation

        model = snapshot.site_model(time_of_day=params.time_of_day, season=params.season)
        predictors = [snapshot.mets[mid] for mid in model.met_ids if mid in snapshot.mets]
        exposure = exposure_at(snapshot=snapshot, x=x, y=y, radius_m=model.radius_m)
        dist = SiteCalibrator.estimate(model=model, predictors=predictors, target_exposure=exposure, x=x, y=y)

        if wind_map.is_waked:
            wake_model = snapshot.wake_models[wind_map.wake_model_id]
            wake_curve = snapshot.get_power_curve(wake_model.power_curve)
            deficits = WakeCalculator.sector_deficits(
                x=x,
                y=y,
                upstream_xy=np.array([(t.easting, t.northing) for t in snapshot.turbines.values()]),
                rotor_radius=wake_curve.rotor_radius,
                thrust_coeff=wake_curve.thrust_coeff,
                decay_constant=wake_model.decay_constant,
                num_sectors=snapshot.num_sectors,
                max_distance_m=wake_model.max_distance_m,
            )
            dist = dist.scaled(sector_ratios=1.0 - deficits)

        if wind_map.map_type is MapType.WS:
            return dist.mean_ws, dist.sector_mean_ws, elevation

        power_curve = snapshot.get_power_curve(wind_map.power_curve)
        centres = (np.arange(dist.num_bins) + 0.5) * dist.bin_width
        sector_mean_kw = dist.sector_dists @ power_curve.power_at(centres)
        sector_aep = dist.wind_rose * sector_mean_kw * TurbineConfig.HOURS_PER_YEAR / 1000.0
        return power_curve.annual_energy_mwh(dist), sector_aep, elevation
