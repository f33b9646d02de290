"""ShadowFlickerSimulator - minute-resolution shadow flicker over a representative year.

For every observer point (receptor zone or map cell) and every turbine
within flicker range, the sun direction that puts the rotor between sun and
observer is precomputed once:

    target azimuth  = bearing observer -> turbine
    target altitude = elevation angle observer eye -> hub
    tolerance       = angular radius of the rotor disc seen from the observer

Then, day by day, only minutes between sunrise and sunset are evaluated.
For each such minute with the sun above the horizon an observer is in
shadow when, for at least one turbine in range,

    d_azimuth^2 + d_altitude^2 <= tolerance^2

A minute counts once per observer no matter how many turbines qualify
(turbines are tested in a fixed order and the first hit wins).

Times are local standard time (no daylight saving).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from math import atan, degrees, hypot
from typing import TYPE_CHECKING

import numpy as np

from windresource.constants import ProgressConfig, ShadowFlickerConfig
from windresource.core.cancellation import CancellationContext
from windresource.core.errors import ValidationError
from windresource.core.geo_calculator import GeoCalculator
from windresource.core.progress import ProgressReporter, ProgressThrottle
from windresource.core.solar import SolarCalculator
from windresource.model.site_suitability import FlickerAngles, FlickerGrid, FlickerStats, ShadowFlickerResult

if TYPE_CHECKING:
    from windresource.model.snapshot import DomainSnapshot

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class FlickerTurbine:
    turbine_id: str
    easting: float
    northing: float
    hub_elevation: float  # ground elevation + hub height (m)
    rotor_radius: float


@dataclass(frozen=True)
class FlickerObserver:
    id: str
    easting: float
    northing: float
    eye_elevation: float


class ShadowFlickerSimulator:
    """Accumulates shadow minutes per (month, hour) for zones and map cells.

    Example:
        sim = ShadowFlickerSimulator(lat=45.0, lon=-75.0)
        result = sim.run(zones=zones, turbines=turbines)
    """

    def __init__(
        self,
        lat: float,
        lon: float,
        utc_offset: int | None = None,
        year: int = ShadowFlickerConfig.YEAR,
        reporter: ProgressReporter | None = None,
        cancellation: CancellationContext | None = None,
    ) -> None:
        self.lat = lat
        self.lon = lon
        self.utc_offset = utc_offset if utc_offset is not None else GeoCalculator.utc_offset_hours(lon=lon)
        self.year = year
        self.reporter = reporter
        self.cancellation = cancellation or CancellationContext()
        self._throttle = ProgressThrottle(every_n=ProgressConfig.SHADOW_MINUTE_INTERVAL)

    # =========================================================================
    # Inputs
    # =========================================================================

    @staticmethod
    def prepare_turbines(snapshot: "DomainSnapshot", turbine_ids: tuple[str, ...] | None = None) -> list[FlickerTurbine]:
        """Turbine geometry from the snapshot.

        Raises:
            ValidationError: No turbines, unknown turbine or missing power curve.
        """
        ids = list(turbine_ids) if turbine_ids is not None else list(snapshot.turbines)
        if not ids:
            raise ValidationError("Shadow flicker needs at least one turbine")
        turbines = []
        for tid in ids:
            turbine = snapshot.turbines.get(tid)
            if turbine is None:
                raise ValidationError(f"Unknown turbine {tid}")
            power_curve = snapshot.get_power_curve(turbine.power_curve)
            if power_curve is None:
                raise ValidationError(f"Turbine {tid} has no power curve")
            turbines.append(
                FlickerTurbine(
                    turbine_id=tid,
                    easting=turbine.easting,
                    northing=turbine.northing,
                    hub_elevation=turbine.elevation + power_curve.hub_height,
                    rotor_radius=power_curve.rotor_radius,
                )
            )
        return turbines

    @staticmethod
    def prepare_zones(snapshot: "DomainSnapshot") -> list[FlickerObserver]:
        return [
            FlickerObserver(id=r.id, easting=r.easting, northing=r.northing, eye_elevation=r.eye_elevation)
            for r in snapshot.receptors.values()
        ]

    @staticmethod
    def grid_observers(grid: FlickerGrid, ground_elevations: np.ndarray | None = None) -> list[FlickerObserver]:
        """One observer per map cell, x-major order. NaN elevations count as 0."""
        xs, ys = grid.cell_xy()
        ground = np.zeros(len(xs)) if ground_elevations is None else np.nan_to_num(ground_elevations, nan=0.0)
        return [
            FlickerObserver(id=f"cell_{i}", easting=float(x), northing=float(y), eye_elevation=float(z) + grid.observer_height)
            for i, (x, y, z) in enumerate(zip(xs, ys, ground))
        ]

    @staticmethod
    def flicker_angles(observer: FlickerObserver, turbines: list[FlickerTurbine]) -> FlickerAngles:
        """Target sun directions for one observer, turbines beyond range excluded."""
        ids, azimuths, altitudes, variances = [], [], [], []
        for t in turbines:
            horizontal = hypot(t.easting - observer.easting, t.northing - observer.northing)
            max_distance = ShadowFlickerConfig.MAX_DISTANCE_ROTOR_DIAMETERS * 2 * t.rotor_radius
            if horizontal > max_distance:
                continue
            vertical = t.hub_elevation - observer.eye_elevation
            ids.append(t.turbine_id)
            azimuths.append(
                GeoCalculator.planar_bearing_deg(x1=observer.easting, y1=observer.northing, x2=t.easting, y2=t.northing)
            )
            altitudes.append(GeoCalculator.elevation_angle_deg(horizontal_m=horizontal, vertical_m=vertical))
            variances.append(degrees(atan(t.rotor_radius / max(hypot(horizontal, vertical), 1e-6))))
        return FlickerAngles(
            turbine_ids=tuple(ids),
            target_azimuth=np.array(azimuths),
            target_altitude=np.array(altitudes),
            angle_variance=np.array(variances),
        )

    # =========================================================================
    # Simulation
    # =========================================================================

    def run(
        self,
        zones: list[FlickerObserver],
        turbines: list[FlickerTurbine],
        grid: FlickerGrid | None = None,
        grid_elevations: np.ndarray | None = None,
    ) -> ShadowFlickerResult:
        """Accumulate a full year for all zones and, optionally, every map cell.

        Raises:
            StageCancelled: Cancellation requested; nothing is kept.
        """
        observers = list(zones)
        if grid is not None:
            observers += self.grid_observers(grid=grid, ground_elevations=grid_elevations)
        num_zones = len(zones)
        num_obs = len(observers)

        target_az, target_alt, tolerance2 = self._angle_table(observers=observers, turbines=turbines)
        minutes_12x24 = np.zeros((num_obs, 12, 24), dtype=np.int64)
        max_daily = np.zeros(num_zones, dtype=np.int64)
        max_day: list[date | None] = [None] * num_zones

        logger.info(
            f"Shadow flicker {self.year}: {num_zones} zones, {num_obs - num_zones} map cells, "
            f"{len(turbines)} turbines, UTC offset {self.utc_offset:+d} h"
        )

        counted = 0
        day = date(self.year, 1, 1)
        while day.year == self.year:
            self.cancellation.checkpoint()
            hits, local_minutes = self._evaluate_day(day=day, target_az=target_az, target_alt=target_alt, tolerance2=tolerance2)

            if hits is not None:
                hours = local_minutes // 60
                for hour in np.unique(hours):
                    minutes_12x24[:, day.month - 1, hour] += hits[:, hours == hour].sum(axis=1)

                daily = hits[:num_zones].sum(axis=1)
                for z in np.flatnonzero(daily > max_daily):
                    max_daily[z] = daily[z]
                    max_day[z] = day

                previous = counted
                counted += len(local_minutes)
                if self._throttle.crossed(previous=previous, current=counted):
                    self._report(
                        percent=min(100.0 * counted / ProgressConfig.SHADOW_EXPECTED_MINUTES, 100.0),
                        message=f"Calculating shadow flicker: {day.isoformat()}",
                    )
            day += timedelta(days=1)

        zone_stats = {
            zone.id: FlickerStats(
                shadow_mins_12x24=minutes_12x24[i],
                max_daily_shadow_mins=int(max_daily[i]),
                max_shadow_day=max_day[i],
            )
            for i, zone in enumerate(zones)
        }
        map_minutes = None
        if grid is not None:
            map_minutes = minutes_12x24[num_zones:].reshape(grid.num_x, grid.num_y, 12, 24)

        return ShadowFlickerResult(year=self.year, zone_stats=zone_stats, map_minutes=map_minutes, grid=grid)

    def _angle_table(
        self, observers: list[FlickerObserver], turbines: list[FlickerTurbine]
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Padded (num_obs, max_turbines) arrays of targets. Padding has tolerance -1 (never hit)."""
        angles = [self.flicker_angles(observer=o, turbines=turbines) for o in observers]
        width = max((len(a) for a in angles), default=0)
        target_az = np.zeros((len(observers), width))
        target_alt = np.zeros((len(observers), width))
        tolerance2 = np.full((len(observers), width), -1.0)
        for i, a in enumerate(angles):
            n = len(a)
            target_az[i, :n] = a.target_azimuth
            target_alt[i, :n] = a.target_altitude
            tolerance2[i, :n] = a.angle_variance**2
        return target_az, target_alt, tolerance2

    def _evaluate_day(
        self,
        day: date,
        target_az: np.ndarray,
        target_alt: np.ndarray,
        tolerance2: np.ndarray,
    ) -> tuple[np.ndarray | None, np.ndarray]:
        """Shadow hits of one day.

        Returns:
            Tuple (hits[num_obs, num_minutes] bool, local minute of day per
            column). hits is None when the sun never rises.
        """
        bracket = SolarCalculator.sunrise_sunset(day=day, lat=self.lat, lon=self.lon, utc_offset=self.utc_offset)
        if bracket is None:
            return None, np.array([], dtype=int)

        local_minutes = np.arange(MINUTES_PER_DAY)
        local_minutes = local_minutes[bracket.contains(local_minutes / 60.0)]

        midnight_utc = np.datetime64(datetime(day.year, day.month, day.day)) - np.timedelta64(self.utc_offset, "h")
        times = midnight_utc + local_minutes.astype("timedelta64[m]")
        altitude, azimuth = SolarCalculator.sun_position(
            jd=SolarCalculator.julian_date(times), lat=self.lat, lon=self.lon
        )
        sun_up = altitude > ShadowFlickerConfig.MIN_SUN_ALTITUDE_DEG
        local_minutes = local_minutes[sun_up]
        altitude = altitude[sun_up]
        azimuth = azimuth[sun_up]

        hits = np.zeros((target_az.shape[0], len(local_minutes)), dtype=bool)
        for k in range(target_az.shape[1]):
            d_az = GeoCalculator.angle_difference_deg(azimuth[None, :], target_az[:, k, None])
            d_alt = altitude[None, :] - target_alt[:, k, None]
            hits |= d_az**2 + d_alt**2 <= tolerance2[:, k, None]
        return hits, local_minutes

    def _report(self, percent: float, message: str) -> None:
        if self.reporter is not None:
            self.reporter.report(percent=percent, message=message)
