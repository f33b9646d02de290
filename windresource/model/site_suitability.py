"""Site suitability entities: ice throw and shadow flicker inputs and outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

import numpy as np

from windresource.constants import IceThrowConfig


# =============================================================================
# Ice Throw
# =============================================================================


@dataclass(frozen=True)
class IceThrowSettings:
    """User settings of the ice throw model.

    Attributes:
        throws_per_ice_day: Ice fragments released per turbine per icing day
        ice_days_per_year: Icing days per year
        years_to_model: Number of simulated years
        seed: Seed of the random source (same seed -> same landing points)
    """

    throws_per_ice_day: int = IceThrowConfig.DEFAULT_THROWS_PER_ICE_DAY
    ice_days_per_year: int = IceThrowConfig.DEFAULT_ICE_DAYS_PER_YEAR
    years_to_model: int = IceThrowConfig.DEFAULT_YEARS_TO_MODEL
    seed: int = 0

    @property
    def throws_per_year(self) -> int:
        return self.throws_per_ice_day * self.ice_days_per_year


@dataclass(frozen=True)
class IceHit:
    """Landing point of one ice fragment.

    Attributes:
        turbine_id: Turbine that shed the fragment
        dx: Landing offset east of the tower (m)
        dy: Landing offset north of the tower (m)
        wind_speed: Sampled hub-height wind speed (m/s)
        direction: Wind direction bucket (degrees, direction wind comes from)
    """

    turbine_id: str
    dx: float
    dy: float
    wind_speed: float
    direction: int

    @property
    def distance_m(self) -> float:
        return float(np.hypot(self.dx, self.dy))


@dataclass
class YearlyIceHits:
    """Landing records of one simulated year, stored column-wise.

    All arrays have one entry per fragment, grouped by turbine in
    simulation order.
    """

    year: int
    turbine_ids: np.ndarray
    dx: np.ndarray
    dy: np.ndarray
    wind_speed: np.ndarray
    direction: np.ndarray

    def __len__(self) -> int:
        return len(self.dx)

    def distances_m(self) -> np.ndarray:
        return np.hypot(self.dx, self.dy)

    def mask_for(self, turbine_id: str) -> np.ndarray:
        return self.turbine_ids == turbine_id

    def records(self) -> list[IceHit]:
        return [
            IceHit(turbine_id=str(t), dx=float(x), dy=float(y), wind_speed=float(ws), direction=int(d))
            for t, x, y, ws, d in zip(self.turbine_ids, self.dx, self.dy, self.wind_speed, self.direction)
        ]

    @classmethod
    def concatenate(cls, year: int, parts: list["YearlyIceHits"]) -> "YearlyIceHits":
        if not parts:
            return cls(
                year=year,
                turbine_ids=np.array([], dtype=object),
                dx=np.array([]),
                dy=np.array([]),
                wind_speed=np.array([]),
                direction=np.array([], dtype=int),
            )
        return cls(
            year=year,
            turbine_ids=np.concatenate([p.turbine_ids for p in parts]),
            dx=np.concatenate([p.dx for p in parts]),
            dy=np.concatenate([p.dy for p in parts]),
            wind_speed=np.concatenate([p.wind_speed for p in parts]),
            direction=np.concatenate([p.direction for p in parts]),
        )


@dataclass
class IceThrowResult:
    """Output of an ice throw run.

    Attributes:
        settings: Settings the run used
        years: Landing records per simulated year
        sector_counts: Yearly iterations per sector, by turbine
    """

    settings: IceThrowSettings
    years: list[YearlyIceHits]
    sector_counts: dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def total_hits(self) -> int:
        return sum(len(y) for y in self.years)

    def max_distance_m(self) -> float:
        maxima = [float(y.distances_m().max()) for y in self.years if len(y)]
        return max(maxima) if maxima else 0.0

    def fraction_beyond(self, distance_m: float) -> float:
        """Share of fragments landing farther than distance_m from their tower."""
        total = self.total_hits
        if total == 0:
            return 0.0
        beyond = sum(int(np.count_nonzero(y.distances_m() > distance_m)) for y in self.years)
        return beyond / total


# =============================================================================
# Shadow Flicker
# =============================================================================


@dataclass(frozen=True)
class ShadowReceptor:
    """Observer zone (house, road segment) evaluated for shadow flicker.

    Attributes:
        id: Zone ID (e.g. "Z1")
        easting: UTM easting (m)
        northing: UTM northing (m)
        elevation: Ground elevation (m)
        height: Observer height above ground (m), e.g. a window
    """

    id: str
    easting: float
    northing: float
    elevation: float = 0.0
    height: float = 2.0

    @property
    def eye_elevation(self) -> float:
        return self.elevation + self.height


@dataclass(frozen=True)
class FlickerAngles:
    """Sun directions that put each turbine's rotor between sun and observer.

    One entry per turbine within flicker range, in turbine order.

    Attributes:
        turbine_ids: Turbines within range
        target_azimuth: Azimuth from observer to hub (degrees)
        target_altitude: Elevation angle from observer to hub (degrees)
        angle_variance: Angular radius of the rotor disc seen from the observer (degrees)
    """

    turbine_ids: tuple[str, ...]
    target_azimuth: np.ndarray
    target_altitude: np.ndarray
    angle_variance: np.ndarray

    def __len__(self) -> int:
        return len(self.turbine_ids)


@dataclass(frozen=True)
class FlickerGrid:
    """Regular grid of map cells evaluated for shadow flicker."""

    min_x: float
    min_y: float
    resolution: float
    num_x: int
    num_y: int
    observer_height: float = 2.0

    def cell_xy(self) -> tuple[np.ndarray, np.ndarray]:
        """Flattened cell eastings/northings in x-major order."""
        xs = self.min_x + np.arange(self.num_x) * self.resolution
        ys = self.min_y + np.arange(self.num_y) * self.resolution
        gx, gy = np.meshgrid(xs, ys, indexing="ij")
        return gx.ravel(), gy.ravel()


@dataclass
class FlickerStats:
    """Shadow minutes of one observer."""

    shadow_mins_12x24: np.ndarray = field(default_factory=lambda: np.zeros((12, 24), dtype=np.int64))
    max_daily_shadow_mins: int = 0
    max_shadow_day: date | None = None

    @property
    def total_per_month(self) -> np.ndarray:
        return self.shadow_mins_12x24.sum(axis=1)

    @property
    def total_per_year(self) -> int:
        return int(self.shadow_mins_12x24.sum())


@dataclass
class ShadowFlickerResult:
    """Output of a shadow flicker run.

    Attributes:
        zone_stats: Statistics per receptor ID
        map_minutes: Array (num_x, num_y, 12, 24) of map cell minutes, or None
        grid: Map grid definition, or None
    """

    year: int
    zone_stats: dict[str, FlickerStats]
    map_minutes: np.ndarray | None = None
    grid: FlickerGrid | None = None

    def map_total_per_year(self) -> np.ndarray | None:
        return None if self.map_minutes is None else self.map_minutes.sum(axis=(2, 3))

    def map_total_per_month(self) -> np.ndarray | None:
        return None if self.map_minutes is None else self.map_minutes.sum(axis=3)
