"""MetSite - measurement mast with its wind climate.

A met site carries a free-stream wind distribution (wind rose plus sector
speed distributions), optionally the time series it was built from, and the
terrain descriptors the flow model needs (exposures per radius, SR/DH).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from windresource.constants import MetCalcConfig
from windresource.core import wind_stats


@dataclass
class WindDistribution:
    """Wind rose and sector wind speed distributions.

    Attributes:
        wind_rose: Array (num_sectors,), fractions summing to 1
        sector_dists: Array (num_sectors, num_bins), rows summing to 1
        bin_width: Width of a wind speed bin (m/s)
    """

    wind_rose: np.ndarray
    sector_dists: np.ndarray
    bin_width: float = 1.0

    def __post_init__(self) -> None:
        self.wind_rose = np.asarray(self.wind_rose, dtype=np.float64)
        self.sector_dists = np.atleast_2d(np.asarray(self.sector_dists, dtype=np.float64))
        if self.sector_dists.shape[0] != len(self.wind_rose):
            raise ValueError(
                f"Sector distributions have {self.sector_dists.shape[0]} rows for {len(self.wind_rose)} sectors"
            )

    @property
    def num_sectors(self) -> int:
        return len(self.wind_rose)

    @property
    def num_bins(self) -> int:
        return self.sector_dists.shape[1]

    @property
    def sector_mean_ws(self) -> np.ndarray:
        return wind_stats.mean_speed(self.sector_dists, self.bin_width)

    @property
    def mean_ws(self) -> float:
        return float(self.wind_rose @ self.sector_mean_ws)

    @property
    def overall_dist(self) -> np.ndarray:
        """All-direction speed distribution (rose-weighted sum of sectors)."""
        return self.wind_rose @ wind_stats.normalize_rows(self.sector_dists)

    def cdfs(self) -> np.ndarray:
        return wind_stats.sector_cdfs(self.sector_dists)

    def scaled(self, sector_ratios: np.ndarray) -> "WindDistribution":
        """Copy with each sector's speeds multiplied by its ratio."""
        return WindDistribution(
            wind_rose=self.wind_rose.copy(),
            sector_dists=wind_stats.stretch_distribution(self.sector_dists, self.bin_width, sector_ratios),
            bin_width=self.bin_width,
        )

    def copy(self) -> "WindDistribution":
        return WindDistribution(self.wind_rose.copy(), self.sector_dists.copy(), self.bin_width)

    @classmethod
    def from_series(
        cls,
        ws: np.ndarray,
        wd: np.ndarray,
        num_sectors: int,
        num_bins: int,
        bin_width: float = 1.0,
    ) -> "WindDistribution":
        rose, dists = wind_stats.sector_histogram(ws, wd, num_sectors, num_bins, bin_width)
        return cls(wind_rose=rose, sector_dists=dists, bin_width=bin_width)

    @classmethod
    def weighted_average(cls, dists: list["WindDistribution"], weights: np.ndarray) -> "WindDistribution":
        """Weighted mean of compatible distributions (same sectors, bins and bin width)."""
        weights = np.asarray(weights, dtype=np.float64)
        weights = weights / weights.sum()
        rose = sum(w * d.wind_rose for w, d in zip(weights, dists))
        sector = sum(w * wind_stats.normalize_rows(d.sector_dists) for w, d in zip(weights, dists))
        return cls(wind_rose=rose, sector_dists=wind_stats.normalize_rows(sector), bin_width=dists[0].bin_width)

    def to_dict(self) -> dict:
        return {
            "wind_rose": self.wind_rose.tolist(),
            "sector_dists": self.sector_dists.tolist(),
            "bin_width": self.bin_width,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WindDistribution":
        return cls(wind_rose=np.array(data["wind_rose"]), sector_dists=np.array(data["sector_dists"]), bin_width=data["bin_width"])


@dataclass
class Exposure:
    """Upwind and downwind exposure (m) per sector for one radius of investigation."""

    radius_m: int
    upwind: np.ndarray
    downwind: np.ndarray


@dataclass
class MetTimeSeries:
    """Hourly (or finer) measured wind at the met's modeled height, local time."""

    timestamps: np.ndarray  # datetime64[s]
    ws: np.ndarray
    wd: np.ndarray

    def filter_mask(self, time_of_day: str, season: str) -> np.ndarray:
        """Boolean mask selecting a time-of-day / season subset."""
        ts = self.timestamps.astype("datetime64[s]")
        hours = (ts - ts.astype("datetime64[D]")).astype("timedelta64[h]").astype(int)
        months = ts.astype("datetime64[M]").astype(int) % 12 + 1

        mask = np.ones(len(ts), dtype=bool)
        if time_of_day == "Day":
            mask &= (hours >= MetCalcConfig.DAY_START_HOUR) & (hours < MetCalcConfig.DAY_END_HOUR)
        elif time_of_day == "Night":
            mask &= (hours < MetCalcConfig.DAY_START_HOUR) | (hours >= MetCalcConfig.DAY_END_HOUR)

        season_months = {
            "Winter": (12, 1, 2),
            "Spring": (3, 4, 5),
            "Summer": (6, 7, 8),
            "Fall": (9, 10, 11),
        }
        if season != "All":
            mask &= np.isin(months, season_months[season])
        return mask


@dataclass
class MetSite:
    """Measurement site.

    Attributes:
        id: Unique met ID (e.g. "M1")
        easting: UTM easting (m)
        northing: UTM northing (m)
        elevation: Ground elevation (m)
        height: Measurement/modeled height above ground (m)
        wind: Free-stream wind distribution at height (None until imported)
        time_series: Optional measured time series behind the distribution
        long_term: Wind distribution after MCP against reference data
        mcp_done: True once MCP has been run for this met
        exposures: Exposure per radius of investigation
        surface_roughness: Averaged roughness length around the met (m)
        displacement_height: Averaged displacement height (m)
    """

    id: str
    easting: float
    northing: float
    elevation: float = 0.0
    height: float = 80.0
    wind: WindDistribution | None = None
    time_series: MetTimeSeries | None = None
    long_term: WindDistribution | None = None
    mcp_done: bool = False
    exposures: dict[int, Exposure] = field(default_factory=dict)
    surface_roughness: float | None = None
    displacement_height: float | None = None

    @property
    def is_time_series(self) -> bool:
        return self.time_series is not None

    @property
    def effective_wind(self) -> WindDistribution | None:
        """Long-term (MCP) distribution if available, else the measured one."""
        return self.long_term if self.long_term is not None else self.wind

    def distribution_for(self, time_of_day: str, season: str, num_bins: int | None = None) -> WindDistribution | None:
        """Wind distribution of a time-of-day/season subset.

        Falls back to the all-data distribution when no time series exists.
        """
        base = self.effective_wind
        if (time_of_day, season) == ("All", "All") or self.time_series is None or base is None:
            return base
        mask = self.time_series.filter_mask(time_of_day=time_of_day, season=season)
        return WindDistribution.from_series(
            ws=self.time_series.ws[mask],
            wd=self.time_series.wd[mask],
            num_sectors=base.num_sectors,
            num_bins=num_bins or base.num_bins,
            bin_width=base.bin_width,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "easting": self.easting,
            "northing": self.northing,
            "elevation": self.elevation,
            "height": self.height,
            "mcp_done": self.mcp_done,
            "wind": self.wind.to_dict() if self.wind else None,
            "long_term": self.long_term.to_dict() if self.long_term else None,
        }
        if self.time_series is not None:
            data["time_series"] = {
                "timestamps": [str(t) for t in self.time_series.timestamps.astype("datetime64[s]")],
                "ws": self.time_series.ws.tolist(),
                "wd": self.time_series.wd.tolist(),
            }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MetSite":
        ts = data.get("time_series")
        return cls(
            id=data["id"],
            easting=data["easting"],
            northing=data["northing"],
            elevation=data["elevation"],
            height=data["height"],
            mcp_done=data["mcp_done"],
            wind=WindDistribution.from_dict(data["wind"]) if data["wind"] else None,
            long_term=WindDistribution.from_dict(data["long_term"]) if data["long_term"] else None,
            time_series=MetTimeSeries(
                timestamps=np.array(ts["timestamps"], dtype="datetime64[s]"),
                ws=np.array(ts["ws"]),
                wd=np.array(ts["wd"]),
            )
            if ts
            else None,
        )
