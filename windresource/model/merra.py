"""MerraReference - long-term reanalysis wind at a site."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class MerraReference:
    """Hourly MERRA2 series interpolated to a site, in local standard time.

    Attributes:
        lat: Site latitude (degrees)
        lon: Site longitude (degrees)
        utc_offset: Hours added to UTC to get local standard time
        timestamps: Hourly local timestamps (datetime64[s])
        ws: Wind speed at 50 m (m/s)
        wd: Wind direction at 50 m (degrees, direction wind comes from)
        ws_10m: Wind speed at 10 m (m/s)
        temperature: Air temperature at 10 m (K)
        pressure: Surface pressure (Pa)
        sea_level_pressure: Sea level pressure (Pa)
    """

    lat: float
    lon: float
    utc_offset: int
    timestamps: np.ndarray
    ws: np.ndarray
    wd: np.ndarray
    ws_10m: np.ndarray
    temperature: np.ndarray
    pressure: np.ndarray
    sea_level_pressure: np.ndarray

    def __len__(self) -> int:
        return len(self.timestamps)

    def _months(self) -> np.ndarray:
        return self.timestamps.astype("datetime64[M]").astype(int) % 12 + 1

    def _years(self) -> np.ndarray:
        return self.timestamps.astype("datetime64[Y]").astype(int) + 1970

    def monthly_mean_ws(self) -> np.ndarray:
        """Mean WS per calendar month (12,), NaN for months without data."""
        months = self._months()
        return np.array([self.ws[months == m].mean() if np.any(months == m) else np.nan for m in range(1, 13)])

    def annual_mean_ws(self) -> dict[int, float]:
        years = self._years()
        return {int(y): float(self.ws[years == y].mean()) for y in np.unique(years)}

    def mean_temperature(self) -> float:
        return float(self.temperature.mean()) if len(self) else float("nan")

    def air_density(self) -> np.ndarray:
        """Air density (kg/m^3) from surface pressure and 10 m temperature."""
        return self.pressure / (287.05 * self.temperature)
