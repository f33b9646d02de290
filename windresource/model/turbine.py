"""Turbine and PowerCurve.

Reference: power curves list electrical power and blade tip speed against
hub-height wind speed; both are linearly interpolated and zero outside the
tabulated range (parked rotor).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from windresource.constants import TurbineConfig
from windresource.model.met_site import Exposure, WindDistribution


@dataclass
class PowerCurve:
    """Power and tip-speed table of one turbine type.

    Attributes:
        name: Power curve name (e.g. "V117-3.45")
        rotor_diameter: Rotor diameter (m)
        hub_height: Hub height (m)
        wind_speeds: Tabulated wind speeds (m/s), ascending
        power_kw: Electrical power at each wind speed (kW)
        tip_speeds: Blade tip speed at each wind speed (m/s)
        thrust_coeff: Thrust coefficient used by the wake model
    """

    name: str
    rotor_diameter: float
    hub_height: float
    wind_speeds: np.ndarray
    power_kw: np.ndarray
    tip_speeds: np.ndarray
    thrust_coeff: float = TurbineConfig.DEFAULT_THRUST_COEFF

    def __post_init__(self) -> None:
        self.wind_speeds = np.asarray(self.wind_speeds, dtype=np.float64)
        self.power_kw = np.asarray(self.power_kw, dtype=np.float64)
        self.tip_speeds = np.asarray(self.tip_speeds, dtype=np.float64)
        if not (len(self.wind_speeds) == len(self.power_kw) == len(self.tip_speeds)):
            raise ValueError(f"Power curve {self.name}: table columns differ in length")
        if np.any(np.diff(self.wind_speeds) <= 0):
            raise ValueError(f"Power curve {self.name}: wind speeds must be strictly ascending")

    @property
    def rotor_radius(self) -> float:
        return self.rotor_diameter / 2

    @property
    def rated_power_kw(self) -> float:
        return float(self.power_kw.max())

    def power_at(self, ws: np.ndarray | float) -> np.ndarray:
        return np.interp(ws, self.wind_speeds, self.power_kw, left=0.0, right=0.0)

    def tip_speed_at(self, ws: np.ndarray | float) -> np.ndarray:
        return np.interp(ws, self.wind_speeds, self.tip_speeds, left=0.0, right=0.0)

    def annual_energy_mwh(self, wind: WindDistribution) -> float:
        """Gross annual energy production for a wind distribution."""
        centres = (np.arange(wind.num_bins) + 0.5) * wind.bin_width
        power = self.power_at(centres)
        mean_power_kw = float(wind.overall_dist @ power)
        return mean_power_kw * TurbineConfig.HOURS_PER_YEAR / 1000.0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "rotor_diameter": self.rotor_diameter,
            "hub_height": self.hub_height,
            "wind_speeds": self.wind_speeds.tolist(),
            "power_kw": self.power_kw.tolist(),
            "tip_speeds": self.tip_speeds.tolist(),
            "thrust_coeff": self.thrust_coeff,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PowerCurve":
        return cls(**data)


@dataclass
class NetEstimate:
    """Waked estimate of one turbine for one wake model."""

    wake_model_id: str
    ws: float
    aep_mwh: float
    wake_loss: float  # Fraction of gross AEP lost to wakes


@dataclass
class Turbine:
    """Turbine site.

    Attributes:
        id: Turbine ID (e.g. "T1")
        easting: UTM easting (m)
        northing: UTM northing (m)
        elevation: Ground elevation (m)
        power_curve: Name of the power curve
        exposures: Exposure per radius of investigation
        free_stream: Estimated free-stream distribution at hub height
        ws_estimate: Free-stream mean WS estimate (m/s)
        gross_aep_mwh: Gross annual energy production
        net_estimates: Waked estimates by wake model ID
    """

    id: str
    easting: float
    northing: float
    elevation: float = 0.0
    power_curve: str | None = None
    exposures: dict[int, Exposure] = field(default_factory=dict)
    free_stream: WindDistribution | None = None
    ws_estimate: float | None = None
    gross_aep_mwh: float | None = None
    net_estimates: dict[str, NetEstimate] = field(default_factory=dict)
    surface_roughness: float | None = None
    displacement_height: float | None = None

    @property
    def has_estimates(self) -> bool:
        return self.free_stream is not None and self.ws_estimate is not None

    def clear_estimates(self) -> None:
        self.free_stream = None
        self.ws_estimate = None
        self.gross_aep_mwh = None
        self.net_estimates.clear()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "easting": self.easting,
            "northing": self.northing,
            "elevation": self.elevation,
            "power_curve": self.power_curve,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Turbine":
        return cls(**data)
