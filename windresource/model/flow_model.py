"""Flow model entities: site-calibrated models, met pairs, wake models, round robin.

The site-calibrated model predicts the sector wind speed at a target from a
predicting met:

    WS_target[s] = WS_met[s] * (1 + uw[s] * dUW[s] + dw[s] * dDW[s])

where dUW/dDW are the target-minus-met upwind/downwind exposure differences
at the model's radius of investigation.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from windresource.model.met_site import Exposure

# Lower bound of a predicted WS ratio, keeps deep valleys from going negative
MIN_WS_RATIO = 0.1


@dataclass
class SiteModel:
    """Calibrated flow model for one time-of-day/season subset.

    Attributes:
        time_of_day: "All", "Day" or "Night"
        season: "All", "Winter", "Spring", "Summer" or "Fall"
        radius_m: Radius of investigation the coefficients belong to
        uw_coeffs: Upwind exposure coefficients per sector (1/m)
        dw_coeffs: Downwind exposure coefficients per sector (1/m)
        met_ids: Mets the model was calibrated with
        rms_error: Cross-prediction RMS error over the met pairs (m/s)
        is_default: True when built from default coefficients (single met)
    """

    time_of_day: str
    season: str
    radius_m: int
    uw_coeffs: np.ndarray
    dw_coeffs: np.ndarray
    met_ids: tuple[str, ...]
    rms_error: float = 0.0
    is_default: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return self.time_of_day, self.season

    def ws_ratio(self, predictor: Exposure, target: Exposure) -> np.ndarray:
        """Per-sector WS ratio target / predictor."""
        ratio = (
            1.0
            + self.uw_coeffs * (target.upwind - predictor.upwind)
            + self.dw_coeffs * (target.downwind - predictor.downwind)
        )
        return np.maximum(np.nan_to_num(ratio, nan=1.0), MIN_WS_RATIO)


@dataclass(frozen=True)
class MetPair:
    """Two mets whose cross-predictions calibrate the model."""

    met_a: str
    met_b: str
    distance_m: float


@dataclass
class WakeModel:
    """Jensen (Park) wake model settings and the loss coefficients it produced.

    Attributes:
        id: Wake model ID (e.g. "WM1")
        power_curve: Power curve whose thrust coefficient drives the deficit
        decay_constant: Wake decay constant k
        max_distance_m: Farthest upstream turbine considered (0 = default)
        loss_coefficients: Per-turbine, per-sector WS reduction factors (0-1)
    """

    id: str
    power_curve: str
    decay_constant: float
    max_distance_m: float = 0.0
    loss_coefficients: dict[str, np.ndarray] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "power_curve": self.power_curve,
            "decay_constant": self.decay_constant,
            "max_distance_m": self.max_distance_m,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WakeModel":
        return cls(**data)


@dataclass
class RoundRobinEstimate:
    """Cross-validation result for one subset size.

    Attributes:
        subset_size: Number of mets used to build each model
        met_ids: All mets available when the analysis ran (sorted)
        combinations: Every subset of that size, in processing order
        rms_errors: RMS error of predicting the held-out mets, per combination
    """

    subset_size: int
    met_ids: tuple[str, ...]
    time_of_day: str = "All"
    season: str = "All"
    combinations: list[tuple[str, ...]] = field(default_factory=list)
    rms_errors: list[float] = field(default_factory=list)

    @property
    def key(self) -> tuple[int, tuple[str, ...], str, str]:
        return self.subset_size, self.met_ids, self.time_of_day, self.season

    @property
    def mean_rms(self) -> float:
        return float(np.mean(self.rms_errors)) if self.rms_errors else 0.0
