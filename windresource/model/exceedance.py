"""Exceedance curves and the composite loss they combine into."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy.stats import norm

from windresource.constants import ExceedanceConfig


@dataclass
class ExceedanceCurve:
    """Probability factor (PF) table of one independent uncertainty.

    The table maps cumulative probability (0-1, ascending) to PF. A uniform
    draw u is converted to a PF by linear interpolation (inverse CDF).

    Attributes:
        name: Curve name (e.g. "Availability", "Icing losses")
        probabilities: Cumulative probabilities, ascending from 0 to 1
        pf_values: PF at each probability
    """

    name: str
    probabilities: np.ndarray
    pf_values: np.ndarray

    def __post_init__(self) -> None:
        self.probabilities = np.asarray(self.probabilities, dtype=np.float64)
        self.pf_values = np.asarray(self.pf_values, dtype=np.float64)
        if len(self.probabilities) != len(self.pf_values) or len(self.probabilities) == 0:
            raise ValueError(f"Exceedance curve {self.name}: probability and PF columns must be non-empty and equal length")
        if np.any(np.diff(self.probabilities) < 0):
            raise ValueError(f"Exceedance curve {self.name}: probabilities must be ascending")

    def inverse_cdf(self, u: np.ndarray | float) -> np.ndarray:
        return np.interp(u, self.probabilities, self.pf_values)

    @classmethod
    def constant(cls, name: str, pf: float) -> "ExceedanceCurve":
        return cls(name=name, probabilities=np.array([0.0, 1.0]), pf_values=np.array([pf, pf]))

    @classmethod
    def from_normal(cls, name: str, mean_pf: float, std_pf: float, num_points: int = 101) -> "ExceedanceCurve":
        """Tabulate a normally distributed PF.

        The open ends (probability 0 and 1) are clipped at +-4 standard
        deviations so the table stays finite.
        """
        probs = np.linspace(0.0, 1.0, num_points)
        z = norm.ppf(np.clip(probs, norm.cdf(-4.0), norm.cdf(4.0)))
        return cls(name=name, probabilities=probs, pf_values=mean_pf + std_pf * z)

    def to_dict(self) -> dict:
        return {"name": self.name, "probabilities": self.probabilities.tolist(), "pf_values": self.pf_values.tolist()}

    @classmethod
    def from_dict(cls, data: dict) -> "ExceedanceCurve":
        return cls(**data)


@dataclass
class ExceedanceResult:
    """P-value curve of one horizon.

    Attributes:
        horizon_years: Years averaged per simulation
        sorted_pfs: Composite PF of every simulation, ascending
        p_values: PF at P1..P99 (index 0 is P1)
    """

    horizon_years: int
    sorted_pfs: np.ndarray
    p_values: np.ndarray

    def p(self, percent: int) -> float:
        """PF exceeded with the given probability (percent in 1..99)."""
        return float(self.p_values[ExceedanceConfig.P_VALUES.index(percent)])


@dataclass
class CompositeLoss:
    """Combination of exceedance curves and its Monte Carlo results.

    `is_complete` is only set once every horizon has a result.
    """

    curves: list[ExceedanceCurve] = field(default_factory=list)
    results: dict[int, ExceedanceResult] = field(default_factory=dict)
    is_complete: bool = False

    def reset(self) -> None:
        self.results.clear()
        self.is_complete = False

    def curve_names(self) -> list[str]:
        return [c.name for c in self.curves]
