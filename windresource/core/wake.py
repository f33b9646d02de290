"""Jensen (Park) wake model.

For wind from direction theta, an upstream turbine at downwind distance x
and crosswind offset r shades a point when r <= R + k * x:

    deficit = (1 - sqrt(1 - Ct)) * (R / (R + k * x))^2

Deficits of several upstream turbines combine as the root of the sum of
squares, capped at the deficit right behind a rotor, 1 - sqrt(1 - Ct).
Turbines closer than MIN_WAKE_SPACING_RD rotor diameters or farther than
the wake model's maximum distance are ignored.
"""

from __future__ import annotations

import numpy as np

from windresource.constants import TurbineConfig
from windresource.core import wind_stats


class WakeCalculator:
    """Static methods for Jensen wake losses."""

    @staticmethod
    def max_distance_m(max_distance_m: float) -> float:
        return max_distance_m if max_distance_m > 0 else TurbineConfig.DEFAULT_MAX_WAKE_DISTANCE_M

    @staticmethod
    def sector_deficits(
        x: float,
        y: float,
        upstream_xy: np.ndarray,
        rotor_radius: float,
        thrust_coeff: float,
        decay_constant: float,
        num_sectors: int,
        max_distance_m: float = 0.0,
    ) -> np.ndarray:
        """Combined fractional WS deficit per sector at (x, y).

        Args:
            x, y: Point to evaluate (m)
            upstream_xy: Array (n, 2) of candidate upstream turbine positions
            rotor_radius: Rotor radius of the wake-generating turbines (m)
            thrust_coeff: Thrust coefficient Ct
            decay_constant: Wake decay constant k
            num_sectors: Wind rose sectors
            max_distance_m: Farthest upstream turbine considered, 0 for the default

        Returns:
            Array (num_sectors,) of deficits in [0, 1).
        """
        upstream_xy = np.asarray(upstream_xy, dtype=np.float64).reshape(-1, 2)
        if len(upstream_xy) == 0:
            return np.zeros(num_sectors)

        theta = np.radians(np.arange(num_sectors) * wind_stats.sector_width_deg(num_sectors))
        # Unit vector the flow travels along (wind comes FROM theta)
        flow_x, flow_y = -np.sin(theta), -np.cos(theta)
        rel_x = x - upstream_xy[:, 0]
        rel_y = y - upstream_xy[:, 1]

        downwind = rel_x[None, :] * flow_x[:, None] + rel_y[None, :] * flow_y[:, None]
        crosswind = np.abs(rel_x[None, :] * flow_y[:, None] - rel_y[None, :] * flow_x[:, None])

        min_x = TurbineConfig.MIN_WAKE_SPACING_RD * 2 * rotor_radius
        max_x = WakeCalculator.max_distance_m(max_distance_m)
        wake_radius = rotor_radius + decay_constant * np.maximum(downwind, 0.0)
        shaded = (downwind >= min_x) & (downwind <= max_x) & (crosswind <= wake_radius)

        initial = 1.0 - np.sqrt(max(1.0 - thrust_coeff, 0.0))
        deficit = np.where(shaded, initial * (rotor_radius / wake_radius) ** 2, 0.0)
        return np.minimum(np.sqrt((deficit**2).sum(axis=1)), initial)

    @staticmethod
    def loss_coefficients(
        positions: dict[str, tuple[float, float]],
        rotor_radius: float,
        thrust_coeff: float,
        decay_constant: float,
        num_sectors: int,
        max_distance_m: float = 0.0,
    ) -> dict[str, np.ndarray]:
        """WS reduction factor (1 - deficit) per turbine and sector, from every other turbine."""
        ids = list(positions)
        xy = np.array([positions[i] for i in ids], dtype=np.float64).reshape(-1, 2)
        coefficients = {}
        for index, tid in enumerate(ids):
            others = np.delete(xy, index, axis=0)
            deficits = WakeCalculator.sector_deficits(
                x=xy[index, 0],
                y=xy[index, 1],
                upstream_xy=others,
                rotor_radius=rotor_radius,
                thrust_coeff=thrust_coeff,
                decay_constant=decay_constant,
                num_sectors=num_sectors,
                max_distance_m=max_distance_m,
            )
            coefficients[tid] = 1.0 - deficits
        return coefficients
