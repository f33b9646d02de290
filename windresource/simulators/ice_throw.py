"""IceThrowSimulator - Monte Carlo landing points of ice shed by rotating blades.

Per simulated year and turbine, every 1-degree wind direction bucket gets a
share of the yearly throws taken from its sector's wind rose frequency:

    sector iterations = round(rose[s] * throws_per_ice_day * ice_days_per_year)

and those iterations cycle over the sector's buckets. Rounding is applied
per sector, so the yearly total can drift from the nominal number of throws
by up to one per sector.

Each fragment uses five uniform draws, in this order:

    u1 -> hub wind speed (inverse CDF of the sector distribution)
    u2 -> release radius r = R * sqrt(u2) (uniform over the swept disc)
    u3 -> blade angle 0-360 degrees (0 = blade pointing up)
    u4 -> ice mass (inverse CDF table)
    u5 -> shape class -> area factor and drag coefficient

The fragment leaves the blade at speed tip_speed(ws) * r / R, tangential to
the rotor circle, and flies under gravity and quadratic drag relative to
the wind until it reaches the ground at the tower base elevation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from windresource.constants import IceThrowConfig
from windresource.core import wind_stats
from windresource.core.cancellation import CancellationContext
from windresource.core.errors import ValidationError
from windresource.core.progress import ProgressReporter
from windresource.model.met_site import WindDistribution
from windresource.model.site_suitability import IceThrowResult, IceThrowSettings, YearlyIceHits
from windresource.model.turbine import PowerCurve

if TYPE_CHECKING:
    from windresource.model.snapshot import DomainSnapshot

logger = logging.getLogger(__name__)

SHAPES = tuple(IceThrowConfig.SHAPE_PROBABILITIES)
SHAPE_CUMULATIVE = np.cumsum([IceThrowConfig.SHAPE_PROBABILITIES[s] for s in SHAPES])
SHAPE_AREA_FACTORS = np.array([IceThrowConfig.SHAPE_AREA_FACTORS[s] for s in SHAPES])
SHAPE_DRAG_COEFFS = np.array([IceThrowConfig.SHAPE_DRAG_COEFFS[s] for s in SHAPES])
MASS_CDF_PROBS = np.array([p for p, _ in IceThrowConfig.MASS_CDF])
MASS_CDF_KG = np.array([m for _, m in IceThrowConfig.MASS_CDF])


@dataclass(frozen=True)
class IceThrowTurbine:
    """Everything the simulator needs about one turbine.

    Attributes:
        turbine_id: Turbine ID
        wind: Free-stream distribution at hub height (own or closest met's)
        power_curve: Rotor diameter, hub height and tip-speed table
    """

    turbine_id: str
    wind: WindDistribution
    power_curve: PowerCurve


@dataclass
class FragmentBatch:
    """Release conditions of a batch of fragments (one entry per fragment)."""

    wind_speed: np.ndarray
    direction: np.ndarray  # degree bucket the wind comes from
    release_radius: np.ndarray
    ice_speed: np.ndarray
    blade_angle_deg: np.ndarray
    mass: np.ndarray
    area: np.ndarray
    drag_coeff: np.ndarray


class IceThrowSimulator:
    """Runs the ice throw model for a set of turbines.

    Example:
        turbines = IceThrowSimulator.prepare(snapshot)
        result = IceThrowSimulator(settings).run(turbines)
    """

    def __init__(
        self,
        settings: IceThrowSettings,
        reporter: ProgressReporter | None = None,
        cancellation: CancellationContext | None = None,
    ) -> None:
        self.settings = settings
        self.reporter = reporter
        self.cancellation = cancellation or CancellationContext()

    # =========================================================================
    # Inputs
    # =========================================================================

    @staticmethod
    def prepare(snapshot: "DomainSnapshot", turbine_ids: tuple[str, ...] | None = None) -> list[IceThrowTurbine]:
        """Collect wind distribution and power curve per turbine.

        A turbine without its own free-stream distribution falls back to the
        closest met with one. Every turbine is checked before any throw is
        simulated, so a missing input aborts the whole run.

        Raises:
            ValidationError: Unknown turbine, missing power curve, or no usable
                wind distribution.
        """
        ids = list(turbine_ids) if turbine_ids is not None else list(snapshot.turbines)
        if not ids:
            raise ValidationError("Ice throw needs at least one turbine")

        inputs = []
        for tid in ids:
            turbine = snapshot.turbines.get(tid)
            if turbine is None:
                raise ValidationError(f"Unknown turbine {tid}")
            power_curve = snapshot.get_power_curve(turbine.power_curve)
            if power_curve is None:
                raise ValidationError(f"Turbine {tid} has no power curve")

            wind = turbine.free_stream
            if wind is None:
                met = snapshot.closest_met(easting=turbine.easting, northing=turbine.northing)
                if met is None:
                    raise ValidationError(
                        f"Turbine {tid} has no wind speed distribution and there is no met site to fall back to"
                    )
                logger.info(f"Ice throw: turbine {tid} uses the distribution of closest met {met.id}")
                wind = met.effective_wind
            inputs.append(IceThrowTurbine(turbine_id=tid, wind=wind, power_curve=power_curve))
        return inputs

    @staticmethod
    def sector_iteration_counts(wind_rose: np.ndarray, throws_per_year: int) -> np.ndarray:
        """Yearly iterations per sector, rounded per sector (no correction of the total)."""
        return np.array([int(round(float(f) * throws_per_year)) for f in wind_rose], dtype=int)

    @staticmethod
    def bucket_counts(sector_count: int, num_buckets: int) -> np.ndarray:
        """Iterations per direction bucket when a sector's iterations cycle over its buckets."""
        counts = np.full(num_buckets, sector_count // num_buckets, dtype=int)
        counts[: sector_count % num_buckets] += 1
        return counts

    # =========================================================================
    # Simulation
    # =========================================================================

    def run(self, turbines: list[IceThrowTurbine]) -> IceThrowResult:
        """Simulate every year and return all landing records.

        Raises:
            StageCancelled: Cancellation requested; no partial years are kept.
        """
        settings = self.settings
        rng = np.random.default_rng(settings.seed)
        throws_per_year = settings.throws_per_year
        total_steps = max(settings.years_to_model * len(turbines), 1)

        sector_counts = {
            t.turbine_id: self.sector_iteration_counts(wind_rose=t.wind.wind_rose, throws_per_year=throws_per_year)
            for t in turbines
        }
        logger.info(
            f"Ice throw: {len(turbines)} turbines, {settings.years_to_model} years, {throws_per_year} nominal throws/year"
        )

        years = []
        step = 0
        for year in range(settings.years_to_model):
            parts = []
            for turbine in turbines:
                batch = self._draw_fragments(rng=rng, turbine=turbine, sector_counts=sector_counts[turbine.turbine_id])
                dx, dy = self.fly(batch=batch, power_curve=turbine.power_curve)
                parts.append(
                    YearlyIceHits(
                        year=year,
                        turbine_ids=np.full(len(dx), turbine.turbine_id, dtype=object),
                        dx=dx,
                        dy=dy,
                        wind_speed=batch.wind_speed,
                        direction=batch.direction,
                    )
                )
                step += 1
                self._report(
                    percent=100.0 * step / total_steps,
                    message=f"Running Ice Throw Model: year {year + 1}/{settings.years_to_model}, turbine {turbine.turbine_id}",
                )
            years.append(YearlyIceHits.concatenate(year=year, parts=parts))

        return IceThrowResult(settings=settings, years=years, sector_counts=sector_counts)

    def _draw_fragments(
        self,
        rng: np.random.Generator,
        turbine: IceThrowTurbine,
        sector_counts: np.ndarray,
    ) -> FragmentBatch:
        """Draw the five uniforms of every fragment of one turbine-year, bucket by bucket."""
        wind = turbine.wind
        num_sectors = wind.num_sectors
        cdfs = wind.cdfs()

        draws = []
        directions = []
        sector_of = []
        for sector in range(num_sectors):
            buckets = wind_stats.sector_degrees(sector=sector, num_sectors=num_sectors)
            per_bucket = self.bucket_counts(sector_count=int(sector_counts[sector]), num_buckets=len(buckets))
            for degree, count in zip(buckets, per_bucket):
                self.cancellation.checkpoint()
                if count == 0:
                    continue
                draws.append(rng.random((count, 5)))
                directions.append(np.full(count, degree, dtype=int))
                sector_of.append(np.full(count, sector, dtype=int))

        if not draws:
            empty = np.array([])
            return FragmentBatch(empty, np.array([], dtype=int), empty, empty, empty, empty, empty, empty)

        u = np.vstack(draws)
        direction = np.concatenate(directions)
        sectors = np.concatenate(sector_of)

        wind_speed = np.empty(len(u))
        for sector in np.unique(sectors):
            in_sector = sectors == sector
            wind_speed[in_sector] = wind_stats.inverse_cdf(cdf=cdfs[sector], bin_width=wind.bin_width, u=u[in_sector, 0])

        pc = turbine.power_curve
        tip_speed = pc.tip_speed_at(wind_speed)
        release_radius = pc.rotor_radius * np.sqrt(u[:, 1])
        ice_speed = tip_speed * release_radius / pc.rotor_radius
        blade_angle = 360.0 * u[:, 2]
        mass = np.interp(u[:, 3], MASS_CDF_PROBS, MASS_CDF_KG)
        shape = np.minimum(np.searchsorted(SHAPE_CUMULATIVE, u[:, 4], side="right"), len(SHAPES) - 1)
        volume = mass / IceThrowConfig.ICE_DENSITY_KG_M3
        area = SHAPE_AREA_FACTORS[shape] * volume ** (2.0 / 3.0)

        return FragmentBatch(
            wind_speed=wind_speed,
            direction=direction,
            release_radius=release_radius,
            ice_speed=ice_speed,
            blade_angle_deg=blade_angle,
            mass=mass,
            area=area,
            drag_coeff=SHAPE_DRAG_COEFFS[shape],
        )

    @staticmethod
    def fly(batch: FragmentBatch, power_curve: PowerCurve) -> tuple[np.ndarray, np.ndarray]:
        """Integrate all trajectories of a batch to the ground.

        Frame: x east, y north, z up, origin at the tower base. The rotor
        faces into the wind, so the rotor plane contains the vertical and the
        horizontal unit vector p perpendicular to the wind direction.

        Returns:
            Tuple (dx, dy) of landing offsets from the tower (m).
        """
        n = len(batch.wind_speed)
        if n == 0:
            return np.array([]), np.array([])

        wd = np.radians(batch.direction.astype(np.float64))
        theta = np.radians(batch.blade_angle_deg)
        p_x, p_y = np.cos(wd), -np.sin(wd)

        pos = np.column_stack(
            [
                batch.release_radius * np.sin(theta) * p_x,
                batch.release_radius * np.sin(theta) * p_y,
                power_curve.hub_height + batch.release_radius * np.cos(theta),
            ]
        )
        vel = np.column_stack(
            [
                batch.ice_speed * np.cos(theta) * p_x,
                batch.ice_speed * np.cos(theta) * p_y,
                -batch.ice_speed * np.sin(theta),
            ]
        )
        # Air moves toward the direction opposite to where it comes from
        air = np.column_stack([-batch.wind_speed * np.sin(wd), -batch.wind_speed * np.cos(wd), np.zeros(n)])
        drag_factor = 0.5 * IceThrowConfig.AIR_DENSITY_KG_M3 * batch.drag_coeff * batch.area / batch.mass

        dt = IceThrowConfig.TIME_STEP_S
        gravity = np.array([0.0, 0.0, -IceThrowConfig.GRAVITY_M_S2])
        landed = np.zeros((n, 2))
        active = pos[:, 2] > 0
        landed[~active] = pos[~active, :2]

        max_steps = int(IceThrowConfig.MAX_FLIGHT_TIME_S / dt)
        for _ in range(max_steps):
            if not active.any():
                break
            idx = np.flatnonzero(active)
            rel = vel[idx] - air[idx]
            speed = np.linalg.norm(rel, axis=1, keepdims=True)
            accel = gravity - drag_factor[idx, None] * speed * rel
            new_vel = vel[idx] + accel * dt
            new_pos = pos[idx] + new_vel * dt

            hit = new_pos[:, 2] <= 0
            if hit.any():
                z0 = pos[idx[hit], 2]
                z1 = new_pos[hit, 2]
                frac = (z0 / (z0 - z1))[:, None]
                landed[idx[hit]] = pos[idx[hit], :2] + frac * (new_pos[hit, :2] - pos[idx[hit], :2])
                active[idx[hit]] = False

            vel[idx] = new_vel
            pos[idx] = new_pos

        if active.any():
            # Still airborne after the time limit: keep the last position
            landed[active] = pos[active, :2]
        return landed[:, 0], landed[:, 1]

    def _report(self, percent: float, message: str) -> None:
        if self.reporter is not None:
            self.reporter.report(percent=percent, message=message)
