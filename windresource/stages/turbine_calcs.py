"""Turbine calcs: free-stream estimates, gross AEP and optional Jensen wake model."""

from __future__ import annotations

import logging

from windresource.core.errors import ValidationError
from windresource.core.site_calibration import SiteCalibrator
from windresource.core.terrain import TerrainCalculator
from windresource.core.wake import WakeCalculator
from windresource.model.flow_model import SiteModel
from windresource.model.met_site import Exposure
from windresource.model.requests import StageKind, TurbineCalcsParams
from windresource.model.results import StageOutput
from windresource.model.snapshot import DomainSnapshot
from windresource.model.turbine import NetEstimate, PowerCurve
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def require_site_model(snapshot: DomainSnapshot, time_of_day: str, season: str) -> SiteModel:
    model = snapshot.site_model(time_of_day=time_of_day, season=season)
    if model is None:
        raise ValidationError(f"No site model for {time_of_day}/{season}; run met calcs first")
    return model


def exposure_at(snapshot: DomainSnapshot, x: float, y: float, radius_m: int) -> Exposure:
    if snapshot.topography is None:
        raise ValidationError("Import topography first")
    return TerrainCalculator.exposure(
        topography=snapshot.topography, x=x, y=y, radius_m=radius_m, num_sectors=snapshot.num_sectors
    )


class TurbineCalcsRunner(StageRunner):
    kind = StageKind.TURBINE_CALCS

    def execute(self, params: TurbineCalcsParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        if not snapshot.turbines:
            raise ValidationError("No turbines to calculate")
        model = require_site_model(snapshot=snapshot, time_of_day=params.time_of_day, season=params.season)
        predictors = [snapshot.mets[mid] for mid in model.met_ids if mid in snapshot.mets]
        wake_curve = None
        if params.wake_power_curve is not None:
            wake_curve = snapshot.get_power_curve(params.wake_power_curve)
            if wake_curve is None:
                raise ValidationError(f"Unknown power curve {params.wake_power_curve} for the wake model")

        turbines = list(snapshot.turbines.values())
        previous_exposures = {t.id: dict(t.exposures) for t in turbines}

        def discard() -> None:
            for t in turbines:
                t.exposures = previous_exposures[t.id]
            snapshot.clear_turbine_estimates()

        ctx.add_rollback("Discard turbine estimates", discard)

        ctx.report(percent=0, message="Calculating turbine estimates...")
        for index, turbine in enumerate(turbines):
            ctx.checkpoint()
            if model.radius_m not in turbine.exposures:
                turbine.exposures[model.radius_m] = exposure_at(
                    snapshot=snapshot, x=turbine.easting, y=turbine.northing, radius_m=model.radius_m
                )
            turbine.free_stream = SiteCalibrator.estimate(
                model=model,
                predictors=predictors,
                target_exposure=turbine.exposures[model.radius_m],
                x=turbine.easting,
                y=turbine.northing,
            )
            turbine.ws_estimate = turbine.free_stream.mean_ws
            power_curve = snapshot.get_power_curve(turbine.power_curve)
            if power_curve is not None:
                turbine.gross_aep_mwh = power_curve.annual_energy_mwh(turbine.free_stream)
            ctx.report(percent=100.0 * (index + 1) / len(turbines), message="Calculating turbine estimates...")

        mutations = [f"free-stream estimates at {len(turbines)} turbines"]
        if wake_curve is not None:
            mutations.append(self._apply_wake_model(params=params, ctx=ctx, wake_curve=wake_curve))
        return StageOutput(mutations=tuple(mutations))

    def _apply_wake_model(self, params: TurbineCalcsParams, ctx: StageContext, wake_curve: PowerCurve) -> str:
        snapshot = ctx.snapshot
        wake_model = snapshot.add_wake_model(
            power_curve=wake_curve.name, decay_constant=params.wake_decay, max_distance_m=params.max_wake_distance_m
        )
        ctx.add_rollback(f"Remove wake model {wake_model.id}", lambda: snapshot.remove_wake_model(wake_model.id))

        ctx.checkpoint()
        ctx.report(percent=0, message="Calculating wake losses...")
        wake_model.loss_coefficients = WakeCalculator.loss_coefficients(
            positions={t.id: (t.easting, t.northing) for t in snapshot.turbines.values()},
            rotor_radius=wake_curve.rotor_radius,
            thrust_coeff=wake_curve.thrust_coeff,
            decay_constant=wake_model.decay_constant,
            num_sectors=snapshot.num_sectors,
            max_distance_m=wake_model.max_distance_m,
        )

        turbines = list(snapshot.turbines.values())
        for index, turbine in enumerate(turbines):
            ctx.checkpoint()
            waked = turbine.free_stream.scaled(sector_ratios=wake_model.loss_coefficients[turbine.id])
            power_curve = snapshot.get_power_curve(turbine.power_curve) or wake_curve
            net_aep = power_curve.annual_energy_mwh(waked)
            gross = turbine.gross_aep_mwh or power_curve.annual_energy_mwh(turbine.free_stream)
            turbine.net_estimates[wake_model.id] = NetEstimate(
                wake_model_id=wake_model.id,
                ws=waked.mean_ws,
                aep_mwh=net_aep,
                wake_loss=1.0 - net_aep / gross if gross > 0 else 0.0,
            )
            ctx.report(percent=100.0 * (index + 1) / len(turbines), message="Calculating net estimates...")
        logger.info(f"Wake model {wake_model.id}: k={wake_model.decay_constant}, power curve {wake_curve.name}")
        return f"wake model {wake_model.id} with net estimates"
