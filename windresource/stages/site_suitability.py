"""Site suitability stages: ice throw, shadow flicker and exceedance."""

from __future__ import annotations

import logging

from windresource.core.errors import ValidationError
from windresource.model.exceedance import CompositeLoss
from windresource.model.requests import ExceedanceParams, IceThrowParams, ShadowFlickerParams, StageKind
from windresource.model.results import StageOutput
from windresource.simulators.exceedance import ExceedanceSimulator
from windresource.simulators.ice_throw import IceThrowSimulator
from windresource.simulators.shadow_flicker import ShadowFlickerSimulator
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


class IceThrowRunner(StageRunner):
    kind = StageKind.ICE_THROW

    def execute(self, params: IceThrowParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        turbines = IceThrowSimulator.prepare(snapshot=snapshot, turbine_ids=params.turbine_ids)
        simulator = IceThrowSimulator(settings=params.settings, reporter=ctx.reporter, cancellation=ctx.cancellation)
        result = simulator.run(turbines)

        previous = snapshot.ice_throw
        if ctx.store is not None:
            store = ctx.store
            ctx.add_rollback(
                "Restore stored ice hits",
                lambda: store.write_ice_hits(previous.years) if previous is not None else store.clear_table("ice_hits"),
            )
            store.write_ice_hits(result.years)

        def restore() -> None:
            snapshot.ice_throw = previous

        ctx.add_rollback("Restore previous ice throw result", restore)
        snapshot.ice_throw = result
        logger.info(
            f"Ice throw: {result.total_hits} hits over {len(result.years)} years, "
            f"max distance {result.max_distance_m():.0f} m"
        )
        return StageOutput(mutations=(f"ice throw: {result.total_hits} hits",), payload=result)


class ShadowFlickerRunner(StageRunner):
    kind = StageKind.SHADOW_FLICKER

    def execute(self, params: ShadowFlickerParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        turbines = ShadowFlickerSimulator.prepare_turbines(snapshot=snapshot, turbine_ids=params.turbine_ids)
        zones = ShadowFlickerSimulator.prepare_zones(snapshot)
        if not zones and params.grid is None:
            raise ValidationError("Shadow flicker needs at least one zone or a map grid")

        grid_elevations = None
        if params.grid is not None and snapshot.topography is not None:
            xs, ys = params.grid.cell_xy()
            grid_elevations = snapshot.topography.sample(xs, ys)

        utc_offset = params.utc_offset if params.utc_offset is not None else snapshot.utc_offset
        simulator = ShadowFlickerSimulator(
            lat=snapshot.lat,
            lon=snapshot.lon,
            utc_offset=utc_offset,
            year=params.year,
            reporter=ctx.reporter,
            cancellation=ctx.cancellation,
        )
        result = simulator.run(zones=zones, turbines=turbines, grid=params.grid, grid_elevations=grid_elevations)

        previous = snapshot.shadow_flicker

        def restore() -> None:
            snapshot.shadow_flicker = previous

        ctx.add_rollback("Restore previous shadow flicker result", restore)
        snapshot.shadow_flicker = result
        for zone_id, stats in result.zone_stats.items():
            logger.info(f"Shadow flicker {zone_id}: {stats.total_per_year} min/yr, max {stats.max_daily_shadow_mins} min/day")
        return StageOutput(mutations=(f"shadow flicker {params.year}",), payload=result)


class ExceedanceRunner(StageRunner):
    kind = StageKind.EXCEEDANCE

    def execute(self, params: ExceedanceParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        previous = snapshot.composite_loss

        def restore() -> None:
            snapshot.composite_loss = previous

        ctx.add_rollback("Restore previous composite loss", restore)
        snapshot.composite_loss = CompositeLoss()

        simulator = ExceedanceSimulator(
            num_sims=params.num_sims, seed=params.seed, reporter=ctx.reporter, cancellation=ctx.cancellation
        )
        snapshot.composite_loss = simulator.run(snapshot.exceedance_curves)
        return StageOutput(mutations=("composite loss",), payload=snapshot.composite_loss)
