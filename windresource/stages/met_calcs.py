"""Met calcs: exposures at every met, met pairs and site-calibrated models.

Phases (progress restarts at 0 for each):

1. "Calculating exposures..." - UW/DW exposure per met and radius
2. "Finding site-calibrated models..." - one model per requested
   time-of-day/season combination, always including All/All
"""

from __future__ import annotations

import logging
from itertools import combinations

from windresource.constants import MetCalcConfig
from windresource.core.errors import ValidationError
from windresource.core.geo_calculator import GeoCalculator
from windresource.core.site_calibration import SiteCalibrator
from windresource.core.terrain import TerrainCalculator
from windresource.model.flow_model import MetPair
from windresource.model.met_site import MetSite
from windresource.model.requests import MetCalcsParams, StageKind
from windresource.model.results import StageOutput
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def check_mcp_consistency(mets: list[MetSite]) -> None:
    """Time-series mets must be all MCP'd or none.

    Raises:
        ValidationError: Some but not all time-series mets have long-term estimates.
    """
    series = [m for m in mets if m.is_time_series]
    done = [m for m in series if m.mcp_done]
    if done and len(done) != len(series):
        missing = ", ".join(m.id for m in series if not m.mcp_done)
        raise ValidationError(f"Mets {missing} have no long-term (MCP) estimate; run MERRA2 import with MCP first")


def model_combinations(model_set: str) -> list[tuple[str, str]]:
    if model_set not in MetCalcConfig.MODEL_SETS:
        raise ValidationError(f"Unknown model set '{model_set}', expected one of {sorted(MetCalcConfig.MODEL_SETS)}")
    combos = [("All", "All")]
    combos += [c for c in MetCalcConfig.MODEL_SETS[model_set] if c not in combos]
    return combos


class MetCalcsRunner(StageRunner):
    kind = StageKind.MET_CALCS

    def execute(self, params: MetCalcsParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        if snapshot.topography is None:
            raise ValidationError("Import topography before running met calcs")
        mets = snapshot.mets_with_wind()
        if not mets:
            raise ValidationError("Met calcs need at least one met with a wind distribution")
        if not params.radii_m:
            raise ValidationError("At least one radius of investigation is required")
        check_mcp_consistency(mets)
        combos = model_combinations(params.model_set)

        previous_exposures = {met.id: dict(met.exposures) for met in mets}
        previous_pairs = list(snapshot.met_pairs)
        previous_models = dict(snapshot.site_models)

        def restore() -> None:
            for met in mets:
                met.exposures = previous_exposures[met.id]
            snapshot.met_pairs = previous_pairs
            snapshot.site_models = previous_models

        ctx.add_rollback("Restore met exposures and site models", restore)

        # Phase 1: exposures
        ctx.report(percent=0, message="Calculating exposures...")
        for index, met in enumerate(mets):
            ctx.checkpoint()
            met.exposures = {
                radius: TerrainCalculator.exposure(
                    topography=snapshot.topography,
                    x=met.easting,
                    y=met.northing,
                    radius_m=radius,
                    num_sectors=snapshot.num_sectors,
                )
                for radius in params.radii_m
            }
            ctx.report(percent=100.0 * (index + 1) / len(mets), message="Calculating exposures...")

        snapshot.met_pairs = [
            MetPair(
                met_a=a.id,
                met_b=b.id,
                distance_m=GeoCalculator.planar_distance_m(x1=a.easting, y1=a.northing, x2=b.easting, y2=b.northing),
            )
            for a, b in combinations(mets, 2)
        ]

        # Phase 2: models
        ctx.report(percent=0, message="Finding site-calibrated models...")
        models = {}
        for index, (tod, season) in enumerate(combos):
            ctx.checkpoint()
            models[(tod, season)] = SiteCalibrator.best_model(
                mets=mets, time_of_day=tod, season=season, radii=tuple(params.radii_m)
            )
            ctx.report(percent=100.0 * (index + 1) / len(combos), message="Finding site-calibrated models...")

        snapshot.site_models = models
        kind = "default" if len(mets) == 1 else "site-calibrated"
        logger.info(f"Met calcs: {len(mets)} mets, {len(snapshot.met_pairs)} pairs, {len(models)} {kind} models")
        return StageOutput(
            mutations=(
                f"exposures at {len(mets)} mets x {len(params.radii_m)} radii",
                f"{len(snapshot.met_pairs)} met pairs",
                f"{len(models)} {kind} models",
            )
        )
