"""Round-robin analysis: leave-some-mets-out cross-validation of the flow model.

For every subset size from the number of mets down to the minimum size, and
every combination of that size, a model is built from the subset and used
to predict the held-out mets. With nothing held out (the full set) the
subset predicts itself. Sizes already analysed for the same mets,
time of day and season are skipped.
"""

from __future__ import annotations

import logging
from itertools import combinations
from math import comb

from windresource.core.errors import ValidationError
from windresource.core.site_calibration import SiteCalibrator
from windresource.model.flow_model import RoundRobinEstimate
from windresource.model.met_site import MetSite
from windresource.model.requests import RoundRobinParams, StageKind
from windresource.model.results import StageOutput
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def common_radii(mets: list[MetSite]) -> tuple[int, ...]:
    radii = set(mets[0].exposures)
    for met in mets[1:]:
        radii &= set(met.exposures)
    return tuple(sorted(radii))


class RoundRobinRunner(StageRunner):
    kind = StageKind.ROUND_ROBIN

    def execute(self, params: RoundRobinParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        mets = sorted(snapshot.mets_with_wind(), key=lambda m: m.id)
        if len(mets) < 2:
            raise ValidationError("Round robin needs at least two mets with wind distributions")
        if not 1 <= params.min_subset_size <= len(mets):
            raise ValidationError(f"Minimum subset size must be between 1 and {len(mets)}, got {params.min_subset_size}")
        radii = common_radii(mets)
        if not radii:
            raise ValidationError("Mets have no exposures; run met calcs first")

        met_ids = tuple(m.id for m in mets)
        sizes = [
            size
            for size in range(len(mets), params.min_subset_size - 1, -1)
            if (size, met_ids, params.time_of_day, params.season) not in snapshot.round_robin
        ]
        if not sizes:
            logger.info(f"Round robin: all sizes down to {params.min_subset_size} already done")
            return StageOutput(mutations=())

        added: list[tuple] = []

        def discard() -> None:
            for key in added:
                snapshot.round_robin.pop(key, None)

        ctx.add_rollback("Discard round robin estimates of this run", discard)

        num_models = sum(comb(len(mets), size) for size in sizes)
        done = 0
        ctx.report(percent=0, message="Running round robin analysis...")
        for size in sizes:
            estimate = RoundRobinEstimate(
                subset_size=size, met_ids=met_ids, time_of_day=params.time_of_day, season=params.season
            )
            for subset in combinations(mets, size):
                ctx.checkpoint()
                model = SiteCalibrator.best_model(
                    mets=list(subset), time_of_day=params.time_of_day, season=params.season, radii=radii
                )
                subset_ids = {m.id for m in subset}
                held_out = [m for m in mets if m.id not in subset_ids] or list(subset)
                estimate.combinations.append(tuple(m.id for m in subset))
                estimate.rms_errors.append(SiteCalibrator.rms_error(model=model, predictors=list(subset), targets=held_out))
                done += 1
                ctx.report(percent=100.0 * done / num_models, message=f"Running round robin analysis: subset size {size}")
            snapshot.round_robin[estimate.key] = estimate
            added.append(estimate.key)
            logger.info(f"Round robin size {size}: {len(estimate.combinations)} models, mean RMS {estimate.mean_rms:.3f} m/s")

        return StageOutput(mutations=tuple(f"round robin size {size}" for size in sizes))
