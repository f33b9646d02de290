"""ExceedanceSimulator - Monte Carlo composite probability factors.

For each horizon (1, 10 and 20 years) and each simulation:

    PF(year) = product over curves of curve.inverse_cdf(u)
    result   = mean over the horizon's years of PF(year)

Results are sorted ascending and P-values read from rank position:

    P_x = sorted[round((1 - x / 100) * (n - 1))]

so P99 (exceeded 99% of the time) is a low PF and P1 a high one. Each
horizon draws from its own generator seeded with (seed, horizon), so
horizons are independent and reproducible.
"""

from __future__ import annotations

import logging

import numpy as np

from windresource.constants import ExceedanceConfig, ProgressConfig
from windresource.core.cancellation import CancellationContext
from windresource.core.errors import ValidationError
from windresource.core.progress import ProgressReporter, ProgressThrottle
from windresource.model.exceedance import CompositeLoss, ExceedanceCurve, ExceedanceResult

logger = logging.getLogger(__name__)


class ExceedanceSimulator:
    """Runs every horizon for a set of independent exceedance curves."""

    def __init__(
        self,
        num_sims: int = ExceedanceConfig.DEFAULT_NUM_SIMS,
        seed: int = ExceedanceConfig.DEFAULT_SEED,
        horizons: tuple[int, ...] = ExceedanceConfig.HORIZONS_YEARS,
        reporter: ProgressReporter | None = None,
        cancellation: CancellationContext | None = None,
    ) -> None:
        if num_sims < 1:
            raise ValidationError(f"Number of simulations must be at least 1, got {num_sims}")
        self.num_sims = num_sims
        self.seed = seed
        self.horizons = horizons
        self.reporter = reporter
        self.cancellation = cancellation or CancellationContext()
        self._throttle = ProgressThrottle(every_n=ProgressConfig.EXCEEDANCE_SIM_INTERVAL)

    @staticmethod
    def p_values(sorted_results: np.ndarray, percents: tuple[int, ...] = ExceedanceConfig.P_VALUES) -> np.ndarray:
        n = len(sorted_results)
        ranks = [int(round((1 - p / 100) * (n - 1))) for p in percents]
        return sorted_results[ranks]

    def simulate_horizon(self, curves: list[ExceedanceCurve], horizon_years: int, horizon_index: int) -> ExceedanceResult:
        """Composite PF of every simulation for one horizon.

        Draws are taken simulation by simulation, year by year, curve by curve.
        """
        rng = np.random.default_rng((self.seed, horizon_index))
        results = np.empty(self.num_sims)
        chunk = ProgressConfig.EXCEEDANCE_SIM_INTERVAL

        for start in range(0, self.num_sims, chunk):
            self.cancellation.checkpoint()
            stop = min(start + chunk, self.num_sims)
            u = rng.random((stop - start, horizon_years, len(curves)))
            pf = np.ones((stop - start, horizon_years))
            for c, curve in enumerate(curves):
                pf *= curve.inverse_cdf(u[:, :, c])
            results[start:stop] = pf.mean(axis=1)

            if self._throttle.crossed(previous=start, current=stop):
                self._report(
                    percent=100.0 * stop / self.num_sims,
                    message=f"Simulating {horizon_years}-year composite PF: {stop}/{self.num_sims}",
                )

        sorted_results = np.sort(results)
        return ExceedanceResult(
            horizon_years=horizon_years,
            sorted_pfs=sorted_results,
            p_values=self.p_values(sorted_results=sorted_results),
        )

    def run(self, curves: list[ExceedanceCurve]) -> CompositeLoss:
        """Run all horizons. The returned composite loss is complete.

        Raises:
            ValidationError: No curves.
            StageCancelled: Cancellation requested; no horizon is kept.
        """
        if not curves:
            raise ValidationError("Exceedance needs at least one curve")

        composite = CompositeLoss(curves=list(curves))
        for index, horizon in enumerate(self.horizons):
            logger.info(f"Exceedance: {horizon}-year horizon, {self.num_sims} simulations, {len(curves)} curves")
            composite.results[horizon] = self.simulate_horizon(curves=curves, horizon_years=horizon, horizon_index=index)
        composite.is_complete = True
        return composite

    def _report(self, percent: float, message: str) -> None:
        if self.reporter is not None:
            self.reporter.report(percent=percent, message=message)
