"""Site-calibrated flow model: fitting, cross-prediction error and estimates.

For every ordered pair of mets (predictor p, target t) and sector s:

    WS_t[s] / WS_p[s] - 1 = uw[s] * (UW_t[s] - UW_p[s]) + dw[s] * (DW_t[s] - DW_p[s])

uw and dw are fitted per sector by least squares over all ordered pairs, once
per radius of investigation; the radius with the lowest cross-prediction RMS
error wins. With a single met there is nothing to fit and default
coefficients are used.

Estimates at a target are the inverse-distance-squared weighted average of
every predicting met's distribution, each stretched by the model's WS ratio.
"""

from __future__ import annotations

import logging
from itertools import permutations

import numpy as np
from scipy import linalg

from windresource.constants import MetCalcConfig
from windresource.core.errors import ValidationError
from windresource.model.flow_model import SiteModel
from windresource.model.met_site import Exposure, MetSite, WindDistribution

logger = logging.getLogger(__name__)

# Closer predictors are treated as this far away (IDW weight cap)
MIN_IDW_DISTANCE_M = 1.0


class SiteCalibrator:
    """Static methods for building and applying site-calibrated models."""

    @staticmethod
    def default_model(
        time_of_day: str, season: str, radius_m: int, met_ids: tuple[str, ...], num_sectors: int
    ) -> SiteModel:
        return SiteModel(
            time_of_day=time_of_day,
            season=season,
            radius_m=radius_m,
            uw_coeffs=np.full(num_sectors, MetCalcConfig.DEFAULT_UW_COEFF),
            dw_coeffs=np.full(num_sectors, MetCalcConfig.DEFAULT_DW_COEFF),
            met_ids=met_ids,
            is_default=True,
        )

    @staticmethod
    def _sector_ws(mets: list[MetSite], time_of_day: str, season: str) -> dict[str, np.ndarray]:
        result = {}
        for met in mets:
            dist = met.distribution_for(time_of_day=time_of_day, season=season)
            if dist is None:
                raise ValidationError(f"Met {met.id} has no wind distribution")
            result[met.id] = dist.sector_mean_ws
        return result

    @staticmethod
    def fit(mets: list[MetSite], time_of_day: str, season: str, radius_m: int) -> SiteModel:
        """Least-squares UW/DW coefficients per sector for one radius.

        Raises:
            ValidationError: Fewer than two mets, or a met without exposure at radius_m.
        """
        if len(mets) < 2:
            raise ValidationError("Fitting a site-calibrated model needs at least two mets")
        for met in mets:
            if radius_m not in met.exposures:
                raise ValidationError(f"Met {met.id} has no exposure for radius {radius_m} m")

        sector_ws = SiteCalibrator._sector_ws(mets=mets, time_of_day=time_of_day, season=season)
        num_sectors = len(next(iter(sector_ws.values())))
        uw = np.zeros(num_sectors)
        dw = np.zeros(num_sectors)
        for s in range(num_sectors):
            rows, targets = [], []
            for p, t in permutations(mets, 2):
                if sector_ws[p.id][s] <= 0:
                    continue
                ep, et = p.exposures[radius_m], t.exposures[radius_m]
                rows.append([et.upwind[s] - ep.upwind[s], et.downwind[s] - ep.downwind[s]])
                targets.append(sector_ws[t.id][s] / sector_ws[p.id][s] - 1.0)
            if rows:
                coeffs, _, _, _ = linalg.lstsq(np.array(rows), np.array(targets))
                uw[s], dw[s] = coeffs

        model = SiteModel(
            time_of_day=time_of_day,
            season=season,
            radius_m=radius_m,
            uw_coeffs=uw,
            dw_coeffs=dw,
            met_ids=tuple(m.id for m in mets),
        )
        model.rms_error = SiteCalibrator.rms_error(model=model, predictors=mets, targets=mets)
        return model

    @staticmethod
    def rms_error(model: SiteModel, predictors: list[MetSite], targets: list[MetSite]) -> float:
        """RMS error (m/s) of predicting each target's mean WS from every other predictor."""
        errors = []
        for target in targets:
            actual = target.distribution_for(time_of_day=model.time_of_day, season=model.season)
            for predictor in predictors:
                if predictor.id == target.id:
                    continue
                predicted = SiteCalibrator.predict_from(
                    model=model, predictor=predictor, target_exposure=target.exposures[model.radius_m]
                )
                errors.append(predicted.mean_ws - actual.mean_ws)
        return float(np.sqrt(np.mean(np.square(errors)))) if errors else 0.0

    @staticmethod
    def best_model(mets: list[MetSite], time_of_day: str, season: str, radii: tuple[int, ...]) -> SiteModel:
        """Fitted model at the radius with the lowest RMS error; default model for a single met."""
        if len(mets) == 1:
            wind = mets[0].effective_wind
            return SiteCalibrator.default_model(
                time_of_day=time_of_day,
                season=season,
                radius_m=radii[0],
                met_ids=(mets[0].id,),
                num_sectors=wind.num_sectors,
            )
        candidates = [SiteCalibrator.fit(mets=mets, time_of_day=time_of_day, season=season, radius_m=r) for r in radii]
        best = min(candidates, key=lambda m: m.rms_error)
        logger.debug(f"Site model {time_of_day}/{season}: radius {best.radius_m} m, RMS {best.rms_error:.3f} m/s")
        return best

    @staticmethod
    def predict_from(model: SiteModel, predictor: MetSite, target_exposure: Exposure) -> WindDistribution:
        """Distribution at a target predicted from one met."""
        dist = predictor.distribution_for(time_of_day=model.time_of_day, season=model.season)
        ratio = model.ws_ratio(predictor=predictor.exposures[model.radius_m], target=target_exposure)
        return dist.scaled(sector_ratios=ratio)

    @staticmethod
    def estimate(
        model: SiteModel,
        predictors: list[MetSite],
        target_exposure: Exposure,
        x: float,
        y: float,
    ) -> WindDistribution:
        """IDW-weighted estimate at (x, y) from every predicting met.

        Raises:
            ValidationError: No predicting mets.
        """
        if not predictors:
            raise ValidationError("No met sites to predict from")
        dists = [SiteCalibrator.predict_from(model=model, predictor=p, target_exposure=target_exposure) for p in predictors]
        distances = np.array([max(np.hypot(p.easting - x, p.northing - y), MIN_IDW_DISTANCE_M) for p in predictors])
        return WindDistribution.weighted_average(dists=dists, weights=1.0 / distances**2)
