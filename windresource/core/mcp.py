"""Measure-Correlate-Predict (MCP) against a long-term reference.

Concurrent hours of met and reference are grouped by reference direction
sector; each sector gets a linear relation ws_met = intercept + slope * ws_ref:

    linear_regression: least-squares fit
    variance_ratio:    slope = std(met) / std(ref), intercept = mean(met) - slope * mean(ref)

Sectors with fewer than MIN_SECTOR_POINTS concurrent hours use the
all-direction relation. The relation is then applied to the whole reference
period to build the met's long-term distribution.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import stats

from windresource.core import wind_stats
from windresource.core.errors import ValidationError
from windresource.model.merra import MerraReference
from windresource.model.met_site import MetSite, WindDistribution

logger = logging.getLogger(__name__)

MIN_SECTOR_POINTS = 10
MIN_CONCURRENT_HOURS = 2


def fit_relation(ws_ref: np.ndarray, ws_met: np.ndarray, method: str) -> tuple[float, float]:
    """(intercept, slope) of ws_met against ws_ref."""
    if method == "linear_regression":
        fit = stats.linregress(ws_ref, ws_met)
        return float(fit.intercept), float(fit.slope)
    if method == "variance_ratio":
        std_ref = float(np.std(ws_ref))
        slope = float(np.std(ws_met)) / std_ref if std_ref > 0 else 1.0
        return float(np.mean(ws_met) - slope * np.mean(ws_ref)), slope
    raise ValidationError(f"Unknown MCP method '{method}'")


def concurrent_indices(met_times: np.ndarray, ref_times: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Indices into (met, reference) of the hours both series share."""
    met_hours = met_times.astype("datetime64[h]")
    ref_hours = ref_times.astype("datetime64[h]")
    _, met_idx, ref_idx = np.intersect1d(met_hours, ref_hours, assume_unique=False, return_indices=True)
    return met_idx, ref_idx


def long_term_distribution(met: MetSite, reference: MerraReference, method: str) -> WindDistribution:
    """Long-term distribution of a time-series met.

    Raises:
        ValidationError: Met has no time series or too few concurrent hours.
    """
    if met.time_series is None or met.wind is None:
        raise ValidationError(f"MCP needs a time-series met, {met.id} has none")
    met_idx, ref_idx = concurrent_indices(met_times=met.time_series.timestamps, ref_times=reference.timestamps)
    if len(met_idx) < MIN_CONCURRENT_HOURS:
        raise ValidationError(f"Met {met.id} and MERRA2 share only {len(met_idx)} hours")

    num_sectors = met.wind.num_sectors
    ws_met = met.time_series.ws[met_idx]
    ws_ref = reference.ws[ref_idx]
    sectors = np.atleast_1d(wind_stats.sector_index(reference.wd[ref_idx], num_sectors))
    overall = fit_relation(ws_ref=ws_ref, ws_met=ws_met, method=method)

    relations = []
    for s in range(num_sectors):
        in_sector = sectors == s
        if in_sector.sum() >= MIN_SECTOR_POINTS:
            relations.append(fit_relation(ws_ref=ws_ref[in_sector], ws_met=ws_met[in_sector], method=method))
        else:
            relations.append(overall)
    intercepts = np.array([r[0] for r in relations])
    slopes = np.array([r[1] for r in relations])

    all_sectors = np.atleast_1d(wind_stats.sector_index(reference.wd, num_sectors))
    ws_long_term = np.maximum(intercepts[all_sectors] + slopes[all_sectors] * reference.ws, 0.0)
    logger.info(
        f"MCP {method} for {met.id}: {len(met_idx)} concurrent hours, "
        f"overall slope {overall[1]:.3f}, intercept {overall[0]:.3f}"
    )
    return WindDistribution.from_series(
        ws=ws_long_term,
        wd=reference.wd,
        num_sectors=num_sectors,
        num_bins=met.wind.num_bins,
        bin_width=met.wind.bin_width,
    )
