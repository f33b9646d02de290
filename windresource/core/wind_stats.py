"""Wind statistics shared by the stages and simulators.

Distributions are binned: bin i covers [i * bin_width, (i + 1) * bin_width)
and arrays are shaped (num_sectors, num_bins). Wind directions follow the
meteorological convention (direction the wind comes FROM, 0 = North).

- Sector lookup for directions
- Cumulative distributions and inverse-CDF sampling
- Stretching a distribution to a new mean (flow model estimates)
- Weibull A/k by the method of moments (scipy gamma + brentq)
- Wind speed/direction from U/V components and sector histograms
"""

from __future__ import annotations

import numpy as np
from scipy.optimize import brentq
from scipy.special import gamma


def sector_width_deg(num_sectors: int) -> float:
    return 360.0 / num_sectors


def sector_index(direction_deg: np.ndarray | float, num_sectors: int) -> np.ndarray | int:
    """Sector containing a wind direction. Sector 0 is centred on North.

    Example (16 sectors): 0..11 -> 0, 12..33 -> 1, 349..359 -> 0
    """
    idx = np.round(np.asarray(direction_deg, dtype=np.float64) / sector_width_deg(num_sectors)).astype(int) % num_sectors
    return int(idx) if idx.ndim == 0 else idx


def sector_degrees(sector: int, num_sectors: int) -> np.ndarray:
    """Whole-degree direction buckets (0-359) belonging to a sector."""
    degrees = np.arange(360)
    return degrees[sector_index(degrees, num_sectors) == sector]


def bin_edges(num_bins: int, bin_width: float) -> np.ndarray:
    return np.arange(num_bins + 1, dtype=np.float64) * bin_width


def bin_centres(num_bins: int, bin_width: float) -> np.ndarray:
    return (np.arange(num_bins, dtype=np.float64) + 0.5) * bin_width


def normalize_rows(values: np.ndarray) -> np.ndarray:
    """Scale each row to sum 1. All-zero rows stay zero."""
    values = np.asarray(values, dtype=np.float64)
    totals = values.sum(axis=-1, keepdims=True)
    return np.divide(values, totals, out=np.zeros_like(values), where=totals > 0)


def sector_cdfs(sector_dists: np.ndarray) -> np.ndarray:
    """Cumulative distribution per sector with a leading zero.

    Args:
        sector_dists: Array (num_sectors, num_bins), any non-negative scale

    Returns:
        Array (num_sectors, num_bins + 1); each row runs 0 -> 1 (or stays 0
        for an empty sector).
    """
    probs = normalize_rows(sector_dists)
    cdf = np.cumsum(probs, axis=1)
    return np.concatenate([np.zeros((cdf.shape[0], 1)), cdf], axis=1)


def inverse_cdf(cdf: np.ndarray, bin_width: float, u: np.ndarray | float) -> np.ndarray:
    """Wind speed for uniform draws u by linear inverse-CDF lookup.

    An empty CDF (all zeros) maps every draw to calm (0 m/s).
    """
    u = np.asarray(u, dtype=np.float64)
    if cdf[-1] <= 0:
        return np.zeros_like(u)
    edges = bin_edges(len(cdf) - 1, bin_width)
    return np.interp(u, cdf, edges)


def mean_speed(probs: np.ndarray, bin_width: float) -> np.ndarray:
    """Mean wind speed of binned distribution(s) along the last axis."""
    probs = normalize_rows(probs)
    return probs @ bin_centres(probs.shape[-1], bin_width)


def stretch_distribution(probs: np.ndarray, bin_width: float, ratio: np.ndarray | float) -> np.ndarray:
    """Scale wind speeds of binned distributions by ratio (per row).

    The new CDF at speed s equals the old CDF at s / ratio, resampled onto
    the same bins, so the mean scales by ratio.
    """
    probs = np.atleast_2d(normalize_rows(probs))
    ratios = np.broadcast_to(np.asarray(ratio, dtype=np.float64), (probs.shape[0],))
    num_bins = probs.shape[1]
    edges = bin_edges(num_bins, bin_width)
    out = np.zeros_like(probs)
    for i, (row, r) in enumerate(zip(probs, ratios)):
        if row.sum() <= 0 or r <= 0:
            continue
        cdf = np.concatenate([[0.0], np.cumsum(row)])
        stretched = np.interp(edges / r, edges, cdf, right=1.0)
        stretched[-1] = 1.0
        out[i] = np.diff(stretched)
    return out


def weibull_params(probs: np.ndarray, bin_width: float, mean_ws: float | None = None) -> tuple[float, float]:
    """Weibull scale A and shape k of a binned distribution (method of moments).

    k solves (std/mean)^2 = gamma(1 + 2/k) / gamma(1 + 1/k)^2 - 1; A follows
    from the mean. Passing mean_ws keeps the shape but rescales A to that mean.

    Returns:
        Tuple (A, k). (0.0, 0.0) for an empty distribution.
    """
    probs = np.asarray(probs, dtype=np.float64)
    total = probs.sum()
    if total <= 0:
        return 0.0, 0.0
    probs = probs / total
    centres = bin_centres(len(probs), bin_width)
    mean = float(probs @ centres)
    var = float(probs @ (centres - mean) ** 2)
    if mean <= 0:
        return 0.0, 0.0

    cv2 = var / mean**2

    def moment_gap(k: float) -> float:
        return gamma(1 + 2 / k) / gamma(1 + 1 / k) ** 2 - 1 - cv2

    low, high = 0.5, 20.0
    if moment_gap(high) > 0:
        k = high  # narrower than any realistic wind climate
    elif moment_gap(low) < 0:
        k = low
    else:
        k = float(brentq(moment_gap, low, high))

    target_mean = mean if mean_ws is None else mean_ws
    return float(target_mean / gamma(1 + 1 / k)), k


def wind_from_components(u: np.ndarray, v: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Wind speed and meteorological direction from eastward/northward components."""
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    ws = np.hypot(u, v)
    wd = (270.0 - np.degrees(np.arctan2(v, u))) % 360.0
    return ws, wd


def sector_histogram(
    ws: np.ndarray,
    wd: np.ndarray,
    num_sectors: int,
    num_bins: int,
    bin_width: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Wind rose and per-sector speed distributions of a time series.

    Returns:
        Tuple (wind_rose[num_sectors], sector_dists[num_sectors, num_bins]),
        rose normalized to 1 and each sector row normalized to 1.
    """
    ws = np.asarray(ws, dtype=np.float64)
    wd = np.asarray(wd, dtype=np.float64)
    valid = np.isfinite(ws) & np.isfinite(wd)
    ws, wd = ws[valid], wd[valid]

    sectors = np.atleast_1d(sector_index(wd, num_sectors))
    bins = np.clip((ws / bin_width).astype(int), 0, num_bins - 1)
    counts = np.zeros((num_sectors, num_bins))
    np.add.at(counts, (sectors, bins), 1.0)

    total = counts.sum()
    rose = counts.sum(axis=1) / total if total > 0 else np.zeros(num_sectors)
    return rose, normalize_rows(counts)
