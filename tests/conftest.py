"""Shared pytest fixtures for windresource tests.

Provides synthetic wind climates, a power curve, terrain grids, GeoTIFF
writing and a StageContext factory for running stage bodies directly.

COORDINATE SYSTEM:
    Sites use UTM-like metres around (500000 E, 4980000 N). Terrain grids are
    centred there, so every met and turbine in these fixtures lies inside them.
    Site latitude/longitude (45 N, 75 W) only matter for solar geometry and
    the MERRA2 grid.
"""

from datetime import date
from pathlib import Path
from typing import Callable

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_origin

from windresource.core.cancellation import CancellationContext
from windresource.core.progress import ProgressReporter, RecordingProgressListener
from windresource.model.grid import RasterGrid
from windresource.model.met_site import WindDistribution
from windresource.model.snapshot import DomainSnapshot
from windresource.model.turbine import PowerCurve
from windresource.providers.merra_client import dataset_name
from windresource.providers.project_store import ProjectStore
from windresource.stages.base import StageContext

SITE_X = 500_000.0
SITE_Y = 4_980_000.0
SITE_LAT = 45.0
SITE_LON = -75.0


# =============================================================================
# WIND CLIMATES
# =============================================================================


def weibull_bins(a: float, k: float, num_bins: int = 25, bin_width: float = 1.0) -> np.ndarray:
    """Weibull probabilities of 1 m/s bins (normalized)."""
    edges = np.arange(num_bins + 1) * bin_width
    cdf = 1.0 - np.exp(-((edges / a) ** k))
    probs = np.diff(cdf)
    return probs / probs.sum()


def make_wind(a: float = 8.0, k: float = 2.0, num_sectors: int = 16) -> WindDistribution:
    """Uniform wind rose, same Weibull distribution in every sector."""
    return WindDistribution(
        wind_rose=np.full(num_sectors, 1.0 / num_sectors),
        sector_dists=np.tile(weibull_bins(a=a, k=k), (num_sectors, 1)),
    )


@pytest.fixture
def uniform_wind() -> WindDistribution:
    """16 equal sectors, Weibull A=8 m/s k=2 (mean ~7.1 m/s)."""
    return make_wind()


@pytest.fixture
def power_curve_100m() -> PowerCurve:
    """Generic 3 MW turbine: 100 m rotor, 80 m hub, cut-in 3, rated 12, cut-out 25 m/s."""
    ws = np.arange(0.0, 26.0)
    power = np.clip((ws - 3.0) / 9.0, 0.0, 1.0) ** 3 * 3000.0
    power[ws < 3.0] = 0.0
    tip = np.where(ws < 3.0, 0.0, np.minimum(40.0 + 5.0 * ws, 80.0))
    return PowerCurve(
        name="G100-3.0", rotor_diameter=100.0, hub_height=80.0, wind_speeds=ws, power_kw=power, tip_speeds=tip
    )


# =============================================================================
# TERRAIN
# =============================================================================


def hill_grid(half_width_m: float = 6000.0, resolution: float = 100.0, height_m: float = 200.0) -> RasterGrid:
    """Gaussian hill (sigma 1.5 km) centred on the site."""
    offsets = np.arange(-half_width_m, half_width_m + resolution, resolution)
    gx, gy = np.meshgrid(offsets, offsets, indexing="ij")
    values = 300.0 + height_m * np.exp(-(gx**2 + gy**2) / (2 * 1500.0**2))
    return RasterGrid(origin_x=SITE_X - half_width_m, origin_y=SITE_Y - half_width_m, resolution=resolution, values=values)


@pytest.fixture
def flat_topography() -> RasterGrid:
    """12 x 12 km at 100 m, 300 m everywhere."""
    grid = hill_grid()
    grid.values[:] = 300.0
    return grid


@pytest.fixture
def hill_topography() -> RasterGrid:
    """12 x 12 km at 100 m with a 200 m hill on the site."""
    return hill_grid()


def write_geotiff(path: Path, grid: RasterGrid, nodata: float | None = None) -> Path:
    """Write a RasterGrid ([x, y] layout) as a north-up single-band GeoTIFF."""
    band = np.flipud(grid.values.T)
    west = grid.origin_x - grid.resolution / 2
    north = grid.origin_y + (grid.num_y - 0.5) * grid.resolution
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=band.shape[0],
        width=band.shape[1],
        count=1,
        dtype="float64",
        crs="EPSG:32618",
        transform=from_origin(west, north, grid.resolution, grid.resolution),
        nodata=nodata,
    ) as dst:
        dst.write(band, 1)
    return path


@pytest.fixture
def geotiff_writer(tmp_path: Path) -> Callable[..., Path]:
    def _write(grid: RasterGrid, name: str = "grid.tif", nodata: float | None = None) -> Path:
        return write_geotiff(path=tmp_path / name, grid=grid, nodata=nodata)

    return _write


# =============================================================================
# PROJECT
# =============================================================================


@pytest.fixture
def snapshot() -> DomainSnapshot:
    """Empty project at 45 N, 75 W, modeled height 80 m."""
    return DomainSnapshot(lat=SITE_LAT, lon=SITE_LON, modeled_height=80.0)


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    project = ProjectStore(tmp_path / "project.db").connect()
    yield project
    project.close()


@pytest.fixture
def make_ctx() -> Callable[..., tuple[StageContext, RecordingProgressListener]]:
    """Factory for a StageContext whose progress events are recorded.

    Example:
        ctx, recorder = make_ctx(snapshot, store)
        result = runner.invoke(request=WorkRequest(snapshot, params), ctx=ctx)
    """

    def _make(snapshot: DomainSnapshot, store: ProjectStore | None = None) -> tuple[StageContext, RecordingProgressListener]:
        recorder = RecordingProgressListener()
        reporter = ProgressReporter()
        reporter.add_listener(recorder)
        ctx = StageContext(snapshot=snapshot, store=store, reporter=reporter, cancellation=CancellationContext())
        return ctx, recorder

    return _make


class CancelAfter:
    """Progress listener that requests cancellation once it has seen n events."""

    def __init__(self, cancellation: CancellationContext, n: int) -> None:
        self.cancellation = cancellation
        self.n = n
        self.seen = 0

    def on_progress(self, event) -> None:
        self.seen += 1
        if self.seen >= self.n:
            self.cancellation.cancel(reason="test cancel")


# =============================================================================
# MERRA2
# =============================================================================

MERRA_VALUES = {"U50M": 0.0, "V50M": -6.0, "U10M": 0.0, "V10M": -4.0, "T10M": 275.0, "PS": 98000.0, "SLP": 101300.0}


def merra_ascii(
    day: date,
    lats: tuple[float, ...] = (45.0, 45.5),
    lons: tuple[float, ...] = (-75.0, -74.375),
    values: dict[str, float] | None = None,
    block_style: bool = False,
) -> str:
    """OPeNDAP ASCII daily subset with constant fields (default: 6 m/s from the north at 50 m).

    block_style=False writes "U50M[h][i], ..." rows; True writes a block
    declaration followed by index-only rows.
    """
    values = values or MERRA_VALUES
    lines = [f"Dataset: {dataset_name(day)}.nc4"]
    for name, value in values.items():
        row = ", ".join(str(value) for _ in lons)
        if block_style:
            lines.append(f"{name}, [24][{len(lats)}][{len(lons)}]")
        for hour in range(24):
            for lat_index in range(len(lats)):
                prefix = "" if block_style else name
                lines.append(f"{prefix}[{hour}][{lat_index}], {row}")
        lines.append("")
    for axis, coords in (("lat", lats), ("lon", lons)):
        if block_style:
            lines.append(f"{axis}, [{len(coords)}]")
            lines.append(", ".join(str(c) for c in coords))
        else:
            lines.append(f"{axis}, " + ", ".join(str(c) for c in coords))
    return "\n".join(lines) + "\n"
