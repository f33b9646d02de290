"""MERRA2 stages: import local daily files to a site reference, and download them.

Import: requested dates are local; the files are UTC days, so the range is
shifted by the UTC offset before looking up files and shifted back after
parsing. Grid nodes are interpolated to the site by inverse distance squared.

Download: one credential check, then the days are fetched by a pool of at
most MERRAConfig.MAX_CONCURRENT_DOWNLOADS workers. Files already on disk are
skipped; every saved file must contain the expected dataset. Completed
daily files stay on disk after a cancel or failure, a later run skips them.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import date, datetime, timedelta
from pathlib import Path

import numpy as np

from windresource.constants import MERRAConfig, ProgressConfig
from windresource.core import wind_stats
from windresource.core.errors import DataIOError, StageCancelled, ValidationError
from windresource.core.geo_calculator import GeoCalculator
from windresource.core.mcp import long_term_distribution
from windresource.core.progress import ProgressClock, ProgressThrottle
from windresource.model.merra import MerraReference
from windresource.model.requests import MerraDownloadParams, MerraImportParams, StageKind
from windresource.model.results import StageOutput
from windresource.providers.merra_client import MerraBox, MerraClient, MerraDay, find_day_file, parse_merra_ascii
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def utc_days(start: date, end: date, utc_offset: int) -> list[date]:
    """UTC calendar days covering local days start..end (inclusive)."""
    first = datetime(start.year, start.month, start.day) - timedelta(hours=utc_offset)
    last = datetime(end.year, end.month, end.day, 23) - timedelta(hours=utc_offset)
    num_days = (last.date() - first.date()).days + 1
    return [first.date() + timedelta(days=i) for i in range(num_days)]


def idw_weights(lats: np.ndarray, lons: np.ndarray, lat: float, lon: float) -> np.ndarray:
    """Array (num_lat, num_lon) of normalized inverse-distance-squared weights."""
    distances = np.array(
        [[GeoCalculator.haversine_distance_m(lat1=lat, lon1=lon, lat2=la, lon2=lo) for lo in lons] for la in lats]
    )
    if np.any(distances < 1.0):
        weights = (distances < 1.0).astype(np.float64)
    else:
        weights = 1.0 / distances**2
    return weights / weights.sum()


def interpolate_day(day: MerraDay, lat: float, lon: float) -> dict[str, np.ndarray]:
    """Hourly (24,) series of every field at the site. Missing hours are NaN."""
    weights = idw_weights(lats=day.lats, lons=day.lons, lat=lat, lon=lon)
    return {name: np.einsum("hij,ij->h", grid, weights) for name, grid in day.fields.items()}


class MerraImportRunner(StageRunner):
    kind = StageKind.MERRA_IMPORT

    def execute(self, params: MerraImportParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        if params.end < params.start:
            raise ValidationError(f"MERRA2 end date {params.end} is before start date {params.start}")
        folder = Path(params.folder)
        if not folder.is_dir():
            raise DataIOError(f"MERRA2 folder not found: {folder}")
        if params.mcp_method not in MERRAConfig.MCP_METHODS:
            raise ValidationError(f"Unknown MCP method '{params.mcp_method}'")
        mcp_met = None
        if params.mcp_met_id is not None:
            mcp_met = snapshot.mets.get(params.mcp_met_id)
            if mcp_met is None:
                raise ValidationError(f"Unknown met {params.mcp_met_id}")

        utc_offset = snapshot.utc_offset if snapshot.utc_offset is not None else GeoCalculator.utc_offset_hours(lon=snapshot.lon)
        days = utc_days(start=params.start, end=params.end, utc_offset=utc_offset)
        throttle = ProgressThrottle(every_n=ProgressConfig.MERRA_IMPORT_DAY_INTERVAL)

        timestamps, series = [], {name: [] for name in MERRAConfig.PARAMETERS}
        for count, day in enumerate(days, start=1):
            ctx.checkpoint()
            if throttle.due(count):
                ctx.report(percent=100.0 * count / len(days), message="Importing MERRA2 data")
            path = find_day_file(folder=folder, day=day)
            if path is None:
                continue
            try:
                text = path.read_text()
            except OSError as e:
                raise DataIOError(f"Cannot read MERRA2 file {path}: {e}") from e
            values = interpolate_day(day=parse_merra_ascii(text), lat=snapshot.lat, lon=snapshot.lon)
            base = np.datetime64(day, "h")
            timestamps.append(base + np.arange(MERRAConfig.HOURS_PER_FILE) + utc_offset)
            for name in MERRAConfig.PARAMETERS:
                series[name].append(values[name])

        reference = self._build_reference(
            timestamps=timestamps, series=series, params=params, utc_offset=utc_offset, lat=snapshot.lat, lon=snapshot.lon
        )

        previous = (snapshot.merra, snapshot.merra_folder, snapshot.utc_offset)

        def restore() -> None:
            snapshot.merra, snapshot.merra_folder, snapshot.utc_offset = previous

        ctx.add_rollback("Restore previous MERRA2 reference", restore)
        snapshot.merra = reference
        snapshot.merra_folder = folder
        snapshot.utc_offset = utc_offset
        mutations = [f"MERRA2 reference: {len(reference)} hours"]

        if ctx.store is not None:
            store = ctx.store
            ctx.add_rollback(
                "Restore stored MERRA2 series",
                lambda: store.write_merra(previous[0]) if previous[0] is not None else store.clear_table("merra_series"),
            )
            store.write_merra(reference)

        if mcp_met is not None:
            ctx.checkpoint()
            old_long_term, old_done = mcp_met.long_term, mcp_met.mcp_done

            def restore_met() -> None:
                mcp_met.long_term, mcp_met.mcp_done = old_long_term, old_done

            ctx.add_rollback(f"Restore distributions of {mcp_met.id}", restore_met)
            ctx.report(percent=0, message=f"Running MCP for {mcp_met.id}...")
            mcp_met.long_term = long_term_distribution(met=mcp_met, reference=reference, method=params.mcp_method)
            mcp_met.mcp_done = True
            mutations.append(f"long-term distribution of {mcp_met.id} ({params.mcp_method})")

        logger.info(
            f"MERRA2 import: {len(reference)} hours, mean WS {float(np.mean(reference.ws)):.2f} m/s, "
            f"annual means {reference.annual_mean_ws()}"
        )
        return StageOutput(mutations=tuple(mutations), payload=reference)

    @staticmethod
    def _build_reference(
        timestamps: list[np.ndarray],
        series: dict[str, list[np.ndarray]],
        params: MerraImportParams,
        utc_offset: int,
        lat: float,
        lon: float,
    ) -> MerraReference:
        """Trim to the local range and check coverage.

        Raises:
            ValidationError: Less than MERRAConfig.MIN_COVERAGE_FRACTION of the range has data.
        """
        start = np.datetime64(params.start, "h")
        end = np.datetime64(params.end, "h") + 23
        expected_hours = int((end - start).astype(int)) + 1
        if not timestamps:
            raise ValidationError(f"No MERRA2 files for {params.start}..{params.end} in {params.folder}")

        times = np.concatenate(timestamps)
        data = {name: np.concatenate(parts) for name, parts in series.items()}
        keep = (times >= start) & (times <= end) & np.isfinite(data["U50M"]) & np.isfinite(data["V50M"])
        if keep.sum() < MERRAConfig.MIN_COVERAGE_FRACTION * expected_hours:
            raise ValidationError(
                f"Available MERRA2 data covers {int(keep.sum())} of {expected_hours} hours in {params.start}..{params.end}"
            )

        ws, wd = wind_stats.wind_from_components(data["U50M"][keep], data["V50M"][keep])
        ws_10m, _ = wind_stats.wind_from_components(data["U10M"][keep], data["V10M"][keep])
        return MerraReference(
            lat=lat,
            lon=lon,
            utc_offset=utc_offset,
            timestamps=times[keep].astype("datetime64[s]"),
            ws=ws,
            wd=wd,
            ws_10m=ws_10m,
            temperature=data["T10M"][keep],
            pressure=data["PS"][keep],
            sea_level_pressure=data["SLP"][keep],
        )


class MerraDownloadRunner(StageRunner):
    kind = StageKind.MERRA_DOWNLOAD

    def __init__(self, client_factory=MerraClient) -> None:
        self.client_factory = client_factory

    def execute(self, params: MerraDownloadParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        if not snapshot.earthdata_user or not snapshot.earthdata_password:
            raise ValidationError("Enter Earthdata credentials before downloading MERRA2 data")
        if params.end < params.start:
            raise ValidationError(f"MERRA2 end date {params.end} is before start date {params.start}")

        box = MerraBox.snapped(
            min_lat=params.min_lat, max_lat=params.max_lat, min_lon=params.min_lon, max_lon=params.max_lon
        )
        utc_offset = GeoCalculator.utc_offset_hours(lon=box.min_lon)
        days = utc_days(start=params.start, end=params.end, utc_offset=utc_offset)

        folder = Path(params.folder)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DataIOError(f"Cannot create MERRA2 folder {folder}: {e}") from e

        client = self.client_factory(username=snapshot.earthdata_user, password=snapshot.earthdata_password, box=box)
        try:
            try:
                client.test_credentials(day=days[0])
            except DataIOError:
                snapshot.earthdata_user = None
                snapshot.earthdata_password = None
                raise
            downloaded = self._fan_out(client=client, days=days, folder=folder, ctx=ctx)
        finally:
            client.close()

        snapshot.merra_folder = folder
        logger.info(f"MERRA2 download: {downloaded} new files, {len(days) - downloaded} already present in {folder}")
        return StageOutput(mutations=(f"{downloaded} MERRA2 files in {folder}",), payload=folder)

    @staticmethod
    def _fan_out(client: MerraClient, days: list[date], folder: Path, ctx: StageContext) -> int:
        """Fetch every missing day with a bounded worker pool; join before returning.

        The first failure (or cancellation) stops workers at their next day.
        """
        lock = threading.Lock()
        stop = threading.Event()
        clock = ProgressClock(total_units=len(days))
        throttle = ProgressThrottle(every_n=ProgressConfig.MERRA_DOWNLOAD_FILE_INTERVAL)
        counts = {"done": 0, "downloaded": 0}

        def fetch_one(day: date) -> None:
            if stop.is_set():
                return
            ctx.checkpoint()
            if find_day_file(folder=folder, day=day) is None:
                client.download_day(day=day, folder=folder)
                with lock:
                    counts["downloaded"] += 1
            with lock:
                counts["done"] += 1
                done = counts["done"]
            if throttle.due(done):
                ctx.report(
                    percent=min(100.0 * done / len(days), 100.0),
                    message=f"Downloading MERRA2 data. {clock.describe(units_done=done, unit='file')}",
                )

        ctx.report(percent=0, message="Downloading MERRA2 data...")
        with ThreadPoolExecutor(
            max_workers=MERRAConfig.MAX_CONCURRENT_DOWNLOADS, thread_name_prefix="merra-download"
        ) as pool:
            futures = [pool.submit(fetch_one, day) for day in days]
            finished, _ = wait(futures, return_when=FIRST_EXCEPTION)
            if any(f.exception() is not None for f in finished):
                stop.set()
                for future in futures:
                    future.cancel()

        errors = [f.exception() for f in futures if not f.cancelled() and f.exception() is not None]
        cancelled = [e for e in errors if isinstance(e, StageCancelled)]
        if cancelled:
            raise cancelled[0]
        if errors:
            raise errors[0]
        return counts["downloaded"]
