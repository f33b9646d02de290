"""Tests for MERRA2 stages.

Tests: utc_days, idw_weights, MerraImportRunner, MerraDownloadRunner

Files are written with conftest.merra_ascii: constant fields on a 2 x 2
grid whose south-west node sits on the site (45 N, 75 W, UTC-5).
"""

import threading
import time
from datetime import date, timedelta
from pathlib import Path
from typing import Callable

import numpy as np
import pytest

from conftest import MERRA_VALUES, SITE_X, SITE_Y, merra_ascii
from windresource.constants import MERRAConfig
from windresource.core.errors import DataIOError
from windresource.model.met_site import MetTimeSeries, WindDistribution
from windresource.model.requests import MerraDownloadParams, MerraImportParams, WorkRequest
from windresource.model.results import Cancelled, Completed, Failed
from windresource.providers.merra_client import file_name
from windresource.stages import MerraDownloadRunner, MerraImportRunner
from windresource.stages.merra import idw_weights, utc_days

JAN_1 = date(2019, 1, 1)
JAN_2 = date(2019, 1, 2)


def write_days(folder: Path, days: list[date], v50m: dict[date, float] | None = None) -> None:
    """One daily file per UTC day; v50m overrides the northward 50 m wind per day."""
    for day in days:
        values = dict(MERRA_VALUES)
        if v50m and day in v50m:
            values["V50M"] = v50m[day]
        (folder / file_name(day)).write_text(merra_ascii(day, values=values))


# =============================================================================
# HELPERS
# =============================================================================


class TestUtcDays:
    def test_west_of_greenwich_needs_next_day(self) -> None:
        """Local 23:00 at UTC-5 is 04:00 UTC the next day."""
        assert utc_days(start=JAN_1, end=JAN_2, utc_offset=-5) == [JAN_1, JAN_2, date(2019, 1, 3)]

    def test_east_of_greenwich_needs_previous_day(self) -> None:
        assert utc_days(start=JAN_1, end=JAN_1, utc_offset=3) == [date(2018, 12, 31), JAN_1]

    def test_utc(self) -> None:
        assert utc_days(start=JAN_1, end=JAN_2, utc_offset=0) == [JAN_1, JAN_2]


class TestIdwWeights:
    def test_node_on_site_takes_all_weight(self) -> None:
        weights = idw_weights(lats=np.array([45.0, 45.5]), lons=np.array([-75.0, -74.375]), lat=45.0, lon=-75.0)
        assert weights[0, 0] == pytest.approx(1.0)
        assert weights.sum() == pytest.approx(1.0)

    def test_centre_weights_equal_by_latitude_row(self) -> None:
        weights = idw_weights(lats=np.array([45.0, 45.5]), lons=np.array([-75.0, -74.375]), lat=45.25, lon=-74.6875)
        assert weights.sum() == pytest.approx(1.0)
        assert weights[0, 0] == pytest.approx(weights[0, 1])
        assert weights[1, 0] == pytest.approx(weights[1, 1])


# =============================================================================
# IMPORT
# =============================================================================


class TestMerraImport:
    def run(self, snapshot, make_ctx, folder: Path, store=None, **kwargs):
        ctx, _ = make_ctx(snapshot, store)
        params = MerraImportParams(folder=folder, start=kwargs.pop("start", JAN_1), end=kwargs.pop("end", JAN_2), **kwargs)
        return MerraImportRunner().invoke(WorkRequest(snapshot, params), ctx)

    def test_import_local_hours(self, snapshot, store, make_ctx, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_1, JAN_2, date(2019, 1, 3)])

        result = self.run(snapshot, make_ctx, tmp_path, store=store)

        assert isinstance(result, Completed)
        reference = snapshot.merra
        assert result.payload is reference
        assert len(reference) == 48
        assert reference.timestamps[0] == np.datetime64("2019-01-01T00:00:00")
        assert reference.timestamps[-1] == np.datetime64("2019-01-02T23:00:00")
        np.testing.assert_allclose(reference.ws, 6.0)
        np.testing.assert_allclose(reference.wd % 360.0, 0.0, atol=1e-9)
        np.testing.assert_allclose(reference.ws_10m, 4.0)
        assert snapshot.utc_offset == -5
        assert snapshot.merra_folder == tmp_path
        assert store.count_rows("merra_series") == 48

    def test_snapshot_utc_offset_wins(self, snapshot, make_ctx, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_1, JAN_2])
        snapshot.utc_offset = 0

        result = self.run(snapshot, make_ctx, tmp_path)

        assert isinstance(result, Completed)
        assert snapshot.merra.utc_offset == 0
        assert len(snapshot.merra) == 48

    def test_hours_shift_with_the_offset(self, snapshot, make_ctx, tmp_path: Path) -> None:
        """UTC day 2 runs faster; at UTC-5 it starts at local 19:00 on day 1."""
        write_days(tmp_path, [JAN_1, JAN_2, date(2019, 1, 3)], v50m={JAN_2: -8.0})

        self.run(snapshot, make_ctx, tmp_path)

        ws = snapshot.merra.ws
        np.testing.assert_allclose(ws[:19], 6.0)
        np.testing.assert_allclose(ws[19:43], 8.0)
        np.testing.assert_allclose(ws[43:], 6.0)

    def test_coverage_too_low(self, snapshot, make_ctx, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_1, JAN_2])
        result = self.run(snapshot, make_ctx, tmp_path)
        assert isinstance(result, Failed)
        assert "covers 43 of 48 hours" in result.message
        assert snapshot.merra is None

    def test_no_files(self, snapshot, make_ctx, tmp_path: Path) -> None:
        result = self.run(snapshot, make_ctx, tmp_path)
        assert isinstance(result, Failed)
        assert "No MERRA2 files" in result.message

    def test_missing_folder(self, snapshot, make_ctx, tmp_path: Path) -> None:
        result = self.run(snapshot, make_ctx, tmp_path / "nope")
        assert isinstance(result, Failed)
        assert result.error_type == "DataIOError"

    def test_end_before_start(self, snapshot, make_ctx, tmp_path: Path) -> None:
        result = self.run(snapshot, make_ctx, tmp_path, start=JAN_2, end=JAN_1)
        assert isinstance(result, Failed)

    def test_mcp_onto_met(self, snapshot, make_ctx, tmp_path: Path) -> None:
        """Met measures 1.5 x the reference; the long-term estimate follows."""
        write_days(tmp_path, [JAN_1, JAN_2, date(2019, 1, 3)], v50m={JAN_2: -8.0, date(2019, 1, 3): -10.0})
        ref_ws = np.concatenate([np.full(19, 6.0), np.full(24, 8.0), np.full(5, 10.0)])
        met = snapshot.add_met(easting=SITE_X, northing=SITE_Y)
        met.time_series = MetTimeSeries(
            timestamps=np.datetime64("2019-01-01T00:00:00") + np.arange(48) * np.timedelta64(1, "h"),
            ws=1.5 * ref_ws,
            wd=np.zeros(48),
        )
        met.wind = WindDistribution.from_series(ws=met.time_series.ws, wd=met.time_series.wd, num_sectors=16, num_bins=25)

        result = self.run(snapshot, make_ctx, tmp_path, mcp_met_id="M1")

        assert isinstance(result, Completed)
        assert met.mcp_done
        assert met.effective_wind is met.long_term
        assert met.long_term.mean_ws == pytest.approx(1.5 * ref_ws.mean(), abs=0.75)

    def test_mcp_failure_rolls_back_reference(self, snapshot, store, make_ctx, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_1, JAN_2, date(2019, 1, 3)])
        snapshot.add_met(easting=SITE_X, northing=SITE_Y)

        result = self.run(snapshot, make_ctx, tmp_path, store=store, mcp_met_id="M1")

        assert isinstance(result, Failed)
        assert "time-series" in result.message
        assert snapshot.merra is None
        assert snapshot.utc_offset is None
        assert store.count_rows("merra_series") == 0

    def test_unknown_mcp_met(self, snapshot, make_ctx, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_1, JAN_2, date(2019, 1, 3)])
        result = self.run(snapshot, make_ctx, tmp_path, mcp_met_id="M9")
        assert isinstance(result, Failed)
        assert "M9" in result.message


# =============================================================================
# DOWNLOAD
# =============================================================================


class FakeMerraClient:
    """Writes valid daily files instead of fetching them."""

    def __init__(
        self,
        username: str,
        password: str,
        box,
        reject: bool = False,
        fail_on: date | None = None,
        delay_s: float = 0.0,
        on_download: Callable[[int], None] | None = None,
    ) -> None:
        self.username = username
        self.box = box
        self.reject = reject
        self.fail_on = fail_on
        self.delay_s = delay_s
        self.on_download = on_download
        self.downloaded: list[date] = []
        self.closed = False
        self.lock = threading.Lock()
        self.active = 0
        self.peak_active = 0

    def test_credentials(self, day: date) -> None:
        if self.reject:
            raise DataIOError("Earthdata credential check failed: 401")

    def download_day(self, day: date, folder: Path) -> Path:
        if day == self.fail_on:
            raise DataIOError(f"MERRA2 download of {day.isoformat()} failed after 3 attempts")
        with self.lock:
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
        try:
            target = folder / file_name(day)
            partial = target.with_name(target.name + ".part")
            partial.write_text(merra_ascii(day))
            time.sleep(self.delay_s)
            partial.replace(target)
        finally:
            with self.lock:
                self.active -= 1
                self.downloaded.append(day)
                count = len(self.downloaded)
        if self.on_download is not None:
            self.on_download(count)
        return target

    def close(self) -> None:
        self.closed = True


class TestMerraDownload:
    @pytest.fixture
    def clients(self) -> list[FakeMerraClient]:
        return []

    def runner(self, clients: list, **options) -> MerraDownloadRunner:
        def factory(username: str, password: str, box) -> FakeMerraClient:
            client = FakeMerraClient(username=username, password=password, box=box, **options)
            clients.append(client)
            return client

        return MerraDownloadRunner(client_factory=factory)

    def params(self, folder: Path, end: date = JAN_2) -> MerraDownloadParams:
        return MerraDownloadParams(folder=folder, start=JAN_1, end=end, min_lat=45.0, max_lat=45.5, min_lon=-75.0, max_lon=-74.4)

    @pytest.fixture
    def with_login(self, snapshot):
        snapshot.earthdata_user = "user"
        snapshot.earthdata_password = "secret"
        return snapshot

    def test_downloads_every_utc_day(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        folder = tmp_path / "merra"
        ctx, _ = make_ctx(with_login)

        result = self.runner(clients).invoke(WorkRequest(with_login, self.params(folder)), ctx)

        assert isinstance(result, Completed)
        assert sorted(clients[0].downloaded) == [JAN_1, JAN_2, date(2019, 1, 3)]
        assert clients[0].closed
        assert clients[0].box.min_lon == pytest.approx(-75.0)
        assert with_login.merra_folder == folder
        assert result.mutations == (f"3 MERRA2 files in {folder}",)

    def test_existing_files_skipped(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        write_days(tmp_path, [JAN_2])
        ctx, _ = make_ctx(with_login)

        result = self.runner(clients).invoke(WorkRequest(with_login, self.params(tmp_path)), ctx)

        assert isinstance(result, Completed)
        assert sorted(clients[0].downloaded) == [JAN_1, date(2019, 1, 3)]

    def test_downloaded_files_import(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        ctx, _ = make_ctx(with_login)
        self.runner(clients).invoke(WorkRequest(with_login, self.params(tmp_path)), ctx)

        ctx, _ = make_ctx(with_login)
        result = MerraImportRunner().invoke(
            WorkRequest(with_login, MerraImportParams(folder=tmp_path, start=JAN_1, end=JAN_2)), ctx
        )
        assert isinstance(result, Completed)
        assert len(with_login.merra) == 48

    def test_rejected_credentials_are_cleared(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        ctx, _ = make_ctx(with_login)

        result = self.runner(clients, reject=True).invoke(WorkRequest(with_login, self.params(tmp_path)), ctx)

        assert isinstance(result, Failed)
        assert result.error_type == "DataIOError"
        assert with_login.earthdata_user is None
        assert with_login.earthdata_password is None
        assert clients[0].closed

    def test_failed_day_fails_stage(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        ctx, _ = make_ctx(with_login)
        params = self.params(tmp_path, end=JAN_1 + timedelta(days=9))

        result = self.runner(clients, fail_on=date(2019, 1, 5)).invoke(WorkRequest(with_login, params), ctx)

        assert isinstance(result, Failed)
        assert "2019-01-05" in result.message
        assert not (tmp_path / file_name(date(2019, 1, 5))).exists()
        assert with_login.earthdata_user == "user"

    def test_needs_credentials(self, snapshot, make_ctx, clients, tmp_path: Path) -> None:
        ctx, _ = make_ctx(snapshot)
        result = self.runner(clients).invoke(WorkRequest(snapshot, self.params(tmp_path)), ctx)
        assert isinstance(result, Failed)
        assert "credentials" in result.message
        assert clients == []

    def test_cancel_partway_joins_workers(self, with_login, make_ctx, clients, tmp_path: Path) -> None:
        ctx, _ = make_ctx(with_login)

        def cancel_after_six(count: int) -> None:
            if count == 6:
                ctx.cancellation.cancel()

        params = self.params(tmp_path, end=JAN_1 + timedelta(days=19))
        runner = self.runner(clients, delay_s=0.05, on_download=cancel_after_six)

        result = runner.invoke(WorkRequest(with_login, params), ctx)

        client = clients[0]
        assert isinstance(result, Cancelled)
        assert 1 < client.peak_active <= MERRAConfig.MAX_CONCURRENT_DOWNLOADS
        assert client.active == 0, "a fetch was still running after the stage returned"
        assert client.closed
        assert 6 <= len(client.downloaded) < 21
        assert list(tmp_path.glob("*.part")) == []
        # Completed days stay on disk for the next run
        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(file_name(d) for d in client.downloaded)
        assert with_login.merra_folder is None
        assert with_login.earthdata_user == "user"
