"""Tests for windresource providers.

Tests: ProjectStore, RasterReader, RoughnessMapReader, MERRA2 file naming,
parse_merra_ascii, MerraBox, MerraClient
"""

from datetime import date
from pathlib import Path

import numpy as np
import pytest
import requests

from conftest import MERRA_VALUES, SITE_X, SITE_Y, hill_grid, merra_ascii
from windresource.core.errors import DataIOError, ValidationError
from windresource.model.merra import MerraReference
from windresource.model.snapshot import DomainSnapshot
from windresource.providers.merra_client import (
    MerraBox,
    MerraClient,
    file_name,
    find_day_file,
    parse_merra_ascii,
    stream_for,
)
from windresource.providers.project_store import ProjectStore
from windresource.providers.raster_reader import RasterReader
from windresource.providers.roughness_map import RoughnessMapReader


# =============================================================================
# PROJECT STORE
# =============================================================================


class TestProjectStore:
    """ProjectStore - snapshot persistence, terrain rows and Save As copies."""

    def test_empty_store_has_no_project(self, store: ProjectStore) -> None:
        with pytest.raises(DataIOError):
            store.load_snapshot()

    def test_unknown_table_rejected(self, store: ProjectStore) -> None:
        with pytest.raises(ValueError):
            store.count_rows("users")
        with pytest.raises(ValueError):
            store.clear_table("users")

    def test_closed_store_raises(self, tmp_path: Path) -> None:
        closed = ProjectStore(tmp_path / "closed.db")
        with pytest.raises(DataIOError):
            closed.count_rows("nodes")

    def test_snapshot_roundtrip_rebuilds_topography(self, store: ProjectStore, snapshot: DomainSnapshot) -> None:
        grid = hill_grid(half_width_m=500.0)
        snapshot.topography = grid
        for x_index in range(grid.num_x):
            store.write_topo_row(x_index=x_index, values=grid.values[x_index])
        snapshot.add_met(easting=SITE_X, northing=SITE_Y)
        store.save_snapshot(snapshot)

        loaded = store.load_snapshot()

        assert list(loaded.mets) == ["M1"]
        assert loaded.project_path == store.db_path
        np.testing.assert_array_equal(loaded.topography.values, grid.values)
        assert loaded.topography.origin_x == grid.origin_x
        assert loaded.land_cover is None

    def test_nodes_are_unique_and_keep_roughness(self, store: ProjectStore) -> None:
        store.add_node(x=1.0, y=2.0)
        store.add_node(x=1.0, y=2.0)
        store.add_node(x=3.0, y=4.0)
        nodes = store.iter_nodes()
        assert [(x, y) for _, x, y in nodes] == [(1.0, 2.0), (3.0, 4.0)]

        store.update_node_roughness(node_id=nodes[0][0], sr=0.3, dh=2.0)
        assert store.read_node_roughness()[nodes[0][0]] == (0.3, 2.0)

    def test_write_merra_replaces_series(self, store: ProjectStore) -> None:
        timestamps = np.arange("2019-01-01T00", "2019-01-02T00", dtype="datetime64[h]").astype("datetime64[s]")
        ones = np.ones(24)
        reference = MerraReference(
            lat=45.0, lon=-75.0, utc_offset=-5, timestamps=timestamps,
            ws=ones, wd=ones, ws_10m=ones, temperature=ones, pressure=ones, sea_level_pressure=ones,
        )
        store.write_merra(reference)
        store.write_merra(reference)
        assert store.count_rows("merra_series") == 24

    def test_copy_to_reports_chunks(self, store: ProjectStore, snapshot: DomainSnapshot, tmp_path: Path) -> None:
        store.save_snapshot(snapshot)
        for i in range(25):
            store.add_node(x=float(i), y=0.0)
        chunks = []

        store.copy_to(target_path=tmp_path / "copy.db", chunk_rows=10, on_chunk=lambda done, total: chunks.append((done, total)))

        assert chunks[-1] == (26, 26)
        assert len(chunks) == 4  # 1 snapshot row, then 10 + 10 + 5 nodes
        with ProjectStore(tmp_path / "copy.db") as copy:
            assert copy.count_rows("nodes") == 25
            assert copy.load_snapshot().lat == snapshot.lat


# =============================================================================
# RASTERS
# =============================================================================


class TestRasterReader:
    """RasterReader - GeoTIFF to [x, y] grids."""

    def test_roundtrip_geometry_and_values(self, geotiff_writer) -> None:
        grid = hill_grid(half_width_m=1000.0)
        loaded = RasterReader.read(path=geotiff_writer(grid))

        assert loaded.origin_x == pytest.approx(grid.origin_x)
        assert loaded.origin_y == pytest.approx(grid.origin_y)
        assert loaded.resolution == pytest.approx(grid.resolution)
        np.testing.assert_allclose(loaded.values, grid.values)
        # Summit stays at the site, not mirrored
        assert float(loaded.sample(SITE_X, SITE_Y)) == pytest.approx(500.0)

    def test_nodata_becomes_nan(self, geotiff_writer) -> None:
        grid = hill_grid(half_width_m=500.0)
        grid.values[0, 0] = -9999.0
        loaded = RasterReader.read(path=geotiff_writer(grid, nodata=-9999.0))
        assert np.isnan(loaded.values[0, 0])
        assert np.isfinite(loaded.values[1, 0])

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DataIOError):
            RasterReader.read(path=tmp_path / "missing.tif")


# =============================================================================
# ROUGHNESS MAPS
# =============================================================================

MAP_FILE = """+ Roughness change lines
0.0 0.0 1.0 0.0
0.0 0.0 1.0 0.0
1.0
0.1 0.5 2
1000.0 0.0
1000.0 1000.0
100.0 2
0.0 500.0 2000.0 500.0
"""


class TestRoughnessMapReader:
    """RoughnessMapReader - .MAP parsing and left/right rasterization."""

    @pytest.fixture
    def map_path(self, tmp_path: Path) -> Path:
        path = tmp_path / "site.map"
        path.write_text(MAP_FILE)
        return path

    def test_parse_skips_height_contours(self, map_path: Path) -> None:
        contours = RoughnessMapReader.parse(path=map_path)
        assert len(contours) == 1
        assert (contours[0].left_roughness, contours[0].right_roughness) == (0.1, 0.5)
        assert contours[0].line.length == pytest.approx(1000.0)

    def test_rasterize_assigns_sides(self, map_path: Path) -> None:
        """Line walks north along x=1000: west is left (0.1), east is right (0.5)."""
        contours = RoughnessMapReader.parse(path=map_path)
        grid, key = RoughnessMapReader.rasterize(contours=contours, resolution=50.0, bounds=(900.0, 0.0, 1100.0, 1000.0))

        assert key == {1: (0.1, 0.0), 2: (0.5, 0.0)}
        assert (grid.num_x, grid.num_y) == (5, 21)
        assert float(grid.sample_nearest(900.0, 500.0)) == 1.0
        assert float(grid.sample_nearest(950.0, 500.0)) == 1.0
        assert float(grid.sample_nearest(1050.0, 500.0)) == 2.0
        assert float(grid.sample_nearest(1100.0, 0.0)) == 2.0

    def test_file_without_roughness_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "heights.map"
        path.write_text("h\nh\nh\nh\n100.0 2\n0 0 10 10\n")
        with pytest.raises(ValidationError):
            RoughnessMapReader.parse(path=path)

    def test_truncated_block(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.map"
        path.write_text("h\nh\nh\nh\n0.1 0.5 3\n0 0\n")
        with pytest.raises(ValidationError):
            RoughnessMapReader.parse(path=path)


# =============================================================================
# MERRA2 FILES
# =============================================================================


class TestMerraNaming:
    @pytest.mark.parametrize("year,stream", [(1980, 100), (1991, 100), (1992, 200), (2005, 300), (2019, 400)])
    def test_stream_for(self, year: int, stream: int) -> None:
        assert stream_for(year) == stream

    def test_stream_before_merra2(self) -> None:
        with pytest.raises(ValidationError):
            stream_for(1979)

    def test_file_name(self) -> None:
        assert file_name(date(2019, 1, 1)) == "MERRA2_400.tavg1_2d_slv_Nx.20190101.nc4.ascii"

    def test_find_day_file_ignores_stream(self, tmp_path: Path) -> None:
        (tmp_path / "MERRA2_401.tavg1_2d_slv_Nx.20190101.nc4.ascii").write_text("x")
        assert find_day_file(tmp_path, date(2019, 1, 1)).name.startswith("MERRA2_401")
        assert find_day_file(tmp_path, date(2019, 1, 2)) is None


class TestParseMerraAscii:
    """parse_merra_ascii - both OPeNDAP row styles."""

    @pytest.mark.parametrize("block_style", [False, True])
    def test_fields_on_grid(self, block_style: bool) -> None:
        day = parse_merra_ascii(merra_ascii(date(2019, 1, 1), block_style=block_style))

        np.testing.assert_allclose(day.lats, [45.0, 45.5])
        np.testing.assert_allclose(day.lons, [-75.0, -74.375])
        assert set(day.fields) == set(MERRA_VALUES)
        assert day.fields["V50M"].shape == (24, 2, 2)
        np.testing.assert_allclose(day.fields["V50M"], -6.0)

    def test_single_point_block(self) -> None:
        text = merra_ascii(date(2019, 1, 1), lats=(45.0,), lons=(-75.0,), block_style=True)
        day = parse_merra_ascii(text)
        np.testing.assert_allclose(day.lats, [45.0])
        assert day.fields["T10M"].shape == (24, 1, 1)

    def test_missing_axes(self) -> None:
        text = merra_ascii(date(2019, 1, 1)).replace("lat, ", "latitude, ")
        with pytest.raises(ValidationError, match="lat/lon"):
            parse_merra_ascii(text)

    def test_missing_parameter(self) -> None:
        values = {k: v for k, v in MERRA_VALUES.items() if k != "SLP"}
        with pytest.raises(ValidationError, match="SLP"):
            parse_merra_ascii(merra_ascii(date(2019, 1, 1), values=values))

    def test_non_numeric_value(self) -> None:
        text = merra_ascii(date(2019, 1, 1)).replace("U50M[3][1], 0.0", "U50M[3][1], n/a")
        with pytest.raises(ValidationError):
            parse_merra_ascii(text)


class TestMerraBox:
    def test_snapped_to_grid(self) -> None:
        box = MerraBox.snapped(min_lat=45.3, max_lat=45.6, min_lon=-75.2, max_lon=-74.9)
        assert (box.min_lat, box.max_lat, box.min_lon, box.max_lon) == (45.5, 45.5, -75.0, -75.0)
        assert box.lat_indices == (271, 271)
        assert box.lon_indices == (168, 168)

    def test_inverted_box(self) -> None:
        with pytest.raises(ValidationError):
            MerraBox.snapped(min_lat=46.0, max_lat=45.0, min_lon=-75.0, max_lon=-74.0)


# =============================================================================
# MERRA2 CLIENT
# =============================================================================


class FakeResponse:
    def __init__(self, text: str, status: int = 200) -> None:
        self.text = text
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    """Replays queued responses; an exception in the queue is raised instead."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.urls: list[str] = []
        self.closed = False

    def get(self, url: str, timeout: float) -> FakeResponse:
        self.urls.append(url)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class TestMerraClient:
    """MerraClient - URL building, retries and atomic file writes."""

    DAY = date(2019, 1, 1)
    BOX = MerraBox.snapped(min_lat=45.0, max_lat=45.5, min_lon=-75.0, max_lon=-74.375)

    def make_client(self, *responses) -> MerraClient:
        return MerraClient(username="user", password="pwd", box=self.BOX, session=FakeSession(*responses))

    def test_build_url_subsets_box(self) -> None:
        url = self.make_client().build_url(self.DAY)
        assert "/2019/01/MERRA2_400.tavg1_2d_slv_Nx.20190101.nc4.ascii?" in url
        assert "U50M[0:23][270:271][168:169]" in url
        assert url.endswith("lat[270:271],lon[168:169],time")

    def test_fetch_retries_then_succeeds(self) -> None:
        client = self.make_client(requests.ConnectionError("reset"), FakeResponse("", 503), FakeResponse("ok"))
        assert client.fetch(self.DAY) == "ok"
        assert len(client.session.urls) == 3

    def test_fetch_gives_up(self) -> None:
        client = self.make_client(*[requests.Timeout("slow")] * 3)
        with pytest.raises(DataIOError, match="3 attempts"):
            client.fetch(self.DAY)

    def test_test_credentials_rejected(self) -> None:
        with pytest.raises(DataIOError, match="credential"):
            self.make_client(FakeResponse("Unauthorized", 401)).test_credentials(self.DAY)

    def test_download_day_writes_complete_file(self, tmp_path: Path) -> None:
        client = self.make_client(FakeResponse(merra_ascii(self.DAY)))
        path = client.download_day(day=self.DAY, folder=tmp_path)

        assert path == tmp_path / file_name(self.DAY)
        assert parse_merra_ascii(path.read_text()).fields["U50M"].shape == (24, 2, 2)
        assert not list(tmp_path.glob("*.part"))

    def test_login_page_is_not_saved(self, tmp_path: Path) -> None:
        client = self.make_client(FakeResponse("<html>Earthdata Login</html>"))
        with pytest.raises(DataIOError, match="expected dataset"):
            client.download_day(day=self.DAY, folder=tmp_path)
        assert not list(tmp_path.iterdir())
