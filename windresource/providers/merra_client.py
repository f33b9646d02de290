"""MERRA2 reanalysis access: OPeNDAP ASCII subsets of the hourly single-level collection.

One file per UTC day holds 24 hourly values of every requested field on the
0.5 x 0.625 degree MERRA2 grid:

    Dataset: MERRA2_400.tavg1_2d_slv_Nx.20190101.nc4
    U50M, [24][2][2]                  block declaration (optional)
    U50M[0][0], 4.21, 4.37            field[hour][lat index], values along lon
    ...
    lat, 45.0, 45.5
    lon, -75.0, -74.375

Earthdata Login redirects every request to the URS host and back, so the
session keeps basic-auth credentials across those redirects only.

Reference: https://disc.gsfc.nasa.gov/information/howto (Earthdata Login for data access)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from urllib.parse import urlparse

import numpy as np
import requests

from windresource.constants import MERRAConfig
from windresource.core.errors import DataIOError, ValidationError
from windresource.core.geo_calculator import GeoCalculator

logger = logging.getLogger(__name__)

_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


def stream_for(year: int) -> int:
    """MERRA2 production stream number of a year (100, 200, 300 or 400)."""
    stream = None
    for first_year, number in MERRAConfig.STREAMS:
        if year >= first_year:
            stream = number
    if stream is None:
        raise ValidationError(f"MERRA2 starts in {MERRAConfig.STREAMS[0][0]}, got {year}")
    return stream


def dataset_name(day: date) -> str:
    return f"MERRA2_{stream_for(day.year)}.{MERRAConfig.COLLECTION}.{day:%Y%m%d}"


def file_name(day: date) -> str:
    return f"{dataset_name(day)}{MERRAConfig.FILE_SUFFIX}"


def find_day_file(folder: Path, day: date) -> Path | None:
    """Daily file in a folder, matched on the date string (stream number ignored)."""
    matches = sorted(Path(folder).glob(f"*.{day:%Y%m%d}{MERRAConfig.FILE_SUFFIX}"))
    return matches[0] if matches else None


@dataclass(frozen=True)
class MerraBox:
    """Latitude/longitude box snapped to the MERRA2 grid.

    Attributes:
        min_lat, max_lat: Degrees north
        min_lon, max_lon: Degrees east
    """

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @classmethod
    def snapped(cls, min_lat: float, max_lat: float, min_lon: float, max_lon: float) -> "MerraBox":
        """Round each edge to the nearest grid line.

        Raises:
            ValidationError: Box is empty or inverted.
        """
        if min_lat > max_lat or min_lon > max_lon:
            raise ValidationError(f"Invalid MERRA2 box: lat {min_lat}..{max_lat}, lon {min_lon}..{max_lon}")
        return cls(
            min_lat=GeoCalculator.snap_to_grid(value=min_lat, resolution=MERRAConfig.LAT_RESOLUTION_DEG),
            max_lat=GeoCalculator.snap_to_grid(value=max_lat, resolution=MERRAConfig.LAT_RESOLUTION_DEG),
            min_lon=GeoCalculator.snap_to_grid(value=min_lon, resolution=MERRAConfig.LON_RESOLUTION_DEG),
            max_lon=GeoCalculator.snap_to_grid(value=max_lon, resolution=MERRAConfig.LON_RESOLUTION_DEG),
        )

    @property
    def lat_indices(self) -> tuple[int, int]:
        return (
            round((self.min_lat + 90) / MERRAConfig.LAT_RESOLUTION_DEG),
            round((self.max_lat + 90) / MERRAConfig.LAT_RESOLUTION_DEG),
        )

    @property
    def lon_indices(self) -> tuple[int, int]:
        return (
            round((self.min_lon + 180) / MERRAConfig.LON_RESOLUTION_DEG),
            round((self.max_lon + 180) / MERRAConfig.LON_RESOLUTION_DEG),
        )

    @property
    def centre(self) -> tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lon + self.max_lon) / 2


@dataclass
class MerraDay:
    """Parsed daily file.

    Attributes:
        lats: Grid latitudes (num_lat,)
        lons: Grid longitudes (num_lon,)
        fields: Parameter name -> array (24, num_lat, num_lon)
    """

    lats: np.ndarray
    lons: np.ndarray
    fields: dict[str, np.ndarray]


def _base_name(header: str) -> str:
    """Variable name of a row or block header, empty for index-only rows."""
    return header.split("[")[0].rsplit(".", 1)[-1]


def parse_merra_ascii(text: str, parameters: tuple[str, ...] = MERRAConfig.PARAMETERS) -> MerraDay:
    """Parse an OPeNDAP ASCII daily subset.

    Accepts both row styles servers emit: a full name on every row
    ("U50M[3][1], ...") or a block declaration ("U50M, [24][2][3]") followed
    by rows carrying indices or values only ("[3][1], ...", "45.0, 45.5").

    Raises:
        ValidationError: Missing lat/lon rows, a missing parameter or a
            non-numeric value.
    """
    rows: dict[str, dict[tuple[int, int], list[float]]] = {p: {} for p in parameters}
    axes: dict[str, np.ndarray] = {}
    block = None
    try:
        for line in text.splitlines():
            header, comma, rest = line.partition(",")
            header = header.strip()
            if not header or header.startswith("Dataset"):
                continue
            bare = header[0].isdigit() or header[0] in "-+."
            if not bare and (not comma or rest.strip().startswith("[")):
                block = _base_name(header)
                continue

            values = [float(v) for v in rest.split(",") if v.strip()]
            if bare:
                # Value row of a one-dimensional block
                name, values = block, [float(header)] + values
            else:
                name = _base_name(header) or block

            if name in ("lat", "lon"):
                axes[name] = np.array(values)
                continue
            indices = [int(i) for i in _INDEX_PATTERN.findall(header)]
            if name in rows and len(indices) == 2:
                rows[name][(indices[0], indices[1])] = values
    except ValueError as e:
        raise ValidationError(f"Non-numeric value in MERRA2 file: {e}") from e

    if "lat" not in axes or "lon" not in axes:
        raise ValidationError("MERRA2 file has no lat/lon rows")
    lats, lons = axes["lat"], axes["lon"]

    fields = {}
    for name, cells in rows.items():
        if not cells:
            raise ValidationError(f"MERRA2 file has no {name} data")
        grid = np.full((MERRAConfig.HOURS_PER_FILE, len(lats), len(lons)), np.nan)
        for (hour, lat_index), values in cells.items():
            grid[hour, lat_index, : len(values)] = values
        fields[name] = grid
    return MerraDay(lats=lats, lons=lons, fields=fields)


class EarthdataSession(requests.Session):
    """Session that keeps its auth header on redirects to and from the Earthdata Login host."""

    AUTH_HOST = urlparse(MERRAConfig.URS_URL).hostname

    def __init__(self, username: str, password: str) -> None:
        super().__init__()
        self.auth = (username, password)

    def rebuild_auth(self, prepared_request, response) -> None:
        headers = prepared_request.headers
        url = prepared_request.url
        if "Authorization" in headers:
            original = urlparse(response.request.url).hostname
            redirect = urlparse(url).hostname
            if original != redirect and redirect != self.AUTH_HOST and original != self.AUTH_HOST:
                del headers["Authorization"]


class MerraClient:
    """Downloads daily MERRA2 subsets for a lat/lon box.

    Example:
        client = MerraClient(username="user", password="pwd", box=box)
        client.test_credentials(day=date(2019, 1, 1))
        path = client.download_day(day=date(2019, 1, 1), folder=Path("merra"))
    """

    def __init__(self, username: str, password: str, box: MerraBox, session: requests.Session | None = None) -> None:
        self.box = box
        self.session = session if session is not None else EarthdataSession(username=username, password=password)

    def build_url(self, day: date) -> str:
        lat0, lat1 = self.box.lat_indices
        lon0, lon1 = self.box.lon_indices
        subset = ",".join(f"{p}[0:{MERRAConfig.HOURS_PER_FILE - 1}][{lat0}:{lat1}][{lon0}:{lon1}]" for p in MERRAConfig.PARAMETERS)
        return (
            f"{MERRAConfig.BASE_URL}/{day:%Y}/{day:%m}/{file_name(day)}"
            f"?{subset},lat[{lat0}:{lat1}],lon[{lon0}:{lon1}],time"
        )

    def test_credentials(self, day: date) -> None:
        """One request to check the credentials before fanning out.

        Raises:
            DataIOError: Request rejected or unreachable.
        """
        url = self.build_url(day)
        try:
            response = self.session.get(url, timeout=MERRAConfig.TEST_TIMEOUT_S)
            response.raise_for_status()
        except requests.RequestException as e:
            raise DataIOError(f"Earthdata credential check failed: {e}") from e
        logger.info("Earthdata credentials accepted")

    def fetch(self, day: date) -> str:
        """Text of one daily subset, retried up to MERRAConfig.MAX_RETRIES times.

        Raises:
            DataIOError: Every attempt failed.
        """
        url = self.build_url(day)
        last_error: requests.RequestException | None = None
        for attempt in range(1, MERRAConfig.MAX_RETRIES + 1):
            try:
                response = self.session.get(url, timeout=MERRAConfig.REQUEST_TIMEOUT_S)
                response.raise_for_status()
                return response.text
            except requests.RequestException as e:
                last_error = e
                logger.warning(f"MERRA2 {day.isoformat()} attempt {attempt}/{MERRAConfig.MAX_RETRIES} failed: {e}")
        raise DataIOError(f"MERRA2 download of {day.isoformat()} failed after {MERRAConfig.MAX_RETRIES} attempts: {last_error}")

    @staticmethod
    def validate_dataset(text: str, day: date) -> bool:
        """True if the text is the expected daily dataset (not a login page)."""
        return dataset_name(day) in text

    def download_day(self, day: date, folder: Path) -> Path:
        """Fetch, validate and save one day. The file appears only once complete.

        Raises:
            DataIOError: Download failed, wrong dataset returned or file not writable.
        """
        text = self.fetch(day)
        if not self.validate_dataset(text=text, day=day):
            raise DataIOError(
                f"Downloaded file for {day.isoformat()} does not contain the expected dataset. "
                f"Check your Earthdata credentials at {MERRAConfig.URS_URL}"
            )
        target = Path(folder) / file_name(day)
        partial = target.with_name(target.name + ".part")
        try:
            partial.write_text(text)
            partial.replace(target)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise DataIOError(f"Cannot write {target}: {e}") from e
        return target

    def close(self) -> None:
        self.session.close()
