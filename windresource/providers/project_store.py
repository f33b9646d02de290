"""ProjectStore - per-project SQLite database.

Holds the serialized DomainSnapshot inputs plus the bulk tables stages
write row by row:

- snapshot: one JSON blob (DomainSnapshot.to_dict)
- topo_rows / land_cover_rows: one row per grid x index, float64 blob of the
  column along y
- nodes: terrain nodes with their SR/DH
- merra_series: hourly MERRA2 reference at the site
- ice_hits: landing records of the last ice throw run

Stages own the order of writes and their rollback; the store only offers
row writers, clear_* helpers and counters. Every sqlite3.Error is raised as
DataIOError.

The connection is opened with check_same_thread=False because stages run on
the scheduler worker; the scheduler guarantees a single writer.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

import numpy as np

from windresource.constants import SaveAsConfig
from windresource.core.errors import DataIOError
from windresource.model.grid import RasterGrid
from windresource.model.merra import MerraReference
from windresource.model.site_suitability import YearlyIceHits
from windresource.model.snapshot import DomainSnapshot

logger = logging.getLogger(__name__)

TABLES = ("snapshot", "topo_rows", "land_cover_rows", "nodes", "merra_series", "ice_hits")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS snapshot (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        data TEXT NOT NULL,
        saved_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topo_rows (
        x_index INTEGER PRIMARY KEY,
        elevations BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS land_cover_rows (
        x_index INTEGER PRIMARY KEY,
        codes BLOB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS nodes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        x REAL NOT NULL,
        y REAL NOT NULL,
        elevation REAL,
        sr REAL,
        dh REAL,
        UNIQUE (x, y)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS merra_series (
        timestamp TEXT PRIMARY KEY,
        ws REAL, wd REAL, ws_10m REAL, temperature REAL, pressure REAL, sea_level_pressure REAL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ice_hits (
        year INTEGER NOT NULL,
        turbine_id TEXT NOT NULL,
        dx REAL NOT NULL,
        dy REAL NOT NULL,
        wind_speed REAL NOT NULL,
        direction INTEGER NOT NULL
    )
    """,
)


class ProjectStore:
    """SQLite project database.

    Example:
        with ProjectStore(path) as store:
            store.save_snapshot(snapshot)
            store.write_topo_row(x_index=0, values=column)
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.connection: sqlite3.Connection | None = None

    # =========================================================================
    # Connection
    # =========================================================================

    def connect(self) -> "ProjectStore":
        """Open (and create if new) the database."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.connection = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DataIOError(f"Cannot open project database {self.db_path}: {e}") from e
        self._create_tables()
        return self

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def __enter__(self) -> "ProjectStore":
        if self.connection is None:
            self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Cursor that commits on success, rolls back and raises DataIOError on sqlite errors."""
        if self.connection is None:
            raise DataIOError(f"Project database {self.db_path} is not open")
        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except sqlite3.Error as e:
            self.connection.rollback()
            raise DataIOError(f"Project database error ({self.db_path.name}): {e}") from e
        finally:
            cursor.close()

    def _create_tables(self) -> None:
        with self._cursor() as cursor:
            for statement in SCHEMA:
                cursor.execute(statement)

    def count_rows(self, table: str) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown table {table}")
        with self._cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            return int(cursor.fetchone()[0])

    def clear_table(self, table: str) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table {table}")
        with self._cursor() as cursor:
            cursor.execute(f"DELETE FROM {table}")
        logger.info(f"Cleared table {table}")

    # =========================================================================
    # Snapshot
    # =========================================================================

    def save_snapshot(self, snapshot: DomainSnapshot) -> None:
        data = json.dumps(snapshot.to_dict(), default=str)
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO snapshot (id, data, saved_at) VALUES (1, ?, ?)",
                (data, datetime.now().isoformat()),
            )

    def load_snapshot(self) -> DomainSnapshot:
        """Rebuild the snapshot, including terrain grids stored as rows.

        Raises:
            DataIOError: No snapshot saved in this database.
        """
        with self._cursor() as cursor:
            cursor.execute("SELECT data FROM snapshot WHERE id = 1")
            row = cursor.fetchone()
        if row is None:
            raise DataIOError(f"{self.db_path} contains no saved project")

        data = json.loads(row[0])
        snapshot = DomainSnapshot.from_dict(data=data, project_path=self.db_path)
        if data["topography"] and self.count_rows("topo_rows"):
            snapshot.topography = self.read_topography(**data["topography"])
        if data["land_cover"] and self.count_rows("land_cover_rows"):
            snapshot.land_cover = self.read_land_cover(**data["land_cover"])
            snapshot.got_roughness = True
        return snapshot

    # =========================================================================
    # Terrain Rows
    # =========================================================================

    def write_topo_row(self, x_index: int, values: np.ndarray) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO topo_rows (x_index, elevations) VALUES (?, ?)",
                (x_index, np.asarray(values, dtype=np.float64).tobytes()),
            )

    def write_land_cover_row(self, x_index: int, values: np.ndarray) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "INSERT OR REPLACE INTO land_cover_rows (x_index, codes) VALUES (?, ?)",
                (x_index, np.asarray(values, dtype=np.float64).tobytes()),
            )

    def _read_rows(self, table: str, column: str) -> list[np.ndarray]:
        with self._cursor() as cursor:
            cursor.execute(f"SELECT {column} FROM {table} ORDER BY x_index")
            return [np.frombuffer(blob, dtype=np.float64) for (blob,) in cursor.fetchall()]

    def read_topography(self, origin_x: float, origin_y: float, resolution: float) -> RasterGrid:
        return RasterGrid.from_rows(
            origin_x=origin_x, origin_y=origin_y, resolution=resolution, rows=self._read_rows("topo_rows", "elevations")
        )

    def read_land_cover(self, origin_x: float, origin_y: float, resolution: float) -> RasterGrid:
        return RasterGrid.from_rows(
            origin_x=origin_x, origin_y=origin_y, resolution=resolution, rows=self._read_rows("land_cover_rows", "codes")
        )

    # =========================================================================
    # Nodes
    # =========================================================================

    def add_node(self, x: float, y: float, elevation: float | None = None) -> None:
        with self._cursor() as cursor:
            cursor.execute("INSERT OR IGNORE INTO nodes (x, y, elevation) VALUES (?, ?, ?)", (x, y, elevation))

    def iter_nodes(self) -> list[tuple[int, float, float]]:
        """(id, x, y) of every node."""
        with self._cursor() as cursor:
            cursor.execute("SELECT id, x, y FROM nodes ORDER BY id")
            return [(int(i), float(x), float(y)) for i, x, y in cursor.fetchall()]

    def read_node_roughness(self) -> dict[int, tuple[float | None, float | None]]:
        with self._cursor() as cursor:
            cursor.execute("SELECT id, sr, dh FROM nodes")
            return {int(i): (sr, dh) for i, sr, dh in cursor.fetchall()}

    def update_node_roughness(self, node_id: int, sr: float | None, dh: float | None) -> None:
        with self._cursor() as cursor:
            cursor.execute("UPDATE nodes SET sr = ?, dh = ? WHERE id = ?", (sr, dh, node_id))

    # =========================================================================
    # MERRA2 and Ice Throw
    # =========================================================================

    def write_merra(self, reference: MerraReference) -> None:
        rows = zip(
            (str(t) for t in reference.timestamps.astype("datetime64[s]")),
            reference.ws.tolist(),
            reference.wd.tolist(),
            reference.ws_10m.tolist(),
            reference.temperature.tolist(),
            reference.pressure.tolist(),
            reference.sea_level_pressure.tolist(),
        )
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM merra_series")
            cursor.executemany("INSERT INTO merra_series VALUES (?, ?, ?, ?, ?, ?, ?)", rows)

    def write_ice_hits(self, years: list[YearlyIceHits]) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM ice_hits")
            for year in years:
                cursor.executemany(
                    "INSERT INTO ice_hits VALUES (?, ?, ?, ?, ?, ?)",
                    zip(
                        [year.year] * len(year),
                        (str(t) for t in year.turbine_ids),
                        year.dx.tolist(),
                        year.dy.tolist(),
                        year.wind_speed.tolist(),
                        year.direction.tolist(),
                    ),
                )

    # =========================================================================
    # Save As
    # =========================================================================

    def copy_to(
        self,
        target_path: Path,
        chunk_rows: int = SaveAsConfig.CHUNK_ROWS,
        on_chunk: Callable[[int, int], None] | None = None,
    ) -> None:
        """Copy every table into a new database at target_path, chunk by chunk.

        on_chunk(rows_copied, total_rows) runs after each committed chunk and
        may raise to abort the copy (the caller deletes the target).
        """
        total = sum(self.count_rows(table) for table in TABLES)
        copied = 0
        target = ProjectStore(target_path).connect()
        try:
            for table in TABLES:
                with self._cursor() as source:
                    source.execute(f"SELECT * FROM {table}")
                    while True:
                        rows = source.fetchmany(chunk_rows)
                        if not rows:
                            break
                        placeholders = ", ".join("?" * len(rows[0]))
                        with target._cursor() as cursor:
                            cursor.executemany(f"INSERT INTO {table} VALUES ({placeholders})", rows)
                        copied += len(rows)
                        if on_chunk is not None:
                            on_chunk(copied, total)
        finally:
            target.close()
        logger.info(f"Copied {copied} rows to {target_path}")
