"""Terrain stages: topography, land cover and roughness map imports, SR/DH recalculation.

Imports write one database row per grid x index. A rollback that clears the
table is registered before the first row, so a cancelled or failed import
never leaves half a grid behind.
"""

from __future__ import annotations

import logging

from windresource.constants import ProgressConfig
from windresource.core.errors import ValidationError
from windresource.core.progress import ProgressThrottle
from windresource.core.terrain import TerrainCalculator
from windresource.model.grid import RasterGrid
from windresource.model.requests import (
    LandCoverImportParams,
    NodeRoughnessRecalcParams,
    RoughnessMapImportParams,
    StageKind,
    TopographyImportParams,
)
from windresource.model.results import StageOutput
from windresource.providers.raster_reader import RasterReader
from windresource.providers.roughness_map import RoughnessMapReader
from windresource.stages.base import StageContext, StageRunner

logger = logging.getLogger(__name__)


def check_coverage(grid: RasterGrid, ctx: StageContext, what: str) -> None:
    """Every met and turbine must lie inside the grid.

    Raises:
        ValidationError: Listing the sites outside.
    """
    snapshot = ctx.snapshot
    outside = [
        site.id
        for site in list(snapshot.mets.values()) + list(snapshot.turbines.values())
        if not grid.covers(x=site.easting, y=site.northing)
    ]
    if outside:
        raise ValidationError(f"{what} does not cover {', '.join(outside)}")


def recalc_site_roughness(ctx: StageContext) -> int:
    """Recompute SR/DH at every met and turbine. Registers a rollback restoring the old values.

    Returns:
        Number of sites updated.
    """
    snapshot = ctx.snapshot
    sites = list(snapshot.mets.values()) + list(snapshot.turbines.values())
    previous = {id(site): (site.surface_roughness, site.displacement_height) for site in sites}

    def restore() -> None:
        for site in sites:
            site.surface_roughness, site.displacement_height = previous[id(site)]

    ctx.add_rollback("Restore SR/DH of mets and turbines", restore)

    throttle = ProgressThrottle(every_n=ProgressConfig.NODE_INTERVAL)
    ctx.report(percent=0, message="Calculating SR/DH at mets and turbines...")
    for count, site in enumerate(sites, start=1):
        ctx.checkpoint()
        site.surface_roughness, site.displacement_height = TerrainCalculator.roughness(
            land_cover=snapshot.land_cover,
            land_cover_key=snapshot.land_cover_key,
            x=site.easting,
            y=site.northing,
        )
        if throttle.due(count):
            ctx.report(percent=100.0 * count / len(sites), message="Calculating SR/DH at mets and turbines...")
    return len(sites)


def import_land_cover_grid(ctx: StageContext, grid: RasterGrid, key: dict[int, tuple[float, float]] | None) -> list[str]:
    """Write land cover rows, swap in the key and recalc SR/DH. Shared by land cover and .MAP imports."""
    snapshot = ctx.snapshot
    store = ctx.require_store()
    previous_key = dict(snapshot.land_cover_key)

    def undo() -> None:
        store.clear_table("land_cover_rows")
        snapshot.land_cover = None
        snapshot.got_roughness = False
        snapshot.land_cover_key = previous_key

    ctx.add_rollback("Clear imported land cover rows", undo)
    store.clear_table("land_cover_rows")
    for x_index in range(grid.num_x):
        ctx.checkpoint()
        store.write_land_cover_row(x_index=x_index, values=grid.values[x_index])
        ctx.report(percent=100.0 * (x_index + 1) / grid.num_x, message="Importing land cover...")

    if key:
        snapshot.land_cover_key = dict(key)
    snapshot.land_cover = grid
    snapshot.got_roughness = True
    num_sites = recalc_site_roughness(ctx)
    return [f"land cover {grid.num_x} x {grid.num_y}", f"SR/DH at {num_sites} sites"]


class TopographyImportRunner(StageRunner):
    kind = StageKind.TOPOGRAPHY_IMPORT

    def execute(self, params: TopographyImportParams, ctx: StageContext) -> StageOutput:
        grid = RasterReader.read(path=params.path)
        check_coverage(grid=grid, ctx=ctx, what="Topography")
        store = ctx.require_store()
        snapshot = ctx.snapshot
        sites = list(snapshot.mets.values()) + list(snapshot.turbines.values())
        previous_elevations = {id(site): site.elevation for site in sites}

        def undo() -> None:
            store.clear_table("topo_rows")
            snapshot.topography = None
            for site in sites:
                site.elevation = previous_elevations[id(site)]

        ctx.add_rollback("Clear imported topography rows", undo)
        store.clear_table("topo_rows")
        for x_index in range(grid.num_x):
            ctx.checkpoint()
            store.write_topo_row(x_index=x_index, values=grid.values[x_index])
            ctx.report(percent=100.0 * (x_index + 1) / grid.num_x, message="Importing topography...")

        snapshot.topography = grid
        for site in sites:
            site.elevation = float(grid.sample(site.easting, site.northing))
        logger.info(f"Topography {params.path} imported: {grid.num_x} x {grid.num_y} at {grid.resolution} m")
        return StageOutput(mutations=(f"topography {grid.num_x} x {grid.num_y}", f"elevation of {len(sites)} sites"))


class LandCoverImportRunner(StageRunner):
    kind = StageKind.LAND_COVER_IMPORT

    def execute(self, params: LandCoverImportParams, ctx: StageContext) -> StageOutput:
        grid = RasterReader.read(path=params.path)
        check_coverage(grid=grid, ctx=ctx, what="Land cover")
        key = {int(code): (float(sr), float(dh)) for code, sr, dh in params.key}
        if not key and not ctx.snapshot.land_cover_key:
            raise ValidationError("Land cover import needs a land cover key (code -> roughness, displacement height)")
        mutations = import_land_cover_grid(ctx=ctx, grid=grid, key=key)
        return StageOutput(mutations=tuple(mutations))


class RoughnessMapImportRunner(StageRunner):
    kind = StageKind.ROUGHNESS_MAP_IMPORT

    def execute(self, params: RoughnessMapImportParams, ctx: StageContext) -> StageOutput:
        contours = RoughnessMapReader.parse(path=params.path)
        topography = ctx.snapshot.topography
        grid, key = RoughnessMapReader.rasterize(
            contours=contours,
            resolution=params.resolution_m,
            bounds=topography.bounds if topography is not None else None,
        )
        check_coverage(grid=grid, ctx=ctx, what="Roughness map")
        mutations = import_land_cover_grid(ctx=ctx, grid=grid, key=key)
        return StageOutput(mutations=(f"{len(contours)} roughness lines", *mutations))


class NodeRoughnessRecalcRunner(StageRunner):
    """Recompute SR/DH at every met, turbine and stored map node after the key changed."""

    kind = StageKind.NODE_ROUGHNESS_RECALC

    def execute(self, params: NodeRoughnessRecalcParams, ctx: StageContext) -> StageOutput:
        snapshot = ctx.snapshot
        if snapshot.land_cover is None:
            raise ValidationError("Import land cover before recalculating SR/DH")

        num_sites = recalc_site_roughness(ctx)
        if ctx.store is None:
            return StageOutput(mutations=(f"SR/DH at {num_sites} sites",))

        store = ctx.store
        nodes = store.iter_nodes()
        previous = store.read_node_roughness()

        def restore() -> None:
            for node_id, (sr, dh) in previous.items():
                store.update_node_roughness(node_id=node_id, sr=sr, dh=dh)

        ctx.add_rollback("Restore SR/DH of stored nodes", restore)
        throttle = ProgressThrottle(every_n=ProgressConfig.NODE_INTERVAL)
        ctx.report(percent=0, message="Recalculating SR/DH at map nodes...")
        for count, (node_id, x, y) in enumerate(nodes, start=1):
            ctx.checkpoint()
            sr, dh = TerrainCalculator.roughness(
                land_cover=snapshot.land_cover, land_cover_key=snapshot.land_cover_key, x=x, y=y
            )
            store.update_node_roughness(node_id=node_id, sr=sr, dh=dh)
            if throttle.due(count):
                ctx.report(percent=100.0 * count / len(nodes), message="Recalculating SR/DH at map nodes...")
        return StageOutput(mutations=(f"SR/DH at {num_sites} sites", f"SR/DH at {len(nodes)} nodes"))
