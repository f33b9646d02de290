"""Wind Resource - command-line entry point.

Runs one stage through the TaskScheduler against a project database and
streams progress to the log. Ctrl-C requests cooperative cancellation; the
stage rolls back its writes and the command exits with status 130.

Run: windresource <stage> --project PATH [options]
     windresource init --project PATH --lat 45.0 --lon -75.0
"""

import argparse
import logging
import sys
from concurrent.futures import Future
from datetime import date
from pathlib import Path
from typing import Callable

from windresource.constants import (
    ExceedanceConfig,
    IceThrowConfig,
    MERRAConfig,
    MetCalcConfig,
    ShadowFlickerConfig,
    TurbineConfig,
)
from windresource.core.errors import NotRunningError, WindResourceError
from windresource.core.progress import LoggingProgressListener, ProgressReporter
from windresource.core.scheduler import TaskScheduler
from windresource.model.requests import (
    ExceedanceParams,
    IceThrowParams,
    LandCoverImportParams,
    MapGenerationParams,
    MerraDownloadParams,
    MerraImportParams,
    MetCalcsParams,
    NodeRoughnessRecalcParams,
    RoughnessMapImportParams,
    RoundRobinParams,
    SaveAsParams,
    ShadowFlickerParams,
    StageParams,
    TopographyImportParams,
    TurbineCalcsParams,
    WorkRequest,
    WRGExportParams,
)
from windresource.model.results import Cancelled, Completed, StageResult
from windresource.model.site_suitability import IceThrowSettings
from windresource.model.snapshot import DomainSnapshot
from windresource.providers.project_store import ProjectStore

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_CANCELLED = 130
POLL_INTERVAL_S = 0.5


# =============================================================================
# ARGUMENTS
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="windresource", description="Wind resource assessment stages")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="stage", required=True)

    def stage(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--project", type=Path, required=True, help="Project database (.db)")
        return p

    p = stage("init", "Create a new project database")
    p.add_argument("--lat", type=float, required=True)
    p.add_argument("--lon", type=float, required=True)
    p.add_argument("--height", type=float, default=80.0, help="Modeled height (m)")

    stage("topography_import", "Import a topography GeoTIFF").add_argument("--path", type=Path, required=True)

    p = stage("land_cover_import", "Import a land cover GeoTIFF")
    p.add_argument("--path", type=Path, required=True)

    p = stage("roughness_map_import", "Import a WAsP .MAP roughness file")
    p.add_argument("--path", type=Path, required=True)

    stage("node_roughness_recalc", "Recalculate surface roughness at sites and nodes")

    p = stage("met_calcs", "Exposures, met pairs and site-calibrated models")
    p.add_argument("--model-set", choices=sorted(MetCalcConfig.MODEL_SETS), default="all")

    p = stage("turbine_calcs", "Turbine wind speed and energy estimates")
    p.add_argument("--time-of-day", choices=MetCalcConfig.TIMES_OF_DAY, default="All")
    p.add_argument("--season", choices=MetCalcConfig.SEASONS, default="All")
    p.add_argument("--wake-power-curve", default=None, help="Power curve for a wake model")
    p.add_argument("--wake-decay", type=float, default=TurbineConfig.DEFAULT_WAKE_DECAY)

    p = stage("map_generation", "Compute (or resume) a map")
    p.add_argument("--map-name", required=True)
    p.add_argument("--time-of-day", choices=MetCalcConfig.TIMES_OF_DAY, default="All")
    p.add_argument("--season", choices=MetCalcConfig.SEASONS, default="All")

    p = stage("round_robin", "Leave-mets-out cross-validation")
    p.add_argument("--min-subset-size", type=int, default=1)

    p = stage("wrg_export", "Write a wind speed map as .wrg")
    p.add_argument("--map-name", required=True)
    p.add_argument("--output", type=Path, required=True)

    stage("save_as", "Copy the project database").add_argument("--target", type=Path, required=True)

    p = stage("merra_import", "Import MERRA2 daily files to a site reference")
    p.add_argument("--folder", type=Path, required=True)
    p.add_argument("--start", type=date.fromisoformat, required=True)
    p.add_argument("--end", type=date.fromisoformat, required=True)
    p.add_argument("--mcp-met", default=None, help="Met to run MCP for")
    p.add_argument("--mcp-method", choices=MERRAConfig.MCP_METHODS, default=MERRAConfig.MCP_METHODS[0])

    p = stage("merra_download", "Download MERRA2 daily files")
    p.add_argument("--folder", type=Path, required=True)
    p.add_argument("--start", type=date.fromisoformat, required=True)
    p.add_argument("--end", type=date.fromisoformat, required=True)
    p.add_argument("--box", type=float, nargs=4, metavar=("MIN_LAT", "MAX_LAT", "MIN_LON", "MAX_LON"), required=True)
    p.add_argument("--user", default=None, help="Earthdata user (stored in the project)")
    p.add_argument("--password", default=None)

    p = stage("ice_throw", "Ice throw Monte Carlo model")
    p.add_argument("--years", type=int, default=IceThrowConfig.DEFAULT_YEARS_TO_MODEL)
    p.add_argument("--seed", type=int, default=0)

    p = stage("shadow_flicker", "Shadow flicker for all zones")
    p.add_argument("--year", type=int, default=ShadowFlickerConfig.YEAR)

    p = stage("exceedance", "Exceedance (P-value) Monte Carlo")
    p.add_argument("--num-sims", type=int, default=ExceedanceConfig.DEFAULT_NUM_SIMS)
    p.add_argument("--seed", type=int, default=ExceedanceConfig.DEFAULT_SEED)
    return parser


def _merra_download_params(args: argparse.Namespace) -> MerraDownloadParams:
    min_lat, max_lat, min_lon, max_lon = args.box
    return MerraDownloadParams(
        folder=args.folder,
        start=args.start,
        end=args.end,
        min_lat=min_lat,
        max_lat=max_lat,
        min_lon=min_lon,
        max_lon=max_lon,
    )


# Stage name -> parameter builder
PARAM_BUILDERS: dict[str, Callable[[argparse.Namespace], StageParams]] = {
    "topography_import": lambda a: TopographyImportParams(path=a.path),
    "land_cover_import": lambda a: LandCoverImportParams(path=a.path),
    "roughness_map_import": lambda a: RoughnessMapImportParams(path=a.path),
    "node_roughness_recalc": lambda a: NodeRoughnessRecalcParams(),
    "met_calcs": lambda a: MetCalcsParams(model_set=a.model_set),
    "turbine_calcs": lambda a: TurbineCalcsParams(
        time_of_day=a.time_of_day, season=a.season, wake_power_curve=a.wake_power_curve, wake_decay=a.wake_decay
    ),
    "map_generation": lambda a: MapGenerationParams(map_name=a.map_name, time_of_day=a.time_of_day, season=a.season),
    "round_robin": lambda a: RoundRobinParams(min_subset_size=a.min_subset_size),
    "wrg_export": lambda a: WRGExportParams(map_name=a.map_name, output_path=a.output),
    "save_as": lambda a: SaveAsParams(target_path=a.target),
    "merra_import": lambda a: MerraImportParams(
        folder=a.folder, start=a.start, end=a.end, mcp_met_id=a.mcp_met, mcp_method=a.mcp_method
    ),
    "merra_download": _merra_download_params,
    "ice_throw": lambda a: IceThrowParams(settings=IceThrowSettings(years_to_model=a.years, seed=a.seed)),
    "shadow_flicker": lambda a: ShadowFlickerParams(year=a.year),
    "exceedance": lambda a: ExceedanceParams(num_sims=a.num_sims, seed=a.seed),
}


# =============================================================================
# RUN
# =============================================================================


def wait_for(scheduler: TaskScheduler, future: Future, request: WorkRequest) -> StageResult:
    """Block until the stage finishes; Ctrl-C requests cancellation and keeps waiting."""
    cancel_sent = False
    while True:
        try:
            return future.result(timeout=POLL_INTERVAL_S)
        except TimeoutError:
            continue
        except KeyboardInterrupt:
            if cancel_sent:
                logger.warning("Cancellation already requested, waiting for rollback to finish")
                continue
            cancel_sent = True
            try:
                scheduler.cancel(request.kind, reason="interrupted (Ctrl-C)")
            except NotRunningError:
                logger.info(f"{request.kind.value} already finished, nothing to cancel")


def init_project(args: argparse.Namespace) -> int:
    if args.project.exists():
        logger.error(f"{args.project} already exists")
        return EXIT_FAILED
    snapshot = DomainSnapshot(lat=args.lat, lon=args.lon, modeled_height=args.height, project_path=args.project)
    with ProjectStore(args.project) as store:
        store.save_snapshot(snapshot)
    logger.info(f"Created project {args.project} at ({args.lat}, {args.lon})")
    return 0


def run_stage(args: argparse.Namespace) -> int:
    params = PARAM_BUILDERS[args.stage](args)
    with ProjectStore(args.project) as store:
        snapshot = store.load_snapshot()
        if args.stage == "merra_download" and args.user:
            snapshot.earthdata_user = args.user
            snapshot.earthdata_password = args.password

        reporter = ProgressReporter()
        reporter.add_listener(LoggingProgressListener())
        scheduler = TaskScheduler(snapshot=snapshot, store=store, reporter=reporter)
        request = WorkRequest(snapshot=snapshot, params=params)
        try:
            result = wait_for(scheduler=scheduler, future=scheduler.submit(request), request=request)
        finally:
            scheduler.shutdown()

        if isinstance(result, Completed):
            store.save_snapshot(snapshot)
            for mutation in result.mutations:
                logger.info(f"  {mutation}")
            return 0
        if isinstance(result, Cancelled):
            logger.warning(f"{result.kind.value} cancelled: {result.reason}")
            return EXIT_CANCELLED
        logger.error(f"{result.kind.value} failed ({result.error_type}): {result.message}")
        return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.stage == "init":
            return init_project(args)
        return run_stage(args)
    except WindResourceError as e:
        logger.error(str(e))
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
