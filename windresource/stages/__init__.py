"""Stage runners, one per StageKind.

Every runner follows the StageRunner contract in stages.base: typed
parameters in, StageOutput out, rollbacks registered before each write.
The scheduler looks runners up by kind in the dict from default_runners().
"""

from windresource.model.requests import StageKind
from windresource.stages.base import StageContext, StageRunner
from windresource.stages.map_generation import MapGenerationRunner
from windresource.stages.merra import MerraDownloadRunner, MerraImportRunner
from windresource.stages.met_calcs import MetCalcsRunner
from windresource.stages.round_robin import RoundRobinRunner
from windresource.stages.save_as import SaveAsRunner
from windresource.stages.site_suitability import ExceedanceRunner, IceThrowRunner, ShadowFlickerRunner
from windresource.stages.terrain_imports import (
    LandCoverImportRunner,
    NodeRoughnessRecalcRunner,
    RoughnessMapImportRunner,
    TopographyImportRunner,
)
from windresource.stages.turbine_calcs import TurbineCalcsRunner
from windresource.stages.wrg_export import WRGExportRunner

RUNNER_CLASSES: tuple[type[StageRunner], ...] = (
    TopographyImportRunner,
    LandCoverImportRunner,
    RoughnessMapImportRunner,
    NodeRoughnessRecalcRunner,
    MetCalcsRunner,
    TurbineCalcsRunner,
    MapGenerationRunner,
    RoundRobinRunner,
    WRGExportRunner,
    SaveAsRunner,
    MerraImportRunner,
    MerraDownloadRunner,
    IceThrowRunner,
    ShadowFlickerRunner,
    ExceedanceRunner,
)


def default_runners() -> dict[StageKind, StageRunner]:
    """Fresh runner instance for every stage kind."""
    return {cls.kind: cls() for cls in RUNNER_CLASSES}


__all__ = [
    "StageContext",
    "StageRunner",
    "RUNNER_CLASSES",
    "default_runners",
    # Terrain
    "TopographyImportRunner",
    "LandCoverImportRunner",
    "RoughnessMapImportRunner",
    "NodeRoughnessRecalcRunner",
    # Flow model
    "MetCalcsRunner",
    "TurbineCalcsRunner",
    "MapGenerationRunner",
    "RoundRobinRunner",
    "WRGExportRunner",
    # Project
    "SaveAsRunner",
    # MERRA2
    "MerraImportRunner",
    "MerraDownloadRunner",
    # Site suitability
    "IceThrowRunner",
    "ShadowFlickerRunner",
    "ExceedanceRunner",
]
