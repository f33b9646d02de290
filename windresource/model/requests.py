"""Work requests: stage kinds and their typed parameters.

A WorkRequest pairs the snapshot with one parameter variant. The variant's
class fixes the stage kind, so a request can never name one stage and carry
another stage's parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from windresource.constants import (
    ExceedanceConfig,
    MERRAConfig,
    RoundRobinConfig,
    SaveAsConfig,
    ShadowFlickerConfig,
    TerrainConfig,
    TurbineConfig,
)
from windresource.model.site_suitability import FlickerGrid, IceThrowSettings

if TYPE_CHECKING:
    from windresource.model.snapshot import DomainSnapshot


class StageKind(Enum):
    """Closed set of long-running stages."""

    TOPOGRAPHY_IMPORT = "topography_import"
    LAND_COVER_IMPORT = "land_cover_import"
    ROUGHNESS_MAP_IMPORT = "roughness_map_import"
    NODE_ROUGHNESS_RECALC = "node_roughness_recalc"
    MET_CALCS = "met_calcs"
    TURBINE_CALCS = "turbine_calcs"
    MAP_GENERATION = "map_generation"
    ROUND_ROBIN = "round_robin"
    WRG_EXPORT = "wrg_export"
    SAVE_AS = "save_as"
    MERRA_IMPORT = "merra_import"
    MERRA_DOWNLOAD = "merra_download"
    ICE_THROW = "ice_throw"
    SHADOW_FLICKER = "shadow_flicker"
    EXCEEDANCE = "exceedance"


# =============================================================================
# Parameter Variants
# =============================================================================


@dataclass(frozen=True)
class TopographyImportParams:
    kind: ClassVar[StageKind] = StageKind.TOPOGRAPHY_IMPORT

    path: Path


@dataclass(frozen=True)
class LandCoverImportParams:
    """Land cover GeoTIFF plus the code -> (SR, DH) key to apply.

    An empty key keeps the snapshot's current key.
    """

    kind: ClassVar[StageKind] = StageKind.LAND_COVER_IMPORT

    path: Path
    key: tuple[tuple[int, float, float], ...] = ()


@dataclass(frozen=True)
class RoughnessMapImportParams:
    kind: ClassVar[StageKind] = StageKind.ROUGHNESS_MAP_IMPORT

    path: Path
    resolution_m: float = TerrainConfig.ROUGHNESS_GRID_RESO_M


@dataclass(frozen=True)
class NodeRoughnessRecalcParams:
    kind: ClassVar[StageKind] = StageKind.NODE_ROUGHNESS_RECALC


@dataclass(frozen=True)
class MetCalcsParams:
    """Exposure radii and which time-of-day/season models to build.

    model_set is a key of MetCalcConfig.MODEL_SETS; the all-data model is
    always built.
    """

    kind: ClassVar[StageKind] = StageKind.MET_CALCS

    model_set: str = "all"
    radii_m: tuple[int, ...] = TerrainConfig.EXPOSURE_RADII_M


@dataclass(frozen=True)
class TurbineCalcsParams:
    """Free-stream estimates and, when wake_power_curve is set, a new wake model."""

    kind: ClassVar[StageKind] = StageKind.TURBINE_CALCS

    time_of_day: str = "All"
    season: str = "All"
    wake_power_curve: str | None = None
    wake_decay: float = TurbineConfig.DEFAULT_WAKE_DECAY
    max_wake_distance_m: float = 0.0


@dataclass(frozen=True)
class MapGenerationParams:
    kind: ClassVar[StageKind] = StageKind.MAP_GENERATION

    map_name: str
    time_of_day: str = "All"
    season: str = "All"


@dataclass(frozen=True)
class RoundRobinParams:
    kind: ClassVar[StageKind] = StageKind.ROUND_ROBIN

    min_subset_size: int = RoundRobinConfig.MIN_SUBSET_SIZE
    time_of_day: str = "All"
    season: str = "All"


@dataclass(frozen=True)
class WRGExportParams:
    kind: ClassVar[StageKind] = StageKind.WRG_EXPORT

    map_name: str
    output_path: Path
    air_density: float | None = None


@dataclass(frozen=True)
class SaveAsParams:
    kind: ClassVar[StageKind] = StageKind.SAVE_AS

    target_path: Path
    chunk_rows: int = SaveAsConfig.CHUNK_ROWS


@dataclass(frozen=True)
class MerraImportParams:
    """Daily MERRA2 files to import and the optional MCP target.

    Dates are local; the stage shifts them to UTC.
    """

    kind: ClassVar[StageKind] = StageKind.MERRA_IMPORT

    folder: Path
    start: date
    end: date
    mcp_met_id: str | None = None
    mcp_method: str = MERRAConfig.MCP_METHODS[0]


@dataclass(frozen=True)
class MerraDownloadParams:
    kind: ClassVar[StageKind] = StageKind.MERRA_DOWNLOAD

    folder: Path
    start: date
    end: date
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float


@dataclass(frozen=True)
class IceThrowParams:
    kind: ClassVar[StageKind] = StageKind.ICE_THROW

    settings: IceThrowSettings = IceThrowSettings()
    turbine_ids: tuple[str, ...] | None = None  # None = all turbines


@dataclass(frozen=True)
class ShadowFlickerParams:
    kind: ClassVar[StageKind] = StageKind.SHADOW_FLICKER

    year: int = ShadowFlickerConfig.YEAR
    utc_offset: int | None = None  # None = derived from site longitude
    grid: FlickerGrid | None = None
    turbine_ids: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ExceedanceParams:
    kind: ClassVar[StageKind] = StageKind.EXCEEDANCE

    num_sims: int = ExceedanceConfig.DEFAULT_NUM_SIMS
    seed: int = ExceedanceConfig.DEFAULT_SEED


StageParams = (
    TopographyImportParams
    | LandCoverImportParams
    | RoughnessMapImportParams
    | NodeRoughnessRecalcParams
    | MetCalcsParams
    | TurbineCalcsParams
    | MapGenerationParams
    | RoundRobinParams
    | WRGExportParams
    | SaveAsParams
    | MerraImportParams
    | MerraDownloadParams
    | IceThrowParams
    | ShadowFlickerParams
    | ExceedanceParams
)


@dataclass(frozen=True)
class WorkRequest:
    """Immutable request to run one stage against a snapshot."""

    snapshot: "DomainSnapshot"
    params: StageParams

    @property
    def kind(self) -> StageKind:
        return self.params.kind
