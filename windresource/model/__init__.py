"""Data model classes for a wind resource project.

- DomainSnapshot: Central owner of every project entity and result
- MetSite, WindDistribution, Exposure: Measured wind and terrain exposure
- Turbine, PowerCurve: Turbine sites and their energy estimates
- SiteModel, MetPair, WakeModel, RoundRobinEstimate: Flow model state
- WindMap, MapType: Gridded map results
- MerraReference: Long-term reanalysis at the site
- Site suitability: ice throw, shadow flicker and exceedance results
- Requests and results: the stage parameter variants and their outcomes
"""

from windresource.model.exceedance import CompositeLoss, ExceedanceCurve, ExceedanceResult
from windresource.model.flow_model import MetPair, RoundRobinEstimate, SiteModel, WakeModel
from windresource.model.grid import RasterGrid
from windresource.model.merra import MerraReference
from windresource.model.met_site import Exposure, MetSite, MetTimeSeries, WindDistribution
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
    StageKind,
    TopographyImportParams,
    TurbineCalcsParams,
    WorkRequest,
    WRGExportParams,
)
from windresource.model.results import Cancelled, Completed, Failed, StageOutput
from windresource.model.site_suitability import (
    FlickerGrid,
    IceThrowResult,
    IceThrowSettings,
    ShadowFlickerResult,
    ShadowReceptor,
)
from windresource.model.snapshot import DomainSnapshot
from windresource.model.turbine import NetEstimate, PowerCurve, Turbine
from windresource.model.wind_map import MapType, WindMap

__all__ = [
    "DomainSnapshot",
    "RasterGrid",
    # Mets and turbines
    "WindDistribution",
    "Exposure",
    "MetTimeSeries",
    "MetSite",
    "PowerCurve",
    "NetEstimate",
    "Turbine",
    # Flow model
    "SiteModel",
    "MetPair",
    "WakeModel",
    "RoundRobinEstimate",
    "MapType",
    "WindMap",
    "MerraReference",
    # Site suitability
    "IceThrowSettings",
    "IceThrowResult",
    "ShadowReceptor",
    "FlickerGrid",
    "ShadowFlickerResult",
    "ExceedanceCurve",
    "ExceedanceResult",
    "CompositeLoss",
    # Requests and results
    "StageKind",
    "WorkRequest",
    "TopographyImportParams",
    "LandCoverImportParams",
    "RoughnessMapImportParams",
    "NodeRoughnessRecalcParams",
    "MetCalcsParams",
    "TurbineCalcsParams",
    "MapGenerationParams",
    "RoundRobinParams",
    "WRGExportParams",
    "SaveAsParams",
    "MerraImportParams",
    "MerraDownloadParams",
    "IceThrowParams",
    "ShadowFlickerParams",
    "ExceedanceParams",
    "StageOutput",
    "Completed",
    "Cancelled",
    "Failed",
]
