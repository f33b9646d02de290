"""DomainSnapshot - the shared project aggregate.

Owns every met site, turbine, power curve, terrain grid, flow model, wake
model, map and analysis result of a project. Exactly one stage mutates it at
a time; the scheduler enforces that, so the snapshot itself has no locks.

Only user inputs are serialized (to_dict/from_dict). Derived results
(exposures, models, estimates, simulator outputs) are recomputed by stages.
Terrain grids live in the project database as rows; the snapshot keeps their
geometry so ProjectStore can reassemble them.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from windresource.constants import EntityPrefixes, TerrainConfig, TurbineConfig
from windresource.core.geo_calculator import GeoCalculator
from windresource.model.exceedance import CompositeLoss, ExceedanceCurve
from windresource.model.flow_model import MetPair, RoundRobinEstimate, SiteModel, WakeModel
from windresource.model.grid import RasterGrid
from windresource.model.merra import MerraReference
from windresource.model.met_site import MetSite, WindDistribution
from windresource.model.site_suitability import IceThrowResult, ShadowFlickerResult, ShadowReceptor
from windresource.model.turbine import PowerCurve, Turbine
from windresource.model.wind_map import MapType, WindMap

logger = logging.getLogger(__name__)


class DomainSnapshot:
    """Mutable project state passed by reference into the active stage.

    Example:
        snapshot = DomainSnapshot(lat=45.0, lon=-75.0)
        met = snapshot.add_met(easting=500000, northing=4980000, wind=dist)
        turbine = snapshot.add_turbine(easting=501000, northing=4981000, power_curve="V117")
    """

    def __init__(
        self,
        lat: float = 0.0,
        lon: float = 0.0,
        modeled_height: float = 80.0,
        num_sectors: int = TerrainConfig.NUM_SECTORS,
        project_path: Path | None = None,
    ) -> None:
        self.lat = lat
        self.lon = lon
        self.utc_offset: int | None = None
        self.modeled_height = modeled_height
        self.num_sectors = num_sectors
        self.project_path = project_path

        # Inputs
        self.mets: dict[str, MetSite] = {}
        self.turbines: dict[str, Turbine] = {}
        self.power_curves: dict[str, PowerCurve] = {}
        self.receptors: dict[str, ShadowReceptor] = {}
        self.exceedance_curves: list[ExceedanceCurve] = []

        # Terrain
        self.topography: RasterGrid | None = None
        self.land_cover: RasterGrid | None = None
        # Land cover code -> (surface roughness m, displacement height m)
        self.land_cover_key: dict[int, tuple[float, float]] = {}
        self.got_roughness = False

        # Flow model
        self.met_pairs: list[MetPair] = []
        self.site_models: dict[tuple[str, str], SiteModel] = {}
        self.wake_models: dict[str, WakeModel] = {}
        self.maps: dict[str, WindMap] = {}
        self.round_robin: dict[tuple, RoundRobinEstimate] = {}

        # Long-term reference
        self.merra: MerraReference | None = None
        self.merra_folder: Path | None = None
        self.earthdata_user: str | None = None
        self.earthdata_password: str | None = None

        # Site suitability and uncertainty
        self.ice_throw: IceThrowResult | None = None
        self.shadow_flicker: ShadowFlickerResult | None = None
        self.composite_loss = CompositeLoss()

        self._met_counter = 0
        self._turbine_counter = 0
        self._wake_model_counter = 0
        self._map_counter = 0
        self._zone_counter = 0

    def _next_met_id(self) -> str:
        self._met_counter += 1
        return f"{EntityPrefixes.MET}{self._met_counter}"

    def _next_turbine_id(self) -> str:
        self._turbine_counter += 1
        return f"{EntityPrefixes.TURBINE}{self._turbine_counter}"

    def _next_wake_model_id(self) -> str:
        self._wake_model_counter += 1
        return f"{EntityPrefixes.WAKE_MODEL}{self._wake_model_counter}"

    def _next_map_name(self) -> str:
        self._map_counter += 1
        return f"{EntityPrefixes.MAP}{self._map_counter}"

    def _next_zone_id(self) -> str:
        self._zone_counter += 1
        return f"{EntityPrefixes.ZONE}{self._zone_counter}"

    # =========================================================================
    # Entity Operations
    # =========================================================================

    def add_met(
        self,
        easting: float,
        northing: float,
        wind: WindDistribution | None = None,
        elevation: float = 0.0,
        height: float | None = None,
    ) -> MetSite:
        met = MetSite(
            id=self._next_met_id(),
            easting=easting,
            northing=northing,
            elevation=elevation,
            height=height if height is not None else self.modeled_height,
            wind=wind,
        )
        self.mets[met.id] = met
        return met

    def add_turbine(self, easting: float, northing: float, power_curve: str | None = None, elevation: float = 0.0) -> Turbine:
        turbine = Turbine(
            id=self._next_turbine_id(),
            easting=easting,
            northing=northing,
            elevation=elevation,
            power_curve=power_curve,
        )
        self.turbines[turbine.id] = turbine
        return turbine

    def add_power_curve(self, power_curve: PowerCurve) -> None:
        self.power_curves[power_curve.name] = power_curve

    def add_receptor(self, easting: float, northing: float, elevation: float = 0.0, height: float = 2.0) -> ShadowReceptor:
        receptor = ShadowReceptor(
            id=self._next_zone_id(), easting=easting, northing=northing, elevation=elevation, height=height
        )
        self.receptors[receptor.id] = receptor
        return receptor

    def add_wake_model(
        self,
        power_curve: str,
        decay_constant: float = TurbineConfig.DEFAULT_WAKE_DECAY,
        max_distance_m: float = 0.0,
    ) -> WakeModel:
        model = WakeModel(
            id=self._next_wake_model_id(),
            power_curve=power_curve,
            decay_constant=decay_constant,
            max_distance_m=max_distance_m,
        )
        self.wake_models[model.id] = model
        return model

    def remove_wake_model(self, wake_model_id: str) -> None:
        """Drop a wake model and every net estimate it produced."""
        self.wake_models.pop(wake_model_id, None)
        for turbine in self.turbines.values():
            turbine.net_estimates.pop(wake_model_id, None)

    def add_map(
        self,
        map_type: MapType,
        min_x: float,
        min_y: float,
        resolution: float,
        num_x: int,
        num_y: int,
        radius_m: int | None = None,
        power_curve: str | None = None,
        wake_model_id: str | None = None,
    ) -> WindMap:
        wind_map = WindMap(
            name=self._next_map_name(),
            map_type=map_type,
            min_x=min_x,
            min_y=min_y,
            resolution=resolution,
            num_x=num_x,
            num_y=num_y,
            num_sectors=self.num_sectors,
            radius_m=radius_m,
            power_curve=power_curve,
            wake_model_id=wake_model_id,
        )
        self.maps[wind_map.name] = wind_map
        return wind_map

    def get_power_curve(self, name: str | None) -> PowerCurve | None:
        if name is None:
            return None
        return self.power_curves.get(name)

    def closest_met(self, easting: float, northing: float, require_wind: bool = True) -> MetSite | None:
        """Met nearest to a point, optionally only among mets with a wind distribution."""
        best_dist = np.inf
        best_met = None
        for met in self.mets.values():
            if require_wind and met.effective_wind is None:
                continue
            dist = GeoCalculator.planar_distance_m(x1=easting, y1=northing, x2=met.easting, y2=met.northing)
            if dist < best_dist:
                best_dist = dist
                best_met = met
        return best_met

    def mets_with_wind(self) -> list[MetSite]:
        return [m for m in self.mets.values() if m.effective_wind is not None]

    def site_model(self, time_of_day: str = "All", season: str = "All") -> SiteModel | None:
        return self.site_models.get((time_of_day, season))

    def clear_turbine_estimates(self) -> None:
        for turbine in self.turbines.values():
            turbine.clear_estimates()

    # =========================================================================
    # Serialization
    # =========================================================================

    @staticmethod
    def _grid_geometry(grid: RasterGrid | None) -> dict | None:
        if grid is None:
            return None
        return {"origin_x": grid.origin_x, "origin_y": grid.origin_y, "resolution": grid.resolution}

    def to_dict(self) -> dict:
        """Serialize the project inputs to a JSON-compatible dict."""
        return {
            "version": "1.0",
            "site": {
                "lat": self.lat,
                "lon": self.lon,
                "utc_offset": self.utc_offset,
                "modeled_height": self.modeled_height,
                "num_sectors": self.num_sectors,
            },
            "mets": {mid: met.to_dict() for mid, met in self.mets.items()},
            "turbines": {tid: t.to_dict() for tid, t in self.turbines.items()},
            "power_curves": {name: pc.to_dict() for name, pc in self.power_curves.items()},
            "receptors": {
                zid: {"easting": r.easting, "northing": r.northing, "elevation": r.elevation, "height": r.height}
                for zid, r in self.receptors.items()
            },
            "exceedance_curves": [c.to_dict() for c in self.exceedance_curves],
            "land_cover_key": {str(code): list(v) for code, v in self.land_cover_key.items()},
            "topography": self._grid_geometry(self.topography),
            "land_cover": self._grid_geometry(self.land_cover),
            "wake_models": {wid: wm.to_dict() for wid, wm in self.wake_models.items()},
            "merra_folder": str(self.merra_folder) if self.merra_folder else None,
            "earthdata_user": self.earthdata_user,
            "counters": {
                "met": self._met_counter,
                "turbine": self._turbine_counter,
                "wake_model": self._wake_model_counter,
                "map": self._map_counter,
                "zone": self._zone_counter,
            },
        }

    @classmethod
    def from_dict(cls, data: dict, project_path: Path | None = None) -> "DomainSnapshot":
        """Deserialize project inputs.

        Terrain grids are not restored here; ProjectStore reassembles them from
        their rows using the geometry under "topography" and "land_cover".
        """
        site = data["site"]
        snapshot = cls(
            lat=site["lat"],
            lon=site["lon"],
            modeled_height=site["modeled_height"],
            num_sectors=site["num_sectors"],
            project_path=project_path,
        )
        snapshot.utc_offset = site["utc_offset"]

        for mid, met_data in data["mets"].items():
            snapshot.mets[mid] = MetSite.from_dict(data=met_data)
        for tid, turbine_data in data["turbines"].items():
            snapshot.turbines[tid] = Turbine.from_dict(data=turbine_data)
        for name, pc_data in data["power_curves"].items():
            snapshot.power_curves[name] = PowerCurve.from_dict(data=pc_data)
        for zid, r in data["receptors"].items():
            snapshot.receptors[zid] = ShadowReceptor(id=zid, **r)
        snapshot.exceedance_curves = [ExceedanceCurve.from_dict(data=c) for c in data["exceedance_curves"]]
        snapshot.land_cover_key = {int(code): (v[0], v[1]) for code, v in data["land_cover_key"].items()}
        for wid, wm_data in data["wake_models"].items():
            snapshot.wake_models[wid] = WakeModel.from_dict(data=wm_data)
        snapshot.merra_folder = Path(data["merra_folder"]) if data["merra_folder"] else None
        snapshot.earthdata_user = data["earthdata_user"]

        counters = data["counters"]
        snapshot._met_counter = counters["met"]
        snapshot._turbine_counter = counters["turbine"]
        snapshot._wake_model_counter = counters["wake_model"]
        snapshot._map_counter = counters["map"]
        snapshot._zone_counter = counters["zone"]

        logger.info(f"Loaded snapshot: {len(snapshot.mets)} mets, {len(snapshot.turbines)} turbines")
        return snapshot
