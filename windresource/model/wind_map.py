"""WindMap - gridded model output (exposure, wind speed or energy)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class MapType(Enum):
    """Quantity a map holds."""

    UW_EXPOSURE = "uw_exposure"
    DW_EXPOSURE = "dw_exposure"
    WS = "ws"
    AEP = "aep"

    @property
    def display_name(self) -> str:
        return {
            MapType.UW_EXPOSURE: "UW Exposure",
            MapType.DW_EXPOSURE: "DW Exposure",
            MapType.WS: "Wind Speed",
            MapType.AEP: "Energy Production",
        }[self]


@dataclass
class WindMap:
    """Map grid and its per-node values.

    Nodes whose value is non-zero are treated as done, so an interrupted map
    generation resumes where it stopped.

    Attributes:
        name: Unique map name
        map_type: Quantity mapped
        min_x: Easting of node [0, 0] (m)
        min_y: Northing of node [0, 0] (m)
        resolution: Node spacing (m)
        num_x: Nodes along x
        num_y: Nodes along y
        radius_m: Radius of investigation (exposure maps and flow model)
        power_curve: Power curve name (AEP maps)
        wake_model_id: Wake model applied to the map, None for free-stream
        parameter_to_map: Array (num_x, num_y) of the mapped value
        sector_param_to_map: Array (num_x, num_y, num_sectors) per-sector value
        elevations: Array (num_x, num_y) of node elevations
        is_complete: True once every node is done
    """

    name: str
    map_type: MapType
    min_x: float
    min_y: float
    resolution: float
    num_x: int
    num_y: int
    num_sectors: int
    radius_m: int | None = None
    power_curve: str | None = None
    wake_model_id: str | None = None
    parameter_to_map: np.ndarray = field(default=None)
    sector_param_to_map: np.ndarray = field(default=None)
    elevations: np.ndarray = field(default=None)
    is_complete: bool = False

    def __post_init__(self) -> None:
        if self.parameter_to_map is None:
            self.parameter_to_map = np.zeros((self.num_x, self.num_y))
        if self.sector_param_to_map is None:
            self.sector_param_to_map = np.zeros((self.num_x, self.num_y, self.num_sectors))
        if self.elevations is None:
            self.elevations = np.zeros((self.num_x, self.num_y))

    @property
    def is_waked(self) -> bool:
        return self.wake_model_id is not None

    @property
    def num_nodes(self) -> int:
        return self.num_x * self.num_y

    def node_xy(self, x_index: int, y_index: int) -> tuple[float, float]:
        return self.min_x + x_index * self.resolution, self.min_y + y_index * self.resolution

    def is_node_done(self, x_index: int, y_index: int) -> bool:
        return self.parameter_to_map[x_index, y_index] != 0
