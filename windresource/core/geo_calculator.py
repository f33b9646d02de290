"""Geodesic and planar helper calculations.

Site layouts (mets, turbines, map grids) live in projected UTM metres;
reanalysis nodes and solar geometry use WGS84 latitude/longitude.

- Great-circle distance (Haversine formula) for lat/lon inputs
- Planar bearing and elevation angles between UTM points
- Circular angle differences (wrap-around at 0/360)
- Rounding onto regular lat/lon grids and time zone offsets

Spherical Earth approximation (R = 6,371 km).
"""

from math import atan2, cos, degrees, floor, hypot, radians, sin, sqrt

import numpy as np

# Earth's radius in meters (WGS84 spherical approximation)
EARTH_RADIUS_M = 6_371_000


class GeoCalculator:
    """Static methods for distances, bearings and grid snapping.

    Bearings are in degrees clockwise from North (0-360).
    Distances are in meters.
    """

    EARTH_RADIUS_M = EARTH_RADIUS_M

    @staticmethod
    def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Calculate great-circle distance between two points using Haversine formula.

        Args:
            lat1: Latitude of first point (decimal degrees)
            lon1: Longitude of first point (decimal degrees)
            lat2: Latitude of second point (decimal degrees)
            lon2: Longitude of second point (decimal degrees)

        Returns:
            Distance in meters.
        """
        dlat = radians(lat2 - lat1)
        dlon = radians(lon2 - lon1)
        a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
        return EARTH_RADIUS_M * 2 * atan2(sqrt(a), sqrt(1 - a))

    @staticmethod
    def planar_distance_m(x1: float, y1: float, x2: float, y2: float) -> float:
        return hypot(x2 - x1, y2 - y1)

    @staticmethod
    def planar_bearing_deg(x1: float, y1: float, x2: float, y2: float) -> float:
        """Bearing from point 1 to point 2 in a projected (east, north) frame.

        Returns:
            Bearing in degrees (0-360, clockwise from North).
        """
        return (degrees(atan2(x2 - x1, y2 - y1)) + 360) % 360

    @staticmethod
    def elevation_angle_deg(horizontal_m: float, vertical_m: float) -> float:
        """Angle above the horizon of a point vertical_m higher, horizontal_m away."""
        return degrees(atan2(vertical_m, horizontal_m))

    @staticmethod
    def angle_difference_deg(a: np.ndarray | float, b: np.ndarray | float) -> np.ndarray | float:
        """Signed smallest difference a - b in degrees, in [-180, 180).

        Works elementwise on arrays.
        """
        return (np.asarray(a) - np.asarray(b) + 180.0) % 360.0 - 180.0

    @staticmethod
    def snap_to_grid(value: float, resolution: float) -> float:
        """Round a coordinate to the nearest multiple of resolution (half away from zero).

        Example:
            snap_to_grid(45.3, 0.5) -> 45.5
            snap_to_grid(-89.5, 0.625) -> -89.375
        """
        steps = value / resolution
        rounded = floor(abs(steps) + 0.5) * (1 if steps >= 0 else -1)
        return rounded * resolution

    @staticmethod
    def utc_offset_hours(lon: float) -> int:
        """Nominal time zone offset from longitude (15 degrees per hour)."""
        return int(floor(lon / 15.0 + 0.5))
