"""File and network access.

- ProjectStore: SQLite project database (snapshot, raster rows, nodes, series)
- RasterReader: GeoTIFF import via rasterio
- RoughnessMapReader: WAsP .map roughness contours rasterized with shapely
- MerraClient: OPeNDAP access to MERRA2 daily files behind Earthdata login
"""

from windresource.providers.merra_client import MerraBox, MerraClient, parse_merra_ascii
from windresource.providers.project_store import ProjectStore
from windresource.providers.raster_reader import RasterReader
from windresource.providers.roughness_map import RoughnessMapReader

__all__ = [
    "ProjectStore",
    "RasterReader",
    "RoughnessMapReader",
    "MerraBox",
    "MerraClient",
    "parse_merra_ascii",
]
