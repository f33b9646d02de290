"""Core foundation classes shared by every stage.

- Errors: ValidationError, DataIOError, StageCancelled and scheduler errors
- ProgressReporter: Ordered progress events to registered listeners
- CancellationContext: Cooperative cancellation flag
- GeoCalculator: Planar/geodesic distances, grid snapping, UTC offsets
- SolarCalculator: Sun position and sunrise/sunset
- wind_stats: Sector and speed-bin helpers, Weibull fits
"""

from windresource.core import wind_stats
from windresource.core.cancellation import CancellationContext
from windresource.core.errors import (
    AlreadyRunningError,
    DataIOError,
    NotRunningError,
    StageCancelled,
    UnhandledFailure,
    ValidationError,
    WindResourceError,
)
from windresource.core.geo_calculator import GeoCalculator
from windresource.core.progress import (
    LoggingProgressListener,
    ProgressClock,
    ProgressEvent,
    ProgressReporter,
    ProgressThrottle,
    RecordingProgressListener,
)
from windresource.core.solar import SolarCalculator, SunriseSunset

# TaskScheduler, TerrainCalculator, SiteCalibrator, WakeCalculator and mcp
# import the model package, which imports core. Import them directly:
# from windresource.core.scheduler import TaskScheduler

__all__ = [
    # Errors
    "WindResourceError",
    "ValidationError",
    "DataIOError",
    "StageCancelled",
    "AlreadyRunningError",
    "NotRunningError",
    "UnhandledFailure",
    # Progress and cancellation
    "ProgressEvent",
    "ProgressReporter",
    "ProgressThrottle",
    "ProgressClock",
    "LoggingProgressListener",
    "RecordingProgressListener",
    "CancellationContext",
    # Geometry
    "GeoCalculator",
    "SolarCalculator",
    "SunriseSunset",
    "wind_stats",
]
