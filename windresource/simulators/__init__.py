"""Site suitability simulators.

Each simulator takes plain inputs prepared from the snapshot, an optional
ProgressReporter and a CancellationContext, and returns a result object.
"""

from windresource.simulators.exceedance import ExceedanceSimulator
from windresource.simulators.ice_throw import IceThrowSimulator
from windresource.simulators.shadow_flicker import ShadowFlickerSimulator

__all__ = [
    "IceThrowSimulator",
    "ShadowFlickerSimulator",
    "ExceedanceSimulator",
]
