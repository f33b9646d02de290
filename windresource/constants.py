"""Configuration constants for windresource.

All configurable parameters are centralized here for easy tuning.

Classes:
    EntityPrefixes: ID prefixes for snapshot entities
    SchedulerConfig: Background worker settings
    ProgressConfig: Reporting intervals of the long-running stages
    TerrainConfig: Exposure radii, sector geometry, roughness defaults
    MetCalcConfig: Site-calibrated model settings
    TurbineConfig: Energy and wake model parameters
    MapConfig: Map generation progress and node bookkeeping
    RoundRobinConfig: Cross-validation limits
    WRGConfig: Wind Resource Grid column widths
    SaveAsConfig: Database copy chunking
    MERRAConfig: MERRA2 reanalysis grid and download settings
    IceThrowConfig: Ice fragment physics and sampling tables
    ShadowFlickerConfig: Representative year and flicker geometry limits
    ExceedanceConfig: Monte Carlo horizons and P-values
"""

from pathlib import Path

# Package root directory (where windresource/ lives)
PACKAGE_DIR = Path(__file__).parent

# Project root directory (parent of windresource/)
PROJECT_ROOT = PACKAGE_DIR.parent

# Data directory outside package (MERRA2 downloads, rasters)
DATA_DIR = PROJECT_ROOT / "data"

# Output directory for exported files (WRG, saved projects)
OUTPUT_DIR = PROJECT_ROOT / "output"


class EntityPrefixes:
    """ID prefixes for snapshot entities."""

    MET = "M"
    TURBINE = "T"
    MAP = "MAP"
    WAKE_MODEL = "WM"
    ZONE = "Z"


class SchedulerConfig:
    """Background worker settings."""

    # Name prefix of the single stage worker thread (shows up in log records)
    WORKER_THREAD_PREFIX = "stage-worker"
    # Workers allowed to run stage bodies. Exclusivity is enforced by the
    # state machine, a second worker would only ever sit idle.
    MAX_STAGE_WORKERS = 1


class ProgressConfig:
    """How often stages emit progress events (in units of work)."""

    NODE_INTERVAL = 10  # SR/DH recalculation: every 10 nodes
    MERRA_IMPORT_DAY_INTERVAL = 50  # MERRA2 import: every 50 days
    MERRA_DOWNLOAD_FILE_INTERVAL = 10  # MERRA2 download: every 10 files
    SHADOW_MINUTE_INTERVAL = 500  # Shadow flicker: every 500 evaluated minutes
    # 365 days * 15 hours (average sunrise to sunset bracket) * 60 minutes
    SHADOW_EXPECTED_MINUTES = 365 * 15 * 60
    EXCEEDANCE_SIM_INTERVAL = 500  # Exceedance: every 500 simulations


class TerrainConfig:
    """Exposure and surface roughness parameters."""

    NUM_SECTORS = 16  # Default wind rose sectors (22.5 degrees each)
    EXPOSURE_RADII_M = (4000, 6000, 8000, 10000)  # Radii of investigation

    # Exposure sampling inside each sector wedge
    EXPOSURE_RADIAL_STEPS = 20  # Rings between the site and the radius
    EXPOSURE_ANGULAR_STEPS = 5  # Rays per sector wedge
    EXPOSURE_MIN_DISTANCE_M = 50.0  # Innermost ring, avoids 1/d blow-up

    # Surface roughness (SR) and displacement height (DH)
    ROUGHNESS_RADIUS_M = 1000.0  # Averaging radius around a node
    DEFAULT_ROUGHNESS_M = 0.03  # Open farmland
    DEFAULT_DISPLACEMENT_M = 0.0
    ROUGHNESS_GRID_RESO_M = 30  # Raster resolution for .MAP contour files
    MAP_HEADER_LINES = 4  # WAsP .MAP files carry 4 header lines


class MetCalcConfig:
    """Site-calibrated model settings."""

    TIMES_OF_DAY = ("All", "Day", "Night")
    SEASONS = ("All", "Winter", "Spring", "Summer", "Fall")

    # Model sets the user may request (name -> [(time of day, season), ...])
    MODEL_SETS = {
        "all": [("All", "All")],
        "day_night": [("Day", "All"), ("Night", "All")],
        "seasonal": [("All", s) for s in ("Winter", "Spring", "Summer", "Fall")],
        "day_night_seasonal": [(t, s) for t in ("Day", "Night") for s in ("Winter", "Spring", "Summer", "Fall")],
    }

    DAY_START_HOUR = 7  # Local hour, inclusive
    DAY_END_HOUR = 19  # Local hour, exclusive

    # Default flow coefficients (fractional WS change per metre of exposure)
    # used when there are too few met pairs to calibrate
    DEFAULT_UW_COEFF = 0.0025
    DEFAULT_DW_COEFF = 0.0005


assert MetCalcConfig.DAY_START_HOUR < MetCalcConfig.DAY_END_HOUR, "Day must start before it ends"
assert all(
    tod in MetCalcConfig.TIMES_OF_DAY and season in MetCalcConfig.SEASONS
    for combos in MetCalcConfig.MODEL_SETS.values()
    for tod, season in combos
), "Model sets may only use known times of day and seasons"


class TurbineConfig:
    """Energy production and wake model parameters."""

    AIR_DENSITY_KG_M3 = 1.225
    HOURS_PER_YEAR = 8760
    MIN_WAKE_SPACING_RD = 2.0  # Closer upstream turbines are ignored
    DEFAULT_MAX_WAKE_DISTANCE_M = 15000.0  # Used when a wake model sets 0
    DEFAULT_WAKE_DECAY = 0.075  # Jensen decay constant, onshore
    DEFAULT_THRUST_COEFF = 0.8


class MapConfig:
    """Map generation."""

    # Progress event every N nodes, with average time per node
    NODE_PROGRESS_INTERVAL = 10
    # Elevation given to nodes outside the topography
    MISSING_ELEVATION_M = 0.0
    # Value written to nodes that computed exactly 0, so they count as done
    DONE_EPSILON = 1e-9


class RoundRobinConfig:
    """Round-robin cross-validation limits."""

    MIN_SUBSET_SIZE = 1  # A model needs at least one predicting met


class WRGConfig:
    """Wind Resource Grid (.wrg) column widths (left-aligned, space padded)."""

    HEADER_NUM_X = 8
    HEADER_NUM_Y = 8
    HEADER_MIN_X = 8
    HEADER_MIN_Y = 8

    ROW_LABEL = "GridPoint "
    EASTING = 10
    NORTHING = 10
    ELEVATION = 8
    HEIGHT = 5
    WEIBULL_A = 5
    WEIBULL_K = 6
    POWER_DENSITY = 15
    NUM_SECTORS = 3

    SECTOR_FREQUENCY = 4  # round(frequency * 1000)
    SECTOR_A = 4  # round(A * 10)
    SECTOR_K = 5  # round(k * 100)

    FREQUENCY_SCALE = 1000
    A_SCALE = 10
    K_SCALE = 100

    DEFAULT_AIR_DENSITY_KG_M3 = 1.225


class SaveAsConfig:
    """Project database copy."""

    CHUNK_ROWS = 2000  # Rows copied per transaction


class MERRAConfig:
    """MERRA2 reanalysis grid and download settings."""

    LAT_RESOLUTION_DEG = 0.5
    LON_RESOLUTION_DEG = 0.625

    MAX_CONCURRENT_DOWNLOADS = 4  # Parallel daily file fetches
    MAX_RETRIES = 3  # Attempts per daily file before the download aborts
    TEST_TIMEOUT_S = 100  # Credential check
    REQUEST_TIMEOUT_S = 60  # Daily file

    URS_URL = "https://urs.earthdata.nasa.gov"
    BASE_URL = "https://goldsmr4.gesdisc.eosdis.nasa.gov/opendap/MERRA2/M2T1NXSLV.5.12.4"
    COLLECTION = "tavg1_2d_slv_Nx"
    FILE_SUFFIX = ".nc4.ascii"

    # Hourly single-level fields read from each daily file
    PARAMETERS = ("U50M", "V50M", "U10M", "V10M", "T10M", "PS", "SLP")

    # MERRA2 stream number by first production year
    STREAMS = ((1980, 100), (1992, 200), (2001, 300), (2011, 400))

    HOURS_PER_FILE = 24
    MIN_COVERAGE_FRACTION = 0.95  # Share of requested hours that must be present

    MCP_METHODS = ("linear_regression", "variance_ratio")


class IceThrowConfig:
    """Ice fragment physics and sampling tables."""

    DEFAULT_THROWS_PER_ICE_DAY = 100
    DEFAULT_ICE_DAYS_PER_YEAR = 30
    DEFAULT_YEARS_TO_MODEL = 10

    GRAVITY_M_S2 = 9.81
    AIR_DENSITY_KG_M3 = 1.225
    ICE_DENSITY_KG_M3 = 700.0  # Rime/glaze mix

    TIME_STEP_S = 0.05
    MAX_FLIGHT_TIME_S = 120.0

    # Ice mass inverse CDF: (cumulative probability, mass in kg)
    MASS_CDF = (
        (0.00, 0.05),
        (0.50, 0.20),
        (0.80, 0.50),
        (0.95, 1.00),
        (1.00, 2.00),
    )

    # Shape classes: probability, area factor f (A = f * V^(2/3)), drag coefficient
    SHAPE_PROBABILITIES = {"sphere": 0.25, "cube": 0.25, "plate": 0.30, "rod": 0.20}
    SHAPE_AREA_FACTORS = {
        "sphere": 1.209,  # pi * r^2 / ((4/3) pi r^3)^(2/3)
        "cube": 1.0,  # face of a cube
        "plate": 2.924,  # 5:5:1 plate, flat face (5^(2/3))
        "rod": 1.710,  # 1:1:5 rod, broadside (5^(1/3))
    }
    SHAPE_DRAG_COEFFS = {"sphere": 0.47, "cube": 1.05, "plate": 1.17, "rod": 1.20}

    assert set(SHAPE_AREA_FACTORS) == set(SHAPE_PROBABILITIES)
    assert set(SHAPE_DRAG_COEFFS) == set(SHAPE_PROBABILITIES)


assert abs(sum(IceThrowConfig.SHAPE_PROBABILITIES.values()) - 1.0) < 1e-9, "Shape probabilities must sum to 1"
assert all(
    a[0] < b[0] and a[1] <= b[1] for a, b in zip(IceThrowConfig.MASS_CDF, IceThrowConfig.MASS_CDF[1:])
), "Ice mass CDF must be increasing"


class ShadowFlickerConfig:
    """Representative year and flicker geometry limits."""

    YEAR = 2019  # Non-leap representative year
    MAX_DISTANCE_ROTOR_DIAMETERS = 10.0  # No flicker beyond 10 rotor diameters
    MIN_SUN_ALTITUDE_DEG = 0.0


class ExceedanceConfig:
    """Monte Carlo exceedance settings."""

    HORIZONS_YEARS = (1, 10, 20)
    DEFAULT_NUM_SIMS = 10000
    DEFAULT_SEED = 12345
    P_VALUES = tuple(range(1, 100))  # P1 ... P99
