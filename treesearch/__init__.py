__all__ = [
    "Hit", "MCHit",
    "PatternNode",
    "WirePlane",
    "Projection",
    "Detector",
    "Road", "Point", "FitResult", "Corners", "AddStatus",
    "RoadConfig", "DetectorConfig", "load_config",
    "TimeToDistConv", "LinearTTDConv", "TanhTTDConv", "make_ttd_converter",
    "fit_lines_batch",
    "TreeSearchError", "ConfigError", "RoadStateError", "NoFitError",
    "ParallelProjectionError", "StaleHitError",
]

# Event data
from .hit import Hit, MCHit
from .pattern import PatternNode

# Geometry & calibration
from .wire_plane import WirePlane
from .projection import Projection
from .detector import Detector
from .ttd import TimeToDistConv, LinearTTDConv, TanhTTDConv, make_ttd_converter
from .config import RoadConfig, DetectorConfig, load_config

# Roads & fitting
from .road import Road, Point, FitResult, Corners, AddStatus
from .fit_kernels import fit_lines_batch

# Errors
from .errors import (
    TreeSearchError,
    ConfigError,
    RoadStateError,
    NoFitError,
    ParallelProjectionError,
    StaleHitError,
)
