from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Union

import orjson

from treesearch.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoadConfig:
    r"""
    Tunables for road building and fitting.

    Attributes
    ----------
    z_eps : float
        Tolerance (m) added to a Road's z bounds when deciding which planes it
        spans.
    max_combos : int
        Maximum number of point combinations fit per Road. Larger products are
        truncated and the excess is counted in ``Road.n_skipped``.
    min_planes : int
        Minimum number of planes with candidates required to fit (``>= 3``
        so that every fit has at least one degree of freedom).
    parallel_tol : float
        Threshold on :math:`|\sin(\theta_2-\theta_1)|` below which two
        projections are treated as parallel by ``Road.intersect``.
    """
    z_eps: float = 1e-3
    max_combos: int = 10000
    min_planes: int = 3
    parallel_tol: float = 1e-6

    def __post_init__(self) -> None:
        if self.z_eps < 0.0:
            raise ConfigError(f"road.z_eps must be >= 0, got {self.z_eps}")
        if self.max_combos < 1:
            raise ConfigError(f"road.max_combos must be >= 1, got {self.max_combos}")
        if self.min_planes < 3:
            raise ConfigError(f"road.min_planes must be >= 3, got {self.min_planes}")
        if not self.parallel_tol > 0.0:
            raise ConfigError(f"road.parallel_tol must be > 0, got {self.parallel_tol}")


@dataclass(frozen=True)
class PlaneConfig:
    """Geometry and calibration of one wire plane, as read from the config file."""
    name: str
    z: float
    nwires: int
    wire_start: float = 0.0
    wire_spacing: float = 0.0
    resolution: float = 2e-4
    tdc_res: float = 5e-10
    tdc_offsets: Union[float, Sequence[float], None] = None
    ttd_converter: str = "linear"
    ttd_param: Sequence[float] = ()
    drift_min: Optional[float] = None
    drift_max: Optional[float] = None
    type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.nwires <= 0:
            raise ConfigError(f"Invalid number of wires for plane {self.name}: {self.nwires}")
        if not self.resolution > 0.0:
            raise ConfigError(f"Plane {self.name}: resolution must be positive")
        if not self.tdc_res > 0.0:
            raise ConfigError(f"Plane {self.name}: tdc_res must be positive")
        offs = self.tdc_offsets
        if offs is not None and not isinstance(offs, (int, float)) and len(offs) != self.nwires:
            raise ConfigError(
                f"Number of TDC offset values ({len(offs)}) disagrees with "
                f"number of wires ({self.nwires}) for plane {self.name}"
            )


@dataclass(frozen=True)
class ProjectionConfig:
    name: str
    angle_deg: float
    planes: List[PlaneConfig] = field(default_factory=list)

    @property
    def angle(self) -> float:
        return math.radians(self.angle_deg)


@dataclass(frozen=True)
class DetectorConfig:
    """Top-level configuration: road tunables plus the projection/plane layout."""
    road: RoadConfig = field(default_factory=RoadConfig)
    projections: List[ProjectionConfig] = field(default_factory=list)
    time_cut: bool = True

    def __post_init__(self) -> None:
        names = [p.name for proj in self.projections for p in proj.planes]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ConfigError(f"Duplicate plane name(s): {', '.join(dupes)}")
        pnames = [proj.name for proj in self.projections]
        if len(set(pnames)) != len(pnames):
            raise ConfigError("Duplicate projection names")


def _build(cls, block: Mapping[str, Any], where: str):
    try:
        return cls(**block)
    except TypeError as e:
        raise ConfigError(f"Bad {where} block: {e}") from e


def parse_config(raw: Mapping[str, Any]) -> DetectorConfig:
    r"""
    Turn a decoded JSON mapping into a :class:`DetectorConfig`.

    Expected layout::

        {
          "time_cut": true,
          "road": {"z_eps": 0.001, "max_combos": 10000},
          "projections": [
            {"name": "x", "angle_deg": 0.0,
             "planes": [{"name": "x1", "z": 0.0, "nwires": 64, ...}, ...]},
            ...
          ]
        }

    A plane's ``ttd`` sub-block ``{"converter": "linear", "param": [5e4]}``
    maps onto ``ttd_converter``/``ttd_param``.

    Raises
    ------
    ConfigError
        Unknown keys, missing required keys, or invalid values.
    """
    if not isinstance(raw, Mapping):
        raise ConfigError("Configuration root must be a JSON object")
    road = _build(RoadConfig, raw.get("road", {}), "road")
    projections: List[ProjectionConfig] = []
    for pblock in raw.get("projections", []):
        pblock = dict(pblock)
        planes = []
        for plane in pblock.pop("planes", []):
            plane = dict(plane)
            ttd = plane.pop("ttd", None)
            if ttd is not None:
                plane["ttd_converter"] = ttd.get("converter", "linear")
                plane["ttd_param"] = tuple(ttd.get("param", ()))
            planes.append(_build(PlaneConfig, plane, f"plane '{plane.get('name')}'"))
        projections.append(_build(ProjectionConfig, {**pblock, "planes": planes}, "projection"))
    return DetectorConfig(road=road, projections=projections, time_cut=bool(raw.get("time_cut", True)))


def load_config(config_path: Union[str, Path]) -> DetectorConfig:
    r"""
    Load and validate a JSON detector configuration with :mod:`orjson`.

    Parameters
    ----------
    config_path : str or pathlib.Path
        Path to the JSON file.

    Returns
    -------
    DetectorConfig

    Raises
    ------
    ConfigError
        If the file cannot be parsed or fails validation.
    """
    path = Path(config_path)
    try:
        raw = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    cfg = parse_config(raw)
    logger.debug(
        "Loaded %s: %d projection(s), %d plane(s)",
        path, len(cfg.projections), sum(len(p.planes) for p in cfg.projections),
    )
    return cfg


__all__ = [
    "RoadConfig",
    "PlaneConfig",
    "ProjectionConfig",
    "DetectorConfig",
    "parse_config",
    "load_config",
]
