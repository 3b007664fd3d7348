from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from treesearch.config import DetectorConfig, PlaneConfig, RoadConfig
from treesearch.pattern import PatternNode
from treesearch.projection import Projection
from treesearch.road import Road
from treesearch.ttd import make_ttd_converter
from treesearch.wire_plane import TDC_SCALE, WirePlane, offsets_from_config

logger = logging.getLogger(__name__)


def plane_from_config(cfg: PlaneConfig) -> WirePlane:
    """Create a :class:`WirePlane` from its configuration (ns offsets/cuts scaled to s)."""
    return WirePlane(
        cfg.name,
        cfg.z,
        plane_type=cfg.type,
        nwires=cfg.nwires,
        wire_start=cfg.wire_start,
        wire_spacing=cfg.wire_spacing,
        resolution=cfg.resolution,
        tdc_res=cfg.tdc_res,
        tdc_offsets=offsets_from_config(cfg.tdc_offsets, cfg.nwires),
        min_time=-np.inf if cfg.drift_min is None else cfg.drift_min * TDC_SCALE,
        max_time=np.inf if cfg.drift_max is None else cfg.drift_max * TDC_SCALE,
        ttd_conv=make_ttd_converter(cfg.ttd_converter, cfg.ttd_param),
    )


class Detector:
    r"""
    Multi-projection drift chamber: routes raw data to planes and finds Roads.

    Plane numbers are assigned in order of increasing z over the whole
    detector. Planes of one projection that follow each other closely in z
    are not partnered automatically; use :meth:`WirePlane.set_partner`.

    Parameters
    ----------
    projections : sequence of Projection
        Projections with their planes attached.
    road_config : RoadConfig, optional
        Tunables passed to every Road.
    time_cut : bool, optional
        Apply the planes' drift-time windows while decoding. Default ``True``.
    """

    def __init__(
        self,
        projections: Sequence[Projection],
        road_config: Optional[RoadConfig] = None,
        *,
        time_cut: bool = True,
    ) -> None:
        self.projections: Dict[str, Projection] = {p.name: p for p in projections}
        self.road_config = road_config if road_config is not None else RoadConfig()
        self.time_cut = bool(time_cut)
        self.planes: Dict[str, WirePlane] = {}
        for proj in projections:
            for plane in proj.planes:
                self.planes[plane.name] = plane
        for num, plane in enumerate(sorted(self.planes.values())):
            plane.plane_num = num

    @classmethod
    def from_config(cls, cfg: DetectorConfig) -> "Detector":
        """Build the detector described by a :class:`DetectorConfig`."""
        projections = [
            Projection(pc.name, pc.angle, [plane_from_config(p) for p in pc.planes])
            for pc in cfg.projections
        ]
        det = cls(projections, cfg.road, time_cut=cfg.time_cut)
        logger.info(
            "Detector: %s",
            ", ".join(f"{p.name}({len(p.planes)} planes)" for p in projections),
        )
        return det

    def clear(self) -> None:
        """Release all event data (hits and roads)."""
        for proj in self.projections.values():
            proj.clear()

    def decode(self, raw: pd.DataFrame) -> int:
        r"""
        Decode one event's raw TDC table into the planes' hit stores.

        Parameters
        ----------
        raw : pandas.DataFrame
            Columns ``plane``, ``wire``, ``tdc`` (optional ``ref_time``,
            ``mc_pos``). Rows for unknown planes are skipped with a warning.

        Returns
        -------
        int
            Total number of hits accepted.
        """
        if "plane" not in raw.columns:
            raise KeyError("Missing required column: plane")
        n = 0
        for name, rows in raw.groupby("plane", sort=False):
            plane = self.planes.get(str(name))
            if plane is None:
                logger.warning("Skipping %d raw hit(s) for unknown plane %r", len(rows), name)
                continue
            n += plane.decode(rows, time_cut=self.time_cut)
        return n

    def find_roads(self, patterns: Mapping[str, Sequence[PatternNode]]) -> Dict[str, List[Road]]:
        """
        Run road finding in every projection.

        Parameters
        ----------
        patterns : mapping
            Projection name → pattern nodes for this event. Projections
            without an entry get no Roads.

        Returns
        -------
        dict
            Projection name → non-void Roads, best first.
        """
        out: Dict[str, List[Road]] = {}
        for name, proj in self.projections.items():
            proj.make_roads(list(patterns.get(name, ())), self.road_config)
            out[name] = proj.good_roads
        unknown = set(patterns) - set(self.projections)
        if unknown:
            logger.warning("Patterns given for unknown projection(s): %s", ", ".join(sorted(unknown)))
        return out

    def __repr__(self) -> str:
        return f"Detector(projections={list(self.projections)}, planes={len(self.planes)})"


__all__ = ["Detector", "plane_from_config"]
