from __future__ import annotations

import logging
import math
from functools import cmp_to_key
from typing import Iterable, List, Optional, Sequence

from treesearch.config import RoadConfig
from treesearch.pattern import PatternNode
from treesearch.road import AddStatus, Road
from treesearch.wire_plane import WirePlane

logger = logging.getLogger(__name__)


class Projection:
    r"""
    One wire orientation of the detector: its planes and its road finder.

    A projection measures the 1-D coordinate

    .. math::

        p \;=\; x\cos\theta + y\sin\theta

    in the detector frame, where :math:`\theta` is the projection's rotation
    angle. Its planes are kept ordered by z.

    Parameters
    ----------
    name : str
        Projection name (e.g. ``"x"``, ``"u"``).
    angle : float
        Rotation angle :math:`\theta` in radians.
    planes : iterable of WirePlane, optional
        Initial planes.
    """

    def __init__(self, name: str, angle: float, planes: Iterable[WirePlane] = ()) -> None:
        self.name = str(name)
        self.angle = float(angle)
        self.cos_angle = math.cos(self.angle)
        self.sin_angle = math.sin(self.angle)
        self.planes: List[WirePlane] = []
        self.roads: List[Road] = []
        for p in planes:
            self.add_plane(p)

    def add_plane(self, plane: WirePlane) -> None:
        """Attach a plane, keeping :attr:`planes` ordered by z."""
        plane.projection = self
        self.planes.append(plane)
        self.planes.sort()

    @property
    def z_range(self):
        if not self.planes:
            return math.nan, math.nan
        return self.planes[0].z, self.planes[-1].z

    def clear(self) -> None:
        """Drop this event's roads and the hits of every plane."""
        self.roads = []
        for p in self.planes:
            p.clear()

    def make_roads(self, nodes: Sequence[PatternNode], config: Optional[RoadConfig] = None) -> List[Road]:
        r"""
        Build, fit and deduplicate Roads from this event's pattern nodes.

        Steps
        -----
        1. **Seed & grow**: each node not yet absorbed seeds a new Road; the
           remaining unused nodes whose bins overlap the Road's region are
           offered to :meth:`Road.add` until no more are accepted (the region
           grows, so the scan repeats).
        2. **Finish & fit** every Road.
        3. **Deduplicate**: good Roads are ranked by hit count (descending),
           then chi2; a Road whose hits are included in a higher-ranked good
           Road is voided.

        Parameters
        ----------
        nodes : sequence of PatternNode
            Tree-search output for this projection.
        config : RoadConfig, optional
            Road tunables.

        Returns
        -------
        list of Road
            All Roads (voided ones included), sorted by :meth:`Road.compare`.
            Also stored in :attr:`roads`.
        """
        config = config if config is not None else RoadConfig()
        used = [False] * len(nodes)
        roads: List[Road] = []

        for i, seed in enumerate(nodes):
            if used[i]:
                continue
            used[i] = True
            road = Road(self, seed, config)
            grown = True
            while grown:
                grown = False
                for j in range(i + 1, len(nodes)):
                    if used[j] or not road.overlaps(nodes[j]):
                        continue
                    if road.add(nodes[j]) is AddStatus.ACCEPTED:
                        used[j] = True
                        grown = True
            roads.append(road)

        for road in roads:
            if road.finish():
                road.fit()

        ranked = sorted(
            (r for r in roads if r.good),
            key=lambda r: (-len(r.hits), r.chi2),
        )
        n_void = 0
        for k, best in enumerate(ranked):
            if best.is_void:
                continue
            for other in ranked[k + 1:]:
                if not other.is_void and best.include(other):
                    other.void()
                    n_void += 1

        self.roads = sorted(roads, key=cmp_to_key(Road.compare))
        logger.debug(
            "Projection %s: %d node(s) -> %d road(s), %d good, %d voided as duplicates",
            self.name, len(nodes), len(roads), sum(r.good for r in roads), n_void,
        )
        return self.roads

    @property
    def good_roads(self) -> List[Road]:
        """Non-void Roads of the current event, best first."""
        return [r for r in self.roads if r.good]

    def __repr__(self) -> str:
        return f"Projection({self.name!r}, angle={math.degrees(self.angle):g}deg, planes={len(self.planes)})"


__all__ = ["Projection"]
