import math
import sys
from pathlib import Path
from typing import Sequence

# Ensure project root on path when tests are run from a source checkout.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from treesearch.hit import Hit
from treesearch.pattern import PatternNode
from treesearch.projection import Projection
from treesearch.road import Road
from treesearch.wire_plane import WirePlane

ZS = (0.0, 0.1, 0.2, 0.3)


def make_projection(name: str = "x", angle_deg: float = 0.0, zs: Sequence[float] = ZS) -> Projection:
    """Projection with one empty plane per z; plane names are ``<name><k>``."""
    ptype = name[0] if name[0] in "xyuv" else "x"
    planes = [WirePlane(f"{name}{k + 1}", z, plane_type=ptype) for k, z in enumerate(zs)]
    for k, p in enumerate(planes):
        p.plane_num = k
    return Projection(name, math.radians(angle_deg), planes)


def put_hit(plane: WirePlane, wire: int, pos: float, res: float = 0.001, drift: float = 0.0) -> Hit:
    return plane.add_hit(Hit(wire, pos, res, drift_dist=drift))


def line_hits(proj: Projection, pos: float, slope: float, res: float = 0.001, wire0: int = 10):
    """One zero-drift hit per plane exactly on ``x = pos + slope*z``."""
    return [put_hit(p, wire0 + k, pos + slope * p.z, res) for k, p in enumerate(proj.planes)]


def wide_node(hits=(), zl: float = 0.0, zu: float = 0.3, lower=(0.8, 1.5), upper=(1.0, 1.7)) -> PatternNode:
    return PatternNode.from_hits(hits, zl, zu, lower, upper)


def fitted_road(proj: Projection, hits, node: PatternNode = None) -> Road:
    road = Road(proj, node if node is not None else wide_node(hits))
    assert road.finish()
    assert road.fit()
    return road
