from __future__ import annotations

import logging
import math
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np
from scipy.stats import chi2 as chi2_dist

from treesearch.config import RoadConfig
from treesearch.errors import NoFitError, ParallelProjectionError, RoadStateError, StaleHitError
from treesearch.fit_kernels import combination_indices, fit_lines_batch
from treesearch.hit import Hit
from treesearch.pattern import PatternNode, edge_at

if TYPE_CHECKING:  # pragma: no cover
    from treesearch.projection import Projection

logger = logging.getLogger(__name__)


class AddStatus(Enum):
    """Outcome of :meth:`Road.add`."""
    ACCEPTED = "accepted"
    CONFLICT = "conflict"


class _Stage(Enum):
    BUILDING = "building"
    FINISHED = "finished"
    FITTED = "fitted"


class Point:
    r"""
    A candidate coordinate on one plane: position ``x`` at the plane's ``z``.

    The point refers to its :class:`~treesearch.hit.Hit` weakly, so it never
    keeps a hit alive after the plane store has released it. Accessing
    :attr:`hit` afterwards raises :class:`~treesearch.errors.StaleHitError`.
    """
    __slots__ = ("x", "z", "_hit")

    def __init__(self, x: float, z: float, hit: Hit) -> None:
        if hit is None:
            raise ValueError("Point requires a hit")
        self.x = float(x)
        self.z = float(z)
        self._hit = weakref.ref(hit)

    @property
    def hit(self) -> Hit:
        h = self._hit()
        if h is None:
            raise StaleHitError("Point refers to a hit released with its event")
        return h

    @property
    def res(self) -> float:
        """Position resolution of the underlying hit."""
        return self.hit.resolution

    def __repr__(self) -> str:
        return f"Point(x={self.x:.6g}, z={self.z:.6g})"


@dataclass(slots=True, eq=False)
class FitResult:
    r"""
    One weighted least-squares line :math:`x(z) = \text{pos} + \text{slope}\,z`.

    Attributes
    ----------
    pos, slope : float
        Fitted parameters.
    chi2 : float
        :math:`\sum_i w_i (x_i - \text{pos} - \text{slope}\,z_i)^2` with
        :math:`w_i = 1/\sigma_i^2`.
    cov : tuple of float
        Parameter covariance ``(V11, V12, V22)``; ``V21 == V12``.
    points : list of Point
        The combination of points used, one per plane. Owned by this result.
    dof : int
        Degrees of freedom, ``len(points) - 2``.

    Notes
    -----
    Results order by ascending ``chi2`` (``__lt__``), so ``sorted(fits)``
    puts the best fit first.
    """
    pos: float
    slope: float
    chi2: float
    cov: Tuple[float, float, float]
    points: List[Point] = field(default_factory=list)
    dof: int = 0

    def __lt__(self, other: "FitResult") -> bool:
        return self.chi2 < other.chi2

    def get_pos(self, z: float) -> float:
        return self.pos + self.slope * z

    def get_pos_errsq(self, z: float) -> float:
        r"""Variance of :math:`x(z)`: :math:`V_{11} + 2V_{12}z + V_{22}z^2`."""
        v11, v12, v22 = self.cov
        return v11 + 2.0 * v12 * z + v22 * z * z

    @property
    def prob(self) -> float:
        """Upper-tail chi2 probability for ``dof`` degrees of freedom (NaN if ``dof < 1``)."""
        if self.dof < 1:
            return float("nan")
        return float(chi2_dist.sf(self.chi2, self.dof))


@dataclass(frozen=True)
class Corners:
    """
    Read-only snapshot of a Road's bounding quadrilateral.

    ``xll``/``xlr`` are the left/right x at the lower edge ``zl``,
    ``xul``/``xur`` the left/right x at the upper edge ``zu``.
    """
    xll: float
    xlr: float
    zl: float
    xul: float
    xur: float
    zu: float

    def x_range(self, z: float) -> Tuple[float, float]:
        """Interpolated (left, right) x envelope at ``z``."""
        if self.zl == self.zu:
            return min(self.xll, self.xul), max(self.xlr, self.xur)
        return edge_at(self.zl, self.xll, self.zu, self.xul, z), edge_at(self.zl, self.xlr, self.zu, self.xur, z)

    def polygon(self) -> np.ndarray:
        """Vertices ``(x, z)`` in drawing order LL, LR, UR, UL; shape ``(4, 2)``."""
        return np.array(
            [[self.xll, self.zl], [self.xlr, self.zl], [self.xur, self.zu], [self.xul, self.zu]],
            dtype=np.float64,
        )


class Road:
    r"""
    Region of one projection holding a track candidate, and its line fits.

    A Road is seeded from a :class:`~treesearch.pattern.PatternNode`, grown
    with :meth:`add`, frozen with :meth:`finish` (which collects candidate
    positions from the planes' live hit stores) and fit with :meth:`fit`.

    Region
    ------
    The region is bounded by ``z = zl`` and ``z = zu`` and by straight left and
    right edges. Adding a node extends the z bounds to the union and replaces
    each edge by the chord through the outermost edge values at the new bounds.
    Since the minimum of two lines is concave (and the maximum convex), the
    chord contains both previous edges, so the region never shrinks.

    Fit
    ---
    With per-plane candidate lists :math:`C_1,\dots,C_m` (empty planes are
    skipped), every combination in :math:`C_1\times\dots\times C_m` is fit to
    :math:`x = a + b z` with weights :math:`1/\sigma^2`. All valid fits are
    kept, sorted by ascending :math:`\chi^2`; the best one is mirrored into
    :attr:`pos`, :attr:`slope`, :attr:`chi2`, :attr:`cov`, :attr:`dof`.

    Parameters
    ----------
    projection : Projection
        Read-only projection context (planes ordered by z, rotation angle).
    node : PatternNode, optional
        Seed node; added immediately.
    config : RoadConfig, optional
        Tunables; defaults to :class:`~treesearch.config.RoadConfig`.

    Attributes
    ----------
    patterns : list of PatternNode
        Absorbed nodes in order of addition.
    hits : set of Hit
        Union of the hit sets of :attr:`patterns`.
    points : list of list of Point
        Candidate lists, one per plane in range (ordered by z), possibly empty.
    fits : list of FitResult
        All valid fits, best first.
    n_skipped : int
        Combinations not fit because the product exceeded ``max_combos``.
    track : object, optional
        Downstream 3-D track using this Road.
    """

    def __init__(
        self,
        projection: "Projection",
        node: Optional[PatternNode] = None,
        config: Optional[RoadConfig] = None,
    ) -> None:
        self.projection = projection
        self.config = config if config is not None else RoadConfig()

        self.zl = math.inf
        self.zu = -math.inf
        self._xll = self._xlr = self._xul = self._xur = math.nan

        self.patterns: List[PatternNode] = []
        self.hits: Set[Hit] = set()
        self._plane_wires: Dict[Any, Set[int]] = defaultdict(set)

        self.points: List[List[Point]] = []
        self.fits: List[FitResult] = []
        self.n_skipped = 0

        self.pos = math.nan
        self.slope = math.nan
        self.chi2 = math.inf
        self.cov: Tuple[float, float, float] = (math.nan, math.nan, math.nan)
        self.dof = 0

        self._good = False
        self._stage = _Stage.BUILDING
        self.track = None

        if node is not None:
            self.add(node)

    # ------------------------------------------------------------------ growth

    def check_match(self, hits: Iterable[Hit]) -> bool:
        """
        Whether ``hits`` can join this Road without a same-plane conflict.

        For each plane on which both the Road and ``hits`` have hits, the two
        sets of wire numbers must share at least one wire. Planes not yet
        represented in the Road never conflict.
        """
        incoming: Dict[Any, Set[int]] = defaultdict(set)
        for h in hits:
            incoming[h.plane].add(h.wire_num)
        for plane, wires in incoming.items():
            mine = self._plane_wires.get(plane)
            if mine and mine.isdisjoint(wires):
                return False
        return True

    def add(self, node: PatternNode) -> AddStatus:
        r"""
        Try to absorb a pattern node.

        Returns
        -------
        AddStatus
            ``ACCEPTED`` if the node was merged (region extended, hits united,
            node appended to :attr:`patterns`), ``CONFLICT`` if
            :meth:`check_match` rejected it. A rejected node leaves the Road
            unchanged.

        Raises
        ------
        RoadStateError
            If the Road has already been finished.
        """
        if self.is_finished:
            raise RoadStateError("Cannot add patterns to a finished road")
        if not self.check_match(node.hits):
            logger.debug("Road %x: pattern rejected, conflicting wires", id(self))
            return AddStatus.CONFLICT

        if not self.patterns:
            self.zl, self.zu = node.zl, node.zu
            self._xll, self._xlr = node.x_range(node.zl)
            self._xul, self._xur = node.x_range(node.zu)
        else:
            zl = min(self.zl, node.zl)
            zu = max(self.zu, node.zu)
            rl_lo, rr_lo = self._x_range(zl)
            rl_hi, rr_hi = self._x_range(zu)
            nl_lo, nr_lo = node.x_range(zl)
            nl_hi, nr_hi = node.x_range(zu)
            self.zl, self.zu = zl, zu
            self._xll, self._xlr = min(rl_lo, nl_lo), max(rr_lo, nr_lo)
            self._xul, self._xur = min(rl_hi, nl_hi), max(rr_hi, nr_hi)

        self.patterns.append(node)
        self.hits |= node.hits
        for h in node.hits:
            self._plane_wires[h.plane].add(h.wire_num)
        return AddStatus.ACCEPTED

    def overlaps(self, node: PatternNode) -> bool:
        r"""
        Whether the node's bin intersects this Road's region.

        The z ranges must overlap (within ``z_eps``). Over the common range the
        width :math:`\min(r_1,r_2) - \max(l_1,l_2)` is concave and piecewise
        linear, so it is checked at the range ends and at the z where the two
        left (or the two right) edges cross.
        """
        if not self.patterns:
            return True
        eps = self.config.z_eps
        a = max(self.zl, node.zl)
        b = min(self.zu, node.zu)
        if a > b + eps:
            return False
        if a > b:
            a = b = 0.5 * (a + b)
        zs = [a, b]
        for e_road, e_node in ((self._left_edge(), _node_edge(node, 0)), (self._right_edge(), _node_edge(node, 1))):
            z_cross = _crossing(e_road, e_node)
            if z_cross is not None and a < z_cross < b:
                zs.append(z_cross)
        for z in zs:
            rl, rr = self._x_range(z)
            nl, nr = node.x_range(z)
            if max(rl, nl) <= min(rr, nr):
                return True
        return False

    # ------------------------------------------------------------------ geometry

    def _x_range(self, z: float) -> Tuple[float, float]:
        if self.zl == self.zu:
            return min(self._xll, self._xul), max(self._xlr, self._xur)
        return (
            edge_at(self.zl, self._xll, self.zu, self._xul, z),
            edge_at(self.zl, self._xlr, self.zu, self._xur, z),
        )

    def _left_edge(self):
        return self.zl, self._xll, self.zu, self._xul

    def _right_edge(self):
        return self.zl, self._xlr, self.zu, self._xur

    @property
    def corners(self) -> Corners:
        """Snapshot of the bounding quadrilateral."""
        if not self.patterns:
            raise RoadStateError("Road has no patterns, so no region")
        return Corners(self._xll, self._xlr, self.zl, self._xul, self._xur, self.zu)

    def is_in_range(self, z: float) -> bool:
        """Whether a plane at ``z`` lies within ``[zl - z_eps, zu + z_eps]``."""
        eps = self.config.z_eps
        return self.zl - eps <= z <= self.zu + eps

    # ------------------------------------------------------------------ coordinates

    def collect_coordinates(self) -> int:
        """
        Fill :attr:`points` from the live hit stores of the projection's planes.

        Returns
        -------
        int
            Number of planes with at least one candidate.
        """
        self.points = []
        for plane in self.projection.planes:
            if not self.is_in_range(plane.z):
                continue
            x_lo, x_hi = self._x_range(plane.z)
            self.points.append([Point(x, hit.z, hit) for x, hit in plane.candidates_in(x_lo, x_hi)])
        return sum(1 for pl in self.points if pl)

    def finish(self) -> bool:
        """
        Freeze the Road and collect its candidate coordinates.

        Returns
        -------
        bool
            ``False`` (and the Road is not good) if fewer than ``min_planes``
            planes have candidates; such a Road cannot be fit.

        Raises
        ------
        RoadStateError
            If called twice, or on a Road without patterns.
        """
        if self._stage is not _Stage.BUILDING:
            raise RoadStateError("Road is already finished")
        if not self.patterns:
            raise RoadStateError("Cannot finish an empty road")
        n_planes = self.collect_coordinates()
        self._stage = _Stage.FINISHED
        if n_planes < self.config.min_planes:
            self._good = False
            logger.debug(
                "Road %x: only %d plane(s) with candidates, need %d",
                id(self), n_planes, self.config.min_planes,
            )
            return False
        return True

    # ------------------------------------------------------------------ fitting

    def fit(self) -> bool:
        r"""
        Fit every one-point-per-plane combination and rank the results.

        Returns
        -------
        bool
            ``True`` if at least one valid fit was produced.

        Raises
        ------
        RoadStateError
            If :meth:`finish` has not been called.

        Notes
        -----
        - Planes without candidates are skipped; each combination has
          ``m`` points and ``dof = m - 2``; ``dof < 1`` yields no fits.
        - At most ``config.max_combos`` combinations are fit, in
          :func:`itertools.product` order; the rest are counted in
          :attr:`n_skipped` and logged as a warning.
        """
        if not self.is_finished:
            raise RoadStateError("Road.finish() must be called before Road.fit()")
        self._stage = _Stage.FITTED
        self.fits = []
        self.n_skipped = 0

        lists = [pl for pl in self.points if pl]
        dof = len(lists) - 2
        if len(lists) < self.config.min_planes or dof < 1:
            self._set_best(None)
            return False

        idx, total = combination_indices([len(pl) for pl in lists], self.config.max_combos)
        if total > idx.shape[0]:
            self.n_skipped = total - idx.shape[0]
            logger.warning(
                "Road %x: %d point combinations exceed limit %d; skipped %d",
                id(self), total, self.config.max_combos, self.n_skipped,
            )

        z = np.array([pl[0].z for pl in lists], dtype=np.float64)
        xs = [np.array([p.x for p in pl], dtype=np.float64) for pl in lists]
        ws = [np.array([1.0 / p.res ** 2 for p in pl], dtype=np.float64) for pl in lists]
        X = np.column_stack([xs[j][idx[:, j]] for j in range(len(lists))])
        W = np.column_stack([ws[j][idx[:, j]] for j in range(len(lists))])

        pos, slope, chi2, cov, ok = fit_lines_batch(X, W, z)

        good = np.flatnonzero(ok)
        order = good[np.argsort(chi2[good], kind="stable")]
        self.fits = [
            FitResult(
                pos=float(pos[i]),
                slope=float(slope[i]),
                chi2=float(chi2[i]),
                cov=(float(cov[i, 0]), float(cov[i, 1]), float(cov[i, 2])),
                points=[lists[j][idx[i, j]] for j in range(len(lists))],
                dof=dof,
            )
            for i in order
        ]
        self._set_best(self.fits[0] if self.fits else None)
        logger.debug("Road %x: %d fit(s), best chi2=%.4g", id(self), len(self.fits), self.chi2)
        return bool(self.fits)

    def _set_best(self, best: Optional[FitResult]) -> None:
        if best is None:
            self.pos = self.slope = math.nan
            self.chi2 = math.inf
            self.cov = (math.nan, math.nan, math.nan)
            self.dof = 0
            self._good = False
            return
        self.pos, self.slope, self.chi2 = best.pos, best.slope, best.chi2
        self.cov = best.cov
        self.dof = best.dof
        self._good = True

    # ------------------------------------------------------------------ best fit

    @property
    def n_fits(self) -> int:
        return len(self.fits)

    @property
    def n_planes(self) -> int:
        """Number of planes with at least one candidate."""
        return sum(1 for pl in self.points if pl)

    @property
    def fit_result(self) -> FitResult:
        """The best (lowest chi2) fit."""
        if not self.fits:
            raise NoFitError("Road has no fit results")
        return self.fits[0]

    @property
    def fit_points(self) -> List[Point]:
        """Points used by the best fit."""
        return self.fit_result.points

    def get_pos(self, z: float) -> float:
        """Best-fit position at ``z``."""
        return self.fit_result.get_pos(z)

    def get_pos_errsq(self, z: float) -> float:
        r"""Variance of the best-fit position at ``z``: :math:`V_{11} + 2V_{12}z + V_{22}z^2`."""
        return self.fit_result.get_pos_errsq(z)

    def intersect(self, other: "Road", z: float) -> np.ndarray:
        r"""
        Intersection of two Roads' best-fit lines at ``z`` in the detector frame.

        Each projection measures :math:`p_i = x\cos\theta_i + y\sin\theta_i`,
        evaluated at ``z`` as :math:`p_i = \text{pos}_i + \text{slope}_i z`.
        Solving the 2×2 system with determinant
        :math:`D = \sin(\theta_2 - \theta_1)`:

        .. math::

            x = \frac{p_1\sin\theta_2 - p_2\sin\theta_1}{D},\qquad
            y = \frac{p_2\cos\theta_1 - p_1\cos\theta_2}{D}.

        Returns
        -------
        ndarray, shape (2,)
            ``(x, y)``.

        Raises
        ------
        NoFitError
            If either Road has no fits.
        ParallelProjectionError
            If :math:`|D|` is below ``config.parallel_tol``.
        """
        p1 = self.get_pos(z)
        p2 = other.get_pos(z)
        c1, s1 = self.projection.cos_angle, self.projection.sin_angle
        c2, s2 = other.projection.cos_angle, other.projection.sin_angle
        det = c1 * s2 - s1 * c2
        if abs(det) < self.config.parallel_tol:
            raise ParallelProjectionError(
                f"Projections {self.projection.name!r} and {other.projection.name!r} are parallel"
            )
        return np.array([(p1 * s2 - p2 * s1) / det, (p2 * c1 - p1 * c2) / det], dtype=np.float64)

    # ------------------------------------------------------------------ dedup / ordering

    def include(self, other: "Road") -> bool:
        """Whether all hits of ``other`` are also hits of this Road."""
        return other.hits <= self.hits

    def compare(self, other: "Road") -> int:
        """-1, 0 or +1 as this Road's best chi2 is smaller, equal or larger."""
        if self.chi2 < other.chi2:
            return -1
        if self.chi2 > other.chi2:
            return 1
        return 0

    def __lt__(self, other: "Road") -> bool:
        return self.compare(other) < 0

    @property
    def good(self) -> bool:
        """Fitted successfully and not voided."""
        return self._good

    is_good = good

    @property
    def is_void(self) -> bool:
        return not self._good

    def void(self) -> None:
        """Exclude this Road from further use; its data stay available for inspection."""
        self._good = False

    @property
    def is_finished(self) -> bool:
        return self._stage is not _Stage.BUILDING

    def summary(self) -> Dict[str, Any]:
        """Flat description of the Road for tabular output."""
        row: Dict[str, Any] = {
            "projection": getattr(self.projection, "name", None),
            "n_patterns": len(self.patterns),
            "n_hits": len(self.hits),
            "n_planes": self.n_planes,
            "n_fits": self.n_fits,
            "n_skipped": self.n_skipped,
            "good": self.good,
            "zl": self.zl,
            "zu": self.zu,
            "pos": self.pos,
            "slope": self.slope,
            "chi2": self.chi2 if self.fits else math.nan,
            "dof": self.dof,
            "prob": self.fits[0].prob if self.fits else math.nan,
            "v11": self.cov[0],
            "v12": self.cov[1],
            "v22": self.cov[2],
        }
        return row

    def __repr__(self) -> str:
        return (
            f"Road(proj={getattr(self.projection, 'name', None)!r}, patterns={len(self.patterns)}, "
            f"hits={len(self.hits)}, fits={len(self.fits)}, good={self.good}, chi2={self.chi2:.4g})"
        )


def _node_edge(node: PatternNode, side: int):
    if side == 0:
        return node.zl, node.xll, node.zu, node.xul
    return node.zl, node.xlr, node.zu, node.xur


def _crossing(e1, e2) -> Optional[float]:
    """z where two straight edges ``(z0, x0, z1, x1)`` cross, or ``None`` if parallel/degenerate."""
    za0, xa0, za1, xa1 = e1
    zb0, xb0, zb1, xb1 = e2
    if za1 == za0 or zb1 == zb0:
        return None
    ka = (xa1 - xa0) / (za1 - za0)
    kb = (xb1 - xb0) / (zb1 - zb0)
    if ka == kb:
        return None
    # xa0 + ka (z - za0) = xb0 + kb (z - zb0)
    return (xb0 - xa0 + ka * za0 - kb * zb0) / (ka - kb)


__all__ = ["AddStatus", "Point", "FitResult", "Corners", "Road"]
