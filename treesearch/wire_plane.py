from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from treesearch.errors import ConfigError
from treesearch.hit import Hit, MCHit
from treesearch.ttd import TimeToDistConv

logger = logging.getLogger(__name__)

# Database uses ns for TDC offsets and timing cuts
TDC_SCALE = 1e-9

PLANE_TYPES: Tuple[str, ...] = ("x", "y", "u", "v")


class WirePlane:
    r"""
    One plane of parallel sense wires and its per-event hit store.

    The plane owns the geometry (z position, first-wire position, wire
    spacing), the calibration (TDC resolution and offsets, timing window,
    drift converter), and the list of :class:`~treesearch.hit.Hit` objects
    decoded for the current event. Everything downstream, Roads included,
    only borrows hits from this store.

    Decoding
    --------
    The readout uses common-stop TDCs, so for a raw value :math:`T` on wire
    :math:`w` with reference time :math:`t_\text{ref}`

    .. math::

        t_\text{drift} \;=\; t_0(w) + t_\text{ref} - r_\text{TDC}\,(T + \tfrac12),

    and the wire position is :math:`x_w = x_0 + w\,\Delta x`.

    Candidate lookup
    ----------------
    After decoding, contiguous arrays of left/right candidate positions are
    cached so that :meth:`candidates_in` is a vectorized mask over the store.
    Anything that changes a stored hit's drift distance must call
    :meth:`invalidate`.

    Statistics
    ----------
    :attr:`stats` holds the decoder counters of the current event:

    - ``n_miss``: rows with a wire outside the plane; ``n_rej``: rows failing
      the time window;
    - ``n_hitwires``, ``n_multihit``, ``max_mul``: wires with at least one
      (more than one) raw hit and the largest number of raw hits on a wire,
      counted before the time cut;
    - ``n_cl``, ``n_dbl``, ``max_clsiz``: clusters of adjacent accepted
      wires, accepted hits with a fired neighbour, and the largest cluster.

    Parameters
    ----------
    name : str
        Plane name (unique within the detector).
    z : float
        Longitudinal plane position (m).
    plane_type : {"x","y","u","v"}, optional
        Wire orientation; defaults to the first character of ``name``.
    nwires : int, optional
        Number of wires (``0`` disables the wire-range check).
    wire_start : float, optional
        Position of wire 0 (m).
    wire_spacing : float, optional
        Wire pitch (m).
    resolution : float, optional
        Position resolution assigned to decoded hits (m).
    tdc_res : float, optional
        TDC resolution (s/channel).
    tdc_offsets : sequence of float, optional
        Per-wire TDC offsets (s).
    min_time, max_time : float, optional
        Drift-time window (s); open bounds by default.
    ttd_conv : TimeToDistConv, optional
        Drift time-to-distance converter.
    """

    def __init__(
        self,
        name: str,
        z: float,
        *,
        plane_type: Optional[str] = None,
        nwires: int = 0,
        wire_start: float = 0.0,
        wire_spacing: float = 0.0,
        resolution: float = 2e-4,
        tdc_res: float = 5e-10,
        tdc_offsets: Optional[Sequence[float]] = None,
        min_time: float = -np.inf,
        max_time: float = np.inf,
        ttd_conv: Optional[TimeToDistConv] = None,
    ) -> None:
        self.name = str(name)
        self.z = float(z)
        ptype = (plane_type or self.name[:1]).lower()[:1]
        if ptype not in PLANE_TYPES:
            raise ConfigError(
                f"Unsupported plane type '{ptype}' for plane {self.name}. "
                f"Must be one of {' '.join(PLANE_TYPES)}"
            )
        self.plane_type = ptype
        self.plane_num = -1
        self.nwires = int(nwires)
        self.wire_start = float(wire_start)
        self.wire_spacing = float(wire_spacing)
        self.resolution = float(resolution)
        self.tdc_res = float(tdc_res)
        if tdc_offsets is None:
            tdc_offsets = np.zeros(self.nwires, dtype=np.float64)
        self.tdc_offsets = np.asarray(tdc_offsets, dtype=np.float64)
        self.min_time = float(min_time)
        self.max_time = float(max_time)
        self.ttd_conv = ttd_conv
        self.partner: Optional[WirePlane] = None
        self.projection = None

        self._hits: List[Hit] = []
        self._raw_wires: List[np.ndarray] = []
        self._pos_cache: Optional[Tuple[np.ndarray, np.ndarray]] = None
        self.stats: Dict[str, int] = {}
        self._reset_stats()

        if self.nwires and self.tdc_offsets.size != self.nwires:
            raise ConfigError(
                f"Number of TDC offset values ({self.tdc_offsets.size}) disagrees "
                f"with number of wires ({self.nwires}) for plane {self.name}"
            )
        if not self.resolution > 0.0:
            raise ConfigError(f"Resolution of plane {self.name} must be positive")

    # ------------------------------------------------------------------ event data

    @property
    def hits(self) -> Tuple[Hit, ...]:
        """Hits of the current event, ordered by (wire, drift time)."""
        return tuple(self._hits)

    @property
    def n_hits(self) -> int:
        return len(self._hits)

    def _reset_stats(self) -> None:
        self.stats = {
            "n_miss": 0, "n_rej": 0,
            "n_hitwires": 0, "n_multihit": 0, "max_mul": 0,
            "n_cl": 0, "n_dbl": 0, "max_clsiz": 0,
        }

    def clear(self) -> None:
        """Release all hits of the current event."""
        self._hits = []
        self._raw_wires = []
        self._pos_cache = None
        self._reset_stats()

    def add_hit(self, hit: Hit) -> Hit:
        """
        Append an already-built hit to the store (used by simulation and tests).

        The hit is attached to this plane and the store is kept ordered.
        """
        hit.plane = self
        self._hits.append(hit)
        if len(self._hits) > 1 and self._hits[-2].sort_key() > hit.sort_key():
            self._hits.sort(key=Hit.sort_key)
        self.invalidate()
        return hit

    def decode(self, raw: pd.DataFrame, *, time_cut: bool = True) -> int:
        r"""
        Decode this plane's rows of a raw TDC table into hits.

        Parameters
        ----------
        raw : pandas.DataFrame
            Rows for this plane with columns ``wire`` and ``tdc``; optional
            ``ref_time`` (s) and ``mc_pos`` (m; creates :class:`MCHit`).
        time_cut : bool, optional
            Apply the ``(min_time, max_time)`` window. Default ``True``.

        Returns
        -------
        int
            Number of hits accepted into the store.

        Notes
        -----
        - Rows with a wire outside ``[0, nwires)`` are skipped and counted in
          ``stats['n_miss']``; rows failing the time window in
          ``stats['n_rej']``.
        - Each accepted hit gets a preliminary drift distance computed at slope 0.
        - The store is appended to; call :meth:`clear` between events.
        """
        try:
            wires = raw["wire"].to_numpy(dtype=np.int64, copy=False)
            tdcs = raw["tdc"].to_numpy(dtype=np.int64, copy=False)
        except KeyError as e:
            raise KeyError(f"Missing required column: {e.args[0]}") from e
        if "ref_time" in raw.columns:
            ref = raw["ref_time"].to_numpy(dtype=np.float64, copy=False)
        else:
            ref = np.zeros(wires.size, dtype=np.float64)
        mc_pos = raw["mc_pos"].to_numpy(dtype=np.float64, copy=False) if "mc_pos" in raw.columns else None

        ok = wires >= 0
        if self.nwires:
            ok &= wires < self.nwires
        n_miss = int(wires.size - np.count_nonzero(ok))
        idx = np.flatnonzero(ok)
        self._raw_wires.append(wires[idx])

        offsets = self.tdc_offsets[wires[idx]] if self.tdc_offsets.size else np.zeros(idx.size)
        times = offsets + ref[idx] - self.tdc_res * (tdcs[idx] + 0.5)
        if time_cut:
            keep = (times > self.min_time) & (times < self.max_time)
        else:
            keep = np.ones(idx.size, dtype=bool)
        n_rej = int(idx.size - np.count_nonzero(keep))

        idx, times = idx[keep], times[keep]
        if self.ttd_conv is not None:
            dists = np.atleast_1d(self.ttd_conv.convert(times, 0.0))
        else:
            dists = np.zeros(idx.size, dtype=np.float64)

        for k, i in enumerate(idx):
            iw = int(wires[i])
            kwargs = dict(
                wire_num=iw,
                wire_pos=self.wire_start + iw * self.wire_spacing,
                resolution=self.resolution,
                plane=self,
                raw_tdc=int(tdcs[i]),
                drift_time=float(times[k]),
                drift_dist=float(dists[k]),
            )
            if mc_pos is not None:
                self._hits.append(MCHit(mc_pos=float(mc_pos[i]), **kwargs))
            else:
                self._hits.append(Hit(**kwargs))

        self._hits.sort(key=Hit.sort_key)
        self.invalidate()

        self.stats["n_miss"] += n_miss
        self.stats["n_rej"] += n_rej
        self._update_multiplicity()
        self._check_crosstalk()
        if n_miss:
            logger.debug("Plane %s: %d row(s) with wire out of range", self.name, n_miss)
        return int(idx.size)

    def _update_multiplicity(self) -> None:
        # raw in-range hits, before the time cut
        wires = np.concatenate(self._raw_wires) if self._raw_wires else np.empty(0, dtype=np.int64)
        if not wires.size:
            return
        _, counts = np.unique(wires, return_counts=True)
        self.stats["n_hitwires"] = int(counts.size)
        self.stats["n_multihit"] = int(np.count_nonzero(counts > 1))
        self.stats["max_mul"] = int(counts.max())

    def _check_crosstalk(self) -> None:
        r"""
        Flag multi-hits and adjacent-wire clusters among the accepted hits.

        Walking the store in wire order, a hit on the same wire as its
        predecessor marks both as ``is_multi`` and records the drift-time
        difference in ``tdiff``. A hit on the next wire starts or extends a
        cluster: both hits get ``in_cluster``, ``n_cl`` counts clusters,
        ``n_dbl`` counts clustered hits and ``max_clsiz`` is the longest run
        of adjacent wires.
        """
        n_cl = n_dbl = 0
        cursiz = 1
        max_clsiz = 1 if self._hits else 0
        prev: Optional[Hit] = None
        for hit in self._hits:
            hit.is_multi = False
            hit.tdiff = 0.0
            hit.in_cluster = False
        for hit in self._hits:
            dw = abs(hit.wire_num - prev.wire_num) if prev is not None else -1
            if dw == 0:
                hit.is_multi = prev.is_multi = True
                hit.tdiff = hit.drift_time - prev.drift_time
            elif dw == 1:
                if cursiz == 1:
                    n_cl += 1
                    n_dbl += 1
                    prev.in_cluster = True
                cursiz += 1
                n_dbl += 1
                hit.in_cluster = True
                max_clsiz = max(max_clsiz, cursiz)
            else:
                cursiz = 1
            prev = hit
        self.stats["n_cl"] = n_cl
        self.stats["n_dbl"] = n_dbl
        self.stats["max_clsiz"] = max_clsiz

    def invalidate(self) -> None:
        """Drop the cached candidate positions after a hit's drift distance changed."""
        self._pos_cache = None

    # ------------------------------------------------------------------ lookup

    def positions(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Cached ``(pos_l, pos_r)`` arrays aligned with :attr:`hits`.
        """
        if self._pos_cache is None:
            pos_l = np.fromiter((h.pos_l for h in self._hits), dtype=np.float64, count=len(self._hits))
            pos_r = np.fromiter((h.pos_r for h in self._hits), dtype=np.float64, count=len(self._hits))
            self._pos_cache = (pos_l, pos_r)
        return self._pos_cache

    def candidates_in(self, x_lo: float, x_hi: float) -> List[Tuple[float, Hit]]:
        r"""
        All candidate positions in the closed interval ``[x_lo, x_hi]``.

        Each hit contributes its left and right positions independently; a hit
        with zero drift distance contributes once.

        Returns
        -------
        list of (float, Hit)
            ``(x, hit)`` pairs ordered by position.
        """
        if not self._hits:
            return []
        pos_l, pos_r = self.positions()
        in_l = (pos_l >= x_lo) & (pos_l <= x_hi)
        in_r = (pos_r >= x_lo) & (pos_r <= x_hi) & (pos_r != pos_l)
        out: List[Tuple[float, Hit]] = []
        for i in np.flatnonzero(in_l):
            out.append((float(pos_l[i]), self._hits[i]))
        for i in np.flatnonzero(in_r):
            out.append((float(pos_r[i]), self._hits[i]))
        out.sort(key=lambda c: c[0])
        return out

    # ------------------------------------------------------------------ geometry

    def set_partner(self, other: Optional["WirePlane"]) -> None:
        """Pair this plane with a nearby (usually staggered) plane, both ways."""
        self.partner = other
        if other is not None:
            other.partner = self

    def __lt__(self, other: "WirePlane") -> bool:
        return self.z < other.z

    def __repr__(self) -> str:
        return (
            f"WirePlane({self.name!r}, z={self.z:g}, type={self.plane_type}, "
            f"nwires={self.nwires}, nhits={self.n_hits})"
        )


def offsets_from_config(value: Union[float, Sequence[float], None], nwires: int) -> np.ndarray:
    """Expand a scalar or per-wire TDC offset entry (ns) to per-wire seconds."""
    if value is None:
        return np.zeros(nwires, dtype=np.float64)
    arr = np.atleast_1d(np.asarray(value, dtype=np.float64))
    if arr.size == 1 and nwires > 1:
        arr = np.full(nwires, arr[0], dtype=np.float64)
    return arr * TDC_SCALE


__all__ = ["WirePlane", "PLANE_TYPES", "TDC_SCALE", "offsets_from_config"]
