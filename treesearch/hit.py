from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from treesearch.wire_plane import WirePlane


@dataclass(eq=False)
class Hit:
    r"""
    One measured hit on one wire, valid for the duration of an event.

    A hit stores the wire it fired on and the drift distance derived from the
    measured drift time. The particle passed on either side of the wire, so
    every hit yields two candidate positions along the plane coordinate:

    .. math::

        x_L = x_w - d, \qquad x_R = x_w + d,

    where :math:`x_w` is the wire position and :math:`d` the drift distance.

    Hits compare by identity (``eq=False``) so they can live in sets and be
    referenced weakly by :class:`~treesearch.road.Point`.

    Attributes
    ----------
    wire_num : int
        Wire number within the plane.
    wire_pos : float
        Wire position along the plane coordinate (m).
    resolution : float
        Position resolution :math:`\sigma` (m); must be positive.
    plane : WirePlane, optional
        Owning plane.
    raw_tdc : int
        Raw TDC value.
    drift_time : float
        Drift time (s).
    drift_dist : float
        Drift distance along the plane coordinate (m).
    is_multi : bool
        Another hit on the same wire exists in this event.
    tdiff : float
        Drift-time difference to the previous hit on the same wire (s).
    in_cluster : bool
        A neighbouring wire also fired.
    """
    wire_num: int
    wire_pos: float
    resolution: float
    plane: Optional["WirePlane"] = None
    raw_tdc: int = 0
    drift_time: float = 0.0
    drift_dist: float = 0.0
    is_multi: bool = False
    tdiff: float = 0.0
    in_cluster: bool = False

    def __post_init__(self) -> None:
        if not self.resolution > 0.0:
            raise ValueError(f"Hit resolution must be positive, got {self.resolution}")

    @property
    def pos_l(self) -> float:
        """Left candidate position ``wire_pos - drift_dist``."""
        return self.wire_pos - self.drift_dist

    @property
    def pos_r(self) -> float:
        """Right candidate position ``wire_pos + drift_dist``."""
        return self.wire_pos + self.drift_dist

    @property
    def z(self) -> float:
        if self.plane is None:
            raise ValueError("Hit is not attached to a plane")
        return self.plane.z

    def convert_time_to_dist(self, slope: float = 0.0) -> float:
        r"""
        Recompute :attr:`drift_dist` from :attr:`drift_time` using the plane's
        drift converter and a track slope.

        Parameters
        ----------
        slope : float, optional
            Track slope :math:`dx/dz`; ``0.0`` gives the preliminary distance
            used before any track is known.

        Returns
        -------
        float
            The new drift distance.

        Notes
        -----
        The owning plane's cached candidate positions are invalidated, so
        later lookups see the new distance.
        """
        conv = None if self.plane is None else self.plane.ttd_conv
        if conv is None:
            raise ValueError("Hit has no drift time-to-distance converter")
        self.drift_dist = float(conv.convert(self.drift_time, slope))
        self.plane.invalidate()
        return self.drift_dist

    def sort_key(self):
        return (self.wire_num, self.drift_time)


@dataclass(eq=False)
class MCHit(Hit):
    """Simulated hit carrying the true track position ``mc_pos`` (m)."""
    mc_pos: float = 0.0


__all__ = ["Hit", "MCHit"]
