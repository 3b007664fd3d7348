from __future__ import annotations

import abc
from typing import Callable, Dict, Sequence, Union

import numpy as np

from treesearch.errors import ConfigError

ArrayLike = Union[float, np.ndarray]


class TimeToDistConv(abc.ABC):
    r"""
    Abstract drift time-to-distance converter.

    A converter maps a measured drift time :math:`t` (seconds) to the drift
    distance along the plane coordinate. Subclasses implement the
    perpendicular distance :math:`d_\perp(t)`; the base class projects it onto
    the plane coordinate for a track of slope :math:`s = dx/dz`:

    .. math::

        d(t, s) \;=\; d_\perp(t)\,\sqrt{1 + s^2}.

    Negative drift times (early hits) map to :math:`d = 0`.

    Notes
    -----
    Converters are created by name through :func:`make_ttd_converter`, which
    resolves the name against :data:`TTD_CONVERTERS` when the configuration is
    loaded.
    """

    #: Number of parameters expected by :meth:`set_parameters`.
    n_params: int = 0

    def set_parameters(self, params: Sequence[float]) -> None:
        r"""
        Set the converter parameters.

        Parameters
        ----------
        params : sequence of float
            Exactly :attr:`n_params` values.

        Raises
        ------
        ConfigError
            If the number of parameters is wrong or a value is out of range.
        """
        vals = [float(p) for p in params]
        if len(vals) != self.n_params:
            raise ConfigError(
                f"{type(self).__name__} expects {self.n_params} parameter(s), got {len(vals)}"
            )
        self._set(vals)

    @abc.abstractmethod
    def _set(self, params: Sequence[float]) -> None:
        ...

    @abc.abstractmethod
    def _perp_dist(self, time: np.ndarray) -> np.ndarray:
        ...

    def convert(self, time: ArrayLike, slope: float = 0.0) -> ArrayLike:
        r"""
        Convert drift time(s) to drift distance(s) in meters.

        Parameters
        ----------
        time : float or ndarray
            Drift time(s) in seconds.
        slope : float, optional
            Track slope :math:`dx/dz` used to project the perpendicular
            distance onto the plane coordinate. Default ``0.0``.

        Returns
        -------
        float or ndarray
            Same shape as ``time``.
        """
        t = np.clip(np.asarray(time, dtype=np.float64), 0.0, None)
        d = self._perp_dist(t) * np.sqrt(1.0 + float(slope) ** 2)
        if d.ndim == 0:
            return float(d)
        return d


class LinearTTDConv(TimeToDistConv):
    r"""
    Constant drift velocity: :math:`d_\perp = v\,t`.

    Parameters
    ----------
    drift_vel : float, optional
        Drift velocity in m/s (must be positive). Default ``5e4`` (50 µm/ns).
    """
    n_params = 1

    def __init__(self, drift_vel: float = 5e4) -> None:
        self._set([drift_vel])

    def _set(self, params: Sequence[float]) -> None:
        (v,) = params
        if not v > 0.0:
            raise ConfigError(f"Drift velocity must be positive, got {v}")
        self.drift_vel = float(v)

    def _perp_dist(self, time: np.ndarray) -> np.ndarray:
        return self.drift_vel * time

    def __repr__(self) -> str:
        return f"LinearTTDConv(drift_vel={self.drift_vel:g})"


class TanhTTDConv(TimeToDistConv):
    r"""
    Saturating drift: linear near the wire, limited to half a cell far away.

    .. math::

        d_\perp(t) \;=\; d_{\max}\,\tanh\!\left(\frac{v\,t}{d_{\max}}\right).

    Parameters
    ----------
    drift_vel : float
        Drift velocity near the wire in m/s.
    d_max : float
        Asymptotic drift distance in m (typically half the wire spacing).
    """
    n_params = 2

    def __init__(self, drift_vel: float = 5e4, d_max: float = 5e-3) -> None:
        self._set([drift_vel, d_max])

    def _set(self, params: Sequence[float]) -> None:
        v, dmax = params
        if not v > 0.0 or not dmax > 0.0:
            raise ConfigError(f"TanhTTDConv parameters must be positive, got {list(params)}")
        self.drift_vel = float(v)
        self.d_max = float(dmax)

    def _perp_dist(self, time: np.ndarray) -> np.ndarray:
        return self.d_max * np.tanh(self.drift_vel * time / self.d_max)

    def __repr__(self) -> str:
        return f"TanhTTDConv(drift_vel={self.drift_vel:g}, d_max={self.d_max:g})"


TTD_CONVERTERS: Dict[str, Callable[[], TimeToDistConv]] = {
    "linear": LinearTTDConv,
    "tanh": TanhTTDConv,
}


def make_ttd_converter(name: str, params: Sequence[float] = ()) -> TimeToDistConv:
    r"""
    Create a drift converter by registry name.

    Parameters
    ----------
    name : str
        Key in :data:`TTD_CONVERTERS` (case-insensitive).
    params : sequence of float, optional
        Parameters passed to :meth:`TimeToDistConv.set_parameters`. When empty,
        the converter keeps its defaults.

    Returns
    -------
    TimeToDistConv

    Raises
    ------
    ConfigError
        Unknown converter name or invalid parameters.
    """
    key = str(name).strip().lower()
    factory = TTD_CONVERTERS.get(key)
    if factory is None:
        raise ConfigError(
            f"Drift time-to-distance converter '{name}' not available. "
            f"Choose one of: {', '.join(sorted(TTD_CONVERTERS))}"
        )
    conv = factory()
    if len(params):
        conv.set_parameters(params)
    return conv


__all__ = [
    "TimeToDistConv",
    "LinearTTDConv",
    "TanhTTDConv",
    "TTD_CONVERTERS",
    "make_ttd_converter",
]
