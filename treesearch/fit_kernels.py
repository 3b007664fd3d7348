from __future__ import annotations

from typing import Tuple

import numpy as np
from numba import njit, prange

__all__ = ["fit_lines_batch", "fit_line", "combination_indices"]


@njit(cache=True, parallel=True)
def _fit_lines_kernel(x, w, z, pos, slope, chi2, cov, ok):
    n, m = x.shape
    zspan = 0.0
    if m > 0:
        zspan = z.max() - z.min()
    for i in prange(n):
        pos[i] = np.nan
        slope[i] = np.nan
        chi2[i] = np.nan
        cov[i, 0] = np.nan
        cov[i, 1] = np.nan
        cov[i, 2] = np.nan
        ok[i] = False

        s1 = 0.0
        sz = 0.0
        sx = 0.0
        for j in range(m):
            s1 += w[i, j]
            sz += w[i, j] * z[j]
            sx += w[i, j] * x[i, j]
        if m >= 2 and s1 > 0.0 and zspan > 0.0:
            zbar = sz / s1
            xbar = sx / s1
            szz = 0.0
            sxz = 0.0
            for j in range(m):
                dz = z[j] - zbar
                szz += w[i, j] * dz * dz
                sxz += w[i, j] * (x[i, j] - xbar) * dz
            if szz > 0.0:
                b = sxz / szz
                a = xbar - b * zbar
                c2 = 0.0
                for j in range(m):
                    r = x[i, j] - a - b * z[j]
                    c2 += w[i, j] * r * r
                pos[i] = a
                slope[i] = b
                chi2[i] = c2
                cov[i, 0] = 1.0 / s1 + zbar * zbar / szz
                cov[i, 1] = -zbar / szz
                cov[i, 2] = 1.0 / szz
                ok[i] = True


def fit_lines_batch(
    x: np.ndarray, w: np.ndarray, z: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    r"""
    Weighted straight-line fits :math:`x = a + b\,z` for many point sets sharing the same z.

    Each row ``i`` of ``x``/``w`` is one combination of points, one per plane,
    with the planes' z positions in ``z``. The fit minimizes

    .. math::

        \chi^2_i \;=\; \sum_j w_{ij}\,\bigl(x_{ij} - a_i - b_i z_j\bigr)^2 .

    Working in coordinates centered on the weighted mean
    :math:`\bar z_i = \sum_j w_{ij} z_j / S_1` (with :math:`S_1=\sum_j w_{ij}`),
    :math:`S_{zz} = \sum_j w_{ij}(z_j-\bar z_i)^2` and
    :math:`S_{xz} = \sum_j w_{ij}(x_{ij}-\bar x_i)(z_j-\bar z_i)`:

    .. math::

        b = S_{xz}/S_{zz}, \qquad a = \bar x_i - b\,\bar z_i,

    and the parameter covariance is

    .. math::

        V_{11} = \frac{1}{S_1} + \frac{\bar z_i^2}{S_{zz}},\quad
        V_{12} = -\frac{\bar z_i}{S_{zz}},\quad
        V_{22} = \frac{1}{S_{zz}} .

    These equal the textbook closed forms :math:`V = (A^\top W A)^{-1}`
    but avoid the cancellation in :math:`S_1 S_{zz}^{\text{raw}} - S_z^2` when the
    planes sit far from :math:`z=0`.

    Parameters
    ----------
    x : ndarray, shape (n, m)
        Candidate positions.
    w : ndarray, shape (n, m)
        Weights :math:`1/\sigma^2`.
    z : ndarray, shape (m,)
        Plane positions.

    Returns
    -------
    pos, slope, chi2 : ndarray, shape (n,)
    cov : ndarray, shape (n, 3)
        ``(V11, V12, V22)`` per row.
    ok : ndarray of bool, shape (n,)
        ``False`` where the normal matrix is singular (fewer than two points,
        non-positive weights, or all points at the same z); other outputs are
        NaN there.

    Notes
    -----
    Rows are independent and processed in parallel with ``prange``.
    """
    x = np.ascontiguousarray(x, dtype=np.float64)
    w = np.ascontiguousarray(w, dtype=np.float64)
    z = np.ascontiguousarray(z, dtype=np.float64)
    if x.ndim != 2 or x.shape != w.shape or z.shape != (x.shape[1],):
        raise ValueError(
            f"Shape mismatch: x{x.shape}, w{w.shape}, z{z.shape}; expected (n,m), (n,m), (m,)"
        )
    n = x.shape[0]
    pos = np.empty(n, dtype=np.float64)
    slope = np.empty(n, dtype=np.float64)
    chi2 = np.empty(n, dtype=np.float64)
    cov = np.empty((n, 3), dtype=np.float64)
    ok = np.zeros(n, dtype=np.bool_)
    if n:
        _fit_lines_kernel(x, w, z, pos, slope, chi2, cov, ok)
    return pos, slope, chi2, cov, ok


def fit_line(x: np.ndarray, w: np.ndarray, z: np.ndarray) -> Tuple[float, float, float, np.ndarray, bool]:
    """Single-combination wrapper around :func:`fit_lines_batch`."""
    pos, slope, chi2, cov, ok = fit_lines_batch(
        np.asarray(x, dtype=np.float64)[None, :],
        np.asarray(w, dtype=np.float64)[None, :],
        z,
    )
    return float(pos[0]), float(slope[0]), float(chi2[0]), cov[0].copy(), bool(ok[0])


def combination_indices(sizes, limit: int) -> Tuple[np.ndarray, int]:
    r"""
    Row-major enumeration of the Cartesian product of ``range(s)`` for ``s`` in ``sizes``.

    Rows follow :func:`itertools.product` order (last axis varies fastest).
    At most ``limit`` rows are produced.

    Parameters
    ----------
    sizes : sequence of int
        Number of candidates per plane (all positive).
    limit : int
        Maximum number of combinations to return.

    Returns
    -------
    idx : ndarray of int64, shape (k, len(sizes))
        Candidate index per plane for each combination, ``k = min(total, limit)``.
    total : int
        Size of the full product (may exceed ``limit``).
    """
    sizes = tuple(int(s) for s in sizes)
    total = 1
    for s in sizes:
        total *= s
    k = max(0, min(total, int(limit)))
    if not sizes or k == 0:
        return np.empty((0, len(sizes)), dtype=np.int64), total if sizes else 0
    flat = np.arange(k, dtype=np.int64)
    idx = np.stack(np.unravel_index(flat, sizes), axis=1).astype(np.int64, copy=False)
    return idx, total
