import logging
from typing import Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Polygon

from treesearch.projection import Projection
from treesearch.road import Road


def _show_and_close(fig, *, do_show: bool = True) -> None:
    r"""
    Show a Matplotlib figure (optionally) and always close it.

    Safe in headless mode, where ``plt.show()`` may be patched to a no-op.
    """
    fig.tight_layout()
    if do_show:
        plt.show()
    plt.close(fig)


def plot_roads(
    projection: Projection,
    roads: Optional[Sequence[Road]] = None,
    *,
    ax=None,
    show: bool = True,
    title: Optional[str] = None,
):
    r"""
    Draw one projection's hits, Road regions and best-fit lines in the (x, z) plane.

    For each plane, both candidate positions :math:`x_w \pm d` of every hit
    are drawn as small markers at the plane's z. Each Road is drawn as its
    corner quadrilateral (solid for good Roads, dashed for void ones) and,
    when fitted, the best line :math:`x = \text{pos} + \text{slope}\,z`
    over the Road's z range, with the points of the best fit highlighted.

    Parameters
    ----------
    projection : Projection
        Projection whose planes hold the event's hits.
    roads : sequence of Road, optional
        Roads to draw; defaults to ``projection.roads``.
    ax : matplotlib.axes.Axes, optional
        Draw into this axes instead of a new figure (then nothing is shown
        or closed).
    show : bool, optional
        Show the new figure before closing it. Default ``True``.
    title : str, optional
        Axes title.

    Returns
    -------
    matplotlib.axes.Axes
        The axes drawn into.
    """
    roads = projection.roads if roads is None else roads
    own_fig = ax is None
    if own_fig:
        fig, ax = plt.subplots(figsize=(7, 5))
    else:
        fig = ax.figure

    for plane in projection.planes:
        pos_l, pos_r = plane.positions()
        if pos_l.size:
            xs = np.concatenate([pos_l, pos_r])
            ax.scatter(xs, np.full(xs.size, plane.z), s=6, c="0.5", marker="|")
        ax.axhline(plane.z, color="0.9", lw=0.5, zorder=0)

    cmap = plt.get_cmap("tab10")
    for k, road in enumerate(roads):
        if not road.patterns:
            continue
        color = cmap(k % 10)
        corners = road.corners
        ax.add_patch(Polygon(
            corners.polygon(), closed=True, fill=False, edgecolor=color,
            linestyle="-" if road.good else "--", lw=1.0,
        ))
        if road.fits:
            z = np.array([corners.zl, corners.zu])
            ax.plot(road.pos + road.slope * z, z, color=color, lw=1.2)
            pts = road.fit_points
            ax.scatter([p.x for p in pts], [p.z for p in pts], s=18, color=color, zorder=3)

    ax.set_xlabel(f"{projection.name} [m]")
    ax.set_ylabel("z [m]")
    ax.set_title(title or f"Projection {projection.name}: {sum(r.good for r in roads)} good road(s)")
    ax.autoscale_view()
    logging.debug("Plotted %d road(s) for projection %s", len(roads), projection.name)

    if own_fig:
        _show_and_close(fig, do_show=show)
    return ax


__all__ = ["plot_roads"]
