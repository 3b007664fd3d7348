import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from conftest import fitted_road, line_hits, make_projection, wide_node  # noqa: E402
from treesearch.plotting import plot_roads  # noqa: E402
from treesearch.road import Road  # noqa: E402


def test_plot_roads_draws_regions_and_fits():
    proj = make_projection()
    good = fitted_road(proj, line_hits(proj, 1.0, 1.0))
    void = fitted_road(proj, [], wide_node())
    void.void()
    empty = Road(proj)

    fig, ax = plt.subplots()
    out = plot_roads(proj, [good, void, empty], ax=ax)

    assert out is ax
    assert len(ax.patches) == 2
    assert [p.get_linestyle() for p in ax.patches] == ["-", "--"]
    # one guide line per plane plus one best-fit line per fitted road
    assert len(ax.lines) == len(proj.planes) + 2
    assert "1 good road" in ax.get_title()
    plt.close(fig)


def test_plot_roads_own_figure_is_closed():
    proj = make_projection()
    line_hits(proj, 1.0, 1.0)
    proj.make_roads([wide_node(proj.planes[0].hits)])
    ax = plot_roads(proj, show=False, title="event 0")
    assert ax.get_title() == "event 0"
    assert not plt.fignum_exists(ax.figure.number)
