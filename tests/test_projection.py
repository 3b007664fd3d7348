import logging

import pytest

from conftest import line_hits, make_projection, put_hit
from treesearch.config import RoadConfig
from treesearch.detector import Detector
from treesearch.pattern import PatternNode
from treesearch.wire_plane import WirePlane


def _band(hits, center, half=0.1, zl=0.0, zu=0.3):
    """Node around the slope-1 line ``x = center + z``."""
    return PatternNode(zl, zu, center + zl - half, center + zl + half, center + zu - half, center + zu + half,
                       frozenset(hits))


@pytest.fixture
def two_tracks():
    proj = make_projection()
    a = line_hits(proj, 1.0, 1.0, wire0=10)
    b = line_hits(proj, 2.0, 1.0, wire0=40)
    return proj, a, b


def test_separate_tracks_give_separate_roads(two_tracks):
    proj, a, b = two_tracks
    nodes = [_band(a[:2], 1.0), _band(b, 2.0), _band(a[2:], 1.0)]
    roads = proj.make_roads(nodes)

    assert roads is proj.roads
    assert len(roads) == 2
    assert all(r.good for r in roads)
    assert sorted(len(r.patterns) for r in roads) == [1, 2]
    assert {frozenset(r.hits) for r in roads} == {frozenset(a), frozenset(b)}
    for r in roads:
        assert r.n_fits == 1
        assert r.slope == pytest.approx(1.0)


def test_growth_rescans_after_region_extends():
    proj = make_projection()
    a = line_hits(proj, 1.0, 1.0)
    nodes = [
        _band(a[:2], 1.0, zl=0.0, zu=0.1),
        _band(a[2:], 1.0, zl=0.2, zu=0.3),
        _band((), 1.0),
    ]
    roads = proj.make_roads(nodes)

    assert len(roads) == 1
    assert len(roads[0].patterns) == 3
    assert roads[0].hits == set(a)
    assert roads[0].good


def test_conflicting_node_seeds_its_own_road(two_tracks):
    proj, a, _ = two_tracks
    p0 = proj.planes[0]
    c0 = put_hit(p0, 11, 1.02)

    roads = proj.make_roads([_band(a, 1.0), _band([c0], 1.0)])

    assert len(roads) == 2
    conflict = next(r for r in roads if r.hits == {c0})
    # both wires of plane 0 fall in the region, so the road has two fits
    assert conflict.n_fits == 2
    assert conflict.good


def test_road_contained_in_better_road_is_voided(two_tracks):
    proj, a, _ = two_tracks
    e = line_hits(proj, 3.0, 1.0, wire0=70)
    big = _band(a, 1.0)
    sub = _band(a[:2], 3.0)  # hits of track a, region around track e

    roads = proj.make_roads([big, sub])

    assert len(roads) == 2
    keep = next(r for r in roads if r.patterns[0] is big)
    dup = next(r for r in roads if r.patterns[0] is sub)
    assert keep.good
    assert dup.is_void
    assert dup.n_fits == 1
    assert {p.hit for p in dup.fit_points} == set(e)
    assert proj.good_roads == [keep]


def test_roads_sorted_best_first():
    proj = make_projection()
    a = line_hits(proj, 1.0, 1.0, wire0=10)
    wobbly = [put_hit(p, 40 + k, 2.0 + p.z + (0.002 if k % 2 else -0.002)) for k, p in enumerate(proj.planes)]
    roads = proj.make_roads([_band(wobbly, 2.0), _band(a, 1.0)])
    assert [r.chi2 for r in roads] == sorted(r.chi2 for r in roads)
    assert roads[0].hits == set(a)


def test_unfittable_road_is_kept_but_not_good():
    proj = make_projection()
    a = line_hits(proj, 1.0, 1.0)
    roads = proj.make_roads([_band(a, 1.0), _band((), 5.0)], RoadConfig(min_planes=3))
    assert len(roads) == 2
    assert len(proj.good_roads) == 1
    assert roads[-1].n_fits == 0


def test_empty_event():
    proj = make_projection()
    assert proj.make_roads([]) == []
    assert proj.good_roads == []


def test_projection_planes_sorted_and_cleared():
    proj = make_projection(zs=(0.2, 0.0, 0.1))
    assert [p.z for p in proj.planes] == [0.0, 0.1, 0.2]
    assert proj.z_range == (0.0, 0.2)
    line_hits(proj, 1.0, 0.0)
    proj.make_roads([_band(proj.planes[0].hits, 1.0, zu=0.2)])
    proj.clear()
    assert proj.roads == []
    assert all(p.n_hits == 0 for p in proj.planes)

    extra = WirePlane("x9", -0.1)
    proj.add_plane(extra)
    assert proj.planes[0] is extra and extra.projection is proj


def test_detector_find_roads(caplog):
    px = make_projection("x", 0.0)
    pu = make_projection("u", 30.0, zs=(0.05, 0.15, 0.25, 0.35))
    det = Detector([px, pu])
    a = line_hits(px, 1.0, 1.0)

    with caplog.at_level(logging.WARNING, logger="treesearch.detector"):
        out = det.find_roads({"x": [_band(a, 1.0)], "w": []})

    assert set(out) == {"x", "u"}
    assert len(out["x"]) == 1 and out["u"] == []
    assert "unknown projection" in caplog.text
    assert [det.planes[n].plane_num for n in ("x1", "u1", "x2")] == [0, 1, 2]
