import numpy as np
import pandas as pd
import pytest

from treesearch.errors import ConfigError
from treesearch.hit import Hit, MCHit
from treesearch.ttd import LinearTTDConv
from treesearch.wire_plane import WirePlane, offsets_from_config


def _plane(**kw):
    defaults = dict(
        nwires=16,
        wire_start=0.1,
        wire_spacing=0.01,
        resolution=2e-4,
        tdc_res=1e-9,
        tdc_offsets=np.full(16, 100e-9),
        ttd_conv=LinearTTDConv(5e4),
    )
    defaults.update(kw)
    return WirePlane("x1", 0.5, **defaults)


def _raw(rows, **extra):
    df = pd.DataFrame(rows, columns=["wire", "tdc"])
    for k, v in extra.items():
        df[k] = v
    return df


def test_decode_drift_time_and_distance():
    plane = _plane()
    assert plane.decode(_raw([(3, 50)])) == 1
    (hit,) = plane.hits
    assert hit.plane is plane
    assert hit.wire_num == 3 and hit.raw_tdc == 50
    assert hit.wire_pos == pytest.approx(0.13)
    assert hit.drift_time == pytest.approx(49.5e-9)
    assert hit.drift_dist == pytest.approx(2.475e-3)
    assert (hit.pos_l, hit.pos_r) == pytest.approx((0.13 - 2.475e-3, 0.13 + 2.475e-3))
    assert hit.z == 0.5


def test_decode_reference_time_shifts_drift_time():
    plane = _plane()
    plane.decode(_raw([(3, 50)], ref_time=[10e-9]))
    assert plane.hits[0].drift_time == pytest.approx(59.5e-9)


def test_decode_cuts_and_statistics():
    plane = _plane(min_time=0.0, max_time=80e-9)
    raw = _raw([(3, 50), (3, 40), (5, 150), (7, 10), (20, 50), (-1, 50)])
    assert plane.decode(raw) == 2
    assert plane.stats["n_miss"] == 2
    assert plane.stats["n_rej"] == 2
    # wires 3, 5, 7 fired before the time cut
    assert plane.stats["n_hitwires"] == 3
    assert plane.stats["n_multihit"] == 1
    assert plane.stats["max_mul"] == 2
    # same wire, ordered by drift time
    assert [h.drift_time for h in plane.hits] == pytest.approx([49.5e-9, 59.5e-9])


def test_decode_without_time_cut_clips_early_hits():
    plane = _plane(min_time=0.0, max_time=80e-9)
    raw = _raw([(5, 150), (7, 10)])
    assert plane.decode(raw, time_cut=False) == 2
    by_wire = {h.wire_num: h for h in plane.hits}
    assert by_wire[5].drift_time < 0.0
    assert by_wire[5].drift_dist == 0.0
    assert by_wire[7].drift_dist == pytest.approx(89.5e-9 * 5e4)


def test_hits_sorted_by_wire():
    plane = _plane()
    plane.decode(_raw([(9, 50), (2, 50), (5, 50)]))
    assert [h.wire_num for h in plane.hits] == [2, 5, 9]


def test_decode_mc_truth_creates_mc_hits():
    plane = _plane()
    plane.decode(_raw([(4, 50)], mc_pos=[0.1385]))
    (hit,) = plane.hits
    assert isinstance(hit, MCHit)
    assert hit.mc_pos == pytest.approx(0.1385)


def test_decode_requires_columns():
    plane = _plane()
    with pytest.raises(KeyError):
        plane.decode(pd.DataFrame({"wire": [1]}))


def test_clear_releases_hits():
    plane = _plane()
    plane.decode(_raw([(1, 50), (2, 50)]))
    assert plane.n_hits == 2
    plane.clear()
    assert plane.hits == () and plane.n_hits == 0
    assert plane.stats["n_miss"] == 0
    assert plane.positions()[0].size == 0


def test_candidates_in_is_inclusive_and_sorted():
    plane = WirePlane("u1", 0.0)
    far = plane.add_hit(Hit(8, 1.20, 1e-3, drift_dist=0.01))
    near = plane.add_hit(Hit(2, 1.00, 1e-3, drift_dist=0.01))
    zero = plane.add_hit(Hit(3, 1.05, 1e-3))

    got = plane.candidates_in(0.985, 1.05)
    assert [x for x, _ in got] == pytest.approx([0.99, 1.01, 1.05])
    assert [h for _, h in got] == [near, near, zero]

    assert [x for x, _ in plane.candidates_in(0.98, 1.0)] == pytest.approx([0.99])
    assert [h for _, h in plane.candidates_in(1.0, 2.0)][-2:] == [far, far]
    assert plane.candidates_in(5.0, 6.0) == []


def test_add_hit_invalidates_position_cache():
    plane = WirePlane("v1", 0.0)
    plane.add_hit(Hit(1, 1.0, 1e-3))
    assert plane.positions()[0].tolist() == [1.0]
    plane.add_hit(Hit(0, 0.5, 1e-3))
    assert plane.positions()[0].tolist() == [0.5, 1.0]


def test_plane_validation():
    assert WirePlane("y7", 0.0).plane_type == "y"
    with pytest.raises(ConfigError):
        WirePlane("q1", 0.0)
    with pytest.raises(ConfigError):
        WirePlane("x1", 0.0, nwires=4, tdc_offsets=[0.0, 0.0])
    with pytest.raises(ConfigError):
        WirePlane("x1", 0.0, resolution=0.0)


def test_partner_is_symmetric():
    a, b = WirePlane("x1", 0.0), WirePlane("x2", 0.01)
    a.set_partner(b)
    assert a.partner is b and b.partner is a
    assert a < b


def test_offsets_from_config_scales_ns():
    assert offsets_from_config(None, 3).tolist() == [0.0, 0.0, 0.0]
    assert offsets_from_config(100.0, 3) == pytest.approx([100e-9] * 3)
    assert offsets_from_config([1.0, 2.0], 2) == pytest.approx([1e-9, 2e-9])


def test_hit_rejects_nonpositive_resolution():
    with pytest.raises(ValueError):
        Hit(0, 0.0, 0.0)


def test_multiplicity_counts_hits_rejected_by_time_cut():
    plane = _plane(min_time=0.0, max_time=80e-9)
    assert plane.decode(_raw([(5, 150), (5, 160), (6, 50)])) == 1
    assert plane.stats["n_rej"] == 2
    assert plane.stats["n_hitwires"] == 2
    assert plane.stats["n_multihit"] == 1
    assert plane.stats["max_mul"] == 2


def test_crosstalk_clusters_and_multihits():
    plane = _plane()
    plane.decode(_raw([(2, 50), (3, 50), (4, 50), (4, 40), (9, 50), (11, 50), (12, 50)]))

    assert plane.stats["n_cl"] == 2
    assert plane.stats["n_dbl"] == 5
    assert plane.stats["max_clsiz"] == 3

    hits = plane.hits
    assert [h.wire_num for h in hits] == [2, 3, 4, 4, 9, 11, 12]
    assert [h.in_cluster for h in hits] == [True, True, True, False, False, True, True]
    assert [h.is_multi for h in hits] == [False, False, True, True, False, False, False]
    assert hits[3].tdiff == pytest.approx(10e-9)
    assert hits[2].tdiff == 0.0

    plane.clear()
    assert plane.stats["n_cl"] == 0 and plane.stats["max_clsiz"] == 0


def test_isolated_hits_have_unit_cluster_size():
    plane = _plane()
    plane.decode(_raw([(1, 50), (5, 50)]))
    assert plane.stats["n_cl"] == 0 and plane.stats["n_dbl"] == 0
    assert plane.stats["max_clsiz"] == 1
    assert not any(h.in_cluster or h.is_multi for h in plane.hits)


def test_slope_correction_refreshes_candidates():
    plane = WirePlane("x1", 0.0, ttd_conv=LinearTTDConv(1.0))
    hit = plane.add_hit(Hit(1, 1.0, 1e-3, drift_time=0.01, drift_dist=0.01))
    assert [x for x, _ in plane.candidates_in(0.0, 3.0)] == pytest.approx([0.99, 1.01])

    d = hit.convert_time_to_dist(slope=1.0)
    assert d == pytest.approx(0.01 * np.sqrt(2.0))
    assert [x for x, _ in plane.candidates_in(0.0, 3.0)] == pytest.approx([1.0 - d, 1.0 + d])
    assert plane.positions()[1].tolist() == pytest.approx([1.0 + d])
