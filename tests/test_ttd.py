import math

import numpy as np
import pytest

from treesearch.errors import ConfigError
from treesearch.hit import Hit
from treesearch.ttd import TTD_CONVERTERS, LinearTTDConv, TanhTTDConv, make_ttd_converter
from treesearch.wire_plane import WirePlane


def test_linear_scalar_and_array():
    conv = LinearTTDConv(5e4)
    d = conv.convert(100e-9)
    assert isinstance(d, float)
    assert d == pytest.approx(5e-3)
    arr = conv.convert(np.array([0.0, 20e-9, -5e-9]))
    assert arr == pytest.approx([0.0, 1e-3, 0.0])


def test_slope_projects_distance():
    conv = LinearTTDConv(5e4)
    assert conv.convert(100e-9, slope=0.75) == pytest.approx(5e-3 * 1.25)


def test_tanh_saturates_and_is_linear_near_wire():
    conv = TanhTTDConv(5e4, 4e-3)
    assert conv.convert(1e-12) == pytest.approx(5e4 * 1e-12, rel=1e-6)
    assert conv.convert(1e-5) == pytest.approx(4e-3)
    assert conv.convert(50e-9) == pytest.approx(4e-3 * math.tanh(5e4 * 50e-9 / 4e-3))


def test_registry_lookup_is_case_insensitive():
    assert set(TTD_CONVERTERS) == {"linear", "tanh"}
    conv = make_ttd_converter(" Linear ", [2e4])
    assert isinstance(conv, LinearTTDConv) and conv.drift_vel == 2e4
    conv = make_ttd_converter("tanh")
    assert isinstance(conv, TanhTTDConv)


@pytest.mark.parametrize(
    "name, params",
    [("garfield", ()), ("linear", [1.0, 2.0]), ("linear", [-1.0]), ("tanh", [5e4, 0.0])],
)
def test_bad_converter_config(name, params):
    with pytest.raises(ConfigError):
        make_ttd_converter(name, params)


def test_hit_recomputes_drift_distance_with_slope():
    plane = WirePlane("x1", 0.0, ttd_conv=LinearTTDConv(5e4))
    hit = plane.add_hit(Hit(1, 1.0, 1e-3, drift_time=40e-9))
    assert hit.convert_time_to_dist() == pytest.approx(2e-3)
    assert hit.convert_time_to_dist(slope=1.0) == pytest.approx(2e-3 * math.sqrt(2.0))
    assert hit.drift_dist == pytest.approx(2e-3 * math.sqrt(2.0))


def test_hit_without_converter():
    with pytest.raises(ValueError):
        Hit(1, 1.0, 1e-3).convert_time_to_dist()
