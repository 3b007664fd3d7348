import itertools

import numpy as np
import pytest

from treesearch.fit_kernels import combination_indices, fit_line, fit_lines_batch


def test_combination_indices_follow_product_order():
    idx, total = combination_indices([2, 3, 1], limit=100)
    assert total == 6
    assert idx.dtype == np.int64
    assert [tuple(r) for r in idx] == list(itertools.product(range(2), range(3), range(1)))


def test_combination_indices_are_capped():
    idx, total = combination_indices([4, 4, 4], limit=5)
    assert total == 64
    assert idx.shape == (5, 3)
    assert [tuple(r) for r in idx] == list(itertools.product(range(4), repeat=3))[:5]


def test_batch_matches_numpy_polyfit():
    rng = np.random.default_rng(7)
    z = np.array([0.0, 0.12, 0.25, 0.31, 0.5])
    x = 0.4 - 1.3 * z + rng.normal(0.0, 0.01, size=(6, z.size))
    w = rng.uniform(1e3, 1e4, size=x.shape)
    pos, slope, chi2, cov, ok = fit_lines_batch(x, w, z)

    assert ok.all()
    for i in range(x.shape[0]):
        b, a = np.polyfit(z, x[i], 1, w=np.sqrt(w[i]))
        assert pos[i] == pytest.approx(a, rel=1e-9)
        assert slope[i] == pytest.approx(b, rel=1e-9)
        r = x[i] - a - b * z
        assert chi2[i] == pytest.approx(np.sum(w[i] * r * r), rel=1e-6)


def test_singular_rows_are_flagged():
    z = np.array([0.2, 0.2, 0.2])
    pos, slope, chi2, cov, ok = fit_lines_batch(np.ones((2, 3)), np.ones((2, 3)), z)
    assert not ok.any()
    assert np.isnan(pos).all() and np.isnan(cov).all()

    z = np.array([0.0, 0.1])
    _, _, _, _, ok = fit_lines_batch(np.ones((1, 2)), np.zeros((1, 2)), z)
    assert not ok[0]


def test_fit_line_and_shape_checks():
    pos, slope, chi2, cov, ok = fit_line([1.0, 2.0, 3.0], [1.0, 1.0, 1.0], [0.0, 1.0, 2.0])
    assert ok and pos == pytest.approx(1.0) and slope == pytest.approx(1.0)
    assert cov.shape == (3,)
    with pytest.raises(ValueError):
        fit_lines_batch(np.ones((2, 3)), np.ones((2, 2)), np.zeros(3))
    with pytest.raises(ValueError):
        fit_lines_batch(np.ones((2, 3)), np.ones((2, 3)), np.zeros(2))
