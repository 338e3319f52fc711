import numpy as np
import pytest
from numpy.testing import assert_array_equal

from rankreduce.dtw_utils import (
    DimensionMismatch,
    compute_envelope,
    dtw_distance,
    lb_keogh,
    sakoe_chiba_window,
)


def test_envelope_values():
    lower, upper = compute_envelope([1, 3, 2, 5, 4], 1)
    assert_array_equal(lower, [1, 1, 2, 2, 4])
    assert_array_equal(upper, [3, 3, 5, 5, 5])


def test_envelope_of_negative_series_keeps_negative_maximum():
    lower, upper = compute_envelope([-3.0, -2.0, -5.0], 0)
    assert_array_equal(upper, [-3.0, -2.0, -5.0])
    assert_array_equal(lower, [-3.0, -2.0, -5.0])

    _, upper = compute_envelope([-3.0, -2.0, -5.0], 1)
    assert_array_equal(upper, [-2.0, -2.0, -2.0])


def test_envelope_width_is_clipped():
    q = np.array([4.0, -1.0, 7.0, 0.5])
    lower, upper = compute_envelope(q, 100)
    assert_array_equal(lower, np.full(4, -1.0))
    assert_array_equal(upper, np.full(4, 7.0))

    lower, upper = compute_envelope(q, -3)
    assert_array_equal(lower, q)
    assert_array_equal(upper, q)

    lower, upper = compute_envelope([3.0], 5)
    assert_array_equal(lower, [3.0])
    assert_array_equal(upper, [3.0])


def test_lb_keogh_values():
    lower = np.zeros(3)
    upper = np.ones(3)
    # the last position (5 > 1) is not part of the bound
    assert lb_keogh(lower, upper, [2.0, -1.0, 5.0]) == pytest.approx(np.sqrt(2.0))
    assert lb_keogh(lower, upper, [0.5, 0.0, 1.0]) == 0.0
    assert lb_keogh([3.0], [3.0], [10.0]) == 0.0


def test_lb_keogh_of_query_against_itself_is_zero(rng):
    q = rng.standard_normal(20)
    lower, upper = compute_envelope(q, 3)
    assert lb_keogh(lower, upper, q) == 0.0


def test_lb_keogh_is_admissible(rng):
    for _ in range(200):
        L = int(rng.integers(1, 30))
        wp = int(rng.integers(0, 101))
        q = rng.standard_normal(L) * rng.uniform(0.1, 5.0)
        c = rng.standard_normal(L) * rng.uniform(0.1, 5.0) + rng.uniform(-2, 2)
        lower, upper = compute_envelope(q, sakoe_chiba_window(wp, L))
        assert lb_keogh(lower, upper, c) <= dtw_distance(q, c, wp) + 1e-9


def test_lb_keogh_length_mismatch():
    with pytest.raises(DimensionMismatch):
        lb_keogh(np.zeros(3), np.ones(3), [1.0, 2.0])
