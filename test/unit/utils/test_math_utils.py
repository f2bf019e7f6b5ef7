import numpy as np
import pytest

import ugflow.utils.math_utils as math_utils


def test_unphred():
    assert np.all(math_utils.unphred((10, 20, 30)) == np.array([0.1, 0.01, 0.001]))


def test_unphred_scaling_factor():
    np.testing.assert_array_almost_equal(math_utils.unphred([20, 40], scaling_factor=20), [0.1, 0.01])


def test_floored_log10():
    result = math_utils.floored_log10(np.array([0.1, 0, np.nan, 1]), 1e-4)
    np.testing.assert_array_almost_equal(result, [-1, -4, -4, 0])


def test_floored_log10_scalar():
    assert math_utils.floored_log10(0.0, 1e-4) == pytest.approx(-4)
    assert isinstance(math_utils.floored_log10(0.01, 1e-4), float)
