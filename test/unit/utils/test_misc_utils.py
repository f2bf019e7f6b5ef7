import numpy as np
import pytest

from ugflow.utils.misc_utils import idx_last_nz, shiftarray


class TestMiscUtils:
    inputs = [[1, 0, 1, 0, 1], [1, 0, 0, 2, 0, 5], [1, 0, 0, 0, 0, 2, 5], [0, 0, 0, 1, 2, 3, 0, 5], [2, 0, 1, 0, 0]]

    @pytest.mark.parametrize(
        "inp,expected",
        zip(
            inputs,
            [[0, 0, 2, 2, 4], [0, 0, 0, 3, 3, 5], [0, 0, 0, 0, 0, 5, 6], [-1, -1, -1, 3, 4, 5, 5, 7], [0, 0, 2, 2, 2]],
        ),
    )
    def test_idx_last_nz(self, inp, expected):
        assert np.all(idx_last_nz(inp) == expected)

    def test_shiftarray_right(self):
        assert list(shiftarray(np.array([1, 2, 3, 4]), 1, 0)) == [0, 1, 2, 3]

    def test_shiftarray_left(self):
        assert list(shiftarray(np.array([1, 2, 3, 4]), -2, 0)) == [3, 4, 0, 0]

    def test_shiftarray_no_shift(self):
        arr = np.array([1.0, 2.0])
        result = shiftarray(arr, 0)
        assert list(result) == [1.0, 2.0]
        assert result is not arr

    def test_shiftarray_nan_fill(self):
        result = shiftarray(np.array([1.0, 2.0, 3.0]), 1)
        assert np.isnan(result[0])
        assert list(result[1:]) == [1.0, 2.0]
