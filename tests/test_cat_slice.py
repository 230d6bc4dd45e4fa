import numpy as np
import pytest

from cat_slice import CatSlice


class TestCatSlice:

    def test_range(self):
        np.testing.assert_array_equal(CatSlice(start=3, stop=6), [3, 4, 5])

    def test_union_is_sorted_and_unique(self):
        union = CatSlice(start=6, stop=9) + CatSlice(start=0, stop=3) + CatSlice(start=2, stop=4)
        assert isinstance(union, CatSlice)
        np.testing.assert_array_equal(union, [0, 1, 2, 3, 6, 7, 8])

    def test_matrix_blocks(self):
        A = np.arange(36).reshape(6, 6)
        rows = CatSlice(start=0, stop=2)
        cols = CatSlice(start=3, stop=5)
        np.testing.assert_array_equal(A[rows * cols], [[3, 4], [9, 10]])
        np.testing.assert_array_equal(A[cols ** 2], [[21, 22], [27, 28]])

    def test_block_assignment(self):
        P = np.zeros((6, 6))
        P[CatSlice(start=3, stop=6) ** 2] = np.eye(3)
        np.testing.assert_array_equal(np.diag(P), [0, 0, 0, 1, 1, 1])

    def test_contiguous_slice(self):
        union = CatSlice(start=0, stop=3) + CatSlice(start=3, stop=9)
        assert union.slice == slice(0, 9)

    def test_gap_has_no_slice(self):
        with pytest.raises(ValueError):
            (CatSlice(start=0, stop=3) + CatSlice(start=6, stop=9)).slice

    def test_repr(self):
        assert repr(CatSlice(start=1, stop=3)) == "CatSlice([1, 2])"
