import numpy as np
from typing import Union, Sequence


class CatSlice(np.ndarray):
    """Sorted set of integer indices addressing a block of the error state.

    CatSlice(0, 3) indexes a vector like a slice, a + b is the union of two
    index sets, a * b gives the (a rows, b columns) block of a matrix and
    a ** 2 the diagonal block.
    """

    def __new__(
        cls,
        start: int = 0,
        stop: Union[int, None] = None,
        step: int = 1,
        indices: Sequence[int] = (),
    ):
        if stop is not None:
            values = np.arange(start, stop, step)
        else:
            values = np.unique(np.asarray(indices, dtype=int))
        return values.astype(int).view(cls)

    def __add__(self, s):
        return CatSlice(indices=np.concatenate((np.asarray(self), np.asarray(s))))

    def __mul__(self, s):
        return np.ix_(self, s)

    def __pow__(self, value):
        assert value > 0, f"CatSlice.__pow__: pow value must positive integer: {value}"
        return np.ix_(*[self.copy() for _ in range(value)])

    @property
    def slice(self) -> slice:
        """The equivalent basic slice, which gives views instead of copies. Only for contiguous index sets."""
        values = np.asarray(self)
        if len(values) == 0 or np.any(np.diff(values) != 1):
            raise ValueError(f"CatSlice.slice: indices are not contiguous: {values}")
        return slice(int(values[0]), int(values[-1]) + 1)

    def __repr__(self):
        return f"CatSlice({np.asarray(self).tolist()})"
