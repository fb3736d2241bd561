import operator
from collections.abc import Sequence

import numpy as np


class BandedList(Sequence):
    """Read-only sequence storing only a contiguous band of values.

    A list of logical length ``count`` where only the entries in
    ``[begin_index, begin_index + len(data))`` are stored. Any other valid
    index reads as ``0.0``.

    The binomial tree keeps its node probabilities this way: states whose
    probability decayed below the tree cutoff are neither stored nor
    propagated, and the drift-factor tree reuses the same band.

    Parameters
    ----------
    count : int
        Logical length of the list (number of states at the tree step).
    begin_index : int
        Index of the first stored value.
    data : array-like
        The stored band. It is copied and frozen.
    """

    __slots__ = ("_count", "_begin", "_data")

    def __init__(self, count, begin_index, data):
        data = np.array(data, dtype=float).ravel()
        count = int(count)
        begin_index = int(begin_index)
        if begin_index < 0 or begin_index + len(data) > count:
            raise ValueError(
                f"band [{begin_index}, {begin_index + len(data)}) "
                f"does not fit in a list of length {count}"
            )
        data.flags.writeable = False
        self._count = count
        self._begin = begin_index
        self._data = data

    @property
    def begin_index(self):
        return self._begin

    @property
    def end_index(self):
        """One past the last stored index."""
        return self._begin + len(self._data)

    @property
    def data(self):
        return self._data

    def __len__(self):
        return self._count

    def __getitem__(self, index):
        if isinstance(index, slice):
            return self.to_array()[index]
        index = operator.index(index)
        if index < 0:
            index += self._count
        if not 0 <= index < self._count:
            raise IndexError(f"index {index} out of range [0, {self._count})")
        i = index - self._begin
        if 0 <= i < len(self._data):
            return float(self._data[i])
        return 0.0

    def __iter__(self):
        return iter(self.to_array().tolist())

    def to_array(self):
        """Dense copy with zeros outside the band."""
        out = np.zeros(self._count)
        out[self._begin:self.end_index] = self._data
        return out

    def sum(self):
        return float(self._data.sum())

    def __repr__(self):
        return (
            f"BandedList(count={self._count}, begin_index={self._begin}, "
            f"band={len(self._data)})"
        )
