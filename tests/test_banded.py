import numpy as np
import pytest

from bermudan_pricer.engines.banded import BandedList


def test_values_inside_and_outside_band():
    b = BandedList(5, 1, [0.2, 0.3])
    assert len(b) == 5
    assert b.begin_index == 1
    assert b.end_index == 3
    assert b[0] == 0.0
    assert b[1] == 0.2
    assert b[2] == 0.3
    assert b[4] == 0.0
    assert b[-1] == 0.0
    assert b[-4] == 0.2
    assert list(b) == [0.0, 0.2, 0.3, 0.0, 0.0]
    assert b.sum() == pytest.approx(0.5)
    np.testing.assert_allclose(b.to_array(), [0.0, 0.2, 0.3, 0.0, 0.0])
    np.testing.assert_allclose(b[1:3], [0.2, 0.3])


def test_index_out_of_range():
    b = BandedList(3, 0, [1.0])
    with pytest.raises(IndexError):
        b[3]
    with pytest.raises(IndexError):
        b[-4]


def test_band_must_fit():
    with pytest.raises(ValueError):
        BandedList(3, 2, [1.0, 2.0])
    with pytest.raises(ValueError):
        BandedList(3, -1, [1.0])


def test_data_is_frozen_copy():
    source = np.array([1.0, 2.0])
    b = BandedList(2, 0, source)
    source[0] = 9.0
    assert b[0] == 1.0
    with pytest.raises(ValueError):
        b.data[0] = 5.0
