"""Tests for Index and MultiIndexIterator."""

import pytest

from spectralTensor.core import (
    IDX_ALL,
    IDX_SUM_ALL,
    IDX_X,
    IDX_SPIN,
    DimensionMismatchError,
    Index,
    MultiIndexIterator,
    normalize_ranges,
    output_size,
)


def test_index_concatenation():
    assert Index(0, 1) == Index([0, 1]) == Index([0], (1,))
    assert Index((2, 3), 4) == (2, 3, 4)
    assert not Index(0, 1).is_pattern()
    assert Index(IDX_ALL, 1).is_pattern()
    assert Index(0, 1, 2).replaced(1, 7) == Index(0, 7, 2)


def test_no_wildcard_yields_once_at_zero():
    items = list(MultiIndexIterator((1, 2), (3, 3)))
    assert items == [(Index(1, 2), 0)]


def test_all_wildcards_enumerate_offsets():
    items = list(MultiIndexIterator((IDX_X, IDX_ALL), (2, 3)))
    offsets = [offset for _, offset in items]
    assert sorted(offsets) == list(range(6)), "Every slot must be visited once"
    # Last wildcard varies fastest.
    assert dict((offset, index) for index, offset in items)[1] == Index(0, 1)
    assert dict((offset, index) for index, offset in items)[3] == Index(1, 0)


def test_sum_all_dimension_does_not_advance_offset():
    items = list(MultiIndexIterator((IDX_ALL, IDX_SUM_ALL), (2, 3)))
    assert len(items) == 6
    for index, offset in items:
        assert offset == index[0], f"Summed axis moved {index!r} to offset {offset}"


def test_fixed_coordinates_and_output_size():
    pattern = (IDX_ALL, 1, IDX_SUM_ALL)
    ranges = (4, 5, 2)
    assert normalize_ranges(pattern, ranges) == Index(4, 1, 2)
    assert output_size(pattern, ranges) == 4
    assert output_size((IDX_X, IDX_SPIN), (3, 2)) == 6
    assert len(MultiIndexIterator(pattern, normalize_ranges(pattern, ranges))) == 8


def test_length_mismatch_raises():
    with pytest.raises(DimensionMismatchError):
        MultiIndexIterator((IDX_ALL, 0), (2,))
