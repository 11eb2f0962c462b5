"""Physical indices and wildcard pattern iteration.

An Index is an ordered tuple of integers identifying a basis state, e.g.
(x, y, orbital, spin). Negative subindices are wildcards that turn an Index
into a pattern over many basis states:

    IDX_SUM_ALL: iterate over the full range and accumulate every value into
                 the same output slot (marginalisation, e.g. DOS over sites)
    IDX_ALL:     iterate over the full range, one output slot per value
    IDX_X, IDX_Y, IDX_Z, IDX_SPIN:
                 iterate like IDX_ALL, additionally marking the axis with a
                 physical meaning that some extractors look for

A pattern paired with a `ranges` Index of the same length fully describes an
iteration domain. MultiIndexIterator expands it depth first, starting from
the last wildcard subindex, and tags every concrete Index with its linear
offset into a row-major output buffer.

Example:
    >>> it = MultiIndexIterator([IDX_ALL, 0, IDX_SUM_ALL], [2, 1, 3])
    >>> [(tuple(index), offset) for index, offset in it][:3]
    [((0, 0, 0), 0), ((1, 0, 0), 1), ((0, 0, 1), 0)]
"""

from typing import Iterable, Iterator, List, Tuple, Union

from .errors import DimensionMismatchError, format_error

IDX_SUM_ALL = -1
IDX_ALL = -2
IDX_X = -3
IDX_Y = -4
IDX_Z = -5
IDX_SPIN = -6

IndexLike = Union["Index", Iterable[int], int]


class Index(tuple):
    """Immutable multi-dimensional physical index.

    Accepts any mix of integers and integer iterables, which are concatenated:

        >>> Index(0, 1) == Index([0, 1]) == Index([0], (1,))
        True

    Concatenation is how a state's container index and its own index are
    combined into a single Hamiltonian index.
    """

    def __new__(cls, *subindices: IndexLike) -> "Index":
        flat: List[int] = []
        for part in subindices:
            if isinstance(part, int):
                flat.append(part)
            else:
                flat.extend(int(p) for p in part)
        return super().__new__(cls, flat)

    def is_pattern(self) -> bool:
        """Return True if any subindex is a wildcard."""
        return any(i < 0 for i in self)

    def replaced(self, position: int, value: int) -> "Index":
        """Return a copy with subindex `position` set to `value`."""
        items = list(self)
        items[position] = value
        return Index(items)

    def __repr__(self) -> str:
        return "{" + ", ".join(str(i) for i in self) + "}"


def normalize_ranges(pattern: IndexLike, ranges: IndexLike) -> Index:
    """Force the range of every fixed coordinate in `pattern` to 1.

    A concretely fixed coordinate has nothing to iterate over.

    Raises:
        DimensionMismatchError: If pattern and ranges differ in length
    """
    pattern = Index(pattern)
    ranges = Index(ranges)
    _check_lengths(pattern, ranges, "normalize_ranges()")
    return Index([1 if p >= 0 else r for p, r in zip(pattern, ranges)])


def output_size(pattern: IndexLike, ranges: IndexLike) -> int:
    """Number of output slots produced by a pattern.

    Product of the ranges of every dimension that is not IDX_SUM_ALL. Fixed
    coordinates contribute a factor of one.
    """
    pattern = Index(pattern)
    ranges = normalize_ranges(pattern, ranges)
    size = 1
    for p, r in zip(pattern, ranges):
        if p != IDX_SUM_ALL:
            size *= r
    return size


def _check_lengths(pattern: Index, ranges: Index, function: str) -> None:
    if len(pattern) != len(ranges):
        raise DimensionMismatchError(
            format_error(
                function,
                f"pattern {pattern!r} has {len(pattern)} subindices but ranges "
                f"{ranges!r} has {len(ranges)}.",
                "Give one range entry per pattern subindex.",
            )
        )


class MultiIndexIterator:
    """Expand a wildcard pattern into concrete indices with memory offsets.

    Iterating yields `(index, offset)` tuples. Offsets are computed as the
    running product of the ranges of later non-summed wildcard dimensions,
    so the last wildcard varies fastest. IDX_SUM_ALL dimensions do not advance
    the offset: every slice along them lands in the same output slot. This
    is what makes summed axes marginalise, e.g. an LDOS summed over sites.

    A pattern without wildcards yields exactly once, at offset 0.

    Attributes:
        pattern: Pattern Index
        ranges: Extent of every dimension, same length as pattern
    """

    def __init__(self, pattern: IndexLike, ranges: IndexLike) -> None:
        self.pattern = Index(pattern)
        self.ranges = Index(ranges)
        _check_lengths(self.pattern, self.ranges, "MultiIndexIterator()")

    def __iter__(self) -> Iterator[Tuple[Index, int]]:
        return self._expand(list(self.pattern), 0, 1)

    def _expand(
        self,
        pattern: List[int],
        current_offset: int,
        offset_multiplier: int,
    ) -> Iterator[Tuple[Index, int]]:
        subindex = len(pattern) - 1
        while subindex >= 0 and pattern[subindex] >= 0:
            subindex -= 1

        if subindex == -1:
            yield Index(pattern), current_offset
            return

        is_sum_index = pattern[subindex] == IDX_SUM_ALL
        next_offset_multiplier = offset_multiplier
        if not is_sum_index:
            next_offset_multiplier *= self.ranges[subindex]

        for n in range(self.ranges[subindex]):
            child = list(pattern)
            child[subindex] = n
            yield from self._expand(child, current_offset, next_offset_multiplier)
            if not is_sum_index:
                current_offset += offset_multiplier

    def __len__(self) -> int:
        count = 1
        for p, r in zip(self.pattern, self.ranges):
            if p < 0:
                count *= r
        return count


__all__ = [
    "IDX_SUM_ALL",
    "IDX_ALL",
    "IDX_X",
    "IDX_Y",
    "IDX_Z",
    "IDX_SPIN",
    "Index",
    "IndexLike",
    "MultiIndexIterator",
    "normalize_ranges",
    "output_size",
]
