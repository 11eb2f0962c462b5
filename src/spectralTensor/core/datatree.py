"""IndexedDataTree: cache keyed by composite physical indices."""

import json
from pathlib import Path
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union

import torch

from .index import Index, IndexLike

CompositeKey = Tuple[Index, ...]


class IndexedDataTree:
    """Mapping from a composite index to a 1-D complex tensor.

    Keys are tuples of Index objects, e.g. ((kx, ky), (o0,), (o1,), (o2,), (o3,))
    for a susceptibility entry. Lookups are exact-key. Values are stored as
    given, so callers should clone before mutating a returned tensor.

    Examples:
        >>> tree = IndexedDataTree()
        >>> tree.add([(0, 0), (1,)], torch.zeros(3, dtype=torch.complex128))
        >>> tree.get([(0, 0), (1,)]) is not None
        True
    """

    def __init__(self) -> None:
        self._data: Dict[CompositeKey, torch.Tensor] = {}

    @staticmethod
    def _key(key: Sequence[IndexLike]) -> CompositeKey:
        return tuple(Index(k) for k in key)

    def add(self, key: Sequence[IndexLike], value: torch.Tensor) -> None:
        """Insert or replace the value stored under `key`."""
        self._data[self._key(key)] = value

    def get(self, key: Sequence[IndexLike]) -> Optional[torch.Tensor]:
        """Return the value stored under `key`, or None if absent."""
        return self._data.get(self._key(key))

    def __contains__(self, key: Sequence[IndexLike]) -> bool:
        return self._key(key) in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[CompositeKey]:
        return iter(self._data)

    def items(self):
        return self._data.items()

    def clear(self) -> None:
        """Remove every entry."""
        self._data.clear()

    def save(self, path: Union[str, Path]) -> None:
        """Write the tree to a JSON text file.

        Args:
            path: Output file path (overwritten)
        """
        entries = []
        for key, value in self._data.items():
            value = value.detach().cpu().to(torch.complex128)
            entries.append(
                {
                    "key": [list(k) for k in key],
                    "real": value.real.tolist(),
                    "imag": value.imag.tolist(),
                }
            )
        with open(path, "w") as f:
            json.dump({"entries": entries}, f)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "IndexedDataTree":
        """Read a tree written by save().

        Args:
            path: Input file path

        Returns:
            New IndexedDataTree with complex128 CPU values
        """
        with open(path, "r") as f:
            payload = json.load(f)

        tree = cls()
        for entry in payload["entries"]:
            value = torch.complex(
                torch.tensor(entry["real"], dtype=torch.float64),
                torch.tensor(entry["imag"], dtype=torch.float64),
            )
            tree.add(entry["key"], value)
        return tree

    def __repr__(self) -> str:
        return f"IndexedDataTree(num_entries={len(self)})"


__all__ = ["IndexedDataTree", "CompositeKey"]
