"""Basis states with optional spatial extent.

A state is either local (finite extent, e.g. a localized Wannier or atomic
orbital) or extended (infinite extent, e.g. a plane wave). Only local states
can be placed below the root of a StateTreeNode; extended states are pinned
at the node they are inserted on and overlap every query.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Sequence
import math

from spectralTensor.core.index import Index, IndexLike


class AbstractState(ABC):
    """Basis state occupying one Hamiltonian slot.

    Attributes:
        coordinates: Position in a coordinate space of fixed dimension D
        extent: Radius of the sphere outside which the state vanishes
            (math.inf for non-local states)
        container: Index of the container (e.g. the atom) the state lives in
        index: Index of the state within its container
        specifiers: Free-form integers carried along into model geometry
    """

    def __init__(
        self,
        coordinates: Sequence[float],
        extent: float = math.inf,
        container: IndexLike = (),
        index: IndexLike = (),
        specifiers: Sequence[int] = (),
    ) -> None:
        if extent < 0:
            raise ValueError(f"State extent must be non-negative, got {extent}")
        self.coordinates = [float(c) for c in coordinates]
        self.extent = float(extent)
        self.container = Index(container)
        self.index = Index(index)
        self.specifiers = list(specifiers)

    @property
    def dimension(self) -> int:
        return len(self.coordinates)

    def has_finite_extent(self) -> bool:
        """Return True for local states."""
        return math.isfinite(self.extent)

    @property
    def hamiltonian_index(self) -> Index:
        """Model Index of this state: container and index concatenated."""
        return Index(self.container, self.index)

    @abstractmethod
    def get_matrix_element(self, bra: "AbstractState", operator: Any = None) -> complex:
        """Return <bra|operator|self>."""
        raise NotImplementedError("States must implement get_matrix_element()")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(index={self.hamiltonian_index!r}, "
            f"coordinates={self.coordinates}, extent={self.extent})"
        )


class BasicState(AbstractState):
    """State with explicitly tabulated matrix elements.

    Examples:
        >>> a = BasicState([0.0], extent=1.0, index=(0,))
        >>> b = BasicState([1.0], extent=1.0, index=(1,))
        >>> a.add_matrix_element(-1.0, b)
        >>> a.get_matrix_element(b)
        (-1+0j)
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._matrix_elements: Dict[Index, complex] = {}

    def add_matrix_element(self, value: complex, bra: AbstractState) -> None:
        """Set <bra|O|self> = value."""
        self._matrix_elements[bra.hamiltonian_index] = complex(value)

    def get_matrix_element(self, bra: AbstractState, operator: Any = None) -> complex:
        return self._matrix_elements.get(bra.hamiltonian_index, 0j)


class StateSet:
    """Ordered collection of states sharing one coordinate dimension."""

    def __init__(self, states: Optional[List[AbstractState]] = None) -> None:
        self._states: List[AbstractState] = []
        for state in states or []:
            self.add(state)

    def add(self, state: AbstractState) -> None:
        self._states.append(state)

    @property
    def states(self) -> List[AbstractState]:
        return self._states

    def __iter__(self) -> Iterator[AbstractState]:
        return iter(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __getitem__(self, n: int) -> AbstractState:
        return self._states[n]
