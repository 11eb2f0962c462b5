"""PropertyExtractor: pattern-driven reductions over Green's functions.

Extractors turn a wildcard pattern into a result buffer. The base class
owns the iteration (MultiIndexIterator) and the LDOS, spin-polarized LDOS
and density reductions; subclasses only provide Green's functions and the
energy grid they live on.
"""

from typing import Callable, List, Optional, Sequence
import math

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import ConfigurationError, format_error
from spectralTensor.core.index import (
    IDX_SPIN,
    Index,
    IndexLike,
    MultiIndexIterator,
    normalize_ranges,
    output_size,
)
from spectralTensor.solvers.chebyshev import GreensFunctionType

Callback = Callable[["PropertyExtractor", torch.Tensor, Index, int], None]


def ldos_callback(extractor: "PropertyExtractor", ldos: torch.Tensor, index: Index, offset: int) -> None:
    """Accumulate -Im G_ii(E) / π into ldos[offset]."""
    greens_function = extractor.calculate_greens_function(index, index).tensor
    ldos[offset] -= greens_function.imag / math.pi


class SpinPolarizedLDOSCallback:
    """Reduction computing the four spin sectors at each spatial index.

    Sector n has `to` spin n // 2 and `from` spin n % 2, giving the order
    up-up, up-down, down-up, down-down.

    Attributes:
        spin_subindex: Position of the spin axis in the pattern
    """

    def __init__(self, spin_subindex: int) -> None:
        self.spin_subindex = spin_subindex

    def __call__(
        self,
        extractor: "PropertyExtractor",
        sp_ldos: torch.Tensor,
        index: Index,
        offset: int,
    ) -> None:
        for n in range(4):
            to = index.replaced(self.spin_subindex, n // 2)
            from_ = index.replaced(self.spin_subindex, n % 2)
            greens_function = extractor.calculate_greens_function(to, from_).tensor
            sp_ldos[offset, :, n] += greens_function


class PropertyExtractor:
    """
    Base class for extractors working on an energy grid.

    Subclasses implement calculate_greens_function() and get_energies().
    """

    energy_resolution: int

    def calculate_greens_function(
        self,
        to_index: IndexLike,
        from_index: IndexLike,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
    ) -> BaseTensor:
        raise NotImplementedError(f"{type(self).__name__} does not provide Green's functions")

    def get_energies(self) -> torch.Tensor:
        raise NotImplementedError(f"{type(self).__name__} does not provide an energy grid")

    def calculate(
        self,
        callback: Callback,
        memory: torch.Tensor,
        pattern: IndexLike,
        ranges: IndexLike,
    ) -> None:
        """
        Invoke `callback(self, memory, index, offset)` for every index matching a pattern.

        Args:
            callback: Reduction writing into memory[offset]
            memory: Output buffer
            pattern: Pattern Index with wildcards
            ranges: Range of every pattern dimension
        """
        for index, offset in MultiIndexIterator(pattern, ranges):
            callback(self, memory, index, offset)

    def calculate_ldos(self, pattern: IndexLike, ranges: IndexLike) -> BaseTensor:
        """
        Local density of states for every index matching a pattern.

        IDX_SUM_ALL dimensions are summed into the same slot; every other
        wildcard dimension produces its own slot.

        Args:
            pattern: Pattern Index, e.g. (IDX_X, 0, IDX_SUM_ALL)
            ranges: Range of every pattern dimension

        Returns:
            BaseTensor with labels ['index', 'E'], shape (size, energy_resolution)
        """
        pattern = Index(pattern)
        ranges = normalize_ranges(pattern, ranges)
        size = output_size(pattern, ranges)

        ldos = torch.zeros((size, self.energy_resolution), dtype=torch.float64)
        self.calculate(ldos_callback, ldos, pattern, ranges)

        return BaseTensor(
            tensor=ldos,
            labels=["index", "E"],
            coordinates={"E": self.get_energies()},
        )

    def calculate_spin_polarized_ldos(self, pattern: IndexLike, ranges: IndexLike) -> BaseTensor:
        """
        Spin-resolved Green's function sectors for every index matching a pattern.

        The pattern must mark exactly one dimension with IDX_SPIN. That axis
        is pinned during iteration and all four spin sectors are computed
        inside the reduction.

        Args:
            pattern: Pattern Index containing IDX_SPIN
            ranges: Range of every pattern dimension

        Returns:
            BaseTensor with labels ['index', 'E', 'spin'], shape
            (size, energy_resolution, 4), sectors ordered up-up, up-down,
            down-up, down-down

        Raises:
            ConfigurationError: If the pattern has no IDX_SPIN dimension
        """
        pattern = Index(pattern)
        ranges = Index(ranges)

        spin_positions = [n for n, p in enumerate(pattern) if p == IDX_SPIN]
        if len(spin_positions) != 1:
            raise ConfigurationError(
                format_error(
                    f"{type(self).__name__}.calculate_spin_polarized_ldos()",
                    f"Expected exactly one spin axis in pattern {pattern!r}, found "
                    f"{len(spin_positions)}.",
                    "Mark the spin subindex with IDX_SPIN.",
                )
            )
        spin_subindex = spin_positions[0]

        pattern = pattern.replaced(spin_subindex, 0)
        ranges = normalize_ranges(pattern, ranges)
        size = output_size(pattern, ranges)

        sp_ldos = torch.zeros((size, self.energy_resolution, 4), dtype=torch.complex128)
        self.calculate(SpinPolarizedLDOSCallback(spin_subindex), sp_ldos, pattern, ranges)

        return BaseTensor(
            tensor=sp_ldos,
            labels=["index", "E", "spin"],
            coordinates={"E": self.get_energies()},
        )

    def calculate_density(
        self,
        pattern: IndexLike,
        ranges: IndexLike,
        chemical_potential: float = 0.0,
    ) -> BaseTensor:
        """
        Zero-temperature occupation by integrating the LDOS below the chemical potential.

        Args:
            pattern: Pattern Index
            ranges: Range of every pattern dimension
            chemical_potential: Fermi level

        Returns:
            BaseTensor with label ['index'], shape (size,)
        """
        ldos = self.calculate_ldos(pattern, ranges).tensor
        energies = self.get_energies()
        dE = float(energies[1] - energies[0]) if len(energies) > 1 else 0.0
        occupied = (energies < chemical_potential).to(ldos.dtype)
        density = (ldos * occupied[None, :]).sum(dim=1) * dE
        return BaseTensor(tensor=density, labels=["index"])


__all__ = [
    "Callback",
    "ldos_callback",
    "SpinPolarizedLDOSCallback",
    "PropertyExtractor",
]
