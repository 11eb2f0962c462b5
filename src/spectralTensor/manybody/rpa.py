"""Random-phase approximation for multi-orbital Hubbard-Kanamori interactions.

Vertex matrices act on orbital pairs: row (a, b), column (c, d), flattened
as a * n_orb + b. For the interaction parameters U (intra-orbital), Up
(inter-orbital), J (Hund's coupling) and Jp (pair hopping):

    spin vertex Uˢ:    U  if a = b = c = d
                       Up if a = c ≠ b = d
                       J  if a = b ≠ c = d
                       Jp if a = d ≠ b = c

    charge vertex Uᶜ:  U, -Up + 2J, 2Up - J, Jp in the same cases

The dressed susceptibilities are

    χˢ = (1 - χ₀ Uˢ)⁻¹ χ₀,   χᶜ = (1 + χ₀ Uᶜ)⁻¹ χ₀,   χ = (1 - χ₀ Γ)⁻¹ χ₀

with Γ assembled from explicit (amplitude, (a, b, c, d)) terms, or from the
spin vertex pattern when no explicit terms are given.
"""

from itertools import product
from typing import List, Optional, Sequence, Tuple

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.datatree import IndexedDataTree
from spectralTensor.core.errors import DimensionMismatchError
from spectralTensor.core.index import Index
from spectralTensor.manybody.susceptibility import SusceptibilityCalculator

InteractionAmplitude = Tuple[complex, Tuple[int, int, int, int]]


def _vertex(num_orbitals: int, same: float, pair: float, hund: float, hopping: float) -> torch.Tensor:
    O = num_orbitals
    vertex = torch.zeros((O * O, O * O), dtype=torch.complex128)
    for a, b, c, d in product(range(O), repeat=4):
        if a == b == c == d:
            value = same
        elif a == c and b == d and a != b:
            value = pair
        elif a == b and c == d and a != c:
            value = hund
        elif a == d and b == c and a != b:
            value = hopping
        else:
            continue
        vertex[a * O + b, c * O + d] = value
    return vertex


def spin_vertex(num_orbitals: int, U: float, J: float, Up: float, Jp: float) -> torch.Tensor:
    """Spin vertex Uˢ, shape (n_orb², n_orb²)."""
    return _vertex(num_orbitals, U, Up, J, Jp)


def charge_vertex(num_orbitals: int, U: float, J: float, Up: float, Jp: float) -> torch.Tensor:
    """Charge vertex Uᶜ, shape (n_orb², n_orb²)."""
    return _vertex(num_orbitals, U, -Up + 2 * J, 2 * Up - J, Jp)


def vertex_from_amplitudes(num_orbitals: int, amplitudes: Sequence[InteractionAmplitude]) -> torch.Tensor:
    """General vertex Γ from (amplitude, (a, b, c, d)) terms, shape (n_orb², n_orb²)."""
    O = num_orbitals
    vertex = torch.zeros((O * O, O * O), dtype=torch.complex128)
    for amplitude, (a, b, c, d) in amplitudes:
        vertex[a * O + b, c * O + d] += amplitude
    return vertex


def dress(chi0: torch.Tensor, vertex: torch.Tensor, sign: float = 1.0) -> torch.Tensor:
    """
    RPA dressing (1 - sign χ₀ Γ)⁻¹ χ₀ for a batch of matrices.

    Args:
        chi0: Bare susceptibility matrices, shape (..., n_orb², n_orb²)
        vertex: Vertex Γ, shape (n_orb², n_orb²)
        sign: +1 for spin and general, -1 for charge

    Returns:
        Dressed susceptibility, same shape as chi0
    """
    identity = torch.eye(vertex.shape[0], dtype=torch.complex128)
    return torch.linalg.solve(identity - sign * chi0 @ vertex, chi0)


class RPASusceptibilityCalculator:
    """
    RPA-dressed susceptibilities on top of a bare SusceptibilityCalculator.

    Results are cached per momentum and orbital quadruple, one cache per
    channel. Changing U, J, Up, Jp or the interaction amplitudes clears the
    RPA caches and marks the generated amplitudes stale. Changing the bare
    energies, here or on the bare calculator, clears both levels.

    Attributes:
        bare: SusceptibilityCalculator providing χ₀
    """

    def __init__(
        self,
        bare_calculator: SusceptibilityCalculator,
        U: float = 0.0,
        J: float = 0.0,
        Up: float = 0.0,
        Jp: float = 0.0,
        interaction_amplitudes: Optional[Sequence[InteractionAmplitude]] = None,
    ) -> None:
        self.bare = bare_calculator
        self._U = U
        self._J = J
        self._Up = Up
        self._Jp = Jp
        self._explicit_amplitudes = (
            list(interaction_amplitudes) if interaction_amplitudes is not None else None
        )
        self._generated_amplitudes: Optional[List[InteractionAmplitude]] = None

        self._rpa_cache = IndexedDataTree()
        self._charge_cache = IndexedDataTree()
        self._spin_cache = IndexedDataTree()
        self._bare_generation = bare_calculator.generation

    def _interaction_changed(self) -> None:
        self._generated_amplitudes = None
        self.clear_cache()

    @property
    def U(self) -> float:
        return self._U

    @U.setter
    def U(self, value: float) -> None:
        self._U = value
        self._interaction_changed()

    @property
    def J(self) -> float:
        return self._J

    @J.setter
    def J(self, value: float) -> None:
        self._J = value
        self._interaction_changed()

    @property
    def Up(self) -> float:
        return self._Up

    @Up.setter
    def Up(self, value: float) -> None:
        self._Up = value
        self._interaction_changed()

    @property
    def Jp(self) -> float:
        return self._Jp

    @Jp.setter
    def Jp(self, value: float) -> None:
        self._Jp = value
        self._interaction_changed()

    @property
    def interaction_amplitudes(self) -> List[InteractionAmplitude]:
        """Terms of the general vertex, generated from U, J, Up, Jp unless set explicitly."""
        if self._explicit_amplitudes is not None:
            return list(self._explicit_amplitudes)
        if self._generated_amplitudes is None:
            self._generated_amplitudes = self.generate_interaction_amplitudes()
        return list(self._generated_amplitudes)

    @interaction_amplitudes.setter
    def interaction_amplitudes(self, amplitudes: Optional[Sequence[InteractionAmplitude]]) -> None:
        self._explicit_amplitudes = list(amplitudes) if amplitudes is not None else None
        self._interaction_changed()

    def generate_interaction_amplitudes(self) -> List[InteractionAmplitude]:
        """Non-zero terms of the spin vertex pattern for the current parameters."""
        O = self.bare.num_orbitals
        vertex = spin_vertex(O, self._U, self._J, self._Up, self._Jp)
        amplitudes = []
        for a, b, c, d in product(range(O), repeat=4):
            value = complex(vertex[a * O + b, c * O + d])
            if value != 0:
                amplitudes.append((value, (a, b, c, d)))
        return amplitudes

    @property
    def energies(self):
        return self.bare.energies

    @energies.setter
    def energies(self, energies: Sequence) -> None:
        self.bare.energies = energies
        self.clear_cache()

    def clear_cache(self) -> None:
        """Drop every cached RPA susceptibility."""
        self._rpa_cache.clear()
        self._charge_cache.clear()
        self._spin_cache.clear()
        self._bare_generation = self.bare.generation

    def _sync_with_bare(self) -> None:
        if self._bare_generation != self.bare.generation:
            self.clear_cache()

    def _bare_matrix(self, k_index: int) -> torch.Tensor:
        O = self.bare.num_orbitals
        chi0 = self.bare.calculate_susceptibilities(k_index).tensor
        return chi0.reshape(chi0.shape[0], O * O, O * O)

    def _calculate(
        self,
        cache: IndexedDataTree,
        k_index: int,
        orbital_indices: Optional[Sequence[int]],
        vertex_factory,
        sign: float,
    ):
        self._sync_with_bare()
        O = self.bare.num_orbitals
        k_key = Index(self.bare.context.to_multi_index(k_index))

        if orbital_indices is not None:
            orbital_indices = Index(orbital_indices)
            if len(orbital_indices) != 4:
                raise DimensionMismatchError(
                    f"Expected four orbital indices, got {orbital_indices!r}"
                )
            cached = cache.get([k_key, orbital_indices])
            if cached is not None:
                return cached.clone()

        chi = dress(self._bare_matrix(k_index), vertex_factory(), sign)
        block = chi.reshape(chi.shape[0], O, O, O, O)
        for a, b, c, d in product(range(O), repeat=4):
            cache.add([k_key, Index(a, b, c, d)], block[:, a, b, c, d].clone())

        if orbital_indices is None:
            return block
        a, b, c, d = orbital_indices
        return block[:, a, b, c, d].clone()

    def _spin_vertex(self) -> torch.Tensor:
        return spin_vertex(self.bare.num_orbitals, self._U, self._J, self._Up, self._Jp)

    def _charge_vertex(self) -> torch.Tensor:
        return charge_vertex(self.bare.num_orbitals, self._U, self._J, self._Up, self._Jp)

    def _general_vertex(self) -> torch.Tensor:
        return vertex_from_amplitudes(self.bare.num_orbitals, self.interaction_amplitudes)

    def calculate_rpa_susceptibility(self, k_index: int, orbital_indices: Sequence[int]) -> torch.Tensor:
        """χ_abcd(k, E) dressed with the general vertex Γ, shape (num_energies,)."""
        return self._calculate(self._rpa_cache, k_index, orbital_indices, self._general_vertex, 1.0)

    def calculate_charge_rpa_susceptibility(
        self, k_index: int, orbital_indices: Sequence[int]
    ) -> torch.Tensor:
        """χᶜ_abcd(k, E), shape (num_energies,)."""
        return self._calculate(self._charge_cache, k_index, orbital_indices, self._charge_vertex, -1.0)

    def calculate_spin_rpa_susceptibility(
        self, k_index: int, orbital_indices: Sequence[int]
    ) -> torch.Tensor:
        """χˢ_abcd(k, E), shape (num_energies,)."""
        return self._calculate(self._spin_cache, k_index, orbital_indices, self._spin_vertex, 1.0)

    def calculate_charge_rpa_susceptibilities(self, k_index: int) -> BaseTensor:
        """Full χᶜ block, labels ['E', 'orb_a', 'orb_b', 'orb_c', 'orb_d']."""
        block = self._calculate(self._charge_cache, k_index, None, self._charge_vertex, -1.0)
        return BaseTensor(tensor=block.clone(), labels=["E", "orb_a", "orb_b", "orb_c", "orb_d"])

    def calculate_spin_rpa_susceptibilities(self, k_index: int) -> BaseTensor:
        """Full χˢ block, labels ['E', 'orb_a', 'orb_b', 'orb_c', 'orb_d']."""
        block = self._calculate(self._spin_cache, k_index, None, self._spin_vertex, 1.0)
        return BaseTensor(tensor=block.clone(), labels=["E", "orb_a", "orb_b", "orb_c", "orb_d"])

    def __repr__(self) -> str:
        return (
            f"RPASusceptibilityCalculator(U={self._U}, J={self._J}, Up={self._Up}, "
            f"Jp={self._Jp})"
        )


__all__ = [
    "InteractionAmplitude",
    "spin_vertex",
    "charge_vertex",
    "vertex_from_amplitudes",
    "dress",
    "RPASusceptibilityCalculator",
]
