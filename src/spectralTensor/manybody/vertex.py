"""Fluctuation-exchange interaction vertex and self-energy.

The effective interaction mediated by spin and charge fluctuations is

    V(q, iν_m) = 3/2 Uˢ χˢ(q, iν_m) Uˢ + 1/2 Uᶜ χᶜ(q, iν_m) Uᶜ

and the self-energy follows from a convolution with the Green's function

    Σ_ab(k, n) = (T/N) Σ_{q,m} Σ_cd V_{ac,bd}(q, m) G_cd(k - q, n - m)

over every bosonic m with n - m inside the fermionic window.
"""

from typing import List, Optional, Sequence

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import DimensionMismatchError, format_error
from spectralTensor.manybody.rpa import charge_vertex, spin_vertex


class ElectronFluctuationVertex:
    """
    Interaction vertex from RPA spin and charge susceptibilities.

    Attributes:
        num_orbitals: Orbitals per unit cell
        U, J, Up, Jp: Interaction parameters
    """

    def __init__(
        self,
        num_orbitals: int,
        U: float = 0.0,
        J: float = 0.0,
        Up: float = 0.0,
        Jp: float = 0.0,
    ) -> None:
        self.num_orbitals = num_orbitals
        self.U = U
        self.J = J
        self.Up = Up
        self.Jp = Jp

    def calculate(self, chi_spin: torch.Tensor, chi_charge: torch.Tensor) -> BaseTensor:
        """
        Compute V = 3/2 Uˢ χˢ Uˢ + 1/2 Uᶜ χᶜ Uᶜ.

        Args:
            chi_spin: χˢ as pair matrices, shape (n_iwn, N_k, n_orb², n_orb²)
            chi_charge: χᶜ in the same layout

        Returns:
            BaseTensor with labels ['iwn', 'k', 'pair_i', 'pair_j']

        Raises:
            DimensionMismatchError: If the inputs differ in shape or orbital count
        """
        pairs = self.num_orbitals**2
        if chi_spin.shape != chi_charge.shape or chi_spin.shape[-2:] != (pairs, pairs):
            raise DimensionMismatchError(
                format_error(
                    "ElectronFluctuationVertex.calculate()",
                    f"Expected matching susceptibilities of shape (..., {pairs}, {pairs}), "
                    f"got {tuple(chi_spin.shape)} and {tuple(chi_charge.shape)}.",
                )
            )

        Us = spin_vertex(self.num_orbitals, self.U, self.J, self.Up, self.Jp)
        Uc = charge_vertex(self.num_orbitals, self.U, self.J, self.Up, self.Jp)
        V = 1.5 * Us @ chi_spin @ Us + 0.5 * Uc @ chi_charge @ Uc

        return BaseTensor(tensor=V, labels=["iwn", "k", "pair_i", "pair_j"])


def _mesh_labels(dim: int) -> List[str]:
    if dim <= 3:
        return ["kx", "ky", "kz"][:dim]
    return [f"k{d}" for d in range(dim)]


class SelfEnergyCalculator:
    """
    FLEX self-energy from an interaction vertex and a Green's function.

    The result is laid out in blocks, one per mesh point:
    (k_0, ..., k_{D-1}, orb_i, orb_j, iwn).

    Attributes:
        context: MomentumSpaceContext
        fermionic_indices: Fermionic Matsubara indices of the Green's function
        bosonic_indices: Bosonic Matsubara indices of the vertex
        beta: Inverse temperature
    """

    def __init__(
        self,
        momentum_space_context,
        fermionic_indices: Sequence[int],
        bosonic_indices: Sequence[int],
        beta: float,
    ) -> None:
        self.context = momentum_space_context
        self.fermionic_indices = list(fermionic_indices)
        self.bosonic_indices = list(bosonic_indices)
        self.beta = beta
        self._kminusq_lookup_table: Optional[torch.Tensor] = None

    def calculate(self, greens_function: BaseTensor, vertex: BaseTensor) -> BaseTensor:
        """
        Compute Σ(k, iωₙ) in block layout.

        Args:
            greens_function: G with labels ['iwn', 'k', 'orb_i', 'orb_j']
            vertex: V with labels ['iwn', 'k', 'pair_i', 'pair_j']

        Returns:
            BaseTensor with labels [*mesh labels, 'orb_i', 'orb_j', 'iwn']
        """
        O = self.context.num_orbitals
        N_k = self.context.num_k
        F = len(self.fermionic_indices)
        M = len(self.bosonic_indices)

        if tuple(greens_function.shape) != (F, N_k, O, O):
            raise DimensionMismatchError(
                f"Green's function has shape {tuple(greens_function.shape)}, expected "
                f"({F}, {N_k}, {O}, {O})"
            )
        if tuple(vertex.shape) != (M, N_k, O * O, O * O):
            raise DimensionMismatchError(
                f"Interaction vertex has shape {tuple(vertex.shape)}, expected "
                f"({M}, {N_k}, {O * O}, {O * O})"
            )

        if self._kminusq_lookup_table is None:
            self._kminusq_lookup_table = self.context.subtraction_table()
        kmq = self._kminusq_lookup_table

        G = greens_function.tensor.cpu()
        V = vertex.tensor.cpu().reshape(M, N_k, O, O, O, O)  # V[m, q, a, c, b, d]
        position = {n: p for p, n in enumerate(self.fermionic_indices)}

        sigma = torch.zeros((F, N_k, O, O), dtype=torch.complex128)
        for p, n in enumerate(self.fermionic_indices):
            for r, m in enumerate(self.bosonic_indices):
                p_shifted = position.get(n - m)
                if p_shifted is None:
                    continue
                G_shifted = G[p_shifted][kmq]  # (k, q, c, d)
                sigma[p] += torch.einsum("qacbd,kqcd->kab", V[r], G_shifted)
        sigma /= self.beta * N_k

        block = sigma.permute(1, 2, 3, 0).reshape(*self.context.num_mesh_points, O, O, F)
        coordinates = {}
        if "iwn" in greens_function.coordinates:
            coordinates["iwn"] = greens_function.coordinates["iwn"].clone()

        return BaseTensor(
            tensor=block,
            labels=_mesh_labels(self.context.dim) + ["orb_i", "orb_j", "iwn"],
            coordinates=coordinates,
        )


__all__ = ["ElectronFluctuationVertex", "SelfEnergyCalculator"]
