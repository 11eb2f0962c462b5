"""Preprocessing utilities for many-body calculations.

Provides Matsubara energy grids and the k-resolved bare and interacting
Green's functions consumed by the susceptibility, self-energy and FLEX
solvers.

Matsubara energies are labelled by an integer index n with E_n = iπn/β:
odd n are fermionic, even n bosonic. A window [lower, upper] contains every
index of the right parity between the bounds, inclusive.

Green's functions are stored as BaseTensor with labels
['iwn', 'k', 'orb_i', 'orb_j'] and the Matsubara energies as 'iwn'
coordinates.

References:
    - "A First Course in Dynamical Mean-Field Theory" - Kollar
    - Bickers, Scalapino, White, PRL 62, 961 (1989) - FLEX
"""

from typing import List, Optional
import math

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import DimensionMismatchError


def matsubara_indices(lower: int, upper: int, fermionic: bool = True) -> List[int]:
    """Matsubara indices in the window [lower, upper].

    Args:
        lower: Lowest index, odd for fermions and even for bosons
        upper: Highest index, same parity as lower
        fermionic: Fermionic (odd) or bosonic (even) indices

    Raises:
        ValueError: If the bounds have the wrong parity or are reversed
    """
    parity = 1 if fermionic else 0
    kind = "fermionic" if fermionic else "bosonic"
    if lower % 2 != parity or upper % 2 != parity:
        raise ValueError(
            f"{kind.capitalize()} Matsubara indices must be {'odd' if fermionic else 'even'}, "
            f"got lower={lower}, upper={upper}"
        )
    if lower > upper:
        raise ValueError(f"Lower {kind} Matsubara index {lower} exceeds upper index {upper}")
    return list(range(lower, upper + 1, 2))


def generate_matsubara_frequencies(
    beta: float,
    lower: int,
    upper: int,
    fermionic: bool = True,
    device: Optional[torch.device] = None,
) -> torch.Tensor:
    """Generate the Matsubara energies iπn/β for a window of indices.

    Args:
        beta: Inverse temperature
        lower: Lowest Matsubara index of the window
        upper: Highest Matsubara index of the window
        fermionic: If True, odd indices iωₙ = iπ(2m + 1)/β.
                   If False, even indices iνₘ = i2πm/β.
        device: Device to place tensor on (default: CPU)

    Returns:
        Complex tensor of Matsubara energies ordered by index
    """
    if beta <= 0:
        raise ValueError(f"beta must be positive, got {beta}")
    n = torch.tensor(matsubara_indices(lower, upper, fermionic), dtype=torch.float64, device=device)
    return (1j * math.pi * n / beta).to(torch.complex128)


def matsubara_indices_from_energies(energies: torch.Tensor, beta: float) -> List[int]:
    """Recover the integer indices n from Matsubara energies iπn/β."""
    return [int(round(float(e) * beta / math.pi)) for e in energies.imag]


class BareGreensFunction:
    """G₀(k, iωₙ) assembled from the band eigenpairs of a BlockDiagonalizer.

    With bands εₙ(k) and Bloch vectors ψₙ(k):

        G₀(k, iωₙ) = Σₙ ψₙ(k) ψₙ(k)† / (iωₙ + μ - εₙ(k))

    Attributes:
        iwn: Fermionic Matsubara energies of the last compute()
        G0: Result of the last compute()
        beta: Inverse temperature
        mu: Chemical potential
    """

    def __init__(self) -> None:
        self.iwn: Optional[torch.Tensor] = None
        self.G0: Optional[BaseTensor] = None
        self.beta: Optional[float] = None
        self.mu: Optional[float] = None

    def compute(
        self,
        block_diagonalizer,
        beta: float,
        lower: int = -1,
        upper: int = 1,
        mu: float = 0.0,
    ) -> BaseTensor:
        """Compute G₀(k, iωₙ) from the eigenpairs of a BlockDiagonalizer.

        Args:
            block_diagonalizer: BlockDiagonalizer that has been run
            beta: Inverse temperature
            lower: Lowest fermionic Matsubara index
            upper: Highest fermionic Matsubara index
            mu: Chemical potential (default: 0.0)

        Returns:
            BaseTensor with labels=['iwn', 'k', 'orb_i', 'orb_j'],
            shape (n_iwn, N_k, n_orb, n_orb)
        """
        eps = block_diagonalizer.eigenvalues  # (N_k, n_orb)
        psi = block_diagonalizer.eigenvectors  # (N_k, n_orb, n_orb)
        iwn = generate_matsubara_frequencies(beta, lower, upper, fermionic=True, device=eps.device)

        # projectors[k, n, i, j] = ψₙ(k)[i] ψₙ(k)[j]*
        projectors = torch.einsum("kin,kjn->knij", psi, psi.conj())
        denominator = iwn[:, None, None] + mu - eps[None, :, :]  # (n_iwn, N_k, n_band)
        G0_tensor = torch.einsum("wkn,knij->wkij", 1.0 / denominator, projectors)

        self.iwn = iwn
        self.beta = beta
        self.mu = mu
        self.G0 = BaseTensor(
            tensor=G0_tensor.to(torch.complex128),
            labels=["iwn", "k", "orb_i", "orb_j"],
            orbital_names=block_diagonalizer.model.orbital_labels,
            coordinates={"iwn": iwn},
        )
        return self.G0


class InteractingGreensFunction:
    """Dressed Green's function from the Dyson equation.

        G(k, iωₙ) = [G₀(k, iωₙ)⁻¹ - Σ(k, iωₙ)]⁻¹

    Attributes:
        G: Last computed Green's function
    """

    def __init__(self) -> None:
        self.G: Optional[BaseTensor] = None

    def compute(self, G0: BaseTensor, Sigma: BaseTensor) -> BaseTensor:
        """Solve the Dyson equation per momentum and Matsubara energy.

        Args:
            G0: Bare Green's function, labels ['iwn', 'k', 'orb_i', 'orb_j']
            Sigma: Self-energy in the same layout

        Returns:
            BaseTensor in the layout of G0

        Raises:
            DimensionMismatchError: If G0 and Sigma have different shapes
        """
        if G0.shape != Sigma.shape:
            raise DimensionMismatchError(
                f"Green's function shape {tuple(G0.shape)} does not match self-energy "
                f"shape {tuple(Sigma.shape)}"
            )

        G0_inv = torch.linalg.inv(G0.tensor)
        G_tensor = torch.linalg.inv(G0_inv - Sigma.tensor.to(G0_inv.device))

        self.G = BaseTensor(
            tensor=G_tensor,
            labels=list(G0.labels),
            orbital_names=G0.orbital_names,
            coordinates={k: v.clone() for k, v in G0.coordinates.items()},
        )
        return self.G


__all__ = [
    "matsubara_indices",
    "generate_matsubara_frequencies",
    "matsubara_indices_from_energies",
    "BareGreensFunction",
    "InteractingGreensFunction",
]
