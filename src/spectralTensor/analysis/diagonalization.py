"""DiagonalizationPropertyExtractor: spectral properties from exact eigenpairs."""

from typing import Tuple

import torch

from spectralTensor.analysis.extractor import PropertyExtractor
from spectralTensor.core.base import BaseTensor
from spectralTensor.core.index import IndexLike
from spectralTensor.solvers.chebyshev import GreensFunctionType, energy_grid
from spectralTensor.solvers.diag import Diagonalizer


class DiagonalizationPropertyExtractor(PropertyExtractor):
    """
    Lehmann-representation Green's functions of a diagonalized Model.

        G^R_ij(E) = Σ_n ψ_n[i] ψ_n[j]* / (E - ε_n + iη)

    Shares the LDOS, spin-polarized LDOS and density reductions with
    ChebyshevPropertyExtractor, on the same energy grid convention.

    Attributes:
        diagonalizer: Diagonalizer that has been run
        energy_window: (lower, upper) bounds of the grid
        energy_resolution: Number of energy points
        broadening: Lorentzian broadening η
    """

    def __init__(
        self,
        diagonalizer: Diagonalizer,
        energy_window: Tuple[float, float] = (-1.0, 1.0),
        energy_resolution: int = 1000,
        broadening: float = 0.01,
    ) -> None:
        if energy_window[0] >= energy_window[1]:
            raise ValueError(f"Invalid energy window {energy_window}")
        if broadening <= 0:
            raise ValueError(f"broadening must be positive, got {broadening}")

        self.diagonalizer = diagonalizer
        self.energy_window = energy_window
        self.energy_resolution = energy_resolution
        self.broadening = broadening

    def get_energies(self) -> torch.Tensor:
        return energy_grid(self.energy_resolution, *self.energy_window)

    def calculate_greens_function(
        self,
        to_index: IndexLike,
        from_index: IndexLike,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
    ) -> BaseTensor:
        """Green's function G(to, from; E), BaseTensor with label ['E']."""
        model = self.diagonalizer.model
        i = model.get_basis_index(to_index)
        j = model.get_basis_index(from_index)

        psi = self.diagonalizer.eigenvectors.cpu()
        eps = self.diagonalizer.eigenvalues.cpu()
        weights = psi[i, :] * psi[j, :].conj()

        energies = self.get_energies()
        denominator_r = energies[:, None] - eps[None, :] + 1j * self.broadening
        retarded = (weights[None, :] / denominator_r).sum(dim=1)
        advanced = (weights[None, :] / denominator_r.conj()).sum(dim=1)

        if greens_function_type == GreensFunctionType.RETARDED:
            greens_function = retarded
        elif greens_function_type == GreensFunctionType.ADVANCED:
            greens_function = advanced
        elif greens_function_type == GreensFunctionType.PRINCIPAL:
            greens_function = (retarded + advanced) / 2
        elif greens_function_type == GreensFunctionType.NON_PRINCIPAL:
            greens_function = (retarded - advanced) / 2
        else:
            raise ValueError(f"Unknown Green's function type: {greens_function_type}")

        return BaseTensor(
            tensor=greens_function.to(torch.complex128),
            labels=["E"],
            coordinates={"E": energies},
        )

    def __repr__(self) -> str:
        return (
            f"DiagonalizationPropertyExtractor(energy_window={self.energy_window}, "
            f"energy_resolution={self.energy_resolution}, broadening={self.broadening})"
        )


__all__ = ["DiagonalizationPropertyExtractor"]
