"""Total density of states from band energies or from retarded Green's functions."""

from typing import Optional, Tuple
import torch
import math

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import DimensionMismatchError


class DOSCalculator:
    """
    Accumulates ρ(ω) and keeps the last result for integration.

    Two routes to the same quantity:

    - from_eigenvalues(): Lorentzian-broadened band energies on a k-mesh,
        ρ(ω) = (1/N_k) Σ_{k,n} (η/π) / [(ω - εₙ(k))² + η²]
    - from_greens_function(): spectral weight of a set of diagonal retarded
        Green's functions, e.g. an LDOS pattern summed over sites,
        ρ(ω) = -(1/π) Σ_i Im Gᴿ_ii(ω)
    """

    def __init__(self) -> None:
        self.omega: Optional[torch.Tensor] = None
        self.rho: Optional[torch.Tensor] = None
        self.eta: Optional[float] = None

    def from_eigenvalues(
        self,
        E_k: torch.Tensor,
        omega: torch.Tensor,
        eta: float = 0.02,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Lorentzian-broadened band energies.

        Args:
            E_k: Band energies, shape (N_k, N_band), e.g. BlockDiagonalizer.eigenvalues
            omega: Energy grid, shape (n_omega,)
            eta: Lorentzian broadening width

        Returns:
            (omega, rho), kept on the calculator
        """
        if E_k.ndim != 2:
            raise DimensionMismatchError(f"E_k must have shape (N_k, N_band), got {tuple(E_k.shape)}")
        N_k = E_k.shape[0]

        delta = omega.to(torch.float64)[:, None] - E_k.flatten().to(torch.float64)[None, :]
        rho = ((eta / math.pi) / (delta**2 + eta**2)).sum(dim=1) / N_k

        self.omega = omega
        self.rho = rho
        self.eta = eta
        return omega, rho

    def from_greens_function(self, greens_function: BaseTensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        -Im G/π summed over the rows of an LDOS-style Green's function.

        Args:
            greens_function: BaseTensor with labels ['index', 'E'] or ['E'],
                holding G_ii(E) per row, with an 'E' coordinate

        Returns:
            (omega, rho), kept on the calculator
        """
        if "E" not in greens_function.coordinates:
            raise ValueError("Green's function has no 'E' coordinates")

        G = greens_function.tensor
        if greens_function.ndim == 2:
            G = G.sum(dim=greens_function.axis("index"))
        elif greens_function.ndim != 1:
            raise DimensionMismatchError(
                f"Expected labels ['index', 'E'] or ['E'], got {greens_function.labels}"
            )

        self.omega = greens_function.coordinates["E"]
        self.rho = -G.imag / math.pi
        self.eta = None
        return self.omega, self.rho

    def integrate(self, upper: Optional[float] = None) -> float:
        """Number of states below `upper` (all states if None), trapezoidal rule."""
        if self.omega is None or self.rho is None:
            raise ValueError("Compute the DOS first")
        mask = torch.ones_like(self.omega, dtype=torch.bool) if upper is None else self.omega < upper
        if int(mask.sum()) < 2:
            return 0.0
        return float(torch.trapezoid(self.rho[mask], self.omega[mask]))


__all__ = ["DOSCalculator"]
