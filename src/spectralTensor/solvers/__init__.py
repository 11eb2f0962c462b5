"""Solvers module: exact diagonalization and Chebyshev expansion."""

from spectralTensor.solvers.diag import diagonalize, Diagonalizer, BlockDiagonalizer
from spectralTensor.solvers.chebyshev import (
    GreensFunctionType,
    jackson_kernel,
    energy_grid,
    ChebyshevBackend,
    HostBackend,
    AcceleratorBackend,
    ChebyshevSolver,
)

__all__ = [
    "diagonalize",
    "Diagonalizer",
    "BlockDiagonalizer",
    "GreensFunctionType",
    "jackson_kernel",
    "energy_grid",
    "ChebyshevBackend",
    "HostBackend",
    "AcceleratorBackend",
    "ChebyshevSolver",
]
