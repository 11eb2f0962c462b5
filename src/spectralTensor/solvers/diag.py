"""Exact diagonalization solvers for real-space and k-space models."""

from typing import Optional
import torch

from spectralTensor.core.errors import ConfigurationError, format_error


def diagonalize(
    H: torch.Tensor,
    hermitian: bool = True,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Diagonalize a Hamiltonian or a batch of Hamiltonians.

    H |ψ_n⟩ = ε_n |ψ_n⟩

    Args:
        H: Hamiltonian, shape (N, N) or batched (N_k, N, N)
        hermitian: If True, use eigh (faster, assumes Hermitian).
                   If False, use eig (general diagonalization)

    Returns:
        eigenvalues: Eigenvalues ε_n, shape (..., N), ascending for eigh
        eigenvectors: Eigenvectors, shape (..., N, N)
                     Column n corresponds to ε_n
    """
    if H.is_sparse:
        H = H.to_dense()

    if hermitian:
        eigenvalues, eigenvectors = torch.linalg.eigh(H)
    else:
        eigenvalues_complex, eigenvectors = torch.linalg.eig(H)
        eigenvalues = eigenvalues_complex.real

    return eigenvalues, eigenvectors


class Diagonalizer:
    """
    Exact diagonalization of a real-space Model.

    Reference solver for the Chebyshev engine: small models are diagonalized
    densely and every spectral property follows from the eigenpairs.

    Examples:
        >>> model = Model()
        >>> model.add_hopping(1.0, (0,), (1,), add_hermitian=True)
        >>> model.construct()
        >>> solver = Diagonalizer(model)
        >>> solver.run()
        >>> solver.eigenvalues
        tensor([-1.,  1.], dtype=torch.float64)
    """

    def __init__(self, model, device: Optional[torch.device] = None) -> None:
        """
        Initialize Diagonalizer.

        Args:
            model: Constructed Model
            device: Device for the dense Hamiltonian (default: CPU)
        """
        if not model.is_constructed:
            raise ConfigurationError(
                format_error(
                    "Diagonalizer()",
                    "The model has not been constructed.",
                    "Call Model.construct() before creating the solver.",
                )
            )
        self.model = model
        self.device = device
        self._eigenvalues: Optional[torch.Tensor] = None
        self._eigenvectors: Optional[torch.Tensor] = None

    def run(self) -> None:
        """Diagonalize the Hamiltonian."""
        H = self.model.hamiltonian_dense(device=self.device)
        self._eigenvalues, self._eigenvectors = diagonalize(H)

    def _require_run(self) -> None:
        if self._eigenvalues is None:
            raise ConfigurationError(
                format_error(
                    "Diagonalizer",
                    "No eigenpairs available.",
                    "Call Diagonalizer.run() first.",
                )
            )

    @property
    def eigenvalues(self) -> torch.Tensor:
        """Eigenvalues, shape (basis_size,), ascending."""
        self._require_run()
        return self._eigenvalues

    @property
    def eigenvectors(self) -> torch.Tensor:
        """Eigenvectors as columns, shape (basis_size, basis_size)."""
        self._require_run()
        return self._eigenvectors

    def get_amplitude(self, state: int, index) -> complex:
        """Amplitude ψ_state[index] for a physical Index."""
        self._require_run()
        return complex(self._eigenvectors[self.model.get_basis_index(index), state])


class BlockDiagonalizer:
    """
    Diagonalization of a translation-invariant model, one block per k-point.

    Attributes:
        model: TightBindingModel
        context: MomentumSpaceContext providing the mesh
    """

    def __init__(self, model, momentum_space_context) -> None:
        """
        Initialize BlockDiagonalizer.

        Args:
            model: TightBindingModel
            momentum_space_context: MomentumSpaceContext with a matching
                orbital count
        """
        if model.num_orbitals != momentum_space_context.num_orbitals:
            raise ConfigurationError(
                format_error(
                    "BlockDiagonalizer()",
                    f"The model has {model.num_orbitals} orbitals but the momentum "
                    f"space context expects {momentum_space_context.num_orbitals}.",
                )
            )
        self.model = model
        self.context = momentum_space_context
        self._eigenvalues: Optional[torch.Tensor] = None
        self._eigenvectors: Optional[torch.Tensor] = None

    def run(self) -> None:
        """Build H(k) on the mesh and diagonalize every block."""
        Hk = self.model.build_Hk(self.context.mesh)
        self._eigenvalues, self._eigenvectors = diagonalize(Hk.tensor)

    def _require_run(self) -> None:
        if self._eigenvalues is None:
            raise ConfigurationError(
                format_error(
                    "BlockDiagonalizer",
                    "No eigenpairs available.",
                    "Call BlockDiagonalizer.run() first.",
                )
            )

    @property
    def eigenvalues(self) -> torch.Tensor:
        """Band energies ε_n(k), shape (N_k, N_orb)."""
        self._require_run()
        return self._eigenvalues

    @property
    def eigenvectors(self) -> torch.Tensor:
        """Bloch vectors, shape (N_k, N_orb, N_orb), column n is band n."""
        self._require_run()
        return self._eigenvectors

    def get_eigenvalue(self, k_index: int, band: int) -> float:
        self._require_run()
        return float(self._eigenvalues[k_index, band])

    def get_amplitude(self, k_index: int, band: int, orbital: int) -> complex:
        self._require_run()
        return complex(self._eigenvectors[k_index, orbital, band])
