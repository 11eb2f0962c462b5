"""Chebyshev expansion of single-particle Green's functions.

The scaled Hamiltonian H~ = H / s (spectrum inside [-1, 1]) generates the
Chebyshev vectors

    |j_0> = |from>,  |j_1> = H~ |j_0>,  |j_{n+1}> = 2 H~ |j_n> - |j_{n-1}>

and the expansion coefficients are μ_n = <to|j_n>. The retarded Green's
function on an energy grid follows from

    G^R(E) = -i / (s sqrt(1 - ε²)) Σ_n (2 - δ_n0) g_n μ_n exp(-i n arccos ε),

with ε = E / s and g_n the Jackson damping factors (Weiße et al.,
Rev. Mod. Phys. 78, 275 (2006)). Only sparse matrix-vector products are
needed, so the method scales to basis sizes where dense diagonalization is
out of reach.

Sparse products run on a backend: HostBackend (CPU) or AcceleratorBackend
(CUDA, falls back to CPU with a warning when no GPU is present).

LEVEL 3 solver module.
"""

from abc import ABC
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union
import math

import torch

from spectralTensor.core.device import get_accelerator_device, get_device
from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError, format_error
from spectralTensor.core.index import Index, IndexLike


class GreensFunctionType(Enum):
    """Kind of Green's function reconstructed from the coefficients."""

    RETARDED = "retarded"
    ADVANCED = "advanced"
    PRINCIPAL = "principal"
    NON_PRINCIPAL = "non_principal"


def jackson_kernel(num_coefficients: int, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """
    Jackson damping factors g_n, n = 0..N-1.

    g_n = [(N - n + 1) cos(π n / (N + 1)) + sin(π n / (N + 1)) cot(π / (N + 1))] / (N + 1)

    Args:
        num_coefficients: Number of coefficients N

    Returns:
        Damping factors, shape (N,), with g_0 = 1
    """
    N = num_coefficients
    n = torch.arange(N, dtype=dtype)
    norm = 1.0 / (N + 1)
    g = (N - n + 1) * torch.cos(math.pi * n * norm)
    g += torch.sin(math.pi * n * norm) / math.tan(math.pi * norm)
    return g * norm


def energy_grid(
    energy_resolution: int,
    lower_bound: float,
    upper_bound: float,
) -> torch.Tensor:
    """Energies lower + (upper - lower) * e / energy_resolution, e = 0..resolution-1."""
    e = torch.arange(energy_resolution, dtype=torch.float64)
    return lower_bound + (upper_bound - lower_bound) * e / energy_resolution


def _apply_type(kernel: torch.Tensor, greens_function_type: GreensFunctionType) -> torch.Tensor:
    # The advanced kernel is the complex conjugate of the retarded one, so
    # every type follows from the retarded table.
    if greens_function_type == GreensFunctionType.RETARDED:
        return kernel
    elif greens_function_type == GreensFunctionType.ADVANCED:
        return kernel.conj()
    elif greens_function_type == GreensFunctionType.PRINCIPAL:
        return torch.complex(kernel.real, torch.zeros_like(kernel.real))
    elif greens_function_type == GreensFunctionType.NON_PRINCIPAL:
        return torch.complex(torch.zeros_like(kernel.imag), kernel.imag)
    raise ValueError(f"Unknown Green's function type: {greens_function_type}")


class ChebyshevBackend(ABC):
    """
    Execution backend for the Chebyshev recursion and table lookups.

    A backend owns a device and at most one resident lookup table.

    Attributes:
        device: torch device the backend computes on
    """

    def __init__(self, device: torch.device) -> None:
        self.device = device
        self._lookup_table: Optional[torch.Tensor] = None

    @property
    def has_lookup_table(self) -> bool:
        return self._lookup_table is not None

    def load_lookup_table(self, table: torch.Tensor) -> None:
        """Copy a lookup table onto the backend device, replacing any resident table."""
        self._lookup_table = table.to(self.device)

    def destroy_lookup_table(self) -> None:
        """Release the resident lookup table."""
        self._lookup_table = None

    def calculate_coefficients(
        self,
        hamiltonian: torch.Tensor,
        to_basis_indices: Sequence[int],
        from_basis_index: int,
        num_coefficients: int,
    ) -> torch.Tensor:
        """
        Run the Chebyshev recursion.

        Args:
            hamiltonian: Scaled sparse Hamiltonian on this backend's device
            to_basis_indices: Basis indices of the target states
            from_basis_index: Basis index of the source state
            num_coefficients: Number of coefficients per target

        Returns:
            Coefficients μ_n, shape (len(to), num_coefficients), complex128 on CPU
        """
        if num_coefficients < 1:
            raise ValueError(f"num_coefficients must be positive, got {num_coefficients}")

        basis_size = hamiltonian.shape[0]
        targets = torch.tensor(list(to_basis_indices), dtype=torch.long, device=self.device)
        coefficients = torch.zeros(
            (len(to_basis_indices), num_coefficients),
            dtype=torch.complex128,
            device=self.device,
        )

        j_previous = torch.zeros((basis_size, 1), dtype=torch.complex128, device=self.device)
        j_previous[from_basis_index, 0] = 1.0
        coefficients[:, 0] = j_previous[targets, 0]
        if num_coefficients == 1:
            return coefficients.cpu()

        j_current = torch.sparse.mm(hamiltonian, j_previous)
        coefficients[:, 1] = j_current[targets, 0]
        for n in range(2, num_coefficients):
            j_next = 2 * torch.sparse.mm(hamiltonian, j_current) - j_previous
            coefficients[:, n] = j_next[targets, 0]
            j_previous, j_current = j_current, j_next

        return coefficients.cpu()

    def generate_greens_function(
        self,
        coefficients: torch.Tensor,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
    ) -> torch.Tensor:
        """
        Reconstruct Green's functions from the resident lookup table.

        Args:
            coefficients: Shape (num_coefficients,) or (num_targets, num_coefficients)

        Returns:
            Green's functions on CPU, shape (energy_resolution,) or
            (num_targets, energy_resolution)

        Raises:
            ConfigurationError: If no lookup table is loaded
            DimensionMismatchError: If the coefficient count differs from the table's
        """
        if self._lookup_table is None:
            raise ConfigurationError(
                format_error(
                    f"{type(self).__name__}.generate_greens_function()",
                    "No lookup table loaded.",
                    "Call load_lookup_table() with ChebyshevSolver.lookup_table first.",
                )
            )
        if coefficients.shape[-1] != self._lookup_table.shape[0]:
            raise DimensionMismatchError(
                format_error(
                    f"{type(self).__name__}.generate_greens_function()",
                    f"Got {coefficients.shape[-1]} coefficients but the lookup table was "
                    f"generated for {self._lookup_table.shape[0]}.",
                )
            )
        kernel = _apply_type(self._lookup_table, greens_function_type)
        return (coefficients.to(self.device, torch.complex128) @ kernel).cpu()


class HostBackend(ChebyshevBackend):
    """Backend computing on the CPU."""

    def __init__(self) -> None:
        super().__init__(torch.device("cpu"))

    def __repr__(self) -> str:
        return "HostBackend()"


class AcceleratorBackend(ChebyshevBackend):
    """Backend computing on a CUDA device.

    Falls back to the CPU, with a printed warning, if CUDA is unavailable.
    """

    def __init__(self, device: Optional[Union[str, torch.device]] = None) -> None:
        super().__init__(get_accelerator_device() if device is None else get_device(device))

    def __repr__(self) -> str:
        return f"AcceleratorBackend(device={self.device})"


class ChebyshevSolver:
    """
    Chebyshev expansion solver for a real-space Model.

    Attributes:
        model: Constructed Model
        scale_factor: Energy scale s, must exceed the spectral radius of H
        backend: Default backend for coefficient calculation
        lookup_table: Retarded kernel table, shape (num_coefficients,
            energy_resolution), or None before generate_lookup_table()

    Examples:
        >>> solver = ChebyshevSolver(model, scale_factor=2.0)
        >>> mu = solver.calculate_coefficients([(0,)], (0,), 200)
        >>> G = solver.generate_greens_function(mu[0], energy_resolution=500,
        ...                                     lower_bound=-1.5, upper_bound=1.5)
    """

    def __init__(
        self,
        model,
        scale_factor: float = 1.0,
        backend: Optional[ChebyshevBackend] = None,
    ) -> None:
        """
        Initialize ChebyshevSolver.

        Args:
            model: Constructed Model
            scale_factor: Energy scale s, H is divided by s
            backend: Backend for coefficient calculation (default: HostBackend)
        """
        if scale_factor <= 0:
            raise ValueError(f"scale_factor must be positive, got {scale_factor}")
        if not model.is_constructed:
            raise ConfigurationError(
                format_error(
                    "ChebyshevSolver()",
                    "The model has not been constructed.",
                    "Call Model.construct() before creating the solver.",
                )
            )

        self.model = model
        self.scale_factor = float(scale_factor)
        self.backend = backend if backend is not None else HostBackend()
        self._hamiltonians: Dict[torch.device, torch.Tensor] = {}

        self.lookup_table: Optional[torch.Tensor] = None
        self.lookup_table_num_coefficients = 0
        self.lookup_table_resolution = 0
        self.lookup_table_lower_bound = 0.0
        self.lookup_table_upper_bound = 0.0

    def scaled_hamiltonian(self, device: Optional[torch.device] = None) -> torch.Tensor:
        """Sparse H / s on `device`, built once per device."""
        device = device if device is not None else self.backend.device
        if device not in self._hamiltonians:
            self._hamiltonians[device] = self.model.hamiltonian_sparse(
                device=device, scale=self.scale_factor
            )
        return self._hamiltonians[device]

    def calculate_coefficients(
        self,
        to_indices: Sequence[IndexLike],
        from_index: IndexLike,
        num_coefficients: int,
        backend: Optional[ChebyshevBackend] = None,
    ) -> torch.Tensor:
        """
        Chebyshev coefficients μ_n = <to|T_n(H~)|from> for several targets.

        Args:
            to_indices: Physical target indices
            from_index: Physical source index
            num_coefficients: Number of coefficients per target
            backend: Backend overriding the solver default

        Returns:
            Coefficients, shape (len(to_indices), num_coefficients), complex128
        """
        backend = backend if backend is not None else self.backend
        to_basis = [self.model.get_basis_index(Index(to)) for to in to_indices]
        from_basis = self.model.get_basis_index(Index(from_index))
        return backend.calculate_coefficients(
            self.scaled_hamiltonian(backend.device),
            to_basis,
            from_basis,
            num_coefficients,
        )

    def check_energy_bounds(self, function: str, lower_bound: float, upper_bound: float) -> None:
        s = self.scale_factor
        if not -s < lower_bound < upper_bound < s:
            raise ConfigurationError(
                format_error(
                    function,
                    f"Energy bounds must satisfy -scale_factor < lower_bound < upper_bound "
                    f"< scale_factor, got lower_bound={lower_bound}, upper_bound="
                    f"{upper_bound}, scale_factor={s}.",
                    "Choose a larger scale_factor or narrower energy bounds.",
                )
            )

    def _retarded_kernel(
        self,
        num_coefficients: int,
        energy_resolution: int,
        lower_bound: float,
        upper_bound: float,
    ) -> torch.Tensor:
        # kernel[n, e] = -i (2 - δ_n0) g_n exp(-i n θ_e) / (s sqrt(1 - ε_e²))
        epsilon = energy_grid(energy_resolution, lower_bound, upper_bound) / self.scale_factor
        theta = torch.arccos(epsilon)
        n = torch.arange(num_coefficients, dtype=torch.float64)

        weights = 2.0 * jackson_kernel(num_coefficients)
        weights[0] = weights[0] / 2.0

        phase = torch.exp(-1j * torch.outer(n, theta))
        denominator = self.scale_factor * torch.sqrt(1.0 - epsilon**2)
        return -1j * weights[:, None] * phase / denominator[None, :]

    def generate_lookup_table(
        self,
        num_coefficients: int,
        energy_resolution: int,
        lower_bound: float = -0.99,
        upper_bound: float = 0.99,
    ) -> torch.Tensor:
        """
        Tabulate the retarded reconstruction kernel.

        Regenerates only when the parameters change.

        Args:
            num_coefficients: Number of Chebyshev coefficients
            energy_resolution: Number of energy points
            lower_bound: Lowest energy of the grid
            upper_bound: Energy grid upper limit (exclusive)

        Returns:
            Lookup table, shape (num_coefficients, energy_resolution), complex128

        Raises:
            ConfigurationError: If the bounds are not strictly inside
                (-scale_factor, scale_factor)
        """
        self.check_energy_bounds("ChebyshevSolver.generate_lookup_table()", lower_bound, upper_bound)

        if (
            self.lookup_table is not None
            and self.lookup_table_num_coefficients == num_coefficients
            and self.lookup_table_resolution == energy_resolution
            and self.lookup_table_lower_bound == lower_bound
            and self.lookup_table_upper_bound == upper_bound
        ):
            return self.lookup_table

        self.lookup_table = self._retarded_kernel(
            num_coefficients, energy_resolution, lower_bound, upper_bound
        )
        self.lookup_table_num_coefficients = num_coefficients
        self.lookup_table_resolution = energy_resolution
        self.lookup_table_lower_bound = lower_bound
        self.lookup_table_upper_bound = upper_bound
        return self.lookup_table

    def destroy_lookup_table(self) -> None:
        self.lookup_table = None
        self.lookup_table_num_coefficients = 0
        self.lookup_table_resolution = 0

    def generate_greens_function(
        self,
        coefficients: torch.Tensor,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
        energy_resolution: Optional[int] = None,
        lower_bound: Optional[float] = None,
        upper_bound: Optional[float] = None,
    ) -> torch.Tensor:
        """
        Reconstruct a Green's function from Chebyshev coefficients.

        Without `energy_resolution` the host lookup table is used. With it the
        kernel is evaluated in closed form on the requested grid.

        Args:
            coefficients: Shape (num_coefficients,) or (num_targets, num_coefficients)
            greens_function_type: Kind of Green's function
            energy_resolution: Grid size for the closed-form path
            lower_bound: Grid lower bound for the closed-form path
            upper_bound: Grid upper bound for the closed-form path

        Returns:
            Complex Green's function, shape (..., energy_resolution)
        """
        coefficients = coefficients.to(torch.complex128).cpu()

        if energy_resolution is None:
            if self.lookup_table is None:
                raise ConfigurationError(
                    format_error(
                        "ChebyshevSolver.generate_greens_function()",
                        "No lookup table has been generated.",
                        "Call generate_lookup_table() or pass energy_resolution and "
                        "bounds for the closed-form reconstruction.",
                    )
                )
            kernel = self.lookup_table
        else:
            lower_bound = -0.99 if lower_bound is None else lower_bound
            upper_bound = 0.99 if upper_bound is None else upper_bound
            self.check_energy_bounds(
                "ChebyshevSolver.generate_greens_function()", lower_bound, upper_bound
            )
            kernel = self._retarded_kernel(
                coefficients.shape[-1], energy_resolution, lower_bound, upper_bound
            )

        if coefficients.shape[-1] != kernel.shape[0]:
            raise DimensionMismatchError(
                format_error(
                    "ChebyshevSolver.generate_greens_function()",
                    f"Got {coefficients.shape[-1]} coefficients but the lookup table was "
                    f"generated for {kernel.shape[0]}.",
                )
            )
        return coefficients @ _apply_type(kernel, greens_function_type)

    def __repr__(self) -> str:
        return (
            f"ChebyshevSolver(basis_size={self.model.basis_size}, "
            f"scale_factor={self.scale_factor}, backend={self.backend})"
        )


__all__ = [
    "GreensFunctionType",
    "jackson_kernel",
    "energy_grid",
    "ChebyshevBackend",
    "HostBackend",
    "AcceleratorBackend",
    "ChebyshevSolver",
]
