"""ChebyshevPropertyExtractor: spectral properties from a ChebyshevSolver."""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import torch

from spectralTensor.analysis.extractor import PropertyExtractor
from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import ConfigurationError, format_error
from spectralTensor.core.index import Index, IndexLike
from spectralTensor.solvers.chebyshev import (
    AcceleratorBackend,
    ChebyshevSolver,
    GreensFunctionType,
    HostBackend,
    energy_grid,
)


class ChebyshevPropertyExtractor(PropertyExtractor):
    """
    Green's functions, LDOS and spin-polarized LDOS via Chebyshev expansion.

    Coefficients are computed on the accelerator or on the host. Green's
    functions are reconstructed on the accelerator from a resident lookup
    table, or on the host, either from the lookup table or in closed form.
    Host reconstruction runs in a thread pool with one task per target.

    The extractor owns the accelerator-resident lookup table; release it with
    close() or by using the extractor as a context manager.

    Examples:
        >>> solver = ChebyshevSolver(model, scale_factor=2.0)
        >>> with ChebyshevPropertyExtractor(solver, 500, 600,
        ...                                 lower_bound=-1.5, upper_bound=1.5) as pe:
        ...     ldos = pe.calculate_ldos((IDX_ALL,), (2,))
    """

    def __init__(
        self,
        solver: ChebyshevSolver,
        num_coefficients: int = 1000,
        energy_resolution: int = 1000,
        use_gpu_to_calculate_coefficients: bool = False,
        use_gpu_to_generate_greens_functions: bool = False,
        use_lookup_table: bool = True,
        lower_bound: float = -0.99,
        upper_bound: float = 0.99,
        num_workers: Optional[int] = None,
    ) -> None:
        """
        Initialize ChebyshevPropertyExtractor.

        Args:
            solver: ChebyshevSolver wrapping a constructed Model
            num_coefficients: Chebyshev coefficients per Green's function
            energy_resolution: Number of energy points
            use_gpu_to_calculate_coefficients: Run the recursion on the accelerator
            use_gpu_to_generate_greens_functions: Reconstruct on the accelerator
            use_lookup_table: Precompute the reconstruction kernel
            lower_bound: Lowest energy of the grid
            upper_bound: Energy grid upper limit (exclusive)
            num_workers: Threads for host reconstruction (default: executor default)

        Raises:
            ConfigurationError: If accelerator reconstruction is requested
                without the lookup table, or if the bounds are invalid
        """
        if use_gpu_to_generate_greens_functions and not use_lookup_table:
            raise ConfigurationError(
                format_error(
                    "ChebyshevPropertyExtractor()",
                    "use_lookup_table cannot be False if "
                    "use_gpu_to_generate_greens_functions is True.",
                    "Enable use_lookup_table or reconstruct on the host.",
                )
            )
        if energy_resolution < 1:
            raise ValueError(f"energy_resolution must be positive, got {energy_resolution}")

        self.solver = solver
        self.num_coefficients = num_coefficients
        self.energy_resolution = energy_resolution
        self.use_gpu_to_calculate_coefficients = use_gpu_to_calculate_coefficients
        self.use_gpu_to_generate_greens_functions = use_gpu_to_generate_greens_functions
        self.use_lookup_table = use_lookup_table
        self.lower_bound = lower_bound
        self.upper_bound = upper_bound
        self.num_workers = num_workers

        self.host_backend = HostBackend()
        self.accelerator_backend: Optional[AcceleratorBackend] = None
        if use_gpu_to_calculate_coefficients or use_gpu_to_generate_greens_functions:
            self.accelerator_backend = AcceleratorBackend()

        if use_lookup_table:
            table = solver.generate_lookup_table(
                num_coefficients, energy_resolution, lower_bound, upper_bound
            )
            if use_gpu_to_generate_greens_functions:
                self.accelerator_backend.load_lookup_table(table)
        else:
            solver.check_energy_bounds("ChebyshevPropertyExtractor()", lower_bound, upper_bound)

    def close(self) -> None:
        """Release the accelerator-resident lookup table."""
        if self.accelerator_backend is not None:
            self.accelerator_backend.destroy_lookup_table()

    def __enter__(self) -> "ChebyshevPropertyExtractor":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def get_energies(self) -> torch.Tensor:
        """Energy grid, shape (energy_resolution,)."""
        return energy_grid(self.energy_resolution, self.lower_bound, self.upper_bound)

    def _reconstruct_on_host(
        self,
        coefficients: torch.Tensor,
        greens_function_type: GreensFunctionType,
    ) -> torch.Tensor:
        if self.use_lookup_table:
            return self.solver.generate_greens_function(coefficients, greens_function_type)
        return self.solver.generate_greens_function(
            coefficients,
            greens_function_type,
            energy_resolution=self.energy_resolution,
            lower_bound=self.lower_bound,
            upper_bound=self.upper_bound,
        )

    def calculate_greens_functions(
        self,
        to_indices: Sequence[IndexLike],
        from_index: IndexLike,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
    ) -> BaseTensor:
        """
        Green's functions G(to, from; E) for several targets and one source.

        Args:
            to_indices: Physical target indices
            from_index: Physical source index
            greens_function_type: Kind of Green's function

        Returns:
            BaseTensor with labels ['index', 'E'], shape
            (len(to_indices), energy_resolution); row n belongs to to_indices[n]
        """
        to_indices = [Index(to) for to in to_indices]
        if self.use_gpu_to_calculate_coefficients:
            backend = self.accelerator_backend
        else:
            backend = self.host_backend
        coefficients = self.solver.calculate_coefficients(
            to_indices, from_index, self.num_coefficients, backend=backend
        )

        if self.use_gpu_to_generate_greens_functions:
            greens_functions = self.accelerator_backend.generate_greens_function(
                coefficients, greens_function_type
            )
        else:
            if self.use_lookup_table:
                # The solver table is shared; another extractor may have replaced it.
                self.solver.generate_lookup_table(
                    self.num_coefficients, self.energy_resolution, self.lower_bound, self.upper_bound
                )
            greens_functions = torch.zeros(
                (len(to_indices), self.energy_resolution), dtype=torch.complex128
            )
            with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                rows = executor.map(
                    lambda mu: self._reconstruct_on_host(mu, greens_function_type),
                    coefficients,
                )
                for n, row in enumerate(rows):
                    greens_functions[n] = row

        return BaseTensor(
            tensor=greens_functions,
            labels=["index", "E"],
            coordinates={"E": self.get_energies()},
        )

    def calculate_greens_function(
        self,
        to_index: IndexLike,
        from_index: IndexLike,
        greens_function_type: GreensFunctionType = GreensFunctionType.RETARDED,
    ) -> BaseTensor:
        """Green's function G(to, from; E), BaseTensor with label ['E']."""
        greens_functions = self.calculate_greens_functions(
            [to_index], from_index, greens_function_type
        )
        return BaseTensor(
            tensor=greens_functions.tensor[0],
            labels=["E"],
            coordinates={"E": greens_functions.coordinates["E"]},
        )

    def __repr__(self) -> str:
        return (
            f"ChebyshevPropertyExtractor(num_coefficients={self.num_coefficients}, "
            f"energy_resolution={self.energy_resolution}, "
            f"bounds=({self.lower_bound}, {self.upper_bound}))"
        )


__all__ = ["ChebyshevPropertyExtractor"]
