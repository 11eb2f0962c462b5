"""MomentumSpaceContext: periodic k-mesh bookkeeping for many-body solvers."""

from typing import List, Optional, Sequence, Tuple, Union
import math

import torch

from spectralTensor.lattice.bzone import generate_kmesh


class MomentumSpaceContext:
    """
    Periodic momentum mesh together with the orbital count of the model.

    Mesh points are stored row-major: the linear k-index of the mesh
    multi-index (i_0, ..., i_{D-1}) is Σ_d i_d Π_{d'>d} n_{d'}. Momentum
    addition and subtraction wrap around the Brillouin zone.

    Attributes:
        lattice: BravaisLattice the mesh is built on
        num_mesh_points: Mesh points per dimension
        num_orbitals: Orbitals per unit cell
        mesh: Fractional k-points, shape (N_k, dim)
    """

    def __init__(
        self,
        lattice,
        num_mesh_points: Union[int, List[int]],
        num_orbitals: Optional[int] = None,
        device: Optional[torch.device] = None,
    ) -> None:
        """
        Initialize MomentumSpaceContext.

        Args:
            lattice: BravaisLattice object
            num_mesh_points: Mesh points per dimension (int for all dimensions)
            num_orbitals: Orbitals per unit cell (default: lattice.total_orbitals)
            device: Device for the mesh tensor (default: CPU)
        """
        if isinstance(num_mesh_points, int):
            num_mesh_points = [num_mesh_points] * lattice.dim
        if any(n < 1 for n in num_mesh_points):
            raise ValueError(f"Mesh sizes must be positive, got {num_mesh_points}")

        self.lattice = lattice
        self.num_mesh_points = list(num_mesh_points)
        self.num_orbitals = num_orbitals if num_orbitals is not None else lattice.total_orbitals
        self.mesh = generate_kmesh(lattice, self.num_mesh_points, device=device)

    @property
    def num_k(self) -> int:
        """Total number of mesh points."""
        return math.prod(self.num_mesh_points)

    @property
    def dim(self) -> int:
        """Dimension of the mesh."""
        return len(self.num_mesh_points)

    def to_multi_index(self, k_index: int) -> Tuple[int, ...]:
        """Mesh multi-index of a linear k-index."""
        multi = []
        for n in reversed(self.num_mesh_points):
            multi.append(k_index % n)
            k_index //= n
        return tuple(reversed(multi))

    def to_linear_index(self, multi_index: Sequence[int]) -> int:
        """Linear k-index of a mesh multi-index, wrapped periodically."""
        k_index = 0
        for i, n in zip(multi_index, self.num_mesh_points):
            k_index = k_index * n + (int(i) % n)
        return k_index

    def get_k_index(self, k_frac: Union[torch.Tensor, Sequence[float]]) -> int:
        """
        Index of the mesh point closest to a fractional coordinate.

        Args:
            k_frac: Fractional coordinate, shape (dim,)

        Returns:
            Linear k-index, after folding back into the first zone
        """
        k_frac = torch.as_tensor(k_frac, dtype=torch.float64)
        multi = [
            int(round(float(k) * n)) for k, n in zip(k_frac.tolist(), self.num_mesh_points)
        ]
        return self.to_linear_index(multi)

    def add(self, k_index: int, q_index: int) -> int:
        """Linear index of k + q."""
        k = self.to_multi_index(k_index)
        q = self.to_multi_index(q_index)
        return self.to_linear_index([a + b for a, b in zip(k, q)])

    def subtract(self, k_index: int, q_index: int) -> int:
        """Linear index of k - q."""
        k = self.to_multi_index(k_index)
        q = self.to_multi_index(q_index)
        return self.to_linear_index([a - b for a, b in zip(k, q)])

    def multi_indices(self) -> torch.Tensor:
        """Mesh multi-indices of every linear k-index, shape (N_k, dim)."""
        grids = torch.meshgrid(
            *[torch.arange(n, dtype=torch.long) for n in self.num_mesh_points],
            indexing="ij",
        )
        return torch.stack(grids, dim=-1).reshape(-1, self.dim)

    def _combination_table(self, sign: int) -> torch.Tensor:
        multi = self.multi_indices()
        sizes = torch.tensor(self.num_mesh_points, dtype=torch.long)
        combined = (multi[:, None, :] + sign * multi[None, :, :]) % sizes

        linear = torch.zeros(combined.shape[:2], dtype=torch.long)
        for d in range(self.dim):
            linear = linear * self.num_mesh_points[d] + combined[..., d]
        return linear

    def addition_table(self) -> torch.Tensor:
        """Table T[k, q] = linear index of k + q, shape (N_k, N_k)."""
        return self._combination_table(1)

    def subtraction_table(self) -> torch.Tensor:
        """Table T[k, q] = linear index of k - q, shape (N_k, N_k)."""
        return self._combination_table(-1)

    def __repr__(self) -> str:
        return (
            f"MomentumSpaceContext(num_mesh_points={self.num_mesh_points}, "
            f"num_orbitals={self.num_orbitals})"
        )
