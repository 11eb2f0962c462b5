"""Lattice geometry, the k-space TightBindingModel and the real-space Model.

LEVEL 2 of the architecture. BravaisLattice and TightBindingModel feed the
block diagonalizer and the susceptibility and FLEX solvers. Model feeds the
real-space diagonalizer and the Chebyshev solver.
"""

from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union
import torch

from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError, format_error
from spectralTensor.core.index import Index, IndexLike

OrbitalLike = Union[int, str]


class Hopping(NamedTuple):
    """One term t c†_to(R) c_from(0), R in units of the cell vectors."""

    to_orbital: int
    from_orbital: int
    displacement: torch.Tensor
    amplitude: complex


class BravaisLattice:
    """
    Periodic lattice: cell vectors plus the sites of one unit cell.

    Rows of `cell_vectors` are the Cartesian lattice vectors a_i. Site
    positions are fractional. Every site carries `num_orbitals[s]` orbitals
    and orbitals are numbered site by site.
    """

    def __init__(
        self,
        cell_vectors: torch.Tensor,
        basis_positions: Optional[List[torch.Tensor]] = None,
        num_orbitals: Optional[List[int]] = None,
    ) -> None:
        self.cell_vectors = torch.as_tensor(cell_vectors, dtype=torch.float64)
        if self.cell_vectors.dim() != 2 or self.cell_vectors.shape[0] != self.cell_vectors.shape[1]:
            raise DimensionMismatchError(
                f"cell_vectors must be a square (dim, dim) matrix, got {tuple(self.cell_vectors.shape)}"
            )
        self.dim = self.cell_vectors.shape[0]

        if basis_positions is None:
            basis_positions = [torch.zeros(self.dim, dtype=torch.float64)]
        if num_orbitals is None:
            num_orbitals = [1] * len(basis_positions)
        if len(num_orbitals) != len(basis_positions):
            raise ConfigurationError(
                format_error(
                    "BravaisLattice()",
                    f"Got {len(basis_positions)} sites but orbital counts for {len(num_orbitals)}.",
                    "Pass one entry of num_orbitals per basis position.",
                )
            )

        self.basis_positions = [torch.as_tensor(p, dtype=torch.float64) for p in basis_positions]
        self.num_orbitals = list(num_orbitals)

    @property
    def num_sites(self) -> int:
        return len(self.basis_positions)

    @property
    def total_orbitals(self) -> int:
        return sum(self.num_orbitals)

    def reciprocal_vectors(self) -> torch.Tensor:
        """Rows b_j with a_i · b_j = 2π δ_ij."""
        return 2 * torch.pi * torch.linalg.inv(self.cell_vectors).T

    def __repr__(self) -> str:
        return (
            f"BravaisLattice(dim={self.dim}, sites={self.num_sites}, "
            f"orbitals={self.num_orbitals})"
        )


class TightBindingModel:
    """
    Translation-invariant hopping model evaluated as H(k) on a k-mesh.

    H_ij(k) = Σ_R t_ij(R) exp(i k·R)

    Orbitals are addressed either by position in the unit cell or by name:

        >>> model = TightBindingModel(lattice, orbital_labels=["a", "b"])
        >>> model.add_hopping("a", "a", [1, 0], -1.0)
        >>> model.add_hopping(0, 1, [0, 0], 0.2)
        >>> Hk = model.build_Hk(context.mesh)

    Attributes:
        lattice: BravaisLattice the displacements refer to
        orbital_labels: One name per orbital
        hoppings: Accumulated Hopping terms
    """

    def __init__(
        self,
        lattice: BravaisLattice,
        orbital_labels: Optional[List[str]] = None,
        hoppings: Optional[List[Hopping]] = None,
    ) -> None:
        self.lattice = lattice
        labels = orbital_labels or [f"orb_{n}" for n in range(lattice.total_orbitals)]
        if len(labels) != lattice.total_orbitals:
            raise DimensionMismatchError(
                f"The lattice has {lattice.total_orbitals} orbitals per cell, "
                f"but {len(labels)} orbital labels were given"
            )
        self.orbital_labels = list(labels)
        self.hoppings: List[Hopping] = list(hoppings or [])

    @property
    def num_orbitals(self) -> int:
        return self.lattice.total_orbitals

    def orbital(self, orbital: OrbitalLike) -> int:
        """Position of an orbital given by position or by label."""
        if isinstance(orbital, str):
            try:
                return self.orbital_labels.index(orbital)
            except ValueError:
                raise ConfigurationError(
                    f"No orbital named '{orbital}', the model has {self.orbital_labels}"
                ) from None
        if not 0 <= orbital < self.num_orbitals:
            raise ConfigurationError(
                f"Orbital {orbital} out of range for {self.num_orbitals} orbitals per cell"
            )
        return int(orbital)

    def add_hopping(
        self,
        orb_i: OrbitalLike,
        orb_j: OrbitalLike,
        displacement: Union[torch.Tensor, Sequence[float]],
        value: complex = 1.0,
        add_hermitian: bool = True,
    ) -> None:
        """
        Add t c†_i(R) c_j(0).

        With `add_hermitian` the reversed term (j, i, -R, t*) is added too,
        except for on-site energies, which are their own conjugate.
        """
        R = torch.as_tensor(displacement, dtype=torch.float64).clone()
        if R.shape != (self.lattice.dim,):
            raise DimensionMismatchError(
                f"Displacement {R.tolist()} does not match the lattice dimension {self.lattice.dim}"
            )
        i, j = self.orbital(orb_i), self.orbital(orb_j)

        self.hoppings.append(Hopping(i, j, R, value))
        if add_hermitian and (i != j or bool(R.any())):
            self.hoppings.append(Hopping(j, i, -R, complex(value).conjugate()))

    def build_Hk(self, k_frac: torch.Tensor) -> "BaseTensor":
        """
        Evaluate H(k) at fractional k-points.

        Args:
            k_frac: Shape (N_k, dim), in units of the reciprocal vectors

        Returns:
            BaseTensor with labels ['k', 'orb_i', 'orb_j']
        """
        from spectralTensor.core import BaseTensor

        device = k_frac.device
        O = self.num_orbitals
        Hk = torch.zeros((len(k_frac), O, O), dtype=torch.complex128, device=device)

        if self.hoppings:
            # k_frac · R_frac scaled by 2π equals k_cart · R_cart.
            R = torch.stack([h.displacement for h in self.hoppings]).to(device)
            phases = torch.exp(2j * torch.pi * (k_frac.to(torch.float64) @ R.T))  # (N_k, N_hop)
            amplitudes = torch.tensor(
                [complex(h.amplitude) for h in self.hoppings], dtype=torch.complex128, device=device
            )
            rows = torch.tensor([h.to_orbital for h in self.hoppings], device=device)
            cols = torch.tensor([h.from_orbital for h in self.hoppings], device=device)
            flat = Hk.view(len(k_frac), O * O)
            flat.index_add_(1, rows * O + cols, phases * amplitudes)

        return BaseTensor(tensor=Hk, labels=["k", "orb_i", "orb_j"], orbital_names=self.orbital_labels)


class Model:
    """
    Real-space Hamiltonian on an arbitrary multi-index basis.

    Hopping amplitudes are added as (value, to, from) meaning
    H[to, from] += value, where `to` and `from` are Index objects such as
    (x, y, spin). construct() freezes the basis and assigns every Index that
    appears in an amplitude a linear basis index, in sorted Index order.

    Examples:
        >>> model = Model()
        >>> model.add_hopping(1.0, (1,), (0,), add_hermitian=True)
        >>> model.construct()
        >>> model.basis_size
        2
    """

    def __init__(self) -> None:
        self.amplitudes: List[Tuple[complex, Index, Index]] = []
        self._basis: Optional[Dict[Index, int]] = None
        self._indices: Optional[List[Index]] = None

    def add_hopping(
        self,
        value: complex,
        to: IndexLike,
        from_: IndexLike,
        add_hermitian: bool = False,
    ) -> None:
        """
        Add the amplitude H[to, from] += value.

        Args:
            value: Hopping amplitude
            to: Row Index
            from_: Column Index
            add_hermitian: Also add conj(value) at H[from, to] (skipped for
                diagonal terms)

        Raises:
            ConfigurationError: If the model has already been constructed
        """
        if self._basis is not None:
            raise ConfigurationError(
                format_error(
                    "Model.add_hopping()",
                    "Cannot add amplitudes after construct() has been called.",
                    "Add every amplitude before calling construct().",
                )
            )
        to = Index(to)
        from_ = Index(from_)
        if to.is_pattern() or from_.is_pattern():
            raise ValueError(f"Hopping indices must be concrete, got {to!r} and {from_!r}")

        self.amplitudes.append((complex(value), to, from_))
        if add_hermitian and to != from_:
            self.amplitudes.append((complex(value).conjugate(), from_, to))

    def construct(self) -> None:
        """Freeze the basis and build the Index -> basis index mapping."""
        indices = set()
        for _, to, from_ in self.amplitudes:
            indices.add(to)
            indices.add(from_)
        self._indices = sorted(indices, key=lambda idx: (len(idx), tuple(idx)))
        self._basis = {idx: n for n, idx in enumerate(self._indices)}

    @property
    def is_constructed(self) -> bool:
        return self._basis is not None

    def _require_constructed(self, function: str) -> None:
        if self._basis is None:
            raise ConfigurationError(
                format_error(
                    function,
                    "The model has not been constructed.",
                    "Call Model.construct() first.",
                )
            )

    @property
    def basis_size(self) -> int:
        """Number of basis states."""
        self._require_constructed("Model.basis_size")
        return len(self._indices)

    def get_basis_index(self, index: IndexLike) -> int:
        """Linear basis index of a physical Index.

        Raises:
            ValueError: If the Index is not part of the basis
        """
        self._require_constructed("Model.get_basis_index()")
        index = Index(index)
        if index not in self._basis:
            raise ValueError(f"Index {index!r} is not part of the model basis")
        return self._basis[index]

    def get_physical_index(self, basis_index: int) -> Index:
        """Physical Index of a linear basis index."""
        self._require_constructed("Model.get_physical_index()")
        return self._indices[basis_index]

    def hamiltonian_sparse(
        self,
        device: Optional[torch.device] = None,
        scale: float = 1.0,
    ) -> torch.Tensor:
        """
        Sparse Hamiltonian H / scale as a coalesced COO tensor.

        Args:
            device: Target device (default: CPU)
            scale: Divide every amplitude by this factor

        Returns:
            Sparse complex128 tensor of shape (basis_size, basis_size)
        """
        self._require_constructed("Model.hamiltonian_sparse()")
        n = self.basis_size
        if len(self.amplitudes) == 0:
            return torch.sparse_coo_tensor(
                torch.zeros((2, 0), dtype=torch.long),
                torch.zeros(0, dtype=torch.complex128),
                (n, n),
                device=device,
            ).coalesce()

        rows = [self._basis[to] for _, to, _ in self.amplitudes]
        cols = [self._basis[from_] for _, _, from_ in self.amplitudes]
        values = torch.tensor([v for v, _, _ in self.amplitudes], dtype=torch.complex128) / scale
        return torch.sparse_coo_tensor(
            torch.tensor([rows, cols], dtype=torch.long),
            values,
            (n, n),
            device=device,
        ).coalesce()

    def hamiltonian_dense(self, device: Optional[torch.device] = None) -> torch.Tensor:
        """Dense Hamiltonian, shape (basis_size, basis_size)."""
        return self.hamiltonian_sparse(device=device).to_dense()

    def __repr__(self) -> str:
        size = len(self._indices) if self._indices is not None else "unconstructed"
        return f"Model(num_amplitudes={len(self.amplitudes)}, basis_size={size})"
