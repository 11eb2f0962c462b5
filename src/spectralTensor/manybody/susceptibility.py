"""Bare charge/spin susceptibility on a periodic momentum mesh.

Two kernels are available:

LINDHARD, from band energies and Bloch vectors at complex energies z:

    χ_abcd(q, z) = -(1/N) Σ_k Σ_mn [f(εₙ(k)) - f(εₘ(k+q))] / (z + εₙ(k) - εₘ(k+q))
                   × ψₘ(k+q)[a] ψₘ(k+q)[c]* ψₙ(k)[d] ψₙ(k)[b]*

  At z = 0 with degenerate energies the ratio is replaced by its limit
  f'(εₙ(k)) = -β f (1 - f).

MATSUBARA, from a k-resolved Matsubara Green's function at bosonic index m:

    χ_abcd(q, iν_m) = -(T/N) Σ_k Σ_n G_ac(k+q, n+m) G_db(k, n)

  where the fermionic sum runs over the indices n with both n and n+m
  inside the available window.

Entries are cached per momentum and orbital quadruple in an
IndexedDataTree. A miss computes the whole orbital block for that momentum.

LEVEL 4 many-body module.
"""

from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from itertools import product
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
import copy
import math
import threading

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.datatree import IndexedDataTree
from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError, format_error
from spectralTensor.core.index import Index
from spectralTensor.manybody.preprocessing import matsubara_indices_from_energies


class SusceptibilityMode(Enum):
    """Kernel used for the bare susceptibility."""

    LINDHARD = "lindhard"
    MATSUBARA = "matsubara"


def fermi_dirac(energies: torch.Tensor, beta: float, mu: float = 0.0) -> torch.Tensor:
    """Fermi-Dirac occupation 1 / (exp(β(ε - μ)) + 1)."""
    return torch.sigmoid(-beta * (energies - mu))


class SusceptibilityCalculator:
    """
    Bare susceptibility χ₀_abcd(q, E) with caching and parallel precomputation.

    Attributes:
        context: MomentumSpaceContext providing the mesh
        mode: SusceptibilityMode
        beta: Inverse temperature
        mu: Chemical potential (LINDHARD)
        is_master: False for calculators created by create_slave()
        verbose: Print progress of precompute()

    Examples:
        >>> calc = SusceptibilityCalculator(context, SusceptibilityMode.LINDHARD,
        ...                                 energies=[0.0], model=model, beta=10.0)
        >>> chi = calc.calculate_susceptibility(0, (0, 0, 0, 0))
    """

    def __init__(
        self,
        momentum_space_context,
        mode: SusceptibilityMode = SusceptibilityMode.LINDHARD,
        energies: Optional[Sequence] = None,
        model=None,
        greens_function: Optional[BaseTensor] = None,
        beta: float = 1.0,
        mu: float = 0.0,
        degeneracy_tolerance: float = 1e-10,
        verbose: bool = False,
    ) -> None:
        """
        Initialize SusceptibilityCalculator.

        Args:
            momentum_space_context: MomentumSpaceContext
            mode: LINDHARD or MATSUBARA
            energies: Complex energies z (LINDHARD, default [0]) or even bosonic
                Matsubara indices (MATSUBARA, default [0])
            model: TightBindingModel, required for LINDHARD
            greens_function: Green's function with labels
                ['iwn', 'k', 'orb_i', 'orb_j'], required for MATSUBARA
            beta: Inverse temperature
            mu: Chemical potential for the Fermi function (LINDHARD)
            degeneracy_tolerance: Energy difference treated as degenerate at z = 0
            verbose: Print progress

        Raises:
            ConfigurationError: If the input required by the mode is missing
            DimensionMismatchError: If the Green's function does not match the mesh
        """
        if beta <= 0:
            raise ValueError(f"beta must be positive, got {beta}")

        self.context = momentum_space_context
        self.mode = mode
        self.beta = float(beta)
        self.mu = float(mu)
        self.degeneracy_tolerance = degeneracy_tolerance
        self.verbose = verbose
        self.is_master = True
        self._master: Optional["SusceptibilityCalculator"] = None

        self.model = model
        self.greens_function = greens_function
        self._fermionic_indices: List[int] = []

        if mode == SusceptibilityMode.LINDHARD:
            if model is None:
                raise ConfigurationError(
                    format_error(
                        "SusceptibilityCalculator()",
                        "LINDHARD mode requires a TightBindingModel.",
                        "Pass model=...",
                    )
                )
        elif mode == SusceptibilityMode.MATSUBARA:
            if greens_function is None:
                raise ConfigurationError(
                    format_error(
                        "SusceptibilityCalculator()",
                        "MATSUBARA mode requires a k-resolved Matsubara Green's function.",
                        "Pass greens_function=... with labels ['iwn', 'k', 'orb_i', 'orb_j'].",
                    )
                )
            expected = (self.context.num_k, self.context.num_orbitals, self.context.num_orbitals)
            if greens_function.ndim != 4 or tuple(greens_function.shape[1:]) != expected:
                raise DimensionMismatchError(
                    format_error(
                        "SusceptibilityCalculator()",
                        f"Green's function has shape {tuple(greens_function.shape)}, expected "
                        f"(n_iwn, {expected[0]}, {expected[1]}, {expected[2]}).",
                    )
                )
            self._fermionic_indices = matsubara_indices_from_energies(
                greens_function.coordinates["iwn"], self.beta
            )
        else:
            raise ConfigurationError(f"Unknown susceptibility mode: {mode}")

        self._cache = IndexedDataTree()
        self._generation = 0
        self._kplusq_lookup_table: Optional[torch.Tensor] = None
        self._band_energies: Optional[torch.Tensor] = None
        self._band_vectors: Optional[torch.Tensor] = None
        self._occupations: Optional[torch.Tensor] = None

        self._lindhard_lock = threading.Lock()
        self._lindhard_scratch: Optional[torch.Tensor] = None
        self._lindhard_scratch_q: Optional[int] = None

        self._energies = self._validate_energies(energies)

    @property
    def num_orbitals(self) -> int:
        return self.context.num_orbitals

    @property
    def generation(self) -> int:
        """Counter incremented whenever the cache is invalidated."""
        return self._generation

    def _validate_energies(self, energies: Optional[Sequence]) -> Union[torch.Tensor, List[int]]:
        if self.mode == SusceptibilityMode.LINDHARD:
            if energies is None:
                energies = [0.0]
            return torch.as_tensor(energies, dtype=torch.complex128).reshape(-1)

        if energies is None:
            energies = [0]
        energies = [int(m) for m in energies]
        if any(m % 2 != 0 for m in energies):
            raise ValueError(f"Bosonic Matsubara indices must be even, got {energies}")
        return energies

    @property
    def energies(self):
        """Complex energies (LINDHARD) or bosonic Matsubara indices (MATSUBARA)."""
        self._follow_master()
        if self.mode == SusceptibilityMode.LINDHARD:
            return self._energies.clone()
        return list(self._energies)

    @energies.setter
    def energies(self, energies: Sequence) -> None:
        if not self.is_master:
            raise ConfigurationError(
                format_error(
                    "SusceptibilityCalculator.energies",
                    "Cannot change the energies of a slave calculator.",
                    "Change the energies on the master calculator.",
                )
            )
        self._energies = self._validate_energies(energies)
        self.clear_cache()

    @property
    def num_energies(self) -> int:
        self._follow_master()
        return len(self._energies)

    def _follow_master(self) -> None:
        # A slave picks up energies set on its master since the last lookup.
        master = self._master
        if master is None or master.generation == self._generation:
            return
        with self._lindhard_lock:
            self._energies = master._energies
            self._generation = master.generation
            self._lindhard_scratch = None
            self._lindhard_scratch_q = None

    def clear_cache(self) -> None:
        """Drop every cached susceptibility."""
        self._cache.clear()
        self._generation += 1
        with self._lindhard_lock:
            self._lindhard_scratch = None
            self._lindhard_scratch_q = None

    def _k_key(self, k_index: int) -> Index:
        return Index(self.context.to_multi_index(k_index))

    def generate_kplusq_lookup_table(self) -> torch.Tensor:
        """
        Build the table T[k, q] = k + q on the periodic mesh.

        Idempotent: an existing table is returned as is.

        Raises:
            ConfigurationError: If called on a slave without a shared table
        """
        if self._kplusq_lookup_table is not None:
            return self._kplusq_lookup_table
        if not self.is_master:
            raise ConfigurationError(
                format_error(
                    "SusceptibilityCalculator.generate_kplusq_lookup_table()",
                    "A slave calculator cannot generate lookup tables.",
                    "Generate the table on the master before creating slaves.",
                )
            )
        self._kplusq_lookup_table = self.context.addition_table()
        return self._kplusq_lookup_table

    @property
    def kplusq_lookup_table(self) -> Optional[torch.Tensor]:
        return self._kplusq_lookup_table

    def _band_data(self) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        if self._band_energies is None:
            from spectralTensor.solvers.diag import BlockDiagonalizer

            diagonalizer = BlockDiagonalizer(self.model, self.context)
            diagonalizer.run()
            self._band_energies = diagonalizer.eigenvalues.cpu()
            self._band_vectors = diagonalizer.eigenvectors.cpu()
            self._occupations = fermi_dirac(self._band_energies, self.beta, self.mu)
        return self._band_energies, self._band_vectors, self._occupations

    def _lindhard_ratio(self, q_index: int) -> torch.Tensor:
        # ratio[z, k, n, m] = [f(εₙ(k)) - f(εₘ(k+q))] / (z + εₙ(k) - εₘ(k+q))
        eps, _, f = self._band_data()
        kq = self._kplusq_lookup_table[:, q_index]

        e_k = eps[:, :, None]
        e_kq = eps[kq][:, None, :]
        f_k = f[:, :, None]
        f_kq = f[kq][:, None, :]

        z = self._energies[:, None, None, None]
        denominator = z + (e_k - e_kq)[None]
        numerator = (f_k - f_kq)[None].to(torch.complex128)

        degenerate = (torch.abs(e_k - e_kq)[None] < self.degeneracy_tolerance) & (
            torch.abs(z) < self.degeneracy_tolerance
        )
        derivative = (-self.beta * f_k * (1 - f_k)).to(torch.complex128)[None]
        safe_denominator = torch.where(degenerate, torch.ones_like(denominator), denominator)
        return torch.where(degenerate, derivative.expand_as(denominator), numerator / safe_denominator)

    def _calculate_lindhard(self, q_index: int) -> torch.Tensor:
        """Lindhard block χ[z, a, b, c, d] for one momentum."""
        _, psi, _ = self._band_data()
        kq = self._kplusq_lookup_table[:, q_index]

        with self._lindhard_lock:
            if self._lindhard_scratch_q != q_index:
                self._lindhard_scratch = self._lindhard_ratio(q_index)
                self._lindhard_scratch_q = q_index
            ratio = self._lindhard_scratch

        psi_kq = psi[kq]
        A = torch.einsum("kam,kcm->kacm", psi_kq, psi_kq.conj())
        B = torch.einsum("kdn,kbn->kdbn", psi, psi.conj())
        chi = torch.einsum("zknm,kacm,kdbn->zabcd", ratio, A, B)
        return -chi / self.context.num_k

    def _calculate_matsubara(self, q_index: int) -> torch.Tensor:
        """Matsubara block χ[m, a, b, c, d] for one momentum."""
        G = self.greens_function.tensor.cpu()
        kq = self._kplusq_lookup_table[:, q_index]
        position = {n: p for p, n in enumerate(self._fermionic_indices)}

        O = self.num_orbitals
        chi = torch.zeros((self.num_energies, O, O, O, O), dtype=torch.complex128)
        for z, m in enumerate(self._energies):
            for p, n in enumerate(self._fermionic_indices):
                p_shifted = position.get(n + m)
                if p_shifted is None:
                    continue
                chi[z] += torch.einsum("kac,kdb->abcd", G[p_shifted][kq], G[p])

        return -chi / (self.beta * self.context.num_k)

    def _calculate_block(self, q_index: int) -> torch.Tensor:
        if self.mode == SusceptibilityMode.LINDHARD:
            return self._calculate_lindhard(q_index)
        return self._calculate_matsubara(q_index)

    def _prepare(self) -> None:
        # Shared inputs must be complete before worker threads read them.
        self.generate_kplusq_lookup_table()
        if self.mode == SusceptibilityMode.LINDHARD:
            self._band_data()

    def _store_block(self, q_index: int, block: torch.Tensor) -> None:
        k_key = self._k_key(q_index)
        O = self.num_orbitals
        for a, b, c, d in product(range(O), repeat=4):
            self._cache.add([k_key, Index(a, b, c, d)], block[:, a, b, c, d].clone())

    def _is_cached(self, q_index: int) -> bool:
        k_key = self._k_key(q_index)
        O = self.num_orbitals
        return all(
            [k_key, Index(a, b, c, d)] in self._cache
            for a, b, c, d in product(range(O), repeat=4)
        )

    def calculate_susceptibility(self, k_index: int, orbital_indices: Sequence[int]) -> torch.Tensor:
        """
        Bare susceptibility χ₀_abcd(k, E) for all energies.

        Returns the cached value when present. On a miss the kernel for the
        mode computes the whole orbital block at k; a master stores it, a
        slave only returns it.

        Args:
            k_index: Linear momentum index
            orbital_indices: Orbital quadruple (a, b, c, d)

        Returns:
            Complex tensor, shape (num_energies,)
        """
        self._follow_master()
        orbital_indices = Index(orbital_indices)
        if len(orbital_indices) != 4:
            raise DimensionMismatchError(
                f"Expected four orbital indices, got {orbital_indices!r}"
            )
        key = [self._k_key(k_index), orbital_indices]
        cached = self._cache.get(key)
        if cached is not None:
            return cached.clone()

        self._prepare()
        block = self._calculate_block(k_index)
        if self.is_master:
            self._store_block(k_index, block)
        a, b, c, d = orbital_indices
        return block[:, a, b, c, d].clone()

    def calculate_susceptibilities(self, k_index: int) -> BaseTensor:
        """
        Full orbital block χ₀_abcd(k, E).

        Returns:
            BaseTensor with labels ['E', 'orb_a', 'orb_b', 'orb_c', 'orb_d']
        """
        self._follow_master()
        O = self.num_orbitals
        if self._is_cached(k_index):
            k_key = self._k_key(k_index)
            block = torch.zeros((self.num_energies, O, O, O, O), dtype=torch.complex128)
            for a, b, c, d in product(range(O), repeat=4):
                block[:, a, b, c, d] = self._cache.get([k_key, Index(a, b, c, d)])
        else:
            self._prepare()
            block = self._calculate_block(k_index)
            if self.is_master:
                self._store_block(k_index, block)

        return BaseTensor(
            tensor=block.clone(),
            labels=["E", "orb_a", "orb_b", "orb_c", "orb_d"],
        )

    def precompute(self, num_workers: int = 1) -> None:
        """
        Fill the cache for every momentum and orbital combination.

        Momenta are distributed over a thread pool. Workers only compute;
        the calling thread writes every result into the cache.

        Args:
            num_workers: Number of worker threads
        """
        if not self.is_master:
            raise ConfigurationError(
                format_error(
                    "SusceptibilityCalculator.precompute()",
                    "A slave calculator cannot write to the shared cache.",
                    "Call precompute() on the master calculator.",
                )
            )
        if num_workers < 1:
            raise ValueError(f"num_workers must be positive, got {num_workers}")

        self._prepare()
        missing = [q for q in range(self.context.num_k) if not self._is_cached(q)]
        if self.verbose:
            print(f"Precomputing susceptibilities for {len(missing)} momenta ({num_workers} workers)")

        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            for count, (q, block) in enumerate(
                zip(missing, executor.map(self._calculate_block, missing)), start=1
            ):
                self._store_block(q, block)
                if self.verbose and count % max(1, len(missing) // 10) == 0:
                    print(f"  {count}/{len(missing)} momenta done")

    def create_slave(self) -> "SusceptibilityCalculator":
        """
        Calculator sharing this calculator's tables, band data and cache.

        The slave is meant for read-only concurrent use: it never writes the
        cache and cannot regenerate tables or change energies. Energies set
        on the master later are picked up by the slave on its next lookup.
        """
        self._prepare()
        slave = copy.copy(self)
        slave.is_master = False
        slave._master = self
        slave._lindhard_lock = threading.Lock()
        slave._lindhard_scratch = None
        slave._lindhard_scratch_q = None
        return slave

    def save_susceptibilities(self, path: Union[str, Path]) -> None:
        """Write the cache to a JSON text file."""
        self._cache.save(path)

    def load_susceptibilities(self, path: Union[str, Path]) -> None:
        """Merge entries written by save_susceptibilities() into the cache.

        Raises:
            DimensionMismatchError: If an entry does not match the number of energies
        """
        tree = IndexedDataTree.load(path)
        for key, value in tree.items():
            if value.shape[0] != self.num_energies:
                raise DimensionMismatchError(
                    format_error(
                        "SusceptibilityCalculator.load_susceptibilities()",
                        f"Entry {key} has {value.shape[0]} energies, expected "
                        f"{self.num_energies}.",
                    )
                )
            self._cache.add(key, value)

    def __repr__(self) -> str:
        return (
            f"SusceptibilityCalculator(mode={self.mode.name}, num_k={self.context.num_k}, "
            f"num_orbitals={self.num_orbitals}, num_energies={self.num_energies}, "
            f"is_master={self.is_master})"
        )


__all__ = ["SusceptibilityMode", "fermi_dirac", "SusceptibilityCalculator"]
