"""Fluctuation-exchange (FLEX) self-consistency loop.

Each iteration runs the stages

    G → χ₀ → χˢ, χᶜ (RPA) → V → Σ → G = (G₀⁻¹ - Σ)⁻¹

with Up = U - 2J and Jp = J, starting from the bare Green's function of the
block-diagonal model. The solver moves through FLEXState values as the
stages complete and notifies every subscribed observer after each
transition.

The loop stops after max_iterations, or earlier once the relative change
of the Green's function drops below the tolerance.

References:
    - Bickers, Scalapino, White, PRL 62, 961 (1989)
    - Kontani, "Transport phenomena in strongly correlated Fermi liquids"
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional
import math

import torch

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError, format_error
from spectralTensor.manybody.preprocessing import (
    BareGreensFunction,
    InteractingGreensFunction,
    matsubara_indices,
)
from spectralTensor.manybody.rpa import RPASusceptibilityCalculator
from spectralTensor.manybody.susceptibility import SusceptibilityCalculator, SusceptibilityMode
from spectralTensor.manybody.vertex import ElectronFluctuationVertex, SelfEnergyCalculator
from spectralTensor.solvers.diag import BlockDiagonalizer


class FLEXState(Enum):
    """Stage most recently completed by FLEX.run()."""

    NOT_YET_STARTED = "not_yet_started"
    GREENS_FUNCTION_CALCULATED = "greens_function_calculated"
    BARE_SUSCEPTIBILITY_CALCULATED = "bare_susceptibility_calculated"
    RPA_SUSCEPTIBILITIES_CALCULATED = "rpa_susceptibilities_calculated"
    INTERACTION_VERTEX_CALCULATED = "interaction_vertex_calculated"
    SELF_ENERGY_CALCULATED = "self_energy_calculated"


@dataclass
class FLEXEvent:
    """Notification sent to observers after every state transition."""

    state: FLEXState
    iteration: int
    convergence_parameter: float
    solver: Any


NORMS = ("max", "l2")


def _require_2d(context, function: str) -> None:
    if context.dim != 2:
        raise ConfigurationError(
            format_error(
                function,
                f"Only two-dimensional momentum meshes are supported, got "
                f"{context.dim} dimensions (mesh {context.num_mesh_points}).",
                "Use a MomentumSpaceContext on a 2D lattice.",
            )
        )


def convert_self_energy_index_structure(block: BaseTensor, momentum_space_context) -> BaseTensor:
    """
    Re-index a self-energy from block to flat layout.

    (kx, ky, orb_i, orb_j, iwn) → (iwn, k = kx * ny + ky, orb_i, orb_j)

    Args:
        block: Self-energy from SelfEnergyCalculator
        momentum_space_context: MomentumSpaceContext of a 2D mesh

    Returns:
        BaseTensor with labels ['iwn', 'k', 'orb_i', 'orb_j']

    Raises:
        ConfigurationError: If the mesh is not two-dimensional
        DimensionMismatchError: If the block does not match the mesh
    """
    _require_2d(momentum_space_context, "convert_self_energy_index_structure()")
    nx, ny = momentum_space_context.num_mesh_points
    if block.ndim != 5 or tuple(block.shape[:2]) != (nx, ny):
        raise DimensionMismatchError(
            f"Self-energy block has shape {tuple(block.shape)}, expected "
            f"({nx}, {ny}, n_orb, n_orb, n_iwn)"
        )

    F = block.shape[4]
    O = block.shape[2]
    flat = block.tensor.permute(4, 0, 1, 2, 3).reshape(F, nx * ny, O, O)

    return BaseTensor(
        tensor=flat.clone(),
        labels=["iwn", "k", "orb_i", "orb_j"],
        orbital_names=block.orbital_names,
        coordinates={k: v.clone() for k, v in block.coordinates.items()},
    )


def calculate_convergence_parameter(
    old: torch.Tensor, new: torch.Tensor, norm: str = "max"
) -> float:
    """
    Relative change between two Green's functions.

    Args:
        old: Previous Green's function
        new: Updated Green's function
        norm: 'max' for max|Δ|/max|old|, 'l2' for ||Δ||/||old||

    Returns:
        0.0 if nothing changed, inf if old vanishes but the difference does not

    Raises:
        ConfigurationError: If the norm is unknown
        DimensionMismatchError: If the tensors differ in size
    """
    if norm not in NORMS:
        raise ConfigurationError(
            format_error(
                "calculate_convergence_parameter()",
                f"Unknown norm '{norm}'.",
                f"Use one of {list(NORMS)}.",
            )
        )
    if old.shape != new.shape:
        raise DimensionMismatchError(
            f"Green's functions differ in shape: {tuple(old.shape)} vs {tuple(new.shape)}"
        )

    diff = (new - old).abs()
    if norm == "max":
        numerator = diff.max().item() if diff.numel() else 0.0
        denominator = old.abs().max().item() if old.numel() else 0.0
    else:
        numerator = torch.linalg.vector_norm(diff).item()
        denominator = torch.linalg.vector_norm(old.abs()).item()

    if numerator == 0.0:
        return 0.0
    if denominator == 0.0:
        return math.inf
    return numerator / denominator


class FLEX:
    """
    FLEX solver for a multi-orbital Hubbard-Kanamori model on a 2D mesh.

    Attributes:
        context: MomentumSpaceContext
        model: TightBindingModel
        state: Last completed FLEXState
        greens_function: Current G(k, iωₙ)
        bare_greens_function: G₀(k, iωₙ)
        self_energy: Last self-energy in flat layout
        convergence_history: Convergence parameter after every iteration
    """

    def __init__(
        self,
        momentum_space_context,
        model,
        beta: float,
        mu: float = 0.0,
        U: float = 0.0,
        J: float = 0.0,
        lower_fermionic_matsubara_energy_index: int = -1,
        upper_fermionic_matsubara_energy_index: int = 1,
        lower_bosonic_matsubara_energy_index: int = 0,
        upper_bosonic_matsubara_energy_index: int = 0,
        max_iterations: int = 1,
        norm: str = "max",
        tolerance: float = 1e-6,
        callback: Optional[Callable[[FLEXEvent], None]] = None,
        verbose: bool = False,
        num_workers: int = 1,
    ) -> None:
        """
        Initialize FLEX.

        Args:
            momentum_space_context: MomentumSpaceContext of a 2D mesh
            model: TightBindingModel matching the context's orbital count
            beta: Inverse temperature
            mu: Chemical potential, held fixed
            U: Intra-orbital Coulomb repulsion
            J: Hund's coupling
            lower_fermionic_matsubara_energy_index: Odd lower bound of the G window
            upper_fermionic_matsubara_energy_index: Odd upper bound of the G window
            lower_bosonic_matsubara_energy_index: Even lower bound of the χ window
            upper_bosonic_matsubara_energy_index: Even upper bound of the χ window
            max_iterations: Maximum number of self-consistency iterations
            norm: 'max' or 'l2'
            tolerance: Stop once the convergence parameter drops below this
            callback: Observer subscribed at construction
            verbose: Print iteration progress
            num_workers: Threads used for the bare susceptibility
        """
        if beta <= 0:
            raise ValueError(f"beta must be positive, got {beta}")

        self.context = momentum_space_context
        self.model = model
        self.beta = float(beta)
        self.mu = float(mu)
        self.U = U
        self.J = J
        self.verbose = verbose
        self.num_workers = num_workers

        self.lower_fermionic_matsubara_energy_index = lower_fermionic_matsubara_energy_index
        self.upper_fermionic_matsubara_energy_index = upper_fermionic_matsubara_energy_index
        self.lower_bosonic_matsubara_energy_index = lower_bosonic_matsubara_energy_index
        self.upper_bosonic_matsubara_energy_index = upper_bosonic_matsubara_energy_index
        self.max_iterations = max_iterations
        self.norm = norm
        self.tolerance = tolerance

        self._observers: List[Callable[[FLEXEvent], None]] = []
        if callback is not None:
            self.subscribe(callback)

        self.state = FLEXState.NOT_YET_STARTED
        self.iteration = 0
        self.convergence_parameter = math.inf
        self.convergence_history: List[float] = []

        self.bare_greens_function: Optional[BaseTensor] = None
        self.greens_function: Optional[BaseTensor] = None
        self.bare_susceptibility: Optional[SusceptibilityCalculator] = None
        self.rpa_susceptibility: Optional[RPASusceptibilityCalculator] = None
        self.spin_susceptibility: Optional[torch.Tensor] = None
        self.charge_susceptibility: Optional[torch.Tensor] = None
        self.interaction_vertex: Optional[BaseTensor] = None
        self.self_energy: Optional[BaseTensor] = None

    # Interaction parameters

    @property
    def Up(self) -> float:
        """Inter-orbital repulsion, U - 2J."""
        return self.U - 2 * self.J

    @property
    def Jp(self) -> float:
        """Pair hopping, equal to J."""
        return self.J

    # Validated settings

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @max_iterations.setter
    def max_iterations(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"max_iterations must be non-negative, got {value}")
        self._max_iterations = int(value)

    @property
    def norm(self) -> str:
        return self._norm

    @norm.setter
    def norm(self, value: str) -> None:
        if value not in NORMS:
            raise ConfigurationError(
                format_error(
                    "FLEX.norm",
                    f"Unknown norm '{value}'.",
                    f"Use one of {list(NORMS)}.",
                )
            )
        self._norm = value

    @property
    def tolerance(self) -> float:
        return self._tolerance

    @tolerance.setter
    def tolerance(self, value: float) -> None:
        if value < 0:
            raise ValueError(f"tolerance must be non-negative, got {value}")
        self._tolerance = float(value)

    @property
    def fermionic_indices(self) -> List[int]:
        """Odd Matsubara indices of the Green's function window."""
        return matsubara_indices(
            self.lower_fermionic_matsubara_energy_index,
            self.upper_fermionic_matsubara_energy_index,
            fermionic=True,
        )

    @property
    def bosonic_indices(self) -> List[int]:
        """Even Matsubara indices of the susceptibility window."""
        return matsubara_indices(
            self.lower_bosonic_matsubara_energy_index,
            self.upper_bosonic_matsubara_energy_index,
            fermionic=False,
        )

    # Observers

    def subscribe(self, observer: Callable[[FLEXEvent], None]) -> Callable[[], None]:
        """
        Register an observer called with a FLEXEvent after every transition.

        Returns:
            Callable that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _transition(self, state: FLEXState) -> None:
        self.state = state
        event = FLEXEvent(
            state=state,
            iteration=self.iteration,
            convergence_parameter=self.convergence_parameter,
            solver=self,
        )
        for observer in list(self._observers):
            observer(event)

    # Stages

    def _calculate_bare_greens_function(self) -> None:
        diagonalizer = BlockDiagonalizer(self.model, self.context)
        diagonalizer.run()
        self.bare_greens_function = BareGreensFunction().compute(
            diagonalizer,
            self.beta,
            lower=self.lower_fermionic_matsubara_energy_index,
            upper=self.upper_fermionic_matsubara_energy_index,
            mu=self.mu,
        )
        self.greens_function = self.bare_greens_function.clone()

    def _calculate_bare_susceptibility(self) -> None:
        self.bare_susceptibility = SusceptibilityCalculator(
            self.context,
            mode=SusceptibilityMode.MATSUBARA,
            energies=self.bosonic_indices,
            greens_function=self.greens_function,
            beta=self.beta,
        )
        self.bare_susceptibility.precompute(num_workers=self.num_workers)

    def _calculate_rpa_susceptibilities(self) -> None:
        O = self.context.num_orbitals
        M = len(self.bosonic_indices)
        self.rpa_susceptibility = RPASusceptibilityCalculator(
            self.bare_susceptibility, U=self.U, J=self.J, Up=self.Up, Jp=self.Jp
        )

        spin = []
        charge = []
        for q in range(self.context.num_k):
            chi_s = self.rpa_susceptibility.calculate_spin_rpa_susceptibilities(q).tensor
            chi_c = self.rpa_susceptibility.calculate_charge_rpa_susceptibilities(q).tensor
            spin.append(chi_s.reshape(M, O * O, O * O))
            charge.append(chi_c.reshape(M, O * O, O * O))

        # (iwn, k, pair_i, pair_j)
        self.spin_susceptibility = torch.stack(spin, dim=1)
        self.charge_susceptibility = torch.stack(charge, dim=1)

    def _calculate_interaction_vertex(self) -> None:
        vertex = ElectronFluctuationVertex(
            self.context.num_orbitals, U=self.U, J=self.J, Up=self.Up, Jp=self.Jp
        )
        self.interaction_vertex = vertex.calculate(
            self.spin_susceptibility, self.charge_susceptibility
        )

    def _calculate_self_energy(self) -> None:
        calculator = SelfEnergyCalculator(
            self.context, self.fermionic_indices, self.bosonic_indices, self.beta
        )
        block = calculator.calculate(self.greens_function, self.interaction_vertex)
        self.self_energy = convert_self_energy_index_structure(block, self.context)

    def _calculate_greens_function(self) -> None:
        self.greens_function = InteractingGreensFunction().compute(
            self.bare_greens_function, self.self_energy
        )

    def calculate_convergence_parameter(self, old: BaseTensor, new: BaseTensor) -> float:
        """Relative change between two Green's functions in the current norm."""
        return calculate_convergence_parameter(old.tensor, new.tensor, self._norm)

    def run(self) -> BaseTensor:
        """
        Run the self-consistency loop.

        Returns:
            Final Green's function, labels ['iwn', 'k', 'orb_i', 'orb_j']

        Raises:
            ConfigurationError: If the mesh is not two-dimensional
        """
        _require_2d(self.context, "FLEX.run()")

        self.iteration = 0
        self.convergence_parameter = math.inf
        self.convergence_history = []

        self._calculate_bare_greens_function()
        self._transition(FLEXState.GREENS_FUNCTION_CALCULATED)

        if self.verbose:
            print(
                f"FLEX: U={self.U}, J={self.J}, beta={self.beta}, mu={self.mu}, "
                f"{len(self.fermionic_indices)} fermionic / {len(self.bosonic_indices)} bosonic "
                f"frequencies, {self.context.num_k} k-points"
            )

        for iteration in range(self._max_iterations):
            self.iteration = iteration + 1

            self._calculate_bare_susceptibility()
            self._transition(FLEXState.BARE_SUSCEPTIBILITY_CALCULATED)

            self._calculate_rpa_susceptibilities()
            self._transition(FLEXState.RPA_SUSCEPTIBILITIES_CALCULATED)

            self._calculate_interaction_vertex()
            self._transition(FLEXState.INTERACTION_VERTEX_CALCULATED)

            self._calculate_self_energy()
            self._transition(FLEXState.SELF_ENERGY_CALCULATED)

            old = self.greens_function
            self._calculate_greens_function()
            self.convergence_parameter = self.calculate_convergence_parameter(
                old, self.greens_function
            )
            self.convergence_history.append(self.convergence_parameter)
            self._transition(FLEXState.GREENS_FUNCTION_CALCULATED)

            if self.verbose:
                print(
                    f"Iteration {self.iteration}: |ΔG| ({self._norm}) = "
                    f"{self.convergence_parameter:.6e}"
                )

            if self.convergence_parameter < self._tolerance:
                if self.verbose:
                    print(f"Converged in {self.iteration} iterations")
                break

        return self.greens_function

    def __repr__(self) -> str:
        return (
            f"FLEX(U={self.U}, J={self.J}, beta={self.beta}, mu={self.mu}, "
            f"state={self.state.name})"
        )


__all__ = [
    "FLEXState",
    "FLEXEvent",
    "FLEX",
    "calculate_convergence_parameter",
    "convert_self_energy_index_structure",
]
