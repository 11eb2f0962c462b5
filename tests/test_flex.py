"""Tests for the FLEX loop, interaction vertex and self-energy."""

import math

import pytest
import torch

from spectralTensor.core import BaseTensor, ConfigurationError, DimensionMismatchError
from spectralTensor.lattice import BravaisLattice, MomentumSpaceContext, TightBindingModel
from spectralTensor.manybody import (
    FLEX,
    BareGreensFunction,
    ElectronFluctuationVertex,
    FLEXState,
    SelfEnergyCalculator,
    calculate_convergence_parameter,
    convert_self_energy_index_structure,
)
from spectralTensor.solvers import BlockDiagonalizer

BETA = 2.0


@pytest.fixture
def chain():
    lattice = BravaisLattice(
        cell_vectors=torch.eye(1, dtype=torch.float64),
        basis_positions=[torch.zeros(1, dtype=torch.float64)],
        num_orbitals=[1],
    )
    model = TightBindingModel(lattice)
    model.add_hopping(0, 0, [1], -1.0)
    return model, MomentumSpaceContext(lattice, 4)


def _flex(model, context, **kwargs):
    return FLEX(
        context,
        model,
        beta=BETA,
        lower_fermionic_matsubara_energy_index=-7,
        upper_fermionic_matsubara_energy_index=7,
        lower_bosonic_matsubara_energy_index=-4,
        upper_bosonic_matsubara_energy_index=4,
        **kwargs,
    )


def test_non_interacting_loop_runs_every_iteration(square_model, square_context):
    solver = _flex(square_model, square_context, U=0.0, J=0.0, max_iterations=5, tolerance=0.0)
    events = []
    solver.subscribe(events.append)
    G = solver.run()

    recomputed = [e for e in events if e.state == FLEXState.GREENS_FUNCTION_CALCULATED]
    assert len(recomputed) == 1 + 5, "Initial G plus one recompute per iteration"
    assert len(solver.convergence_history) == 5
    assert solver.convergence_history[0] < 1e-12
    assert solver.convergence_history[1:] == [0.0] * 4
    assert torch.allclose(G.tensor, solver.bare_greens_function.tensor)
    assert torch.all(solver.self_energy.tensor == 0)


def test_event_sequence_and_unsubscribe(square_model, square_context):
    received = []
    solver = _flex(square_model, square_context, U=0.5, callback=received.append)
    extra = []
    unsubscribe = solver.subscribe(extra.append)
    solver.run()

    assert [e.state for e in received] == [
        FLEXState.GREENS_FUNCTION_CALCULATED,
        FLEXState.BARE_SUSCEPTIBILITY_CALCULATED,
        FLEXState.RPA_SUSCEPTIBILITIES_CALCULATED,
        FLEXState.INTERACTION_VERTEX_CALCULATED,
        FLEXState.SELF_ENERGY_CALCULATED,
        FLEXState.GREENS_FUNCTION_CALCULATED,
    ]
    assert received[0].iteration == 0 and math.isinf(received[0].convergence_parameter)
    assert received[-1].iteration == 1
    assert received[-1].solver is solver
    assert len(extra) == len(received)

    unsubscribe()
    extra.clear()
    solver.run()
    assert extra == []


def test_interacting_loop_dresses_greens_function(two_orbital_model, two_orbital_context):
    solver = _flex(
        two_orbital_model, two_orbital_context, U=0.4, J=0.05, max_iterations=3, norm="l2"
    )
    G = solver.run()

    assert solver.Up == pytest.approx(0.3)
    assert solver.Jp == pytest.approx(0.05)
    assert G.shape == (8, 9, 2, 2)
    assert G.labels == ["iwn", "k", "orb_i", "orb_j"]
    assert torch.all(torch.isfinite(G.tensor.abs()))
    assert 1 <= len(solver.convergence_history) <= 3
    assert solver.convergence_history[0] > 0
    assert not torch.allclose(G.tensor, solver.bare_greens_function.tensor)


def test_early_exit_on_tolerance(square_model, square_context):
    solver = _flex(square_model, square_context, max_iterations=10, tolerance=1e-6)
    solver.run()
    assert len(solver.convergence_history) == 1


def test_convergence_parameter_norms():
    G = torch.randn(3, 4, 2, 2, dtype=torch.complex128)
    for norm in ("max", "l2"):
        assert calculate_convergence_parameter(G, G.clone(), norm) == 0.0

    shifted = G.clone()
    shifted[0, 0, 0, 0] += 0.5
    assert calculate_convergence_parameter(G, shifted, "max") == pytest.approx(
        0.5 / G.abs().max().item()
    )
    assert calculate_convergence_parameter(G, shifted, "l2") == pytest.approx(
        0.5 / torch.linalg.vector_norm(G).item()
    )

    zero = torch.zeros_like(G)
    assert calculate_convergence_parameter(zero, zero, "max") == 0.0
    assert math.isinf(calculate_convergence_parameter(zero, G, "l2"))


def test_convergence_parameter_errors():
    G = torch.zeros(2, 2, dtype=torch.complex128)
    with pytest.raises(ConfigurationError):
        calculate_convergence_parameter(G, G, "sup")
    with pytest.raises(DimensionMismatchError):
        calculate_convergence_parameter(G, torch.zeros(3, dtype=torch.complex128))


def test_unknown_norm_raises(square_model, square_context):
    with pytest.raises(ConfigurationError):
        _flex(square_model, square_context, norm="sup")
    solver = _flex(square_model, square_context)
    with pytest.raises(ConfigurationError):
        solver.norm = "linf"


def test_non_2d_mesh_raises(chain):
    model, context = chain
    solver = FLEX(context, model, beta=BETA)
    with pytest.raises(ConfigurationError):
        solver.run()
    assert solver.state == FLEXState.NOT_YET_STARTED

    block = BaseTensor(torch.zeros(4, 1, 1, 1, dtype=torch.complex128), ["kx", "orb_i", "orb_j", "iwn"])
    with pytest.raises(ConfigurationError):
        convert_self_energy_index_structure(block, context)


def test_reindex_preserves_values(two_orbital_lattice):
    context = MomentumSpaceContext(two_orbital_lattice, [3, 4])
    block = torch.randn(3, 4, 2, 2, 5, dtype=torch.complex128)
    flat = convert_self_energy_index_structure(
        BaseTensor(block, ["kx", "ky", "orb_i", "orb_j", "iwn"]), context
    )

    assert flat.shape == (5, 12, 2, 2)
    for kx in range(3):
        for ky in range(4):
            for n in range(5):
                assert torch.equal(flat.tensor[n, kx * 4 + ky], block[kx, ky, :, :, n])


def test_vertex_single_orbital():
    chi_s = torch.full((2, 3, 1, 1), 0.2, dtype=torch.complex128)
    chi_c = torch.full((2, 3, 1, 1), 0.1, dtype=torch.complex128)
    V = ElectronFluctuationVertex(1, U=2.0).calculate(chi_s, chi_c)

    assert V.labels == ["iwn", "k", "pair_i", "pair_j"]
    assert torch.allclose(V.tensor, torch.full_like(chi_s, 1.5 * 4 * 0.2 + 0.5 * 4 * 0.1))

    with pytest.raises(DimensionMismatchError):
        ElectronFluctuationVertex(2, U=2.0).calculate(chi_s, chi_c)


def test_self_energy_with_local_static_vertex(square_model, square_context):
    diagonalizer = BlockDiagonalizer(square_model, square_context)
    diagonalizer.run()
    G = BareGreensFunction().compute(diagonalizer, BETA, lower=-5, upper=5)

    v = 0.7
    vertex = BaseTensor(
        torch.full((1, 16, 1, 1), v, dtype=torch.complex128), ["iwn", "k", "pair_i", "pair_j"]
    )
    block = SelfEnergyCalculator(square_context, [-5, -3, -1, 1, 3, 5], [0], BETA).calculate(G, vertex)

    assert block.labels == ["kx", "ky", "orb_i", "orb_j", "iwn"]
    assert block.shape == (4, 4, 1, 1, 6)
    # Σ(k, n) = T v <G(n)>_k for a momentum-independent vertex.
    local = G.tensor[:, :, 0, 0].mean(dim=1)
    expected = (v / BETA) * local
    flat = convert_self_energy_index_structure(block, square_context)
    for k in range(16):
        assert torch.allclose(flat.tensor[:, k, 0, 0], expected)
