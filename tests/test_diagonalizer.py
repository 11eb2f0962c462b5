"""Tests for Diagonalizer and BlockDiagonalizer."""

import math

import pytest
import torch

from spectralTensor.core import ConfigurationError, DimensionMismatchError
from spectralTensor.lattice import Model, TightBindingModel
from spectralTensor.solvers import BlockDiagonalizer, Diagonalizer


def test_two_site_eigenvalues(two_site_model):
    solver = Diagonalizer(two_site_model)
    solver.run()

    expected = torch.tensor([-1.0, 1.0], dtype=torch.float64)
    assert torch.allclose(solver.eigenvalues, expected), "Eigenvalues should be -1 and +1"

    # Bonding state is symmetric, antibonding antisymmetric.
    a0 = solver.get_amplitude(0, (0,))
    a1 = solver.get_amplitude(0, (1,))
    assert abs(a0) == pytest.approx(1 / math.sqrt(2))
    assert (a0 * a1.conjugate()).real == pytest.approx(-0.5)
    b0 = solver.get_amplitude(1, (0,))
    b1 = solver.get_amplitude(1, (1,))
    assert (b0 * b1.conjugate()).real == pytest.approx(0.5)


def test_unconstructed_model_raises():
    model = Model()
    model.add_hopping(1.0, (0,), (1,), add_hermitian=True)
    with pytest.raises(ConfigurationError):
        Diagonalizer(model)


def test_eigenvalues_before_run_raise(two_site_model):
    solver = Diagonalizer(two_site_model)
    with pytest.raises(ConfigurationError):
        solver.eigenvalues


def test_square_lattice_bands(square_model, square_context):
    solver = BlockDiagonalizer(square_model, square_context)
    solver.run()

    k = 2 * math.pi * square_context.mesh
    expected = -2 * (torch.cos(k[:, 0]) + torch.cos(k[:, 1]))
    assert solver.eigenvalues.shape == (16, 1)
    assert torch.allclose(solver.eigenvalues[:, 0], expected)
    assert solver.get_eigenvalue(0, 0) == pytest.approx(-4.0)


def test_block_orbital_mismatch_raises(square_model, two_orbital_context):
    with pytest.raises(ConfigurationError):
        BlockDiagonalizer(square_model, two_orbital_context)


def test_hk_is_hermitian_with_labelled_orbitals(two_orbital_model, two_orbital_context):
    Hk = two_orbital_model.build_Hk(two_orbital_context.mesh).tensor
    assert torch.allclose(Hk, Hk.conj().transpose(-1, -2))
    # Gamma point: a band -4, b band -2, mixed by the on-site 0.2.
    assert torch.allclose(Hk[0], torch.tensor([[-4.0, 0.2], [0.2, -2.0]], dtype=torch.complex128))


def test_onsite_term_is_not_doubled(square_lattice):
    model = TightBindingModel(square_lattice)
    model.add_hopping(0, 0, [0, 0], 0.5)
    assert len(model.hoppings) == 1
    Hk = model.build_Hk(torch.zeros((1, 2), dtype=torch.float64)).tensor
    assert complex(Hk[0, 0, 0]) == pytest.approx(0.5)


def test_tight_binding_rejects_bad_input(square_lattice):
    with pytest.raises(DimensionMismatchError):
        TightBindingModel(square_lattice, orbital_labels=["a", "b"])
    model = TightBindingModel(square_lattice, orbital_labels=["a"])
    with pytest.raises(ConfigurationError):
        model.add_hopping("z", "a", [1, 0], -1.0)
    with pytest.raises(DimensionMismatchError):
        model.add_hopping("a", "a", [1, 0, 0], -1.0)


def test_basis_indices_round_trip(spinful_chain):
    indices = [spinful_chain.get_physical_index(n) for n in range(spinful_chain.basis_size)]

    assert indices == sorted(indices)
    assert indices[0] == (0, 0) and indices[-1] == (2, 1)
    for n, index in enumerate(indices):
        assert spinful_chain.get_basis_index(index) == n
