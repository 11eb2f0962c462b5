"""Shared fixtures for the spectralTensor test suite."""

import torch
import pytest

from spectralTensor.lattice import BravaisLattice, MomentumSpaceContext, Model, TightBindingModel


@pytest.fixture
def two_site_model():
    """Two sites coupled by a unit hopping, eigenvalues -1 and +1."""
    model = Model()
    model.add_hopping(1.0, (0,), (1,), add_hermitian=True)
    model.construct()
    return model


@pytest.fixture
def spinful_chain():
    """Three-site open chain with a spin subindex, indices (x, spin)."""
    model = Model()
    for x in range(3):
        for spin in range(2):
            model.add_hopping(0.1 * (x - 1), (x, spin), (x, spin))
            if x + 1 < 3:
                model.add_hopping(-1.0, (x + 1, spin), (x, spin), add_hermitian=True)
    model.construct()
    return model


@pytest.fixture
def square_lattice():
    """Single-orbital square lattice."""
    return BravaisLattice(
        cell_vectors=torch.eye(2, dtype=torch.float64),
        basis_positions=[torch.zeros(2, dtype=torch.float64)],
        num_orbitals=[1],
    )


@pytest.fixture
def square_model(square_lattice):
    """Nearest-neighbour square lattice, ε(k) = -2t (cos kx + cos ky)."""
    model = TightBindingModel(square_lattice)
    model.add_hopping(0, 0, [1, 0], -1.0)
    model.add_hopping(0, 0, [0, 1], -1.0)
    return model


@pytest.fixture
def square_context(square_lattice):
    return MomentumSpaceContext(square_lattice, 4)


@pytest.fixture
def two_orbital_lattice():
    """Square lattice with two orbitals on one site."""
    return BravaisLattice(
        cell_vectors=torch.eye(2, dtype=torch.float64),
        basis_positions=[torch.zeros(2, dtype=torch.float64)],
        num_orbitals=[2],
    )


@pytest.fixture
def two_orbital_model(two_orbital_lattice):
    model = TightBindingModel(two_orbital_lattice, orbital_labels=["a", "b"])
    model.add_hopping("a", "a", [1, 0], -1.0)
    model.add_hopping("a", "a", [0, 1], -1.0)
    model.add_hopping("b", "b", [1, 0], -0.5)
    model.add_hopping("b", "b", [0, 1], -0.5)
    model.add_hopping("a", "b", [0, 0], 0.2)
    return model


@pytest.fixture
def two_orbital_context(two_orbital_lattice):
    return MomentumSpaceContext(two_orbital_lattice, 3)
