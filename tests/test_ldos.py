"""Tests for LDOS, spin-polarized LDOS and density extraction."""

import math

import pytest
import torch

from spectralTensor.analysis import (
    ChebyshevPropertyExtractor,
    DiagonalizationPropertyExtractor,
    DOSCalculator,
)
from spectralTensor.core import IDX_ALL, IDX_SPIN, IDX_SUM_ALL, IDX_X, BaseTensor, ConfigurationError
from spectralTensor.solvers import ChebyshevSolver, Diagonalizer

RESOLUTION = 400


@pytest.fixture
def exact_chain(spinful_chain):
    diagonalizer = Diagonalizer(spinful_chain)
    diagonalizer.run()
    return DiagonalizationPropertyExtractor(diagonalizer, (-2.5, 2.5), RESOLUTION, broadening=0.05)


@pytest.fixture
def chebyshev_chain(spinful_chain):
    solver = ChebyshevSolver(spinful_chain, scale_factor=3.0)
    return ChebyshevPropertyExtractor(solver, 300, RESOLUTION, lower_bound=-2.5, upper_bound=2.5)


def test_single_index_pattern(exact_chain):
    ldos = exact_chain.calculate_ldos((1, 0), (3, 2))
    assert ldos.shape == (1, RESOLUTION)
    assert ldos.labels == ["index", "E"]
    assert torch.all(ldos.tensor > 0), "Lorentzian LDOS is positive everywhere"


def test_wildcard_rows_match_single_calls(chebyshev_chain):
    ldos = chebyshev_chain.calculate_ldos((IDX_X, 1), (3, 2))
    assert ldos.shape == (3, RESOLUTION)
    for x in range(3):
        single = chebyshev_chain.calculate_ldos((x, 1), (3, 2))
        assert torch.allclose(ldos.tensor[x], single.tensor[0]), f"Row {x} is misplaced"


def test_summed_axis_is_additive(exact_chain):
    resolved = exact_chain.calculate_ldos((IDX_ALL, IDX_ALL), (3, 2))
    summed = exact_chain.calculate_ldos((IDX_SUM_ALL, IDX_SUM_ALL), (3, 2))
    partial = exact_chain.calculate_ldos((IDX_ALL, IDX_SUM_ALL), (3, 2))

    assert resolved.shape == (6, RESOLUTION)
    assert summed.shape == (1, RESOLUTION)
    assert partial.shape == (3, RESOLUTION)
    assert torch.allclose(summed.tensor[0], resolved.tensor.sum(dim=0))
    assert torch.allclose(partial.tensor, resolved.tensor.reshape(3, 2, RESOLUTION).sum(dim=1))


def test_total_dos_counts_states(exact_chain):
    indices = [(x, s) for x in range(3) for s in range(2)]
    greens_functions = torch.stack(
        [exact_chain.calculate_greens_function(i, i).tensor for i in indices]
    )
    energies = exact_chain.get_energies()

    dos = DOSCalculator()
    omega, rho = dos.from_greens_function(
        BaseTensor(greens_functions, ["index", "E"], coordinates={"E": energies})
    )

    summed = exact_chain.calculate_ldos((IDX_SUM_ALL, IDX_SUM_ALL), (3, 2))
    assert torch.allclose(rho, summed.tensor[0])
    assert dos.integrate() == pytest.approx(6.0, abs=0.2)


def test_spin_polarized_ldos(exact_chain):
    sp_ldos = exact_chain.calculate_spin_polarized_ldos((IDX_X, IDX_SPIN), (3, 2))
    ldos_up = exact_chain.calculate_ldos((IDX_X, 0), (3, 2))
    ldos_down = exact_chain.calculate_ldos((IDX_X, 1), (3, 2))

    assert sp_ldos.shape == (3, RESOLUTION, 4)
    assert sp_ldos.labels == ["index", "E", "spin"]
    # Up-up and down-down sectors reproduce the LDOS, the model conserves spin.
    assert torch.allclose(-sp_ldos.tensor[:, :, 0].imag / math.pi, ldos_up.tensor)
    assert torch.allclose(-sp_ldos.tensor[:, :, 3].imag / math.pi, ldos_down.tensor)
    zeros = torch.zeros_like(sp_ldos.tensor[:, :, 1])
    assert torch.allclose(sp_ldos.tensor[:, :, 1], zeros, atol=1e-10)
    assert torch.allclose(sp_ldos.tensor[:, :, 2], zeros, atol=1e-10)


def test_spin_polarized_ldos_accumulates_over_summed_axis(exact_chain):
    summed = exact_chain.calculate_spin_polarized_ldos((IDX_SUM_ALL, IDX_SPIN), (3, 2))
    resolved = exact_chain.calculate_spin_polarized_ldos((IDX_X, IDX_SPIN), (3, 2))
    assert summed.shape == (1, RESOLUTION, 4)
    assert torch.allclose(summed.tensor[0], resolved.tensor.sum(dim=0))


def test_spin_polarized_ldos_requires_one_spin_axis(exact_chain):
    with pytest.raises(ConfigurationError):
        exact_chain.calculate_spin_polarized_ldos((IDX_X, 0), (3, 2))
    with pytest.raises(ConfigurationError):
        exact_chain.calculate_spin_polarized_ldos((IDX_SPIN, IDX_SPIN), (2, 2))


def test_density_of_two_site_model(two_site_model):
    diagonalizer = Diagonalizer(two_site_model)
    diagonalizer.run()
    extractor = DiagonalizationPropertyExtractor(diagonalizer, (-1.5, 1.5), 1200, broadening=0.01)

    density = extractor.calculate_density((IDX_ALL,), (2,), chemical_potential=0.0)
    assert density.shape == (2,)
    for n in range(2):
        assert density.tensor[n].item() == pytest.approx(0.5, abs=0.02)
