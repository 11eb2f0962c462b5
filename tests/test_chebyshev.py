"""Tests for the Chebyshev Green's function engine."""

import pytest
import torch

from spectralTensor.analysis import ChebyshevPropertyExtractor, DiagonalizationPropertyExtractor
from spectralTensor.core import ConfigurationError, DimensionMismatchError
from spectralTensor.solvers import (
    AcceleratorBackend,
    ChebyshevSolver,
    Diagonalizer,
    GreensFunctionType,
    HostBackend,
    energy_grid,
    jackson_kernel,
)

NUM_COEFFICIENTS = 500
RESOLUTION = 600
LOWER = -1.5
UPPER = 1.5


@pytest.fixture
def solver(two_site_model):
    return ChebyshevSolver(two_site_model, scale_factor=2.0)


def _peak_positions(energies, ldos):
    negative = energies < 0
    e_low = energies[negative][torch.argmax(ldos[negative])]
    e_high = energies[~negative][torch.argmax(ldos[~negative])]
    return float(e_low), float(e_high)


def test_jackson_kernel():
    g = jackson_kernel(100)
    assert g.shape == (100,)
    assert g[0].item() == pytest.approx(1.0)
    assert torch.all(g[1:] <= g[:-1]), "Jackson factors decrease monotonically"


def test_energy_grid_excludes_upper_bound():
    grid = energy_grid(4, -1.0, 1.0)
    assert torch.allclose(grid, torch.tensor([-1.0, -0.5, 0.0, 0.5], dtype=torch.float64))


def test_first_coefficients(solver):
    mu = solver.calculate_coefficients([(0,), (1,)], (0,), 4)
    # H~ = H / 2: μ_0 = δ, μ_1 = <to|H~|0>, μ_2 = 2<to|H~²|0> - δ
    expected = torch.tensor(
        [[1.0, 0.0, -0.5, 0.0], [0.0, 0.5, 0.0, -1.0]], dtype=torch.complex128
    )
    assert torch.allclose(mu, expected)


def test_ldos_peaks_at_eigenvalues(solver):
    with ChebyshevPropertyExtractor(
        solver, NUM_COEFFICIENTS, RESOLUTION, lower_bound=LOWER, upper_bound=UPPER
    ) as extractor:
        ldos = extractor.calculate_ldos((0,), (2,))

    energies = ldos.coordinates["E"]
    e_low, e_high = _peak_positions(energies, ldos.tensor[0])
    assert e_low == pytest.approx(-1.0, abs=0.02)
    assert e_high == pytest.approx(1.0, abs=0.02)

    weight = torch.trapezoid(ldos.tensor[0], energies).item()
    assert weight == pytest.approx(1.0, abs=0.05), "LDOS should integrate to one state"


def test_matches_diagonalization_peaks(solver, two_site_model):
    chebyshev = ChebyshevPropertyExtractor(
        solver, NUM_COEFFICIENTS, RESOLUTION, lower_bound=LOWER, upper_bound=UPPER
    )
    diagonalizer = Diagonalizer(two_site_model)
    diagonalizer.run()
    exact = DiagonalizationPropertyExtractor(
        diagonalizer, (LOWER, UPPER), RESOLUTION, broadening=0.02
    )

    energies = chebyshev.get_energies()
    assert torch.allclose(energies, exact.get_energies())
    for site in range(2):
        cheb_peaks = _peak_positions(energies, chebyshev.calculate_ldos((site,), (2,)).tensor[0])
        exact_peaks = _peak_positions(energies, exact.calculate_ldos((site,), (2,)).tensor[0])
        assert cheb_peaks == pytest.approx(exact_peaks, abs=0.02)


def test_lookup_table_matches_closed_form(solver):
    mu = solver.calculate_coefficients([(0,)], (0,), NUM_COEFFICIENTS)[0]
    solver.generate_lookup_table(NUM_COEFFICIENTS, RESOLUTION, LOWER, UPPER)

    from_table = solver.generate_greens_function(mu)
    closed_form = solver.generate_greens_function(
        mu, energy_resolution=RESOLUTION, lower_bound=LOWER, upper_bound=UPPER
    )
    assert torch.allclose(from_table, closed_form)


def test_lookup_table_is_reused(solver):
    table = solver.generate_lookup_table(NUM_COEFFICIENTS, RESOLUTION, LOWER, UPPER)
    assert solver.generate_lookup_table(NUM_COEFFICIENTS, RESOLUTION, LOWER, UPPER) is table
    solver.destroy_lookup_table()
    assert solver.lookup_table is None


def test_greens_function_types(solver):
    mu = solver.calculate_coefficients([(0,)], (0,), 200)[0]
    solver.generate_lookup_table(200, 300, LOWER, UPPER)

    retarded = solver.generate_greens_function(mu, GreensFunctionType.RETARDED)
    advanced = solver.generate_greens_function(mu, GreensFunctionType.ADVANCED)
    principal = solver.generate_greens_function(mu, GreensFunctionType.PRINCIPAL)
    non_principal = solver.generate_greens_function(mu, GreensFunctionType.NON_PRINCIPAL)

    assert torch.allclose(advanced, retarded.conj())
    assert torch.allclose(principal, retarded.real.to(torch.complex128))
    assert torch.allclose(non_principal, 1j * retarded.imag)


def test_host_and_accelerator_agree(solver):
    host = solver.calculate_coefficients([(0,), (1,)], (1,), 300, backend=HostBackend())
    accelerator = solver.calculate_coefficients(
        [(0,), (1,)], (1,), 300, backend=AcceleratorBackend()
    )
    assert torch.allclose(host, accelerator)

    on_host = ChebyshevPropertyExtractor(
        solver, 300, 400, lower_bound=LOWER, upper_bound=UPPER
    )
    on_accelerator = ChebyshevPropertyExtractor(
        solver,
        300,
        400,
        use_gpu_to_calculate_coefficients=True,
        use_gpu_to_generate_greens_functions=True,
        lower_bound=LOWER,
        upper_bound=UPPER,
    )
    with on_accelerator:
        assert torch.allclose(
            on_host.calculate_greens_functions([(0,), (1,)], (0,)).tensor,
            on_accelerator.calculate_greens_functions([(0,), (1,)], (0,)).tensor,
        )
    assert not on_accelerator.accelerator_backend.has_lookup_table


def test_closed_form_extractor_matches_table(solver):
    with_table = ChebyshevPropertyExtractor(solver, 200, 300, lower_bound=LOWER, upper_bound=UPPER)
    without_table = ChebyshevPropertyExtractor(
        solver, 200, 300, use_lookup_table=False, lower_bound=LOWER, upper_bound=UPPER
    )
    assert torch.allclose(
        with_table.calculate_greens_function((1,), (1,)).tensor,
        without_table.calculate_greens_function((1,), (1,)).tensor,
    )


def test_bounds_outside_scale_raise(solver):
    with pytest.raises(ConfigurationError):
        solver.generate_lookup_table(100, 100, -2.5, 1.5)
    with pytest.raises(ConfigurationError):
        solver.generate_lookup_table(100, 100, 1.0, -1.0)
    with pytest.raises(ConfigurationError):
        ChebyshevPropertyExtractor(solver, 100, 100, lower_bound=-3.0, upper_bound=1.0)


def test_gpu_generation_requires_lookup_table(solver):
    with pytest.raises(ConfigurationError):
        ChebyshevPropertyExtractor(
            solver,
            100,
            100,
            use_gpu_to_generate_greens_functions=True,
            use_lookup_table=False,
            lower_bound=LOWER,
            upper_bound=UPPER,
        )


def test_missing_or_mismatched_table_raises(solver):
    mu = solver.calculate_coefficients([(0,)], (0,), 100)[0]
    with pytest.raises(ConfigurationError):
        solver.generate_greens_function(mu)
    with pytest.raises(ConfigurationError):
        HostBackend().generate_greens_function(mu)

    solver.generate_lookup_table(50, 100, LOWER, UPPER)
    with pytest.raises(DimensionMismatchError):
        solver.generate_greens_function(mu)
