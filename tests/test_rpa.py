"""Tests for RPA dressing of the bare susceptibility."""

import pytest
import torch

from spectralTensor.manybody import (
    RPASusceptibilityCalculator,
    SusceptibilityCalculator,
    SusceptibilityMode,
    charge_vertex,
    spin_vertex,
)

BETA = 2.0


@pytest.fixture
def bare(square_model, square_context):
    return SusceptibilityCalculator(
        square_context,
        mode=SusceptibilityMode.LINDHARD,
        energies=[0.0, 0.4 + 0.05j],
        model=square_model,
        beta=BETA,
    )


@pytest.fixture
def bare_two_orbital(two_orbital_model, two_orbital_context):
    return SusceptibilityCalculator(
        two_orbital_context,
        mode=SusceptibilityMode.LINDHARD,
        energies=[0.0],
        model=two_orbital_model,
        beta=BETA,
    )


def test_vertex_patterns():
    Us = spin_vertex(2, U=1.0, J=0.1, Up=0.8, Jp=0.2)
    Uc = charge_vertex(2, U=1.0, J=0.1, Up=0.8, Jp=0.2)

    # Row a * 2 + b, column c * 2 + d.
    assert complex(Us[0, 0]) == 1.0
    assert complex(Us[1, 1]) == pytest.approx(0.8)  # a = c = 0, b = d = 1
    assert complex(Us[0, 3]) == pytest.approx(0.1)  # a = b = 0, c = d = 1
    assert complex(Us[1, 2]) == pytest.approx(0.2)  # a = d = 0, b = c = 1
    assert complex(Uc[1, 1]) == pytest.approx(-0.8 + 0.2)
    assert complex(Uc[0, 3]) == pytest.approx(1.6 - 0.1)
    assert complex(Uc[1, 2]) == pytest.approx(0.2)


def test_zero_interaction_reproduces_bare(bare_two_orbital):
    rpa = RPASusceptibilityCalculator(bare_two_orbital)
    for q in (0, 5):
        chi0 = bare_two_orbital.calculate_susceptibilities(q).tensor
        assert torch.allclose(rpa.calculate_spin_rpa_susceptibilities(q).tensor, chi0)
        assert torch.allclose(rpa.calculate_charge_rpa_susceptibilities(q).tensor, chi0)
        assert torch.allclose(rpa.calculate_rpa_susceptibility(q, (0, 1, 1, 0)), chi0[:, 0, 1, 1, 0])


def test_single_orbital_closed_form(bare):
    rpa = RPASusceptibilityCalculator(bare, U=0.5)
    chi0 = bare.calculate_susceptibility(2, (0, 0, 0, 0))

    assert torch.allclose(rpa.calculate_spin_rpa_susceptibility(2, (0, 0, 0, 0)), chi0 / (1 - 0.5 * chi0))
    assert torch.allclose(rpa.calculate_charge_rpa_susceptibility(2, (0, 0, 0, 0)), chi0 / (1 + 0.5 * chi0))


def test_changing_interaction_clears_cache(bare):
    rpa = RPASusceptibilityCalculator(bare, U=0.2)
    before = rpa.calculate_spin_rpa_susceptibility(0, (0, 0, 0, 0))
    assert torch.equal(before, rpa.calculate_spin_rpa_susceptibility(0, (0, 0, 0, 0)))

    rpa.U = 0.6
    after = rpa.calculate_spin_rpa_susceptibility(0, (0, 0, 0, 0))
    assert not torch.allclose(before, after), "Changing U must invalidate cached results"
    assert rpa.interaction_amplitudes == [(0.6 + 0j, (0, 0, 0, 0))]


def test_general_vertex_defaults_to_spin_pattern(bare_two_orbital):
    rpa = RPASusceptibilityCalculator(bare_two_orbital, U=0.5, J=0.05, Up=0.4, Jp=0.05)
    assert torch.allclose(
        rpa.calculate_rpa_susceptibility(1, (0, 0, 1, 1)),
        rpa.calculate_spin_rpa_susceptibility(1, (0, 0, 1, 1)),
    )

    rpa.interaction_amplitudes = [(0.5, (0, 0, 0, 0))]
    assert rpa.interaction_amplitudes == [(0.5, (0, 0, 0, 0))]
    assert not torch.allclose(
        rpa.calculate_rpa_susceptibility(1, (0, 0, 0, 0)),
        rpa.calculate_spin_rpa_susceptibility(1, (0, 0, 0, 0)),
    )


def test_bare_energy_change_propagates(bare):
    rpa = RPASusceptibilityCalculator(bare, U=0.3)
    assert rpa.calculate_charge_rpa_susceptibility(1, (0, 0, 0, 0)).shape == (2,)

    bare.energies = [0.1j]
    value = rpa.calculate_charge_rpa_susceptibility(1, (0, 0, 0, 0))
    assert value.shape == (1,), "RPA cache must follow the bare energies"

    rpa.energies = [0.0, 0.1j, 0.2j]
    assert rpa.calculate_spin_rpa_susceptibility(1, (0, 0, 0, 0)).shape == (3,)
