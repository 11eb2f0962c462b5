"""Tests for MomentumSpaceContext."""

import pytest
import torch

from spectralTensor.lattice import MomentumSpaceContext


@pytest.fixture
def rectangular_context(square_lattice):
    return MomentumSpaceContext(square_lattice, [3, 5])


def test_mesh_is_row_major(rectangular_context):
    assert rectangular_context.num_k == 15
    assert rectangular_context.to_multi_index(7) == (1, 2)
    assert rectangular_context.to_linear_index((1, 2)) == 7
    assert torch.allclose(rectangular_context.mesh[7], torch.tensor([1 / 3, 2 / 5], dtype=torch.float64))


def test_k_index_lookup_by_coordinate(square_context, rectangular_context):
    assert square_context.get_k_index([0.25, 0.5]) == 6
    assert square_context.get_k_index([1.25, -0.5]) == 6, "Coordinates fold back into the first zone"
    assert square_context.get_k_index(torch.tensor([0.26, 0.49])) == 6

    for k, point in enumerate(rectangular_context.mesh):
        assert rectangular_context.get_k_index(point) == k


def test_tables_agree_with_scalar_arithmetic(rectangular_context):
    plus = rectangular_context.addition_table()
    minus = rectangular_context.subtraction_table()
    assert plus.shape == minus.shape == (15, 15)

    for k in range(15):
        for q in range(15):
            assert plus[k, q] == rectangular_context.add(k, q)
            assert minus[k, q] == rectangular_context.subtract(k, q)
            assert rectangular_context.subtract(rectangular_context.add(k, q), q) == k

    # (2, 4) + (1, 3) wraps to (0, 2).
    assert rectangular_context.add(14, 8) == 2
