"""Tests for device selection."""

import pytest
import torch

from spectralTensor.core import BaseTensor, get_accelerator_device, get_device, is_cuda_available
from spectralTensor.solvers import AcceleratorBackend, HostBackend


def test_host_is_default():
    assert get_device() == torch.device("cpu")
    assert get_device(torch.device("cpu")) == torch.device("cpu")
    assert HostBackend().device == torch.device("cpu")


def test_accelerator_falls_back_to_host():
    expected = "cuda" if is_cuda_available() else "cpu"
    assert get_accelerator_device().type == expected
    assert get_device("cuda").type == expected
    assert AcceleratorBackend().device.type == expected


def test_invalid_device_raises():
    with pytest.raises(ValueError):
        get_device("tpu-but-not-really")
    with pytest.raises(ValueError):
        get_device("meta")


def test_base_tensor_moves_with_its_coordinates():
    energies = torch.linspace(-1.0, 1.0, 5, dtype=torch.float64)
    host = BaseTensor(
        tensor=torch.arange(10, dtype=torch.complex128).reshape(2, 5),
        labels=["index", "E"],
        coordinates={"E": energies},
    )
    device = get_accelerator_device()

    moved = host.to(device)
    assert moved.device.type == device.type
    assert moved.coordinates["E"].device.type == device.type
    assert moved.labels == host.labels

    back = moved.to(torch.device("cpu"))
    assert torch.equal(back.tensor, host.tensor)
    assert torch.equal(back.coordinates["E"], energies)
