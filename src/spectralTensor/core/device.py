"""Host and accelerator device selection.

The Chebyshev engine and the many-body solvers compute on torch devices.
The CPU is the host and the default everywhere. An accelerator (CUDA) is
opt-in through the solver backends. When it is requested but not present the
host is used instead and a warning is printed, which keeps accelerator code
paths runnable on any machine.

LEVEL 1 utility module.
"""

from typing import Optional, Union

import torch

DeviceLike = Union[str, torch.device, None]


def get_device(device: DeviceLike = None) -> torch.device:
    """Resolve a device request to a usable torch.device.

    Args:
        device: None for the host, a torch.device, or a string such as
            'cpu', 'cuda' or 'cuda:1'

    Returns:
        The requested device, or the host if a CUDA device was requested
        but CUDA is not available

    Raises:
        ValueError: If the device type is neither 'cpu' nor 'cuda'

    Examples:
        >>> get_device()
        device(type='cpu')
        >>> get_device("cuda")  # host plus a warning on machines without a GPU
    """
    if device is None:
        return torch.device("cpu")

    try:
        resolved = torch.device(device)
    except RuntimeError as e:
        raise ValueError(f"Invalid device: {device!r}. Use 'cpu', 'cuda' or 'cuda:N'") from e

    if resolved.type not in ("cpu", "cuda"):
        raise ValueError(f"Unsupported device type '{resolved.type}'. Use 'cpu' or 'cuda'")

    if resolved.type == "cuda" and not torch.cuda.is_available():
        print(f"Warning: {resolved} requested but CUDA is not available, using CPU")
        return torch.device("cpu")

    return resolved


def get_accelerator_device() -> torch.device:
    """Device used by accelerator backends: CUDA if present, else the host."""
    return get_device("cuda")


def is_cuda_available() -> bool:
    """Return True if a CUDA accelerator can be used."""
    return torch.cuda.is_available()


__all__ = ["DeviceLike", "get_device", "get_accelerator_device", "is_cuda_available"]
