"""Periodic k-meshes over the Brillouin zone."""

from typing import List, Optional, Union
import torch


def generate_kmesh(
    lattice,
    nk: Union[int, List[int]],
    device: Optional[torch.device] = None,
) -> torch.Tensor:
    """
    Uniform mesh k_c = n_c / nk_c, n_c = 0, ..., nk_c - 1, in fractional units.

    Mesh points are enumerated row-major (last axis fastest), which is the
    linear k ordering used by MomentumSpaceContext and every k-resolved
    tensor in the package.

    Args:
        lattice: BravaisLattice
        nk: Points per axis, one int for all axes or one entry per axis
        device: Target device (default: CPU)

    Returns:
        Tensor of shape (prod(nk), dim)
    """
    sizes = [nk] * lattice.dim if isinstance(nk, int) else list(nk)
    if len(sizes) != lattice.dim:
        raise ValueError(f"Got {len(sizes)} mesh sizes for a {lattice.dim}D lattice")

    axes = [torch.arange(n, dtype=torch.float64, device=device) / n for n in sizes]
    return torch.cartesian_prod(*axes).reshape(-1, lattice.dim)
