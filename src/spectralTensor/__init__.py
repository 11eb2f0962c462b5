"""
spectralTensor: PyTorch-based spectral and many-body toolkit.

Tight-binding models assembled from spatial states, Chebyshev (kernel
polynomial) Green's functions with local density-of-states extraction,
bare and RPA susceptibilities, and a FLEX self-consistency loop.
"""

from spectralTensor.core import BaseTensor

__version__ = "0.1.0"

__all__ = ["BaseTensor"]
