"""Lattice module: lattices, models and momentum meshes."""

from spectralTensor.lattice.model import BravaisLattice, Hopping, TightBindingModel, Model
from spectralTensor.lattice.bzone import generate_kmesh
from spectralTensor.lattice.momentum import MomentumSpaceContext

__all__ = [
    "BravaisLattice",
    "Hopping",
    "TightBindingModel",
    "Model",
    "generate_kmesh",
    "MomentumSpaceContext",
]
