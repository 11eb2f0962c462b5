"""Many-body physics module for susceptibilities and FLEX.

This module provides tools for many-body calculations including:
- Matsubara energy windows
- Bare and interacting k-resolved Green's functions
- Bare susceptibilities (Lindhard and Matsubara kernels)
- RPA spin, charge and general susceptibilities
- FLEX interaction vertex, self-energy and self-consistency loop

LEVEL 4 of the architecture.
"""

from spectralTensor.manybody.preprocessing import (
    matsubara_indices,
    generate_matsubara_frequencies,
    matsubara_indices_from_energies,
    BareGreensFunction,
    InteractingGreensFunction,
)

from spectralTensor.manybody.susceptibility import (
    SusceptibilityMode,
    SusceptibilityCalculator,
    fermi_dirac,
)

from spectralTensor.manybody.rpa import (
    InteractionAmplitude,
    spin_vertex,
    charge_vertex,
    vertex_from_amplitudes,
    dress,
    RPASusceptibilityCalculator,
)

from spectralTensor.manybody.vertex import (
    ElectronFluctuationVertex,
    SelfEnergyCalculator,
)

from spectralTensor.manybody.flex import (
    FLEXState,
    FLEXEvent,
    FLEX,
    calculate_convergence_parameter,
    convert_self_energy_index_structure,
)

__all__ = [
    # Preprocessing
    "matsubara_indices",
    "generate_matsubara_frequencies",
    "matsubara_indices_from_energies",
    "BareGreensFunction",
    "InteractingGreensFunction",
    # Susceptibility
    "SusceptibilityMode",
    "SusceptibilityCalculator",
    "fermi_dirac",
    # RPA
    "InteractionAmplitude",
    "spin_vertex",
    "charge_vertex",
    "vertex_from_amplitudes",
    "dress",
    "RPASusceptibilityCalculator",
    # FLEX
    "ElectronFluctuationVertex",
    "SelfEnergyCalculator",
    "FLEXState",
    "FLEXEvent",
    "FLEX",
    "calculate_convergence_parameter",
    "convert_self_energy_index_structure",
]
