"""Analysis module: property extractors and DOS."""

from spectralTensor.analysis.extractor import (
    PropertyExtractor,
    SpinPolarizedLDOSCallback,
    ldos_callback,
)
from spectralTensor.analysis.chebyshev import ChebyshevPropertyExtractor
from spectralTensor.analysis.diagonalization import DiagonalizationPropertyExtractor
from spectralTensor.analysis.dos import DOSCalculator

__all__ = [
    "PropertyExtractor",
    "SpinPolarizedLDOSCallback",
    "ldos_callback",
    "ChebyshevPropertyExtractor",
    "DiagonalizationPropertyExtractor",
    "DOSCalculator",
]
