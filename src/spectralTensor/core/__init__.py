"""Core module: BaseTensor, indices, caches, devices and errors."""

from spectralTensor.core.base import BaseTensor
from spectralTensor.core.datatree import IndexedDataTree
from spectralTensor.core.device import get_device, get_accelerator_device, is_cuda_available
from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError
from spectralTensor.core.index import (
    IDX_SUM_ALL,
    IDX_ALL,
    IDX_X,
    IDX_Y,
    IDX_Z,
    IDX_SPIN,
    Index,
    MultiIndexIterator,
    normalize_ranges,
    output_size,
)

__all__ = [
    "BaseTensor",
    "IndexedDataTree",
    "get_device",
    "get_accelerator_device",
    "is_cuda_available",
    "ConfigurationError",
    "DimensionMismatchError",
    "IDX_SUM_ALL",
    "IDX_ALL",
    "IDX_X",
    "IDX_Y",
    "IDX_Z",
    "IDX_SPIN",
    "Index",
    "MultiIndexIterator",
    "normalize_ranges",
    "output_size",
]
