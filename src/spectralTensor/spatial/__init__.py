"""Spatial module: extended basis states and the state partition tree."""

from spectralTensor.spatial.states import AbstractState, BasicState, StateSet
from spectralTensor.spatial.statetree import StateTreeNode
from spectralTensor.spatial.factory import create_model

__all__ = [
    "AbstractState",
    "BasicState",
    "StateSet",
    "StateTreeNode",
    "create_model",
]
