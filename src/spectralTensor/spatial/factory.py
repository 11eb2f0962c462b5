"""Build real-space models from sets of spatially extended states."""

from typing import Any, Optional

from spectralTensor.core.errors import DimensionMismatchError, format_error
from spectralTensor.lattice.model import Model
from spectralTensor.spatial.states import StateSet
from spectralTensor.spatial.statetree import StateTreeNode


def create_model(
    state_set: StateSet,
    operator: Any = None,
    state_tree: Optional[StateTreeNode] = None,
) -> Model:
    """
    Construct a Model with amplitudes H[bra, ket] = <bra|operator|ket>.

    Without a state tree every pair of states is evaluated. With a tree only
    the bras whose extent sphere overlaps the ket's are evaluated, which
    turns the quadratic pair loop into a sequence of tree queries. Both
    produce the same Hamiltonian as long as matrix elements vanish between
    non-overlapping states.

    Every state gets its diagonal entry, so each state is part of the basis
    even when all of its matrix elements vanish.

    Args:
        state_set: Basis states
        operator: Operator handed to AbstractState.get_matrix_element()
        state_tree: Optional StateTreeNode holding the same states

    Returns:
        Constructed Model

    Raises:
        DimensionMismatchError: If two states have different dimensions
    """
    states = state_set.states
    if len(states) == 0:
        raise ValueError("Cannot create a model from an empty StateSet")

    dimension = states[0].dimension
    model = Model()
    for ket in states:
        if ket.dimension != dimension:
            raise DimensionMismatchError(
                format_error(
                    "create_model()",
                    f"Unable to create model from states with different dimensions. "
                    f"Expected dimension {dimension}, found state {ket!r} with "
                    f"dimension {ket.dimension}.",
                )
            )

        if state_tree is None:
            bras = states
        else:
            bras = state_tree.get_overlapping_states(ket.coordinates, ket.extent)

        for bra in bras:
            value = ket.get_matrix_element(bra, operator)
            if value != 0 or bra is ket:
                model.add_hopping(value, bra.hamiltonian_index, ket.hamiltonian_index)

    model.construct()
    return model


__all__ = ["create_model"]
