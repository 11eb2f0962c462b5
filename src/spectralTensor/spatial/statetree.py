"""StateTreeNode: recursive spatial partition over basis states.

A generalized octree (quadtree in 2D, binary tree in 1D) used to find the
states whose extent spheres overlap a given sphere without testing every
pair. Each node is an axis-aligned hypercube given by a center and a half
size and owns up to 2^D children, created on first use. A local state is
stored on the deepest node whose cube still fully contains its extent
sphere, so query results are exact: no false negatives, no false positives.

Child n of a node has center

    center[c] + ((n >> c) % 2 - 1/2) * half_size

along every coordinate c, and half size half_size / 2.
"""

from typing import List, Optional, Sequence
import math

from spectralTensor.core.errors import ConfigurationError, DimensionMismatchError, format_error
from spectralTensor.spatial.states import AbstractState, StateSet

# Relative slack on box containment so bounds computed in floating point
# still contain the states they were computed from.
CONTAINMENT_TOLERANCE = 1e-12


class StateTreeNode:
    """Node of the spatial partition tree.

    Attributes:
        center: Center of the node's hypercube
        half_size: Half the side length of the hypercube
        max_depth: Number of child generations still allowed below this node
        states: States stored directly on this node
        children: Child nodes, empty until a state is pushed down
    """

    def __init__(self, center: Sequence[float], half_size: float, max_depth: int = 10) -> None:
        """
        Initialize StateTreeNode.

        Args:
            center: Center of the bounding hypercube
            half_size: Half side length of the bounding hypercube
            max_depth: Maximum number of child generations
        """
        if half_size < 0:
            raise ValueError(f"half_size must be non-negative, got {half_size}")
        if max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {max_depth}")

        self.center = [float(c) for c in center]
        self.half_size = float(half_size)
        self.max_depth = max_depth
        self.states: List[AbstractState] = []
        self.children: List["StateTreeNode"] = []

    @property
    def num_space_partitions(self) -> int:
        return 2 ** len(self.center)

    @classmethod
    def from_state_set(cls, state_set: StateSet, max_depth: int = 10) -> "StateTreeNode":
        """
        Build a tree whose root box bounds every local state, then insert all states.

        The bounding cube is centered on the union of the extent spheres of
        all finite-extent states and padded by a relative 1e-12 so that
        rounding never excludes the outermost state. Non-local states are
        ignored for the bounds. If no state has a finite extent, the root is
        a box of half size 1e-12 at the origin.

        Args:
            state_set: States to insert
            max_depth: Maximum number of child generations

        Raises:
            ValueError: If the state set is empty
            DimensionMismatchError: If the states have different dimensions
        """
        states = state_set.states
        if len(states) == 0:
            raise ValueError("Cannot build a StateTreeNode from an empty StateSet")

        dimension = states[0].dimension
        for n, state in enumerate(states):
            if state.dimension != dimension:
                raise DimensionMismatchError(
                    format_error(
                        "StateTreeNode.from_state_set()",
                        f"Unable to handle StateSets containing states with different "
                        f"dimensions. State 0 has dimension {dimension}, state {n} has "
                        f"dimension {state.dimension}.",
                    )
                )

        local_states = [s for s in states if s.has_finite_extent()]
        if local_states:
            lower = [min(s.coordinates[c] - s.extent for s in local_states) for c in range(dimension)]
            upper = [max(s.coordinates[c] + s.extent for s in local_states) for c in range(dimension)]
        else:
            lower = [0.0] * dimension
            upper = [0.0] * dimension

        center = [(lo + hi) / 2 for lo, hi in zip(lower, upper)]
        half_size = max((hi - lo) / 2 for lo, hi in zip(lower, upper))
        half_size = half_size * (1 + CONTAINMENT_TOLERANCE) + CONTAINMENT_TOLERANCE

        root = cls(center, half_size, max_depth)
        for state in states:
            root.add(state)
        return root

    def add(self, state: AbstractState) -> None:
        """
        Insert a state.

        Raises:
            DimensionMismatchError: If the state dimension differs from the tree's
            ConfigurationError: If a local state is not fully contained in the root box
        """
        if state.dimension != len(self.center):
            raise DimensionMismatchError(
                format_error(
                    "StateTreeNode.add()",
                    f"Incompatible dimensions. The StateTreeNode stores states with "
                    f"dimension {len(self.center)}, but a state with dimension "
                    f"{state.dimension} was encountered.",
                )
            )

        if not self._add_recursive(state):
            raise ConfigurationError(
                format_error(
                    "StateTreeNode.add()",
                    f"Unable to add state to state tree. The StateTreeNode center is "
                    f"{self.center} and the half size is {self.half_size}. Tried to add "
                    f"state with coordinates {state.coordinates} and extent {state.extent}.",
                    "Make sure the StateTreeNode is large enough to contain every state "
                    "with finite extent.",
                )
            )

    def _add_recursive(self, state: AbstractState) -> bool:
        # Non-local states stay as high up in the tree as possible.
        if not state.has_finite_extent():
            self.states.append(state)
            return True

        largest = max(
            (abs(x - c) for x, c in zip(state.coordinates, self.center)),
            default=0.0,
        )
        if largest + state.extent > self.half_size * (1 + CONTAINMENT_TOLERANCE):
            return False

        if self.max_depth == 0:
            self.states.append(state)
            return True

        if not self.children:
            for n in range(self.num_space_partitions):
                sub_center = [
                    c + (((n >> axis) % 2) - 0.5) * self.half_size
                    for axis, c in enumerate(self.center)
                ]
                self.children.append(
                    StateTreeNode(sub_center, self.half_size / 2, self.max_depth - 1)
                )

        for child in self.children:
            if child._add_recursive(state):
                return True

        self.states.append(state)
        return True

    def get_overlapping_states(
        self,
        coordinates: Sequence[float],
        extent: float,
    ) -> List[AbstractState]:
        """
        Return every stored state whose extent sphere meets the query sphere.

        Two spheres meet when the distance between their centers is less than
        the sum of their radii, or when the centers coincide. Non-local states
        always meet.

        Args:
            coordinates: Center of the query sphere
            extent: Radius of the query sphere

        Returns:
            List of overlapping states

        Raises:
            DimensionMismatchError: If coordinates have the wrong dimension
        """
        if len(coordinates) != len(self.center):
            raise DimensionMismatchError(
                format_error(
                    "StateTreeNode.get_overlapping_states()",
                    f"Incompatible dimensions. The StateTreeNode stores states with "
                    f"dimension {len(self.center)}, but the argument 'coordinates' has "
                    f"dimension {len(coordinates)}.",
                )
            )

        overlapping: List[AbstractState] = []
        self._collect_overlapping(overlapping, [float(c) for c in coordinates], float(extent))
        return overlapping

    def _collect_overlapping(
        self,
        overlapping: List[AbstractState],
        coordinates: List[float],
        extent: float,
    ) -> None:
        # The node's bounding sphere has radius sqrt(D) * half_size. Non-local
        # states are not bounded by it.
        distance = math.dist(coordinates, self.center)
        reach = math.sqrt(len(self.center)) * self.half_size + extent
        outside = distance > reach * (1 + CONTAINMENT_TOLERANCE)

        for state in self.states:
            if not state.has_finite_extent():
                overlapping.append(state)
            elif not outside:
                separation = math.dist(coordinates, state.coordinates)
                if separation < extent + state.extent or separation == 0.0:
                    overlapping.append(state)

        if outside:
            return

        for child in self.children:
            child._collect_overlapping(overlapping, coordinates, extent)

    def __len__(self) -> int:
        return len(self.states) + sum(len(child) for child in self.children)

    def __repr__(self) -> str:
        return (
            f"StateTreeNode(center={self.center}, half_size={self.half_size}, "
            f"max_depth={self.max_depth}, num_states={len(self)})"
        )
