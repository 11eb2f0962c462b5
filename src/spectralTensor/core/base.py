"""BaseTensor class: labelled result buffer for physics quantities."""

from typing import Dict, List, Optional

import torch

from .errors import DimensionMismatchError


class BaseTensor:
    """
    Unified tensor class for spectral and many-body quantities.

    Every compute call in spectralTensor returns a freshly allocated
    BaseTensor owned by the caller (Green's functions, LDOS, susceptibilities,
    self-energies). Dimensions carry semantic labels so that consumers never
    have to guess the memory layout.

    Attributes:
        tensor: Underlying PyTorch tensor data
        labels: Semantic labels for each dimension (e.g., ['index', 'E'])
        orbital_names: Physical names of orbitals (e.g., ['px', 'py', 'pz'])
        coordinates: Optional coordinate values along labelled axes,
            e.g. {'E': energy grid} or {'iwn': Matsubara energies}
    """

    def __init__(
        self,
        tensor: torch.Tensor,
        labels: List[str],
        orbital_names: Optional[List[str]] = None,
        coordinates: Optional[Dict[str, torch.Tensor]] = None,
    ) -> None:
        """
        Initialize BaseTensor.

        Args:
            tensor: Underlying tensor data
            labels: Semantic labels for each dimension
            orbital_names: Physical names of orbitals
            coordinates: Coordinate values keyed by label. Each entry must
                match the length of the labelled dimension.
        """
        if len(labels) != tensor.ndim:
            raise DimensionMismatchError(
                f"Number of labels ({len(labels)}) must match tensor.ndim ({tensor.ndim})"
            )

        coordinates = dict(coordinates) if coordinates is not None else {}
        for label, values in coordinates.items():
            if label not in labels:
                raise DimensionMismatchError(
                    f"Coordinates given for '{label}', which is not in labels {labels}"
                )
            if values.shape[0] != tensor.shape[labels.index(label)]:
                raise DimensionMismatchError(
                    f"Coordinates for '{label}' have length {values.shape[0]}, but the "
                    f"dimension has size {tensor.shape[labels.index(label)]}"
                )

        self.tensor = tensor
        self.labels = list(labels)
        self.orbital_names = orbital_names
        self.coordinates = coordinates

    def axis(self, label: str) -> int:
        """Return the dimension index of `label`.

        Raises:
            ValueError: If label is not present
        """
        if label not in self.labels:
            raise ValueError(f"Label '{label}' not in {self.labels}")
        return self.labels.index(label)

    def clone(self) -> "BaseTensor":
        """Deep copy of tensor data and coordinates."""
        return BaseTensor(
            tensor=self.tensor.clone(),
            labels=list(self.labels),
            orbital_names=self.orbital_names,
            coordinates={k: v.clone() for k, v in self.coordinates.items()},
        )

    def to(self, device: torch.device) -> "BaseTensor":
        """Copy of this tensor and its coordinates on `device`."""
        return BaseTensor(
            tensor=self.tensor.to(device),
            labels=self.labels,
            orbital_names=self.orbital_names,
            coordinates={k: v.to(device) for k, v in self.coordinates.items()},
        )

    # Shape and placement mirror the wrapped tensor.

    @property
    def shape(self) -> torch.Size:
        return self.tensor.shape

    @property
    def ndim(self) -> int:
        return self.tensor.ndim

    @property
    def dtype(self) -> torch.dtype:
        return self.tensor.dtype

    @property
    def device(self) -> torch.device:
        return self.tensor.device

    def __repr__(self) -> str:
        axes = ", ".join(f"{label}={size}" for label, size in zip(self.labels, self.shape))
        return f"BaseTensor({axes}, dtype={self.dtype}, device={self.device})"
