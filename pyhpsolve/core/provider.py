"""pyhpsolve.core.provider
Interface between the solver core and the element basis/geometry layer.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Tuple

import numpy as np

from pyhpsolve.core.matrixkey import MatrixKey, MatrixType


@dataclass(frozen=True)
class ScaledMatrix:
    """A shared matrix and the factor it is multiplied by for one element."""
    scale: float
    matrix: np.ndarray

    def dense(self) -> np.ndarray:
        return self.scale * self.matrix


class ElementOperatorProvider(Protocol):
    """What the assembly core needs to know about elements."""

    def n_coeffs(self, eid: int) -> int: ...

    def get_boundary_map(self, eid: int) -> np.ndarray: ...

    def get_interior_map(self, eid: int) -> np.ndarray: ...

    def get_vertex_map(self, eid: int, local_vertex: int) -> int: ...

    def get_edge_to_element_map(self, eid: int, local_edge: int,
                                reversed_: bool) -> Tuple[np.ndarray, np.ndarray]: ...

    def matrix_key(self, eid: int, matrix_type: MatrixType,
                   constants: Optional[Mapping] = None,
                   varcoeffs: Optional[Mapping] = None) -> Tuple[MatrixKey, float]: ...

    def compute_matrix(self, eid: int, key: MatrixKey) -> np.ndarray: ...

    def robin_mass(self, eid: int, local_facet: int, alpha: float) -> np.ndarray: ...
