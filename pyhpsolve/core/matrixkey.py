"""pyhpsolve.core.matrixkey
Identity of an element operator matrix.

Two elements with equal keys produce numerically identical local matrices,
so the key is what the matrix cache and the static-condensation cache are
indexed by.  ``metric`` distinguishes how much geometry went into the
matrix:

* ``None``                      reference ("std") matrix, shared by every
                                regular element of that shape and order
                                and scaled by a Jacobian factor;
* ``("affine", signature)``     elements with identical constant geometric
                                factors share one matrix;
* ``("element", eid)``          deformed elements and variable coefficients.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Hashable, Mapping, Optional, Tuple


class MatrixType(Enum):
    MASS = "Mass"
    LAPLACIAN = "Laplacian"
    HELMHOLTZ = "Helmholtz"
    ADVECTION_DIFFUSION_REACTION = "AdvectionDiffusionReaction"

    @property
    def symmetric(self) -> bool:
        return self is not MatrixType.ADVECTION_DIFFUSION_REACTION


class ElementShape(Enum):
    SEGMENT = "segment"
    QUADRILATERAL = "quad"


def freeze_constants(constants: Optional[Mapping[str, object]]) -> Tuple:
    """Turn a ``{name: value}`` mapping into a sorted hashable tuple."""
    if not constants:
        return ()
    frozen = []
    for name, value in sorted(constants.items()):
        if isinstance(value, (tuple, list)):
            value = tuple(float(v) for v in value)
        else:
            value = float(value)
        frozen.append((name, value))
    return tuple(frozen)


def varcoeff_signature(varcoeffs: Optional[Mapping[str, object]]) -> Tuple:
    """Hashable identity for a set of variable coefficient callables."""
    if not varcoeffs:
        return ()
    return tuple((name, id(func)) for name, func in sorted(varcoeffs.items()))


@dataclass(frozen=True)
class MatrixKey:
    matrix_type: MatrixType
    shape: ElementShape
    orders: Tuple[int, ...]
    constants: Tuple = ()
    varcoeff_id: Tuple = ()
    metric: Hashable = None

    def constant(self, name: str, default=None):
        for k, v in self.constants:
            if k == name:
                return v
        return default

    @property
    def is_std(self) -> bool:
        return self.metric is None

    def __str__(self):
        return (f"{self.matrix_type.value}[{self.shape.value}, P={self.orders}, "
                f"const={self.constants}, metric={self.metric}]")
