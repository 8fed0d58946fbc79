"""pyhpsolve.config
Solver settings and the enums that select global system type,
preconditioner and matrix storage.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from pyhpsolve.errors import ConfigurationError


class GlobalSysSolnType(Enum):
    DIRECT_FULL_MATRIX = "DirectFull"
    DIRECT_STATIC_COND = "DirectStaticCond"
    ITERATIVE_FULL = "IterativeFull"
    ITERATIVE_STATIC_COND = "IterativeStaticCond"
    PETSC_FULL = "PETScFull"
    PETSC_STATIC_COND = "PETScStaticCond"

    @property
    def static_cond(self) -> bool:
        return self.value.endswith("StaticCond")

    @property
    def backend(self) -> str:
        if self.value.startswith("Direct"):
            return "direct"
        if self.value.startswith("Iterative"):
            return "iterative"
        return "petsc"


class PreconditionerType(Enum):
    NULL = "Null"
    DIAGONAL = "Diagonal"
    LINEAR_INVERSE = "LinearInverse"


class StorageType(Enum):
    BANDED_SYMMETRIC = "BandedSymmetric"
    FULL_SYMMETRIC = "FullSymmetric"
    FULL = "Full"
    BLOCK_DIAGONAL = "BlockDiagonal"
    SPARSE = "Sparse"


def coerce_enum(enum_cls, value, what):
    if isinstance(value, enum_cls):
        return value
    for member in enum_cls:
        if value in (member.value, member.name):
            return member
    raise ConfigurationError(f"Unknown {what} '{value}'. "
                             f"Choose from {[m.value for m in enum_cls]}.")


@dataclass
class LinearSolverParameters:
    """Global linear system settings (direct, PCG and PETSc backends)."""

    solution_type: GlobalSysSolnType = GlobalSysSolnType.DIRECT_STATIC_COND
    preconditioner: PreconditionerType = PreconditionerType.DIAGONAL
    tolerance: float = 1e-9             # PCG stopping tolerance on ‖r‖
    zero_tol: float = 1e-12             # r·r below this skips the solve
    max_iterations: int = 20_000
    n_threads: int = 1                  # element loop workers
    petsc_rtol: float = 1e-12
    petsc_options: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        self.solution_type = coerce_enum(GlobalSysSolnType, self.solution_type,
                                           "global system solution type")
        self.preconditioner = coerce_enum(PreconditionerType, self.preconditioner,
                                            "preconditioner")
        if self.tolerance <= 0.0:
            raise ConfigurationError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.n_threads < 1:
            raise ConfigurationError(f"n_threads must be >= 1, got {self.n_threads}")


def petsc_disabled() -> bool:
    """``PYHPSOLVE_SKIP_PETSC=1`` keeps petsc4py from being imported."""
    return os.getenv("PYHPSOLVE_SKIP_PETSC", "").lower() in {"1", "true", "yes"}
