"""pyhpsolve.solvers.base
Global linear system contract and the solution-type registry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

import numpy as np

from pyhpsolve.assembly.global_matrix import GlobalAssembler
from pyhpsolve.config import GlobalSysSolnType, LinearSolverParameters
from pyhpsolve.core.matrixkey import MatrixType
from pyhpsolve.errors import ConfigurationError, UnsupportedSolveError
from pyhpsolve.solvers.comm import SerialComm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GlobalLinSysKey:
    matrix_type: Optional[MatrixType]       # None for coupled systems
    constants: tuple = ()
    varcoeff_id: tuple = ()
    solution_type: GlobalSysSolnType = GlobalSysSolnType.DIRECT_STATIC_COND


_REGISTRY: Dict[GlobalSysSolnType, Type["GlobalLinSys"]] = {}


def register(*solution_types: GlobalSysSolnType) -> Callable:
    def deco(cls):
        for st in solution_types:
            _REGISTRY[st] = cls
        return cls
    return deco


def create_global_lin_sys(key: GlobalLinSysKey, blocks, view,
                          params: Optional[LinearSolverParameters] = None,
                          comm=None, symmetric: Optional[bool] = None) -> "GlobalLinSys":
    cls = _REGISTRY.get(key.solution_type)
    if cls is None:
        raise UnsupportedSolveError(f"No global linear system registered for {key.solution_type}.")
    return cls(key, blocks, view, params, comm=comm, symmetric=symmetric)


class GlobalLinSys:
    """
    Assembled (or matrix-free) global system over one assembly view.

    ``solve(rhs_global, dirichlet_values)`` takes the signed sum of the
    element right-hand sides (all local DOFs, Dirichlet rows included),
    moves the Dirichlet contribution to the right-hand side, solves for the
    free DOFs and returns the complete global vector.
    """

    def __init__(self, key: GlobalLinSysKey, blocks, view,
                 params: Optional[LinearSolverParameters] = None, *,
                 comm=None, symmetric: Optional[bool] = None):
        if len(blocks) != len(view.maps):
            raise ConfigurationError(
                f"{len(blocks)} element blocks for {len(view.maps)} mapped elements.")
        self.key = key
        self.blocks = list(blocks)
        self.view = view
        self.params = params or LinearSolverParameters()
        self.comm = comm or SerialComm()
        if symmetric is None:
            symmetric = all(b.symmetric for b in self.blocks) and \
                (key.matrix_type is None or key.matrix_type.symmetric)
        self.symmetric = bool(symmetric)
        self.name = key.matrix_type.value if key.matrix_type is not None else "Coupled"
        self.assembler = GlobalAssembler(view)
        self._packed = self.assembler.packed_values(self.blocks)

    @property
    def solution_type(self) -> GlobalSysSolnType:
        return self.key.solution_type

    @property
    def n_free(self) -> int:
        return self.view.n_free

    def _sum_shared(self, vec: np.ndarray, ids: np.ndarray) -> np.ndarray:
        if self.comm.size == 1:
            return vec
        return self.comm.gather_scatter_sum(vec, ids, self.view.n_universal)

    def solve(self, rhs_global: np.ndarray, dirichlet_values=None) -> np.ndarray:
        view = self.view
        n_dir = view.n_dirichlet
        rhs_global = np.asarray(rhs_global, dtype=float)
        if rhs_global.shape != (view.n_global,):
            raise ConfigurationError(
                f"rhs has shape {rhs_global.shape}, expected ({view.n_global},).")
        u = np.zeros(view.n_global)
        if n_dir:
            if dirichlet_values is not None:
                u_dir = np.asarray(dirichlet_values, dtype=float)
                if u_dir.shape != (n_dir,):
                    raise ConfigurationError(
                        f"{u_dir.size} Dirichlet values for {n_dir} Dirichlet DOFs.")
                u[:n_dir] = u_dir
        rhs = rhs_global.copy()
        rhs[n_dir:] -= self.assembler.dirichlet_lift(self._packed, u[:n_dir])
        rhs = self._sum_shared(rhs, view.universal_ids)
        if view.n_free:
            u[n_dir:] = self._solve_free(rhs[n_dir:])
        return u

    def _solve_free(self, rhs_free: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self):
        return (f"<{type(self).__name__} {self.name} "
                f"{self.solution_type.value} n_free={self.n_free}>")
