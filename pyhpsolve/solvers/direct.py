"""pyhpsolve.solvers.direct
Factorise-once direct solvers for banded, full and block-diagonal storage.
"""
import logging

import numpy as np
import scipy.linalg as sla

from pyhpsolve.config import GlobalSysSolnType, StorageType
from pyhpsolve.errors import IndefiniteSystemError, SingularBlockError, UnsupportedSolveError
from pyhpsolve.solvers.base import GlobalLinSys, register

logger = logging.getLogger(__name__)


@register(GlobalSysSolnType.DIRECT_FULL_MATRIX, GlobalSysSolnType.DIRECT_STATIC_COND)
class GlobalLinSysDirect(GlobalLinSys):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if self.comm.size > 1:
            raise UnsupportedSolveError("Direct solvers run on a single process; "
                                        "use the iterative or PETSc backend.")
        self.n_factorisations = 0
        self.matrix = self.assembler.assemble(self.blocks, symmetric=self.symmetric)
        self._factor = None
        if self.n_free:
            self._factorise()

    def _factorise(self):
        gm = self.matrix
        name = self.name
        try:
            if gm.storage is StorageType.BANDED_SYMMETRIC:
                self._factor = sla.cholesky_banded(gm.data, lower=False)
            elif gm.storage is StorageType.FULL_SYMMETRIC:
                self._factor = sla.cho_factor(gm.data)
            elif gm.storage is StorageType.FULL:
                self._factor = self._lu(gm.data)
            elif gm.storage is StorageType.BLOCK_DIAGONAL:
                self._factor = [(rows, sla.cho_factor(b) if gm.symmetric else self._lu(b))
                                for rows, b in gm.blocks]
            else:
                raise UnsupportedSolveError(f"Direct solve of {gm.storage.value} storage.")
        except np.linalg.LinAlgError as exc:
            raise IndefiniteSystemError(
                f"Global {name} matrix is not positive definite ({gm.storage.value}).") from exc
        self.n_factorisations += 1
        logger.info(f"factorised {name} global matrix ({gm.storage.value}, n={gm.n})")

    def _lu(self, a):
        lu, piv = sla.lu_factor(a)
        if np.any(np.diag(lu) == 0.0):
            raise SingularBlockError(f"Global {self.name} matrix is singular.",
                                     matrix_type=self.key.matrix_type)
        return lu, piv

    def _solve_free(self, rhs_free):
        gm = self.matrix
        if gm.storage is StorageType.BANDED_SYMMETRIC:
            return sla.cho_solve_banded((self._factor, False), rhs_free)
        if gm.storage is StorageType.FULL_SYMMETRIC:
            return sla.cho_solve(self._factor, rhs_free)
        if gm.storage is StorageType.FULL:
            return sla.lu_solve(self._factor, rhs_free)
        out = np.zeros_like(rhs_free)
        for rows, factor in self._factor:
            if gm.symmetric:
                out[rows] = sla.cho_solve(factor, rhs_free[rows])
            else:
                out[rows] = sla.lu_solve(factor, rhs_free[rows])
        return out
