"""pyhpsolve.solvers.preconditioner"""
import logging

import numpy as np
import scipy.linalg as sla

from pyhpsolve.config import PreconditionerType
from pyhpsolve.errors import IndefiniteSystemError, UnsupportedSolveError
from pyhpsolve.solvers.comm import SerialComm

logger = logging.getLogger(__name__)


class NullPreconditioner:
    def __call__(self, r):
        return r.copy()


class DiagonalPreconditioner:
    """Jacobi: inverse of the assembled operator diagonal."""

    def __init__(self, diagonal):
        diagonal = np.asarray(diagonal, dtype=float)
        if np.any(diagonal <= 0.0):
            raise IndefiniteSystemError(
                f"Jacobi preconditioner needs a positive diagonal "
                f"(min {diagonal.min() if diagonal.size else 0.0:.3e}).")
        self.inv_diag = 1.0 / diagonal

    def __call__(self, r):
        return self.inv_diag * r


class LinearInversePreconditioner(DiagonalPreconditioner):
    """
    Jacobi plus an exact solve on the linear (vertex) space.

        M^{-1} r = D^{-1} r + R^T A_vv^{-1} R r

    ``R`` restricts a free vector to the free vertex DOFs and ``A_vv`` is
    the assembled operator on those DOFs, so the vertex solve acts as a
    coarse correction that removes the mesh-size dependence Jacobi alone
    shows on refined meshes.

    Parameters
    ----------
    diagonal : array
        Assembled diagonal of the free operator (shared DOFs summed).
    coarse_matrix : (n_coarse, n_coarse) array
        ``A_vv``, summed over processes.
    positions : int array
        Free DOFs of this process that are vertices.
    slots : int array
        Coarse row of every entry of ``positions``.
    weights : array
        ``1/multiplicity`` of every entry of ``positions``.
    """

    def __init__(self, diagonal, coarse_matrix, positions, slots, weights=None, comm=None):
        super().__init__(diagonal)
        self.positions = np.asarray(positions, dtype=int)
        self.slots = np.asarray(slots, dtype=int)
        self.weights = (np.ones(self.positions.size) if weights is None
                        else np.asarray(weights, dtype=float))
        self.comm = comm or SerialComm()
        self.n_coarse = int(np.shape(coarse_matrix)[0])
        self._factor = None
        if self.n_coarse:
            try:
                self._factor = sla.cho_factor(np.asarray(coarse_matrix, dtype=float))
            except np.linalg.LinAlgError as exc:
                raise IndefiniteSystemError(
                    f"Linear space block ({self.n_coarse} vertex DOFs) is not "
                    f"positive definite.") from exc
        logger.debug(f"linear inverse preconditioner: {self.n_coarse} vertex DOFs")

    def __call__(self, r):
        z = self.inv_diag * r
        if self._factor is None:
            return z
        rc = np.zeros(self.n_coarse)
        rc[self.slots] = self.weights * r[self.positions]
        if self.comm.size > 1:
            rc = self.comm.allreduce(rc)
        z[self.positions] += sla.cho_solve(self._factor, rc)[self.slots]
        return z


def create_preconditioner(ptype: PreconditionerType, diagonal=None, linear_space=None):
    """``linear_space`` holds the keyword arguments of the vertex solve."""
    if ptype is PreconditionerType.NULL:
        return NullPreconditioner()
    if ptype is PreconditionerType.DIAGONAL:
        return DiagonalPreconditioner(diagonal)
    if ptype is PreconditionerType.LINEAR_INVERSE:
        if linear_space is None:
            raise UnsupportedSolveError("Linear inverse preconditioner needs the vertex block.")
        return LinearInversePreconditioner(diagonal, **linear_space)
    raise UnsupportedSolveError(f"Preconditioner {ptype} is not available.")
