"""pyhpsolve.solvers.iterative
Preconditioned conjugate gradients on the element-by-element operator.

No global matrix is formed: every iteration applies ``sum_e A_e^T S_e A_e``
block by block.  Dot products are weighted by ``1/multiplicity`` so that
DOFs shared between processes are counted once, and each iteration needs
two reductions.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

import numpy as np

from pyhpsolve.config import GlobalSysSolnType, PreconditionerType
from pyhpsolve.errors import ConvergenceError, IndefiniteSystemError, UnsupportedSolveError
from pyhpsolve.solvers.base import GlobalLinSys, register
from pyhpsolve.solvers.comm import SerialComm
from pyhpsolve.solvers.preconditioner import create_preconditioner

logger = logging.getLogger(__name__)


def conjugate_gradient(apply_op: Callable[[np.ndarray], np.ndarray],
                       rhs: np.ndarray,
                       precond: Optional[Callable[[np.ndarray], np.ndarray]] = None,
                       *,
                       weights: Optional[np.ndarray] = None,
                       comm=None,
                       tolerance: float = 1e-9,
                       zero_tol: float = 1e-12,
                       max_iterations: int = 20_000) -> Tuple[np.ndarray, int]:
    """
    Solve ``A x = rhs`` for SPD ``A`` given as a callable.

    Stops when ‖r‖ < tolerance, an absolute test on the weighted residual.
    Returns (x, iterations).  A right-hand side with ‖rhs‖² < zero_tol
    returns zero without iterating.
    """
    comm = comm or SerialComm()
    rhs = np.asarray(rhs, dtype=float)
    w = np.ones_like(rhs) if weights is None else np.asarray(weights, dtype=float)
    if precond is None:
        precond = np.copy

    x = np.zeros_like(rhs)
    r = rhs.copy()
    rr0 = float(comm.allreduce([np.dot(w * r, r)])[0])
    if rr0 < zero_tol:
        logger.debug(f"PCG: ‖rhs‖² = {rr0:.3e} below zero tolerance, skipping solve")
        return x, 0

    z = precond(r)
    d = z.copy()
    rr = rr0
    for it in range(1, max_iterations + 1):
        p = apply_op(d)
        dp, rz, _ = comm.allreduce([np.dot(w * d, p), np.dot(w * r, z), np.dot(w * r, r)])
        if dp <= 0.0:
            raise IndefiniteSystemError(
                f"PCG: operator is not positive definite (d·Ad = {dp:.3e}) at iteration {it}")
        alpha = rz / dp
        x += alpha * d
        r -= alpha * p
        z = precond(r)
        rz_new, rr = comm.allreduce([np.dot(w * r, z), np.dot(w * r, r)])
        logger.debug(f"PCG it {it}: ‖r‖ = {np.sqrt(rr):.3e}")
        if rr < tolerance * tolerance:
            logger.info(f"PCG converged in {it} iterations, ‖r‖ = {np.sqrt(rr):.3e}")
            return x, it
        d = z + (rz_new / rz) * d

    raise ConvergenceError(
        f"PCG did not converge in {max_iterations} iterations "
        f"(‖r‖ = {np.sqrt(rr):.3e}, tolerance {tolerance:.1e})",
        iterations=max_iterations, residual=float(np.sqrt(rr)))


@register(GlobalSysSolnType.ITERATIVE_FULL, GlobalSysSolnType.ITERATIVE_STATIC_COND)
class GlobalLinSysPCG(GlobalLinSys):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if not self.symmetric:
            raise UnsupportedSolveError(
                f"Conjugate gradients need a symmetric operator; "
                f"{self.name} is not. Use a direct or PETSc solver.")
        view = self.view
        n_dir = view.n_dirichlet
        self._free_ids = view.universal_ids[n_dir:]
        self.weights = view.dot_weights[n_dir:]
        diag = self._sum_shared(self.assembler.diagonal(self._packed), self._free_ids)
        ptype = self.params.preconditioner
        linear_space = self._linear_space() if ptype is PreconditionerType.LINEAR_INVERSE else None
        self.preconditioner = create_preconditioner(ptype, diag, linear_space)
        self.last_iterations = 0

    def _linear_space(self) -> dict:
        """Vertex DOFs of the free system and their assembled block."""
        view = self.view
        coarse_ids = view.vertex_ids[view.vertex_ids >= view.n_universal_dirichlet]
        positions = np.flatnonzero(np.isin(self._free_ids, coarse_ids))
        slots = np.searchsorted(coarse_ids, self._free_ids[positions])
        slot_of = np.full(view.n_free, -1)
        slot_of[positions] = slots
        coarse = self.assembler.coarse_block(self.blocks, slot_of, coarse_ids.size)
        if self.comm.size > 1:
            coarse = self.comm.allreduce(coarse.ravel()).reshape(coarse.shape)
        return dict(coarse_matrix=coarse, positions=positions, slots=slots,
                    weights=self.weights[positions], comm=self.comm)

    def apply(self, x: np.ndarray) -> np.ndarray:
        return self._sum_shared(self.assembler.apply(self._packed, x), self._free_ids)

    def _solve_free(self, rhs_free):
        p = self.params
        x, its = conjugate_gradient(self.apply, rhs_free, self.preconditioner,
                                    weights=self.weights, comm=self.comm,
                                    tolerance=p.tolerance, zero_tol=p.zero_tol,
                                    max_iterations=p.max_iterations)
        self.last_iterations = its
        return x
