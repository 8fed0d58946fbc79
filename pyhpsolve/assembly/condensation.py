r"""
condensation.py  –  element-level static condensation
=====================================================
Splits an element matrix by boundary (b) and interior (i) modes

        | A  B |   A = M[b, b]   B = M[b, i]
    M = |      |
        | C  D |   C = M[i, b]   D = M[i, i]

and keeps the Schur complement ``S = A - B D^{-1} C`` together with the
factors needed to condense a right-hand side and to recover the interior
modes afterwards:

    f_b' = f_b - (B D^{-1}) f_i
    u_i  = D^{-1} (f_i - C u_b)

Blocks computed for a reference matrix are shared by every element that
uses it scaled by a Jacobian factor ``s``: S and C scale with ``s``,
D^{-1} with ``1/s`` and B D^{-1} is scale free.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional

import numpy as np
import scipy.linalg as sla

from pyhpsolve.errors import SingularBlockError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaticCondBlock:
    schur: np.ndarray
    bdinv: np.ndarray
    c: np.ndarray
    dinv: np.ndarray
    boundary_map: np.ndarray
    interior_map: np.ndarray
    scale: float = 1.0
    symmetric: bool = True

    @property
    def n_bnd(self) -> int:
        return self.boundary_map.size

    @property
    def n_int(self) -> int:
        return self.interior_map.size

    def scaled(self, scale: float) -> "StaticCondBlock":
        if scale == 1.0:
            return self
        return replace(self, scale=self.scale * scale)

    def schur_matrix(self) -> np.ndarray:
        return self.scale * self.schur

    def split(self, f: np.ndarray):
        return f[self.boundary_map], f[self.interior_map]

    def condense_rhs(self, f_b: np.ndarray, f_i: np.ndarray) -> np.ndarray:
        if self.n_int == 0:
            return np.array(f_b, dtype=float)
        return f_b - self.bdinv @ f_i

    def interior(self, u_b: np.ndarray, f_i: np.ndarray) -> np.ndarray:
        if self.n_int == 0:
            return np.zeros(0)
        return (self.dinv @ (f_i - self.scale * (self.c @ u_b))) / self.scale


def _invert(D: np.ndarray, symmetric: bool, eid, matrix_type) -> np.ndarray:
    eye = np.eye(D.shape[0])
    if symmetric:
        try:
            return sla.cho_solve(sla.cho_factor(D), eye)
        except np.linalg.LinAlgError:
            logger.debug(f"interior block of element {eid} is not SPD; using LU")
    try:
        dinv = sla.inv(D)
    except np.linalg.LinAlgError as exc:
        raise SingularBlockError(
            f"Interior block of element {eid} ({matrix_type}) is singular.",
            element=eid, matrix_type=matrix_type) from exc
    if not np.all(np.isfinite(dinv)):
        raise SingularBlockError(
            f"Interior block of element {eid} ({matrix_type}) is singular.",
            element=eid, matrix_type=matrix_type)
    return dinv


def condense(local_matrix: np.ndarray, boundary_map, interior_map, *,
             symmetric: Optional[bool] = None, scale: float = 1.0,
             element=None, matrix_type=None) -> StaticCondBlock:
    """Eliminate the interior modes of one (unscaled) element matrix."""
    M = np.asarray(local_matrix, dtype=float)
    bnd = np.asarray(boundary_map, dtype=int)
    inner = np.asarray(interior_map, dtype=int)
    if symmetric is None:
        symmetric = bool(np.allclose(M, M.T, rtol=1e-12, atol=1e-14 * np.abs(M).max()))

    A = M[np.ix_(bnd, bnd)]
    if inner.size == 0:
        empty = np.zeros((bnd.size, 0))
        return StaticCondBlock(schur=A, bdinv=empty, c=empty.T, dinv=np.zeros((0, 0)),
                               boundary_map=bnd, interior_map=inner,
                               scale=scale, symmetric=symmetric)

    B = M[np.ix_(bnd, inner)]
    C = M[np.ix_(inner, bnd)]
    D = M[np.ix_(inner, inner)]
    dinv = _invert(D, symmetric, element, matrix_type)
    bdinv = B @ dinv
    schur = A - bdinv @ C
    if symmetric:
        schur = 0.5 * (schur + schur.T)
    return StaticCondBlock(schur=schur, bdinv=bdinv, c=C, dinv=dinv,
                           boundary_map=bnd, interior_map=inner,
                           scale=scale, symmetric=symmetric)


def identity_block(local_matrix: np.ndarray, scale: float = 1.0,
                   symmetric: Optional[bool] = None) -> StaticCondBlock:
    """Block of an uncondensed system: every coefficient is a boundary mode."""
    n = local_matrix.shape[0]
    return condense(local_matrix, np.arange(n), np.zeros(0, dtype=int),
                    symmetric=symmetric, scale=scale)


@dataclass(frozen=True)
class CoupledCondBlock:
    """
    Two-level condensation of a coupled velocity-pressure element matrix.

    Level 1 eliminates the interior velocity modes; level 2 keeps the
    boundary velocity plus the mean pressure mode as the element boundary
    and eliminates the remaining pressure modes.  Exposes the same
    interface as ``StaticCondBlock``.
    """
    inner: StaticCondBlock          # boundary: velocity_bnd + pressure
    outer: StaticCondBlock          # acts on inner.schur
    boundary_map: np.ndarray        # velocity_bnd + [pressure[mean_mode]]
    interior_map: np.ndarray        # other pressure modes + velocity_int

    @property
    def symmetric(self) -> bool:
        return self.inner.symmetric and self.outer.symmetric

    @property
    def n_bnd(self) -> int:
        return self.boundary_map.size

    @property
    def n_int(self) -> int:
        return self.interior_map.size

    @property
    def scale(self) -> float:
        return 1.0

    def schur_matrix(self) -> np.ndarray:
        return self.outer.schur_matrix()

    def split(self, f):
        return f[self.boundary_map], f[self.interior_map]

    def _level_one_rhs(self, f_b, f_i):
        n_hat = self.outer.n_int
        f_hat, f_vint = f_i[:n_hat], f_i[n_hat:]
        f1 = np.empty(self.inner.n_bnd)
        f1[self.outer.boundary_map] = f_b
        f1[self.outer.interior_map] = f_hat
        return self.inner.condense_rhs(f1, f_vint), f1, f_vint

    def condense_rhs(self, f_b, f_i):
        g1, _, _ = self._level_one_rhs(f_b, f_i)
        return self.outer.condense_rhs(*self.outer.split(g1))

    def interior(self, u_b, f_i):
        # the eliminated pressure rows of the level-1 rhs do not depend on f_b
        g1, _, f_vint = self._level_one_rhs(np.zeros(self.n_bnd), f_i)
        u_hat = self.outer.interior(u_b, g1[self.outer.interior_map])
        u1 = np.empty(self.inner.n_bnd)
        u1[self.outer.boundary_map] = u_b
        u1[self.outer.interior_map] = u_hat
        u_vint = self.inner.interior(u1, f_vint)
        return np.concatenate([u_hat, u_vint])


def condense_coupled(local_matrix: np.ndarray, velocity_bnd, pressure, velocity_int,
                     mean_mode: int = 0, *, element=None, matrix_type=None) -> CoupledCondBlock:
    """Nested condensation: velocity interior first, then non-mean pressure."""
    velocity_bnd = np.asarray(velocity_bnd, dtype=int)
    pressure = np.asarray(pressure, dtype=int)
    velocity_int = np.asarray(velocity_int, dtype=int)
    level1_bnd = np.concatenate([velocity_bnd, pressure])
    inner = condense(local_matrix, level1_bnd, velocity_int,
                     element=element, matrix_type=matrix_type)

    n_vb = velocity_bnd.size
    others = [k for k in range(pressure.size) if k != mean_mode]
    keep = np.concatenate([np.arange(n_vb), [n_vb + mean_mode]]).astype(int)
    elim = (n_vb + np.asarray(others, dtype=int)).astype(int)
    outer = condense(inner.schur_matrix(), keep, elim,
                     element=element, matrix_type=matrix_type)
    return CoupledCondBlock(
        inner=inner, outer=outer,
        boundary_map=np.concatenate([velocity_bnd, pressure[[mean_mode]]]),
        interior_map=np.concatenate([pressure[others], velocity_int]).astype(int))


def condense_elements(elements: Iterable[int], block_for: Callable[[int], object],
                      n_threads: int = 1) -> List:
    """Run ``block_for(eid)`` for every element, on a thread pool if asked."""
    elements = list(elements)
    if n_threads <= 1 or len(elements) < 2:
        return [block_for(e) for e in elements]
    with ThreadPoolExecutor(max_workers=n_threads) as pool:
        return list(pool.map(block_for, elements))
