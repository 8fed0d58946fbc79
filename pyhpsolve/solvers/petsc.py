"""pyhpsolve.solvers.petsc
Delegated solve through PETSc KSP.

The free DOFs are numbered by their universal ids, so the same AIJ matrix
is assembled regardless of how the elements are partitioned.  The solution
is brought back into the local layout with a scatter built once per system.
"""
import logging

import numpy as np

from pyhpsolve.config import GlobalSysSolnType, petsc_disabled
from pyhpsolve.errors import ConvergenceError, UnsupportedSolveError
from pyhpsolve.solvers.base import GlobalLinSys, register

logger = logging.getLogger(__name__)

if not petsc_disabled():
    try:
        from petsc4py import PETSc
        HAS_PETSC = True
    except Exception:  # noqa: PERF203
        PETSc = None
        HAS_PETSC = False
else:
    PETSc = None
    HAS_PETSC = False


@register(GlobalSysSolnType.PETSC_FULL, GlobalSysSolnType.PETSC_STATIC_COND)
class GlobalLinSysPETSc(GlobalLinSys):
    options_prefix = "pyhpsolve_"

    def __init__(self, *args, **kwargs):
        if not HAS_PETSC:
            raise UnsupportedSolveError("petsc4py is not available; the PETSc backend cannot be used.")
        super().__init__(*args, **kwargs)
        view = self.view
        n_dir = view.n_dirichlet
        self._pcomm = PETSc.COMM_SELF if self.comm.size == 1 else PETSc.COMM_WORLD
        self._ufree = np.asarray(view.universal_ids[n_dir:] - view.n_universal_dirichlet,
                                 dtype=PETSc.IntType)
        self.n_universal_free = view.n_universal - view.n_universal_dirichlet
        self.last_iterations = 0
        self._build_matrix()
        self._build_ksp()
        self._build_scatter()

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------
    def _build_matrix(self):
        n = self.n_universal_free
        n_dir = self.view.n_dirichlet
        mat = PETSc.Mat().createAIJ(size=(n, n), comm=self._pcomm)
        mat.setOption(PETSc.Mat.Option.NEW_NONZERO_ALLOCATION_ERR, False)
        mat.setUp()
        for gids, sgn, block in zip(self.view.maps, self.view.signs, self.blocks):
            free = gids >= n_dir
            if not np.any(free):
                continue
            s = sgn[free]
            vals = block.schur_matrix()[np.ix_(free, free)] * np.outer(s, s)
            idx = self._ufree[gids[free] - n_dir]
            mat.setValues(idx, idx, vals, addv=PETSc.InsertMode.ADD_VALUES)
        mat.assemblyBegin()
        mat.assemblyEnd()
        if self.symmetric:
            mat.setOption(PETSc.Mat.Option.SYMMETRIC, True)
        self.mat = mat

    def _build_ksp(self):
        opts = PETSc.Options()
        for k, v in self.params.petsc_options.items():
            opts[f"{self.options_prefix}{k}"] = v
        ksp = PETSc.KSP().create(comm=self._pcomm)
        ksp.setOperators(self.mat)
        ksp.setType("cg" if self.symmetric else "gmres")
        ksp.setTolerances(rtol=self.params.petsc_rtol, max_it=self.params.max_iterations)
        ksp.setOptionsPrefix(self.options_prefix)
        ksp.setFromOptions()
        self.ksp = ksp

    def _build_scatter(self):
        n_local = self._ufree.size
        self._x = self.mat.createVecLeft()
        self._xloc = PETSc.Vec().createSeq(n_local, comm=PETSc.COMM_SELF)
        is_global = PETSc.IS().createGeneral(self._ufree, comm=PETSc.COMM_SELF)
        is_local = PETSc.IS().createStride(n_local, first=0, step=1, comm=PETSc.COMM_SELF)
        self._scatter = PETSc.Scatter().create(self._x, is_global, self._xloc, is_local)

    # ------------------------------------------------------------------
    def _solve_free(self, rhs_free):
        b = self.mat.createVecRight()
        b.set(0.0)
        # shared entries are already summed: every owner inserts the same value
        b.setValues(self._ufree, rhs_free, addv=PETSc.InsertMode.INSERT_VALUES)
        b.assemblyBegin()
        b.assemblyEnd()

        self._x.set(0.0)
        self.ksp.solve(b, self._x)
        its = self.ksp.getIterationNumber()
        reason = self.ksp.getConvergedReason()
        self.last_iterations = its
        logger.info(f"PETSc KSP {self.ksp.getType()}: {its} iterations (reason {reason})")
        if reason < 0:
            raise ConvergenceError(f"PETSc KSP diverged after {its} iterations (reason {reason}).",
                                   iterations=its, residual=self.ksp.getResidualNorm())

        self._scatter.scatter(self._x, self._xloc, addv=PETSc.InsertMode.INSERT_VALUES,
                              mode=PETSc.ScatterMode.FORWARD)
        return self._xloc.getArray().copy()
