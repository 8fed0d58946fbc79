r"""
discretisation.py  –  caller surface of the solver core
=======================================================
Ties the pieces together for one mesh and one set of boundary conditions:

    disc = Discretisation(mesh, bcs, LinearSolverParameters(...))
    sys  = disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})
    u    = disc.solve(sys, disc.load_vectors(f))

``build_system`` fetches (or computes) every element matrix through the
matrix cache, condenses it, assembles the global system for the requested
solution type and caches the system under its ``GlobalLinSysKey``; a system
is rebuilt only when one of its parameters changes.  ``solve`` condenses
the forcing, lifts the Dirichlet values, solves for the free boundary DOFs
and recovers the interior modes of every element.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from pyhpsolve.assembly.condensation import (condense, condense_coupled, condense_elements,
                                             identity_block)
from pyhpsolve.assembly.load_vector import condensed_rhs, element_load_vectors
from pyhpsolve.assembly.recovery import recover
from pyhpsolve.config import GlobalSysSolnType, LinearSolverParameters, coerce_enum
from pyhpsolve.core.assemblymap import LocalToGlobalMap
from pyhpsolve.core.cache import MatrixCache
from pyhpsolve.core.matrixkey import MatrixType, freeze_constants, varcoeff_signature
from pyhpsolve.core.provider import ScaledMatrix
from pyhpsolve.errors import ConfigurationError, UnsupportedSolveError
from pyhpsolve.fem.expansion import SpectralElementProvider
from pyhpsolve.fem.reference.modal import tabulate_1d
from pyhpsolve.integration.quadrature import gauss_legendre
from pyhpsolve.solvers import GlobalLinSysKey, SerialComm, create_global_lin_sys

logger = logging.getLogger(__name__)


class Discretisation:
    def __init__(self, mesh, bcs=(), params: Optional[LinearSolverParameters] = None, *,
                 provider=None,
                 partition: Optional[Sequence[int]] = None,
                 comm=None,
                 cache: Optional[MatrixCache] = None,
                 n_private: int = 0,
                 pin_private: bool = False,
                 reorder: bool = True):
        self.mesh = mesh
        self.provider = provider if provider is not None else SpectralElementProvider(mesh)
        self.bcs = list(bcs)
        self.params = params or LinearSolverParameters()
        self.comm = comm or SerialComm()
        self.cache = cache if cache is not None else MatrixCache()
        self.map = LocalToGlobalMap(mesh, self.provider, self.bcs,
                                    n_private=n_private, pin_private=pin_private,
                                    reorder=reorder, partition=partition, rank=self.comm.rank)
        self._systems: Dict[GlobalLinSysKey, object] = {}
        self._robin: Dict[int, List[Tuple[int, float]]] = {}
        for bc in self.bcs:
            if bc.method == 'robin':
                for eid, facet in mesh.boundary_facets(bc.domain_tag):
                    self._robin.setdefault(eid, []).append((facet, bc.robin_coeff))

    @property
    def elements(self) -> np.ndarray:
        return self.map.elements

    # ------------------------------------------------------------------
    # element matrices
    # ------------------------------------------------------------------
    def local_matrix(self, eid: int, matrix_type, constants=None, varcoeffs=None) -> ScaledMatrix:
        """Cached element matrix of ``eid`` and its scale factor."""
        key, scale = self.provider.matrix_key(eid, matrix_type, constants, varcoeffs)
        mat = self.cache.get_or_compute(key, lambda: self.provider.compute_matrix(eid, key))
        return ScaledMatrix(scale, mat)

    def element_block(self, eid: int, matrix_type, constants=None, varcoeffs=None,
                      static_cond: bool = True):
        matrix_type = MatrixType(matrix_type)
        key, scale = self.provider.matrix_key(eid, matrix_type, constants, varcoeffs)
        mat = self.cache.get_or_compute(key, lambda: self.provider.compute_matrix(eid, key))
        bnd = self.provider.get_boundary_map(eid)
        inner = self.provider.get_interior_map(eid)
        symmetric = matrix_type.symmetric

        robin = self._robin.get(eid) if matrix_type is not MatrixType.MASS else None
        if robin:
            # boundary term makes this element unique: no shared cache entry
            local = scale * mat
            for facet, alpha in robin:
                local = local + self.provider.robin_mass(eid, facet, alpha)
            if static_cond:
                return condense(local, bnd, inner, symmetric=symmetric,
                                element=eid, matrix_type=matrix_type)
            return identity_block(local, symmetric=symmetric)

        if static_cond:
            block = self.cache.get_or_compute(
                key, lambda: condense(mat, bnd, inner, symmetric=symmetric,
                                      element=eid, matrix_type=matrix_type),
                kind="static_cond")
        else:
            block = self.cache.get_or_compute(
                key, lambda: identity_block(mat, symmetric=symmetric), kind="full")
        return block.scaled(scale)

    # ------------------------------------------------------------------
    # global systems
    # ------------------------------------------------------------------
    def _view(self, solution_type: GlobalSysSolnType):
        if solution_type.static_cond:
            return self.map.bnd
        if self.map.full is None:
            raise UnsupportedSolveError(
                f"{solution_type.value} needs a full map; this discretisation has private "
                f"boundary modes. Use a static condensation solution type.")
        return self.map.full

    def build_system(self, matrix_type, constants: Optional[Mapping] = None,
                     varcoeffs: Optional[Mapping[str, Callable]] = None,
                     solution_type=None):
        """Global linear system for one operator; cached per parameter set."""
        matrix_type = MatrixType(matrix_type)
        solution_type = (self.params.solution_type if solution_type is None
                         else coerce_enum(GlobalSysSolnType, solution_type,
                                           "global system solution type"))
        key = GlobalLinSysKey(matrix_type=matrix_type,
                              constants=freeze_constants(constants),
                              varcoeff_id=varcoeff_signature(varcoeffs),
                              solution_type=solution_type)
        system = self._systems.get(key)
        if system is not None:
            return system

        view = self._view(solution_type)
        blocks = condense_elements(
            self.elements,
            lambda eid: self.element_block(eid, matrix_type, constants, varcoeffs,
                                           static_cond=solution_type.static_cond),
            n_threads=self.params.n_threads)
        system = create_global_lin_sys(key, blocks, view, self.params, comm=self.comm)
        logger.info(f"built {system!r}; matrix cache {self.cache.stats()}")
        self._systems[key] = system
        return system

    def build_coupled_system(self, local_matrices: Sequence[np.ndarray],
                             velocity_bnd, pressure, velocity_int, mean_mode: int = 0,
                             solution_type=GlobalSysSolnType.DIRECT_STATIC_COND):
        """
        Global system of a coupled velocity-pressure problem.

        Every element matrix is condensed in two levels; the mean pressure
        mode joins the velocity boundary modes as the element's private
        boundary mode, so the map must carry ``n_private >= 1``.
        """
        if self.map.n_private < 1:
            raise ConfigurationError("Coupled systems need n_private >= 1 in the map.")
        solution_type = coerce_enum(GlobalSysSolnType, solution_type, "global system solution type")
        if not solution_type.static_cond:
            raise UnsupportedSolveError("Coupled systems are solved by static condensation only.")
        if len(local_matrices) != len(self.elements):
            raise ConfigurationError(
                f"{len(local_matrices)} coupled matrices for {len(self.elements)} elements.")
        blocks = condense_elements(
            range(len(self.elements)),
            lambda k: condense_coupled(local_matrices[k], velocity_bnd, pressure, velocity_int,
                                       mean_mode, element=int(self.elements[k])),
            n_threads=self.params.n_threads)
        key = GlobalLinSysKey(matrix_type=None, solution_type=solution_type)
        return create_global_lin_sys(key, blocks, self.map.bnd, self.params,
                                     comm=self.comm, symmetric=False)

    # ------------------------------------------------------------------
    # right-hand sides and boundary values
    # ------------------------------------------------------------------
    def load_vectors(self, f) -> List[np.ndarray]:
        """Element forcing ∫ f φ plus Neumann and Robin boundary terms."""
        return element_load_vectors(self.provider, self.mesh, f, self.bcs, self.elements)

    def evaluate_dirichlet(self) -> np.ndarray:
        """Values of the Dirichlet DOFs (universal numbering)."""
        m = self.map
        vals = np.zeros(m.n_dirichlet)
        bc_for = {bc.domain_tag: bc for bc in self.bcs if bc.method == 'dirichlet'}
        xy = self.mesh.nodes_x_y_pos
        for vid, tag in m.dirichlet_vertices.items():
            x, y = xy[vid]
            vals[m.vertex_ids[vid]] = float(np.asarray(bc_for[tag](x, y)))

        for gid, tag in m.dirichlet_edges.items():
            ids = m.edge_ids[gid]
            if ids.size == 0:
                continue
            a, b = self.mesh.edge(gid).nodes
            n_modes = ids.size + 2
            t, w = gauss_legendre(n_modes + 1)
            pts = np.outer(0.5 * (1 - t), xy[a]) + np.outer(0.5 * (1 + t), xy[b])
            g = np.broadcast_to(np.asarray(bc_for[tag](pts[:, 0], pts[:, 1]), dtype=float),
                                t.shape)
            B, _ = tabulate_1d(n_modes, t)
            # L2 projection of what the vertex modes leave over onto the edge bubbles
            r = g - vals[m.vertex_ids[a]] * B[0] - vals[m.vertex_ids[b]] * B[1]
            bubbles = B[2:]
            vals[ids] = np.linalg.solve((bubbles * w) @ bubbles.T, bubbles @ (w * r))
        return vals

    # ------------------------------------------------------------------
    # solve
    # ------------------------------------------------------------------
    def solve(self, system, forcing: Sequence[np.ndarray], dirichlet_values=None) -> List[np.ndarray]:
        """Per-element coefficients of the solution of ``system``."""
        view = system.view
        forcing = [np.asarray(f, dtype=float) for f in forcing]
        if len(forcing) != len(view.maps):
            raise ConfigurationError(f"{len(forcing)} forcing vectors for {len(view.maps)} elements.")
        if dirichlet_values is None:
            dirichlet_values = self.evaluate_dirichlet()
        dirichlet_values = np.asarray(dirichlet_values, dtype=float)
        if dirichlet_values.size == view.n_universal_dirichlet:
            dirichlet_values = dirichlet_values[view.universal_ids[:view.n_dirichlet]]

        rhs = condensed_rhs(forcing, system.blocks, view)
        u = system.solve(rhs, dirichlet_values)
        return recover(u, system.blocks, view, forcing)

    def helm_solve(self, f, lam: float, solution_type=None) -> List[np.ndarray]:
        """Solve -∇²u + λu = f with the discretisation's boundary conditions."""
        system = self.build_system(MatrixType.HELMHOLTZ, {"lambda": lam},
                                   solution_type=solution_type)
        return self.solve(system, self.load_vectors(f))

    def evaluate(self, coeffs: Sequence[np.ndarray], points) -> List[np.ndarray]:
        """Solution values at reference points of every local element."""
        return [self.provider.evaluate(eid, c, points) for eid, c in zip(self.elements, coeffs)]

    def clear(self) -> None:
        self.cache.clear()
        self._systems.clear()
