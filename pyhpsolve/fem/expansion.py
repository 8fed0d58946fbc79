"""pyhpsolve.fem.expansion
Element operators of the modified C0 basis on a mesh.

``SpectralElementProvider`` is the element layer the assembly core talks to:
it names every local matrix with a ``MatrixKey`` (so that elements with the
same shape, order, parameters and geometry share one matrix) and computes
the matrix for a key by Gauss-Legendre quadrature.

Operators (test index i, trial index j)::

    MASS          M_ij = ∫ m φ_i φ_j
    LAPLACIAN     L_ij = ∫ d ∇φ_i·∇φ_j
    HELMHOLTZ     H    = L + λ M
    ADVECTION_DIFFUSION_REACTION
                  K_ij = ν L_ij + ∫ φ_i (a·∇φ_j) + c M_ij

``m`` and ``d`` are the optional variable coefficients ``"mass"`` and
``"diffusion"`` (callables of ``(x, y)``), 1 otherwise.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from pyhpsolve.core.matrixkey import (MatrixKey, MatrixType, freeze_constants,
                                      varcoeff_signature)
from pyhpsolve.errors import ConfigurationError
from pyhpsolve.fem import transform
from pyhpsolve.fem.reference import get_std_expansion
from pyhpsolve.integration.quadrature import edge_quadrature, gauss_legendre, quad_rule

logger = logging.getLogger(__name__)

_CONSTANTS = {
    MatrixType.MASS: {},
    MatrixType.LAPLACIAN: {},
    MatrixType.HELMHOLTZ: {"lambda": None},
    MatrixType.ADVECTION_DIFFUSION_REACTION: {"velocity": None, "diffusion": 1.0, "reaction": 0.0},
}
_VARCOEFFS = {"mass", "diffusion"}


def _as_field(value, x: np.ndarray) -> np.ndarray:
    """Evaluate a constant or a callable of (x, y) at points x (nq, 2)."""
    if value is None:
        return np.ones(x.shape[0])
    if callable(value):
        return np.broadcast_to(np.asarray(value(x[:, 0], x[:, 1]), dtype=float),
                               (x.shape[0],))
    return np.full(x.shape[0], float(value))


class SpectralElementProvider:
    def __init__(self, mesh, quad_extra: int = 1):
        self.mesh = mesh
        self.quad_extra = int(quad_extra)
        self._varcoeffs: Dict[Tuple, Dict[str, Callable]] = {}

    # ------------------------------------------------------------------
    # expansion layout
    # ------------------------------------------------------------------
    def std(self, eid: int):
        return get_std_expansion(self.mesh.shape, int(self.mesh.poly_orders[eid]) + 1)

    def n_coeffs(self, eid: int) -> int:
        return self.std(eid).n_coeffs

    def get_boundary_map(self, eid: int) -> np.ndarray:
        return self.std(eid).boundary_map

    def get_interior_map(self, eid: int) -> np.ndarray:
        return self.std(eid).interior_map

    def get_vertex_map(self, eid: int, local_vertex: int) -> int:
        return self.std(eid).vertex_map(local_vertex)

    def get_edge_to_element_map(self, eid: int, local_edge: int, reversed_: bool):
        return self.std(eid).edge_to_element_map(local_edge, reversed_)

    def _rule(self, eid: int):
        n = self.std(eid).n_modes + self.quad_extra
        if self.mesh.dim == 1:
            return gauss_legendre(n)
        return quad_rule(n)

    # ------------------------------------------------------------------
    # matrix identity
    # ------------------------------------------------------------------
    def matrix_key(self, eid: int, matrix_type, constants: Optional[Mapping] = None,
                   varcoeffs: Optional[Mapping] = None) -> Tuple[MatrixKey, float]:
        """Key of the local matrix of ``eid`` and the factor it is scaled by."""
        matrix_type = MatrixType(matrix_type)
        constants = self._check_constants(matrix_type, constants)
        vid = varcoeff_signature(varcoeffs)
        if varcoeffs:
            unknown = set(varcoeffs) - _VARCOEFFS
            if unknown:
                raise ConfigurationError(f"Unknown variable coefficients {sorted(unknown)}; "
                                         f"expected a subset of {sorted(_VARCOEFFS)}.")
            self._varcoeffs[vid] = dict(varcoeffs)

        scale = 1.0
        if vid or not transform.is_affine(self.mesh, eid):
            metric = ("element", eid)
        elif matrix_type is MatrixType.MASS:
            metric = None
            scale = float(np.linalg.det(
                transform.jacobian(self.mesh, eid, np.zeros((1, self.mesh.dim)))[0]))
        else:
            metric = ("affine", transform.metric_signature(self.mesh, eid))

        std = self.std(eid)
        key = MatrixKey(matrix_type=matrix_type, shape=std.shape,
                        orders=(std.n_modes - 1,) * self.mesh.dim,
                        constants=freeze_constants(constants),
                        varcoeff_id=vid, metric=metric)
        return key, scale

    def _check_constants(self, matrix_type, constants):
        allowed = _CONSTANTS[matrix_type]
        constants = dict(constants or {})
        unknown = set(constants) - set(allowed)
        if unknown:
            raise ConfigurationError(
                f"{matrix_type.value} does not take constants {sorted(unknown)}.")
        for name, default in allowed.items():
            if name not in constants:
                if default is None:
                    raise ConfigurationError(f"{matrix_type.value} needs the constant '{name}'.")
                constants[name] = default
        if "velocity" in constants:
            vel = np.atleast_1d(np.asarray(constants["velocity"], dtype=float))
            if vel.size != self.mesh.dim:
                raise ConfigurationError(
                    f"velocity has {vel.size} components on a {self.mesh.dim}D mesh.")
            constants["velocity"] = tuple(vel)
        return constants

    # ------------------------------------------------------------------
    # matrices
    # ------------------------------------------------------------------
    def compute_matrix(self, eid: int, key: MatrixKey) -> np.ndarray:
        std = self.std(eid)
        pts, w = self._rule(eid)
        B, dB = std.tabulate(pts)
        dim = self.mesh.dim
        nq = w.size
        if key.is_std:
            detJ = np.ones(nq)
            invJ = np.broadcast_to(np.eye(dim), (nq, dim, dim))
            x = np.zeros((nq, 2))
        else:
            detJ, invJ, x = transform.geometric_factors(self.mesh, eid, pts)

        vc = self._varcoeffs.get(key.varcoeff_id, {})
        wq = w * detJ
        # physical gradients G[d, k, q] = sum_r dxi_r/dx_d dphi_k/dxi_r
        G = np.einsum('qrd,rkq->dkq', invJ, dB)

        def mass():
            return (B * (wq * _as_field(vc.get("mass"), x))) @ B.T

        def stiffness():
            wd = wq * _as_field(vc.get("diffusion"), x)
            return np.einsum('dkq,dlq,q->kl', G, G, wd)

        mtype = key.matrix_type
        if mtype is MatrixType.MASS:
            mat = mass()
        elif mtype is MatrixType.LAPLACIAN:
            mat = stiffness()
        elif mtype is MatrixType.HELMHOLTZ:
            mat = stiffness() + key.constant("lambda") * mass()
        elif mtype is MatrixType.ADVECTION_DIFFUSION_REACTION:
            vel = np.asarray(key.constant("velocity"))
            adv = (B * wq) @ np.einsum('d,dlq->lq', vel, G).T
            mat = key.constant("diffusion") * stiffness() + adv + key.constant("reaction") * mass()
        else:
            raise ConfigurationError(f"No {mtype} operator for {self.mesh.element_type} elements.")
        logger.debug(f"computed {key} on element {eid}")
        return mat

    def robin_mass(self, eid: int, local_facet: int, alpha: float) -> np.ndarray:
        """alpha ∫ φ_i φ_j ds over one boundary facet of the element."""
        B, w = self._facet_basis(eid, local_facet)
        return alpha * (B * w) @ B.T

    # ------------------------------------------------------------------
    # vectors and evaluation
    # ------------------------------------------------------------------
    def load_vector(self, eid: int, f) -> np.ndarray:
        """∫ f φ_i over the element."""
        pts, w = self._rule(eid)
        B, _ = self.std(eid).tabulate(pts)
        detJ, _, x = transform.geometric_factors(self.mesh, eid, pts)
        return B @ (w * detJ * _as_field(f, x))

    def boundary_load(self, eid: int, local_facet: int, g) -> np.ndarray:
        """∫ g φ_i ds over one boundary facet of the element."""
        B, w, x = self._facet_basis(eid, local_facet, with_points=True)
        return B @ (w * _as_field(g, x))

    def _facet_basis(self, eid, local_facet, with_points=False):
        std = self.std(eid)
        if self.mesh.dim == 1:
            ref = np.array([-1.0 if local_facet == 0 else 1.0])
            B, _ = std.tabulate(ref)
            w = np.ones(1)
        else:
            ref, ws = edge_quadrature(local_facet, std.n_modes + self.quad_extra)
            B, _ = std.tabulate(ref)
            w = ws * transform.edge_length_factor(self.mesh, eid, local_facet, ref)
        if with_points:
            return B, w, transform.x_mapping(self.mesh, eid, ref)
        return B, w

    def evaluate(self, eid: int, coeffs: np.ndarray, points) -> np.ndarray:
        """Expansion values at reference points."""
        B, _ = self.std(eid).tabulate(points)
        return B.T @ coeffs

    def physical_points(self, eid: int, points) -> np.ndarray:
        return transform.x_mapping(self.mesh, eid, points)

    def quadrature_points(self, eid: int):
        """Reference quadrature points of the element."""
        return self._rule(eid)[0]
