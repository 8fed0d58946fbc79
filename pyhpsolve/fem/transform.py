"""pyhpsolve.fem.transform
Reference -> physical mapping for straight-sided segments and bilinear quads.
"""
import numpy as np

from pyhpsolve.errors import ConfigurationError


def _q(x: float, ndp: int = 12) -> float:
    """Quantize a float for cache keys (robust to tiny FP noise)."""
    return float(round(x, ndp)) + 0.0


def _bilinear(xi, eta):
    N = 0.25 * np.array([(1 - xi) * (1 - eta), (1 + xi) * (1 - eta),
                         (1 + xi) * (1 + eta), (1 - xi) * (1 + eta)])
    dN_dxi = 0.25 * np.array([-(1 - eta), (1 - eta), (1 + eta), -(1 + eta)])
    dN_deta = 0.25 * np.array([-(1 - xi), -(1 + xi), (1 + xi), (1 - xi)])
    return N, dN_dxi, dN_deta


def x_mapping(mesh, elem_id, points):
    """Physical coordinates (nq, 2) of reference points."""
    X = mesh.element_coords(elem_id)
    pts = np.asarray(points, dtype=float)
    if mesh.dim == 1:
        xi = pts.reshape(-1)
        return np.outer(0.5 * (1 - xi), X[0]) + np.outer(0.5 * (1 + xi), X[1])
    pts = np.atleast_2d(pts)
    N, _, _ = _bilinear(pts[:, 0], pts[:, 1])
    return N.T @ X


def jacobian(mesh, elem_id, points):
    """J[q, a, r] = dx_a / dxi_r at every point; shape (nq, dim, dim)."""
    X = mesh.element_coords(elem_id)
    pts = np.asarray(points, dtype=float)
    if mesh.dim == 1:
        nq = pts.reshape(-1).size
        return np.full((nq, 1, 1), 0.5 * (X[1, 0] - X[0, 0]))
    pts = np.atleast_2d(pts)
    _, dN_dxi, dN_deta = _bilinear(pts[:, 0], pts[:, 1])
    J = np.empty((pts.shape[0], 2, 2))
    J[:, :, 0] = dN_dxi.T @ X
    J[:, :, 1] = dN_deta.T @ X
    return J


def geometric_factors(mesh, elem_id, points):
    """(detJ (nq,), invJ (nq, dim, dim), x (nq, 2)) at reference points."""
    J = jacobian(mesh, elem_id, points)
    detJ = np.linalg.det(J)
    if np.any(detJ <= 0.0):
        raise ConfigurationError(f"Element {elem_id} has a non-positive Jacobian.")
    return detJ, np.linalg.inv(J), x_mapping(mesh, elem_id, points)


def is_affine(mesh, elem_id) -> bool:
    """Constant Jacobian: every segment and every parallelogram."""
    if mesh.dim == 1:
        return True
    X = mesh.element_coords(elem_id)
    scale = np.abs(X).max() + 1.0
    return bool(np.allclose(X[0] + X[2], X[1] + X[3], rtol=0.0, atol=1e-12 * scale))


def metric_signature(mesh, elem_id) -> tuple:
    """Rounded constant Jacobian of an affine element."""
    J = jacobian(mesh, elem_id, np.zeros((1, mesh.dim)))[0]
    return tuple(_q(v) for v in J.ravel())


def edge_length_factor(mesh, elem_id, local_edge, points):
    """|dx/ds| along a reference quad edge at points (nq, 2) lying on that edge."""
    J = jacobian(mesh, elem_id, points)
    axis = 0 if local_edge in (0, 2) else 1
    return np.linalg.norm(J[:, :, axis], axis=1)
