"""pyhpsolve.integration.quadrature
Gauss-Legendre rules on the reference segment, square and quad edges.
"""
import numpy as np
from functools import lru_cache
from numpy.polynomial.legendre import leggauss


# -------------------------------------------------------------------------
# 1-D Gauss-Legendre
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def gauss_legendre(n_points: int):
    if n_points < 1:
        raise ValueError(n_points)
    return leggauss(n_points)  # (points, weights)


# -------------------------------------------------------------------------
# Tensor-product construction helpers
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def quad_rule(n_points: int):
    """Tensor rule on [-1,1]^2, eta outer and xi inner."""
    xi, wi = gauss_legendre(n_points)
    pts = np.array([[x, y] for y in xi for x in xi])
    wts = np.array([wx * wy for wy in wi for wx in wi])
    return pts, wts


# Reference coordinates of a quad edge, parametrised by s in [-1,1]
# along the edge's reference direction.
_QUAD_EDGE_PARAM = {
    0: lambda s: (s, -np.ones_like(s)),
    1: lambda s: (np.ones_like(s), s),
    2: lambda s: (s, np.ones_like(s)),
    3: lambda s: (-np.ones_like(s), s),
}


def edge_quadrature(local_edge: int, n_points: int):
    """Points (n, 2) on a reference quad edge and the 1-D weights."""
    s, w = gauss_legendre(n_points)
    xi, eta = _QUAD_EDGE_PARAM[local_edge](s)
    return np.column_stack([xi, eta]), w
