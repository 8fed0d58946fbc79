# pyhpsolve.fem.reference
"""
Order-agnostic reference expansions built on the modified C0 basis.

Coefficient layout
------------------
segment : k = i                       (i = 0..P)
quad    : k = j*(P+1) + i             (eta outer, xi inner)

Vertices of the reference quad are v0(-1,-1), v1(1,-1), v2(1,1), v3(-1,1);
edges run v0->v1, v1->v2, v3->v2, v0->v3 so that each edge is traversed in
the direction of increasing xi or eta.
"""
from functools import lru_cache

import numpy as np

from pyhpsolve.core.matrixkey import ElementShape
from pyhpsolve.fem.reference.modal import tabulate_1d, reversal_signs


class StdSegment:
    shape = ElementShape.SEGMENT
    n_vertices = 2
    n_edges = 0

    def __init__(self, n_modes: int):
        self.n_modes = n_modes
        self.n_coeffs = n_modes
        self.boundary_map = np.array([0, 1])
        self.interior_map = np.arange(2, n_modes)

    def vertex_map(self, local_vertex: int) -> int:
        return local_vertex

    def edge_to_element_map(self, local_edge, reversed_):
        raise IndexError("Segments have no edges.")

    def tabulate(self, points):
        """(B, dB): B (n_coeffs, nq), dB (1, n_coeffs, nq)."""
        xi = np.asarray(points, dtype=float).reshape(-1)
        b, db = tabulate_1d(self.n_modes, xi)
        return b, db[None, :, :]


class StdQuad:
    shape = ElementShape.QUADRILATERAL
    n_vertices = 4
    n_edges = 4

    def __init__(self, n_modes: int):
        nm = n_modes
        self.n_modes = nm
        self.n_coeffs = nm * nm
        self._vertex = (0, 1, nm + 1, nm)
        inner = np.arange(2, nm)
        self._edges = (
            inner,                # eta = -1
            inner * nm + 1,       # xi  =  1
            nm + inner,           # eta =  1
            inner * nm,           # xi  = -1
        )
        self.boundary_map = np.concatenate([np.array(self._vertex), *self._edges]).astype(int)
        self.interior_map = np.array([j * nm + i for j in range(2, nm) for i in range(2, nm)],
                                     dtype=int)

    def vertex_map(self, local_vertex: int) -> int:
        return self._vertex[local_vertex]

    def edge_to_element_map(self, local_edge: int, reversed_: bool):
        """Local indices of the edge-interior modes and their signs."""
        idx = self._edges[local_edge]
        signs = reversal_signs(self.n_modes) if reversed_ else np.ones(idx.size)
        return idx, signs

    def tabulate(self, points):
        """(B, dB): B (n_coeffs, nq), dB (2, n_coeffs, nq) w.r.t. (xi, eta)."""
        pts = np.atleast_2d(np.asarray(points, dtype=float))
        bx, dbx = tabulate_1d(self.n_modes, pts[:, 0])
        by, dby = tabulate_1d(self.n_modes, pts[:, 1])
        nq = pts.shape[0]
        b = (by[:, None, :] * bx[None, :, :]).reshape(self.n_coeffs, nq)
        d_xi = (by[:, None, :] * dbx[None, :, :]).reshape(self.n_coeffs, nq)
        d_eta = (dby[:, None, :] * bx[None, :, :]).reshape(self.n_coeffs, nq)
        return b, np.stack([d_xi, d_eta])


_STD = {ElementShape.SEGMENT: StdSegment, ElementShape.QUADRILATERAL: StdQuad}


@lru_cache(maxsize=None)
def get_std_expansion(shape: ElementShape, n_modes: int):
    """Shared reference expansion for a shape and number of modes per direction."""
    return _STD[shape](n_modes)
