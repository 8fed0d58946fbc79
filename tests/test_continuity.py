import numpy as np

from pyhpsolve import LocalToGlobalMap
from pyhpsolve.core import Mesh
from pyhpsolve.core.topology import Node
from pyhpsolve.fem.expansion import SpectralElementProvider


def _setup(order=4):
    # A = (0,1,4,3) walks the shared edge 1->4, B = (5,4,1,2) walks it 4->1
    coords = [(0, 0), (1, 0), (2, 0), (0, 1), (1, 1), (2, 1)]
    nodes = [Node(i, x, y) for i, (x, y) in enumerate(coords)]
    mesh = Mesh(nodes, np.array([[0, 1, 4, 3], [5, 4, 1, 2]]),
                element_type='quad', poly_order=order)
    provider = SpectralElementProvider(mesh)
    return mesh, provider, LocalToGlobalMap(mesh, provider)


def _element_coeffs(provider, m, u, signed=True):
    out = []
    for eid, (gids, sgn) in enumerate(zip(m.bmap, m.bsign)):
        c = np.zeros(provider.n_coeffs(eid))
        c[provider.get_boundary_map(eid)] = (sgn if signed else 1.0) * u[gids]
        out.append(c)
    return out


def test_trace_is_continuous_across_reversed_edge():
    mesh, provider, m = _setup()
    u = np.random.default_rng(7).standard_normal(m.n_global_bnd)
    ca, cb = _element_coeffs(provider, m, u)
    t = np.linspace(-1, 1, 9)
    ua = provider.evaluate(0, ca, np.column_stack([np.ones_like(t), t]))
    ub = provider.evaluate(1, cb, np.column_stack([np.ones_like(t), -t]))
    xa = provider.physical_points(0, np.column_stack([np.ones_like(t), t]))
    xb = provider.physical_points(1, np.column_stack([np.ones_like(t), -t]))
    assert np.allclose(xa, xb)
    assert np.allclose(ua, ub, atol=1e-12)


def test_unsigned_map_breaks_continuity():
    _, provider, m = _setup()
    u = np.random.default_rng(7).standard_normal(m.n_global_bnd)
    ca, cb = _element_coeffs(provider, m, u, signed=False)
    t = np.linspace(-0.9, 0.9, 7)
    ua = provider.evaluate(0, ca, np.column_stack([np.ones_like(t), t]))
    ub = provider.evaluate(1, cb, np.column_stack([np.ones_like(t), -t]))
    assert not np.allclose(ua, ub, atol=1e-8)
