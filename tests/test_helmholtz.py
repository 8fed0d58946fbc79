import numpy as np
import pytest
import sympy as sp

from pyhpsolve import (BoundaryCondition, Discretisation,
                       LinearSolverParameters, MatrixType)
from pyhpsolve.core import Mesh
from pyhpsolve.fem.reference.modal import tabulate_1d
from pyhpsolve.utils.meshgen import renumber_nodes, structured_quad, structured_segment

# Manufactured solution in Q3, so the discrete solution is exact
x, y = sp.symbols("x y")
LAM = 1.5
u_sym = x**3 * y**2 - 2 * x * y**3 + x**2 + sp.Rational(1, 2) * y - 1
f_sym = -sp.diff(u_sym, x, 2) - sp.diff(u_sym, y, 2) + LAM * u_sym
ue = sp.lambdify((x, y), u_sym, "numpy")
fe = sp.lambdify((x, y), f_sym, "numpy")
dudy = sp.lambdify((x, y), sp.diff(u_sym, y), "numpy")


def _mesh(permuted):
    nodes, elems = structured_quad(2.0, 1.0, nx=3, ny=2)
    if permuted:
        perm = np.random.default_rng(11).permutation(len(nodes))
        nodes, elems = renumber_nodes(nodes, elems, perm)
        # start every element at a different corner
        elems = np.array([np.roll(e, k % 4) for k, e in enumerate(elems)])
    mesh = Mesh(nodes, elems, element_type='quad', poly_order=3)
    mesh.tag_boundary_edges({'top': lambda x, y: np.isclose(y, 1.0),
                             'wall': lambda x, y: True})
    return mesh


def _bcs(top):
    wall = BoundaryCondition('wall', 'dirichlet', ue)
    if top == 'neumann':
        return [wall, BoundaryCondition('top', 'neumann', dudy)]
    return [wall, BoundaryCondition('top', 'robin', lambda x, y: dudy(x, y) + 2.0 * ue(x, y),
                                    robin_coeff=2.0)]


def max_error(disc, coeffs, exact):
    err = 0.0
    for eid, c in zip(disc.elements, coeffs):
        pts = disc.provider.quadrature_points(eid)
        xq = disc.provider.physical_points(eid, pts)
        uh = disc.provider.evaluate(eid, c, pts)
        err = max(err, float(np.abs(uh - exact(xq[:, 0], xq[:, 1])).max()))
    return err


@pytest.mark.parametrize("solution_type, tol", [
    ("DirectStaticCond", 1e-9),
    ("DirectFull", 1e-9),
    ("IterativeStaticCond", 1e-7),
    ("IterativeFull", 1e-7),
])
@pytest.mark.parametrize("top", ["neumann", "robin"])
@pytest.mark.parametrize("permuted", [False, True])
def test_helmholtz_manufactured_solution(solution_type, tol, top, permuted):
    disc = Discretisation(_mesh(permuted), _bcs(top),
                          LinearSolverParameters(solution_type=solution_type, tolerance=1e-12))
    coeffs = disc.helm_solve(fe, LAM)
    assert max_error(disc, coeffs, ue) < tol


def test_threaded_element_loop_matches_serial():
    serial = Discretisation(_mesh(True), _bcs('robin'))
    pooled = Discretisation(_mesh(True), _bcs('robin'), LinearSolverParameters(n_threads=4))
    for a, b in zip(serial.helm_solve(fe, LAM), pooled.helm_solve(fe, LAM)):
        assert np.allclose(a, b, atol=1e-12)


def test_dirichlet_values_are_exact_on_edges():
    disc = Discretisation(_mesh(False), _bcs('neumann'))
    vals = disc.evaluate_dirichlet()
    m = disc.map
    for gid in m.dirichlet_edges:
        a, b = disc.mesh.edge(gid).nodes
        t = np.linspace(-1, 1, 5)
        pts = np.outer(0.5 * (1 - t), disc.mesh.nodes_x_y_pos[a]) + \
            np.outer(0.5 * (1 + t), disc.mesh.nodes_x_y_pos[b])
        B, _ = tabulate_1d(4, t)
        trace = vals[m.vertex_ids[a]] * B[0] + vals[m.vertex_ids[b]] * B[1] + \
            vals[m.edge_ids[gid]] @ B[2:]
        assert np.allclose(trace, ue(pts[:, 0], pts[:, 1]))


# --------------------------------------------------------------------------
# 1D
# --------------------------------------------------------------------------
def _line(n=4, order=4):
    nodes, elems = structured_segment(1.0, n)
    mesh = Mesh(nodes, elems, element_type='segment', poly_order=order)
    mesh.tag_boundary_vertices({'left': lambda x, y: x < 0.5, 'right': lambda x, y: x > 0.5})
    return mesh


def _max_error_1d(disc, coeffs, exact):
    err = 0.0
    for eid, c in zip(disc.elements, coeffs):
        pts = np.linspace(-1, 1, 7)
        xq = disc.provider.physical_points(eid, pts)[:, 0]
        err = max(err, float(np.abs(disc.provider.evaluate(eid, c, pts) - exact(xq)).max()))
    return err


def test_poisson_1d():
    exact = lambda s: s**4 - s + 2.0
    mesh = _line()
    bcs = [BoundaryCondition('left', 'dirichlet', 2.0), BoundaryCondition('right', 'dirichlet', 2.0)]
    for solution_type in ("DirectStaticCond", "IterativeFull"):
        disc = Discretisation(mesh, bcs, LinearSolverParameters(tolerance=1e-12))
        coeffs = disc.helm_solve(lambda s, _: -12.0 * s**2, 0.0, solution_type=solution_type)
        assert _max_error_1d(disc, coeffs, exact) < 1e-9


def test_robin_1d():
    # u = x^3 + 1, u'(1) + 3 u(1) = 9
    exact = lambda s: s**3 + 1.0
    mesh = _line(n=3, order=3)
    bcs = [BoundaryCondition('left', 'dirichlet', 1.0),
           BoundaryCondition('right', 'robin', 9.0, robin_coeff=3.0)]
    disc = Discretisation(mesh, bcs)
    coeffs = disc.helm_solve(lambda s, _: -6.0 * s + 0.5 * (s**3 + 1.0), 0.5)
    assert _max_error_1d(disc, coeffs, exact) < 1e-10


def test_advection_diffusion_reaction_1d():
    # -u'' + 2 u' + 0.5 u = f,  u = x^2 - x^3
    exact = lambda s: s**2 - s**3
    f = lambda s, _: -(2.0 - 6.0 * s) + 2.0 * (2.0 * s - 3.0 * s**2) + 0.5 * (s**2 - s**3)
    mesh = _line(n=3, order=3)
    bcs = [BoundaryCondition('left', 'dirichlet', 0.0), BoundaryCondition('right', 'dirichlet', 0.0)]
    disc = Discretisation(mesh, bcs)
    system = disc.build_system(MatrixType.ADVECTION_DIFFUSION_REACTION,
                               {"velocity": 2.0, "reaction": 0.5})
    assert not system.symmetric
    coeffs = disc.solve(system, disc.load_vectors(f))
    assert _max_error_1d(disc, coeffs, exact) < 1e-10


def test_coupled_system_matches_monolithic_solve():
    n_el, nm, n_p, eps = 3, 4, 2, 0.1
    mesh = _line(n=n_el, order=nm - 1)
    bcs = [BoundaryCondition('left', 'dirichlet', 1.0), BoundaryCondition('right', 'dirichlet', -0.5)]
    disc = Discretisation(mesh, bcs, n_private=1)
    rng = np.random.default_rng(2)

    mats, forcing = [], []
    for eid in range(n_el):
        H = disc.local_matrix(eid, MatrixType.HELMHOLTZ, {"lambda": 1.0}).dense()
        G = rng.standard_normal((nm, n_p))
        mats.append(np.block([[H, G], [G.T, -eps * np.eye(n_p)]]))
        forcing.append(rng.standard_normal(nm + n_p))
    pressure = np.arange(nm, nm + n_p)
    system = disc.build_coupled_system(mats, [0, 1], pressure, np.arange(2, nm))
    coeffs = disc.solve(system, forcing)

    # monolithic reference: vertices, velocity interiors, then element pressures
    n_int = nm - 2
    n_tot = (n_el + 1) + n_el * n_int + n_el * n_p
    dofs = []
    for e in range(n_el):
        vint = n_el + 1 + e * n_int + np.arange(n_int)
        pres = n_el + 1 + n_el * n_int + e * n_p + np.arange(n_p)
        dofs.append(np.concatenate([[e, e + 1], vint, pres]))
    A = np.zeros((n_tot, n_tot))
    b = np.zeros(n_tot)
    for e in range(n_el):
        A[np.ix_(dofs[e], dofs[e])] += mats[e]
        b[dofs[e]] += forcing[e]
    fixed = np.array([0, n_el])
    u = np.zeros(n_tot)
    u[fixed] = [1.0, -0.5]
    free = np.setdiff1d(np.arange(n_tot), fixed)
    u[free] = np.linalg.solve(A[np.ix_(free, free)], b[free] - A[np.ix_(free, fixed)] @ u[fixed])

    for e in range(n_el):
        assert np.allclose(coeffs[e], u[dofs[e]], atol=1e-10)
