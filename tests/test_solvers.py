import numpy as np
import pytest

import pyhpsolve.solvers.petsc as petsc_backend
from pyhpsolve import (BoundaryCondition, ConfigurationError, ConvergenceError, Discretisation,
                       IndefiniteSystemError, LinearSolverParameters, MatrixType,
                       UnsupportedSolveError)
from pyhpsolve.config import GlobalSysSolnType
from pyhpsolve.core import Mesh
from pyhpsolve.solvers import HAS_PETSC, conjugate_gradient
from pyhpsolve.solvers.preconditioner import (DiagonalPreconditioner, LinearInversePreconditioner,
                                              NullPreconditioner)
from pyhpsolve.utils.meshgen import structured_quad, structured_segment


def _spd(eigenvalues, seed=0):
    n = len(eigenvalues)
    Q, _ = np.linalg.qr(np.random.default_rng(seed).standard_normal((n, n)))
    return Q @ np.diag(eigenvalues) @ Q.T


def _square(order=3, n=4, **params):
    nodes, elems = structured_quad(1.0, 1.0, nx=n, ny=n)
    mesh = Mesh(nodes, elems, element_type='quad', poly_order=order)
    mesh.tag_boundary_edges({'wall': lambda x, y: True})
    bcs = [BoundaryCondition('wall', 'dirichlet', 0.0)]
    return Discretisation(mesh, bcs, LinearSolverParameters(**params))


class TestConjugateGradient:
    def test_converges_in_at_most_n_steps(self):
        A = _spd(np.linspace(1.0, 50.0, 10))
        b = np.arange(1.0, 11.0)
        x, its = conjugate_gradient(lambda v: A @ v, b, tolerance=1e-10)
        assert its <= 20
        assert np.allclose(A @ x, b, atol=1e-8)

    def test_iteration_cap(self):
        A = _spd(np.linspace(1.0, 1e4, 40))
        with pytest.raises(ConvergenceError) as err:
            conjugate_gradient(lambda v: A @ v, np.ones(40), tolerance=1e-12, max_iterations=2)
        assert err.value.iterations == 2

    def test_zero_rhs_skips_the_solve(self):
        x, its = conjugate_gradient(lambda v: v, np.zeros(5))
        assert its == 0 and np.all(x == 0.0)

    def test_jacobi_beats_unpreconditioned(self):
        S = np.diag(np.logspace(0, 3, 60))
        A = S @ _spd(np.linspace(1.0, 2.0, 60), seed=4) @ S
        b = np.ones(60)
        _, its_null = conjugate_gradient(lambda v: A @ v, b, NullPreconditioner(),
                                         tolerance=1e-8)
        _, its_jac = conjugate_gradient(lambda v: A @ v, b, DiagonalPreconditioner(np.diag(A)),
                                        tolerance=1e-8)
        assert its_jac < its_null

    def test_tolerance_is_absolute_for_large_rhs(self):
        A = _spd(np.linspace(1.0, 100.0, 100), seed=1)
        b = A @ (1e4 * np.linspace(1.0, 2.0, 100))
        x, _ = conjugate_gradient(lambda v: A @ v, b, tolerance=1e-5)
        assert np.linalg.norm(b - A @ x) < 1e-5

    def test_indefinite_operator_is_reported(self):
        A = np.diag([1.0, -2.0, 3.0])
        with pytest.raises(IndefiniteSystemError) as err:
            conjugate_gradient(lambda v: A @ v, np.array([0.0, 1.0, 0.0]))
        assert isinstance(err.value, ConfigurationError)
        assert not isinstance(err.value, ConvergenceError)


def test_diagonal_preconditioner_rejects_non_positive_diagonal():
    with pytest.raises(IndefiniteSystemError):
        DiagonalPreconditioner(np.array([1.0, 0.0]))


def test_linear_inverse_adds_vertex_solve_to_jacobi():
    A = _spd(np.linspace(1.0, 5.0, 6), seed=2)
    pos = np.array([1, 4])
    A_vv = A[np.ix_(pos, pos)]
    precond = LinearInversePreconditioner(np.diag(A), A_vv, pos, [0, 1])
    r = np.arange(1.0, 7.0)
    expected = r / np.diag(A)
    expected[pos] += np.linalg.solve(A_vv, r[pos])
    assert np.allclose(precond(r), expected)


def test_linear_inverse_needs_fewer_iterations_than_jacobi():
    f = lambda x, y: np.sin(np.pi * x) * np.sin(np.pi * y)
    its = {}
    for ptype in ("Diagonal", "LinearInverse"):
        disc = _square(order=3, n=12, solution_type="IterativeStaticCond",
                       preconditioner=ptype, tolerance=1e-10)
        disc.helm_solve(f, 0.1)
        its[ptype] = disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 0.1}).last_iterations
    assert 0 < its["LinearInverse"] < its["Diagonal"]


@pytest.mark.parametrize("solution_type", ["IterativeStaticCond", "IterativeFull"])
def test_linear_inverse_matches_direct(solution_type):
    f = lambda x, y: 1.0 + x * y
    reference = _square(solution_type="DirectStaticCond").helm_solve(f, 1.0)
    disc = _square(solution_type=solution_type, preconditioner="LinearInverse", tolerance=1e-12)
    for a, b in zip(reference, disc.helm_solve(f, 1.0)):
        assert np.allclose(a, b, atol=1e-9)


def test_direct_system_is_factorised_once():
    disc = _square(solution_type="DirectStaticCond")
    system = disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})
    first = disc.solve(system, disc.load_vectors(1.0))
    disc.solve(system, disc.load_vectors(lambda x, y: x * y))
    again = disc.solve(system, disc.load_vectors(1.0))
    for a, b in zip(first, again):
        assert np.array_equal(a, b)
    assert system.n_factorisations == 1
    assert disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0}) is system
    other = disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 2.0})
    assert other is not system


def test_iterative_matches_direct():
    direct = _square(solution_type="DirectStaticCond")
    pcg = _square(solution_type="IterativeStaticCond", tolerance=1e-12)
    f = lambda x, y: np.sin(np.pi * x) * (1.0 + y)
    u_d = direct.helm_solve(f, 3.0)
    u_i = pcg.helm_solve(f, 3.0)
    for a, b in zip(u_d, u_i):
        assert np.allclose(a, b, atol=1e-9)
    system = pcg.build_system(MatrixType.HELMHOLTZ, {"lambda": 3.0})
    assert system.last_iterations > 0


def test_pcg_rejects_nonsymmetric_operator():
    disc = _square(order=2, n=2, solution_type="IterativeStaticCond")
    with pytest.raises(UnsupportedSolveError):
        disc.build_system(MatrixType.ADVECTION_DIFFUSION_REACTION, {"velocity": (1.0, 0.0)})


def test_unknown_solution_type():
    with pytest.raises(ConfigurationError):
        LinearSolverParameters(solution_type="Multigrid")
    disc = _square(order=2, n=2)
    with pytest.raises(ConfigurationError):
        disc.build_system(MatrixType.MASS, solution_type="Multigrid")


def test_invalid_parameters():
    with pytest.raises(ConfigurationError):
        LinearSolverParameters(tolerance=0.0)
    with pytest.raises(ConfigurationError):
        LinearSolverParameters(n_threads=0)


def test_negative_helmholtz_is_indefinite():
    disc = _square(order=2)
    with pytest.raises(IndefiniteSystemError):
        disc.build_system(MatrixType.HELMHOLTZ, {"lambda": -1000.0})


def test_full_solution_types_need_full_map():
    nodes, elems = structured_segment(1.0, 3)
    mesh = Mesh(nodes, elems, element_type='segment', poly_order=2)
    disc = Discretisation(mesh, n_private=1, pin_private=True)
    with pytest.raises(UnsupportedSolveError):
        disc.build_system(MatrixType.MASS, solution_type="DirectFull")


def test_petsc_unavailable(monkeypatch):
    monkeypatch.setattr(petsc_backend, "HAS_PETSC", False)
    disc = _square(order=2, n=2, solution_type="PETScStaticCond")
    with pytest.raises(UnsupportedSolveError, match="petsc4py"):
        disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})


@pytest.mark.skipif(not HAS_PETSC, reason="petsc4py not available")
@pytest.mark.parametrize("solution_type", ["PETScStaticCond", "PETScFull"])
def test_petsc_matches_direct(solution_type):
    f = lambda x, y: 1.0 + x
    reference = _square(solution_type="DirectStaticCond").helm_solve(f, 2.0)
    disc = _square(solution_type=solution_type, petsc_rtol=1e-13)
    for a, b in zip(reference, disc.helm_solve(f, 2.0)):
        assert np.allclose(a, b, atol=1e-8)


def test_mpi_comm_single_process():
    pytest.importorskip("mpi4py")
    from pyhpsolve.solvers.comm import MPIComm
    comm = MPIComm()
    if comm.size != 1:
        pytest.skip("needs a single process")
    assert np.allclose(comm.allreduce([1.0, 2.0]), [1.0, 2.0])
    vec = np.array([3.0, 4.0])
    assert np.allclose(comm.gather_scatter_sum(vec, np.array([2, 0]), 3), vec)
