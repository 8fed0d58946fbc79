import threading
import time

import numpy as np

from pyhpsolve import BoundaryCondition, Discretisation, LinearSolverParameters, MatrixCache
from pyhpsolve.core import Mesh
from pyhpsolve.core.matrixkey import ElementShape, MatrixKey, MatrixType
from pyhpsolve.utils.meshgen import structured_quad


def test_concurrent_first_access_computes_once():
    cache = MatrixCache()
    key = MatrixKey(MatrixType.MASS, ElementShape.QUADRILATERAL, (3, 3))
    calls = []
    results = []
    barrier = threading.Barrier(8)

    def factory():
        calls.append(1)
        time.sleep(0.05)
        return np.eye(3)

    def worker():
        barrier.wait()
        results.append(cache.get_or_compute(key, factory))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(calls) == 1
    assert all(r is results[0] for r in results)
    assert cache.stats() == {"entries": 1, "hits": 7, "misses": 1}


def test_kinds_are_separate_namespaces():
    cache = MatrixCache()
    key = MatrixKey(MatrixType.LAPLACIAN, ElementShape.SEGMENT, (2,))
    cache.get_or_compute(key, lambda: "matrix")
    assert cache.get_or_compute(key, lambda: "block", kind="static_cond") == "block"
    assert ("matrix", key) in cache and len(cache) == 2
    cache.clear()
    assert len(cache) == 0 and cache.hits == 0


def test_uniform_mesh_builds_one_matrix():
    nodes, elems = structured_quad(1.0, 1.0, nx=4, ny=4)
    mesh = Mesh(nodes, elems, element_type='quad', poly_order=3)
    mesh.tag_boundary_edges({'wall': lambda x, y: True})
    disc = Discretisation(mesh, [BoundaryCondition('wall', 'dirichlet', 0.0)],
                          LinearSolverParameters(solution_type="DirectStaticCond"))
    disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})
    # one element matrix and one condensed block for all 16 elements
    assert disc.cache.misses == 2
    assert disc.cache.hits == 2 * 15
    again = disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})
    assert again is disc.build_system(MatrixType.HELMHOLTZ, {"lambda": 1.0})
    assert disc.cache.misses == 2
