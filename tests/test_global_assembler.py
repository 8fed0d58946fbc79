import dataclasses

import numpy as np
import pytest

from pyhpsolve import BoundaryCondition, Discretisation, MatrixType, StorageType
from pyhpsolve.assembly.global_matrix import GlobalAssembler
from pyhpsolve.core import Mesh
from pyhpsolve.errors import UnsupportedSolveError
from pyhpsolve.utils.diagnostics import plot_sparsity
from pyhpsolve.utils.meshgen import structured_quad, structured_segment


def _quad_disc(nx=4, ny=3, order=3):
    nodes, elems = structured_quad(1.0, 1.0, nx=nx, ny=ny)
    mesh = Mesh(nodes, elems, element_type='quad', poly_order=order)
    mesh.tag_boundary_edges({'bottom': lambda x, y: np.isclose(y, 0.0),
                             'other': lambda x, y: True})
    return Discretisation(mesh, [BoundaryCondition('bottom', 'dirichlet', 0.0)])


def _blocks(disc, mtype=MatrixType.HELMHOLTZ, constants=None):
    constants = {"lambda": 2.0} if constants is None else constants
    return [disc.element_block(eid, mtype, constants) for eid in disc.elements]


def _reference(view, blocks):
    """Loop-based free-free sum of the element Schur complements."""
    n_dir = view.n_dirichlet
    A = np.zeros((view.n_free, view.n_free))
    for gids, sgn, block in zip(view.maps, view.signs, blocks):
        S = block.schur_matrix() * np.outer(sgn, sgn)
        free = gids >= n_dir
        A[np.ix_(gids[free] - n_dir, gids[free] - n_dir)] += S[np.ix_(free, free)]
    return A


def test_storages_agree_with_reference_sum():
    disc = _quad_disc()
    view = disc.map.bnd
    blocks = _blocks(disc)
    ref = _reference(view, blocks)
    asm = GlobalAssembler(view)
    assert np.allclose(ref, ref.T)
    for storage in (StorageType.BANDED_SYMMETRIC, StorageType.FULL_SYMMETRIC,
                    StorageType.FULL, StorageType.SPARSE):
        gm = asm.assemble(blocks, storage=storage)
        assert gm.n == view.n_free
        assert np.allclose(gm.to_dense(), ref), storage
    banded = asm.assemble(blocks, storage=StorageType.BANDED_SYMMETRIC)
    assert banded.data.shape == (view.bandwidth() + 1, view.n_free)


def test_element_order_does_not_matter():
    disc = _quad_disc()
    view = disc.map.bnd
    blocks = _blocks(disc)
    flipped = dataclasses.replace(view, elements=view.elements[::-1],
                                  maps=view.maps[::-1], signs=view.signs[::-1])
    a = GlobalAssembler(view).assemble(blocks, storage=StorageType.FULL)
    b = GlobalAssembler(flipped).assemble(blocks[::-1], storage=StorageType.FULL)
    assert np.allclose(a.data, b.data)


def test_matrix_free_operations():
    disc = _quad_disc(nx=2, ny=2)
    view = disc.map.bnd
    blocks = _blocks(disc)
    asm = GlobalAssembler(view)
    packed = asm.packed_values(blocks)
    ref = _reference(view, blocks)
    x = np.random.default_rng(3).standard_normal(view.n_free)
    assert np.allclose(asm.apply(packed, x), ref @ x)
    assert np.allclose(asm.diagonal(packed), np.diag(ref))

    u_dir = np.linspace(1.0, 2.0, view.n_dirichlet)
    lift = np.zeros(view.n_free)
    n_dir = view.n_dirichlet
    for gids, sgn, block in zip(view.maps, view.signs, blocks):
        S = block.schur_matrix() * np.outer(sgn, sgn)
        free, fixed = gids >= n_dir, gids < n_dir
        np.add.at(lift, gids[free] - n_dir, S[np.ix_(free, fixed)] @ u_dir[gids[fixed]])
    assert np.allclose(asm.dirichlet_lift(packed, u_dir), lift)


def test_storage_selection():
    disc = _quad_disc()
    asm = GlobalAssembler(disc.map.bnd)
    view = disc.map.bnd
    expected = (StorageType.BANDED_SYMMETRIC if 2 * (view.bandwidth() + 1) < view.n_free
                else StorageType.FULL_SYMMETRIC)
    assert asm.choose_storage(True) is expected
    assert asm.choose_storage(False) is StorageType.FULL
    assert asm.choose_storage(True, sparse=True) is StorageType.SPARSE

    nodes, elems = structured_segment(1.0, 20)
    mesh = Mesh(nodes, elems, element_type='segment', poly_order=2)
    line = Discretisation(mesh)
    assert GlobalAssembler(line.map.bnd).choose_storage(True) is StorageType.BANDED_SYMMETRIC


def test_symmetric_storage_rejects_nonsymmetric_operator():
    disc = _quad_disc(nx=2, ny=2)
    blocks = _blocks(disc, MatrixType.ADVECTION_DIFFUSION_REACTION, {"velocity": (1.0, 1.0)})
    with pytest.raises(UnsupportedSolveError):
        GlobalAssembler(disc.map.bnd).assemble(blocks, storage=StorageType.BANDED_SYMMETRIC,
                                               symmetric=False)


def test_unshared_elements_are_block_diagonal():
    nodes, elems = structured_quad(1.0, 1.0, nx=1, ny=1)
    mesh = Mesh(nodes, elems, element_type='quad', poly_order=4)
    disc = Discretisation(mesh)
    view = disc.map.bnd
    blocks = _blocks(disc)
    asm = GlobalAssembler(view)
    assert asm.choose_storage(True) is StorageType.BLOCK_DIAGONAL
    gm = asm.assemble(blocks)
    assert gm.storage is StorageType.BLOCK_DIAGONAL
    assert np.allclose(gm.to_dense(), _reference(view, blocks))


def test_plot_sparsity():
    disc = _quad_disc(nx=2, ny=2)
    gm = GlobalAssembler(disc.map.bnd).assemble(_blocks(disc))
    ax = plot_sparsity(gm, title="condensed Helmholtz")
    assert ax.get_title() == "condensed Helmholtz"
