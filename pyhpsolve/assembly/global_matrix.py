"""pyhpsolve.assembly.global_matrix
Scatter-add of element (Schur complement) blocks into a global matrix.

Only free rows and columns are stored; Dirichlet DOFs enter the right-hand
side through ``dirichlet_lift``.  Storage follows the operator:

    symmetric      banded if 2*(bandwidth+1) < n_free, else full symmetric
    non-symmetric  full (LU)
    no sharing     block diagonal (one dense block per element)
    sparse         CSR, for the delegated backend
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from pyhpsolve.assembly import _kernels
from pyhpsolve.config import StorageType
from pyhpsolve.errors import UnsupportedSolveError

logger = logging.getLogger(__name__)


@dataclass
class GlobalMatrix:
    storage: StorageType
    data: object                    # ndarray (banded/full), csr_matrix or list of blocks
    n: int
    bandwidth: int = 0
    symmetric: bool = True
    blocks: List[Tuple[np.ndarray, np.ndarray]] = field(default_factory=list)

    def to_dense(self) -> np.ndarray:
        if self.storage is StorageType.BANDED_SYMMETRIC:
            bw = self.bandwidth
            out = np.zeros((self.n, self.n))
            for d in range(bw + 1):
                vals = self.data[bw - d, d:]
                idx = np.arange(self.n - d)
                out[idx, idx + d] = vals
                out[idx + d, idx] = vals
            return out
        if self.storage is StorageType.SPARSE:
            return self.data.toarray()
        if self.storage is StorageType.BLOCK_DIAGONAL:
            out = np.zeros((self.n, self.n))
            for rows, block in self.blocks:
                out[np.ix_(rows, rows)] += block
            return out
        return np.array(self.data)


class GlobalAssembler:
    """Element-by-element operations over one ``AssemblyView``."""

    def __init__(self, view):
        self.view = view
        self.ptr, self.gids, self.sgns = view.packed

    # ------------------------------------------------------------------
    # storage policy
    # ------------------------------------------------------------------
    def choose_storage(self, symmetric: bool, sparse: bool = False) -> StorageType:
        if sparse:
            return StorageType.SPARSE
        if self.view.is_block_diagonal():
            return StorageType.BLOCK_DIAGONAL
        if symmetric:
            bw = self.view.bandwidth()
            if 2 * (bw + 1) < self.view.n_free:
                return StorageType.BANDED_SYMMETRIC
            return StorageType.FULL_SYMMETRIC
        return StorageType.FULL

    # ------------------------------------------------------------------
    # matrices
    # ------------------------------------------------------------------
    def coo(self, blocks, upper_only: bool = False):
        vptr, vals = _kernels.pack_blocks([b.schur_matrix() for b in blocks])
        return _kernels.scatter_coo(self.ptr, self.gids, self.sgns, vptr, vals,
                                    self.view.n_dirichlet, upper_only)

    def assemble(self, blocks, storage: Optional[StorageType] = None,
                 symmetric: bool = True) -> GlobalMatrix:
        view = self.view
        n = view.n_free
        if storage is None:
            storage = self.choose_storage(symmetric)
        if not symmetric and storage in (StorageType.BANDED_SYMMETRIC, StorageType.FULL_SYMMETRIC):
            raise UnsupportedSolveError(f"{storage.value} storage needs a symmetric operator.")

        if storage is StorageType.BANDED_SYMMETRIC:
            bw = view.bandwidth()
            rows, cols, data = self.coo(blocks, upper_only=True)
            ab = np.zeros((bw + 1, n))
            np.add.at(ab, (bw + rows - cols, cols), data)
            gm = GlobalMatrix(storage, ab, n, bandwidth=bw, symmetric=True)
        elif storage is StorageType.FULL_SYMMETRIC:
            rows, cols, data = self.coo(blocks, upper_only=True)
            upper = np.zeros((n, n))
            np.add.at(upper, (rows, cols), data)
            full = upper + upper.T - np.diag(np.diag(upper))
            gm = GlobalMatrix(storage, full, n, bandwidth=view.bandwidth(), symmetric=True)
        elif storage is StorageType.FULL:
            rows, cols, data = self.coo(blocks)
            full = np.zeros((n, n))
            np.add.at(full, (rows, cols), data)
            gm = GlobalMatrix(storage, full, n, bandwidth=view.bandwidth(), symmetric=symmetric)
        elif storage is StorageType.SPARSE:
            rows, cols, data = self.coo(blocks)
            csr = sp.csr_matrix((data, (rows, cols)), shape=(n, n))
            gm = GlobalMatrix(storage, csr, n, bandwidth=view.bandwidth(), symmetric=symmetric)
        elif storage is StorageType.BLOCK_DIAGONAL:
            gm = GlobalMatrix(storage, None, n, symmetric=symmetric,
                              blocks=self._element_blocks(blocks))
        else:
            raise UnsupportedSolveError(f"Unknown storage {storage}.")
        logger.info(f"assembled {n}x{n} global matrix as {storage.value} "
                    f"(bandwidth {gm.bandwidth})")
        return gm

    def _element_blocks(self, blocks):
        n_dir = self.view.n_dirichlet
        out = []
        for gids, sgn, block in zip(self.view.maps, self.view.signs, blocks):
            free = gids >= n_dir
            if not np.any(free):
                continue
            s = sgn[free]
            local = block.schur_matrix()[np.ix_(free, free)] * np.outer(s, s)
            out.append((gids[free] - n_dir, local))
        return out

    def coarse_block(self, blocks, slot_of: np.ndarray, n_coarse: int) -> np.ndarray:
        """
        Dense operator restricted to a subset of the free DOFs.

        ``slot_of[i]`` is the coarse row of free DOF ``i`` or -1 if the DOF
        is not part of the subset.  Only this process' elements contribute.
        """
        n_dir = self.view.n_dirichlet
        out = np.zeros((n_coarse, n_coarse))
        for gids, sgn, block in zip(self.view.maps, self.view.signs, blocks):
            slots = np.full(gids.size, -1)
            free = gids >= n_dir
            slots[free] = slot_of[gids[free] - n_dir]
            keep = np.flatnonzero(slots >= 0)
            if keep.size == 0:
                continue
            s = sgn[keep]
            local = block.schur_matrix()[np.ix_(keep, keep)] * np.outer(s, s)
            np.add.at(out, (slots[keep][:, None], slots[keep][None, :]), local)
        return out

    # ------------------------------------------------------------------
    # matrix-free operations
    # ------------------------------------------------------------------
    def packed_values(self, blocks):
        return _kernels.pack_blocks([b.schur_matrix() for b in blocks])

    def apply(self, packed, x: np.ndarray) -> np.ndarray:
        vptr, vals = packed
        out = np.zeros(self.view.n_free)
        return _kernels.block_matvec(self.ptr, self.gids, self.sgns, vptr, vals,
                                     np.ascontiguousarray(x, dtype=np.float64),
                                     self.view.n_dirichlet, out)

    def diagonal(self, packed) -> np.ndarray:
        vptr, vals = packed
        return _kernels.block_diagonal(self.ptr, self.gids, vptr, vals,
                                       self.view.n_dirichlet, self.view.n_free)

    def dirichlet_lift(self, packed, u_dir: np.ndarray) -> np.ndarray:
        vptr, vals = packed
        out = np.zeros(self.view.n_free)
        if self.view.n_dirichlet == 0:
            return out
        return _kernels.dirichlet_lift(self.ptr, self.gids, self.sgns, vptr, vals,
                                       np.ascontiguousarray(u_dir, dtype=np.float64),
                                       self.view.n_dirichlet, out)
