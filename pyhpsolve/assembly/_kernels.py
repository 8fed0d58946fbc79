"""pyhpsolve.assembly._kernels
Numba kernels for the element-by-element global operations.

Blocks are passed flattened: element e owns ``gids[ptr[e]:ptr[e+1]]``,
``sgns[ptr[e]:ptr[e+1]]`` and the row-major dense block
``vals[vptr[e]:vptr[e+1]]``.
"""
import numba
import numpy as np


def pack_blocks(matrices):
    """Flatten a list of square blocks into (vptr, vals)."""
    sizes = np.array([m.size for m in matrices], dtype=np.int64)
    vptr = np.zeros(len(matrices) + 1, dtype=np.int64)
    np.cumsum(sizes, out=vptr[1:])
    if matrices:
        vals = np.concatenate([np.ascontiguousarray(m, dtype=np.float64).ravel() for m in matrices])
    else:
        vals = np.zeros(0)
    return vptr, vals


@numba.njit(cache=True)
def scatter_coo(ptr, gids, sgns, vptr, vals, n_dir, upper_only):
    """COO triplets of the free-free part of the signed global sum."""
    n_el = ptr.size - 1
    cap = vptr[n_el]
    rows = np.empty(cap, dtype=np.int64)
    cols = np.empty(cap, dtype=np.int64)
    data = np.empty(cap, dtype=np.float64)
    k = 0
    for e in range(n_el):
        p0 = ptr[e]
        nb = ptr[e + 1] - p0
        v0 = vptr[e]
        for i in range(nb):
            gi = gids[p0 + i]
            if gi < n_dir:
                continue
            for j in range(nb):
                gj = gids[p0 + j]
                if gj < n_dir:
                    continue
                if upper_only and gj < gi:
                    continue
                rows[k] = gi - n_dir
                cols[k] = gj - n_dir
                data[k] = sgns[p0 + i] * sgns[p0 + j] * vals[v0 + i * nb + j]
                k += 1
    return rows[:k], cols[:k], data[:k]


@numba.njit(cache=True)
def block_matvec(ptr, gids, sgns, vptr, vals, x, n_dir, out):
    """out += (sum_e A_e^T S_e A_e) x on the free DOFs, without a global matrix."""
    n_el = ptr.size - 1
    for e in range(n_el):
        p0 = ptr[e]
        nb = ptr[e + 1] - p0
        v0 = vptr[e]
        for i in range(nb):
            gi = gids[p0 + i]
            if gi < n_dir:
                continue
            acc = 0.0
            for j in range(nb):
                gj = gids[p0 + j]
                if gj < n_dir:
                    continue
                acc += vals[v0 + i * nb + j] * sgns[p0 + j] * x[gj - n_dir]
            out[gi - n_dir] += sgns[p0 + i] * acc
    return out


@numba.njit(cache=True)
def dirichlet_lift(ptr, gids, sgns, vptr, vals, u_dir, n_dir, out):
    """out += free rows of (sum_e A_e^T S_e A_e) applied to the Dirichlet values."""
    n_el = ptr.size - 1
    for e in range(n_el):
        p0 = ptr[e]
        nb = ptr[e + 1] - p0
        v0 = vptr[e]
        for i in range(nb):
            gi = gids[p0 + i]
            if gi < n_dir:
                continue
            acc = 0.0
            for j in range(nb):
                gj = gids[p0 + j]
                if gj >= n_dir:
                    continue
                acc += vals[v0 + i * nb + j] * sgns[p0 + j] * u_dir[gj]
            out[gi - n_dir] += sgns[p0 + i] * acc
    return out


@numba.njit(cache=True)
def block_diagonal(ptr, gids, vptr, vals, n_dir, n_free):
    """Diagonal of the assembled free-free operator."""
    diag = np.zeros(n_free)
    n_el = ptr.size - 1
    for e in range(n_el):
        p0 = ptr[e]
        nb = ptr[e + 1] - p0
        v0 = vptr[e]
        for i in range(nb):
            gi = gids[p0 + i]
            if gi >= n_dir:
                diag[gi - n_dir] += vals[v0 + i * nb + i]
    return diag
