"""pyhpsolve.fem.reference.modal
Modified C0 (hierarchical Jacobi) basis on [-1,1].

    phi_0 = (1 - x)/2,   phi_1 = (1 + x)/2,
    phi_n = (1 - x)/2 (1 + x)/2 P^{(1,1)}_{n-2}(x),   n >= 2.

phi_0 and phi_1 are the vertex modes, the rest vanish at both ends.  Under
x -> -x the vertex modes swap and phi_n picks up the factor (-1)^n.
"""
from functools import lru_cache

import numpy as np
import sympy as sp


@lru_cache(maxsize=None)
def modified_basis_1d(n_modes: int):
    """Return (phi, dphi): lists of numpy callables for the first n_modes modes."""
    if n_modes < 2:
        raise ValueError(f"The modified basis needs at least 2 modes, got {n_modes}.")
    x = sp.symbols('x')
    exprs = [(1 - x) / 2, (1 + x) / 2]
    for n in range(2, n_modes):
        exprs.append(sp.expand((1 - x) / 2 * (1 + x) / 2 * sp.jacobi(n - 2, 1, 1, x)))
    phi = [sp.lambdify(x, e, 'numpy') for e in exprs]
    dphi = [sp.lambdify(x, sp.diff(e, x), 'numpy') for e in exprs]
    return phi, dphi


def _eval(funcs, z):
    z = np.asarray(z, dtype=float)
    return np.array([np.broadcast_to(np.asarray(f(z), dtype=float), z.shape) for f in funcs])


def tabulate_1d(n_modes: int, points):
    """Values and first derivatives, each of shape (n_modes, n_points)."""
    phi, dphi = modified_basis_1d(n_modes)
    return _eval(phi, points), _eval(dphi, points)


def reversal_signs(n_modes: int) -> np.ndarray:
    """Sign of each edge-interior mode (n >= 2) when the edge is reversed."""
    return np.array([-1.0 if n % 2 else 1.0 for n in range(2, n_modes)])
