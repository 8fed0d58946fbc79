"""pyhpsolve.assembly.recovery"""
import logging

import numpy as np

logger = logging.getLogger(__name__)


def recover(u_global, blocks, view, forcing):
    """
    Per-element coefficients from the solved global (boundary) vector.

    Boundary values are distributed to every element sharing them (with
    the edge signs), interior modes follow from ``D^{-1}(f_i - C u_b)``.
    """
    coeffs = []
    for gids, sgn, block, f in zip(view.maps, view.signs, blocks, forcing):
        u_b = sgn * u_global[gids]
        f_i = f[block.interior_map]
        u = np.zeros(f.shape[0])
        u[block.boundary_map] = u_b
        if block.n_int:
            u[block.interior_map] = block.interior(u_b, f_i)
        coeffs.append(u)
    logger.debug(f"recovered interior modes of {len(coeffs)} elements")
    return coeffs
