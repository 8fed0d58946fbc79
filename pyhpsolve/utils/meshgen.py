"""pyhpsolve.utils.meshgen
Structured meshes for quick tests.
"""
import numpy as np
from typing import List, Tuple

from pyhpsolve.core.topology import Node

__all__ = ["structured_segment", "structured_quad", "renumber_nodes"]


def structured_segment(length: float, nx: int, x0: float = 0.0) -> Tuple[List[Node], np.ndarray]:
    """``nx`` equal segments on [x0, x0 + length]."""
    xs = np.linspace(x0, x0 + length, nx + 1)
    nodes = [Node(i, float(x), 0.0) for i, x in enumerate(xs)]
    elems = np.array([[i, i + 1] for i in range(nx)], dtype=int)
    return nodes, elems


def structured_quad(Lx: float, Ly: float, *, nx: int, ny: int,
                    offset=(0.0, 0.0)) -> Tuple[List[Node], np.ndarray]:
    """
    Rectangle split into nx*ny quads.

    Nodes are numbered row by row (x fastest); element vertices are listed
    counter-clockwise starting at the lower-left corner.
    """
    xs = np.linspace(offset[0], offset[0] + Lx, nx + 1)
    ys = np.linspace(offset[1], offset[1] + Ly, ny + 1)
    nodes = [Node(j * (nx + 1) + i, float(x), float(y))
             for j, y in enumerate(ys) for i, x in enumerate(xs)]
    elems = []
    for j in range(ny):
        for i in range(nx):
            n0 = j * (nx + 1) + i
            elems.append([n0, n0 + 1, n0 + nx + 2, n0 + nx + 1])
    return nodes, np.array(elems, dtype=int)


def renumber_nodes(nodes: List[Node], elems: np.ndarray, perm) -> Tuple[List[Node], np.ndarray]:
    """Give node ``i`` the new id ``perm[i]``; connectivity follows."""
    perm = np.asarray(perm, dtype=int)
    new_nodes = [None] * len(nodes)
    for old, node in enumerate(nodes):
        new_nodes[perm[old]] = Node(int(perm[old]), node.x, node.y, node.tag)
    return new_nodes, perm[np.asarray(elems)]
