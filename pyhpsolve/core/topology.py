from dataclasses import dataclass, field
from typing import Tuple, List


@dataclass(slots=True)
class Node:
    id: int
    x: float
    y: float = 0.0
    tag: str = ""


@dataclass(slots=True)
class Edge:
    gid: int
    nodes: Tuple[int, int]      # global vertex ids, lower id first (canonical direction)
    elements: List[Tuple[int, int]] = field(default_factory=list)  # (element id, local edge)
    tag: str = ""

    @property
    def is_boundary(self) -> bool:
        return len(self.elements) == 1


@dataclass(slots=True)
class Element:
    id: int                     # Element ID
    nodes: Tuple[int, ...]      # Global vertex ids in reference order
    element_type: str = "quad"
    poly_order: int = 1
    edges: Tuple[int, ...] = field(default_factory=tuple)
    edge_reversed: Tuple[bool, ...] = field(default_factory=tuple)
    tag: str = ""

    @property
    def n_modes(self) -> int:
        return self.poly_order + 1
