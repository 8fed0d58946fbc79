import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from pyhpsolve.core.matrixkey import ElementShape
from pyhpsolve.core.topology import Edge, Element, Node
from pyhpsolve.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Mesh:
    """
    Conforming mesh of segments or quadrilaterals with per-element order.

    Builds the connectivity needed for global numbering: unique edges with a
    canonical orientation (lower global vertex id to higher), the elements
    incident to every edge and vertex, and whether each element traverses a
    given edge against the canonical direction.  Boundary facets (edges in
    2D, vertices in 1D) carry string tags used to attach boundary
    conditions.
    """
    # Local vertex pairs of each edge, ordered along the reference coordinate
    # (xi for edges 0 and 2, eta for edges 1 and 3).
    _EDGE_TABLE = {
        'segment': (),
        'quad': ((0, 1), (1, 2), (3, 2), (0, 3)),
    }
    _N_VERTICES = {'segment': 2, 'quad': 4}
    _SHAPES = {'segment': ElementShape.SEGMENT, 'quad': ElementShape.QUADRILATERAL}

    def __init__(self,
                 nodes: List[Node],
                 element_connectivity: np.ndarray,
                 *,
                 element_type: str = 'quad',
                 poly_order=1):
        if element_type not in self._SHAPES:
            raise ConfigurationError(f"Unsupported element type '{element_type}'.")
        self.element_type = element_type
        self.shape = self._SHAPES[element_type]
        self.dim = 1 if element_type == 'segment' else 2
        self.nodes_list: List[Node] = list(nodes)
        self.nodes_x_y_pos = np.array([[n.x, n.y] for n in self.nodes_list], dtype=float)
        self.elements_connectivity = np.asarray(element_connectivity, dtype=int)
        n_el = len(self.elements_connectivity)
        if self.elements_connectivity.ndim != 2 or \
                self.elements_connectivity.shape[1] != self._N_VERTICES[element_type]:
            raise ConfigurationError(
                f"'{element_type}' elements need {self._N_VERTICES[element_type]} vertices each, "
                f"got connectivity of shape {self.elements_connectivity.shape}.")
        self.poly_orders = np.broadcast_to(np.asarray(poly_order, dtype=int), (n_el,)).copy()
        if np.any(self.poly_orders < 1):
            raise ConfigurationError("Polynomial orders must be >= 1.")
        self.n_elements = n_el
        self.elements_list: List[Element] = []
        self.edges_list: List[Edge] = []
        self._edge_dict: Dict[Tuple[int, int], Edge] = {}
        self.vertex_elements: Dict[int, List[Tuple[int, int]]] = {}
        self.vertex_tags: Dict[int, str] = {}
        self._build_topology()

    @property
    def n_vertices(self) -> int:
        return len(self.nodes_list)

    def _build_topology(self):
        edge_defs = self._EDGE_TABLE[self.element_type]

        for eid, elem_nodes in enumerate(self.elements_connectivity):
            if self.element_type == 'quad' and self._signed_area(elem_nodes) <= 0.0:
                raise ConfigurationError(
                    f"Element {eid} is not counter-clockwise (vertices {tuple(elem_nodes)}).")
            self.elements_list.append(Element(
                id=eid,
                nodes=tuple(int(n) for n in elem_nodes),
                element_type=self.element_type,
                poly_order=int(self.poly_orders[eid]),
            ))
            for lv, vid in enumerate(elem_nodes):
                self.vertex_elements.setdefault(int(vid), []).append((eid, lv))

        # edges with canonical orientation and their incident elements
        for elem in self.elements_list:
            gids, reversed_ = [], []
            for le, (c1, c2) in enumerate(edge_defs):
                a, b = elem.nodes[c1], elem.nodes[c2]
                key = (a, b) if a < b else (b, a)
                edge = self._edge_dict.get(key)
                if edge is None:
                    edge = Edge(gid=len(self.edges_list), nodes=key)
                    self.edges_list.append(edge)
                    self._edge_dict[key] = edge
                edge.elements.append((elem.id, le))
                gids.append(edge.gid)
                reversed_.append(a > b)
            elem.edges = tuple(gids)
            elem.edge_reversed = tuple(reversed_)

        for edge in self.edges_list:
            if len(edge.elements) > 2:
                raise ConfigurationError(f"Edge {edge.nodes} is shared by more than two elements.")

        logger.debug(f"Mesh topology: {self.n_elements} {self.element_type} elements, "
                     f"{self.n_vertices} vertices, {len(self.edges_list)} edges")

    def _signed_area(self, elem_nodes) -> float:
        xy = self.nodes_x_y_pos[np.asarray(elem_nodes)]
        x, y = xy[:, 0], xy[:, 1]
        return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def edge(self, gid: int) -> Edge:
        return self.edges_list[gid]

    def edge_between(self, a: int, b: int) -> Edge:
        return self._edge_dict[(a, b) if a < b else (b, a)]

    def element_coords(self, eid: int) -> np.ndarray:
        """Vertex coordinates of element ``eid`` in reference order."""
        return self.nodes_x_y_pos[self.elements_connectivity[eid]]

    def boundary_edges(self) -> List[Edge]:
        return [e for e in self.edges_list if e.is_boundary]

    def boundary_vertices(self) -> List[int]:
        return sorted(v for v, inc in self.vertex_elements.items() if len(inc) == 1)

    # ------------------------------------------------------------------
    # boundary tags
    # ------------------------------------------------------------------
    def tag_boundary_edges(self, tag_functions: Dict[str, Callable[[float, float], bool]]):
        """Tag boundary edges whose midpoint satisfies one of the locators."""
        if self.dim != 2:
            raise ConfigurationError("tag_boundary_edges needs a 2D mesh; use tag_boundary_vertices.")
        for edge in self.boundary_edges():
            mx, my = self.nodes_x_y_pos[list(edge.nodes)].mean(axis=0)
            for tag, locator in tag_functions.items():
                if locator(mx, my):
                    edge.tag = tag
                    break

    def tag_boundary_vertices(self, tag_functions: Dict[str, Callable[[float, float], bool]]):
        """Tag boundary vertices (the facets of a segment mesh)."""
        for vid in self.boundary_vertices():
            x, y = self.nodes_x_y_pos[vid]
            for tag, locator in tag_functions.items():
                if locator(x, y):
                    self.vertex_tags[vid] = tag
                    self.nodes_list[vid].tag = tag
                    break

    def boundary_facets(self, tag: str) -> List[Tuple[int, int]]:
        """``(element id, local facet)`` pairs on the boundary tagged ``tag``."""
        facets = []
        if self.dim == 2:
            for edge in self.boundary_edges():
                if edge.tag == tag:
                    facets.append(edge.elements[0])
        else:
            for vid in self.boundary_vertices():
                if self.vertex_tags.get(vid) == tag:
                    facets.append(self.vertex_elements[vid][0])
        return facets

    def tags(self) -> List[str]:
        if self.dim == 2:
            return sorted({e.tag for e in self.boundary_edges() if e.tag})
        return sorted(set(self.vertex_tags.values()))

    def __repr__(self):
        return (f"<Mesh n_elements={self.n_elements}, element_type='{self.element_type}', "
                f"orders={sorted(set(self.poly_orders.tolist()))}>")
