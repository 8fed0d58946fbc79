"""pyhpsolve.core.assemblymap
Local-to-global numbering of element coefficients.

Global boundary numbering places every essential (Dirichlet) degree of
freedom in ``[0, n_dirichlet)`` and the free ones in
``[n_dirichlet, n_global_bnd)``.  Free ids are renumbered with reverse
Cuthill-McKee so the condensed boundary system has a small bandwidth.
Interior modes get private ids after the boundary block; they are only
used by the uncondensed ("full") systems.

An edge mode that is odd under reversal of the edge parameter flips sign
when an element traverses the edge against its canonical direction, so the
map carries a sign next to every global id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import reverse_cuthill_mckee

from pyhpsolve.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class AssemblyView:
    """Per-element global ids and signs for one numbering of the unknowns.

    Ids are local to this process; ``universal_ids`` translate them into
    the partition independent numbering shared by all processes.
    """
    elements: np.ndarray
    maps: List[np.ndarray]
    signs: List[np.ndarray]
    n_dirichlet: int
    n_global: int
    universal_ids: np.ndarray
    dot_weights: np.ndarray
    n_universal: int
    n_universal_dirichlet: int
    vertex_ids: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))  # universal

    @property
    def n_free(self) -> int:
        return self.n_global - self.n_dirichlet

    def assemble(self, local_vectors: Sequence[np.ndarray]) -> np.ndarray:
        """Signed sum of element vectors into a global vector."""
        out = np.zeros(self.n_global)
        for gids, sgn, vals in zip(self.maps, self.signs, local_vectors):
            np.add.at(out, gids, sgn * vals)
        return out

    def scatter(self, u: np.ndarray) -> List[np.ndarray]:
        """Signed copy of a global vector onto every element."""
        return [sgn * u[gids] for gids, sgn in zip(self.maps, self.signs)]

    def bandwidth(self) -> int:
        bw = 0
        for gids in self.maps:
            free = gids[gids >= self.n_dirichlet]
            if free.size:
                bw = max(bw, int(free.max() - free.min()))
        return bw

    def is_block_diagonal(self) -> bool:
        """True when no free id is shared by two elements."""
        if not self.maps:
            return True
        free = np.concatenate([g[g >= self.n_dirichlet] for g in self.maps])
        if free.size == 0:
            return True
        return int(np.bincount(free).max()) <= 1

    @cached_property
    def packed(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(ptr, gids, signs) flattened for the numba kernels."""
        sizes = np.array([len(g) for g in self.maps], dtype=np.int64)
        ptr = np.zeros(len(self.maps) + 1, dtype=np.int64)
        np.cumsum(sizes, out=ptr[1:])
        if self.maps:
            gids = np.concatenate(self.maps).astype(np.int64)
            sgns = np.concatenate(self.signs).astype(np.float64)
        else:
            gids = np.zeros(0, dtype=np.int64)
            sgns = np.zeros(0)
        return ptr, gids, sgns


class LocalToGlobalMap:
    """
    Numbering of vertex, edge and private element modes.

    Parameters
    ----------
    mesh : Mesh
    provider : ElementOperatorProvider
        Supplies boundary/interior maps and the entity-to-element maps.
    bcs : sequence of BoundaryCondition
        Edges (2D) or vertices (1D) whose tag carries a ``dirichlet``
        condition become essential DOFs.
    n_private : int
        Extra boundary modes per element that are not shared with any
        neighbour (e.g. the mean pressure mode of a coupled system).  They
        are appended to each element's boundary vector.
    pin_private : bool
        Put the first private mode of element 0 in the Dirichlet block,
        fixing the constant of a pure Neumann pressure.
    reorder : bool
        Reverse Cuthill-McKee renumbering of the free boundary DOFs.
    partition, rank :
        Element owner array and this process' rank.  ``None`` means every
        element is local.
    """

    def __init__(self, mesh, provider, bcs=(), *,
                 n_private: int = 0,
                 pin_private: bool = False,
                 reorder: bool = True,
                 partition: Optional[Sequence[int]] = None,
                 rank: int = 0):
        self.mesh = mesh
        self.provider = provider
        self.bcs = list(bcs)
        self.n_private = int(n_private)

        self._check_orders()
        self._classify_dirichlet()
        self._number_entities(pin_private)
        self._build_boundary_maps()
        if reorder:
            self._reorder()
        self._build_full_maps()

        self.partition = None if partition is None else np.asarray(partition, dtype=int)
        self.rank = int(rank)
        if self.partition is not None and len(self.partition) != mesh.n_elements:
            raise ConfigurationError(
                f"Partition has {len(self.partition)} entries for {mesh.n_elements} elements.")
        self.elements = (np.arange(mesh.n_elements) if self.partition is None
                         else np.flatnonzero(self.partition == self.rank))

        self.bnd = self._make_view(self._bmap, self._bsign, self.n_global_bnd)
        self.full = (self._make_view(self._fmap, self._fsign, self.n_global)
                     if self.n_private == 0 else None)

        logger.info(f"LocalToGlobalMap: {self.n_global_bnd} boundary DOFs "
                    f"({self.n_dirichlet} Dirichlet), {self.n_global} in total, "
                    f"bandwidth {self.bnd.bandwidth()}")

    # ------------------------------------------------------------------
    # convenience accessors (local numbering)
    # ------------------------------------------------------------------
    @property
    def bmap(self) -> List[np.ndarray]:
        return self.bnd.maps

    @property
    def bsign(self) -> List[np.ndarray]:
        return self.bnd.signs

    @property
    def n_free(self) -> int:
        return self.n_global_bnd - self.n_dirichlet

    def bandwidth(self, full: bool = False) -> int:
        return (self.full if full else self.bnd).bandwidth()

    def assemble_bnd(self, local_vectors):
        return self.bnd.assemble(local_vectors)

    def global_to_local_bnd(self, u):
        return self.bnd.scatter(u)

    def global_to_local_full(self, u):
        return self._require_full().scatter(u)

    def local_to_global_full(self, coeffs: Sequence[np.ndarray]) -> np.ndarray:
        """Write element coefficients into the global vector (no summation)."""
        view = self._require_full()
        out = np.zeros(view.n_global)
        for gids, sgn, vals in zip(view.maps, view.signs, coeffs):
            out[gids] = sgn * vals
        return out

    def _require_full(self) -> AssemblyView:
        if self.full is None:
            raise ConfigurationError("No full map: elements carry private boundary modes.")
        return self.full

    # ------------------------------------------------------------------
    # construction steps
    # ------------------------------------------------------------------
    def _check_orders(self):
        mesh = self.mesh
        for edge in mesh.edges_list:
            orders = {int(mesh.poly_orders[eid]) for eid, _ in edge.elements}
            if len(orders) > 1:
                eids = [eid for eid, _ in edge.elements]
                raise ConfigurationError(
                    f"Edge {edge.gid} {edge.nodes} is shared by elements {eids} "
                    f"with different orders {sorted(orders)}.")

    def _classify_dirichlet(self):
        mesh = self.mesh
        dirichlet_tags = [bc.domain_tag for bc in self.bcs if bc.method == "dirichlet"]
        known = set(mesh.tags())
        for bc in self.bcs:
            if bc.domain_tag not in known:
                raise ConfigurationError(
                    f"Boundary condition on '{bc.domain_tag}' matches no tagged boundary "
                    f"(tags: {sorted(known)}).")
        self.dirichlet_vertices: Dict[int, str] = {}
        self.dirichlet_edges: Dict[int, str] = {}
        if mesh.dim == 2:
            for edge in mesh.boundary_edges():
                if edge.tag in dirichlet_tags:
                    self.dirichlet_edges[edge.gid] = edge.tag
                    for vid in edge.nodes:
                        self.dirichlet_vertices.setdefault(vid, edge.tag)
        else:
            for vid, tag in mesh.vertex_tags.items():
                if tag in dirichlet_tags:
                    self.dirichlet_vertices[vid] = tag

    def _edge_modes(self, gid: int) -> int:
        eid, _ = self.mesh.edges_list[gid].elements[0]
        return int(self.mesh.poly_orders[eid]) - 1

    def _number_entities(self, pin_private: bool):
        mesh = self.mesh
        self.vertex_ids: Dict[int, int] = {}
        self.edge_ids: Dict[int, np.ndarray] = {}
        self.private_ids = np.full((mesh.n_elements, self.n_private), -1, dtype=int)
        next_id = 0

        for vid in sorted(self.dirichlet_vertices):
            self.vertex_ids[vid] = next_id
            next_id += 1
        for gid in sorted(self.dirichlet_edges):
            n = self._edge_modes(gid)
            self.edge_ids[gid] = np.arange(next_id, next_id + n)
            next_id += n
        if pin_private:
            if self.n_private == 0:
                raise ConfigurationError("pin_private needs at least one private mode.")
            self.private_ids[0, 0] = next_id
            next_id += 1
        self.n_dirichlet = next_id

        for vid in sorted(mesh.vertex_elements):
            if vid not in self.vertex_ids:
                self.vertex_ids[vid] = next_id
                next_id += 1
        for edge in mesh.edges_list:
            if edge.gid not in self.edge_ids:
                n = self._edge_modes(edge.gid)
                self.edge_ids[edge.gid] = np.arange(next_id, next_id + n)
                next_id += n
        for eid in range(mesh.n_elements):
            for k in range(self.n_private):
                if self.private_ids[eid, k] < 0:
                    self.private_ids[eid, k] = next_id
                    next_id += 1
        self.n_global_bnd = next_id

    def _build_boundary_maps(self):
        mesh, provider = self.mesh, self.provider
        self._bmap: List[np.ndarray] = []
        self._bsign: List[np.ndarray] = []
        for elem in mesh.elements_list:
            eid = elem.id
            bnd = np.asarray(provider.get_boundary_map(eid))
            pos = {int(k): p for p, k in enumerate(bnd)}
            n_std = len(bnd)
            gids = np.full(n_std + self.n_private, -1, dtype=int)
            sgn = np.ones(n_std + self.n_private)
            for lv, vid in enumerate(elem.nodes):
                gids[pos[int(provider.get_vertex_map(eid, lv))]] = self.vertex_ids[vid]
            for le, gid in enumerate(elem.edges):
                idx, signs = provider.get_edge_to_element_map(eid, le, elem.edge_reversed[le])
                for m, (k, s) in enumerate(zip(idx, signs)):
                    gids[pos[int(k)]] = self.edge_ids[gid][m]
                    sgn[pos[int(k)]] = s
            gids[n_std:] = self.private_ids[eid]
            if np.any(gids < 0):
                raise ConfigurationError(
                    f"Element {eid}: boundary modes {np.flatnonzero(gids < 0)} are not "
                    f"attached to any vertex or edge.")
            self._bmap.append(gids)
            self._bsign.append(sgn)

    def _reorder(self):
        n_dir = self.n_dirichlet
        n_free = self.n_global_bnd - n_dir
        if n_free <= 1:
            return
        rows, cols = [], []
        for gids in self._bmap:
            free = gids[gids >= n_dir] - n_dir
            r, c = np.meshgrid(free, free, indexing="ij")
            rows.append(r.ravel())
            cols.append(c.ravel())
        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        graph = sp.csr_matrix((np.ones(rows.size), (rows, cols)), shape=(n_free, n_free))
        perm = reverse_cuthill_mckee(graph, symmetric_mode=True)
        new = np.empty(n_free, dtype=int)
        new[perm] = np.arange(n_free)
        relabel = np.concatenate([np.arange(n_dir), n_dir + new])

        self._bmap = [relabel[g] for g in self._bmap]
        self.vertex_ids = {v: int(relabel[g]) for v, g in self.vertex_ids.items()}
        self.edge_ids = {e: relabel[g] for e, g in self.edge_ids.items()}
        if self.private_ids.size:
            self.private_ids = relabel[self.private_ids]

    def _build_full_maps(self):
        provider = self.provider
        self._fmap: List[np.ndarray] = []
        self._fsign: List[np.ndarray] = []
        offset = self.n_global_bnd
        for eid in range(self.mesh.n_elements):
            n = provider.n_coeffs(eid)
            bnd = np.asarray(provider.get_boundary_map(eid))
            inner = np.asarray(provider.get_interior_map(eid))
            fm = np.empty(n, dtype=int)
            fs = np.ones(n)
            fm[bnd] = self._bmap[eid][:len(bnd)]
            fs[bnd] = self._bsign[eid][:len(bnd)]
            fm[inner] = np.arange(offset, offset + len(inner))
            offset += len(inner)
            self._fmap.append(fm)
            self._fsign.append(fs)
        self.n_global = offset

    def _make_view(self, maps, signs, n_global) -> AssemblyView:
        n_dir = self.n_dirichlet
        vertex_ids = np.array(sorted(self.vertex_ids.values()), dtype=int)
        if self.partition is None:
            return AssemblyView(
                elements=self.elements,
                maps=list(maps), signs=list(signs),
                n_dirichlet=n_dir, n_global=n_global,
                universal_ids=np.arange(n_global),
                dot_weights=np.ones(n_global),
                n_universal=n_global, n_universal_dirichlet=n_dir,
            vertex_ids=vertex_ids)

        multiplicity = np.zeros(n_global, dtype=int)
        for r in np.unique(self.partition):
            owned = np.flatnonzero(self.partition == r)
            if owned.size:
                touched = np.unique(np.concatenate([maps[e] for e in owned]))
                multiplicity[touched] += 1

        if self.elements.size:
            local_ids = np.unique(np.concatenate([maps[e] for e in self.elements]))
        else:
            local_ids = np.zeros(0, dtype=int)
        g2l = np.full(n_global, -1, dtype=int)
        g2l[local_ids] = np.arange(local_ids.size)
        return AssemblyView(
            elements=self.elements,
            maps=[g2l[maps[e]] for e in self.elements],
            signs=[signs[e] for e in self.elements],
            n_dirichlet=int(np.count_nonzero(local_ids < n_dir)),
            n_global=int(local_ids.size),
            universal_ids=local_ids,
            dot_weights=1.0 / multiplicity[local_ids],
            n_universal=n_global, n_universal_dirichlet=n_dir,
            vertex_ids=vertex_ids)
