"""pyhpsolve.assembly.load_vector"""
import numpy as np


def element_load_vectors(provider, mesh, f, bcs=(), elements=None):
    """∫ f φ per element plus the natural (Neumann/Robin) boundary terms."""
    if elements is None:
        elements = range(mesh.n_elements)
    elements = list(elements)
    position = {eid: k for k, eid in enumerate(elements)}
    loads = [provider.load_vector(eid, f) if f is not None else np.zeros(provider.n_coeffs(eid))
             for eid in elements]
    for bc in bcs:
        if bc.method not in ('neumann', 'robin'):
            continue
        for eid, facet in mesh.boundary_facets(bc.domain_tag):
            if eid in position:
                loads[position[eid]] += provider.boundary_load(eid, facet, bc.value)
    return loads


def condensed_rhs(forcing, blocks, view):
    """Global boundary right-hand side ``sum_e A_e^T (f_b - B D^{-1} f_i)``."""
    local = [block.condense_rhs(*block.split(f)) for f, block in zip(forcing, blocks)]
    return view.assemble(local)
