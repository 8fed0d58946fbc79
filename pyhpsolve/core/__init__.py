from .mesh import Mesh
from .topology import Node, Edge, Element
from .matrixkey import MatrixKey, MatrixType, ElementShape
from .cache import MatrixCache
from .assemblymap import LocalToGlobalMap, AssemblyView
__all__ = ['Mesh', 'Node', 'Edge', 'Element', 'MatrixKey', 'MatrixType', 'ElementShape',
           'MatrixCache', 'LocalToGlobalMap', 'AssemblyView']
