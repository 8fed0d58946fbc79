"""pyhpsolve: global assembly and static-condensation solvers for spectral/hp elements."""
from pyhpsolve.config import (GlobalSysSolnType, LinearSolverParameters,
                              PreconditionerType, StorageType)
from pyhpsolve.core import LocalToGlobalMap, MatrixCache, MatrixKey, MatrixType, Mesh
from pyhpsolve.assembly.boundary_conditions import BoundaryCondition
from pyhpsolve.discretisation import Discretisation
from pyhpsolve.errors import (ConfigurationError, ConvergenceError, HpSolveError,
                              IndefiniteSystemError, SingularBlockError, UnsupportedSolveError)

__all__ = ['GlobalSysSolnType', 'LinearSolverParameters', 'PreconditionerType', 'StorageType',
           'LocalToGlobalMap', 'MatrixCache', 'MatrixKey', 'MatrixType', 'Mesh',
           'BoundaryCondition', 'Discretisation',
           'ConfigurationError', 'ConvergenceError', 'HpSolveError', 'IndefiniteSystemError',
           'SingularBlockError', 'UnsupportedSolveError']
