from .base import GlobalLinSys, GlobalLinSysKey, create_global_lin_sys
from .direct import GlobalLinSysDirect
from .iterative import GlobalLinSysPCG, conjugate_gradient
from .petsc import GlobalLinSysPETSc, HAS_PETSC
from .comm import SerialComm, MPIComm
__all__ = ['GlobalLinSys', 'GlobalLinSysKey', 'create_global_lin_sys', 'GlobalLinSysDirect',
           'GlobalLinSysPCG', 'conjugate_gradient', 'GlobalLinSysPETSc', 'HAS_PETSC',
           'SerialComm', 'MPIComm']
