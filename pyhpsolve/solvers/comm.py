"""pyhpsolve.solvers.comm
Reductions used by the iterative and delegated solvers.

``SerialComm`` is the single-process communicator; ``MPIComm`` wraps an
mpi4py communicator (optional dependency, imported on construction).
"""
import numpy as np


class SerialComm:
    rank = 0
    size = 1

    def allreduce(self, values) -> np.ndarray:
        return np.asarray(values, dtype=float)

    def gather_scatter_sum(self, vec: np.ndarray, universal_ids: np.ndarray,
                           n_universal: int) -> np.ndarray:
        return vec


class MPIComm:
    def __init__(self, comm=None):
        from mpi4py import MPI
        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    def allreduce(self, values) -> np.ndarray:
        buf = np.ascontiguousarray(values, dtype=np.float64)
        out = np.empty_like(buf)
        self.comm.Allreduce(buf, out, op=self._MPI.SUM)
        return out

    def gather_scatter_sum(self, vec: np.ndarray, universal_ids: np.ndarray,
                           n_universal: int) -> np.ndarray:
        """Sum the partial values of every shared DOF across processes."""
        full = np.zeros(n_universal)
        np.add.at(full, universal_ids, vec)
        self.comm.Allreduce(self._MPI.IN_PLACE, full, op=self._MPI.SUM)
        return full[universal_ids]
