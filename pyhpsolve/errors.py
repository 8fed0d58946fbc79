"""pyhpsolve.errors
Exception hierarchy shared by assembly and the linear solvers.
"""


class HpSolveError(Exception):
    """Base class of every error raised by pyhpsolve."""


class ConfigurationError(HpSolveError, ValueError):
    """Inconsistent discretisation: orders, tags, operators or partitions."""


class SingularBlockError(ConfigurationError):
    """A matrix that has to be inverted is singular."""

    def __init__(self, message, *, element=None, matrix_type=None):
        super().__init__(message)
        self.element = element
        self.matrix_type = matrix_type


class IndefiniteSystemError(ConfigurationError):
    """A matrix or operator assumed to be SPD is not positive definite."""


class ConvergenceError(HpSolveError, RuntimeError):
    """An iterative solve hit its iteration cap."""

    def __init__(self, message, *, iterations=None, residual=None):
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual


class UnsupportedSolveError(HpSolveError, NotImplementedError):
    """Storage, solver and operator combination that is not available."""
