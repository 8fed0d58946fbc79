from dataclasses import dataclass
from typing import Callable, Union

from pyhpsolve.errors import ConfigurationError

Value = Union[float, Callable]


@dataclass
class BoundaryCondition:
    """
    Condition on the boundary facets tagged ``domain_tag``.

    dirichlet : u = value
    neumann   : du/dn = value                     (outward normal)
    robin     : du/dn + robin_coeff * u = value
    ``value`` is a constant or a callable of ``(x, y)``.
    """
    domain_tag: str
    method: str
    value: Value = 0.0
    robin_coeff: float = 0.0

    def __post_init__(self):
        self.method = self.method.lower()
        if self.method not in ('dirichlet', 'neumann', 'robin'):
            raise ConfigurationError(f"Unknown boundary condition method '{self.method}'.")
        if self.method == 'robin' and self.robin_coeff == 0.0:
            raise ConfigurationError(
                f"Robin condition on '{self.domain_tag}' needs a non-zero robin_coeff.")

    def __repr__(self):
        return f"BoundaryCondition({self.domain_tag!r}, {self.method!r})"

    def __call__(self, x, y):
        if callable(self.value):
            return self.value(x, y)
        return self.value
