"""
Hyperparameter values and ranges.

A model parameter is either ``Fixed(value)`` or ``Tunable(range)``. Ranges
are declared in natural units and carry the scale the search works on:
``transform='log10'`` spaces candidates evenly in orders of magnitude (the
usual choice for penalty-like parameters), ``integer=True`` rounds, and a
``values`` tuple declares a discrete (possibly non-numeric) level set.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from utils.exceptions import ConfigurationSpaceError

TRANSFORMS = ('identity', 'log10', 'log2')


@dataclass(frozen=True)
class ParameterRange:
    lower: Optional[float] = None
    upper: Optional[float] = None
    transform: str = 'identity'
    integer: bool = False
    values: Optional[Tuple[Any, ...]] = None

    def __post_init__(self):
        if self.values is not None:
            object.__setattr__(self, 'values', tuple(self.values))
            if not self.values:
                raise ConfigurationSpaceError("A discrete parameter range needs at least one value.")
            return
        if self.transform not in TRANSFORMS:
            raise ConfigurationSpaceError(f"Unknown transform '{self.transform}'. Available: {list(TRANSFORMS)}")
        if self.lower is None or self.upper is None:
            raise ConfigurationSpaceError("A continuous parameter range needs both 'lower' and 'upper'.")
        if not self.lower <= self.upper:
            raise ConfigurationSpaceError(f"Range lower ({self.lower}) must be <= upper ({self.upper}).")
        if self.transform != 'identity' and self.lower <= 0:
            raise ConfigurationSpaceError(f"A {self.transform} range needs a positive lower bound, got {self.lower}.")

    @property
    def is_discrete(self) -> bool:
        return self.values is not None

    # -- scale conversions ------------------------------------------------
    def to_transformed(self, x: float) -> float:
        if self.transform == 'log10':
            return float(np.log10(x))
        if self.transform == 'log2':
            return float(np.log2(x))
        return float(x)

    def to_natural(self, t: float) -> Any:
        if self.transform == 'log10':
            x = 10.0 ** t
        elif self.transform == 'log2':
            x = 2.0 ** t
        else:
            x = t
        if self.integer:
            return int(round(x))
        return float(x)

    @property
    def transformed_bounds(self) -> Tuple[float, float]:
        return self.to_transformed(self.lower), self.to_transformed(self.upper)

    # -- unit cube (used by space-filling designs and the surrogate) ------
    def from_unit(self, u: float) -> Any:
        """Map u in [0, 1] to a natural-scale value (discrete: bucketed)."""
        u = float(min(max(u, 0.0), 1.0))
        if self.is_discrete:
            pos = min(int(u * len(self.values)), len(self.values) - 1)
            return self.values[pos]
        lo, hi = self.transformed_bounds
        value = self.to_natural(lo + u * (hi - lo))
        if self.integer:
            value = int(min(max(value, int(np.ceil(self.lower))), int(np.floor(self.upper))))
        return value

    def to_unit(self, value: Any) -> float:
        if self.is_discrete:
            pos = self.values.index(value)
            return (pos + 0.5) / len(self.values)
        lo, hi = self.transformed_bounds
        if hi == lo:
            return 0.5
        return (self.to_transformed(value) - lo) / (hi - lo)

    def levels(self, n: int) -> List[Any]:
        """``n`` evenly spaced levels on the transformed scale (deduplicated)."""
        if self.is_discrete:
            return list(self.values)
        if n < 1:
            raise ConfigurationSpaceError(f"levels must be >= 1, got {n}")
        lo, hi = self.transformed_bounds
        grid = [lo] if n == 1 else np.linspace(lo, hi, n)
        out: List[Any] = []
        for t in grid:
            v = self.to_natural(float(t))
            if v not in out:
                out.append(v)
        return out

    def contains(self, value: Any) -> bool:
        if self.is_discrete:
            return value in self.values
        try:
            return self.lower <= float(value) <= self.upper
        except (TypeError, ValueError):
            return False


@dataclass(frozen=True)
class Fixed:
    value: Any


@dataclass(frozen=True)
class Tunable:
    """Marks a parameter for tuning; ``range=None`` uses the parameter's default range."""
    range: Optional[ParameterRange] = None


def tune(lower: Optional[float] = None, upper: Optional[float] = None, transform: str = 'identity',
         integer: bool = False, values: Optional[Sequence[Any]] = None) -> Tunable:
    """Convenience constructor for a Tunable marker."""
    if lower is None and upper is None and values is None:
        return Tunable()
    return Tunable(ParameterRange(lower, upper, transform, integer, tuple(values) if values is not None else None))


# Default ranges for well-known parameter names (natural units).
DEFAULT_RANGES = {
    'penalty': ParameterRange(1e-10, 1.0, 'log10'),
    'mixture': ParameterRange(0.05, 1.0),
    'trees': ParameterRange(1, 2000, integer=True),
    'min_n': ParameterRange(2, 40, integer=True),
    'mtry': ParameterRange(1, 10, integer=True),
    'tree_depth': ParameterRange(1, 15, integer=True),
    'learn_rate': ParameterRange(1e-10, 1e-1, 'log10'),
    'cost_complexity': ParameterRange(1e-10, 1e-1, 'log10'),
    'neighbors': ParameterRange(1, 15, integer=True),
    'weight_func': ParameterRange(values=('uniform', 'distance')),
    'cost': ParameterRange(2.0 ** -10, 2.0 ** 5, 'log2'),
    'rbf_sigma': ParameterRange(1e-10, 1.0, 'log10'),
    'margin': ParameterRange(0.0, 0.2),
    'hidden_units': ParameterRange(1, 10, integer=True),
    'epochs': ParameterRange(10, 1000, integer=True),
}


def default_range(name: str) -> ParameterRange:
    if name not in DEFAULT_RANGES:
        raise ConfigurationSpaceError(
            f"No default range for tunable parameter '{name}'; declare one with tune(lower, upper)."
        )
    return DEFAULT_RANGES[name]


def parse_parameter(value: Any) -> Any:
    """
    Interpret a parameter from a JSON config.

    ``"tune"`` or ``{"tune": {...range...}}`` become Tunable markers; anything
    else is Fixed.
    """
    if isinstance(value, (Fixed, Tunable)):
        return value
    if isinstance(value, str) and value == 'tune':
        return Tunable()
    if isinstance(value, dict) and 'tune' in value:
        spec = value['tune'] or {}
        return tune(**spec)
    return Fixed(value)
