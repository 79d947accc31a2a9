"""
Candidate grids over tunable parameter ranges.

- Regular grids: the factorial cross of per-parameter level sets, spaced
  evenly on each range's transformed scale.
- Space-filling grids: maximin Latin hypercube designs on the unit cube,
  mapped back through each range.
"""
from typing import Any, Dict, List, Union

import numpy as np
from scipy.spatial.distance import pdist
from sklearn.model_selection import ParameterGrid

from modules.model_factory import ParameterRange
from utils.exceptions import ConfigurationSpaceError


def regular_grid(ranges: Dict[str, ParameterRange], levels: Union[int, Dict[str, int]] = 3) -> List[Dict[str, Any]]:
    """
    Factorial grid. ``levels`` is one count for every parameter or a
    per-parameter mapping; discrete ranges always use all their values.
    """
    if not ranges:
        raise ConfigurationSpaceError("A grid needs at least one tunable parameter.")
    level_sets = {}
    for name, rng in ranges.items():
        n = levels.get(name, 3) if isinstance(levels, dict) else levels
        level_sets[name] = rng.levels(int(n))
    # ParameterGrid iterates keys in sorted order; restore declaration order per point
    order = list(ranges.keys())
    return [{k: point[k] for k in order} for point in ParameterGrid(level_sets)]


def grid_size(ranges: Dict[str, ParameterRange], levels: Union[int, Dict[str, int]] = 3) -> int:
    total = 1
    for name, rng in ranges.items():
        n = levels.get(name, 3) if isinstance(levels, dict) else levels
        total *= len(rng.levels(int(n)))
    return total


def latin_hypercube(n: int, d: int, rng: np.random.RandomState) -> np.ndarray:
    """One random Latin hypercube sample of ``n`` points in [0, 1]^d."""
    u = np.empty((n, d))
    for j in range(d):
        u[:, j] = (rng.permutation(n) + rng.uniform(size=n)) / n
    return u


def maximin_design(n: int, d: int, rng: np.random.RandomState, tries: int = 25) -> np.ndarray:
    """Best of ``tries`` Latin hypercubes by minimum pairwise distance."""
    best, best_score = None, -np.inf
    for _ in range(max(1, tries)):
        design = latin_hypercube(n, d, rng)
        score = pdist(design).min() if n > 1 else 0.0
        if score > best_score:
            best, best_score = design, score
    return best


def space_filling_grid(ranges: Dict[str, ParameterRange], size: int = 10, seed=None,
                       tries: int = 25) -> List[Dict[str, Any]]:
    """
    Irregular grid of up to ``size`` points. Integer or discrete parameters
    can map distinct design points onto the same configuration; duplicates
    are dropped, so fewer than ``size`` points may be returned.
    """
    if not ranges:
        raise ConfigurationSpaceError("A grid needs at least one tunable parameter.")
    if size < 1:
        raise ConfigurationSpaceError(f"Grid size must be >= 1, got {size}")
    rng = np.random.RandomState(seed)
    names = list(ranges.keys())
    design = maximin_design(size, len(names), rng, tries)

    points, seen = [], set()
    for row in design:
        point = {name: ranges[name].from_unit(u) for name, u in zip(names, row)}
        key = tuple(point[name] for name in names)
        if key not in seen:
            seen.add(key)
            points.append(point)
    return points


def to_unit_matrix(points: List[Dict[str, Any]], ranges: Dict[str, ParameterRange]) -> np.ndarray:
    """Encode configurations on the unit cube (for the surrogate model)."""
    names = list(ranges.keys())
    return np.array([[ranges[n].to_unit(p[n]) for n in names] for p in points], dtype=float).reshape(
        len(points), len(names))
