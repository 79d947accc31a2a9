"""
Split Engine Module
===================

Responsibility:
- Initial training/testing split.
- Reproducible resample sets: k-fold (repeated), bootstrap, Monte Carlo,
  validation and rolling-origin, with optional stratification.
- Eager validation of scheme parameters.
"""

from .split_engine import (
    InitialSplit,
    ResampleSet,
    Split,
    SplitEngine,
    bootstraps,
    initial_split,
    make_strata,
    mc_cv,
    partition,
    rolling_origin,
    vfold_cv,
)

__all__ = [
    'InitialSplit', 'ResampleSet', 'Split', 'SplitEngine', 'bootstraps', 'initial_split',
    'make_strata', 'mc_cv', 'partition', 'rolling_origin', 'vfold_cv',
]
