"""
Preprocessing Module
====================

Responsibility:
- Ordered fit-then-apply feature steps (imputation, normalization, indicator
  encoding, interactions, log transforms, PCA, zero-variance filtering).
- Statistics are estimated from analysis rows only and replayed unchanged.
"""

from .pipeline import STEP_REGISTRY, FittedPipeline, PreprocessingPipeline, Step

__all__ = ['STEP_REGISTRY', 'FittedPipeline', 'PreprocessingPipeline', 'Step']
