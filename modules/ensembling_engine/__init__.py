"""
Ensembling Engine Module
========================

Responsibility:
- Build the out-of-fold prediction matrix of candidate members.
- Fit a non-negative elastic-net meta-model with a cross-validated penalty.
- Refit retained members and combine their predictions.
"""

from .ensembling_engine import (
    DEFAULT_PENALTIES,
    EnsemblingEngine,
    MetaModel,
    blend,
    members_from_result,
    out_of_fold_matrix,
)

__all__ = [
    'DEFAULT_PENALTIES', 'EnsemblingEngine', 'MetaModel', 'blend', 'members_from_result', 'out_of_fold_matrix',
]
