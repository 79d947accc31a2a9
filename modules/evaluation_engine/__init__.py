"""
Evaluation Engine Module
========================

Responsibility:
- Named metrics with optimisation direction.
- The fit-evaluate cell (fit on analysis rows, score on assessment rows,
  contain failures as data).
- Paired model comparison and the ANOVA elimination step used by racing.
"""

from .metrics import METRIC_REGISTRY, Metric, MetricSet
from .fit_evaluate import CellResult, FitFailure, FittedArtifact, MetricRecord, evaluate, fit_workflow
from .stat_tests import anova_race_test, compare_models

__all__ = [
    'METRIC_REGISTRY', 'Metric', 'MetricSet', 'CellResult', 'FitFailure', 'FittedArtifact', 'MetricRecord',
    'evaluate', 'fit_workflow', 'anova_race_test', 'compare_models',
]
