"""
Resampling Engine Module
========================

Responsibility:
- Dispatch fit-evaluate cells over split x configuration (joblib).
- Contain per-cell failures as data.
- Mean / standard-error performance summaries per configuration and metric.
"""

from .orchestrator import (
    Configuration,
    PerformanceSummary,
    ResampleResult,
    ResamplingEngine,
    ResamplingOrchestrator,
    fit_resamples,
    make_configuration,
    make_configurations,
    summarize,
)

__all__ = [
    'Configuration', 'PerformanceSummary', 'ResampleResult', 'ResamplingEngine', 'ResamplingOrchestrator',
    'fit_resamples', 'make_configuration', 'make_configurations', 'summarize',
]
