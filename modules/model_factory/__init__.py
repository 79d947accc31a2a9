"""
Model Factory Module
====================

Responsibility:
- Model specifications with Fixed / Tunable hyperparameters.
- Parameter ranges on natural or log scales, with defaults per parameter name.
- Unified family vocabulary mapped onto scikit-learn estimators.
- ModelEngine: the fit/predict interface used by every resampling cell.
"""

from .parameters import DEFAULT_RANGES, Fixed, ParameterRange, Tunable, parse_parameter, tune
from .model_factory import FittedModel, ModelEngine, ModelFactory, ModelSpec

__all__ = [
    'DEFAULT_RANGES', 'Fixed', 'FittedModel', 'ModelEngine', 'ModelFactory', 'ModelSpec',
    'ParameterRange', 'Tunable', 'parse_parameter', 'tune',
]
