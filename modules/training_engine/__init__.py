"""
Training Engine Module
======================

Responsibility:
- Fits the selected preprocessing pipeline and resolved model on all
  training rows.
- ``last_fit``: train on the initial split's training rows, score its
  testing rows.
- Persists the fitted artifact (joblib .pkl) and training metadata (.json).
"""

from .training_engine import LastFitResult, TrainingEngine, load_artifact

__all__ = ['LastFitResult', 'TrainingEngine', 'load_artifact']
