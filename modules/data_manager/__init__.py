"""
Data Manager Module
===================

Responsibility:
- Immutable tabular Dataset shared read-only by every resampling cell.
- Outcome / predictor bookkeeping and positional row access.
"""

from .dataset import Dataset

__all__ = ['Dataset']
