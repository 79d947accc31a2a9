"""
HPO Search Engine
=================

Responsibility:
- Regular and space-filling candidate grids.
- Candidate pool state machine (pending / evaluated / pruned / excluded).
- Grid, Bayesian (Gaussian-process) and racing (ANOVA) search strategies.
- Selection: best, top-n, one-standard-error rule.
"""

from .grid import regular_grid, space_filling_grid
from .candidate_pool import Candidate, CandidatePool
from .selection import select_best, select_by_one_std_err, show_best
from .search import (
    STRATEGIES,
    BayesianSearch,
    GridSearch,
    RacingSearch,
    SearchBudgetExhausted,
    SearchResult,
)
from .hpo_search_engine import HPOSearchEngine

__all__ = [
    'BayesianSearch', 'Candidate', 'CandidatePool', 'GridSearch', 'HPOSearchEngine', 'RacingSearch',
    'STRATEGIES', 'SearchBudgetExhausted', 'SearchResult', 'regular_grid', 'select_best',
    'select_by_one_std_err', 'show_best', 'space_filling_grid',
]
