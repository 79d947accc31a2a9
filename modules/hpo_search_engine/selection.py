"""
Ranking and selection over an evaluated candidate pool.
"""
import math
from typing import List, Optional, Sequence

import pandas as pd

from modules.evaluation_engine import Metric
from modules.hpo_search_engine.candidate_pool import Candidate, CandidatePool
from utils.exceptions import AllConfigurationsFailed
from utils import constants


def _ranked(pool: CandidatePool, metric: Metric) -> List[Candidate]:
    """Evaluated candidates, best first: mean, then lowest std_err, then enumeration order."""
    ranked = []
    for position, c in enumerate(pool):
        if c.status != constants.EVALUATED:
            continue
        s = c.summary(metric.name)
        if s is None or not s.defined:
            continue
        score = s.mean if metric.minimize else -s.mean
        se = s.std_err if not math.isnan(s.std_err) else math.inf
        ranked.append(((score, se, c.config.order, position), c))
    ranked.sort(key=lambda item: item[0])
    return [c for _, c in ranked]


def select_best(pool: CandidatePool, metric: Metric, tie_break: str = 'std_err') -> Candidate:
    """
    The evaluated configuration with the optimal mean ``metric``.

    Ties are broken by lowest standard error, then first-enumerated
    (``tie_break='order'`` skips the standard-error step).

    Raises:
        AllConfigurationsFailed: when no configuration has a defined summary.
    """
    ranked = _ranked(pool, metric)
    if not ranked:
        raise AllConfigurationsFailed(
            f"No configuration produced a usable '{metric.name}' summary "
            f"({len(pool.ids(constants.EXCLUDED))} excluded, {len(pool.ids(constants.PRUNED))} pruned)."
        )
    if tie_break == 'order':
        best_mean = ranked[0].summary(metric.name).mean
        tied = [c for c in ranked if c.summary(metric.name).mean == best_mean]
        return min(tied, key=lambda c: c.config.order)
    return ranked[0]


def show_best(pool: CandidatePool, metric: Metric, n: int = 5) -> pd.DataFrame:
    ranked = _ranked(pool, metric)[:n]
    rows = []
    for rank, c in enumerate(ranked, start=1):
        s = c.summary(metric.name)
        rows.append({'rank': rank, constants.CONFIG_COL: c.id, **c.params, 'metric': metric.name,
                     'mean': s.mean, 'std_err': s.std_err, 'n': s.n})
    return pd.DataFrame(rows)


def select_by_one_std_err(pool: CandidatePool, metric: Metric, order_by: Sequence[str]) -> Candidate:
    """
    The simplest configuration whose mean is within one standard error of the
    best. ``order_by`` lists parameters from most to least important for
    simplicity; prefix a name with '-' to prefer larger values (e.g.
    '-penalty' for a lasso fit).
    """
    best = select_best(pool, metric)
    s = best.summary(metric.name)
    se = 0.0 if math.isnan(s.std_err) else s.std_err
    limit = s.mean + se if metric.minimize else s.mean - se

    eligible = [
        c for c in _ranked(pool, metric)
        if (c.summary(metric.name).mean <= limit if metric.minimize else c.summary(metric.name).mean >= limit)
    ]

    def key(c: Candidate):
        parts = []
        for term in order_by:
            name = term.lstrip('-')
            value = c.params.get(name)
            if isinstance(value, (int, float)):
                parts.append(-value if term.startswith('-') else value)
            else:
                parts.append(0)
        return tuple(parts)

    return sorted(eligible, key=key)[0] if eligible else best


def ranking_frame(pool: CandidatePool, metric: Metric, statuses: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """All candidates with their summary; evaluated ones carry a rank."""
    frame = pool.to_frame(metric.name)
    rank = {c.id: i for i, c in enumerate(_ranked(pool, metric), start=1)}
    frame['rank'] = frame[constants.CONFIG_COL].map(rank)
    if statuses is not None:
        frame = frame[frame['status'].isin(statuses)]
    return frame.sort_values(['rank', 'order'], na_position='last').reset_index(drop=True)
