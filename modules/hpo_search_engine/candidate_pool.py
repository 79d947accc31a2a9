"""
Candidate pool: the search state.

Maps configuration id -> Candidate. A candidate starts ``pending`` and ends
in exactly one of ``evaluated``, ``pruned`` (eliminated by racing) or
``excluded`` (every cell failed). The pool is owned by one search and is
only written by its controlling thread, after a batch of orchestrator
results has been collected.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

import pandas as pd

from modules.resampling_engine import Configuration, PerformanceSummary, ResampleResult
from utils import constants

_TRANSITIONS = {
    constants.PENDING: {constants.EVALUATED, constants.PRUNED, constants.EXCLUDED},
    constants.EVALUATED: set(),
    constants.PRUNED: set(),
    constants.EXCLUDED: set(),
}


@dataclass
class Candidate:
    config: Configuration
    status: str = constants.PENDING
    summaries: Dict[str, PerformanceSummary] = field(default_factory=dict)
    iteration: int = 0

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def params(self) -> dict:
        return self.config.params

    def summary(self, metric: str) -> Optional[PerformanceSummary]:
        return self.summaries.get(metric)


class CandidatePool:

    def __init__(self, configurations=()):
        self._candidates: Dict[str, Candidate] = {}
        for config in configurations:
            self.add(config)

    def add(self, config: Configuration, iteration: int = 0) -> Candidate:
        if config.id in self._candidates:
            return self._candidates[config.id]
        candidate = Candidate(config, iteration=iteration)
        self._candidates[config.id] = candidate
        return candidate

    def __contains__(self, config_id: str) -> bool:
        return config_id in self._candidates

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates.values())

    def get(self, config_id: str) -> Candidate:
        return self._candidates[config_id]

    def ids(self, status: Optional[str] = None) -> List[str]:
        return [c.id for c in self if status is None or c.status == status]

    def candidates(self, status: Optional[str] = None) -> List[Candidate]:
        return [c for c in self if status is None or c.status == status]

    def configurations(self, status: Optional[str] = None) -> List[Configuration]:
        return [c.config for c in self.candidates(status)]

    def _move(self, config_id: str, status: str) -> None:
        candidate = self._candidates[config_id]
        if status not in _TRANSITIONS[candidate.status]:
            raise ValueError(f"Invalid transition for {config_id}: {candidate.status} -> {status}")
        candidate.status = status

    def attach(self, config_id: str, result: ResampleResult) -> None:
        """Refresh a candidate's summaries from ``result`` without changing status."""
        candidate = self._candidates[config_id]
        for s in result.summaries():
            if s.config_id == config_id:
                candidate.summaries[s.metric] = s

    def prune(self, config_id: str, result: Optional[ResampleResult] = None) -> None:
        if result is not None:
            self.attach(config_id, result)
        self._move(config_id, constants.PRUNED)

    def settle(self, config_id: str, result: ResampleResult, metric: str) -> str:
        """
        Close a pending candidate: ``evaluated`` when its summary for
        ``metric`` is defined, else ``excluded``.
        """
        self.attach(config_id, result)
        summary = self._candidates[config_id].summaries.get(metric)
        status = constants.EVALUATED if summary is not None and summary.defined else constants.EXCLUDED
        self._move(config_id, status)
        return status

    def settle_pending(self, result: ResampleResult, metric: str) -> None:
        for config_id in self.ids(constants.PENDING):
            if config_id in result.config_ids:
                self.settle(config_id, result, metric)

    def to_frame(self, metric: str) -> pd.DataFrame:
        rows = []
        for c in self:
            s = c.summaries.get(metric)
            rows.append({
                constants.CONFIG_COL: c.id,
                'status': c.status,
                'iteration': c.iteration,
                'order': c.config.order,
                'params': c.config.params_json(),
                'metric': metric,
                'mean': s.mean if s else float('nan'),
                'std_err': s.std_err if s else float('nan'),
                'n': s.n if s else 0,
            })
        return pd.DataFrame(rows, columns=[constants.CONFIG_COL, 'status', 'iteration', 'order', 'params', 'metric',
                                           'mean', 'std_err', 'n'])
