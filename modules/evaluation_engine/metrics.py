"""
Named performance metrics with an optimisation direction.

Each metric compares assessment-set truth with predictions and returns a
scalar. ``roc_auc`` needs class-probability scores; the others work on hard
predictions.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    mean_absolute_error,
    mean_squared_error,
    roc_auc_score,
)

from utils.exceptions import ConfigurationSpaceError


def rmse(y_true, y_pred) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


def mae(y_true, y_pred) -> float:
    return float(mean_absolute_error(y_true, y_pred))


def rsq(y_true, y_pred) -> float:
    """Squared correlation between truth and prediction (NaN for constant inputs)."""
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    if y_true.size < 2 or np.std(y_true) == 0 or np.std(y_pred) == 0:
        return float('nan')
    return float(np.corrcoef(y_true, y_pred)[0, 1] ** 2)


def mape(y_true, y_pred) -> float:
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    nonzero = y_true != 0
    if not nonzero.any():
        return float('nan')
    return float(np.mean(np.abs((y_true[nonzero] - y_pred[nonzero]) / y_true[nonzero])) * 100)


def accuracy(y_true, y_pred) -> float:
    return float(accuracy_score(y_true, y_pred))


def kappa(y_true, y_pred) -> float:
    return float(cohen_kappa_score(y_true, y_pred))


def roc_auc(y_true, y_score) -> float:
    y_true = np.asarray(y_true)
    if len(np.unique(y_true)) < 2:
        return float('nan')
    return float(roc_auc_score(y_true, y_score))


@dataclass(frozen=True)
class Metric:
    name: str
    fn: Callable
    direction: str  # 'minimize' | 'maximize'
    needs_scores: bool = False

    @property
    def minimize(self) -> bool:
        return self.direction == 'minimize'

    def better(self, a: float, b: float) -> bool:
        """True when ``a`` is strictly better than ``b``."""
        return a < b if self.minimize else a > b


METRIC_REGISTRY: Dict[str, Metric] = {
    m.name: m for m in (
        Metric('rmse', rmse, 'minimize'),
        Metric('mae', mae, 'minimize'),
        Metric('rsq', rsq, 'maximize'),
        Metric('mape', mape, 'minimize'),
        Metric('accuracy', accuracy, 'maximize'),
        Metric('kappa', kappa, 'maximize'),
        Metric('roc_auc', roc_auc, 'maximize', needs_scores=True),
    )
}


class MetricSet:
    """Ordered set of metrics; the first one is the default for ranking."""

    def __init__(self, names: Iterable[str] = ('rmse', 'rsq')):
        names = list(names)
        if not names:
            raise ConfigurationSpaceError("A metric set needs at least one metric.")
        unknown = [n for n in names if n not in METRIC_REGISTRY]
        if unknown:
            raise ConfigurationSpaceError(f"Unknown metric(s) {unknown}. Available: {sorted(METRIC_REGISTRY)}")
        self.metrics: List[Metric] = [METRIC_REGISTRY[n] for n in dict.fromkeys(names)]

    @property
    def names(self) -> List[str]:
        return [m.name for m in self.metrics]

    @property
    def primary(self) -> Metric:
        return self.metrics[0]

    def get(self, name: Optional[str] = None) -> Metric:
        if name is None:
            return self.primary
        if name not in self.names:
            raise ConfigurationSpaceError(f"Metric '{name}' is not part of this metric set {self.names}.")
        return METRIC_REGISTRY[name]

    def compute(self, y_true, y_pred, y_score=None) -> Dict[str, float]:
        out = {}
        for m in self.metrics:
            if m.needs_scores:
                out[m.name] = m.fn(y_true, y_score) if y_score is not None else float('nan')
            else:
                out[m.name] = m.fn(y_true, y_pred)
        return out

    def __iter__(self):
        return iter(self.metrics)

    def __repr__(self) -> str:
        return f"MetricSet({self.names})"
