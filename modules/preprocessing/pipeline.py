"""
Preprocessing pipeline: ordered fit-then-apply feature steps.

A pipeline is described as an ordered list of ``{"step": name, ...params}``
mappings. ``fit`` estimates every step's statistics from the analysis rows
only and returns a FittedPipeline whose ``apply`` replays them, unchanged, on
any other rows (assessment, testing or new data). The outcome column is never
touched by a step.
"""
import copy
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from utils.exceptions import ConfigurationSpaceError, DataValidationError


class Step:
    """Base class for a preprocessing step. Subclasses set ``name``."""

    name = ''
    numeric_only = True

    def __init__(self, columns: Optional[Sequence[str]] = None, **params):
        self.columns = list(columns) if columns is not None else None
        self.params = params

    def select(self, frame: pd.DataFrame, outcome: Optional[str]) -> List[str]:
        if self.columns is not None:
            missing = [c for c in self.columns if c not in frame.columns]
            if missing:
                raise DataValidationError(f"Step '{self.name}' references missing columns: {missing}")
            return [c for c in self.columns if c != outcome]
        candidates = [c for c in frame.columns if c != outcome]
        if self.numeric_only:
            return [c for c in candidates if pd.api.types.is_numeric_dtype(frame[c])]
        return [c for c in candidates if not pd.api.types.is_numeric_dtype(frame[c])]

    def fit(self, frame: pd.DataFrame, outcome: Optional[str]) -> Dict[str, Any]:
        return {'columns': self.select(frame, outcome)}

    def apply(self, frame: pd.DataFrame, state: Dict[str, Any]) -> pd.DataFrame:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        out = {'step': self.name, **self.params}
        if self.columns is not None:
            out['columns'] = list(self.columns)
        return out


class ImputeMean(Step):
    name = 'impute_mean'

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        return {'fill': {c: float(frame[c].mean()) for c in cols}}

    def apply(self, frame, state):
        return frame.fillna(value=state['fill'])


class ImputeMedian(Step):
    name = 'impute_median'

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        return {'fill': {c: float(frame[c].median()) for c in cols}}

    def apply(self, frame, state):
        return frame.fillna(value=state['fill'])


class ZeroVariance(Step):
    """Drops predictors with a single distinct value in the analysis rows."""
    name = 'zero_variance'

    def select(self, frame, outcome):
        if self.columns is not None:
            return super().select(frame, outcome)
        return [c for c in frame.columns if c != outcome]

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        return {'drop': [c for c in cols if frame[c].nunique(dropna=False) <= 1]}

    def apply(self, frame, state):
        return frame.drop(columns=[c for c in state['drop'] if c in frame.columns])


class LogTransform(Step):
    name = 'log'

    def fit(self, frame, outcome):
        return {'columns': self.select(frame, outcome),
                'base': float(self.params.get('base', np.e)),
                'offset': float(self.params.get('offset', 0.0))}

    def apply(self, frame, state):
        out = frame.copy()
        denom = np.log(state['base'])
        for c in state['columns']:
            out[c] = np.log(out[c].astype(float) + state['offset']) / denom
        return out


class Normalize(Step):
    """Center to mean zero and scale to unit standard deviation."""
    name = 'normalize'

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        means = {c: float(frame[c].mean()) for c in cols}
        sds = {}
        for c in cols:
            sd = float(frame[c].std(ddof=1)) if len(frame) > 1 else 0.0
            sds[c] = sd if np.isfinite(sd) and sd > 0 else 1.0
        return {'mean': means, 'sd': sds}

    def apply(self, frame, state):
        out = frame.copy()
        for c, mu in state['mean'].items():
            out[c] = (out[c].astype(float) - mu) / state['sd'][c]
        return out


class Dummy(Step):
    """
    Indicator columns for categorical predictors.

    Levels are learned from the analysis rows; unseen levels map to all-zero
    indicators. With ``one_hot=False`` (default) the first level is dropped.
    """
    name = 'dummy'
    numeric_only = False

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        levels = {c: sorted(frame[c].dropna().astype(str).unique().tolist()) for c in cols}
        if not self.params.get('one_hot', False):
            levels = {c: lv[1:] for c, lv in levels.items()}
        return {'levels': levels}

    def apply(self, frame, state):
        out = frame.copy()
        for c, levels in state['levels'].items():
            values = out[c].astype(str)
            for level in levels:
                out[f"{c}_{level}"] = (values == level).astype(float)
            out = out.drop(columns=[c])
        return out


class Interact(Step):
    """Pairwise products; ``terms`` is a list of [left, right] column pairs."""
    name = 'interact'

    def fit(self, frame, outcome):
        terms = self.params.get('terms')
        if not terms:
            raise ConfigurationSpaceError("Step 'interact' requires a non-empty 'terms' list.")
        for pair in terms:
            missing = [c for c in pair if c not in frame.columns]
            if len(pair) != 2 or missing:
                raise DataValidationError(f"Invalid interaction term {pair} (missing: {missing}).")
        return {'terms': [list(p) for p in terms]}

    def apply(self, frame, state):
        out = frame.copy()
        for left, right in state['terms']:
            out[f"{left}_x_{right}"] = out[left].astype(float) * out[right].astype(float)
        return out


class PrincipalComponents(Step):
    name = 'pca'

    def fit(self, frame, outcome):
        cols = self.select(frame, outcome)
        num_comp = int(self.params.get('num_comp', 5))
        num_comp = max(1, min(num_comp, len(cols), len(frame)))
        pca = PCA(n_components=num_comp)
        pca.fit(frame[cols].to_numpy(dtype=float))
        return {'columns': cols, 'pca': pca}

    def apply(self, frame, state):
        cols = state['columns']
        scores = state['pca'].transform(frame[cols].to_numpy(dtype=float))
        width = len(str(scores.shape[1]))
        pcs = pd.DataFrame(scores, index=frame.index,
                           columns=[f"PC{i + 1:0{width}d}" for i in range(scores.shape[1])])
        return pd.concat([frame.drop(columns=cols), pcs], axis=1)


STEP_REGISTRY = {
    cls.name: cls
    for cls in (ImputeMean, ImputeMedian, ZeroVariance, LogTransform, Normalize, Dummy, Interact,
                PrincipalComponents)
}


class FittedPipeline:
    """Frozen per-step statistics estimated from one analysis subset."""

    def __init__(self, steps: List[Step], states: List[Dict[str, Any]], outcome: Optional[str],
                 predictors: Optional[List[str]]):
        self.steps = steps
        self.states = states
        self.outcome = outcome
        self.predictors = predictors

    def apply(self, frame: pd.DataFrame) -> pd.DataFrame:
        out = _restrict(frame, self.predictors, self.outcome)
        for step, state in zip(self.steps, self.states):
            out = step.apply(out, state)
        return out

    def features(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Transformed predictors only (outcome removed)."""
        out = self.apply(frame)
        if self.outcome is not None and self.outcome in out.columns:
            out = out.drop(columns=[self.outcome])
        return out

    def state(self) -> List[Dict[str, Any]]:
        """Deep copy of the learned statistics, for inspection."""
        return [
            {'step': step.name, **{k: copy.deepcopy(v) for k, v in st.items() if k != 'pca'}}
            for step, st in zip(self.steps, self.states)
        ]


def _restrict(frame: pd.DataFrame, predictors: Optional[List[str]], outcome: Optional[str]) -> pd.DataFrame:
    if predictors is None:
        return frame.copy()
    keep = list(predictors)
    if outcome is not None and outcome in frame.columns:
        keep.append(outcome)
    missing = [c for c in keep if c not in frame.columns]
    if missing:
        raise DataValidationError(f"Pipeline predictors missing from data: {missing}")
    return frame[keep].copy()


class PreprocessingPipeline:
    """
    Ordered description of preprocessing steps.

    Example:
        PreprocessingPipeline.from_description([
            {"step": "impute_median"},
            {"step": "dummy", "columns": ["Neighborhood"]},
            {"step": "normalize"},
        ], predictors=["Gr_Liv_Area", "Neighborhood"])
    """

    def __init__(self, steps: Optional[List[Step]] = None, predictors: Optional[Sequence[str]] = None):
        self.steps = list(steps or [])
        self.predictors = list(predictors) if predictors is not None else None

    @classmethod
    def from_description(cls, description: Optional[List[Dict[str, Any]]],
                         predictors: Optional[Sequence[str]] = None) -> "PreprocessingPipeline":
        steps = []
        for i, entry in enumerate(description or []):
            entry = dict(entry)
            name = entry.pop('step', None)
            if name not in STEP_REGISTRY:
                raise ConfigurationSpaceError(
                    f"Unknown preprocessing step '{name}' at position {i}. Available: {sorted(STEP_REGISTRY)}"
                )
            columns = entry.pop('columns', None)
            steps.append(STEP_REGISTRY[name](columns=columns, **entry))
        return cls(steps, predictors=predictors)

    def describe(self) -> List[Dict[str, Any]]:
        return [step.describe() for step in self.steps]

    def fit(self, frame: pd.DataFrame, outcome: Optional[str] = None) -> FittedPipeline:
        """Estimate every step on ``frame`` (the analysis rows) in order."""
        current = _restrict(frame, self.predictors, outcome)
        states = []
        for step in self.steps:
            state = step.fit(current, outcome)
            states.append(state)
            current = step.apply(current, state)
        return FittedPipeline(self.steps, states, outcome, self.predictors)

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"PreprocessingPipeline({[s.name for s in self.steps]})"
