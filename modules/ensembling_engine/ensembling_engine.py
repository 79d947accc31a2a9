import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.data_manager import Dataset
from modules.evaluation_engine import FittedArtifact, MetricSet, fit_workflow
from modules.hpo_search_engine import GridSearch, SearchResult
from modules.model_factory import ModelEngine, ModelSpec, tune
from modules.preprocessing import PreprocessingPipeline
from modules.resampling_engine import Configuration, ResampleResult, ResamplingOrchestrator
from modules.split_engine import vfold_cv
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationSpaceError, DataValidationError, ModelTrainingError, PredictionError
from utils import constants

Member = Tuple[Configuration, pd.DataFrame]

DEFAULT_PENALTIES = tuple(10.0 ** np.arange(-6, 0.5, 0.5))


def members_from_result(result: ResampleResult, config_ids: Optional[Sequence[str]] = None) -> List[Member]:
    """(configuration, out-of-fold predictions) for every configuration with retained predictions."""
    preds = result.collect_predictions()
    if preds.empty:
        raise DataValidationError("No retained predictions; resample candidates with save_predictions enabled.")
    ids = list(config_ids) if config_ids is not None else result.config_ids
    members = []
    for config_id in ids:
        member_preds = preds[preds[constants.CONFIG_COL] == config_id]
        if not member_preds.empty:
            members.append((result.configuration(config_id), member_preds.reset_index(drop=True)))
    return members


def out_of_fold_matrix(members: Sequence[Member], outcome: str) -> Tuple[pd.DataFrame, pd.Series]:
    """
    One column per member, one row per training row that every member
    predicted. Rows predicted several times (repeats, bootstrap) are averaged.
    """
    if not members:
        raise ConfigurationSpaceError("Blending needs at least one candidate member.")
    columns, truth = {}, None
    for config, preds in members:
        if outcome not in preds.columns:
            raise DataValidationError(f"Predictions for {config.id} lack the outcome column '{outcome}'.")
        grouped = preds.groupby(constants.ROW_COL)
        columns[config.id] = grouped[constants.PRED_COL].mean()
        member_truth = grouped[outcome].first()
        truth = member_truth if truth is None else truth.combine_first(member_truth)

    X = pd.concat(columns, axis=1, join='inner').sort_index()
    X.columns = list(columns.keys())
    if X.empty:
        raise DataValidationError("Candidate members share no predicted rows.")
    dropped = len(truth) - len(X)
    if dropped:
        logging.getLogger(__name__).debug(f"Dropped {dropped} row(s) not predicted by every member.")
    return X, truth.loc[X.index].astype(float)


@dataclass
class MetaModel:
    """Non-negative linear combination of member predictions."""
    weights: pd.Series
    intercept: float
    penalty: float
    mixture: float
    members: Dict[str, Configuration]
    penalty_search: Optional[SearchResult] = None
    fitted_members: Dict[str, FittedArtifact] = field(default_factory=dict)

    def retained(self) -> List[str]:
        return [cid for cid, w in self.weights.items() if w != 0]

    def weights_frame(self) -> pd.DataFrame:
        rows = [{constants.CONFIG_COL: cid, 'weight': float(w), 'params': self.members[cid].params_json(),
                 'retained': bool(w != 0)} for cid, w in self.weights.items()]
        rows.append({constants.CONFIG_COL: '(Intercept)', 'weight': self.intercept, 'params': '{}',
                     'retained': True})
        return pd.DataFrame(rows)

    def fit_members(self, dataset: Dataset, pipeline: Union[PreprocessingPipeline, Dict[str, PreprocessingPipeline]],
                    seed: Optional[int] = None) -> "MetaModel":
        """Refit every member with a nonzero weight on all of ``dataset``."""
        frame = dataset.frame
        for cid in self.retained():
            member_pipeline = pipeline[cid] if isinstance(pipeline, dict) else pipeline
            try:
                self.fitted_members[cid] = fit_workflow(frame, dataset.outcome, member_pipeline,
                                                        self.members[cid].spec, seed=seed)
            except Exception as e:
                raise ModelTrainingError(f"Refitting ensemble member {cid} failed: {e}") from e
        return self

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        missing = [cid for cid in self.retained() if cid not in self.fitted_members]
        if missing:
            raise PredictionError(f"Members {missing} have not been refitted; call fit_members first.")
        pred = np.full(len(frame), self.intercept, dtype=float)
        for cid in self.retained():
            pred += float(self.weights[cid]) * self.fitted_members[cid].predict(frame)
        return pred


def _meta_spec(mixture: float, penalties: Sequence[float]) -> ModelSpec:
    return ModelSpec('elastic_net', {
        'penalty': tune(min(penalties), max(penalties), transform='log10'),
        'mixture': mixture,
        'positive': True,
    }, name='stack')


def blend(members: Sequence[Member], outcome: str, penalty_grid: Sequence[float] = DEFAULT_PENALTIES,
          mixture: float = 1.0, folds: int = 5, seed: Optional[int] = None, n_jobs: int = 1,
          logger: Optional[logging.Logger] = None) -> MetaModel:
    """
    Fit the stacking meta-model.

    The penalty is chosen by cross-validating an elastic net with
    non-negative coefficients over ``penalty_grid`` on the out-of-fold
    matrix; ``mixture`` is the l1 ratio (1.0 = lasso). Members with zero
    weight drop out of the ensemble.
    """
    logger = logger or logging.getLogger(__name__)
    non_regression = [config.id for config, _ in members if config.spec.mode != 'regression']
    if non_regression:
        raise ConfigurationSpaceError(f"Only regression members can be blended; got {non_regression}.")
    penalties = sorted(float(p) for p in penalty_grid)
    if not penalties or min(penalties) <= 0:
        raise ConfigurationSpaceError("Penalty grid values must be > 0.")
    if not 0 <= mixture <= 1:
        raise ConfigurationSpaceError(f"mixture must be in [0, 1], got {mixture}")

    X, y = out_of_fold_matrix(members, outcome)
    meta_frame = X.assign(**{outcome: y.to_numpy()}).reset_index(drop=True)
    meta_data = Dataset(meta_frame, outcome, name='stack')
    logger.info(f"Blending {X.shape[1]} member(s) on {len(X)} out-of-fold rows")

    spec = _meta_spec(mixture, penalties)
    splits = vfold_cv(meta_data, v=min(folds, meta_data.n_rows), seed=seed)
    orchestrator = ResamplingOrchestrator(n_jobs=n_jobs, seed=seed, logger=logger)
    search = GridSearch(orchestrator, seed=seed, logger=logger).search(
        meta_data, splits, PreprocessingPipeline(), spec, MetricSet(['rmse']),
        grid=[{'penalty': p} for p in penalties],
    )
    best_penalty = float(search.best().params['penalty'])

    resolved = spec.resolve({'penalty': best_penalty})
    fitted = ModelEngine.fit(resolved, meta_frame[list(X.columns)], y.to_numpy(), seed=seed)
    weights = pd.Series(fitted.estimator.coef_, index=list(X.columns), dtype=float)
    meta = MetaModel(
        weights=weights,
        intercept=float(fitted.estimator.intercept_),
        penalty=best_penalty,
        mixture=mixture,
        members={config.id: config for config, _ in members},
        penalty_search=search,
    )
    logger.info(f"Stack penalty={best_penalty:.3g}: {len(meta.retained())}/{len(weights)} member(s) retained")
    return meta


class EnsemblingEngine(BaseEngine):
    """
    Stacks resampled candidates into a non-negative linear blend and
    persists member weights and the penalty search.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.ens_config = config.get('ensemble', {})
        self.enabled = self.ens_config.get('enabled', False)
        seeds = self.config.get('_internal_seeds', {})
        self.seed = seeds.get('ensemble', self.config.get('seed'))
        self.n_jobs = self.config.get('execution', {}).get('n_jobs', 1)

    def _get_engine_directory_name(self) -> str:
        return constants.ENSEMBLE_DIR

    @handle_engine_errors("Ensembling")
    def execute(self, members: Sequence[Member], dataset: Dataset,
                pipeline: Union[PreprocessingPipeline, Dict[str, PreprocessingPipeline]]) -> Optional[MetaModel]:
        if not self.enabled:
            self.logger.info("Ensembling disabled in config.")
            return None
        if len(members) < 2:
            self.logger.warning("Ensembling requires at least 2 candidate members. Skipping.")
            return None

        meta = blend(
            members,
            dataset.outcome,
            penalty_grid=self.ens_config.get('penalty_grid', DEFAULT_PENALTIES),
            mixture=self.ens_config.get('mixture', 1.0),
            folds=self.ens_config.get('folds', 5),
            seed=self.seed,
            n_jobs=self.n_jobs,
            logger=self.logger,
        )
        meta.fit_members(dataset, pipeline, seed=self.seed)

        self._save_table(meta.weights_frame(), constants.ENSEMBLE_WEIGHTS_FILE)
        self._save_table(meta.penalty_search.collect_metrics(), constants.PENALTY_PATH_FILE)
        self.logger.info(f"Ensemble complete: {meta.retained()}")
        return meta
