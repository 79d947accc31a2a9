"""
Fit-evaluate cell.

One cell = one split x one preprocessing pipeline x one resolved model
specification. The pipeline and model are fitted on the split's analysis rows
only, then scored on its assessment rows. Anything that goes wrong while
fitting or predicting is captured as a FitFailure and returned as data: a
failing cell never raises into its siblings.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from modules.data_manager import Dataset
from modules.evaluation_engine.metrics import MetricSet
from modules.model_factory import FittedModel, ModelEngine, ModelSpec
from modules.preprocessing import FittedPipeline, PreprocessingPipeline
from modules.split_engine import Split
from utils.exceptions import UnresolvedParameterError
from utils import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricRecord:
    split_id: str
    config_id: str
    metric: str
    value: float


@dataclass(frozen=True)
class FitFailure:
    split_id: str
    config_id: str
    stage: str  # 'preprocess' | 'fit' | 'predict' | 'metric'
    error_type: str
    message: str


@dataclass
class FittedArtifact:
    """Fitted pipeline state plus fitted model from one set of training rows."""
    pipeline: FittedPipeline
    model: FittedModel
    spec: ModelSpec

    def predict(self, frame: pd.DataFrame) -> np.ndarray:
        return ModelEngine.predict(self.model, self.pipeline.features(frame))

    def predict_scores(self, frame: pd.DataFrame) -> Optional[np.ndarray]:
        return ModelEngine.predict_scores(self.model, self.pipeline.features(frame))


@dataclass
class CellResult:
    split_id: str
    config_id: str
    records: List[MetricRecord] = field(default_factory=list)
    failure: Optional[FitFailure] = None
    predictions: Optional[pd.DataFrame] = None
    artifact: Optional[FittedArtifact] = None
    skipped: bool = False
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None and not self.skipped


def fit_workflow(frame: pd.DataFrame, outcome: str, pipeline: PreprocessingPipeline, spec: ModelSpec,
                 seed: Optional[int] = None) -> FittedArtifact:
    """Fit pipeline then model on ``frame``; errors propagate to the caller."""
    fitted = pipeline.fit(frame, outcome)
    X = fitted.features(frame)
    model = ModelEngine.fit(spec, X, frame[outcome].to_numpy(), seed=seed)
    return FittedArtifact(fitted, model, spec)


def _failure(split: Split, config_id: str, stage: str, exc: Exception) -> FitFailure:
    return FitFailure(split.id, config_id, stage, type(exc).__name__, str(exc))


def evaluate(split: Split, pipeline: PreprocessingPipeline, model_spec: ModelSpec, metrics: MetricSet,
             dataset: Dataset, config_id: str = 'config', retain_predictions: bool = False,
             retain_artifact: bool = False, seed: Optional[int] = None) -> CellResult:
    """
    Fit on ``split.analysis`` and score on ``split.assessment``.

    Returns:
        CellResult with one MetricRecord per metric, or a FitFailure. Splits
        with an empty assessment set are returned as ``skipped``.

    Raises:
        UnresolvedParameterError: if ``model_spec`` still has tunable parameters.
    """
    if not model_spec.is_resolved:
        raise UnresolvedParameterError(
            f"Cannot evaluate '{model_spec.name}': unresolved parameters {list(model_spec.tunables())}"
        )

    result = CellResult(split.id, config_id)
    if split.assessment_empty:
        result.skipped = True
        return result

    start = time.time()
    outcome = dataset.outcome
    analysis = dataset.rows(split.analysis)
    assessment = dataset.rows(split.assessment)

    stage = 'preprocess'
    try:
        fitted = pipeline.fit(analysis, outcome)
        X_analysis = fitted.features(analysis)
        X_assessment = fitted.features(assessment)

        stage = 'fit'
        model = ModelEngine.fit(model_spec, X_analysis, analysis[outcome].to_numpy(), seed=seed)

        stage = 'predict'
        preds = ModelEngine.predict(model, X_assessment)
        scores = ModelEngine.predict_scores(model, X_assessment)

        stage = 'metric'
        truth = assessment[outcome].to_numpy()
        values = metrics.compute(truth, preds, scores)
    except Exception as e:
        result.failure = _failure(split, config_id, stage, e)
        result.elapsed = time.time() - start
        logger.debug(f"Cell {split.id}/{config_id} failed at {stage}: {e}")
        return result

    result.records = [MetricRecord(split.id, config_id, name, float(v)) for name, v in values.items()]

    if retain_predictions:
        pred_frame = pd.DataFrame({
            constants.ROW_COL: split.assessment,
            constants.SPLIT_COL: split.id,
            constants.CONFIG_COL: config_id,
            constants.PRED_COL: preds,
            outcome: truth,
        })
        if scores is not None:
            pred_frame['.pred_score'] = scores
        result.predictions = pred_frame

    if retain_artifact:
        result.artifact = FittedArtifact(fitted, model, model_spec)

    result.elapsed = time.time() - start
    return result
