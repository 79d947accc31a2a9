import pandas as pd
import joblib
import logging
import time
import gc
from dataclasses import dataclass
from typing import Any, Dict, Optional

from modules.data_manager import Dataset
from modules.evaluation_engine import FittedArtifact, MetricSet, fit_workflow
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.split_engine import InitialSplit
from utils.exceptions import ModelTrainingError, PredictionError, UnresolvedParameterError
from modules.base.base_engine import BaseEngine
from utils.error_handling import handle_engine_errors
from utils import constants


@dataclass
class LastFitResult:
    """Outcome of fitting on the training portion and scoring on the testing portion."""
    artifact: FittedArtifact
    metrics: Dict[str, float]
    predictions: pd.DataFrame


class TrainingEngine(BaseEngine):
    """
    Fits the selected workflow (pipeline + resolved model) on all training
    rows and persists it; ``last_fit`` additionally scores the held-out
    testing rows of an initial split.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        seeds = self.config.get('_internal_seeds', {})
        self.seed = seeds.get('model', self.config.get('seed'))
        self.save_models = self.config.get('outputs', {}).get('save_models', True)

    def _get_engine_directory_name(self) -> str:
        return constants.FINAL_MODEL_DIR

    def execute(self, dataset: Dataset, pipeline: PreprocessingPipeline, spec: ModelSpec) -> FittedArtifact:
        return self.fit_final(dataset, pipeline, spec)

    @handle_engine_errors("Training")
    def fit_final(self, dataset: Dataset, pipeline: PreprocessingPipeline, spec: ModelSpec) -> FittedArtifact:
        """
        Fit ``pipeline`` and ``spec`` on every row of ``dataset``.

        Raises:
            UnresolvedParameterError: if ``spec`` still has tunable parameters.
            ModelTrainingError: if preprocessing or fitting fails.
        """
        if not spec.is_resolved:
            raise UnresolvedParameterError(
                f"Final fit needs a resolved model; '{spec.name}' still tunes {list(spec.tunables())}"
            )
        self.logger.info(f"Training {spec.name} on {dataset.n_rows} rows...")

        frame = dataset.frame
        try:
            start_time = time.time()
            artifact = fit_workflow(frame, dataset.outcome, pipeline, spec, seed=self.seed)
            duration = time.time() - start_time
        except Exception as e:
            raise ModelTrainingError(f"Failed to train model: {str(e)}") from e
        finally:
            # Estimators can hold references to large intermediate arrays
            del frame
            gc.collect()

        self.logger.info(f"Training completed in {duration:.2f} seconds.")
        self._save_artifact(artifact, dataset, pipeline, duration)
        return artifact

    @handle_engine_errors("Last Fit")
    def last_fit(self, dataset: Dataset, split: InitialSplit, pipeline: PreprocessingPipeline, spec: ModelSpec,
                 metrics: Optional[MetricSet] = None) -> LastFitResult:
        """Fit on ``split``'s training rows, then score its testing rows once."""
        metrics = metrics or MetricSet()
        training = split.training(dataset)
        testing = split.testing(dataset)
        artifact = self.fit_final(training, pipeline, spec)

        test_frame = testing.frame
        try:
            preds = artifact.predict(test_frame)
            scores = artifact.predict_scores(test_frame)
        except Exception as e:
            raise PredictionError(f"Predicting the testing set failed: {e}") from e

        truth = test_frame[dataset.outcome].to_numpy()
        values = metrics.compute(truth, preds, scores)
        predictions = pd.DataFrame({
            constants.ROW_COL: split.test,
            constants.PRED_COL: preds,
            dataset.outcome: truth,
        })
        if scores is not None:
            predictions['.pred_score'] = scores

        self.logger.info("Test set: " + ", ".join(f"{k}={v:.4f}" for k, v in values.items()))
        self._save_json({'model': spec.describe(), 'n_test': int(split.test.size), 'metrics': values},
                        constants.FINAL_METRICS_FILE)
        self._save_table(predictions, constants.PREDICTIONS_FILE)
        return LastFitResult(artifact, values, predictions)

    def _save_artifact(self, artifact: FittedArtifact, dataset: Dataset, pipeline: PreprocessingPipeline,
                       duration: float) -> None:
        if not (self.persist and self.save_models):
            return
        try:
            model_path = self.output_dir / constants.FINAL_MODEL_FILE
            joblib.dump(artifact, model_path)
            self.logger.info(f"Model saved to {model_path}")

            metadata: Dict[str, Any] = {
                'model': artifact.spec.describe(),
                'preprocessing': pipeline.describe(),
                'features': artifact.model.features,
                'n_rows': dataset.n_rows,
                'training_time_sec': duration,
                'timestamp': time.strftime("%Y-%m-%d %H:%M:%S"),
            }
            self._save_json(metadata, "training_metadata.json")
        except OSError as e:
            self.logger.warning(f"Failed to save model artifacts. Error: {e}")


def load_artifact(path) -> FittedArtifact:
    return joblib.load(path)
