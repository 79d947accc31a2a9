import logging
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from modules.bootstrapping_engine import BootstrappingEngine
from modules.data_manager import Dataset
from modules.evaluation_engine import MetricSet
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.resampling_engine import fit_resamples
from modules.split_engine import vfold_cv
from utils.exceptions import ConfigurationError, DataValidationError
from utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def engine_config(tmp_path):
    return {
        'seed': 1,
        '_internal_seeds': {'bootstrap': 5001},
        'bootstrapping': {'enabled': True, 'n_samples': 200, 'confidence_level': 0.9},
        'outputs': {'base_results_dir': str(tmp_path)},
    }


@pytest.fixture
def predictions():
    rng = np.random.RandomState(0)
    n = 100
    y = rng.normal(size=n)
    perfect = pd.DataFrame({constants.ROW_COL: np.arange(n), constants.CONFIG_COL: 'perfect',
                            constants.PRED_COL: y, 'y': y})
    noisy = pd.DataFrame({constants.ROW_COL: np.arange(n), constants.CONFIG_COL: 'noisy',
                          constants.PRED_COL: y + rng.normal(0, 1.0, size=n), 'y': y})
    return pd.concat([perfect, noisy], ignore_index=True)


class TestBootstrappingEngine:

    def test_intervals_bracket_the_estimate(self, engine_config, mock_logger, predictions):
        engine = BootstrappingEngine(engine_config, mock_logger)
        out = engine.intervals(predictions, MetricSet(['rmse', 'mae']), 'y', times=300, alpha=0.1)

        assert len(out) == 4
        noisy = out[(out[constants.CONFIG_COL] == 'noisy') & (out['metric'] == 'rmse')].iloc[0]
        assert noisy['lower'] < noisy['estimate'] < noisy['upper']
        assert noisy['estimate'] == pytest.approx(1.0, abs=0.2)

        perfect = out[(out[constants.CONFIG_COL] == 'perfect') & (out['metric'] == 'rmse')].iloc[0]
        assert perfect['lower'] == perfect['upper'] == 0.0

    def test_reproducible_with_seed(self, engine_config, mock_logger, predictions):
        first = BootstrappingEngine(engine_config, mock_logger).intervals(predictions, MetricSet(['rmse']), 'y', 50)
        second = BootstrappingEngine(engine_config, mock_logger).intervals(predictions, MetricSet(['rmse']), 'y', 50)
        pd.testing.assert_frame_equal(first, second)

    def test_repeated_rows_are_averaged(self, engine_config, mock_logger):
        preds = pd.DataFrame({
            constants.ROW_COL: [0, 0, 1, 1, 2, 2],
            constants.CONFIG_COL: 'm',
            constants.PRED_COL: [0.0, 2.0, 1.0, 3.0, 2.0, 4.0],
            'y': [1.0, 1.0, 2.0, 2.0, 3.0, 3.0],
        })
        out = BootstrappingEngine(engine_config, mock_logger).intervals(preds, MetricSet(['rmse']), 'y', 20)
        assert out['estimate'].iloc[0] == pytest.approx(0.0)

    def test_execute_persists(self, engine_config, mock_logger, predictions, tmp_path):
        out = BootstrappingEngine(engine_config, mock_logger).execute(predictions, MetricSet(['rmse']), 'y')
        assert out['times'].unique().tolist() == [200]
        assert out['alpha'].iloc[0] == pytest.approx(0.1)
        assert (tmp_path / constants.INTERVALS_DIR / constants.INTERVALS_FILE).exists()

    def test_disabled(self, engine_config, mock_logger, predictions):
        engine_config['bootstrapping']['enabled'] = False
        assert BootstrappingEngine(engine_config, mock_logger).execute(predictions, MetricSet(), 'y').empty

    def test_invalid_inputs(self, engine_config, mock_logger, predictions):
        engine = BootstrappingEngine(engine_config, mock_logger)
        with pytest.raises(ConfigurationError):
            engine.intervals(predictions, MetricSet(['rmse']), 'y', alpha=1.5)
        with pytest.raises(ConfigurationError):
            engine.intervals(predictions, MetricSet(['rmse']), 'y', times=0)
        with pytest.raises(DataValidationError):
            engine.intervals(predictions, MetricSet(['rmse']), 'missing')

    def test_repeated_class_predictions_take_majority_vote(self, engine_config, mock_logger):
        preds = pd.DataFrame({
            constants.ROW_COL: [0, 0, 0, 1, 1, 1],
            constants.CONFIG_COL: 'm',
            constants.PRED_COL: [1, 1, 0, 0, 0, 1],
            'y': [1, 1, 1, 0, 0, 0],
        })
        out = BootstrappingEngine(engine_config, mock_logger).intervals(
            preds, MetricSet(['accuracy']), 'y', 20, mode='classification')
        assert out['estimate'].iloc[0] == pytest.approx(1.0)

    def test_classification_over_repeated_vfold(self, engine_config, mock_logger):
        rng = np.random.RandomState(3)
        x = rng.normal(size=120)
        frame = pd.DataFrame({'x': x, 'y': (x + rng.normal(0, 0.5, size=120) > 0).astype(int)})
        ds = Dataset(frame, 'y')
        spec = ModelSpec('logistic_reg', mode='classification')
        result = fit_resamples(ds, vfold_cv(ds, v=5, repeats=2, seed=1), PreprocessingPipeline(), spec,
                               MetricSet(['accuracy', 'kappa']), retain_predictions=True)

        out = BootstrappingEngine(engine_config, mock_logger).execute(
            result.collect_predictions(), MetricSet(['accuracy', 'kappa']), 'y', mode='classification')

        assert set(out['metric']) == {'accuracy', 'kappa'}
        acc = out[out['metric'] == 'accuracy'].iloc[0]
        assert 0.5 < acc['estimate'] <= 1.0
        assert acc['lower'] <= acc['estimate'] <= acc['upper']
