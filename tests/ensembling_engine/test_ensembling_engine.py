import logging
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from modules.data_manager import Dataset
from modules.ensembling_engine import EnsemblingEngine, blend, members_from_result, out_of_fold_matrix
from modules.evaluation_engine import MetricSet
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.resampling_engine import ResamplingOrchestrator, make_configuration
from modules.split_engine import vfold_cv
from utils.exceptions import ConfigurationSpaceError, DataValidationError, PredictionError
from utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


def _member(penalty, rows, preds, truth, split='Fold01'):
    config = make_configuration(ModelSpec('ridge', {'penalty': 'tune'}), {'penalty': penalty})
    frame = pd.DataFrame({
        constants.ROW_COL: rows,
        constants.SPLIT_COL: split,
        constants.CONFIG_COL: config.id,
        constants.PRED_COL: preds,
        'y': truth,
    })
    return config, frame


@pytest.fixture
def synthetic_members():
    rng = np.random.RandomState(4)
    n = 200
    y = rng.normal(0, 3.0, size=n)
    good = _member(0.1, np.arange(n), y + rng.normal(0, 0.3, size=n), y)
    noise = _member(1.0, np.arange(n), rng.normal(0, 3.0, size=n), y)
    return [good, noise]


class TestOutOfFoldMatrix:

    def test_repeated_rows_are_averaged(self):
        a = _member(0.1, [0, 0, 1], [1.0, 3.0, 5.0], [2.0, 2.0, 4.0])
        b = _member(1.0, [0, 1], [0.0, 1.0], [2.0, 4.0])
        X, y = out_of_fold_matrix([a, b], 'y')
        assert X.loc[0, a[0].id] == 2.0
        assert y.tolist() == [2.0, 4.0]

    def test_only_rows_shared_by_every_member(self):
        a = _member(0.1, [0, 1, 2], [1.0, 2.0, 3.0], [1.0, 2.0, 3.0])
        b = _member(1.0, [1, 2], [2.0, 3.0], [2.0, 3.0])
        X, _ = out_of_fold_matrix([a, b], 'y')
        assert X.index.tolist() == [1, 2]

    def test_no_members(self):
        with pytest.raises(ConfigurationSpaceError):
            out_of_fold_matrix([], 'y')


class TestBlend:

    def test_noise_member_gets_zero_weight(self, synthetic_members):
        meta = blend(synthetic_members, 'y', penalty_grid=[0.2, 0.5, 1.0], mixture=1.0, folds=5, seed=1)
        good, noise = synthetic_members[0][0].id, synthetic_members[1][0].id
        assert meta.weights[noise] == 0.0
        assert meta.weights[good] > 0.5
        assert meta.retained() == [good]
        assert meta.penalty in (0.2, 0.5, 1.0)

    def test_weights_are_non_negative(self, synthetic_members):
        config, frame = synthetic_members[1]
        flipped = frame.assign(**{constants.PRED_COL: -synthetic_members[0][1][constants.PRED_COL]})
        meta = blend([synthetic_members[0], (config, flipped)], 'y', penalty_grid=[1e-4, 1e-3], seed=1)
        assert (meta.weights >= 0).all()

    def test_weights_frame_has_intercept(self, synthetic_members):
        meta = blend(synthetic_members, 'y', penalty_grid=[0.5], seed=1)
        frame = meta.weights_frame()
        assert frame[constants.CONFIG_COL].tolist()[-1] == '(Intercept)'

    def test_predict_requires_refit(self, synthetic_members):
        meta = blend(synthetic_members, 'y', penalty_grid=[0.5], seed=1)
        with pytest.raises(PredictionError):
            meta.predict(pd.DataFrame({'x': [1.0]}))

    @pytest.mark.parametrize("kwargs", [{'penalty_grid': [0.0, 1.0]}, {'penalty_grid': []}, {'mixture': 1.5}])
    def test_invalid_settings(self, synthetic_members, kwargs):
        with pytest.raises(ConfigurationSpaceError):
            blend(synthetic_members, 'y', **kwargs)

    def test_classification_members_rejected(self, synthetic_members):
        config = make_configuration(ModelSpec('logistic_reg', {'penalty': 'tune'}, mode='classification'),
                                    {'penalty': 0.1})
        labels = pd.DataFrame({
            constants.ROW_COL: np.arange(4),
            constants.SPLIT_COL: 'Fold01',
            constants.CONFIG_COL: config.id,
            constants.PRED_COL: [0, 1, 1, 0],
            'y': [0, 1, 0, 0],
        })
        with pytest.raises(ConfigurationSpaceError, match="regression"):
            blend([synthetic_members[0], (config, labels)], 'y', penalty_grid=[0.5], seed=1)


class TestEnsemblingEngine:

    @pytest.fixture
    def search_output(self):
        rng = np.random.RandomState(2)
        x = rng.normal(size=80)
        ds = Dataset(pd.DataFrame({'x': x, 'z': rng.normal(size=80), 'y': 2 * x + rng.normal(0, 0.3, 80)}), 'y')
        orchestrator = ResamplingOrchestrator(retain_predictions=True)
        result = orchestrator.run(ds, vfold_cv(ds, v=5, seed=1), PreprocessingPipeline(),
                                  ModelSpec('ridge', {'penalty': 'tune'}), MetricSet(['rmse']),
                                  grid=[{'penalty': 0.01}, {'penalty': 50.0}])
        return ds, result

    def test_execute_refits_and_persists(self, search_output, mock_logger, tmp_path):
        ds, result = search_output
        config = {'seed': 1, 'ensemble': {'enabled': True, 'penalty_grid': [1e-4, 1e-3, 1e-2], 'folds': 4},
                  'outputs': {'base_results_dir': str(tmp_path)}}
        meta = EnsemblingEngine(config, mock_logger).execute(members_from_result(result), ds,
                                                             PreprocessingPipeline())
        preds = meta.predict(ds.frame.head(5))
        assert preds.shape == (5,)
        assert set(meta.fitted_members) == set(meta.retained())

        out = tmp_path / constants.ENSEMBLE_DIR
        weights = pd.read_parquet(out / constants.ENSEMBLE_WEIGHTS_FILE)
        assert len(weights) == 3
        assert len(pd.read_parquet(out / constants.PENALTY_PATH_FILE)) == 3

    def test_disabled_returns_none(self, search_output, mock_logger, tmp_path):
        ds, result = search_output
        config = {'ensemble': {'enabled': False}, 'outputs': {'base_results_dir': str(tmp_path)}}
        assert EnsemblingEngine(config, mock_logger).execute(members_from_result(result), ds,
                                                             PreprocessingPipeline()) is None

    def test_single_member_skipped(self, search_output, mock_logger, tmp_path):
        ds, result = search_output
        config = {'ensemble': {'enabled': True}, 'outputs': {'base_results_dir': str(tmp_path)}}
        members = members_from_result(result, result.config_ids[:1])
        assert EnsemblingEngine(config, mock_logger).execute(members, ds, PreprocessingPipeline()) is None
        mock_logger.warning.assert_called_once()

    def test_members_need_retained_predictions(self):
        rng = np.random.RandomState(0)
        ds = Dataset(pd.DataFrame({'x': rng.normal(size=20), 'y': rng.normal(size=20)}), 'y')
        result = ResamplingOrchestrator().run(ds, vfold_cv(ds, v=2, seed=1), PreprocessingPipeline(),
                                              ModelSpec('linear_reg'), MetricSet(['rmse']))
        with pytest.raises(DataValidationError):
            members_from_result(result)
