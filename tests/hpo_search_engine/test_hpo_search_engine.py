import json
import logging
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from modules.data_manager import Dataset
from modules.evaluation_engine import MetricSet
from modules.hpo_search_engine import BayesianSearch, GridSearch, HPOSearchEngine, RacingSearch
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.split_engine import vfold_cv
from utils.exceptions import ConfigurationError
from utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def base_config(tmp_path):
    return {
        'seed': 3,
        '_internal_seeds': {'search': 2003, 'model': 3003},
        'search': {'strategy': 'grid', 'levels': {'penalty': 3}},
        'execution': {'n_jobs': 1, 'save_predictions': True},
        'resources': {'max_grid_configs': 50},
        'outputs': {'base_results_dir': str(tmp_path)},
    }


@pytest.fixture
def dataset():
    rng = np.random.RandomState(0)
    x = rng.normal(size=60)
    return Dataset(pd.DataFrame({'x': x, 'y': 4.0 * x + rng.normal(0, 0.5, size=60)}), 'y')


class TestBuildStrategy:

    @pytest.mark.parametrize("strategy, cls", [('grid', GridSearch), ('race', RacingSearch),
                                               ('bayes', BayesianSearch)])
    def test_strategy_selection(self, base_config, mock_logger, strategy, cls):
        base_config['search']['strategy'] = strategy
        engine = HPOSearchEngine(base_config, mock_logger)
        built = engine.build_strategy(ModelSpec('ridge', {'penalty': 'tune'}))
        assert type(built) is cls
        assert built.seed == 2003

    def test_resolved_spec_uses_single_grid(self, base_config, mock_logger):
        base_config['search']['strategy'] = 'bayes'
        built = HPOSearchEngine(base_config, mock_logger).build_strategy(ModelSpec('linear_reg'))
        assert type(built) is GridSearch

    def test_unknown_strategy(self, base_config, mock_logger):
        base_config['search']['strategy'] = 'hyperband'
        with pytest.raises(ConfigurationError):
            HPOSearchEngine(base_config, mock_logger).build_strategy(ModelSpec('ridge', {'penalty': 'tune'}))

    def test_serial_execution_forces_one_job(self, base_config, mock_logger):
        base_config['execution'] = {'n_jobs': -1, 'parallel': False}
        engine = HPOSearchEngine(base_config, mock_logger)
        assert engine.orchestrator.n_jobs == 1
        assert engine.orchestrator.seed == 3003


class TestExecute:

    def test_persists_pool_and_best_configuration(self, base_config, mock_logger, dataset, tmp_path):
        engine = HPOSearchEngine(base_config, mock_logger)
        result = engine.execute(dataset, vfold_cv(dataset, v=5, seed=1), PreprocessingPipeline(),
                                ModelSpec('ridge', {'penalty': 'tune'}), MetricSet(['rmse', 'rsq']))

        out = tmp_path / constants.SEARCH_DIR
        pool = pd.read_parquet(out / constants.CANDIDATE_POOL_FILE)
        assert len(pool) == 3
        assert pool['rank'].tolist() == [1.0, 2.0, 3.0]
        assert len(pd.read_parquet(out / constants.FOLD_METRICS_FILE)) == 3 * 5 * 2

        with open(out / constants.BEST_CONFIG_FILE) as f:
            best = json.load(f)
        assert best['config_id'] == result.best().id
        assert best['metric'] == 'rmse'
        assert best['strategy'] == 'grid'
        assert best['termination']['reason'] == 'grid_complete'
        assert best['termination']['evaluated'] == 3
        assert result.resamples.collect_predictions().shape[0] == 3 * 60

    def test_explicit_grid_from_config(self, base_config, mock_logger, dataset):
        base_config['search']['grid'] = [{'penalty': 0.5}]
        result = HPOSearchEngine(base_config, mock_logger).execute(
            dataset, vfold_cv(dataset, v=3, seed=1), PreprocessingPipeline(),
            ModelSpec('ridge', {'penalty': 'tune'}), MetricSet(['rmse']))
        assert [c.params for c in result.pool] == [{'penalty': 0.5}]
