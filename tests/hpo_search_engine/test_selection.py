import numpy as np
import pytest

from modules.evaluation_engine import METRIC_REGISTRY, MetricRecord, MetricSet
from modules.hpo_search_engine import CandidatePool, select_best, select_by_one_std_err, show_best
from modules.hpo_search_engine.selection import ranking_frame
from modules.model_factory import ModelSpec
from modules.resampling_engine import ResampleResult, make_configuration
from utils.exceptions import AllConfigurationsFailed
from utils import constants

RMSE = METRIC_REGISTRY['rmse']


def _pool_and_result(fold_values, metric='rmse'):
    """fold_values: {penalty: [per-split values] or None for an all-failed config}."""
    spec = ModelSpec('ridge', {'penalty': 'tune'})
    configs = [make_configuration(spec, {'penalty': p}, i) for i, p in enumerate(fold_values)]
    result = ResampleResult(configs, MetricSet([metric]))
    for config, values in zip(configs, fold_values.values()):
        for k, v in enumerate(values or []):
            result.records.append(MetricRecord(f"Fold{k + 1:02d}", config.id, metric, v))
    pool = CandidatePool(configs)
    pool.settle_pending(result, metric)
    return pool, result, configs


class TestCandidatePool:

    def test_settle_marks_evaluated_and_excluded(self):
        pool, _, configs = _pool_and_result({0.1: [1.0, 2.0], 1.0: None})
        assert pool.get(configs[0].id).status == constants.EVALUATED
        assert pool.get(configs[1].id).status == constants.EXCLUDED
        assert pool.get(configs[0].id).summary('rmse').mean == 1.5

    def test_terminal_states_are_final(self):
        pool, result, configs = _pool_and_result({0.1: [1.0, 2.0]})
        with pytest.raises(ValueError, match="Invalid transition"):
            pool.prune(configs[0].id, result)

    def test_add_is_idempotent(self):
        pool, _, configs = _pool_and_result({0.1: [1.0]})
        assert pool.add(configs[0]) is pool.get(configs[0].id)
        assert len(pool) == 1

    def test_to_frame(self):
        pool, _, configs = _pool_and_result({0.1: [1.0, 3.0], 1.0: None})
        frame = pool.to_frame('rmse')
        assert frame['status'].tolist() == [constants.EVALUATED, constants.EXCLUDED]
        assert frame['n'].tolist() == [2, 0]


class TestSelectBest:

    def test_lowest_mean_wins(self):
        pool, _, configs = _pool_and_result({0.1: [2.0, 2.2], 1.0: [1.0, 1.2], 10.0: [3.0, 3.0]})
        assert select_best(pool, RMSE).id == configs[1].id

    def test_maximize_direction(self):
        pool, _, configs = _pool_and_result({0.1: [0.2, 0.3], 1.0: [0.8, 0.9]}, metric='rsq')
        assert select_best(pool, METRIC_REGISTRY['rsq']).id == configs[1].id

    def test_tie_broken_by_standard_error(self):
        pool, _, configs = _pool_and_result({0.1: [1.0, 3.0], 1.0: [1.5, 2.5]})
        assert select_best(pool, RMSE).id == configs[1].id

    def test_tie_broken_by_enumeration_order(self):
        pool, _, configs = _pool_and_result({0.1: [1.0, 3.0], 1.0: [1.5, 2.5]})
        assert select_best(pool, RMSE, tie_break='order').id == configs[0].id

    def test_excluded_configs_never_selected(self):
        pool, _, configs = _pool_and_result({0.1: None, 1.0: [5.0, 6.0]})
        assert select_best(pool, RMSE).id == configs[1].id

    def test_all_failed(self):
        pool, _, _ = _pool_and_result({0.1: None, 1.0: None})
        with pytest.raises(AllConfigurationsFailed):
            select_best(pool, RMSE)


class TestRanking:

    def test_show_best(self):
        pool, _, configs = _pool_and_result({0.1: [2.0, 2.0], 1.0: [1.0, 1.0], 10.0: [3.0, 3.0]})
        top = show_best(pool, RMSE, n=2)
        assert top['rank'].tolist() == [1, 2]
        assert top['penalty'].tolist() == [1.0, 0.1]
        assert {'config_id', 'mean', 'std_err', 'n'} <= set(top.columns)

    def test_one_std_err_prefers_larger_penalty(self):
        pool, _, configs = _pool_and_result({
            0.001: [1.00, 1.20],   # best: mean 1.10, se 0.10
            0.1: [1.05, 1.25],     # within one se
            10.0: [2.0, 2.2],      # outside
        })
        assert select_best(pool, RMSE).id == configs[0].id
        assert select_by_one_std_err(pool, RMSE, ['-penalty']).id == configs[1].id
        assert select_by_one_std_err(pool, RMSE, ['penalty']).id == configs[0].id

    def test_ranking_frame_ranks_only_evaluated(self):
        pool, _, configs = _pool_and_result({0.1: [2.0, 2.0], 1.0: None, 10.0: [1.0, 1.0]})
        frame = ranking_frame(pool, RMSE)
        assert frame['config_id'].tolist()[:2] == [configs[2].id, configs[0].id]
        assert np.isnan(frame['rank'].iloc[2])
