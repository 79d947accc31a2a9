import logging
import numpy as np
import pandas as pd
import pytest
from unittest.mock import MagicMock

from modules.data_manager import Dataset
from modules.split_engine import (
    SplitEngine,
    bootstraps,
    initial_split,
    make_strata,
    mc_cv,
    partition,
    rolling_origin,
    vfold_cv,
)
from utils.exceptions import PartitionError
from utils import constants


@pytest.fixture
def mock_logger():
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def dataset():
    rng = np.random.RandomState(0)
    n = 100
    frame = pd.DataFrame({
        'x': rng.normal(size=n),
        'group': np.where(np.arange(n) < 10, 'rare', 'common'),
        'y': rng.normal(size=n),
    })
    return Dataset(frame, 'y')


class TestVFold:

    def test_assessment_sets_partition_rows(self, dataset):
        rs = vfold_cv(dataset, v=10, seed=1)
        assert len(rs) == 10
        assessed = np.concatenate([s.assessment for s in rs])
        assert sorted(assessed.tolist()) == list(range(100))
        for s in rs:
            assert np.intersect1d(s.analysis, s.assessment).size == 0
            assert s.analysis.size + s.assessment.size == 100

    def test_uneven_fold_sizes_differ_by_at_most_one(self):
        ds = Dataset(pd.DataFrame({'x': range(23), 'y': range(23)}), 'y')
        sizes = [s.assessment.size for s in vfold_cv(ds, v=5, seed=3)]
        assert sum(sizes) == 23
        assert max(sizes) - min(sizes) <= 1

    def test_repeats_and_ids(self, dataset):
        rs = vfold_cv(dataset, v=5, repeats=3, seed=1)
        assert len(rs) == 15
        assert rs.ids[0] == "Repeat1_Fold01"
        assert rs.ids[-1] == "Repeat3_Fold05"
        assert vfold_cv(dataset, v=5, seed=1).ids[0] == "Fold01"

    def test_same_seed_is_reproducible(self, dataset):
        assert vfold_cv(dataset, v=5, seed=7).fingerprint() == vfold_cv(dataset, v=5, seed=7).fingerprint()
        assert vfold_cv(dataset, v=5, seed=7).fingerprint() != vfold_cv(dataset, v=5, seed=8).fingerprint()

    def test_small_stratum_spread_over_folds(self, dataset):
        rs = vfold_cv(dataset, v=10, strata='group', seed=2)
        rare = set(range(10))
        # 10 rare rows dealt across 10 folds: one per fold
        for s in rs:
            assert len(rare.intersection(s.assessment.tolist())) == 1

    def test_indices_are_read_only(self, dataset):
        split = vfold_cv(dataset, v=5, seed=1)[0]
        with pytest.raises(ValueError):
            split.assessment[0] = 99

    @pytest.mark.parametrize("params", [{'v': 1}, {'v': 101}, {'v': 2.5}, {'v': 5, 'repeats': 0}])
    def test_invalid_parameters(self, dataset, params):
        with pytest.raises(PartitionError):
            partition(dataset, 'vfold', params, seed=1)


class TestBootstrap:

    def test_analysis_has_n_rows_and_oob_fraction(self, dataset):
        rs = bootstraps(dataset, times=200, seed=11)
        assert len(rs) == 200
        assert all(s.analysis.size == 100 for s in rs)
        oob = np.mean([s.assessment.size / 100 for s in rs])
        assert oob == pytest.approx(np.exp(-1), abs=0.03)

    def test_assessment_is_out_of_bag(self, dataset):
        for s in bootstraps(dataset, times=5, seed=2):
            assert np.intersect1d(s.analysis, s.assessment).size == 0
            assert np.union1d(s.analysis, s.assessment).size == 100

    def test_ids(self, dataset):
        assert bootstraps(dataset, times=3, seed=1).ids == ["Bootstrap01", "Bootstrap02", "Bootstrap03"]

    def test_membership_keeps_duplicates(self, dataset):
        rs = bootstraps(dataset, times=2, seed=1)
        frame = rs.membership_frame()
        analysis = frame[(frame[constants.SPLIT_COL] == "Bootstrap01") & (frame['role'] == 'analysis')]
        assert len(analysis) == 100


class TestMonteCarloAndValidation:

    def test_mc_sizes(self, dataset):
        rs = mc_cv(dataset, prop=0.75, times=4, seed=1)
        assert len(rs) == 4
        for s in rs:
            assert s.analysis.size == 75
            assert s.assessment.size == 25

    def test_validation_single_split(self, dataset):
        rs = partition(dataset, 'validation', {'prop': 0.5}, seed=1)
        assert rs.ids == ["validation"]
        assert rs[0].analysis.size == 50

    @pytest.mark.parametrize("prop", [0.0, 1.0, 1.5, "half"])
    def test_invalid_prop(self, dataset, prop):
        with pytest.raises(PartitionError):
            partition(dataset, 'mc', {'prop': prop, 'times': 2}, seed=1)


class TestRollingOrigin:

    def test_slice_count_and_order(self):
        ds = Dataset(pd.DataFrame({'t': range(10), 'y': range(10)}), 't')
        rs = rolling_origin(ds, initial=5, assess=1)
        assert len(rs) == 5
        assert rs.ids[0] == "Slice001"
        assert rs[0].analysis.tolist() == [0, 1, 2, 3, 4]
        assert rs[0].assessment.tolist() == [5]
        assert rs[-1].assessment.tolist() == [9]
        for s in rs:
            assert s.analysis.max() < s.assessment.min()

    def test_sliding_window(self):
        ds = Dataset(pd.DataFrame({'t': range(10), 'y': range(10)}), 't')
        rs = rolling_origin(ds, initial=3, assess=2, skip=1, cumulative=False)
        assert all(s.analysis.size == 3 for s in rs)
        assert rs[1].analysis.tolist() == [2, 3, 4]

    def test_window_too_large(self):
        ds = Dataset(pd.DataFrame({'t': range(10), 'y': range(10)}), 't')
        with pytest.raises(PartitionError):
            rolling_origin(ds, initial=9, assess=2)


class TestInitialSplitAndStrata:

    def test_initial_split_proportion(self, dataset):
        split = initial_split(dataset, prop=0.75, seed=4)
        assert split.train.size == 75
        assert split.test.size == 25
        assert np.intersect1d(split.train, split.test).size == 0
        assert split.training(dataset).n_rows == 75

    def test_stratified_initial_split_keeps_rare_rows_in_both(self, dataset):
        split = initial_split(dataset, prop=0.5, strata='group', seed=4)
        assert np.sum(split.train < 10) == 5

    def test_numeric_strata_are_binned(self):
        codes = make_strata(pd.Series(np.arange(100, dtype=float)), breaks=4)
        assert sorted(np.unique(codes).tolist()) == [0, 1, 2, 3]

    def test_unknown_strata_column(self, dataset):
        with pytest.raises(PartitionError, match="not found"):
            vfold_cv(dataset, v=5, strata='nope', seed=1)

    def test_unknown_scheme(self, dataset):
        with pytest.raises(PartitionError, match="Unknown"):
            partition(dataset, 'jackknife', {})


class TestSplitEngine:

    def test_execute_persists_membership(self, dataset, mock_logger, tmp_path):
        config = {
            'seed': 42,
            '_internal_seeds': {'split': 42, 'resample': 1042},
            'initial_split': {'prop': 0.8},
            'resampling': {'scheme': 'vfold', 'v': 5},
            'outputs': {'base_results_dir': str(tmp_path)},
        }
        engine = SplitEngine(config, mock_logger)
        split = engine.split_initial(dataset)
        rs = engine.execute(split.training(dataset))

        assert len(rs) == 5
        assert rs.seed == 1042
        out = tmp_path / constants.RESAMPLES_DIR
        assert (out / constants.MEMBERSHIP_FILE).exists()
        assert (out / constants.INITIAL_SPLIT_FILE).exists()
        membership = pd.read_parquet(out / constants.MEMBERSHIP_FILE)
        assert set(membership[constants.SPLIT_COL]) == set(rs.ids)

    def test_invalid_scheme_raises_partition_error(self, dataset, mock_logger, tmp_path):
        config = {'resampling': {'scheme': 'vfold', 'v': 500},
                  'outputs': {'base_results_dir': str(tmp_path)}}
        with pytest.raises(PartitionError):
            SplitEngine(config, mock_logger).execute(dataset)
