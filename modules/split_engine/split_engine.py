"""
SplitEngine for the resampling evaluation engine.

This module is responsible for carving a Dataset into reproducible
analysis/assessment partitions: a single training/testing split, and the
resample sets (k-fold, repeated k-fold, bootstrap, Monte Carlo, validation,
rolling-origin) that every downstream evaluation runs over. Partitions are
expressed as positional row indices so they never copy data and can be
re-created byte-for-byte from the same seed.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.data_manager import Dataset
from utils.error_handling import handle_engine_errors
from utils.exceptions import PartitionError
from utils import constants

SCHEMES = ('vfold', 'bootstrap', 'mc', 'validation', 'rolling_origin')

# Numeric strata are binned into this many quantile buckets by default.
DEFAULT_BREAKS = 4


def _frozen(indices) -> np.ndarray:
    arr = np.asarray(indices, dtype=np.int64).copy()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Split:
    """One analysis/assessment pair of positional row indices."""
    id: str
    analysis: np.ndarray
    assessment: np.ndarray
    repeat: int = 1
    fold: int = 1

    def __post_init__(self):
        object.__setattr__(self, 'analysis', _frozen(self.analysis))
        object.__setattr__(self, 'assessment', _frozen(self.assessment))

    @property
    def assessment_empty(self) -> bool:
        return self.assessment.size == 0

    def __repr__(self) -> str:
        return f"Split({self.id}: analysis={self.analysis.size}, assessment={self.assessment.size})"


@dataclass(frozen=True, eq=False)
class ResampleSet:
    """Ordered, immutable collection of Splits sharing one scheme and seed."""
    splits: Tuple[Split, ...]
    scheme: str
    params: Dict[str, Any]
    seed: Optional[int]
    n_rows: int

    def __post_init__(self):
        object.__setattr__(self, 'splits', tuple(self.splits))
        object.__setattr__(self, 'params', dict(self.params))

    def __len__(self) -> int:
        return len(self.splits)

    def __iter__(self) -> Iterator[Split]:
        return iter(self.splits)

    def __getitem__(self, item) -> Split:
        return self.splits[item]

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self.splits]

    def membership_frame(self) -> pd.DataFrame:
        """Long table: one row per (split, row, role); bootstrap duplicates kept."""
        frames = []
        for s in self.splits:
            for role, idx in (('analysis', s.analysis), ('assessment', s.assessment)):
                frames.append(pd.DataFrame({
                    constants.SPLIT_COL: s.id,
                    'repeat': s.repeat,
                    'fold': s.fold,
                    'role': role,
                    constants.ROW_COL: idx,
                }))
        if not frames:
            return pd.DataFrame(columns=[constants.SPLIT_COL, 'repeat', 'fold', 'role', constants.ROW_COL])
        return pd.concat(frames, ignore_index=True)

    def fingerprint(self) -> str:
        """Hash over every split's id and index bytes (order-sensitive)."""
        h = hashlib.sha256()
        h.update(f"{self.scheme}|{self.n_rows}".encode())
        for s in self.splits:
            h.update(s.id.encode())
            h.update(s.analysis.tobytes())
            h.update(b'|')
            h.update(s.assessment.tobytes())
        return h.hexdigest()


@dataclass(frozen=True, eq=False)
class InitialSplit:
    """Single training/testing partition made before any resampling."""
    train: np.ndarray
    test: np.ndarray
    seed: Optional[int] = None
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'train', _frozen(self.train))
        object.__setattr__(self, 'test', _frozen(self.test))

    def training(self, dataset: Dataset) -> Dataset:
        return dataset.subset(self.train)

    def testing(self, dataset: Dataset) -> Dataset:
        return dataset.subset(self.test)


# ---------------------------------------------------------------------- #
# Stratification                                                         #
# ---------------------------------------------------------------------- #

def make_strata(values: pd.Series, breaks: int = DEFAULT_BREAKS) -> np.ndarray:
    """
    Map a column to integer stratum codes.

    Numeric columns with more distinct values than ``breaks`` are cut into
    quantile buckets; anything else is treated as categorical. Missing values
    form their own stratum.
    """
    values = pd.Series(values).reset_index(drop=True)
    if pd.api.types.is_numeric_dtype(values) and values.nunique(dropna=True) > breaks:
        binned = pd.qcut(values, q=breaks, labels=False, duplicates='drop')
        codes = binned.fillna(-1).astype(int).to_numpy()
    else:
        codes, _ = pd.factorize(values, sort=True, use_na_sentinel=True)
    return np.asarray(codes, dtype=np.int64)


def _stratum_groups(strata: Optional[np.ndarray], n: int) -> List[np.ndarray]:
    if strata is None:
        return [np.arange(n)]
    return [np.flatnonzero(strata == code) for code in np.unique(strata)]


def _resolve_strata(dataset: Dataset, params: Dict[str, Any]) -> Optional[np.ndarray]:
    column = params.get('strata')
    if column is None:
        return None
    if column not in dataset.columns:
        raise PartitionError(f"Stratification column '{column}' not found in dataset.")
    return make_strata(dataset.column(column), params.get('breaks', DEFAULT_BREAKS))


# ---------------------------------------------------------------------- #
# Validation                                                             #
# ---------------------------------------------------------------------- #

def _require_int(params: Dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = params.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise PartitionError(f"'{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise PartitionError(f"'{key}' must be >= {minimum}, got {value}")
    return int(value)


def _require_prop(params: Dict[str, Any], default: float) -> float:
    prop = params.get('prop', default)
    if not isinstance(prop, (int, float, np.floating)) or not (0.0 < float(prop) < 1.0):
        raise PartitionError(f"'prop' must be between 0 and 1 (exclusive), got {prop!r}")
    return float(prop)


def validate_params(scheme: str, params: Dict[str, Any], n_rows: int) -> Dict[str, Any]:
    """Eagerly check scheme parameters; returns the parameters with defaults filled in."""
    if scheme not in SCHEMES:
        raise PartitionError(f"Unknown resampling scheme '{scheme}'. Available: {list(SCHEMES)}")

    resolved = dict(params)
    if scheme == 'vfold':
        v = _require_int(params, 'v', 10, 2)
        repeats = _require_int(params, 'repeats', 1, 1)
        if v > n_rows:
            raise PartitionError(f"v ({v}) exceeds the number of rows ({n_rows}).")
        resolved.update(v=v, repeats=repeats)
    elif scheme == 'bootstrap':
        resolved['times'] = _require_int(params, 'times', 25, 1)
    elif scheme == 'mc':
        resolved['times'] = _require_int(params, 'times', 25, 1)
        resolved['prop'] = _require_prop(params, 0.75)
    elif scheme == 'validation':
        resolved['prop'] = _require_prop(params, 0.75)
    elif scheme == 'rolling_origin':
        initial = _require_int(params, 'initial', 5, 1)
        assess = _require_int(params, 'assess', 1, 1)
        skip = _require_int(params, 'skip', 0, 0)
        if initial + assess > n_rows:
            raise PartitionError(
                f"initial ({initial}) + assess ({assess}) exceeds the number of rows ({n_rows})."
            )
        resolved.update(initial=initial, assess=assess, skip=skip,
                        cumulative=bool(params.get('cumulative', True)))
    return resolved


# ---------------------------------------------------------------------- #
# Schemes                                                                #
# ---------------------------------------------------------------------- #

def _fold_assignments(groups: List[np.ndarray], n: int, v: int, rng: np.random.RandomState) -> np.ndarray:
    """
    Deal rows to folds round-robin, stratum by stratum.

    Each stratum is shuffled, then its rows continue the global deal where
    the previous stratum stopped: folds stay within one row of each other
    and a stratum smaller than ``v`` simply lands in consecutive folds.
    """
    folds = np.empty(n, dtype=np.int64)
    offset = rng.randint(v)
    for rows in groups:
        shuffled = rng.permutation(rows)
        folds[shuffled] = (offset + np.arange(shuffled.size)) % v
        offset = (offset + shuffled.size) % v
    return folds


def _vfold(n: int, strata, params, rng) -> List[Split]:
    v, repeats = params['v'], params['repeats']
    groups = _stratum_groups(strata, n)
    all_rows = np.arange(n)
    splits = []
    for r in range(1, repeats + 1):
        folds = _fold_assignments(groups, n, v, rng)
        for k in range(v):
            in_fold = folds == k
            split_id = f"Fold{k + 1:02d}" if repeats == 1 else f"Repeat{r}_Fold{k + 1:02d}"
            splits.append(Split(split_id, all_rows[~in_fold], all_rows[in_fold], repeat=r, fold=k + 1))
    return splits


def _bootstrap(n: int, strata, params, rng) -> List[Split]:
    groups = _stratum_groups(strata, n)
    width = max(2, len(str(params['times'])))
    splits = []
    for b in range(1, params['times'] + 1):
        drawn = np.concatenate([rng.choice(rows, size=rows.size, replace=True) for rows in groups])
        out_of_bag = np.setdiff1d(np.arange(n), drawn, assume_unique=False)
        splits.append(Split(f"Bootstrap{b:0{width}d}", drawn, out_of_bag, repeat=b, fold=1))
    return splits


def _sample_prop(groups, prop, rng) -> np.ndarray:
    picked = []
    for rows in groups:
        take = int(np.floor(rows.size * prop))
        picked.append(rng.choice(rows, size=take, replace=False))
    return np.sort(np.concatenate(picked)) if picked else np.array([], dtype=np.int64)


def _monte_carlo(n: int, strata, params, rng, prefix: str = "Resample") -> List[Split]:
    groups = _stratum_groups(strata, n)
    times = params.get('times', 1)
    width = max(2, len(str(times)))
    all_rows = np.arange(n)
    splits = []
    for t in range(1, times + 1):
        analysis = _sample_prop(groups, params['prop'], rng)
        if analysis.size == 0 or analysis.size == n:
            raise PartitionError(
                f"prop={params['prop']} leaves an empty analysis or assessment set for {n} rows."
            )
        assessment = np.setdiff1d(all_rows, analysis, assume_unique=True)
        split_id = prefix if prefix == "validation" else f"{prefix}{t:0{width}d}"
        splits.append(Split(split_id, analysis, assessment, repeat=t, fold=1))
    return splits


def _rolling_origin(n: int, params) -> List[Split]:
    initial, assess, skip = params['initial'], params['assess'], params['skip']
    stops = list(range(initial, n - assess + 1, skip + 1))
    width = max(3, len(str(len(stops))))
    splits = []
    for i, stop in enumerate(stops, start=1):
        start = 0 if params['cumulative'] else stop - initial
        splits.append(Split(f"Slice{i:0{width}d}", np.arange(start, stop),
                            np.arange(stop, stop + assess), repeat=1, fold=i))
    return splits


def partition(dataset: Dataset, scheme: str, params: Optional[Dict[str, Any]] = None,
              seed: Optional[int] = None) -> ResampleSet:
    """
    Build a ResampleSet for ``dataset``.

    Args:
        dataset: Dataset to partition (rows are addressed by position).
        scheme: One of 'vfold', 'bootstrap', 'mc', 'validation', 'rolling_origin'.
        params: Scheme parameters (v, repeats, times, prop, initial, assess,
            skip, cumulative) plus optional 'strata' column and 'breaks'.
        seed: Seed for the scheme's random generator. Identical inputs always
            yield an identical ResampleSet.

    Raises:
        PartitionError: On invalid scheme parameters, before any work is done.
    """
    params = params or {}
    n = dataset.n_rows
    resolved = validate_params(scheme, params, n)
    strata = _resolve_strata(dataset, resolved)
    rng = np.random.RandomState(seed)

    if scheme == 'vfold':
        splits = _vfold(n, strata, resolved, rng)
    elif scheme == 'bootstrap':
        splits = _bootstrap(n, strata, resolved, rng)
    elif scheme == 'mc':
        splits = _monte_carlo(n, strata, resolved, rng)
    elif scheme == 'validation':
        splits = _monte_carlo(n, strata, dict(resolved, times=1), rng, prefix="validation")
    else:
        splits = _rolling_origin(n, resolved)

    return ResampleSet(tuple(splits), scheme, resolved, seed, n)


def vfold_cv(dataset: Dataset, v: int = 10, repeats: int = 1, strata: Optional[str] = None,
             seed: Optional[int] = None) -> ResampleSet:
    params = {'v': v, 'repeats': repeats}
    if strata is not None:
        params['strata'] = strata
    return partition(dataset, 'vfold', params, seed)


def bootstraps(dataset: Dataset, times: int = 25, strata: Optional[str] = None,
               seed: Optional[int] = None) -> ResampleSet:
    params = {'times': times}
    if strata is not None:
        params['strata'] = strata
    return partition(dataset, 'bootstrap', params, seed)


def mc_cv(dataset: Dataset, prop: float = 0.75, times: int = 25, strata: Optional[str] = None,
          seed: Optional[int] = None) -> ResampleSet:
    params = {'prop': prop, 'times': times}
    if strata is not None:
        params['strata'] = strata
    return partition(dataset, 'mc', params, seed)


def rolling_origin(dataset: Dataset, initial: int = 5, assess: int = 1, skip: int = 0,
                   cumulative: bool = True) -> ResampleSet:
    return partition(dataset, 'rolling_origin',
                     {'initial': initial, 'assess': assess, 'skip': skip, 'cumulative': cumulative})


def initial_split(dataset: Dataset, prop: float = 0.75, strata: Optional[str] = None,
                  seed: Optional[int] = None, breaks: int = DEFAULT_BREAKS) -> InitialSplit:
    """Single stratified (optional) training/testing split."""
    params: Dict[str, Any] = {'prop': prop, 'breaks': breaks}
    if strata is not None:
        params['strata'] = strata
    _require_prop(params, 0.75)
    codes = _resolve_strata(dataset, params)
    rng = np.random.RandomState(seed)
    train = _sample_prop(_stratum_groups(codes, dataset.n_rows), float(prop), rng)
    if train.size == 0 or train.size == dataset.n_rows:
        raise PartitionError(f"prop={prop} leaves an empty training or testing set.")
    test = np.setdiff1d(np.arange(dataset.n_rows), train, assume_unique=True)
    return InitialSplit(train, test, seed=seed, params=params)


class SplitEngine(BaseEngine):
    """
    Runs the configured initial split and resampling scheme and persists the
    row membership of every split so a run can be audited or reproduced.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.resampling_config = self.config.get('resampling', {})
        self.initial_config = self.config.get('initial_split', {})

    def _get_engine_directory_name(self) -> str:
        return constants.RESAMPLES_DIR

    def _seed(self, key: str) -> Optional[int]:
        master = self.config.get('seed')
        return self.config.get('_internal_seeds', {}).get(key, master)

    @handle_engine_errors("Initial Split")
    def split_initial(self, dataset: Dataset) -> InitialSplit:
        prop = self.initial_config.get('prop', 0.75)
        strata = self.initial_config.get('strata')
        split = initial_split(dataset, prop=prop, strata=strata, seed=self._seed('split'))
        self.logger.info(f"Initial split: train={split.train.size}, test={split.test.size} (strata={strata})")

        membership = pd.DataFrame({
            constants.ROW_COL: np.concatenate([split.train, split.test]),
            'role': ['train'] * split.train.size + ['test'] * split.test.size,
        })
        self._save_table(membership, constants.INITIAL_SPLIT_FILE)
        return split

    @handle_engine_errors("Resampling")
    def execute(self, dataset: Dataset) -> ResampleSet:
        """
        Partition ``dataset`` with the scheme from ``config['resampling']``.

        Returns:
            ResampleSet
        """
        scheme = self.resampling_config.get('scheme', 'vfold')
        params = {k: v for k, v in self.resampling_config.items() if k != 'scheme'}
        self.logger.info(f"Starting Split Engine execution ({scheme}, params={params})...")

        resamples = partition(dataset, scheme, params, seed=self._seed('resample'))

        empty = sum(1 for s in resamples if s.assessment_empty)
        if empty:
            self.logger.warning(f"{empty} split(s) have an empty assessment set and will not be scored.")

        self._save_table(resamples.membership_frame(), constants.MEMBERSHIP_FILE)
        self.logger.info(f"Resample set created: {len(resamples)} splits (fingerprint={resamples.fingerprint()[:12]})")
        return resamples
