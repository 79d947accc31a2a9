"""
Resampling Orchestrator.

Runs the fit-evaluate cell over every (split x configuration) pair, collects
metric records and failures, and aggregates per-split metrics into mean /
standard-error summaries. Cells are independent and only read the dataset,
resample set, pipeline and metric set, so they are dispatched with joblib
without any locking. Summaries are computed only once every cell of a
configuration has reported.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from modules.base.base_engine import BaseEngine
from modules.data_manager import Dataset
from modules.evaluation_engine import CellResult, FitFailure, MetricRecord, MetricSet, evaluate
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.split_engine import ResampleSet, Split
from utils.cache import NumpyEncoder, config_hash
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationSpaceError
from utils import constants


@dataclass(frozen=True)
class Configuration:
    """One resolved hyperparameter combination of a model specification."""
    id: str
    params: Dict[str, Any]
    spec: ModelSpec
    order: int = 0

    def params_json(self) -> str:
        return json.dumps(self.params, sort_keys=True, cls=NumpyEncoder)


def make_configuration(spec: ModelSpec, params: Optional[Dict[str, Any]] = None, order: int = 0) -> Configuration:
    params = dict(params or {})
    resolved = spec.resolve(params)
    config_id = spec.name if not params else f"{spec.name}_{config_hash(params, 8)}"
    return Configuration(config_id, params, resolved, order)


def make_configurations(spec: ModelSpec, grid: Optional[Iterable[Dict[str, Any]]] = None) -> List[Configuration]:
    """
    Resolve ``spec`` against every parameter mapping in ``grid``.

    Raises:
        ConfigurationSpaceError: if the spec has tunables but no grid is
            given, or the grid contains duplicates.
    """
    grid = list(grid) if grid is not None else []
    if not grid:
        if spec.tunables():
            raise ConfigurationSpaceError(
                f"'{spec.name}' has tunable parameters {list(spec.tunables())}; supply a grid or a search strategy."
            )
        return [make_configuration(spec, {}, 0)]

    configs = [make_configuration(spec, params, i) for i, params in enumerate(grid)]
    ids = [c.id for c in configs]
    if len(set(ids)) != len(ids):
        raise ConfigurationSpaceError("Grid contains duplicate configurations.")
    return configs


@dataclass(frozen=True)
class PerformanceSummary:
    config_id: str
    metric: str
    mean: float
    std_err: float
    n: int
    defined: bool


def summarize(records: Sequence[MetricRecord], config_ids: Sequence[str],
              metric_names: Sequence[str]) -> List[PerformanceSummary]:
    """
    Mean and standard error of the mean across splits, per configuration and
    metric. NaN metric values are ignored; a configuration/metric with no
    finite values gets an undefined (NaN) summary rather than zero.
    """
    values: Dict[tuple, List[float]] = {}
    for r in records:
        values.setdefault((r.config_id, r.metric), []).append(r.value)

    out = []
    for cid in config_ids:
        for metric in metric_names:
            arr = np.asarray(values.get((cid, metric), []), dtype=float)
            arr = arr[np.isfinite(arr)]
            n = int(arr.size)
            if n == 0:
                out.append(PerformanceSummary(cid, metric, float('nan'), float('nan'), 0, False))
                continue
            std_err = float(np.std(arr, ddof=1) / np.sqrt(n)) if n > 1 else float('nan')
            out.append(PerformanceSummary(cid, metric, float(np.mean(arr)), std_err, n, True))
    return out


class ResampleResult:
    """Everything one orchestrator run produced, plus tidy accessors."""

    def __init__(self, configurations: List[Configuration], metrics: MetricSet,
                 cells: Optional[List[CellResult]] = None):
        self.configurations = list(configurations)
        self.metrics = metrics
        self.records: List[MetricRecord] = []
        self.failures: List[FitFailure] = []
        self._predictions: List[pd.DataFrame] = []
        self.skipped: List[str] = []
        self.cell_count = 0
        for cell in cells or []:
            self.add(cell)

    def add(self, cell: CellResult) -> None:
        self.cell_count += 1
        if cell.skipped:
            self.skipped.append(cell.split_id)
            return
        if cell.failure is not None:
            self.failures.append(cell.failure)
            return
        self.records.extend(cell.records)
        if cell.predictions is not None:
            self._predictions.append(cell.predictions)

    def merge(self, other: "ResampleResult") -> "ResampleResult":
        known = {c.id for c in self.configurations}
        merged = ResampleResult(self.configurations + [c for c in other.configurations if c.id not in known],
                                self.metrics)
        for src in (self, other):
            merged.records.extend(src.records)
            merged.failures.extend(src.failures)
            merged._predictions.extend(src._predictions)
            merged.skipped.extend(src.skipped)
            merged.cell_count += src.cell_count
        return merged

    @property
    def config_ids(self) -> List[str]:
        return [c.id for c in self.configurations]

    def configuration(self, config_id: str) -> Configuration:
        for c in self.configurations:
            if c.id == config_id:
                return c
        raise KeyError(config_id)

    def summaries(self) -> List[PerformanceSummary]:
        return summarize(self.records, self.config_ids, self.metrics.names)

    def summary(self, config_id: str, metric: Optional[str] = None) -> PerformanceSummary:
        metric = self.metrics.get(metric).name
        for s in summarize(self.records, [config_id], [metric]):
            return s

    def undefined_configs(self, metric: Optional[str] = None) -> List[str]:
        metric = self.metrics.get(metric).name
        return [s.config_id for s in summarize(self.records, self.config_ids, [metric]) if not s.defined]

    # ------------------------------------------------------------------ #
    # Tidy views                                                         #
    # ------------------------------------------------------------------ #
    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        if not summarize:
            return pd.DataFrame(
                [(r.split_id, r.config_id, r.metric, r.value) for r in self.records],
                columns=[constants.SPLIT_COL, constants.CONFIG_COL, 'metric', 'value'],
            )
        params = {c.id: c.params_json() for c in self.configurations}
        rows = [
            {constants.CONFIG_COL: s.config_id, 'params': params.get(s.config_id, '{}'), 'metric': s.metric,
             'mean': s.mean, 'std_err': s.std_err, 'n': s.n, 'defined': s.defined}
            for s in self.summaries()
        ]
        return pd.DataFrame(rows, columns=[constants.CONFIG_COL, 'params', 'metric', 'mean', 'std_err', 'n',
                                           'defined'])

    def collect_failures(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(f.split_id, f.config_id, f.stage, f.error_type, f.message) for f in self.failures],
            columns=[constants.SPLIT_COL, constants.CONFIG_COL, 'stage', 'error_type', 'message'],
        )

    def collect_predictions(self, config_id: Optional[str] = None) -> pd.DataFrame:
        if not self._predictions:
            return pd.DataFrame(columns=[constants.ROW_COL, constants.SPLIT_COL, constants.CONFIG_COL,
                                         constants.PRED_COL])
        preds = pd.concat(self._predictions, ignore_index=True)
        if config_id is not None:
            preds = preds[preds[constants.CONFIG_COL] == config_id].reset_index(drop=True)
        return preds

    def fold_scores(self, metric: Optional[str] = None) -> pd.DataFrame:
        """Wide table of per-split values: rows = splits, columns = configurations."""
        metric = self.metrics.get(metric).name
        long = self.collect_metrics(summarize=False)
        long = long[long['metric'] == metric]
        if long.empty:
            return pd.DataFrame(columns=self.config_ids)
        return long.pivot_table(index=constants.SPLIT_COL, columns=constants.CONFIG_COL, values='value',
                                aggfunc='mean')


class ResamplingOrchestrator:
    """
    Dispatches fit-evaluate cells.

    Args:
        n_jobs: joblib worker count (-1 = all cores). 1 runs in-process.
        retain_predictions: keep out-of-fold predictions on every cell.
        seed: random_state handed to every model fit.
    """

    def __init__(self, n_jobs: int = 1, retain_predictions: bool = False, seed: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        self.n_jobs = n_jobs
        self.retain_predictions = retain_predictions
        self.seed = seed
        self.logger = logger or logging.getLogger(__name__)

    def run(self, dataset: Dataset, resample_set: Union[ResampleSet, Sequence[Split]],
            pipeline: PreprocessingPipeline, model_spec_or_grid: Union[ModelSpec, Sequence[Configuration]],
            metrics: MetricSet, grid: Optional[Iterable[Dict[str, Any]]] = None,
            parallel: bool = True) -> ResampleResult:
        """
        Evaluate every split for every configuration.

        ``model_spec_or_grid`` is either a ModelSpec (resolved against
        ``grid`` when given) or a pre-built list of Configurations.
        """
        if isinstance(model_spec_or_grid, ModelSpec):
            configurations = make_configurations(model_spec_or_grid, grid)
        else:
            configurations = list(model_spec_or_grid)
            if not configurations:
                raise ConfigurationSpaceError("No configurations to evaluate.")

        splits = list(resample_set)
        tasks = [(split, config) for config in configurations for split in splits]
        self.logger.info(
            f"Resampling {len(configurations)} configuration(s) x {len(splits)} split(s) = {len(tasks)} cells "
            f"(n_jobs={self.n_jobs if parallel else 1})"
        )

        def cell(split: Split, config: Configuration) -> CellResult:
            return evaluate(split, pipeline, config.spec, metrics, dataset, config_id=config.id,
                            retain_predictions=self.retain_predictions, seed=self.seed)

        if parallel and self.n_jobs != 1 and len(tasks) > 1:
            cells = Parallel(n_jobs=self.n_jobs)(delayed(cell)(s, c) for s, c in tasks)
        else:
            cells = [cell(s, c) for s, c in tasks]

        result = ResampleResult(configurations, metrics, cells)
        self._log_outcome(result)
        return result

    def _log_outcome(self, result: ResampleResult) -> None:
        for f in result.failures:
            self.logger.warning(f"Cell failed [{f.config_id} / {f.split_id}] at {f.stage}: {f.error_type}: {f.message}")
        if result.skipped:
            self.logger.info(f"{len(set(result.skipped))} split(s) skipped (empty assessment set).")
        for cid in result.undefined_configs():
            self.logger.warning(f"Configuration {cid} has no successful cells; its summary is undefined.")


def fit_resamples(dataset: Dataset, resample_set: ResampleSet, pipeline: PreprocessingPipeline,
                  model_spec: ModelSpec, metrics: Optional[MetricSet] = None, n_jobs: int = 1,
                  retain_predictions: bool = False, seed: Optional[int] = None) -> ResampleResult:
    """Resample a single, fully specified model."""
    orchestrator = ResamplingOrchestrator(n_jobs=n_jobs, retain_predictions=retain_predictions, seed=seed)
    return orchestrator.run(dataset, resample_set, pipeline, model_spec, metrics or MetricSet())


class ResamplingEngine(BaseEngine):
    """
    Config-driven wrapper around the orchestrator that persists per-split
    metrics, summaries, failures and (optionally) predictions.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        execution = self.config.get('execution', {})
        seeds = self.config.get('_internal_seeds', {})
        self.orchestrator = ResamplingOrchestrator(
            n_jobs=execution.get('n_jobs', 1),
            retain_predictions=execution.get('save_predictions', False),
            seed=seeds.get('model', self.config.get('seed')),
            logger=logger,
        )
        self.parallel = execution.get('parallel', True)

    def _get_engine_directory_name(self) -> str:
        return constants.RESAMPLING_DIR

    @handle_engine_errors("Resampling Evaluation")
    def execute(self, dataset: Dataset, resample_set: ResampleSet, pipeline: PreprocessingPipeline,
                model_spec: ModelSpec, metrics: MetricSet,
                grid: Optional[Iterable[Dict[str, Any]]] = None) -> ResampleResult:
        self.logger.info(f"Starting resampled evaluation of {model_spec.name}...")
        result = self.orchestrator.run(dataset, resample_set, pipeline, model_spec, metrics, grid=grid,
                                       parallel=self.parallel)
        self.save(result)
        return result

    def save(self, result: ResampleResult, prefix: str = '') -> None:
        self._save_table(result.collect_metrics(summarize=False), prefix + constants.FOLD_METRICS_FILE)
        self._save_table(result.collect_metrics(), prefix + constants.SUMMARY_FILE)
        if result.failures:
            self._save_table(result.collect_failures(), prefix + constants.FAILURES_FILE)
        preds = result.collect_predictions()
        if not preds.empty:
            self._save_table(preds, prefix + constants.PREDICTIONS_FILE)
