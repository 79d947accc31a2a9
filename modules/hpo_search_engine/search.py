"""
Search strategies over a model specification's tunable parameters.

Every strategy drives the resampling orchestrator in batches and owns a
CandidatePool. The pool is only mutated here, on the controlling thread,
after a batch has been fully collected. Time limits are checked between
batches; a running batch is never interrupted.
"""
import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.stats import norm
from sklearn.exceptions import ConvergenceWarning
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import ConstantKernel, Matern, WhiteKernel

from modules.data_manager import Dataset
from modules.evaluation_engine import Metric, MetricSet, anova_race_test
from modules.hpo_search_engine.candidate_pool import Candidate, CandidatePool
from modules.hpo_search_engine.grid import regular_grid, space_filling_grid, to_unit_matrix
from modules.hpo_search_engine.selection import select_best, select_by_one_std_err, show_best
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.resampling_engine import (Configuration, ResampleResult, ResamplingOrchestrator, make_configuration,
                                       make_configurations)
from modules.split_engine import ResampleSet
from utils.exceptions import ConfigurationSpaceError
from utils import constants


@dataclass(frozen=True)
class SearchBudgetExhausted:
    """Terminal record of a search: why it stopped and what it found."""
    reason: str
    iterations: int
    evaluated: int
    pruned: int
    excluded: int
    elapsed: float
    best_config_id: Optional[str] = None
    best_params: Dict[str, Any] = field(default_factory=dict)
    best_mean: float = float('nan')


@dataclass
class SearchResult:
    strategy: str
    spec: ModelSpec
    pool: CandidatePool
    resamples: ResampleResult
    metric: Metric
    termination: SearchBudgetExhausted

    def best(self) -> Candidate:
        return select_best(self.pool, self.metric)

    def best_configuration(self) -> Configuration:
        return self.best().config

    def show_best(self, n: int = 5) -> pd.DataFrame:
        return show_best(self.pool, self.metric, n)

    def select_by_one_std_err(self, order_by: Sequence[str]) -> Candidate:
        return select_by_one_std_err(self.pool, self.metric, order_by)

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        return self.resamples.collect_metrics(summarize=summarize)


class SearchStrategy:
    """Shared plumbing: grid construction, time budget, termination record."""

    name = 'base'

    def __init__(self, orchestrator: Optional[ResamplingOrchestrator] = None, time_limit: Optional[float] = None,
                 seed: Optional[int] = None, logger: Optional[logging.Logger] = None):
        self.orchestrator = orchestrator or ResamplingOrchestrator()
        self.time_limit = time_limit
        self.seed = seed
        self.logger = logger or logging.getLogger(__name__)
        self._started = None

    def _start_clock(self) -> None:
        self._started = time.monotonic()

    def _elapsed(self) -> float:
        return 0.0 if self._started is None else time.monotonic() - self._started

    def _out_of_time(self) -> bool:
        return self.time_limit is not None and self._elapsed() >= self.time_limit

    def _finish(self, spec: ModelSpec, pool: CandidatePool, result: ResampleResult, metric: Metric,
                reason: str, iterations: int) -> SearchResult:
        best = select_best(pool, metric)
        summary = best.summary(metric.name)
        termination = SearchBudgetExhausted(
            reason=reason,
            iterations=iterations,
            evaluated=len(pool.ids(constants.EVALUATED)),
            pruned=len(pool.ids(constants.PRUNED)),
            excluded=len(pool.ids(constants.EXCLUDED)),
            elapsed=self._elapsed(),
            best_config_id=best.id,
            best_params=dict(best.params),
            best_mean=summary.mean,
        )
        self.logger.info(
            f"{self.name} search finished ({reason}): best {best.id} {metric.name}={summary.mean:.4f} "
            f"[{termination.evaluated} evaluated, {termination.pruned} pruned, {termination.excluded} excluded]"
        )
        return SearchResult(self.name, spec, pool, result, metric, termination)


class GridSearch(SearchStrategy):
    """
    Evaluate a fixed set of configurations in one orchestrator batch.

    Without an explicit ``grid`` one is generated from the spec's tunable
    ranges: ``grid_type='regular'`` uses ``levels`` per parameter,
    ``'space_filling'`` draws ``size`` maximin Latin hypercube points.
    """

    name = 'grid'

    def __init__(self, orchestrator: Optional[ResamplingOrchestrator] = None, grid_type: str = 'regular',
                 levels: Union[int, Dict[str, int]] = 3, size: int = 10, max_configs: Optional[int] = None,
                 time_limit: Optional[float] = None, seed: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(orchestrator, time_limit, seed, logger)
        if grid_type not in ('regular', 'space_filling'):
            raise ConfigurationSpaceError(f"Unknown grid type '{grid_type}'")
        self.grid_type = grid_type
        self.levels = levels
        self.size = size
        self.max_configs = max_configs

    def build_grid(self, spec: ModelSpec) -> List[Dict[str, Any]]:
        ranges = spec.tunables()
        if not ranges:
            return []
        if self.grid_type == 'regular':
            return regular_grid(ranges, self.levels)
        return space_filling_grid(ranges, self.size, self.seed)

    def configurations(self, spec: ModelSpec, grid: Optional[List[Dict[str, Any]]] = None) -> List[Configuration]:
        grid = list(grid) if grid is not None else self.build_grid(spec)
        if self.max_configs is not None and len(grid) > self.max_configs:
            self.logger.warning(f"Grid of {len(grid)} configurations exceeds max_grid_configs "
                                f"({self.max_configs}); truncating.")
            grid = grid[:self.max_configs]
        return make_configurations(spec, grid)

    def search(self, dataset: Dataset, resamples: ResampleSet, pipeline: PreprocessingPipeline, spec: ModelSpec,
               metrics: MetricSet, grid: Optional[List[Dict[str, Any]]] = None) -> SearchResult:
        self._start_clock()
        metric = metrics.primary
        configs = self.configurations(spec, grid)
        pool = CandidatePool(configs)
        self.logger.info(f"Grid search over {len(configs)} configuration(s) of {spec.name}")

        result = self.orchestrator.run(dataset, resamples, pipeline, configs, metrics)
        pool.settle_pending(result, metric.name)
        return self._finish(spec, pool, result, metric, 'grid_complete', 1)


class BayesianSearch(SearchStrategy):
    """
    Sequential model-based search.

    A Gaussian process (Matern 5/2 plus a white-noise term, normalized
    targets) is fitted to the mean metric of every evaluated configuration
    on the unit-cube encoding of the tunable ranges. The next configuration
    maximizes expected improvement over ``n_candidates`` random proposals
    not yet in the pool.
    """

    name = 'bayes'

    def __init__(self, orchestrator: Optional[ResamplingOrchestrator] = None, initial: int = 5,
                 iterations: int = 10, no_improve: int = 10, tolerance: float = 0.0, n_candidates: int = 500,
                 xi: float = 0.01, time_limit: Optional[float] = None, seed: Optional[int] = None,
                 logger: Optional[logging.Logger] = None):
        super().__init__(orchestrator, time_limit, seed, logger)
        self.initial = initial
        self.iterations = iterations
        self.no_improve = no_improve
        self.tolerance = tolerance
        self.n_candidates = n_candidates
        self.xi = xi

    @staticmethod
    def _objective(candidate: Candidate, metric: Metric) -> float:
        s = candidate.summary(metric.name)
        if s is None or not s.defined:
            return float('nan')
        return s.mean if metric.minimize else -s.mean

    def _observed(self, pool: CandidatePool, metric: Metric):
        done = [c for c in pool.candidates(constants.EVALUATED) if np.isfinite(self._objective(c, metric))]
        return done, np.array([self._objective(c, metric) for c in done])

    def expected_improvement(self, mu: np.ndarray, sigma: np.ndarray, best: float) -> np.ndarray:
        """EI for minimization of the objective."""
        improvement = best - mu - self.xi
        with np.errstate(divide='ignore', invalid='ignore'):
            z = np.where(sigma > 0, improvement / sigma, 0.0)
        ei = improvement * norm.cdf(z) + sigma * norm.pdf(z)
        return np.where(sigma > 0, ei, 0.0)

    def _proposals(self, spec: ModelSpec, pool: CandidatePool, rng: np.random.RandomState) -> List[Dict[str, Any]]:
        ranges = spec.tunables()
        names = list(ranges.keys())
        seen, out = set(), []
        for row in rng.uniform(size=(self.n_candidates, len(names))):
            params = {n: ranges[n].from_unit(u) for n, u in zip(names, row)}
            config = make_configuration(spec, params)
            if config.id in pool or config.id in seen:
                continue
            seen.add(config.id)
            out.append(params)
        return out

    def propose(self, spec: ModelSpec, pool: CandidatePool, metric: Metric,
                rng: np.random.RandomState) -> Optional[Dict[str, Any]]:
        proposals = self._proposals(spec, pool, rng)
        if not proposals:
            return None
        done, y = self._observed(pool, metric)
        if len(done) < 2:
            return proposals[0]

        ranges = spec.tunables()
        X = to_unit_matrix([c.params for c in done], ranges)
        kernel = ConstantKernel(1.0) * Matern(length_scale=np.ones(X.shape[1]), nu=2.5) + WhiteKernel(1e-3)
        gp = GaussianProcessRegressor(kernel=kernel, normalize_y=True, n_restarts_optimizer=2,
                                      random_state=rng.randint(0, 2 ** 31 - 1))
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            gp.fit(X, y)
        mu, sigma = gp.predict(to_unit_matrix(proposals, ranges), return_std=True)
        ei = self.expected_improvement(mu, sigma, float(y.min()))
        return proposals[int(np.argmax(ei))]

    def search(self, dataset: Dataset, resamples: ResampleSet, pipeline: PreprocessingPipeline, spec: ModelSpec,
               metrics: MetricSet, initial: Optional[List[Dict[str, Any]]] = None) -> SearchResult:
        ranges = spec.tunables()
        if not ranges:
            raise ConfigurationSpaceError(f"'{spec.name}' has no tunable parameters to search.")
        self._start_clock()
        metric = metrics.primary
        rng = np.random.RandomState(self.seed)

        design = initial if initial is not None else space_filling_grid(ranges, self.initial, self.seed)
        configs = make_configurations(spec, design)
        pool = CandidatePool(configs)
        self.logger.info(f"Bayesian search on {spec.name}: {len(configs)} initial configuration(s), "
                         f"up to {self.iterations} iteration(s)")
        result = self.orchestrator.run(dataset, resamples, pipeline, configs, metrics)
        pool.settle_pending(result, metric.name)

        _, y = self._observed(pool, metric)
        best = float(y.min()) if y.size else float('nan')
        stale, reason, iteration = 0, 'iterations', 0
        order = len(configs)

        for iteration in range(1, self.iterations + 1):
            if self._out_of_time():
                reason = 'time_limit'
                iteration -= 1
                break
            params = self.propose(spec, pool, metric, rng)
            if params is None:
                reason = 'space_exhausted'
                iteration -= 1
                break

            config = make_configuration(spec, params, order)
            order += 1
            pool.add(config, iteration=iteration)
            batch = self.orchestrator.run(dataset, resamples, pipeline, [config], metrics)
            result = result.merge(batch)
            status = pool.settle(config.id, batch, metric.name)

            value = self._objective(pool.get(config.id), metric)
            if status == constants.EVALUATED and (np.isnan(best) or value < best - self.tolerance):
                best = value
                stale = 0
                self.logger.info(f"Iteration {iteration}: new best {config.id} ({metric.name}="
                                 f"{value if metric.minimize else -value:.4f})")
            else:
                stale += 1
                self.logger.debug(f"Iteration {iteration}: {config.id} {status}, no improvement ({stale})")
            if stale >= self.no_improve:
                reason = 'no_improve'
                break

        return self._finish(spec, pool, result, metric, reason, iteration)


class RacingSearch(GridSearch):
    """
    Grid search with early elimination.

    All configurations are evaluated on the first ``burn_in`` splits; from
    then on, after every split, configurations whose per-split metrics are
    significantly worse than the current leader (repeated-measures ANOVA,
    one-sided at ``alpha``) are pruned and skip the remaining splits.
    Only splits where every still-pending configuration has a value enter
    the test.
    """

    name = 'race'

    def __init__(self, orchestrator: Optional[ResamplingOrchestrator] = None, alpha: float = 0.05,
                 burn_in: int = 3, **kwargs):
        super().__init__(orchestrator, **kwargs)
        self.alpha = alpha
        self.burn_in = burn_in

    def _leader(self, scores: pd.DataFrame, metric: Metric) -> str:
        means = scores.mean(axis=0)
        return means.idxmin() if metric.minimize else means.idxmax()

    def eliminate(self, pool: CandidatePool, result: ResampleResult, metric: Metric) -> List[str]:
        alive = pool.ids(constants.PENDING)
        scores = result.fold_scores(metric.name)
        columns = [c for c in alive if c in scores.columns]
        if len(columns) < 2:
            return []
        complete = scores[columns].dropna(axis=0, how='any')
        if len(complete) < 2:
            return []
        leader = self._leader(complete, metric)
        worse = anova_race_test(complete, leader, metric.minimize, self.alpha)
        for config_id in worse:
            pool.prune(config_id, result)
        if worse:
            self.logger.info(f"Racing after {len(complete)} split(s): leader {leader}, pruned {len(worse)} "
                             f"({len(pool.ids(constants.PENDING))} remaining)")
        return worse

    def search(self, dataset: Dataset, resamples: ResampleSet, pipeline: PreprocessingPipeline, spec: ModelSpec,
               metrics: MetricSet, grid: Optional[List[Dict[str, Any]]] = None) -> SearchResult:
        self._start_clock()
        metric = metrics.primary
        configs = self.configurations(spec, grid)
        pool = CandidatePool(configs)
        splits = list(resamples)
        burn_in = max(1, min(self.burn_in, len(splits)))
        self.logger.info(f"Racing {len(configs)} configuration(s) of {spec.name} over {len(splits)} split(s), "
                         f"burn-in {burn_in}")

        result = self.orchestrator.run(dataset, splits[:burn_in], pipeline, configs, metrics)
        self.eliminate(pool, result, metric)
        reason, iteration = 'racing_complete', burn_in

        for k in range(burn_in, len(splits)):
            if self._out_of_time():
                reason = 'time_limit'
                break
            alive = pool.configurations(constants.PENDING)
            if not alive:
                break
            batch = self.orchestrator.run(dataset, [splits[k]], pipeline, alive, metrics)
            result = result.merge(batch)
            iteration = k + 1
            if len(alive) > 1:
                self.eliminate(pool, result, metric)

        pool.settle_pending(result, metric.name)
        return self._finish(spec, pool, result, metric, reason, iteration)


STRATEGIES = {
    'grid': GridSearch,
    'bayes': BayesianSearch,
    'race': RacingSearch,
}
