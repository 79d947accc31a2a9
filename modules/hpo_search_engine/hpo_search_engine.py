import logging
from typing import Any, Dict, Optional

from modules.base.base_engine import BaseEngine
from modules.data_manager import Dataset
from modules.evaluation_engine import MetricSet
from modules.hpo_search_engine.search import (BayesianSearch, GridSearch, RacingSearch, SearchResult,
                                              SearchStrategy)
from modules.hpo_search_engine.selection import ranking_frame
from modules.model_factory import ModelSpec
from modules.preprocessing import PreprocessingPipeline
from modules.resampling_engine import ResamplingOrchestrator
from modules.split_engine import ResampleSet
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError
from utils import constants


class HPOSearchEngine(BaseEngine):
    """
    Hyperparameter Optimization Engine.

    Runs the configured search strategy (``search.strategy``: grid, bayes or
    race) for one model specification over a resample set, then persists the
    ranked candidate pool and the selected configuration.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.search_config = self.config.get('search', {})
        execution = self.config.get('execution', {})
        seeds = self.config.get('_internal_seeds', {})
        self.seed = seeds.get('search', self.config.get('seed'))
        self.orchestrator = ResamplingOrchestrator(
            n_jobs=execution.get('n_jobs', 1) if execution.get('parallel', True) else 1,
            retain_predictions=execution.get('save_predictions', False),
            seed=seeds.get('model', self.config.get('seed')),
            logger=logger,
        )
        # Resource limit on enumerated grids
        self.max_configs = self.config.get('resources', {}).get('max_grid_configs', 1000)

    def _get_engine_directory_name(self) -> str:
        return constants.SEARCH_DIR

    def build_strategy(self, spec: ModelSpec) -> SearchStrategy:
        cfg = self.search_config
        strategy = cfg.get('strategy', 'grid')
        common = dict(time_limit=cfg.get('time_limit'), seed=self.seed, logger=self.logger)

        if spec.is_resolved:
            self.logger.info(f"{spec.name} has no tunable parameters; evaluating its single configuration.")
            return GridSearch(self.orchestrator, max_configs=self.max_configs, **common)
        if strategy == 'grid':
            return GridSearch(self.orchestrator, grid_type=cfg.get('grid_type', 'regular'),
                              levels=cfg.get('levels', 3), size=cfg.get('size', 10),
                              max_configs=self.max_configs, **common)
        if strategy == 'race':
            racing = cfg.get('racing', {})
            return RacingSearch(self.orchestrator, alpha=racing.get('alpha', 0.05),
                                burn_in=racing.get('burn_in', 3), grid_type=cfg.get('grid_type', 'regular'),
                                levels=cfg.get('levels', 3), size=cfg.get('size', 10),
                                max_configs=self.max_configs, **common)
        if strategy == 'bayes':
            return BayesianSearch(self.orchestrator, initial=cfg.get('initial', 5),
                                  iterations=cfg.get('iterations', 10), no_improve=cfg.get('no_improve', 10),
                                  tolerance=cfg.get('tolerance', 0.0), **common)
        raise ConfigurationError(f"Unknown search strategy '{strategy}'. Available: grid, bayes, race")

    @handle_engine_errors("Hyperparameter Search")
    def execute(self, dataset: Dataset, resamples: ResampleSet, pipeline: PreprocessingPipeline, spec: ModelSpec,
                metrics: MetricSet, grid: Optional[list] = None) -> SearchResult:
        """
        Search ``spec``'s tunable space.

        Returns:
            SearchResult with the candidate pool, the merged ResampleResult
            and the terminal SearchBudgetExhausted record.
        """
        self.logger.info(f"Starting hyperparameter search for {spec.name}...")
        strategy = self.build_strategy(spec)
        grid = grid if grid is not None else self.search_config.get('grid')

        if isinstance(strategy, BayesianSearch):
            result = strategy.search(dataset, resamples, pipeline, spec, metrics, initial=grid)
        else:
            result = strategy.search(dataset, resamples, pipeline, spec, metrics, grid=grid)

        self.save(result)
        return result

    def save(self, result: SearchResult) -> Dict[str, Any]:
        self._save_table(ranking_frame(result.pool, result.metric), constants.CANDIDATE_POOL_FILE)
        self._save_table(result.collect_metrics(summarize=False), constants.FOLD_METRICS_FILE)
        if result.resamples.failures:
            self._save_table(result.resamples.collect_failures(), constants.FAILURES_FILE)

        t = result.termination
        best = {
            'model': result.spec.describe(),
            'strategy': result.strategy,
            'config_id': t.best_config_id,
            'params': t.best_params,
            'metric': result.metric.name,
            'mean': t.best_mean,
            'std_err': result.best().summary(result.metric.name).std_err,
            'termination': {
                'reason': t.reason,
                'iterations': t.iterations,
                'evaluated': t.evaluated,
                'pruned': t.pruned,
                'excluded': t.excluded,
                'elapsed_seconds': round(t.elapsed, 3),
            },
        }
        self._save_json(best, constants.BEST_CONFIG_FILE)
        self.logger.info(f"Best configuration: {t.best_config_id} ({result.metric.name}: {t.best_mean:.4f})")
        return best
