import pandas as pd
import numpy as np
import logging
from typing import Dict, Any, List, Optional

from modules.base.base_engine import BaseEngine
from modules.evaluation_engine import MetricSet
from utils.error_handling import handle_engine_errors
from utils.exceptions import ConfigurationError, DataValidationError
from utils import constants


class BootstrappingEngine(BaseEngine):
    """
    Percentile bootstrap confidence intervals of performance metrics,
    computed from retained out-of-fold predictions.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        super().__init__(config, logger)
        self.boot_config = config.get('bootstrapping', {})
        self.enabled = self.boot_config.get('enabled', True)
        master_seed = self.config.get('seed')
        self.seed = self.config.get('_internal_seeds', {}).get('bootstrap', master_seed)

    def _get_engine_directory_name(self) -> str:
        return constants.INTERVALS_DIR

    @handle_engine_errors("Bootstrap Intervals")
    def execute(self, predictions: pd.DataFrame, metrics: MetricSet, outcome: str,
                mode: str = 'regression') -> pd.DataFrame:
        if not self.enabled:
            self.logger.info("Bootstrapping disabled in config.")
            return pd.DataFrame()
        if predictions.empty:
            self.logger.warning("No predictions available for bootstrapping.")
            return pd.DataFrame()

        intervals = self.intervals(
            predictions,
            metrics,
            outcome,
            times=self.boot_config.get('n_samples', 1000),
            alpha=1.0 - self.boot_config.get('confidence_level', 0.95),
            mode=mode,
        )
        self._save_table(intervals, constants.INTERVALS_FILE)
        return intervals

    def intervals(self, predictions: pd.DataFrame, metrics: MetricSet, outcome: str, times: int = 1000,
                  alpha: float = 0.05, mode: str = 'regression') -> pd.DataFrame:
        """
        One row per configuration and metric with the point estimate on all
        rows and the ``alpha``-level percentile interval over ``times``
        bootstrap resamples of rows. Rows predicted more than once (repeated
        resampling) are averaged first; class predictions take the majority
        vote of their repeats.
        """
        if not (0 < alpha < 1):
            raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
        if times < 1:
            raise ConfigurationError(f"times must be >= 1, got {times}")
        if outcome not in predictions.columns:
            raise DataValidationError(f"Predictions lack the outcome column '{outcome}'.")

        rng = np.random.RandomState(self.seed)
        rows: List[Dict[str, Any]] = []
        for config_id, preds in predictions.groupby(constants.CONFIG_COL, sort=False):
            per_row = self._per_row(preds, outcome, mode)
            y_true = per_row[outcome].to_numpy()
            y_pred = per_row[constants.PRED_COL].to_numpy()
            y_score = per_row['.pred_score'].to_numpy() if '.pred_score' in per_row.columns else None
            n_rows = len(per_row)
            if n_rows < 5:
                self.logger.warning(
                    f"Only {n_rows} predicted rows for {config_id}; bootstrap intervals will be unreliable."
                )

            estimate = metrics.compute(y_true, y_pred, y_score)
            samples = []
            for _ in range(times):
                idx = rng.randint(0, n_rows, size=n_rows)
                samples.append(metrics.compute(y_true[idx], y_pred[idx], y_score[idx] if y_score is not None else None))

            ci = self._compute_ci(samples, alpha)
            for name in metrics.names:
                rows.append({
                    constants.CONFIG_COL: config_id,
                    'metric': name,
                    'estimate': estimate[name],
                    'lower': ci[name]['lower'],
                    'upper': ci[name]['upper'],
                    'boot_mean': ci[name]['mean'],
                    'alpha': alpha,
                    'times': times,
                })
            primary = metrics.primary.name
            self.logger.info(
                f"{config_id} {primary}: {estimate[primary]:.4f} "
                f"[{ci[primary]['lower']:.4f}, {ci[primary]['upper']:.4f}] ({(1 - alpha) * 100:.0f}% CI)"
            )
        return pd.DataFrame(rows)

    @staticmethod
    def _per_row(preds: pd.DataFrame, outcome: str, mode: str = 'regression') -> pd.DataFrame:
        agg = {constants.PRED_COL: 'mean', outcome: 'first'}
        if '.pred_score' in preds.columns:
            agg['.pred_score'] = 'mean'
        if mode == 'classification' or not pd.api.types.is_numeric_dtype(preds[constants.PRED_COL]):
            # Majority vote; ties go to the smallest label
            agg[constants.PRED_COL] = lambda s: s.mode().iloc[0]
        return preds.groupby(constants.ROW_COL).agg(agg)

    def _compute_ci(self, metrics_list: List[Dict[str, float]], alpha: float) -> Dict[str, Dict[str, float]]:
        """
        Computes percentile intervals for a distribution of metrics.
        """
        metrics_dist = {
            metric: [sample[metric] for sample in metrics_list]
            for metric in metrics_list[0]
        }

        results = {}
        for metric, values in metrics_dist.items():
            values = np.asarray(values, dtype=float)
            if not np.isfinite(values).any():
                results[metric] = {'mean': np.nan, 'lower': np.nan, 'upper': np.nan}
                continue
            results[metric] = {
                'mean': float(np.nanmean(values)),
                'lower': float(np.nanpercentile(values, 100 * alpha / 2)),
                'upper': float(np.nanpercentile(values, 100 * (1 - alpha / 2))),
            }
        return results
