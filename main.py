#!/usr/bin/env python
"""
Resampling Model Selection - Main Entry Point
Splits a dataset, estimates out-of-sample performance by resampling, tunes
the configured model, optionally stacks the top candidates, and scores the
selected workflow once on the held-out testing set.
"""
import os
import sys
import logging
import argparse
import traceback
import random
from pathlib import Path

import numpy as np

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.data_manager import Dataset
from modules.split_engine import SplitEngine
from modules.preprocessing import PreprocessingPipeline
from modules.model_factory import ModelSpec
from modules.evaluation_engine import MetricSet
from modules.hpo_search_engine import HPOSearchEngine
from modules.ensembling_engine import EnsemblingEngine, members_from_result
from modules.bootstrapping_engine import BootstrappingEngine
from modules.training_engine import TrainingEngine
from utils.exceptions import ConfigurationError, ResampleMLException
from utils.file_io import read_dataframe
from utils import constants


def parse_arguments(argv=None):
    """
    Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Resampling-based model evaluation, tuning and selection",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", type=str, default="config/config.json",
                        help="Path to the configuration JSON file")
    parser.add_argument("--schema", type=str, default="config/schema.json",
                        help="Path to the configuration JSON schema")
    parser.add_argument("--data", type=str, default=None,
                        help="CSV / Parquet / Excel dataset (overrides data.file_path)")
    parser.add_argument("--outcome", type=str, default=None,
                        help="Outcome column (overrides data.outcome)")
    parser.add_argument("--run-id", type=str, default=None,
                        help="Optional run identifier (defaults to timestamp if not provided)")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable verbose (DEBUG) logging")
    parser.add_argument("--dry-run", action="store_true",
                        help="Validate configuration and setup without running")
    return parser.parse_args(argv)


def setup_global_determinism(config: dict, logger: logging.Logger):
    """Seed the global generators; every engine also receives its own derived seed."""
    seed = config.get('seed', ConfigurationManager.DEFAULT_SEED)
    logger.info(f"Setting Global Deterministic Seed: {seed}")
    random.seed(seed)
    np.random.seed(seed)
    os.environ['PYTHONHASHSEED'] = str(seed)


def setup_run_directory(config: dict, run_id: str, logger: logging.Logger) -> Path:
    base_results_dir = config.get('outputs', {}).get('base_results_dir', 'results')
    run_dir = Path(f"{base_results_dir}_{run_id}").absolute()
    run_dir.mkdir(parents=True, exist_ok=True)
    for name in constants.TOP_LEVEL_RESULT_DIRS:
        (run_dir / name).mkdir(exist_ok=True)
    logger.info(f"Created run directory: {run_dir}")
    return run_dir


def load_dataset(config: dict, data_path: str = None, outcome: str = None) -> Dataset:
    data_cfg = config.get('data', {})
    path = data_path or data_cfg.get('file_path')
    outcome = outcome or data_cfg.get('outcome')
    if not path:
        raise ConfigurationError("No dataset given: pass --data or set data.file_path.")
    if not outcome:
        raise ConfigurationError("No outcome column given: pass --outcome or set data.outcome.")
    if not os.path.exists(path):
        raise ConfigurationError(f"Dataset not found: {path}")
    frame = read_dataframe(Path(path))
    drop = [c for c in data_cfg.get('drop_columns', []) if c in frame.columns]
    return Dataset(frame.drop(columns=drop), outcome, name=Path(path).stem)


def run(config: dict, dataset: Dataset, logger: logging.Logger) -> dict:
    """Run every phase on ``dataset``; returns a summary dict."""
    # PHASE 1: SPLITTING
    split_engine = SplitEngine(config, logger)
    split = split_engine.split_initial(dataset)
    training = split.training(dataset)
    resamples = split_engine.execute(training)

    # PHASE 2: SEARCH
    pipeline = PreprocessingPipeline.from_description(config.get('preprocessing', []),
                                                      predictors=config.get('data', {}).get('predictors'))
    spec = ModelSpec.from_config(config['model'])
    metrics = MetricSet(config.get('metrics', ['rmse', 'rsq'] if spec.mode == 'regression'
                                   else ['accuracy', 'kappa']))
    search = HPOSearchEngine(config, logger).execute(training, resamples, pipeline, spec, metrics)
    best = search.best()
    logger.info("\n" + search.show_best(5).to_string(index=False))

    # PHASE 3: ENSEMBLE + INTERVALS (need retained predictions)
    retained = config.get('execution', {}).get('save_predictions', False)
    meta = None
    if config.get('ensemble', {}).get('enabled', False):
        if not retained:
            logger.warning("Ensembling needs execution.save_predictions = true. Skipping.")
        else:
            top = search.show_best(config['ensemble'].get('members', 5))[constants.CONFIG_COL].tolist()
            members = members_from_result(search.resamples, top)
            meta = EnsemblingEngine(config, logger).execute(members, training, pipeline)

    if retained and config.get('bootstrapping', {}).get('enabled', False):
        BootstrappingEngine(config, logger).execute(search.resamples.collect_predictions(best.id), metrics,
                                                    dataset.outcome, mode=best.config.spec.mode)

    # PHASE 4: FINAL FIT
    final = TrainingEngine(config, logger).last_fit(dataset, split, pipeline, best.config.spec, metrics)

    return {
        'best_config': best.id,
        'best_params': best.params,
        'resampled': {metrics.primary.name: best.summary(metrics.primary.name).mean},
        'test': final.metrics,
        'ensemble_members': meta.retained() if meta is not None else [],
        'termination': search.termination.reason,
    }


def main(argv=None):
    """
    Main orchestration function.

    Returns:
        int: Exit code (0 for success, 1 for errors, 130 on interrupt)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        print("\n" + "=" * 80)
        print("    RESAMPLING MODEL EVALUATION & SELECTION")
        print("=" * 80 + "\n")

        # PHASE 0: INITIALIZATION & VALIDATION
        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = config_manager.load_and_validate()

        if args.verbose:
            config.setdefault('logging', {})['level'] = 'DEBUG'

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('pipeline')
        logger.info(f"Configuration loaded from: {args.config}")

        run_id = args.run_id or config_manager.generate_run_id()
        config_manager.run_id = run_id
        run_dir = setup_run_directory(config, run_id, logger)
        config.setdefault('outputs', {})['base_results_dir'] = str(run_dir)
        config_manager.save_artifacts(str(run_dir))
        setup_global_determinism(config, logger)

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without running.")
            print("\n[SUCCESS] Configuration validated successfully.")
            return 0

        dataset = load_dataset(config, args.data, args.outcome)
        logger.info(f"Data loaded: {dataset.n_rows} rows, outcome '{dataset.outcome}'")

        summary = run(config, dataset, logger)

        logger.info("-" * 60)
        logger.info(f"Selected: {summary['best_config']} {summary['best_params']}")
        logger.info(f"Resampled estimate: {summary['resampled']}")
        logger.info(f"Test set: {summary['test']}")
        logger.info("-" * 60)
        print(f"\n[SUCCESS] Run completed. Results saved to: {run_dir}")
        return 0

    except ResampleMLException as e:
        msg = f"Pipeline Error: {str(e)}"
        print(f"\n[ERROR] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Run interrupted by user.")
        if logger:
            logger.warning("Run interrupted by user (Ctrl+C)")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        print(f"\n[CRITICAL] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
