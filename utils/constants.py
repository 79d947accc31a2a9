# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting with clear, self-explanatory names

CONFIG_DIR = "01_RunConfiguration"              # Run config, metadata, seeds
RESAMPLES_DIR = "02_ResampleSets"               # Initial split + resample membership
RESAMPLING_DIR = "03_ResampledPerformance"      # Per-fold metrics, summaries, failures
SEARCH_DIR = "04_HyperparameterSearch"          # Candidate pool, best configuration
ENSEMBLE_DIR = "05_StackedEnsemble"             # Meta-model weights
FINAL_MODEL_DIR = "06_FinalModel"               # Final refit artifact + test metrics
INTERVALS_DIR = "07_BootstrapIntervals"         # Percentile intervals of metrics

# Canonical list used when building the base results structure (in order).
TOP_LEVEL_RESULT_DIRS = [
    CONFIG_DIR,
    RESAMPLES_DIR,
    RESAMPLING_DIR,
    SEARCH_DIR,
    ENSEMBLE_DIR,
    FINAL_MODEL_DIR,
    INTERVALS_DIR,
]

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"
MEMBERSHIP_FILE = "resample_membership.parquet"
INITIAL_SPLIT_FILE = "initial_split.parquet"
FOLD_METRICS_FILE = "fold_metrics.parquet"
SUMMARY_FILE = "performance_summary.parquet"
FAILURES_FILE = "failures.parquet"
PREDICTIONS_FILE = "predictions.parquet"
CANDIDATE_POOL_FILE = "candidate_pool.parquet"
BEST_CONFIG_FILE = "best_configuration.json"
ENSEMBLE_WEIGHTS_FILE = "member_weights.parquet"
PENALTY_PATH_FILE = "penalty_search.parquet"
FINAL_MODEL_FILE = "final_model.pkl"
FINAL_METRICS_FILE = "test_metrics.json"
INTERVALS_FILE = "metric_intervals.parquet"

# --- Candidate states ---
PENDING = "pending"
EVALUATED = "evaluated"
PRUNED = "pruned"
EXCLUDED = "excluded"

# --- Row / key columns used across result tables ---
ROW_COL = ".row"
SPLIT_COL = "split_id"
CONFIG_COL = "config_id"
PRED_COL = ".pred"
