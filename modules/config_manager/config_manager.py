import json
import os
import hashlib
import sys
import logging
import jsonschema
import psutil  # Required for memory awareness
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from modules.hpo_search_engine.grid import grid_size
from modules.model_factory import ModelSpec
from utils.exceptions import ConfigurationError, ResampleMLException
from utils import constants


class ConfigurationManager:
    """
    Manages system configuration loading, validation, and access.
    Acts as the single source of truth and safety guard for a run.

    Validation order: JSON loading, schema, logical bounds, resource limits,
    then seed propagation into ``_internal_seeds``.
    """

    # Default Resource Limits (Safety Guardrails)
    DEFAULT_MAX_GRID_CONFIGS = 1000  # Prevent accidental combinatoric explosions
    DEFAULT_SEED = 42

    # Non-overlapping offsets from the master seed
    SEED_OFFSETS = {
        'split': 0,
        'resample': 1000,
        'search': 2000,
        'model': 3000,
        'ensemble': 4000,
        'bootstrap': 5000,
    }

    def __init__(self, config_path: str = "config/config.json",
                 schema_path: str = "config/schema.json"):
        """
        Initialize the ConfigurationManager.

        Args:
            config_path (str): Path to the user configuration JSON.
            schema_path (str): Path to the JSON schema definition.
        """
        self.config_path = config_path
        self.schema_path = schema_path
        self.config: Dict[str, Any] = {}
        self.schema: Dict[str, Any] = {}
        self.run_id: Optional[str] = None
        self.logger = logging.getLogger("config_manager")

    def load_and_validate(self) -> Dict[str, Any]:
        """
        Main entry point. Loads config, validates schema/logic/resources,
        and propagates seeds.

        Returns:
            Dict[str, Any]: The fully validated and hydrated configuration.

        Raises:
            ConfigurationError: If any validation step fails.
        """
        # 1. Load Files
        self.config = self._load_json(self.config_path)
        self.schema = self._load_json(self.schema_path)

        # 2. Structural Validation (Schema)
        self._validate_schema()

        # 3. Logical Validation (Business Rules & Bounds)
        self._validate_logic()

        # 4. Resource Validation (Prevent Exhaustion)
        self._validate_resources()

        # 5. Internal Seed Propagation (Reproducibility)
        self._propagate_seeds()

        return self.config

    def generate_run_id(self) -> str:
        """
        Generate or retrieve a unique run identifier based on timestamp.
        Used for directory naming and metadata.
        """
        if not self.run_id:
            # Format: YYYYMMDD_HHMMSS
            self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.run_id

    def save_artifacts(self, output_dir: str) -> str:
        """
        Save configuration artifacts to the run directory for full reproducibility.

        Saves:
        1. config_used.json: The exact config object in memory.
        2. config_hash.txt: SHA256 hash for versioning.
        3. run_metadata.json: Environment details (Python version, platform).

        Returns:
            The configuration hash.
        """
        config_dir = Path(output_dir) / constants.CONFIG_DIR
        config_dir.mkdir(parents=True, exist_ok=True)

        with open(config_dir / constants.CONFIG_USED_FILE, 'w') as f:
            json.dump(self.config, f, indent=2)

        config_str = json.dumps(self.config, sort_keys=True)
        config_hash = hashlib.sha256(config_str.encode()).hexdigest()

        with open(config_dir / constants.CONFIG_HASH_FILE, 'w') as f:
            f.write(config_hash)

        metadata = {
            'run_id': self.run_id,
            'start_time': datetime.now().isoformat(),
            'python_version': sys.version,
            'platform': sys.platform,
            'config_hash': config_hash,
            'working_directory': os.getcwd()
        }

        with open(config_dir / constants.RUN_METADATA_FILE, 'w') as f:
            json.dump(metadata, f, indent=2)
        return config_hash

    def _load_json(self, path: str) -> Dict[str, Any]:
        """Safely load a JSON file."""
        if not os.path.exists(path):
            raise ConfigurationError(f"File not found: {path}")
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {str(e)}")

    def _validate_schema(self) -> None:
        """Validate config structure against JSON schema."""
        try:
            jsonschema.validate(instance=self.config, schema=self.schema)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Schema validation failed: {e.message}")

    def _validate_logic(self) -> None:
        """Comprehensive logical validation."""
        if self.config.get('seed', self.DEFAULT_SEED) < 0:
            raise ConfigurationError("seed must be non-negative.")

        # --- Initial split ---
        prop = self.config.get('initial_split', {}).get('prop', 0.75)
        if not (0.0 < prop < 1.0):
            raise ConfigurationError(f"initial_split.prop must be between 0 and 1 (exclusive), got {prop}")

        # --- Resampling ---
        self._validate_resampling(self.config.get('resampling', {}))

        # --- Model ---
        model = self.config.get('model')
        spec = None
        if model:
            try:
                spec = ModelSpec.from_config(model)
            except ResampleMLException as e:
                raise ConfigurationError(f"Invalid model specification: {e}")
            except KeyError as e:
                raise ConfigurationError(f"Model specification is missing {e}")

        # --- Search ---
        search = self.config.get('search', {})
        if spec is not None and search.get('grid'):
            tunables = set(spec.tunables())
            for point in search['grid']:
                extra = sorted(set(point) - tunables)
                if extra:
                    raise ConfigurationError(
                        f"search.grid sets {extra}, which are not tunable parameters of '{spec.name}'. "
                        f"Tunable: {sorted(tunables)}"
                    )
        if search.get('iterations', 1) < 1:
            raise ConfigurationError(f"search.iterations must be >= 1, got {search['iterations']}")
        if search.get('no_improve', 1) < 1:
            raise ConfigurationError(f"search.no_improve must be >= 1, got {search['no_improve']}")
        if search.get('initial', 1) < 1:
            raise ConfigurationError(f"search.initial must be >= 1, got {search['initial']}")
        levels = search.get('levels', 3)
        level_counts = levels.values() if isinstance(levels, dict) else [levels]
        if any(n < 1 for n in level_counts):
            raise ConfigurationError(f"search.levels must be >= 1, got {levels}")
        time_limit = search.get('time_limit')
        if time_limit is not None and time_limit <= 0:
            raise ConfigurationError(f"search.time_limit must be > 0 seconds, got {time_limit}")
        racing = search.get('racing', {})
        alpha = racing.get('alpha', 0.05)
        if not (0.0 < alpha < 1.0):
            raise ConfigurationError(f"search.racing.alpha must be in (0, 1), got {alpha}")
        if racing.get('burn_in', 3) < 2:
            raise ConfigurationError(f"search.racing.burn_in must be >= 2, got {racing['burn_in']}")

        # --- Ensemble ---
        ensemble = self.config.get('ensemble', {})
        if ensemble.get('enabled', False) and spec is not None and spec.mode != 'regression':
            raise ConfigurationError("ensemble.enabled is only supported for regression models.")
        if any(p <= 0 for p in ensemble.get('penalty_grid', [])):
            raise ConfigurationError("ensemble.penalty_grid values must be > 0")
        mixture = ensemble.get('mixture', 1.0)
        if not (0.0 <= mixture <= 1.0):
            raise ConfigurationError(f"ensemble.mixture must be in [0, 1], got {mixture}")
        if ensemble.get('folds', 5) < 2:
            raise ConfigurationError(f"ensemble.folds must be >= 2, got {ensemble['folds']}")

        # Bootstrap validation
        if self.config.get('bootstrapping', {}).get('enabled', False):
            confidence = self.config['bootstrapping'].get('confidence_level', 0.95)
            if not (0 < confidence < 1):
                raise ConfigurationError("confidence_level must be in (0, 1)")
            if self.config['bootstrapping'].get('n_samples', 1000) < 1:
                raise ConfigurationError("bootstrapping.n_samples must be >= 1")

        # Execution validation
        execution = self.config.get('execution', {})
        if 'n_jobs' in execution:
            n_jobs = execution['n_jobs']
            if n_jobs == 0 or n_jobs < -1:
                raise ConfigurationError(f"execution.n_jobs must be -1 (all cores) or a positive integer, got {n_jobs}")

    def _validate_resampling(self, resampling: Dict[str, Any]) -> None:
        scheme = resampling.get('scheme', 'vfold')
        bounds = {
            'v': 2,
            'repeats': 1,
            'times': 1,
            'initial': 1,
            'assess': 1,
            'skip': 0,
        }
        for key, minimum in bounds.items():
            if key in resampling and resampling[key] < minimum:
                raise ConfigurationError(f"resampling.{key} must be >= {minimum} for '{scheme}', got {resampling[key]}")
        if 'prop' in resampling and not (0.0 < resampling['prop'] < 1.0):
            raise ConfigurationError(f"resampling.prop must be between 0 and 1 (exclusive), got {resampling['prop']}")

    def _validate_resources(self) -> None:
        """
        Validate against system resources.
        The regular grid implied by the model's tunable parameters must fit
        within ``resources.max_grid_configs``.
        """
        resources = self.config.get('resources', {})
        max_configs = resources.get('max_grid_configs', self.DEFAULT_MAX_GRID_CONFIGS)

        # 1. Grid Explosion Check
        search = self.config.get('search', {})
        model = self.config.get('model')
        if model and search.get('strategy', 'grid') in ('grid', 'race') and search.get('grid_type', 'regular') == 'regular':
            spec = ModelSpec.from_config(model)
            ranges = spec.tunables()
            if 'grid' in search:
                total_configs = len(search['grid'])
            elif ranges:
                total_configs = grid_size(ranges, search.get('levels', 3))
            else:
                total_configs = 1

            if total_configs > max_configs:
                raise ConfigurationError(
                    f"Grid Explosion Detected! Total configurations ({total_configs}) exceeds "
                    f"safety limit ({max_configs}). Reduce search.levels or increase 'resources.max_grid_configs'."
                )
            self.logger.info(f"Grid size validated: {total_configs} combinations (Limit: {max_configs})")

        # 2. Memory Limits Check
        system_ram_mb = int(psutil.virtual_memory().total / (1024 * 1024))
        # Default safety buffer: 80% of system RAM
        safe_ram_limit = int(system_ram_mb * 0.8)

        config_max_ram = resources.get('max_memory_mb', safe_ram_limit)

        if config_max_ram > system_ram_mb:
            self.logger.warning(
                f"Configured max_memory_mb ({config_max_ram}MB) exceeds physical system RAM ({system_ram_mb}MB). "
                "This may lead to instability."
            )

        # Inject the limits back into config for other modules to use
        self.config.setdefault('resources', {})
        self.config['resources']['max_memory_mb'] = config_max_ram
        self.config['resources']['max_grid_configs'] = max_configs

    def _propagate_seeds(self) -> None:
        """
        Propagate master seed to internal components to ensure full reproducibility.
        Uses large, non-overlapping offsets to avoid correlation between components.
        """
        master_seed = self.config.get('seed', self.DEFAULT_SEED)
        self.config['seed'] = master_seed
        self.config['_internal_seeds'] = {k: master_seed + offset for k, offset in self.SEED_OFFSETS.items()}
        self.logger.debug(f"Seeds propagated from master ({master_seed}): {self.config['_internal_seeds']}")
