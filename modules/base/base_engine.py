import abc
import logging
from pathlib import Path
from typing import Dict, Any

import pandas as pd

from utils.file_io import save_dataframe, save_json


class BaseEngine(abc.ABC):
    """
    Abstract base class for all persisting engines.

    Provides common functionality for:
    - Configuration and logger attachment.
    - Result directory management (one numbered directory per engine).
    - Parquet/JSON artifact writing that honours ``outputs.persist``.
    """

    def __init__(self, config: Dict[str, Any], logger: logging.Logger):
        self.config = config
        self.logger = logger
        outputs = self.config.get('outputs', {})
        self.base_dir = Path(outputs.get('base_results_dir', 'results'))
        self.output_dir = self.base_dir / self._get_engine_directory_name()
        self.persist = outputs.get('persist', True)
        self.excel_copy = outputs.get('save_excel_copy', False)

        self._setup_directories()

    @abc.abstractmethod
    def _get_engine_directory_name(self) -> str:
        """
        Determines the directory name for the engine's output.
        e.g., '02_ResampleSets', '04_HyperparameterSearch'
        """
        raise NotImplementedError("Subclasses must implement _get_engine_directory_name.")

    def _setup_directories(self):
        skip_dirs = self.config.get('outputs', {}).get('skip_dir_creation', False)
        if skip_dirs or not self.persist:
            # Compute-only usage (tests, nested searches)
            return

        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Output directory for {self.__class__.__name__}: {self.output_dir}")

    def _save_table(self, df: pd.DataFrame, filename: str) -> None:
        if not self.persist:
            return
        save_dataframe(df, self.output_dir / filename, excel_copy=self.excel_copy, index=False)

    def _save_json(self, payload: Dict[str, Any], filename: str) -> None:
        if not self.persist:
            return
        save_json(payload, self.output_dir / filename)

    @abc.abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """
        Main execution method for the engine.
        This must be implemented by all subclasses.
        """
        pass
