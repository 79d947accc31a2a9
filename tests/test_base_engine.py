import pytest
import pandas as pd
from unittest.mock import Mock
from pathlib import Path
from modules.base.base_engine import BaseEngine

# Concrete implementation for testing purposes
class ConcreteTestEngine(BaseEngine):
    def __init__(self, config, logger, engine_dir_name):
        self._engine_dir_name_value = engine_dir_name
        super().__init__(config, logger)

    def _get_engine_directory_name(self) -> str:
        return self._engine_dir_name_value

    def execute(self, *args, **kwargs):
        pass # Not relevant for BaseEngine tests

@pytest.fixture
def mock_logger():
    """Provides a mock logger instance."""
    return Mock()

@pytest.fixture
def base_config(tmp_path):
    """Provides a base configuration dictionary with a temporary results directory."""
    return {
        'outputs': {
            'base_results_dir': str(tmp_path)
        }
    }

def test_base_engine_directory_creation(base_config, mock_logger, tmp_path):
    engine = ConcreteTestEngine(base_config, mock_logger, "03_ResampledPerformance")

    expected_dir = tmp_path / "03_ResampledPerformance"
    assert engine.output_dir == expected_dir
    assert expected_dir.is_dir()
    mock_logger.info.assert_called_with(f"Output directory for ConcreteTestEngine: {expected_dir}")

def test_skip_dir_creation(base_config, mock_logger, tmp_path):
    base_config['outputs']['skip_dir_creation'] = True
    engine = ConcreteTestEngine(base_config, mock_logger, "ENGINE")
    assert not engine.output_dir.exists()

def test_persist_false_writes_nothing(base_config, mock_logger, tmp_path):
    base_config['outputs']['persist'] = False
    engine = ConcreteTestEngine(base_config, mock_logger, "ENGINE")

    engine._save_table(pd.DataFrame({'a': [1]}), "table.parquet")
    engine._save_json({'a': 1}, "doc.json")

    assert not (tmp_path / "ENGINE").exists()

def test_save_helpers_write_into_engine_dir(base_config, mock_logger, tmp_path):
    engine = ConcreteTestEngine(base_config, mock_logger, "ENGINE")

    engine._save_table(pd.DataFrame({'a': [1, 2]}), "table.parquet")
    engine._save_json({'a': 1}, "doc.json")

    assert pd.read_parquet(tmp_path / "ENGINE" / "table.parquet")['a'].tolist() == [1, 2]
    assert (tmp_path / "ENGINE" / "doc.json").exists()

def test_base_engine_is_abstract(base_config, mock_logger):
    with pytest.raises(TypeError):
        BaseEngine(base_config, mock_logger)
