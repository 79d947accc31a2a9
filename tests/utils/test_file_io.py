import json
import numpy as np
import pandas as pd
import pytest
from pathlib import Path

from utils.cache import NumpyEncoder, config_hash, config_signature
from utils.file_io import read_dataframe, save_dataframe, save_json


class TestFileIO:

    def test_parquet_round_trip_with_excel_copy(self, tmp_path):
        df = pd.DataFrame({'a': [1, 2, 3], 'b': ['x', 'y', 'z']})
        path = save_dataframe(df, tmp_path / "sub" / "table.parquet", excel_copy=True)

        assert path.exists()
        assert (tmp_path / "sub" / "table.xlsx").exists()
        pd.testing.assert_frame_equal(read_dataframe(path), df)

    def test_read_csv(self, tmp_path):
        path = tmp_path / "data.csv"
        pd.DataFrame({'a': [1, 2]}).to_csv(path, index=False)
        assert read_dataframe(path)['a'].tolist() == [1, 2]

    def test_unsupported_extension(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported"):
            read_dataframe(tmp_path / "data.txt")

    def test_save_json_handles_numpy(self, tmp_path):
        path = save_json({'n': np.int64(3), 'x': np.float32(0.5), 'v': np.arange(2)}, tmp_path / "out.json")
        with open(path) as f:
            assert json.load(f) == {'n': 3, 'x': 0.5, 'v': [0, 1]}


class TestConfigHash:

    def test_key_order_does_not_matter(self):
        assert config_hash({'a': 1, 'b': 2.0}) == config_hash({'b': 2.0, 'a': 1})

    def test_numpy_and_python_scalars_hash_alike(self):
        assert config_hash({'a': np.int64(1)}) == config_hash({'a': 1})

    def test_different_values_differ(self):
        assert config_hash({'penalty': 0.1}) != config_hash({'penalty': 0.01})

    def test_length(self):
        assert len(config_hash({'a': 1}, length=8)) == 8

    def test_signature_is_canonical_json(self):
        assert config_signature({'b': 1, 'a': np.bool_(True)}) == '{"a": true, "b": 1}'
