"""
Immutable Dataset value object.

A Dataset pairs a pandas DataFrame with the name of its outcome column. The
frame is copied on construction and never handed out directly; every accessor
returns a copy, so splits, pipelines and model cells can read it concurrently.
"""
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from utils.exceptions import DataValidationError


class Dataset:
    """Rows and named typed columns with one designated outcome column."""

    def __init__(self, frame: pd.DataFrame, outcome: str, name: Optional[str] = None):
        if not isinstance(frame, pd.DataFrame):
            raise DataValidationError(f"Dataset expects a pandas DataFrame, got {type(frame).__name__}")
        if outcome not in frame.columns:
            raise DataValidationError(f"Outcome column '{outcome}' not found. Columns: {list(frame.columns)}")
        if frame.empty:
            raise DataValidationError("Dataset must contain at least one row.")
        if frame.columns.duplicated().any():
            dupes = frame.columns[frame.columns.duplicated()].tolist()
            raise DataValidationError(f"Duplicate column names: {dupes}")

        # Positional identity: row i of the dataset is always frame.iloc[i]
        self._frame = frame.reset_index(drop=True).copy()
        self._columns = tuple(self._frame.columns)
        self.outcome = outcome
        self.name = name or "dataset"

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, outcome: str, name: Optional[str] = None) -> "Dataset":
        return cls(frame, outcome, name=name)

    # ------------------------------------------------------------------ #
    # Read-only accessors                                                #
    # ------------------------------------------------------------------ #
    @property
    def n_rows(self) -> int:
        return len(self._frame)

    def __len__(self) -> int:
        return self.n_rows

    @property
    def columns(self) -> Sequence[str]:
        return self._columns

    @property
    def predictors(self) -> List[str]:
        return [c for c in self._columns if c != self.outcome]

    @property
    def frame(self) -> pd.DataFrame:
        """A defensive copy of the underlying table."""
        return self._frame.copy()

    def outcome_values(self) -> np.ndarray:
        return self._frame[self.outcome].to_numpy(copy=True)

    def column(self, name: str) -> pd.Series:
        if name not in self._columns:
            raise DataValidationError(f"Column '{name}' not found in dataset '{self.name}'.")
        return self._frame[name].copy()

    def rows(self, indices: Iterable[int]) -> pd.DataFrame:
        """
        Return a copy of the rows at the given positions.

        The index of the returned frame holds the original row positions so
        predictions can always be keyed back to the dataset.
        """
        idx = np.asarray(list(indices) if not isinstance(indices, np.ndarray) else indices, dtype=int)
        return self._frame.iloc[idx].copy()

    def subset(self, indices: Iterable[int]) -> "Dataset":
        """A new Dataset holding only the given rows (positions renumbered)."""
        return Dataset(self.rows(indices), self.outcome, name=self.name)

    def __repr__(self) -> str:
        return f"Dataset(name={self.name!r}, rows={self.n_rows}, outcome={self.outcome!r}, predictors={len(self.predictors)})"
