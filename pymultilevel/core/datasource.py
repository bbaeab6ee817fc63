"""
Universal DataSource for PyMultilevel.

DataSource is the "I have data" abstraction: named columns of equal length,
one row per observation. It doesn't know or care which model consumes it.
Columns keep their dtype, so grouping factors and categorical predictors
can be strings while numeric predictors stay numeric.

Usage:
    from pymultilevel import DataSource

    ds = DataSource.from_dict({'incidence': [2, 3], 'herd': ['a', 'b']})
    ds = DataSource.from_dataframe(df)
    ds = DataSource.from_file("cbpp.csv")

    ds.keys()        # frozenset({'incidence', 'herd'})
    ds['incidence']  # numpy array
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from pymultilevel.core.exceptions import ValidationError
from pymultilevel.core.validation import check_1d, check_consistent_length

if TYPE_CHECKING:
    import pandas as pd


@dataclass
class DataSource:
    """
    Named-column data container. Domain-agnostic.

    Construct via factory classmethods, not directly.
    """
    _data: dict[str, NDArray]
    _metadata: dict[str, Any] = field(default_factory=dict)

    # === Column Access ===

    def keys(self) -> frozenset[str]:
        """
        Return the names of all available columns.

        Example:
            >>> ds = DataSource.from_dict({'y': [1, 2], 'x': [3, 4]})
            >>> ds.keys()
            frozenset({'x', 'y'})
        """
        return frozenset(self._data.keys())

    def __getitem__(self, key: str) -> NDArray:
        """
        Access a named column.

        Raises:
            KeyError: If key not found, with helpful message listing available keys
        """
        if key not in self._data:
            available = sorted(self.keys())
            raise KeyError(
                f"DataSource has no column '{key}'. Available: {available}"
            )
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        """Check if a column exists."""
        return key in self._data

    # === Properties ===

    @property
    def n_observations(self) -> int:
        """Number of rows."""
        return self._metadata.get('n_observations', 0)

    @property
    def metadata(self) -> dict[str, Any]:
        """Source metadata (origin, column order, file path)."""
        return self._metadata.copy()

    def is_numeric(self, key: str) -> bool:
        """True if the column holds numbers (booleans count as numeric)."""
        arr = self[key]
        return arr.dtype == bool or np.issubdtype(arr.dtype, np.number)

    def fingerprint(self) -> str:
        """
        Content hash of the data.

        Two DataSources with the same columns and values have the same
        fingerprint. Used to check that fits being compared saw the same
        observations.
        """
        digest = hashlib.sha256()
        for name in sorted(self._data):
            arr = self._data[name]
            digest.update(name.encode('utf-8'))
            if arr.dtype == object or arr.dtype.kind in ('U', 'S'):
                digest.update('\x1f'.join(map(str, arr.tolist())).encode('utf-8'))
            else:
                digest.update(np.ascontiguousarray(arr).tobytes())
        return digest.hexdigest()

    # === Factory Methods ===

    @classmethod
    def from_dict(cls, columns: Mapping[str, Any], *, source: str = 'dict') -> DataSource:
        """Construct from a mapping of column name to sequence of values."""
        if not columns:
            raise ValidationError("data: no columns given")

        storage: dict[str, NDArray] = {}
        for name, values in columns.items():
            arr = np.asarray(values)
            check_1d(arr, f"data column '{name}'")
            storage[str(name)] = arr

        check_consistent_length(*storage.values(), names=tuple(storage))

        return cls(
            _data=storage,
            _metadata={
                'n_observations': next(iter(storage.values())).shape[0],
                'source': source,
                'columns': list(storage.keys()),
            },
        )

    @classmethod
    def from_dataframe(cls, df: 'pd.DataFrame', *, source_path: str | None = None) -> DataSource:
        """Construct from a pandas DataFrame."""
        columns = {}
        for col in df.columns:
            series = df[col]
            if str(series.dtype) == 'category':
                series = series.astype(str)
            columns[col] = series.to_numpy()
        ds = cls.from_dict(columns, source='dataframe')
        if source_path:
            ds._metadata['source_path'] = source_path
        return ds

    @classmethod
    def from_file(cls, path: str | Path, *, columns: list[str] | None = None) -> DataSource:
        """Construct from a delimited text file (CSV, TSV)."""
        import pandas as pd

        path = Path(path)
        suffix = path.suffix.lower()
        if suffix == '.csv':
            df = pd.read_csv(path, usecols=columns)
        elif suffix == '.tsv':
            df = pd.read_csv(path, sep='\t', usecols=columns)
        else:
            raise ValidationError(f"Unknown file format: {suffix}")
        return cls.from_dataframe(df, source_path=str(path))

    @classmethod
    def build(cls, data: Any) -> DataSource:
        """
        Convenience factory that dispatches to the appropriate from_* method.

        Examples:
            DataSource.build(ds)                  # returned unchanged
            DataSource.build({'y': [...], ...})   # from_dict
            DataSource.build(df)                  # from_dataframe
            DataSource.build("data.csv")          # from_file
        """
        if isinstance(data, DataSource):
            return data
        if isinstance(data, (str, Path)):
            return cls.from_file(data)
        if isinstance(data, Mapping):
            return cls.from_dict(data)
        if hasattr(data, 'columns') and hasattr(data, 'to_numpy'):
            return cls.from_dataframe(data)
        raise ValidationError(
            f"data: expected a mapping, DataFrame, DataSource or file path, "
            f"got {type(data).__name__}"
        )
