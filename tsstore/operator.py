"""Columnar record batches and operators that merge rows sharing a primary key."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from itertools import chain, islice
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class MergeError(ValueError):
    """Raised when rows cannot be merged."""


class DataType(Enum):
    UINT8 = "UInt8"
    INT8 = "Int8"
    UINT32 = "UInt32"
    INT32 = "Int32"
    UINT64 = "UInt64"
    INT64 = "Int64"
    BINARY = "Binary"

    def __str__(self) -> str:
        return self.value


_INT_RANGES = {
    DataType.UINT8: (0, 2**8 - 1),
    DataType.INT8: (-(2**7), 2**7 - 1),
    DataType.UINT32: (0, 2**32 - 1),
    DataType.INT32: (-(2**31), 2**31 - 1),
    DataType.UINT64: (0, 2**64 - 1),
    DataType.INT64: (-(2**63), 2**63 - 1),
}


class Field(NamedTuple):
    name: str
    data_type: DataType
    nullable: bool = True


def _check_value(field: Field, value: Any) -> None:
    if value is None:
        if not field.nullable:
            raise ValueError(f"column {field.name} is not nullable")
        return
    if field.data_type is DataType.BINARY:
        if not isinstance(value, bytes):
            raise ValueError(f"column {field.name} expects bytes, got {value!r}")
        return
    low, high = _INT_RANGES[field.data_type]
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValueError(f"column {field.name} expects {field.data_type}, got {value!r}")


@dataclass(frozen=True)
class RecordBatch:
    """Equal-length columns described by a list of fields."""

    fields: tuple[Field, ...]
    columns: tuple[tuple[Any, ...], ...]

    def __post_init__(self) -> None:
        fields = tuple(Field(*f) for f in self.fields)
        columns = tuple(tuple(c) for c in self.columns)
        object.__setattr__(self, "fields", fields)
        object.__setattr__(self, "columns", columns)
        if len(fields) != len(columns):
            raise ValueError(
                f"number of columns({len(columns)}) must match number of fields({len(fields)})"
            )
        if len({len(c) for c in columns}) > 1:
            raise ValueError("all columns in a record batch must have the same length")
        for f, column in zip(fields, columns):
            for value in column:
                _check_value(f, value)

    def num_rows(self) -> int:
        return len(self.columns[0]) if self.columns else 0

    def column(self, index: int) -> tuple[Any, ...]:
        return self.columns[index]

    def slice(self, offset: int, length: int) -> RecordBatch:
        if offset < 0 or length < 0 or offset + length > self.num_rows():
            raise IndexError(
                f"slice [{offset}, {offset + length}) out of range for {self.num_rows()} rows"
            )
        return RecordBatch(self.fields, [c[offset : offset + length] for c in self.columns])

    def drop_last_columns(self, count: int) -> RecordBatch:
        """Return the batch without its last ``count`` columns."""
        if count < 0 or count > len(self.columns):
            raise IndexError(f"cannot drop {count} of {len(self.columns)} columns")
        keep = len(self.columns) - count
        return RecordBatch(self.fields[:keep], self.columns[:keep])


def concat_batches(fields: Sequence[Field], batches: Iterable[RecordBatch]) -> RecordBatch:
    """Concatenate batches that share the given fields."""
    fields = tuple(Field(*f) for f in fields)
    batches = list(batches)
    for batch in batches:
        if len(batch.fields) != len(fields):
            raise ValueError("batches must have the same number of columns as the schema")
        for expected, actual in zip(fields, batch.fields):
            if expected.data_type is not actual.data_type:
                raise ValueError(
                    f"column {expected.name} type mismatch: {expected.data_type} vs {actual.data_type}"
                )
    if not batches:
        return RecordBatch(fields, [() for _ in fields])
    columns = [tuple(chain.from_iterable(cols)) for cols in zip(*(b.columns for b in batches))]
    return RecordBatch(fields, columns)


def primary_key_eq(
    lhs: RecordBatch, lhs_idx: int, rhs: RecordBatch, rhs_idx: int, num_primary_keys: int
) -> bool:
    """Whether two rows agree on the first ``num_primary_keys`` columns."""
    pairs = islice(zip(lhs.columns, rhs.columns), num_primary_keys)
    return all(lhs_col[lhs_idx] == rhs_col[rhs_idx] for lhs_col, rhs_col in pairs)


class MergeOperator(ABC):
    """Reduces rows sharing a primary key to one row."""

    @abstractmethod
    def merge(self, batch: RecordBatch) -> RecordBatch: ...


class LastValueOperator(MergeOperator):
    """Keeps the last row."""

    def merge(self, batch: RecordBatch) -> RecordBatch:
        if batch.num_rows() == 0:
            raise ValueError("cannot merge an empty batch")
        return batch.slice(batch.num_rows() - 1, 1)

    def __repr__(self) -> str:
        return "LastValueOperator()"


class BytesMergeOperator(MergeOperator):
    """Concatenates the binary value columns; other columns keep their first value."""

    def __init__(self, value_idxes: Iterable[int]) -> None:
        self.value_idxes = tuple(value_idxes)

    def __repr__(self) -> str:
        return f"BytesMergeOperator(value_idxes={list(self.value_idxes)!r})"

    def merge(self, batch: RecordBatch) -> RecordBatch:
        if batch.num_rows() == 0:
            raise ValueError("cannot merge an empty batch")
        for idx in self.value_idxes:
            data_type = batch.fields[idx].data_type
            if data_type is not DataType.BINARY:
                raise MergeError(
                    f"MergeOperator is only used for binary column, current:{data_type}"
                )
        logger.debug("BytesMergeOperator merge, batch=%r", batch)

        columns = []
        for idx, column in enumerate(batch.columns):
            if idx in self.value_idxes:
                joined = b"".join(v for v in column if v is not None)
                columns.append((joined,) if joined else column)
            else:
                # Primary key columns are equal across the rows, so the first value suffices.
                columns.append(column[:1])
        try:
            return RecordBatch(batch.fields, columns)
        except ValueError as exc:
            raise MergeError("failed to construct RecordBatch in BytesMergeOperator.") from exc