"""Streaming merge of sorted record batches whose rows share primary keys."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence

from tsstore.operator import (
    Field,
    MergeOperator,
    RecordBatch,
    concat_batches,
    primary_key_eq,
)

logger = logging.getLogger(__name__)

SEQ_COLUMN_NAME = "__seq__"
RESERVED_COLUMN_NAME = "__reserved__"
BUILTIN_COLUMN_NUM = 2


def is_builtin_field(name: str) -> bool:
    """Whether a column name belongs to one of the storage's builtin columns."""
    return name in (SEQ_COLUMN_NAME, RESERVED_COLUMN_NAME)


class MergeStream:
    """Merges rows with equal primary keys across a stream of sorted batches.

    Input batches are sorted by the primary key columns and then the sequence
    column. Builtin columns always come last in the input schema.
    """

    def __init__(
        self,
        stream: Iterable[RecordBatch],
        fields: Sequence[Field],
        num_primary_keys: int,
        value_operator: MergeOperator,
        keep_builtin: bool = False,
    ) -> None:
        self._stream = stream
        self._input_fields = tuple(Field(*f) for f in fields)
        self.num_primary_keys = num_primary_keys
        self.value_operator = value_operator
        self.keep_builtin = keep_builtin
        self._pending: RecordBatch | None = None

        names = [f.name for f in self._input_fields]
        if keep_builtin:
            if SEQ_COLUMN_NAME not in names:
                raise ValueError("Sequence column not found")
            if RESERVED_COLUMN_NAME not in names:
                raise ValueError("Reserved column not found")
            self._output_fields = self._input_fields
        else:
            self._output_fields = tuple(
                f for f in self._input_fields if not is_builtin_field(f.name)
            )

    @property
    def schema(self) -> tuple[Field, ...]:
        """Fields of the batches this stream produces."""
        return self._output_fields

    def _strip_builtin(self, batch: RecordBatch) -> RecordBatch:
        if self.keep_builtin:
            return batch
        return batch.drop_last_columns(BUILTIN_COLUMN_NUM)

    def _pk_eq(self, lhs: RecordBatch, lhs_idx: int, rhs: RecordBatch, rhs_idx: int) -> bool:
        return primary_key_eq(lhs, lhs_idx, rhs, rhs_idx, self.num_primary_keys)

    def _group_by_primary_key(self, batch: RecordBatch) -> list[RecordBatch]:
        groups = []
        rows = batch.num_rows()
        start = 0
        while start < rows:
            end = start + 1
            while end < rows and self._pk_eq(batch, start, batch, end):
                end += 1
            groups.append(batch.slice(start, end - start))
            start = end
        return groups

    def merge_batch(self, batch: RecordBatch) -> RecordBatch | None:
        """Feed one input batch; return merged rows that are complete, if any.

        The last group of a batch may continue in the next batch, so it is
        held back until the following batch or :meth:`finish`.
        """
        if batch.num_rows() == 0:
            return None

        groups = self._group_by_primary_key(batch)
        outputs: list[RecordBatch] = []
        pending, self._pending = self._pending, None
        if pending is not None:
            first = groups[0]
            if self._pk_eq(pending, pending.num_rows() - 1, first, 0):
                groups[0] = concat_batches(self._input_fields, [pending, first])
            else:
                outputs.append(self.value_operator.merge(pending))

        self._pending = groups.pop()
        outputs.extend(self.value_operator.merge(group) for group in groups)
        if not outputs:
            return None

        merged = concat_batches(self._input_fields, outputs)
        return self._strip_builtin(merged)

    def finish(self) -> RecordBatch | None:
        """Merge and return the rows still held back, if any."""
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        return self.value_operator.merge(self._strip_builtin(pending))

    def __iter__(self) -> Iterator[RecordBatch]:
        for batch in self._stream:
            merged = self.merge_batch(batch)
            if merged is not None:
                yield merged
        last = self.finish()
        if last is not None:
            yield last