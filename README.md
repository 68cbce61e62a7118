# tsstore

Core pieces of a columnar time-series storage engine, in plain Python with no
third-party dependencies.

## Modules

- `tsstore.duration`: `ReadableDuration`, a millisecond-precision duration
  written as `"1d2h3m4s5ms"`. `ReadableDuration.parse` accepts the units
  `d`, `h`, `m`, `s`, `ms` (largest first); `str()` gives the compact form
  (`"0s"` for zero). Also `from_secs`, `from_millis`, `total_millis` and
  `to_timedelta`.
- `tsstore.sst`: `TimeRange` (half-open, with `merge` and `overlaps`),
  `FileMeta`, `SstFile` (with `allocate_id`, compaction marking and
  `is_expired`) and the compaction `Task` (with `input_size`).
- `tsstore.config`: `StorageConfig` with `WriteConfig`, `ManifestConfig`,
  `SchedulerConfig`, `ColumnOptions` and the enums `UpdateMode`,
  `ParquetEncoding`, `ParquetCompression`. `StorageConfig.from_dict` and
  `StorageConfig.from_toml` fill missing fields with defaults and raise
  `ConfigError` on unknown fields or bad values. `BenchConfig.from_toml` and
  `config_from_env` load the benchmark settings, where every field is
  required.
- `tsstore.encoding`: the binary snapshot format. `SnapshotHeader`
  (magic `0xCAFE1234`, version, flag, records length), `SnapshotRecord`
  (id, time range, size, row count) and `Snapshot` with `from_bytes`,
  `to_bytes`, `to_ssts`, `add_records` and `delete_records`. Malformed input
  raises `EncodingError`. `ManifestUpdate` holds added files and deleted ids.
- `tsstore.manifest`: `Manifest`, a directory-backed list of live SST files.
  Each `update` (or `add_file`) is written as a delta file under
  `<root>/manifest/delta`; `merge_deltas` folds the deltas into
  `<root>/manifest/snapshot`. Leftover deltas are merged when a manifest is
  opened. `start`/`close` (or a `with` block) run a background thread that
  merges once the delta count exceeds `min_merge_threshold`; updates are
  refused with `ManifestError` above `hard_merge_threshold`. Helpers:
  `encode_update`, `decode_update`, `read_snapshot`, `list_delta_paths`.
- `tsstore.picker`: `TimeWindowCompactionStrategy` groups files into time
  segments and picks the smallest files of the newest segment with enough
  files, plus expired files; `Picker` does the same for a manifest's current
  files, with an optional TTL. `truncate_timestamp` rounds a timestamp down
  to a segment boundary.
- `tsstore.operator`: an in-memory columnar `RecordBatch`, `concat_batches`,
  `primary_key_eq`, and the merge operators `LastValueOperator` (keeps the
  last row) and `BytesMergeOperator` (concatenates binary value columns).
- `tsstore.merge`: `MergeStream`, which iterates over sorted batches and
  collapses rows with equal primary keys using a merge operator, dropping the
  builtin `__seq__` and `__reserved__` columns unless asked to keep them.
- `tsstore.bench`: the snapshot encoding benchmark (`EncodingBench`,
  `run_benchmark`, `main`).

## Installation

```
pip install .
```

Tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from tsstore.encoding import Snapshot
from tsstore.sst import FileMeta, SstFile, TimeRange

snapshot = Snapshot.from_bytes(b"")
snapshot.add_records([
    SstFile(1, FileMeta(max_sequence=1, num_rows=10, size=512,
                        time_range=TimeRange(0, 100))),
])
data = snapshot.to_bytes()
assert [f.id for f in Snapshot.from_bytes(data).to_ssts()] == [1]
```

## Benchmark

The benchmark decodes a snapshot, appends files and encodes it again. Its
settings come from a TOML file:

```toml
[manifest]
record_count = 10000
append_count = 100
bench_measurement_time = "10s"
bench_sample_size = 20
```

Name the file with `--config` or the `BENCH_CONFIG_PATH` environment variable:

```
tsstore-bench --config bench.toml
BENCH_CONFIG_PATH=bench.toml tsstore-bench
```

It prints the mean time per iteration.

## What this package does not do

- It writes and reads no Parquet files: the write settings and Parquet enums
  in `tsstore.config` are configuration only, and record batches live in
  memory.
- It does not run compactions. `tsstore.picker` chooses candidate tasks, but
  nothing here executes them, schedules them or deletes the files they
  replace.
- The manifest stores its files in a local directory; there is no object
  store or remote storage support, and no query engine or server.