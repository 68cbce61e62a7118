"""Storage and benchmark configuration, loaded from mappings or TOML."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from tsstore.duration import ReadableDuration

logger = logging.getLogger(__name__)

BENCH_CONFIG_PATH_KEY = "BENCH_CONFIG_PATH"
_GIB = 1024**3


class ConfigError(ValueError):
    """Raised when a configuration cannot be loaded."""


class UpdateMode(Enum):
    OVERWRITE = "Overwrite"
    APPEND = "Append"


class ParquetEncoding(Enum):
    PLAIN = "Plain"
    RLE = "Rle"
    DELTA_BINARY_PACKED = "DeltaBinaryPacked"
    DELTA_LENGTH_BYTE_ARRAY = "DeltaLengthByteArray"
    DELTA_BYTE_ARRAY = "DeltaByteArray"
    RLE_DICTIONARY = "RleDictionary"


class ParquetCompression(Enum):
    UNCOMPRESSED = "Uncompressed"
    SNAPPY = "Snappy"
    ZSTD = "Zstd"


@dataclass
class ColumnOptions:
    enable_dict: bool | None = None
    enable_bloom_filter: bool | None = None
    encoding: ParquetEncoding | None = None
    compression: ParquetCompression | None = None


@dataclass
class WriteConfig:
    max_row_group_size: int = 8192
    write_bacth_size: int = 1024
    enable_sorting_columns: bool = True
    enable_dict: bool = False
    enable_bloom_filter: bool = False
    encoding: ParquetEncoding = ParquetEncoding.PLAIN
    compression: ParquetCompression = ParquetCompression.SNAPPY
    column_options: dict[str, ColumnOptions] | None = None


@dataclass
class ManifestConfig:
    channel_size: int = 3
    merge_interval_seconds: int = 5
    min_merge_threshold: int = 10
    hard_merge_threshold: int = 90
    soft_merge_threshold: int = 50


@dataclass
class SchedulerConfig:
    schedule_interval: ReadableDuration = ReadableDuration.from_secs(10)
    max_pending_compaction_tasks: int = 10
    memory_limit: int = 2 * _GIB
    ttl: ReadableDuration | None = None
    new_sst_max_size: int = _GIB
    input_sst_max_num: int = 30
    input_sst_min_num: int = 5


@dataclass
class StorageConfig:
    write: WriteConfig = field(default_factory=WriteConfig)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    update_mode: UpdateMode = UpdateMode.OVERWRITE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StorageConfig:
        """Build a config; missing fields take defaults, unknown fields are errors."""
        return _load(cls, data, "")

    @classmethod
    def from_toml(cls, text: str) -> StorageConfig:
        return cls.from_dict(_parse_toml(text))


@dataclass
class BenchManifestConfig:
    record_count: int
    append_count: int
    bench_measurement_time: ReadableDuration
    bench_sample_size: int


@dataclass
class BenchConfig:
    manifest: BenchManifestConfig

    @classmethod
    def from_toml(cls, text: str) -> BenchConfig:
        """Build a bench config; every field is required."""
        return _load(cls, _parse_toml(text), "", deny_unknown=False, required=True)


def config_from_env(environ: Mapping[str, str] | None = None) -> BenchConfig:
    """Load the bench config from the file named by ``BENCH_CONFIG_PATH``."""
    env = os.environ if environ is None else environ
    path = env.get(BENCH_CONFIG_PATH_KEY)
    if not path:
        raise ConfigError(f"Env {BENCH_CONFIG_PATH_KEY} is required to run benches")
    logger.info("Load bench config, config_path=%s", path)
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"read bench config file failed: {exc}") from exc
    config = BenchConfig.from_toml(text)
    logger.info("Bench config: %r", config)
    return config


def _parse_toml(text: str) -> dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"parse config failed: {exc}") from exc


Parser = Callable[[Any, str], Any]


def _unsigned(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"invalid value for `{key}`: expected a non-negative integer, got {value!r}")
    return value


def _boolean(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"invalid value for `{key}`: expected a boolean, got {value!r}")
    return value


def _duration(value: Any, key: str) -> ReadableDuration:
    if not isinstance(value, str):
        raise ConfigError(f"invalid value for `{key}`: expected a duration string, got {value!r}")
    try:
        return ReadableDuration.parse(value)
    except ValueError as exc:
        raise ConfigError(f"invalid value for `{key}`: {exc}") from exc


def _enum(enum_cls: type[Enum]) -> Parser:
    def parse(value: Any, key: str) -> Enum:
        try:
            return enum_cls(value)
        except ValueError:
            choices = ", ".join(m.value for m in enum_cls)
            raise ConfigError(
                f"invalid value for `{key}`: {value!r}, expected one of {choices}"
            ) from None

    return parse


def _nested(cls: type, **flags: bool) -> Parser:
    return lambda value, key: _load(cls, value, key, **flags)


def _column_options(value: Any, key: str) -> dict[str, ColumnOptions]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"expected a table for `{key}`")
    return {name: _load(ColumnOptions, opts, f"{key}.{name}") for name, opts in value.items()}


_FIELDS: dict[type, dict[str, Parser]] = {
    ColumnOptions: {
        "enable_dict": _boolean,
        "enable_bloom_filter": _boolean,
        "encoding": _enum(ParquetEncoding),
        "compression": _enum(ParquetCompression),
    },
    WriteConfig: {
        "max_row_group_size": _unsigned,
        "write_bacth_size": _unsigned,
        "enable_sorting_columns": _boolean,
        "enable_dict": _boolean,
        "enable_bloom_filter": _boolean,
        "encoding": _enum(ParquetEncoding),
        "compression": _enum(ParquetCompression),
        "column_options": _column_options,
    },
    ManifestConfig: {
        "channel_size": _unsigned,
        "merge_interval_seconds": _unsigned,
        "min_merge_threshold": _unsigned,
        "hard_merge_threshold": _unsigned,
        "soft_merge_threshold": _unsigned,
    },
    SchedulerConfig: {
        "schedule_interval": _duration,
        "max_pending_compaction_tasks": _unsigned,
        "memory_limit": _unsigned,
        "ttl": _duration,
        "new_sst_max_size": _unsigned,
        "input_sst_max_num": _unsigned,
        "input_sst_min_num": _unsigned,
    },
    StorageConfig: {
        "write": _nested(WriteConfig),
        "manifest": _nested(ManifestConfig),
        "scheduler": _nested(SchedulerConfig),
        "update_mode": _enum(UpdateMode),
    },
    BenchManifestConfig: {
        "record_count": _unsigned,
        "append_count": _unsigned,
        "bench_measurement_time": _duration,
        "bench_sample_size": _unsigned,
    },
    BenchConfig: {
        "manifest": _nested(BenchManifestConfig, deny_unknown=False, required=True),
    },
}


def _load(
    cls: type,
    data: Any,
    path: str,
    *,
    deny_unknown: bool = True,
    required: bool = False,
) -> Any:
    where = path or cls.__name__
    if not isinstance(data, Mapping):
        raise ConfigError(f"expected a table for `{where}`")
    parsers = _FIELDS[cls]
    if deny_unknown:
        unknown = sorted(set(data) - parsers.keys())
        if unknown:
            raise ConfigError(f"unknown field `{unknown[0]}` in `{where}`")
    values = {}
    for name, parse in parsers.items():
        key = f"{path}.{name}" if path else name
        if name in data:
            values[name] = parse(data[name], key)
        elif required:
            raise ConfigError(f"missing field `{key}`")
    return cls(**values)