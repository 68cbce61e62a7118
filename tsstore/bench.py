"""Benchmark of manifest snapshot decoding, appending and encoding."""

from __future__ import annotations

import argparse
import logging
import statistics
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass

from tsstore.config import (
    BENCH_CONFIG_PATH_KEY,
    BenchConfig,
    BenchManifestConfig,
    ConfigError,
    config_from_env,
)
from tsstore.encoding import Snapshot
from tsstore.sst import FileMeta, SstFile, TimeRange

BENCH_NAME = "manifest_encoding/snapshot_encoding/0"


class EncodingBench:
    """Holds an encoded snapshot and the files appended to it on every run."""

    def __init__(self, config: BenchManifestConfig) -> None:
        sst = SstFile(1, FileMeta(max_sequence=1, num_rows=1, size=1, time_range=TimeRange(1, 2)))
        snapshot = Snapshot.from_bytes(b"")
        snapshot.add_records([sst] * config.record_count)
        self.raw_bytes = snapshot.to_bytes()
        self.to_append = [sst] * config.append_count

    def raw_bytes_bench(self) -> bytes:
        """Decode the snapshot, append the delta files and encode it again."""
        snapshot = Snapshot.from_bytes(self.raw_bytes)
        snapshot.add_records(self.to_append)
        return snapshot.to_bytes()


@dataclass(frozen=True)
class BenchResult:
    name: str
    iterations_per_sample: int
    samples: list[float]

    @property
    def mean(self) -> float:
        return statistics.fmean(self.samples)

    def __str__(self) -> str:
        return (
            f"{self.name}: mean {self.mean * 1e6:.3f} us/iter "
            f"({len(self.samples)} samples x {self.iterations_per_sample} iters)"
        )


def run_benchmark(config: BenchConfig) -> BenchResult:
    """Run the encoding benchmark; samples are seconds per iteration."""
    manifest = config.manifest
    if manifest.bench_sample_size <= 0:
        raise ValueError("bench_sample_size must be positive")
    bench = EncodingBench(manifest)

    start = time.perf_counter()
    bench.raw_bytes_bench()
    first = time.perf_counter() - start

    per_sample = manifest.bench_measurement_time.total_millis() / 1000 / manifest.bench_sample_size
    iterations = max(1, int(per_sample / first)) if first > 0 else 1

    samples = []
    for _ in range(manifest.bench_sample_size):
        start = time.perf_counter()
        for _ in range(iterations):
            bench.raw_bytes_bench()
        samples.append((time.perf_counter() - start) / iterations)
    return BenchResult(BENCH_NAME, iterations, samples)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the manifest encoding benchmark.")
    parser.add_argument(
        "--config",
        help=f"bench config file (defaults to the {BENCH_CONFIG_PATH_KEY} environment variable)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    try:
        environ = {BENCH_CONFIG_PATH_KEY: args.config} if args.config else None
        config = config_from_env(environ)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        return 1

    print(run_benchmark(config))
    return 0