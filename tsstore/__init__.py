"""Columnar time-series storage core: durations, config, SST manifests, snapshot encoding, compaction picking and row merging."""

__version__ = "2.2.0a0"