"""
Typed parameters for one pipeline run.

The driver (CLI or caller) builds a CollocConfig and calls validate()
before anything is scheduled. Phase 2 does not read the global n-gram
total from here; it is passed in explicitly once phase 1 has finished.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from collocations.errors import ConfigurationError
from collocations.paths import (
    DEFAULT_MAX_NGRAM_SIZE,
    DEFAULT_MIN_SUPPORT,
    DEFAULT_MIN_LLR,
    DEFAULT_NUM_PARTITIONS,
    DEFAULT_SHARD_SIZE,
    DEFAULT_SPILL_SIZE,
    DEFAULT_MAX_ATTEMPTS,
)


@dataclass(frozen=True)
class CollocConfig:
    max_ngram_size: int = DEFAULT_MAX_NGRAM_SIZE
    min_support: int = DEFAULT_MIN_SUPPORT
    min_llr: float = DEFAULT_MIN_LLR
    num_partitions: int = DEFAULT_NUM_PARTITIONS
    emit_unigrams: bool = False
    analyzer: str | None = None        # None -> documents are already tokenized
    workers: int = 1                   # 1 -> run tasks inline, no process pool
    shard_size: int = DEFAULT_SHARD_SIZE
    spill_size: int = DEFAULT_SPILL_SIZE
    combine: bool = True
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    verbose: bool = False

    def validate(self) -> "CollocConfig":
        """Raise ConfigurationError on the first bad field, else return self."""
        ints = {
            "max_ngram_size": 2,
            "min_support": 0,
            "num_partitions": 1,
            "workers": 1,
            "shard_size": 1,
            "spill_size": 1,
            "max_attempts": 1,
        }
        for name, lowest in ints.items():
            value = getattr(self, name)
            # bool is an int subclass; True is not a partition count
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < lowest:
                raise ConfigurationError(f"{name} must be >= {lowest}, got {value}")

        if isinstance(self.min_llr, bool) or not isinstance(self.min_llr, (int, float)):
            raise ConfigurationError(f"min_llr must be a number, got {self.min_llr!r}")
        if not math.isfinite(self.min_llr):
            raise ConfigurationError(f"min_llr must be finite, got {self.min_llr}")
        return self
