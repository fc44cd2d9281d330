# collocations/counters.py: named counters for the map/reduce tasks
#
# Every task gets its own Counters and returns it with its result; the
# driver merges them once the phase is complete. Merging is a plain sum,
# so the order in which tasks finish does not matter.

import time
from collections import defaultdict
from contextlib import contextmanager

# phase 1 / map
NGRAM_WINDOWS = "NGRAM_WINDOWS"
UNIGRAM_WINDOWS = "UNIGRAM_WINDOWS"
MAP_RECORDS = "MAP_RECORDS"
SPILLED_RECORDS = "SPILLED_RECORDS"
SPILLS = "SPILLS"

# phase 1 / reduce
LESS_THAN_MIN_SUPPORT = "LESS_THAN_MIN_SUPPORT"
SUBGRAMS = "SUBGRAMS"
NGRAMS_KEPT = "NGRAMS_KEPT"
UNIGRAMS_KEPT = "UNIGRAMS_KEPT"

# phase 2 / reduce
EXTRA_HEAD = "EXTRA_HEAD"
EXTRA_TAIL = "EXTRA_TAIL"
MISSING_HEAD = "MISSING_HEAD"
MISSING_TAIL = "MISSING_TAIL"
K22_CLAMPED = "K22_CLAMPED"
LESS_THAN_MIN_LLR = "LESS_THAN_MIN_LLR"
SCORED = "SCORED"


class Counters:
    """str -> number. Picklable, so it travels back from worker processes."""

    def __init__(self, values=None):
        self._d = defaultdict(int)
        if values:
            for name, n in dict(values).items():
                self._d[name] += n

    def tick(self, name: str, n=1):
        self._d[name] += n

    def merge(self, other: "Counters") -> "Counters":
        for name, n in other._d.items():
            self._d[name] += n
        return self

    def __iadd__(self, other):
        return self.merge(other)

    def __getitem__(self, name):
        return self._d.get(name, 0)

    def __contains__(self, name):
        return name in self._d

    def __eq__(self, other):
        if not isinstance(other, Counters):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def as_dict(self) -> dict:
        return {k: v for k, v in self._d.items() if v}

    def __repr__(self):
        return f"Counters({self.as_dict()!r})"

    def summary(self) -> str:
        return "  ".join(f"{k}={v:,}" if isinstance(v, int) else f"{k}={v:.1f}" for k, v in sorted(self.as_dict().items()))


@contextmanager
def timeit(counters: Counters, name: str):
    """Adds the elapsed wall time of the block (ms) to counters[name]."""
    t0 = time.perf_counter()
    try:
        yield
    finally:
        counters.tick(name, (time.perf_counter() - t0) * 1000.0)
