"""
collocations/aggregator.py

Phase-1 reduce: final frequencies + support filter.

Input is one partition, sorted by GramKey and grouped by primary. A
subgram group looks like

    HEAD "the"   (freq a)     <- one or more marginal records, summed
    HEAD "the"   (freq b)
    NGRAM "the lazy"  (1)     <- dependent n-grams, byte order,
    NGRAM "the quick" (1)        equal neighbours summed
    NGRAM "the quick" (1)

For each finished n-gram:
    freq <  min_support  -> dropped, counted as LESS_THAN_MIN_SUPPORT
    freq >= min_support  -> emit (ngram, subgram)

ngram_total is the sum of surviving n-gram frequencies, taken from HEAD
groups only (every n-gram appears once under its head and once under its
tail). It is only meaningful once every partition has been reduced; the
driver adds up the per-partition values after the phase completes.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Tuple

from collocations import counters as C
from collocations.counters import Counters
from collocations.errors import InconsistentCountsError
from collocations.gram import Gram, GramKey, GramType
from collocations.partition import iter_groups

Pair = Tuple[Gram, Gram]


class SupportFilter:

    def __init__(self, min_support: int, emit_unigrams: bool = False, counters: Counters | None = None):
        self.min_support = min_support
        self.emit_unigrams = emit_unigrams
        self.counters = counters if counters is not None else Counters()
        self.ngram_total = 0

    def reduce(self, key: GramKey, grams: Iterable[Gram]) -> Iterator[Pair]:
        if key.type == GramType.UNIGRAM:
            yield from self._reduce_unigram(grams)
        elif key.type.is_subgram:
            yield from self._reduce_subgram(key, grams)
        else:
            raise InconsistentCountsError(f"unexpected group key {key!r}")

    def reduce_stream(self, records: Iterable[Tuple[GramKey, Gram]]) -> Iterator[Pair]:
        """Support-filter a whole partition stream sorted by record_sort_key."""
        for key, grams in iter_groups(records):
            yield from self.reduce(key, grams)

    def _reduce_unigram(self, grams: Iterable[Gram]) -> Iterator[Pair]:
        unigram = None
        for g in grams:
            if unigram is None:
                unigram = g.copy()
            else:
                unigram.increment(g.frequency)
        if unigram is None:
            return
        if unigram.frequency < self.min_support:
            self.counters.tick(C.LESS_THAN_MIN_SUPPORT)
            return
        if self.emit_unigrams:
            self.counters.tick(C.UNIGRAMS_KEPT)
            yield unigram, unigram

    def _reduce_subgram(self, key: GramKey, grams: Iterable[Gram]) -> Iterator[Pair]:
        subgram = None
        current = None

        for g in grams:
            if g.type.is_subgram:
                if current is not None:
                    raise InconsistentCountsError(f"marginal for {key!r} arrived after its n-grams")
                if subgram is None:
                    subgram = g.copy()
                else:
                    subgram.increment(g.frequency)
                continue

            if subgram is None:
                raise InconsistentCountsError(f"n-gram {g.text!r} arrived before the marginal of {key!r}")
            if current is None:
                current = g.copy()
            elif g == current:
                current.increment(g.frequency)
            else:
                yield from self._finish(current, subgram)
                current = g.copy()

        if subgram is not None:
            self.counters.tick(C.SUBGRAMS)
        if current is not None:
            yield from self._finish(current, subgram)

    def _finish(self, ngram: Gram, subgram: Gram) -> Iterator[Pair]:
        if ngram.frequency < self.min_support:
            self.counters.tick(C.LESS_THAN_MIN_SUPPORT)
            return
        if subgram.type == GramType.HEAD:
            self.ngram_total += ngram.frequency
            self.counters.tick(C.NGRAMS_KEPT)
        yield ngram, subgram
