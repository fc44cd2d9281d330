"""
collocations/llr.py

Phase-2 reduce: log-likelihood ratio scoring of surviving n-grams.

Each group holds one n-gram and the two subgram marginals phase 1 sent
with it. With N the global n-gram total from phase 1:

                     tail present        tail absent
    head present     k11 = ngram         k12 = head - k11
    head absent      k21 = tail - k11    k22 = N - (head + tail - k11)

    LLR = 2 * sum_ij k_ij * log(k_ij * N / (row_i * col_j))

computed in the entropy form below. Cells equal to zero contribute zero.
"""

from __future__ import annotations

import math
import sys
from typing import Iterable, Optional, Tuple

from collocations import counters as C
from collocations.counters import Counters
from collocations.errors import InconsistentCountsError
from collocations.gram import Gram, GramType


def x_log_x(x: int) -> float:
    return 0.0 if x == 0 else x * math.log(x)


def entropy(*elements: int) -> float:
    """Unnormalized Shannon entropy: x log x of the sum minus sum of x log x."""
    total = 0
    result = 0.0
    for x in elements:
        if x < 0:
            raise InconsistentCountsError(f"negative cell in contingency table: {elements}")
        result += x_log_x(x)
        total += x
    return x_log_x(total) - result


def log_likelihood_ratio(k11: int, k12: int, k21: int, k22: int) -> float:
    row_entropy = entropy(k11, k12) + entropy(k21, k22)
    column_entropy = entropy(k11, k21) + entropy(k12, k22)
    matrix_entropy = entropy(k11, k12, k21, k22)
    if row_entropy + column_entropy > matrix_entropy:
        # round-off
        return 0.0
    return 2.0 * (matrix_entropy - row_entropy - column_entropy)


def contingency(ngram_freq: int, head_freq: int, tail_freq: int, ngram_total: int) -> Tuple[Tuple[int, int, int, int], bool]:
    """
    Build (k11, k12, k21, k22) and report whether k22 had to be clamped.
    A marginal below its own n-gram frequency cannot happen with correct
    phase-1 sums and raises InconsistentCountsError.
    """
    k11 = ngram_freq
    k12 = head_freq - ngram_freq
    k21 = tail_freq - ngram_freq
    if k12 < 0:
        raise InconsistentCountsError(f"head marginal {head_freq} < n-gram frequency {ngram_freq}")
    if k21 < 0:
        raise InconsistentCountsError(f"tail marginal {tail_freq} < n-gram frequency {ngram_freq}")
    # N only counts n-grams that passed min_support while the marginals
    # count every occurrence, so heavy pruning can push this below zero
    k22 = ngram_total - (head_freq + tail_freq - ngram_freq)
    if k22 < 0:
        return (k11, k12, k21, 0), True
    return (k11, k12, k21, k22), False


class LLRScorer:

    def __init__(self, ngram_total: int, min_llr: float, emit_unigrams: bool = False,
                 counters: Counters | None = None, verbose: bool = False):
        self.ngram_total = ngram_total
        self.min_llr = min_llr
        self.emit_unigrams = emit_unigrams
        self.counters = counters if counters is not None else Counters()
        self.verbose = verbose

    def _warn(self, msg: str) -> None:
        if self.verbose:
            print(f"[phase2] {msg}", file=sys.stderr)

    def reduce(self, ngram: Gram, subgrams: Iterable[Gram]) -> Optional[Tuple[str, float]]:
        if ngram.type == GramType.UNIGRAM:
            # no pair statistic for a single term: the frequency stands in as its score
            if not self.emit_unigrams:
                return None
            for _ in subgrams:
                pass
            return ngram.text, float(ngram.frequency)

        freq = {GramType.HEAD: None, GramType.TAIL: None}
        for sub in subgrams:
            if not sub.type.is_subgram:
                raise InconsistentCountsError(f"{sub!r} paired with {ngram.text!r} is not a subgram")
            if freq[sub.type] is not None:
                self.counters.tick(C.EXTRA_HEAD if sub.type == GramType.HEAD else C.EXTRA_TAIL)
                self._warn(f"extra {sub.type.name} {sub!r} for {ngram.text!r}, skipping")
                continue
            freq[sub.type] = sub.frequency

        if freq[GramType.HEAD] is None:
            self.counters.tick(C.MISSING_HEAD)
            self._warn(f"missing head for {ngram.text!r}, skipping")
            return None
        if freq[GramType.TAIL] is None:
            self.counters.tick(C.MISSING_TAIL)
            self._warn(f"missing tail for {ngram.text!r}, skipping")
            return None

        cells, clamped = contingency(ngram.frequency, freq[GramType.HEAD], freq[GramType.TAIL], self.ngram_total)
        if clamped:
            self.counters.tick(C.K22_CLAMPED)
        llr = log_likelihood_ratio(*cells)
        if llr < self.min_llr:
            self.counters.tick(C.LESS_THAN_MIN_LLR)
            return None
        self.counters.tick(C.SCORED)
        return ngram.text, llr
