"""
collocations/shingles.py

Phase-1 map stage: slide windows over one document's terms and emit the
candidate grams.

For every window of size n >= 2, split into the leading subgram (first n-1
terms) and the trailing term:

    the quick fox  ->  head "the quick", tail "fox"

and emit four records, each with frequency 1:

    (HEAD "the quick" | "")              Gram("the quick", HEAD)
    (HEAD "the quick" | "the quick fox") Gram("the quick fox", NGRAM)
    (TAIL "fox"       | "")              Gram("fox", TAIL)
    (TAIL "fox"       | "the quick fox") Gram("the quick fox", NGRAM)

The n-gram is sent under both subgrams so that each aggregator sees it next
to the marginal it needs. Unigrams are emitted as UNIGRAM grams only when
emit_unigrams is set. Windows never cross a document; a trailing window
shorter than n is dropped.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence, Tuple

from collocations import counters as C
from collocations.counters import Counters
from collocations.gram import Gram, GramKey, GramType, join_terms

Record = Tuple[GramKey, Gram]


class ShingleGenerator:

    def __init__(self, max_ngram_size: int = 2, emit_unigrams: bool = False):
        self.max_ngram_size = max_ngram_size
        self.emit_unigrams = emit_unigrams

    @staticmethod
    def windows(terms: Sequence[str], n: int) -> Iterator[Sequence[str]]:
        """The len(terms) - n + 1 contiguous windows of size n (none if n > len)."""
        for i in range(len(terms) - n + 1):
            yield terms[i : i + n]

    def generate(self, terms: Sequence[str], counters: Counters | None = None) -> Iterator[Record]:
        terms = list(terms)
        if self.emit_unigrams:
            for (term,) in self.windows(terms, 1):
                if counters is not None:
                    counters.tick(C.UNIGRAM_WINDOWS)
                unigram = Gram(term, 1, GramType.UNIGRAM)
                yield GramKey.marginal(unigram), unigram

        for n in range(2, self.max_ngram_size + 1):
            for window in self.windows(terms, n):
                if counters is not None:
                    counters.tick(C.NGRAM_WINDOWS)
                yield from self._emit_window(window)

    @staticmethod
    def _emit_window(window: Sequence[str]) -> List[Record]:
        text = join_terms(window)
        head = Gram(join_terms(window[:-1]), 1, GramType.HEAD)
        tail = Gram(window[-1], 1, GramType.TAIL)
        return [
            (GramKey.marginal(head), head),
            (GramKey.dependent(head, Gram(text)), Gram(text, 1, GramType.NGRAM)),
            (GramKey.marginal(tail), tail),
            (GramKey.dependent(tail, Gram(text)), Gram(text, 1, GramType.NGRAM)),
        ]
