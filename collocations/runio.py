"""
Utilities for writing and reading the intermediate *sorted* runs and the
phase outputs, all as plain TSV:

    gram runs   (phase-1 map output, one per partition per spill)
        key_type<TAB>primary<TAB>secondary<TAB>gram_type<TAB>text<TAB>freq
    pair files  (phase-1 output / phase-2 map output)
        ngram_type<TAB>ngram<TAB>ngram_freq<TAB>sub_type<TAB>subgram<TAB>sub_freq
    score files (phase-2 output)
        ngram<TAB>score

Types are written as their integer GramType value. analyzers.check_terms()
rejects terms holding whitespace before shingling, so no field contains a
tab or a newline and no escaping is done.
"""

from __future__ import annotations

import glob
import os
from typing import Dict, Iterable, List, Tuple

from collocations.gram import Gram, GramKey, GramType


class _TsvWriter:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __init__(self, path: str):
        self.path = path
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._f = open(path, "w", encoding="utf-8", newline="\n")
        self.rows = 0

    def _write(self, *fields) -> None:
        self._f.write("\t".join(str(x) for x in fields))
        self._f.write("\n")
        self.rows += 1

    def close(self):
        if not self._f.closed:
            self._f.close()


class _TsvReader:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __init__(self, path: str):
        self.path = path
        self._f = open(path, "r", encoding="utf-8", newline="\n")

    def __iter__(self):
        return self

    def _next_fields(self) -> List[str]:
        line = self._f.readline()
        if not line:
            self._f.close()
            raise StopIteration
        return line.rstrip("\n").split("\t")

    def close(self):
        if not self._f.closed:
            self._f.close()


class GramRunWriter(_TsvWriter):
    """
    Writes one sorted map-side run. Call add() in GramKey order; the
    writer does not sort.
    """

    def add(self, key: GramKey, gram: Gram) -> None:
        self._write(int(key.type), key.primary, key.secondary, int(gram.type), gram.text, gram.frequency)

    def write_all(self, records: Iterable[Tuple[GramKey, Gram]]) -> None:
        for key, gram in records:
            self.add(key, gram)


class GramRunReader(_TsvReader):
    """Yields (GramKey, Gram) in file order."""

    def __next__(self) -> Tuple[GramKey, Gram]:
        kt, primary, secondary, gt, text, freq = self._next_fields()
        return GramKey(GramType(int(kt)), primary, secondary), Gram(text, int(freq), GramType(int(gt)))


class PairWriter(_TsvWriter):

    def add(self, ngram: Gram, subgram: Gram) -> None:
        self._write(int(ngram.type), ngram.text, ngram.frequency, int(subgram.type), subgram.text, subgram.frequency)

    def write_all(self, pairs: Iterable[Tuple[Gram, Gram]]) -> None:
        for ngram, subgram in pairs:
            self.add(ngram, subgram)


class PairReader(_TsvReader):
    """Yields (ngram, subgram) Gram pairs."""

    def __next__(self) -> Tuple[Gram, Gram]:
        nt, ntext, nfreq, st, stext, sfreq = self._next_fields()
        return Gram(ntext, int(nfreq), GramType(int(nt))), Gram(stext, int(sfreq), GramType(int(st)))


class ScoreWriter(_TsvWriter):

    def add(self, text: str, score: float) -> None:
        # repr() keeps every digit of the float
        self._write(text, repr(float(score)))


class ScoreReader(_TsvReader):

    def __next__(self) -> Tuple[str, float]:
        text, score = self._next_fields()
        return text, float(score)


def read_scored_ngrams(paths: Iterable[str]) -> Dict[str, float]:
    """Collect phase-2 output files into {ngram: score}."""
    out: Dict[str, float] = {}
    for p in paths:
        with ScoreReader(p) as r:
            for text, score in r:
                out[text] = score
    return out


def list_parts(directory: str) -> List[str]:
    return sorted(glob.glob(os.path.join(directory, "part-*.tsv")))
