"""
collocations/gram.py

Records shared by every stage of the pipeline.

Gram
    One counted string: a subgram marginal (HEAD / TAIL), a standalone
    unigram, or a full n-gram window. Identity is (type, text); the
    frequency is a counter that gets summed by the combiner and the
    aggregator.

GramKey
    Composite key used for partitioning, sorting and grouping in phase 1:

        primary   = (type, text) of the subgram (or unigram)
        secondary = ""          for the marginal record itself
                    ngram text  for every NGRAM that depends on it

    Sorting by (type, text, secondary) puts a subgram's marginal record in
    front of all of its n-grams, and the n-grams in byte order. Python str
    ordering is code point ordering, which is also UTF-8 byte ordering.

Terms inside a gram are joined with a single space, e.g. "the quick fox".
"""

from __future__ import annotations

from enum import IntEnum
from typing import Tuple

SEP = " "


class GramType(IntEnum):
    HEAD = 0      # leading subgram of a window (the first n-1 terms)
    TAIL = 1      # trailing term of a window
    UNIGRAM = 2
    NGRAM = 3

    @property
    def is_subgram(self) -> bool:
        return self in (GramType.HEAD, GramType.TAIL)


class Gram:
    __slots__ = ("text", "frequency", "type")

    def __init__(self, text: str, frequency: int = 1, type: GramType = GramType.NGRAM):
        if frequency < 0:
            raise ValueError(f"negative frequency {frequency} for {text!r}")
        self.text = text
        self.frequency = frequency
        self.type = GramType(type)

    @property
    def size(self) -> int:
        """Number of terms."""
        return self.text.count(SEP) + 1 if self.text else 0

    def increment(self, n: int) -> None:
        self.frequency += n

    def copy(self) -> "Gram":
        return Gram(self.text, self.frequency, self.type)

    def identity(self) -> Tuple[int, str]:
        return int(self.type), self.text

    def __eq__(self, other):
        if not isinstance(other, Gram):
            return NotImplemented
        return self.type == other.type and self.text == other.text

    def __hash__(self):
        return hash((int(self.type), self.text))

    def __repr__(self):
        return f"Gram({self.text!r}, {self.frequency}, {self.type.name})"

    def __reduce__(self):
        return (Gram, (self.text, self.frequency, int(self.type)))


class GramKey:
    __slots__ = ("type", "primary", "secondary")

    def __init__(self, type: GramType, primary: str, secondary: str = ""):
        self.type = GramType(type)
        self.primary = primary
        self.secondary = secondary

    @classmethod
    def marginal(cls, gram: Gram) -> "GramKey":
        return cls(gram.type, gram.text, "")

    @classmethod
    def dependent(cls, subgram: Gram, ngram: Gram) -> "GramKey":
        return cls(subgram.type, subgram.text, ngram.text)

    def sort_key(self) -> Tuple[int, str, str]:
        return int(self.type), self.primary, self.secondary

    def group_key(self) -> Tuple[int, str]:
        # secondary only orders records inside a group
        return int(self.type), self.primary

    def __eq__(self, other):
        if not isinstance(other, GramKey):
            return NotImplemented
        return self.sort_key() == other.sort_key()

    def __lt__(self, other):
        return self.sort_key() < other.sort_key()

    def __hash__(self):
        return hash(self.sort_key())

    def __repr__(self):
        if self.secondary:
            return f"GramKey({self.type.name}:{self.primary!r} / {self.secondary!r})"
        return f"GramKey({self.type.name}:{self.primary!r})"

    def __reduce__(self):
        return (GramKey, (int(self.type), self.primary, self.secondary))


def join_terms(terms) -> str:
    return SEP.join(terms)
