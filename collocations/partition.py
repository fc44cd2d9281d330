"""
collocations/partition.py

Routing and grouping contract of the shuffle.

- partition(): which reduce task gets a record. Only the primary part of
  the key (subgram type + text) is hashed, so a subgram's marginal and
  every n-gram hanging off it land in the same partition.
- record_sort_key(): full-key order inside a partition (marginal first,
  then n-grams in byte order).
- iter_groups(): splits a sorted stream into one group per primary,
  lazily, so a reducer never holds a whole group in memory.

The hash must agree between worker processes, so it is a blake2b digest
of the UTF-8 bytes and not Python's salted hash().
"""

from __future__ import annotations

import hashlib
from itertools import groupby
from typing import Iterable, Iterator, Tuple

from collocations.gram import Gram, GramKey

Record = Tuple[GramKey, Gram]


def stable_hash(type_code: int, text: str) -> int:
    h = hashlib.blake2b(bytes([type_code]) + text.encode("utf-8"), digest_size=8)
    return int.from_bytes(h.digest(), "big")


def partition(key: GramKey, num_partitions: int) -> int:
    """Phase 1: partition by primary (subgram) only."""
    return stable_hash(int(key.type), key.primary) % num_partitions


def partition_ngram(ngram: Gram, num_partitions: int) -> int:
    """Phase 2: partition (ngram, subgram) pairs by the n-gram."""
    return stable_hash(int(ngram.type), ngram.text) % num_partitions


def record_sort_key(record: Record):
    return record[0].sort_key()


def pair_sort_key(pair: Tuple[Gram, Gram]):
    ngram, subgram = pair
    return int(ngram.type), ngram.text, int(subgram.type), subgram.text


def iter_groups(records: Iterable[Record]) -> Iterator[Tuple[GramKey, Iterator[Gram]]]:
    """
    Group a stream already sorted by record_sort_key.
    Yields (first key of the group, iterator over the group's grams).
    The inner iterator must be consumed before advancing to the next group.
    """
    for _, grp in groupby(records, key=lambda r: r[0].group_key()):
        first_key, first_gram = next(grp)
        yield first_key, _chain_grams(first_gram, grp)


def iter_pair_groups(pairs: Iterable[Tuple[Gram, Gram]]) -> Iterator[Tuple[Gram, Iterator[Gram]]]:
    """Phase 2 grouping: one group per n-gram, yielding its subgrams."""
    for _, grp in groupby(pairs, key=lambda p: p[0].identity()):
        ngram, subgram = next(grp)
        yield ngram, _chain_grams(subgram, grp)


def _chain_grams(first, rest):
    yield first
    for pair in rest:
        yield pair[1]
