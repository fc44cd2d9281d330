"""
collocations/combiner.py

Local pre-aggregation of map output.

Records with the same key and the same gram (type + text) are folded into
one record whose frequency is the sum. Nothing else happens, so the
combiner can run on any subset of the records, any number of times, or not
at all, and the aggregator still ends up with the same totals.

The map task feeds every generated record into a Combiner and calls
flush() whenever it wants to spill (every spill_size buffered records and
at the end of the shard).
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from collocations.gram import Gram, GramKey

Record = Tuple[GramKey, Gram]


class Combiner:

    def __init__(self):
        self._acc: Dict[tuple, Record] = {}

    def add(self, key: GramKey, gram: Gram) -> None:
        slot = key.sort_key() + gram.identity()
        hit = self._acc.get(slot)
        if hit is None:
            # own copy: callers may keep mutating the gram they passed in
            self._acc[slot] = (key, gram.copy())
        else:
            hit[1].increment(gram.frequency)

    def extend(self, records: Iterable[Record]) -> None:
        for key, gram in records:
            self.add(key, gram)

    def __len__(self):
        return len(self._acc)

    def flush(self) -> List[Record]:
        """Merged records in sort order; the buffer is empty afterwards."""
        out = [self._acc[slot] for slot in sorted(self._acc)]
        self._acc.clear()
        return out


def combine(records: Iterable[Record]) -> List[Record]:
    c = Combiner()
    c.extend(records)
    return c.flush()
