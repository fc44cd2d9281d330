# collocations/driver.py
"""
Two-phase LLR collocation discovery on a local process pool.

Phase 1 (generate collocations)
    map     documents are cut into shards of shard_size docs; each shard is
            one task: tokenize -> shingles -> combiner -> sorted runs,
            one run per partition per spill
            (data/colloc/_work/phase1/map_SSSSSS_KKK_pPPPPP.tsv)
    reduce  one task per partition: k-way merge of that partition's runs,
            group by subgram, support filter
            -> subgrams/part-PPPPP.tsv  (ngram, subgram) pairs
    result  ngram_total = sum of the per-partition totals, read only after
            every reduce task has finished

Phase 2 (prune by LLR)
    map     one task per phase-1 part: re-partition pairs by n-gram, sort
    reduce  one task per partition: k-way merge, group by n-gram, LLR
            -> ngrams/part-PPPPP.tsv  ngram<TAB>llr

Why processes, not threads?
- Tokenization (regex + ftfy) and shingling are CPU-bound.
- The GIL prevents true parallelism with threads for CPU-bound work.

Failure model
- A task that raises is resubmitted until it has used max_attempts.
- A worker process that dies breaks the pool. The pool is rebuilt and
  every task that was in flight is resubmitted, charged one attempt.
- A phase writes into <dir>._tmp and renames it into place only when all
  of its tasks succeeded. Otherwise the temp dir is removed, the phase
  raises DistributedTaskFailure and phase 2 never starts.

How to use:
python -m collocations.driver --input data/collection.tsv --output data/colloc \
    --analyzer default --max-ngram-size 2 --min-support 2 --min-llr 1.0 \
    --num-partitions 4 --workers 4
"""

from __future__ import annotations

import argparse
import dataclasses
import os
import shutil
import sys
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from concurrent.futures.process import BrokenProcessPool
from contextlib import ExitStack
from heapq import merge as kmerge
from typing import Callable, Iterable, List, NamedTuple, Sequence, Tuple

from collocations import counters as C
from collocations.aggregator import SupportFilter
from collocations.analyzers import ANALYZERS, Analyzer, get_analyzer, iter_documents, to_terms
from collocations.combiner import Combiner
from collocations.config import CollocConfig
from collocations.counters import Counters, timeit
from collocations.errors import (
    ComponentInstantiationError,
    ConfigurationError,
    DistributedTaskFailure,
)
from collocations.llr import LLRScorer
from collocations.partition import (
    iter_pair_groups,
    pair_sort_key,
    partition,
    partition_ngram,
    record_sort_key,
)
from collocations.paths import (
    DEFAULT_OUTPUT_DIR,
    NGRAM_OUTPUT_DIRECTORY,
    SUBGRAM_OUTPUT_DIRECTORY,
    WORK_DIRECTORY,
    part_name,
)
from collocations.runio import (
    GramRunReader,
    GramRunWriter,
    PairReader,
    PairWriter,
    ScoreWriter,
    read_scored_ngrams,
)
from collocations.shingles import ShingleGenerator


class Phase1Result(NamedTuple):
    subgram_paths: List[str]
    ngram_total: int
    counters: Counters


class Phase2Result(NamedTuple):
    ngram_paths: List[str]
    counters: Counters


class PipelineResult(NamedTuple):
    phase1: Phase1Result
    phase2: Phase2Result

    def scores(self) -> dict:
        return read_scored_ngrams(self.phase2.ngram_paths)


def _log(verbose: bool, tag: str, msg: str) -> None:
    if verbose:
        print(f"[{tag}] {msg}", file=sys.stderr)


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _fresh_dir(path: str) -> None:
    if os.path.exists(path):
        shutil.rmtree(path)
    os.makedirs(path)


def _shards(documents: Iterable, shard_size: int):
    """Yield lists of up to shard_size documents."""
    batch = []
    for doc in documents:
        batch.append(doc)
        if len(batch) >= shard_size:
            yield batch
            batch = []
    if batch:
        yield batch


# --------------------------
# task runner
# --------------------------

def _call_with_retries(label: str, idx: int, fn: Callable, args: tuple, max_attempts: int, verbose: bool):
    for attempt in range(1, max_attempts + 1):
        try:
            return fn(*args)
        except Exception as e:
            if attempt >= max_attempts:
                raise DistributedTaskFailure(label, idx, attempt, e) from e
            _log(verbose, label, f"task {idx} attempt {attempt} failed: {e!r}, retrying")


def _run_tasks(label: str, fn: Callable, tasks: Iterable[tuple], *, workers: int,
               max_attempts: int, verbose: bool) -> list:
    """
    Run fn(*args) for every args in tasks and return the results in task
    order. Tasks are pulled lazily, at most 2 * workers in flight. The
    first task that runs out of attempts aborts the whole call.

    A worker process that dies (OOM kill, segfault, os._exit) breaks the
    whole pool and there is no telling which task killed it, so every task
    in flight at that moment is charged one attempt and the pool is rebuilt.
    """
    results = {}

    if workers <= 1:
        for i, args in enumerate(tasks):
            results[i] = _call_with_retries(label, i, fn, args, max_attempts, verbose)
        return [results[i] for i in range(len(results))]

    it = enumerate(tasks)
    retry = deque()   # (idx, attempt, args), sent before any new task

    def next_task():
        if retry:
            return retry.popleft()
        nxt = next(it, None)
        if nxt is None:
            return None
        return nxt[0], 1, nxt[1]

    def failed(task, e: BaseException) -> None:
        i, attempt, args = task
        if attempt >= max_attempts:
            raise DistributedTaskFailure(label, i, attempt, e) from e
        _log(verbose, label, f"task {i} attempt {attempt} failed: {e!r}, retrying")
        retry.append((i, attempt + 1, args))

    def feed(ex: ProcessPoolExecutor, pending: dict) -> bool:
        """Keep ex busy until the tasks run dry. True if the pool broke."""

        def submit(task) -> None:
            try:
                pending[ex.submit(fn, *task[2])] = task
            except BrokenProcessPool:
                # never started, so no attempt is charged
                retry.appendleft(task)
                raise

        try:
            for _ in range(2 * workers):
                task = next_task()
                if task is None:
                    break
                submit(task)

            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    try:
                        result = fut.result()
                    except BrokenProcessPool:
                        return True
                    except Exception as e:
                        failed(pending.pop(fut), e)
                    else:
                        results[pending.pop(fut)[0]] = result
                    task = next_task()
                    if task is not None:
                        submit(task)
        except BrokenProcessPool:
            return True
        except BaseException:
            for fut in pending:
                fut.cancel()
            raise
        return False

    while True:
        pending = {}
        with ProcessPoolExecutor(max_workers=workers) as ex:
            broken = feed(ex, pending)
        if not broken:
            break
        # the pool has shut down, so every future left in pending is settled
        _log(verbose, label, f"a worker process died, restarting the pool ({len(pending)} task(s) in flight)")
        for fut, task in sorted(pending.items(), key=lambda kv: kv[1][0]):
            e = fut.exception()
            if e is None:
                results[task[0]] = fut.result()
            else:
                failed(task, e)

    return [results[i] for i in sorted(results)]


# --------------------------
# phase 1 tasks
# --------------------------

def _map_shard(docs: Sequence, shard_idx: int, run_dir: str, config: CollocConfig,
               analyzer: Analyzer | None) -> Tuple[List[List[str]], Counters]:
    """
    Worker: one shard of documents -> sorted runs per partition.
    Returns (run paths indexed by partition, counters). analyzer is the
    instance the driver built; None means the documents are pre-tokenized.
    """
    counters = Counters()
    generator = ShingleGenerator(config.max_ngram_size, config.emit_unigrams)
    num_partitions = config.num_partitions

    runs: List[List[str]] = [[] for _ in range(num_partitions)]
    combiner = Combiner()
    buffer = []
    spill_idx = 0

    def spill():
        nonlocal spill_idx
        if config.combine:
            records = combiner.flush()
        else:
            records = sorted(buffer, key=record_sort_key)
            buffer.clear()
        if not records:
            return
        # records are sorted, so each partition's slice stays sorted
        by_part = [[] for _ in range(num_partitions)]
        for rec in records:
            by_part[partition(rec[0], num_partitions)].append(rec)
        for p, recs in enumerate(by_part):
            if not recs:
                continue
            path = os.path.join(run_dir, f"map_{shard_idx:06d}_{spill_idx:03d}_p{p:05d}.tsv")
            with GramRunWriter(path) as w:
                w.write_all(recs)
            runs[p].append(path)
        counters.tick(C.SPILLS)
        counters.tick(C.SPILLED_RECORDS, len(records))
        spill_idx += 1

    for doc in docs:
        terms = to_terms(doc, analyzer)
        for key, gram in generator.generate(terms, counters):
            counters.tick(C.MAP_RECORDS)
            if config.combine:
                combiner.add(key, gram)
                buffered = len(combiner)
            else:
                buffer.append((key, gram))
                buffered = len(buffer)
            if buffered >= config.spill_size:
                spill()
    spill()
    return runs, counters


def _reduce_subgrams(run_paths: Sequence[str], out_path: str, min_support: int,
                     emit_unigrams: bool) -> Tuple[str, int, Counters]:
    """
    Worker: k-way merge one partition's runs and apply the support filter.
    Returns (out_path, surviving ngram total of this partition, counters).
    """
    counters = Counters()
    sf = SupportFilter(min_support, emit_unigrams, counters)
    with ExitStack() as stack:
        readers = [stack.enter_context(GramRunReader(p)) for p in run_paths]
        stream = kmerge(*readers, key=record_sort_key)
        with PairWriter(out_path) as w:
            w.write_all(sf.reduce_stream(stream))
    return out_path, sf.ngram_total, counters


def generate_collocations(documents: Iterable, output: str, config: CollocConfig) -> Phase1Result:
    """
    pass1: generate n-grams with their subgram marginals and prune by
    min_support. Blocks until every task has finished.
    """
    config.validate()
    analyzer = get_analyzer(config.analyzer)
    v = config.verbose

    work = os.path.join(output, WORK_DIRECTORY, "phase1")
    final = os.path.join(output, SUBGRAM_OUTPUT_DIRECTORY)
    tmp = final + "._tmp"
    _fresh_dir(work)
    _fresh_dir(tmp)

    counters = Counters()
    try:
        with timeit(counters, "MAP_MS"):
            mapped = _run_tasks(
                "phase1.map", _map_shard,
                ((shard, i, work, config, analyzer) for i, shard in enumerate(_shards(documents, config.shard_size))),
                workers=config.workers, max_attempts=config.max_attempts, verbose=v,
            )
        for _, c in mapped:
            counters += c
        _log(v, "phase1", f"map done | shards={len(mapped)} windows={counters[C.NGRAM_WINDOWS]:,} "
                          f"records={counters[C.MAP_RECORDS]:,} spilled={counters[C.SPILLED_RECORDS]:,}")

        reduce_tasks = []
        for p in range(config.num_partitions):
            run_paths = [path for runs, _ in mapped for path in runs[p]]
            reduce_tasks.append((run_paths, os.path.join(tmp, part_name(p)), config.min_support, config.emit_unigrams))

        with timeit(counters, "REDUCE_MS"):
            reduced = _run_tasks(
                "phase1.reduce", _reduce_subgrams, reduce_tasks,
                workers=config.workers, max_attempts=config.max_attempts, verbose=v,
            )
    except BaseException:
        shutil.rmtree(tmp, ignore_errors=True)
        raise
    finally:
        shutil.rmtree(work, ignore_errors=True)

    # every partition is done: the total is final now
    ngram_total = 0
    for _, total, c in reduced:
        ngram_total += total
        counters += c

    _commit(tmp, final)
    paths = [os.path.join(final, part_name(p)) for p in range(config.num_partitions)]
    _log(v, "phase1", f"done | ngram_total={ngram_total:,} kept={counters[C.NGRAMS_KEPT]:,} "
                      f"below_support={counters[C.LESS_THAN_MIN_SUPPORT]:,} -> {final}")
    return Phase1Result(paths, ngram_total, counters)


# --------------------------
# phase 2 tasks
# --------------------------

def _map_pairs(in_path: str, idx: int, run_dir: str, num_partitions: int,
               spill_size: int) -> Tuple[List[List[str]], Counters]:
    """Worker: re-key phase-1 pairs by n-gram into sorted runs per partition."""
    counters = Counters()
    runs: List[List[str]] = [[] for _ in range(num_partitions)]
    by_part = [[] for _ in range(num_partitions)]
    buffered = 0
    spill_idx = 0

    def spill():
        nonlocal buffered, spill_idx
        for p, pairs in enumerate(by_part):
            if not pairs:
                continue
            pairs.sort(key=pair_sort_key)
            path = os.path.join(run_dir, f"map_{idx:06d}_{spill_idx:03d}_p{p:05d}.tsv")
            with PairWriter(path) as w:
                w.write_all(pairs)
            runs[p].append(path)
            pairs.clear()
        counters.tick(C.SPILLS)
        counters.tick(C.SPILLED_RECORDS, buffered)
        buffered = 0
        spill_idx += 1

    with PairReader(in_path) as r:
        for ngram, subgram in r:
            by_part[partition_ngram(ngram, num_partitions)].append((ngram, subgram))
            buffered += 1
            counters.tick(C.MAP_RECORDS)
            if buffered >= spill_size:
                spill()
    if buffered:
        spill()
    return runs, counters


def _reduce_ngrams(run_paths: Sequence[str], out_path: str, ngram_total: int, min_llr: float,
                   emit_unigrams: bool, verbose: bool) -> Tuple[str, Counters]:
    """Worker: k-way merge one partition's pairs and score every n-gram."""
    counters = Counters()
    scorer = LLRScorer(ngram_total, min_llr, emit_unigrams, counters, verbose)
    with ExitStack() as stack:
        readers = [stack.enter_context(PairReader(p)) for p in run_paths]
        stream = kmerge(*readers, key=pair_sort_key)
        with ScoreWriter(out_path) as w:
            for ngram, subgrams in iter_pair_groups(stream):
                scored = scorer.reduce(ngram, subgrams)
                if scored is not None:
                    w.add(*scored)
    return out_path, counters


def compute_ngrams_prune_by_llr(subgram_paths: Sequence[str], output: str, ngram_total: int,
                                config: CollocConfig) -> Phase2Result:
    """
    pass2: score every surviving n-gram against the finished phase-1 total
    and drop the ones below min_llr.
    """
    config.validate()
    if ngram_total < 0:
        raise ConfigurationError(f"ngram_total must be >= 0, got {ngram_total}")
    v = config.verbose

    work = os.path.join(output, WORK_DIRECTORY, "phase2")
    final = os.path.join(output, NGRAM_OUTPUT_DIRECTORY)
    tmp = final + "._tmp"
    _fresh_dir(work)
    _fresh_dir(tmp)

    counters = Counters()
    try:
        with timeit(counters, "MAP_MS"):
            mapped = _run_tasks(
                "phase2.map", _map_pairs,
                [(p, i, work, config.num_partitions, config.spill_size) for i, p in enumerate(subgram_paths)],
                workers=config.workers, max_attempts=config.max_attempts, verbose=v,
            )
        for _, c in mapped:
            counters += c

        reduce_tasks = []
        for p in range(config.num_partitions):
            run_paths = [path for runs, _ in mapped for path in runs[p]]
            reduce_tasks.append((run_paths, os.path.join(tmp, part_name(p)), ngram_total,
                                 config.min_llr, config.emit_unigrams, v))

        with timeit(counters, "REDUCE_MS"):
            reduced = _run_tasks(
                "phase2.reduce", _reduce_ngrams, reduce_tasks,
                workers=config.workers, max_attempts=config.max_attempts, verbose=v,
            )
    except BaseException:
        shutil.rmtree(tmp, ignore_errors=True)
        raise
    finally:
        shutil.rmtree(work, ignore_errors=True)

    for _, c in reduced:
        counters += c

    _commit(tmp, final)
    paths = [os.path.join(final, part_name(p)) for p in range(config.num_partitions)]
    _log(v, "phase2", f"done | scored={counters[C.SCORED]:,} below_llr={counters[C.LESS_THAN_MIN_LLR]:,} "
                      f"clamped={counters[C.K22_CLAMPED]:,} -> {final}")
    return Phase2Result(paths, counters)


def _commit(tmp: str, final: str) -> None:
    if os.path.exists(final):
        shutil.rmtree(final)
    os.replace(tmp, final)


# --------------------------
# main driver
# --------------------------

def run_pipeline(documents: Iterable, output: str = DEFAULT_OUTPUT_DIR, config: CollocConfig | None = None,
                 *, overwrite: bool = False) -> PipelineResult:
    """
    Validate, run phase 1, then phase 2 with phase 1's ngram_total.
    Raises ConfigurationError / ComponentInstantiationError before any
    task runs, DistributedTaskFailure if a phase fails.
    """
    config = (config or CollocConfig()).validate()
    get_analyzer(config.analyzer)

    for sub in (SUBGRAM_OUTPUT_DIRECTORY, NGRAM_OUTPUT_DIRECTORY):
        existing = os.path.join(output, sub)
        if os.path.exists(existing) and not overwrite:
            raise ConfigurationError(f"{existing} already exists (pass overwrite=True to replace it)")
    if overwrite:
        for sub in (SUBGRAM_OUTPUT_DIRECTORY, NGRAM_OUTPUT_DIRECTORY):
            shutil.rmtree(os.path.join(output, sub), ignore_errors=True)
    ensure_dir(output)

    v = config.verbose
    _log(v, "colloc", f"max_ngram_size={config.max_ngram_size} min_support={config.min_support} "
                      f"min_llr={config.min_llr} partitions={config.num_partitions} "
                      f"emit_unigrams={config.emit_unigrams} analyzer={config.analyzer or '(pre-tokenized)'}")

    phase1 = generate_collocations(documents, output, config)
    phase2 = compute_ngrams_prune_by_llr(phase1.subgram_paths, output, phase1.ngram_total, config)

    work_root = os.path.join(output, WORK_DIRECTORY)
    if os.path.isdir(work_root) and not os.listdir(work_root):
        os.rmdir(work_root)

    _log(v, "colloc", f"phase1 counters: {phase1.counters.summary()}")
    _log(v, "colloc", f"phase2 counters: {phase2.counters.summary()}")
    return PipelineResult(phase1, phase2)


def generate_all_grams(documents: Iterable, output: str = DEFAULT_OUTPUT_DIR, config: CollocConfig | None = None,
                       *, overwrite: bool = False) -> PipelineResult:
    """run_pipeline() with emit_unigrams forced on: unigrams come out next to the collocations."""
    config = dataclasses.replace(config or CollocConfig(), emit_unigrams=True)
    return run_pipeline(documents, output, config, overwrite=overwrite)


def main(argv: Sequence[str] | None = None) -> int:
    defaults = CollocConfig()
    ap = argparse.ArgumentParser(description="LLR collocation discovery (two-phase map/reduce).")
    ap.add_argument("--input", required=True, help="Input TSV, docid<TAB>text per line")
    ap.add_argument("--output", default=DEFAULT_OUTPUT_DIR, help="Output dir (subgrams/ and ngrams/ go here)")
    ap.add_argument("--max-ngram-size", type=int, default=defaults.max_ngram_size,
                    help="Max size of ngrams to create (2 = bigrams, 3 = trigrams, ...)")
    ap.add_argument("--min-support", type=int, default=defaults.min_support, help="Minimum n-gram frequency")
    ap.add_argument("--min-llr", type=float, default=defaults.min_llr, help="Minimum log-likelihood ratio")
    ap.add_argument("--num-partitions", type=int, default=defaults.num_partitions, help="Reduce tasks per phase")
    ap.add_argument("--emit-unigrams", action="store_true", help="Emit unigrams alongside collocations")
    ap.add_argument("--analyzer", default=None, choices=sorted(ANALYZERS),
                    help="Tokenize raw text with this analyzer; omit if the text column is already tokenized")
    ap.add_argument("--workers", type=int, default=max(1, (os.cpu_count() or 2) // 2), help="#processes")
    ap.add_argument("--shard-size", type=int, default=defaults.shard_size, help="Docs per map task")
    ap.add_argument("--spill-size", type=int, default=defaults.spill_size, help="Buffered records per spill")
    ap.add_argument("--no-combine", action="store_true", help="Spill raw map output without combining")
    ap.add_argument("--max-attempts", type=int, default=defaults.max_attempts, help="Tries per task")
    ap.add_argument("--limit", type=int, default=None, help="Only read the first N input lines")
    ap.add_argument("--overwrite", action="store_true", help="Replace existing phase outputs")
    ap.add_argument("--quiet", action="store_true", help="Less logging.")
    args = ap.parse_args(argv)

    config = CollocConfig(
        max_ngram_size=args.max_ngram_size,
        min_support=args.min_support,
        min_llr=args.min_llr,
        num_partitions=args.num_partitions,
        emit_unigrams=args.emit_unigrams,
        analyzer=args.analyzer,
        workers=args.workers,
        shard_size=args.shard_size,
        spill_size=args.spill_size,
        combine=not args.no_combine,
        max_attempts=args.max_attempts,
        verbose=not args.quiet,
    )

    if not os.path.exists(args.input):
        print(f"No such input: {args.input}", file=sys.stderr)
        return 2

    try:
        result = run_pipeline(iter_documents(args.input, limit=args.limit), args.output, config,
                              overwrite=args.overwrite)
    except (ConfigurationError, ComponentInstantiationError) as e:
        print(f"[colloc] invalid setup: {e}", file=sys.stderr)
        return 2
    except DistributedTaskFailure as e:
        print(f"[colloc] FAILED: {e}", file=sys.stderr)
        return 1

    # Print outputs (one per line) so the caller can pipe them on
    for p in result.phase2.ngram_paths:
        print(p)
    return 0


if __name__ == "__main__":
    sys.exit(main())
