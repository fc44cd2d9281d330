"""
End-to-end runs of both phases through the driver.
"""

import os
from concurrent.futures.process import BrokenProcessPool

import pytest

from collocations import counters as C
from collocations import driver
from collocations.analyzers import ANALYZERS
from collocations.combiner import combine
from collocations.config import CollocConfig
from collocations.driver import compute_ngrams_prune_by_llr, generate_all_grams, generate_collocations, main, run_pipeline
from collocations.errors import (
    ComponentInstantiationError,
    ConfigurationError,
    DistributedTaskFailure,
    InconsistentCountsError,
    InvalidTermError,
)
from collocations.gram import GramType
from collocations.paths import NGRAM_OUTPUT_DIRECTORY, SUBGRAM_OUTPUT_DIRECTORY, WORK_DIRECTORY
from collocations.runio import GramRunReader, GramRunWriter, read_scored_ngrams

from corpus import EXAMPLE_DOCS, CrashingAnalyzer, generate_document, random_corpus, read_pairs

EXAMPLE_CONFIG = CollocConfig(max_ngram_size=2, min_support=1, min_llr=0.0)


@pytest.fixture(scope="module")
def example_run(tmp_path_factory):
    out = tmp_path_factory.mktemp("example") / "out"
    return str(out), run_pipeline(EXAMPLE_DOCS, str(out), EXAMPLE_CONFIG)


def test_example_phase1(example_run):
    _, result = example_run
    assert result.phase1.ngram_total == 6
    pairs = list(read_pairs(result.phase1.subgram_paths))
    heads = {n.text: (n.frequency, s.text, s.frequency) for n, s in pairs if s.type == GramType.HEAD}
    assert heads == {
        "the quick": (2, "the", 3),
        "quick fox": (1, "quick", 2),
        "quick dog": (1, "quick", 2),
        "the lazy": (1, "the", 3),
        "lazy fox": (1, "lazy", 1),
    }


def test_example_phase2(example_run):
    _, result = example_run
    scores = result.scores()
    assert set(scores) == {"the quick", "quick fox", "quick dog", "the lazy", "lazy fox"}
    assert max(scores, key=scores.get) == "the quick"
    assert all(s >= 0.0 for s in scores.values())


def test_example_output_layout(example_run):
    out, result = example_run
    assert sorted(os.listdir(out)) == [NGRAM_OUTPUT_DIRECTORY, SUBGRAM_OUTPUT_DIRECTORY]
    with open(result.phase2.ngram_paths[0], encoding="utf-8") as f:
        for line in f:
            text, score = line.rstrip("\n").split("\t")
            float(score)
            assert " " in text


def test_counters_reported(example_run):
    _, result = example_run
    assert result.phase1.counters[C.NGRAM_WINDOWS] == 6
    assert result.phase1.counters[C.NGRAMS_KEPT] == 5
    assert result.phase2.counters[C.SCORED] == 5


def _scores(tmp_path, name, docs, **kw):
    config = CollocConfig(**{"min_support": 1, "min_llr": 0.0, **kw})
    return run_pipeline(docs, str(tmp_path / name), config).scores()


def test_deterministic_rerun(tmp_path):
    docs = random_corpus(5, n_docs=80)
    a = _scores(tmp_path, "a", docs, max_ngram_size=3)
    b = _scores(tmp_path, "b", docs, max_ngram_size=3)
    assert a == b


@pytest.mark.parametrize("kw", [
    {"num_partitions": 4},
    {"num_partitions": 3, "shard_size": 7, "spill_size": 13},
    {"combine": False, "spill_size": 50},
    {"num_partitions": 2, "workers": 2, "shard_size": 10},
])
def test_layout_does_not_change_scores(tmp_path, kw):
    docs = random_corpus(8, n_docs=60)
    base = _scores(tmp_path, "base", docs, max_ngram_size=3)
    got = _scores(tmp_path, "got", docs, max_ngram_size=3, **kw)
    assert got.keys() == base.keys()
    for text, score in base.items():
        assert got[text] == pytest.approx(score)


def test_min_llr_prunes(tmp_path):
    docs = random_corpus(21, n_docs=80)
    everything = _scores(tmp_path, "all", docs)
    cut = sorted(everything.values())[len(everything) // 2]
    kept = _scores(tmp_path, "cut", docs, min_llr=cut)
    assert kept == {t: s for t, s in everything.items() if s >= cut}


def test_min_support_prunes(tmp_path):
    docs = EXAMPLE_DOCS
    scores = _scores(tmp_path, "ms2", docs, min_support=2)
    assert set(scores) == {"the quick"}


def test_unigrams_emitted_with_frequency(tmp_path):
    scores = _scores(tmp_path, "uni", EXAMPLE_DOCS, emit_unigrams=True)
    assert scores["the"] == 3.0
    assert scores["dog"] == 1.0
    assert "the quick" in scores


def test_trigrams(tmp_path):
    docs = [["new", "york", "city"]] * 3 + [["new", "york", "times"], ["old", "york", "city"]]
    scores = _scores(tmp_path, "tri", docs, max_ngram_size=3)
    assert {"new york city", "new york times", "old york city"} <= set(scores)
    assert {"new york", "york city"} <= set(scores)


def test_raw_text_with_analyzer(tmp_path):
    docs = ["The Quick fox!", "the quick DOG.", "The lazy fox"]
    scores = _scores(tmp_path, "raw", docs, analyzer="default")
    assert max(scores, key=scores.get) == "the quick"


def test_unknown_analyzer_fails_before_any_work(tmp_path):
    out = tmp_path / "never"
    with pytest.raises(ComponentInstantiationError):
        run_pipeline(EXAMPLE_DOCS, str(out), CollocConfig(analyzer="nope"))
    assert not out.exists()


def test_bad_config_fails_before_any_work(tmp_path):
    out = tmp_path / "never"
    with pytest.raises(ConfigurationError):
        run_pipeline(EXAMPLE_DOCS, str(out), CollocConfig(max_ngram_size=1))
    assert not out.exists()


def test_existing_output_needs_overwrite(tmp_path):
    out = str(tmp_path / "out")
    run_pipeline(EXAMPLE_DOCS, out, EXAMPLE_CONFIG)
    with pytest.raises(ConfigurationError, match="already exists"):
        run_pipeline(EXAMPLE_DOCS, out, EXAMPLE_CONFIG)
    again = run_pipeline(EXAMPLE_DOCS, out, EXAMPLE_CONFIG, overwrite=True)
    assert len(again.scores()) == 5


def test_empty_corpus(tmp_path):
    result = run_pipeline([], str(tmp_path / "empty"), EXAMPLE_CONFIG)
    assert result.phase1.ngram_total == 0
    assert result.scores() == {}


def test_phase1_failure_publishes_nothing(tmp_path, monkeypatch):
    def boom(*args):
        raise OSError("disk on fire")

    monkeypatch.setattr(driver, "_reduce_subgrams", boom)
    out = tmp_path / "out"
    with pytest.raises(DistributedTaskFailure) as ei:
        run_pipeline(EXAMPLE_DOCS, str(out), CollocConfig(min_support=1, max_attempts=3))
    assert ei.value.phase == "phase1.reduce"
    assert ei.value.attempts == 3
    assert isinstance(ei.value.cause, OSError)
    assert not (out / SUBGRAM_OUTPUT_DIRECTORY).exists()
    assert not (out / NGRAM_OUTPUT_DIRECTORY).exists()
    assert not (out / (SUBGRAM_OUTPUT_DIRECTORY + "._tmp")).exists()
    assert not (out / WORK_DIRECTORY / "phase1").exists()


def test_flaky_task_is_retried(tmp_path, monkeypatch):
    real = driver._map_shard
    calls = {"n": 0}

    def flaky(*args):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("lost worker")
        return real(*args)

    monkeypatch.setattr(driver, "_map_shard", flaky)
    result = run_pipeline(EXAMPLE_DOCS, str(tmp_path / "out"), CollocConfig(min_support=1, min_llr=0.0, max_attempts=2))
    assert calls["n"] == 2
    assert len(result.scores()) == 5


def _crashing(monkeypatch):
    monkeypatch.setitem(ANALYZERS, CrashingAnalyzer.name, CrashingAnalyzer)
    return CollocConfig(min_support=1, min_llr=0.0, analyzer=CrashingAnalyzer.name,
                        workers=2, shard_size=1, max_attempts=3)


def test_dead_worker_gets_a_new_pool(tmp_path, monkeypatch):
    config = _crashing(monkeypatch)
    marker = tmp_path / "crashed-once"
    docs = [f"crash:{marker} the quick fox", "the quick dog", "the lazy fox"]
    result = run_pipeline(docs, str(tmp_path / "out"), config)
    assert marker.exists()
    scores = result.scores()
    assert set(scores) == {"the quick", "quick fox", "quick dog", "the lazy", "lazy fox"}
    assert max(scores, key=scores.get) == "the quick"


def test_worker_that_always_dies_fails_the_phase(tmp_path, monkeypatch):
    config = _crashing(monkeypatch)
    out = tmp_path / "out"
    docs = ["crash:always the quick fox", "the quick dog", "the lazy fox"]
    with pytest.raises(DistributedTaskFailure) as ei:
        run_pipeline(docs, str(out), config)
    assert ei.value.phase == "phase1.map"
    assert ei.value.attempts == 3
    assert isinstance(ei.value.cause, BrokenProcessPool)
    assert not (out / SUBGRAM_OUTPUT_DIRECTORY).exists()
    assert not (out / (SUBGRAM_OUTPUT_DIRECTORY + "._tmp")).exists()


def test_cli_reports_dead_worker(tmp_path, monkeypatch, capsys):
    _crashing(monkeypatch)
    corpus = tmp_path / "toy.tsv"
    corpus.write_text("1\tcrash:always the quick fox\n2\tthe quick dog\n", encoding="utf-8")
    rc = main(["--input", str(corpus), "--output", str(tmp_path / "out"), "--analyzer", CrashingAnalyzer.name,
               "--min-support", "1", "--workers", "2", "--max-attempts", "2", "--quiet"])
    assert rc == 1
    assert "FAILED" in capsys.readouterr().err


def test_registered_analyzer_reaches_workers(tmp_path, monkeypatch):
    config = _crashing(monkeypatch)
    scores = run_pipeline(["The quick fox", "the QUICK dog"], str(tmp_path / "out"), config).scores()
    assert set(scores) == {"the quick", "quick fox", "quick dog"}


@pytest.mark.parametrize("docs", [
    [["new york", "city"], ["new", "york city"]],
    [["a\tb", "c"]],
    [["a", "b\n"]],
    [["a", "", "b"]],
])
@pytest.mark.parametrize("workers", [1, 2])
def test_terms_that_cannot_be_joined_are_rejected(tmp_path, docs, workers):
    out = tmp_path / "out"
    with pytest.raises(DistributedTaskFailure) as ei:
        run_pipeline(docs, str(out), CollocConfig(min_support=1, workers=workers, max_attempts=1))
    assert ei.value.phase == "phase1.map"
    assert isinstance(ei.value.cause, InvalidTermError)
    assert not (out / SUBGRAM_OUTPUT_DIRECTORY).exists()


def test_generate_all_grams_emits_unigrams(tmp_path):
    result = generate_all_grams(EXAMPLE_DOCS, str(tmp_path / "out"), EXAMPLE_CONFIG)
    scores = result.scores()
    assert scores["the"] == 3.0
    assert scores["fox"] == 2.0
    assert "the quick" in scores
    assert EXAMPLE_CONFIG.emit_unigrams is False


def test_inconsistent_counts_fail_phase2(tmp_path):
    out = str(tmp_path / "out")
    phase1 = generate_collocations(EXAMPLE_DOCS, out, EXAMPLE_CONFIG)
    # corrupt one head marginal below its n-gram's frequency
    path = phase1.subgram_paths[0]
    with open(path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    fixed = []
    for line in lines:
        f = line.split("\t")
        if f[1] == "the quick" and f[4] == "the":
            f[5] = "1"
        fixed.append("\t".join(f))
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(fixed) + "\n")

    with pytest.raises(DistributedTaskFailure) as ei:
        compute_ngrams_prune_by_llr(phase1.subgram_paths, out, phase1.ngram_total, EXAMPLE_CONFIG)
    assert isinstance(ei.value.cause, InconsistentCountsError)
    assert not os.path.exists(os.path.join(out, NGRAM_OUTPUT_DIRECTORY))


def test_phase2_takes_total_explicitly(tmp_path):
    out = str(tmp_path / "out")
    phase1 = generate_collocations(EXAMPLE_DOCS, out, EXAMPLE_CONFIG)
    small = compute_ngrams_prune_by_llr(phase1.subgram_paths, out, phase1.ngram_total, EXAMPLE_CONFIG)
    small_scores = read_scored_ngrams(small.ngram_paths)
    big = compute_ngrams_prune_by_llr(phase1.subgram_paths, out, 1000, EXAMPLE_CONFIG)
    big_scores = read_scored_ngrams(big.ngram_paths)
    assert small_scores.keys() == big_scores.keys()
    assert small_scores != big_scores


def test_cli(tmp_path, capsys):
    corpus = tmp_path / "toy.tsv"
    corpus.write_text("1\tThe quick fox\n2\tThe quick dog\n3\tThe lazy fox\n", encoding="utf-8")
    out = tmp_path / "out"
    rc = main(["--input", str(corpus), "--output", str(out), "--analyzer", "default",
               "--min-support", "1", "--min-llr", "0", "--workers", "1", "--quiet"])
    assert rc == 0
    printed = capsys.readouterr().out.split()
    assert printed == [os.path.join(str(out), NGRAM_OUTPUT_DIRECTORY, "part-00000.tsv")]
    assert "the quick" in read_scored_ngrams(printed)


def test_cli_rejects_bad_ngram_size(tmp_path):
    corpus = tmp_path / "toy.tsv"
    corpus.write_text("1\ta b c\n", encoding="utf-8")
    rc = main(["--input", str(corpus), "--output", str(tmp_path / "out"), "--max-ngram-size", "1", "--quiet"])
    assert rc == 2


def test_reduce_closes_runs_it_opened_when_one_is_missing(tmp_path, monkeypatch):
    good = tmp_path / "run.tsv"
    with GramRunWriter(str(good)) as w:
        w.write_all(combine(generate_document(["the", "quick", "fox"])))

    opened = []

    class TrackingReader(GramRunReader):
        def __init__(self, path):
            super().__init__(path)
            opened.append(self)

    monkeypatch.setattr(driver, "GramRunReader", TrackingReader)
    with pytest.raises(FileNotFoundError):
        driver._reduce_subgrams([str(good), str(tmp_path / "missing.tsv")], str(tmp_path / "part.tsv"), 1, False)
    assert len(opened) == 1
    assert opened[0]._f.closed
