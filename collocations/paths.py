# collocations/paths.py

import os

# --- Base data paths ---
DATA_DIR = "data"

# --- Default run output (subgrams/ and ngrams/ are created below it) ---
DEFAULT_OUTPUT_DIR = os.path.join(DATA_DIR, "colloc")

# --- Phase output directories, relative to the run output ---
SUBGRAM_OUTPUT_DIRECTORY = "subgrams"   # phase 1: (ngram, subgram) frequency pairs
NGRAM_OUTPUT_DIRECTORY = "ngrams"       # phase 2: ngram<TAB>llr
WORK_DIRECTORY = "_work"                # map-side runs, removed once a phase commits

# --- Pipeline defaults ---
DEFAULT_MAX_NGRAM_SIZE = 2       # 2 = bigrams, 3 = trigrams, ...
DEFAULT_MIN_SUPPORT = 2
DEFAULT_MIN_LLR = 1.0
DEFAULT_NUM_PARTITIONS = 1
DEFAULT_SHARD_SIZE = 50_000      # docs per map task
DEFAULT_SPILL_SIZE = 200_000     # buffered gram records before a sorted run is spilled
DEFAULT_MAX_ATTEMPTS = 2         # tries per task before the phase fails


def part_name(partition: int) -> str:
    return f"part-{partition:05d}.tsv"
