"""
collocations/analyzers.py

Tokenizers ("analyzers") that turn a raw document into the ordered term
sequence the shingle generator slides over, plus readers for the TSV
corpus format (docid<TAB>text).

Analyzers are picked by name from ANALYZERS. get_analyzer() builds one
right away so a bad name or a broken constructor fails before any task is
scheduled. The driver then ships that instance to the workers with every
map task, so the registry is only read in the parent process and an
analyzer added with register_analyzer() works under any start method. The
instance has to pickle: define the class at module level.

    default     ftfy + html unescape, lowercase, keeps "u.s" / "3.14" whole
    whitespace  lowercase + split, for corpora that are already tokenized
    html        strips markup with BeautifulSoup, then the default rules
"""

from __future__ import annotations

import html
import re
from typing import Dict, Iterator, List, Optional, Tuple, Type

from bs4 import BeautifulSoup
from ftfy import fix_text

from collocations.errors import ComponentInstantiationError, InvalidTermError

TOKEN_RE = re.compile(r"[a-z0-9]+(?:[.-][a-z0-9]+)*")
BAD_TERM_RE = re.compile(r"\s")


class Analyzer:
    """tokenize(text) -> list of normalized terms, in document order."""

    name = "base"

    def tokenize(self, text: str) -> List[str]:
        raise NotImplementedError


class RegexAnalyzer(Analyzer):
    """
    Clean and tokenize a raw text string.
    - Fix mojibake (ftfy), unescape HTML entities
    - Lowercase and keep tokens like 'u.s.' or '3.14' as a single token
    - Return [] if nothing remains after tokenization
    """

    name = "default"

    def tokenize(self, text: str) -> List[str]:
        text = fix_text(html.unescape(text))
        return TOKEN_RE.findall(text.lower())


class WhitespaceAnalyzer(Analyzer):
    name = "whitespace"

    def tokenize(self, text: str) -> List[str]:
        return text.lower().split()


class HtmlAnalyzer(RegexAnalyzer):
    """Drops tags, scripts and styles, then tokenizes the visible text."""

    name = "html"

    def __init__(self, features: str = "html.parser"):
        self.features = features

    def tokenize(self, text: str) -> List[str]:
        soup = BeautifulSoup(text, self.features)
        for tag in soup(["script", "style"]):
            tag.decompose()
        return super().tokenize(soup.get_text(" "))


ANALYZERS: Dict[str, Type[Analyzer]] = {
    RegexAnalyzer.name: RegexAnalyzer,
    WhitespaceAnalyzer.name: WhitespaceAnalyzer,
    HtmlAnalyzer.name: HtmlAnalyzer,
}


def register_analyzer(name: str, cls: Type[Analyzer]) -> None:
    """Make cls available to get_analyzer() and the --analyzer option under name."""
    ANALYZERS[name] = cls


def get_analyzer(name: Optional[str]) -> Optional[Analyzer]:
    """
    Look up and construct an analyzer.
    None means "input is already tokenized" and returns None.
    Raises ComponentInstantiationError if the name is unknown or the
    constructor blows up.
    """
    if name is None:
        return None
    try:
        cls = ANALYZERS[name]
    except KeyError:
        known = ", ".join(sorted(ANALYZERS))
        raise ComponentInstantiationError(f"unknown analyzer {name!r} (known: {known})") from None
    try:
        return cls()
    except Exception as e:
        raise ComponentInstantiationError(f"analyzer {name!r} could not be constructed: {e!r}") from e


def check_terms(terms: List[str]) -> List[str]:
    """
    Reject terms that cannot be joined into grams: an empty term, or one
    holding whitespace (["new york", "city"] and ["new", "york city"] would
    both become "new york city", and a tab or newline breaks the run files).
    """
    for term in terms:
        if not isinstance(term, str) or not term or BAD_TERM_RE.search(term):
            raise InvalidTermError(f"invalid term {term!r}: terms must be non-empty strings without whitespace")
    return terms


def to_terms(doc, analyzer: Optional[Analyzer]) -> List[str]:
    """
    Resolve one document to its term sequence.
    With an analyzer the document is raw text; without one it is either a
    sequence of terms or a whitespace-separated string of terms.
    Raises InvalidTermError on a term check_terms() rejects.
    """
    if analyzer is not None:
        return check_terms(analyzer.tokenize(doc))
    if isinstance(doc, str):
        return doc.split()
    return check_terms(list(doc))


# ----------------------------
# TSV corpus readers
# ----------------------------

def parse_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Parse a single TSV line into (docid, text).
    The TSV is expected to be:  <docid>\t<text...>
    Returns None if the line is malformed or the text is blank.
    """
    parts = line.rstrip("\n").split("\t", 1)
    if len(parts) != 2:
        return None
    docid, text = parts
    if not docid.strip() or not text.strip():
        return None
    return docid, text


def iter_documents(path: str, limit: int | None = None) -> Iterator[str]:
    """
    Stream document texts from a TSV file without holding the corpus in
    memory. Malformed lines are skipped.
    """
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        for i, line in enumerate(f):
            if limit is not None and i >= limit:
                break
            parsed = parse_line(line)
            if parsed is None:
                continue
            yield parsed[1]
