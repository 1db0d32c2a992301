"""BM25 lexical searcher over JSON corpus files."""

import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence


logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"[a-zA-Z0-9]+")
DEFAULT_TEXT_FIELDS = ("name", "title", "company", "summary", "description", "skills", "tags", "bullets")


def tokenize(text: str) -> List[str]:
    return _TOKEN_PATTERN.findall(text.lower())


@dataclass
class BM25Weights:
    """Term-keyed BM25 weights fitted on one corpus.

    Documents get length-normalized BM25 weights, queries get idf * tf, and
    relevance is the dot product of the two.
    """

    k1: float = 1.5
    b: float = 0.75
    idf: Dict[str, float] = field(default_factory=dict)
    avgdl: float = 0.0

    def fit(self, texts: Iterable[str]) -> None:
        doc_freq: Counter = Counter()
        lengths: List[int] = []
        for text in texts:
            tokens = tokenize(text)
            lengths.append(len(tokens))
            doc_freq.update(set(tokens))
        if not lengths:
            return
        total = len(lengths)
        self.avgdl = sum(lengths) / total
        self.idf = {term: math.log(1 + (total - df + 0.5) / (df + 0.5)) for term, df in doc_freq.items()}

    def document_weights(self, text: str) -> Dict[str, float]:
        tokens = tokenize(text)
        counts = Counter(token for token in tokens if token in self.idf)
        length_ratio = len(tokens) / self.avgdl if self.avgdl else 0.0
        norm = self.k1 * (1 - self.b + self.b * length_ratio)
        return {term: self.idf[term] * tf * (self.k1 + 1) / (tf + norm) for term, tf in counts.items()}

    def query_weights(self, text: str) -> Dict[str, float]:
        counts = Counter(token for token in tokenize(text) if token in self.idf)
        return {term: self.idf[term] * tf for term, tf in counts.items()}


def document_text(document: Dict[str, Any], text_fields: Sequence[str]) -> str:
    parts: List[str] = []
    for name in text_fields:
        value = document.get(name)
        if isinstance(value, (list, tuple)):
            parts.extend(str(item) for item in value)
        elif value is not None:
            parts.append(str(value))
    return " ".join(parts)


class LexicalCorpusSearcher:
    """In-memory corpus searcher; returns shallow document copies with a ``_score``."""

    def __init__(self, documents: Sequence[Dict[str, Any]], text_fields: Sequence[str] = DEFAULT_TEXT_FIELDS):
        self.documents = list(documents)
        self.text_fields = tuple(text_fields)
        self.weights = BM25Weights()
        texts = [document_text(doc, self.text_fields) for doc in self.documents]
        self.weights.fit(texts)
        self._vectors = [self.weights.document_weights(text) for text in texts]

    async def search(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        query_vector = self.weights.query_weights(query)
        if not query_vector:
            return []
        scored = []
        for position, vector in enumerate(self._vectors):
            score = sum(weight * vector.get(term, 0.0) for term, weight in query_vector.items())
            if score > 0:
                scored.append((score, position))
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [{**self.documents[position], "_score": round(score, 6)} for score, position in scored[:top_k]]


def load_corpus_searchers(corpus_dir: str, sources: Sequence[str]) -> Dict[str, LexicalCorpusSearcher]:
    """Register one searcher per ``<source>.json`` file (a JSON list of objects)."""
    searchers: Dict[str, LexicalCorpusSearcher] = {}
    root = Path(corpus_dir)
    for source in sources:
        path = root / f"{source}.json"
        documents = _read_documents(path)
        if documents is None:
            logger.warning("Corpus file missing for source=%s at %s", source, path)
            continue
        searchers[source] = LexicalCorpusSearcher(documents)
    return searchers


def _read_documents(path: Path) -> Optional[List[Dict[str, Any]]]:
    if not path.is_file():
        return None
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Corpus file {path} must contain a JSON list")
    return [item for item in data if isinstance(item, dict)]
