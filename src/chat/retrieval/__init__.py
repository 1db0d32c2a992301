"""Retrieval engine and corpus searchers."""

from .engine import UNKNOWN_SOURCE, CorpusSearcher, RetrievalEngine
from .lexical import BM25Weights, LexicalCorpusSearcher, load_corpus_searchers

__all__ = [
    "BM25Weights",
    "CorpusSearcher",
    "LexicalCorpusSearcher",
    "RetrievalEngine",
    "UNKNOWN_SOURCE",
    "load_corpus_searchers",
]
