"""Search module for lexical code search."""

from codebase_indexer.search.query import (
    MatchKind,
    QueryEngine,
    QueryResult,
    Snippet,
    create_snippet,
    score_file,
)

__all__ = [
    "MatchKind",
    "QueryEngine",
    "QueryResult",
    "Snippet",
    "create_snippet",
    "score_file",
]
