"""Lexical query engine over an index store.

Scoring is a cheap additive formula, not a normalized relevance model.
Consumers threshold on ``min_score``, so the formula must stay exactly as is:

- +0.5 if the content contains the whole query
- per query word: +0.2 if the content contains it, +0.3 if the path does
- per query word in the keyword histogram: +0.3 * min(count, 5) / 5

The sum is clamped to 1.0 after the ``min_score`` check.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from codebase_indexer.core.exceptions import SearchQueryError
from codebase_indexer.indexing.store import FileRecord, IndexStore
from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_RESULTS = 10
DEFAULT_MIN_SCORE = 0.3
DEFAULT_CONTEXT_LINES = 2

FULL_MATCH_WEIGHT = 0.5
CONTENT_WORD_WEIGHT = 0.2
PATH_WORD_WEIGHT = 0.3
KEYWORD_WEIGHT = 0.3
KEYWORD_FREQUENCY_CAP = 5
FALLBACK_SNIPPET_LINES = 5


class MatchKind(str, Enum):
    """How a result's snippet was located."""

    CONTENT = "content"
    KEYWORD = "keyword"


@dataclass
class Snippet:
    """Excerpt of a file around the first matching line.

    Attributes:
        text: Excerpt lines joined with newlines.
        line_number: 1-based number of the matching line, 1 on fallback.
        start_line: 1-based first line of the excerpt.
        end_line: 1-based last line of the excerpt.
        matched: Whether a line contained the query.
    """

    text: str
    line_number: int
    start_line: int
    end_line: int
    matched: bool


@dataclass
class QueryResult:
    """A ranked search hit.

    Attributes:
        path: Project-relative path.
        score: Relevance in [0, 1].
        snippet: Excerpt around the match.
        line_number: 1-based matched line.
        match_kind: Whether the snippet came from a verbatim match.
    """

    path: str
    score: float
    snippet: str
    line_number: int
    match_kind: MatchKind

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "score": self.score,
            "snippet": self.snippet,
            "line_number": self.line_number,
            "match_kind": self.match_kind.value,
        }


def query_words(query: str) -> list[str]:
    """Lower-cased whitespace-separated words longer than two characters."""
    return [w for w in query.lower().split() if len(w) > 2]


def score_file(
    query: str,
    path: str,
    content: str,
    keywords: dict[str, int],
) -> float:
    """Raw (unclamped) score of one file for a query."""
    query_lower = query.lower()
    content_lower = content.lower()
    path_lower = path.lower()
    words = query_words(query)

    score = 0.0
    if query_lower in content_lower:
        score += FULL_MATCH_WEIGHT

    for word in words:
        if word in content_lower:
            score += CONTENT_WORD_WEIGHT
        if word in path_lower:
            score += PATH_WORD_WEIGHT

    for word in words:
        count = keywords.get(word, 0)
        if count:
            score += KEYWORD_WEIGHT * min(count, KEYWORD_FREQUENCY_CAP) / KEYWORD_FREQUENCY_CAP

    return score


def create_snippet(content: str, term: str, context_lines: int = DEFAULT_CONTEXT_LINES) -> Snippet:
    """Cut an excerpt around the first line containing ``term``.

    Falls back to the first five lines when no line contains the term.
    """
    lines = content.split("\n")
    term_lower = term.lower()

    for i, line in enumerate(lines):
        if term_lower in line.lower():
            start = max(0, i - context_lines)
            end = min(len(lines), i + context_lines + 1)
            return Snippet(
                text="\n".join(lines[start:end]),
                line_number=i + 1,
                start_line=start + 1,
                end_line=end,
                matched=True,
            )

    end = min(len(lines), FALLBACK_SNIPPET_LINES)
    return Snippet(
        text="\n".join(lines[:FALLBACK_SNIPPET_LINES]),
        line_number=1,
        start_line=1,
        end_line=end,
        matched=False,
    )


class QueryEngine:
    """Ranks the files of an index store against free-text queries.

    The engine only reads the store; it never mutates or persists it.
    """

    def __init__(self, store: IndexStore) -> None:
        self.store = store

    def search(
        self,
        query: str,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: float = DEFAULT_MIN_SCORE,
        context_lines: int = DEFAULT_CONTEXT_LINES,
        extension: str | None = None,
    ) -> list[QueryResult]:
        """Search the store.

        Args:
            query: Free-text query.
            max_results: Maximum number of results.
            min_score: Results scoring below this are dropped.
            context_lines: Lines of context on each side of a snippet match.
            extension: Only score files with this extension (e.g. ``.py``).

        Returns:
            Results ordered by descending score; equal scores keep store order.

        Raises:
            SearchQueryError: If the query is empty.
        """
        if not query or not query.strip():
            raise SearchQueryError(query or "", "query must not be empty")

        ext_filter = _normalize_extension(extension)
        results: list[QueryResult] = []

        for record in self.store.all():
            if ext_filter is not None and record.extension != ext_filter:
                continue
            score = score_file(query, record.path, record.content, record.keywords)
            if score < min_score:
                continue
            results.append(self._to_result(record, query, score, context_lines))

        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Search completed", query=query, hits=len(results))
        return results[:max_results]

    @staticmethod
    def _to_result(record: FileRecord, query: str, score: float, context_lines: int) -> QueryResult:
        snippet = create_snippet(record.content, query, context_lines)
        return QueryResult(
            path=record.path,
            score=min(score, 1.0),
            snippet=snippet.text,
            line_number=snippet.line_number,
            match_kind=MatchKind.CONTENT if snippet.matched else MatchKind.KEYWORD,
        )


def _normalize_extension(extension: str | None) -> str | None:
    if not extension:
        return None
    ext = extension.lower()
    return ext if ext.startswith(".") else f".{ext}"
