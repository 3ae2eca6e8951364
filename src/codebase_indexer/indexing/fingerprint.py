"""Content fingerprinting for change detection and keyword extraction.

A fingerprint is the content hash used to decide whether a file changed since
its last index, plus the keyword histogram stored with its record.
"""

import hashlib
import re
from collections import Counter
from dataclasses import dataclass, field

DEFAULT_MAX_KEYWORDS = 20
MIN_KEYWORD_LENGTH = 4

STOP_WORDS: frozenset[str] = frozenset(
    {
        "this", "that", "with", "from", "have", "will", "would", "could",
        "should", "about", "which", "their", "there", "where", "when",
        "what", "them", "then", "than", "these", "those", "some", "into",
        "only", "also", "over", "such", "just", "more", "very", "been",
        "were", "they", "make", "after", "before", "through",
    }
)

_NON_WORD = re.compile(r"[^a-z0-9\s]")


@dataclass
class Fingerprint:
    """Hash and keyword histogram for a piece of content.

    Attributes:
        hash: Hex digest of the UTF-8 encoded content.
        keywords: Word to frequency mapping, most frequent first.
    """

    hash: str
    keywords: dict[str, int] = field(default_factory=dict)


def extract_keywords(text: str, max_keywords: int = DEFAULT_MAX_KEYWORDS) -> dict[str, int]:
    """Build the keyword histogram for a text.

    Words are lower-cased runs of ``[a-z0-9]`` longer than three characters,
    with stop words removed. Ties keep first-seen order.

    Args:
        text: Text to analyse.
        max_keywords: Number of keywords to keep.

    Returns:
        Mapping of keyword to count, ordered by descending count.
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    counts = Counter(w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS)
    # Counter preserves insertion order and sorted() is stable
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return dict(ranked[:max_keywords])


class ContentFingerprinter:
    """Computes fingerprints for file content."""

    def __init__(
        self,
        algorithm: str = "md5",
        max_keywords: int = DEFAULT_MAX_KEYWORDS,
    ) -> None:
        """Initialize fingerprinter.

        Args:
            algorithm: hashlib algorithm used for the content hash.
            max_keywords: Size of the keyword histogram.
        """
        self.algorithm = algorithm
        self.max_keywords = max_keywords

    def hash_content(self, content: str | bytes) -> str:
        """Hash string or bytes content.

        Args:
            content: Content to hash.

        Returns:
            Hex digest of hash.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")

        hasher = hashlib.new(self.algorithm, usedforsecurity=False)
        hasher.update(content)
        return hasher.hexdigest()

    def fingerprint(self, content: str) -> Fingerprint:
        """Compute hash and keyword histogram for text content."""
        return Fingerprint(
            hash=self.hash_content(content),
            keywords=extract_keywords(content, self.max_keywords),
        )
