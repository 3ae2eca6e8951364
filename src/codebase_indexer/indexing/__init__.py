"""Indexing module for incremental code indexing.

Provides path matching, content fingerprinting, the index store, the bulk
indexing pipeline and file watching.
"""

from codebase_indexer.indexing.fingerprint import (
    ContentFingerprinter,
    Fingerprint,
    extract_keywords,
)
from codebase_indexer.indexing.matcher import (
    MatchPatternSet,
    match_glob,
    should_index,
)
from codebase_indexer.indexing.pipeline import (
    IndexingPipeline,
    IndexResult,
    IndexStatus,
    ScanSummary,
)
from codebase_indexer.indexing.store import (
    FileRecord,
    IndexStats,
    IndexStore,
)
from codebase_indexer.indexing.watcher import (
    ChangeDebouncer,
    ChangeType,
    ChangeWatcher,
    FileChange,
    WatcherState,
    WatchStats,
)

__all__ = [
    # Matcher
    "MatchPatternSet",
    "match_glob",
    "should_index",
    # Fingerprint
    "ContentFingerprinter",
    "Fingerprint",
    "extract_keywords",
    # Store
    "FileRecord",
    "IndexStats",
    "IndexStore",
    # Pipeline
    "IndexingPipeline",
    "IndexResult",
    "IndexStatus",
    "ScanSummary",
    # Watcher
    "ChangeDebouncer",
    "ChangeType",
    "ChangeWatcher",
    "FileChange",
    "WatcherState",
    "WatchStats",
]
