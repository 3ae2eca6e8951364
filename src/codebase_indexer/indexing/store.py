"""Durable per-project index store.

The store is a single JSON document per project::

    {
        "version": "1.0.0",
        "files": {"<path>": {...record...}},
        "keywords": {"<path>": {"word": count}},
        "metadata": {"file_count": ..., "total_size": ..., "saved_at": ...}
    }

It is loaded fully into memory and written back atomically with
write-to-temp-then-rename. A single writer per project is assumed.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from codebase_indexer.core.exceptions import PersistenceError
from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)

STORE_VERSION = "1.0.0"


def utc_timestamp(ts: float | None = None) -> str:
    """ISO-8601 UTC timestamp for ``ts`` (seconds since epoch) or now."""
    moment = datetime.fromtimestamp(ts, timezone.utc) if ts is not None else datetime.now(timezone.utc)
    return moment.isoformat()


@dataclass
class FileRecord:
    """Index entry for one file.

    Attributes:
        path: Project-relative, forward-slash path.
        content: Text content at last successful index.
        hash: Content fingerprint.
        size: File size in bytes.
        line_count: Number of lines in content.
        extension: Lower-cased suffix including the dot, or empty.
        keywords: Keyword histogram.
        modified_at: Source modification time (ISO-8601).
        indexed_at: Time the record was written (ISO-8601).
    """

    path: str
    content: str
    hash: str
    size: int
    line_count: int
    extension: str
    keywords: dict[str, int] = field(default_factory=dict)
    modified_at: str = ""
    indexed_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored file entry (keywords are kept separately)."""
        return {
            "file_path": self.path,
            "content": self.content,
            "hash": self.hash,
            "size": self.size,
            "lines": self.line_count,
            "extension": self.extension,
            "modified_at": self.modified_at,
            "indexed_at": self.indexed_at,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        keywords: dict[str, int] | None = None,
    ) -> "FileRecord":
        """Create from a stored file entry."""
        return cls(
            path=data["file_path"],
            content=data["content"],
            hash=data["hash"],
            size=data.get("size", 0),
            line_count=data.get("lines", 0),
            extension=data.get("extension", ""),
            keywords=dict(keywords or {}),
            modified_at=data.get("modified_at", ""),
            indexed_at=data.get("indexed_at", ""),
        )


@dataclass
class ExtensionStats:
    """Aggregate figures for one file extension."""

    extension: str
    count: int = 0
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"extension": self.extension, "count": self.count, "size": self.size}


@dataclass
class IndexStats:
    """Aggregate statistics of a store.

    Attributes:
        file_count: Number of records.
        total_size: Sum of record sizes in bytes.
        by_extension: Per-extension figures, most common first.
    """

    file_count: int = 0
    total_size: int = 0
    by_extension: list[ExtensionStats] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "file_count": self.file_count,
            "total_size": self.total_size,
            "by_extension": [e.to_dict() for e in self.by_extension],
        }


class IndexStore:
    """In-memory ``path -> FileRecord`` mapping backed by a JSON document."""

    def __init__(self, store_path: Path) -> None:
        """Initialize an empty store bound to ``store_path``.

        Args:
            store_path: Location of the JSON document.
        """
        self.store_path = store_path
        self._records: dict[str, FileRecord] = {}
        self._metadata: dict[str, Any] = {}
        self._dirty = False

    def load(self) -> None:
        """Load the store from disk.

        A missing, unreadable or corrupt document yields an empty store.
        """
        self._records = {}
        self._metadata = {}
        self._dirty = False

        if not self.store_path.exists():
            return

        try:
            with open(self.store_path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise TypeError("document is not an object")
            files = data.get("files", {})
            keywords = data.get("keywords", {})
            metadata = data.get("metadata") or {}
            for name, section in (("files", files), ("keywords", keywords), ("metadata", metadata)):
                if not isinstance(section, dict):
                    raise TypeError(f"{name} is not an object")
            records = {
                path: FileRecord.from_dict(entry, keywords.get(path))
                for path, entry in files.items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(
                "Failed to load index store, starting empty",
                path=str(self.store_path),
                error=str(e),
            )
            return

        self._records = records
        self._metadata = dict(metadata)
        logger.debug("Index store loaded", path=str(self.store_path), files=len(records))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the stored document."""
        stats = self.stats()
        metadata = {
            **self._metadata,
            "file_count": stats.file_count,
            "total_size": stats.total_size,
            "saved_at": utc_timestamp(),
        }
        return {
            "version": STORE_VERSION,
            "files": {path: r.to_dict() for path, r in self._records.items()},
            "keywords": {path: r.keywords for path, r in self._records.items()},
            "metadata": metadata,
        }

    def save(self) -> None:
        """Write the store to disk atomically.

        Raises:
            PersistenceError: If the document could not be written. The
                previous document and the in-memory state are left intact.
        """
        document = self.to_dict()
        tmp_name: str | None = None
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.store_path.name}.",
                suffix=".tmp",
                dir=self.store_path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.store_path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(str(self.store_path), cause=e) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

        self._metadata = document["metadata"]
        self._dirty = False
        logger.debug("Index store saved", path=str(self.store_path), files=len(self._records))

    def upsert(self, record: FileRecord) -> None:
        """Insert or replace the record for ``record.path``."""
        self._records[record.path] = record
        self._dirty = True

    def delete(self, path: str) -> bool:
        """Remove the record for a path.

        Returns:
            True if a record existed.
        """
        if self._records.pop(path, None) is None:
            return False
        self._dirty = True
        return True

    def get(self, path: str) -> FileRecord | None:
        """Get the record for a path, or None."""
        return self._records.get(path)

    def all(self) -> list[FileRecord]:
        """All records in insertion order."""
        return list(self._records.values())

    def keywords_for(self, path: str) -> dict[str, int]:
        """Keyword histogram of a path, empty if not indexed."""
        record = self._records.get(path)
        return record.keywords if record else {}

    def stats(self) -> IndexStats:
        """Aggregate statistics over all records."""
        by_extension: dict[str, ExtensionStats] = {}
        total_size = 0
        for record in self._records.values():
            total_size += record.size
            ext = by_extension.setdefault(record.extension, ExtensionStats(record.extension))
            ext.count += 1
            ext.size += record.size

        return IndexStats(
            file_count=len(self._records),
            total_size=total_size,
            by_extension=sorted(by_extension.values(), key=lambda e: e.count, reverse=True),
        )

    def clear(self) -> None:
        """Drop every record."""
        self._records = {}
        self._metadata = {}
        self._dirty = True

    @property
    def is_dirty(self) -> bool:
        """Whether there are unsaved mutations."""
        return self._dirty

    @property
    def paths(self) -> list[str]:
        """All indexed paths."""
        return list(self._records.keys())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def __iter__(self) -> Iterator[FileRecord]:
        return iter(list(self._records.values()))
