"""Async file I/O utilities for non-blocking file operations.

Reads are strict UTF-8: a file that is not valid UTF-8 is a read failure,
not silently mangled content, so that its hash never drifts from its bytes.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import aiofiles

from codebase_indexer.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FileContent:
    """Text content of a file together with its stat metadata.

    Attributes:
        path: Absolute path that was read.
        text: Decoded UTF-8 content.
        size: Size in bytes reported by stat.
        mtime: Modification time reported by stat.
    """

    path: Path
    text: str
    size: int
    mtime: float


async def read_text(file_path: str | Path) -> FileContent:
    """Read a file as UTF-8 without blocking the event loop.

    Args:
        file_path: Path to the file.

    Returns:
        FileContent with the decoded text and stat metadata.

    Raises:
        OSError: If the file cannot be opened or read.
        UnicodeDecodeError: If the file is not valid UTF-8.
    """
    path = Path(file_path)
    async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
        text = await f.read()
    stat = await asyncio.to_thread(os.stat, path)
    return FileContent(path=path, text=text, size=stat.st_size, mtime=stat.st_mtime)


async def read_files_parallel(
    file_paths: Sequence[str | Path],
    max_concurrent: int = 8,
) -> dict[Path, FileContent | Exception]:
    """Read multiple files in parallel with a concurrency limit.

    Args:
        file_paths: Paths to read.
        max_concurrent: Maximum concurrent file reads.

    Returns:
        Dict mapping each path to its content, or to the exception raised
        while reading it.
    """
    semaphore = asyncio.Semaphore(max_concurrent)

    async def read_with_semaphore(path: Path) -> FileContent:
        async with semaphore:
            return await read_text(path)

    paths = [Path(p) for p in file_paths]
    results = await asyncio.gather(
        *(read_with_semaphore(p) for p in paths),
        return_exceptions=True,
    )

    output: dict[Path, FileContent | Exception] = {}
    for path, result in zip(paths, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            logger.debug("Error reading file", path=str(path), error=str(result))
        output[path] = result
    return output
