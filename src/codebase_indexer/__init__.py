"""Codebase Indexer - Incremental lexical index for local source trees.

A system for keeping searchable indexes of project directories with:
- Glob-based file selection
- Content-hash change detection
- Live file watching
- Keyword-scored search with snippets
"""

__version__ = "0.1.0"
__author__ = "Codebase Indexer Team"
