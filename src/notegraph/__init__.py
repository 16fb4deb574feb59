"""
notegraph - the persistence core of a personal knowledge-management store.

Notes are stored as markdown-like text and organized into collections. Every
create or replace re-derives the note's references, tags and metadata from its
body inside a single transaction, and references to notes that do not exist
yet are kept as pending links until they can be resolved.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.3.0"
