"""Storage layer for notegraph."""

from notegraph.storage.base import Repository
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.markdown_parser import ContentParser, ParseResult, WikiLink
from notegraph.storage.meta_repository import MetaRepository
from notegraph.storage.note_repository import NoteRepository
from notegraph.storage.tag_repository import TagRepository

__all__ = [
    "Repository",
    "ContentParser",
    "ParseResult",
    "WikiLink",
    "NoteRepository",
    "LinkRepository",
    "TagRepository",
    "MetaRepository",
]
