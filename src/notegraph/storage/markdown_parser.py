"""Content parsing for note bodies.

Extracts the derived data of a note body: wiki-style references
(``[[target]]``, ``[[target|display]]``, ``![[embed]]``), inline
``#hashtags`` and YAML front-matter. The parser is pure; it never
touches the database.
"""
import datetime
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import yaml
from frontmatter.default_handlers import YAMLHandler

from notegraph.exceptions import ParseFailureError

logger = logging.getLogger(__name__)

DEFAULT_TAG_KEYS: Tuple[str, ...] = ("tags", "tag")

# ![[target#section|display]]; targets cannot contain brackets or pipes
WIKILINK_PATTERN = re.compile(r"(!?)\[\[([^\[\]|\n]+?)(?:\|([^\[\]\n]*?))?\]\]")

# Obsidian-style hashtags: letters, digits, '_', '-', '/' and non-ASCII
# characters. A tag cannot follow a word character, '#', '/' or '&'.
HASHTAG_PATTERN = re.compile(
    r"(?<![\w#/&])#([^\s#!\"$%&'()*+,.:;<=>?@\[\\\]^`{|}~]+)"
)

FENCED_CODE_PATTERN = re.compile(r"^(```|~~~).*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)
INLINE_CODE_PATTERN = re.compile(r"`[^`\n]*`")


@dataclass(frozen=True)
class WikiLink:
    """A reference found in a note body.

    ``display_text`` is None when the reference has no alias or the
    alias repeats the target.
    """

    target: str
    display_text: Optional[str] = None
    embed: bool = False


@dataclass(frozen=True)
class ParseResult:
    """Everything derived from one note body."""

    references: Tuple[WikiLink, ...] = ()
    tags: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)
    frontmatter_tags: Tuple[str, ...] = ()
    raw_frontmatter: str = ""
    content: str = ""


class ContentParser:
    """Parses note bodies into references, tags and metadata."""

    def __init__(self, tag_keys: Optional[Sequence[str]] = None):
        """Initialize the parser.

        Args:
            tag_keys: Front-matter keys whose values are tags. Defaults to
                ``("tags", "tag")``.
        """
        self.tag_keys: Tuple[str, ...] = tuple(tag_keys or DEFAULT_TAG_KEYS)
        self._handler = YAMLHandler()

    def parse(self, body: Optional[str]) -> ParseResult:
        """Parse a note body.

        Args:
            body: Raw note text, optionally starting with a ``---``
                delimited YAML front-matter block.

        Returns:
            A ParseResult. References are deduplicated and keep their
            first-seen order; inline tags are deduplicated.

        Raises:
            ParseFailureError: If the front-matter is not valid YAML or is
                not a mapping.
        """
        if not body or not body.strip():
            return ParseResult(content=body or "")

        raw_frontmatter, content, metadata = self._split_frontmatter(body)
        searchable = self._strip_code(content)

        return ParseResult(
            references=tuple(self._extract_references(searchable)),
            tags=tuple(self._extract_hashtags(searchable)),
            metadata=metadata,
            frontmatter_tags=tuple(self._frontmatter_tags(metadata)),
            raw_frontmatter=raw_frontmatter,
            content=content,
        )

    def metadata_entries(self, result: ParseResult) -> Dict[str, Optional[str]]:
        """Metadata of a parse result as strings, without the tag keys.

        Args:
            result: Output of :meth:`parse`.

        Returns:
            Mapping of key to stringified value (None for YAML nulls).
        """
        return {
            key: stringify_meta_value(value)
            for key, value in result.metadata.items()
            if key not in self.tag_keys
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _split_frontmatter(self, body: str) -> Tuple[str, str, Dict[str, Any]]:
        """Separate the front-matter block from the content and load it."""
        if not self._handler.detect(body):
            return "", body, {}
        # An opening rule with no closing one is a horizontal rule
        if len(self._handler.FM_BOUNDARY.split(body, 2)) < 3:
            return "", body, {}

        try:
            raw, content = self._handler.split(body)
            loaded = self._handler.load(raw)
        except (yaml.YAMLError, ValueError) as e:
            logger.warning(f"Malformed front-matter: {e}")
            raise ParseFailureError("Front-matter is not valid YAML", original_error=e) from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ParseFailureError(
                f"Front-matter must be a mapping, got {type(loaded).__name__}"
            )

        metadata = {str(k): v for k, v in loaded.items()}
        return raw.strip("\n"), content, metadata

    @staticmethod
    def _strip_code(content: str) -> str:
        """Blank out fenced and inline code so their contents are not parsed."""
        without_fences = FENCED_CODE_PATTERN.sub("", content)
        return INLINE_CODE_PATTERN.sub("", without_fences)

    @staticmethod
    def _extract_references(content: str) -> List[WikiLink]:
        seen = set()
        references: List[WikiLink] = []
        for match in WIKILINK_PATTERN.finditer(content):
            embed = match.group(1) == "!"
            target = match.group(2).split("#", 1)[0].strip()
            if not target:
                continue
            display = (match.group(3) or "").strip() or None
            if display == target:
                display = None
            link = WikiLink(target=target, display_text=display, embed=embed)
            if link not in seen:
                seen.add(link)
                references.append(link)
        return references

    @staticmethod
    def _extract_hashtags(content: str) -> List[str]:
        tags: Dict[str, None] = {}
        for match in HASHTAG_PATTERN.finditer(content):
            name = match.group(1).rstrip("/")
            if not name or name.replace("/", "").isdigit():
                continue
            tags.setdefault(name, None)
        return list(tags)

    def _frontmatter_tags(self, metadata: Dict[str, Any]) -> List[str]:
        """Normalize tag values under the recognized keys to a list of strings.

        A value may be a single string or a list; non-string list items
        are dropped.
        """
        names: List[str] = []
        for key in self.tag_keys:
            if key not in metadata:
                continue
            names.extend(_normalize_tag_value(key, metadata[key]))
        return names


def _normalize_tag_value(key: str, value: Any) -> Iterable[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        kept = [item for item in value if isinstance(item, str)]
        if len(kept) != len(value):
            logger.debug(f"Dropped {len(value) - len(kept)} non-string values under '{key}'")
        return kept
    logger.warning(f"Ignoring front-matter '{key}' of type {type(value).__name__}")
    return []


def stringify_meta_value(value: Any) -> Optional[str]:
    """Convert a front-matter value to the text stored in note_meta."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)
