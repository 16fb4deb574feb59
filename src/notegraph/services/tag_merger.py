"""Merging of inline hashtags and front-matter tags into one tag set."""
from typing import FrozenSet, Iterable


def normalize_tag(name: str) -> str:
    """Strip surrounding whitespace and one leading '#' from a tag name."""
    name = name.strip()
    if name.startswith("#"):
        name = name[1:].strip()
    return name


def merge_tags(inline_tags: Iterable[str], frontmatter_tags: Iterable[str]) -> FrozenSet[str]:
    """Union of the two tag sources after normalization.

    The result does not depend on the order of either input, and
    merging a result with itself returns the same set. Empty names
    are dropped.

    Args:
        inline_tags: Tags found in the body text.
        frontmatter_tags: Tags declared in the front-matter, already
            flattened to strings by the parser.

    Returns:
        The deduplicated tag names.
    """
    merged = set()
    for source in (inline_tags, frontmatter_tags):
        for name in source:
            if not isinstance(name, str):
                continue
            normalized = normalize_tag(name)
            if normalized:
                merged.add(normalized)
    return frozenset(merged)
