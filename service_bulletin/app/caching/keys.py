"""
Query keys and scope tags.
"""

from typing import Any, Iterable

SCOPE_SEPARATOR = "/"


def make_query_key(name: str, *args: Any, **kwargs: Any) -> str:
    """Build a deterministic key for a read operation.

    ``make_query_key("post", 42)`` gives ``"post:42"``. Keyword arguments are
    appended sorted by name so call-site ordering never changes the key.
    """
    if not name:
        raise ValueError("Query key name must not be empty")

    key_parts = [name] + [str(arg) for arg in args]
    key_parts += [f"{k}={kwargs[k]}" for k in sorted(kwargs)]
    return ":".join(key_parts)


def scope(*parts: Any) -> str:
    """Join parts into a nested scope tag (``scope("archive", 2024)``)."""
    return SCOPE_SEPARATOR.join(str(part).strip(SCOPE_SEPARATOR) for part in parts)


def is_within_scope(tag: str, root: str) -> bool:
    """Whether ``tag`` is ``root`` itself or nested anywhere below it."""
    root = root.rstrip(SCOPE_SEPARATOR)
    if tag == root:
        return True
    return tag.startswith(root + SCOPE_SEPARATOR)


def normalize_tags(tags: Iterable[str]) -> frozenset:
    """Freeze an iterable of tags, rejecting empty labels."""
    if isinstance(tags, str):
        tags = [tags]
    frozen = frozenset(tags)
    if any(not tag for tag in frozen):
        raise ValueError("Cache tags must be non-empty strings")
    return frozen
