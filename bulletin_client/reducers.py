"""
Pure reducers computing speculative values.
"""

from typing import Any, Dict, Mapping


def toggle_like(current: Mapping[str, Any], payload: Any = None) -> Dict[str, Any]:
    """Flip ``is_liked`` and move ``likes`` by one in the same step.

    Returns a new mapping; ``current`` is left untouched. Malformed input
    raises ``TypeError`` or ``ValueError``.
    """
    if not isinstance(current, Mapping):
        raise TypeError(f"toggle_like expects a mapping, got {type(current).__name__}")

    is_liked = current.get("is_liked")
    likes = current.get("likes")
    if not isinstance(is_liked, bool):
        raise TypeError("is_liked must be a bool")
    if not isinstance(likes, int) or isinstance(likes, bool):
        raise TypeError("likes must be an int")

    new_likes = likes - 1 if is_liked else likes + 1
    if new_likes < 0:
        raise ValueError(f"likes would become negative ({new_likes})")

    updated = dict(current)
    updated["is_liked"] = not is_liked
    updated["likes"] = new_likes
    return updated
