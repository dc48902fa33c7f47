"""Filter, search and sort projection over an owner's wishes. No persistence."""

from __future__ import annotations

import locale
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from errors import ValidationError
from models import WISH_CATEGORIES, WISH_PRIORITIES

ALL = "all"
PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2}
SORT_KEYS = ("newest", "oldest", "priority_desc", "priority_asc", "title_asc", "title_desc")
SEARCH_FIELDS = ("title", "description", "tags", "notes")


def filter_wishes(
    wishes: Iterable[Dict[str, Any]],
    category: Optional[str] = ALL,
    priority: Optional[str] = ALL,
    query: Optional[str] = "",
    sort: Optional[str] = "newest",
) -> List[Dict[str, Any]]:
    category = (category or ALL).strip().lower()
    priority = (priority or ALL).strip().lower()
    sort = (sort or "newest").strip().lower()
    needle = (query or "").strip().casefold()

    if category != ALL and category not in WISH_CATEGORIES:
        raise ValidationError(f"Unknown category filter {category!r}.", payload={"error": "invalid_category"})
    if priority != ALL and priority not in WISH_PRIORITIES:
        raise ValidationError(f"Unknown priority filter {priority!r}.", payload={"error": "invalid_priority"})
    if sort not in SORT_KEYS:
        raise ValidationError(f"Unknown sort key {sort!r}.", payload={"error": "invalid_sort"})

    selected = [
        wish
        for wish in wishes
        if (category == ALL or wish.get("category") == category)
        and (priority == ALL or wish.get("priority") == priority)
        and (not needle or matches_query(wish, needle))
    ]
    return sort_wishes(selected, sort)


def matches_query(wish: Dict[str, Any], needle: str) -> bool:
    needle = needle.casefold()
    for field in SEARCH_FIELDS:
        value = wish.get(field)
        if field == "tags":
            if any(needle in str(tag).casefold() for tag in value or []):
                return True
        elif value and needle in str(value).casefold():
            return True
    return False


def sort_wishes(wishes: List[Dict[str, Any]], sort: str) -> List[Dict[str, Any]]:
    if sort == "newest":
        return sorted(wishes, key=_created_key, reverse=True)
    if sort == "oldest":
        return sorted(wishes, key=_created_key)
    if sort == "priority_desc":
        return sorted(wishes, key=_priority_key, reverse=True)
    if sort == "priority_asc":
        return sorted(wishes, key=_priority_key)
    if sort == "title_asc":
        return sorted(wishes, key=_title_key)
    return sorted(wishes, key=_title_key, reverse=True)


def summarize_wishes(wishes: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    wishes = list(wishes)
    categories = Counter(wish.get("category") for wish in wishes)
    priorities = Counter(wish.get("priority") for wish in wishes)
    return {
        "total": len(wishes),
        "categories": {name: categories.get(name, 0) for name in WISH_CATEGORIES},
        "priorities": {name: priorities.get(name, 0) for name in WISH_PRIORITIES},
    }


def _created_key(wish: Dict[str, Any]) -> str:
    # ISO-8601 UTC strings sort chronologically.
    return wish.get("created_at") or ""


def _priority_key(wish: Dict[str, Any]) -> int:
    return PRIORITY_RANK.get(wish.get("priority"), -1)


def _title_key(wish: Dict[str, Any]):
    title = (wish.get("title") or "").casefold()
    try:
        return (locale.strxfrm(title), title)
    except (ValueError, OSError):
        return (title, title)
