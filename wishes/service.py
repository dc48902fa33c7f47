"""Owner-scoped wish storage (Supabase first, local tables as fallback)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import bleach

from backend import execute, get_supabase_client, now_utc, rows_of, sql_guard
from errors import NotFound, ValidationError
from extensions import db
from models import WISH_CATEGORIES, WISH_PRIORITIES, Wish

TABLE = "wishes"
MAX_TITLE_LENGTH = 200
MAX_TAGS = 20


def list_wishes(owner_id: str) -> List[Dict[str, Any]]:
    """Return the owner's wishes, newest first."""
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE)
            .select("*")
            .eq("user_id", owner_id)
            .order("created_at", desc=True),
            "loading wishes",
        )
        return rows_of(response)

    rows = Wish.query.filter_by(user_id=owner_id).order_by(Wish.created_at.desc()).all()
    return [row.to_public_dict() for row in rows]


def get_wish(owner_id: str, wish_id: str) -> Optional[Dict[str, Any]]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE).select("*").eq("id", wish_id).eq("user_id", owner_id),
            "loading wish",
        )
        rows = rows_of(response)
        return rows[0] if rows else None

    wish = Wish.query.filter_by(id=wish_id, user_id=owner_id).first()
    return wish.to_public_dict() if wish else None


def create_wish(owner_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    record = clean_wish_fields(payload, partial=False)
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE).insert(dict(record, user_id=owner_id)),
            "creating wish",
        )
        return rows_of(response)[0]

    wish = Wish(user_id=owner_id, **record)
    with sql_guard("creating wish"):
        db.session.add(wish)
        db.session.commit()
    return wish.to_public_dict()


def update_wish(owner_id: str, wish_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``changes`` into the wish; fields not mentioned keep their values."""
    record = clean_wish_fields(changes, partial=True)
    if not record:
        current = get_wish(owner_id, wish_id)
        if not current:
            raise NotFound("Wish not found.")
        return current

    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE)
            .update(dict(record, updated_at=now_utc().isoformat()))
            .eq("id", wish_id)
            .eq("user_id", owner_id),
            "updating wish",
        )
        rows = rows_of(response)
        if not rows:
            raise NotFound("Wish not found.")
        return rows[0]

    wish = Wish.query.filter_by(id=wish_id, user_id=owner_id).first()
    if not wish:
        raise NotFound("Wish not found.")
    with sql_guard("updating wish"):
        for field, value in record.items():
            setattr(wish, field, value)
        db.session.commit()
    return wish.to_public_dict()


def delete_wish(owner_id: str, wish_id: str) -> bool:
    """Remove the wish and its chain memberships. False when it was already gone."""
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE).delete().eq("id", wish_id).eq("user_id", owner_id),
            "deleting wish",
        )
        return bool(rows_of(response))

    wish = Wish.query.filter_by(id=wish_id, user_id=owner_id).first()
    if not wish:
        return False
    with sql_guard("deleting wish"):
        db.session.delete(wish)
        db.session.commit()
    return True


def clean_wish_fields(payload: Dict[str, Any], partial: bool) -> Dict[str, Any]:
    """Validate and normalise editable fields; raises ValidationError before any backend call."""
    if not isinstance(payload, dict):
        raise ValidationError("Wish payload must be an object.", payload={"error": "invalid_payload"})

    record: Dict[str, Any] = {}
    errors: Dict[str, str] = {}

    if "title" in payload or not partial:
        title = _clean_text(payload.get("title"))
        if not title:
            errors["title"] = "wish.titleRequired"
        elif len(title) > MAX_TITLE_LENGTH:
            errors["title"] = "too_long"
        else:
            record["title"] = title

    for field in ("description", "estimated_price", "notes"):
        if field in payload or not partial:
            record[field] = _clean_text(payload.get(field))

    if "category" in payload or not partial:
        category = str(payload.get("category") or "gift").strip().lower()
        if category not in WISH_CATEGORIES:
            errors["category"] = "invalid_choice"
        else:
            record["category"] = category

    if "priority" in payload or not partial:
        priority = str(payload.get("priority") or "medium").strip().lower()
        if priority not in WISH_PRIORITIES:
            errors["priority"] = "invalid_choice"
        else:
            record["priority"] = priority

    if "tags" in payload or not partial:
        tags = _clean_tags(payload.get("tags"))
        if tags is None:
            errors["tags"] = "invalid_tags"
        else:
            record["tags"] = tags

    if errors:
        raise ValidationError(
            "Wish is missing required fields." if "title" in errors else "Wish has invalid fields.",
            payload={"error": "invalid_wish", "fields": errors},
            message_key="wish.titleRequired" if "title" in errors else None,
        )
    return record


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return bleach.clean(str(value), tags=[], attributes={}, strip=True).strip()


def _clean_tags(raw: Any) -> Optional[List[str]]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return None
    tags: List[str] = []
    for item in raw:
        tag = _clean_text(item)
        if tag and tag not in tags:
            tags.append(tag)
    return tags[:MAX_TAGS]
