"""Recipient-side collection of opened wishes ("received wishes")."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import bleach
from sqlalchemy.exc import IntegrityError

from backend import execute, get_supabase_client, now_utc, parse_datetime, rows_of, sql_guard
from errors import NotFound, ValidationError
from extensions import db
from models import UserOpenedWish, Wish

TABLE = "user_opened_wishes"
CONFLICT_COLUMNS = "user_fingerprint,wish_id,chain_id"
MAX_NOTES_LENGTH = 2000


def upsert_opened_wish(
    identity_key: str,
    wish_id: str,
    chain_id: str,
    creator_name: Optional[str] = None,
    opened_at: Optional[str] = None,
    is_favorite: bool = False,
    notes: str = "",
) -> bool:
    """Insert the collection row unless (identity, wish, chain) already exists.

    Returns True when a row was written, False when one was already there.
    """
    payload = {
        "user_fingerprint": identity_key,
        "wish_id": wish_id,
        "chain_id": chain_id,
        "creator_name": creator_name,
        "opened_at": opened_at or now_utc().isoformat(),
        "is_favorite": bool(is_favorite),
        "notes": notes or "",
    }
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE).upsert(
                payload,
                on_conflict=CONFLICT_COLUMNS,
                ignore_duplicates=True,
            ),
            "recording opened wish",
        )
        return bool(rows_of(response))

    return _upsert_opened_wish_sql(payload)


def rows_for_key(identity_key: str) -> List[Dict[str, Any]]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE)
            .select("*")
            .eq("user_fingerprint", identity_key)
            .order("opened_at", desc=True),
            "loading opened wishes",
        )
        return rows_of(response)

    with sql_guard("loading opened wishes"):
        rows = (
            UserOpenedWish.query.filter_by(user_fingerprint=identity_key)
            .order_by(UserOpenedWish.opened_at.desc())
            .all()
        )
    return [row.to_public_dict() for row in rows]


def list_received(identity) -> List[Dict[str, Any]]:
    """Opened wishes for the current identity, newest first, with the wish attached when it still exists."""
    rows = rows_for_key(identity.key)
    wishes = _wishes_by_id([row["wish_id"] for row in rows])
    for row in rows:
        row["wish"] = wishes.get(row["wish_id"])
    return rows


def set_favorite(identity, entry_id: str, value: bool) -> Dict[str, Any]:
    return _update_entry(identity, entry_id, {"is_favorite": bool(value)}, "updating favorite")


def update_notes(identity, entry_id: str, notes: str) -> Dict[str, Any]:
    cleaned = bleach.clean(notes or "", tags=[], attributes={}, strip=True).strip()
    if len(cleaned) > MAX_NOTES_LENGTH:
        raise ValidationError("Notes are too long.", payload={"error": "notes_too_long"})
    return _update_entry(identity, entry_id, {"notes": cleaned}, "updating notes")


def _update_entry(identity, entry_id: str, changes: Dict[str, Any], action: str) -> Dict[str, Any]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table(TABLE)
            .update(changes)
            .eq("id", entry_id)
            .eq("user_fingerprint", identity.key),
            action,
        )
        rows = rows_of(response)
        if not rows:
            raise NotFound("Received wish not found.")
        return rows[0]

    entry = UserOpenedWish.query.filter_by(id=entry_id, user_fingerprint=identity.key).first()
    if not entry:
        raise NotFound("Received wish not found.")
    with sql_guard(action):
        for field, value in changes.items():
            setattr(entry, field, value)
        db.session.commit()
    return entry.to_public_dict()


def _upsert_opened_wish_sql(payload: Dict[str, Any]) -> bool:
    with sql_guard("recording opened wish"):
        existing = UserOpenedWish.query.filter_by(
            user_fingerprint=payload["user_fingerprint"],
            wish_id=payload["wish_id"],
            chain_id=payload["chain_id"],
        ).first()
        if existing:
            return False

        entry = UserOpenedWish(
            user_fingerprint=payload["user_fingerprint"],
            wish_id=payload["wish_id"],
            chain_id=payload["chain_id"],
            creator_name=payload["creator_name"],
            opened_at=parse_datetime(payload["opened_at"]) or now_utc(),
            is_favorite=payload["is_favorite"],
            notes=payload["notes"],
        )
        db.session.add(entry)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with an identical insert.
            db.session.rollback()
            return False
    return True


def _wishes_by_id(wish_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    unique_ids = sorted(set(wish_ids))
    if not unique_ids:
        return {}
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("wishes").select("*").in_("id", unique_ids),
            "loading received wish details",
        )
        return {row["id"]: row for row in rows_of(response)}

    rows = Wish.query.filter(Wish.id.in_(unique_ids)).all()
    return {row.id: row.to_public_dict() for row in rows}
