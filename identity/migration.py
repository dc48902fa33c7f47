"""Promote openings recorded under an anonymous fingerprint onto an account."""

from __future__ import annotations

from flask import current_app, has_app_context

from blindbox.collection import rows_for_key, upsert_opened_wish
from errors import StarWishError
from identity.session import EVENT_SIGNED_IN


def migrate_anonymous_openings(fingerprint: str, user_id: str) -> int:
    """Copy every opening keyed by ``fingerprint`` onto ``user_id``; returns rows added.

    Safe to call repeatedly: rows that already exist for the account are
    skipped. Failures are logged and reported as zero migrated rows.
    """
    if not fingerprint or not user_id or fingerprint == user_id:
        return 0

    migrated = 0
    try:
        for row in rows_for_key(fingerprint):
            added = upsert_opened_wish(
                user_id,
                row["wish_id"],
                row["chain_id"],
                creator_name=row.get("creator_name"),
                opened_at=row.get("opened_at"),
                is_favorite=bool(row.get("is_favorite")),
                notes=row.get("notes") or "",
            )
            if added:
                migrated += 1
    except StarWishError as exc:
        if has_app_context():
            current_app.logger.warning(
                "Could not migrate anonymous openings for %s: %s", user_id, exc
            )
        return migrated

    if migrated and has_app_context():
        current_app.logger.info(
            "Migrated %s anonymous opening(s) from %s to %s", migrated, fingerprint, user_id
        )
    return migrated


def on_session_changed(sender, event=None, user_id=None, fingerprint=None, **extra):
    if event == EVENT_SIGNED_IN and user_id:
        migrate_anonymous_openings(fingerprint, user_id)
