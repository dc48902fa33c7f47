"""Star chain creation and lookups."""

from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import bleach
from flask import current_app

from backend import (
    execute,
    get_supabase_client,
    isoformat_or_none,
    now_utc,
    parse_datetime,
    rows_of,
    single_row,
    sql_guard,
)
from errors import BackendRejected, ValidationError
from extensions import db
from models import StarChain, StarChainWish, Wish

SHARE_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHARE_CODE_LENGTH = 8
SHARE_QUERY_PARAM = "box"
MAX_CHAIN_NAME_LENGTH = 120


def generate_share_code() -> str:
    return "".join(secrets.choice(SHARE_CODE_ALPHABET) for _ in range(SHARE_CODE_LENGTH))


def normalize_share_code(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    cleaned = raw.strip().upper()
    if len(cleaned) != SHARE_CODE_LENGTH:
        return None
    if any(char not in SHARE_CODE_ALPHABET for char in cleaned):
        return None
    return cleaned


def build_share_url(origin: str, share_code: str) -> str:
    return f"{origin.rstrip('/')}/?{urlencode({SHARE_QUERY_PARAM: share_code})}"


def build_chain(
    owner_id: str,
    wish_ids: Iterable[str],
    *,
    origin: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Create a chain over the owner's selected wishes and return it with its share URL."""
    selected = _dedupe([str(wish_id).strip() for wish_id in wish_ids or [] if str(wish_id).strip()])
    if not selected:
        raise ValidationError(
            "Select at least one wish to build a star chain.",
            payload={"error": "empty_selection"},
            message_key="chain.selectionRequired",
        )
    if expires_at is not None and expires_at <= now_utc():
        raise ValidationError("Expiry must be in the future.", payload={"error": "expiry_in_past"})

    owned = _owned_wish_ids(owner_id, selected)
    foreign = [wish_id for wish_id in selected if wish_id not in owned]
    if foreign:
        raise ValidationError(
            "Some selected wishes are not yours or no longer exist.",
            payload={"error": "foreign_wishes", "wish_ids": foreign},
        )

    record = {
        "creator_id": owner_id,
        "name": _clean_text(name, MAX_CHAIN_NAME_LENGTH) or None,
        "description": _clean_text(description) or None,
        "expires_at": isoformat_or_none(expires_at),
        "is_active": True,
        "is_opened": False,
        "total_opens": 0,
    }

    client = get_supabase_client()
    if client:
        chain = _build_chain_supabase(client, record, selected)
    else:
        chain = _build_chain_sql(record, selected)

    chain["wish_ids"] = selected
    chain["share_url"] = build_share_url(origin, chain["share_code"])
    current_app.logger.info(
        "Star chain %s created by %s with %s wish(es)", chain["id"], owner_id, len(selected)
    )
    return chain


def get_chain_members(chain_id: str) -> List[str]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("star_chain_wishes").select("wish_id").eq("chain_id", chain_id),
            "loading chain members",
        )
        return [row["wish_id"] for row in rows_of(response)]

    rows = StarChainWish.query.filter_by(chain_id=chain_id).all()
    return [row.wish_id for row in rows]


def member_wishes(chain_id: str) -> List[Dict[str, Any]]:
    """Resolve a chain's members to wish rows; deleted wishes simply drop out."""
    wish_ids = get_chain_members(chain_id)
    if not wish_ids:
        return []

    client = get_supabase_client()
    if client:
        response = execute(
            client.table("wishes").select("*").in_("id", wish_ids),
            "loading chain wishes",
        )
        rows = rows_of(response)
    else:
        rows = [wish.to_public_dict() for wish in Wish.query.filter(Wish.id.in_(wish_ids)).all()]

    rows.sort(key=lambda row: row.get("created_at") or "")
    return rows


def get_chain_by_code(share_code: str) -> Optional[Dict[str, Any]]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("star_chains").select("*").eq("share_code", share_code),
            "loading star chain",
        )
        return single_row(response, "loading star chain")

    chain = StarChain.query.filter_by(share_code=share_code).first()
    return chain.to_public_dict() if chain else None


def get_chain(chain_id: str, creator_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    client = get_supabase_client()
    if client:
        query = client.table("star_chains").select("*").eq("id", chain_id)
        if creator_id:
            query = query.eq("creator_id", creator_id)
        return single_row(execute(query, "loading star chain"), "loading star chain")

    query = StarChain.query.filter_by(id=chain_id)
    if creator_id:
        query = query.filter_by(creator_id=creator_id)
    chain = query.first()
    return chain.to_public_dict() if chain else None


def list_chains(creator_id: str, include_wishes: bool = True) -> List[Dict[str, Any]]:
    """Creator's chains newest first, optionally with the member wishes attached."""
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("star_chains")
            .select("*")
            .eq("creator_id", creator_id)
            .order("created_at", desc=True),
            "loading star chains",
        )
        chains = rows_of(response)
    else:
        rows = (
            StarChain.query.filter_by(creator_id=creator_id)
            .order_by(StarChain.created_at.desc())
            .all()
        )
        chains = [row.to_public_dict() for row in rows]

    if include_wishes:
        for chain in chains:
            chain["wishes"] = member_wishes(chain["id"])
    return chains


def chain_is_expired(chain: Dict[str, Any], reference: Optional[datetime] = None) -> bool:
    expires_at = parse_datetime(chain.get("expires_at"))
    if not expires_at:
        return False
    return expires_at <= (reference or now_utc())


def _build_chain_supabase(client, record: Dict[str, Any], wish_ids: List[str]) -> Dict[str, Any]:
    chain = None
    for attempt in range(_max_code_attempts()):
        payload = dict(record, share_code=generate_share_code())
        try:
            chain = single_row(
                execute(client.table("star_chains").insert(payload), "creating star chain"),
                "creating star chain",
            )
            break
        except BackendRejected as exc:
            if not exc.conflict or attempt == _max_code_attempts() - 1:
                raise
            current_app.logger.info("Share code collision, retrying (%s)", attempt + 1)
    if not chain:
        raise BackendRejected("Star chain insert returned no row.")

    membership = [{"chain_id": chain["id"], "wish_id": wish_id} for wish_id in wish_ids]
    try:
        execute(client.table("star_chain_wishes").insert(membership), "linking chain wishes")
    except Exception:
        _discard_chain_supabase(client, chain["id"])
        raise
    return chain


def _discard_chain_supabase(client, chain_id: str) -> None:
    try:
        execute(client.table("star_chains").delete().eq("id", chain_id), "discarding orphaned chain")
    except Exception as exc:  # pragma: no cover - external service dependency
        current_app.logger.warning("Orphaned star chain %s could not be removed: %s", chain_id, exc)


def _build_chain_sql(record: Dict[str, Any], wish_ids: List[str]) -> Dict[str, Any]:
    for attempt in range(_max_code_attempts()):
        share_code = generate_share_code()
        if not StarChain.query.filter_by(share_code=share_code).first():
            break
        current_app.logger.info("Share code collision, retrying (%s)", attempt + 1)
    else:
        raise BackendRejected("Could not allocate a unique share code.", conflict=True)

    chain = StarChain(
        creator_id=record["creator_id"],
        name=record["name"],
        description=record["description"],
        share_code=share_code,
        expires_at=parse_datetime(record["expires_at"]),
        is_active=True,
        is_opened=False,
        total_opens=0,
    )
    # Chain and membership commit together; a failure rolls both back.
    with sql_guard("creating star chain"):
        db.session.add(chain)
        db.session.flush()
        for wish_id in wish_ids:
            db.session.add(StarChainWish(chain_id=chain.id, wish_id=wish_id))
        db.session.commit()
    return chain.to_public_dict()


def _owned_wish_ids(owner_id: str, wish_ids: List[str]) -> set[str]:
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("wishes").select("id").eq("user_id", owner_id).in_("id", wish_ids),
            "checking wish ownership",
        )
        return {row["id"] for row in rows_of(response)}

    rows = Wish.query.filter(Wish.user_id == owner_id, Wish.id.in_(wish_ids)).all()
    return {row.id for row in rows}


def _max_code_attempts() -> int:
    try:
        value = int(current_app.config.get("SHARE_CODE_MAX_ATTEMPTS", 5))
    except (TypeError, ValueError):
        value = 5
    return max(1, value)


def _clean_text(value: Optional[str], limit: Optional[int] = None) -> str:
    cleaned = bleach.clean(value or "", tags=[], attributes={}, strip=True).strip()
    if limit is not None:
        cleaned = cleaned[:limit]
    return cleaned


def _dedupe(values: List[str]) -> List[str]:
    seen: set[str] = set()
    ordered = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
