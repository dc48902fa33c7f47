"""Blind box reveal: resolve a share code, pick one wish, claim the chain once.

A reveal walks ``idle -> loading -> ready -> opening -> revealed``. Loading
may end in ``not_found`` (missing, inactive, expired or empty chain) and
opening may end in ``failed`` (already opened by someone else, or a backend
error). The opened flag is claimed with a single conditional update so two
simultaneous openers can never both win.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from backend import execute, get_supabase_client, now_utc, rows_of, sql_guard
from blindbox.collection import upsert_opened_wish
from chains.service import (
    chain_is_expired,
    get_chain_by_code,
    member_wishes,
    normalize_share_code,
)
from errors import StarWishError
from extensions import chain_opened, db
from identity.session import Identity, lookup_display_name
from models import BlindBoxOpen, StarChain


class RevealState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    NOT_FOUND = "not_found"
    OPENING = "opening"
    REVEALED = "revealed"
    FAILED = "failed"


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EMPTY = "empty"
    ALREADY_OPENED = "already_opened"
    BACKEND = "backend"


MESSAGE_KEYS = {
    RevealState.READY: "blindbox.ready",
    RevealState.REVEALED: "blindbox.revealed",
    FailureKind.NOT_FOUND: "blindbox.expired",
    FailureKind.INACTIVE: "blindbox.expired",
    FailureKind.EXPIRED: "blindbox.expired",
    FailureKind.EMPTY: "blindbox.expired",
    FailureKind.ALREADY_OPENED: "blindbox.alreadyOpened",
}


@dataclass
class RevealOutcome:
    state: RevealState
    failure: Optional[FailureKind] = None
    chain: Optional[Dict[str, Any]] = None
    wishes: List[Dict[str, Any]] = field(default_factory=list)
    wish: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[StarWishError] = None

    @property
    def message_key(self) -> str:
        if self.failure is FailureKind.BACKEND and self.error is not None:
            return self.error.message_key
        if self.failure is not None:
            return MESSAGE_KEYS[self.failure]
        return MESSAGE_KEYS.get(self.state, "errors.generic")

    @property
    def status_code(self) -> int:
        if self.failure is None:
            return 200
        if self.failure is FailureKind.ALREADY_OPENED:
            return 409
        if self.failure is FailureKind.BACKEND and self.error is not None:
            return self.error.status_code
        return 404

    def to_public_dict(self) -> Dict[str, Any]:
        # The wish list stays private until reveal; only the count is exposed.
        payload: Dict[str, Any] = {
            "state": self.state.value,
            "failure": self.failure.value if self.failure else None,
            "wish_count": len(self.wishes),
            "warnings": list(self.warnings),
        }
        if self.chain is not None and self.failure is None:
            payload["chain"] = {
                "name": self.chain.get("name"),
                "description": self.chain.get("description"),
                "share_code": self.chain.get("share_code"),
                "expires_at": self.chain.get("expires_at"),
            }
        if self.wish is not None:
            payload["wish"] = self.wish
        return payload


class BlindBoxRevealer:
    """One reveal attempt. ``rng`` is injectable for tests; production uses SystemRandom."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        migrate: Optional[Callable[[str, str], int]] = None,
    ):
        self.rng = rng or random.SystemRandom()
        self.migrate = migrate
        self.state = RevealState.IDLE

    def load(self, share_code: Optional[str]) -> RevealOutcome:
        self.state = RevealState.LOADING
        code = normalize_share_code(share_code)
        if not code:
            return self._finish(RevealOutcome(RevealState.NOT_FOUND, FailureKind.NOT_FOUND))

        try:
            chain = get_chain_by_code(code)
            if not chain:
                return self._finish(RevealOutcome(RevealState.NOT_FOUND, FailureKind.NOT_FOUND))
            if not chain.get("is_active"):
                return self._finish(RevealOutcome(RevealState.NOT_FOUND, FailureKind.INACTIVE, chain=chain))
            if chain_is_expired(chain):
                return self._finish(RevealOutcome(RevealState.NOT_FOUND, FailureKind.EXPIRED, chain=chain))
            if chain.get("is_opened"):
                return self._finish(RevealOutcome(RevealState.FAILED, FailureKind.ALREADY_OPENED, chain=chain))
            wishes = member_wishes(chain["id"])
        except StarWishError as exc:
            return self._finish(RevealOutcome(RevealState.FAILED, FailureKind.BACKEND, error=exc))

        if not wishes:
            return self._finish(RevealOutcome(RevealState.NOT_FOUND, FailureKind.EMPTY, chain=chain))
        return self._finish(RevealOutcome(RevealState.READY, chain=chain, wishes=wishes))

    def pick(self, wishes: List[Dict[str, Any]]) -> Dict[str, Any]:
        return wishes[self.rng.randrange(len(wishes))]

    def open(
        self,
        share_code: Optional[str],
        identity: Identity,
        user_agent: Optional[str] = None,
        ip_hash: Optional[str] = None,
        box: Optional[RevealOutcome] = None,
    ) -> RevealOutcome:
        """Reveal one wish. ``box`` reuses an earlier load result instead of loading again."""
        ready = box if box is not None else self.load(share_code)
        if ready.state is not RevealState.READY:
            return ready

        self.state = RevealState.OPENING
        chain = ready.chain or {}
        wish = self.pick(ready.wishes)

        try:
            claimed = claim_chain(chain, identity.fingerprint)
        except StarWishError as exc:
            return self._finish(RevealOutcome(RevealState.FAILED, FailureKind.BACKEND, chain=chain, error=exc))
        if claimed is None:
            return self._finish(RevealOutcome(RevealState.FAILED, FailureKind.ALREADY_OPENED, chain=chain))

        warnings: List[str] = []
        try:
            record_open(claimed["id"], wish["id"], identity.fingerprint, user_agent, ip_hash)
        except StarWishError as exc:
            current_app.logger.warning("Blind box audit write failed for chain %s: %s", claimed["id"], exc)
            warnings.append("audit_not_recorded")

        try:
            upsert_opened_wish(
                identity.key,
                wish["id"],
                claimed["id"],
                creator_name=lookup_display_name(claimed["creator_id"]),
            )
        except StarWishError as exc:
            current_app.logger.warning("Received-wish write failed for chain %s: %s", claimed["id"], exc)
            warnings.append("collection_not_recorded")

        if identity.is_authenticated and self.migrate:
            self.migrate(identity.fingerprint, identity.user_id)

        current_app.logger.info("Star chain %s opened by %s", claimed["id"], identity.key)
        chain_opened.send(current_app._get_current_object(), chain=claimed)
        return self._finish(
            RevealOutcome(
                RevealState.REVEALED,
                chain=claimed,
                wishes=ready.wishes,
                wish=wish,
                warnings=warnings,
            )
        )

    def _finish(self, outcome: RevealOutcome) -> RevealOutcome:
        self.state = outcome.state
        return outcome


def claim_chain(chain: Dict[str, Any], opener_fingerprint: str) -> Optional[Dict[str, Any]]:
    """Flip ``is_opened`` only if it is still false; None means another opener won."""
    opened_at = now_utc()
    client = get_supabase_client()
    if client:
        response = execute(
            client.table("star_chains")
            .update(
                {
                    "is_opened": True,
                    "opened_at": opened_at.isoformat(),
                    "opener_fingerprint": opener_fingerprint,
                    "total_opens": (chain.get("total_opens") or 0) + 1,
                    "updated_at": opened_at.isoformat(),
                }
            )
            .eq("id", chain["id"])
            .eq("is_opened", False)
            .eq("is_active", True),
            "opening star chain",
        )
        rows = rows_of(response)
        return rows[0] if rows else None

    with sql_guard("opening star chain"):
        updated = (
            StarChain.query.filter(
                StarChain.id == chain["id"],
                StarChain.is_opened.is_(False),
                StarChain.is_active.is_(True),
            )
            .update(
                {
                    StarChain.is_opened: True,
                    StarChain.opened_at: opened_at,
                    StarChain.opener_fingerprint: opener_fingerprint,
                    StarChain.total_opens: StarChain.total_opens + 1,
                    StarChain.updated_at: opened_at,
                },
                synchronize_session=False,
            )
        )
        db.session.commit()
    if not updated:
        return None
    row = db.session.get(StarChain, chain["id"])
    return row.to_public_dict() if row else None


def record_open(
    chain_id: str,
    wish_id: str,
    opener_fingerprint: Optional[str],
    user_agent: Optional[str],
    ip_hash: Optional[str],
) -> None:
    payload = {
        "chain_id": chain_id,
        "wish_id": wish_id,
        "opener_fingerprint": opener_fingerprint,
        "user_agent": (user_agent or "")[:500] or None,
        "ip_hash": ip_hash,
        "opened_at": now_utc().isoformat(),
    }
    client = get_supabase_client()
    if client:
        execute(client.table("blind_box_opens").insert(payload), "recording blind box open")
        return

    with sql_guard("recording blind box open"):
        db.session.add(
            BlindBoxOpen(
                chain_id=chain_id,
                wish_id=wish_id,
                opener_fingerprint=opener_fingerprint,
                user_agent=payload["user_agent"],
                ip_hash=ip_hash,
            )
        )
        db.session.commit()

