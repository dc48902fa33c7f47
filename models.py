"""Database models for the local StarWish fallback (mirrors the Supabase tables)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from backend import ensure_aware, isoformat_or_none
from extensions import db

WISH_CATEGORIES = ("gift", "experience", "moment")
WISH_PRIORITIES = ("low", "medium", "high")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(db.Model):
    """Account row; Supabase keeps credentials in its auth schema, the fallback keeps a hash here."""

    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": isoformat_or_none(self.created_at),
        }


class Wish(db.Model):
    """A single wishlist entry owned by one account."""

    __tablename__ = "wishes"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), index=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    category = db.Column(db.String(20), nullable=False, default="gift")
    priority = db.Column(db.String(10), nullable=False, default="medium")
    tags = db.Column(db.JSON, nullable=False, default=list)
    estimated_price = db.Column(db.String(100), nullable=False, default="")
    notes = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    memberships = db.relationship(
        "StarChainWish",
        backref="wish",
        cascade="all, delete",
    )

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description or "",
            "category": self.category,
            "priority": self.priority,
            "tags": list(self.tags or []),
            "estimated_price": self.estimated_price or "",
            "notes": self.notes or "",
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<Wish id={self.id} title={self.title!r} owner={self.user_id}>"


class StarChain(db.Model):
    """A shareable bundle of wishes revealed once through its share code."""

    __tablename__ = "star_chains"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    creator_id = db.Column(db.String(36), index=True, nullable=False)
    name = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    share_code = db.Column(db.String(8), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_opened = db.Column(db.Boolean, default=False, nullable=False)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    opener_fingerprint = db.Column(db.String(64), nullable=True)
    total_opens = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    memberships = db.relationship(
        "StarChainWish",
        backref="chain",
        cascade="all, delete",
    )

    STATUS_LIVE = "Live"
    STATUS_OPENED = "Opened"
    STATUS_EXPIRED = "Expired"
    STATUS_INACTIVE = "Inactive"

    def status(self, reference: Optional[datetime] = None) -> str:
        """Return a friendly status label for the share history."""
        ref = reference or datetime.now(timezone.utc)
        if ref.tzinfo is None:
            ref = ref.replace(tzinfo=timezone.utc)

        end = ensure_aware(self.expires_at)

        if not self.is_active:
            return self.STATUS_INACTIVE
        if self.is_opened:
            return self.STATUS_OPENED
        if end and end <= ref:
            return self.STATUS_EXPIRED
        return self.STATUS_LIVE

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "name": self.name,
            "description": self.description,
            "share_code": self.share_code,
            "expires_at": isoformat_or_none(self.expires_at),
            "is_active": bool(self.is_active),
            "is_opened": bool(self.is_opened),
            "opened_at": isoformat_or_none(self.opened_at),
            "opener_fingerprint": self.opener_fingerprint,
            "total_opens": self.total_opens or 0,
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<StarChain id={self.id} code={self.share_code!r} opened={self.is_opened}>"


class StarChainWish(db.Model):
    """Membership of a wish in a chain; written once when the chain is built."""

    __tablename__ = "star_chain_wishes"

    id = db.Column(db.Integer, primary_key=True)
    chain_id = db.Column(
        db.String(36),
        db.ForeignKey("star_chains.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    wish_id = db.Column(
        db.String(36),
        db.ForeignKey("wishes.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    __table_args__ = (
        db.UniqueConstraint("chain_id", "wish_id", name="uq_star_chain_wish"),
    )


class BlindBoxOpen(db.Model):
    """Append-only audit row, one per successful reveal. wish_id outlives the wish."""

    __tablename__ = "blind_box_opens"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    chain_id = db.Column(db.String(36), index=True, nullable=False)
    wish_id = db.Column(db.String(36), nullable=False)
    opener_fingerprint = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    ip_hash = db.Column(db.String(64), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "chain_id": self.chain_id,
            "wish_id": self.wish_id,
            "opener_fingerprint": self.opener_fingerprint,
            "user_agent": self.user_agent,
            "ip_hash": self.ip_hash,
            "opened_at": isoformat_or_none(self.opened_at),
        }


class UserOpenedWish(db.Model):
    """Recipient-side collection entry (unique per identity/wish/chain)."""

    __tablename__ = "user_opened_wishes"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_fingerprint = db.Column(db.String(64), index=True, nullable=False)
    wish_id = db.Column(db.String(36), nullable=False)
    chain_id = db.Column(db.String(36), nullable=False)
    creator_name = db.Column(db.String(120), nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    is_favorite = db.Column(db.Boolean, default=False, nullable=False)
    notes = db.Column(db.Text, nullable=False, default="")

    __table_args__ = (
        db.UniqueConstraint(
            "user_fingerprint", "wish_id", "chain_id", name="uq_user_opened_wish"
        ),
    )

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "user_fingerprint": self.user_fingerprint,
            "wish_id": self.wish_id,
            "chain_id": self.chain_id,
            "creator_name": self.creator_name,
            "opened_at": isoformat_or_none(self.opened_at),
            "is_favorite": bool(self.is_favorite),
            "notes": self.notes or "",
        }
