"""JSON API for building star chains and following their share status."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from backend import parse_datetime
from chains.service import build_chain, get_chain, member_wishes
from chains.tracker import tracker_for
from errors import NotFound, ValidationError
from identity.session import current_session

chains_bp = Blueprint("chains", __name__, url_prefix="/api/chains")


@chains_bp.post("")
def create_chain():
    identity = current_session().require_user()
    payload = request.get_json(silent=True) or {}

    wish_ids = payload.get("wish_ids")
    if wish_ids is None:
        wish_ids = []
    if not isinstance(wish_ids, list):
        raise ValidationError("wish_ids must be a list.", payload={"error": "invalid_selection"})

    chain = build_chain(
        identity.user_id,
        wish_ids,
        origin=_public_origin(),
        name=payload.get("name"),
        description=payload.get("description"),
        expires_at=_parse_expiry(payload.get("expires_at")),
    )
    tracker_for(identity.user_id).apply(chain)
    return jsonify(chain), 201


@chains_bp.get("")
def list_owner_chains():
    identity = current_session().require_user()
    tracker = tracker_for(identity.user_id)
    tracker.refresh_all()
    return jsonify(
        {
            "chains": tracker.chains(request.args.get("status", "all")),
            "counts": tracker.counts(),
        }
    )


@chains_bp.post("/refresh")
def refresh_owner_chains():
    identity = current_session().require_user()
    tracker = tracker_for(identity.user_id)
    changed = tracker.refresh_all()
    return jsonify({"changed": changed, "counts": tracker.counts()})


@chains_bp.get("/<chain_id>")
def show_chain(chain_id: str):
    identity = current_session().require_user()
    chain = get_chain(chain_id, creator_id=identity.user_id)
    if not chain:
        raise NotFound("Star chain not found.")
    chain["wishes"] = member_wishes(chain_id)
    return jsonify(chain)


@chains_bp.post("/<chain_id>/refresh")
def refresh_chain(chain_id: str):
    identity = current_session().require_user()
    tracker = tracker_for(identity.user_id)
    chain = tracker.refresh_one(chain_id)
    return jsonify({"chain": chain, "counts": tracker.counts()})


def _public_origin() -> str:
    return current_app.config.get("STARWISH_PUBLIC_ORIGIN") or request.host_url


def _parse_expiry(raw) -> Optional[datetime]:
    if raw in (None, ""):
        return None
    parsed = parse_datetime(raw)
    if parsed is None:
        raise ValidationError("expires_at must be an ISO-8601 timestamp.", payload={"error": "invalid_expiry"})
    return parsed
