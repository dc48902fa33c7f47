"""Recipient endpoints: peek at a blind box, open it, manage received wishes."""

from __future__ import annotations

import hashlib

from flask import Blueprint, current_app, jsonify, request

from blindbox.collection import list_received, set_favorite, update_notes
from blindbox.service import BlindBoxRevealer, FailureKind
from errors import ValidationError
from i18n import translate
from identity.migration import migrate_anonymous_openings
from identity.session import current_session

blindbox_bp = Blueprint("blindbox", __name__, url_prefix="/api")


def _revealer() -> BlindBoxRevealer:
    return BlindBoxRevealer(
        rng=current_app.config.get("BLIND_BOX_RNG"),
        migrate=migrate_anonymous_openings,
    )


def _outcome_response(outcome):
    payload = outcome.to_public_dict()
    payload["message"] = translate(outcome.message_key)
    if outcome.failure is not None:
        payload["action"] = "retry" if outcome.failure is FailureKind.BACKEND else "go_back"
    return jsonify(payload), outcome.status_code


@blindbox_bp.get("/box/<share_code>")
def peek_box(share_code: str):
    return _outcome_response(_revealer().load(share_code))


@blindbox_bp.post("/box/<share_code>/open")
def open_box(share_code: str):
    identity = current_session().identity
    outcome = _revealer().open(
        share_code,
        identity,
        user_agent=request.headers.get("User-Agent"),
        ip_hash=_ip_hash(),
    )
    return _outcome_response(outcome)


@blindbox_bp.get("/received")
def received_wishes():
    identity = current_session().identity
    return jsonify({"received": list_received(identity)})


@blindbox_bp.post("/received/<entry_id>/favorite")
def toggle_favorite(entry_id: str):
    identity = current_session().identity
    payload = request.get_json(silent=True) or {}
    value = payload.get("value", True)
    if not isinstance(value, bool):
        raise ValidationError("value must be true or false.", payload={"error": "invalid_favorite"})
    return jsonify(set_favorite(identity, entry_id, value))


@blindbox_bp.patch("/received/<entry_id>/notes")
def edit_notes(entry_id: str):
    identity = current_session().identity
    payload = request.get_json(silent=True) or {}
    return jsonify(update_notes(identity, entry_id, payload.get("notes") or ""))


def _ip_hash():
    remote = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    remote = remote.split(",")[0].strip()
    if not remote:
        return None
    salt = current_app.config.get("IP_HASH_SALT", "")
    return hashlib.sha256(f"{salt}:{remote}".encode("utf-8")).hexdigest()
