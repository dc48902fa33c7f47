"""JSON API for the signed-in user's wishes."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from identity.session import current_session
from wishes.service import create_wish, delete_wish, list_wishes, update_wish
from wishes.views import filter_wishes, summarize_wishes

wishes_bp = Blueprint("wishes", __name__, url_prefix="/api/wishes")


@wishes_bp.get("")
def list_owner_wishes():
    identity = current_session().require_user()
    wishes = list_wishes(identity.user_id)
    visible = filter_wishes(
        wishes,
        category=request.args.get("category"),
        priority=request.args.get("priority"),
        query=request.args.get("q"),
        sort=request.args.get("sort"),
    )
    return jsonify(
        {
            "wishes": visible,
            "total": len(wishes),
            "summary": summarize_wishes(wishes),
        }
    )


@wishes_bp.post("")
def create_owner_wish():
    identity = current_session().require_user()
    wish = create_wish(identity.user_id, request.get_json(silent=True) or {})
    return jsonify(wish), 201


@wishes_bp.patch("/<wish_id>")
def update_owner_wish(wish_id: str):
    identity = current_session().require_user()
    wish = update_wish(identity.user_id, wish_id, request.get_json(silent=True) or {})
    return jsonify(wish)


@wishes_bp.delete("/<wish_id>")
def delete_owner_wish(wish_id: str):
    identity = current_session().require_user()
    deleted = delete_wish(identity.user_id, wish_id)
    return jsonify({"status": "ok", "deleted": deleted, "id": wish_id})
