"""Session endpoints: who am I, sign up, sign in, sign out."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from identity.session import current_session

session_bp = Blueprint("session", __name__, url_prefix="/api/session")


@session_bp.get("")
def session_state():
    return jsonify(current_session().to_public_dict())


@session_bp.post("/sign-up")
def sign_up():
    payload = request.get_json(silent=True) or {}
    context = current_session()
    context.sign_up(payload.get("email"), payload.get("password"), payload.get("name"))
    return jsonify(context.to_public_dict()), 201


@session_bp.post("/sign-in")
def sign_in():
    payload = request.get_json(silent=True) or {}
    context = current_session()
    context.sign_in(payload.get("email"), payload.get("password"))
    return jsonify(context.to_public_dict())


@session_bp.post("/sign-out")
def sign_out():
    context = current_session()
    context.sign_out()
    return jsonify(context.to_public_dict())
