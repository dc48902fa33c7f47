"""Explicit session context: the one place that talks to the auth backend.

Views build a :class:`SessionContext` per request and hand its
:class:`Identity` to the services that need one. Sign-up, sign-in and
sign-out go through the context, which updates the Flask session and then
broadcasts a single ``session-changed`` signal. Everything that reacts to
authentication (the anonymous-opening migration, for one) subscribes to that
signal instead of listening to the backend on its own.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from flask import current_app, g, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from backend import execute, get_supabase_client, log_backend_warning, sql_guard
from errors import BackendRejected, BackendUnavailable, NotAuthenticated, ValidationError
from extensions import db, session_changed
from identity.fingerprint import fingerprint_from_request
from models import User

SESSION_USER_ID = "user_id"
SESSION_USER_NAME = "user_name"
SESSION_USER_EMAIL = "user_email"
SESSION_FINGERPRINT = "fingerprint"

EVENT_SIGNED_IN = "signed_in"
EVENT_SIGNED_OUT = "signed_out"


@dataclass(frozen=True)
class Identity:
    """Two-phase identity: always an anonymous fingerprint, optionally an account."""

    fingerprint: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def key(self) -> str:
        return self.user_id or self.fingerprint


class SessionContext:
    def __init__(self, store, fingerprint: str):
        self._store = store
        self._fingerprint = store.get(SESSION_FINGERPRINT) or fingerprint
        store[SESSION_FINGERPRINT] = self._fingerprint

    @classmethod
    def from_request(cls) -> "SessionContext":
        return cls(session, fingerprint_from_request(request))

    @property
    def identity(self) -> Identity:
        return Identity(
            fingerprint=self._fingerprint,
            user_id=self._store.get(SESSION_USER_ID),
            user_name=self._store.get(SESSION_USER_NAME),
        )

    def require_user(self) -> Identity:
        identity = self.identity
        if not identity.is_authenticated:
            raise NotAuthenticated("Sign in to continue.")
        return identity

    def to_public_dict(self) -> dict:
        identity = self.identity
        return {
            "authenticated": identity.is_authenticated,
            "user_id": identity.user_id,
            "user_name": identity.user_name,
            "email": self._store.get(SESSION_USER_EMAIL),
            "fingerprint": identity.fingerprint,
        }

    def sign_up(self, email: str, password: str, name: Optional[str] = None) -> Identity:
        email, password = _validate_credentials(email, password)
        client = get_supabase_client()
        if client:
            user = _supabase_sign_up(client, email, password, name)
        else:
            user = _sign_up_sql(email, password, name)
        return self._signed_in(user)

    def sign_in(self, email: str, password: str) -> Identity:
        email, password = _validate_credentials(email, password)
        client = get_supabase_client()
        if client:
            user = _supabase_sign_in(client, email, password)
        else:
            user = _sign_in_sql(email, password)
        return self._signed_in(user)

    def sign_out(self) -> None:
        previous = self.identity
        client = get_supabase_client()
        if client:
            try:
                client.auth.sign_out()
            except Exception as exc:  # pragma: no cover - external service dependency
                log_backend_warning("signing out", exc)
        for key in (SESSION_USER_ID, SESSION_USER_NAME, SESSION_USER_EMAIL):
            self._store.pop(key, None)
        self._broadcast(EVENT_SIGNED_OUT, previous.user_id)

    def _signed_in(self, user: dict) -> Identity:
        self._store[SESSION_USER_ID] = user["id"]
        self._store[SESSION_USER_NAME] = user.get("name") or user.get("email")
        self._store[SESSION_USER_EMAIL] = user.get("email")
        self._broadcast(EVENT_SIGNED_IN, user["id"])
        return self.identity

    def _broadcast(self, event: str, user_id: Optional[str]) -> None:
        session_changed.send(
            current_app._get_current_object(),
            event=event,
            user_id=user_id,
            fingerprint=self._fingerprint,
        )


def _validate_credentials(email: str, password: str) -> tuple[str, str]:
    email = (email or "").strip().lower()
    password = password or ""
    if not email or "@" not in email:
        raise ValidationError("A valid email address is required.", payload={"error": "invalid_email"})
    if len(password) < 6:
        raise ValidationError("Passwords need at least 6 characters.", payload={"error": "weak_password"})
    return email, password


def _supabase_user_dict(auth_user, fallback_name: Optional[str] = None) -> dict:
    metadata = getattr(auth_user, "user_metadata", None) or {}
    return {
        "id": str(auth_user.id),
        "email": getattr(auth_user, "email", None),
        "name": metadata.get("full_name") or metadata.get("name") or fallback_name,
    }


def _raise_auth_failure(action: str, exc: Exception) -> None:
    log_backend_warning(action, exc)
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException, ConnectionError)):
        raise BackendUnavailable(f"Auth service unreachable while {action}.") from exc
    raise BackendRejected(f"Auth service rejected {action}: {exc}") from exc


def _supabase_sign_up(client, email: str, password: str, name: Optional[str]) -> dict:
    options = {"data": {"full_name": name}} if name else {}
    try:
        response = client.auth.sign_up({"email": email, "password": password, "options": options})
    except Exception as exc:  # pragma: no cover - external service dependency
        _raise_auth_failure("signing up", exc)
    if not getattr(response, "user", None):
        raise BackendRejected("Sign-up did not return a user.")
    user = _supabase_user_dict(response.user, name)
    _upsert_profile(client, user)
    return user


def _supabase_sign_in(client, email: str, password: str) -> dict:
    try:
        response = client.auth.sign_in_with_password({"email": email, "password": password})
    except Exception as exc:  # pragma: no cover - external service dependency
        _raise_auth_failure("signing in", exc)
    if not getattr(response, "user", None):
        raise BackendRejected("Sign-in did not return a user.")
    user = _supabase_user_dict(response.user)
    _upsert_profile(client, user)
    return user


def _upsert_profile(client, user: dict) -> None:
    try:
        execute(
            client.table("users").upsert(
                {"id": user["id"], "email": user["email"], "name": user.get("name")}
            ),
            "upserting user profile",
        )
    except (BackendRejected, BackendUnavailable):
        # Profile row is cosmetic (creator display name); sign-in still succeeds.
        pass


def _sign_up_sql(email: str, password: str, name: Optional[str]) -> dict:
    if User.query.filter_by(email=email).first():
        raise BackendRejected("That email is already registered.", conflict=True)
    user = User(email=email, name=(name or "").strip() or None, password_hash=generate_password_hash(password))
    with sql_guard("creating account"):
        db.session.add(user)
        db.session.commit()
    return user.to_public_dict()


def _sign_in_sql(email: str, password: str) -> dict:
    user = User.query.filter_by(email=email).first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        raise NotAuthenticated(
            "Email or password is incorrect.",
            payload={"error": "invalid_credentials"},
        )
    return user.to_public_dict()


def lookup_display_name(user_id: str) -> Optional[str]:
    """Best-effort display name for a creator; None when unknown."""
    client = get_supabase_client()
    if client:
        try:
            response = execute(
                client.table("users").select("name,email").eq("id", user_id),
                "loading creator profile",
            )
        except (BackendRejected, BackendUnavailable):
            return None
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return rows[0].get("name") or rows[0].get("email")

    try:
        with sql_guard("loading creator profile"):
            user = db.session.get(User, user_id)
    except (BackendRejected, BackendUnavailable):
        return None
    if not user:
        return None
    return user.name or user.email


def current_session() -> SessionContext:
    """Session context for the current request, built once and reused."""
    context = g.get("starwish_session")
    if context is None:
        context = SessionContext.from_request()
        g.starwish_session = context
    return context
