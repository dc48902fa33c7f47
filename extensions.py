"""Shared Flask extensions and signals used by the StarWish blueprints and services."""

from blinker import Namespace
from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy instance initialized in app.py so blueprints/services can import `db`.
db = SQLAlchemy()

_signals = Namespace()

# Sent with (app, event=..., user_id=..., fingerprint=...) whenever the auth session changes.
session_changed = _signals.signal("session-changed")

# Sent with (app, chain=<row dict>) after a chain has been opened.
chain_opened = _signals.signal("chain-opened")
