"""Access to the hosted Supabase project plus the SQL fallback guard.

Every service asks :func:`get_supabase_client` first and falls back to the
local Flask-SQLAlchemy tables when Supabase is disabled. Both paths translate
their failures into the same two errors: :class:`BackendUnavailable` when the
backend could not be reached and :class:`BackendRejected` when it answered
with a semantic error.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

import httpx
from dateutil import parser as date_parser
from flask import current_app, has_app_context
from postgrest.exceptions import APIError
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from errors import BackendRejected, BackendUnavailable
from extensions import db


def get_supabase_client():
    if not has_app_context():
        return None
    if not current_app.config.get("USE_SUPABASE"):
        return None
    client = current_app.config.get("SUPABASE_CLIENT")
    return client if client else None


def execute(query, action: str):
    """Execute a Supabase query, raising the StarWish error that matches the failure."""
    try:
        return query.execute()
    except APIError as exc:
        log_backend_warning(action, exc)
        raise BackendRejected(
            f"Backend rejected {action}: {getattr(exc, 'message', None) or exc}",
            conflict=is_supabase_conflict(exc),
        ) from exc
    except (httpx.TransportError, httpx.TimeoutException, ConnectionError) as exc:
        log_backend_warning(action, exc)
        raise BackendUnavailable(f"Backend unreachable while {action}.") from exc


def rows_of(response) -> list[dict[str, Any]]:
    data = getattr(response, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def single_row(response, action: str) -> Optional[dict[str, Any]]:
    """Return the only row of a response, None for zero rows, error for several."""
    rows = rows_of(response)
    if not rows:
        return None
    if len(rows) > 1:
        raise BackendRejected(f"Expected a single row while {action}, got {len(rows)}.")
    return rows[0]


@contextmanager
def sql_guard(action: str) -> Iterator[None]:
    """Roll back and translate SQLAlchemy failures for the local fallback."""
    try:
        yield
    except IntegrityError as exc:
        db.session.rollback()
        log_backend_warning(action, exc)
        raise BackendRejected(f"Database rejected {action}.", conflict=True) from exc
    except OperationalError as exc:
        db.session.rollback()
        log_backend_warning(action, exc)
        raise BackendUnavailable(f"Database unavailable while {action}.") from exc
    except (DBAPIError, SQLAlchemyError) as exc:
        db.session.rollback()
        log_backend_warning(action, exc)
        raise BackendRejected(f"Database rejected {action}.") from exc


def is_supabase_conflict(exc: Exception) -> bool:
    if getattr(exc, "code", None) == "23505":
        return True
    message = str(exc).lower()
    return "duplicate key value" in message or "unique constraint" in message


def log_backend_warning(action: str, exc: Exception) -> None:
    if not has_app_context():
        return
    logger = getattr(current_app, "logger", None)
    if logger:
        logger.warning("StarWish backend error while %s: %s", action, exc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_aware(value).astimezone(timezone.utc).isoformat()


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.isoparse(str(value))
        except (TypeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
