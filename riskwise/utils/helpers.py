"""Shared utility functions.

parse_date:        lenient date parsing (returns None on bad input)
parse_date_input:  strict date parsing (raises ValidationError)
store_io:          wraps database calls, turning SQLAlchemyError into StoreIOError
commit_or_raise:   commits the session or rolls back and raises StoreIOError
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from riskwise.core.exceptions import StoreIOError, ValidationError
from riskwise.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field):
    """Parse a date, raising ValidationError naming ``field`` on bad input.

    Empty input returns None; callers decide whether the field is required.
    """
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Invalid date for {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: value},
        )
    return parsed


# ── Database helpers ─────────────────────────────────────────────────────────

@contextmanager
def store_io(action):
    """Run database calls, re-raising SQLAlchemyError as StoreIOError.

    ``action`` completes the sentence "Failed to ..." in the error message.

        with store_io("list potential risks for goal 42"):
            rows = db.session.execute(stmt).scalars().all()
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store call failed while trying to %s: %s", action, exc)
        raise StoreIOError(f"Failed to {action}: {exc.__class__.__name__}") from exc


def commit_or_raise(action):
    """Commit the current session; on failure roll back and raise StoreIOError.

    Usage::

        goal_service.delete_goal(goal_id, user_id, period)
        commit_or_raise(f"delete goal {goal_id}")
    """
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Commit failed while trying to %s", action)
        raise StoreIOError(f"Failed to {action}: {exc.__class__.__name__}") from exc


def rollback_quietly():
    """Roll back after a failed unit of work; a failing rollback is only logged."""
    try:
        db.session.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed")
