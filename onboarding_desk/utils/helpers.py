"""Shared service-layer helpers.

commit_or_raise:  commit the session, translating store failures into the
                  platform exception hierarchy.
store_guard:      context manager that does the same for reads.
clean_text:       string-typed JSON field extraction with error collection.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError

from onboarding_desk.core.exceptions import UpstreamUnavailableError
from onboarding_desk.models import db

logger = logging.getLogger(__name__)


def commit_or_raise(operation: str, **context):
    """Commit the current SQLAlchemy session or roll back and raise.

    OperationalError → UpstreamUnavailableError (connection / lock issues)
    IntegrityError   → re-raised unchanged; callers translate it to the
                       domain-specific ConflictError they need.

    Args:
        operation: Short name used in logs and in the raised error.
        **context: Extra structured fields for the log record.
    """
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("Integrity error on commit operation=%s", operation, extra=context)
        raise
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error on commit operation=%s", operation, extra=context)
        raise UpstreamUnavailableError(operation, str(exc.orig)) from exc


@contextmanager
def store_guard(operation: str, **context):
    """Translate OperationalError raised inside the block to UpstreamUnavailableError."""
    try:
        yield
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error operation=%s", operation, extra=context)
        raise UpstreamUnavailableError(operation, str(exc.orig)) from exc


def clean_text(value, path: str, errors: dict) -> str:
    """Return a stripped JSON string field, or "" when it is absent.

    Any other JSON type is recorded in ``errors`` under ``path`` and
    treated as absent, so callers can keep collecting field errors.
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        errors[path] = "must be a string"
        return ""
    return value.strip()
