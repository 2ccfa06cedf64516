"""Database helpers shared by the review/report workflows."""

from sqlalchemy.exc import IntegrityError

from backend.app import db
from backend.errors import ConflictError


def update_if_pending(model, row_id, **values):
    """Write ``values`` with one conditional UPDATE guarded by ``status = 'pending'``.

    Used to move a row out of ``pending``: it returns True only for the caller
    whose statement changed the row, so two reviewers racing on the same item
    cannot both win.
    """
    db.session.flush()
    updated = db.session.query(model).filter(
        model.id == row_id,
        model.status == 'pending',
    ).update(values, synchronize_session=False)
    return updated == 1


def commit_or_conflict(message):
    """Commit, translating pending-uniqueness violations into a 409."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(message) from exc


def clamp_limit(raw_limit, default=50, maximum=100):
    try:
        limit = int(raw_limit)
    except (TypeError, ValueError):
        return default
    if limit < 1:
        limit = 1
    if limit > maximum:
        limit = maximum
    return limit
