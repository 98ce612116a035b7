"""
projectledger/services

Domain operations behind the REST blueprints.

Transaction pattern (same in every mutating operation):
    change rows -> db.session.flush() -> log_action(...) -> commit
Any exception rolls the whole unit back and is re-raised to the caller.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import sqlalchemy as sa
from sqlalchemy.orm import Session

from ..errors import InvalidStateError
from ..extensions import db


@contextmanager
def unit_of_work() -> Iterator[Session]:
    """Commit on success, roll back and re-raise on any failure."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def conditional_transition(model, record, expected, values: dict, label: str) -> None:
    """
    Atomically move `record` out of `expected` status.

    Issues `UPDATE ... WHERE id = :id AND status = :expected`. If another
    request changed the row first, no row matches and InvalidStateError is
    raised instead of applying the transition twice. On success `record` is
    refreshed from the row.
    """
    result = db.session.execute(
        sa.update(model)
        .where(model.id == record.id, model.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError(
            f"{label} is no longer {expected.value}",
            {"expectedStatus": expected.value},
        )
    db.session.refresh(record)
