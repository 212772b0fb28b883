"""Session helpers that ride out SQLite 'database is locked' contention."""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

from ..extensions import db

T = TypeVar("T")


def commit_with_retry(
    work: Callable[[], T] | None = None,
    attempts: int = 5,
    base_delay: float = 0.2,
) -> T | None:
    """Run `work` and commit; on a lock error roll back, wait and replay `work`.

    Any other failure rolls the session back and propagates, so a unit of work is
    either fully committed or not at all.
    """
    for attempt in range(attempts):
        try:
            result = work() if work is not None else None
            db.session.commit()
            return result
        except OperationalError as exc:
            db.session.rollback()
            if "locked" not in str(exc).lower() or attempt == attempts - 1:
                raise
            time.sleep(base_delay * (attempt + 1))
        except Exception:
            db.session.rollback()
            raise
    return None
