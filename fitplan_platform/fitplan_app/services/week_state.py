"""Per-(user, week) generation state.

Rows store the status as a string column; everything above the model layer works
with the closed union below so a "generated" week without a payload cannot exist.
Claims are single conditional UPDATE statements: whoever flips the row to
``generating`` owns the week, and everybody else gets a conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Tuple, Union

from flask import current_app
from sqlalchemy import update
from werkzeug.exceptions import NotFound

from ..extensions import db
from ..metrics import record_week_status
from ..models import TrainingPlan, WeeklyPlan
from ..models.planning import (
    PLAN_ACTIVE,
    WEEK_ERROR,
    WEEK_GENERATED,
    WEEK_GENERATING,
    WEEK_PENDING,
)
from ..utils import commit_with_retry
from .plan_events import publish_week_status


class WeekConflict(Exception):
    """A week is already generating or generated and cannot be claimed again."""

    def __init__(self, week_number: int, status: str):
        super().__init__(f"Week {week_number} is already {status}")
        self.week_number = week_number
        self.status = status


class WeekSuperseded(Exception):
    """A claimed week lost its claim before the result was stored (e.g. the plan was regenerated)."""

    def __init__(self, week_number: int):
        super().__init__(f"Week {week_number} is no longer claimed by this generation")
        self.week_number = week_number


@dataclass(frozen=True)
class Pending:
    name = WEEK_PENDING


@dataclass(frozen=True)
class Generating:
    started_at: datetime | None
    name = WEEK_GENERATING


@dataclass(frozen=True)
class Generated:
    payload: Dict[str, Any]
    generated_at: datetime | None
    name = WEEK_GENERATED


@dataclass(frozen=True)
class Error:
    message: str
    name = WEEK_ERROR


WeekStatus = Union[Pending, Generating, Generated, Error]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_of(row: WeeklyPlan) -> WeekStatus:
    if row.generation_status == WEEK_GENERATED:
        if not row.plan_json:
            return Error("missing payload")
        return Generated(row.plan_json, row.generated_at)
    if row.generation_status == WEEK_GENERATING:
        return Generating(row.generation_started_at)
    if row.generation_status == WEEK_ERROR:
        return Error(row.generation_error or "unknown error")
    return Pending()


def describe(status: WeekStatus) -> Dict[str, Any]:
    generated_at = status.generated_at if isinstance(status, Generated) else None
    return {
        "status": status.name,
        "error": status.message if isinstance(status, Error) else None,
        "generated_at": generated_at.isoformat() if generated_at else None,
    }


def active_week(user_id: int, week_number: int, *, plan_id: int | None = None) -> WeeklyPlan | None:
    query = WeeklyPlan.query.join(TrainingPlan).filter(
        WeeklyPlan.user_id == user_id,
        WeeklyPlan.week_number == week_number,
        TrainingPlan.status == PLAN_ACTIVE,
    )
    if plan_id is not None:
        query = query.filter(WeeklyPlan.plan_id == plan_id)
    return query.first()


def claim_week(
    user_id: int,
    week_number: int,
    *,
    allow_from: Iterable[str] = (WEEK_PENDING, WEEK_ERROR),
    plan_id: int | None = None,
) -> WeeklyPlan:
    """Atomically move a week to ``generating``; raise WeekConflict if someone else holds it.

    With ``plan_id`` only that plan's week can be claimed, and only while the plan is active.
    """

    row = active_week(user_id, week_number, plan_id=plan_id)
    if row is None:
        raise NotFound(f"Week {week_number} not found")
    allowed = tuple(allow_from)
    now = utcnow()

    def _claim() -> int:
        result = db.session.execute(
            update(WeeklyPlan)
            .where(
                WeeklyPlan.id == row.id,
                WeeklyPlan.status == PLAN_ACTIVE,
                WeeklyPlan.generation_status.in_(allowed),
            )
            .values(
                generation_status=WEEK_GENERATING,
                generation_started_at=now,
                generation_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    if commit_with_retry(_claim) != 1:
        db.session.refresh(row)
        raise WeekConflict(week_number, row.generation_status)
    db.session.refresh(row)
    record_week_status(WEEK_GENERATING)
    publish_week_status(user_id, week_number, WEEK_GENERATING)
    return row


def _claimed(week_id: int):
    """Predicate for a row still held by its claimer inside an active plan."""

    return (
        WeeklyPlan.id == week_id,
        WeeklyPlan.status == PLAN_ACTIVE,
        WeeklyPlan.generation_status == WEEK_GENERATING,
    )


def mark_failed(user_id: int, week_number: int, message: str, *, week_id: int | None = None) -> bool:
    """Move a claimed week to ``error``; a lost claim leaves the row untouched."""

    if week_id is None:
        row = active_week(user_id, week_number)
        if row is None:
            return False
        week_id = row.id
    short = (message or "unknown error")[:2000]

    def _write() -> int:
        result = db.session.execute(
            update(WeeklyPlan)
            .where(*_claimed(week_id))
            .values(
                generation_status=WEEK_ERROR,
                generation_error=short,
                generation_started_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    if commit_with_retry(_write) != 1:
        current_app.logger.info(
            "Dropped failure of week %s for user %s: claim no longer held", week_number, user_id
        )
        return False
    record_week_status(WEEK_ERROR)
    publish_week_status(user_id, week_number, WEEK_ERROR, short)
    current_app.logger.warning("Week %s for user %s failed: %s", week_number, user_id, short)
    return True


def complete_claim(week_id: int, payload: Dict[str, Any], source: str, **columns: Any) -> bool:
    """Set the generated state on a claimed row; the caller owns the transaction."""

    now = utcnow()
    values = {
        "plan_json": payload,
        "source": source,
        "generation_status": WEEK_GENERATED,
        "generation_error": None,
        "generated_at": now,
        "updated_at": now,
        **{key: value for key, value in columns.items() if value is not None},
    }
    result = db.session.execute(
        update(WeeklyPlan)
        .where(*_claimed(week_id))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def stale_generating_weeks(max_age_seconds: int) -> List[WeeklyPlan]:
    stale_before = utcnow() - timedelta(seconds=max_age_seconds)
    return (
        WeeklyPlan.query.join(TrainingPlan)
        .filter(
            TrainingPlan.status == PLAN_ACTIVE,
            WeeklyPlan.generation_status == WEEK_GENERATING,
            WeeklyPlan.generation_started_at < stale_before,
        )
        .order_by(WeeklyPlan.generation_started_at.asc())
        .all()
    )


def mark_pending(rows: Iterable[WeeklyPlan]) -> List[Tuple[int, int]]:
    rows = list(rows)
    released: List[Tuple[int, int]] = []

    def _write():
        released.clear()
        for row in rows:
            row.generation_status = WEEK_PENDING
            row.generation_started_at = None
            row.generation_error = None
            released.append((row.user_id, row.week_number))

    commit_with_retry(_write)
    for user_id, week_number in released:
        record_week_status(WEEK_PENDING)
        publish_week_status(user_id, week_number, WEEK_PENDING)
    return released
