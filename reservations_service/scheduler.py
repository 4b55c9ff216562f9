"""
Automatic-approval tasks.

A pending reservation gets one task. Whoever runs
``approval.run_due_approvals`` periodically (cron, worker) approves the
reservations whose deadline has passed, through the normal approval workflow.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .config import AUTO_APPROVAL_HOURS


def approval_deadline(reservation: models.Reservation, now: datetime) -> datetime:
    """Deadline for automatic approval: policy hours after ``now``, capped at the start."""
    policy = reservation.room.policy if reservation.room is not None else None
    hours = AUTO_APPROVAL_HOURS
    if policy is not None and policy.auto_approval_hours is not None:
        hours = policy.auto_approval_hours
    starts_at = datetime.combine(reservation.date, reservation.start_time)
    return min(now + timedelta(hours=hours), starts_at)


def schedule_auto_approval(
    db: Session, reservation: models.Reservation, now: datetime
) -> Optional[models.ApprovalTask]:
    """(Re)schedule the automatic-approval task of a pending reservation."""
    cancel_auto_approval(db, reservation.id)
    if reservation.status != models.ReservationStatus.PENDING:
        return None
    task = models.ApprovalTask(
        reservation_id=reservation.id,
        run_at=approval_deadline(reservation, now),
    )
    db.add(task)
    return task


def cancel_auto_approval(db: Session, reservation_id: int) -> int:
    """Remove the pending automatic-approval task of a reservation, if any."""
    return (
        db.query(models.ApprovalTask)
        .filter(models.ApprovalTask.reservation_id == reservation_id)
        .delete(synchronize_session=False)
    )


def due_tasks(db: Session, now: datetime) -> List[models.ApprovalTask]:
    return (
        db.query(models.ApprovalTask)
        .filter(models.ApprovalTask.run_at <= now)
        .order_by(models.ApprovalTask.run_at, models.ApprovalTask.id)
        .all()
    )

