"""
Approval workflow for pending reservations.

States: pending (initial), approved, rejected (both terminal).

- approve: pending, not past, caller is room-responsible or admin, the room's
  current policy still admits the reservation and no approved reservation
  overlaps it.
- reject: pending, not past, caller is room-responsible or admin.

Each instance is transitioned on its own; series siblings are untouched.
Both transitions drop the instance's automatic-approval task.
"""
import logging
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from . import models
from .auth import SYSTEM_PRINCIPAL, Principal
from .config import ADMIN_BYPASSES_RESTRICTIONS
from .conflicts import find_conflicts
from .errors import InvalidTransition, NotFound, PermissionDenied, ReservationError, ValidationFailed
from .restrictions import Candidate, evaluate
from .scheduler import cancel_auto_approval, due_tasks

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"
PAST_TENSE = {APPROVE: "approved", REJECT: "rejected"}


def can_manage_room(principal: Principal, room: models.Room) -> bool:
    """Room-responsible users and admins may decide on a room's reservations."""
    return principal.is_admin or principal.user_id in room.responsible_user_ids


def _load_for_update(db: Session, reservation_id: int) -> models.Reservation:
    reservation = (
        db.query(models.Reservation)
        .filter(models.Reservation.id == reservation_id)
        .with_for_update()
        .first()
    )
    if reservation is None:
        raise NotFound("reservation", reservation_id)
    return reservation


def _check_common_guards(
    reservation: models.Reservation, principal: Principal, now: datetime, action: str
) -> None:
    if reservation.status != models.ReservationStatus.PENDING:
        raise InvalidTransition(
            f"Reservation cannot be {PAST_TENSE[action]} because it is already {reservation.status.value}",
            reservation.status,
        )
    if reservation.date < now.date():
        raise InvalidTransition(
            f"Cannot {action} reservations on past dates",
            reservation.status,
            code="DATE_IN_PAST",
        )
    if not can_manage_room(principal, reservation.room):
        raise PermissionDenied(f"Only people responsible for the room can {action} reservations")


def _revalidate(
    db: Session,
    reservation: models.Reservation,
    principal: Principal,
    now: datetime,
    admin_bypasses_restrictions: bool,
) -> None:
    room = reservation.room
    violations = ()
    if not (principal.is_admin and admin_bypasses_restrictions):
        candidate = Candidate(
            room_name=room.name,
            day=reservation.date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
        )
        violations = evaluate(room.policy, candidate, now)

    conflicts = find_conflicts(
        db,
        reservation.room_id,
        reservation.date,
        reservation.start_time,
        reservation.end_time,
        exclude_ids=[reservation.id],
        statuses=[models.ReservationStatus.APPROVED],
    )
    if violations or conflicts:
        raise ValidationFailed(violations, conflicts)


def transition(
    db: Session,
    reservation_id: int,
    principal: Principal,
    now: datetime,
    action: str,
    admin_bypasses_restrictions: bool = ADMIN_BYPASSES_RESTRICTIONS,
) -> models.Reservation:
    """
    Apply ``approve`` or ``reject`` to a reservation, all guards included.

    Parameters
    ----------
    db : Session
        Database session; committed on success, rolled back on failure.
    reservation_id : int
        Reservation to transition.
    principal : Principal
        Acting user.
    now : datetime
        Current institutional time.
    action : str
        ``"approve"`` or ``"reject"``.
    admin_bypasses_restrictions : bool
        When true, an admin approving skips the restriction re-check (the
        conflict re-check always runs).

    Returns
    -------
    Reservation
        The updated reservation.

    Raises
    ------
    NotFound, InvalidTransition, PermissionDenied, ValidationFailed
        Whichever guard fails first; nothing is changed.
    """
    if action not in (APPROVE, REJECT):
        raise ValueError(f"Unknown workflow action {action!r}")

    try:
        reservation = _load_for_update(db, reservation_id)
        _check_common_guards(reservation, principal, now, action)
        if action == APPROVE:
            _revalidate(db, reservation, principal, now, admin_bypasses_restrictions)
            reservation.status = models.ReservationStatus.APPROVED
        else:
            reservation.status = models.ReservationStatus.REJECTED
        cancel_auto_approval(db, reservation.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(reservation)
    logger.info(
        "Reservation %s %s by user %s", reservation.id, PAST_TENSE[action], principal.user_id
    )
    return reservation


def approve(db: Session, reservation_id: int, principal: Principal, now: datetime, **kwargs):
    return transition(db, reservation_id, principal, now, APPROVE, **kwargs)


def reject(db: Session, reservation_id: int, principal: Principal, now: datetime, **kwargs):
    return transition(db, reservation_id, principal, now, REJECT, **kwargs)


def run_due_approvals(db: Session, now: datetime) -> List[int]:
    """
    Approve every reservation whose automatic-approval deadline has passed.

    Each task runs in its own transaction as the system principal. A task
    whose guards fail is dropped and the reservation stays pending for a
    human decision.

    Returns
    -------
    List[int]
        Ids of the reservations approved.
    """
    reservation_ids = [task.reservation_id for task in due_tasks(db, now)]
    approved = []
    for reservation_id in reservation_ids:
        try:
            approve(db, reservation_id, SYSTEM_PRINCIPAL, now)
        except ReservationError as exc:
            logger.warning(
                "Automatic approval of reservation %s failed (%s): %s",
                reservation_id,
                exc.code,
                exc.message,
            )
            cancel_auto_approval(db, reservation_id)
            db.commit()
            continue
        approved.append(reservation_id)
    return approved
