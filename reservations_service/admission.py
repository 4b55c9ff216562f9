"""
Reservation admission: create, update and delete.

A create request is expanded into dated instances, every instance is checked
against the room's restriction policy and existing reservations, and either
all instances are stored in one transaction or none is.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .approval import can_manage_room
from .auth import Principal
from .conflicts import find_conflicts, series_member_ids
from .errors import InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from .recurrence import expand_dates
from .responsibles import NameLookup, attach_parties, directory_lookup
from .restrictions import Candidate, Violation, ViolationCode, evaluate
from .scheduler import cancel_auto_approval, schedule_auto_approval
from .schemas import ReservationCreate, ReservationUpdate

logger = logging.getLogger(__name__)


def _lock_room(db: Session, room_id: int) -> models.Room:
    # Serializes admissions on the same room until commit
    room = (
        db.query(models.Room)
        .filter(models.Room.id == room_id)
        .with_for_update()
        .first()
    )
    if room is None:
        raise NotFound("room", room_id)
    return room


def _ensure_purpose(db: Session, purpose_id: int) -> None:
    exists = db.query(models.Purpose.id).filter(models.Purpose.id == purpose_id).first()
    if exists is None:
        raise NotFound("purpose", purpose_id)


def _initial_status(room: models.Room) -> models.ReservationStatus:
    if room.policy is not None and room.policy.requires_approval:
        return models.ReservationStatus.PENDING
    return models.ReservationStatus.APPROVED


def _past_violation(day: date, start_time, now: datetime) -> Optional[Violation]:
    today = now.date()
    if day < today or (day == today and start_time <= now.time()):
        return Violation(
            ViolationCode.DATE_IN_PAST,
            "Reservations cannot be placed in the past",
            day,
        )
    return None


def create_reservations(
    db: Session,
    request: ReservationCreate,
    principal: Principal,
    now: datetime,
    lookup_name: NameLookup = directory_lookup,
) -> List[models.Reservation]:
    """
    Admit a single or recurring reservation request.

    Parameters
    ----------
    db : Session
        Database session; committed on success, rolled back on failure.
    request : ReservationCreate
        Validated request payload.
    principal : Principal
        Requester; becomes the owner of every instance.
    now : datetime
        Current institutional time.
    lookup_name : Callable[[int], Optional[str]]
        Person-name lookup used for ``unit`` responsibility.

    Returns
    -------
    List[Reservation]
        Created instances in date order. They share ``series_id`` (the id of
        the first one) when the request was recurring.

    Raises
    ------
    NotFound
        If the room or purpose does not exist.
    LimitExceeded
        If the recurrence expands past the instance cap.
    ValidationFailed
        If any instance violates the room policy or overlaps an existing
        non-rejected reservation. Nothing is persisted.
    """
    try:
        room = _lock_room(db, request.room_id)
        _ensure_purpose(db, request.purpose_id)

        if request.is_recurring:
            try:
                dates = expand_dates(request.date, request.repeat_weekdays, request.repeat_until)
            except ValueError as exc:
                raise ValidationFailed(
                    [Violation(ViolationCode.INVALID_TIME_RANGE, str(exc), request.date)]
                ) from exc
            series_end = request.repeat_until
        else:
            dates = [request.date]
            series_end = None

        violations = []
        conflicts = []
        if not can_manage_room(principal, room):
            past = _past_violation(request.date, request.start_time, now)
            if past is not None:
                violations.append(past)

        for day in dates:
            candidate = Candidate(
                room_name=room.name,
                day=day,
                start_time=request.start_time,
                end_time=request.end_time,
                series_end=series_end,
            )
            violations.extend(evaluate(room.policy, candidate, now))
            conflicts.extend(
                find_conflicts(db, room.id, day, request.start_time, request.end_time)
            )

        if violations or conflicts:
            raise ValidationFailed(violations, conflicts)

        status = _initial_status(room)
        reservations = [
            models.Reservation(
                title=request.title,
                description=request.description,
                room=room,
                purpose_id=request.purpose_id,
                user_id=principal.user_id,
                date=day,
                start_time=request.start_time,
                end_time=request.end_time,
                status=status,
            )
            for day in dates
        ]
        db.add_all(reservations)
        db.flush()

        if request.is_recurring:
            series_id = reservations[0].id
            for reservation in reservations:
                reservation.series_id = series_id

        for reservation in reservations:
            schedule_auto_approval(db, reservation, now)

        attach_parties(
            db,
            reservations,
            request.party_type,
            principal,
            unit_members=request.unit_members,
            external_names=request.external_names,
            lookup_name=lookup_name,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "User %s created %d %s reservation(s) in room %s",
        principal.user_id,
        len(reservations),
        status.value,
        room.id,
    )
    return reservations


def _load_owned(db: Session, reservation_id: int, principal: Principal, verb: str) -> models.Reservation:
    reservation = (
        db.query(models.Reservation)
        .filter(models.Reservation.id == reservation_id)
        .with_for_update()
        .first()
    )
    if reservation is None:
        raise NotFound("reservation", reservation_id)
    if reservation.user_id != principal.user_id and not principal.is_admin:
        raise PermissionDenied(f"You can only {verb} your own reservations")
    return reservation


def update_reservation(
    db: Session,
    reservation_id: int,
    changes: ReservationUpdate,
    principal: Principal,
    now: datetime,
    lookup_name: NameLookup = directory_lookup,
) -> models.Reservation:
    """
    Apply a partial update to one reservation instance.

    Moving the reservation (date, times or room) re-runs the restriction
    and conflict checks; instances of its own series never count as
    conflicts. Moving to a room that requires approval puts the reservation
    back to pending. Rejected reservations are final and cannot be moved.

    Raises
    ------
    NotFound, PermissionDenied, ValidationFailed
    InvalidTransition
        If a rejected reservation would be moved.
    """
    fields = changes.model_fields_set
    try:
        reservation = _load_owned(db, reservation_id, principal, "update")

        if "room_id" in fields and changes.room_id is not None and changes.room_id != reservation.room_id:
            room = _lock_room(db, changes.room_id)
            room_changed = True
        else:
            room = _lock_room(db, reservation.room_id)
            room_changed = False

        if "purpose_id" in fields and changes.purpose_id is not None:
            _ensure_purpose(db, changes.purpose_id)

        day = changes.date if changes.date is not None else reservation.date
        start_time = changes.start_time if changes.start_time is not None else reservation.start_time
        end_time = changes.end_time if changes.end_time is not None else reservation.end_time
        if end_time <= start_time:
            raise ValidationFailed(
                [Violation(ViolationCode.INVALID_TIME_RANGE, "end_time must be after start_time", day)]
            )

        moved = room_changed or (day, start_time, end_time) != (
            reservation.date,
            reservation.start_time,
            reservation.end_time,
        )
        if moved and reservation.status == models.ReservationStatus.REJECTED:
            raise InvalidTransition(
                "Rejected reservations cannot be moved", reservation.status
            )
        if moved:
            violations = []
            if not can_manage_room(principal, room):
                past = _past_violation(day, start_time, now)
                if past is not None:
                    violations.append(past)
            candidate = Candidate(room_name=room.name, day=day, start_time=start_time, end_time=end_time)
            violations.extend(evaluate(room.policy, candidate, now))
            conflicts = find_conflicts(
                db,
                room.id,
                day,
                start_time,
                end_time,
                exclude_ids=series_member_ids(db, reservation),
            )
            if violations or conflicts:
                raise ValidationFailed(violations, conflicts)

        if "title" in fields and changes.title is not None:
            reservation.title = changes.title
        if "description" in fields:
            reservation.description = changes.description
        if "purpose_id" in fields and changes.purpose_id is not None:
            reservation.purpose_id = changes.purpose_id
        reservation.room = room
        reservation.date = day
        reservation.start_time = start_time
        reservation.end_time = end_time

        if room_changed and _initial_status(room) == models.ReservationStatus.PENDING:
            reservation.status = models.ReservationStatus.PENDING
        if moved:
            schedule_auto_approval(db, reservation, now)

        if changes.party_type is not None:
            attach_parties(
                db,
                [reservation],
                changes.party_type,
                principal,
                unit_members=changes.unit_members,
                external_names=changes.external_names,
                lookup_name=lookup_name,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(reservation)
    logger.info("Reservation %s updated by user %s", reservation.id, principal.user_id)
    return reservation


def delete_reservations(
    db: Session,
    reservation_id: int,
    principal: Principal,
    now: datetime,
    purge: bool = False,
    purge_from: Optional[date] = None,
) -> List[dict]:
    """
    Delete a reservation, or its whole series.

    Parameters
    ----------
    db : Session
        Database session; committed on success, rolled back on failure.
    reservation_id : int
        Reservation to delete.
    principal : Principal
        Acting user; must own the reservation or be an admin.
    now : datetime
        Current institutional time.
    purge : bool
        Delete every instance of the reservation's series.
    purge_from : date, optional
        With a series, delete only instances dated on or after this day.
        Implies ``purge``.

    Returns
    -------
    List[dict]
        ``{"id", "title", "date"}`` of every deleted instance.

    Raises
    ------
    NotFound, PermissionDenied
    ValidationFailed
        If a non-admin tries to delete a reservation dated in the past.
        A non-admin purge leaves the past instances of the series in place.
    """
    try:
        reservation = _load_owned(db, reservation_id, principal, "delete")
        if not principal.is_admin and reservation.date < now.date():
            raise ValidationFailed(
                [
                    Violation(
                        ViolationCode.DATE_IN_PAST,
                        "Reservations on past dates cannot be deleted",
                        reservation.date,
                    )
                ]
            )

        if (purge or purge_from is not None) and reservation.series_id is not None:
            q = db.query(models.Reservation).filter(
                models.Reservation.series_id == reservation.series_id
            )
            if purge_from is not None:
                q = q.filter(models.Reservation.date >= purge_from)
            if not principal.is_admin:
                q = q.filter(models.Reservation.date >= now.date())
            targets = q.order_by(models.Reservation.date, models.Reservation.id).all()
        else:
            targets = [reservation]

        deleted = []
        for target in targets:
            deleted.append({"id": target.id, "title": target.title, "date": target.date})
            cancel_auto_approval(db, target.id)
            db.delete(target)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "User %s deleted %d reservation(s) starting from %s",
        principal.user_id,
        len(deleted),
        reservation_id,
    )
    return deleted
