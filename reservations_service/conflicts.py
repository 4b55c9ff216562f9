"""Time-overlap detection against existing reservations of a room."""
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from . import models
from .intervals import Interval, format_time, overlaps


@dataclass(frozen=True)
class ConflictSummary:
    """Existing reservation that overlaps a candidate."""
    id: int
    title: str
    day: date
    start_time: time
    end_time: time

    @classmethod
    def from_reservation(cls, reservation: models.Reservation) -> "ConflictSummary":
        return cls(
            id=reservation.id,
            title=reservation.title,
            day=reservation.date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
        )

    def describe(self) -> str:
        return f"{self.title} ({format_time(self.start_time)} to {format_time(self.end_time)})"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.day.isoformat(),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
        }


def series_member_ids(db: Session, reservation: models.Reservation) -> List[int]:
    """Return ids of every instance sharing ``reservation``'s series (itself included)."""
    if reservation.series_id is None:
        return [reservation.id]
    rows = (
        db.query(models.Reservation.id)
        .filter(models.Reservation.series_id == reservation.series_id)
        .all()
    )
    return [row[0] for row in rows]


def find_conflicts(
    db: Session,
    room_id: int,
    day: date,
    start_time: time,
    end_time: time,
    exclude_ids: Iterable[int] = (),
    statuses: Optional[Sequence[models.ReservationStatus]] = None,
) -> List[ConflictSummary]:
    """
    List reservations of ``room_id`` on ``day`` overlapping ``[start_time, end_time)``.

    Parameters
    ----------
    db : Session
        Database session. Matching rows are locked for the rest of the
        transaction (``SELECT ... FOR UPDATE``).
    room_id : int
        Room to inspect.
    day : date
        Date of the candidate.
    start_time, end_time : time
        Candidate time range.
    exclude_ids : Iterable[int]
        Reservation ids to ignore (the one being edited and its series).
    statuses : Sequence[ReservationStatus], optional
        Restrict the check to these statuses. By default every reservation
        that is not rejected is considered.

    Returns
    -------
    List[ConflictSummary]
        Conflicting reservations in query order (ascending id).
    """
    q = (
        db.query(models.Reservation)
        .filter(models.Reservation.room_id == room_id)
        .filter(models.Reservation.date == day)
    )
    if statuses is None:
        q = q.filter(models.Reservation.status != models.ReservationStatus.REJECTED)
    else:
        q = q.filter(models.Reservation.status.in_(list(statuses)))

    excluded = [i for i in exclude_ids if i is not None]
    if excluded:
        q = q.filter(models.Reservation.id.notin_(excluded))

    candidate = Interval.from_times(day, start_time, end_time)
    existing = q.order_by(models.Reservation.id).with_for_update().all()
    return [
        ConflictSummary.from_reservation(r)
        for r in existing
        if overlaps(candidate, Interval.from_times(r.date, r.start_time, r.end_time))
    ]


def room_availability(
    db: Session,
    room_id: int,
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
) -> List[Dict[str, Any]]:
    """
    Report, day by day, whether a time range is free in a room.

    Only approved reservations occupy the room for this report.

    Returns
    -------
    List[dict]
        One entry per day between ``start_date`` and ``end_date`` inclusive:
        ``{"date", "available", "conflicts"}``.
    """
    approved = (
        db.query(models.Reservation)
        .filter(models.Reservation.room_id == room_id)
        .filter(models.Reservation.status == models.ReservationStatus.APPROVED)
        .filter(models.Reservation.date >= start_date)
        .filter(models.Reservation.date <= end_date)
        .order_by(models.Reservation.date, models.Reservation.start_time)
        .all()
    )
    by_day: Dict[date, List[models.Reservation]] = {}
    for r in approved:
        by_day.setdefault(r.date, []).append(r)

    days = []
    current = start_date
    while current <= end_date:
        wanted = Interval.from_times(current, start_time, end_time)
        clashes = [
            ConflictSummary.from_reservation(r).as_dict()
            for r in by_day.get(current, [])
            if overlaps(wanted, Interval.from_times(r.date, r.start_time, r.end_time))
        ]
        days.append(
            {
                "date": current.isoformat(),
                "available": not clashes,
                "conflicts": clashes,
            }
        )
        current += timedelta(days=1)
    return days
