import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from common import cache

from . import admission, approval, models, schemas
from .auth import Principal, get_current_principal, require_roles
from .clock import Clock, get_clock
from .config import LOG_LEVEL, REDIS_URL
from .conflicts import room_availability
from .database import Base, engine, get_db
from .errors import (
    InvalidTransition,
    LimitExceeded,
    NotFound,
    PermissionDenied,
    ReservationError,
    ValidationFailed,
)
from .intervals import format_time, parse_date, parse_time

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

cache.configure(REDIS_URL)

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Reservations Service", version="1.0.0")
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "reservations"

ERROR_STATUS = {
    ValidationFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
    LimitExceeded: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
}


def _envelope(request: Request, status_code: int, detail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "service": SERVICE_NAME,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "detail": detail,
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _envelope(request, exc.status_code, exc.detail)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return _envelope(request, status_code, exc.detail())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(request, 500, "Internal server error")


@app.get("/")
def root():
    """
    Health-check endpoint for the Reservations service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


admin_only = require_roles("admin")


def _query_date(value: Optional[str], name: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{name}: {exc}",
        )


def _query_time(value: str, name: str):
    try:
        return parse_time(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{name}: {exc}",
        )


# ---------- Create reservation (single or recurring) ----------


@router_v1.post(
    "/reservations",
    response_model=schemas.CreateResult,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    reservation_in: schemas.ReservationCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    Book a room once, or on a weekly pattern until a given date.

    Behavior
    --------
    - Every instance is checked against the room's restriction policy and
      against non-rejected reservations of the room.
    - Either every instance is created or none is.
    - Instances start approved, or pending when the room requires approval.

    Returns
    -------
    CreateResult
        The created instances with the batch status and series id.

    Raises
    ------
    ReservationError
        404 for an unknown room/purpose, 422 for violations, conflicts or a
        recurrence over the instance cap.
    """
    reservations = admission.create_reservations(db, reservation_in, principal, clock.now())
    cache.invalidate_room_availability(reservation_in.room_id)
    first = reservations[0]
    return schemas.CreateResult(
        status=first.status,
        series_id=first.series_id,
        instances_created=len(reservations),
        reservations=[schemas.ReservationRead.model_validate(r) for r in reservations],
    )


# ---------- Public day calendar ----------


@router_v1.get("/reservations", response_model=List[schemas.ReservationRead])
def list_reservations(
    date_: Optional[str] = Query(default=None, alias="date"),
    room_id: Optional[int] = Query(default=None, ge=1),
    purpose_id: Optional[int] = Query(default=None, ge=1),
    per_page: int = Query(default=20, ge=1, le=50),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    List approved reservations of one day, ordered by room then start time.

    Parameters
    ----------
    date_ : str, optional
        Day to list (``YYYY-MM-DD``); defaults to today.
    room_id, purpose_id : int, optional
        Filters.
    per_page : int
        Page size, at most 50.
    page : int
        1-based page number.
    """
    day = _query_date(date_, "date") or clock.now().date()
    q = (
        db.query(models.Reservation)
        .filter(models.Reservation.date == day)
        .filter(models.Reservation.status == models.ReservationStatus.APPROVED)
    )
    if room_id is not None:
        q = q.filter(models.Reservation.room_id == room_id)
    if purpose_id is not None:
        q = q.filter(models.Reservation.purpose_id == purpose_id)
    return (
        q.order_by(models.Reservation.room_id, models.Reservation.start_time)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )


# ---------- My reservations ----------


@router_v1.get("/reservations/me", response_model=List[schemas.ReservationRead])
def list_my_reservations(
    status_: Optional[models.ReservationStatus] = Query(default=None, alias="status"),
    date_: Optional[str] = Query(default=None, alias="date"),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    per_page: int = Query(default=15, ge=1, le=50),
    page: int = Query(default=1, ge=1),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    List reservations requested by the authenticated user.

    Filters by status, by an exact date, or by an inclusive date range.
    Results are ordered by date and start time, ``per_page`` (at most 50)
    per page.
    """
    q = db.query(models.Reservation).filter(models.Reservation.user_id == principal.user_id)
    if status_ is not None:
        q = q.filter(models.Reservation.status == status_)

    day = _query_date(date_, "date")
    if day is not None:
        q = q.filter(models.Reservation.date == day)
    else:
        start = _query_date(start_date, "start_date")
        end = _query_date(end_date, "end_date")
        if start is not None and end is not None and end < start:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="end_date must be on or after start_date",
            )
        if start is not None:
            q = q.filter(models.Reservation.date >= start)
        if end is not None:
            q = q.filter(models.Reservation.date <= end)

    return (
        q.order_by(models.Reservation.date, models.Reservation.start_time)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )


@router_v1.get("/reservations/{reservation_id}", response_model=schemas.ReservationRead)
def get_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Fetch one reservation.

    Visible to its requester, to the people responsible for its room and to
    admins.
    """
    reservation = db.get(models.Reservation, reservation_id)
    if reservation is None:
        raise NotFound("reservation", reservation_id)
    if reservation.user_id != principal.user_id and not approval.can_manage_room(
        principal, reservation.room
    ):
        raise PermissionDenied("You cannot view this reservation")
    return reservation


# ---------- Update / delete ----------


@router_v1.put("/reservations/{reservation_id}", response_model=schemas.ReservationRead)
def update_reservation(
    reservation_id: int,
    update_data: schemas.ReservationUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    Update an existing reservation instance.

    Access
    ------
    - Owner of the reservation.
    - Admin for any reservation.

    Behavior
    --------
    - Applies only the fields provided in ReservationUpdate.
    - Moving the reservation re-checks restrictions and conflicts; other
      instances of its own series never conflict with it.
    - Supplying ``party_type`` replaces the responsible parties.
    """
    old_room_id = None
    existing = db.get(models.Reservation, reservation_id)
    if existing is not None:
        old_room_id = existing.room_id
    reservation = admission.update_reservation(db, reservation_id, update_data, principal, clock.now())
    cache.invalidate_room_availability(reservation.room_id)
    if old_room_id is not None and old_room_id != reservation.room_id:
        cache.invalidate_room_availability(old_room_id)
    return reservation


@router_v1.delete("/reservations/{reservation_id}", response_model=schemas.DeleteResult)
def delete_reservation(
    reservation_id: int,
    purge: bool = False,
    purge_from_date: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    Delete a reservation, or every instance of its series.

    Parameters
    ----------
    purge : bool
        Delete the whole series the reservation belongs to.
    purge_from_date : str, optional
        With a series, delete only instances on or after this date
        (``YYYY-MM-DD``).
    """
    purge_from = _query_date(purge_from_date, "purge_from_date")
    deleted = admission.delete_reservations(
        db, reservation_id, principal, clock.now(), purge=purge, purge_from=purge_from
    )
    # room_id is gone with the rows; availability of every room is dropped
    cache.invalidate_room_availability()
    return {"deleted_count": len(deleted), "deleted": deleted}


# ---------- Approval workflow ----------


@router_v1.patch("/reservations/{reservation_id}/approve", response_model=schemas.ReservationRead)
def approve_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    Approve a pending reservation.

    Access
    ------
    - People responsible for the reservation's room.
    - Admins.

    Raises
    ------
    ReservationError
        409 when not pending or dated in the past, 403 for other users,
        422 when the room policy or an approved reservation now forbids it.
    """
    reservation = approval.approve(db, reservation_id, principal, clock.now())
    cache.invalidate_room_availability(reservation.room_id)
    return reservation


@router_v1.patch("/reservations/{reservation_id}/reject", response_model=schemas.ReservationRead)
def reject_reservation(
    reservation_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    clock: Clock = Depends(get_clock),
):
    """
    Reject a pending reservation. Same access rules as approval.
    """
    return approval.reject(db, reservation_id, principal, clock.now())


@router_v1.post("/approvals/run-due")
def run_due_approvals(
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_only),
    clock: Clock = Depends(get_clock),
):
    """
    Admin: execute automatic-approval tasks whose deadline has passed.

    Meant to be called periodically by a scheduler.

    Returns
    -------
    dict
        ``{"approved": [reservation ids]}``.
    """
    approved = approval.run_due_approvals(db, clock.now())
    if approved:
        cache.invalidate_room_availability()
    return {"approved": approved}


# ---------- Rooms and purposes (read-only reference data) ----------


@router_v1.get("/rooms", response_model=List[schemas.RoomRead])
def list_rooms(
    min_capacity: Optional[int] = Query(default=None, ge=1),
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    """
    List bookable rooms, ordered by name.

    Parameters
    ----------
    min_capacity : Optional[int]
        Minimum room capacity.
    category : Optional[str]
        Substring to match in the room category.

    Returns
    -------
    List[RoomRead]
        Rooms with their restriction policy and responsible users.
    """
    query = db.query(models.Room)
    if min_capacity is not None:
        query = query.filter(models.Room.capacity >= min_capacity)
    if category:
        query = query.filter(models.Room.category.ilike(f"%{category}%"))
    return query.order_by(models.Room.name).all()


@router_v1.get("/rooms/{room_id}", response_model=schemas.RoomRead)
def get_room(
    room_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    """
    Retrieve a single room, including its restriction policy.

    Raises
    ------
    ReservationError
        404 if the room does not exist.
    """
    room = db.get(models.Room, room_id)
    if room is None:
        raise NotFound("room", room_id)
    return room


@router_v1.get("/purposes", response_model=List[schemas.PurposeRead])
def list_purposes(
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    """List the purposes a reservation can be made for, ordered by name."""
    return db.query(models.Purpose).order_by(models.Purpose.name).all()


# ---------- Room availability ----------


@router_v1.get("/rooms/{room_id}/availability", response_model=schemas.RoomAvailability)
def check_room_availability(
    room_id: int,
    start_date: str,
    start_time: str,
    end_time: str,
    end_date: Optional[str] = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    """
    Report, day by day, whether a time range is free in a room.

    Only approved reservations occupy the room here. Results are cached per
    room and query until the room's reservations change.

    Parameters
    ----------
    room_id : int
        Room to check.
    start_date, end_date : str
        Inclusive day range (``YYYY-MM-DD``); ``end_date`` defaults to
        ``start_date``.
    start_time, end_time : str
        Time range (``H:MM``).
    """
    first_day = _query_date(start_date, "start_date")
    last_day = _query_date(end_date, "end_date") or first_day
    begins = _query_time(start_time, "start_time")
    ends = _query_time(end_time, "end_time")
    if ends <= begins:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_time must be after start_time",
        )
    if last_day < first_day:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must be on or after start_date",
        )
    if (last_day - first_day).days > 366:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Availability can be checked for at most one year at a time",
        )

    cache_key = cache.availability_key(
        room_id, first_day, last_day, format_time(begins), format_time(ends)
    )
    cached = cache.get_cached_json(cache_key)
    if cached is not None:
        return cached

    room = db.get(models.Room, room_id)
    if room is None:
        raise NotFound("room", room_id)

    days = room_availability(db, room_id, first_day, last_day, begins, ends)
    available_days = sum(1 for d in days if d["available"])
    data = {
        "room_id": room.id,
        "room_name": room.name,
        "start_date": first_day.isoformat(),
        "end_date": last_day.isoformat(),
        "start_time": format_time(begins),
        "end_time": format_time(ends),
        "days": days,
        "available_days": available_days,
        "busy_days": len(days) - available_days,
    }
    cache.set_cached_json(cache_key, data, ttl_seconds=60)
    return data


app.include_router(router_v1)
