import os
import sys
from datetime import date, datetime, time

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# keep the module-level engine of the app off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from reservations_service import models
from reservations_service.auth import Principal
from reservations_service.database import Base
from reservations_service.schemas import ReservationCreate

# Monday
NOW = datetime(2026, 3, 2, 9, 0)

REQUESTER = Principal(user_id=1, username="alice", role="regular", name="Alice Doe", person_id=501)
OTHER_USER = Principal(user_id=2, username="bob", role="regular", name="Bob Roe")
ROOM_MANAGER = Principal(user_id=3, username="carol", role="regular", name="Carol Poe")
ADMIN = Principal(user_id=9, username="root", role="admin")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def purpose(db):
    purpose = models.Purpose(name="Class")
    db.add(purpose)
    db.commit()
    return purpose


@pytest.fixture
def make_room(db):
    counter = {"n": 0}

    def _make_room(name=None, responsibles=(ROOM_MANAGER.user_id,), **policy_fields):
        counter["n"] += 1
        room = models.Room(name=name or f"Room {counter['n']}", capacity=30, category="Lab")
        for user_id in responsibles:
            room.add_responsible(user_id)
        if policy_fields:
            room.policy = models.RestrictionPolicy(**policy_fields)
        db.add(room)
        db.commit()
        return room

    return _make_room


@pytest.fixture
def room(make_room):
    return make_room(name="Lab 101")


def build_request(room_id, purpose_id, **overrides) -> ReservationCreate:
    data = {
        "title": "Algorithms class",
        "room_id": room_id,
        "purpose_id": purpose_id,
        "date": "2026-03-03",
        "start_time": "10:00",
        "end_time": "11:00",
    }
    data.update(overrides)
    return ReservationCreate(**data)


def add_reservation(
    db,
    room,
    purpose,
    day=date(2026, 3, 3),
    start=time(10, 0),
    end=time(11, 0),
    status=models.ReservationStatus.APPROVED,
    user_id=REQUESTER.user_id,
    title="Existing booking",
    series_id=None,
):
    reservation = models.Reservation(
        title=title,
        room_id=room.id,
        purpose_id=purpose.id,
        user_id=user_id,
        date=day,
        start_time=start,
        end_time=end,
        status=status,
        series_id=series_id,
    )
    db.add(reservation)
    db.commit()
    return reservation
