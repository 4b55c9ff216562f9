from datetime import date, time

from conftest import add_reservation

from reservations_service import models
from reservations_service.conflicts import find_conflicts, room_availability, series_member_ids

DAY = date(2026, 3, 3)


def test_overlapping_reservation_is_reported(db, room, purpose):
    existing = add_reservation(db, room, purpose, start=time(10, 0), end=time(11, 0))
    conflicts = find_conflicts(db, room.id, DAY, time(10, 30), time(11, 30))
    assert [c.id for c in conflicts] == [existing.id]
    assert conflicts[0].describe() == "Existing booking (10:00 to 11:00)"


def test_touching_and_other_rooms_do_not_conflict(db, make_room, room, purpose):
    add_reservation(db, room, purpose, start=time(10, 0), end=time(11, 0))
    other_room = make_room()
    assert find_conflicts(db, room.id, DAY, time(11, 0), time(12, 0)) == []
    assert find_conflicts(db, other_room.id, DAY, time(10, 0), time(11, 0)) == []


def test_rejected_reservations_never_block(db, room, purpose):
    add_reservation(db, room, purpose, status=models.ReservationStatus.REJECTED)
    assert find_conflicts(db, room.id, DAY, time(10, 0), time(11, 0)) == []


def test_pending_reservations_block_by_default(db, room, purpose):
    pending = add_reservation(db, room, purpose, status=models.ReservationStatus.PENDING)
    assert [c.id for c in find_conflicts(db, room.id, DAY, time(10, 0), time(11, 0))] == [pending.id]
    approved_only = find_conflicts(
        db, room.id, DAY, time(10, 0), time(11, 0), statuses=[models.ReservationStatus.APPROVED]
    )
    assert approved_only == []


def test_series_members_can_be_excluded(db, room, purpose):
    head = add_reservation(db, room, purpose)
    head.series_id = head.id
    db.commit()
    sibling = add_reservation(db, room, purpose, day=date(2026, 3, 10), series_id=head.id)

    assert sorted(series_member_ids(db, sibling)) == [head.id, sibling.id]
    conflicts = find_conflicts(
        db, room.id, DAY, time(10, 0), time(11, 0), exclude_ids=series_member_ids(db, sibling)
    )
    assert conflicts == []


def test_series_member_ids_of_standalone_reservation(db, room, purpose):
    single = add_reservation(db, room, purpose)
    assert series_member_ids(db, single) == [single.id]


def test_room_availability_only_counts_approved(db, room, purpose):
    add_reservation(db, room, purpose, day=DAY)
    add_reservation(db, room, purpose, day=date(2026, 3, 4), status=models.ReservationStatus.PENDING)

    days = room_availability(db, room.id, DAY, date(2026, 3, 5), time(10, 0), time(10, 30))
    assert [d["date"] for d in days] == ["2026-03-03", "2026-03-04", "2026-03-05"]
    assert [d["available"] for d in days] == [False, True, True]
    assert days[0]["conflicts"][0]["start_time"] == "10:00"
