from datetime import date, datetime, time

import pytest

from conftest import ADMIN, NOW, OTHER_USER, REQUESTER, ROOM_MANAGER, add_reservation, build_request

from reservations_service import models
from reservations_service.admission import create_reservations
from reservations_service.approval import approve, reject, run_due_approvals
from reservations_service.errors import InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from reservations_service.restrictions import ViolationCode


@pytest.fixture
def guarded(make_room):
    return make_room(name="Auditorium", requires_approval=True)


def pending(db, room, purpose, day="2026-03-10", start="10:00", end="11:00"):
    request = build_request(room.id, purpose.id, date=day, start_time=start, end_time=end)
    return create_reservations(db, request, REQUESTER, NOW, lookup_name=lambda pid: None)[0]


def test_room_manager_approves_pending(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    approved = approve(db, reservation.id, ROOM_MANAGER, NOW)
    assert approved.status == models.ReservationStatus.APPROVED
    assert db.query(models.ApprovalTask).count() == 0


def test_room_manager_rejects_pending(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    rejected = reject(db, reservation.id, ROOM_MANAGER, NOW)
    assert rejected.status == models.ReservationStatus.REJECTED
    assert db.query(models.ApprovalTask).count() == 0


def test_decided_reservations_are_terminal(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    reject(db, reservation.id, ROOM_MANAGER, NOW)

    with pytest.raises(InvalidTransition) as excinfo:
        approve(db, reservation.id, ROOM_MANAGER, NOW)
    assert excinfo.value.code == "NOT_PENDING"
    assert excinfo.value.current_status == "rejected"

    with pytest.raises(InvalidTransition):
        reject(db, reservation.id, ADMIN, NOW)


def test_other_users_cannot_decide(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    with pytest.raises(PermissionDenied):
        approve(db, reservation.id, OTHER_USER, NOW)
    with pytest.raises(PermissionDenied):
        reject(db, reservation.id, REQUESTER, NOW)
    db.refresh(reservation)
    assert reservation.status == models.ReservationStatus.PENDING


def test_admin_can_decide_any_room(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    assert approve(db, reservation.id, ADMIN, NOW).status == models.ReservationStatus.APPROVED


def test_past_reservations_cannot_be_decided(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    later = datetime(2026, 3, 11, 8, 0)
    with pytest.raises(InvalidTransition) as excinfo:
        approve(db, reservation.id, ROOM_MANAGER, later)
    assert excinfo.value.code == "DATE_IN_PAST"
    with pytest.raises(InvalidTransition):
        reject(db, reservation.id, ROOM_MANAGER, later)


def test_unknown_reservation(db):
    with pytest.raises(NotFound):
        approve(db, 404, ADMIN, NOW)


def test_approval_rechecks_current_policy(db, guarded, purpose):
    reservation = pending(db, guarded, purpose, start="10:00", end="10:30")
    guarded.policy.min_duration_minutes = 60
    db.commit()

    with pytest.raises(ValidationFailed) as excinfo:
        approve(db, reservation.id, ROOM_MANAGER, NOW)
    assert excinfo.value.codes == [ViolationCode.DURATION_TOO_SHORT]
    db.refresh(reservation)
    assert reservation.status == models.ReservationStatus.PENDING


def test_admin_override_is_an_explicit_setting(db, guarded, purpose):
    reservation = pending(db, guarded, purpose, start="10:00", end="10:30")
    guarded.policy.min_duration_minutes = 60
    db.commit()

    with pytest.raises(ValidationFailed):
        approve(db, reservation.id, ADMIN, NOW)
    approved = approve(db, reservation.id, ADMIN, NOW, admin_bypasses_restrictions=True)
    assert approved.status == models.ReservationStatus.APPROVED


def test_override_setting_does_not_help_room_managers(db, guarded, purpose):
    reservation = pending(db, guarded, purpose, start="10:00", end="10:30")
    guarded.policy.min_duration_minutes = 60
    db.commit()
    with pytest.raises(ValidationFailed):
        approve(db, reservation.id, ROOM_MANAGER, NOW, admin_bypasses_restrictions=True)


def test_last_minute_conflict_blocks_approval(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    # approved elsewhere after the request was admitted
    rival = add_reservation(
        db,
        guarded,
        purpose,
        day=date(2026, 3, 10),
        start=time(10, 30),
        end=time(11, 30),
        user_id=OTHER_USER.user_id,
    )

    with pytest.raises(ValidationFailed) as excinfo:
        approve(db, reservation.id, ROOM_MANAGER, NOW)
    assert [c.id for c in excinfo.value.conflicts] == [rival.id]

    # the override never skips the conflict check
    with pytest.raises(ValidationFailed):
        approve(db, reservation.id, ADMIN, NOW, admin_bypasses_restrictions=True)


def test_pending_siblings_do_not_block_approval(db, guarded, purpose):
    reservation = pending(db, guarded, purpose)
    add_reservation(
        db,
        guarded,
        purpose,
        day=date(2026, 3, 10),
        status=models.ReservationStatus.PENDING,
        user_id=OTHER_USER.user_id,
    )
    assert approve(db, reservation.id, ROOM_MANAGER, NOW).status == models.ReservationStatus.APPROVED


def test_series_instances_are_decided_independently(db, guarded, purpose):
    request = build_request(guarded.id, purpose.id, date="2026-03-10", repeat_weekdays=[2], repeat_until="2026-03-17")
    first, second = create_reservations(db, request, REQUESTER, NOW)
    approve(db, first.id, ROOM_MANAGER, NOW)
    db.refresh(second)
    assert second.status == models.ReservationStatus.PENDING


def test_due_tasks_are_approved_automatically(db, make_room, purpose):
    quick = make_room(requires_approval=True, auto_approval_hours=1)
    slow = make_room(requires_approval=True, auto_approval_hours=72)
    due = pending(db, quick, purpose)
    not_due = pending(db, slow, purpose)

    approved = run_due_approvals(db, datetime(2026, 3, 2, 12, 0))
    assert approved == [due.id]

    db.refresh(due)
    db.refresh(not_due)
    assert due.status == models.ReservationStatus.APPROVED
    assert not_due.status == models.ReservationStatus.PENDING
    assert db.query(models.ApprovalTask).count() == 1


def test_failed_automatic_approval_leaves_reservation_pending(db, make_room, purpose):
    quick = make_room(requires_approval=True, auto_approval_hours=1)
    reservation = pending(db, quick, purpose)
    quick.policy.blocked = True
    db.commit()

    assert run_due_approvals(db, datetime(2026, 3, 2, 12, 0)) == []
    db.refresh(reservation)
    assert reservation.status == models.ReservationStatus.PENDING
    assert db.query(models.ApprovalTask).count() == 0
