from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


class ReservationStatus(str, PyEnum):
    """
    Enumeration of reservation workflow states.

    Values
    ------
    pending
        Waiting for a room-responsible party to approve or reject it.
    approved
        Holds the room for its time range.
    rejected
        Terminal; never blocks the room.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PartyType(str, PyEnum):
    """
    Who is accountable for a reservation.

    Values
    ------
    self
        The requester.
    unit
        Members of the requester's organizational unit, by person id.
    external
        Free-text names of people outside the institution.
    """
    SELF = "self"
    UNIT = "unit"
    EXTERNAL = "external"


class RestrictionKind(str, PyEnum):
    """
    Date-ceiling rule applied by a restriction policy.

    Values
    ------
    none
        No ceiling.
    auto
        Rolling window of ``limit_days`` from today.
    fixed
        Absolute ``limit_date``.
    academic_period
        Reservation window of the referenced academic period.
    """
    NONE = "none"
    AUTO = "auto"
    FIXED = "fixed"
    ACADEMIC_PERIOD = "academic_period"


reservation_parties = Table(
    "reservation_parties",
    Base.metadata,
    Column(
        "reservation_id",
        Integer,
        ForeignKey("reservations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "party_id",
        Integer,
        ForeignKey("responsible_parties.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class AcademicPeriod(Base):
    """
    Read-only academic period reference data.

    Attributes
    ----------
    id : int
        Primary key.
    code : str
        Period code (e.g. '2026-2').
    reservations_start : date
        First day reservations may be placed in this period.
    reservations_end : date
        Last day reservations may be placed in this period.
    """
    __tablename__ = "academic_periods"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False)
    reservations_start = Column(Date, nullable=False)
    reservations_end = Column(Date, nullable=False)


class Purpose(Base):
    """Reason a room is booked (class, defense, meeting, ...)."""
    __tablename__ = "purposes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)


class Room(Base):
    """
    SQLAlchemy model representing a bookable room.

    Attributes
    ----------
    id : int
        Primary key.
    name : str
        Unique room name.
    capacity : int
        Maximum number of people.
    category : str
        Category the room belongs to (building, department, ...).
    policy : RestrictionPolicy
        Optional restriction policy, owned by the room.
    responsible_user_ids : list[int]
        Users allowed to approve or reject reservations of this room.
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    capacity = Column(Integer, nullable=False)
    category = Column(String(100), nullable=True)

    policy = relationship(
        "RestrictionPolicy",
        back_populates="room",
        uselist=False,
        cascade="all, delete-orphan",
    )
    responsibles = relationship(
        "RoomResponsible",
        cascade="all, delete-orphan",
    )

    @property
    def responsible_user_ids(self):
        return [r.user_id for r in self.responsibles]

    def add_responsible(self, user_id: int) -> None:
        if user_id not in self.responsible_user_ids:
            self.responsibles.append(RoomResponsible(user_id=user_id))


class RoomResponsible(Base):
    """Grants a user the right to approve or reject a room's reservations."""
    __tablename__ = "room_responsibles"

    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, primary_key=True)


class RestrictionPolicy(Base):
    """
    Per-room booking rules.

    Attributes
    ----------
    blocked : bool
        Room refuses every reservation; ``blocked_reason`` explains why.
    min_advance_days : int
        Minimum number of days between today and the reservation date.
    min_duration_minutes, max_duration_minutes : int
        Duration bounds, 0 meaning unset.
    kind : RestrictionKind
        Which date-ceiling rule applies.
    limit_days : int
        Rolling ceiling for ``auto``.
    limit_date : date
        Absolute ceiling for ``fixed``.
    academic_period_id : int
        Period bounding reservations for ``academic_period``.
    requires_approval : bool
        New reservations start pending instead of approved.
    auto_approval_hours : int
        Hours after which a still-pending reservation is approved
        automatically; falls back to the service setting when null.
    """
    __tablename__ = "restriction_policies"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(
        Integer, ForeignKey("rooms.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    blocked = Column(Boolean, nullable=False, default=False)
    blocked_reason = Column(String(255), nullable=True)
    min_advance_days = Column(Integer, nullable=False, default=0)
    min_duration_minutes = Column(Integer, nullable=False, default=0)
    max_duration_minutes = Column(Integer, nullable=False, default=0)
    kind = Column(Enum(RestrictionKind), nullable=False, default=RestrictionKind.NONE)
    limit_days = Column(Integer, nullable=True)
    limit_date = Column(Date, nullable=True)
    academic_period_id = Column(Integer, ForeignKey("academic_periods.id"), nullable=True)
    requires_approval = Column(Boolean, nullable=False, default=False)
    auto_approval_hours = Column(Integer, nullable=True)

    room = relationship("Room", back_populates="policy")
    academic_period = relationship("AcademicPeriod")

    __table_args__ = (
        CheckConstraint("min_advance_days >= 0", name="policy_min_advance_non_negative"),
    )


class ResponsibleParty(Base):
    """
    Person or external name accountable for reservations.

    Deduplicated by the (name, person_id) pair.
    """
    __tablename__ = "responsible_parties"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    person_id = Column(Integer, nullable=True, index=True)

    __table_args__ = (UniqueConstraint("name", "person_id", name="uniq_party_name_person"),)


class Reservation(Base):
    """
    SQLAlchemy model representing one dated room reservation.

    Attributes
    ----------
    id : int
        Primary key.
    title, description : str
        Free text shown on the room calendar.
    room_id, purpose_id, user_id : int
        Booked room, purpose reference and requester.
    date : date
        Calendar day of the reservation.
    start_time, end_time : time
        Half-open time range within ``date``.
    status : ReservationStatus
        Workflow state.
    series_id : int
        Id of the first instance of the recurring batch this instance was
        created in; null for standalone reservations.
    party_type : PartyType
        How the attached responsible parties were chosen.
    created_at : datetime
        Creation timestamp.
    """
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    purpose_id = Column(Integer, ForeignKey("purposes.id"), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(Enum(ReservationStatus), nullable=False, default=ReservationStatus.PENDING)
    series_id = Column(Integer, nullable=True, index=True)
    party_type = Column(Enum(PartyType), nullable=False, default=PartyType.SELF)
    created_at = Column(DateTime, default=datetime.utcnow)

    room = relationship("Room")
    purpose = relationship("Purpose")
    parties = relationship("ResponsibleParty", secondary=reservation_parties)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="reservation_time_valid"),
    )


class ApprovalTask(Base):
    """Deferred automatic approval of a pending reservation."""
    __tablename__ = "approval_tasks"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(
        Integer,
        ForeignKey("reservations.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    run_at = Column(DateTime, nullable=False, index=True)
