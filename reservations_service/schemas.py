import datetime as dt
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_serializer, model_validator

from .intervals import format_time, parse_date, parse_time
from .models import PartyType, ReservationStatus, RestrictionKind


def _wire_date(value):
    if isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        return value
    if isinstance(value, str):
        return parse_date(value)
    raise ValueError("Dates must be strings in YYYY-MM-DD format")


def _wire_time(value):
    if isinstance(value, dt.time):
        return value
    if isinstance(value, str):
        return parse_time(value)
    raise ValueError("Times must be strings in H:MM format")


WireDate = Annotated[dt.date, BeforeValidator(_wire_date)]
WireTime = Annotated[dt.time, BeforeValidator(_wire_time)]
Weekday = Annotated[int, Field(ge=0, le=6)]
PersonId = Annotated[int, Field(ge=1)]
ExternalName = Annotated[str, Field(min_length=1, max_length=255)]


def _check_party_lists(party_type, unit_members, external_names) -> None:
    if party_type == PartyType.UNIT and not unit_members:
        raise ValueError("At least one unit member is required for unit responsibility")
    if party_type == PartyType.EXTERNAL and not external_names:
        raise ValueError("At least one external name is required for external responsibility")


class PartySelection(BaseModel):
    """
    Responsible-party selection shared by create and update payloads.

    ``unit_members`` is required for ``unit``, ``external_names`` for
    ``external``; ``self`` needs neither.
    """
    party_type: PartyType = PartyType.SELF
    unit_members: List[PersonId] = Field(default_factory=list)
    external_names: List[ExternalName] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_party_lists(self):
        _check_party_lists(self.party_type, self.unit_members, self.external_names)
        return self


class ReservationCreate(PartySelection):
    """
    Schema for booking a room, once or recurring.

    When ``repeat_weekdays`` is given (0 = Sunday ... 6 = Saturday),
    ``repeat_until`` is required and the request expands into a series.
    """
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    room_id: int = Field(..., ge=1)
    purpose_id: int = Field(..., ge=1)
    date: WireDate
    start_time: WireTime
    end_time: WireTime
    repeat_weekdays: Optional[List[Weekday]] = None
    repeat_until: Optional[WireDate] = None

    @model_validator(mode="after")
    def check_ranges(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.repeat_weekdays:
            if self.repeat_until is None:
                raise ValueError("repeat_until is required when repeat_weekdays is given")
            if self.repeat_until < self.date:
                raise ValueError("repeat_until must be on or after the reservation date")
        return self

    @property
    def is_recurring(self) -> bool:
        return bool(self.repeat_weekdays) and self.repeat_until is not None


class ReservationUpdate(BaseModel):
    """
    Schema for partially updating one reservation.

    All fields are optional; only provided values are applied. Supplying
    ``party_type`` replaces the attached responsible parties.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    room_id: Optional[int] = Field(default=None, ge=1)
    purpose_id: Optional[int] = Field(default=None, ge=1)
    date: Optional[WireDate] = None
    start_time: Optional[WireTime] = None
    end_time: Optional[WireTime] = None
    party_type: Optional[PartyType] = None
    unit_members: List[PersonId] = Field(default_factory=list)
    external_names: List[ExternalName] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_ranges(self):
        if self.start_time is not None and self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.party_type is not None:
            _check_party_lists(self.party_type, self.unit_members, self.external_names)
        return self


class PartyRead(BaseModel):
    id: int
    name: str
    person_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ReservationRead(BaseModel):
    """
    Schema returned when reading a reservation.
    """
    id: int
    title: str
    description: Optional[str] = None
    room_id: int
    purpose_id: int
    user_id: int
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    status: ReservationStatus
    series_id: Optional[int] = None
    party_type: PartyType
    parties: List[PartyRead] = Field(default_factory=list)
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("start_time", "end_time")
    def serialize_time(self, value: dt.time) -> str:
        return format_time(value)


class CreateResult(BaseModel):
    """Outcome of an admission: every created instance plus batch metadata."""
    status: ReservationStatus
    series_id: Optional[int] = None
    instances_created: int
    reservations: List[ReservationRead]


class DeletedReservation(BaseModel):
    id: int
    title: str
    date: dt.date


class DeleteResult(BaseModel):
    deleted_count: int
    deleted: List[DeletedReservation]


class DayAvailability(BaseModel):
    date: dt.date
    available: bool
    conflicts: List[dict] = Field(default_factory=list)


class RoomAvailability(BaseModel):
    room_id: int
    room_name: str
    start_date: dt.date
    end_date: dt.date
    start_time: str
    end_time: str
    days: List[DayAvailability]
    available_days: int
    busy_days: int


class PurposeRead(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class PolicyRead(BaseModel):
    """
    Schema returned when reading a room's restriction policy.

    Duration bounds of 0 mean unset.
    """
    blocked: bool
    blocked_reason: Optional[str] = None
    min_advance_days: int
    min_duration_minutes: int
    max_duration_minutes: int
    kind: RestrictionKind
    limit_days: Optional[int] = None
    limit_date: Optional[dt.date] = None
    academic_period_id: Optional[int] = None
    requires_approval: bool
    auto_approval_hours: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class RoomRead(BaseModel):
    """
    Schema returned when reading room data.

    ``policy`` is null for unrestricted rooms; ``responsible_user_ids`` lists
    who may approve or reject the room's reservations.
    """
    id: int
    name: str
    capacity: int
    category: Optional[str] = None
    responsible_user_ids: List[int] = Field(default_factory=list)
    policy: Optional[PolicyRead] = None

    model_config = ConfigDict(from_attributes=True)
