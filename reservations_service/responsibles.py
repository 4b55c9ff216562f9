"""Attach responsible parties to reservation instances."""
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import httpx
from sqlalchemy.orm import Session

from common.cache import PERSON_NAME_PREFIX, get_cached_json, set_cached_json

from . import models
from .auth import Principal
from .circuit_breaker import directory_circuit_breaker
from .config import PERSON_DIRECTORY_URL

logger = logging.getLogger(__name__)

NameLookup = Callable[[int], Optional[str]]


class DirectoryUnavailable(Exception):
    """The person directory could not answer."""


def placeholder_name(person_id: int) -> str:
    return f"User {person_id}"


def directory_lookup(person_id: int) -> Optional[str]:
    """
    Fetch a person's display name from the external directory.

    Returns ``None`` when no directory is configured or the person has no
    name on record.

    Raises
    ------
    DirectoryUnavailable
        If the circuit is open or the directory call fails.
    """
    if not PERSON_DIRECTORY_URL:
        return None

    cache_key = f"{PERSON_NAME_PREFIX}{person_id}"
    cached = get_cached_json(cache_key)
    if cached is not None:
        return cached

    if not directory_circuit_breaker.allow_request():
        raise DirectoryUnavailable("Person directory temporarily unavailable (circuit open)")

    try:
        resp = httpx.get(f"{PERSON_DIRECTORY_URL}/people/{person_id}", timeout=5.0)
    except httpx.RequestError as exc:
        directory_circuit_breaker.record_failure()
        raise DirectoryUnavailable(f"Failed to contact person directory: {exc}") from exc

    if resp.status_code == 404:
        directory_circuit_breaker.record_success()
        return None
    if resp.status_code != 200:
        directory_circuit_breaker.record_failure()
        raise DirectoryUnavailable(f"Person directory returned {resp.status_code}")

    directory_circuit_breaker.record_success()
    name = resp.json().get("name")
    if name:
        set_cached_json(cache_key, name, ttl_seconds=3600)
    return name


def _resolve_unit_name(person_id: int, lookup_name: NameLookup) -> str:
    try:
        name = lookup_name(person_id)
    except Exception as exc:
        logger.warning("Failed to get name for person %s: %s", person_id, exc)
        name = None
    return name or placeholder_name(person_id)


def get_or_create_party(db: Session, name: str, person_id: Optional[int]) -> models.ResponsibleParty:
    q = db.query(models.ResponsibleParty).filter(models.ResponsibleParty.name == name)
    if person_id is None:
        q = q.filter(models.ResponsibleParty.person_id.is_(None))
    else:
        q = q.filter(models.ResponsibleParty.person_id == person_id)
    party = q.first()
    if party is None:
        party = models.ResponsibleParty(name=name, person_id=person_id)
        db.add(party)
        db.flush()
    return party


def wanted_parties(
    party_type: models.PartyType,
    requester: Principal,
    unit_members: Sequence[int] = (),
    external_names: Sequence[str] = (),
    lookup_name: NameLookup = directory_lookup,
) -> List[Tuple[str, Optional[int]]]:
    """
    Compute the (name, person_id) pairs a party selection designates.

    Pairs are deduplicated, first occurrence wins the position.
    """
    if party_type == models.PartyType.SELF:
        pairs = [(requester.display_name, requester.person_id)]
    elif party_type == models.PartyType.UNIT:
        pairs = [(_resolve_unit_name(pid, lookup_name), pid) for pid in unit_members]
    else:
        pairs = [(name.strip(), None) for name in external_names if name and name.strip()]

    seen = set()
    unique = []
    for pair in pairs:
        if pair not in seen:
            seen.add(pair)
            unique.append(pair)
    return unique


def attach_parties(
    db: Session,
    reservations: Iterable[models.Reservation],
    party_type: models.PartyType,
    requester: Principal,
    unit_members: Sequence[int] = (),
    external_names: Sequence[str] = (),
    lookup_name: NameLookup = directory_lookup,
) -> List[models.ResponsibleParty]:
    """
    Replace the responsible parties of every reservation in a batch.

    Parameters
    ----------
    db : Session
        Database session (not committed here).
    reservations : Iterable[Reservation]
        Instances receiving the same party set.
    party_type : PartyType
        ``self``, ``unit`` or ``external``.
    requester : Principal
        Caller; the party for ``self``.
    unit_members : Sequence[int]
        Person ids for ``unit``.
    external_names : Sequence[str]
        Free-text names for ``external``.
    lookup_name : Callable[[int], Optional[str]]
        Resolves a person id to a display name; failures fall back to a
        placeholder name.

    Returns
    -------
    List[ResponsibleParty]
        The attached parties.
    """
    pairs = wanted_parties(party_type, requester, unit_members, external_names, lookup_name)
    parties = [get_or_create_party(db, name, person_id) for name, person_id in pairs]
    for reservation in reservations:
        reservation.party_type = party_type
        reservation.parties = list(parties)
    return parties
