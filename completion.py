"""Completion collector.

Turns a host's completion form into a plan: which confirmed bookings get a
Proof of Skill record and which are only marked completed.
"""
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Set

from errors import Conflict, Forbidden, NotFound, ValidationError
from models import BookingStatus, WorkshopStatus
from timeutils import isoformat_utc

SKIP_NOT_PARTICIPATED = 'not_participated'
SKIP_NO_WALLET = 'no_wallet'
SKIP_OPTED_OUT = 'wallet_opted_out'
SKIP_ALREADY_MINTED = 'already_minted'


@dataclass
class ProofOfSkillRecord:
    booking_id: int
    learner_id: str
    learner_name: str
    host_id: str
    host_name: str
    workshop_id: int
    workshop_name: str
    workshop_description: Optional[str]
    tools_used: List[str]
    skills_learned: List[str]
    session_duration: float
    session_start_date_time: Optional[str]
    wallet_address: str

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data, require_wallet=True):
        """Build a record from a request body, failing on missing fields."""
        optional = {'booking_id', 'workshop_description'}
        if not require_wallet:
            optional.add('wallet_address')
        missing = [name for name in cls.__dataclass_fields__
                   if name not in optional and data.get(name) in (None, '')]
        if missing:
            raise ValidationError(f'Missing required field(s): {", ".join(missing)}')
        try:
            duration = float(data['session_duration'])
        except (TypeError, ValueError):
            raise ValidationError('session_duration must be a number')
        return cls(
            booking_id=data.get('booking_id'),
            learner_id=str(data['learner_id']),
            learner_name=data['learner_name'],
            host_id=str(data['host_id']),
            host_name=data['host_name'],
            workshop_id=data['workshop_id'],
            workshop_name=data['workshop_name'],
            workshop_description=data.get('workshop_description'),
            tools_used=_as_list(data['tools_used']),
            skills_learned=_as_list(data['skills_learned']),
            session_duration=duration,
            session_start_date_time=data['session_start_date_time'],
            wallet_address=data.get('wallet_address'),
        )


@dataclass
class BookingUpdate:
    booking: object
    participated: bool
    showed_up: bool
    used_tools: bool
    record: Optional[ProofOfSkillRecord] = None
    skip_reason: Optional[str] = None


@dataclass
class CompletionPlan:
    workshop: object
    feedback: Optional[str]
    updates: List[BookingUpdate] = field(default_factory=list)

    @property
    def records(self):
        return [u.record for u in self.updates if u.record is not None]

    @property
    def skipped(self):
        return [{'booking_id': u.booking.id, 'reason': u.skip_reason} for u in self.updates if u.skip_reason]


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return list(value)


def _parse_ids(values, field_name):
    ids = set()
    for value in values or []:
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid booking id in {field_name}: {value}')
    return ids


def parse_completion_form(data, default_flags=False):
    """Normalise the completion form (JSON lists or repeated form fields).

    An HTML form drops unticked checkboxes, so an absent flag field means an
    empty set. With default_flags, used for JSON bodies, an absent key falls
    back to the participated set instead.
    """
    participated = _parse_ids(data.get('participated'), 'participated')

    def flag_ids(name):
        value = data.get(name)
        if value is None:
            return set(participated) if default_flags else set()
        return _parse_ids(value, name)

    return {
        'participated': participated,
        'showed_up': flag_ids('learnerShowedUp'),
        'used_tools': flag_ids('usedTools'),
        'feedback': (data.get('feedback') or '').strip() or None,
    }


def build_record(workshop, booking, host_user):
    learner = booking.learner
    return ProofOfSkillRecord(
        booking_id=booking.id,
        learner_id=learner.id,
        learner_name=learner.display_name or 'Anonymous',
        host_id=host_user.id,
        host_name=host_user.name,
        workshop_id=workshop.id,
        workshop_name=workshop.title,
        workshop_description=workshop.description,
        tools_used=list(workshop.tools_provided or []),
        skills_learned=list(workshop.skills or []),
        session_duration=workshop.duration_hours,
        session_start_date_time=isoformat_utc(workshop.session_date),
        wallet_address=learner.wallet_address,
    )


def _skip_reason(booking, participated):
    if not participated:
        return SKIP_NOT_PARTICIPATED
    if booking.transaction_hash:
        return SKIP_ALREADY_MINTED
    learner = booking.learner
    if not learner.wallet_address:
        return SKIP_NO_WALLET
    if learner.wallet_opted_out:
        return SKIP_OPTED_OUT
    return None


def collect_completion(workshop, user_id, participated: Set[int], showed_up: Set[int],
                       used_tools: Set[int], feedback=None):
    """Check preconditions and build the completion plan. Performs no writes."""
    if workshop is None:
        raise NotFound('Workshop not found')
    host_user = workshop.host.user
    if host_user.id != user_id:
        raise Forbidden('Unauthorized: You are not the host of this workshop')
    if workshop.status != WorkshopStatus.ACTIVE:
        raise Conflict(f'Workshop is already {workshop.status}')

    bookings_by_id = {b.id: b for b in workshop.bookings}
    unknown = sorted(participated - set(bookings_by_id))
    if unknown:
        raise ValidationError(f'Bookings do not belong to this workshop: {unknown}')
    stale = sorted(i for i in participated if bookings_by_id[i].status != BookingStatus.CONFIRMED)
    if stale:
        raise Conflict(f'Bookings are no longer confirmed: {stale}')

    confirmed = workshop.confirmed_bookings()
    if not confirmed:
        raise Conflict('Workshop has no confirmed bookings left to complete')

    plan = CompletionPlan(workshop=workshop, feedback=feedback)
    for booking in confirmed:
        took_part = booking.id in participated
        update = BookingUpdate(
            booking=booking,
            participated=took_part,
            showed_up=booking.id in showed_up,
            used_tools=booking.id in used_tools,
        )
        update.skip_reason = _skip_reason(booking, took_part)
        if update.skip_reason is None:
            update.record = build_record(workshop, booking, host_user)
        plan.updates.append(update)
    return plan
