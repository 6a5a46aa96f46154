"""
Emergency Override Service
Tenant-wide emergency content that preempts every other resolution step
"""
import logging
from datetime import datetime, timedelta
from typing import NamedTuple, Optional, Dict, Any
from sqlalchemy.exc import SQLAlchemyError
from models import Tenant, db, utcnow
from utils.content_refs import ContentRef, ContentIntegrityError, load_content, try_parse

logger = logging.getLogger(__name__)


class EmergencyState(NamedTuple):
    """Snapshot of a tenant's emergency columns"""
    tenant_id: int
    ref: ContentRef
    started_at: Optional[datetime]
    duration_minutes: Optional[int]

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.started_at is None or self.duration_minutes is None:
            return None
        return self.started_at + timedelta(minutes=self.duration_minutes)

    def is_expired(self, now: datetime) -> bool:
        expires = self.expires_at
        return expires is not None and now > expires

    def to_dict(self) -> Dict[str, Any]:
        expires = self.expires_at
        return {
            'content_type': self.ref.content_type.value,
            'content_id': self.ref.content_id,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'duration_minutes': self.duration_minutes,
            'expires_at': expires.isoformat() if expires else None,
        }


def read_emergency(tenant: Tenant) -> Optional[EmergencyState]:
    """Read the stored emergency without evaluating expiry"""
    if not tenant.has_emergency:
        return None
    try:
        ref = try_parse(tenant.emergency_content_type, tenant.emergency_content_id)
    except ContentIntegrityError as e:
        logger.warning(f"Ignoring malformed emergency on tenant {tenant.id}: {e}")
        return None
    return EmergencyState(tenant.id, ref, tenant.emergency_started_at, tenant.emergency_duration_minutes)


def _duration_matches(duration_minutes: Optional[int]):
    if duration_minutes is None:
        return Tenant.emergency_duration_minutes.is_(None)
    return Tenant.emergency_duration_minutes == duration_minutes


def clear_if_unchanged(state: EmergencyState) -> bool:
    """
    Clear an expired emergency only if nobody replaced it since it was read

    Returns:
        True if this call cleared it, False if another writer got there first
        or the clear failed (it is retried on the next resolution)
    """
    try:
        cleared = Tenant.query.filter(
            Tenant.id == state.tenant_id,
            Tenant.emergency_started_at == state.started_at,
            Tenant.emergency_content_type == state.ref.content_type.value,
            Tenant.emergency_content_id == state.ref.content_id,
            _duration_matches(state.duration_minutes)
        ).update({
            'emergency_content_type': None,
            'emergency_content_id': None,
            'emergency_started_at': None,
            'emergency_duration_minutes': None,
        }, synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to clear expired emergency for tenant {state.tenant_id}: {e}")
        return False

    if cleared:
        logger.info(f"Emergency for tenant {state.tenant_id} expired and was cleared")
        from socketio_events import broadcast_emergency_cleared
        broadcast_emergency_cleared(state.tenant_id, reason='expired')
    return bool(cleared)


def get_active_emergency(tenant: Tenant, now: Optional[datetime] = None) -> Optional[EmergencyState]:
    """
    Return the tenant's emergency if set and not expired

    An expired emergency is cleared as a side effect and None is returned.
    """
    state = read_emergency(tenant)
    if state is None:
        return None

    now = now or utcnow()
    if state.is_expired(now):
        clear_if_unchanged(state)
        return None
    return state


def activate_emergency(tenant: Tenant, ref: ContentRef, duration_minutes: Optional[int] = None,
                       now: Optional[datetime] = None) -> EmergencyState:
    """
    Start an emergency override for every device of a tenant

    Args:
        tenant: Tenant to override
        ref: Content to show
        duration_minutes: Minutes until auto-expiry, None for until cancelled
        now: Start time (default: now)

    Raises:
        ContentIntegrityError: if the content does not exist
        ValueError: if the duration is not a positive integer
    """
    if duration_minutes is not None:
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int) or duration_minutes <= 0:
            raise ValueError('duration_minutes must be a positive integer')

    load_content(ref)

    started_at = now or utcnow()
    tenant.emergency_content_type = ref.content_type.value
    tenant.emergency_content_id = ref.content_id
    tenant.emergency_started_at = started_at
    tenant.emergency_duration_minutes = duration_minutes
    db.session.commit()

    state = EmergencyState(tenant.id, ref, started_at, duration_minutes)
    logger.warning(f"Emergency started for tenant {tenant.id}: {ref} ({duration_minutes or 'no'} minute limit)")

    from socketio_events import broadcast_emergency_started
    broadcast_emergency_started(tenant.id, state.to_dict())
    return state


def cancel_emergency(tenant: Tenant) -> bool:
    """Cancel the tenant's emergency; returns False if none was set"""
    if not tenant.has_emergency:
        return False

    tenant.emergency_content_type = None
    tenant.emergency_content_id = None
    tenant.emergency_started_at = None
    tenant.emergency_duration_minutes = None
    db.session.commit()

    logger.info(f"Emergency cancelled for tenant {tenant.id}")
    from socketio_events import broadcast_emergency_cleared
    broadcast_emergency_cleared(tenant.id, reason='cancelled')
    return True
