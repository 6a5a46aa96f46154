"""
Device Cache & Offline Coordinator
Tracks what each device last cached, detects stale caches via scene hashes,
drives the online/offline state machine and replays offline event backlogs.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Optional, Any
from flask import current_app
from sqlalchemy import case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from models import Device, OfflineEvent, CACHE_STATUSES, OFFLINE_EVENT_TYPES, db, utcnow
from utils.content_refs import ContentRef, ContentType, load_content
from utils.content_hash import ensure_scene_hashes
from utils.content_resolver import resolve_content

logger = logging.getLogger(__name__)


def check_staleness(device: Device, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Compare the hash of the device's current scene with what it has cached

    Non-scene content has no hash, so such a device is stale only while it
    still holds a cached scene hash.

    Returns:
        Dictionary with needs_update, current/cached hashes and scene info
    """
    resolved = resolve_content(device, now)
    scene = resolved.scene if resolved is not None else None

    content_hash = media_hash = None
    if scene is not None:
        content_hash, media_hash = ensure_scene_hashes(scene)

    cached_hash = device.cached_content_hash
    return {
        'device_id': device.id,
        'source': resolved.source if resolved is not None else None,
        'has_scene': scene is not None,
        'scene_id': scene.id if scene is not None else None,
        'scene_name': scene.name if scene is not None else None,
        'content_hash': content_hash,
        'current_hash': content_hash,
        'media_hash': media_hash,
        'cached_hash': cached_hash,
        'cached_scene_id': device.cached_scene_id,
        'cache_status': device.cache_status,
        'needs_update': content_hash != cached_hash,
    }


def record_sync(device: Device, scene_id: Optional[int], content_hash: Optional[str],
                status: str = 'ok', now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Record the outcome of a device cache sync

    This is the only writer of the device's cache fields. A successful
    ('ok') sync also ends offline mode.

    Raises:
        ValueError: unknown cache status
        ContentIntegrityError: scene does not exist
    """
    if status not in CACHE_STATUSES:
        raise ValueError(f"Invalid cache status {status!r}, expected one of {', '.join(CACHE_STATUSES)}")
    if scene_id is not None:
        load_content(ContentRef.parse(ContentType.SCENE, scene_id))

    device.cached_scene_id = scene_id
    device.cached_content_hash = content_hash
    device.last_cache_sync = now or utcnow()
    device.cache_status = status
    if status == 'ok':
        device.is_offline_mode = False
        device.offline_since = None
    db.session.commit()

    logger.info(f"Device {device.id} cache sync recorded: scene={scene_id} status={status}")
    return {
        'device_id': device.id,
        'cached_scene_id': device.cached_scene_id,
        'cached_content_hash': device.cached_content_hash,
        'last_cache_sync': device.last_cache_sync.isoformat(),
        'cache_status': device.cache_status,
    }


def touch_heartbeat(device: Device, now: Optional[datetime] = None):
    """Mark the device as seen and online (last writer wins)"""
    was_online = device.is_online
    Device.query.filter_by(id=device.id).update({
        'last_seen': now or utcnow(),
        'is_online': True,
    }, synchronize_session=False)
    db.session.commit()

    if not was_online:
        logger.info(f"Device {device.id} is back online")
        from socketio_events import broadcast_device_status
        broadcast_device_status(device.id, {
            'is_online': True,
            'last_seen': device.last_seen.isoformat() if device.last_seen else None,
            'cache_status': device.cache_status,
        })


def mark_device_offline(device: Device, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Move a device into offline mode

    offline_since keeps its first value; the cache becomes 'stale' if the
    device holds a cached scene, otherwise 'none'.
    """
    Device.query.filter_by(id=device.id).update({
        'is_online': False,
        'is_offline_mode': True,
        'offline_since': func.coalesce(Device.offline_since, now or utcnow()),
        'cache_status': case((Device.cached_scene_id.isnot(None), 'stale'), else_='none'),
    }, synchronize_session=False)
    db.session.commit()

    logger.info(f"Device {device.id} marked offline (cache {device.cache_status})")
    from socketio_events import broadcast_device_offline
    broadcast_device_offline(device.id, device.name)

    return {
        'device_id': device.id,
        'is_offline_mode': device.is_offline_mode,
        'offline_since': device.offline_since.isoformat() if device.offline_since else None,
        'cache_status': device.cache_status,
        'cached_scene_id': device.cached_scene_id,
    }


def sweep_offline_devices(now: Optional[datetime] = None) -> int:
    """
    Mark online devices that missed their heartbeat window as offline

    Returns:
        Number of devices marked offline
    """
    now = now or utcnow()
    threshold = now - timedelta(minutes=current_app.config.get('DEVICE_TIMEOUT_MINUTES', 5))

    stale = Device.query.filter(
        Device.is_online == True,
        or_(Device.last_seen == None, Device.last_seen <= threshold)
    ).all()

    for device in stale:
        mark_device_offline(device, now)

    if stale:
        logger.info(f"Offline sweep marked {len(stale)} device(s) offline")
    return len(stale)


def _parse_timestamp(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f'created_at must be an ISO 8601 string, got {type(value).__name__}')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_event(raw) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError('event must be an object')

    event_type = raw.get('event_type')
    if event_type not in OFFLINE_EVENT_TYPES:
        raise ValueError(f'invalid event_type {event_type!r}')

    event_data = raw.get('event_data', {})
    if event_data is None:
        event_data = {}
    if not isinstance(event_data, dict):
        raise ValueError('event_data must be an object')

    return {
        'event_type': event_type,
        'event_data': event_data,
        'created_at': _parse_timestamp(raw.get('created_at')),
    }


def sync_offline_events(device: Device, events: List[Any]) -> Dict[str, Any]:
    """
    Persist events a device recorded while offline

    Each event is validated and written inside its own savepoint, so one
    bad event never rolls back the others.

    Args:
        device: Reporting device
        events: List of {event_type, event_data, created_at} objects

    Returns:
        Dictionary with synced_count, failed_count and per-event failures

    Raises:
        ValueError: if events is not a list
    """
    if not isinstance(events, list):
        raise ValueError('events must be a list')

    synced = 0
    failures = []
    for index, raw in enumerate(events):
        try:
            fields = _parse_event(raw)
            with db.session.begin_nested():
                db.session.add(OfflineEvent(device_id=device.id, **fields))
        except (ValueError, SQLAlchemyError) as e:
            failures.append({'index': index, 'error': str(e)})
            continue
        synced += 1

    if synced:
        device.is_offline_mode = False
        device.offline_since = None
    db.session.commit()

    if failures:
        logger.warning(f"Partial offline sync failure for device {device.id}: "
                       f"{synced} synced, {len(failures)} failed")
    else:
        logger.info(f"Synced {synced} offline event(s) for device {device.id}")

    return {
        'success': True,
        'device_id': device.id,
        'synced_count': synced,
        'failed_count': len(failures),
        'failures': failures,
    }
