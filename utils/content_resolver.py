"""
Content Resolver
Walks the fixed priority chain to decide what a device shows right now:
emergency, device override, group override, scheduled scene, legacy
schedule, then direct layout / playlist assignment.
"""
import logging
from datetime import datetime
from typing import NamedTuple, Optional, Dict, Any
from sqlalchemy import func
from models import Device, Scene, db, utcnow
from utils.content_refs import ContentRef, ContentType, ContentIntegrityError, load_content
from utils.emergency import EmergencyState, get_active_emergency
from utils.language_utils import resolve_scene_variant
from utils.schedule_utils import pick_winning_entry, rank_active_entries, get_scene_entries, get_legacy_entries

logger = logging.getLogger(__name__)

SOURCE_EMERGENCY = 'emergency'
SOURCE_DEVICE_OVERRIDE = 'device_override'
SOURCE_GROUP_OVERRIDE = 'group_override'
SOURCE_SCHEDULED_SCENE = 'scheduled_scene'
SOURCE_LEGACY_SCHEDULE = 'legacy_schedule'
SOURCE_ASSIGNED_LAYOUT = 'assigned_layout'
SOURCE_ASSIGNED_PLAYLIST = 'assigned_playlist'


class DeviceNotFound(Exception):
    """Unknown device id or pairing code"""

    def __init__(self, message, device_id=None, pairing_code=None):
        super().__init__(message)
        self.device_id = device_id
        self.pairing_code = pairing_code


class ResolvedContent(NamedTuple):
    """Winning content reference and the step that produced it"""
    ref: ContentRef
    source: str
    scene: Optional[Scene] = None
    requested_scene_id: Optional[int] = None
    schedule_entry_id: Optional[int] = None
    emergency: Optional[EmergencyState] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'content': self.ref.to_dict(),
            'scene_id': self.scene.id if self.scene is not None else None,
            'requested_scene_id': self.requested_scene_id,
            'schedule_entry_id': self.schedule_entry_id,
        }


def get_device(device_id) -> Device:
    """
    Look up a device by id

    Raises:
        DeviceNotFound: if no such device exists
    """
    device = db.session.get(Device, device_id) if device_id is not None else None
    if device is None:
        raise DeviceNotFound(f'Device {device_id} not found', device_id=device_id)
    return device


def get_device_by_pairing_code(code: Optional[str]) -> Device:
    """
    Look up a device by its pairing code, ignoring case and padding

    Raises:
        DeviceNotFound: if the code is blank or unknown
    """
    normalized = Device.normalize_pairing_code(code)
    if not normalized:
        raise DeviceNotFound('Pairing code required', pairing_code=code)

    device = Device.query.filter(
        func.upper(func.trim(Device.pairing_code)) == normalized
    ).first()
    if device is None:
        raise DeviceNotFound(f'No device with pairing code {normalized}', pairing_code=normalized)
    return device


def _scene_content(scene: Optional[Scene], device: Device, source: str,
                   schedule_entry_id: Optional[int] = None) -> Optional[ResolvedContent]:
    if scene is None:
        return None

    variant = resolve_scene_variant(scene, device.effective_language)
    if not variant.is_renderable:
        logger.debug(f"Scene {variant.id} for device {device.id} is inactive or empty, skipping {source}")
        return None

    return ResolvedContent(
        ref=ContentRef(ContentType.SCENE, variant.id),
        source=source,
        scene=variant,
        requested_scene_id=scene.id,
        schedule_entry_id=schedule_entry_id,
    )


def _emergency_content(emergency: EmergencyState, device: Device) -> Optional[ResolvedContent]:
    try:
        target = load_content(emergency.ref)
    except ContentIntegrityError as e:
        logger.warning(f"Emergency for tenant {emergency.tenant_id} is dangling: {e}")
        return None

    scene = None
    if emergency.ref.content_type is ContentType.SCENE:
        # Used verbatim, no language variant lookup
        scene = target
        if not scene.is_renderable:
            logger.warning(f"Emergency scene {scene.id} has no layout or playlist")
            return None

    return ResolvedContent(
        ref=emergency.ref,
        source=SOURCE_EMERGENCY,
        scene=scene,
        requested_scene_id=scene.id if scene is not None else None,
        emergency=emergency,
    )


def _device_override(device: Device, now: datetime) -> Optional[ResolvedContent]:
    if device.active_scene_id is None:
        return None
    return _scene_content(device.active_scene, device, SOURCE_DEVICE_OVERRIDE)


def _group_override(device: Device, now: datetime) -> Optional[ResolvedContent]:
    if device.group is None or device.group.active_scene_id is None:
        return None
    return _scene_content(device.group.active_scene, device, SOURCE_GROUP_OVERRIDE)


def _scheduled_scene(device: Device, now: datetime) -> Optional[ResolvedContent]:
    # Next entry wins when the best one has no renderable variant
    for entry in rank_active_entries(get_scene_entries(device), now, device.timezone):
        try:
            scene = load_content(entry.target_ref)
        except ContentIntegrityError as e:
            logger.warning(f"Schedule entry {entry.id} for device {device.id}: {e}")
            continue

        resolved = _scene_content(scene, device, SOURCE_SCHEDULED_SCENE, schedule_entry_id=entry.id)
        if resolved is not None:
            return resolved
    return None


def _legacy_schedule(device: Device, now: datetime) -> Optional[ResolvedContent]:
    entry = pick_winning_entry(get_legacy_entries(device), now, device.timezone)
    if entry is None:
        return None

    try:
        ref = entry.target_ref
        load_content(ref)
    except ContentIntegrityError as e:
        logger.warning(f"Schedule entry {entry.id} for device {device.id}: {e}")
        return None

    return ResolvedContent(ref=ref, source=SOURCE_LEGACY_SCHEDULE, schedule_entry_id=entry.id)


def _assigned(device: Device, content_type: ContentType, content_id: Optional[int],
              source: str) -> Optional[ResolvedContent]:
    if content_id is None:
        return None

    ref = ContentRef(content_type, content_id)
    try:
        load_content(ref)
    except ContentIntegrityError as e:
        logger.warning(f"Device {device.id} assignment is dangling: {e}")
        return None
    return ResolvedContent(ref=ref, source=source)


def _assigned_layout(device: Device, now: datetime) -> Optional[ResolvedContent]:
    return _assigned(device, ContentType.LAYOUT, device.assigned_layout_id, SOURCE_ASSIGNED_LAYOUT)


def _assigned_playlist(device: Device, now: datetime) -> Optional[ResolvedContent]:
    return _assigned(device, ContentType.PLAYLIST, device.assigned_playlist_id, SOURCE_ASSIGNED_PLAYLIST)


RESOLUTION_CHAIN = (
    _device_override,
    _group_override,
    _scheduled_scene,
    _legacy_schedule,
    _assigned_layout,
    _assigned_playlist,
)


def resolve_content(device: Device, now: Optional[datetime] = None) -> Optional[ResolvedContent]:
    """
    Resolve the single content reference a device should render

    Args:
        device: Device being resolved
        now: Instant to resolve for (default: now, naive UTC)

    Returns:
        ResolvedContent, or None when every step falls through
    """
    now = now or utcnow()

    if device.tenant is not None:
        emergency = get_active_emergency(device.tenant, now)
        if emergency is not None:
            resolved = _emergency_content(emergency, device)
            if resolved is not None:
                logger.debug(f"Device {device.id} resolved by emergency: {resolved.ref}")
                return resolved

    for step in RESOLUTION_CHAIN:
        resolved = step(device, now)
        if resolved is not None:
            logger.debug(f"Device {device.id} resolved by {resolved.source}: {resolved.ref}")
            return resolved

    logger.debug(f"Device {device.id} has no content to show")
    return None
