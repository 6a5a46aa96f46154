"""
Content Materializer
Expands a resolved content reference into the payload a player renders
"""
import logging
from datetime import datetime
from typing import List, Dict, Optional, Tuple, Any
from flask import current_app
from models import Device, Playlist, PlaylistItem, Layout, LayoutZone, MediaAsset, Scene, utcnow
from utils.content_refs import ContentType, ContentIntegrityError, load_content
from utils.content_hash import ensure_scene_hashes, ordered_slides
from utils.content_resolver import ResolvedContent

logger = logging.getLogger(__name__)


def _default_duration() -> int:
    return current_app.config.get('DEFAULT_ITEM_DURATION', 10)


def effective_duration(item: Optional[PlaylistItem], media: MediaAsset,
                       playlist: Optional[Playlist]) -> int:
    """Item override, then media duration, then playlist default, then the global default"""
    if item is not None and item.duration:
        return item.duration
    if media.duration:
        return media.duration
    if playlist is not None and playlist.default_duration:
        return playlist.default_duration
    return _default_duration()


def media_to_dict(media: MediaAsset, duration: int, position: int = 0,
                  item: Optional[PlaylistItem] = None) -> Dict[str, Any]:
    return {
        'id': item.id if item is not None else None,
        'position': position,
        'type': item.item_type if item is not None else 'media',
        'media_id': media.id,
        'media_type': media.media_type,
        'url': media.url,
        'thumbnail_url': media.thumbnail_url,
        'name': media.name,
        'duration': duration,
        'width': media.width,
        'height': media.height,
        'config': media.config,
    }


def playlist_block(playlist: Playlist) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Materialize playlist settings and its items ordered by position

    Items whose media no longer exists are skipped.
    """
    settings = {
        'id': playlist.id,
        'name': playlist.name,
        'default_duration': playlist.default_duration or _default_duration(),
        'transition_effect': playlist.transition_effect or 'fade',
        'shuffle': bool(playlist.shuffle),
    }

    items = []
    for item in playlist.items.order_by(None).order_by(PlaylistItem.position, PlaylistItem.id):
        media = item.media
        if media is None:
            logger.warning(f"Playlist {playlist.id} item {item.id} has no media, skipping")
            continue
        items.append(media_to_dict(media, effective_duration(item, media, playlist), item.position, item))

    return settings, items


def _zone_content(zone: LayoutZone) -> Optional[Dict[str, Any]]:
    try:
        ref = zone.content_ref
        if ref is None:
            return None
        if ref.content_type not in LayoutZone.ALLOWED_CONTENT:
            raise ContentIntegrityError(f'zone cannot hold {ref.content_type.value}')
        target = load_content(ref)
    except ContentIntegrityError as e:
        logger.warning(f"Layout {zone.layout_id} zone {zone.zone_name!r} downgraded to empty: {e}")
        return None

    if ref.content_type is ContentType.PLAYLIST:
        settings, items = playlist_block(target)
        return {'type': 'playlist', 'playlist': settings, 'items': items}

    return {'type': 'media', 'item': media_to_dict(target, effective_duration(None, target, None))}


def layout_block(layout: Layout) -> Dict[str, Any]:
    """Materialize canvas geometry and zones ordered by z-index"""
    zones = []
    for zone in layout.zones.order_by(None).order_by(LayoutZone.z_index, LayoutZone.id):
        content = _zone_content(zone)
        zones.append({
            'id': zone.id,
            'name': zone.zone_name,
            'x_percent': zone.x_percent,
            'y_percent': zone.y_percent,
            'width_percent': zone.width_percent,
            'height_percent': zone.height_percent,
            'z_index': zone.z_index,
            'content_type': content['type'] if content else None,
            'content': content,
        })

    return {
        'id': layout.id,
        'name': layout.name,
        'width': layout.width,
        'height': layout.height,
        'background_color': layout.background_color,
        'background_image': layout.background_image,
        'zones': zones,
    }


# ============================================================================
# PER-TYPE EXPANSION
# ============================================================================

def _expand_playlist(payload, playlist: Playlist, resolved: ResolvedContent):
    settings, items = playlist_block(playlist)
    payload.update(mode='playlist', playlist=settings, items=items)


def _expand_layout(payload, layout: Layout, resolved: ResolvedContent):
    payload.update(mode='layout', layout=layout_block(layout))


def _expand_media(payload, media: MediaAsset, resolved: ResolvedContent):
    # Single media is shaped like a one-item playlist
    payload.update(mode='playlist', playlist=None,
                   items=[media_to_dict(media, effective_duration(None, media, None))])


def _expand_scene(payload, scene: Scene, resolved: ResolvedContent):
    content_hash, media_hash = ensure_scene_hashes(scene)
    ref = scene.content_ref
    if ref is not None:
        try:
            target = load_content(ref)
        except ContentIntegrityError as e:
            logger.warning(f"Scene {scene.id} content is dangling: {e}")
        else:
            EXPANDERS[ref.content_type](payload, target, resolved)

    secondary = None
    if scene.secondary_playlist is not None:
        settings, items = playlist_block(scene.secondary_playlist)
        secondary = dict(settings, items=items)

    payload['scene'] = {
        'id': scene.id,
        'name': scene.name,
        'business_type': scene.business_type,
        'language_code': scene.language_code,
        'language_group_id': scene.language_group_id,
        'requested_scene_id': resolved.requested_scene_id,
        'content_hash': content_hash,
        'media_hash': media_hash,
        'settings': scene.settings or {},
        'slides': [{
            'id': s.id,
            'position': s.position,
            'title': s.title,
            'kind': s.kind,
            'design_json': s.design_json,
            'duration_seconds': s.duration_seconds,
        } for s in ordered_slides(scene)],
        'secondary_playlist': secondary,
    }


EXPANDERS = {
    ContentType.PLAYLIST: _expand_playlist,
    ContentType.LAYOUT: _expand_layout,
    ContentType.MEDIA: _expand_media,
    ContentType.SCENE: _expand_scene,
}


def empty_payload(device: Device, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Payload for a device with nothing to show"""
    now = now or utcnow()
    return {
        'mode': 'empty',
        'source': None,
        'device': {
            'id': device.id,
            'name': device.name,
            'timezone': device.effective_timezone,
            'language': device.effective_language,
        },
        'scene': None,
        'layout': None,
        'playlist': None,
        'items': [],
        'emergency': None,
        'priority': 0,
        'resolved_at': now.isoformat(),
    }


def materialize(device: Device, resolved: Optional[ResolvedContent],
                now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the renderable payload for a resolution result

    Args:
        device: Device the payload is for
        resolved: Resolver output, None for an empty resolution
        now: Resolution instant

    Returns:
        Payload dictionary; every key is always present
    """
    payload = empty_payload(device, now)
    if resolved is None:
        return payload

    payload['source'] = resolved.source

    target = resolved.scene
    if target is None:
        try:
            target = load_content(resolved.ref)
        except ContentIntegrityError as e:
            logger.warning(f"Resolved content for device {device.id} vanished: {e}")
            return payload

    EXPANDERS[resolved.ref.content_type](payload, target, resolved)

    if resolved.emergency is not None:
        payload['emergency'] = resolved.emergency.to_dict()
        payload['priority'] = current_app.config.get('EMERGENCY_PRIORITY', 999)

    return payload
