"""
Content Hashing
Stable content and media fingerprints of scenes for cache invalidation
"""
import hashlib
import json
import logging
from typing import List, Dict, Optional, Tuple, Any, Iterable
from urllib.parse import urlparse
from models import Scene, SceneSlide, Device, db, utcnow

logger = logging.getLogger(__name__)

# Normalized (lower-case, no dashes or underscores) design keys holding media
MEDIA_URL_KEYS = frozenset({
    'url', 'src', 'backgroundimage', 'videourl', 'imageurl', 'posterurl',
})


class DesignVisitor:
    """
    Walks a deserialized design document

    Subclasses override visit_value to inspect (key, value) pairs; objects
    and arrays are descended into recursively.
    """

    def visit(self, node, key=None):
        if isinstance(node, dict):
            self.visit_object(node)
        elif isinstance(node, list):
            self.visit_array(node, key)
        else:
            self.visit_value(key, node)

    def visit_object(self, node: Dict[str, Any]):
        for key, value in node.items():
            self.visit(value, key)

    def visit_array(self, node: List[Any], key=None):
        for item in node:
            self.visit(item, key)

    def visit_value(self, key, value):
        pass


def normalize_key(key) -> str:
    return str(key).lower().replace('-', '').replace('_', '')


def is_absolute_url(value) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


class MediaUrlCollector(DesignVisitor):
    """Collects absolute media URLs stored under media keys"""

    def __init__(self):
        self.urls = set()

    def visit_value(self, key, value):
        if key is None or normalize_key(key) not in MEDIA_URL_KEYS:
            return
        if is_absolute_url(value):
            self.urls.add(value.strip())

    def sorted_urls(self) -> List[str]:
        return sorted(self.urls)


def _load_design(design):
    # Designs saved as raw JSON text are parsed before hashing
    if isinstance(design, str):
        try:
            return json.loads(design)
        except ValueError:
            return design
    return design


def canonical_json(value) -> str:
    return json.dumps(value, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def collect_media_urls(designs: Iterable[Any]) -> List[str]:
    collector = MediaUrlCollector()
    for design in designs:
        collector.visit(_load_design(design))
    return collector.sorted_urls()


def hash_designs(designs: Iterable[Any]) -> Tuple[str, str]:
    """
    Hash an ordered list of slide design documents

    Returns:
        Tuple (content_hash, media_hash), both SHA-256 hex digests
    """
    designs = [_load_design(d) for d in designs]
    content_hash = sha256_hex(canonical_json(designs))
    media_hash = sha256_hex(','.join(collect_media_urls(designs)))
    return content_hash, media_hash


def ordered_slides(scene: Scene) -> List[SceneSlide]:
    return scene.slides.order_by(None).order_by(SceneSlide.position, SceneSlide.id).all()


def compute_hashes(scene: Scene) -> Tuple[str, str]:
    """Compute (content_hash, media_hash) of a scene without touching stored values"""
    return hash_designs([slide.design_json for slide in ordered_slides(scene)])


def ensure_scene_hashes(scene: Scene) -> Tuple[Optional[str], Optional[str]]:
    """
    Return the scene's hashes, recomputing them if either is missing

    Both hashes and last_hash_update are written in a single UPDATE.
    """
    if scene.content_hash is not None and scene.media_hash is not None:
        return scene.content_hash, scene.media_hash

    content_hash, media_hash = compute_hashes(scene)
    Scene.query.filter_by(id=scene.id).update({
        'content_hash': content_hash,
        'media_hash': media_hash,
        'last_hash_update': utcnow(),
    }, synchronize_session=False)
    db.session.commit()

    logger.debug(f"Recomputed hashes for scene {scene.id}: {content_hash[:12]}/{media_hash[:12]}")
    return content_hash, media_hash


def invalidate_scene_hashes(scene_id: int):
    """Null both hashes of a scene; the caller commits"""
    Scene.query.filter_by(id=scene_id).update({
        'content_hash': None,
        'media_hash': None,
    }, synchronize_session=False)


def _notify_scene_devices(scene_id: int):
    from socketio_events import broadcast_content_updated

    devices = Device.query.filter(
        (Device.active_scene_id == scene_id) | (Device.cached_scene_id == scene_id)
    ).all()
    for device in devices:
        broadcast_content_updated(device.id, scene_id)


def update_slide_design(slide: SceneSlide, design_json) -> SceneSlide:
    """Replace a slide's design document and invalidate the scene's hashes"""
    slide.design_json = design_json
    db.session.flush()
    invalidate_scene_hashes(slide.scene_id)
    db.session.commit()

    _notify_scene_devices(slide.scene_id)
    return slide


def add_slide(scene: Scene, design_json=None, position: Optional[int] = None,
              title: Optional[str] = None, kind: str = 'default',
              duration_seconds: Optional[int] = None) -> SceneSlide:
    """Append (or insert at position) a slide to a scene"""
    if position is None:
        last = scene.slides.order_by(None).order_by(SceneSlide.position.desc()).first()
        position = last.position + 1 if last else 0

    slide = SceneSlide(scene_id=scene.id, position=position, title=title, kind=kind,
                       design_json=design_json, duration_seconds=duration_seconds)
    db.session.add(slide)
    db.session.flush()
    invalidate_scene_hashes(scene.id)
    db.session.commit()

    _notify_scene_devices(scene.id)
    return slide


def remove_slide(slide: SceneSlide):
    scene_id = slide.scene_id
    db.session.delete(slide)
    db.session.flush()
    invalidate_scene_hashes(scene_id)
    db.session.commit()

    _notify_scene_devices(scene_id)


def check_scene_changed(scene: Scene, last_content_hash: Optional[str],
                        last_media_hash: Optional[str] = None) -> Dict[str, Any]:
    """
    Compare a device's last known hashes against the scene's current ones

    Returns:
        Dictionary with changed flags, current hashes and refresh hints
    """
    content_hash, media_hash = ensure_scene_hashes(scene)
    content_changed = content_hash != last_content_hash
    media_changed = media_hash != last_media_hash

    return {
        'scene_id': scene.id,
        'content_changed': content_changed,
        'media_changed': media_changed,
        'current_content_hash': content_hash,
        'current_media_hash': media_hash,
        'needs_full_refresh': content_changed,
        'needs_media_refresh': media_changed,
    }


def get_scene_for_caching(scene: Scene) -> Dict[str, Any]:
    """Build the offline cache manifest of a scene: slides, media URLs and hashes"""
    content_hash, media_hash = ensure_scene_hashes(scene)
    slides = ordered_slides(scene)

    return {
        'scene_id': scene.id,
        'name': scene.name,
        'business_type': scene.business_type,
        'slides': [{
            'id': s.id,
            'position': s.position,
            'title': s.title,
            'kind': s.kind,
            'design_json': s.design_json,
            'duration_seconds': s.duration_seconds,
        } for s in slides],
        'content_hash': content_hash,
        'media_hash': media_hash,
        'media_urls': collect_media_urls(s.design_json for s in slides),
    }
