"""
Language Utilities
Picks the language variant of a scene matching a device's display language
"""
import logging
from typing import List, Dict, Optional, Any
from sqlalchemy import func
from models import Scene, SceneLanguageGroup, db

logger = logging.getLogger(__name__)


def normalize_language(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return code.strip().lower() or None


def _find_variant(group_id: int, language: Optional[str]) -> Optional[Scene]:
    if not language:
        return None
    return Scene.query.filter(
        Scene.language_group_id == group_id,
        func.lower(Scene.language_code) == language,
        Scene.is_active == True
    ).order_by(Scene.id).first()


def resolve_scene_variant(scene: Scene, device_language: Optional[str]) -> Scene:
    """
    Resolve the scene variant a device should show

    Order: exact language match in the scene's language group, then the
    group's default-language variant, then the scene itself. A scene
    outside any language group is returned unchanged.

    Args:
        scene: Scene picked by the resolver
        device_language: Device display language code

    Returns:
        Scene to render
    """
    if scene.language_group_id is None:
        return scene

    language = normalize_language(device_language)
    if language and normalize_language(scene.language_code) == language and scene.is_active:
        return scene

    variant = _find_variant(scene.language_group_id, language)
    if variant is not None:
        return variant

    group = db.session.get(SceneLanguageGroup, scene.language_group_id)
    if group is not None:
        default_variant = _find_variant(group.id, normalize_language(group.default_language))
        if default_variant is not None:
            logger.debug(f"No {language} variant for scene {scene.id}, using default {group.default_language}")
            return default_variant

    return scene


def fetch_language_variants(scene: Scene) -> List[Dict[str, Any]]:
    """List every variant of a scene's language group"""
    if scene.language_group_id is None:
        return [{
            'scene_id': scene.id,
            'name': scene.name,
            'language_code': scene.language_code,
            'is_active': scene.is_active,
            'is_default': True,
        }]

    group = db.session.get(SceneLanguageGroup, scene.language_group_id)
    default_language = normalize_language(group.default_language) if group else None

    variants = Scene.query.filter_by(language_group_id=scene.language_group_id).order_by(Scene.id).all()
    return [{
        'scene_id': v.id,
        'name': v.name,
        'language_code': v.language_code,
        'is_active': v.is_active,
        'is_default': normalize_language(v.language_code) == default_language,
    } for v in variants]
