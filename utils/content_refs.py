"""
Content References
Typed polymorphic pointers at playlists, layouts, media and scenes
"""
import enum
from typing import NamedTuple, Optional, Any


class ContentIntegrityError(Exception):
    """A content reference is malformed or points at a missing row"""


class ContentType(enum.Enum):
    PLAYLIST = 'playlist'
    LAYOUT = 'layout'
    MEDIA = 'media'
    SCENE = 'scene'


class ContentRef(NamedTuple):
    """Immutable (content_type, content_id) pair, validated on construction via parse()"""
    content_type: ContentType
    content_id: int

    @classmethod
    def parse(cls, content_type: Any, content_id: Any) -> 'ContentRef':
        """
        Build a reference from raw column or request values

        Raises:
            ContentIntegrityError: unknown type, missing id or non-integer id
        """
        try:
            kind = content_type if isinstance(content_type, ContentType) else ContentType(content_type)
        except ValueError:
            raise ContentIntegrityError(f'Unknown content type: {content_type!r}')

        if content_id is None or isinstance(content_id, bool):
            raise ContentIntegrityError(f'Missing id for {kind.value} reference')
        try:
            ref_id = int(content_id)
        except (TypeError, ValueError):
            raise ContentIntegrityError(f'Invalid {kind.value} id: {content_id!r}')

        return cls(kind, ref_id)

    def to_dict(self):
        return {'type': self.content_type.value, 'id': self.content_id}

    def __str__(self):
        return f'{self.content_type.value}:{self.content_id}'


def content_models():
    """Map every ContentType to its model class"""
    from models import Playlist, Layout, MediaAsset, Scene

    return {
        ContentType.PLAYLIST: Playlist,
        ContentType.LAYOUT: Layout,
        ContentType.MEDIA: MediaAsset,
        ContentType.SCENE: Scene,
    }


def load_content(ref: ContentRef, session=None):
    """
    Fetch the row a reference points at

    Args:
        ref: Content reference
        session: Session to use (default: db.session)

    Returns:
        Model instance

    Raises:
        ContentIntegrityError: if the row does not exist
    """
    if session is None:
        from models import db
        session = db.session

    model = content_models()[ref.content_type]
    obj = session.get(model, ref.content_id)
    if obj is None:
        raise ContentIntegrityError(f'{ref} does not exist')
    return obj


def try_parse(content_type: Any, content_id: Any) -> Optional[ContentRef]:
    """Parse a reference, returning None for an unset (both NULL) pair"""
    if content_type is None and content_id is None:
        return None
    return ContentRef.parse(content_type, content_id)
