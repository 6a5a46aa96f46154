"""
SignageCMS Database Models
SQLAlchemy ORM models for tenants, screens, content and schedules
"""
from datetime import datetime, timedelta, timezone
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.orm import Session

from utils.content_refs import ContentRef, ContentType, ContentIntegrityError

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the storage format for every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


CACHE_STATUSES = ('none', 'ok', 'stale', 'error')
OFFLINE_EVENT_TYPES = ('heartbeat', 'screenshot', 'playback', 'error')


class Tenant(db.Model):
    """Tenant account; carries the tenant-wide emergency override"""
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Emergency state (all NULL = no emergency)
    emergency_content_type = db.Column(db.String(20), nullable=True)
    emergency_content_id = db.Column(db.Integer, nullable=True)
    emergency_started_at = db.Column(db.DateTime, nullable=True)
    emergency_duration_minutes = db.Column(db.Integer, nullable=True)  # NULL = until cancelled

    @property
    def has_emergency(self):
        return self.emergency_content_id is not None and self.emergency_content_type is not None

    @property
    def emergency_expires_at(self):
        """Expiry of the current emergency, None when indefinite or unset"""
        if not self.has_emergency or self.emergency_duration_minutes is None:
            return None
        return self.emergency_started_at + timedelta(minutes=self.emergency_duration_minutes)

    def __repr__(self):
        return f'<Tenant {self.name}>'


class ScreenGroup(db.Model):
    """Group of screens sharing an override scene, schedule and language"""
    __tablename__ = 'screen_groups'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(7), default='#6c757d')  # Hex color for UI
    active_scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='SET NULL'), nullable=True)
    assigned_schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='SET NULL'), nullable=True)
    display_language = db.Column(db.String(10), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    tenant = db.relationship('Tenant', backref=db.backref('screen_groups', lazy='dynamic'))
    active_scene = db.relationship('Scene', foreign_keys=[active_scene_id])
    assigned_schedule = db.relationship('Schedule', foreign_keys=[assigned_schedule_id])

    def __repr__(self):
        return f'<ScreenGroup {self.name}>'


class Device(db.Model):
    """Physical screen paired to a tenant"""
    __tablename__ = 'devices'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    pairing_code = db.Column(db.String(16), unique=True, nullable=True, index=True)
    registered_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    group_id = db.Column(db.Integer, db.ForeignKey('screen_groups.id', ondelete='SET NULL'), nullable=True)

    # Content assignments
    active_scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='SET NULL'), nullable=True)
    assigned_layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='SET NULL'), nullable=True)
    assigned_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    assigned_schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='SET NULL'), nullable=True)

    # Locale
    timezone = db.Column(db.String(64), nullable=True)  # IANA name, e.g. America/New_York
    display_language = db.Column(db.String(10), nullable=True)

    # Connectivity
    last_seen = db.Column(db.DateTime, nullable=True)
    is_online = db.Column(db.Boolean, default=False, nullable=False)

    # Offline cache
    cached_scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='SET NULL'), nullable=True)
    cached_content_hash = db.Column(db.String(64), nullable=True)
    last_cache_sync = db.Column(db.DateTime, nullable=True)
    cache_status = db.Column(db.String(10), default='none', nullable=False)
    offline_since = db.Column(db.DateTime, nullable=True)
    is_offline_mode = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.CheckConstraint("cache_status IN ('none', 'ok', 'stale', 'error')", name='check_cache_status'),
    )

    # Relationships
    tenant = db.relationship('Tenant', backref=db.backref('devices', lazy='dynamic'))
    group = db.relationship('ScreenGroup', backref='devices', foreign_keys=[group_id])
    active_scene = db.relationship('Scene', foreign_keys=[active_scene_id])
    assigned_layout = db.relationship('Layout', foreign_keys=[assigned_layout_id])
    assigned_playlist = db.relationship('Playlist', foreign_keys=[assigned_playlist_id])
    assigned_schedule = db.relationship('Schedule', foreign_keys=[assigned_schedule_id])

    @staticmethod
    def normalize_pairing_code(code):
        """Pairing codes are matched case-insensitively and without padding"""
        return (code or '').strip().upper()

    @property
    def effective_language(self):
        """Device language, else the group's, else the configured default"""
        if self.display_language:
            return self.display_language
        if self.group and self.group.display_language:
            return self.group.display_language
        from flask import current_app
        return current_app.config.get('DEFAULT_LANGUAGE', 'en')

    @property
    def effective_timezone(self):
        if self.timezone:
            return self.timezone
        from flask import current_app
        return current_app.config.get('DEFAULT_TIMEZONE', 'UTC')

    def __repr__(self):
        return f'<Device {self.name} ({self.id})>'


class MediaAsset(db.Model):
    """Image, video or web media item"""
    __tablename__ = 'media_assets'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    media_type = db.Column(db.String(20), nullable=False, default='image')  # image, video, web, app
    url = db.Column(db.String(1000), nullable=False)
    thumbnail_url = db.Column(db.String(1000), nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # Native duration in seconds
    width = db.Column(db.Integer, nullable=True)
    height = db.Column(db.Integer, nullable=True)
    config = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<MediaAsset {self.name}>'


class Playlist(db.Model):
    """Ordered list of media with playback settings"""
    __tablename__ = 'playlists'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    default_duration = db.Column(db.Integer, nullable=True)  # seconds
    transition_effect = db.Column(db.String(20), default='fade')
    shuffle = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    items = db.relationship('PlaylistItem', backref='playlist', lazy='dynamic',
                            cascade='all, delete-orphan', order_by='PlaylistItem.position')

    def __repr__(self):
        return f'<Playlist {self.name}>'


class PlaylistItem(db.Model):
    """Positioned entry of a playlist"""
    __tablename__ = 'playlist_items'

    id = db.Column(db.Integer, primary_key=True)
    playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='CASCADE'), nullable=False)
    item_type = db.Column(db.String(20), nullable=False, default='media')
    media_id = db.Column(db.Integer, db.ForeignKey('media_assets.id', ondelete='SET NULL'), nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    duration = db.Column(db.Integer, nullable=True)  # Per-item override in seconds
    added_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    media = db.relationship('MediaAsset')

    # Unique constraint: one item per position
    __table_args__ = (
        db.UniqueConstraint('playlist_id', 'position', name='unique_playlist_position'),
    )

    def __repr__(self):
        return f'<PlaylistItem Playlist:{self.playlist_id} Media:{self.media_id} Pos:{self.position}>'


class Layout(db.Model):
    """Canvas split into independently assigned zones"""
    __tablename__ = 'layouts'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    width = db.Column(db.Integer, nullable=False, default=1920)
    height = db.Column(db.Integer, nullable=False, default=1080)
    background_color = db.Column(db.String(20), default='#000000')
    background_image = db.Column(db.String(1000), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    zones = db.relationship('LayoutZone', backref='layout', lazy='dynamic',
                            cascade='all, delete-orphan', order_by='LayoutZone.z_index')

    def __repr__(self):
        return f'<Layout {self.name} {self.width}x{self.height}>'


class LayoutZone(db.Model):
    """Rectangular region of a layout holding a playlist or a single media item"""
    __tablename__ = 'layout_zones'

    ALLOWED_CONTENT = (ContentType.PLAYLIST, ContentType.MEDIA)

    id = db.Column(db.Integer, primary_key=True)
    layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='CASCADE'), nullable=False)
    zone_name = db.Column(db.String(100), nullable=False)
    x_percent = db.Column(db.Float, nullable=False, default=0)
    y_percent = db.Column(db.Float, nullable=False, default=0)
    width_percent = db.Column(db.Float, nullable=False, default=100)
    height_percent = db.Column(db.Float, nullable=False, default=100)
    z_index = db.Column(db.Integer, nullable=False, default=0)

    # Polymorphic reference: both NULL = empty zone
    content_type = db.Column(db.String(20), nullable=True)
    content_id = db.Column(db.Integer, nullable=True)

    @property
    def content_ref(self):
        """Zone content as a ContentRef, None for an empty zone"""
        if self.content_type is None and self.content_id is None:
            return None
        return ContentRef.parse(self.content_type, self.content_id)

    def __repr__(self):
        return f'<LayoutZone {self.zone_name} z={self.z_index}>'


class SceneLanguageGroup(db.Model):
    """Ties language variants of one scene together"""
    __tablename__ = 'scene_language_groups'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    default_language = db.Column(db.String(10), nullable=False, default='en')
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<SceneLanguageGroup {self.id} default={self.default_language}>'


class Scene(db.Model):
    """Schedulable content bundle pointing at a layout or a primary playlist"""
    __tablename__ = 'scenes'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    business_type = db.Column(db.String(50), nullable=True)
    layout_id = db.Column(db.Integer, db.ForeignKey('layouts.id', ondelete='SET NULL'), nullable=True)
    primary_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    secondary_playlist_id = db.Column(db.Integer, db.ForeignKey('playlists.id', ondelete='SET NULL'), nullable=True)
    settings = db.Column(db.JSON, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Language variants
    language_group_id = db.Column(db.Integer, db.ForeignKey('scene_language_groups.id', ondelete='SET NULL'),
                                  nullable=True, index=True)
    language_code = db.Column(db.String(10), nullable=True)

    # Derived fingerprints (NULL = needs recompute)
    content_hash = db.Column(db.String(64), nullable=True)
    media_hash = db.Column(db.String(64), nullable=True)
    last_hash_update = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    layout = db.relationship('Layout', foreign_keys=[layout_id])
    primary_playlist = db.relationship('Playlist', foreign_keys=[primary_playlist_id])
    secondary_playlist = db.relationship('Playlist', foreign_keys=[secondary_playlist_id])
    language_group = db.relationship('SceneLanguageGroup', backref=db.backref('scenes', lazy='dynamic'))
    slides = db.relationship('SceneSlide', backref='scene', lazy='dynamic',
                             cascade='all, delete-orphan', order_by='SceneSlide.position')

    @property
    def content_ref(self):
        """What the scene renders: its layout, else its primary playlist"""
        if self.layout_id is not None:
            return ContentRef(ContentType.LAYOUT, self.layout_id)
        if self.primary_playlist_id is not None:
            return ContentRef(ContentType.PLAYLIST, self.primary_playlist_id)
        return None

    @property
    def is_renderable(self):
        return self.is_active and self.content_ref is not None

    def __repr__(self):
        return f'<Scene {self.name} ({self.language_code or "-"})>'


class SceneSlide(db.Model):
    """Slide of a scene holding a design document"""
    __tablename__ = 'scene_slides'

    id = db.Column(db.Integer, primary_key=True)
    scene_id = db.Column(db.Integer, db.ForeignKey('scenes.id', ondelete='CASCADE'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=True)
    kind = db.Column(db.String(20), default='default')
    design_json = db.Column(db.JSON, nullable=True)
    duration_seconds = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<SceneSlide Scene:{self.scene_id} Pos:{self.position}>'


class Schedule(db.Model):
    """Named set of time-boxed schedule entries"""
    __tablename__ = 'schedules'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    entries = db.relationship('ScheduleEntry', backref='schedule', lazy='dynamic',
                              cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Schedule {self.name}>'


class ScheduleEntry(db.Model):
    """Rule showing one content target inside a date, day and time window"""
    __tablename__ = 'schedule_entries'

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey('schedules.id', ondelete='CASCADE'), nullable=False)
    target_type = db.Column(db.String(20), nullable=False)  # playlist, layout, media, scene
    target_id = db.Column(db.Integer, nullable=False)

    # Window (every bound optional)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)
    days_of_week = db.Column(db.String(20), nullable=True)  # "1,2,3,4,5" with 0=Sunday; NULL = every day

    # Priority for conflict resolution (higher = more important)
    priority = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    @property
    def target_ref(self):
        return ContentRef.parse(self.target_type, self.target_id)

    def __repr__(self):
        return f'<ScheduleEntry {self.target_type}:{self.target_id} p={self.priority}>'


class OfflineEvent(db.Model):
    """Event a device recorded while offline and replayed on reconnect"""
    __tablename__ = 'offline_events'

    id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='CASCADE'), nullable=False, index=True)
    event_type = db.Column(db.String(20), nullable=False)
    event_data = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False)  # Device clock
    synced_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # Relationships
    device = db.relationship('Device', backref=db.backref('offline_events', lazy='dynamic',
                                                          cascade='all, delete-orphan'))

    def __repr__(self):
        return f'<OfflineEvent {self.event_type} Device:{self.device_id}>'


class ApiLog(db.Model):
    """Player API request log"""
    __tablename__ = 'api_logs'

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    device_id = db.Column(db.Integer, db.ForeignKey('devices.id', ondelete='SET NULL'), nullable=True)
    endpoint = db.Column(db.String(255), nullable=False)
    method = db.Column(db.String(10), nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)
    status_code = db.Column(db.Integer, nullable=False)
    response_time = db.Column(db.Float, nullable=True)  # Response time in milliseconds

    def __repr__(self):
        return f'<ApiLog {self.method} {self.endpoint} - {self.status_code}>'


# ============================================================================
# WRITE-TIME REFERENCE INTEGRITY
# ============================================================================

@event.listens_for(Session, 'before_flush')
def validate_content_references(session, flush_context, instances):
    """Reject zones and schedule entries pointing at rows that do not exist"""
    from utils.content_refs import load_content

    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, LayoutZone):
            ref = obj.content_ref
            if ref is None:
                continue
            if ref.content_type not in LayoutZone.ALLOWED_CONTENT:
                raise ContentIntegrityError(
                    f'Zone {obj.zone_name!r} cannot hold {ref.content_type.value} content'
                )
            load_content(ref, session=session)
        elif isinstance(obj, ScheduleEntry):
            load_content(obj.target_ref, session=session)
