"""
Shared pytest fixtures: application, database session and content factories.
"""

import pytest

from app import create_app
from models import (
    db,
    Tenant,
    ScreenGroup,
    Device,
    MediaAsset,
    Playlist,
    PlaylistItem,
    Layout,
    LayoutZone,
    SceneLanguageGroup,
    Scene,
    SceneSlide,
    Schedule,
    ScheduleEntry,
)


@pytest.fixture(scope='function')
def app():
    """
    Create an application with an empty in-memory database.

    Returns:
        Flask application inside an active app context
    """
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    return db.session


@pytest.fixture(scope='function')
def tenant(db_session):
    tenant = Tenant(name='Test Tenant')
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def make_media(db_session, tenant):
    """
    Factory for MediaAsset rows.

    Returns:
        Callable(name, url, duration, media_type) -> MediaAsset
    """
    def _make(name='Clip', url=None, duration=None, media_type='image'):
        media = MediaAsset(
            tenant_id=tenant.id,
            name=name,
            media_type=media_type,
            url=url or f'https://cdn.example.com/{name.lower()}.png',
            duration=duration,
        )
        db_session.add(media)
        db_session.commit()
        return media
    return _make


@pytest.fixture(scope='function')
def make_playlist(db_session, tenant, make_media):
    """
    Factory for playlists; each item is a MediaAsset or a (media, duration) pair.
    """
    def _make(name='Playlist', items=None, default_duration=None):
        playlist = Playlist(tenant_id=tenant.id, name=name, default_duration=default_duration)
        db_session.add(playlist)
        db_session.flush()
        if items is None:
            items = [make_media(f'{name} media')]
        for position, entry in enumerate(items):
            media, duration = entry if isinstance(entry, tuple) else (entry, None)
            db_session.add(PlaylistItem(
                playlist_id=playlist.id, media_id=media.id, position=position, duration=duration
            ))
        db_session.commit()
        return playlist
    return _make


@pytest.fixture(scope='function')
def make_layout(db_session, tenant):
    """
    Factory for layouts; zones are dicts of LayoutZone column values.
    """
    def _make(name='Layout', zones=()):
        layout = Layout(tenant_id=tenant.id, name=name)
        db_session.add(layout)
        db_session.flush()
        for index, zone in enumerate(zones):
            values = {'zone_name': f'zone{index}', 'z_index': index}
            values.update(zone)
            db_session.add(LayoutZone(layout_id=layout.id, **values))
        db_session.commit()
        return layout
    return _make


@pytest.fixture(scope='function')
def make_scene(db_session, tenant, make_playlist):
    def _make(name='Scene', playlist=None, layout=None, language_group=None,
              language_code=None, is_active=True, designs=()):
        if playlist is None and layout is None:
            playlist = make_playlist(f'{name} playlist')
        scene = Scene(
            tenant_id=tenant.id,
            name=name,
            layout_id=layout.id if layout else None,
            primary_playlist_id=playlist.id if playlist else None,
            language_group_id=language_group.id if language_group else None,
            language_code=language_code,
            is_active=is_active,
        )
        db_session.add(scene)
        db_session.flush()
        for position, design in enumerate(designs):
            db_session.add(SceneSlide(scene_id=scene.id, position=position, design_json=design))
        db_session.commit()
        return scene
    return _make


@pytest.fixture(scope='function')
def make_language_group(db_session, tenant):
    def _make(default_language='en'):
        group = SceneLanguageGroup(tenant_id=tenant.id, default_language=default_language)
        db_session.add(group)
        db_session.commit()
        return group
    return _make


@pytest.fixture(scope='function')
def make_schedule(db_session, tenant):
    """
    Factory for schedules; entries are dicts of ScheduleEntry column values.
    """
    def _make(name='Schedule', entries=()):
        schedule = Schedule(tenant_id=tenant.id, name=name)
        db_session.add(schedule)
        db_session.flush()
        for entry in entries:
            db_session.add(ScheduleEntry(schedule_id=schedule.id, **entry))
        db_session.commit()
        return schedule
    return _make


@pytest.fixture(scope='function')
def make_group(db_session, tenant):
    def _make(name='Group', **values):
        group = ScreenGroup(tenant_id=tenant.id, name=name, **values)
        db_session.add(group)
        db_session.commit()
        return group
    return _make


@pytest.fixture(scope='function')
def make_device(db_session, tenant):
    def _make(name='Screen', **values):
        values.setdefault('timezone', 'UTC')
        device = Device(tenant_id=tenant.id, name=name, **values)
        db_session.add(device)
        db_session.commit()
        return device
    return _make


@pytest.fixture(scope='function')
def device(make_device):
    return make_device('Lobby Screen', pairing_code='AB12CD')
