"""
Tests for device cache tracking, the online/offline state machine and
offline event replay.
"""

import pytest
from datetime import datetime, timedelta

from models import OfflineEvent
from utils.content_hash import update_slide_design
from utils.content_refs import ContentIntegrityError
from utils.cache_coordinator import (
    check_staleness,
    record_sync,
    touch_heartbeat,
    mark_device_offline,
    sweep_offline_devices,
    sync_offline_events,
)

NOW = datetime(2025, 11, 4, 10, 0)


@pytest.fixture(scope='function')
def scene_device(make_scene, make_device):
    scene = make_scene('Cached', designs=[{'url': 'https://cdn.example.com/a.png'}])
    device = make_device(active_scene_id=scene.id)
    return device, scene


class TestCheckStaleness:

    def test_never_synced_needs_update(self, scene_device):
        device, scene = scene_device
        result = check_staleness(device, NOW)

        assert result['needs_update'] is True
        assert result['scene_id'] == scene.id
        assert result['cached_hash'] is None
        assert len(result['current_hash']) == 64
        assert result['source'] == 'device_override'

    def test_synced_device_is_fresh(self, scene_device):
        device, scene = scene_device
        current = check_staleness(device, NOW)['current_hash']
        record_sync(device, scene.id, current, 'ok')

        assert check_staleness(device, NOW)['needs_update'] is False

    def test_slide_edit_makes_cache_stale(self, scene_device):
        device, scene = scene_device
        record_sync(device, scene.id, check_staleness(device, NOW)['current_hash'], 'ok')

        update_slide_design(scene.slides.first(), {'url': 'https://cdn.example.com/b.png'})

        result = check_staleness(device, NOW)
        assert result['needs_update'] is True
        assert result['current_hash'] != result['cached_hash']

    def test_non_scene_content_has_no_hash(self, make_playlist, make_device):
        device = make_device(assigned_playlist_id=make_playlist('P').id)
        result = check_staleness(device, NOW)

        assert result['scene_id'] is None
        assert result['current_hash'] is None
        assert result['needs_update'] is False


class TestRecordSync:

    def test_ok_clears_offline_flags(self, scene_device):
        device, scene = scene_device
        mark_device_offline(device, NOW)

        result = record_sync(device, scene.id, 'abc', 'ok', now=NOW)

        assert result['cache_status'] == 'ok'
        assert device.is_offline_mode is False
        assert device.offline_since is None
        assert device.cached_content_hash == 'abc'
        assert device.last_cache_sync == NOW

    def test_error_keeps_offline_flags(self, scene_device):
        device, scene = scene_device
        mark_device_offline(device, NOW)

        record_sync(device, scene.id, None, 'error')

        assert device.cache_status == 'error'
        assert device.is_offline_mode is True

    def test_rejects_unknown_status(self, scene_device):
        device, scene = scene_device
        with pytest.raises(ValueError):
            record_sync(device, scene.id, 'abc', 'fresh')

    def test_rejects_missing_scene(self, device):
        with pytest.raises(ContentIntegrityError):
            record_sync(device, 9999, 'abc', 'ok')


class TestConnectivity:

    def test_offline_with_cache_is_stale(self, scene_device):
        device, scene = scene_device
        record_sync(device, scene.id, 'abc', 'ok')

        mark_device_offline(device, NOW)

        assert device.is_online is False
        assert device.is_offline_mode is True
        assert device.cache_status == 'stale'
        assert device.offline_since == NOW

    def test_offline_without_cache_is_none(self, device):
        mark_device_offline(device, NOW)
        assert device.cache_status == 'none'

    def test_offline_since_is_kept(self, device):
        mark_device_offline(device, NOW)
        mark_device_offline(device, NOW + timedelta(minutes=10))
        assert device.offline_since == NOW

    def test_heartbeat_brings_device_online_but_cache_stays_stale(self, scene_device):
        device, scene = scene_device
        record_sync(device, scene.id, 'abc', 'ok')
        mark_device_offline(device, NOW)

        touch_heartbeat(device, NOW + timedelta(minutes=1))

        assert device.is_online is True
        assert device.last_seen == NOW + timedelta(minutes=1)
        assert device.cache_status == 'stale'

    def test_sweep_marks_silent_devices(self, make_device):
        silent = make_device('Silent', is_online=True, last_seen=NOW - timedelta(minutes=6))
        alive = make_device('Alive', is_online=True, last_seen=NOW - timedelta(minutes=1))
        never = make_device('Never', is_online=True)

        assert sweep_offline_devices(NOW) == 2

        assert silent.is_online is False
        assert never.is_online is False
        assert alive.is_online is True


class TestSyncOfflineEvents:

    def event(self, event_type='playback', **data):
        return {'event_type': event_type, 'event_data': data, 'created_at': '2025-11-04T09:00:00Z'}

    def test_partial_failure(self, device, db_session):
        events = [
            self.event('heartbeat'),
            self.event('playback', media_id=1),
            {'event_type': 'teleport', 'event_data': 'nope'},
            self.event('screenshot', url='https://cdn.example.com/s.png'),
            self.event('error', message='decoder crash'),
        ]

        result = sync_offline_events(device, events)

        assert result['synced_count'] == 4
        assert result['failed_count'] == 1
        assert result['failures'][0]['index'] == 2
        assert db_session.query(OfflineEvent).filter_by(device_id=device.id).count() == 4

    def test_timestamps_are_stored_as_utc(self, device, db_session):
        sync_offline_events(device, [
            {'event_type': 'heartbeat', 'created_at': '2025-11-04T11:00:00+01:00'},
        ])
        stored = db_session.query(OfflineEvent).one()
        assert stored.created_at == datetime(2025, 11, 4, 10, 0)
        assert stored.event_data == {}

    @pytest.mark.parametrize('bad', [
        'not an object',
        {'event_type': 'playback', 'created_at': 'yesterday'},
        {'event_type': 'playback', 'event_data': [1, 2]},
        {'event_data': {}},
    ])
    def test_malformed_events_fail_individually(self, device, bad):
        result = sync_offline_events(device, [bad, self.event()])
        assert (result['synced_count'], result['failed_count']) == (1, 1)

    def test_clears_offline_flags_but_not_cache(self, device):
        mark_device_offline(device, NOW)

        sync_offline_events(device, [self.event()])

        assert device.is_offline_mode is False
        assert device.offline_since is None
        assert device.cache_status == 'none'
        assert device.last_cache_sync is None

    def test_events_must_be_a_list(self, device):
        with pytest.raises(ValueError):
            sync_offline_events(device, {'event_type': 'heartbeat'})
