"""
Tests for the player and operator HTTP API.
"""

import pytest
from datetime import time

from models import ApiLog, Device


class TestContentEndpoint:

    def test_resolves_and_touches_heartbeat(self, client, make_playlist, make_device, db_session):
        device = make_device(assigned_playlist_id=make_playlist('Lobby').id)

        response = client.get(f'/api/player/{device.id}/content')
        data = response.get_json()

        assert response.status_code == 200
        assert data['mode'] == 'playlist'
        assert data['source'] == 'assigned_playlist'
        assert data['playlist']['name'] == 'Lobby'

        stored = db_session.get(Device, device.id)
        assert stored.is_online is True
        assert stored.last_seen is not None

    def test_empty_resolution(self, client, device):
        response = client.get(f'/api/player/{device.id}/content')
        data = response.get_json()

        assert response.status_code == 200
        assert data['mode'] == 'empty'
        assert data['source'] is None

    def test_unknown_device(self, client, app):
        response = client.get('/api/player/4242/content')
        assert response.status_code == 404
        assert 'error' in response.get_json()

    def test_directory_timezone_still_resolves(self, client, make_playlist, make_schedule, make_device):
        playlist = make_playlist('Legacy')
        schedule = make_schedule(entries=[{'target_type': 'playlist', 'target_id': playlist.id}])
        device = make_device(assigned_schedule_id=schedule.id, timezone='America')

        response = client.get(f'/api/player/{device.id}/content')

        assert response.status_code == 200
        assert response.get_json()['source'] == 'legacy_schedule'

    def test_requests_are_logged(self, client, device, db_session):
        client.get(f'/api/player/{device.id}/content')
        log = db_session.query(ApiLog).filter_by(device_id=device.id).one()
        assert log.status_code == 200
        assert log.method == 'GET'


class TestPairing:

    def test_pairing_code_is_normalized(self, client, make_playlist, make_device):
        device = make_device(pairing_code='XY99ZZ', assigned_playlist_id=make_playlist('P').id)

        response = client.post('/api/player/pair', json={'code': '  xy99zz '})
        data = response.get_json()

        assert response.status_code == 200
        assert data['device_id'] == device.id
        assert data['source'] == 'assigned_playlist'

    def test_missing_code(self, client, app):
        assert client.post('/api/player/pair', json={}).status_code == 400

    def test_unknown_code(self, client, device):
        assert client.post('/api/player/pair', json={'code': 'NOPE00'}).status_code == 404


class TestCacheEndpoints:

    def test_checksum_then_sync(self, client, make_scene, make_device):
        scene = make_scene('Cached', designs=[{'text': 'hi'}])
        device = make_device(active_scene_id=scene.id)

        before = client.get(f'/api/player/{device.id}/checksums').get_json()
        assert before['needs_update'] is True
        assert before['scene_id'] == scene.id

        response = client.post(f'/api/player/{device.id}/cache-status', json={
            'scene_id': scene.id,
            'content_hash': before['content_hash'],
            'status': 'ok',
        })
        assert response.status_code == 200
        assert response.get_json()['cache_status'] == 'ok'

        after = client.get(f'/api/player/{device.id}/checksums').get_json()
        assert after['needs_update'] is False

    def test_invalid_cache_status(self, client, device):
        response = client.post(f'/api/player/{device.id}/cache-status', json={'status': 'bogus'})
        assert response.status_code == 400

    def test_offline_and_event_replay(self, client, device):
        offline = client.post(f'/api/player/{device.id}/offline').get_json()
        assert offline['is_offline_mode'] is True
        assert offline['cache_status'] == 'none'

        response = client.post(f'/api/player/{device.id}/offline-events', json={'events': [
            {'event_type': 'heartbeat', 'created_at': '2025-11-04T09:00:00Z'},
            {'event_type': 'unknown'},
        ]})
        data = response.get_json()

        assert response.status_code == 200
        assert data['synced_count'] == 1
        assert data['failed_count'] == 1

    def test_offline_events_require_list(self, client, device):
        response = client.post(f'/api/player/{device.id}/offline-events', json={'events': 'x'})
        assert response.status_code == 400

    def test_scene_changed_and_manifest(self, client, make_scene):
        scene = make_scene('Cached', designs=[{'src': 'https://cdn.example.com/x.png'}])

        manifest = client.get(f'/api/player/scenes/{scene.id}/cache-manifest').get_json()
        assert manifest['media_urls'] == ['https://cdn.example.com/x.png']

        changed = client.get(f'/api/player/scenes/{scene.id}/changed', query_string={
            'content_hash': manifest['content_hash'],
            'media_hash': manifest['media_hash'],
        }).get_json()
        assert changed['content_changed'] is False
        assert changed['media_changed'] is False

        assert client.get('/api/player/scenes/999/changed').status_code == 404


class TestOperatorEndpoints:

    def test_emergency_lifecycle(self, client, tenant, make_playlist, device):
        alert = make_playlist('Alert')

        response = client.post(f'/api/tenants/{tenant.id}/emergency', json={
            'content_type': 'playlist', 'content_id': alert.id, 'duration_minutes': 10,
        })
        assert response.status_code == 201

        content = client.get(f'/api/player/{device.id}/content').get_json()
        assert content['source'] == 'emergency'
        assert content['priority'] == 999

        status = client.get(f'/api/tenants/{tenant.id}/emergency').get_json()
        assert status['active'] is True

        assert client.delete(f'/api/tenants/{tenant.id}/emergency').get_json()['cancelled'] is True
        assert client.get(f'/api/player/{device.id}/content').get_json()['mode'] == 'empty'

    @pytest.mark.parametrize('body', [
        {'content_type': 'banner', 'content_id': 1},
        {'content_type': 'playlist', 'content_id': 999},
        {'content_type': 'playlist'},
    ])
    def test_emergency_validation(self, client, tenant, body):
        assert client.post(f'/api/tenants/{tenant.id}/emergency', json=body).status_code == 400

    def test_unknown_tenant(self, client, app):
        assert client.get('/api/tenants/77/emergency').status_code == 404

    def test_slide_update_invalidates_hash(self, client, make_scene, db_session):
        from models import Scene
        from utils.content_hash import ensure_scene_hashes

        scene = make_scene('Editable', designs=[{'text': 'v1'}])
        ensure_scene_hashes(scene)
        slide_id = scene.slides.first().id

        response = client.put(f'/api/slides/{slide_id}/design', json={'design_json': {'text': 'v2'}})

        assert response.status_code == 200
        assert db_session.get(Scene, scene.id).content_hash is None

    def test_delete_slide(self, client, make_scene, db_session):
        from models import SceneSlide

        scene = make_scene('Editable', designs=[{'text': 'v1'}, {'text': 'v2'}])
        slide_id = scene.slides.first().id

        assert client.delete(f'/api/slides/{slide_id}').get_json()['success'] is True
        db_session.expire_all()
        assert db_session.get(SceneSlide, slide_id) is None

    def test_delete_slide_failure_is_rolled_back(self, client, make_scene, db_session, monkeypatch):
        from models import SceneSlide, db

        scene = make_scene('Editable', designs=[{'text': 'v1'}])
        slide_id = scene.slides.first().id

        def broken_remove(slide):
            db.session.delete(slide)
            db.session.flush()
            raise RuntimeError('storage unavailable')
        monkeypatch.setattr('routes.content_routes.remove_slide', broken_remove)

        response = client.delete(f'/api/slides/{slide_id}')

        assert response.status_code == 500
        assert response.get_json()['error'] == 'Internal server error'
        db_session.expire_all()
        assert db_session.get(SceneSlide, slide_id) is not None

    def test_schedule_preview(self, client, make_playlist, make_schedule, make_device):
        playlist = make_playlist('Breakfast')
        schedule = make_schedule(entries=[{
            'target_type': 'playlist', 'target_id': playlist.id,
            'start_time': time(7, 0), 'end_time': time(10, 0),
        }])
        device = make_device(assigned_schedule_id=schedule.id)

        response = client.get(f'/api/devices/{device.id}/schedule-preview?date=2025-11-04')
        timeline = response.get_json()['timeline']

        assert response.status_code == 200
        assert timeline[7]['legacy_schedule']['target_id'] == playlist.id
        assert timeline[11]['legacy_schedule'] is None

    def test_resolution_inspection(self, client, make_playlist, make_device):
        device = make_device(assigned_playlist_id=make_playlist('P').id)
        data = client.get(f'/api/devices/{device.id}/resolution').get_json()

        assert data['resolved'] is True
        assert data['resolution']['source'] == 'assigned_playlist'


class TestHealth:

    def test_health(self, client):
        response = client.get('/api/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'
