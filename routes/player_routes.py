"""
Player API Routes Blueprint
Endpoints polled by display devices: content resolution, pairing, cache
checksums, cache sync reports and offline event replay
"""
import time
import logging
from flask import Blueprint, request, jsonify, current_app

from app import limiter
from models import db, ApiLog, Scene, utcnow
from utils.content_refs import ContentIntegrityError
from utils.content_resolver import DeviceNotFound, get_device, get_device_by_pairing_code, resolve_content
from utils.materializer import materialize
from utils.content_hash import check_scene_changed, get_scene_for_caching
from utils.cache_coordinator import (check_staleness, record_sync, touch_heartbeat,
                                     mark_device_offline, sync_offline_events)

player_bp = Blueprint('player', __name__)

# Setup API logger
api_logger = logging.getLogger('api')


def log_api_request(device_id, endpoint, method, status_code, response_time=None):
    """Log API request to database and file"""
    try:
        # Log to database
        log_entry = ApiLog(
            device_id=device_id,
            endpoint=endpoint,
            method=method,
            ip_address=request.remote_addr,
            status_code=status_code,
            response_time=response_time
        )
        db.session.add(log_entry)
        db.session.commit()

        # Log to file
        api_logger.info(f'{method} {endpoint} - Device:{device_id} IP:{request.remote_addr} Status:{status_code}')
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Error logging API request: {e}')


def _elapsed_ms(start_time):
    return (time.time() - start_time) * 1000


def _device_not_found(e, start_time):
    log_api_request(None, request.path, request.method, 404, _elapsed_ms(start_time))
    return jsonify({'error': str(e) or 'Device not found'}), 404


def _server_error(action, e):
    db.session.rollback()
    current_app.logger.error(f'Error {action}: {e}')
    return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# CONTENT RESOLUTION
# ============================================================================

@player_bp.route('/player/<int:device_id>/content', methods=['GET'])
def get_content(device_id):
    """
    Resolve and materialize what a device should render right now
    Also counts as a heartbeat.

    Response JSON:
    {
        "mode": "playlist",
        "source": "legacy_schedule",
        "device": {"id": 1, "name": "Lobby", "timezone": "UTC", "language": "en"},
        "scene": null,
        "layout": null,
        "playlist": {"id": 3, "name": "Morning", "default_duration": 10, ...},
        "items": [{"media_id": 7, "url": "https://...", "duration": 15, ...}],
        "emergency": null,
        "priority": 0,
        "resolved_at": "2025-10-31T10:00:00"
    }
    """
    start_time = time.time()

    try:
        device = get_device(device_id)
        now = utcnow()

        touch_heartbeat(device, now)
        resolved = resolve_content(device, now)
        payload = materialize(device, resolved, now)

        log_api_request(device.id, request.path, 'GET', 200, _elapsed_ms(start_time))
        return jsonify(payload), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error(f'resolving content for device {device_id}', e)


@player_bp.route('/player/pair', methods=['POST'])
def pair_device():
    """
    Resolve content for a device identified by its pairing code

    Request JSON:
    {
        "code": " ab12cd "
    }

    Response JSON: same as /player/<device_id>/content plus "device_id"
    """
    start_time = time.time()

    try:
        data = request.get_json(silent=True)

        if not data or not data.get('code'):
            return jsonify({'error': 'Pairing code is required'}), 400

        device = get_device_by_pairing_code(data.get('code'))
        now = utcnow()

        touch_heartbeat(device, now)
        resolved = resolve_content(device, now)
        payload = materialize(device, resolved, now)
        payload['device_id'] = device.id

        current_app.logger.info(f'Device {device.id} resolved by pairing code')
        log_api_request(device.id, request.path, 'POST', 200, _elapsed_ms(start_time))
        return jsonify(payload), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error('resolving content by pairing code', e)


# ============================================================================
# CACHE & OFFLINE
# ============================================================================

@player_bp.route('/player/<int:device_id>/checksums', methods=['GET'])
@limiter.limit(lambda: current_app.config['CHECKSUM_RATE_LIMIT'])
def get_checksums(device_id):
    """
    Cheap staleness probe

    Response JSON:
    {
        "device_id": 1,
        "scene_id": 4,
        "content_hash": "9f86d0...",
        "media_hash": "e3b0c4...",
        "cached_hash": "9f86d0...",
        "needs_update": false,
        ...
    }
    """
    start_time = time.time()

    try:
        device = get_device(device_id)
        result = check_staleness(device)

        log_api_request(device.id, request.path, 'GET', 200, _elapsed_ms(start_time))
        return jsonify(result), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error(f'checking checksums for device {device_id}', e)


@player_bp.route('/player/<int:device_id>/cache-status', methods=['POST'])
def report_cache_status(device_id):
    """
    Record the result of a cache sync

    Request JSON:
    {
        "scene_id": 4,
        "content_hash": "9f86d0...",
        "status": "ok"
    }
    """
    start_time = time.time()

    try:
        device = get_device(device_id)
        data = request.get_json(silent=True)

        if data is None:
            return jsonify({'error': 'No data provided'}), 400

        try:
            result = record_sync(device, data.get('scene_id'), data.get('content_hash'),
                                 data.get('status', 'ok'))
        except (ValueError, ContentIntegrityError) as e:
            log_api_request(device.id, request.path, 'POST', 400, _elapsed_ms(start_time))
            return jsonify({'error': str(e)}), 400

        log_api_request(device.id, request.path, 'POST', 200, _elapsed_ms(start_time))
        return jsonify(result), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error(f'recording cache status for device {device_id}', e)


@player_bp.route('/player/<int:device_id>/offline', methods=['POST'])
def report_offline(device_id):
    """Device announces it is switching to its offline cache"""
    start_time = time.time()

    try:
        device = get_device(device_id)
        result = mark_device_offline(device)

        log_api_request(device.id, request.path, 'POST', 200, _elapsed_ms(start_time))
        return jsonify(result), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error(f'marking device {device_id} offline', e)


@player_bp.route('/player/<int:device_id>/offline-events', methods=['POST'])
def upload_offline_events(device_id):
    """
    Replay events recorded while the device was offline

    Request JSON:
    {
        "events": [
            {"event_type": "playback", "event_data": {"media_id": 7}, "created_at": "2025-10-31T09:58:00Z"}
        ]
    }

    Response JSON:
    {
        "success": true,
        "device_id": 1,
        "synced_count": 1,
        "failed_count": 0,
        "failures": []
    }
    """
    start_time = time.time()

    try:
        device = get_device(device_id)
        data = request.get_json(silent=True)

        if not data or 'events' not in data:
            return jsonify({'error': 'events list is required'}), 400

        try:
            result = sync_offline_events(device, data['events'])
        except ValueError as e:
            log_api_request(device.id, request.path, 'POST', 400, _elapsed_ms(start_time))
            return jsonify({'error': str(e)}), 400

        log_api_request(device.id, request.path, 'POST', 200, _elapsed_ms(start_time))
        return jsonify(result), 200

    except DeviceNotFound as e:
        return _device_not_found(e, start_time)
    except Exception as e:
        return _server_error(f'syncing offline events for device {device_id}', e)


@player_bp.route('/player/scenes/<int:scene_id>/changed', methods=['GET'])
def scene_changed(scene_id):
    """
    Compare the caller's hashes with the scene's current hashes
    Query params: content_hash, media_hash
    """
    try:
        scene = db.session.get(Scene, scene_id)
        if scene is None:
            return jsonify({'error': 'Scene not found'}), 404

        result = check_scene_changed(scene, request.args.get('content_hash'), request.args.get('media_hash'))
        return jsonify(result), 200

    except Exception as e:
        return _server_error(f'checking scene {scene_id} changes', e)


@player_bp.route('/player/scenes/<int:scene_id>/cache-manifest', methods=['GET'])
def scene_cache_manifest(scene_id):
    """Slides, media URLs and hashes a player needs to cache a scene offline"""
    try:
        scene = db.session.get(Scene, scene_id)
        if scene is None:
            return jsonify({'error': 'Scene not found'}), 404

        return jsonify(get_scene_for_caching(scene)), 200

    except Exception as e:
        return _server_error(f'building cache manifest for scene {scene_id}', e)


# ============================================================================
# HEALTH CHECK
# ============================================================================

@player_bp.route('/health', methods=['GET'])
@limiter.exempt
def health_check():
    """Simple health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'timestamp': utcnow().isoformat()
    }), 200


def setup_api_logger(app):
    """Setup API-specific file logger"""
    handler = logging.FileHandler(app.config['API_LOG_FILE'])
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    api_logger.addHandler(handler)
    api_logger.setLevel(logging.INFO)
