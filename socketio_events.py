"""
WebSocket Event Handlers
Real-time push of content changes, emergencies and device status to players and operators
"""
from flask import request
from flask_socketio import emit, join_room, leave_room
from app import socketio
from models import utcnow
import logging

logger = logging.getLogger(__name__)

# Track connected clients
connected_clients = {}

OPERATOR_ROOMS = ('devices', 'monitoring')


def device_room(device_id):
    return f'device_{device_id}'


def tenant_room(tenant_id):
    return f'tenant_{tenant_id}'


@socketio.on('connect')
def handle_connect():
    """Handle client connection"""
    client_id = request.sid
    connected_clients[client_id] = {'rooms': []}
    logger.info(f'Client connected (SID: {client_id})')
    emit('connection_response', {
        'status': 'connected',
        'message': 'Connected to real-time server',
        'client_id': client_id
    })


@socketio.on('disconnect')
def handle_disconnect():
    """Handle client disconnection"""
    client_id = request.sid
    if client_id in connected_clients:
        logger.info(f'Client disconnected (SID: {client_id})')
        del connected_clients[client_id]


def _track_room(room):
    client_id = request.sid
    if client_id in connected_clients and room not in connected_clients[client_id]['rooms']:
        connected_clients[client_id]['rooms'].append(room)


@socketio.on('join_device')
def handle_join_device(data):
    """
    Player joins its own device room and its tenant room
    Payload: {"device_id": 1}
    """
    from models import Device, db

    device_id = (data or {}).get('device_id')
    device = db.session.get(Device, device_id) if device_id is not None else None
    if device is None:
        emit('error', {'message': 'Unknown device'})
        return

    for room in (device_room(device.id), tenant_room(device.tenant_id)):
        join_room(room)
        _track_room(room)

    logger.info(f'Device {device.id} joined rooms (SID: {request.sid})')
    emit('room_joined', {'device_id': device.id, 'status': 'success'})


@socketio.on('join_room')
def handle_join_room(data):
    """
    Join an operator room for targeted broadcasts
    Rooms: 'devices', 'monitoring', 'tenant_<id>'
    """
    room = (data or {}).get('room')
    if not room:
        emit('error', {'message': 'Room name required'})
        return
    if room not in OPERATOR_ROOMS and not room.startswith('tenant_'):
        emit('error', {'message': f'Unknown room: {room}'})
        return

    join_room(room)
    _track_room(room)

    logger.info(f'Client {request.sid} joined room: {room}')
    emit('room_joined', {'room': room, 'status': 'success'})


@socketio.on('leave_room')
def handle_leave_room(data):
    """Leave a specific room"""
    room = (data or {}).get('room')
    if not room:
        return

    leave_room(room)
    client_id = request.sid
    if client_id in connected_clients and room in connected_clients[client_id]['rooms']:
        connected_clients[client_id]['rooms'].remove(room)

    emit('room_left', {'room': room, 'status': 'success'})


@socketio.on('ping')
def handle_ping():
    """Respond to ping (keep-alive)"""
    emit('pong', {'timestamp': utcnow().isoformat()})


# ============================================================================
# SERVER-SIDE BROADCAST FUNCTIONS
# These are called from other parts of the application to push updates
# ============================================================================

def broadcast_device_status(device_id, status_data):
    """
    Broadcast device status update to operators in the 'devices' room

    Args:
        device_id: Device ID
        status_data: Dictionary with device status information
    """
    socketio.emit('device_status_changed', {
        'device_id': device_id,
        'data': status_data
    }, room='devices', namespace='/')


def broadcast_device_offline(device_id, device_name):
    """Broadcast when a device goes offline"""
    socketio.emit('device_offline', {
        'device_id': device_id,
        'device_name': device_name,
        'timestamp': utcnow().isoformat()
    }, room='devices', namespace='/')


def broadcast_content_updated(device_id, scene_id):
    """Tell a player its scene changed and its cache is stale"""
    socketio.emit('content_updated', {
        'device_id': device_id,
        'scene_id': scene_id,
        'timestamp': utcnow().isoformat()
    }, room=device_room(device_id), namespace='/')


def broadcast_emergency_started(tenant_id, emergency):
    """
    Push an emergency override to every device of a tenant

    Args:
        tenant_id: Tenant ID
        emergency: Emergency state dictionary
    """
    socketio.emit('emergency_started', {
        'tenant_id': tenant_id,
        'emergency': emergency,
        'timestamp': utcnow().isoformat()
    }, room=tenant_room(tenant_id), namespace='/')


def broadcast_emergency_cleared(tenant_id, reason='cancelled'):
    """Broadcast the end of a tenant's emergency (cancelled or expired)"""
    socketio.emit('emergency_cleared', {
        'tenant_id': tenant_id,
        'reason': reason,
        'timestamp': utcnow().isoformat()
    }, room=tenant_room(tenant_id), namespace='/')
