"""
Content Routes Blueprint
Operator endpoints: tenant emergency override, slide design edits,
language variants, device schedule preview and resolution inspection
"""
from datetime import date
from flask import Blueprint, request, jsonify, current_app

from models import db, Tenant, Device, Scene, SceneSlide
from utils.content_refs import ContentRef, ContentIntegrityError
from utils.content_hash import update_slide_design, add_slide, remove_slide
from utils.content_resolver import resolve_content
from utils.emergency import activate_emergency, cancel_emergency, get_active_emergency
from utils.language_utils import fetch_language_variants
from utils.schedule_utils import get_schedule_preview

content_bp = Blueprint('content', __name__)


# ============================================================================
# EMERGENCY OVERRIDE
# ============================================================================

@content_bp.route('/tenants/<int:tenant_id>/emergency', methods=['GET'])
def emergency_status(tenant_id):
    """Current emergency of a tenant (expired ones are cleared on read)"""
    tenant = db.get_or_404(Tenant, tenant_id)
    state = get_active_emergency(tenant)

    return jsonify({
        'tenant_id': tenant_id,
        'active': state is not None,
        'emergency': state.to_dict() if state else None
    })


@content_bp.route('/tenants/<int:tenant_id>/emergency', methods=['POST'])
def start_emergency(tenant_id):
    """
    Start a tenant-wide emergency override

    Request JSON:
    {
        "content_type": "playlist",
        "content_id": 12,
        "duration_minutes": 30
    }
    """
    tenant = db.get_or_404(Tenant, tenant_id)
    data = request.get_json(silent=True)

    if not data:
        return jsonify({'error': 'No data provided'}), 400

    try:
        ref = ContentRef.parse(data.get('content_type'), data.get('content_id'))
        state = activate_emergency(tenant, ref, data.get('duration_minutes'))
    except (ContentIntegrityError, ValueError) as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error starting emergency for tenant {tenant_id}: {e}")
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    return jsonify({'success': True, 'emergency': state.to_dict()}), 201


@content_bp.route('/tenants/<int:tenant_id>/emergency', methods=['DELETE'])
def stop_emergency(tenant_id):
    """Cancel a tenant's emergency override"""
    tenant = db.get_or_404(Tenant, tenant_id)
    cancelled = cancel_emergency(tenant)

    return jsonify({
        'success': True,
        'cancelled': cancelled,
        'message': 'Emergency cancelled' if cancelled else 'No active emergency'
    })


# ============================================================================
# SLIDES (hash invalidating write path)
# ============================================================================

def _slide_to_dict(slide):
    return {
        'id': slide.id,
        'scene_id': slide.scene_id,
        'position': slide.position,
        'title': slide.title,
        'kind': slide.kind,
        'design_json': slide.design_json,
        'duration_seconds': slide.duration_seconds
    }


@content_bp.route('/slides/<int:slide_id>/design', methods=['PUT'])
def put_slide_design(slide_id):
    """
    Replace a slide's design document

    Request JSON:
    {
        "design_json": {"blocks": [...]}
    }
    """
    slide = db.get_or_404(SceneSlide, slide_id)
    data = request.get_json(silent=True)

    if not data or 'design_json' not in data:
        return jsonify({'error': 'design_json is required'}), 400

    try:
        slide = update_slide_design(slide, data['design_json'])
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating slide {slide_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    return jsonify(_slide_to_dict(slide))


@content_bp.route('/scenes/<int:scene_id>/slides', methods=['POST'])
def post_slide(scene_id):
    """Add a slide to a scene"""
    scene = db.get_or_404(Scene, scene_id)
    data = request.get_json(silent=True) or {}

    try:
        slide = add_slide(
            scene,
            design_json=data.get('design_json'),
            position=data.get('position'),
            title=data.get('title'),
            kind=data.get('kind', 'default'),
            duration_seconds=data.get('duration_seconds')
        )
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error adding slide to scene {scene_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    return jsonify(_slide_to_dict(slide)), 201


@content_bp.route('/slides/<int:slide_id>', methods=['DELETE'])
def delete_slide(slide_id):
    slide = db.get_or_404(SceneSlide, slide_id)

    try:
        remove_slide(slide)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting slide {slide_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    return jsonify({'success': True})


@content_bp.route('/scenes/<int:scene_id>/variants', methods=['GET'])
def scene_variants(scene_id):
    """List the language variants of a scene"""
    scene = db.get_or_404(Scene, scene_id)
    return jsonify({'scene_id': scene_id, 'variants': fetch_language_variants(scene)})


# ============================================================================
# DEVICE INSPECTION
# ============================================================================

@content_bp.route('/devices/<int:device_id>/schedule-preview', methods=['GET'])
def schedule_preview(device_id):
    """
    Hourly preview of winning schedule entries for a device
    Query params: date (YYYY-MM-DD, device local; default today)
    """
    device = db.get_or_404(Device, device_id)

    day = None
    if request.args.get('date'):
        try:
            day = date.fromisoformat(request.args['date'])
        except ValueError:
            return jsonify({'error': 'date must be YYYY-MM-DD'}), 400

    return jsonify({
        'device_id': device_id,
        'timezone': device.effective_timezone,
        'timeline': get_schedule_preview(device, day)
    })


@content_bp.route('/devices/<int:device_id>/resolution', methods=['GET'])
def device_resolution(device_id):
    """Which priority step currently wins for a device, without a heartbeat"""
    device = db.get_or_404(Device, device_id)
    resolved = resolve_content(device)

    return jsonify({
        'device_id': device_id,
        'resolved': resolved is not None,
        'resolution': resolved.to_dict() if resolved else None
    })
