#!/usr/bin/env python3
"""
Training Blueprint - device list, session control, history and analytics
All state comes from the SessionRegistry stored in app.config['TT_REGISTRY']
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from target_trainer.tt_models import (
    Difficulty, TrainingMode, generate_training_config, normalize_device_id,
    sessions_to_dicts
)

logger = logging.getLogger(__name__)

training_bp = Blueprint('training', __name__, url_prefix='/api')


def _registry():
    return current_app.config['TT_REGISTRY']


def _channel():
    return current_app.config['TT_CHANNEL']


def _result(result):
    """Map a registry result dict to a JSON response: success -> 200, failure -> 400."""
    body = dict(result)
    if 'session' in body and body['session'] is not None:
        body['session'] = body['session'].to_dict()
    if 'results' in body:
        body['results'] = {str(k): _plain(v) for k, v in body['results'].items()}
    return jsonify(body), (200 if body.get('success') else 400)


def _plain(result):
    out = dict(result)
    if out.get('session') is not None:
        out['session'] = out['session'].to_dict()
    return out


@training_bp.errorhandler(Exception)
def handle_unexpected(e):
    """Unexpected failures never leak a traceback to the browser."""
    logger.error(f"Training API error: {e}", exc_info=True)
    _registry().log(f"Training API error: {e}", level="error", source="web")
    return jsonify({'success': False, 'error': 'Internal server error'}), 500


# ==================== STATE ====================

@training_bp.route('/state')
def api_state():
    """Snapshot consumed by the UI"""
    return jsonify(_registry().snapshot())


@training_bp.route('/devices')
def api_devices():
    devices = _registry().get_devices()
    return jsonify({'success': True, 'devices': [d.to_dict() for d in devices]})


@training_bp.route('/sessions')
def api_sessions():
    sessions = _registry().get_all_active_sessions()
    return jsonify({'success': True, 'sessions': sessions_to_dicts(sessions)})


@training_bp.route('/sessions/<device_id>')
def api_session(device_id):
    session = _registry().get_active_session(device_id)
    if session is None:
        return jsonify({'success': False, 'error': f'No active session for device {device_id}'}), 404
    return jsonify({'success': True, 'session': session.to_dict()})


# ==================== SESSION CONTROL ====================

@training_bp.route('/training/<device_id>/start', methods=['POST'])
def start_training(device_id):
    """Start a session; body is a training config (camelCase or snake_case keys)"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'error': 'JSON config body required'}), 400
    config = data.get('config', data)
    if not isinstance(config, dict):
        return jsonify({'success': False, 'error': 'config must be an object'}), 400
    return _result(_registry().start_training(device_id, config))


@training_bp.route('/training/<device_id>/stop', methods=['POST'])
def stop_training(device_id):
    return _result(_registry().stop_training(device_id))


@training_bp.route('/training/<device_id>/pause', methods=['POST'])
def pause_training(device_id):
    return _result(_registry().pause_training(device_id))


@training_bp.route('/training/<device_id>/resume', methods=['POST'])
def resume_training(device_id):
    return _result(_registry().resume_training(device_id))


# ==================== BULK CONTROL ====================

@training_bp.route('/training/start-all', methods=['POST'])
def start_all():
    """Start the same config on several devices: {device_ids: [...], config: {...}}"""
    data = request.get_json(silent=True) or {}
    device_ids = data.get('device_ids')
    config = data.get('config')
    if not isinstance(device_ids, list) or not isinstance(config, dict):
        return jsonify({'success': False, 'error': 'device_ids (list) and config (object) required'}), 400
    return _result(_registry().start_training_for_all(device_ids, config))


@training_bp.route('/training/stop-all', methods=['POST'])
def stop_all():
    return _result(_registry().stop_all())


@training_bp.route('/training/pause-all', methods=['POST'])
def pause_all():
    return _result(_registry().pause_all())


@training_bp.route('/training/resume-all', methods=['POST'])
def resume_all():
    return _result(_registry().resume_all())


# ==================== HISTORY / ANALYTICS ====================

@training_bp.route('/history/<device_id>')
def api_history(device_id):
    history = _registry().get_client_history(device_id)
    return jsonify({
        'success': True,
        'device_id': normalize_device_id(device_id),
        'sessions': sessions_to_dicts(history),
    })


@training_bp.route('/stats/<device_id>')
def api_stats(device_id):
    registry = _registry()
    if not registry.is_known_device(device_id):
        return jsonify({'success': False, 'error': f'Unknown device {device_id}'}), 404
    return jsonify({'success': True, 'stats': registry.get_client_stats(device_id)})


@training_bp.route('/recommendation/<device_id>')
def api_recommendation(device_id):
    config = _registry().recommend_next_training(device_id)
    return jsonify({'success': True, 'config': config.to_wire()})


@training_bp.route('/config/defaults/<mode>')
def api_config_defaults(mode):
    """Mode defaults scaled for ?difficulty= (easy|medium|hard, default medium)"""
    valid_modes = [m.value for m in TrainingMode]
    if mode not in valid_modes:
        return jsonify({'success': False, 'error': f'Unknown mode {mode}', 'modes': valid_modes}), 404
    difficulty = request.args.get('difficulty', Difficulty.MEDIUM.value)
    valid_difficulties = [d.value for d in Difficulty]
    if difficulty not in valid_difficulties:
        return jsonify({'success': False, 'error': f'Unknown difficulty {difficulty}'}), 400
    return jsonify({'success': True, 'config': generate_training_config(mode, difficulty).to_wire()})


# ==================== CONNECTION / LOGS ====================

@training_bp.route('/connection/connect', methods=['POST'])
def api_connect():
    """Operator re-connect; starts a fresh reconnect budget"""
    connected = _channel().connect()
    body = {'success': connected, 'transport': _channel().status()}
    if not connected:
        body['error'] = 'Connection failed; retrying in background'
    return jsonify(body), (200 if connected else 400)


@training_bp.route('/logs')
def api_logs():
    """Return recent logs (limit=n)"""
    try:
        limit = int(request.args.get('limit', 100))
    except ValueError:
        limit = 100
    return jsonify({'events': list(_registry().logs)[:limit]})


@training_bp.route('/logs/clear', methods=['POST'])
def api_logs_clear():
    _registry().clear_logs()
    return jsonify({'success': True})
