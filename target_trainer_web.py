#!/usr/bin/env python3
"""
Target Trainer – Flask Web Console
----------------------------------
Responsibilities:
- Exposes the registry as a JSON API (routes/training_bp.py)
- Pushes every registry notification to browsers over Socket.IO
- All state is provided by the SessionRegistry (single source of truth)

Notes:
- This file does NOT open the device connection; use target_trainer_main.py.
"""

import logging
import os
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify
from flask_socketio import SocketIO

from routes.training_bp import training_bp
from target_trainer.tt_models import DeviceInfo, TrainingSession, utcnow_iso
from target_trainer.tt_registry import SessionEvent, SessionRegistry
from target_trainer.tt_transport import TransportChannel
from target_trainer.tt_version import VERSION

logger = logging.getLogger(__name__)


def create_app(registry: SessionRegistry, channel: TransportChannel) -> Tuple[Flask, SocketIO]:
    """Build the Flask app + SocketIO server around an existing registry."""
    app = Flask(__name__)
    app.config['TT_REGISTRY'] = registry
    app.config['TT_CHANNEL'] = channel
    app.config['TT_STARTED_AT'] = utcnow_iso()
    app.register_blueprint(training_bp)

    @app.get("/health")
    def health():
        """Health check endpoint - shows version and service status"""
        return jsonify({
            'service': 'target-trainer-console',
            'version': VERSION,
            'pid': os.getpid(),
            'started_at': app.config['TT_STARTED_AT'],
            'connection_status': registry.connection_status,
            'devices_connected': len(registry.get_devices()),
            'active_sessions': len(registry.get_all_active_sessions()),
            'status': 'healthy',
        })

    socketio = SocketIO(app, async_mode='threading', cors_allowed_origins='*')
    register_session_relay(registry, socketio)
    return app, socketio


def to_json_safe(data: Any) -> Any:
    """Convert registry notification payloads (sessions, devices) to plain JSON."""
    if isinstance(data, (TrainingSession, DeviceInfo)):
        return data.to_dict()
    if isinstance(data, dict):
        return {str(k): to_json_safe(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [to_json_safe(v) for v in data]
    return data


def register_session_relay(registry: SessionRegistry, socketio: Any,
                           namespace: Optional[str] = None) -> Dict[SessionEvent, Any]:
    """
    Re-emit every registry notification to browsers under the same event name.

    Returns the installed handlers so callers can unsubscribe them.
    """
    handlers = {}
    for event in SessionEvent:
        def relay(data, _name=event.value):
            socketio.emit(_name, to_json_safe(data), namespace=namespace)
        registry.on(event, relay)
        handlers[event] = relay
    logger.info(f"Socket.IO relay registered for {len(handlers)} events")
    return handlers
