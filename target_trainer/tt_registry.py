"""
Registry: the console's in-memory state + operations.
- Tracks devices as reported by the serving side
- Owns the per-device training session state machine and history
- Sends training commands through the TransportChannel
- Provides snapshot() for the UI and a bounded operator log
"""

import logging
import threading
from collections import deque
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from .pattern_generator import PatternGenerator, pattern_generator
from .progression import ProgressionEngine, progression_engine
from .scoring import calculate_stats, finalize_stats
from .tt_config import LOG_MAX
from .tt_events import EventBus, Handler
from .tt_models import (
    DeviceId, DeviceInfo, SessionStatus, TrainingConfig, TrainingSession,
    now_ms, normalize_device_id, parse_training_config, utcnow_iso,
    validate_training_config
)
from .tt_transport import Command, MessageType, TransportChannel
from .tt_version import VERSION

logger = logging.getLogger(__name__)


class SessionEvent(Enum):
    """Notifications raised to the presentation layer."""
    SESSION_STARTED = "sessionStarted"
    SESSION_UPDATED = "sessionUpdated"
    SESSION_PAUSED = "sessionPaused"
    SESSION_RESUMED = "sessionResumed"
    SESSION_COMPLETED = "sessionCompleted"
    SESSION_ERROR = "sessionError"
    DEVICES_CHANGED = "devicesChanged"
    CONNECTION_CHANGED = "connectionChanged"
    TRANSPORT_ERROR = "transportError"


class SessionRegistry:
    """Thread-safe registry for devices + training session lifecycle."""

    def __init__(
        self,
        channel: TransportChannel,
        generator: Optional[PatternGenerator] = None,
        progression: Optional[ProgressionEngine] = None,
        clock: Callable[[], int] = now_ms,
        log_max: int = LOG_MAX,
    ) -> None:
        self.channel = channel
        self.generator = generator or pattern_generator
        self.progression = progression or progression_engine
        self._clock = clock

        # Device map (id -> record), only changed by transport events
        self.devices: Dict[DeviceId, DeviceInfo] = {}

        # Sessions: at most one non-terminal per device; history is most-recent-first
        self.active_sessions: Dict[DeviceId, TrainingSession] = {}
        self.history: Dict[DeviceId, List[TrainingSession]] = {}
        self._archived_ids: Set[str] = set()

        self.connection_status: str = "disconnected"
        self.logs: deque = deque(maxlen=log_max)

        self._lock = threading.RLock()
        self._events = EventBus(owner="sessions")
        self._channel_handlers: Dict[MessageType, Handler] = {
            MessageType.CONNECTION: self._on_connection,
            MessageType.ERROR: self._on_transport_error,
            MessageType.CLIENT_LIST: self._on_client_list,
            MessageType.CLIENT_UPDATE: self._on_client_update,
            MessageType.CLIENT_REMOVED: self._on_client_removed,
            MessageType.TRAINING_STARTED: self._on_training_started,
            MessageType.TRAINING_UPDATE: self._on_training_update,
            MessageType.TRAINING_COMPLETED: self._on_training_completed,
            MessageType.TRAINING_ERROR: self._on_training_error,
        }
        self._attached = False

    # ---------------- Lifecycle ----------------

    def attach(self) -> None:
        """Subscribe to the channel's inbound events (idempotent)."""
        if self._attached:
            return
        for msg_type, handler in self._channel_handlers.items():
            self.channel.on(msg_type, handler)
        self._attached = True
        self.log("Registry attached to transport")

    def shutdown(self) -> None:
        """Detach from the channel and drop every listener."""
        if self._attached:
            for msg_type, handler in self._channel_handlers.items():
                self.channel.off(msg_type, handler)
            self._attached = False
        self._events.clear()
        self.log("Registry shut down")

    # ---------------- Utilities ----------------

    def log(self, msg: str, level: str = "info", source: str = "registry",
            device_id: Optional[DeviceId] = None) -> None:
        """Append a structured log entry and forward it to the logging module."""
        entry = {"ts": utcnow_iso(), "level": level, "source": source, "device_id": device_id, "msg": msg}
        self.logs.appendleft(entry)
        logger.log(getattr(logging, level.upper(), logging.INFO), msg)

    def clear_logs(self) -> None:
        self.logs.clear()
        self.log("Operator log cleared")

    def on(self, event: Union[SessionEvent, str], handler: Handler) -> None:
        self._events.on(event, handler)

    def off(self, event: Union[SessionEvent, str], handler: Handler) -> None:
        self._events.off(event, handler)

    def _notify(self, event: SessionEvent, data: Any) -> None:
        self._events.emit(event, data)

    def _new_session_id(self, device_id: DeviceId, stamp: int) -> str:
        session_id = f"{device_id}-{stamp}"
        while session_id in self._archived_ids:
            stamp += 1
            session_id = f"{device_id}-{stamp}"
        return session_id

    # ---------------- Commands ----------------

    def start_training(self, device_id: DeviceId,
                       config: Union[TrainingConfig, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Validate, build targets, register PENDING and send startTraining.

        Returns {'success': True, 'session': TrainingSession} or
        {'success': False, 'error': str[, 'errors': {field: message}]}.
        """
        device_id = normalize_device_id(device_id)

        with self._lock:
            existing = self.active_sessions.get(device_id)
            if existing is not None:
                self.log(f"Start rejected: session {existing.id} still {existing.status.value}",
                         level="warning", device_id=device_id)
                return {"success": False,
                        "error": f"Device {device_id} already has an active session ({existing.id})"}

            if isinstance(config, Mapping):
                config, errors = parse_training_config(config)
                if errors:
                    return self._invalid_config(device_id, errors)
            validation = validate_training_config(config)
            if not validation["success"]:
                return self._invalid_config(device_id, validation["errors"])

            targets = tuple(self.generator.generate_targets(config))
            started_ms = self._clock()
            session = TrainingSession(
                id=self._new_session_id(device_id, started_ms),
                device_id=device_id,
                config=config,
                targets=targets,
                start_time=started_ms,
            )
            logger.debug(f"Session {session.id} layout: {self.generator.describe(list(targets))}")
            self.active_sessions[device_id] = session

            sent = self.channel.send(Command.START_TRAINING, {
                "clientId": device_id,
                "config": config.to_wire(),
                "targets": [t.to_wire() for t in targets],
                "sessionId": session.id,
            })
            if not sent:
                del self.active_sessions[device_id]
                self.log("Start failed: command not sent, session rolled back",
                         level="error", device_id=device_id)
                return {"success": False, "error": "transport: start command could not be sent"}

            self.log(f"Session {session.id} pending ({config.mode.value}/{config.difficulty.value}, "
                     f"{len(targets)} targets)", device_id=device_id)

        self._notify(SessionEvent.SESSION_STARTED, session)
        return {"success": True, "session": session}

    def _invalid_config(self, device_id: DeviceId, errors: Dict[str, str]) -> Dict[str, Any]:
        self.log(f"Start rejected: invalid config ({', '.join(sorted(errors))})",
                 level="warning", device_id=device_id)
        return {"success": False, "error": "Invalid training config", "errors": errors}

    def stop_training(self, device_id: DeviceId) -> Dict[str, Any]:
        device_id = normalize_device_id(device_id)
        with self._lock:
            session = self.active_sessions.get(device_id)
            if session is None:
                return self._no_session(device_id, "stop")
            if not self._send_session_command(Command.STOP_TRAINING, session):
                return {"success": False, "error": "transport: stop command could not be sent"}
            self._complete(session, reported=None)
            self.log(f"Session {session.id} stopped by operator", device_id=device_id)

        self._notify(SessionEvent.SESSION_COMPLETED, session)
        return {"success": True, "session": session}

    def pause_training(self, device_id: DeviceId) -> Dict[str, Any]:
        return self._transition(device_id, Command.PAUSE_TRAINING,
                                required=SessionStatus.RUNNING, target=SessionStatus.PAUSED,
                                event=SessionEvent.SESSION_PAUSED)

    def resume_training(self, device_id: DeviceId) -> Dict[str, Any]:
        return self._transition(device_id, Command.RESUME_TRAINING,
                                required=SessionStatus.PAUSED, target=SessionStatus.RUNNING,
                                event=SessionEvent.SESSION_RESUMED)

    def _transition(self, device_id: DeviceId, command: Command, required: SessionStatus,
                    target: SessionStatus, event: SessionEvent) -> Dict[str, Any]:
        device_id = normalize_device_id(device_id)
        verb = command.value.replace("Training", "")
        with self._lock:
            session = self.active_sessions.get(device_id)
            if session is None:
                return self._no_session(device_id, verb)
            if session.status != required:
                return {"success": False,
                        "error": f"Cannot {verb} session {session.id} while {session.status.value}"}
            if not self._send_session_command(command, session):
                return {"success": False, "error": f"transport: {verb} command could not be sent"}
            session.status = target
            self.log(f"Session {session.id} -> {target.value}", device_id=device_id)

        self._notify(event, session)
        return {"success": True, "session": session}

    def _send_session_command(self, command: Command, session: TrainingSession) -> bool:
        return self.channel.send(command, {"clientId": session.device_id, "sessionId": session.id})

    def _no_session(self, device_id: DeviceId, verb: str) -> Dict[str, Any]:
        self.log(f"Cannot {verb}: no active session", level="warning", device_id=device_id)
        return {"success": False, "error": f"No active training session for device {device_id}"}

    # ---------------- Bulk commands ----------------

    def start_training_for_all(self, device_ids: Iterable[DeviceId],
                               config: Union[TrainingConfig, Mapping[str, Any]]) -> Dict[str, Any]:
        ids = [normalize_device_id(d) for d in device_ids]
        if not ids:
            return {"success": False, "error": "No devices selected", "results": {}, "failed": 0}
        return self._bulk(ids, lambda d: self.start_training(d, config), "start")

    def stop_all(self) -> Dict[str, Any]:
        return self._bulk(self._active_ids(), self.stop_training, "stop")

    def pause_all(self) -> Dict[str, Any]:
        return self._bulk(self._active_ids(SessionStatus.RUNNING), self.pause_training, "pause")

    def resume_all(self) -> Dict[str, Any]:
        return self._bulk(self._active_ids(SessionStatus.PAUSED), self.resume_training, "resume")

    def _active_ids(self, status: Optional[SessionStatus] = None) -> List[DeviceId]:
        with self._lock:
            return [d for d, s in self.active_sessions.items() if status is None or s.status == status]

    def _bulk(self, device_ids: List[DeviceId], action: Callable[[DeviceId], Dict[str, Any]],
              verb: str) -> Dict[str, Any]:
        results = {d: action(d) for d in device_ids}
        failed = sum(1 for r in results.values() if not r["success"])
        if failed:
            self.log(f"{failed} of {len(results)} {verb} command(s) failed", level="warning")
        out: Dict[str, Any] = {"success": failed == 0, "results": results, "failed": failed}
        if failed:
            out["error"] = f"{failed} training(s) could not {verb}"
        return out

    # ---------------- Device-originated events ----------------

    def _session_for_event(self, data: Mapping[str, Any], kind: str) -> Optional[TrainingSession]:
        device_id = normalize_device_id(data.get("clientId"))
        session = self.active_sessions.get(device_id)
        if session is None:
            logger.debug(f"{kind} for device {device_id} ignored (no active session)")
            return None
        session_id = data.get("sessionId")
        if session_id is not None and session_id != session.id:
            self.log(f"{kind} for stale session {session_id} ignored", level="warning", device_id=device_id)
            return None
        return session

    def _on_training_started(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            session = self._session_for_event(data, "trainingStarted")
            if session is None or session.status != SessionStatus.PENDING:
                return
            session.status = SessionStatus.RUNNING
            self.log(f"Session {session.id} running", device_id=session.device_id)
        self._notify(SessionEvent.SESSION_STARTED, session)

    def _on_training_update(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            session = self._session_for_event(data, "trainingUpdate")
            if session is None:
                return
            if data.get("reactionTimes") is not None:
                session.reaction_times = tuple(data["reactionTimes"])
            session.stats = calculate_stats(
                data.get("hits", session.stats.hits),
                data.get("misses", session.stats.misses),
                session.reaction_times,
                session.config,
            )
        self._notify(SessionEvent.SESSION_UPDATED, session)

    def _on_training_completed(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            session = self._session_for_event(data, "trainingCompleted")
            if session is None:
                return
            self._complete(session, reported=data.get("stats"))
            self.log(f"Session {session.id} completed (score {session.stats.score})",
                     device_id=session.device_id)
        self._notify(SessionEvent.SESSION_COMPLETED, session)

    def _on_training_error(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            session = self._session_for_event(data, "trainingError")
            if session is None:
                return
            error = data.get("error")
            session.status = SessionStatus.ABORTED
            session.end_time = self._clock()
            session.error = error
            self._archive(session)
            self.log(f"Session {session.id} aborted by device: {error}", level="error",
                     device_id=session.device_id)
        self._notify(SessionEvent.SESSION_ERROR, {"session": session, "error": error})

    def _complete(self, session: TrainingSession, reported: Optional[Mapping[str, Any]]) -> None:
        if reported and reported.get("reactionTimes") is not None:
            session.reaction_times = tuple(reported["reactionTimes"])
        session.status = SessionStatus.COMPLETED
        session.end_time = self._clock()
        session.stats = finalize_stats(session.stats, reported, session.config, session.reaction_times)
        session.summary = self.progression.generate_session_summary(session)
        self._archive(session)

    def _archive(self, session: TrainingSession) -> bool:
        """Move a terminal session into history exactly once."""
        if self.active_sessions.get(session.device_id) is session:
            del self.active_sessions[session.device_id]
        if session.id in self._archived_ids:
            return False
        self.history.setdefault(session.device_id, []).insert(0, session)
        self._archived_ids.add(session.id)
        session.seal()
        return True

    # ---------------- Device map / connection ----------------

    def _on_client_list(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            devices = {}
            for raw in data.get("clients") or []:
                device = DeviceInfo.from_wire(raw)
                if device.device_id is not None:
                    devices[device.device_id] = device
            self.devices = devices
            self.log(f"Device list received ({len(devices)} devices)", source="transport")
        self._notify(SessionEvent.DEVICES_CHANGED, self.get_devices())

    def _on_client_update(self, data: Mapping[str, Any]) -> None:
        raw = data.get("client") or {}
        with self._lock:
            device_id = normalize_device_id(raw.get("id", raw.get("clientId")))
            if device_id is None:
                self.log("clientUpdate without device id ignored", level="warning", source="transport")
                return
            device = self.devices.get(device_id)
            if device is None:
                self.devices[device_id] = DeviceInfo.from_wire(raw)
                self.log(f"Device {device_id} connected", source="transport", device_id=device_id)
            else:
                device.merge_wire(raw)
        self._notify(SessionEvent.DEVICES_CHANGED, self.get_devices())

    def _on_client_removed(self, data: Mapping[str, Any]) -> None:
        device_id = normalize_device_id(data.get("clientId"))
        with self._lock:
            if self.devices.pop(device_id, None) is None:
                return
            self.log(f"Device {device_id} removed", source="transport", device_id=device_id)
        self._notify(SessionEvent.DEVICES_CHANGED, self.get_devices())

    def _on_connection(self, data: Mapping[str, Any]) -> None:
        status = data.get("status", "unknown")
        with self._lock:
            self.connection_status = status
        self.log(f"Connection {status}", level="info" if status == "connected" else "warning",
                 source="transport")
        if status == "connected":
            self.channel.send(Command.GET_CLIENTS, {})
        self._notify(SessionEvent.CONNECTION_CHANGED, {"status": status})

    def _on_transport_error(self, data: Mapping[str, Any]) -> None:
        message = data.get("message", "unknown transport error")
        self.log(f"Transport error: {message}", level="error", source="transport")
        self._notify(SessionEvent.TRANSPORT_ERROR, {"message": message, "terminal": bool(data.get("terminal"))})

    # ---------------- Accessors ----------------

    def get_active_session(self, device_id: DeviceId) -> Optional[TrainingSession]:
        with self._lock:
            return self.active_sessions.get(normalize_device_id(device_id))

    def get_all_active_sessions(self) -> List[TrainingSession]:
        with self._lock:
            return list(self.active_sessions.values())

    def get_client_history(self, device_id: DeviceId) -> List[TrainingSession]:
        with self._lock:
            return list(self.history.get(normalize_device_id(device_id), ()))

    def get_client_stats(self, device_id: DeviceId) -> Optional[Dict[str, Any]]:
        return self.progression.aggregate_client_stats(self.get_client_history(device_id))

    def recommend_next_training(self, device_id: DeviceId) -> TrainingConfig:
        return self.progression.recommend(self.get_client_history(device_id))

    def get_device(self, device_id: DeviceId) -> Optional[DeviceInfo]:
        with self._lock:
            return self.devices.get(normalize_device_id(device_id))

    def get_devices(self) -> List[DeviceInfo]:
        with self._lock:
            return sorted(self.devices.values(), key=lambda d: str(d.device_id))

    def is_known_device(self, device_id: DeviceId) -> bool:
        device_id = normalize_device_id(device_id)
        with self._lock:
            return device_id in self.devices or device_id in self.active_sessions or device_id in self.history

    # ---------------- Snapshot for UI ----------------

    def snapshot(self) -> Dict[str, Any]:
        """Current console state consumed by the UI."""
        with self._lock:
            devices = []
            for device in self.get_devices():
                entry = device.to_dict()
                session = self.active_sessions.get(device.device_id)
                entry["training"] = session.to_dict() if session else None
                entry["sessionsCompleted"] = len(self.history.get(device.device_id, ()))
                devices.append(entry)

            return {
                "connection_status": self.connection_status,
                "transport": self.channel.status(),
                "devices": devices,
                "active_sessions": [s.to_dict() for s in self.active_sessions.values()],
                "history_counts": {str(d): len(h) for d, h in self.history.items()},
                "logs": list(self.logs)[:50],
                "version": VERSION,
            }
