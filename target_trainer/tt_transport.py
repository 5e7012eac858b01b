"""
TransportChannel: the console's single WebSocket link to the serving side.

- Sends JSON text frames {"type": ..., **payload}
- Reads frames on a background thread and dispatches by "type"
- Reconnects with exponential backoff after a drop; gives up after
  RECONNECT_MAX_ATTEMPTS and emits a terminal "error" event

The socket factory and the timer are injectable so tests can drive the
channel without a network.
"""

import json
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

import simple_websocket

from .tt_config import RECONNECT_BASE_MS, RECONNECT_MAX_ATTEMPTS, build_ws_url
from .tt_events import EventBus, EventKey, Handler, event_name

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_MESSAGE = "max reconnect attempts reached"


class MessageType(Enum):
    """Inbound event kinds (server -> console), plus the two synthetic ones."""
    CONNECTION = "connection"
    ERROR = "error"
    CLIENT_LIST = "clientList"
    CLIENT_UPDATE = "clientUpdate"
    CLIENT_REMOVED = "clientRemoved"
    TRAINING_STARTED = "trainingStarted"
    TRAINING_UPDATE = "trainingUpdate"
    TRAINING_COMPLETED = "trainingCompleted"
    TRAINING_ERROR = "trainingError"


class Command(Enum):
    """Outbound message kinds (console -> server)."""
    START_TRAINING = "startTraining"
    STOP_TRAINING = "stopTraining"
    PAUSE_TRAINING = "pauseTraining"
    RESUME_TRAINING = "resumeTraining"
    GET_CLIENTS = "getClients"


def backoff_delay_ms(attempt: int, base_ms: int = RECONNECT_BASE_MS) -> int:
    """Delay before reconnect attempt N (1-based): base * 2^(N-1)."""
    return base_ms * 2 ** (attempt - 1)


def _default_connector(url: str):
    return simple_websocket.Client.connect(url)


def _default_scheduler(delay_secs: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay_secs, fn)
    timer.daemon = True
    timer.start()
    return timer


class TransportChannel:
    """One logical, self-healing connection with typed event dispatch."""

    def __init__(
        self,
        url: Optional[str] = None,
        connector: Optional[Callable[[str], Any]] = None,
        scheduler: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        base_ms: int = RECONNECT_BASE_MS,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        start_reader: bool = True,
    ) -> None:
        self.url = url or build_ws_url()
        self.base_ms = base_ms
        self.max_attempts = max_attempts
        self.reconnect_attempts = 0

        self._connector = connector or _default_connector
        self._scheduler = scheduler or _default_scheduler
        self._start_reader = start_reader

        self._events = EventBus(owner="transport")
        self._ws: Any = None
        self._connected = False
        self._closing = False
        self._reconnect_timer: Any = None
        self._lock = threading.RLock()
        self._send_lock = threading.Lock()

    # ---------------- Subscriptions ----------------

    def on(self, event: EventKey, handler: Handler) -> None:
        self._events.on(event, handler)

    def off(self, event: EventKey, handler: Handler) -> None:
        self._events.off(event, handler)

    # ---------------- Lifecycle ----------------

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> bool:
        """
        Open the connection (operator-initiated).

        Starts a fresh reconnect budget, so this is also how the console
        resumes after the terminal 'max reconnect attempts' error.
        """
        with self._lock:
            if self._connected:
                return True
            self._closing = False
            self._cancel_reconnect()
            self.reconnect_attempts = 0
        return self._open()

    def disconnect(self) -> None:
        """Teardown: close without reconnecting and drop every subscription."""
        with self._lock:
            self._closing = True
            self._cancel_reconnect()
            ws, self._ws = self._ws, None
            self._connected = False
        if ws is not None:
            try:
                ws.close()
            except Exception as e:
                logger.debug(f"Close failed (ignored): {e}")
        self._events.clear()
        logger.info("Transport disconnected by console")

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "url": self.url,
                "connected": self._connected,
                "reconnect_attempts": self.reconnect_attempts,
                "max_attempts": self.max_attempts,
                "reconnect_pending": self._reconnect_timer is not None,
            }

    # ---------------- Send ----------------

    def send(self, msg_type: EventKey, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Serialize {type, **payload} as one text frame. False if not open or on failure."""
        key = event_name(msg_type)
        with self._lock:
            ws = self._ws
            connected = self._connected
        if not connected or ws is None:
            logger.warning(f"Not connected - '{key}' not sent")
            return False

        try:
            frame = json.dumps({"type": key, **(payload or {})})
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot serialize '{key}': {e}")
            return False

        try:
            with self._send_lock:
                ws.send(frame)
            return True
        except Exception as e:
            logger.error(f"Send '{key}' failed: {e}")
            return False

    # ---------------- Inbound ----------------

    def handle_message(self, raw: Any) -> bool:
        """Parse one inbound frame and dispatch it. Malformed frames are dropped."""
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning(f"Dropping undecodable frame: {e}")
                return False
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return False
        if not isinstance(data, dict) or not isinstance(data.get("type"), str):
            logger.warning(f"Dropping frame without a message type: {str(raw)[:120]}")
            return False

        self._events.emit(data["type"], data)
        return True

    def handle_close(self, ws: Any = None) -> None:
        """Called when the socket drops. Stale sockets and console-initiated closes are ignored."""
        with self._lock:
            if ws is not None and ws is not self._ws:
                return
            was_connected = self._connected
            self._connected = False
            self._ws = None
            if self._closing or not was_connected:
                return

        logger.warning(f"Connection to {self.url} lost")
        self._events.emit(MessageType.CONNECTION, {"type": "connection", "status": "disconnected"})
        self._schedule_reconnect()

    def _read_loop(self, ws: Any) -> None:
        while True:
            try:
                raw = ws.receive()
            except simple_websocket.ConnectionClosed:
                break
            except Exception as e:
                logger.error(f"Receive failed: {e}")
                break
            if raw is None:
                continue
            try:
                self.handle_message(raw)
            except Exception as e:
                logger.error(f"Dispatch failed: {e}", exc_info=True)
        self.handle_close(ws)

    # ---------------- Reconnect ----------------

    def _open(self) -> bool:
        try:
            ws = self._connector(self.url)
        except Exception as e:
            logger.warning(f"Connect to {self.url} failed: {e}")
            self._events.emit(MessageType.ERROR, {"type": "error", "message": f"connect failed: {e}"})
            self._schedule_reconnect()
            return False

        with self._lock:
            if self._closing:
                stale = ws
                ws = None
            else:
                self._ws = ws
                self._connected = True
                self.reconnect_attempts = 0
        if ws is None:
            try:
                stale.close()
            except Exception as e:
                logger.debug(f"Close of late socket failed (ignored): {e}")
            return False

        logger.info(f"Connected to {self.url}")
        self._events.emit(MessageType.CONNECTION, {"type": "connection", "status": "connected"})
        if self._start_reader:
            threading.Thread(target=self._read_loop, args=(ws,), daemon=True).start()
        return True

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._closing:
                return
            exhausted = self.reconnect_attempts >= self.max_attempts
            if not exhausted:
                self.reconnect_attempts += 1
                attempt = self.reconnect_attempts
                delay_ms = backoff_delay_ms(attempt, self.base_ms)
                self._reconnect_timer = self._scheduler(delay_ms / 1000.0, self._reconnect)

        if exhausted:
            logger.error(f"Giving up after {self.max_attempts} reconnect attempts")
            self._events.emit(MessageType.ERROR, {
                "type": "error", "message": MAX_ATTEMPTS_MESSAGE, "terminal": True,
            })
        else:
            logger.info(f"Reconnect attempt {attempt}/{self.max_attempts} in {delay_ms} ms")

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._closing or self._connected:
                return
        self._open()

    def _cancel_reconnect(self) -> None:
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None and hasattr(timer, "cancel"):
            timer.cancel()
