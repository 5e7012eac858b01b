"""
Dataclasses, enums and small model helpers used throughout the console.

Wire format is camelCase (what the devices speak); Python attributes are
snake_case. Conversion happens only in to_wire()/parse_* helpers below.
"""

import math
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .tt_config import (
    BRIGHTNESS_RANGE, DURATION_RANGE, REACT_TIME_RANGE, TARGET_COUNT_RANGE
)

DeviceId = Union[int, str]


def utcnow_iso() -> str:
    """UTC timestamp in ISO 8601 format (seconds precision)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def now_ms() -> int:
    """Wall clock in milliseconds."""
    return int(time.time() * 1000)


def normalize_device_id(device_id: Any) -> Any:
    """Devices report integer ids; URLs and forms hand us strings. "3" -> 3."""
    if isinstance(device_id, str):
        stripped = device_id.strip()
        if stripped.isdigit():
            return int(stripped)
        return stripped
    return device_id


# ---------------- Enums ----------------

class TrainingMode(Enum):
    BASIC = "basic"
    REACTION = "reaction"
    PRECISION = "precision"
    STRESS = "stress"
    MULTI = "multi"


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class TargetPattern(Enum):
    RANDOM = "random"
    SEQUENCE = "sequence"
    WAVE = "wave"
    SPIRAL = "spiral"


class MovementPattern(Enum):
    STATIC = "static"
    LINEAR = "linear"
    CIRCULAR = "circular"
    RANDOM = "random"


class FeedbackMode(Enum):
    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    BATCH = "batch"
    NONE = "none"


class ScoringSystem(Enum):
    STANDARD = "standard"
    TIME = "time"
    COMBO = "combo"
    PRECISION = "precision"


class SessionStatus(Enum):
    """Session lifecycle. COMPLETED and ABORTED are terminal."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ABORTED)


DIFFICULTY_ORDER: Tuple[Difficulty, ...] = (Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD)

# Per-difficulty scaling (react time, target size, stress intensity)
DIFFICULTY_MODIFIERS: Dict[Difficulty, Dict[str, float]] = {
    Difficulty.EASY: {"react_time": 1.5, "target_size": 1.5, "stress_intensity": 0.5},
    Difficulty.MEDIUM: {"react_time": 1.0, "target_size": 1.0, "stress_intensity": 1.0},
    Difficulty.HARD: {"react_time": 0.7, "target_size": 0.7, "stress_intensity": 1.5},
}


# ---------------- Config ----------------

# snake_case attribute -> camelCase wire key
_WIRE_KEYS: Dict[str, str] = {
    "target_count": "targetCount",
    "react_time": "reactTime",
    "target_pattern": "targetPattern",
    "movement_pattern": "movementPattern",
    "feedback_mode": "feedbackMode",
    "scoring_system": "scoringSystem",
    "stress_intensity": "stressIntensity",
}

_ENUM_FIELDS: Dict[str, type] = {
    "mode": TrainingMode,
    "difficulty": Difficulty,
    "target_pattern": TargetPattern,
    "movement_pattern": MovementPattern,
    "feedback_mode": FeedbackMode,
    "scoring_system": ScoringSystem,
}

# Counts that index into ranges; fractional values are rejected
_INTEGER_FIELDS = ("target_count",)

_NUMERIC_RANGES: Dict[str, Tuple[int, int]] = {
    "duration": DURATION_RANGE,
    "target_count": TARGET_COUNT_RANGE,
    "react_time": REACT_TIME_RANGE,
    "brightness": BRIGHTNESS_RANGE,
}


@dataclass(frozen=True)
class TrainingConfig:
    """Parameters for one session. Never mutated once a session starts."""
    mode: Optional[TrainingMode] = TrainingMode.BASIC
    difficulty: Optional[Difficulty] = Difficulty.MEDIUM
    duration: int = 300
    target_count: int = 10
    react_time: int = 1000
    sound: bool = True
    stressors: bool = False
    brightness: int = 75
    target_pattern: TargetPattern = TargetPattern.RANDOM
    movement_pattern: MovementPattern = MovementPattern.STATIC
    feedback_mode: FeedbackMode = FeedbackMode.IMMEDIATE
    scoring_system: ScoringSystem = ScoringSystem.STANDARD
    stress_intensity: float = 0.0

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            out[_WIRE_KEYS.get(f.name, f.name)] = value
        return out


DEFAULT_CONFIGS: Dict[TrainingMode, TrainingConfig] = {
    TrainingMode.BASIC: TrainingConfig(
        mode=TrainingMode.BASIC, duration=300, target_count=10, react_time=1000,
        brightness=75, target_pattern=TargetPattern.RANDOM,
        movement_pattern=MovementPattern.STATIC, feedback_mode=FeedbackMode.IMMEDIATE,
        scoring_system=ScoringSystem.STANDARD,
    ),
    TrainingMode.REACTION: TrainingConfig(
        mode=TrainingMode.REACTION, duration=180, target_count=20, react_time=500,
        brightness=100, target_pattern=TargetPattern.RANDOM,
        movement_pattern=MovementPattern.STATIC, feedback_mode=FeedbackMode.IMMEDIATE,
        scoring_system=ScoringSystem.TIME,
    ),
    TrainingMode.PRECISION: TrainingConfig(
        mode=TrainingMode.PRECISION, duration=420, target_count=15, react_time=2000,
        brightness=50, target_pattern=TargetPattern.SEQUENCE,
        movement_pattern=MovementPattern.STATIC, feedback_mode=FeedbackMode.IMMEDIATE,
        scoring_system=ScoringSystem.PRECISION,
    ),
    TrainingMode.STRESS: TrainingConfig(
        mode=TrainingMode.STRESS, duration=240, target_count=30, react_time=750,
        stressors=True, brightness=100, target_pattern=TargetPattern.RANDOM,
        movement_pattern=MovementPattern.RANDOM, feedback_mode=FeedbackMode.DELAYED,
        scoring_system=ScoringSystem.COMBO,
    ),
    TrainingMode.MULTI: TrainingConfig(
        mode=TrainingMode.MULTI, duration=360, target_count=40, react_time=1500,
        brightness=85, target_pattern=TargetPattern.WAVE,
        movement_pattern=MovementPattern.CIRCULAR, feedback_mode=FeedbackMode.BATCH,
        scoring_system=ScoringSystem.STANDARD,
    ),
}


def generate_training_config(mode: Union[TrainingMode, str, None],
                             difficulty: Union[Difficulty, str, None],
                             **overrides: Any) -> TrainingConfig:
    """
    Build a config from a mode's defaults scaled for a difficulty.

    Unknown modes fall back to BASIC, unknown difficulties to MEDIUM.
    Overrides (snake_case) are applied last.
    """
    mode = _coerce_enum(TrainingMode, mode, TrainingMode.BASIC)
    difficulty = _coerce_enum(Difficulty, difficulty, Difficulty.MEDIUM)
    base = DEFAULT_CONFIGS[mode]
    modifier = DIFFICULTY_MODIFIERS[difficulty]

    lo, hi = REACT_TIME_RANGE
    react_time = min(hi, max(lo, int(round(base.react_time * modifier["react_time"]))))
    config = replace(
        base,
        mode=mode,
        difficulty=difficulty,
        react_time=react_time,
        stress_intensity=modifier["stress_intensity"] if base.stressors else 0.0,
    )
    return replace(config, **overrides) if overrides else config


def _coerce_enum(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return default


def parse_training_config(data: Mapping[str, Any]) -> Tuple[Optional[TrainingConfig], Dict[str, str]]:
    """
    Parse a config mapping (camelCase or snake_case keys).

    Omitted numeric/enum fields come from the chosen mode's defaults. Returns
    (config, errors); config is None when any field could not be parsed.
    """
    wire_to_attr = {v: k for k, v in _WIRE_KEYS.items()}
    known = {f.name for f in fields(TrainingConfig)}
    raw: Dict[str, Any] = {}
    for key, value in data.items():
        attr = wire_to_attr.get(key, key)
        if attr in known:
            raw[attr] = value

    errors: Dict[str, str] = {}
    values: Dict[str, Any] = {"mode": None, "difficulty": None}
    for attr, value in raw.items():
        enum_cls = _ENUM_FIELDS.get(attr)
        if enum_cls is None:
            # clients may send 10.0 for 10
            if attr in _INTEGER_FIELDS and isinstance(value, float) and value.is_integer():
                value = int(value)
            values[attr] = value
        elif value is None or value == "":
            values[attr] = None
        else:
            try:
                values[attr] = value if isinstance(value, enum_cls) else enum_cls(value)
            except ValueError:
                allowed = ", ".join(e.value for e in enum_cls)
                errors[attr] = f"unknown value {value!r} (expected one of: {allowed})"

    if errors:
        return None, errors
    base = DEFAULT_CONFIGS.get(values["mode"], DEFAULT_CONFIGS[TrainingMode.BASIC])
    return replace(base, **values), {}


def validate_training_config(config: TrainingConfig) -> Dict[str, Any]:
    """
    Check required fields and numeric ranges.

    Returns {'success': bool, 'errors': {field: message}}; never raises.
    """
    errors: Dict[str, str] = {}

    if config.mode is None:
        errors["mode"] = "training mode must be selected"
    if config.difficulty is None:
        errors["difficulty"] = "difficulty must be selected"

    for attr, (lo, hi) in _NUMERIC_RANGES.items():
        value = getattr(config, attr)
        if value is None:
            errors[attr] = "is required"
        elif isinstance(value, bool) or not isinstance(value, (int, float)):
            errors[attr] = f"must be a number, got {value!r}"
        elif not math.isfinite(value):
            errors[attr] = f"must be a finite number, got {value!r}"
        elif attr in _INTEGER_FIELDS and not float(value).is_integer():
            errors[attr] = f"must be a whole number, got {value!r}"
        elif value < lo or value > hi:
            errors[attr] = f"must be between {lo} and {hi}"

    for attr in ("sound", "stressors"):
        if not isinstance(getattr(config, attr), bool):
            errors[attr] = "must be true or false"

    return {"success": not errors, "errors": errors}


# ---------------- Devices ----------------

@dataclass
class DeviceInfo:
    """A remote training terminal as last reported by the serving side."""
    device_id: DeviceId
    address: Optional[str] = None
    signal: Optional[int] = None
    battery: Optional[float] = None
    status: str = "inactive"
    name: Optional[str] = None
    connected_since: Optional[str] = None
    last_seen: Optional[str] = None

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "DeviceInfo":
        return cls(
            device_id=normalize_device_id(data.get("id", data.get("clientId"))),
            address=data.get("ip", data.get("address")),
            signal=data.get("rssi", data.get("signal")),
            battery=data.get("battery"),
            status="active" if data.get("status") == "active" else "inactive",
            name=data.get("name"),
            connected_since=data.get("connectedSince"),
            last_seen=utcnow_iso(),
        )

    def merge_wire(self, data: Mapping[str, Any]) -> None:
        """Apply a partial clientUpdate payload."""
        incoming = DeviceInfo.from_wire({**data, "id": self.device_id})
        for key in ("ip", "address"):
            if key in data:
                self.address = incoming.address
        for key in ("rssi", "signal"):
            if key in data:
                self.signal = incoming.signal
        if "battery" in data:
            self.battery = incoming.battery
        if "status" in data:
            self.status = incoming.status
        if "name" in data:
            self.name = incoming.name
        if "connectedSince" in data:
            self.connected_since = incoming.connected_since
        self.last_seen = incoming.last_seen

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.device_id,
            "ip": self.address,
            "rssi": self.signal,
            "battery": self.battery,
            "status": self.status,
            "name": self.name,
            "connectedSince": self.connected_since,
            "lastSeen": self.last_seen,
        }


# ---------------- Targets / stats ----------------

@dataclass(frozen=True)
class Movement:
    pattern: MovementPattern
    speed: int
    range: int

    def to_wire(self) -> Dict[str, Any]:
        return {"pattern": self.pattern.value, "speed": self.speed, "range": self.range}


@dataclass(frozen=True)
class Target:
    """One point on the device grid, optionally moving."""
    id: int
    x: int
    y: int
    size: int
    duration: int
    movement: Optional[Movement] = None

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id, "x": self.x, "y": self.y,
            "size": self.size, "duration": self.duration,
        }
        if self.movement is not None:
            out["movement"] = self.movement.to_wire()
        return out


@dataclass(frozen=True)
class TrainingStats:
    hits: int = 0
    misses: int = 0
    accuracy: float = 0.0
    avg_reaction_time: float = 0.0
    score: int = 0

    def to_wire(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "accuracy": self.accuracy,
            "avgReactionTime": self.avg_reaction_time,
            "score": self.score,
        }


# ---------------- Sessions ----------------

@dataclass
class TrainingSession:
    """
    One bounded training run for a device.

    Mutable while active; seal() is called when it is archived and any later
    attribute assignment raises AttributeError.
    """
    id: str
    device_id: DeviceId
    config: TrainingConfig
    targets: Tuple[Target, ...]
    start_time: int
    status: SessionStatus = SessionStatus.PENDING
    stats: TrainingStats = field(default_factory=TrainingStats)
    end_time: Optional[int] = None
    error: Any = None
    reaction_times: Tuple[float, ...] = ()
    summary: Optional[Dict[str, Any]] = None
    _sealed: bool = field(default=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise AttributeError(f"session {self.id} is archived and read-only")
        super().__setattr__(name, value)

    def seal(self) -> None:
        super().__setattr__("_sealed", True)

    @property
    def duration_ms(self) -> int:
        end = self.end_time if self.end_time is not None else now_ms()
        return max(0, end - self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.device_id,
            "config": self.config.to_wire(),
            "targets": [t.to_wire() for t in self.targets],
            "status": self.status.value,
            "stats": self.stats.to_wire(),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "error": self.error,
            "summary": self.summary,
        }


def sessions_to_dicts(sessions: List[TrainingSession]) -> List[Dict[str, Any]]:
    return [s.to_dict() for s in sessions]
