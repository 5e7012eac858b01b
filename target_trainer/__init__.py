"""
Target Trainer console package

Operator-side coordination for networked target-practice devices:
transport link, session registry, target patterns, scoring and progression.
"""

from .tt_registry import SessionEvent, SessionRegistry
from .tt_transport import Command, MessageType, TransportChannel
from .tt_version import VERSION

__all__ = ['SessionEvent', 'SessionRegistry', 'Command', 'MessageType', 'TransportChannel', 'VERSION']
