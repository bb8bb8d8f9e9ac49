"""
SOS Emergency Module

Provides the emergency alert flow:
- Countdown-gated SOS trigger with cancellation and auto-activation
- Live location sharing sessions with automatic expiry
- SMS and in-app chat fan-out of the composed alert
- Close-friend contact book and shake detection
"""

from .sos_service import SosService
from .live_location import LiveLocationManager
from .dispatcher import NotificationDispatcher, MessageComposer, resolve_contacts
from .contacts import ContactBook
from .countdown import CountdownTimer
from .shake import ShakeDetector
from .exceptions import (
    SosError, PermissionDenied, LocationUnavailable, BatteryUnavailable,
    SessionCreateFailed, ChannelUnavailable, ThreadWriteFailed
)

__all__ = [
    'SosService',
    'LiveLocationManager',
    'NotificationDispatcher',
    'MessageComposer',
    'resolve_contacts',
    'ContactBook',
    'CountdownTimer',
    'ShakeDetector',
    'SosError',
    'PermissionDenied',
    'LocationUnavailable',
    'BatteryUnavailable',
    'SessionCreateFailed',
    'ChannelUnavailable',
    'ThreadWriteFailed'
]
