"""
SOS flow errors

Only PermissionDenied and LocationUnavailable abort a trigger before the
fan-out; the rest are folded into results or defaulted.
"""

from typing import Optional


class SosError(Exception):
    """Base class for SOS flow errors"""
    pass


class PermissionDenied(SosError):
    """Location (or SMS-adjacent) permission was refused"""
    pass


class LocationUnavailable(SosError):
    """The current coordinate could not be acquired"""
    pass


class BatteryUnavailable(SosError):
    """Battery level could not be read; callers default to a full battery"""
    pass


class SessionCreateFailed(SosError):
    """The live location record could not be written"""
    pass


class ChannelUnavailable(SosError):
    """A delivery channel is not available on this device"""
    pass


class ThreadWriteFailed(SosError):
    """Appending the alert to one chat thread failed"""

    def __init__(self, thread_id: str, reason: Optional[Exception] = None):
        self.thread_id = thread_id
        self.reason = reason
        super().__init__(f"Failed to write SOS message to thread {thread_id}: {reason}")
