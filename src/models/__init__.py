"""
Data models for RakshaSetu

Contains the data classes exchanged by the SOS flow and the document store.
"""

from .sos import (
    SosState, ChannelStatus, Coordinate, CloseFriendContact, UserProfile,
    SosEvent, LiveLocationSession, ChannelResult, DispatchResult, SosContext
)

__all__ = [
    'SosState', 'ChannelStatus', 'Coordinate', 'CloseFriendContact', 'UserProfile',
    'SosEvent', 'LiveLocationSession', 'ChannelResult', 'DispatchResult', 'SosContext'
]
