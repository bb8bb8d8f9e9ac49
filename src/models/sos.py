"""
SOS data models for RakshaSetu

Defines the records exchanged by the SOS flow and the document store:
coordinates, close-friend contacts, SOS events, live location sessions
and dispatch results. Documents read from the store are validated and
defaulted here, at ingress.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class SosState(Enum):
    """SOS trigger lifecycle"""
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    DISPATCHING = "dispatching"


class ChannelStatus(Enum):
    """Outcome of one delivery channel"""
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class Coordinate:
    """Geographic coordinate in decimal degrees"""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    def to_dict(self) -> Dict[str, float]:
        return {'latitude': self.latitude, 'longitude': self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Coordinate':
        """Create coordinate from a {latitude, longitude} mapping"""
        if not isinstance(data, dict):
            raise ValueError(f"Coordinate must be a mapping, got {type(data).__name__}")

        lat = data.get('latitude')
        lon = data.get('longitude')
        if lat is None or lon is None:
            raise ValueError("Coordinate requires latitude and longitude")

        return cls(latitude=float(lat), longitude=float(lon))


@dataclass(frozen=True)
class CloseFriendContact:
    """A contact the user wants alerted in an emergency"""
    id: str
    name: str
    phone: Optional[str] = None

    def is_sms_target(self) -> bool:
        """Only contacts with a phone number can receive the SMS fan-out"""
        return isinstance(self.phone, str) and bool(self.phone.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'phone': self.phone}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CloseFriendContact':
        phone = data.get('phone')
        return cls(
            id=str(data.get('id', '')),
            name=str(data.get('name', '')),
            phone=str(phone) if phone is not None else None
        )


@dataclass
class UserProfile:
    """The parts of the user's profile document the SOS flow reads"""
    user_id: str
    close_friends: List[CloseFriendContact] = field(default_factory=list)
    last_sos: Optional[datetime] = None

    @classmethod
    def from_document(cls, user_id: str, data: Optional[Dict[str, Any]]) -> 'UserProfile':
        """Build a profile, defaulting a missing or malformed closeFriends to []"""
        if not data:
            return cls(user_id=user_id)

        friends = []
        raw_friends = data.get('closeFriends')
        if isinstance(raw_friends, list):
            for entry in raw_friends:
                if isinstance(entry, dict):
                    friends.append(CloseFriendContact.from_dict(entry))

        return cls(
            user_id=user_id,
            close_friends=friends,
            last_sos=_parse_datetime(data.get('lastSOS'))
        )


@dataclass(frozen=True)
class SosEvent:
    """Record written once per completed SOS trigger"""
    user_id: str
    location: Coordinate
    message: str
    street_view_urls: List[str] = field(default_factory=list)
    live_share_link: Optional[str] = None
    battery_percentage: int = 100
    created_at: Optional[datetime] = None

    def __post_init__(self):
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'battery_percentage', max(0, min(100, int(self.battery_percentage))))
        object.__setattr__(self, 'street_view_urls', list(self.street_view_urls))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'location': self.location.to_dict(),
            'message': self.message,
            'streetViewUrls': list(self.street_view_urls),
            'liveShareLink': self.live_share_link,
            'batteryPercentage': self.battery_percentage,
            'createdAt': self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SosEvent':
        return cls(
            user_id=data.get('userId', ''),
            location=Coordinate.from_dict(data.get('location') or {}),
            message=data.get('message', ''),
            street_view_urls=data.get('streetViewUrls') or [],
            live_share_link=data.get('liveShareLink'),
            battery_percentage=data.get('batteryPercentage', 100),
            created_at=_parse_datetime(data.get('createdAt'))
        )


@dataclass
class LiveLocationSession:
    """A time-bounded, continuously updated shareable position"""
    session_id: str
    location: Coordinate
    created_at: datetime
    expires_at: datetime
    user_id: Optional[str] = None

    @classmethod
    def create(
        cls,
        session_id: str,
        location: Coordinate,
        duration_seconds: float,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> 'LiveLocationSession':
        """Create a session whose expiry is fixed at creation + duration"""
        created_at = now or datetime.utcnow()
        return cls(
            session_id=session_id,
            location=location,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=duration_seconds),
            user_id=user_id
        )

    @property
    def duration_seconds(self) -> float:
        return (self.expires_at - self.created_at).total_seconds()

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.utcnow()
        return max(0.0, (self.expires_at - now).total_seconds())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.remaining_seconds(now) <= 0

    def share_link(self, base_url: str) -> str:
        return f"{base_url}?shareId={self.session_id}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'location': self.location.to_dict(),
            'createdAt': self.created_at,
            'expiresAt': self.expires_at
        }
        if self.user_id:
            data['userId'] = self.user_id
        return data


@dataclass
class ChannelResult:
    """Delivery summary for one channel"""
    channel: str
    status: ChannelStatus
    delivered: int = 0
    failed: int = 0
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel': self.channel,
            'status': self.status.value,
            'delivered': self.delivered,
            'failed': self.failed,
            'detail': self.detail
        }


@dataclass
class DispatchResult:
    """Outcome of one fan-out across all channels"""
    message: str
    recipients: List[CloseFriendContact]
    sms: ChannelResult
    chat: ChannelResult

    @property
    def channels(self) -> List[ChannelResult]:
        return [self.sms, self.chat]

    @property
    def any_delivered(self) -> bool:
        return any(c.status in (ChannelStatus.SUCCEEDED, ChannelStatus.PARTIAL) for c in self.channels)

    @property
    def fully_delivered(self) -> bool:
        return all(c.status == ChannelStatus.SUCCEEDED for c in self.channels)

    def summary(self) -> str:
        return ", ".join(f"{c.channel}={c.status.value}" for c in self.channels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'recipients': [c.to_dict() for c in self.recipients],
            'channels': [c.to_dict() for c in self.channels]
        }


@dataclass(frozen=True)
class SosContext:
    """Per-flow inputs that the app would otherwise keep as global state"""
    user_id: str
    auto_activate_enabled: bool = True
